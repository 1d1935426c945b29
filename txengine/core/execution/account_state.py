"""
Account state and sequence management for concurrent transactions.

Tracks each signer's account number and next sequence/nonce so that several
transactions can be prepared and broadcast concurrently from one process
without two of them ever being signed with the same sequence.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Dict, Optional, Set

from .models import AccountState

if TYPE_CHECKING:
    from ...chains.base import AccountQuery


logger = logging.getLogger(__name__)


class AccountStateTracker:
    """
    Resolves and caches account state for one chain.

    Features:
    - Lazily fetches account number / sequence on first use
    - Hands out strictly unique sequences under concurrency
    - Takes back sequences that were never broadcast
    - Re-syncs with on-chain state after a sequence mismatch

    The per-account lock only guards the in-memory read-and-increment; network
    reads happen outside it so unrelated submissions are never serialized on I/O.
    """

    def __init__(self, backend: "AccountQuery", chain: str = ""):
        self._backend = backend
        self._chain = chain
        self._states: Dict[str, AccountState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._inflight: Dict[str, "asyncio.Future[AccountState]"] = {}
        self._stale: Set[str] = set()

    def _get_key(self, address: str) -> str:
        return address.lower() if address.startswith("0x") else address

    def _get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def resolve(self, address: str) -> AccountState:
        """
        Return the cached account state, fetching it from the network if needed.

        Concurrent first-time callers share one fetch.

        Raises:
            NetworkError: the account is unknown to the chain
            ChainConnectionError: transport failure
        """
        key = self._get_key(address)
        state = self._states.get(key)
        if state is not None and key not in self._stale:
            return state

        inflight = self._inflight.get(key)
        if inflight is None:
            inflight = asyncio.ensure_future(self._fetch(key, address))
            self._inflight[key] = inflight
        return await asyncio.shield(inflight)

    async def _fetch(self, key: str, address: str) -> AccountState:
        try:
            fetched = await self._backend.fetch_account(address)
            async with self._get_lock(key):
                current = self._states.get(key)
                if current is None:
                    self._states[key] = fetched
                    current = fetched
                else:
                    self._reconcile(current, fetched)
                self._stale.discard(key)
            logger.debug(
                f"Resolved account {address} on {self._chain or 'chain'}: "
                f"account_number={current.account_number}, sequence={current.sequence}"
            )
            return current
        finally:
            self._inflight.pop(key, None)

    @staticmethod
    def _reconcile(current: AccountState, fetched: AccountState) -> None:
        """
        Fold a fresh on-chain read into a stale cached state.

        The chain's sequence wins, except that it never lands on or below a
        sequence another submission still holds.
        """
        current.account_number = fetched.account_number
        current.public_key = fetched.public_key or current.public_key
        current.fetched_at = fetched.fetched_at

        next_sequence = fetched.sequence
        if current.reserved:
            next_sequence = max(next_sequence, max(current.reserved) + 1)
        current.sequence = next_sequence
        current.released = {
            s for s in current.released
            if fetched.sequence <= s < next_sequence and s not in current.reserved
        }

    async def reserve_sequence(self, address: str) -> int:
        """
        Reserve the next sequence for an address.

        Returns the lowest previously released sequence if there is one,
        otherwise the cached next sequence, and advances the cache.
        """
        key = self._get_key(address)
        state = await self.resolve(address)

        async with self._get_lock(key):
            # resolve() may have been raced by invalidate(); re-read the live state
            state = self._states.get(key, state)
            if state.released:
                sequence = min(state.released)
                state.released.discard(sequence)
            else:
                sequence = state.sequence
                while sequence in state.reserved:
                    sequence += 1
                state.sequence = sequence + 1
            state.reserved.add(sequence)
            return sequence

    async def release_sequence(self, address: str, sequence: int) -> None:
        """
        Give back a reserved sequence that was never accepted by the network
        (sign failure, immediate broadcast rejection).
        """
        key = self._get_key(address)
        async with self._get_lock(key):
            state = self._states.get(key)
            if state is None or sequence not in state.reserved:
                return
            state.reserved.discard(sequence)

            if sequence == state.sequence - 1:
                state.sequence -= 1
                # Roll back over any released gaps directly below
                while state.sequence - 1 in state.released:
                    state.released.discard(state.sequence - 1)
                    state.sequence -= 1
            else:
                state.released.add(sequence)

    async def confirm_sequence(self, address: str, sequence: int) -> None:
        """Drop the reservation of a sequence the network accepted."""
        key = self._get_key(address)
        async with self._get_lock(key):
            state = self._states.get(key)
            if state is not None:
                state.reserved.discard(sequence)

    async def abandon_sequence(self, address: str, sequence: int) -> None:
        """
        Stop tracking a reservation whose fate is unknown (sequence mismatch,
        broadcast lost in transit) without offering it to anyone else. The next
        re-sync decides whether the chain still expects it.
        """
        key = self._get_key(address)
        async with self._get_lock(key):
            state = self._states.get(key)
            if state is not None:
                state.reserved.discard(sequence)

    def invalidate(self, address: str) -> None:
        """
        Mark cached state stale; the next use re-reads the network.

        Reservations held by in-flight submissions survive and are merged
        with the fresh read.
        """
        key = self._get_key(address)
        if key in self._states:
            self._stale.add(key)

    async def resync(self, address: str) -> AccountState:
        """Re-read on-chain state now, keeping in-flight reservations."""
        self.invalidate(address)
        state = await self.resolve(address)
        logger.info(f"Re-synced account {address}: sequence={state.sequence}")
        return state

    def get_state(self, address: str) -> Optional[AccountState]:
        """Get the cached state for an address, if it is current."""
        key = self._get_key(address)
        if key in self._stale:
            return None
        return self._states.get(key)

    def clear(self) -> None:
        self._states.clear()
        self._stale.clear()
