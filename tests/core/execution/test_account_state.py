"""
Tests for AccountStateTracker

Sequence reservation under concurrency, release/rollback and re-sync.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from txengine.core.errors import ChainConnectionError, NotFoundError
from txengine.core.execution.account_state import AccountStateTracker
from txengine.core.execution.models import AccountState


ADDRESS = "osmo1signer"


def make_backend(sequence: int = 10, account_number: int = 7) -> AsyncMock:
    backend = AsyncMock()
    backend.fetch_account.side_effect = lambda address: AccountState(
        address=address, account_number=account_number, sequence=sequence
    )
    return backend


# =============================================================================
# Resolution
# =============================================================================

class TestResolve:
    """Tests for lazy account resolution."""

    @pytest.mark.asyncio
    async def test_resolve_fetches_once_and_caches(self):
        """The second resolve is served from the cache."""
        backend = make_backend()
        tracker = AccountStateTracker(backend, chain="osmosis")

        first = await tracker.resolve(ADDRESS)
        second = await tracker.resolve(ADDRESS)

        assert first is second
        assert first.account_number == 7
        assert first.sequence == 10
        backend.fetch_account.assert_awaited_once_with(ADDRESS)

    @pytest.mark.asyncio
    async def test_concurrent_first_resolves_share_one_fetch(self):
        """Concurrent first-time callers do not each hit the network."""
        backend = AsyncMock()
        gate = asyncio.Event()

        async def slow_fetch(address):
            await gate.wait()
            return AccountState(address=address, sequence=3)

        backend.fetch_account.side_effect = slow_fetch
        tracker = AccountStateTracker(backend)

        tasks = [asyncio.create_task(tracker.resolve(ADDRESS)) for _ in range(5)]
        await asyncio.sleep(0)
        gate.set()
        states = await asyncio.gather(*tasks)

        assert all(s is states[0] for s in states)
        assert backend.fetch_account.await_count == 1

    @pytest.mark.asyncio
    async def test_unknown_account_propagates(self):
        """An account the chain has never seen surfaces as an error."""
        backend = AsyncMock()
        backend.fetch_account.side_effect = NotFoundError("Account not found")
        tracker = AccountStateTracker(backend)

        with pytest.raises(NotFoundError):
            await tracker.resolve(ADDRESS)
        assert tracker.get_state(ADDRESS) is None

    @pytest.mark.asyncio
    async def test_evm_addresses_are_case_insensitive(self):
        """Checksummed and lower-case EVM addresses share one state."""
        backend = make_backend(sequence=0)
        tracker = AccountStateTracker(backend)

        await tracker.resolve("0xAbCdEf0000000000000000000000000000000001")
        state = tracker.get_state("0xabcdef0000000000000000000000000000000001")

        assert state is not None
        backend.fetch_account.assert_awaited_once()


# =============================================================================
# Reservation
# =============================================================================

class TestReserveSequence:
    """Tests for sequence reservation."""

    @pytest.mark.asyncio
    async def test_two_concurrent_reservations_get_10_and_11(self):
        """Starting at 10, two concurrent reservations never both get 10."""
        tracker = AccountStateTracker(make_backend(sequence=10))

        results = await asyncio.gather(
            tracker.reserve_sequence(ADDRESS),
            tracker.reserve_sequence(ADDRESS),
        )

        assert sorted(results) == [10, 11]

    @pytest.mark.asyncio
    async def test_n_concurrent_reservations_are_a_contiguous_range(self):
        """N concurrent reservations return exactly {S, ..., S+N-1}."""
        tracker = AccountStateTracker(make_backend(sequence=42))

        results = await asyncio.gather(*(tracker.reserve_sequence(ADDRESS) for _ in range(25)))

        assert sorted(results) == list(range(42, 67))
        assert tracker.get_state(ADDRESS).sequence == 67

    @pytest.mark.asyncio
    async def test_sequences_are_strictly_increasing(self):
        tracker = AccountStateTracker(make_backend(sequence=0))

        results = [await tracker.reserve_sequence(ADDRESS) for _ in range(4)]

        assert results == [0, 1, 2, 3]

    @pytest.mark.asyncio
    async def test_accounts_are_independent(self):
        """Each signer has its own counter."""
        tracker = AccountStateTracker(make_backend(sequence=5))

        a = await tracker.reserve_sequence("osmo1alice")
        b = await tracker.reserve_sequence("osmo1bob")

        assert a == 5
        assert b == 5


# =============================================================================
# Release and confirmation
# =============================================================================

class TestReleaseSequence:
    """Tests for handing back unused sequences."""

    @pytest.mark.asyncio
    async def test_release_of_latest_rolls_back(self):
        """Releasing the most recent reservation rewinds the counter."""
        tracker = AccountStateTracker(make_backend(sequence=10))

        seq = await tracker.reserve_sequence(ADDRESS)
        await tracker.release_sequence(ADDRESS, seq)

        assert tracker.get_state(ADDRESS).sequence == 10
        assert await tracker.reserve_sequence(ADDRESS) == 10

    @pytest.mark.asyncio
    async def test_released_gap_is_reused_first(self):
        """A released sequence below the top is handed out before new ones."""
        tracker = AccountStateTracker(make_backend(sequence=10))

        first = await tracker.reserve_sequence(ADDRESS)
        second = await tracker.reserve_sequence(ADDRESS)
        await tracker.release_sequence(ADDRESS, first)

        assert second == 11
        assert await tracker.reserve_sequence(ADDRESS) == 10
        assert await tracker.reserve_sequence(ADDRESS) == 12

    @pytest.mark.asyncio
    async def test_rollback_absorbs_released_gaps(self):
        """Releasing the top after a lower release rewinds over both."""
        tracker = AccountStateTracker(make_backend(sequence=10))

        s10 = await tracker.reserve_sequence(ADDRESS)
        s11 = await tracker.reserve_sequence(ADDRESS)
        await tracker.release_sequence(ADDRESS, s10)
        await tracker.release_sequence(ADDRESS, s11)

        state = tracker.get_state(ADDRESS)
        assert state.sequence == 10
        assert state.released == set()
        assert state.reserved == set()

    @pytest.mark.asyncio
    async def test_releasing_unreserved_sequence_is_ignored(self):
        tracker = AccountStateTracker(make_backend(sequence=10))
        await tracker.reserve_sequence(ADDRESS)

        await tracker.release_sequence(ADDRESS, 99)

        assert tracker.get_state(ADDRESS).sequence == 11

    @pytest.mark.asyncio
    async def test_confirmed_sequence_cannot_be_released(self):
        """Once the network accepted a sequence it is never handed out again."""
        tracker = AccountStateTracker(make_backend(sequence=10))

        seq = await tracker.reserve_sequence(ADDRESS)
        await tracker.confirm_sequence(ADDRESS, seq)
        await tracker.release_sequence(ADDRESS, seq)

        assert await tracker.reserve_sequence(ADDRESS) == 11


# =============================================================================
# Re-sync
# =============================================================================

class TestResync:
    """Tests for dropping and re-reading on-chain state."""

    @pytest.mark.asyncio
    async def test_resync_reads_chain_again(self):
        backend = AsyncMock()
        backend.fetch_account.side_effect = [
            AccountState(address=ADDRESS, sequence=10),
            AccountState(address=ADDRESS, sequence=15),
        ]
        tracker = AccountStateTracker(backend)

        await tracker.reserve_sequence(ADDRESS)
        state = await tracker.resync(ADDRESS)

        assert state.sequence == 15
        assert await tracker.reserve_sequence(ADDRESS) == 15

    @pytest.mark.asyncio
    async def test_invalidate_then_transport_failure_propagates(self):
        backend = AsyncMock()
        backend.fetch_account.side_effect = [
            AccountState(address=ADDRESS, sequence=1),
            ChainConnectionError("unreachable"),
        ]
        tracker = AccountStateTracker(backend)
        await tracker.resolve(ADDRESS)

        tracker.invalidate(ADDRESS)

        with pytest.raises(ChainConnectionError):
            await tracker.reserve_sequence(ADDRESS)

    @pytest.mark.asyncio
    async def test_resync_never_reissues_a_held_sequence(self):
        """Reservations still in flight survive a re-sync from a lagging node."""
        tracker = AccountStateTracker(make_backend(sequence=10))

        first = await tracker.reserve_sequence(ADDRESS)
        second = await tracker.reserve_sequence(ADDRESS)
        await tracker.resync(ADDRESS)
        third = await tracker.reserve_sequence(ADDRESS)

        assert (first, second) == (10, 11)
        assert third == 12

    @pytest.mark.asyncio
    async def test_invalidate_keeps_reservations_until_refetch(self):
        tracker = AccountStateTracker(make_backend(sequence=10))
        held = await tracker.reserve_sequence(ADDRESS)

        tracker.invalidate(ADDRESS)

        assert tracker.get_state(ADDRESS) is None
        assert await tracker.reserve_sequence(ADDRESS) != held

    @pytest.mark.asyncio
    async def test_abandoned_sequence_follows_the_chain(self):
        """Once nobody holds it, the chain decides whether a sequence is reused."""
        tracker = AccountStateTracker(make_backend(sequence=10))
        lost = await tracker.reserve_sequence(ADDRESS)

        await tracker.abandon_sequence(ADDRESS, lost)
        await tracker.resync(ADDRESS)

        assert await tracker.reserve_sequence(ADDRESS) == 10

    @pytest.mark.asyncio
    async def test_resync_drops_released_gaps_below_chain(self):
        backend = AsyncMock()
        backend.fetch_account.side_effect = [
            AccountState(address=ADDRESS, sequence=10),
            AccountState(address=ADDRESS, sequence=12),
        ]
        tracker = AccountStateTracker(backend)
        first = await tracker.reserve_sequence(ADDRESS)
        await tracker.reserve_sequence(ADDRESS)
        await tracker.release_sequence(ADDRESS, first)
        await tracker.confirm_sequence(ADDRESS, 11)

        await tracker.resync(ADDRESS)

        assert await tracker.reserve_sequence(ADDRESS) == 12
