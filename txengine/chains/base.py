"""
Capability interfaces implemented by the chain backends.

Cosmos-SDK, EVM and Solana differ in signing and endpoint shape, so the
lifecycle engine is written once against these small protocols rather than
against a class hierarchy. A backend implements whichever capabilities its
network offers.
"""

from typing import Any, List, Optional, Protocol, runtime_checkable

from ..core.execution.models import (
    AccountState,
    BroadcastAck,
    Fee,
    SignedTransaction,
    SimulationResult,
    TransactionOutcome,
    UnsignedTransaction,
)


@runtime_checkable
class Simulator(Protocol):
    async def simulate(self, unsigned: UnsignedTransaction, account: AccountState) -> SimulationResult:
        """Dry-run the transaction and report its cost."""
        ...


@runtime_checkable
class Broadcaster(Protocol):
    async def broadcast(self, signed: SignedTransaction) -> BroadcastAck:
        """Submit signed bytes. Acceptance is not inclusion."""
        ...


@runtime_checkable
class TransactionLookup(Protocol):
    async def lookup_by_hash(self, tx_hash: str) -> Optional[TransactionOutcome]:
        """Return the included transaction, or None while it is not visible."""
        ...


@runtime_checkable
class BalanceQuery(Protocol):
    async def query_balance(self, address: str, denom: str) -> int:
        """Balance in minimum units."""
        ...


@runtime_checkable
class AccountQuery(Protocol):
    async def fetch_account(self, address: str) -> AccountState:
        """Current account number / sequence as seen by the network."""
        ...


@runtime_checkable
class GasPriceSource(Protocol):
    async def suggest_gas_price(self) -> float:
        """Price the node itself would accept, in the fee denom per gas unit."""
        ...


@runtime_checkable
class TransactionSigner(Protocol):
    """Builds the family-specific payload and signs it with the configured key."""

    @property
    def address(self) -> str:
        ...

    def build(self, messages: List[Any], memo: str = "") -> UnsignedTransaction:
        ...

    async def sign(
        self,
        unsigned: UnsignedTransaction,
        fee: Fee,
        account: AccountState,
        sequence: Optional[int],
    ) -> SignedTransaction:
        ...


class ChainBackend(Simulator, Broadcaster, TransactionLookup, BalanceQuery, AccountQuery, GasPriceSource, Protocol):
    """All capabilities the submitter and poller need from one network."""

    name: str

    async def close(self) -> None:
        ...
