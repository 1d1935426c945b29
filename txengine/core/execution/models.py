"""
Transaction execution models and types.
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Set, Tuple, TypeVar

T = TypeVar("T")


def payload_digest(*parts: bytes) -> str:
    """Digest identifying an unsigned payload; ties a simulation to its fee."""
    h = hashlib.sha256()
    for part in parts:
        h.update(len(part).to_bytes(8, "big"))
        h.update(part)
    return h.hexdigest()


@dataclass(frozen=True)
class Coin:
    denom: str
    amount: int

    def __str__(self) -> str:
        return f"{self.amount}{self.denom}"


@dataclass
class AccountState:
    """A signer's on-chain identity at a point in time."""
    address: str
    account_number: int = 0
    sequence: int = 0                           # Next sequence/nonce to sign with
    public_key: Optional[bytes] = None
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # Reservation bookkeeping, owned by AccountStateTracker
    reserved: Set[int] = field(default_factory=set)
    released: Set[int] = field(default_factory=set)


@dataclass(frozen=True)
class SimulationResult:
    """Dry-run execution cost estimate (compute units on Solana)."""
    gas_used: Optional[int]
    gas_wanted: Optional[int] = None
    payload_digest: str = ""
    logs: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FeeParams:
    """Chain-specific inputs to fee estimation."""
    denom: str
    gas_price: float
    gas_adjustment: float = 1.3
    payer: Optional[str] = None
    granter: Optional[str] = None


@dataclass(frozen=True)
class Fee:
    """Final fee attached to a transaction."""
    amount: Coin
    gas_limit: int
    gas_price: float = 0.0
    payer: Optional[str] = None
    granter: Optional[str] = None


@dataclass
class UnsignedTransaction:
    """A transaction at the ``Built`` stage."""
    chain: str
    signer_address: str
    messages: List[Any]
    memo: str = ""
    payload_digest: str = ""
    extras: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SignedTransaction:
    """Raw signed bytes ready for broadcast."""
    raw: bytes
    tx_hash: str
    fee: Fee
    sequence: Optional[int] = None
    payload_digest: str = ""


@dataclass(frozen=True)
class BroadcastAck:
    """Mempool acceptance; says nothing about inclusion."""
    tx_hash: str
    code: int = 0
    raw_log: str = ""
    already_known: bool = False


@dataclass
class PendingTransaction:
    """A transaction in flight."""
    chain: str
    tx_hash: str
    raw: bytes
    sequence: Optional[int]
    fee: Fee
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class Event:
    type: str
    attributes: Tuple[Tuple[str, str], ...] = ()

    def get(self, key: str) -> Optional[str]:
        for k, v in self.attributes:
            if k == key:
                return v
        return None


@dataclass(frozen=True)
class TransactionOutcome:
    """Terminal result of a submission, observed in a block."""
    tx_hash: str
    height: int
    success: bool
    code: int = 0
    gas_used: Optional[int] = None
    gas_wanted: Optional[int] = None
    raw_log: str = ""
    events: Tuple[Event, ...] = ()
    timestamp: Optional[str] = None
    data: Optional[Any] = None

    def find_events(self, event_type: str) -> List[Event]:
        return [e for e in self.events if e.type == event_type]


class PollStatus(str, Enum):
    """Terminal states of a confirmation poll."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class PollOutcome(Generic[T]):
    status: PollStatus
    payload: Optional[T] = None
    reason: Optional[str] = None
    attempts: int = 0
    elapsed_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == PollStatus.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.status == PollStatus.FAILED

    @property
    def timed_out(self) -> bool:
        return self.status == PollStatus.TIMED_OUT


class SubmissionStage(str, Enum):
    """Per-attempt submission state machine."""
    BUILT = "built"
    SIMULATED = "simulated"
    FEE_COMPUTED = "fee_computed"
    SIGNED = "signed"
    BROADCAST = "broadcast"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


_TRANSITIONS: Dict[SubmissionStage, Set[SubmissionStage]] = {
    SubmissionStage.BUILT: {SubmissionStage.SIMULATED, SubmissionStage.FEE_COMPUTED},
    SubmissionStage.SIMULATED: {SubmissionStage.FEE_COMPUTED},
    SubmissionStage.FEE_COMPUTED: {SubmissionStage.SIGNED},
    SubmissionStage.SIGNED: {SubmissionStage.BROADCAST},
    SubmissionStage.BROADCAST: {SubmissionStage.ACCEPTED, SubmissionStage.REJECTED},
    SubmissionStage.ACCEPTED: set(),
    SubmissionStage.REJECTED: set(),
}


@dataclass
class SubmissionAttempt:
    """Tracks one pass through the submission state machine."""
    chain: str
    unsigned: UnsignedTransaction
    stage: SubmissionStage = SubmissionStage.BUILT
    simulation: Optional[SimulationResult] = None
    fee: Optional[Fee] = None
    sequence: Optional[int] = None
    signed: Optional[SignedTransaction] = None
    ack: Optional[BroadcastAck] = None
    history: List[SubmissionStage] = field(default_factory=lambda: [SubmissionStage.BUILT])

    def advance(self, stage: SubmissionStage) -> None:
        if stage not in _TRANSITIONS[self.stage]:
            raise RuntimeError(f"Invalid submission transition {self.stage.value} -> {stage.value}")
        self.stage = stage
        self.history.append(stage)

    @property
    def is_final(self) -> bool:
        return self.stage in {SubmissionStage.ACCEPTED, SubmissionStage.REJECTED}
