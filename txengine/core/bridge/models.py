"""
Cross-domain (burn-and-mint) transfer records.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from ..errors import ParseError

# version(4) source_domain(4) destination_domain(4) nonce(8) sender(32) recipient(32) destination_caller(32)
CCTP_HEADER_LENGTH = 116


class TransferStatus(str, Enum):
    """Lifecycle of a cross-domain transfer. Only ever moves forward."""
    PENDING = "pending"
    BURNED = "burned"
    ATTESTED = "attested"
    COMPLETED = "completed"


_ORDER = [TransferStatus.PENDING, TransferStatus.BURNED, TransferStatus.ATTESTED, TransferStatus.COMPLETED]


def left_pad_32(address: bytes) -> bytes:
    """Left-pad an address to the 32-byte ``bytes32`` form used by CCTP."""
    if len(address) > 32:
        raise ParseError(f"Address is {len(address)} bytes, longer than 32")
    return address.rjust(32, b"\x00")


def recipient_bytes32(recipient: str) -> bytes:
    """Hex address (with or without ``0x``) to its 32-byte mint-recipient form."""
    hex_part = recipient[2:] if recipient.lower().startswith("0x") else recipient
    try:
        raw = bytes.fromhex(hex_part)
    except ValueError as e:
        raise ParseError(f"Failed to parse hex address {recipient!r}") from e
    return left_pad_32(raw)


@dataclass(frozen=True)
class BurnMessage:
    """The message emitted by a source-chain burn."""
    message: bytes
    version: int
    source_domain: int
    destination_domain: int
    nonce: int
    sender: bytes
    recipient: bytes
    destination_caller: bytes
    body: bytes

    @classmethod
    def from_bytes(cls, message: bytes) -> "BurnMessage":
        """Parse the fixed CCTP header; the body stays opaque."""
        if len(message) < CCTP_HEADER_LENGTH:
            raise ParseError(f"CCTP message too short: {len(message)} bytes")
        return cls(
            message=message,
            version=int.from_bytes(message[0:4], "big"),
            source_domain=int.from_bytes(message[4:8], "big"),
            destination_domain=int.from_bytes(message[8:12], "big"),
            nonce=int.from_bytes(message[12:20], "big"),
            sender=message[20:52],
            recipient=message[52:84],
            destination_caller=message[84:116],
            body=message[116:],
        )


@dataclass
class CrossDomainTransfer:
    """
    One burn-and-mint transfer across two domains.

    ``ATTESTED`` with no destination result is a valid resting state: the
    receive can be submitted later with the same message and attestation.
    """
    source_chain: str
    destination_chain: str
    source_domain: int
    destination_domain: int
    amount: int
    mint_recipient: bytes
    burn_token: str
    transfer_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: TransferStatus = TransferStatus.PENDING
    burn: Optional[BurnMessage] = None
    attestation: Optional[bytes] = None
    burn_tx_hash: Optional[str] = None
    receive_tx_hash: Optional[str] = None
    completed_by_replay: bool = False
    history: List[TransferStatus] = field(default_factory=lambda: [TransferStatus.PENDING])
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def nonce(self) -> Optional[int]:
        return self.burn.nonce if self.burn else None

    @property
    def message(self) -> Optional[bytes]:
        return self.burn.message if self.burn else None

    @property
    def is_completed(self) -> bool:
        return self.status == TransferStatus.COMPLETED

    def advance(self, status: TransferStatus) -> None:
        if _ORDER.index(status) != _ORDER.index(self.status) + 1:
            raise RuntimeError(f"Invalid transfer transition {self.status.value} -> {status.value}")
        if status == TransferStatus.BURNED and self.burn is None:
            raise RuntimeError("Cannot mark a transfer burned without its burn message")
        if status == TransferStatus.ATTESTED and self.attestation is None:
            raise RuntimeError("Cannot mark a transfer attested without an attestation")
        self.status = status
        self.history.append(status)
        self.updated_at = datetime.now(timezone.utc)
