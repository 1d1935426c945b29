"""
Error Classification

Defines the error taxonomy shared by the chain backends, the transaction
lifecycle engine and the cross-domain coordinator.

Only reads are ever retried, and only by the confirmation poller; every error
carries an ``ErrorContext`` telling it whether a failed tick may be retried.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

import httpx

if TYPE_CHECKING:
    from .bridge.models import CrossDomainTransfer


class ErrorCategory(str, Enum):
    """Categories of errors for retry decisions."""

    CONNECTION = "connection"     # Transport / network unreachable
    NETWORK = "network"           # Chain answered a query negatively
    NOT_FOUND = "not_found"       # Not found yet (eventually consistent reads)
    PARSE = "parse"               # Malformed response or configuration
    SIGNING = "signing"           # Key material / signing failure
    TRANSACTION = "transaction"   # Chain rejected the transaction
    TIMEOUT = "timeout"           # Poll budget exhausted
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Additional context about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    retryable: bool = False
    chain: Optional[str] = None
    tx_hash: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class ChainClientError(Exception):
    """Base class for every error raised by txengine."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        chain: Optional[str] = None,
        tx_hash: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = ErrorContext(
            category=self.category,
            retryable=self.retryable,
            chain=chain,
            tx_hash=tx_hash,
            details=details or {},
        )


class ChainConnectionError(ChainClientError, ConnectionError):
    """Transport failure; the read that produced it is safe to retry."""

    category = ErrorCategory.CONNECTION
    retryable = True


class NetworkError(ChainClientError):
    """The chain answered, but negatively (e.g. an account that was never funded)."""

    category = ErrorCategory.NETWORK


class NotFoundError(NetworkError):
    """The object is not visible yet; eventually consistent reads may retry."""

    category = ErrorCategory.NOT_FOUND
    retryable = True


class ParseError(ChainClientError, ValueError):
    """Malformed response or configuration. Indicates a bug or bad input."""

    category = ErrorCategory.PARSE


class SigningError(ChainClientError):
    """Signing with the configured key material failed."""

    category = ErrorCategory.SIGNING


class TransactionError(ChainClientError):
    """The chain rejected the transaction. Never retried automatically."""

    category = ErrorCategory.TRANSACTION

    def __init__(
        self,
        message: str,
        *,
        code: Optional[int] = None,
        codespace: Optional[str] = None,
        raw_log: Optional[str] = None,
        sequence_mismatch: bool = False,
        chain: Optional[str] = None,
        tx_hash: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, chain=chain, tx_hash=tx_hash, details=details)
        self.code = code
        self.codespace = codespace
        self.raw_log = raw_log
        self.sequence_mismatch = sequence_mismatch


class SimulationError(TransactionError):
    """The node refused to simulate the transaction."""


class SimulationMismatchError(ChainClientError):
    """A fee was about to be derived from a simulation of a different payload."""

    category = ErrorCategory.PARSE


class ConfirmationTimeoutError(ChainClientError):
    """
    Polling gave up before a definite answer.

    This is not a failure: the transaction may still be included later.
    """

    category = ErrorCategory.TIMEOUT


class CrossDomainTransferError(ChainClientError):
    """A cross-domain transfer phase failed; the transfer record is attached."""

    category = ErrorCategory.TRANSACTION

    def __init__(
        self,
        message: str,
        transfer: "CrossDomainTransfer",
        cause: Optional[Exception] = None,
        *,
        chain: Optional[str] = None,
        tx_hash: Optional[str] = None,
    ):
        details = {"transfer_id": transfer.transfer_id}
        if transfer.burn_tx_hash:
            details["burn_tx_hash"] = transfer.burn_tx_hash
        super().__init__(message, chain=chain, tx_hash=tx_hash, details=details)
        self.transfer = transfer
        self.cause = cause


def classify_error(error: Exception) -> ErrorContext:
    """
    Classify an exception and return its error context.

    Library errors carry their own context; raw ``httpx`` transport errors are
    treated as connection failures, anything else as unknown and not retryable.
    """
    if isinstance(error, ChainClientError):
        return error.context

    if isinstance(error, (httpx.TransportError, httpx.TimeoutException)):
        return ErrorContext(category=ErrorCategory.CONNECTION, retryable=True)

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status == 404:
            return ErrorContext(category=ErrorCategory.NOT_FOUND, retryable=True)
        if status == 429 or status >= 500:
            return ErrorContext(
                category=ErrorCategory.CONNECTION,
                retryable=True,
                details={"status_code": status},
            )
        return ErrorContext(category=ErrorCategory.NETWORK, details={"status_code": status})

    return ErrorContext(category=ErrorCategory.UNKNOWN, retryable=False)
