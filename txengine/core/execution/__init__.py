"""
Transaction Lifecycle Engine

Everything between "here are some messages" and "this is what happened":
- AccountStateTracker: per-signer account number and sequence reservation
- FeeEstimator: fee and gas limit from a dry-run simulation
- TransactionSubmitter: simulate, sign and broadcast one attempt
- ConfirmationPoller: bounded polling for inclusion and other conditions

Usage:
    from txengine.core.execution import TransactionSubmitter

    submitter = TransactionSubmitter(config, backend, signer)
    outcome = await submitter.submit_and_confirm([message])
    if outcome.timed_out:
        ...  # still unknown, not failed
"""

from .models import (
    Coin,
    AccountState,
    SimulationResult,
    FeeParams,
    Fee,
    UnsignedTransaction,
    SignedTransaction,
    BroadcastAck,
    PendingTransaction,
    Event,
    TransactionOutcome,
    PollStatus,
    PollOutcome,
    SubmissionStage,
    SubmissionAttempt,
)

from .account_state import (
    AccountStateTracker,
)

from .fee_estimator import (
    DEFAULT_SIMULATED_GAS,
    FeeEstimator,
    GasPriceRegistry,
)

from .poller import (
    CheckResult,
    Clock,
    ConfirmationPoller,
    SystemClock,
)

from .submitter import (
    TransactionSubmitter,
)

__all__ = [
    # Models
    "Coin",
    "AccountState",
    "SimulationResult",
    "FeeParams",
    "Fee",
    "UnsignedTransaction",
    "SignedTransaction",
    "BroadcastAck",
    "PendingTransaction",
    "Event",
    "TransactionOutcome",
    "PollStatus",
    "PollOutcome",
    "SubmissionStage",
    "SubmissionAttempt",
    # Account state
    "AccountStateTracker",
    # Fees
    "DEFAULT_SIMULATED_GAS",
    "FeeEstimator",
    "GasPriceRegistry",
    # Polling
    "Clock",
    "SystemClock",
    "CheckResult",
    "ConfirmationPoller",
    # Submission
    "TransactionSubmitter",
]
