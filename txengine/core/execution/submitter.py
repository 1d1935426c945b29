"""
Transaction submitter.

Handles one submission attempt end to end:
- Simulation (dry run)
- Fee computation
- Sequence reservation
- Signing
- Broadcast
- Confirmation via the poller (optional)

Nothing here retries implicitly. Simulation and broadcast failures reach the
caller with full context so it can decide deliberately whether to adjust fee
or gas and try again.
"""

import logging
from typing import TYPE_CHECKING, Any, List, Optional

from ...config import ChainConfig, settings
from ..errors import (
    ChainClientError,
    ChainConnectionError,
    SigningError,
    SimulationMismatchError,
    TransactionError,
)
from .account_state import AccountStateTracker
from .fee_estimator import FeeEstimator
from .models import (
    AccountState,
    Fee,
    PendingTransaction,
    PollOutcome,
    SimulationResult,
    SubmissionAttempt,
    SubmissionStage,
    TransactionOutcome,
)
from .poller import ConfirmationPoller

if TYPE_CHECKING:
    from ...chains.base import ChainBackend, TransactionSigner


logger = logging.getLogger(__name__)


class TransactionSubmitter:
    """
    Assembles, signs and broadcasts transactions for one chain.

    Written once against the capability interfaces in ``txengine.chains.base``;
    the backend and signer supply everything chain-specific.
    """

    def __init__(
        self,
        config: ChainConfig,
        backend: "ChainBackend",
        signer: "TransactionSigner",
        tracker: Optional[AccountStateTracker] = None,
        estimator: Optional[FeeEstimator] = None,
        poller: Optional[ConfirmationPoller] = None,
    ):
        self.config = config
        self.backend = backend
        self.signer = signer
        self.tracker = tracker or AccountStateTracker(backend, chain=config.name)
        self.estimator = estimator or FeeEstimator()
        self.poller = poller or ConfirmationPoller()

    @property
    def address(self) -> str:
        return self.signer.address

    async def simulate(self, attempt: SubmissionAttempt, account: AccountState) -> SimulationResult:
        """``Built -> Simulated``. Transport failures surface as ``ChainConnectionError``."""
        simulation = await self.backend.simulate(attempt.unsigned, account)
        if simulation.payload_digest and simulation.payload_digest != attempt.unsigned.payload_digest:
            raise SimulationMismatchError(
                "Simulation result belongs to a different payload",
                chain=self.config.name,
            )
        attempt.simulation = simulation
        attempt.advance(SubmissionStage.SIMULATED)
        logger.debug(
            f"Simulated tx on {self.config.name}: gas_used={simulation.gas_used}, "
            f"gas_wanted={simulation.gas_wanted}"
        )
        return simulation

    async def compute_fee(self, attempt: SubmissionAttempt) -> Fee:
        """``Simulated -> FeeComputed``."""
        simulation = attempt.simulation
        if simulation is None or simulation.payload_digest not in ("", attempt.unsigned.payload_digest):
            raise SimulationMismatchError(
                "Refusing to compute a fee without a simulation of this payload",
                chain=self.config.name,
            )
        params = await self.estimator.params_for(self.config, self.backend)
        fee = self.estimator.estimate(simulation, params)
        attempt.fee = fee
        attempt.advance(SubmissionStage.FEE_COMPUTED)
        return fee

    async def sign(self, attempt: SubmissionAttempt, account: AccountState) -> None:
        """
        ``FeeComputed -> Signed``.

        A failed sign hands its reserved sequence back so no gap is stranded.
        """
        sequence: Optional[int] = None
        if self.config.uses_sequence:
            sequence = await self.tracker.reserve_sequence(self.address)
        attempt.sequence = sequence

        try:
            signed = await self.signer.sign(attempt.unsigned, attempt.fee, account, sequence)
        except ChainClientError:
            await self._release(sequence)
            raise
        except Exception as e:
            await self._release(sequence)
            raise SigningError(f"Failed to sign tx with configured signer: {e}", chain=self.config.name) from e

        attempt.signed = signed
        attempt.advance(SubmissionStage.SIGNED)

    async def broadcast(self, attempt: SubmissionAttempt) -> PendingTransaction:
        """
        ``Signed -> Broadcast -> {Accepted | Rejected}``.

        Rejections are not retried: identical contents would be rejected again.
        """
        signed = attempt.signed
        attempt.advance(SubmissionStage.BROADCAST)
        try:
            ack = await self.backend.broadcast(signed)
        except TransactionError as e:
            attempt.advance(SubmissionStage.REJECTED)
            logger.error(f"Broadcast rejected on {self.config.name}: {e}")
            if e.sequence_mismatch:
                await self._abandon(attempt.sequence)
                await self.tracker.resync(self.address)
            else:
                await self._release(attempt.sequence)
            raise
        except ChainConnectionError:
            # The bytes may or may not have reached a mempool; trust the chain next time
            await self._abandon(attempt.sequence)
            self.tracker.invalidate(self.address)
            raise

        attempt.ack = ack
        attempt.advance(SubmissionStage.ACCEPTED)
        if attempt.sequence is not None:
            await self.tracker.confirm_sequence(self.address, attempt.sequence)

        logger.info(
            f"Transaction submitted on {self.config.name}: {ack.tx_hash} "
            f"(sequence={attempt.sequence}, gas_limit={signed.fee.gas_limit}, fee={signed.fee.amount})"
        )
        return PendingTransaction(
            chain=self.config.name,
            tx_hash=ack.tx_hash or signed.tx_hash,
            raw=signed.raw,
            sequence=attempt.sequence,
            fee=signed.fee,
        )

    async def _release(self, sequence: Optional[int]) -> None:
        if sequence is not None:
            await self.tracker.release_sequence(self.address, sequence)

    async def _abandon(self, sequence: Optional[int]) -> None:
        if sequence is not None:
            await self.tracker.abandon_sequence(self.address, sequence)

    async def prepare(
        self,
        messages: List[Any],
        memo: str = "",
        fee: Optional[Fee] = None,
    ) -> SubmissionAttempt:
        """Run an attempt up to the ``Signed`` stage."""
        unsigned = self.signer.build(messages, memo)
        attempt = SubmissionAttempt(chain=self.config.name, unsigned=unsigned)
        account = await self.tracker.resolve(self.address)

        if fee is None:
            await self.simulate(attempt, account)
            await self.compute_fee(attempt)
        else:
            attempt.fee = fee
            attempt.advance(SubmissionStage.FEE_COMPUTED)

        await self.sign(attempt, account)
        return attempt

    async def submit(
        self,
        messages: List[Any],
        memo: str = "",
        fee: Optional[Fee] = None,
    ) -> PendingTransaction:
        """
        Simulate, sign and broadcast.

        Args:
            messages: chain-family messages (Cosmos ``Any``, EVM ``EvmCall``, Solana instructions)
            memo: optional memo (ignored where unsupported)
            fee: explicit fee; skips simulation when given

        Returns:
            PendingTransaction accepted by the node's mempool
        """
        attempt = await self.prepare(messages, memo, fee)
        return await self.broadcast(attempt)

    async def confirm(
        self,
        tx_hash: str,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> PollOutcome[TransactionOutcome]:
        """Poll until the transaction is included or the budget runs out."""
        return await self.poller.wait_for_transaction(
            self.backend.lookup_by_hash,
            tx_hash,
            interval=interval or self.config.poll_interval_seconds or settings.tx_poll_interval_seconds,
            timeout=timeout or self.config.poll_timeout_seconds or settings.tx_poll_timeout_seconds,
        )

    async def submit_and_confirm(
        self,
        messages: List[Any],
        memo: str = "",
        fee: Optional[Fee] = None,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> PollOutcome[TransactionOutcome]:
        pending = await self.submit(messages, memo, fee)
        return await self.confirm(pending.tx_hash, interval=interval, timeout=timeout)
