"""
Cross-domain transfer coordinator (burn-and-mint, CCTP style).

A transfer runs in three independently retryable phases:

1. burn on the source chain and read the emitted message back
2. poll the attestation service until the message is attested
3. submit the message and attestation on the destination chain

Nothing is atomic across the two chains. A transfer that stops after phase 2
stays ``ATTESTED`` and can be completed later; re-running phase 3 for an
already-consumed message counts as success when the destination's replay
policy recognises the rejection.
"""

from typing import Optional, Protocol, Union

import structlog

from ...config import ReplayPolicy, settings
from ..execution.models import PendingTransaction, PollOutcome, TransactionOutcome
from ..execution.poller import ConfirmationPoller, CheckResult
from ..errors import (
    ChainClientError,
    ConfirmationTimeoutError,
    CrossDomainTransferError,
    TransactionError,
)
from .attestation import AttestationService
from .models import BurnMessage, CrossDomainTransfer, TransferStatus, recipient_bytes32


logger = structlog.stdlib.get_logger(__name__)


class BurnSource(Protocol):
    chain: str
    domain: int

    async def deposit_for_burn(
        self,
        amount: int,
        destination_domain: int,
        mint_recipient: bytes,
        burn_token: str,
    ) -> PendingTransaction:
        ...

    async def confirm(self, tx_hash: str) -> PollOutcome[TransactionOutcome]:
        ...

    def extract_message(self, outcome: TransactionOutcome) -> bytes:
        ...


class MintDestination(Protocol):
    chain: str
    domain: int
    replay_policy: ReplayPolicy

    async def receive_message(self, message: bytes, attestation: bytes) -> PendingTransaction:
        ...

    async def confirm(self, tx_hash: str) -> PollOutcome[TransactionOutcome]:
        ...


class CrossDomainTransferCoordinator:
    """Moves one token between two domains through a burn, an attestation and a mint."""

    def __init__(
        self,
        source: BurnSource,
        destination: MintDestination,
        attestation_service: AttestationService,
        poller: Optional[ConfirmationPoller] = None,
    ):
        self.source = source
        self.destination = destination
        self.attestation_service = attestation_service
        self.poller = poller or ConfirmationPoller()

    async def burn(
        self,
        amount: int,
        mint_recipient: Union[bytes, str],
        burn_token: str,
    ) -> CrossDomainTransfer:
        """
        Phase 1: burn on the source chain.

        Duplicate burns are the caller's responsibility; this method never
        resubmits on its own.

        Raises:
            TransactionError: the burn was rejected or failed in a block
            ConfirmationTimeoutError: the burn was broadcast but not seen in
                time; it may still land. ``details["transfer"]`` can be passed
                to ``resume_burn``
            CrossDomainTransferError: the burn is confirmed but its message
                could not be read; ``transfer`` carries the burn hash
        """
        recipient = recipient_bytes32(mint_recipient) if isinstance(mint_recipient, str) else mint_recipient
        transfer = CrossDomainTransfer(
            source_chain=self.source.chain,
            destination_chain=self.destination.chain,
            source_domain=self.source.domain,
            destination_domain=self.destination.domain,
            amount=amount,
            mint_recipient=recipient,
            burn_token=burn_token,
        )

        with structlog.contextvars.bound_contextvars(transfer_id=transfer.transfer_id):
            pending = await self.source.deposit_for_burn(amount, self.destination.domain, recipient, burn_token)
            transfer.burn_tx_hash = pending.tx_hash
            logger.info("Burn submitted", chain=self.source.chain, tx_hash=pending.tx_hash, amount=amount)

            outcome = await self.source.confirm(pending.tx_hash)
            if outcome.timed_out:
                raise ConfirmationTimeoutError(
                    f"Burn {pending.tx_hash} not confirmed on {self.source.chain}",
                    chain=self.source.chain,
                    tx_hash=pending.tx_hash,
                    details={
                        "transfer_id": transfer.transfer_id,
                        "burn_tx_hash": pending.tx_hash,
                        "transfer": transfer,
                    },
                )
            if outcome.failed:
                raise TransactionError(
                    f"Burn {pending.tx_hash} failed on {self.source.chain}: {outcome.reason}",
                    raw_log=outcome.reason,
                    chain=self.source.chain,
                    tx_hash=pending.tx_hash,
                    details={"transfer_id": transfer.transfer_id},
                )

            self._record_burn(transfer, outcome.payload)
        return transfer

    def _record_burn(self, transfer: CrossDomainTransfer, outcome: TransactionOutcome) -> None:
        # The burn is final on-chain from here
        try:
            transfer.burn = BurnMessage.from_bytes(self.source.extract_message(outcome))
        except ChainClientError as e:
            logger.error("Burn confirmed but message unreadable", tx_hash=transfer.burn_tx_hash, error=e.message)
            raise CrossDomainTransferError(
                f"Burn {transfer.burn_tx_hash} confirmed on {self.source.chain} "
                f"but its message could not be read: {e.message}",
                transfer,
                cause=e,
                chain=self.source.chain,
                tx_hash=transfer.burn_tx_hash,
            ) from e
        transfer.advance(TransferStatus.BURNED)
        logger.info("Burn confirmed", nonce=transfer.nonce, height=outcome.height)

    async def resume_burn(self, transfer: CrossDomainTransfer) -> CrossDomainTransfer:
        """
        Re-read a burn that was broadcast but never recorded (confirmation timed
        out, or its message could not be parsed) from its transaction hash.

        Nothing is resubmitted. A transfer that is not ``PENDING`` or has no
        burn hash is returned unchanged; a burn still not visible leaves it
        ``PENDING``.

        Raises:
            TransactionError: the burn failed in a block
            CrossDomainTransferError: the burn is confirmed but its message is unreadable
        """
        if transfer.status != TransferStatus.PENDING or not transfer.burn_tx_hash:
            return transfer

        with structlog.contextvars.bound_contextvars(transfer_id=transfer.transfer_id):
            outcome = await self.source.confirm(transfer.burn_tx_hash)
            if outcome.timed_out:
                logger.warning("Burn still not visible", tx_hash=transfer.burn_tx_hash, attempts=outcome.attempts)
                return transfer
            if outcome.failed:
                raise TransactionError(
                    f"Burn {transfer.burn_tx_hash} failed on {self.source.chain}: {outcome.reason}",
                    raw_log=outcome.reason,
                    chain=self.source.chain,
                    tx_hash=transfer.burn_tx_hash,
                    details={"transfer_id": transfer.transfer_id},
                )
            self._record_burn(transfer, outcome.payload)
        return transfer

    async def await_attestation(
        self,
        transfer: CrossDomainTransfer,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> CrossDomainTransfer:
        """
        Phase 2: poll for the attestation.

        On timeout the transfer stays ``BURNED`` and this can simply be called again.
        """
        if transfer.status != TransferStatus.BURNED:
            return transfer

        message = transfer.message

        async def check() -> CheckResult[bytes]:
            attestation = await self.attestation_service.get_attestation(message)
            if attestation:
                return CheckResult.succeeded(attestation)
            return CheckResult.pending("not attested yet")

        with structlog.contextvars.bound_contextvars(transfer_id=transfer.transfer_id):
            outcome = await self.poller.poll(
                check,
                interval=interval or settings.attestation_poll_interval_seconds,
                timeout=timeout or settings.attestation_poll_timeout_seconds,
                label=f"attestation nonce={transfer.nonce}",
            )
            if not outcome.succeeded:
                logger.warning("Attestation not available", attempts=outcome.attempts, reason=outcome.reason)
                return transfer

            transfer.attestation = outcome.payload
            transfer.advance(TransferStatus.ATTESTED)
            logger.info("Message attested", attempts=outcome.attempts)
        return transfer

    def _complete_by_replay(self, transfer: CrossDomainTransfer, reason: Optional[str]) -> CrossDomainTransfer:
        transfer.completed_by_replay = True
        transfer.advance(TransferStatus.COMPLETED)
        logger.info("Message already received on destination", chain=self.destination.chain, reason=reason)
        return transfer

    async def complete(self, transfer: CrossDomainTransfer) -> CrossDomainTransfer:
        """
        Phase 3: receive the attested message on the destination chain.

        A destination timeout leaves the transfer ``ATTESTED``.

        Raises:
            CrossDomainTransferError: the receive failed for a reason other than
                replay; the transfer is still ``ATTESTED``
        """
        if transfer.status != TransferStatus.ATTESTED:
            return transfer

        policy = self.destination.replay_policy
        with structlog.contextvars.bound_contextvars(transfer_id=transfer.transfer_id):
            try:
                pending = await self.destination.receive_message(transfer.message, transfer.attestation)
            except TransactionError as e:
                if policy.matches(e.raw_log) or policy.matches(e.message):
                    return self._complete_by_replay(transfer, e.raw_log)
                raise CrossDomainTransferError(
                    f"Receive rejected on {self.destination.chain}: {e.message}", transfer, cause=e
                ) from e
            except ChainClientError as e:
                raise CrossDomainTransferError(
                    f"Receive failed on {self.destination.chain}: {e.message}", transfer, cause=e
                ) from e

            transfer.receive_tx_hash = pending.tx_hash
            logger.info("Receive submitted", chain=self.destination.chain, tx_hash=pending.tx_hash)

            outcome = await self.destination.confirm(pending.tx_hash)
            if outcome.timed_out:
                logger.warning("Receive not confirmed yet", tx_hash=pending.tx_hash, attempts=outcome.attempts)
                return transfer
            if outcome.failed:
                if policy.matches(outcome.reason):
                    return self._complete_by_replay(transfer, outcome.reason)
                raise CrossDomainTransferError(
                    f"Receive {pending.tx_hash} failed on {self.destination.chain}: {outcome.reason}",
                    transfer,
                )

            transfer.advance(TransferStatus.COMPLETED)
            logger.info("Transfer completed", tx_hash=pending.tx_hash)
        return transfer

    async def transfer(
        self,
        amount: int,
        mint_recipient: Union[bytes, str],
        burn_token: str,
        attestation_interval: Optional[float] = None,
        attestation_timeout: Optional[float] = None,
    ) -> CrossDomainTransfer:
        """Run all three phases and return the transfer in the furthest state reached."""
        transfer = await self.burn(amount, mint_recipient, burn_token)
        await self.await_attestation(transfer, interval=attestation_interval, timeout=attestation_timeout)
        if transfer.status == TransferStatus.ATTESTED:
            await self.complete(transfer)
        return transfer
