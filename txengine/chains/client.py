"""
Chain client facade.

Wires one network's backend and signer to the shared lifecycle engine
(account state, fee estimation, submission and confirmation polling).
"""

import logging
from typing import Any, List, Optional

from ..config import ChainConfig, ChainFamily, settings
from ..core.errors import ConfirmationTimeoutError, TransactionError
from ..core.execution.account_state import AccountStateTracker
from ..core.execution.fee_estimator import FeeEstimator, GasPriceRegistry
from ..core.execution.models import Fee, PendingTransaction, PollOutcome, TransactionOutcome
from ..core.execution.poller import ConfirmationPoller
from ..core.execution.submitter import TransactionSubmitter
from ..logging_config import chain_context
from .base import ChainBackend, TransactionSigner


logger = logging.getLogger(__name__)


class ChainClient:
    """Submits and confirms transactions on one configured network."""

    def __init__(
        self,
        config: ChainConfig,
        backend: ChainBackend,
        signer: TransactionSigner,
        tracker: Optional[AccountStateTracker] = None,
        estimator: Optional[FeeEstimator] = None,
        poller: Optional[ConfirmationPoller] = None,
    ):
        self.config = config
        self.backend = backend
        self.signer = signer
        self.poller = poller or ConfirmationPoller()
        self.estimator = estimator or FeeEstimator()
        self.tracker = tracker or AccountStateTracker(backend, chain=config.name)
        self.submitter = TransactionSubmitter(
            config,
            backend,
            signer,
            tracker=self.tracker,
            estimator=self.estimator,
            poller=self.poller,
        )

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def address(self) -> str:
        return self.signer.address

    async def submit(self, messages: List[Any], memo: str = "", fee: Optional[Fee] = None) -> PendingTransaction:
        return await self.submitter.submit(messages, memo, fee)

    async def submit_and_confirm(
        self,
        messages: List[Any],
        memo: str = "",
        fee: Optional[Fee] = None,
    ) -> PollOutcome[TransactionOutcome]:
        """Broadcast and poll; the outcome may be ``TIMED_OUT``."""
        return await self.submitter.submit_and_confirm(messages, memo, fee)

    async def execute(self, messages: List[Any], memo: str = "", fee: Optional[Fee] = None) -> TransactionOutcome:
        """
        Broadcast and wait for a definite successful result.

        Raises:
            TransactionError: rejected at broadcast or failed in a block
            ConfirmationTimeoutError: still unknown when polling gave up; the
                transaction may be included later
        """
        with chain_context(self.name, self.address):
            pending = await self.submitter.submit(messages, memo, fee)
            return await self.wait_for_success(pending.tx_hash)

    async def wait_for_success(self, tx_hash: str) -> TransactionOutcome:
        outcome = await self.poll_for_tx(tx_hash)

        if outcome.timed_out:
            raise ConfirmationTimeoutError(
                f"Transaction {tx_hash} not confirmed on {self.name} "
                f"after {outcome.attempts} attempts",
                chain=self.name,
                tx_hash=tx_hash,
            )
        if outcome.failed:
            included = outcome.payload
            raise TransactionError(
                f"Transaction {tx_hash} failed on {self.name}: {outcome.reason}",
                code=included.code if included else None,
                raw_log=included.raw_log if included else outcome.reason,
                chain=self.name,
                tx_hash=tx_hash,
            )
        return outcome.payload

    async def query_balance(self, denom: Optional[str] = None, address: Optional[str] = None) -> int:
        return await self.backend.query_balance(address or self.address, denom or self.config.denom)

    async def poll_for_tx(
        self,
        tx_hash: str,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> PollOutcome[TransactionOutcome]:
        return await self.submitter.confirm(tx_hash, interval=interval, timeout=timeout)

    async def poll_until_expected_balance(
        self,
        address: str,
        min_amount: int,
        denom: Optional[str] = None,
        interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> PollOutcome[int]:
        return await self.poller.wait_for_balance(
            self.backend.query_balance,
            address,
            denom or self.config.denom,
            min_amount,
            interval=interval or settings.balance_poll_interval_seconds,
            max_attempts=max_attempts or settings.balance_poll_max_attempts,
        )

    async def close(self) -> None:
        await self.backend.close()
        await self.estimator.close()

    async def __aenter__(self) -> "ChainClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def build_chain_client(config: ChainConfig) -> ChainClient:
    """Create the backend, signer and client matching ``config.family``."""
    # Family modules subclass ChainClient, so they are imported here
    if config.family == ChainFamily.COSMOS:
        from .cosmos.client import CosmosChainClient, CosmosRestBackend
        from .cosmos.signer import CosmosSigner

        registry = GasPriceRegistry() if config.gas_price is None else None
        return CosmosChainClient(
            config,
            CosmosRestBackend(config.name, config.endpoint_url, denom=config.denom),
            CosmosSigner(config),
            estimator=FeeEstimator(registry=registry),
        )

    if config.family == ChainFamily.EVM:
        from .evm.client import EvmChainClient, EvmRpcBackend
        from .evm.signer import EvmSigner

        return EvmChainClient(
            config,
            EvmRpcBackend(config.name, config.endpoint_url),
            EvmSigner(config),
        )

    if config.family == ChainFamily.SOLANA:
        from .solana.client import SolanaChainClient, SolanaRpcBackend
        from .solana.signer import SolanaSigner

        backend = SolanaRpcBackend(config.name, config.endpoint_url)
        return SolanaChainClient(
            config,
            backend,
            SolanaSigner(config, blockhash_source=backend.latest_blockhash),
        )

    raise ValueError(f"Unsupported chain family: {config.family}")
