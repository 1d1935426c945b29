"""
Generic bounded polling against eventually consistent ledgers.

A single loop serves every "has this happened yet" question: transaction
inclusion, balance thresholds, contract state predicates and attestation
availability. Each call owns its own timer and attempt counter.

Timing: tick ``k`` runs at ``start + k * interval`` (the first tick is
immediate). Polling stops the moment a check reports a terminal result, and
gives up with ``TIMED_OUT`` once the next tick would land at or beyond
``start + timeout`` or ``max_attempts`` ticks have run.

``TIMED_OUT`` never means "did not happen": a broadcast transaction keeps
existing on-chain after the caller stops waiting for it.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, Protocol, TypeVar

from ..errors import classify_error
from .models import PollOutcome, PollStatus, TransactionOutcome

T = TypeVar("T")

logger = logging.getLogger(__name__)


class Clock(Protocol):
    def monotonic(self) -> float:
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Wall-clock timing on the running event loop."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


@dataclass(frozen=True)
class CheckResult(Generic[T]):
    """What one tick observed. ``status`` is None while nothing is final yet."""
    status: Optional[PollStatus] = None
    payload: Optional[T] = None
    reason: Optional[str] = None

    @classmethod
    def pending(cls, reason: Optional[str] = None) -> "CheckResult[T]":
        return cls(status=None, reason=reason)

    @classmethod
    def succeeded(cls, payload: Optional[T] = None) -> "CheckResult[T]":
        return cls(status=PollStatus.SUCCEEDED, payload=payload)

    @classmethod
    def failed(cls, reason: str, payload: Optional[T] = None) -> "CheckResult[T]":
        return cls(status=PollStatus.FAILED, payload=payload, reason=reason)

    @property
    def is_terminal(self) -> bool:
        return self.status is not None


Check = Callable[[], Awaitable[CheckResult[T]]]


class ConfirmationPoller:
    """
    Polls a check until it reports success or failure, or the budget runs out.

    Transient check errors (transport failures, "not found yet") count as
    "not yet"; anything else, e.g. a ``ParseError``, propagates immediately.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or SystemClock()

    async def poll(
        self,
        check: Check[T],
        interval: float,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        label: str = "poll",
    ) -> PollOutcome[T]:
        if interval <= 0:
            raise ValueError("interval must be positive")
        if timeout is None and max_attempts is None:
            raise ValueError("either timeout or max_attempts is required")

        clock = self._clock
        start = clock.monotonic()
        attempts = 0
        last_reason: Optional[str] = None

        while True:
            attempts += 1
            try:
                result = await check()
            except Exception as e:
                if not classify_error(e).retryable:
                    raise
                logger.warning(f"{label} attempt {attempts} failed: {e}")
                result = CheckResult.pending(str(e))

            if result.is_terminal:
                elapsed = clock.monotonic() - start
                logger.info(f"{label} attempt {attempts}: {result.status.value}")
                return PollOutcome(
                    status=result.status,
                    payload=result.payload,
                    reason=result.reason,
                    attempts=attempts,
                    elapsed_seconds=elapsed,
                )

            last_reason = result.reason or last_reason
            logger.debug(f"{label} attempt {attempts}: not yet ({result.reason or 'pending'})")

            next_offset = attempts * interval
            now = clock.monotonic()
            if (
                (max_attempts is not None and attempts >= max_attempts)
                or (timeout is not None and (next_offset >= timeout or now - start >= timeout))
            ):
                elapsed = now - start
                logger.info(f"{label} timed out after {attempts} attempts ({elapsed:.1f}s)")
                return PollOutcome(
                    status=PollStatus.TIMED_OUT,
                    reason=last_reason or f"no terminal result after {attempts} attempts",
                    attempts=attempts,
                    elapsed_seconds=elapsed,
                )

            await clock.sleep(max(0.0, start + next_offset - now))

    async def wait_for_transaction(
        self,
        lookup: Callable[[str], Awaitable[Optional[TransactionOutcome]]],
        tx_hash: str,
        interval: float,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> PollOutcome[TransactionOutcome]:
        """
        Poll a lookup-by-hash until the transaction shows up in a block.

        Included with a non-zero result code is a definite ``FAILED``.
        """

        async def check() -> CheckResult[TransactionOutcome]:
            outcome = await lookup(tx_hash)
            if outcome is None:
                return CheckResult.pending("not found")
            if outcome.success:
                return CheckResult.succeeded(outcome)
            return CheckResult.failed(outcome.raw_log or f"code {outcome.code}", outcome)

        return await self.poll(
            check,
            interval=interval,
            timeout=timeout,
            max_attempts=max_attempts,
            label=f"tx {tx_hash}",
        )

    async def wait_for_balance(
        self,
        query: Callable[[str, str], Awaitable[int]],
        address: str,
        denom: str,
        min_amount: int,
        interval: float,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> PollOutcome[int]:
        """Poll a balance until it reaches ``min_amount``."""
        logger.info(f"Polling {address} balance to exceed {min_amount}{denom}")

        async def check() -> CheckResult[int]:
            balance = await query(address, denom)
            if balance >= min_amount:
                return CheckResult.succeeded(balance)
            return CheckResult.pending(f"current={balance}, target={min_amount}")

        return await self.poll(
            check,
            interval=interval,
            timeout=timeout,
            max_attempts=max_attempts,
            label=f"balance {address}",
        )

    async def wait_for_condition(
        self,
        fetch: Callable[[], Awaitable[Any]],
        predicate: Callable[[Any], bool],
        interval: float,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        label: str = "query",
    ) -> PollOutcome[Any]:
        """Poll an arbitrary read until ``predicate`` holds for its value."""

        async def check() -> CheckResult[Any]:
            value = await fetch()
            if predicate(value):
                return CheckResult.succeeded(value)
            return CheckResult.pending("condition not met")

        return await self.poll(
            check,
            interval=interval,
            timeout=timeout,
            max_attempts=max_attempts,
            label=label,
        )
