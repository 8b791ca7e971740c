"""Retry policy with exponential back-off.

Attempts an operation up to ``max_attempts`` times. After attempt *i* fails
with a failure the classifier calls transient, and while *i < max_attempts*,
the policy waits ``backoff.next_delay(i)`` and tries again. Non-transient
failures and the last failure of an exhausted budget are returned untouched.

Every attempt outcome is reported to the circuit breaker of the enclosing
chain (if any). The loop stops as soon as the breaker opens or refuses the
next attempt, returning ``CircuitOpenError`` chained to the failure that
tripped it; no further back-off is waited.

Example:
    >>> from policywrap.execution.retry import ExponentialBackoff
    >>>
    >>> strategy = ExponentialBackoff(unit=1.0, base=2.0)
    >>> [strategy.next_delay(i) for i in range(1, 6)]
    [2.0, 4.0, 8.0, 16.0, 32.0]
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, ClassVar

from policywrap.core.errors import FailureKind
from policywrap.core.logging import get_logger
from policywrap.core.result import Err, Result
from policywrap.execution.classifiers import ErrorClassifier
from policywrap.execution.context import PolicyContext

logger = get_logger(__name__)


class RetryStrategy(ABC):
    """Abstract base for back-off strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Calculate delay before the next attempt.

        Args:
            attempt: One-based number of the attempt that just failed

        Returns:
            Delay in seconds before next attempt
        """
        ...


@dataclass(frozen=True)
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(unit * (base ** attempt), max_delay) + jitter

    Attributes:
        unit: Length of one time unit in seconds
        base: Exponential base (default: 2)
        max_delay: Optional cap in seconds
        jitter: Add randomness to prevent thundering herd
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
    """

    unit: float = 1.0
    base: float = 2.0
    max_delay: float | None = None
    jitter: bool = False
    jitter_range: float = 0.25

    def next_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay."""
        delay = self.unit * (self.base ** attempt)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)

        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
            delay = max(0, delay)  # Ensure non-negative

        return delay


@dataclass(frozen=True)
class ConstantBackoff(RetryStrategy):
    """Constant delay between retries."""

    delay: float = 1.0

    def next_delay(self, attempt: int) -> float:
        """Return constant delay."""
        return self.delay


@dataclass(frozen=True)
class RetryPolicy:
    """Retry transient failures with back-off.

    Attributes:
        max_attempts: Tries per execution, first try included
        backoff: Strategy producing the wait after each failed attempt
        classifier: Decides which failures are retried
    """

    max_attempts: int
    backoff: RetryStrategy
    classifier: ErrorClassifier
    nesting_order: ClassVar[int] = 30

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @property
    def name(self) -> str:
        return f"retry_{self.max_attempts}"

    def _settle(self, ctx: PolicyContext, attempt: int, result: Result[Any]) -> Result[Any] | None:
        """Final result of the loop after this attempt, or None to retry."""
        opened = ctx.report_attempt(result)
        if result.is_ok():
            return result
        if opened is not None:
            logger.warning(
                "retry_abandoned",
                attempt=attempt,
                reason="circuit_open",
                error=repr(result.error),
            )
            return opened
        if not self.classifier.is_transient(result.error):
            return result
        if attempt >= self.max_attempts:
            logger.warning(
                "retry_exhausted",
                attempts=attempt,
                error=repr(result.error),
            )
            return result
        return None

    def _scheduled(self, attempt: int, result: Result[Any]) -> float:
        delay = self.backoff.next_delay(attempt)
        logger.info(
            "retry_scheduled",
            attempt=attempt,
            max_attempts=self.max_attempts,
            delay=round(delay, 3),
            kind=result.kind.value,
            error=repr(result.error),
        )
        return delay

    def execute(self, ctx: PolicyContext, call: Callable[[], Result[Any]]) -> Result[Any]:
        attempt = 0
        while True:
            attempt += 1
            if attempt > 1:
                rejected = ctx.admit_attempt()
                if rejected is not None:
                    return rejected

            result = call()
            # An enclosing deadline passed mid-attempt: the attempt counts as
            # cancelled and is not reported.
            expired = ctx.expired()
            if expired is not None:
                return Err(expired, FailureKind.TIMEOUT)

            final = self._settle(ctx, attempt, result)
            if final is not None:
                return final

            expired = ctx.wait(self._scheduled(attempt, result))
            if expired is not None:
                return Err(expired, FailureKind.TIMEOUT)

    async def execute_async(
        self, ctx: PolicyContext, call: Callable[[], Awaitable[Result[Any]]]
    ) -> Result[Any]:
        attempt = 0
        while True:
            attempt += 1
            if attempt > 1:
                rejected = ctx.admit_attempt()
                if rejected is not None:
                    return rejected

            result = await call()
            # A blocking operation can run past an enclosing deadline without
            # being cancelled.
            expired = ctx.expired()
            if expired is not None:
                return Err(expired, FailureKind.TIMEOUT)

            final = self._settle(ctx, attempt, result)
            if final is not None:
                return final

            await asyncio.sleep(self._scheduled(attempt, result))


__all__ = [
    "ConstantBackoff",
    "ExponentialBackoff",
    "RetryPolicy",
    "RetryStrategy",
]
