"""Timeout policies: bound a whole retry sequence or a single attempt.

Manifesto:
    A retry budget without a time bound can keep a caller waiting for
    minutes:
    - **OVERALL** bounds everything underneath it, back-off waits included.
      When it fires the retry budget is abandoned.
    - **PER_ATTEMPT** bounds one try. Its ``TimeoutExpired`` is an ordinary
      failure to the retry policy above it (timeouts are transient), so the
      next attempt may still succeed.
    - **Nested deadlines:** the shortest enclosing deadline wins.

Architecture:
    ::

        Async executions:
        ┌────────────────────────────────────────────────────────────────┐
        │ async with asyncio.timeout(seconds):                           │
        │     result = await inner()                                     │
        │ - cancels the awaiting task at its suspension point            │
        │ - TimeoutError → Err(TimeoutExpired, TIMEOUT)                  │
        └────────────────────────────────────────────────────────────────┘

        Blocking executions (no worker threads):
        ┌────────────────────────────────────────────────────────────────┐
        │ ctx.push_deadline(seconds)                                     │
        │ result = inner()                                               │
        │ - back-off waits stop at the deadline (ctx.wait)               │
        │ - operations may call ctx.check_deadline() / ctx.remaining()   │
        │ - an outcome that arrives after the deadline is discarded and  │
        │   replaced by Err(TimeoutExpired, TIMEOUT)                     │
        └────────────────────────────────────────────────────────────────┘

Examples:
    >>> from policywrap.execution.timeout import TimeoutPolicy, TimeoutScope
    >>> TimeoutPolicy(72.0, TimeoutScope.OVERALL).name
    'timeout_overall_72s'
    >>> TimeoutPolicy(0.5, TimeoutScope.PER_ATTEMPT).name
    'timeout_per_attempt_0.5s'

Tags:
    timeout, deadline, asyncio, cancellation, policywrap

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from policywrap.core.errors import FailureKind
from policywrap.core.logging import get_logger
from policywrap.core.result import Err, Result
from policywrap.execution.context import DeadlineContext, PolicyContext

logger = get_logger(__name__)


class TimeoutScope(str, Enum):
    """What a timeout bounds."""

    OVERALL = "overall"
    PER_ATTEMPT = "per_attempt"


@dataclass(frozen=True)
class TimeoutPolicy:
    """Bound the execution of everything nested inside this policy."""

    seconds: float
    scope: TimeoutScope = TimeoutScope.OVERALL

    def __post_init__(self) -> None:
        if self.seconds <= 0:
            raise ValueError("Timeout seconds must be > 0")

    @property
    def nesting_order(self) -> int:
        return 20 if self.scope is TimeoutScope.OVERALL else 40

    @property
    def name(self) -> str:
        return f"timeout_{self.scope.value}_{self.seconds:g}s"

    def _expired(self, deadline: DeadlineContext) -> Err[Any]:
        error = deadline.expired_error()
        logger.warning(
            "timeout_expired",
            scope=self.scope.value,
            timeout=self.seconds,
            elapsed=round(deadline.elapsed, 3),
        )
        return Err(error, FailureKind.TIMEOUT)

    def _settle(self, deadline: DeadlineContext, result: Result[Any]) -> Result[Any]:
        """Discard an outcome that arrived after the deadline."""
        if not deadline.is_expired():
            return result
        if result.is_err() and result.kind is FailureKind.TIMEOUT:
            return result
        return self._expired(deadline)

    def execute(self, ctx: PolicyContext, call: Callable[[], Result[Any]]) -> Result[Any]:
        deadline = ctx.push_deadline(self.seconds, self.scope.value)
        try:
            result = call()
        finally:
            ctx.pop_deadline(deadline)
        return self._settle(deadline, result)

    async def execute_async(
        self, ctx: PolicyContext, call: Callable[[], Awaitable[Result[Any]]]
    ) -> Result[Any]:
        deadline = ctx.push_deadline(self.seconds, self.scope.value)
        try:
            async with asyncio.timeout(max(deadline.remaining(), 0.0)):
                result = await call()
        except TimeoutError:
            return self._expired(deadline)
        finally:
            ctx.pop_deadline(deadline)
        # A blocking call never reaches a suspension point, so asyncio.timeout
        # cannot interrupt it.
        return self._settle(deadline, result)


__all__ = ["TimeoutPolicy", "TimeoutScope"]
