"""Call-scoped context passed through a policy chain.

One ``PolicyContext`` lives for exactly one execution. Policies use it to
share what they learn on the way down and up the chain:

- the timeout policies push ``DeadlineContext`` entries, so back-off waits and
  the operation itself can see how much time is left;
- the circuit-breaker policy attaches its breaker, so the retry loop can
  report every attempt to it and stop as soon as the circuit opens;
- the attempt boundary appends an ``ExecutionAttempt`` for every try.

Operations that accept the context (``executor.execute(op, context=ctx)``)
can read ``remaining()`` to bound their own driver calls and call
``check_deadline()`` at safe points. Callers can also stash cross-cutting
values in ``items``.

Example:
    >>> ctx = PolicyContext(operation="orders.load")
    >>> ctx.items["tenant"] = "acme"
    >>> ctx.remaining() is None
    True

Tags:
    policywrap, execution, context, deadline, attempts

Doc-Types:
    api-reference
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from policywrap.core.errors import TimeoutExpired

if TYPE_CHECKING:
    from policywrap.core.result import Result
    from policywrap.execution.circuit_breaker import CircuitBreaker


@dataclass
class DeadlineContext:
    """Context for tracking deadline state.

    Attributes:
        deadline: Absolute deadline timestamp (monotonic clock)
        timeout_seconds: Original timeout value in seconds
        operation: Name of the scope that owns the deadline
        start_time: When the deadline context started
    """

    deadline: float
    timeout_seconds: float
    operation: str = "operation"
    start_time: float = field(default_factory=time.monotonic)

    def remaining(self) -> float:
        """Remaining time until deadline in seconds (negative once expired)."""
        return self.deadline - time.monotonic()

    @property
    def elapsed(self) -> float:
        """Elapsed time since start in seconds."""
        return time.monotonic() - self.start_time

    def is_expired(self) -> bool:
        """True if deadline has passed."""
        return time.monotonic() >= self.deadline

    def expired_error(self) -> TimeoutExpired:
        return TimeoutExpired(
            timeout=self.timeout_seconds,
            elapsed=self.elapsed,
            operation=self.operation,
        )


@dataclass
class ExecutionAttempt:
    """One try of the wrapped operation."""

    number: int
    started_at: float = field(default_factory=time.monotonic)
    finished_at: float | None = None
    outcome: str | None = None

    @property
    def duration(self) -> float | None:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def finish(self, result: Result[Any]) -> None:
        self.finished_at = time.monotonic()
        self.outcome = "ok" if result.is_ok() else result.kind.value

    def cancel(self) -> None:
        self.finished_at = time.monotonic()
        self.outcome = "cancelled"


@dataclass
class PolicyContext:
    """Mutable state for a single execution of a policy chain.

    Attributes:
        operation: Logical name of the wrapped operation (for logs)
        correlation_id: Identifier bound into every log event of the call
        items: Free-form values shared between the caller and its operation
        attempts: Every try made during this execution
    """

    operation: str = "operation"
    correlation_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    items: dict[str, Any] = field(default_factory=dict)
    attempts: list[ExecutionAttempt] = field(default_factory=list)
    _deadlines: list[DeadlineContext] = field(default_factory=list, repr=False)
    _breaker: CircuitBreaker | None = field(default=None, repr=False)
    _reported: int = field(default=0, repr=False)

    # ── Attempts ─────────────────────────────────────────────────

    def begin(self) -> None:
        """Clear per-execution bookkeeping; ``items`` are kept."""
        self.attempts.clear()
        self._deadlines.clear()
        self._breaker = None
        self._reported = 0

    def start_attempt(self) -> ExecutionAttempt:
        attempt = ExecutionAttempt(number=len(self.attempts) + 1)
        self.attempts.append(attempt)
        return attempt

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    # ── Deadlines ────────────────────────────────────────────────

    def push_deadline(self, seconds: float, operation: str) -> DeadlineContext:
        """Open a deadline scope; the shortest enclosing deadline wins."""
        now = time.monotonic()
        effective = seconds
        current = self.current_deadline()
        if current is not None:
            effective = min(seconds, current.remaining())
        ctx = DeadlineContext(
            deadline=now + effective,
            timeout_seconds=seconds,
            operation=operation,
            start_time=now,
        )
        self._deadlines.append(ctx)
        return ctx

    def pop_deadline(self, ctx: DeadlineContext) -> None:
        self._deadlines.remove(ctx)

    def current_deadline(self) -> DeadlineContext | None:
        """The deadline that expires first, if any."""
        if not self._deadlines:
            return None
        return min(self._deadlines, key=lambda d: d.deadline)

    def remaining(self) -> float | None:
        """Seconds left before the nearest deadline, or None without one."""
        current = self.current_deadline()
        if current is None:
            return None
        return current.remaining()

    def check_deadline(self) -> None:
        """Raise TimeoutExpired if the nearest deadline has passed.

        Blocking operations call this at safe points; nothing is raised
        outside a timeout scope.
        """
        error = self.expired()
        if error is not None:
            raise error

    def expired(self) -> TimeoutExpired | None:
        """TimeoutExpired of the nearest deadline if it has passed, else None."""
        current = self.current_deadline()
        if current is not None and current.is_expired():
            return current.expired_error()
        return None

    def wait(self, seconds: float) -> TimeoutExpired | None:
        """Block for a back-off wait, cut short at the nearest deadline.

        Returns the TimeoutExpired of the deadline that cut the wait, else None.
        """
        current = self.current_deadline()
        if current is None:
            time.sleep(seconds)
            return None
        remaining = current.remaining()
        if remaining <= seconds:
            time.sleep(max(remaining, 0.0))
            return current.expired_error()
        time.sleep(seconds)
        return None

    # ── Circuit breaker hook ─────────────────────────────────────

    def attach_breaker(self, breaker: CircuitBreaker) -> None:
        self._breaker = breaker
        self._reported = 0

    def detach_breaker(self) -> int:
        """Detach the breaker; returns how many attempts were reported to it."""
        reported = self._reported
        self._breaker = None
        self._reported = 0
        return reported

    def report_attempt(self, result: Result[Any]) -> Result[Any] | None:
        """Feed one attempt outcome to the enclosing circuit breaker, if any.

        Returns Err(CircuitOpenError) chained to the failure when this report
        opened the circuit, else None.
        """
        if self._breaker is None:
            return None
        self._reported += 1
        if self._breaker.record(result):
            return self._breaker.rejection(cause=result.error)
        return None

    def admit_attempt(self) -> Result[Any] | None:
        """Ask the enclosing breaker whether another attempt may start.

        Returns Err(CircuitOpenError) when it may not, else None.
        """
        if self._breaker is None:
            return None
        return self._breaker.admit()


__all__ = ["DeadlineContext", "ExecutionAttempt", "PolicyContext"]
