"""Circuit breaker pattern for fault tolerance.

Prevents cascading failures by failing fast when a downstream database keeps
returning the same kind of transient failure.

States:
    CLOSED: Normal operation, requests pass through
    OPEN: Failing fast, requests rejected immediately
    HALF_OPEN: One trial call allowed through to test recovery

Transitions:
    ::

        CLOSED ──(threshold consecutive same-class failures)──► OPEN
        OPEN ──(break_duration elapsed, next request)──► HALF_OPEN
        HALF_OPEN ──(trial success)──► CLOSED
        HALF_OPEN ──(trial matching failure)──► OPEN (new open time)
        HALF_OPEN ──(trial non-matching failure)──► HALF_OPEN (slot released)

"Matching" means the classifier calls the failure transient. Consecutive
failures only accumulate while they share a ``failure_key``; a failure of a
different class restarts the count at one, and a non-matching failure or a
success resets it to zero.

Example:
    >>> from policywrap.execution.circuit_breaker import CircuitBreaker
    >>> from policywrap.execution.classifiers import TransientErrorClassifier
    >>>
    >>> breaker = CircuitBreaker(
    ...     name="orders-db",
    ...     failure_threshold=3,
    ...     break_duration=30.0,
    ...     classifier=TransientErrorClassifier(),
    ... )
    >>> breaker.allow_request()
    True
"""

from __future__ import annotations

import threading
import time
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar

from policywrap.core.errors import CircuitOpenError, FailureKind
from policywrap.core.logging import get_logger
from policywrap.core.result import Err, Result
from policywrap.execution.classifiers import (
    ErrorClassifier,
    TransientErrorClassifier,
    failure_key,
)
from policywrap.execution.context import PolicyContext

logger = get_logger(__name__)


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Rejecting requests
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0
    last_failure_time: datetime | None = None
    last_success_time: datetime | None = None
    last_state_change: datetime | None = None

    @property
    def failure_rate(self) -> float:
        """Calculate failure rate as percentage."""
        total = self.successful_requests + self.failed_requests
        if total == 0:
            return 0.0
        return (self.failed_requests / total) * 100


@dataclass
class CircuitBreaker:
    """Circuit breaker for fault tolerance.

    Attributes:
        name: Identifier for this circuit
        failure_threshold: Consecutive same-class failures before opening
        break_duration: Seconds an open circuit rejects calls
        classifier: Decides which failures count
        half_open_max_calls: Concurrent trial calls allowed in half-open state
    """

    name: str = "default"
    failure_threshold: int = 3
    break_duration: float = 30.0
    classifier: ErrorClassifier = field(default_factory=TransientErrorClassifier)
    half_open_max_calls: int = 1

    # Internal state
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _failure_key: Hashable | None = field(default=None, init=False)
    _opened_at: float | None = field(default=None, init=False)
    _half_open_calls: int = field(default=0, init=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)
    _stats: CircuitStats = field(default_factory=CircuitStats, init=False)

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.break_duration <= 0:
            raise ValueError("break_duration must be > 0")

    @property
    def state(self) -> CircuitState:
        """Get current circuit state."""
        with self._lock:
            self._check_state_transition()
            return self._state

    @property
    def stats(self) -> CircuitStats:
        """Get circuit statistics."""
        return self._stats

    @property
    def failure_count(self) -> int:
        """Current consecutive-failure count."""
        with self._lock:
            return self._failure_count

    def remaining(self) -> float:
        """Seconds until an open circuit lets a trial call through (0 if not open)."""
        with self._lock:
            if self._state != CircuitState.OPEN or self._opened_at is None:
                return 0.0
            return max(0.0, self._opened_at + self.break_duration - time.monotonic())

    def _check_state_transition(self) -> None:
        """Check if state should transition based on break duration."""
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            elapsed = time.monotonic() - self._opened_at
            if elapsed >= self.break_duration:
                self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        """Transition to a new state."""
        old_state = self._state
        self._state = new_state
        self._stats.state_changes += 1
        self._stats.last_state_change = utcnow()

        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._failure_key = None
            self._opened_at = None
        elif new_state == CircuitState.OPEN:
            self._opened_at = time.monotonic()
            self._half_open_calls = 0
        elif new_state == CircuitState.HALF_OPEN:
            self._half_open_calls = 0

        logger.info(
            "circuit_state_changed",
            breaker=self.name,
            old_state=old_state.value,
            new_state=new_state.value,
            failure_count=self._failure_count,
        )

    def allow_request(self) -> bool:
        """Check if a request should be allowed.

        Returns:
            True if request can proceed, False if circuit is open
        """
        with self._lock:
            self._check_state_transition()
            self._stats.total_requests += 1

            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                self._stats.rejected_requests += 1
                return False

            # Half-open: allow limited requests
            if self._half_open_calls < self.half_open_max_calls:
                self._half_open_calls += 1
                return True

            self._stats.rejected_requests += 1
            return False

    def rejection(self, cause: BaseException | None = None) -> Err[Any]:
        """Err(CircuitOpenError) for a call this breaker refuses."""
        return Err(
            CircuitOpenError(self.name, remaining=self.remaining(), cause=cause),
            FailureKind.CIRCUIT_OPEN,
        )

    def admit(self) -> Err[Any] | None:
        """None if a request may proceed, else the rejection to return."""
        if self.allow_request():
            return None
        logger.info("circuit_rejected", breaker=self.name, remaining=self.remaining())
        return self.rejection()

    def record(self, result: Result[Any]) -> bool:
        """Record the outcome of one attempt.

        Returns:
            True if this outcome moved the circuit to OPEN
        """
        if result.is_ok():
            self.record_success()
            return False
        if result.kind is FailureKind.CIRCUIT_OPEN:
            return False
        if self.classifier.is_transient(result.error):
            return self.record_failure(result.error)
        self.record_ignored()
        return False

    def record_success(self) -> None:
        """Record a successful request."""
        with self._lock:
            self._stats.successful_requests += 1
            self._stats.last_success_time = utcnow()

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.CLOSED)
            else:
                self._failure_count = 0
                self._failure_key = None

    def record_failure(self, error: BaseException) -> bool:
        """Record a matching failure; True if it opened the circuit."""
        key = failure_key(self.classifier, error)
        with self._lock:
            self._stats.failed_requests += 1
            self._stats.last_failure_time = utcnow()

            if self._state == CircuitState.HALF_OPEN:
                self._failure_count = 1
                self._failure_key = key
                self._transition_to(CircuitState.OPEN)
                return True

            if self._state == CircuitState.OPEN:
                return False

            if self._failure_count and key != self._failure_key:
                self._failure_count = 1
            else:
                self._failure_count += 1
            self._failure_key = key

            if self._failure_count >= self.failure_threshold:
                self._transition_to(CircuitState.OPEN)
                return True
            return False

    def record_ignored(self) -> None:
        """Record a failure the classifier does not count."""
        with self._lock:
            self._failure_count = 0
            self._failure_key = None
            if self._state == CircuitState.HALF_OPEN:
                self.release()

    def release(self) -> None:
        """Give back a half-open trial slot without reporting an outcome."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._half_open_calls > 0:
                self._half_open_calls -= 1

    def reset(self) -> None:
        """Reset circuit to closed state."""
        with self._lock:
            self._transition_to(CircuitState.CLOSED)

    def force_open(self) -> None:
        """Force circuit to open state (for testing/maintenance)."""
        with self._lock:
            self._transition_to(CircuitState.OPEN)


@dataclass(frozen=True)
class CircuitBreakerPolicy:
    """Gate a whole execution on a breaker.

    The retry loop underneath reports every attempt through the context. When
    no attempt was reported (no retry policy in the chain) the final outcome
    is recorded here instead.
    """

    breaker: CircuitBreaker
    nesting_order: ClassVar[int] = 10

    @property
    def name(self) -> str:
        return f"circuit_breaker_{self.breaker.failure_threshold}"

    def execute(self, ctx: PolicyContext, call: Callable[[], Result[Any]]) -> Result[Any]:
        rejected = self.breaker.admit()
        if rejected is not None:
            return rejected

        ctx.attach_breaker(self.breaker)
        try:
            result = call()
        except BaseException:
            if ctx.detach_breaker() == 0:
                self.breaker.release()
            raise
        if ctx.detach_breaker() == 0:
            self.breaker.record(result)
        return result

    async def execute_async(
        self, ctx: PolicyContext, call: Callable[[], Awaitable[Result[Any]]]
    ) -> Result[Any]:
        rejected = self.breaker.admit()
        if rejected is not None:
            return rejected

        ctx.attach_breaker(self.breaker)
        try:
            result = await call()
        except BaseException:
            # Cancelled: the in-flight attempt is never reported.
            if ctx.detach_breaker() == 0:
                self.breaker.release()
            raise
        if ctx.detach_breaker() == 0:
            self.breaker.record(result)
        return result


__all__ = [
    "CircuitBreaker",
    "CircuitBreakerPolicy",
    "CircuitState",
    "CircuitStats",
]
