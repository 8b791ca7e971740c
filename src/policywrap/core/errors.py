"""
Structured error types for policywrap.

Every failure that leaves the policy engine belongs to one of a small number
of kinds. The kind decides how the rest of the chain treats it: a
configuration problem is fatal before anything runs, an open circuit fails
fast, a timeout is handed to the retry classifier like any other failure, and
failures raised by the caller's own operation are either classified
(retriable, counted by the circuit breaker) or unclassified (propagated
untouched).

Manifesto:
    - **One taxonomy:** FailureKind names every outcome the engine can produce
    - **Errors know their kind:** PolicyError subclasses set ``default_kind``
    - **Chaining preserved:** ``cause`` is also wired into ``__cause__``
    - **Log-ready:** ``to_dict()`` for structlog event payloads

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────┐
        │                      PolicyError                          │
        │              (kind, message, cause)                       │
        ├──────────────────────────────────────────────────────────┤
        │  ConfigurationError   CircuitOpenError   TimeoutExpired   │
        │  (CONFIGURATION)      (CIRCUIT_OPEN)     (TIMEOUT,        │
        │                                          builtin Timeout) │
        │  PolicyNotFoundError                                      │
        │  (CONFIGURATION)                                          │
        └──────────────────────────────────────────────────────────┘

        Failures raised by the wrapped operation are not wrapped; the
        attempt boundary tags them CLASSIFIED or UNCLASSIFIED instead.

Examples:
    >>> from policywrap.core.errors import CircuitOpenError, FailureKind
    >>> error = CircuitOpenError("orders-db", remaining=12.5)
    >>> error.kind
    <FailureKind.CIRCUIT_OPEN: 'circuit_open'>
    >>> error.to_dict()["breaker"]
    'orders-db'

Tags:
    errors, taxonomy, failure-kind, circuit-breaker, timeout, policywrap

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import builtins
from enum import Enum
from typing import Any


class FailureKind(str, Enum):
    """Taxonomy of failures produced or observed by the policy engine."""

    CONFIGURATION = "configuration"
    CIRCUIT_OPEN = "circuit_open"
    TIMEOUT = "timeout"
    CLASSIFIED = "classified"
    UNCLASSIFIED = "unclassified"


class ConfigurationProblem(str, Enum):
    """Reasons a policy configuration is rejected."""

    NO_POLICIES = "no_policies"
    DUPLICATED_POLICIES = "duplicated_policies"
    TIMEOUT_PER_RETRY_WITHOUT_RETRY = "timeout_per_retry_without_retry"
    INVALID_CHAIN = "invalid_chain"


class PolicyError(Exception):
    """
    Base exception for all errors raised by policywrap itself.

    Subclasses set ``default_kind``. Errors raised by the caller's operation
    never pass through this class; they keep their own type.
    """

    default_kind: FailureKind = FailureKind.UNCLASSIFIED

    def __init__(
        self,
        message: str,
        *,
        kind: FailureKind | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "kind": self.kind.value,
        }
        if self.cause is not None:
            result["cause"] = repr(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, kind={self.kind.value})"


class ConfigurationError(PolicyError):
    """Builder misuse detected while validating a policy configuration."""

    default_kind = FailureKind.CONFIGURATION

    def __init__(self, message: str, problem: ConfigurationProblem):
        super().__init__(message)
        self.problem = problem

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["problem"] = self.problem.value
        return result


class PolicyNotFoundError(PolicyError):
    """A shared executor looked up a chain name nobody registered."""

    default_kind = FailureKind.CONFIGURATION

    def __init__(self, name: str, available: list[str] | None = None):
        self.name = name
        self.available = available or []
        super().__init__(
            f"No policy chain registered under '{name}'. "
            f"Available: {self.available or 'none'}"
        )


class CircuitOpenError(PolicyError):
    """Raised instead of invoking the operation while a circuit is open."""

    default_kind = FailureKind.CIRCUIT_OPEN
    default_message = "The circuit is now open and is not allowing calls."

    def __init__(
        self,
        breaker: str = "default",
        remaining: float | None = None,
        *,
        cause: BaseException | None = None,
    ):
        super().__init__(self.default_message, cause=cause)
        self.breaker = breaker
        self.remaining = remaining

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["breaker"] = self.breaker
        if self.remaining is not None:
            result["remaining_seconds"] = round(self.remaining, 3)
        return result


class TimeoutExpired(PolicyError, builtins.TimeoutError):
    """Raised when an operation exceeds its deadline.

    Inherits from built-in TimeoutError so callers and classifiers can treat
    it like any other timeout.

    Attributes:
        timeout: The timeout value that was exceeded
        elapsed: How long the operation ran before being interrupted
        operation: Name/description of the scope that timed out
    """

    default_kind = FailureKind.TIMEOUT

    def __init__(
        self,
        timeout: float,
        elapsed: float | None = None,
        operation: str = "operation",
    ):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation

        msg = f"Operation '{operation}' timed out after {timeout}s"
        if elapsed is not None:
            msg += f" (ran for {elapsed:.2f}s)"

        super().__init__(msg)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["timeout"] = self.timeout
        if self.elapsed is not None:
            result["elapsed"] = round(self.elapsed, 3)
        return result


def failure_kind(error: BaseException) -> FailureKind:
    """Kind of a failure that carries one; UNCLASSIFIED otherwise."""
    if isinstance(error, PolicyError):
        return error.kind
    return FailureKind.UNCLASSIFIED


__all__ = [
    "FailureKind",
    "ConfigurationProblem",
    "PolicyError",
    "ConfigurationError",
    "PolicyNotFoundError",
    "CircuitOpenError",
    "TimeoutExpired",
    "failure_kind",
]
