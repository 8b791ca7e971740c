"""Error classifiers: decide which failures are worth retrying.

A classifier answers two questions about a failure raised by the wrapped
operation:

- ``is_transient(error)``: should the retry policy try again, and does the
  circuit breaker count it?
- ``failure_key(error)``: which failure class does it belong to? The breaker
  only counts *consecutive failures of the same class*; ``None`` means the
  classifier does not distinguish sub-types.

Database failures are modelled with ``SqlError``, a plain exception carrying
the server error number. Drivers (or tests) construct it directly, or adapt
their own exception type by exposing a ``number`` attribute.

Example:
    >>> from policywrap.execution.classifiers import (
    ...     AnyOf, SqlError, TransactionErrorClassifier, TransientErrorClassifier,
    ... )
    >>> classifier = AnyOf(TransientErrorClassifier(), TransactionErrorClassifier())
    >>> classifier.is_transient(SqlError(40613))
    True
    >>> classifier.is_transient(SqlError(1205))
    True
    >>> classifier.is_transient(ValueError("bad input"))
    False
"""

from __future__ import annotations

import builtins
from collections.abc import Hashable
from typing import Protocol, runtime_checkable


class SqlError(Exception):
    """A database failure identified by its server error number."""

    def __init__(self, number: int, message: str | None = None):
        self.number = number
        self.message = message or f"SQL error {number}"
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"SqlError({self.number}, {self.message!r})"


def error_number(error: BaseException) -> int | None:
    """Server error number of a database failure, if it carries one."""
    number = getattr(error, "number", None)
    if isinstance(number, int):
        return number
    return None


@runtime_checkable
class ErrorClassifier(Protocol):
    """Decides whether a failure is transient."""

    def is_transient(self, error: BaseException) -> bool: ...

    def failure_key(self, error: BaseException) -> Hashable | None: ...


class SqlErrorClassifier:
    """Classifies database failures by error number.

    Subclasses list the numbers they treat as transient.
    """

    name = "sql"
    error_numbers: frozenset[int] = frozenset()

    def is_transient(self, error: BaseException) -> bool:
        return error_number(error) in self.error_numbers

    def failure_key(self, error: BaseException) -> Hashable | None:
        return error_number(error)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class TransientErrorClassifier(SqlErrorClassifier):
    """Throttling, failover and connectivity failures, plus timeouts."""

    name = "transient"
    error_numbers = frozenset(
        {
            40613,  # Database not currently available
            40197,  # Error processing the request, retry
            40501,  # Service is busy
            49918,  # Not enough resources to process request
            49919,  # Too many create/update operations in progress
            49920,  # Too many operations in progress
            4221,   # Login to read-secondary failed, replica not available
            10928,  # Resource limit reached
            10929,  # Minimum guarantee reached, server too busy
            10053,  # Transport-level error receiving results
            10054,  # Transport-level error sending the request
            10060,  # Network-related error establishing the connection
            233,    # Connection initialization error
            64,     # Connection dropped during login
            4060,   # Cannot open database requested by the login
        }
    )

    def is_transient(self, error: BaseException) -> bool:
        if isinstance(error, builtins.TimeoutError):
            return True
        return super().is_transient(error)

    def failure_key(self, error: BaseException) -> Hashable | None:
        if isinstance(error, builtins.TimeoutError):
            return "timeout"
        return super().failure_key(error)


class TransactionErrorClassifier(SqlErrorClassifier):
    """Transaction-scope failures that succeed when the transaction is replayed."""

    name = "transaction"
    error_numbers = frozenset(
        {
            40549,  # Session terminated, long-running transaction
            40550,  # Session terminated, too many locks acquired
            1205,   # Deadlock victim
        }
    )


class AnyOf:
    """OR-combination: transient if any member classifier says so."""

    def __init__(self, *classifiers: ErrorClassifier):
        self.classifiers: tuple[ErrorClassifier, ...] = tuple(classifiers)

    def is_transient(self, error: BaseException) -> bool:
        return any(c.is_transient(error) for c in self.classifiers)

    def failure_key(self, error: BaseException) -> Hashable | None:
        for classifier in self.classifiers:
            if classifier.is_transient(error):
                return failure_key(classifier, error)
        return None

    def __repr__(self) -> str:
        inner = ", ".join(repr(c) for c in self.classifiers)
        return f"AnyOf({inner})"


def failure_key(classifier: ErrorClassifier, error: BaseException) -> Hashable | None:
    """Failure class of ``error`` under ``classifier``; None if undistinguished.

    Objects that only implement ``is_transient`` are accepted as classifiers.
    """
    key_fn = getattr(classifier, "failure_key", None)
    if key_fn is None:
        return None
    return key_fn(error)


__all__ = [
    "AnyOf",
    "ErrorClassifier",
    "SqlError",
    "SqlErrorClassifier",
    "TransactionErrorClassifier",
    "TransientErrorClassifier",
    "error_number",
    "failure_key",
]
