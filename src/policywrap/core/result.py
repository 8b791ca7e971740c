"""
Result envelope for outcomes travelling through a policy chain.

Policies never raise to each other. Each layer of a chain receives the outcome
of the layer below as ``Ok(value)`` or ``Err(error, kind)``, decides what to do
with it (retry, trip the breaker, substitute a fallback) and hands a Result to
the layer above. Exceptions are caught exactly once, at the boundary around
the caller's operation, and raised again only when an executor returns to its
caller.

Manifesto:
    - **Failures are values:** Policies inspect ``kind`` instead of catching
    - **One catch site:** ``try_result`` / ``try_result_async`` bridge the
      caller's exception world into the Result world
    - **Kind travels with the error:** Err carries the FailureKind so outer
      layers don't re-derive it

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                     Result[T]                                │
        ├──────────────────────────┬──────────────────────────────────┤
        │     Ok[T]                │     Err[T]                        │
        │ • value: T               │ • error: BaseException            │
        │                          │ • kind: FailureKind               │
        ├──────────────────────────┴──────────────────────────────────┤
        │ is_ok() · is_err() · unwrap() · unwrap_or() · map()          │
        │ map_err() · or_else()                                        │
        └─────────────────────────────────────────────────────────────┘

Examples:
    >>> from policywrap.core.result import Ok, Err
    >>> from policywrap.core.errors import FailureKind
    >>> Ok(10).map(lambda x: x * 2).unwrap()
    20
    >>> failed = Err(ValueError("boom"), FailureKind.CLASSIFIED)
    >>> failed.unwrap_or(0)
    0
    >>> match failed:
    ...     case Err(error, kind):
    ...         print(kind.value)
    classified

Tags:
    result-pattern, error-handling, tagged-union, policywrap

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from policywrap.core.errors import FailureKind, PolicyError

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful outcome containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Get the value. Safe for Ok."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Get value or default (always returns value for Ok)."""
        return self.value

    def map(self, f: Callable[[T], U]) -> Result[U]:
        """Transform the value if Ok."""
        return Ok(f(self.value))

    def map_err(self, f: Callable[[BaseException], BaseException]) -> Result[T]:
        """Transform error if Err (no-op for Ok)."""
        return self

    def or_else(self, f: Callable[[BaseException], Result[T]]) -> Result[T]:
        """Return self if Ok, otherwise call f with error."""
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"ok": True, "value": self.value}

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """
    Failed outcome containing the error and its FailureKind.

    ``kind`` defaults to UNCLASSIFIED; errors raised by policywrap itself carry
    their own kind, so ``Err.of(error)`` picks it up.
    """

    error: BaseException
    kind: FailureKind = FailureKind.UNCLASSIFIED

    @classmethod
    def of(cls, error: BaseException) -> Err[T]:
        """Wrap a policywrap error using the kind it already carries."""
        if isinstance(error, PolicyError):
            return cls(error, error.kind)
        return cls(error)

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the error. Use only when you're sure it's Ok."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        """Get default since this is Err."""
        return default

    def map(self, f: Callable[[T], U]) -> Result[U]:
        """No-op for Err."""
        return Err(self.error, self.kind)

    def map_err(self, f: Callable[[BaseException], BaseException]) -> Result[T]:
        """Transform the error, keeping its kind."""
        return Err(f(self.error), self.kind)

    def or_else(self, f: Callable[[BaseException], Result[T]]) -> Result[T]:
        """Call f with error to try recovery."""
        return f(self.error)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        if isinstance(self.error, PolicyError):
            return {"ok": False, "kind": self.kind.value, "error": self.error.to_dict()}
        return {
            "ok": False,
            "kind": self.kind.value,
            "error": {
                "error_type": type(self.error).__name__,
                "message": str(self.error),
            },
        }

    def __repr__(self) -> str:
        return f"Err({self.error!r}, kind={self.kind.value})"


# Type alias for Result
Result = Ok[T] | Err[T]


def try_result(
    f: Callable[[], T],
    classify: Callable[[Exception], FailureKind] | None = None,
) -> Result[T]:
    """
    Call ``f`` and wrap its outcome.

    This is the bridge from caller code that raises into the Result world.
    ``classify`` tags the caught exception; without it the kind comes from the
    error itself (``Err.of``).

    Args:
        f: Zero-argument callable that may raise exceptions
        classify: Optional function mapping the exception to a FailureKind

    Returns:
        Ok[T] if f() succeeds, Err with the exception if f() raises
    """
    try:
        return Ok(f())
    except Exception as e:
        if classify is not None:
            return Err(e, classify(e))
        return Err.of(e)


async def try_result_async(
    f: Callable[[], Awaitable[T] | T],
    classify: Callable[[Exception], FailureKind] | None = None,
) -> Result[T]:
    """Async counterpart of ``try_result``.

    ``f`` may be a coroutine function or a plain callable; awaitable return
    values are awaited. Cancellation is not an ``Exception`` and propagates.
    """
    try:
        value = f()
        if inspect.isawaitable(value):
            value = await value
        return Ok(value)
    except Exception as e:
        if classify is not None:
            return Err(e, classify(e))
        return Err.of(e)


__all__ = [
    "Result",
    "Ok",
    "Err",
    "try_result",
    "try_result_async",
]
