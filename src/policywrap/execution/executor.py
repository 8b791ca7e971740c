"""Executors: run an operation through a policy chain.

Two entry points over the same ``PolicyChain``: ``PolicySyncExecutor`` blocks
during back-off waits, ``PolicyAsyncExecutor`` awaits them. Private executors
own their chain; shared executors resolve it by name from a
``PolicyRegistry`` on every call, so every executor built under one name
drives the same circuit breaker.

``execute`` / ``execute_async`` return the operation's value or raise the
final failure. ``execute_result`` / ``execute_result_async`` return the
tagged ``Result`` instead.

Without a context the operation is called with no arguments. With one, it
receives the ``PolicyContext``, which exposes the remaining time budget and
the attempts made so far.

Example:
    >>> from policywrap import PolicyBuilder
    >>> executor = PolicyBuilder().with_default_policies().build()
    >>> executor.execute(lambda: load_orders(connection))
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from typing import Any, TypeVar

from policywrap.core.errors import FailureKind
from policywrap.core.logging import LogContext
from policywrap.core.result import Err, Ok, Result, try_result
from policywrap.execution.chain import PolicyChain
from policywrap.execution.context import PolicyContext
from policywrap.execution.registry import PolicyRegistry

T = TypeVar("T")


def _operation_name(operation: Callable[..., Any]) -> str:
    return getattr(operation, "__qualname__", None) or type(operation).__name__


def _is_coroutine_operation(operation: Callable[..., Any]) -> bool:
    return inspect.iscoroutinefunction(operation) or inspect.iscoroutinefunction(
        getattr(operation, "__call__", None)
    )


def _context_for(operation: Callable[..., Any], context: PolicyContext | None) -> PolicyContext:
    if context is not None:
        return context
    return PolicyContext(operation=_operation_name(operation))


class PolicySyncExecutor:
    """Runs blocking operations through a privately owned chain."""

    def __init__(self, chain: PolicyChain):
        self._chain = chain

    @property
    def chain(self) -> PolicyChain:
        return self._chain

    def _resolve(self) -> Result[PolicyChain]:
        return Ok(self._chain)

    def execute_result(
        self,
        operation: Callable[..., T],
        context: PolicyContext | None = None,
    ) -> Result[T]:
        """Run ``operation`` and return its tagged outcome."""
        if _is_coroutine_operation(operation):
            raise TypeError(
                f"{_operation_name(operation)} is a coroutine function; "
                "use an async executor to run it"
            )
        resolved = self._resolve()
        if resolved.is_err():
            return Err(resolved.error, FailureKind.CONFIGURATION)
        chain = resolved.unwrap()

        ctx = _context_for(operation, context)
        with LogContext(
            operation=ctx.operation,
            correlation_id=ctx.correlation_id,
            policy_chain=chain.name,
        ):
            return chain.execute(operation, ctx, pass_context=context is not None)

    def execute(
        self,
        operation: Callable[..., T],
        context: PolicyContext | None = None,
    ) -> T:
        """Run ``operation``; return its value or raise the final failure."""
        return self.execute_result(operation, context).unwrap()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(chain={self._chain.name!r})"


class SharedPolicySyncExecutor(PolicySyncExecutor):
    """Runs blocking operations through a chain resolved by name per call."""

    def __init__(self, registry: PolicyRegistry, key: str):
        self.registry = registry
        self.key = key

    @property
    def chain(self) -> PolicyChain:
        return self.registry.get(self.key)

    def _resolve(self) -> Result[PolicyChain]:
        return try_result(lambda: self.registry.get(self.key))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(key={self.key!r})"


class PolicyAsyncExecutor:
    """Runs awaitable (or plain) operations through a privately owned chain."""

    def __init__(self, chain: PolicyChain):
        self._chain = chain

    @property
    def chain(self) -> PolicyChain:
        return self._chain

    def _resolve(self) -> Result[PolicyChain]:
        return Ok(self._chain)

    async def execute_result_async(
        self,
        operation: Callable[..., Any],
        context: PolicyContext | None = None,
    ) -> Result[Any]:
        """Run ``operation`` and return its tagged outcome."""
        resolved = self._resolve()
        if resolved.is_err():
            return Err(resolved.error, FailureKind.CONFIGURATION)
        chain = resolved.unwrap()

        ctx = _context_for(operation, context)
        async with LogContext(
            operation=ctx.operation,
            correlation_id=ctx.correlation_id,
            policy_chain=chain.name,
        ):
            return await chain.execute_async(
                operation, ctx, pass_context=context is not None
            )

    async def execute_async(
        self,
        operation: Callable[..., Any],
        context: PolicyContext | None = None,
    ) -> Any:
        """Run ``operation``; return its value or raise the final failure."""
        result = await self.execute_result_async(operation, context)
        return result.unwrap()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(chain={self._chain.name!r})"


class SharedPolicyAsyncExecutor(PolicyAsyncExecutor):
    """Runs awaitable operations through a chain resolved by name per call."""

    def __init__(self, registry: PolicyRegistry, key: str):
        self.registry = registry
        self.key = key

    @property
    def chain(self) -> PolicyChain:
        return self.registry.get(self.key)

    def _resolve(self) -> Result[PolicyChain]:
        return try_result(lambda: self.registry.get(self.key))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(key={self.key!r})"


Executor = (
    PolicySyncExecutor
    | SharedPolicySyncExecutor
    | PolicyAsyncExecutor
    | SharedPolicyAsyncExecutor
)

__all__ = [
    "Executor",
    "PolicyAsyncExecutor",
    "PolicySyncExecutor",
    "SharedPolicyAsyncExecutor",
    "SharedPolicySyncExecutor",
]
