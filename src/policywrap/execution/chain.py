"""
Policy chain: an ordered, immutable stack of policies around one operation.

A chain is the unit the builder produces and the executors run. It is
validated once, at construction, and never mutated afterwards; when it is
registered under a name, every executor resolving that name runs the very
same chain object and therefore shares its circuit breaker.

Manifesto:
    - **Fixed nesting:** policies always wrap each other in the same order,
      whatever order the builder was configured in
    - **One catch site:** exceptions from the caller's operation are caught
      at the attempt boundary and turned into ``Err`` values immediately
    - **Same algorithm, two suspension modes:** ``execute`` blocks,
      ``execute_async`` awaits; ordering, back-off and breaker transitions
      are identical

Architecture:
    ::

        Fallback                       nesting_order 0   (outermost)
          └─ CircuitBreaker            nesting_order 10
               └─ Timeout(OVERALL)     nesting_order 20
                    └─ Retry           nesting_order 30
                         └─ Timeout(PER_ATTEMPT)  40
                              └─ attempt boundary ─► operation

        attempt boundary:
          ctx.start_attempt()
          try: value = operation(ctx) | operation()
          except Exception → Err(exc, kind)
            kind = PolicyError.kind
                 | CLASSIFIED   if classifier.is_transient(exc)
                 | UNCLASSIFIED otherwise

Examples:
    >>> from policywrap.execution.chain import PolicyChain
    >>> from policywrap.execution.classifiers import TransientErrorClassifier
    >>> from policywrap.execution.retry import ExponentialBackoff, RetryPolicy
    >>> classifier = TransientErrorClassifier()
    >>> chain = PolicyChain(
    ...     policies=(RetryPolicy(6, ExponentialBackoff(), classifier),),
    ...     classifier=classifier,
    ... )
    >>> chain.name
    'retry_6'

Tags:
    policy-chain, composition, nesting, attempt-boundary, policywrap

Doc-Types:
    - API Reference
    - Architecture Documentation
"""

from __future__ import annotations

import asyncio
import functools
import inspect
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from policywrap.core.errors import (
    ConfigurationError,
    ConfigurationProblem,
    FailureKind,
    PolicyError,
)
from policywrap.core.result import Result, try_result, try_result_async
from policywrap.execution.circuit_breaker import CircuitBreaker, CircuitBreakerPolicy
from policywrap.execution.classifiers import ErrorClassifier
from policywrap.execution.context import PolicyContext
from policywrap.execution.fallback import FallbackPolicy
from policywrap.execution.retry import RetryPolicy
from policywrap.execution.timeout import TimeoutPolicy, TimeoutScope

Policy: TypeAlias = FallbackPolicy | CircuitBreakerPolicy | TimeoutPolicy | RetryPolicy


@dataclass(frozen=True)
class PolicyChain:
    """Validated, ordered policies plus the classifier they share.

    Attributes:
        policies: Policies, outermost first
        classifier: Combined error classifier of the chain
        name: Policy names joined with ``_`` unless given explicitly
    """

    policies: tuple[Policy, ...]
    classifier: ErrorClassifier
    name: str = field(default="")

    def __post_init__(self) -> None:
        if not self.policies:
            raise ConfigurationError(
                "There are no policies to execute.",
                ConfigurationProblem.NO_POLICIES,
            )
        orders = [policy.nesting_order for policy in self.policies]
        if any(inner <= outer for outer, inner in zip(orders, orders[1:])):
            names = ", ".join(policy.name for policy in self.policies)
            raise ConfigurationError(
                f"Policies are not in nesting order or appear twice: {names}",
                ConfigurationProblem.INVALID_CHAIN,
            )
        if not self.name:
            object.__setattr__(self, "name", "_".join(p.name for p in self.policies))

    @property
    def circuit_breaker(self) -> CircuitBreaker | None:
        """Breaker of this chain, if it has one."""
        for policy in self.policies:
            if isinstance(policy, CircuitBreakerPolicy):
                return policy.breaker
        return None

    @property
    def retry(self) -> RetryPolicy | None:
        for policy in self.policies:
            if isinstance(policy, RetryPolicy):
                return policy
        return None

    def timeout(self, scope: TimeoutScope) -> TimeoutPolicy | None:
        for policy in self.policies:
            if isinstance(policy, TimeoutPolicy) and policy.scope is scope:
                return policy
        return None

    def classify(self, error: Exception) -> FailureKind:
        """FailureKind of an exception caught at the attempt boundary."""
        if isinstance(error, PolicyError):
            return error.kind
        if self.classifier.is_transient(error):
            return FailureKind.CLASSIFIED
        return FailureKind.UNCLASSIFIED

    # ── Sync ─────────────────────────────────────────────────────

    def execute(
        self,
        operation: Callable[..., Any],
        ctx: PolicyContext,
        pass_context: bool = False,
    ) -> Result[Any]:
        """Run ``operation`` through every policy, blocking."""
        ctx.begin()
        call: Callable[[], Result[Any]] = functools.partial(
            self._attempt, operation, ctx, pass_context
        )
        for policy in reversed(self.policies):
            call = functools.partial(policy.execute, ctx, call)
        return call()

    def _attempt(
        self, operation: Callable[..., Any], ctx: PolicyContext, pass_context: bool
    ) -> Result[Any]:
        attempt = ctx.start_attempt()
        if pass_context:
            result = try_result(lambda: operation(ctx), self.classify)
        else:
            result = try_result(operation, self.classify)
        if result.is_ok() and inspect.isawaitable(result.unwrap()):
            attempt.cancel()
            if inspect.iscoroutine(result.unwrap()):
                result.unwrap().close()
            raise TypeError(
                f"{ctx.operation} returned an awaitable; "
                "use an async executor to run it"
            )
        attempt.finish(result)
        return result

    # ── Async ────────────────────────────────────────────────────

    async def execute_async(
        self,
        operation: Callable[..., Any],
        ctx: PolicyContext,
        pass_context: bool = False,
    ) -> Result[Any]:
        """Run ``operation`` through every policy, awaiting."""
        ctx.begin()
        call: Callable[[], Any] = functools.partial(
            self._attempt_async, operation, ctx, pass_context
        )
        for policy in reversed(self.policies):
            call = functools.partial(policy.execute_async, ctx, call)
        return await call()

    async def _attempt_async(
        self, operation: Callable[..., Any], ctx: PolicyContext, pass_context: bool
    ) -> Result[Any]:
        attempt = ctx.start_attempt()
        try:
            if pass_context:
                result = await try_result_async(lambda: operation(ctx), self.classify)
            else:
                result = await try_result_async(operation, self.classify)
        except asyncio.CancelledError:
            attempt.cancel()
            raise
        attempt.finish(result)
        return result


__all__ = ["Policy", "PolicyChain"]
