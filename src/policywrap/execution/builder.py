"""
Policy builder: select policies fluently, validate once, get an executor.

Manifesto:
    - **Choices are a value:** every fluent call returns a new builder whose
      ``PolicyOptions`` differ by one field; nothing happens until ``build()``
    - **Validation is a pure function:** ``validate_options`` maps options to
      ``Ok(PolicyChain)`` or ``Err(ConfigurationError)``; ``build()`` raises
      the error, ``try_build()`` returns it
    - **Order is not the caller's problem:** the chain is always nested
      Fallback → CircuitBreaker → Timeout(Overall) → Retry →
      Timeout(PerAttempt), whatever order the selectors were called in
    - **Sharing is explicit:** shared executors register their chain in the
      registry passed to the builder (the default registry otherwise)

Architecture:
    ::

        PolicyBuilder(settings, registry)
          │  .use_async_executor_with_shared_policies("orders-db")
          │  .with_default_policies()
          │  .with_transaction()
          ▼
        PolicyOptions (frozen)
          │
          ▼  validate_options(options, settings)
        Ok(PolicyChain) ─────────────────────┐
        Err(ConfigurationError) → raise      │
                                             ▼
                       private:  PolicySyncExecutor / PolicyAsyncExecutor
                       shared:   registry.get_or_add(key, chain)
                                 SharedPolicy{Sync,Async}Executor(registry, key)

Examples:
    >>> from policywrap import PolicyBuilder
    >>> executor = (
    ...     PolicyBuilder()
    ...     .use_async_executor()
    ...     .with_transient_errors(max_attempts=5)
    ...     .with_circuit_breaker()
    ...     .with_timeout_per_retry(2.0)
    ...     .build()
    ... )
    >>> executor.chain.name
    'circuit_breaker_3_retry_5_timeout_per_attempt_2s'

Tags:
    builder, fluent-api, validation, configuration, policywrap

Doc-Types:
    - API Reference
    - Usage Guide
"""

from __future__ import annotations

import dataclasses
import inspect
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from policywrap.core.errors import ConfigurationError, ConfigurationProblem
from policywrap.core.result import Err, Ok, Result
from policywrap.core.settings import PolicySettings, get_settings
from policywrap.execution.chain import Policy, PolicyChain
from policywrap.execution.circuit_breaker import CircuitBreaker, CircuitBreakerPolicy
from policywrap.execution.classifiers import (
    AnyOf,
    ErrorClassifier,
    TransactionErrorClassifier,
    TransientErrorClassifier,
)
from policywrap.execution.executor import (
    Executor,
    PolicyAsyncExecutor,
    PolicySyncExecutor,
    SharedPolicyAsyncExecutor,
    SharedPolicySyncExecutor,
)
from policywrap.execution.fallback import FallbackPolicy
from policywrap.execution.registry import PolicyRegistry, get_default_registry
from policywrap.execution.retry import ExponentialBackoff, RetryPolicy
from policywrap.execution.timeout import TimeoutPolicy, TimeoutScope

NO_POLICIES_MESSAGE = "There are no policies to execute."
DUPLICATED_POLICIES_MESSAGE = (
    "There are duplicated policies. When you use with_default_policies method, "
    "you can't use either with_transient_errors, with_circuit_breaker or "
    "with_overall_timeout methods at the same time, because those policies "
    "are already included."
)
TIMEOUT_PER_RETRY_MESSAGE = (
    "You're trying to use Timeout per retries but you don't have Retry "
    "policies configured."
)
ASYNC_FALLBACK_MESSAGE = (
    "The fallback handler is a coroutine function; use an async executor to run it."
)


class ExecutorMode(str, Enum):
    """Suspension mode of the executor a builder produces."""

    SYNC = "sync"
    ASYNC = "async"


@dataclass(frozen=True)
class PolicyOptions:
    """Accumulated builder choices. ``None`` numbers mean "use settings"."""

    mode: ExecutorMode = ExecutorMode.SYNC
    shared: bool = False
    shared_name: str | None = None

    default_policies: bool = False
    retry: bool = False
    max_attempts: int | None = None
    circuit_breaker: bool = False
    failure_threshold: int | None = None
    break_duration: float | None = None
    overall_timeout: bool = False
    overall_timeout_seconds: float | None = None
    timeout_per_retry_seconds: float | None = None

    transaction_errors: bool = False
    classifiers: tuple[ErrorClassifier, ...] = ()
    replace_classifiers: bool = False

    fallback: Callable[[], Any] | None = None

    @property
    def has_retry(self) -> bool:
        return self.default_policies or self.retry

    @property
    def has_circuit_breaker(self) -> bool:
        return self.default_policies or self.circuit_breaker

    @property
    def has_overall_timeout(self) -> bool:
        return self.default_policies or self.overall_timeout

    @property
    def has_any_policy(self) -> bool:
        return (
            self.has_retry
            or self.has_circuit_breaker
            or self.has_overall_timeout
            or self.timeout_per_retry_seconds is not None
            or self.fallback is not None
        )


def _configuration_error(message: str, problem: ConfigurationProblem) -> Err[Any]:
    return Err.of(ConfigurationError(message, problem))


def _pick(value: Any, default: Any) -> Any:
    return default if value is None else value


def build_classifier(options: PolicyOptions) -> ErrorClassifier:
    """Combined classifier for the selected error families."""
    members: list[ErrorClassifier] = []
    if not options.replace_classifiers:
        members.append(TransientErrorClassifier())
    if options.transaction_errors:
        members.append(TransactionErrorClassifier())
    members.extend(options.classifiers)
    if len(members) == 1:
        return members[0]
    return AnyOf(*members)


def validate_options(
    options: PolicyOptions,
    settings: PolicySettings | None = None,
) -> Result[PolicyChain]:
    """Turn builder choices into a chain, or the ConfigurationError they violate.

    Pure: builds objects but touches no registry and runs nothing.
    """
    settings = settings or get_settings()

    if not options.has_any_policy:
        return _configuration_error(NO_POLICIES_MESSAGE, ConfigurationProblem.NO_POLICIES)

    if options.default_policies and (
        options.retry or options.circuit_breaker or options.overall_timeout
    ):
        return _configuration_error(
            DUPLICATED_POLICIES_MESSAGE, ConfigurationProblem.DUPLICATED_POLICIES
        )

    if options.timeout_per_retry_seconds is not None and not options.has_retry:
        return _configuration_error(
            TIMEOUT_PER_RETRY_MESSAGE,
            ConfigurationProblem.TIMEOUT_PER_RETRY_WITHOUT_RETRY,
        )

    if (
        options.mode is ExecutorMode.SYNC
        and options.fallback is not None
        and inspect.iscoroutinefunction(options.fallback)
    ):
        return _configuration_error(
            ASYNC_FALLBACK_MESSAGE, ConfigurationProblem.INVALID_CHAIN
        )

    classifier = build_classifier(options)
    policies: list[Policy] = []

    try:
        if options.fallback is not None:
            policies.append(FallbackPolicy(options.fallback))

        if options.has_circuit_breaker:
            policies.append(
                CircuitBreakerPolicy(
                    CircuitBreaker(
                        name=options.shared_name or "circuit_breaker",
                        failure_threshold=_pick(
                            options.failure_threshold, settings.failure_threshold
                        ),
                        break_duration=_pick(
                            options.break_duration, settings.break_duration_seconds
                        ),
                        classifier=classifier,
                    )
                )
            )

        if options.has_overall_timeout:
            policies.append(
                TimeoutPolicy(
                    _pick(
                        options.overall_timeout_seconds,
                        settings.resolved_overall_timeout(
                            _pick(options.max_attempts, settings.max_attempts)
                        ),
                    ),
                    TimeoutScope.OVERALL,
                )
            )

        if options.has_retry:
            policies.append(
                RetryPolicy(
                    max_attempts=_pick(options.max_attempts, settings.max_attempts),
                    backoff=ExponentialBackoff(
                        unit=settings.backoff_unit_seconds,
                        base=settings.backoff_base,
                        max_delay=settings.backoff_max_seconds,
                    ),
                    classifier=classifier,
                )
            )

        if options.timeout_per_retry_seconds is not None:
            policies.append(
                TimeoutPolicy(options.timeout_per_retry_seconds, TimeoutScope.PER_ATTEMPT)
            )

        return Ok(PolicyChain(tuple(policies), classifier))
    except ConfigurationError as e:
        return Err.of(e)
    except ValueError as e:
        return _configuration_error(str(e), ConfigurationProblem.INVALID_CHAIN)


@dataclass(frozen=True)
class PolicyBuilder:
    """Fluent, immutable policy selection.

    Each method returns a new builder; a builder can be reused as a template.

    Example:
        >>> base = PolicyBuilder().with_transient_errors()
        >>> sync_executor = base.build()
        >>> async_executor = base.use_async_executor().build()
    """

    settings: PolicySettings | None = None
    registry: PolicyRegistry | None = None
    options: PolicyOptions = dataclasses.field(default_factory=PolicyOptions)

    def _with(self, **changes: Any) -> PolicyBuilder:
        return dataclasses.replace(
            self, options=dataclasses.replace(self.options, **changes)
        )

    # ── Executor selection ───────────────────────────────────────

    def use_sync_executor(self) -> PolicyBuilder:
        return self._with(mode=ExecutorMode.SYNC, shared=False, shared_name=None)

    def use_sync_executor_with_shared_policies(self, name: str | None = None) -> PolicyBuilder:
        return self._with(mode=ExecutorMode.SYNC, shared=True, shared_name=name)

    def use_async_executor(self) -> PolicyBuilder:
        return self._with(mode=ExecutorMode.ASYNC, shared=False, shared_name=None)

    def use_async_executor_with_shared_policies(self, name: str | None = None) -> PolicyBuilder:
        return self._with(mode=ExecutorMode.ASYNC, shared=True, shared_name=name)

    # ── Policy selection ─────────────────────────────────────────

    def with_default_policies(self) -> PolicyBuilder:
        """Retry, circuit breaker and overall timeout with settings defaults."""
        return self._with(default_policies=True)

    def with_transient_errors(self, max_attempts: int | None = None) -> PolicyBuilder:
        return self._with(retry=True, max_attempts=max_attempts)

    def with_circuit_breaker(
        self,
        failure_threshold: int | None = None,
        break_duration: float | None = None,
    ) -> PolicyBuilder:
        return self._with(
            circuit_breaker=True,
            failure_threshold=failure_threshold,
            break_duration=break_duration,
        )

    def with_overall_timeout(self, seconds: float | None = None) -> PolicyBuilder:
        return self._with(overall_timeout=True, overall_timeout_seconds=seconds)

    def with_timeout_per_retry(self, seconds: float) -> PolicyBuilder:
        return self._with(timeout_per_retry_seconds=seconds)

    def with_transaction(self) -> PolicyBuilder:
        """Also treat transaction-scope failures (deadlocks, lock limits) as transient."""
        return self._with(transaction_errors=True)

    def with_error_classifier(
        self, classifier: ErrorClassifier, replace: bool = False
    ) -> PolicyBuilder:
        """Add a classifier; ``replace=True`` drops the built-in transient one."""
        return self._with(
            classifiers=self.options.classifiers + (classifier,),
            replace_classifiers=self.options.replace_classifiers or replace,
        )

    def with_fallback(self, handler: Callable[[], Any]) -> PolicyBuilder:
        return self._with(fallback=handler)

    # ── Terminal ─────────────────────────────────────────────────

    def try_build(self) -> Result[Executor]:
        """Validate and build, returning Err(ConfigurationError) on misuse."""
        validated = validate_options(self.options, self.settings)
        if validated.is_err():
            return validated
        chain = validated.unwrap()

        if not self.options.shared:
            if self.options.mode is ExecutorMode.ASYNC:
                return Ok(PolicyAsyncExecutor(chain))
            return Ok(PolicySyncExecutor(chain))

        registry = self.registry if self.registry is not None else get_default_registry()
        key = self.options.shared_name or chain.name
        registry.get_or_add(key, lambda: chain)
        if self.options.mode is ExecutorMode.ASYNC:
            return Ok(SharedPolicyAsyncExecutor(registry, key))
        return Ok(SharedPolicySyncExecutor(registry, key))

    def build(self) -> Executor:
        """Validate and build.

        Raises:
            ConfigurationError: If the selected policies are inconsistent
        """
        return self.try_build().unwrap()


__all__ = [
    "ExecutorMode",
    "PolicyBuilder",
    "PolicyOptions",
    "build_classifier",
    "validate_options",
]
