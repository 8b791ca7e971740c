"""Policywrap Execution — resilience policies around a database operation.

WHY
───
Cloud databases throttle, fail over and drop connections. A single call
should survive a transient failure (retry with back-off), stop hammering a
database that keeps failing the same way (circuit breaker), give up on time
(timeouts) and optionally degrade gracefully (fallback), all configured once
and applied the same way to blocking and awaitable operations.

ARCHITECTURE
────────────
::

    PolicyBuilder (what to apply)
      │  validate_options → PolicyChain
      ▼
    Executor (how it suspends)
      ├─ PolicySyncExecutor         (blocking, private chain)
      ├─ SharedPolicySyncExecutor   (blocking, chain resolved by name)
      ├─ PolicyAsyncExecutor        (awaiting, private chain)
      └─ SharedPolicyAsyncExecutor  (awaiting, chain resolved by name)
      │
      ▼
    PolicyChain (outermost first)
      ├── FallbackPolicy        ─ substitute a handler's outcome
      ├── CircuitBreakerPolicy  ─ fail fast on repeated same-class failures
      ├── TimeoutPolicy(OVERALL)     ─ bound the whole retry sequence
      ├── RetryPolicy           ─ exponential back-off on transient failures
      └── TimeoutPolicy(PER_ATTEMPT) ─ bound one attempt
      │
      ▼
    attempt boundary ─ operation() → Ok(value) | Err(error, kind)

MODULE MAP (recommended reading order)
──────────────────────────────────────
  1. classifiers.py      ─ ErrorClassifier, SqlError, transient/transaction
  2. context.py          ─ PolicyContext, DeadlineContext, ExecutionAttempt
  3. retry.py            ─ ExponentialBackoff, RetryPolicy
  4. circuit_breaker.py  ─ CircuitBreaker state machine + policy
  5. timeout.py          ─ TimeoutPolicy (overall / per-attempt)
  6. fallback.py         ─ FallbackPolicy
  7. chain.py            ─ PolicyChain + attempt boundary
  8. registry.py         ─ PolicyRegistry (shared chains by name)
  9. executor.py         ─ sync / async, private / shared executors
 10. builder.py          ─ PolicyBuilder, PolicyOptions, validate_options
"""

from .builder import (
    ExecutorMode,
    PolicyBuilder,
    PolicyOptions,
    build_classifier,
    validate_options,
)
from .chain import Policy, PolicyChain
from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerPolicy,
    CircuitState,
    CircuitStats,
)
from .classifiers import (
    AnyOf,
    ErrorClassifier,
    SqlError,
    SqlErrorClassifier,
    TransactionErrorClassifier,
    TransientErrorClassifier,
)
from .context import DeadlineContext, ExecutionAttempt, PolicyContext
from .executor import (
    Executor,
    PolicyAsyncExecutor,
    PolicySyncExecutor,
    SharedPolicyAsyncExecutor,
    SharedPolicySyncExecutor,
)
from .fallback import FallbackPolicy
from .registry import PolicyRegistry, get_default_registry, reset_default_registry
from .retry import ConstantBackoff, ExponentialBackoff, RetryPolicy, RetryStrategy
from .timeout import TimeoutPolicy, TimeoutScope

__all__ = [
    # Builder
    "ExecutorMode",
    "PolicyBuilder",
    "PolicyOptions",
    "build_classifier",
    "validate_options",
    # Chain
    "Policy",
    "PolicyChain",
    # Policies
    "CircuitBreaker",
    "CircuitBreakerPolicy",
    "CircuitState",
    "CircuitStats",
    "ConstantBackoff",
    "ExponentialBackoff",
    "FallbackPolicy",
    "RetryPolicy",
    "RetryStrategy",
    "TimeoutPolicy",
    "TimeoutScope",
    # Classifiers
    "AnyOf",
    "ErrorClassifier",
    "SqlError",
    "SqlErrorClassifier",
    "TransactionErrorClassifier",
    "TransientErrorClassifier",
    # Context
    "DeadlineContext",
    "ExecutionAttempt",
    "PolicyContext",
    # Executors
    "Executor",
    "PolicyAsyncExecutor",
    "PolicySyncExecutor",
    "SharedPolicyAsyncExecutor",
    "SharedPolicySyncExecutor",
    # Registry
    "PolicyRegistry",
    "get_default_registry",
    "reset_default_registry",
]
