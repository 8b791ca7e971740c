"""Tests for PolicyBuilder and validate_options."""

import pytest

from policywrap.core.errors import ConfigurationError, ConfigurationProblem, FailureKind
from policywrap.core.settings import PolicySettings
from policywrap.execution.builder import (
    DUPLICATED_POLICIES_MESSAGE,
    ExecutorMode,
    PolicyBuilder,
    PolicyOptions,
    build_classifier,
    validate_options,
)
from policywrap.execution.circuit_breaker import CircuitBreakerPolicy
from policywrap.execution.classifiers import (
    AnyOf,
    SqlError,
    TransactionErrorClassifier,
    TransientErrorClassifier,
)
from policywrap.execution.executor import (
    PolicyAsyncExecutor,
    PolicySyncExecutor,
    SharedPolicyAsyncExecutor,
    SharedPolicySyncExecutor,
)
from policywrap.execution.fallback import FallbackPolicy
from policywrap.execution.registry import get_default_registry
from policywrap.execution.retry import RetryPolicy
from policywrap.execution.timeout import TimeoutPolicy, TimeoutScope


class OnlyValueErrors:
    def is_transient(self, error):
        return isinstance(error, ValueError)


class TestValidationErrors:
    def test_no_policies(self, builder):
        with pytest.raises(ConfigurationError) as exc_info:
            builder.use_async_executor().build()
        assert str(exc_info.value) == "There are no policies to execute."
        assert exc_info.value.problem == ConfigurationProblem.NO_POLICIES

    @pytest.mark.parametrize(
        "select",
        [
            lambda b: b.with_transient_errors(),
            lambda b: b.with_circuit_breaker(),
            lambda b: b.with_overall_timeout(),
        ],
    )
    def test_default_bundle_duplicated(self, builder, select):
        with pytest.raises(ConfigurationError) as exc_info:
            select(builder.with_default_policies()).build()
        assert str(exc_info.value) == DUPLICATED_POLICIES_MESSAGE
        assert str(exc_info.value).startswith("There are duplicated policies.")

    def test_duplicate_detected_in_any_order(self, builder):
        with pytest.raises(ConfigurationError):
            builder.with_circuit_breaker().with_default_policies().build()

    def test_timeout_per_retry_without_retry(self, builder):
        with pytest.raises(ConfigurationError) as exc_info:
            builder.with_circuit_breaker().with_timeout_per_retry(1.0).build()
        assert str(exc_info.value) == (
            "You're trying to use Timeout per retries but you don't have "
            "Retry policies configured."
        )
        assert exc_info.value.problem == ConfigurationProblem.TIMEOUT_PER_RETRY_WITHOUT_RETRY

    def test_timeout_per_retry_with_default_bundle(self, builder):
        executor = builder.with_default_policies().with_timeout_per_retry(1.0).build()
        assert executor.chain.timeout(TimeoutScope.PER_ATTEMPT) is not None

    def test_invalid_number_becomes_configuration_error(self, builder):
        with pytest.raises(ConfigurationError) as exc_info:
            builder.with_transient_errors(max_attempts=0).build()
        assert exc_info.value.problem == ConfigurationProblem.INVALID_CHAIN

    def test_sync_executor_rejects_coroutine_fallback(self, builder):
        async def handler():
            return None

        with pytest.raises(ConfigurationError):
            builder.with_transient_errors().with_fallback(handler).build()

    def test_try_build_returns_err(self, builder):
        result = builder.try_build()
        assert result.is_err()
        assert result.kind == FailureKind.CONFIGURATION
        assert isinstance(result.error, ConfigurationError)


class TestValidateOptions:
    def test_pure_function(self, fast_settings):
        options = PolicyOptions(retry=True)
        first = validate_options(options, fast_settings)
        second = validate_options(options, fast_settings)
        assert first.unwrap().name == second.unwrap().name == "retry_6"
        assert first.unwrap() is not second.unwrap()

    def test_uses_cached_settings_by_default(self):
        assert validate_options(PolicyOptions(retry=True)).unwrap().name == "retry_6"


class TestChainShape:
    def test_default_bundle(self, builder, fast_settings):
        chain = builder.with_default_policies().build().chain
        kinds = [type(p) for p in chain.policies]
        assert kinds == [CircuitBreakerPolicy, TimeoutPolicy, RetryPolicy]
        assert chain.retry.max_attempts == 6
        assert chain.circuit_breaker.failure_threshold == 3
        assert chain.circuit_breaker.break_duration == fast_settings.break_duration_seconds
        overall = chain.timeout(TimeoutScope.OVERALL)
        assert overall.seconds == pytest.approx(fast_settings.resolved_overall_timeout())

    def test_default_bundle_with_library_defaults(self):
        settings = PolicySettings(_env_file=None)
        chain = PolicyBuilder(settings=settings).with_default_policies().build().chain
        assert chain.name == "circuit_breaker_3_timeout_overall_72s_retry_6"
        assert chain.circuit_breaker.break_duration == 30.0

    def test_order_independent_of_call_order(self, builder):
        chain = (
            builder.with_timeout_per_retry(1.0)
            .with_fallback(lambda: None)
            .with_transient_errors()
            .with_overall_timeout(5.0)
            .with_circuit_breaker()
            .build()
            .chain
        )
        assert [type(p) for p in chain.policies] == [
            FallbackPolicy,
            CircuitBreakerPolicy,
            TimeoutPolicy,
            RetryPolicy,
            TimeoutPolicy,
        ]
        assert chain.policies[2].scope is TimeoutScope.OVERALL
        assert chain.policies[4].scope is TimeoutScope.PER_ATTEMPT

    def test_explicit_numbers(self, builder):
        chain = (
            builder.with_transient_errors(max_attempts=5)
            .with_circuit_breaker(failure_threshold=4, break_duration=2.5)
            .with_overall_timeout(9.0)
            .build()
            .chain
        )
        assert chain.retry.max_attempts == 5
        assert chain.circuit_breaker.failure_threshold == 4
        assert chain.circuit_breaker.break_duration == 2.5
        assert chain.timeout(TimeoutScope.OVERALL).seconds == 9.0

    def test_derived_overall_timeout_covers_chosen_attempts(self, builder, fast_settings):
        chain = builder.with_transient_errors(max_attempts=10).with_overall_timeout().build().chain
        overall = chain.timeout(TimeoutScope.OVERALL)
        # 2 + 4 + ... + 512 units of back-off plus 10 units of slack
        assert overall.seconds == pytest.approx(1032 * fast_settings.backoff_unit_seconds)
        assert overall.seconds > fast_settings.resolved_overall_timeout()

    def test_fallback_alone_is_a_policy(self, builder):
        chain = builder.with_fallback(lambda: "cached").build().chain
        assert chain.name == "fallback"


class TestClassifierSelection:
    def test_default_is_transient(self):
        assert isinstance(build_classifier(PolicyOptions()), TransientErrorClassifier)

    def test_with_transaction(self, builder):
        classifier = builder.with_transient_errors().with_transaction().build().chain.classifier
        assert isinstance(classifier, AnyOf)
        assert classifier.is_transient(SqlError(1205))
        assert classifier.is_transient(SqlError(40613))

    def test_without_transaction(self, builder):
        classifier = builder.with_transient_errors().build().chain.classifier
        assert not classifier.is_transient(SqlError(1205))

    def test_extra_classifier(self, builder):
        classifier = (
            builder.with_transient_errors()
            .with_error_classifier(OnlyValueErrors())
            .build()
            .chain.classifier
        )
        assert classifier.is_transient(ValueError("x"))
        assert classifier.is_transient(SqlError(40613))

    def test_replace_classifier(self, builder):
        classifier = (
            builder.with_transient_errors()
            .with_error_classifier(OnlyValueErrors(), replace=True)
            .build()
            .chain.classifier
        )
        assert classifier.is_transient(ValueError("x"))
        assert not classifier.is_transient(SqlError(40613))

    def test_breaker_shares_chain_classifier(self, builder):
        chain = builder.with_default_policies().with_transaction().build().chain
        assert chain.circuit_breaker.classifier is chain.classifier
        assert chain.retry.classifier is chain.classifier

    def test_transaction_member(self):
        classifier = build_classifier(PolicyOptions(transaction_errors=True))
        assert isinstance(classifier.classifiers[1], TransactionErrorClassifier)


class TestExecutorSelection:
    def test_default_is_private_sync(self, builder):
        assert builder.with_transient_errors().options.mode is ExecutorMode.SYNC
        assert type(builder.with_transient_errors().build()) is PolicySyncExecutor

    def test_async(self, builder):
        executor = builder.use_async_executor().with_transient_errors().build()
        assert type(executor) is PolicyAsyncExecutor

    def test_shared_sync(self, builder, registry):
        executor = builder.use_sync_executor_with_shared_policies("orders").with_transient_errors().build()
        assert type(executor) is SharedPolicySyncExecutor
        assert "orders" in registry

    def test_shared_async_uses_chain_name(self, builder, registry):
        executor = builder.use_async_executor_with_shared_policies().with_default_policies().build()
        assert type(executor) is SharedPolicyAsyncExecutor
        assert executor.key == executor.chain.name
        assert registry.names() == [executor.chain.name]

    def test_shared_without_registry_uses_default(self, fast_settings):
        PolicyBuilder(settings=fast_settings).use_sync_executor_with_shared_policies("orders").with_transient_errors().build()
        assert "orders" in get_default_registry()

    def test_later_builds_reuse_first_chain(self, builder):
        first = builder.use_sync_executor_with_shared_policies("orders").with_default_policies().build()
        second = builder.use_async_executor_with_shared_policies("orders").with_default_policies().build()
        assert first.chain is second.chain

    def test_private_builds_do_not_share(self, builder):
        template = builder.with_default_policies()
        assert template.build().chain is not template.build().chain

    def test_builder_is_immutable(self, builder):
        configured = builder.with_transient_errors()
        assert builder.options.retry is False
        assert configured.options.retry is True

    def test_switching_back_to_private(self, builder):
        executor = (
            builder.use_sync_executor_with_shared_policies("orders")
            .use_sync_executor()
            .with_transient_errors()
            .build()
        )
        assert type(executor) is PolicySyncExecutor
