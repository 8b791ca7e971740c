"""End-to-end tests for the awaiting executors."""

import asyncio
import time

import pytest

from policywrap.core.errors import CircuitOpenError, FailureKind, PolicyNotFoundError, TimeoutExpired
from policywrap.execution.circuit_breaker import CircuitState
from policywrap.execution.classifiers import SqlError
from policywrap.execution.context import PolicyContext
from policywrap.execution.executor import SharedPolicyAsyncExecutor
from policywrap.execution.registry import PolicyRegistry

UNIT = 0.02

pytestmark = pytest.mark.asyncio


class TestPolicyAsyncExecutor:
    async def test_returns_value(self, builder):
        executor = builder.use_async_executor().with_default_policies().build()

        async def op():
            return "rows"

        assert await executor.execute_async(op) == "rows"

    async def test_plain_callable(self, builder):
        executor = builder.use_async_executor().with_transient_errors().build()
        assert await executor.execute_async(lambda: "rows") == "rows"

    async def test_execute_result(self, builder, async_flaky):
        executor = builder.use_async_executor().with_transient_errors().build()
        result = await executor.execute_result_async(async_flaky([KeyError("missing")]))
        assert result.is_err()
        assert result.kind == FailureKind.UNCLASSIFIED

    async def test_context_is_passed(self, builder):
        executor = builder.use_async_executor().with_transient_errors().build()
        ctx = PolicyContext(operation="orders.load")

        async def op(c):
            return c.operation

        assert await executor.execute_async(op, context=ctx) == "orders.load"


class TestRetryAndBreaker:
    async def test_varying_failures_then_success(self, builder, async_flaky):
        executor = (
            builder.use_async_executor()
            .with_transient_errors(max_attempts=5)
            .with_circuit_breaker()
            .build()
        )
        op = async_flaky(
            [SqlError(40613), SqlError(40197), SqlError(40501), SqlError(49918)], result="rows"
        )

        start = time.monotonic()
        assert await executor.execute_async(op) == "rows"
        elapsed = time.monotonic() - start

        assert op.calls == 5
        assert 30 * UNIT * 0.9 <= elapsed < 30 * UNIT + 0.5
        assert executor.chain.circuit_breaker.state == CircuitState.CLOSED

    async def test_same_failure_opens_circuit(self, builder, async_flaky):
        executor = (
            builder.use_async_executor()
            .with_transient_errors(max_attempts=5)
            .with_circuit_breaker()
            .build()
        )
        op = async_flaky([SqlError(40613)] * 5)

        start = time.monotonic()
        with pytest.raises(CircuitOpenError):
            await executor.execute_async(op)
        elapsed = time.monotonic() - start

        assert op.calls == 3
        assert 6 * UNIT * 0.9 <= elapsed < 14 * UNIT

        again = async_flaky([], result="rows")
        with pytest.raises(CircuitOpenError):
            await executor.execute_async(again)
        assert again.calls == 0

    async def test_half_open_success_closes(self, builder, async_flaky, fast_settings):
        executor = (
            builder.use_async_executor()
            .with_transient_errors(max_attempts=5)
            .with_circuit_breaker()
            .build()
        )
        with pytest.raises(CircuitOpenError):
            await executor.execute_async(async_flaky([SqlError(40613)] * 5))

        await asyncio.sleep(fast_settings.break_duration_seconds + 0.05)
        assert await executor.execute_async(async_flaky([], result="rows")) == "rows"
        assert executor.chain.circuit_breaker.state == CircuitState.CLOSED


class TestOverallTimeout:
    async def test_long_single_attempt(self, builder, async_flaky):
        executor = (
            builder.use_async_executor()
            .with_overall_timeout(5 * UNIT)
            .with_transient_errors()
            .build()
        )
        op = async_flaky([], result="rows", delay=50 * UNIT)

        start = time.monotonic()
        with pytest.raises(TimeoutError):
            await executor.execute_async(op)
        assert time.monotonic() - start < 5 * UNIT + 0.2
        assert op.calls == 1

    async def test_cumulative_retries_interrupted(self, builder, async_flaky):
        executor = (
            builder.use_async_executor()
            .with_overall_timeout(10 * UNIT)
            .with_transient_errors()
            .build()
        )
        op = async_flaky(
            [SqlError(40613), SqlError(40197), SqlError(40501), SqlError(49918)], result="rows"
        )

        start = time.monotonic()
        with pytest.raises(TimeoutExpired):
            await executor.execute_async(op)
        elapsed = time.monotonic() - start

        assert op.calls == 3
        assert elapsed < 10 * UNIT + 0.2
        deadline = op.call_times[0] + 10 * UNIT
        assert all(t < deadline for t in op.call_times)

    async def test_per_attempt_timeout_is_retried(self, builder):
        executor = (
            builder.use_async_executor()
            .with_transient_errors()
            .with_timeout_per_retry(3 * UNIT)
            .build()
        )
        calls = []

        async def op():
            calls.append(1)
            if len(calls) == 1:
                await asyncio.sleep(50 * UNIT)
            return "rows"

        assert await executor.execute_async(op) == "rows"
        assert len(calls) == 2

    async def test_blocking_operation_overrunning_attempt_timeout(self, builder, flaky):
        executor = (
            builder.use_async_executor()
            .with_transient_errors(max_attempts=2)
            .with_timeout_per_retry(UNIT)
            .build()
        )
        op = flaky([], result="late", delay=5 * UNIT)

        result = await executor.execute_result_async(op)

        assert result.kind == FailureKind.TIMEOUT
        assert isinstance(result.error, TimeoutExpired)
        assert op.calls == 2

    async def test_blocking_operation_overrunning_overall_timeout(self, builder, flaky):
        executor = (
            builder.use_async_executor()
            .with_overall_timeout(2 * UNIT)
            .with_transient_errors()
            .build()
        )
        op = flaky([SqlError(40613)], delay=5 * UNIT)

        with pytest.raises(TimeoutExpired):
            await executor.execute_async(op)
        assert op.calls == 1

    async def test_caller_cancellation_propagates(self, builder, async_flaky):
        executor = (
            builder.use_async_executor()
            .with_transient_errors()
            .with_circuit_breaker()
            .build()
        )
        task = asyncio.create_task(executor.execute_async(async_flaky([], delay=50 * UNIT)))
        await asyncio.sleep(UNIT)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        breaker = executor.chain.circuit_breaker
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0


class TestFallback:
    async def test_retry_exhaustion(self, builder, async_flaky):
        calls = []

        async def fallback():
            calls.append(1)
            return "cached"

        executor = (
            builder.use_async_executor()
            .with_transient_errors(max_attempts=2)
            .with_fallback(fallback)
            .build()
        )
        assert await executor.execute_async(async_flaky([SqlError(40613)] * 2)) == "cached"
        assert calls == [1]

    async def test_circuit_open(self, builder, async_flaky):
        calls = []
        executor = (
            builder.use_async_executor()
            .with_transient_errors(max_attempts=5)
            .with_circuit_breaker()
            .with_fallback(lambda: calls.append(1) or "cached")
            .build()
        )
        assert await executor.execute_async(async_flaky([SqlError(40613)] * 5)) == "cached"
        assert await executor.execute_async(async_flaky([], result="rows")) == "cached"
        assert calls == [1, 1]

    async def test_timeout(self, builder, async_flaky):
        calls = []
        executor = (
            builder.use_async_executor()
            .with_overall_timeout(2 * UNIT)
            .with_transient_errors()
            .with_fallback(lambda: calls.append(1) or "cached")
            .build()
        )
        assert await executor.execute_async(async_flaky([], delay=20 * UNIT)) == "cached"
        assert calls == [1]


class TestSharedAsyncExecutors:
    async def test_open_circuit_visible_across_executors(self, builder, async_flaky):
        first = (
            builder.use_async_executor_with_shared_policies("orders-db")
            .with_default_policies()
            .build()
        )
        second = (
            builder.use_async_executor_with_shared_policies("orders-db")
            .with_default_policies()
            .build()
        )

        with pytest.raises(CircuitOpenError):
            await first.execute_async(async_flaky([SqlError(40613)] * 6))

        op = async_flaky([], result="rows")
        with pytest.raises(CircuitOpenError):
            await second.execute_async(op)
        assert op.calls == 0

    async def test_sync_and_async_share_one_breaker(self, builder, flaky, async_flaky):
        sync_executor = (
            builder.use_sync_executor_with_shared_policies("orders-db")
            .with_default_policies()
            .build()
        )
        async_executor = (
            builder.use_async_executor_with_shared_policies("orders-db")
            .with_default_policies()
            .build()
        )

        with pytest.raises(CircuitOpenError):
            await async_executor.execute_async(async_flaky([SqlError(40613)] * 6))

        op = flaky([], result="rows")
        with pytest.raises(CircuitOpenError):
            sync_executor.execute(op)
        assert op.calls == 0

    async def test_unknown_name(self):
        executor = SharedPolicyAsyncExecutor(PolicyRegistry(), "missing")
        with pytest.raises(PolicyNotFoundError):
            await executor.execute_async(lambda: 1)
        result = await executor.execute_result_async(lambda: 1)
        assert result.kind == FailureKind.CONFIGURATION
