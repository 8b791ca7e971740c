"""
Shared pytest fixtures and configuration for policywrap tests.

This module provides:
- Registry and settings cleanup fixtures for test isolation
- Fast settings (20 ms back-off unit) so timing properties run quickly
- Scripted operations that fail a given way a given number of times

Usage:
    Fixtures are auto-discovered by pytest. Use them as function arguments:

    def test_retry(builder, flaky):
        op = flaky([SqlError(40613)], result="ok")
        assert builder.with_transient_errors().build().execute(op) == "ok"
"""

import asyncio
import sys
import time
from pathlib import Path
from typing import Any, Generator

import pytest

# Ensure policywrap package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from policywrap.core.settings import PolicySettings, get_settings
from policywrap.execution.builder import PolicyBuilder
from policywrap.execution.registry import PolicyRegistry, reset_default_registry

# One back-off time unit in tests, in seconds.
UNIT = 0.02


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "integration" in str(test_path) or "executor" in test_path.name:
            item.add_marker(pytest.mark.integration)

        # Mark all tests without explicit markers as unit tests
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def clean_default_registry() -> Generator[None, None, None]:
    """Reset the default registry and cached settings around each test."""
    reset_default_registry()
    get_settings.cache_clear()
    yield
    reset_default_registry()
    get_settings.cache_clear()


# =============================================================================
# Builder Fixtures
# =============================================================================


@pytest.fixture
def fast_settings() -> PolicySettings:
    """Default policy numbers with a 20 ms time unit and a short break."""
    return PolicySettings(
        max_attempts=6,
        backoff_base=2.0,
        backoff_unit_seconds=UNIT,
        backoff_max_seconds=None,
        failure_threshold=3,
        break_duration_seconds=0.3,
        overall_timeout_seconds=None,
        overall_timeout_slack_units=10.0,
    )


@pytest.fixture
def registry() -> PolicyRegistry:
    """Isolated registry for shared-chain tests."""
    return PolicyRegistry()


@pytest.fixture
def builder(fast_settings: PolicySettings, registry: PolicyRegistry) -> PolicyBuilder:
    """Builder wired to fast settings and an isolated registry."""
    return PolicyBuilder(settings=fast_settings, registry=registry)


# =============================================================================
# Scripted Operations
# =============================================================================


class FlakyOperation:
    """Raises the scripted errors in order, then returns ``result``.

    ``calls`` counts invocations; ``call_times`` records when each started.
    """

    def __init__(self, errors: list[BaseException], result: Any = "ok", delay: float = 0.0):
        self.errors = list(errors)
        self.result = result
        self.delay = delay
        self.calls = 0
        self.call_times: list[float] = []

    def __call__(self) -> Any:
        self.calls += 1
        self.call_times.append(time.monotonic())
        if self.delay:
            time.sleep(self.delay)
        if self.calls <= len(self.errors):
            raise self.errors[self.calls - 1]
        return self.result


class AsyncFlakyOperation(FlakyOperation):
    """Awaitable counterpart of FlakyOperation; the delay is an asyncio sleep."""

    async def __call__(self) -> Any:
        self.calls += 1
        self.call_times.append(time.monotonic())
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.calls <= len(self.errors):
            raise self.errors[self.calls - 1]
        return self.result


@pytest.fixture
def flaky() -> type[FlakyOperation]:
    """Factory for blocking scripted operations."""
    return FlakyOperation


@pytest.fixture
def async_flaky() -> type[AsyncFlakyOperation]:
    """Factory for awaitable scripted operations."""
    return AsyncFlakyOperation
