"""Fallback policy: substitute a handler's outcome for any terminal failure."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, ClassVar

from policywrap.core.logging import get_logger
from policywrap.core.result import Result, try_result, try_result_async
from policywrap.execution.context import PolicyContext

logger = get_logger(__name__)


@dataclass(frozen=True)
class FallbackPolicy:
    """Outermost policy. Runs ``handler`` exactly once when the chain fails.

    The handler's return value becomes the execution's value; the original
    failure is suppressed. A handler that raises replaces the original
    failure with its own.
    """

    handler: Callable[[], Any]
    nesting_order: ClassVar[int] = 0

    @property
    def name(self) -> str:
        return "fallback"

    def _invoked(self, result: Result[Any]) -> None:
        logger.warning(
            "fallback_invoked",
            kind=result.kind.value,
            error=repr(result.error),
        )

    def execute(self, ctx: PolicyContext, call: Callable[[], Result[Any]]) -> Result[Any]:
        result = call()
        if result.is_ok():
            return result
        self._invoked(result)
        return try_result(self.handler)

    async def execute_async(
        self, ctx: PolicyContext, call: Callable[[], Awaitable[Result[Any]]]
    ) -> Result[Any]:
        result = await call()
        if result.is_ok():
            return result
        self._invoked(result)
        return await try_result_async(self.handler)


__all__ = ["FallbackPolicy"]
