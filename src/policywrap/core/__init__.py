"""Policywrap Core -- errors, results, logging and settings.

Architecture::

    errors.py      FailureKind taxonomy + PolicyError hierarchy
    result.py      Result[T] envelope (Ok / Err / try_result)
    logging.py     structlog configuration + LogContext
    settings.py    PolicySettings (pydantic-settings, POLICYWRAP_* env)
"""

from policywrap.core.errors import (
    CircuitOpenError,
    ConfigurationError,
    ConfigurationProblem,
    FailureKind,
    PolicyError,
    PolicyNotFoundError,
    TimeoutExpired,
    failure_kind,
)
from policywrap.core.logging import (
    LogContext,
    configure_from_settings,
    configure_logging,
    get_logger,
)
from policywrap.core.result import Err, Ok, Result, try_result, try_result_async
from policywrap.core.settings import PolicySettings, get_settings

__all__ = [
    # Errors
    "CircuitOpenError",
    "ConfigurationError",
    "ConfigurationProblem",
    "FailureKind",
    "PolicyError",
    "PolicyNotFoundError",
    "TimeoutExpired",
    "failure_kind",
    # Result
    "Err",
    "Ok",
    "Result",
    "try_result",
    "try_result_async",
    # Logging
    "LogContext",
    "configure_from_settings",
    "configure_logging",
    "get_logger",
    # Settings
    "PolicySettings",
    "get_settings",
]
