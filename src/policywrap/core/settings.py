"""Settings for policy defaults.

The default bundle (``with_default_policies``) and every individual selector
called without explicit arguments take their numbers from ``PolicySettings``.
Values are read from ``POLICYWRAP_*`` environment variables and a ``.env``
file, validated by pydantic at startup.

Examples:
    >>> from policywrap.core.settings import PolicySettings
    >>> settings = PolicySettings(backoff_unit_seconds=0.01)
    >>> settings.backoff_delay(3)
    0.08
    >>> PolicySettings().resolved_overall_timeout()
    72.0

Tags:
    settings, configuration, pydantic, environment, policywrap

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PolicySettings(BaseSettings):
    """Defaults used when building policy chains.

    Fields
    ──────
    max_attempts                  : Tries per call, first try included
    backoff_base                  : Exponential base; delay(i) = unit * base**i
    backoff_unit_seconds          : Length of one back-off time unit
    backoff_max_seconds           : Optional cap on a single back-off wait
    failure_threshold             : Consecutive matching failures that open a circuit
    break_duration_seconds        : How long an open circuit rejects calls
    overall_timeout_seconds       : Bound on a whole retry sequence (derived if unset)
    overall_timeout_slack_units   : Time units added to the derived overall timeout
    log_level                     : Structlog log level
    json_logs                     : JSON output; None auto-detects from the TTY
    """

    model_config = SettingsConfigDict(
        env_prefix="POLICYWRAP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Retry ────────────────────────────────────────────────────
    max_attempts: int = Field(default=6, ge=1)
    backoff_base: float = Field(default=2.0, ge=1.0)
    backoff_unit_seconds: float = Field(default=1.0, gt=0)
    backoff_max_seconds: float | None = Field(default=None, gt=0)

    # ── Circuit breaker ──────────────────────────────────────────
    failure_threshold: int = Field(default=3, ge=1)
    break_duration_seconds: float = Field(default=30.0, gt=0)

    # ── Timeouts ─────────────────────────────────────────────────
    overall_timeout_seconds: float | None = Field(default=None, gt=0)
    overall_timeout_slack_units: float = Field(default=10.0, ge=0)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    @model_validator(mode="after")
    def _check_log_level(self) -> PolicySettings:
        if self.log_level.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {self.log_level}")
        return self

    def backoff_delay(self, attempt: int) -> float:
        """Back-off after the given (1-based) failed attempt."""
        delay = self.backoff_unit_seconds * (self.backoff_base ** attempt)
        if self.backoff_max_seconds is not None:
            delay = min(delay, self.backoff_max_seconds)
        return delay

    def resolved_overall_timeout(self, max_attempts: int | None = None) -> float:
        """Overall timeout: configured, or every back-off of the budget plus slack.

        Args:
            max_attempts: Retry budget to cover; defaults to ``self.max_attempts``
        """
        if self.overall_timeout_seconds is not None:
            return self.overall_timeout_seconds
        attempts = self.max_attempts if max_attempts is None else max_attempts
        waits = sum(self.backoff_delay(i) for i in range(1, attempts))
        return waits + self.overall_timeout_slack_units * self.backoff_unit_seconds


@lru_cache
def get_settings() -> PolicySettings:
    """Process-wide settings instance, loaded once."""
    return PolicySettings()


__all__ = ["PolicySettings", "get_settings"]
