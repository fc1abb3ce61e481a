"""Environment-driven settings for retryspine.

Retry and batch defaults can be tuned per deployment without code changes:
every field reads from a ``RETRYSPINE_``-prefixed environment variable or
from a ``.env`` file.

Fields
──────
max_retries        : Retries after the first attempt (total = max_retries + 1)
base_delay         : First backoff delay in seconds
max_delay          : Backoff ceiling in seconds
factor             : Exponential growth factor
jitter             : none | full | equal | decorrelated
attempt_timeout    : Per-attempt timeout in seconds (unset = no timeout)
batch_concurrency  : Default number of concurrent batch workers
batch_max_items    : Inputs beyond this are dropped by the artifact pipeline
log_level          : structlog log level
json_logs          : Force JSON (true) / console (false) output, unset = auto

Examples:
    >>> import os
    >>> os.environ["RETRYSPINE_MAX_RETRIES"] = "2"
    >>> get_settings(reload=True).max_retries
    2
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RetrySpineSettings(BaseSettings):
    """Default retry policy and batch limits, read from the environment."""

    model_config = SettingsConfigDict(
        env_prefix="RETRYSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Retry policy ─────────────────────────────────────────────
    max_retries: int = Field(default=5, ge=0)
    base_delay: float = Field(default=0.25, ge=0)
    max_delay: float = Field(default=10.0, ge=0)
    factor: float = Field(default=2.0, ge=1)
    jitter: str = Field(default="full", pattern="^(none|full|equal|decorrelated)$")
    attempt_timeout: float | None = Field(default=None, gt=0)

    # ── Batch ────────────────────────────────────────────────────
    batch_concurrency: int = Field(default=2, ge=1)
    batch_max_items: int = Field(default=20, ge=1)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    @model_validator(mode="after")
    def _check_delay_bounds(self) -> RetrySpineSettings:
        if self.max_delay < self.base_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= base_delay ({self.base_delay})"
            )
        return self


@lru_cache(maxsize=1)
def _cached_settings() -> RetrySpineSettings:
    return RetrySpineSettings()


def get_settings(*, reload: bool = False) -> RetrySpineSettings:
    """Return the process-wide settings, re-reading the environment on ``reload``."""
    if reload:
        _cached_settings.cache_clear()
    return _cached_settings()
