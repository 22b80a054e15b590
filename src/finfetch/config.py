"""
Configuration management using pydantic-settings.

Loads configuration from FINFETCH_-prefixed environment variables and .env
files. Every value has a working default; the provider needs no API key.
"""

from __future__ import annotations

import math
from functools import lru_cache
from typing import Literal

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from finfetch.exceptions import ConfigurationError

DEFAULT_CHART_BASE_URLS = [
    "https://query1.finance.yahoo.com/v8/finance/chart/",
    "https://query2.finance.yahoo.com/v8/finance/chart/",
]
DEFAULT_QUOTE_SUMMARY_BASE_URLS = [
    "https://query1.finance.yahoo.com/v10/finance/quoteSummary/",
    "https://query2.finance.yahoo.com/v10/finance/quoteSummary/",
]
DEFAULT_OPTIONS_BASE_URLS = [
    "https://query1.finance.yahoo.com/v7/finance/options/",
    "https://query2.finance.yahoo.com/v7/finance/options/",
]
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Transport:
        CONNECT_TIMEOUT / REQUEST_TIMEOUT: seconds, request >= connect
        MAX_ATTEMPTS, BASE_DELAY_MS, JITTER_MS: per-mirror retry policy
        *_BASE_URLS: ordered mirror lists, at least two per endpoint family

    Session:
        COOKIE_URL, CRUMB_URL, AUTH_USER_AGENT, SESSION_LIFETIME_SECONDS

    Batch:
        BATCH_CONCURRENCY, BATCH_UNIT_TIMEOUT, BATCH_SHUTDOWN_GRACE
    """

    model_config = SettingsConfigDict(
        env_prefix="FINFETCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Transport
    CONNECT_TIMEOUT: float = Field(default=10.0, gt=0.0, description="Connect timeout (s)")
    REQUEST_TIMEOUT: float = Field(default=15.0, gt=0.0, description="Per-request timeout (s)")
    MAX_ATTEMPTS: int = Field(default=3, ge=1, le=10, description="Attempts per mirror")
    BASE_DELAY_MS: int = Field(default=250, ge=0, description="First backoff delay (ms)")
    JITTER_MS: int = Field(default=100, ge=0, description="Max random jitter per sleep (ms)")
    USER_AGENT: str = Field(default="Mozilla/5.0", description="User-Agent for stable endpoints")

    CHART_BASE_URLS: list[str] = Field(default_factory=lambda: list(DEFAULT_CHART_BASE_URLS))
    QUOTE_SUMMARY_BASE_URLS: list[str] = Field(
        default_factory=lambda: list(DEFAULT_QUOTE_SUMMARY_BASE_URLS)
    )
    OPTIONS_BASE_URLS: list[str] = Field(default_factory=lambda: list(DEFAULT_OPTIONS_BASE_URLS))

    # Authenticated session
    COOKIE_URL: str = Field(default="https://fc.yahoo.com", description="Cookie priming URL")
    CRUMB_URL: str = Field(
        default="https://query2.finance.yahoo.com/v1/test/getcrumb",
        description="Crumb exchange URL",
    )
    AUTH_USER_AGENT: str = Field(default=BROWSER_USER_AGENT)
    SESSION_LIFETIME_SECONDS: float = Field(default=3600.0, gt=0.0)

    # Batch coordinator
    BATCH_CONCURRENCY: int = Field(default=8, ge=1, le=64)
    BATCH_UNIT_TIMEOUT: float = Field(default=20.0, gt=0.0)
    BATCH_SHUTDOWN_GRACE: float = Field(default=5.0, ge=0.0)

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    @field_validator("CHART_BASE_URLS", "QUOTE_SUMMARY_BASE_URLS", "OPTIONS_BASE_URLS")
    @classmethod
    def validate_mirrors(cls, v: list[str]) -> list[str]:
        """Require at least two mirrors, each ending with a slash."""
        if len(v) < 2:
            raise ValueError("at least two mirror base URLs are required")
        return [url if url.endswith("/") else f"{url}/" for url in v]

    @field_validator("CONNECT_TIMEOUT", "REQUEST_TIMEOUT", "BATCH_UNIT_TIMEOUT")
    @classmethod
    def validate_finite(cls, v: float) -> float:
        """Timeouts must be finite."""
        if not math.isfinite(v):
            raise ValueError("timeout must be finite")
        return v

    @model_validator(mode="after")
    def validate_timeouts(self) -> Settings:
        """Per-request timeout may not be shorter than the connect timeout."""
        if self.REQUEST_TIMEOUT < self.CONNECT_TIMEOUT:
            raise ValueError(
                f"REQUEST_TIMEOUT ({self.REQUEST_TIMEOUT}) must be >= "
                f"CONNECT_TIMEOUT ({self.CONNECT_TIMEOUT})"
            )
        return self

    @property
    def base_delay(self) -> float:
        """First backoff delay in seconds."""
        return self.BASE_DELAY_MS / 1000.0

    @property
    def jitter(self) -> float:
        """Max jitter in seconds."""
        return self.JITTER_MS / 1000.0

    def display(self) -> dict[str, str | int | float | list[str]]:
        """Return settings as a flat dict for diagnostics."""
        return {
            "CONNECT_TIMEOUT": self.CONNECT_TIMEOUT,
            "REQUEST_TIMEOUT": self.REQUEST_TIMEOUT,
            "MAX_ATTEMPTS": self.MAX_ATTEMPTS,
            "BASE_DELAY_MS": self.BASE_DELAY_MS,
            "JITTER_MS": self.JITTER_MS,
            "CHART_BASE_URLS": self.CHART_BASE_URLS,
            "QUOTE_SUMMARY_BASE_URLS": self.QUOTE_SUMMARY_BASE_URLS,
            "OPTIONS_BASE_URLS": self.OPTIONS_BASE_URLS,
            "COOKIE_URL": self.COOKIE_URL,
            "CRUMB_URL": self.CRUMB_URL,
            "SESSION_LIFETIME_SECONDS": self.SESSION_LIFETIME_SECONDS,
            "BATCH_CONCURRENCY": self.BATCH_CONCURRENCY,
            "BATCH_UNIT_TIMEOUT": self.BATCH_UNIT_TIMEOUT,
            "BATCH_SHUTDOWN_GRACE": self.BATCH_SHUTDOWN_GRACE,
            "LOG_LEVEL": self.LOG_LEVEL,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ConfigurationError: If settings are invalid.
    """
    try:
        return Settings()
    except ValidationError as e:
        fields = [".".join(str(part) for part in error["loc"]) for error in e.errors()]
        raise ConfigurationError(
            "Invalid finfetch settings",
            context={"fields": fields, "errors": e.error_count()},
        ) from e


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
