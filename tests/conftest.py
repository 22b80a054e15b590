"""
Pytest configuration and fixtures for finfetch tests.

No test touches the network: HTTP is faked with httpx.MockTransport and
backoff sleeps are recorded instead of awaited.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from typing import Any, Generator
from unittest.mock import patch

import httpx
import orjson
import pytest

from finfetch.config import Settings, clear_settings_cache

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def mock_env_vars() -> Generator[dict[str, str], None, None]:
    """Provide environment overrides for settings tests."""
    env_vars = {
        "FINFETCH_CONNECT_TIMEOUT": "5",
        "FINFETCH_REQUEST_TIMEOUT": "12",
        "FINFETCH_BATCH_CONCURRENCY": "4",
        "FINFETCH_LOG_LEVEL": "DEBUG",
    }
    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def settings() -> Settings:
    """Settings with defaults and short batch timings."""
    return Settings(
        _env_file=None,
        CHART_BASE_URLS=["https://mirror1.test/chart/", "https://mirror2.test/chart/"],
        QUOTE_SUMMARY_BASE_URLS=["https://mirror1.test/qs/", "https://mirror2.test/qs/"],
        OPTIONS_BASE_URLS=["https://mirror1.test/options/", "https://mirror2.test/options/"],
        COOKIE_URL="https://cookie.test/",
        CRUMB_URL="https://mirror1.test/getcrumb",
        BATCH_UNIT_TIMEOUT=1.0,
        BATCH_SHUTDOWN_GRACE=0.5,
    )


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleep() -> SleepRecorder:
    """Backoff sleep that returns immediately."""
    return SleepRecorder()


@pytest.fixture
def mock_client() -> Callable[[Handler], httpx.AsyncClient]:
    """Factory for AsyncClients backed by a request handler."""

    def make(handler: Handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return make


@pytest.fixture
def chart_result() -> Callable[..., dict[str, Any]]:
    """Factory for a raw (camelCase) chart result element."""

    def make(price: float | None = 189.5, rows: int = 3, **overrides: Any) -> dict[str, Any]:
        meta: dict[str, Any] = {
            "symbol": "AAPL",
            "longName": "Apple Inc.",
            "currency": "USD",
            "exchangeName": "NMS",
            "instrumentType": "EQUITY",
            "gmtoffset": -14400,
            "timezone": "EDT",
            "dataGranularity": "1d",
        }
        if price is not None:
            meta["regularMarketPrice"] = price
        result: dict[str, Any] = {
            "meta": meta,
            "timestamp": [1700000000 + i * 86400 for i in range(rows)],
            "indicators": {
                "quote": [
                    {
                        "open": [100.0 + i for i in range(rows)],
                        "high": [101.0 + i for i in range(rows)],
                        "low": [99.0 + i for i in range(rows)],
                        "close": [100.5 + i for i in range(rows)],
                        "volume": [1000 + i for i in range(rows)],
                    }
                ],
                "adjclose": [{"adjclose": [100.4 + i for i in range(rows)]}],
            },
        }
        result.update(overrides)
        return result

    return make


@pytest.fixture
def chart_body() -> Callable[..., bytes]:
    """Factory for a serialized chart response body."""

    def make(result: list[Any] | None = None, error: Any = None) -> bytes:
        return orjson.dumps({"chart": {"result": result, "error": error}})

    return make


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
