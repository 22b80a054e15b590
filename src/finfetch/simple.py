"""
Simple API: payload-only projections of the verbose operations.

Each function awaits the corresponding verbose operation and returns its
payload on success, or an empty value on failure. No validation, retry or
error handling happens here; use the verbose operations for error detail.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any, TypeVar

from finfetch.data.chart_client import ChartClient
from finfetch.data.experimental import ExperimentalClient
from finfetch.types import Envelope

T = TypeVar("T")


def payload_or(result: Envelope[T], default: T | None = None) -> T | None:
    """Return the payload of a successful envelope, else default."""
    return result.payload if result.success else default


async def fetch_price(client: ChartClient, subject: str) -> float | None:
    """Current price, or None."""
    return payload_or(await client.fetch_price(subject))


async def fetch_prices(
    client: ChartClient,
    subjects: Sequence[str],
    concurrency: int | None = None,
) -> dict[str, float]:
    """Prices for the subjects that succeeded; failures are omitted."""
    results = await client.fetch_prices(subjects, concurrency=concurrency)
    return {subject: r.payload for subject, r in results.items() if r.success}


async def fetch_historical(client: ChartClient, subject: str, **opts: Any) -> list[dict[str, Any]]:
    """OHLCV rows, or an empty list."""
    return payload_or(await client.fetch_historical(subject, **opts), []) or []


async def fetch_dividends_splits(
    client: ChartClient,
    subject: str,
    period: str | None = None,
    start: int | datetime | None = None,
    end: int | datetime | None = None,
) -> dict[str, dict[str, Any]]:
    """Dividend and split events, or empty maps."""
    result = await client.fetch_dividends_splits(subject, period=period, start=start, end=end)
    return payload_or(result) or {"dividends": {}, "splits": {}}


async def fetch_info(client: ChartClient, subject: str) -> dict[str, Any] | None:
    """Instrument metadata, or None."""
    return payload_or(await client.fetch_info(subject))


async def fetch_fundamentals(client: ExperimentalClient, subject: str) -> dict[str, Any] | None:
    """Fundamentals, or None."""
    return payload_or(await client.fetch_fundamentals(subject))


async def fetch_options(
    client: ExperimentalClient,
    subject: str,
    expiration: int | None = None,
) -> dict[str, Any] | None:
    """Options chain, or None."""
    return payload_or(await client.fetch_options(subject, expiration=expiration))
