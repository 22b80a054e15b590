"""
Chart client: the fetch orchestrator for the stable (unauthenticated)
endpoint family.

Every verbose operation goes through fetch_chart():
validate -> range warnings -> build query -> transport (retry + mirrors)
-> classify, then applies its own shape checks. Results are always
Envelopes echoing the request; nothing is raised to the caller.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

from finfetch.config import Settings, get_settings
from finfetch.data.batch import BatchCoordinator
from finfetch.data.transport import Transport
from finfetch.logging import get_logger, log_context
from finfetch.query import build_query
from finfetch.types import ChartRequest, Envelope, Failure, FailureKind, err
from finfetch.validation import interval_range_warnings, validate_request

logger = get_logger(__name__)

INFO_FIELDS = (
    "symbol",
    "long_name",
    "short_name",
    "currency",
    "exchange_name",
    "full_exchange_name",
    "instrument_type",
    "regular_market_price",
    "regular_market_volume",
    "regular_market_day_high",
    "regular_market_day_low",
    "fifty_two_week_high",
    "fifty_two_week_low",
    "chart_previous_close",
    "timezone",
    "gmt_offset",
    "exchange_timezone_name",
    "first_trade_date",
    "regular_market_time",
    "has_pre_post_market_data",
    "price_hint",
)

OHLCV_FIELDS = ("open", "high", "low", "close", "volume")


def _missing(request: ChartRequest, kind: FailureKind, message: str, **detail: Any) -> Failure:
    return Failure(kind=kind, message=message, subject=request.subject, detail=detail)


def history_rows(payload: dict[str, Any], adjusted: bool) -> list[dict[str, Any]] | Failure:
    """Transpose chart arrays into row records.

    Every array must be present, be a list, and have the same length as
    the timestamps; otherwise a missing-data Failure is returned instead of
    a truncated series.
    """
    times = payload.get("timestamp")
    indicators = payload.get("indicators")
    if not isinstance(indicators, dict):
        return Failure(FailureKind.MISSING_DATA, "Missing indicator data")
    quotes = indicators.get("quote") or []
    quote = quotes[0] if isinstance(quotes, list) and quotes else None

    if not isinstance(times, list):
        return Failure(FailureKind.MISSING_DATA, "Missing timestamp data")
    if not isinstance(quote, dict):
        return Failure(FailureKind.MISSING_DATA, "Missing quote data")

    columns: dict[str, list[Any]] = {}
    for name in OHLCV_FIELDS:
        values = quote.get(name)
        if not isinstance(values, list):
            return Failure(FailureKind.MISSING_DATA, "Missing required OHLCV fields", detail={"field": name})
        columns[name] = values

    adj_close = None
    if adjusted:
        adj_blocks = indicators.get("adjclose") or []
        if isinstance(adj_blocks, list) and adj_blocks and isinstance(adj_blocks[0], dict):
            adj_close = adj_blocks[0].get("adjclose")
            if adj_close is not None and not isinstance(adj_close, list):
                return Failure(FailureKind.MISSING_DATA, "Malformed adjusted close data")

    lengths = {"timestamp": len(times), **{name: len(values) for name, values in columns.items()}}
    if adj_close is not None:
        lengths["adj_close"] = len(adj_close)
    if len(set(lengths.values())) > 1:
        return Failure(FailureKind.MISSING_DATA, "Misaligned time series arrays", detail={"lengths": lengths})

    rows = []
    for i, ts in enumerate(times):
        row = {"timestamp": ts, **{name: columns[name][i] for name in OHLCV_FIELDS}}
        if adj_close is not None and adj_close[i] is not None:
            row["adj_close"] = adj_close[i]
        rows.append(row)
    return rows


class ChartClient:
    """Client for the provider's chart endpoint.

    Provides:
    - fetch_chart: the shared pipeline every operation builds on
    - fetch_price / fetch_prices: latest regular-market price
    - fetch_historical: OHLCV rows
    - fetch_dividends_splits: corporate action events
    - fetch_info: basic instrument metadata
    """

    def __init__(
        self,
        transport: Transport | None = None,
        settings: Settings | None = None,
        batch: BatchCoordinator | None = None,
    ) -> None:
        """Initialize chart client.

        Args:
            transport: Transport over the chart mirrors. Created if None.
            settings: Settings; defaults to get_settings().
            batch: Batch coordinator used by fetch_prices.
        """
        self.settings = settings or get_settings()
        self.transport = transport or Transport(self.settings.CHART_BASE_URLS, settings=self.settings)
        self.batch = batch or BatchCoordinator(self.settings)

    async def close(self) -> None:
        """Close the underlying transport."""
        await self.transport.close()

    async def __aenter__(self) -> ChartClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def fetch_chart(self, request: ChartRequest, now: datetime | None = None) -> Envelope[dict[str, Any]]:
        """Run the full pipeline for one chart request.

        Args:
            request: The chart request.
            now: Reference time for open-ended windows (tests pin it).

        Returns:
            Envelope with the normalized first chart result, warnings and a
            request echo.
        """
        validation = validate_request(request)
        if not validation.success:
            logger.info("Rejected invalid request", field=validation.failure.detail.get("field"))
            return validation

        warnings = interval_range_warnings(request, now=now)
        for warning in warnings:
            logger.warning(warning.message, interval=request.interval)

        query = build_query(request, now=now)
        result = await self.transport.fetch(
            query.path_segment,
            query.params,
            subject=request.subject,
            root="chart",
        )
        return result.with_request(request).with_warnings(warnings)

    async def _guarded(self, operation: str, request: ChartRequest, shape: Any) -> Envelope[Any]:
        """Run fetch_chart plus a shape check, converting stray exceptions."""
        with log_context(subject=request.subject, operation=operation):
            try:
                result = await self.fetch_chart(request)
                if not result.success:
                    return result
                shaped = shape(result.payload)
                if isinstance(shaped, Failure):
                    logger.warning("Response failed shape check", kind=shaped.kind.value, reason=shaped.message)
                    return result.fail(shaped.with_subject(request.subject))
                return result.map_payload(lambda _: shaped)
            except Exception as e:
                logger.exception("Unexpected error", error=str(e))
                return err(
                    FailureKind.EXCEPTION,
                    f"Unexpected error: {e}",
                    subject=request.subject,
                    request=request,
                )

    async def fetch_price(self, subject: str) -> Envelope[float]:
        """Fetch the current regular-market price for one subject."""
        request = ChartRequest(subject=subject, interval="1d", period="1d")

        def shape(payload: dict[str, Any]) -> Any:
            meta = payload.get("meta")
            price = meta.get("regular_market_price") if isinstance(meta, dict) else None
            if price is None:
                return _missing(request, FailureKind.MISSING_PRICE, "No regular market price in response")
            return price

        return await self._guarded("fetch_price", request, shape)

    async def fetch_prices(
        self,
        subjects: Sequence[str],
        concurrency: Any = None,
    ) -> dict[str, Envelope[float]]:
        """Fetch prices for many subjects concurrently.

        Args:
            subjects: Subjects to fetch; duplicates collapse to one entry.
            concurrency: Maximum in-flight fetches (default BATCH_CONCURRENCY).

        Returns:
            One envelope per distinct subject. Never raises.
        """
        if concurrency is None:
            concurrency = self.settings.BATCH_CONCURRENCY
        return await self.batch.fetch_many(subjects, self.fetch_price, concurrency)

    async def fetch_historical(
        self,
        subject: str,
        period: str | None = None,
        interval: str = "1d",
        start: int | datetime | None = None,
        end: int | datetime | None = None,
        adjusted: bool = True,
        prepost: bool = False,
    ) -> Envelope[list[dict[str, Any]]]:
        """Fetch historical OHLCV rows.

        Period defaults to "1y" when no start is given. Invalid values are
        rejected before any I/O; valid but incompatible interval/window
        combinations only produce a warning.

        Returns:
            Envelope of rows {timestamp, open, high, low, close, volume,
            adj_close?}.
        """
        if period is None and start is None and end is None:
            period = "1y"
        request = ChartRequest(
            subject=subject,
            period=period,
            interval=interval,
            start=start,
            end=end,
            adjusted=adjusted,
            prepost=prepost,
        )
        return await self._guarded(
            "fetch_historical",
            request,
            lambda payload: history_rows(payload, adjusted),
        )

    async def fetch_dividends_splits(
        self,
        subject: str,
        period: str | None = None,
        start: int | datetime | None = None,
        end: int | datetime | None = None,
    ) -> Envelope[dict[str, dict[str, Any]]]:
        """Fetch dividend and split events, keyed by epoch-second strings.

        Period defaults to "5y" when no start is given.
        """
        if period is None and start is None and end is None:
            period = "5y"
        request = ChartRequest(
            subject=subject,
            period=period,
            interval="1d",
            start=start,
            end=end,
            events="div|split",
        )

        def shape(payload: dict[str, Any]) -> Any:
            events = payload.get("events") or {}
            if not isinstance(events, dict):
                return _missing(request, FailureKind.MISSING_DATA, "Malformed events data", field="events")
            shaped = {}
            for name in ("dividends", "splits"):
                entries = events.get(name) or {}
                if not isinstance(entries, dict):
                    return _missing(request, FailureKind.MISSING_DATA, "Malformed events data", field=name)
                shaped[name] = entries
            return shaped

        return await self._guarded("fetch_dividends_splits", request, shape)

    async def fetch_info(self, subject: str) -> Envelope[dict[str, Any]]:
        """Fetch basic instrument metadata from the chart meta block."""
        request = ChartRequest(subject=subject, interval="1d", period="1d")

        def shape(payload: dict[str, Any]) -> Any:
            meta = payload.get("meta")
            if not isinstance(meta, dict) or not meta:
                return _missing(request, FailureKind.MISSING_METADATA, "No metadata in response")
            return {key: meta[key] for key in INFO_FIELDS if key in meta}

        return await self._guarded("fetch_info", request, shape)
