"""
Request validation for chart fetches.

Two checks run before any network I/O:
- validate_request(): rejects malformed requests with an invalid-request
  envelope (first failing rule wins)
- interval_range_warnings(): flags windows that are too wide for the
  requested sampling without rejecting them; the provider decides
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Mapping

from finfetch.types import (
    ChartRequest,
    Envelope,
    FailureKind,
    FetchWarning,
    WarningKind,
    err,
    ok,
    to_epoch,
    utc_now,
)

ALLOWED_PERIODS = frozenset(
    {"1d", "5d", "1mo", "3mo", "6mo", "1y", "2y", "5y", "10y", "ytd", "max"}
)

ALLOWED_INTERVALS = frozenset(
    {"1m", "2m", "5m", "15m", "30m", "60m", "90m", "1h", "1d", "5d", "1wk", "1mo", "3mo"}
)

# Provider limits observed in practice, not a documented contract.
INTERVAL_MAX_DAYS: Mapping[str, float] = {
    "1m": 7,
    "2m": 60,
    "5m": 60,
    "15m": 60,
    "30m": 60,
    "60m": 730,
    "90m": 60,
    "1h": 730,
    "1d": math.inf,
    "5d": math.inf,
    "1wk": math.inf,
    "1mo": math.inf,
    "3mo": math.inf,
}

PERIOD_DAYS: Mapping[str, float] = {
    "1d": 1,
    "5d": 5,
    "1mo": 30,
    "3mo": 90,
    "6mo": 180,
    "1y": 365,
    "2y": 730,
    "5y": 1825,
    "10y": 3650,
    "ytd": math.inf,
    "max": math.inf,
}

SECONDS_PER_DAY = 86400


def _is_instant(value: Any) -> bool:
    return isinstance(value, datetime) or (isinstance(value, int) and not isinstance(value, bool))


def validate_request(request: ChartRequest) -> Envelope[None]:
    """Validate a chart request's shape.

    Args:
        request: The request to check.

    Returns:
        Successful envelope with no payload, or an invalid-request envelope
        whose detail names the offending field.
    """
    subject = request.subject
    start, end, period, interval = request.start, request.end, request.period, request.interval

    if end is not None and start is None:
        return err(
            FailureKind.INVALID_REQUEST,
            "end requires start. Provide both, or use period.",
            subject=subject,
            request=request,
            field="end",
            value=end,
        )

    if period is None and start is None:
        return err(
            FailureKind.INVALID_REQUEST,
            "Provide period (range) or start (with optional end).",
            subject=subject,
            request=request,
            field="period",
            value=period,
        )

    for name, value in (("start", start), ("end", end)):
        if value is not None and not _is_instant(value):
            return err(
                FailureKind.INVALID_REQUEST,
                f"{name} must be epoch seconds (int) or a datetime",
                subject=subject,
                request=request,
                field=name,
                value=value,
            )

    if period is not None and period not in ALLOWED_PERIODS:
        allowed = sorted(ALLOWED_PERIODS)
        return err(
            FailureKind.INVALID_REQUEST,
            f"Invalid period: {period}. Must be one of: {', '.join(allowed)}",
            subject=subject,
            request=request,
            field="period",
            value=period,
            allowed=allowed,
        )

    if interval is not None and interval not in ALLOWED_INTERVALS:
        allowed = sorted(ALLOWED_INTERVALS)
        return err(
            FailureKind.INVALID_REQUEST,
            f"Invalid interval: {interval}. Must be one of: {', '.join(allowed)}",
            subject=subject,
            request=request,
            field="interval",
            value=interval,
            allowed=allowed,
        )

    if start is not None and end is not None and to_epoch(start) > to_epoch(end):  # type: ignore[operator]
        return err(
            FailureKind.INVALID_REQUEST,
            "start must be <= end",
            subject=subject,
            request=request,
            field="start/end",
            start=start,
            end=end,
        )

    return ok(request=request)


def requested_days(request: ChartRequest, now: datetime | None = None) -> float:
    """Approximate span of the request window in days."""
    if request.start is not None:
        end = request.end if request.end is not None else (now or utc_now())
        return (to_epoch(end) - to_epoch(request.start)) / SECONDS_PER_DAY  # type: ignore[operator]
    return PERIOD_DAYS.get(request.period or "", 365)


def interval_range_warnings(
    request: ChartRequest,
    now: datetime | None = None,
    max_days_table: Mapping[str, float] | None = None,
) -> list[FetchWarning]:
    """Warn when the sampling is too fine for the requested window.

    Args:
        request: A request that already passed validate_request().
        now: Reference time for open-ended windows (defaults to now).
        max_days_table: Override for INTERVAL_MAX_DAYS.

    Returns:
        A list with at most one warning. Empty if compatible.
    """
    if request.interval is None:
        return []

    table = INTERVAL_MAX_DAYS if max_days_table is None else max_days_table
    max_days = table.get(request.interval, math.inf)
    req_days = requested_days(request, now)

    if req_days <= max_days:
        return []

    shown = int(req_days) if math.isfinite(req_days) else req_days
    return [
        FetchWarning(
            kind=WarningKind.SAMPLING_TOO_FINE_FOR_WINDOW,
            message=f"{request.interval} limited to {max_days:g} days; requested ~{shown}",
            detail={
                "interval": request.interval,
                "max_days": max_days,
                "requested_days": shown,
            },
        )
    ]
