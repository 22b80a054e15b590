"""
Query building for provider URLs.

Pure functions: a validated ChartRequest becomes a percent-encoded path
segment plus an ordered parameter dict; parameters with no value are
dropped, never sent as empty placeholders.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping
from urllib.parse import quote

from finfetch.types import ChartRequest, to_epoch, utc_now


@dataclass(frozen=True)
class Query:
    """Path segment and ordered query parameters for one provider call."""

    path_segment: str
    params: dict[str, Any]

    @property
    def query_string(self) -> str:
        return encode_query(self.params)


def encode_path_segment(value: str) -> str:
    """Percent-encode a subject for use as a single URL path segment.

    Unreserved characters (letters, digits, "-", ".", "_", "~") pass through,
    so "BRK-B" is unchanged while "^GSPC" becomes "%5EGSPC".
    """
    return quote(str(value), safe="")


def encode_query(params: Mapping[str, Any]) -> str:
    """Join present parameters as k=v pairs with "&", percent-encoding both.

    Returns an empty string (no leading "?") when nothing is present.
    """
    return "&".join(
        f"{quote(str(key), safe='')}={quote(str(value), safe='')}"
        for key, value in params.items()
        if value is not None
    )


def build_url(base_url: str, path_segment: str, params: Mapping[str, Any] | None = None) -> str:
    """Join a mirror base URL, path segment and query string."""
    query_string = encode_query(params or {})
    url = f"{base_url}{path_segment}"
    return f"{url}?{query_string}" if query_string else url


def time_params(request: ChartRequest, now: datetime | None = None) -> dict[str, Any]:
    """Translate period/start/end into range or period1/period2."""
    if request.start is None:
        return {"range": request.period}
    end = request.end if request.end is not None else (now or utc_now())
    return {"period1": to_epoch(request.start), "period2": to_epoch(end)}


def build_query(request: ChartRequest, now: datetime | None = None) -> Query:
    """Map a validated request to provider query parameters.

    Args:
        request: Request that passed validate_request().
        now: Reference time used when start is set without end.

    Returns:
        Query with the encoded subject and the ordered parameters.
    """
    params: dict[str, Any] = {}
    if request.interval is not None:
        params["interval"] = request.interval
    params.update(time_params(request, now))
    if request.events is not None:
        params["events"] = request.events
    if request.adjusted:
        params["includeAdjustedClose"] = "true"
    if request.prepost:
        params["includePrePost"] = "true"

    return Query(
        path_segment=encode_path_segment(request.subject),
        params={k: v for k, v in params.items() if v is not None},
    )
