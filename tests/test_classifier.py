"""
Tests for response classification and key normalization.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import orjson
import pytest

from finfetch.data.classifier import (
    camel_to_snake,
    classify,
    is_retryable,
    is_retryable_result,
    normalize_keys,
)
from finfetch.types import Failure, FailureKind


class TestStatusRules:
    """Status codes are classified before the body is read."""

    @pytest.mark.parametrize("status", [429, 503, 500, 502])
    def test_retryable_statuses(self, status: int) -> None:
        result = classify(status, b"not even json")
        assert not result.success
        assert result.failure.retryable
        assert is_retryable_result(result)

    @pytest.mark.parametrize("status", [404, 400, 403])
    def test_non_retryable_statuses(self, status: int) -> None:
        result = classify(status, b"{}")
        assert result.failure.kind == FailureKind.HTTP_ERROR
        assert result.failure.http_status == status
        assert not result.failure.retryable

    def test_429_is_rate_limited(self) -> None:
        assert classify(429, b"").failure.kind == FailureKind.RATE_LIMITED

    def test_401_is_auth_failed_and_not_retryable(self) -> None:
        result = classify(401, b"")
        assert result.failure.kind == FailureKind.AUTH_FAILED
        assert not is_retryable(result.failure)

    def test_subject_attached(self) -> None:
        assert classify(404, b"", subject="ZZZZ").failure.subject == "ZZZZ"


class TestBodyRules:
    """Body rules on status 200."""

    def test_malformed_body(self) -> None:
        result = classify(200, b"<html>blocked</html>")
        assert result.failure.kind == FailureKind.PARSE_ERROR
        assert not result.failure.retryable

    def test_non_object_body(self) -> None:
        assert classify(200, b"[1, 2]").failure.kind == FailureKind.PARSE_ERROR

    def test_provider_error(self, chart_body: Callable[..., bytes]) -> None:
        body = chart_body(error={"code": "Not Found", "description": "No data found, symbol may be delisted"})
        result = classify(200, body)
        assert result.failure.kind == FailureKind.API_ERROR
        assert "symbol may be delisted" in result.failure.message

    def test_missing_result_field(self) -> None:
        result = classify(200, orjson.dumps({"chart": {}}))
        assert result.failure.kind == FailureKind.API_ERROR

    def test_empty_result_is_no_data(self, chart_body: Callable[..., bytes]) -> None:
        result = classify(200, chart_body(result=[]))
        assert not result.success
        assert result.payload is None
        assert result.failure.kind == FailureKind.NO_DATA

    def test_success_returns_first_result_normalized(
        self,
        chart_body: Callable[..., bytes],
        chart_result: Callable[..., dict[str, Any]],
    ) -> None:
        result = classify(200, chart_body(result=[chart_result(), {"other": 1}]))
        assert result.success
        meta = result.payload["meta"]
        assert meta["regular_market_price"] == 189.5
        assert meta["long_name"] == "Apple Inc."
        assert meta["gmt_offset"] == -14400
        assert "other" not in result.payload

    def test_other_roots(self) -> None:
        body = orjson.dumps({"quoteSummary": {"result": [{"financialData": {"currentPrice": {"raw": 1.0}}}], "error": None}})
        result = classify(200, body, root="quoteSummary")
        assert result.payload == {"financial_data": {"current_price": {"raw": 1.0}}}


class TestKeyNormalization:
    """camelCase -> snake_case with an exception table."""

    @pytest.mark.parametrize(
        ("key", "expected"),
        [
            ("regularMarketPrice", "regular_market_price"),
            ("symbol", "symbol"),
            ("fiftyTwoWeekHigh", "fifty_two_week_high"),
            ("gmtoffset", "gmt_offset"),
            ("52WeekChange", "52_week_change"),
            ("adjclose", "adjclose"),
        ],
    )
    def test_camel_to_snake(self, key: str, expected: str) -> None:
        assert camel_to_snake(key) == expected

    def test_nested_and_lists(self) -> None:
        doc = {"outerKey": [{"innerKey": 1}], "events": {"1700000000": {"splitRatio": "4:1"}}}
        assert normalize_keys(doc) == {
            "outer_key": [{"inner_key": 1}],
            "events": {"1700000000": {"split_ratio": "4:1"}},
        }


class TestRetryability:
    """Retry decision is a pure function of the failure tag."""

    @pytest.mark.parametrize(
        ("kind", "status", "expected"),
        [
            (FailureKind.CONNECTION_ERROR, None, True),
            (FailureKind.RATE_LIMITED, 429, True),
            (FailureKind.HTTP_ERROR, 599, True),
            (FailureKind.HTTP_ERROR, 404, False),
            (FailureKind.HTTP_ERROR, None, False),
            (FailureKind.PARSE_ERROR, 200, False),
            (FailureKind.NO_DATA, 200, False),
            (FailureKind.TIMEOUT, None, False),
        ],
    )
    def test_is_retryable(self, kind: FailureKind, status: int | None, expected: bool) -> None:
        assert is_retryable(Failure(kind=kind, message="x", http_status=status)) is expected

    def test_none_is_not_retryable(self) -> None:
        assert not is_retryable(None)
