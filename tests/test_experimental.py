"""
Tests for the authenticated fundamentals and options operations.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, patch

import httpx
import orjson
import pytest

from finfetch.config import Settings
from finfetch.data.experimental import DEFAULT_MODULES, ExperimentalClient
from finfetch.data.session import SessionManager
from finfetch.data.transport import Transport
from finfetch.types import FailureKind

QUOTE_SUMMARY = {
    "quoteSummary": {
        "result": [
            {
                "financialData": {"currentPrice": {"raw": 189.5, "fmt": "189.50"}},
                "defaultKeyStatistics": {"sharesOutstanding": {"raw": 15500000000}},
            }
        ],
        "error": None,
    }
}

OPTION_CHAIN = {
    "optionChain": {
        "result": [
            {
                "underlyingSymbol": "AAPL",
                "expirationDates": [1700179200, 1700784000],
                "strikes": [180.0, 190.0],
                "quote": {"regularMarketPrice": 189.5},
                "options": [
                    {
                        "expirationDate": 1700179200,
                        "calls": [{"contractSymbol": "AAPL231117C00180000", "strike": 180.0}],
                        "puts": [{"contractSymbol": "AAPL231117P00180000", "strike": 180.0}],
                    }
                ],
            }
        ],
        "error": None,
    }
}


class Provider:
    """Cookie, crumb and data endpoints behind one session client."""

    def __init__(
        self,
        data: Callable[[httpx.Request], httpx.Response],
        crumb_status: int = 200,
    ) -> None:
        self.data = data
        self.crumb_status = crumb_status
        self.crumb_calls = 0
        self.data_requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "cookie.test":
            return httpx.Response(404, headers={"set-cookie": "A3=d=AQABBK; Path=/"})
        if request.url.path == "/getcrumb":
            self.crumb_calls += 1
            return httpx.Response(self.crumb_status, text=f"crumb{self.crumb_calls}")
        self.data_requests.append(request)
        return self.data(request)


@pytest.fixture
def make_client(settings: Settings, sleep: Any, mock_client: Callable[..., httpx.AsyncClient]):
    def make(provider: Provider) -> ExperimentalClient:
        sessions = SessionManager(settings, client_factory=lambda s: mock_client(provider))
        return ExperimentalClient(
            sessions=sessions,
            settings=settings,
            quote_summary_transport=Transport(settings.QUOTE_SUMMARY_BASE_URLS, settings=settings, sleep=sleep),
            options_transport=Transport(settings.OPTIONS_BASE_URLS, settings=settings, sleep=sleep),
        )

    return make


def respond_json(document: dict[str, Any]) -> Callable[[httpx.Request], httpx.Response]:
    body = orjson.dumps(document)
    return lambda request: httpx.Response(200, content=body)


class TestFundamentals:
    """quoteSummary through the authenticated session."""

    @pytest.mark.asyncio
    async def test_success(self, make_client) -> None:
        provider = Provider(respond_json(QUOTE_SUMMARY))

        async with make_client(provider) as client:
            result = await client.fetch_fundamentals("AAPL")

        assert result.success
        assert result.payload["financial_data"]["current_price"]["raw"] == 189.5
        assert result.request == {"subject": "AAPL", "modules": DEFAULT_MODULES}
        request = provider.data_requests[0]
        assert request.url.path == "/qs/AAPL"
        assert request.url.params["crumb"] == "crumb1"
        assert request.url.params["modules"] == DEFAULT_MODULES

    @pytest.mark.asyncio
    async def test_subject_is_path_encoded(self, make_client) -> None:
        provider = Provider(respond_json(QUOTE_SUMMARY))
        client = make_client(provider)

        await client.fetch_fundamentals("^GSPC", modules="price")

        assert provider.data_requests[0].url.raw_path.startswith(b"/qs/%5EGSPC?")

    @pytest.mark.asyncio
    async def test_second_401_surfaces_auth_failed(self, make_client) -> None:
        provider = Provider(lambda r: httpx.Response(401))
        client = make_client(provider)

        result = await client.fetch_fundamentals("AAPL")

        assert result.failure.kind == FailureKind.AUTH_FAILED
        assert "suggestion" in result.failure.detail
        # Initial session plus exactly one forced refresh.
        assert client.sessions.refresh_count == 2
        assert provider.crumb_calls == 2
        # One non-retried 401 per mirror, for the original and the retried request.
        assert len(provider.data_requests) == 4

    @pytest.mark.asyncio
    async def test_401_then_success_after_refresh(self, make_client) -> None:
        body = orjson.dumps(QUOTE_SUMMARY)

        def data(request: httpx.Request) -> httpx.Response:
            if request.url.params["crumb"] == "crumb1":
                return httpx.Response(401)
            return httpx.Response(200, content=body)

        provider = Provider(data)
        client = make_client(provider)

        result = await client.fetch_fundamentals("AAPL")

        assert result.success
        assert client.sessions.refresh_count == 2
        assert client.sessions.current.token == "crumb2"

    @pytest.mark.asyncio
    async def test_session_failure_makes_no_data_call(self, make_client) -> None:
        provider = Provider(respond_json(QUOTE_SUMMARY), crumb_status=403)
        client = make_client(provider)

        result = await client.fetch_fundamentals("AAPL")

        assert result.failure.kind == FailureKind.SESSION_FAILED
        assert not result.failure.retryable
        assert result.failure.detail["session_error"]
        assert provider.data_requests == []

    @pytest.mark.asyncio
    async def test_provider_error_gets_suggestion(self, make_client) -> None:
        document = {"quoteSummary": {"result": None, "error": {"code": "Not Found", "description": "Quote not found"}}}
        client = make_client(Provider(respond_json(document)))

        result = await client.fetch_fundamentals("ZZZZ")

        assert result.failure.kind == FailureKind.API_ERROR
        assert result.failure.detail["suggestion"] == "Check that the ticker symbol is valid."

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_envelope(self, make_client) -> None:
        client = make_client(Provider(respond_json(QUOTE_SUMMARY)))

        with patch.object(client.sessions, "get_session", new=AsyncMock(side_effect=RuntimeError("boom"))):
            result = await client.fetch_fundamentals("AAPL")

        assert result.failure.kind == FailureKind.EXCEPTION
        assert result.request["subject"] == "AAPL"


class TestOptions:
    """Option chains through the authenticated session."""

    @pytest.mark.asyncio
    async def test_chain_shape(self, make_client) -> None:
        provider = Provider(respond_json(OPTION_CHAIN))
        client = make_client(provider)

        result = await client.fetch_options("AAPL")

        assert result.success
        payload = result.payload
        assert payload["underlying_symbol"] == "AAPL"
        assert payload["expiration_dates"] == [1700179200, 1700784000]
        assert payload["strikes"] == [180.0, 190.0]
        assert payload["quote"]["regular_market_price"] == 189.5
        assert payload["calls"][0]["contract_symbol"] == "AAPL231117C00180000"
        assert payload["puts"][0]["strike"] == 180.0
        assert payload["expiration_date"] == 1700179200
        assert "date" not in provider.data_requests[0].url.params

    @pytest.mark.asyncio
    @pytest.mark.parametrize("options", [{"calls": []}, "none", [["AAPL231117C00180000"]]])
    async def test_malformed_options_is_missing_data(self, make_client, options: Any) -> None:
        document = {"optionChain": {"result": [{"underlyingSymbol": "AAPL", "options": options}], "error": None}}
        client = make_client(Provider(respond_json(document)))

        result = await client.fetch_options("AAPL")

        assert not result.success
        assert result.failure.kind == FailureKind.MISSING_DATA
        assert result.failure.subject == "AAPL"
        assert result.request == {"subject": "AAPL", "expiration": None}

    @pytest.mark.asyncio
    async def test_missing_options_has_no_contracts(self, make_client) -> None:
        document = {"optionChain": {"result": [{"underlyingSymbol": "AAPL", "strikes": []}], "error": None}}
        client = make_client(Provider(respond_json(document)))

        result = await client.fetch_options("AAPL")

        assert result.success
        assert result.payload["underlying_symbol"] == "AAPL"
        assert result.payload["calls"] is None

    @pytest.mark.asyncio
    async def test_expiration_sent_as_date(self, make_client) -> None:
        provider = Provider(respond_json(OPTION_CHAIN))
        client = make_client(provider)

        result = await client.fetch_options("AAPL", expiration=1700784000)

        assert provider.data_requests[0].url.path == "/options/AAPL"
        assert provider.data_requests[0].url.params["date"] == "1700784000"
        assert result.request == {"subject": "AAPL", "expiration": 1700784000}

    @pytest.mark.asyncio
    async def test_empty_chain_is_no_data(self, make_client) -> None:
        client = make_client(Provider(respond_json({"optionChain": {"result": [], "error": None}})))

        result = await client.fetch_options("AAPL")

        assert result.failure.kind == FailureKind.NO_DATA
        assert "suggestion" in result.failure.detail
