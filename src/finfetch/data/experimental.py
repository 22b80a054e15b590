"""
EXPERIMENTAL: fundamentals and options chains from the authenticated
endpoint family.

These endpoints need a cookie/crumb session (see finfetch.data.session) and
can be blocked or rate limited by the provider at any time. Authentication
retries are bounded to exactly one refresh per logical request: a 401 forces
a single session refresh and the request is retried once with
retry_on_401=False; a second 401 is returned as auth-failed.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from finfetch.config import Settings, get_settings
from finfetch.data.session import SessionManager
from finfetch.data.transport import Transport
from finfetch.logging import get_logger, log_context
from finfetch.query import encode_path_segment
from finfetch.types import Envelope, Failure, FailureKind, SessionStatus, err

logger = get_logger(__name__)

DEFAULT_MODULES = "financialData,defaultKeyStatistics"

SUGGESTIONS: dict[FailureKind, str] = {
    FailureKind.AUTH_FAILED: "The provider may be blocking automated requests. Wait a few minutes and try again.",
    FailureKind.RATE_LIMITED: "Wait several minutes before retrying.",
    FailureKind.API_ERROR: "Check that the ticker symbol is valid.",
    FailureKind.NO_DATA: "The subject may not have data for this endpoint.",
    FailureKind.SESSION_FAILED: "Session could not be established. The provider may be blocking requests.",
}


def option_chain(payload: dict[str, Any]) -> dict[str, Any] | Failure:
    """Project an optionChain result onto the first expiry's chain.

    A missing or empty "options" list yields no calls or puts; an "options"
    value that is not a list of objects is a missing-data Failure.
    """
    chains = payload.get("options")
    if chains is None:
        chains = []
    if not isinstance(chains, list):
        return Failure(FailureKind.MISSING_DATA, "Malformed options data", detail={"field": "options"})
    chain = chains[0] if chains else {}
    if not isinstance(chain, dict):
        return Failure(FailureKind.MISSING_DATA, "Malformed options data", detail={"field": "options"})
    return {
        "underlying_symbol": payload.get("underlying_symbol"),
        "expiration_dates": payload.get("expiration_dates"),
        "strikes": payload.get("strikes"),
        "quote": payload.get("quote"),
        "calls": chain.get("calls"),
        "puts": chain.get("puts"),
        "expiration_date": chain.get("expiration_date"),
    }


class ExperimentalClient:
    """Client for the authenticated quoteSummary and options endpoints."""

    def __init__(
        self,
        sessions: SessionManager | None = None,
        settings: Settings | None = None,
        quote_summary_transport: Transport | None = None,
        options_transport: Transport | None = None,
    ) -> None:
        """Initialize experimental client.

        Args:
            sessions: Shared session manager. One per process is expected.
            settings: Settings; defaults to get_settings().
            quote_summary_transport: Transport over the quoteSummary mirrors.
            options_transport: Transport over the options mirrors.
        """
        self.settings = settings or get_settings()
        self.sessions = sessions or SessionManager(self.settings)
        self.quote_summary = quote_summary_transport or Transport(
            self.settings.QUOTE_SUMMARY_BASE_URLS, settings=self.settings
        )
        self.options = options_transport or Transport(self.settings.OPTIONS_BASE_URLS, settings=self.settings)

    async def close(self) -> None:
        """Close transports and session clients."""
        await self.quote_summary.close()
        await self.options.close()
        await self.sessions.close()

    async def __aenter__(self) -> ExperimentalClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def authenticated_fetch(
        self,
        transport: Transport,
        subject: str,
        params: dict[str, Any],
        root: str,
        retry_on_401: bool = True,
    ) -> Envelope[dict[str, Any]]:
        """Fetch through the current session, refreshing once on 401.

        Args:
            transport: Transport over the endpoint's mirrors.
            subject: Ticker symbol.
            params: Query parameters (the crumb is added by the transport).
            root: Top-level response key.
            retry_on_401: Whether a 401 may trigger the one forced refresh.
        """
        session = await self.sessions.get_session()
        if session.status != SessionStatus.ACTIVE:
            return err(
                FailureKind.SESSION_FAILED,
                "Session initialization failed",
                subject=subject,
                session_error=session.error,
            )

        result = await transport.fetch(
            encode_path_segment(subject),
            params,
            subject=subject,
            root=root,
            session=session,
        )
        if result.failure is not None and result.failure.kind == FailureKind.AUTH_FAILED and retry_on_401:
            logger.warning("Got 401, attempting one session refresh")
            await self.sessions.force_refresh()
            return await self.authenticated_fetch(transport, subject, params, root, retry_on_401=False)
        return result

    def _with_suggestion(self, result: Envelope[Any]) -> Envelope[Any]:
        failure = result.failure
        if failure is None or failure.kind not in SUGGESTIONS or "suggestion" in failure.detail:
            return result
        detail = {**failure.detail, "suggestion": SUGGESTIONS[failure.kind]}
        return result.fail(replace(failure, detail=detail))

    async def fetch_fundamentals(self, subject: str, modules: str = DEFAULT_MODULES) -> Envelope[dict[str, Any]]:
        """Fetch fundamentals (financial data, key statistics) for a subject.

        Args:
            subject: Ticker symbol.
            modules: Comma-separated quoteSummary module names.

        Returns:
            Envelope whose payload maps normalized module names to their
            fields, e.g. payload["financial_data"]["current_price"].
        """
        request = {"subject": subject, "modules": modules}
        with log_context(subject=subject, operation="fetch_fundamentals"):
            try:
                result = await self.authenticated_fetch(
                    self.quote_summary,
                    subject,
                    {"modules": modules},
                    root="quoteSummary",
                )
            except Exception as e:
                logger.exception("Unexpected error", error=str(e))
                return err(FailureKind.EXCEPTION, f"Unexpected error: {e}", subject=subject, request=request)
            return self._with_suggestion(result).with_request(request)

    async def fetch_options(self, subject: str, expiration: int | None = None) -> Envelope[dict[str, Any]]:
        """Fetch an options chain.

        Args:
            subject: Ticker symbol.
            expiration: Epoch seconds of a specific expiry. Omit for the
                nearest expiry plus the list of available dates.

        Returns:
            Envelope with underlying_symbol, expiration_dates, strikes, quote,
            calls, puts and expiration_date.
        """
        request = {"subject": subject, "expiration": expiration}
        params = {"date": expiration} if expiration is not None else {}
        with log_context(subject=subject, operation="fetch_options"):
            try:
                result = await self.authenticated_fetch(self.options, subject, params, root="optionChain")
                if result.success:
                    shaped = option_chain(result.payload)
                    if isinstance(shaped, Failure):
                        logger.warning("Response failed shape check", kind=shaped.kind.value, reason=shaped.message)
                        result = result.fail(shaped.with_subject(subject))
                    else:
                        result = result.map_payload(lambda _: shaped)
            except Exception as e:
                logger.exception("Unexpected error", error=str(e))
                return err(FailureKind.EXCEPTION, f"Unexpected error: {e}", subject=subject, request=request)

            return self._with_suggestion(result).with_request(request)
