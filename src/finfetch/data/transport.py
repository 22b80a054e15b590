"""
HTTP transport with retry and mirror fallback.

One long-lived httpx.AsyncClient per Transport. Each mirror host gets up to
MAX_ATTEMPTS tries with exponential backoff plus jitter (tenacity); retries
are decided on classified results, never on exceptions. Hosts are tried in
order until one succeeds.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Mapping, Sequence

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from finfetch.config import Settings, get_settings
from finfetch.data.classifier import classify, is_retryable_result
from finfetch.logging import get_logger
from finfetch.query import build_url
from finfetch.types import Envelope, FailureKind, RawResponse, Session, err, ok

logger = get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class Transport:
    """Executes provider GETs with timeouts, retries and mirror fallback.

    The client is shared by all concurrent callers; httpx.AsyncClient is
    safe for concurrent use.
    """

    def __init__(
        self,
        base_urls: Sequence[str] | None = None,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        """Initialize transport.

        Args:
            base_urls: Ordered mirror base URLs. Defaults to the chart mirrors.
            settings: Settings; defaults to get_settings().
            client: Pre-built client (tests inject one backed by MockTransport).
            sleep: Backoff sleep function.
        """
        self.settings = settings or get_settings()
        self.base_urls = list(self.settings.CHART_BASE_URLS if base_urls is None else base_urls)
        self._client = client
        self._sleep = sleep

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self.settings.REQUEST_TIMEOUT,
                    connect=self.settings.CONNECT_TIMEOUT,
                ),
                headers={
                    "User-Agent": self.settings.USER_AGENT,
                    "Accept": "application/json",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def send(
        self,
        url: str,
        client: httpx.AsyncClient | None = None,
        subject: str | None = None,
    ) -> Envelope[RawResponse]:
        """Perform one GET. Network-level errors become connection-error.

        Args:
            url: Absolute URL.
            client: Client to use instead of the transport's own
                (authenticated calls pass the session's client).
            subject: Subject attached to failures.
        """
        http = client or await self._get_client()
        try:
            response = await http.get(url)
        except httpx.HTTPError as e:
            logger.debug("Request failed", url=url, error=str(e))
            return err(
                FailureKind.CONNECTION_ERROR,
                str(e) or e.__class__.__name__,
                subject=subject,
                url=url,
                error_type=e.__class__.__name__,
            )
        return ok(RawResponse(status_code=response.status_code, body=response.content, url=url))

    async def _attempt(
        self,
        url: str,
        root: str,
        subject: str | None,
        client: httpx.AsyncClient | None,
    ) -> Envelope[dict[str, Any]]:
        sent = await self.send(url, client=client, subject=subject)
        raw = sent.payload
        if raw is None:
            return sent
        return classify(raw.status_code, raw.body, root=root, subject=subject, url=url)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.settings.MAX_ATTEMPTS),
            wait=wait_exponential(multiplier=self.settings.base_delay, exp_base=2)
            + wait_random(0, self.settings.jitter),
            retry=retry_if_result(is_retryable_result),
            retry_error_callback=lambda state: state.outcome.result(),
            sleep=self._sleep,
            before_sleep=self._log_retry,
        )

    @staticmethod
    def _log_retry(retry_state: Any) -> None:
        result = retry_state.outcome.result()
        logger.warning(
            "Retryable failure, backing off",
            attempt=retry_state.attempt_number,
            kind=result.failure.kind.value,
            status=result.failure.http_status,
        )

    async def fetch(
        self,
        path_segment: str,
        params: Mapping[str, Any] | None = None,
        *,
        subject: str | None = None,
        root: str = "chart",
        session: Session | None = None,
    ) -> Envelope[dict[str, Any]]:
        """Fetch and classify, falling back across mirrors.

        Args:
            path_segment: Encoded path segment (the subject).
            params: Ordered query parameters; None values are dropped.
            subject: Subject attached to failures and logs.
            root: Top-level response key for classification.
            session: Authenticated session; its client and crumb are used.

        Returns:
            First successful classified envelope, the last failure if every
            mirror failed, or no-response if there are no mirrors.
        """
        query = dict(params or {})
        client = None
        if session is not None:
            query["crumb"] = session.token
            client = session.client

        last: Envelope[dict[str, Any]] | None = None
        for base_url in self.base_urls:
            url = build_url(base_url, path_segment, query)
            result = await self._retrying()(self._attempt, url, root, subject, client)
            if result.success:
                return result
            logger.info(
                "Mirror failed",
                mirror=base_url,
                kind=result.failure.kind.value,
                status=result.failure.http_status,
            )
            last = result

        if last is None:
            return err(FailureKind.NO_RESPONSE, "No mirror responded", subject=subject)
        return last
