"""
Authenticated session management for the provider's restricted endpoints.

The quoteSummary and options endpoints need a cookie plus a "crumb" token:
1. GET the cookie URL (normally answers 404 but sets the cookie)
2. GET the crumb URL with that cookie; the body is the token

The session is a frozen Session record held by SessionManager and replaced
wholesale on every transition, so concurrent readers only ever see a fully
old or fully new session. Sessions expire after SESSION_LIFETIME_SECONDS.

A 401 does not refresh the session here; the calling operation forces one
refresh and retries once (see ExperimentalClient).
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable

import httpx

from finfetch.config import Settings, get_settings
from finfetch.exceptions import SessionError
from finfetch.logging import get_logger
from finfetch.types import Session, SessionInfo, SessionStatus

logger = get_logger(__name__)

ClientFactory = Callable[[Settings], httpx.AsyncClient]


def default_client_factory(settings: Settings) -> httpx.AsyncClient:
    """Build a cookie-carrying client for one session."""
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(settings.REQUEST_TIMEOUT, connect=settings.CONNECT_TIMEOUT),
        headers={
            "User-Agent": settings.AUTH_USER_AGENT,
            "Accept": "application/json",
        },
    )


class SessionManager:
    """Owns the authenticated session state machine.

    States: uninitialized -> active, uninitialized -> failed,
    failed -> active, active -> (expired) -> active. A failed session reads
    as expired, so the next get_session() or force_refresh() retries it.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client_factory: ClientFactory = default_client_factory,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize session manager.

        Args:
            settings: Settings; defaults to get_settings().
            client_factory: Builds the per-session HTTP client.
            clock: Wall-clock source in seconds (tests inject a fake).
        """
        self.settings = settings or get_settings()
        self._client_factory = client_factory
        self._clock = clock
        self._session = Session()
        self._lock = asyncio.Lock()
        self._retired: list[httpx.AsyncClient] = []
        self.refresh_count = 0

    @property
    def current(self) -> Session:
        """The current session record, without validity checks."""
        return self._session

    def is_expired(self, session: Session | None = None) -> bool:
        """Check a session against token, client and lifetime."""
        session = session or self._session
        return session.is_expired(self.settings.SESSION_LIFETIME_SECONDS, now=self._clock())

    def info(self) -> SessionInfo:
        """Read-only snapshot: status, age, token presence."""
        return self._session.info(now=self._clock())

    async def get_session(self) -> Session:
        """Return a valid session, re-initializing first if expired.

        A failed session reads as expired, so this also retries a session
        that previously failed to initialize.
        """
        session = self._session
        if not self.is_expired(session):
            return session

        async with self._lock:
            session = self._session
            if self.is_expired(session):
                age = session.age(self._clock())
                logger.info(
                    "Session expired, refreshing",
                    status=session.status.value,
                    age_minutes=round(age / 60, 1) if age != float("inf") else None,
                )
                session = await self._refresh()
            return session

    async def force_refresh(self) -> Session:
        """Replace the session unconditionally (manual, or after a 401)."""
        async with self._lock:
            logger.info("Forcing session refresh")
            return await self._refresh()

    async def _refresh(self) -> Session:
        new_session = await self._initialize()
        old = self._session
        self._session = new_session
        self.refresh_count += 1
        if old.client is not None:
            self._retired.append(old.client)
        return new_session

    async def _initialize(self) -> Session:
        """Run cookie then crumb acquisition into a new Session record."""
        started = self._clock()
        client = self._client_factory(self.settings)
        try:
            await self._fetch_cookie(client)
            crumb = await self._fetch_crumb(client)
        except (httpx.HTTPError, SessionError) as e:
            await client.aclose()
            logger.error("Session initialization failed", error=str(e))
            return Session(status=SessionStatus.FAILED, error=str(e) or e.__class__.__name__)

        logger.info(
            "Session initialized",
            elapsed_ms=int((self._clock() - started) * 1000),
        )
        return Session(
            client=client,
            token=crumb,
            created_at=self._clock(),
            status=SessionStatus.ACTIVE,
        )

    async def _fetch_cookie(self, client: httpx.AsyncClient) -> None:
        response = await client.get(self.settings.COOKIE_URL)
        if response.status_code != 404:
            logger.debug(
                "Unexpected status from cookie endpoint",
                status=response.status_code,
            )
        if len(client.cookies) == 0:
            raise SessionError(
                "No cookies available for crumb request",
                context={"step": "cookie", "status_code": response.status_code},
            )

    async def _fetch_crumb(self, client: httpx.AsyncClient) -> str:
        response = await client.get(self.settings.CRUMB_URL)
        crumb = response.text.strip()
        if response.status_code != 200 or not crumb:
            raise SessionError(
                "Failed to fetch crumb",
                context={"step": "crumb", "status_code": response.status_code},
            )
        return crumb

    async def close(self) -> None:
        """Close the current and any replaced session clients."""
        clients = [*self._retired]
        if self._session.client is not None:
            clients.append(self._session.client)
        self._retired.clear()
        self._session = Session()
        for client in clients:
            await client.aclose()
