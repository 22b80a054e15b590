"""
Core types for finfetch.

This module defines the data structures shared across the fetch core:
- Enums for the failure taxonomy, warning kinds, and session status
- Frozen dataclasses for requests, failures, warnings and raw responses
- The generic result Envelope returned by every verbose operation
- The immutable Session record swapped by the session manager
- Helper constructors ok() / err() and the epoch conversion used by both
  the validator and the query builder
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Generic, Mapping, TypeVar

from finfetch.exceptions import FetchError

if TYPE_CHECKING:
    import httpx

T = TypeVar("T")
U = TypeVar("U")


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def to_epoch(value: int | datetime | None) -> int | None:
    """Convert an epoch-seconds int or a datetime to epoch seconds.

    Naive datetimes are read as UTC.

    Raises:
        TypeError: If the value is neither an int nor a datetime.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise TypeError(f"Invalid timestamp: {value!r}")
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    if isinstance(value, int):
        return value
    raise TypeError(f"Invalid timestamp: {value!r}")


class FailureKind(str, Enum):
    """Closed taxonomy of fetch failures."""

    INVALID_REQUEST = "invalid-request"
    CONNECTION_ERROR = "connection-error"
    NO_RESPONSE = "no-response"
    RATE_LIMITED = "rate-limited"
    HTTP_ERROR = "http-error"
    AUTH_FAILED = "auth-failed"
    SESSION_FAILED = "session-failed"
    PARSE_ERROR = "parse-error"
    API_ERROR = "api-error"
    NO_DATA = "no-data"
    MISSING_PRICE = "missing-price"
    MISSING_DATA = "missing-data"
    MISSING_METADATA = "missing-metadata"
    TIMEOUT = "timeout"
    EXECUTION_ERROR = "execution-error"
    INTERRUPTED = "interrupted"
    EXCEPTION = "exception"


class WarningKind(str, Enum):
    """Advisory warning kinds. Warnings never change success."""

    SAMPLING_TOO_FINE_FOR_WINDOW = "sampling-too-fine-for-window"


class SessionStatus(str, Enum):
    """States of the authenticated session."""

    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    FAILED = "failed"


@dataclass(frozen=True)
class ChartRequest:
    """Request against the chart endpoint.

    Shape rules (period vs start/end, allowed values) are checked by
    finfetch.validation.validate_request, not here, so that invalid
    requests come back as envelopes rather than exceptions.
    """

    subject: str
    period: str | None = None
    interval: str | None = None
    start: int | datetime | None = None
    end: int | datetime | None = None
    events: str | None = None
    adjusted: bool = True
    prepost: bool = False


@dataclass(frozen=True)
class Failure:
    """Typed failure record, created at the point of detection."""

    kind: FailureKind
    message: str
    subject: str | None = None
    http_status: int | None = None
    detail: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "detail", MappingProxyType(dict(self.detail)))

    @property
    def retryable(self) -> bool:
        """Whether the transport retry loop may try again."""
        if self.kind in (FailureKind.CONNECTION_ERROR, FailureKind.RATE_LIMITED):
            return True
        if self.kind == FailureKind.HTTP_ERROR:
            return self.http_status is not None and 500 <= self.http_status <= 599
        return False

    def with_subject(self, subject: str) -> Failure:
        """Return a copy attributed to the given subject."""
        return replace(self, subject=subject, detail=dict(self.detail))


@dataclass(frozen=True)
class FetchWarning:
    """Non-fatal advisory attached to an envelope."""

    kind: WarningKind
    message: str
    detail: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "detail", MappingProxyType(dict(self.detail)))


@dataclass(frozen=True)
class RawResponse:
    """Status and body of a single HTTP exchange."""

    status_code: int
    body: bytes
    url: str


@dataclass(frozen=True)
class Envelope(Generic[T]):
    """Uniform success/failure/warnings wrapper returned by the fetch core.

    Exactly one of payload/failure is meaningful: a successful envelope has
    no failure; a failed one has a failure and no payload.
    """

    success: bool
    payload: T | None = None
    failure: Failure | None = None
    warnings: tuple[FetchWarning, ...] = ()
    request: Any = None

    def __post_init__(self) -> None:
        if self.success and self.failure is not None:
            raise ValueError("successful envelope cannot carry a failure")
        if not self.success and (self.failure is None or self.payload is not None):
            raise ValueError("failed envelope must carry a failure and no payload")
        object.__setattr__(self, "warnings", tuple(self.warnings))

    def with_request(self, request: Any) -> Envelope[T]:
        """Return a copy echoing the given request."""
        return replace(self, request=request)

    def with_warnings(self, warnings: list[FetchWarning] | tuple[FetchWarning, ...]) -> Envelope[T]:
        """Return a copy with additional warnings appended."""
        if not warnings:
            return self
        return replace(self, warnings=(*self.warnings, *warnings))

    def map_payload(self, fn: Callable[[T], U]) -> Envelope[U]:
        """Apply fn to the payload of a successful envelope."""
        if not self.success:
            return self  # type: ignore[return-value]
        return replace(self, payload=fn(self.payload))  # type: ignore[arg-type]

    def fail(self, failure: Failure) -> Envelope[Any]:
        """Turn this envelope into a failure, keeping warnings and request echo."""
        return replace(self, success=False, payload=None, failure=failure)

    def raise_for_failure(self) -> T | None:
        """Return the payload, or raise FetchError if the envelope failed."""
        if self.failure is not None:
            raise FetchError(self.failure)
        return self.payload


def ok(payload: T | None = None, warnings: tuple[FetchWarning, ...] = (), request: Any = None) -> Envelope[T]:
    """Construct a successful envelope."""
    return Envelope(success=True, payload=payload, warnings=warnings, request=request)


def err(
    kind: FailureKind,
    message: str,
    *,
    subject: str | None = None,
    http_status: int | None = None,
    request: Any = None,
    **detail: Any,
) -> Envelope[Any]:
    """Construct a failed envelope."""
    failure = Failure(
        kind=kind,
        message=message,
        subject=subject,
        http_status=http_status,
        detail=detail,
    )
    return Envelope(success=False, failure=failure, request=request)


@dataclass(frozen=True)
class SessionInfo:
    """Read-only diagnostics snapshot of the authenticated session."""

    status: SessionStatus
    age_seconds: float | None
    token_present: bool


@dataclass(frozen=True)
class Session:
    """Authenticated session record.

    Never mutated: the session manager replaces the whole record on every
    transition.
    """

    client: httpx.AsyncClient | None = None
    token: str | None = None
    created_at: float | None = None
    status: SessionStatus = SessionStatus.UNINITIALIZED
    error: str | None = None

    def age(self, now: float | None = None) -> float:
        """Seconds since creation; infinite if never created."""
        if self.created_at is None:
            return float("inf")
        return (time.time() if now is None else now) - self.created_at

    def is_expired(self, lifetime: float, now: float | None = None) -> bool:
        """Check the three validity conditions of an active session."""
        return (
            self.status != SessionStatus.ACTIVE
            or self.token is None
            or self.client is None
            or self.age(now) >= lifetime
        )

    def info(self, now: float | None = None) -> SessionInfo:
        """Diagnostics snapshot."""
        return SessionInfo(
            status=self.status,
            age_seconds=self.age(now) if self.created_at is not None else None,
            token_present=self.token is not None,
        )
