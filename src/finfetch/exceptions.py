"""
Exception hierarchy for finfetch.

Fetch operations report failures as data (see finfetch.types.Failure).
Exceptions are reserved for configuration problems, internal session
bootstrap errors, and callers that explicitly opt in via
Envelope.raise_for_failure().
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from finfetch.types import Failure


class FinFetchError(Exception):
    """Base exception for all finfetch errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(FinFetchError):
    """Raised when configuration is invalid or missing."""

    pass


class FetchError(FinFetchError):
    """Raised by Envelope.raise_for_failure() for a failed envelope.

    Attributes:
        failure: The Failure record carried by the envelope.
    """

    def __init__(self, failure: Failure) -> None:
        super().__init__(
            failure.message,
            context={
                "kind": failure.kind.value,
                "subject": failure.subject,
                "http_status": failure.http_status,
            },
        )
        self.failure = failure


class SessionError(FinFetchError):
    """Raised while establishing an authenticated session.

    Never escapes the session manager: it is captured in a failed Session.

    Context should include:
        - step: "cookie" or "crumb"
        - status_code: HTTP status code if applicable
    """

    pass
