"""
Response classification.

Maps an HTTP status and body to either a normalized payload or a typed
failure. Status rules run before the body is looked at; the body is only
parsed on 200. Retryability is a pure function of the failure record.
"""

from __future__ import annotations

import re
from typing import Any

import orjson

from finfetch.types import Envelope, Failure, FailureKind, err, ok

# Keys the generic camelCase rule would mis-split.
KEY_EXCEPTIONS: dict[str, str] = {
    "gmtoffset": "gmt_offset",
}

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")


def camel_to_snake(key: str) -> str:
    """Convert a camelCase provider key to snake_case."""
    if key in KEY_EXCEPTIONS:
        return KEY_EXCEPTIONS[key]
    return _CAMEL_BOUNDARY.sub(r"\1_\2", key).lower()


def normalize_keys(value: Any) -> Any:
    """Recursively snake_case every mapping key in a JSON document."""
    if isinstance(value, dict):
        return {
            camel_to_snake(k) if isinstance(k, str) else k: normalize_keys(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [normalize_keys(item) for item in value]
    return value


def is_retryable(failure: Failure | None) -> bool:
    """Whether a failure may be retried by the transport loop."""
    return failure is not None and failure.retryable


def is_retryable_result(result: Envelope[Any]) -> bool:
    """tenacity predicate: retry failed envelopes whose failure is retryable."""
    return not result.success and is_retryable(result.failure)


def classify_status(status: int, subject: str | None = None, url: str | None = None) -> Envelope[Any] | None:
    """Apply the status-code rules. Returns None for 200."""
    if status == 200:
        return None
    if status == 429:
        return err(
            FailureKind.RATE_LIMITED,
            "Rate limit exceeded",
            subject=subject,
            http_status=status,
            url=url,
        )
    if status == 401:
        return err(
            FailureKind.AUTH_FAILED,
            "Authentication failed",
            subject=subject,
            http_status=status,
            url=url,
        )
    return err(
        FailureKind.HTTP_ERROR,
        f"HTTP error {status}",
        subject=subject,
        http_status=status,
        url=url,
    )


def classify(
    status: int,
    body: bytes | str,
    root: str = "chart",
    subject: str | None = None,
    url: str | None = None,
) -> Envelope[dict[str, Any]]:
    """Classify a provider response.

    Args:
        status: HTTP status code.
        body: Raw response body.
        root: Top-level key of the endpoint family ("chart",
            "quoteSummary", "optionChain").
        subject: Subject the request targeted, attached to failures.
        url: Requested URL, attached to failures for diagnostics.

    Returns:
        Envelope whose payload is the first result element with normalized
        keys, or a failure envelope.
    """
    status_failure = classify_status(status, subject=subject, url=url)
    if status_failure is not None:
        return status_failure

    try:
        document = orjson.loads(body)
    except orjson.JSONDecodeError as e:
        return err(FailureKind.PARSE_ERROR, f"Malformed response body: {e}", subject=subject, http_status=status, url=url)

    if not isinstance(document, dict):
        return err(
            FailureKind.PARSE_ERROR,
            "Response body is not a JSON object",
            subject=subject,
            http_status=status,
            url=url,
        )

    envelope = document.get(root)
    if not isinstance(envelope, dict):
        envelope = {}

    provider_error = envelope.get("error")
    if provider_error:
        description = (
            provider_error.get("description") if isinstance(provider_error, dict) else str(provider_error)
        )
        return err(
            FailureKind.API_ERROR,
            f"Provider error: {description}",
            subject=subject,
            http_status=status,
            url=url,
            provider_error=provider_error,
        )

    result = envelope.get("result")
    if result is None:
        return err(
            FailureKind.API_ERROR,
            "No result field in response",
            subject=subject,
            http_status=status,
            url=url,
        )
    if not isinstance(result, list):
        return err(
            FailureKind.PARSE_ERROR,
            "Result field is not a list",
            subject=subject,
            http_status=status,
            url=url,
        )
    if not result:
        return err(
            FailureKind.NO_DATA,
            "Empty result array from API",
            subject=subject,
            http_status=status,
            url=url,
        )

    first = result[0]
    if not isinstance(first, dict):
        return err(
            FailureKind.PARSE_ERROR,
            "Result element is not an object",
            subject=subject,
            http_status=status,
            url=url,
        )
    return ok(normalize_keys(first))
