"""Failure classification for provider errors.

Every exception raised while talking to a provider is mapped to exactly one
`FailureKind`. Rules are evaluated in order and the first match wins; matching
is a pure function of the status code and a lower-cased message, so the same
error always classifies the same way.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class FailureKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    BAD_MODEL = "bad_model"
    NETWORK_ERROR = "network_error"
    AUTH_ERROR = "auth_error"
    CONTENT_FILTERED = "content_filtered"
    OVERLOADED = "overloaded"
    UNKNOWN = "unknown"


@dataclass(slots=True, frozen=True)
class FailureClassification:
    kind: FailureKind
    should_escalate: bool
    status_code: int | None
    message: str


_RATE_LIMIT_MARKERS = ("429", "rate limit", "too many requests", "quota exceeded", "resource exhausted")
_BAD_MODEL_MARKERS = (
    "not a valid model",
    "model not found",
    "invalid model",
    "unknown model",
    "does not exist",
    "not supported",
)
_NETWORK_MARKERS = (
    "network",
    "timeout",
    "timed out",
    "connection",
    "econnrefused",
    "enotfound",
    "getaddrinfo",
    "name resolution",
    "fetch failed",
    "failed to fetch",
)
_AUTH_MARKERS = ("api key", "api_key", "authentication", "unauthorized", "forbidden")
_CONTENT_FILTER_MARKERS = ("safety", "blocked", "content filter", "harm")
_OVERLOAD_MARKERS = ("overloaded", "capacity", "busy")


def error_status(error: BaseException) -> int | None:
    """Best-effort HTTP status from SDK exceptions (openai, google-genai, httpx)."""
    for attr in ("status_code", "code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.isdigit():
            return int(value)
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def error_message(error: BaseException) -> str:
    message = getattr(error, "message", None)
    text = message if isinstance(message, str) and message else str(error)
    if not text:
        text = type(error).__name__
    return text


def _contains_any(text: str, markers: tuple[str, ...]) -> bool:
    return any(marker in text for marker in markers)


def classify_failure(error: BaseException) -> FailureClassification:
    status = error_status(error)
    message = error_message(error)
    lowered = message.lower()

    def _result(kind: FailureKind) -> FailureClassification:
        return FailureClassification(
            kind=kind,
            should_escalate=kind is not FailureKind.UNKNOWN,
            status_code=status,
            message=message,
        )

    if status == 429 or _contains_any(lowered, _RATE_LIMIT_MARKERS):
        return _result(FailureKind.RATE_LIMITED)
    if status is not None and 500 <= status < 600:
        return _result(FailureKind.SERVER_ERROR)
    if status == 400 and _contains_any(lowered, _BAD_MODEL_MARKERS):
        return _result(FailureKind.BAD_MODEL)
    if _contains_any(lowered, _NETWORK_MARKERS):
        return _result(FailureKind.NETWORK_ERROR)
    if status in (401, 403) or _contains_any(lowered, _AUTH_MARKERS):
        return _result(FailureKind.AUTH_ERROR)
    if _contains_any(lowered, _CONTENT_FILTER_MARKERS):
        return _result(FailureKind.CONTENT_FILTERED)
    if _contains_any(lowered, _OVERLOAD_MARKERS):
        return _result(FailureKind.OVERLOADED)
    return _result(FailureKind.UNKNOWN)
