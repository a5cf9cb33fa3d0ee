"""Failure taxonomy for provider calls.

Adapters raise ``ProviderError`` with whatever the provider told us. The
orchestrator turns any exception into a ``GatewayError`` via ``classify_error``
and decides from its ``error_class`` whether to rotate, back off, or give up.
"""

from __future__ import annotations

import re
from enum import Enum

import httpx

from synthgate.core.security import redact_secrets

_RETRY_DELAY_PATTERN = re.compile(r"retryDelay\D*?(\d+(?:\.\d+)?)")
_STATUS_429_PATTERN = re.compile(r"\b429\b")


class ErrorClass(str, Enum):
    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    NETWORK_ERROR = "network_error"
    SERVER_ERROR = "server_error"
    QUOTA_EXCEEDED = "quota_exceeded"
    NO_CREDENTIAL = "no_credential"
    UNKNOWN = "unknown"


# Retryable classes are absorbed by the orchestrator up to its attempt budget
RETRYABLE_CLASSES = frozenset(
    {
        ErrorClass.RATE_LIMITED,
        ErrorClass.NETWORK_ERROR,
        ErrorClass.SERVER_ERROR,
        ErrorClass.UNKNOWN,
    }
)

_USER_MESSAGES: dict[ErrorClass, str] = {
    ErrorClass.RATE_LIMITED: "The provider rate limit was reached. Please wait a moment and try again.",
    ErrorClass.UNAUTHORIZED: "The API key was rejected. Check the configured credentials.",
    ErrorClass.NETWORK_ERROR: "Could not reach the provider. Check the network connection.",
    ErrorClass.SERVER_ERROR: "The provider is temporarily unavailable. Please try again shortly.",
    ErrorClass.QUOTA_EXCEEDED: "The API usage quota is exhausted. Try again in the next quota period.",
    ErrorClass.NO_CREDENTIAL: "No API key is configured. Add a credential first.",
    ErrorClass.UNKNOWN: "Something went wrong. Please try again shortly.",
}


class ProviderError(Exception):
    """Raised by a provider adapter when a call does not produce a result."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        error_code: str = "",
        retry_after: float | None = None,
        body: str = "",
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.retry_after = retry_after
        self.body = body


class GatewayError(Exception):
    """A classified, redacted failure surfaced to callers."""

    def __init__(
        self,
        error_class: ErrorClass,
        technical_message: str = "",
        user_message: str | None = None,
        status_code: int = 0,
        retry_after: float | None = None,
    ):
        self.error_class = error_class
        self.technical_message = redact_secrets(technical_message)
        self.user_message = user_message or _USER_MESSAGES[error_class]
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(f"{error_class.value}: {self.technical_message}")

    @property
    def retryable(self) -> bool:
        return self.error_class in RETRYABLE_CLASSES

    def to_dict(self) -> dict:
        return {
            "error_class": self.error_class.value,
            "user_message": self.user_message,
            "technical_message": self.technical_message,
            "retryable": self.retryable,
            "status_code": self.status_code,
            "retry_after": self.retry_after,
        }


def parse_retry_delay(text: str) -> float | None:
    """Extract a ``retryDelay`` hint (seconds) from a provider error body."""
    if not text:
        return None
    match = _RETRY_DELAY_PATTERN.search(text)
    if not match:
        return None
    return float(match.group(1)) + 0.5


def classify_error(exc: BaseException) -> GatewayError:
    """Map any exception raised during a provider call onto the taxonomy."""
    if isinstance(exc, GatewayError):
        return exc

    status = getattr(exc, "status_code", 0) or 0
    code = getattr(exc, "error_code", "") or ""
    retry_after = getattr(exc, "retry_after", None)
    body = getattr(exc, "body", "") or ""
    message = f"{exc} {code} {body}".strip()
    lowered = message.lower()

    if retry_after is None:
        retry_after = parse_retry_delay(message)

    def _make(error_class: ErrorClass) -> GatewayError:
        return GatewayError(
            error_class,
            technical_message=str(exc) or type(exc).__name__,
            status_code=status,
            retry_after=retry_after,
        )

    if _is_rate_limited(status, code, message):
        return _make(ErrorClass.RATE_LIMITED)

    if (
        status in (401, 403)
        or "UNAUTHENTICATED" in message
        or "PERMISSION_DENIED" in message
        or "api key not valid" in lowered
        or "invalid_api_key" in lowered
    ):
        return _make(ErrorClass.UNAUTHORIZED)

    if isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError)):
        return _make(ErrorClass.NETWORK_ERROR)

    if status == 402 or "QUOTA_EXCEEDED" in message or "quota" in lowered:
        return _make(ErrorClass.QUOTA_EXCEEDED)

    if status >= 500 or "INTERNAL" in message or "UNAVAILABLE" in message:
        return _make(ErrorClass.SERVER_ERROR)

    return _make(ErrorClass.UNKNOWN)


def _is_rate_limited(status: int, code: str, message: str) -> bool:
    # A structured status wins; free-text matching only when there is none.
    if status:
        return status == 429 or code == "RESOURCE_EXHAUSTED"
    return (
        _STATUS_429_PATTERN.search(message) is not None
        or "RESOURCE_EXHAUSTED" in message
        or "too many requests" in message.lower()
    )
