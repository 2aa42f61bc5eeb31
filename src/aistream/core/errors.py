"""Structured error taxonomy for failed API exchanges.

Every failure the client surfaces is an :class:`APIError` tagged with an
:class:`ErrorKind`. Callers dispatch on ``error.kind`` instead of catching
one exception class per HTTP status.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

import httpx

from aistream.core.headers import RateLimitInfo, REQUEST_ID, parse_rate_limits

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Categories of failed exchanges."""
    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNPROCESSABLE = "unprocessable"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    UNEXPECTED_STATUS = "unexpected_status"
    CONNECTION = "connection"
    TIMEOUT = "timeout"
    DECODE = "decode"


STATUS_KINDS: dict[int, ErrorKind] = {
    400: ErrorKind.BAD_REQUEST,
    401: ErrorKind.UNAUTHORIZED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.CONFLICT,
    422: ErrorKind.UNPROCESSABLE,
    429: ErrorKind.RATE_LIMITED,
}

_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.BAD_REQUEST: "Bad Request",
    ErrorKind.UNAUTHORIZED: "Authentication Failed",
    ErrorKind.FORBIDDEN: "Permission Denied",
    ErrorKind.NOT_FOUND: "Not Found",
    ErrorKind.CONFLICT: "Conflict",
    ErrorKind.UNPROCESSABLE: "Unprocessable Entity",
    ErrorKind.RATE_LIMITED: "Rate Limit Exceeded",
    ErrorKind.SERVER_ERROR: "Internal Server Error",
    ErrorKind.UNEXPECTED_STATUS: "Unexpected Status",
    ErrorKind.CONNECTION: "Connection error.",
    ErrorKind.TIMEOUT: "Request timed out.",
    ErrorKind.DECODE: "Stream could not be decoded.",
}

RETRYABLE_KINDS = frozenset({
    ErrorKind.RATE_LIMITED,
    ErrorKind.SERVER_ERROR,
    ErrorKind.CONNECTION,
    ErrorKind.TIMEOUT,
})


@dataclass
class ApiErrorDetail:
    """The machine-readable ``{"error": {...}}`` payload of a failed call."""

    message: str
    type: str | None = None
    code: str | None = None
    param: str | None = None

    @classmethod
    def from_body(cls, body: str | None) -> ApiErrorDetail | None:
        if not body:
            return None
        try:
            data = json.loads(body)
        except (ValueError, RecursionError):
            return None
        if not isinstance(data, dict):
            return None
        error = data.get("error")
        if isinstance(error, str):
            return cls(message=error)
        if not isinstance(error, dict):
            return None
        code = error.get("code")
        return cls(
            message=str(error.get("message") or ""),
            type=error.get("type") if isinstance(error.get("type"), str) else None,
            code=str(code) if code is not None else None,
            param=error.get("param") if isinstance(error.get("param"), str) else None,
        )


class APIError(Exception):
    """A failed exchange with the remote API."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str | None = None,
        *,
        status_code: int | None = None,
        body: str | None = None,
        error: ApiErrorDetail | None = None,
        rate_limits: RateLimitInfo | None = None,
        request_id: str | None = None,
    ):
        self.kind = kind
        self.status_code = status_code
        self.body = body
        self.error = error
        self.rate_limits = rate_limits
        self.request_id = request_id
        text = message or _MESSAGES[kind]
        if error and error.message:
            text = f"{text}: {error.message}"
        if status_code is not None:
            text = f"[{status_code}] {text}"
        super().__init__(text)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def to_display_string(self) -> str:
        parts = [str(self)]
        if self.body:
            parts.append(f"Response body: {self.body}")
        return " | ".join(parts)


class StreamDecodeError(APIError):
    """Too many consecutive stream payloads could not be decoded."""

    def __init__(self, message: str, *, last_payload: str | None = None):
        super().__init__(ErrorKind.DECODE, message, body=last_payload)
        self.last_payload = last_payload


class JobCancellationError(Exception):
    """The local stream was cancelled but the server-side job was not."""

    def __init__(self, message: str, *, partial: Any = None, cause: Exception | None = None):
        super().__init__(message)
        self.partial = partial
        self.cause = cause


class FragmentError(ValueError):
    """A payload that is valid text but not a usable fragment."""


def kind_for_status(status_code: int) -> ErrorKind:
    if status_code in STATUS_KINDS:
        return STATUS_KINDS[status_code]
    if 500 <= status_code <= 599:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.UNEXPECTED_STATUS


def classify(
    status_code: int,
    headers: Mapping[str, str] | None,
    body: str | None,
) -> APIError:
    """Map a non-success HTTP exchange to an :class:`APIError`.

    Never raises. Rate-limit quotas are only attached for 429 responses,
    and only for the headers that were present and parseable.
    """
    kind = kind_for_status(status_code)
    rate_limits = None
    request_id = None
    try:
        if kind is ErrorKind.RATE_LIMITED:
            rate_limits = parse_rate_limits(headers)
        if headers:
            request_id = headers.get(REQUEST_ID)
    except Exception:
        logger.debug("Could not read headers for status %d", status_code, exc_info=True)
    detail = ApiErrorDetail.from_body(body)
    logger.debug("Classified status %d as %s", status_code, kind.value)
    return APIError(
        kind,
        status_code=status_code,
        body=body,
        error=detail,
        rate_limits=rate_limits,
        request_id=request_id,
    )


def from_transport(exc: Exception) -> APIError:
    """Classify a transport fault where no response was received."""
    if isinstance(exc, httpx.TimeoutException):
        kind = ErrorKind.TIMEOUT
    else:
        kind = ErrorKind.CONNECTION
    error = APIError(kind, f"{_MESSAGES[kind]} ({exc.__class__.__name__}: {exc})")
    error.__cause__ = exc
    return error
