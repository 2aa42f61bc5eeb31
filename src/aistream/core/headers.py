"""Response header telemetry (request ids, timing, rate limits)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

logger = logging.getLogger(__name__)

REQUEST_ID = "x-request-id"
ORGANIZATION = "openai-organization"
PROCESSING_MS = "openai-processing-ms"
API_VERSION = "openai-version"

LIMIT_REQUESTS = "x-ratelimit-limit-requests"
LIMIT_TOKENS = "x-ratelimit-limit-tokens"
REMAINING_REQUESTS = "x-ratelimit-remaining-requests"
REMAINING_TOKENS = "x-ratelimit-remaining-tokens"
RESET_REQUESTS = "x-ratelimit-reset-requests"
RESET_TOKENS = "x-ratelimit-reset-tokens"


@dataclass
class RateLimitInfo:
    """Quota telemetry. Absent headers leave a field as None, never zero."""

    limit_requests: int | None = None
    limit_tokens: int | None = None
    remaining_requests: int | None = None
    remaining_tokens: int | None = None
    reset_requests: str | None = None  # e.g. "1s", "6m0s"
    reset_tokens: str | None = None

    def is_empty(self) -> bool:
        return all(value is None for value in vars(self).values())


@dataclass
class ResponseMetadata:
    request_id: str | None = None
    organization: str | None = None
    processing_ms: float | None = None
    api_version: str | None = None
    rate_limits: RateLimitInfo | None = None


def _lookup(headers: Mapping[str, str], name: str) -> str | None:
    # httpx.Headers is case-insensitive already; plain dicts are not.
    value = headers.get(name)
    if value is None:
        for key, candidate in headers.items():
            if key.lower() == name:
                return candidate
    return value


def _parse_int(headers: Mapping[str, str], name: str) -> int | None:
    raw = _lookup(headers, name)
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        logger.debug("Ignoring unparseable %s header: %r", name, raw)
        return None


def _parse_float(headers: Mapping[str, str], name: str) -> float | None:
    raw = _lookup(headers, name)
    if raw is None:
        return None
    try:
        return float(raw.strip().replace(",", ""))
    except ValueError:
        logger.debug("Ignoring unparseable %s header: %r", name, raw)
        return None


def _parse_str(headers: Mapping[str, str], name: str) -> str | None:
    raw = _lookup(headers, name)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def parse_rate_limits(headers: Mapping[str, str] | None) -> RateLimitInfo:
    """Extract the six rate-limit headers. Never raises."""
    if not headers:
        return RateLimitInfo()
    return RateLimitInfo(
        limit_requests=_parse_int(headers, LIMIT_REQUESTS),
        limit_tokens=_parse_int(headers, LIMIT_TOKENS),
        remaining_requests=_parse_int(headers, REMAINING_REQUESTS),
        remaining_tokens=_parse_int(headers, REMAINING_TOKENS),
        reset_requests=_parse_str(headers, RESET_REQUESTS),
        reset_tokens=_parse_str(headers, RESET_TOKENS),
    )


def parse_metadata(headers: Mapping[str, str] | None) -> ResponseMetadata:
    if not headers:
        return ResponseMetadata()
    rate_limits = parse_rate_limits(headers)
    return ResponseMetadata(
        request_id=_parse_str(headers, REQUEST_ID),
        organization=_parse_str(headers, ORGANIZATION),
        processing_ms=_parse_float(headers, PROCESSING_MS),
        api_version=_parse_str(headers, API_VERSION),
        rate_limits=None if rate_limits.is_empty() else rate_limits,
    )
