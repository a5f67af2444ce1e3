"""Classification of upstream LSP failures into a closed set of error kinds.

Providers do not share an error schema, so classification is heuristic:
typed transport exceptions first, then keywords in the response body, then
the HTTP status, then keywords in the exception message. Anything left over
becomes ``UNKNOWN``; nothing is dropped.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from requests import exceptions as requests_exceptions


class LspErrorKind(str, Enum):
    """Closed taxonomy of reasons a provider could not be priced."""

    URL_NOT_FOUND = "URL_NOT_FOUND"
    TIMEOUT = "TIMEOUT"
    BAD_STATUS = "BAD_STATUS"
    INVALID_JSON = "INVALID_JSON"
    SCHEMA_MISMATCH = "SCHEMA_MISMATCH"
    CHANNEL_SIZE_TOO_SMALL = "CHANNEL_SIZE_TOO_SMALL"
    CHANNEL_SIZE_TOO_LARGE = "CHANNEL_SIZE_TOO_LARGE"
    RATE_LIMITED = "RATE_LIMITED"
    TLS_ERROR = "TLS_ERROR"
    CORS_BLOCKED = "CORS_BLOCKED"
    PEER_NOT_CONNECTED = "PEER_NOT_CONNECTED"
    WHITELIST_REQUIRED = "WHITELIST_REQUIRED"
    LIVE_DATA_UNAVAILABLE = "LIVE_DATA_UNAVAILABLE"
    CACHE_UNAVAILABLE = "CACHE_UNAVAILABLE"
    UNKNOWN = "UNKNOWN"


# Kinds that will not change on an immediate second attempt.
NON_RETRYABLE_KINDS = frozenset(
    {
        LspErrorKind.CHANNEL_SIZE_TOO_SMALL,
        LspErrorKind.CHANNEL_SIZE_TOO_LARGE,
        LspErrorKind.WHITELIST_REQUIRED,
        LspErrorKind.SCHEMA_MISMATCH,
    }
)

# Ordered: the first matching group wins.
_BODY_KEYWORDS: tuple[tuple[LspErrorKind, tuple[str, ...]], ...] = (
    (LspErrorKind.PEER_NOT_CONNECTED, ("not connected", "peer")),
    (LspErrorKind.WHITELIST_REQUIRED, ("whitelist", "allowlist", "node not allowed", "unauthorized")),
    (LspErrorKind.RATE_LIMITED, ("rate limit", "rate-limit", "too many requests")),
    (
        LspErrorKind.CHANNEL_SIZE_TOO_SMALL,
        ("too small", "below minimum", "less than minimum", "minimum channel"),
    ),
    (
        LspErrorKind.CHANNEL_SIZE_TOO_LARGE,
        ("too large", "too big", "above maximum", "exceeds maximum", "maximum channel"),
    ),
)

_MESSAGE_KEYWORDS: tuple[tuple[LspErrorKind, tuple[str, ...]], ...] = (
    (LspErrorKind.TIMEOUT, ("timeout", "timed out", "aborted")),
    (LspErrorKind.TLS_ERROR, ("ssl", "tls", "certificate")),
    (LspErrorKind.CORS_BLOCKED, ("cors",)),
    (LspErrorKind.PEER_NOT_CONNECTED, ("not connected", "peer")),
    (
        LspErrorKind.URL_NOT_FOUND,
        (
            "fetch failed",
            "enotfound",
            "getaddrinfo",
            "name or service not known",
            "failed to resolve",
            "connection refused",
            "econnrefused",
        ),
    ),
    (LspErrorKind.INVALID_JSON, ("json",)),
)


class LspError(Exception):
    """A classified upstream failure.

    ``raw_body`` holds the untouched upstream response text when there was
    one. It is diagnostic only and never parsed downstream.
    """

    def __init__(
        self,
        kind: LspErrorKind,
        message: str,
        *,
        status_code: int | None = None,
        raw_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.raw_body = raw_body

    @property
    def retryable(self) -> bool:
        return is_retryable(self.kind)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<LspError {self.kind.value}: {self.message}>"


def is_retryable(kind: LspErrorKind) -> bool:
    """Return True when an immediate retry might produce a different outcome."""

    return kind not in NON_RETRYABLE_KINDS


def classify_error(
    error: Any = None,
    *,
    status_code: int | None = None,
    body: str | None = None,
) -> LspError:
    """Map a raw failure, HTTP status and/or response body to an ``LspError``."""

    if isinstance(error, LspError):
        return error

    typed = _classify_transport(error)
    if typed is not None:
        return typed

    body_kind = _match_keywords(body, _BODY_KEYWORDS)
    if body_kind is not None:
        return LspError(
            body_kind,
            _body_message(body_kind, status_code),
            status_code=status_code,
            raw_body=body,
        )

    if status_code is not None and not 200 <= status_code < 300:
        return _classify_status(status_code, body)

    if isinstance(error, BaseException):
        text = str(error)
        kind = _match_keywords(text, _MESSAGE_KEYWORDS) or LspErrorKind.UNKNOWN
        message = text or error.__class__.__name__
        return LspError(kind, message, status_code=status_code, raw_body=body)

    return LspError(LspErrorKind.UNKNOWN, "Unknown error", status_code=status_code, raw_body=body)


def _classify_transport(error: Any) -> LspError | None:
    if not isinstance(error, requests_exceptions.RequestException):
        return None

    message = str(error) or error.__class__.__name__
    if isinstance(error, requests_exceptions.Timeout):
        return LspError(LspErrorKind.TIMEOUT, f"Request timed out: {message}")
    if isinstance(error, requests_exceptions.SSLError):
        return LspError(LspErrorKind.TLS_ERROR, f"TLS handshake failed: {message}")
    if isinstance(error, requests_exceptions.JSONDecodeError):
        return LspError(LspErrorKind.INVALID_JSON, f"Invalid JSON response: {message}")
    if isinstance(error, requests_exceptions.ConnectionError):
        kind = _match_keywords(message, _MESSAGE_KEYWORDS)
        if kind is None or kind is LspErrorKind.INVALID_JSON:
            kind = LspErrorKind.URL_NOT_FOUND
        return LspError(kind, f"Connection failed: {message}")
    if isinstance(error, (requests_exceptions.InvalidURL, requests_exceptions.MissingSchema)):
        return LspError(LspErrorKind.URL_NOT_FOUND, f"Invalid URL: {message}")
    return None


def _classify_status(status_code: int, body: str | None) -> LspError:
    if status_code == 429:
        return LspError(
            LspErrorKind.RATE_LIMITED,
            "Provider rate limit hit (HTTP 429)",
            status_code=status_code,
            raw_body=body,
        )
    if status_code == 404:
        return LspError(
            LspErrorKind.URL_NOT_FOUND,
            "LSPS1 endpoint not found (HTTP 404)",
            status_code=status_code,
            raw_body=body,
        )
    return LspError(
        LspErrorKind.BAD_STATUS,
        f"Unexpected response status HTTP {status_code}",
        status_code=status_code,
        raw_body=body,
    )


def _body_message(kind: LspErrorKind, status_code: int | None) -> str:
    suffix = f" (HTTP {status_code})" if status_code is not None else ""
    messages = {
        LspErrorKind.PEER_NOT_CONNECTED: "Provider requires a connected peer",
        LspErrorKind.WHITELIST_REQUIRED: "Provider requires a whitelisted public key",
        LspErrorKind.RATE_LIMITED: "Provider rate limit hit",
        LspErrorKind.CHANNEL_SIZE_TOO_SMALL: "Channel size below provider minimum",
        LspErrorKind.CHANNEL_SIZE_TOO_LARGE: "Channel size above provider maximum",
    }
    return messages.get(kind, "Provider rejected the request") + suffix


def _match_keywords(
    text: str | None,
    table: tuple[tuple[LspErrorKind, tuple[str, ...]], ...],
) -> LspErrorKind | None:
    if not text:
        return None
    lowered = text.lower()
    for kind, keywords in table:
        if any(keyword in lowered for keyword in keywords):
            return kind
    return None
