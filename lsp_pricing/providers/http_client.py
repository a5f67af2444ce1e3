"""Shared HTTP client wrapper that always keeps the upstream body."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import requests
from requests import Session
from requests.exceptions import RequestException

from .errors import LspError, LspErrorKind, classify_error

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HTTPClientConfig:
    """Configuration for the shared HTTP client."""

    timeout: float = 10.0
    user_agent: str = "lsp-price-aggregator/1.0"


@dataclass(frozen=True)
class HTTPResult:
    """Status and full body text of one upstream exchange."""

    url: str
    status_code: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        try:
            return json.loads(self.text)
        except ValueError as exc:
            raise LspError(
                LspErrorKind.INVALID_JSON,
                f"Invalid JSON response from {self.url}",
                status_code=self.status_code,
                raw_body=self.text,
            ) from exc

    def raise_for_status(self) -> None:
        if not self.ok:
            raise classify_error(status_code=self.status_code, body=self.text)


class HTTPClient:
    """Small HTTP client applying a bounded timeout to every call.

    Transport failures are converted into classified ``LspError``s; non-2xx
    responses are returned as-is so callers can keep the raw payload.
    """

    def __init__(
        self,
        config: Optional[HTTPClientConfig] = None,
        session: Optional[Session] = None,
    ) -> None:
        self._config = config or HTTPClientConfig()
        self._session = session or requests.Session()

    @property
    def timeout(self) -> float:
        return self._config.timeout

    def get(self, url: str) -> HTTPResult:
        return self._send("GET", url)

    def post(self, url: str, payload: Mapping[str, Any]) -> HTTPResult:
        return self._send("POST", url, json=dict(payload))

    def close(self) -> None:
        self._session.close()

    def _send(self, method: str, url: str, **kwargs: Any) -> HTTPResult:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": self._config.user_agent,
        }
        try:
            response = self._session.request(
                method,
                url,
                headers=headers,
                timeout=self._config.timeout,
                **kwargs,
            )
        except RequestException as exc:
            error = classify_error(exc)
            logger.debug("%s %s failed: %s", method, url, error.message)
            raise error from exc

        text = response.text or ""
        logger.debug("%s %s -> HTTP %s (%s bytes)", method, url, response.status_code, len(text))
        return HTTPResult(url=url, status_code=response.status_code, text=text)


def build_url(base_url: str, path: str) -> str:
    base = base_url.rstrip("/")
    suffix = path.lstrip("/")
    return f"{base}/{suffix}"
