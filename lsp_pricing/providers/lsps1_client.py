"""LSPS1 protocol client: ``get_info`` then ``create_order``."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from .base import Provider
from .errors import LspError, LspErrorKind, classify_error
from .fees import extract_fee
from .http_client import HTTPClient, HTTPClientConfig, HTTPResult, build_url
from .schemas import Capabilities, FeeBreakdown, OrderQuote

logger = logging.getLogger(__name__)

URL_OVERRIDE_PREFIX = "LSP_URL_OVERRIDE_"
_FEE_FIELDS = (
    "channel_fee_percent",
    "channel_fee_base_msat",
    "lease_fee_base_msat",
    "lease_fee_basis",
)


@dataclass(frozen=True)
class LSPS1ClientConfig:
    """Timeout and conservative order defaults for LSPS1 calls."""

    timeout: float = 10.0
    required_channel_confirmations: int = 0
    funding_confirms_within_blocks: int = 6
    channel_expiry_blocks: int = 13140


class LSPS1Client:
    """Speaks the two-call LSPS1 handshake to one provider at a time.

    Every failure leaves this class as a classified ``LspError``.
    """

    def __init__(
        self,
        config: Optional[LSPS1ClientConfig] = None,
        http_client: Optional[HTTPClient] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._config = config or LSPS1ClientConfig()
        self._http = http_client or HTTPClient(HTTPClientConfig(timeout=self._config.timeout))
        self._environ = environ
        self._resolved: Dict[str, str] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> LSPS1Client:
        client_config = LSPS1ClientConfig(
            timeout=float(config.get("LSP_REQUEST_TIMEOUT_SECONDS", 10)),
        )
        return cls(client_config)

    def get_info(self, provider: Provider) -> Capabilities:
        """Fetch and validate the provider's capabilities.

        Candidate base URLs are tried in order; the first one that answers
        with a valid ``get_info`` payload is remembered for later calls.
        """

        candidates = self.base_url_candidates(provider)
        last_error: LspError | None = None
        for base_url in candidates:
            try:
                capabilities = parse_capabilities(self._fetch_info(base_url))
            except LspError as exc:
                last_error = exc
                if len(candidates) > 1:
                    logger.info(
                        "get_info candidate %s for %s failed: %s",
                        base_url,
                        provider.id,
                        exc.message,
                    )
                continue
            self._remember(provider, base_url)
            return capabilities

        if last_error is None:
            raise _schema_mismatch(f"Provider '{provider.id}' has no base URL candidates")
        raise last_error

    def create_order(
        self,
        provider: Provider,
        channel_size_sat: int,
        capabilities: Capabilities,
    ) -> OrderQuote:
        """Request a priced order; out-of-range sizes never reach the network."""

        check_channel_size(channel_size_sat, capabilities)
        body = self.build_order_request(provider, channel_size_sat, capabilities)
        url = build_url(self.order_base_url(provider), "create_order")
        result = self._http.post(url, body)
        if not result.ok:
            raise classify_error(status_code=result.status_code, body=result.text)

        payload = _json_object(result, "create_order")
        found = extract_fee(payload, provider.fee_strategies)
        if found is None:
            if "error" in payload:
                raise classify_error(body=result.text)
            raise LspError(
                LspErrorKind.SCHEMA_MISMATCH,
                "create_order response carried no positive fee",
                status_code=result.status_code,
                raw_body=result.text,
            )

        total_fee_msat, strategy = found
        order_id = payload.get("order_id")
        return OrderQuote(
            total_fee_msat=total_fee_msat,
            fees=_breakdown(payload, capabilities.fees) or FeeBreakdown(),
            order_id=str(order_id) if order_id is not None else None,
            strategy=strategy,
        )

    def build_order_request(
        self,
        provider: Provider,
        channel_size_sat: int,
        capabilities: Capabilities,
    ) -> Dict[str, Any]:
        cfg = self._config
        confirmations = max(
            cfg.required_channel_confirmations,
            capabilities.min_required_channel_confirmations or 0,
        )
        funding_blocks = max(
            cfg.funding_confirms_within_blocks,
            capabilities.min_funding_confirms_within_blocks or 0,
        )
        expiry_blocks = cfg.channel_expiry_blocks
        if capabilities.max_channel_expiry_blocks:
            expiry_blocks = min(expiry_blocks, capabilities.max_channel_expiry_blocks)

        body: Dict[str, Any] = {
            "public_key": provider.public_key,
            "channel_size_sat": str(channel_size_sat),
            "lsp_balance_sat": str(channel_size_sat),
            "client_balance_sat": "0",
            "required_channel_confirmations": confirmations,
            "funding_confirms_within_blocks": funding_blocks,
            "channel_expiry_blocks": expiry_blocks,
            "token": "",
            "announce_channel": False,
        }
        body.update(provider.order_overrides)
        return body

    def base_url_candidates(self, provider: Provider) -> List[str]:
        override = self._override(provider)
        if override:
            return [override]
        with self._lock:
            resolved = self._resolved.get(provider.id)
        if resolved is None:
            return list(provider.urls)
        return [resolved] + [url for url in provider.urls if url != resolved]

    def order_base_url(self, provider: Provider) -> str:
        return self.base_url_candidates(provider)[0]

    def resolved_url(self, provider_id: str) -> str | None:
        with self._lock:
            return self._resolved.get(provider_id)

    def close(self) -> None:
        self._http.close()

    def _fetch_info(self, base_url: str) -> Dict[str, Any]:
        result = self._http.get(build_url(base_url, "get_info"))
        result.raise_for_status()
        return _json_object(result, "get_info")

    def _remember(self, provider: Provider, base_url: str) -> None:
        if self._override(provider):
            return
        with self._lock:
            previous = self._resolved.get(provider.id)
            self._resolved[provider.id] = base_url
        if provider.needs_discovery and previous != base_url:
            logger.info("Discovered LSPS1 endpoint for %s: %s", provider.id, base_url)

    def _override(self, provider: Provider) -> str | None:
        environ = self._environ if self._environ is not None else os.environ
        key = URL_OVERRIDE_PREFIX + provider.id.upper().replace("-", "_")
        value = (environ.get(key) or "").strip()
        return value.rstrip("/") or None


def check_channel_size(channel_size_sat: int, capabilities: Capabilities) -> None:
    """Reject sizes outside the advertised bounds without a network call."""

    minimum = capabilities.min_size_sat
    maximum = capabilities.max_size_sat
    if minimum is not None and channel_size_sat < minimum:
        raise LspError(
            LspErrorKind.CHANNEL_SIZE_TOO_SMALL,
            f"Channel size {channel_size_sat} sat is below the provider minimum of {minimum} sat",
        )
    if maximum is not None and channel_size_sat > maximum:
        raise LspError(
            LspErrorKind.CHANNEL_SIZE_TOO_LARGE,
            f"Channel size {channel_size_sat} sat is above the provider maximum of {maximum} sat",
        )


def parse_capabilities(payload: Mapping[str, Any]) -> Capabilities:
    """Validate a ``get_info`` payload; bounds may sit at top level or under ``options``."""

    uris = payload.get("uris")
    if (
        not isinstance(uris, list)
        or not uris
        or not all(isinstance(uri, str) and uri.strip() for uri in uris)
    ):
        raise _schema_mismatch("get_info response must contain a non-empty 'uris' list")

    options = payload.get("options")
    if not isinstance(options, Mapping):
        options = {}

    def lookup(name: str) -> Optional[int]:
        value = payload.get(name)
        if value is None:
            value = options.get(name)
        return _parse_int(value, name)

    capabilities = Capabilities(
        uris=[uri.strip() for uri in uris],
        min_channel_balance_sat=lookup("min_channel_balance_sat"),
        max_channel_balance_sat=lookup("max_channel_balance_sat"),
        min_initial_lsp_balance_sat=lookup("min_initial_lsp_balance_sat"),
        max_initial_lsp_balance_sat=lookup("max_initial_lsp_balance_sat"),
        min_required_channel_confirmations=lookup("min_required_channel_confirmations"),
        min_funding_confirms_within_blocks=lookup("min_funding_confirms_within_blocks"),
        max_channel_expiry_blocks=lookup("max_channel_expiry_blocks"),
        fees=_breakdown(options, None),
    )

    minimum, maximum = capabilities.min_size_sat, capabilities.max_size_sat
    if minimum is not None and maximum is not None and minimum > maximum:
        raise _schema_mismatch(
            f"get_info advertises minimum {minimum} sat above maximum {maximum} sat"
        )
    return capabilities


def _parse_int(value: Any, field: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise _schema_mismatch(f"get_info field '{field}' must be numeric")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise _schema_mismatch(f"get_info field '{field}' must be numeric, got {value!r}")


def _breakdown(payload: Mapping[str, Any], fallback: FeeBreakdown | None) -> FeeBreakdown | None:
    if not any(payload.get(name) is not None for name in _FEE_FIELDS):
        return fallback if fallback is not None else None
    try:
        return FeeBreakdown.from_dict(payload)
    except (TypeError, ValueError):
        logger.debug("Ignoring malformed fee breakdown: %s", {k: payload.get(k) for k in _FEE_FIELDS})
        return fallback


def _json_object(result: HTTPResult, call: str) -> Dict[str, Any]:
    payload = result.json()
    if not isinstance(payload, dict):
        raise LspError(
            LspErrorKind.SCHEMA_MISMATCH,
            f"{call} response is not a JSON object",
            status_code=result.status_code,
            raw_body=result.text,
        )
    return payload


def _schema_mismatch(message: str) -> LspError:
    return LspError(LspErrorKind.SCHEMA_MISMATCH, message)
