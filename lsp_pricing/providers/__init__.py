"""Provider configuration, LSPS1 client and normalized pricing payloads."""

from .base import Provider, ProviderError
from .errors import LspError, LspErrorKind, classify_error, is_retryable
from .fees import DEFAULT_FEE_STRATEGIES, DirectFee, PaymentFee, extract_fee
from .http_client import HTTPClient, HTTPClientConfig, HTTPResult
from .lsps1_client import LSPS1Client, LSPS1ClientConfig, parse_capabilities
from .schemas import Capabilities, FeeBreakdown, HistoryEntry, OrderQuote, Provenance, Quote

__all__ = [
    "Capabilities",
    "DEFAULT_FEE_STRATEGIES",
    "DirectFee",
    "FeeBreakdown",
    "HTTPClient",
    "HTTPClientConfig",
    "HTTPResult",
    "HistoryEntry",
    "LSPS1Client",
    "LSPS1ClientConfig",
    "LspError",
    "LspErrorKind",
    "OrderQuote",
    "PaymentFee",
    "Provenance",
    "Provider",
    "ProviderError",
    "Quote",
    "classify_error",
    "extract_fee",
    "is_retryable",
    "parse_capabilities",
]
