"""Dataclasses describing normalized LSP pricing payloads."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from lsp_pricing.utils.datetime import ensure_utc, parse_timestamp

from .errors import LspErrorKind


class Provenance(str, Enum):
    """Where a quote's numbers came from."""

    LIVE = "live"
    CACHED = "cached"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class FeeBreakdown:
    """Decomposition of a total fee into its advertised components."""

    channel_fee_percent: float = 0.0
    channel_fee_base_msat: int = 0
    lease_fee_base_msat: int = 0
    lease_fee_basis: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel_fee_percent": self.channel_fee_percent,
            "channel_fee_base_msat": self.channel_fee_base_msat,
            "lease_fee_base_msat": self.lease_fee_base_msat,
            "lease_fee_basis": self.lease_fee_basis,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FeeBreakdown:
        return cls(
            channel_fee_percent=float(data.get("channel_fee_percent") or 0),
            channel_fee_base_msat=int(data.get("channel_fee_base_msat") or 0),
            lease_fee_base_msat=int(data.get("lease_fee_base_msat") or 0),
            lease_fee_basis=int(data.get("lease_fee_basis") or 0),
        )


@dataclass(frozen=True)
class Quote:
    """One provider's priced answer (or failure) for a channel size.

    Invariants enforced on construction:

    * ``live`` quotes carry a positive fee and no error;
    * ``unavailable`` quotes carry a zero fee and an error kind;
    * ``stale_seconds`` is only set on ``cached`` quotes.
    """

    provider_id: str
    provider_name: str
    channel_size_sat: int
    total_fee_msat: int
    timestamp: datetime
    source: Provenance
    fees: FeeBreakdown = field(default_factory=FeeBreakdown)
    error_kind: Optional[LspErrorKind] = None
    error: Optional[str] = None
    stale_seconds: Optional[int] = None
    raw_error: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))
        object.__setattr__(self, "source", Provenance(self.source))
        if self.error_kind is not None:
            object.__setattr__(self, "error_kind", LspErrorKind(self.error_kind))
        if not self.provider_id or not self.provider_id.strip():
            raise ValueError("provider_id must be provided for Quote")
        if self.channel_size_sat <= 0:
            raise ValueError("channel_size_sat must be positive")

        if self.source is Provenance.LIVE:
            if self.total_fee_msat <= 0:
                raise ValueError("live quotes require a positive total_fee_msat")
            if self.error_kind is not None or self.error:
                raise ValueError("live quotes cannot carry an error")
        elif self.source is Provenance.UNAVAILABLE:
            if self.total_fee_msat != 0:
                raise ValueError("unavailable quotes must have a zero total_fee_msat")
            if self.error_kind is None:
                raise ValueError("unavailable quotes require an error_kind")

        if self.stale_seconds is not None and self.source is not Provenance.CACHED:
            raise ValueError("stale_seconds is only valid on cached quotes")

    @classmethod
    def live(
        cls,
        *,
        provider_id: str,
        provider_name: str,
        channel_size_sat: int,
        total_fee_msat: int,
        timestamp: datetime,
        fees: FeeBreakdown | None = None,
    ) -> Quote:
        return cls(
            provider_id=provider_id,
            provider_name=provider_name,
            channel_size_sat=channel_size_sat,
            total_fee_msat=total_fee_msat,
            timestamp=timestamp,
            source=Provenance.LIVE,
            fees=fees or FeeBreakdown(),
        )

    @classmethod
    def unavailable(
        cls,
        *,
        provider_id: str,
        provider_name: str,
        channel_size_sat: int,
        timestamp: datetime,
        error_kind: LspErrorKind,
        error: str,
        raw_error: str | None = None,
    ) -> Quote:
        return cls(
            provider_id=provider_id,
            provider_name=provider_name,
            channel_size_sat=channel_size_sat,
            total_fee_msat=0,
            timestamp=timestamp,
            source=Provenance.UNAVAILABLE,
            error_kind=error_kind,
            error=error,
            raw_error=raw_error,
        )

    @property
    def is_valid_fallback(self) -> bool:
        """A quote can stand in for a failed fetch if it has a fee and no error."""

        return self.error_kind is None and not self.error and self.total_fee_msat > 0

    def age_seconds(self, now: datetime) -> int:
        return max(int((ensure_utc(now) - self.timestamp).total_seconds()), 0)

    def as_cached(self, now: datetime) -> Quote:
        """Return this quote re-tagged as a cached fallback observed at ``now``."""

        return replace(self, source=Provenance.CACHED, stale_seconds=self.age_seconds(now))

    def as_live(self) -> Quote:
        return replace(self, source=Provenance.LIVE, stale_seconds=None)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "provider_id": self.provider_id,
            "provider_name": self.provider_name,
            "channel_size_sat": self.channel_size_sat,
            "total_fee_msat": self.total_fee_msat,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source.value,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
            "stale_seconds": self.stale_seconds,
            "raw_error": self.raw_error,
        }
        payload.update(self.fees.to_dict())
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Quote:
        error_kind = data.get("error_kind")
        stale_seconds = data.get("stale_seconds")
        return cls(
            provider_id=str(data["provider_id"]),
            provider_name=str(data.get("provider_name") or data["provider_id"]),
            channel_size_sat=int(data["channel_size_sat"]),
            total_fee_msat=int(data.get("total_fee_msat") or 0),
            timestamp=parse_timestamp(data["timestamp"]),
            source=Provenance(data.get("source") or Provenance.LIVE.value),
            fees=FeeBreakdown.from_dict(data),
            error_kind=LspErrorKind(error_kind) if error_kind else None,
            error=data.get("error"),
            stale_seconds=int(stale_seconds) if stale_seconds is not None else None,
            raw_error=data.get("raw_error"),
        )


@dataclass(frozen=True)
class Capabilities:
    """Normalized ``get_info`` response."""

    uris: List[str]
    min_channel_balance_sat: Optional[int] = None
    max_channel_balance_sat: Optional[int] = None
    min_initial_lsp_balance_sat: Optional[int] = None
    max_initial_lsp_balance_sat: Optional[int] = None
    min_required_channel_confirmations: Optional[int] = None
    min_funding_confirms_within_blocks: Optional[int] = None
    max_channel_expiry_blocks: Optional[int] = None
    fees: Optional[FeeBreakdown] = None

    def __post_init__(self) -> None:
        if not self.uris:
            raise ValueError("Capabilities require at least one node URI")
        object.__setattr__(self, "uris", list(self.uris))

    @property
    def min_size_sat(self) -> Optional[int]:
        if self.min_channel_balance_sat is not None:
            return self.min_channel_balance_sat
        return self.min_initial_lsp_balance_sat

    @property
    def max_size_sat(self) -> Optional[int]:
        if self.max_channel_balance_sat is not None:
            return self.max_channel_balance_sat
        return self.max_initial_lsp_balance_sat


@dataclass(frozen=True)
class OrderQuote:
    """Normalized ``create_order`` response."""

    total_fee_msat: int
    fees: FeeBreakdown
    order_id: Optional[str] = None
    strategy: Optional[str] = None

    def __post_init__(self) -> None:
        if self.total_fee_msat <= 0:
            raise ValueError("OrderQuote requires a positive total_fee_msat")


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable snapshot of every quote for a channel size at one moment."""

    timestamp: datetime
    channel_size_sat: int
    quotes: List[Quote] = field(default_factory=list)

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))
        object.__setattr__(self, "quotes", list(self._normalize_quotes(self.quotes)))

    @staticmethod
    def _normalize_quotes(quotes: Sequence[Quote]) -> Sequence[Quote]:
        for quote in quotes:
            if not isinstance(quote, Quote):
                raise TypeError("quotes must contain Quote instances")
        return quotes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "channel_size_sat": self.channel_size_sat,
            "quotes": [quote.to_dict() for quote in self.quotes],
        }
