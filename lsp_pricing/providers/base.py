"""Static configuration describing a Lightning Service Provider."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .fees import DEFAULT_FEE_STRATEGIES, FeeStrategy


class ProviderError(Exception):
    """Raised when a provider is unknown or misconfigured."""


@dataclass(frozen=True)
class Provider:
    """An LSP reachable over LSPS1.

    ``urls`` is an ordered list of candidate base URLs; more than one entry
    means the working endpoint is discovered at runtime. ``public_key`` is
    the identity sent as ``public_key`` in ``create_order``.
    """

    id: str
    name: str
    urls: tuple[str, ...]
    public_key: str
    active: bool = True
    cooldown_seconds: Optional[float] = None
    fee_strategies: tuple[FeeStrategy, ...] = DEFAULT_FEE_STRATEGIES
    order_overrides: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.id or not self.id.strip():
            raise ProviderError("Provider id cannot be empty.")
        urls = tuple(url.strip().rstrip("/") for url in self.urls if url and url.strip())
        if not urls:
            raise ProviderError(f"Provider '{self.id}' needs at least one base URL.")
        object.__setattr__(self, "id", self.id.strip().lower())
        object.__setattr__(self, "urls", urls)
        object.__setattr__(self, "order_overrides", dict(self.order_overrides))

    @property
    def needs_discovery(self) -> bool:
        return len(self.urls) > 1

    @property
    def url(self) -> str:
        return self.urls[0]
