"""Price service facade: cached reads, smart reads and forced refreshes."""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from datetime import datetime
from typing import Any

from flask import Flask

from lsp_pricing.errors import NotFoundError
from lsp_pricing.providers import (
    LSPS1Client,
    LspErrorKind,
    Provenance,
    Provider,
    ProviderError,
    Quote,
)
from lsp_pricing.providers.registry import get_active_providers, init_providers
from lsp_pricing.providers.schemas import HistoryEntry
from lsp_pricing.utils.datetime import utc_now
from lsp_pricing.validation import validate_channel_size

from .cache_store import CacheStore
from .orchestrator import FetchOrchestrator, merge_quotes
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

PRICE_SERVICE_EXT_KEY = "price_service"
CACHE_UNAVAILABLE_MESSAGE = "No cached quote available for this channel size"
DEFAULT_REFRESH_JITTER_SECONDS = 30.0


class PriceService:
    """Entry point for every consumer of LSP prices.

    All four read/refresh operations return one Quote per active provider,
    in provider configuration order. The persistent store is authoritative;
    an in-process copy of the last merged result per channel size is only
    consulted when the store returns nothing.
    """

    def __init__(
        self,
        orchestrator: FetchOrchestrator,
        store: CacheStore,
        *,
        freshness_seconds: float = 3600,
        refresh_interval_seconds: float = 600,
        refresh_jitter_seconds: float = DEFAULT_REFRESH_JITTER_SECONDS,
        min_channel_size_sat: int = 100_000,
        max_channel_size_sat: int = 10_000_000,
        now: Callable[[], datetime] = utc_now,
        clock: Callable[[], float] = time.monotonic,
        background_workers: int = 2,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self._freshness_seconds = freshness_seconds
        self._refresh_interval = refresh_interval_seconds
        self._refresh_jitter = refresh_jitter_seconds
        self._min_size = min_channel_size_sat
        self._max_size = max_channel_size_sat
        self._now = now
        self._clock = clock

        self._memory: dict[int, list[Quote]] = {}
        self._memory_lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._in_flight: dict[int, Future[Any]] = {}
        self._next_refresh_at: dict[int, float] = {}
        self._background = ThreadPoolExecutor(
            max_workers=background_workers, thread_name_prefix="price-refresh"
        )

        if orchestrator.cache_lookup is None:
            orchestrator.cache_lookup = self._read_existing

    def get_cached_only(self, channel_size_sat: Any) -> list[Quote]:
        """Current quotes without touching the network."""

        size = self._validate(channel_size_sat)
        return self._complete(size, self._read_existing(size))

    def get_smart(self, channel_size_sat: Any) -> list[Quote]:
        """Cached quotes plus a detached refresh for the next caller.

        Cached entries younger than the freshness threshold are shown as live;
        live entries older than it are shown as cached.
        """

        size = self._validate(channel_size_sat)
        quotes = self._complete(size, self._read_existing(size))
        self.schedule_refresh(size)

        now = self._now()
        displayed: list[Quote] = []
        for quote in quotes:
            if not quote.is_valid_fallback:
                displayed.append(quote)
            elif quote.age_seconds(now) < self._freshness_seconds:
                displayed.append(quote.as_live() if quote.source is Provenance.CACHED else quote)
            else:
                displayed.append(quote.as_cached(now) if quote.source is Provenance.LIVE else quote)
        return displayed

    def force_refresh(self, channel_size_sat: Any, bypass_rate_limit: bool = False) -> list[Quote]:
        """Fetch every provider now, merge with the cache and persist."""

        size = self._validate(channel_size_sat)
        existing = self._read_existing(size)
        fresh = self.orchestrator.fetch_all(size, bypass_rate_limit=bypass_rate_limit)
        merged = merge_quotes(existing, fresh, self._now())
        self._persist(size, merged)
        return self._complete(size, merged)

    def force_refresh_single_provider(
        self,
        provider_id: str,
        channel_size_sat: Any,
        bypass_rate_limit: bool = True,
    ) -> list[Quote]:
        """Refresh one provider and fold its result into the stored snapshot."""

        size = self._validate(channel_size_sat)
        try:
            provider = self.orchestrator.get_provider(provider_id)
        except ProviderError as exc:
            raise NotFoundError(str(exc), payload={"provider_id": provider_id}) from exc

        existing = self._read_existing(size)
        fresh = self.orchestrator.fetch_provider(
            provider.id, size, bypass_rate_limit=bypass_rate_limit
        )
        merged = merge_quotes(existing, [fresh], self._now())
        self._persist(size, merged)
        return self._complete(size, merged)

    def schedule_refresh(self, channel_size_sat: int) -> bool:
        """Start a background refresh unless one is running or ran too recently."""

        now = self._clock()
        with self._refresh_lock:
            if channel_size_sat in self._in_flight:
                return False
            if now < self._next_refresh_at.get(channel_size_sat, float("-inf")):
                return False
            jitter = random.uniform(0, self._refresh_jitter) if self._refresh_jitter > 0 else 0.0
            self._next_refresh_at[channel_size_sat] = now + self._refresh_interval + jitter
            future = self._background.submit(self._background_refresh, channel_size_sat)
            self._in_flight[channel_size_sat] = future
        return True

    def wait_for_background(self, timeout: float | None = None) -> None:
        """Block until the currently scheduled background refreshes finish."""

        with self._refresh_lock:
            futures = list(self._in_flight.values())
        if futures:
            wait_futures(futures, timeout=timeout)

    def history(self, limit: int | None = None) -> list[HistoryEntry]:
        return self.store.read_history(limit)

    def available_channel_sizes(self) -> list[int]:
        sizes = set(self.store.available_channel_sizes())
        if not sizes:
            with self._memory_lock:
                sizes = set(self._memory)
        return sorted(sizes)

    def providers(self) -> list[Provider]:
        return self.orchestrator.providers()

    def status(self) -> dict[str, Any]:
        with self._refresh_lock:
            refreshing = sorted(self._in_flight)
        return {
            "store": self.store.status(),
            "providers": [provider.id for provider in self.providers()],
            "refreshing": refreshing,
            "rate_limits": self.orchestrator.rate_limiter.status(),
        }

    def shutdown(self, wait: bool = False) -> None:
        self._background.shutdown(wait=wait, cancel_futures=not wait)
        self.orchestrator.close()

    def _validate(self, channel_size_sat: Any) -> int:
        return validate_channel_size(
            channel_size_sat, minimum=self._min_size, maximum=self._max_size
        )

    def _read_existing(self, channel_size_sat: int) -> list[Quote]:
        quotes = self.store.read_current(channel_size_sat)
        if not quotes:
            with self._memory_lock:
                quotes = list(self._memory.get(channel_size_sat, []))
        # stale_seconds is relative to the read, not to the write.
        now = self._now()
        return [
            quote.as_cached(now) if quote.source is Provenance.CACHED else quote for quote in quotes
        ]

    def _persist(self, channel_size_sat: int, quotes: Sequence[Quote]) -> None:
        with self._memory_lock:
            self._memory[channel_size_sat] = list(quotes)
        if not self.store.write_snapshot(channel_size_sat, quotes):
            logger.warning(
                "Snapshot for %s sat kept in memory only; cache store write failed",
                channel_size_sat,
            )

    def _complete(self, channel_size_sat: int, quotes: Sequence[Quote]) -> list[Quote]:
        by_id = {quote.provider_id: quote for quote in quotes}
        now = self._now()
        completed: list[Quote] = []
        for provider in self.providers():
            quote = by_id.get(provider.id)
            if quote is None:
                quote = Quote.unavailable(
                    provider_id=provider.id,
                    provider_name=provider.name,
                    channel_size_sat=channel_size_sat,
                    timestamp=now,
                    error_kind=LspErrorKind.CACHE_UNAVAILABLE,
                    error=CACHE_UNAVAILABLE_MESSAGE,
                )
            completed.append(quote)
        return completed

    def _background_refresh(self, channel_size_sat: int) -> None:
        try:
            self.force_refresh(channel_size_sat)
        except Exception:
            logger.exception("Background refresh for %s sat failed", channel_size_sat)
        finally:
            with self._refresh_lock:
                self._in_flight.pop(channel_size_sat, None)


def create_price_service(config: Any, session_factory: Any = None) -> PriceService:
    """Wire client, rate limiter, orchestrator and cache store from config values."""

    disabled = str(config.get("LSP_DISABLED_PROVIDERS") or "").split(",")

    def active_providers() -> list[Provider]:
        return get_active_providers(disabled)

    rate_limiter = RateLimiter.for_providers(
        active_providers(),
        float(config.get("RATE_LIMIT_DEFAULT_COOLDOWN_SECONDS", 60)),
    )
    orchestrator = FetchOrchestrator(
        LSPS1Client.from_config(config),
        rate_limiter,
        active_providers,
        provider_timeout=float(config.get("LSP_REQUEST_TIMEOUT_SECONDS", 10)),
        batch_timeout=float(config.get("LSP_BATCH_TIMEOUT_SECONDS", 25)),
        max_attempts=int(config.get("LSP_FETCH_MAX_ATTEMPTS", 2)),
        retry_delay=float(config.get("LSP_RETRY_DELAY_SECONDS", 1.0)),
    )
    store = CacheStore(
        session_factory,
        history_limit=int(config.get("PRICE_HISTORY_MAX_ENTRIES", 50)),
    )
    return PriceService(
        orchestrator,
        store,
        freshness_seconds=float(config.get("PRICE_FRESHNESS_SECONDS", 3600)),
        refresh_interval_seconds=float(config.get("BACKGROUND_REFRESH_INTERVAL_SECONDS", 600)),
        min_channel_size_sat=int(config.get("MIN_CHANNEL_SIZE_SAT", 100_000)),
        max_channel_size_sat=int(config.get("MAX_CHANNEL_SIZE_SAT", 10_000_000)),
    )


def init_price_service(app: Flask) -> PriceService:
    """Create the price service and store it on the Flask app."""

    from lsp_pricing.database import get_session_factory

    existing = app.extensions.get(PRICE_SERVICE_EXT_KEY)
    if isinstance(existing, PriceService):
        return existing

    init_providers(app)
    service = create_price_service(app.config, get_session_factory())
    app.extensions[PRICE_SERVICE_EXT_KEY] = service
    return service


def get_price_service(app: Flask) -> PriceService:
    service = app.extensions.get(PRICE_SERVICE_EXT_KEY)
    if not isinstance(service, PriceService):
        raise RuntimeError("Price service has not been initialized. Call init_price_service first.")
    return service
