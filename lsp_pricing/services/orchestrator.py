"""Fan-out orchestration of LSPS1 fetches with retries and cache fallback."""

from __future__ import annotations

import contextvars
import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from time import perf_counter
from typing import Protocol

from lsp_pricing.logging import provider_log_extra
from lsp_pricing.providers import (
    Capabilities,
    LspError,
    LspErrorKind,
    OrderQuote,
    Provenance,
    Provider,
    ProviderError,
    Quote,
    classify_error,
)
from lsp_pricing.utils.datetime import utc_now

from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 0.05
DEFAULT_MAX_WORKERS = 16

CacheLookup = Callable[[int], Sequence[Quote]]
ProviderSource = Callable[[], Sequence[Provider]]


class LspsClient(Protocol):
    def get_info(self, provider: Provider) -> Capabilities: ...

    def create_order(
        self, provider: Provider, channel_size_sat: int, capabilities: Capabilities
    ) -> OrderQuote: ...

    def close(self) -> None: ...


class FetchOutcome(str, Enum):
    """How a provider's round ended."""

    SUCCESS = "success"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"


@dataclass
class _TaskState:
    provider: Provider
    started_at: float | None = None
    abandoned: threading.Event = field(default_factory=threading.Event)


class FetchOrchestrator:
    """Runs one fetch task per active provider and always returns one Quote each.

    Per provider: wait out the rate limit (unless bypassed), then up to
    ``max_attempts`` ``get_info`` + ``create_order`` attempts, then fall back to
    the last good cached quote, else an ``unavailable`` quote. The provider
    timeout clock starts once the rate limit wait is over; the batch deadline
    covers the whole round. Tasks that miss either deadline are reported as
    ``TIMEOUT`` and stop retrying.
    """

    def __init__(
        self,
        client: LspsClient,
        rate_limiter: RateLimiter,
        providers: Sequence[Provider] | ProviderSource,
        *,
        cache_lookup: CacheLookup | None = None,
        provider_timeout: float = 10.0,
        batch_timeout: float = 25.0,
        max_attempts: int = 2,
        retry_delay: float = 1.0,
        max_workers: int = DEFAULT_MAX_WORKERS,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._client = client
        self.rate_limiter = rate_limiter
        self._providers = providers
        self.cache_lookup = cache_lookup
        self._provider_timeout = provider_timeout
        self._batch_timeout = batch_timeout
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._clock = clock
        self._now = now
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="lsp-fetch")

    def providers(self) -> list[Provider]:
        """Active providers in configuration order."""

        source = self._providers
        return list(source() if callable(source) else source)

    def get_provider(self, provider_id: str) -> Provider:
        wanted = (provider_id or "").strip().lower()
        for provider in self.providers():
            if provider.id == wanted:
                return provider
        raise ProviderError(f"Unknown or inactive provider '{provider_id}'")

    def fetch_all(self, channel_size_sat: int, bypass_rate_limit: bool = False) -> list[Quote]:
        return self._run_round(channel_size_sat, self.providers(), bypass_rate_limit)

    def fetch_provider(
        self,
        provider_id: str,
        channel_size_sat: int,
        bypass_rate_limit: bool = True,
    ) -> Quote:
        provider = self.get_provider(provider_id)
        return self._run_round(channel_size_sat, [provider], bypass_rate_limit)[0]

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._client.close()

    def _run_round(
        self,
        channel_size_sat: int,
        providers: Sequence[Provider],
        bypass_rate_limit: bool,
    ) -> list[Quote]:
        if not providers:
            return []

        deadline = self._clock() + self._batch_timeout
        states: dict[Future[Quote], _TaskState] = {}
        for provider in providers:
            state = _TaskState(provider=provider)
            # Each task gets its own copy so worker logs keep the caller's request id.
            context = contextvars.copy_context()
            future = self._executor.submit(
                context.run, self._fetch_one, state, channel_size_sat, bypass_rate_limit
            )
            states[future] = state

        results: dict[str, Quote] = {}
        pending = set(states)
        while pending:
            done, pending = wait(
                pending,
                timeout=self._next_wakeup(pending, states, deadline),
                return_when=FIRST_COMPLETED,
            )
            for future in done:
                state = states[future]
                results[state.provider.id] = self._collect(future, state, channel_size_sat)

            now = self._clock()
            for future in list(pending):
                state = states[future]
                if not self._expired(state, now, deadline):
                    continue
                pending.discard(future)
                state.abandoned.set()
                results[state.provider.id] = self._timed_out(state, channel_size_sat, now >= deadline)

        return [results[provider.id] for provider in providers]

    def _next_wakeup(
        self,
        pending: set[Future[Quote]],
        states: dict[Future[Quote], _TaskState],
        deadline: float,
    ) -> float:
        now = self._clock()
        wakeup = min(deadline - now, POLL_INTERVAL_SECONDS)
        for future in pending:
            started_at = states[future].started_at
            if started_at is not None:
                wakeup = min(wakeup, started_at + self._provider_timeout - now)
        return max(wakeup, 0.0)

    def _expired(self, state: _TaskState, now: float, deadline: float) -> bool:
        if now >= deadline:
            return True
        started_at = state.started_at
        return started_at is not None and now - started_at >= self._provider_timeout

    def _collect(self, future: Future[Quote], state: _TaskState, channel_size_sat: int) -> Quote:
        try:
            return future.result()
        except Exception as exc:
            logger.exception("Fetch task for %s crashed", state.provider.id)
            return self._fallback(state.provider, channel_size_sat, classify_error(exc))

    def _timed_out(self, state: _TaskState, channel_size_sat: int, batch_expired: bool) -> Quote:
        scope = "batch deadline" if batch_expired else "provider timeout"
        error = LspError(
            LspErrorKind.TIMEOUT,
            f"Provider did not answer before the {scope}",
        )
        logger.warning(
            "Provider %s timed out (%s)",
            state.provider.id,
            scope,
            extra=provider_log_extra(
                provider=state.provider.id,
                channel_size_sat=channel_size_sat,
                event="provider.timeout",
                status="timeout",
                duration_ms=None,
                stale=False,
                error_kind=error.kind.value,
                error=error.message,
            ),
        )
        return self._fallback(state.provider, channel_size_sat, error)

    def _fetch_one(self, state: _TaskState, channel_size_sat: int, bypass_rate_limit: bool) -> Quote:
        provider = state.provider
        if not bypass_rate_limit:
            self.rate_limiter.acquire(provider.id, state.abandoned)
        last_error = LspError(LspErrorKind.TIMEOUT, "Provider fetch abandoned before it started")
        if state.abandoned.is_set():
            return self._fallback(provider, channel_size_sat, last_error)
        state.started_at = self._clock()

        for attempt in range(1, self._max_attempts + 1):
            if state.abandoned.is_set():
                break
            start = perf_counter()
            try:
                capabilities = self._client.get_info(provider)
                order = self._client.create_order(provider, channel_size_sat, capabilities)
            except LspError as exc:
                last_error = exc
            except Exception as exc:
                last_error = classify_error(exc)
            else:
                logger.info(
                    "Provider fetch succeeded",
                    extra=provider_log_extra(
                        provider=provider.id,
                        channel_size_sat=channel_size_sat,
                        event="provider.fetch",
                        status="success",
                        duration_ms=(perf_counter() - start) * 1000,
                        stale=False,
                        attempt=attempt,
                    ),
                )
                return Quote.live(
                    provider_id=provider.id,
                    provider_name=provider.name,
                    channel_size_sat=channel_size_sat,
                    total_fee_msat=order.total_fee_msat,
                    timestamp=self._now(),
                    fees=order.fees,
                )

            logger.warning(
                "Provider fetch failed: %s",
                last_error.message,
                extra=provider_log_extra(
                    provider=provider.id,
                    channel_size_sat=channel_size_sat,
                    event="provider.fetch",
                    status="error",
                    duration_ms=(perf_counter() - start) * 1000,
                    stale=False,
                    attempt=attempt,
                    error_kind=last_error.kind.value,
                    error=last_error.message,
                ),
            )
            if not last_error.retryable or attempt >= self._max_attempts:
                break
            logger.info(
                "Retrying provider %s",
                provider.id,
                extra=provider_log_extra(
                    provider=provider.id,
                    channel_size_sat=channel_size_sat,
                    event="provider.retry",
                    status="retry",
                    duration_ms=None,
                    stale=False,
                    attempt=attempt + 1,
                    error_kind=last_error.kind.value,
                ),
            )
            # Returns early once the round gives up on this provider.
            if state.abandoned.wait(self._retry_delay):
                break

        return self._fallback(provider, channel_size_sat, last_error)

    def _fallback(self, provider: Provider, channel_size_sat: int, error: LspError) -> Quote:
        now = self._now()
        cached = self._lookup_cached(provider, channel_size_sat)
        outcome = FetchOutcome.CACHE_HIT if cached is not None else FetchOutcome.CACHE_MISS
        logger.info(
            "Falling back for %s: %s",
            provider.id,
            outcome.value,
            extra=provider_log_extra(
                provider=provider.id,
                channel_size_sat=channel_size_sat,
                event="provider.fallback",
                status=outcome.value,
                duration_ms=None,
                stale=cached is not None,
                error_kind=error.kind.value,
                error=error.message,
            ),
        )
        if cached is not None:
            return cached.as_cached(now)
        return Quote.unavailable(
            provider_id=provider.id,
            provider_name=provider.name,
            channel_size_sat=channel_size_sat,
            timestamp=now,
            error_kind=error.kind,
            error=error.message,
            raw_error=error.raw_body,
        )

    def _lookup_cached(self, provider: Provider, channel_size_sat: int) -> Quote | None:
        if self.cache_lookup is None:
            return None
        for quote in self.cache_lookup(channel_size_sat):
            if quote.provider_id == provider.id and quote.is_valid_fallback:
                return quote
        return None


def merge_quotes(
    existing: Sequence[Quote],
    fresh: Sequence[Quote],
    now: datetime | None = None,
) -> list[Quote]:
    """Merge a round's results into the previous snapshot without losing good data.

    A live fresh quote always wins. Otherwise a previous quote that is a valid
    fallback is kept, re-tagged as cached. Providers absent from ``fresh`` keep
    their previous entry untouched. Existing positions are preserved and new
    providers are appended.
    """

    moment = now or utc_now()
    fresh_by_id = {quote.provider_id: quote for quote in fresh}
    merged: list[Quote] = []
    seen: set[str] = set()

    for previous in existing:
        if previous.provider_id in seen:
            continue
        seen.add(previous.provider_id)
        candidate = fresh_by_id.get(previous.provider_id)
        if candidate is None:
            merged.append(previous)
        elif candidate.source is Provenance.LIVE or candidate.is_valid_fallback:
            merged.append(candidate)
        elif previous.is_valid_fallback:
            merged.append(previous.as_cached(moment))
        else:
            merged.append(candidate)

    for quote in fresh:
        if quote.provider_id not in seen:
            seen.add(quote.provider_id)
            merged.append(quote)
    return merged
