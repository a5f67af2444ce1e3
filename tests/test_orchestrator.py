from __future__ import annotations

import logging
import threading
import time
from datetime import UTC, datetime, timedelta

import pytest

from lsp_pricing.logging import request_id_var
from lsp_pricing.providers import LspError, LspErrorKind, Provenance, ProviderError, Quote
from lsp_pricing.services.orchestrator import FetchOrchestrator, merge_quotes
from lsp_pricing.services.rate_limiter import RateLimiter, RateLimitPhase
from tests.factories import ScriptedLspsClient, make_capabilities

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)
SIZE = 1_000_000


@pytest.fixture()
def blocker():
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture()
def providers(make_provider):
    return [make_provider(name) for name in ("alpha", "beta", "gamma", "delta")]


@pytest.fixture()
def build(providers):
    created: list[FetchOrchestrator] = []

    def _build(client, **kwargs) -> FetchOrchestrator:
        kwargs.setdefault("provider_timeout", 2.0)
        kwargs.setdefault("batch_timeout", 5.0)
        kwargs.setdefault("retry_delay", 0)
        kwargs.setdefault("now", lambda: NOW)
        rate_limiter = kwargs.pop("rate_limiter", RateLimiter(0))
        orchestrator = FetchOrchestrator(
            client, rate_limiter, kwargs.pop("providers", providers), **kwargs
        )
        created.append(orchestrator)
        return orchestrator

    yield _build
    for orchestrator in created:
        orchestrator.close()


def test_slow_provider_times_out_without_blocking_others(build, blocker):
    client = ScriptedLspsClient(
        {"alpha": 12_000, "beta": blocker, "gamma": 15_000, "delta": 11_000}
    )
    orchestrator = build(client, provider_timeout=0.3)

    quotes = orchestrator.fetch_all(SIZE)

    assert [quote.provider_id for quote in quotes] == ["alpha", "beta", "gamma", "delta"]
    assert [quote.total_fee_msat for quote in quotes] == [12_000, 0, 15_000, 11_000]
    assert [quote.source for quote in quotes] == [
        Provenance.LIVE,
        Provenance.UNAVAILABLE,
        Provenance.LIVE,
        Provenance.LIVE,
    ]
    assert quotes[1].error_kind is LspErrorKind.TIMEOUT
    assert "provider timeout" in quotes[1].error
    assert all(quote.channel_size_sat == SIZE for quote in quotes)


def test_slow_provider_with_history_comes_back_cached(build, blocker, make_quote):
    previous = make_quote("beta", 14_000, timestamp=NOW - timedelta(hours=1))
    client = ScriptedLspsClient(
        {"alpha": 12_000, "beta": blocker, "gamma": 15_000, "delta": 11_000}
    )
    orchestrator = build(client, provider_timeout=0.3, cache_lookup=lambda size: [previous])

    quotes = orchestrator.fetch_all(SIZE)

    assert [quote.total_fee_msat for quote in quotes] == [12_000, 14_000, 15_000, 11_000]
    assert [quote.source for quote in quotes] == [
        Provenance.LIVE,
        Provenance.CACHED,
        Provenance.LIVE,
        Provenance.LIVE,
    ]
    assert quotes[1].stale_seconds == 3600
    assert quotes[1].error_kind is None


def test_batch_deadline_caps_the_round(build, blocker):
    client = ScriptedLspsClient(
        {"alpha": 12_000, "beta": blocker, "gamma": 15_000, "delta": 11_000}
    )
    orchestrator = build(client, provider_timeout=30, batch_timeout=0.3)

    quotes = orchestrator.fetch_all(SIZE)

    assert quotes[1].error_kind is LspErrorKind.TIMEOUT
    assert "batch deadline" in quotes[1].error
    assert quotes[0].source is Provenance.LIVE


def test_retryable_failure_is_retried(build):
    client = ScriptedLspsClient(
        {"alpha": [LspError(LspErrorKind.BAD_STATUS, "HTTP 502"), 9_000]}
    )
    orchestrator = build(client)

    quote = orchestrator.fetch_provider("alpha", SIZE)

    assert quote.source is Provenance.LIVE
    assert quote.total_fee_msat == 9_000
    assert len(client.calls_for("alpha")) == 2


def test_non_retryable_failure_stops_after_one_attempt(build):
    client = ScriptedLspsClient(
        {"alpha": LspError(LspErrorKind.WHITELIST_REQUIRED, "Node is not whitelisted")}
    )
    orchestrator = build(client, max_attempts=3)

    quote = orchestrator.fetch_provider("alpha", SIZE)

    assert quote.source is Provenance.UNAVAILABLE
    assert quote.error_kind is LspErrorKind.WHITELIST_REQUIRED
    assert len(client.calls_for("alpha")) == 1


def test_retries_are_bounded(build):
    client = ScriptedLspsClient({"alpha": LspError(LspErrorKind.TIMEOUT, "timed out")})
    orchestrator = build(client, max_attempts=3)

    quote = orchestrator.fetch_provider("alpha", SIZE)

    assert quote.error_kind is LspErrorKind.TIMEOUT
    assert len(client.calls_for("alpha")) == 3


def test_channel_size_outside_bounds_skips_create_order(build):
    client = ScriptedLspsClient(
        {"alpha": 12_000},
        capabilities={"alpha": make_capabilities(min_size_sat=2_000_000)},
    )
    orchestrator = build(client)

    quote = orchestrator.fetch_provider("alpha", SIZE)

    assert quote.error_kind is LspErrorKind.CHANNEL_SIZE_TOO_SMALL
    assert client.calls_for("alpha") == []
    assert len(client.calls_for("alpha", "get_info")) == 1


def test_unexpected_exception_is_classified(build):
    client = ScriptedLspsClient({"alpha": RuntimeError("boom")})
    orchestrator = build(client, max_attempts=1)

    quote = orchestrator.fetch_provider("alpha", SIZE)

    assert quote.source is Provenance.UNAVAILABLE
    assert quote.error_kind is LspErrorKind.UNKNOWN


def test_failure_falls_back_to_cached_quote(build, make_quote):
    previous = make_quote("alpha", 8_000, timestamp=NOW - timedelta(minutes=10))
    client = ScriptedLspsClient({"alpha": LspError(LspErrorKind.BAD_STATUS, "HTTP 503")})
    orchestrator = build(client, cache_lookup=lambda size: [previous])

    quote = orchestrator.fetch_provider("alpha", SIZE)

    assert quote.source is Provenance.CACHED
    assert quote.total_fee_msat == 8_000
    assert quote.stale_seconds == 600
    assert quote.error_kind is None


def test_failed_cached_entries_are_not_used_as_fallback(build):
    failed = Quote.unavailable(
        provider_id="alpha",
        provider_name="Alpha",
        channel_size_sat=SIZE,
        timestamp=NOW,
        error_kind=LspErrorKind.TIMEOUT,
        error="timed out",
    )
    client = ScriptedLspsClient(
        {"alpha": LspError(LspErrorKind.PEER_NOT_CONNECTED, "peer not connected", raw_body="{}")}
    )
    orchestrator = build(client, cache_lookup=lambda size: [failed])

    quote = orchestrator.fetch_provider("alpha", SIZE)

    assert quote.error_kind is LspErrorKind.PEER_NOT_CONNECTED
    assert quote.raw_error == "{}"


def test_unknown_provider_is_rejected(build):
    orchestrator = build(ScriptedLspsClient())

    with pytest.raises(ProviderError):
        orchestrator.fetch_provider("voltage", SIZE)


def test_rate_limit_is_honoured_unless_bypassed(build):
    sleeps: list[float] = []
    limiter = RateLimiter(60, clock=lambda: 100.0, sleep=sleeps.append)
    client = ScriptedLspsClient({"alpha": 12_000})
    orchestrator = build(client, rate_limiter=limiter)

    orchestrator.fetch_provider("alpha", SIZE, bypass_rate_limit=False)
    orchestrator.fetch_provider("alpha", SIZE, bypass_rate_limit=True)
    assert sleeps == []

    orchestrator.fetch_provider("alpha", SIZE, bypass_rate_limit=False)
    assert sleeps == [60]


def test_round_abandoned_during_cooldown_does_not_rearm_it(build, make_provider):
    limiter = RateLimiter(0.6)
    client = ScriptedLspsClient({"alpha": [12_000, 13_000]})
    orchestrator = build(
        client, rate_limiter=limiter, providers=[make_provider("alpha")], batch_timeout=0.2
    )

    first_round_at = time.monotonic()
    assert orchestrator.fetch_all(SIZE)[0].source is Provenance.LIVE

    quote = orchestrator.fetch_all(SIZE)[0]
    assert quote.error_kind is LspErrorKind.TIMEOUT
    assert "batch deadline" in quote.error

    time.sleep(max(0.0, first_round_at + 0.75 - time.monotonic()))

    assert limiter.phase("alpha") is RateLimitPhase.AVAILABLE
    assert len(client.calls_for("alpha")) == 1


def test_providers_callable_is_read_each_round(build, make_provider):
    active = [make_provider("alpha")]
    client = ScriptedLspsClient({"alpha": 12_000, "beta": 13_000})
    orchestrator = build(client, providers=lambda: list(active))

    assert [q.provider_id for q in orchestrator.fetch_all(SIZE)] == ["alpha"]

    active.append(make_provider("beta"))
    assert [q.provider_id for q in orchestrator.fetch_all(SIZE)] == ["alpha", "beta"]


def test_close_closes_client(providers):
    client = ScriptedLspsClient()
    orchestrator = FetchOrchestrator(client, RateLimiter(0), providers)

    orchestrator.close()

    assert client.closed


def _unavailable(provider_id: str, kind: LspErrorKind = LspErrorKind.TIMEOUT) -> Quote:
    return Quote.unavailable(
        provider_id=provider_id,
        provider_name=provider_id.title(),
        channel_size_sat=SIZE,
        timestamp=NOW,
        error_kind=kind,
        error="failed",
    )


def test_merge_keeps_previous_good_quote_over_failure(make_quote):
    previous = make_quote("alpha", 8_000, timestamp=NOW - timedelta(minutes=5))

    merged = merge_quotes([previous], [_unavailable("alpha")], NOW)

    assert merged[0].source is Provenance.CACHED
    assert merged[0].total_fee_msat == 8_000
    assert merged[0].stale_seconds == 300


def test_merge_prefers_live_fresh_quote(make_quote):
    previous = make_quote("alpha", 8_000, timestamp=NOW - timedelta(minutes=5))
    fresh = make_quote("alpha", 9_500, timestamp=NOW)

    assert merge_quotes([previous], [fresh], NOW) == [fresh]


def test_merge_replaces_failure_with_newer_failure():
    merged = merge_quotes(
        [_unavailable("alpha", LspErrorKind.TIMEOUT)],
        [_unavailable("alpha", LspErrorKind.BAD_STATUS)],
        NOW,
    )

    assert merged[0].error_kind is LspErrorKind.BAD_STATUS


def test_merge_preserves_order_and_untouched_providers(make_quote):
    existing = [make_quote("beta", 7_000), make_quote("alpha", 8_000)]
    fresh = [make_quote("gamma", 6_000), make_quote("alpha", 9_000, timestamp=NOW)]

    merged = merge_quotes(existing, fresh, NOW)

    assert [q.provider_id for q in merged] == ["beta", "alpha", "gamma"]
    assert merged[0] == existing[0]
    assert merged[1].total_fee_msat == 9_000


def test_merge_never_loses_valid_quotes(make_quote):
    existing = [make_quote(name, 10_000 + i) for i, name in enumerate(("alpha", "beta", "gamma"))]
    fresh = [_unavailable(name) for name in ("alpha", "beta", "gamma")]

    merged = merge_quotes(existing, fresh, NOW)

    assert all(quote.is_valid_fallback for quote in merged)
    assert [q.total_fee_msat for q in merged] == [10_000, 10_001, 10_002]


def test_worker_logs_carry_caller_request_id(build, caplog):
    client = ScriptedLspsClient({"alpha": LspError(LspErrorKind.BAD_STATUS, "HTTP 500")})
    orchestrator = build(client, max_attempts=1)

    token = request_id_var.set("req-42")
    try:
        with caplog.at_level(logging.INFO, logger="lsp_pricing.services.orchestrator"):
            orchestrator.fetch_provider("alpha", SIZE)
    finally:
        request_id_var.reset(token)

    events = {
        record.event: record
        for record in caplog.records
        if getattr(record, "provider", None) == "alpha"
    }
    assert events["provider.fetch"].request_id == "req-42"
    assert events["provider.fetch"].error_kind == "BAD_STATUS"
    assert events["provider.fallback"].status == "cache_miss"
