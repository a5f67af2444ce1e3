from __future__ import annotations

import threading
import time

import pytest

from lsp_pricing.services.rate_limiter import RateLimiter, RateLimitPhase


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


def make_limiter(clock: FakeClock, **cooldowns: float) -> RateLimiter:
    return RateLimiter(60, cooldowns, clock=clock, sleep=clock.sleep)


def test_first_request_proceeds_immediately(clock):
    limiter = make_limiter(clock)

    assert limiter.phase("olympus") is RateLimitPhase.AVAILABLE
    assert limiter.acquire("olympus") == 0
    assert clock.sleeps == []
    assert limiter.phase("olympus") is RateLimitPhase.COOLING


def test_second_request_waits_for_remaining_cooldown(clock):
    limiter = make_limiter(clock)
    limiter.acquire("olympus")
    clock.now += 20

    waited = limiter.acquire("olympus")

    assert waited == pytest.approx(40)
    assert clock.sleeps == [pytest.approx(40)]


def test_abandoned_wait_keeps_original_cooldown(clock):
    abandoned = threading.Event()

    def give_up(seconds: float) -> None:
        clock.sleep(seconds)
        abandoned.set()

    limiter = RateLimiter(60, clock=clock, sleep=give_up)
    limiter.acquire("olympus")
    clock.now += 20

    assert limiter.acquire("olympus", abandoned) == pytest.approx(40)
    assert limiter.phase("olympus") is RateLimitPhase.AVAILABLE
    assert limiter.acquire("olympus") == 0


def test_abandon_event_cuts_a_real_wait_short():
    limiter = RateLimiter(5.0)
    abandoned = threading.Event()
    limiter.acquire("olympus")
    timer = threading.Timer(0.1, abandoned.set)
    timer.start()

    start = time.monotonic()
    limiter.acquire("olympus", abandoned)

    assert time.monotonic() - start < 2
    assert limiter.remaining("olympus") < 4.95
    timer.cancel()


def test_request_after_cooldown_does_not_wait(clock):
    limiter = make_limiter(clock)
    limiter.acquire("olympus")
    clock.now += 61

    assert limiter.acquire("olympus") == 0
    assert limiter.remaining("olympus") == pytest.approx(60)


def test_providers_are_limited_independently(clock):
    limiter = make_limiter(clock)
    limiter.acquire("olympus")

    assert limiter.acquire("megalith") == 0
    assert clock.sleeps == []


def test_provider_specific_cooldowns(clock, make_provider):
    limiter = RateLimiter.for_providers(
        [make_provider("flashsats", cooldown_seconds=300), make_provider("olympus")],
        60,
        clock=clock,
        sleep=clock.sleep,
    )
    limiter.acquire("flashsats")
    clock.now += 100

    assert limiter.acquire("flashsats") == pytest.approx(200)
    assert limiter.cooldown_for("olympus") == 60


def test_status_reports_phase_and_remaining(clock):
    limiter = make_limiter(clock, lnserver=120)
    limiter.acquire("lnserver")
    clock.now += 30

    status = limiter.status()

    assert status["lnserver"] == {
        "phase": "cooling",
        "cooldown_seconds": 120.0,
        "remaining_seconds": 90.0,
    }


def test_reset_clears_state(clock):
    limiter = make_limiter(clock)
    limiter.acquire("olympus")

    limiter.reset("olympus")

    assert limiter.phase("olympus") is RateLimitPhase.AVAILABLE
    assert limiter.acquire("olympus") == 0


def test_concurrent_callers_for_one_provider_are_serialized():
    limiter = RateLimiter(0.2)
    finished: list[float] = []

    def worker() -> None:
        limiter.acquire("olympus")
        finished.append(time.monotonic())

    threads = [threading.Thread(target=worker) for _ in range(2)]
    start = time.monotonic()
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert len(finished) == 2
    assert max(finished) - start >= 0.15


def test_negative_default_cooldown_is_rejected():
    with pytest.raises(ValueError):
        RateLimiter(-1)


def test_provider_ids_are_case_insensitive(clock):
    limiter = make_limiter(clock)
    limiter.acquire("Olympus")

    assert limiter.phase("OLYMPUS") is RateLimitPhase.COOLING
