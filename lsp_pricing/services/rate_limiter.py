"""Per-provider cooldown tracking for outbound LSPS1 requests."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from lsp_pricing.providers.base import Provider

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 60.0


class RateLimitPhase(str, Enum):
    AVAILABLE = "available"
    COOLING = "cooling"


@dataclass
class RateLimitState:
    """Cooldown bookkeeping for one provider; guarded by its own lock."""

    cooldown_seconds: float
    last_request_at: float | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def remaining(self, now: float) -> float:
        if self.last_request_at is None:
            return 0.0
        return max(self.cooldown_seconds - (now - self.last_request_at), 0.0)

    def phase(self, now: float) -> RateLimitPhase:
        return RateLimitPhase.COOLING if self.remaining(now) > 0 else RateLimitPhase.AVAILABLE


class RateLimiter:
    """Waits out each provider's cooldown instead of rejecting requests.

    States are created lazily on the first ``acquire`` for a provider and live
    only in memory, so a restart resets every cooldown.
    """

    def __init__(
        self,
        default_cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        cooldowns: Mapping[str, float] | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        if default_cooldown < 0:
            raise ValueError("default_cooldown must be non-negative")
        self._default_cooldown = float(default_cooldown)
        self._cooldowns = {key.lower(): float(value) for key, value in (cooldowns or {}).items()}
        self._clock = clock
        self._sleep = sleep
        self._states: dict[str, RateLimitState] = {}
        self._states_lock = threading.Lock()

    @classmethod
    def for_providers(
        cls,
        providers: Iterable[Provider],
        default_cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        **kwargs: Any,
    ) -> RateLimiter:
        cooldowns = {
            provider.id: provider.cooldown_seconds
            for provider in providers
            if provider.cooldown_seconds is not None
        }
        return cls(default_cooldown, cooldowns, **kwargs)

    def cooldown_for(self, provider_id: str) -> float:
        return self._cooldowns.get(provider_id.lower(), self._default_cooldown)

    def acquire(self, provider_id: str, abandoned: threading.Event | None = None) -> float:
        """Block until ``provider_id`` may be called again; return seconds waited.

        Setting ``abandoned`` cuts the wait short. An abandoned wait leaves the
        cooldown untouched.
        """

        state = self._state(provider_id)
        with state.lock:
            waited = state.remaining(self._clock())
            if waited > 0:
                logger.info(
                    "Rate limit cooling for %s; waiting %.1fs", provider_id, waited
                )
                self._wait(waited, abandoned)
            if abandoned is not None and abandoned.is_set():
                logger.info("Rate limit wait for %s abandoned", provider_id)
                return waited
            state.last_request_at = self._clock()
        return waited

    def phase(self, provider_id: str) -> RateLimitPhase:
        state = self._states.get(provider_id.lower())
        if state is None:
            return RateLimitPhase.AVAILABLE
        return state.phase(self._clock())

    def remaining(self, provider_id: str) -> float:
        state = self._states.get(provider_id.lower())
        if state is None:
            return 0.0
        return state.remaining(self._clock())

    def status(self) -> dict[str, dict[str, Any]]:
        """Snapshot of every known provider's phase and remaining cooldown."""

        now = self._clock()
        with self._states_lock:
            states = dict(self._states)
        provider_ids = sorted(set(states) | set(self._cooldowns))
        snapshot: dict[str, dict[str, Any]] = {}
        for provider_id in provider_ids:
            state = states.get(provider_id)
            remaining = state.remaining(now) if state else 0.0
            snapshot[provider_id] = {
                "phase": (state.phase(now) if state else RateLimitPhase.AVAILABLE).value,
                "cooldown_seconds": self.cooldown_for(provider_id),
                "remaining_seconds": round(remaining, 3),
            }
        return snapshot

    def reset(self, provider_id: str | None = None) -> None:
        with self._states_lock:
            if provider_id is None:
                self._states.clear()
            else:
                self._states.pop(provider_id.lower(), None)

    def _wait(self, seconds: float, abandoned: threading.Event | None) -> None:
        if self._sleep is not None:
            self._sleep(seconds)
        elif abandoned is not None:
            abandoned.wait(seconds)
        else:
            time.sleep(seconds)

    def _state(self, provider_id: str) -> RateLimitState:
        key = provider_id.lower()
        with self._states_lock:
            state = self._states.get(key)
            if state is None:
                state = RateLimitState(cooldown_seconds=self.cooldown_for(key))
                self._states[key] = state
            return state
