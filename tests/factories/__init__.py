"""Helper factories and a scripted protocol client for tests."""

from __future__ import annotations

import threading
from collections import defaultdict, deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from lsp_pricing.providers import (
    Capabilities,
    FeeBreakdown,
    LspError,
    LspErrorKind,
    OrderQuote,
    Provider,
)
from lsp_pricing.providers.lsps1_client import check_channel_size

# A scripted outcome: a fee in msat, an exception to raise, or an Event to block on.
Outcome = int | Exception | threading.Event


def make_get_info_payload(
    min_channel_balance_sat: str | int = "100000",
    max_channel_balance_sat: str | int = "16777215",
    **extra: Any,
) -> dict[str, Any]:
    """Return an LSPS1 ``get_info`` body with numeric-as-string bounds."""

    payload: dict[str, Any] = {
        "uris": ["03abc@203.0.113.7:9735"],
        "min_channel_balance_sat": str(min_channel_balance_sat),
        "max_channel_balance_sat": str(max_channel_balance_sat),
        "min_required_channel_confirmations": 0,
        "min_funding_confirms_within_blocks": 6,
        "max_channel_expiry_blocks": 20160,
    }
    payload.update(extra)
    return payload


def make_capabilities(
    min_size_sat: int | None = 100_000,
    max_size_sat: int | None = 16_777_215,
) -> Capabilities:
    return Capabilities(
        uris=["03abc@203.0.113.7:9735"],
        min_channel_balance_sat=min_size_sat,
        max_channel_balance_sat=max_size_sat,
    )


@dataclass(slots=True)
class ClientCall:
    """Record of a protocol client interaction captured for assertions."""

    method: str
    provider_id: str
    channel_size_sat: int | None = None


class ScriptedLspsClient:
    """Protocol client that replays scripted outcomes per provider.

    Each ``create_order`` pops the provider's next outcome; the last outcome
    repeats once the queue is down to one item. Blocking outcomes wait on the
    given Event, which tests release during teardown.
    """

    def __init__(
        self,
        outcomes: Mapping[str, Iterable[Outcome] | Outcome] | None = None,
        capabilities: Mapping[str, Capabilities] | None = None,
    ) -> None:
        self._outcomes: dict[str, deque[Outcome]] = defaultdict(deque)
        for provider_id, script in (outcomes or {}).items():
            self.script(provider_id, script)
        self._capabilities = dict(capabilities or {})
        self.calls: list[ClientCall] = []
        self._lock = threading.Lock()
        self.closed = False

    def script(self, provider_id: str, outcomes: Iterable[Outcome] | Outcome) -> None:
        if isinstance(outcomes, (int, Exception, threading.Event)):
            outcomes = [outcomes]
        self._outcomes[provider_id] = deque(outcomes)

    def calls_for(self, provider_id: str, method: str = "create_order") -> list[ClientCall]:
        with self._lock:
            return [
                call
                for call in self.calls
                if call.provider_id == provider_id and call.method == method
            ]

    def get_info(self, provider: Provider) -> Capabilities:
        with self._lock:
            self.calls.append(ClientCall("get_info", provider.id))
        return self._capabilities.get(provider.id, make_capabilities())

    def create_order(
        self, provider: Provider, channel_size_sat: int, capabilities: Capabilities
    ) -> OrderQuote:
        check_channel_size(channel_size_sat, capabilities)
        with self._lock:
            self.calls.append(ClientCall("create_order", provider.id, channel_size_sat))
            queue = self._outcomes.get(provider.id)
            if not queue:
                raise LspError(LspErrorKind.UNKNOWN, f"nothing scripted for {provider.id}")
            outcome = queue.popleft() if len(queue) > 1 else queue[0]

        if isinstance(outcome, threading.Event):
            outcome.wait(timeout=10)
            raise TimeoutError("blocked fetch released")
        if isinstance(outcome, Exception):
            raise outcome
        return OrderQuote(total_fee_msat=outcome, fees=FeeBreakdown(channel_fee_percent=0.5))

    def close(self) -> None:
        self.closed = True
