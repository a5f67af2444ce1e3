"""Fee extraction strategies for heterogeneous ``create_order`` responses.

Providers report the total fee in different places. Each strategy knows one
location; a provider is configured with an ordered tuple of strategies and
the first one yielding a positive amount wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Protocol, Sequence

MSAT_PER_SAT = 1000


class FeeStrategy(Protocol):
    name: str

    def extract(self, payload: Mapping[str, Any]) -> int | None:
        """Return the fee in millisatoshi, or None when the field is absent."""


@dataclass(frozen=True)
class DirectFee:
    """Top-level fee field already denominated in millisatoshi."""

    field: str

    @property
    def name(self) -> str:
        return f"direct:{self.field}"

    def extract(self, payload: Mapping[str, Any]) -> int | None:
        return _to_msat(payload.get(self.field), 1)


@dataclass(frozen=True)
class PaymentFee:
    """Fee nested inside the order's payment object, in whole satoshis."""

    path: tuple[str, ...]

    @property
    def name(self) -> str:
        return "payment:" + ".".join(self.path)

    def extract(self, payload: Mapping[str, Any]) -> int | None:
        node: Any = payload
        for key in self.path:
            if not isinstance(node, Mapping):
                return None
            node = node.get(key)
        return _to_msat(node, MSAT_PER_SAT)


DEFAULT_FEE_STRATEGIES: tuple[FeeStrategy, ...] = (
    DirectFee("total_fee_msat"),
    DirectFee("fee_total_msat"),
    PaymentFee(("payment", "bolt11", "fee_total_sat")),
    PaymentFee(("payment", "lightning_invoice", "fee_total_sat")),
    PaymentFee(("payment", "fee_total_sat")),
    PaymentFee(("payment", "onchain", "fee_total_sat")),
    PaymentFee(("fee_total_sat",)),
)


def extract_fee(
    payload: Mapping[str, Any],
    strategies: Sequence[FeeStrategy] = DEFAULT_FEE_STRATEGIES,
) -> tuple[int, str] | None:
    """Try each strategy in order and return ``(fee_msat, strategy_name)``."""

    for strategy in strategies:
        value = strategy.extract(payload)
        if value is not None and value > 0:
            return value, strategy.name
    return None


def _to_msat(value: Any, multiplier: int) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return int((amount * multiplier).to_integral_value())
