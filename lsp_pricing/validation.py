"""Validation helpers for request payloads."""

from __future__ import annotations

from typing import Any

from lsp_pricing.errors import ValidationError


def validate_channel_size(
    value: Any,
    *,
    minimum: int,
    maximum: int,
    field: str = "channel_size_sat",
) -> int:
    """Ensure the requested channel size is a whole number of satoshis within bounds."""

    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"'{field}' is required.", payload={"field": field})

    if isinstance(value, bool):
        raise ValidationError(
            f"'{field}' must be an integer number of satoshis.",
            payload={"field": field},
        )

    if isinstance(value, int):
        size = value
    else:
        text = str(value).strip()
        if not text.isdigit():
            raise ValidationError(
                f"'{field}' must be an integer number of satoshis.",
                payload={"field": field, "value": text},
            )
        size = int(text)

    if size < minimum or size > maximum:
        raise ValidationError(
            f"'{field}' must be between {minimum} and {maximum} sat.",
            payload={"field": field, "value": size},
        )
    return size
