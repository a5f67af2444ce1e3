"""Marshmallow schemas for price endpoints."""

from __future__ import annotations

from marshmallow import Schema, fields
from marshmallow.validate import OneOf, Range

from lsp_pricing.providers import LspErrorKind, Provenance


class PriceQuerySchema(Schema):
    """Query parameters shared by price reads."""

    channel_size_sat = fields.Integer(load_default=None)


class LivePriceQuerySchema(PriceQuerySchema):
    """Smart read options: ``fresh`` refreshes synchronously, ``force`` skips rate limits."""

    fresh = fields.Boolean(load_default=False)
    force = fields.Boolean(load_default=False)


class RefreshQuerySchema(PriceQuerySchema):
    bypass_rate_limit = fields.Boolean(load_default=False)


class HistoryQuerySchema(Schema):
    limit = fields.Integer(load_default=None, validate=Range(min=1, max=500))


class QuoteSchema(Schema):
    """Serialized provider quote."""

    provider_id = fields.String(required=True)
    provider_name = fields.String(required=True)
    channel_size_sat = fields.Integer(required=True)
    total_fee_msat = fields.Integer(required=True)
    total_fee_sat = fields.Integer(required=True)
    channel_fee_percent = fields.Float(required=True)
    channel_fee_base_msat = fields.Integer(required=True)
    lease_fee_base_msat = fields.Integer(required=True)
    lease_fee_basis = fields.Integer(required=True)
    timestamp = fields.String(required=True)
    source = fields.String(required=True, validate=OneOf([item.value for item in Provenance]))
    error_kind = fields.String(
        allow_none=True, validate=OneOf([item.value for item in LspErrorKind])
    )
    error = fields.String(allow_none=True)
    stale_seconds = fields.Integer(allow_none=True)
    raw_error = fields.String(allow_none=True)


class PricesResponseSchema(Schema):
    """Envelope returned by every price read or refresh."""

    channel_size_sat = fields.Integer(required=True)
    data_source = fields.String(
        required=True, validate=OneOf(["live", "cached", "unavailable", "mixed"])
    )
    provider_count = fields.Integer(required=True)
    live_count = fields.Integer(required=True)
    last_update = fields.DateTime(allow_none=True)
    quotes = fields.List(fields.Nested(QuoteSchema), required=True)


class HistoryEntrySchema(Schema):
    timestamp = fields.String(required=True)
    channel_size_sat = fields.Integer(required=True)
    quotes = fields.List(fields.Nested(QuoteSchema), required=True)


class HistoryResponseSchema(Schema):
    items = fields.List(fields.Nested(HistoryEntrySchema), required=True)
    total = fields.Integer(required=True)
    limit = fields.Integer(allow_none=True)


class ChannelSizesResponseSchema(Schema):
    default = fields.Integer(required=True)
    minimum = fields.Integer(required=True)
    maximum = fields.Integer(required=True)
    scheduled = fields.List(fields.Integer(), required=True)
    cached = fields.List(fields.Integer(), required=True)


class RateLimitSchema(Schema):
    provider_id = fields.String(required=True)
    phase = fields.String(required=True)
    cooldown_seconds = fields.Float(required=True)
    remaining_seconds = fields.Float(required=True)


class RateLimitsResponseSchema(Schema):
    items = fields.List(fields.Nested(RateLimitSchema), required=True)
