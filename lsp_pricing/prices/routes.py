"""Route handlers for price reads and refreshes."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from flask import current_app
from flask.views import MethodView

from config import parse_channel_sizes
from lsp_pricing.providers import Provenance, Quote
from lsp_pricing.providers.fees import MSAT_PER_SAT
from lsp_pricing.schemas import ErrorMessageSchema
from lsp_pricing.services.price_service import PriceService, get_price_service

from . import blp
from .schemas import (
    ChannelSizesResponseSchema,
    HistoryQuerySchema,
    HistoryResponseSchema,
    LivePriceQuerySchema,
    PriceQuerySchema,
    PricesResponseSchema,
    RateLimitsResponseSchema,
    RefreshQuerySchema,
)


def _service() -> PriceService:
    return get_price_service(current_app)


def _channel_size(query_args: dict[str, Any]) -> Any:
    size = query_args.get("channel_size_sat")
    if size is None:
        return current_app.config.get("DEFAULT_CHANNEL_SIZE_SAT", 1_000_000)
    return size


def _serialize_quote(quote: Quote) -> dict[str, Any]:
    payload = quote.to_dict()
    payload["total_fee_sat"] = quote.total_fee_msat // MSAT_PER_SAT
    return payload


def data_source(quotes: Sequence[Quote]) -> str:
    """Summarize provenance across quotes: a single tag, or ``mixed``."""

    sources = {quote.source for quote in quotes}
    if not sources:
        return Provenance.UNAVAILABLE.value
    if len(sources) == 1:
        return sources.pop().value
    return "mixed"


def _prices_payload(
    service: PriceService, channel_size_sat: Any, quotes: Sequence[Quote]
) -> dict[str, Any]:
    size = int(channel_size_sat)
    metadata = service.store.metadata(size)
    return {
        "channel_size_sat": size,
        "data_source": data_source(quotes),
        "provider_count": len(quotes),
        "live_count": sum(1 for quote in quotes if quote.source is Provenance.LIVE),
        "last_update": metadata["last_update"] if metadata else None,
        "quotes": [_serialize_quote(quote) for quote in quotes],
    }


@blp.route("")
class CachedPrices(MethodView):
    @blp.arguments(PriceQuerySchema, location="query")
    @blp.response(200, PricesResponseSchema())
    @blp.alt_response(422, schema=ErrorMessageSchema, description="Invalid channel size")
    def get(self, query_args):
        """Quotes from the cache only; never contacts providers."""

        service = _service()
        size = _channel_size(query_args)
        return _prices_payload(service, size, service.get_cached_only(size))


@blp.route("/live")
class LivePrices(MethodView):
    @blp.arguments(LivePriceQuerySchema, location="query")
    @blp.response(200, PricesResponseSchema())
    @blp.alt_response(422, schema=ErrorMessageSchema, description="Invalid channel size")
    def get(self, query_args):
        """Cached quotes plus a background refresh, or a synchronous one with ``fresh``."""

        service = _service()
        size = _channel_size(query_args)
        if query_args["fresh"]:
            quotes = service.force_refresh(size, bypass_rate_limit=query_args["force"])
        else:
            quotes = service.get_smart(size)
        return _prices_payload(service, size, quotes)


@blp.route("/refresh")
class RefreshPrices(MethodView):
    @blp.arguments(RefreshQuerySchema, location="query")
    @blp.response(200, PricesResponseSchema())
    @blp.alt_response(422, schema=ErrorMessageSchema, description="Invalid channel size")
    def post(self, query_args):
        service = _service()
        size = _channel_size(query_args)
        quotes = service.force_refresh(size, bypass_rate_limit=query_args["bypass_rate_limit"])
        return _prices_payload(service, size, quotes)


@blp.route("/refresh/<string:provider_id>")
class RefreshProviderPrice(MethodView):
    @blp.arguments(PriceQuerySchema, location="query")
    @blp.response(200, PricesResponseSchema())
    @blp.alt_response(422, schema=ErrorMessageSchema, description="Invalid channel size")
    @blp.alt_response(404, schema=ErrorMessageSchema, description="Unknown or inactive provider")
    def post(self, query_args, provider_id: str):
        service = _service()
        size = _channel_size(query_args)
        quotes = service.force_refresh_single_provider(provider_id, size)
        return _prices_payload(service, size, quotes)


@blp.route("/history")
class PriceHistoryListing(MethodView):
    @blp.arguments(HistoryQuerySchema, location="query")
    @blp.response(200, HistoryResponseSchema())
    def get(self, query_args):
        entries = _service().history(query_args["limit"])
        return {
            "items": [
                {
                    "timestamp": entry.timestamp.isoformat(),
                    "channel_size_sat": entry.channel_size_sat,
                    "quotes": [_serialize_quote(quote) for quote in entry.quotes],
                }
                for entry in entries
            ],
            "total": len(entries),
            "limit": query_args["limit"],
        }


@blp.route("/channel-sizes")
class ChannelSizes(MethodView):
    @blp.response(200, ChannelSizesResponseSchema())
    def get(self):
        config = current_app.config
        return {
            "default": config.get("DEFAULT_CHANNEL_SIZE_SAT", 1_000_000),
            "minimum": config.get("MIN_CHANNEL_SIZE_SAT", 100_000),
            "maximum": config.get("MAX_CHANNEL_SIZE_SAT", 10_000_000),
            "scheduled": parse_channel_sizes(config.get("PRICE_CHANNEL_SIZES", "")),
            "cached": _service().available_channel_sizes(),
        }


@blp.route("/rate-limits")
class RateLimits(MethodView):
    @blp.response(200, RateLimitsResponseSchema())
    def get(self):
        limits = _service().orchestrator.rate_limiter.status()
        return {
            "items": [
                {"provider_id": provider_id, **details}
                for provider_id, details in limits.items()
            ]
        }
