"""Route handlers for health checks."""

from __future__ import annotations

from flask import current_app
from flask.views import MethodView

from lsp_pricing.schemas import HealthStatusSchema, HealthStoreSchema
from lsp_pricing.services.price_service import get_price_service
from lsp_pricing.services.scheduler import ensure_refresh_state

from . import blp


@blp.route("")
class HealthStatus(MethodView):
    @blp.response(200, HealthStatusSchema())
    def get(self):
        service = get_price_service(current_app)
        return {
            "status": "ok",
            "app": current_app.config.get("APP_NAME", "lsp-price-aggregator"),
            "providers": [provider.id for provider in service.providers()],
        }


@blp.route("/store")
class HealthStore(MethodView):
    @blp.response(200, HealthStoreSchema())
    def get(self):
        store_status = get_price_service(current_app).store.status()
        refresh_state = ensure_refresh_state(current_app)

        if not store_status["configured"]:
            status = "unconfigured"
        elif not store_status["connected"]:
            status = "unavailable"
        elif not store_status["channel_sizes"]:
            status = "empty"
        else:
            status = "ok"

        return {
            "status": status,
            "configured": store_status["configured"],
            "connected": store_status["connected"],
            "channel_sizes": store_status["channel_sizes"],
            "history_count": store_status["history_count"],
            "last_update": store_status["last_update"],
            "last_scheduled_refresh": refresh_state.get("last_run"),
            "error": store_status["error"],
        }
