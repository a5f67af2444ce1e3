"""Flask application for aggregating LSPS1 channel-purchase quotes."""

from __future__ import annotations

from flask import Flask
from flask_smorest import Api

from config import get_config
from .cli import register_cli
from .cors import init_cors
from .database import init_app as init_db
from .errors import register_error_handlers
from .logging import init_request_logging, setup_logging

OPENAPI_DEFAULTS = {
    "API_TITLE": "LSP Price Aggregator API",
    "API_VERSION": "v1",
    "OPENAPI_VERSION": "3.0.3",
    "OPENAPI_URL_PREFIX": "/docs",
    "OPENAPI_SWAGGER_UI_PATH": "/",
    "OPENAPI_SWAGGER_UI_URL": "https://cdn.jsdelivr.net/npm/swagger-ui-dist/",
}


def create_app(config_name: str | None = None) -> Flask:
    """Build the app: logging first, then storage, price service, scheduler and routes."""

    app = Flask(__name__)
    app.config.from_object(get_config(config_name))
    for key, value in OPENAPI_DEFAULTS.items():
        app.config.setdefault(key, value)

    setup_logging(app)
    init_request_logging(app)
    init_cors(app)

    _init_pricing(app)
    _register_api(app)
    register_error_handlers(app)
    register_cli(app)
    return app


def _init_pricing(app: Flask) -> None:
    init_db(app)
    from . import models  # noqa: F401  # table metadata for the cache store
    from .services import ensure_refresh_state, init_price_service, init_scheduler

    init_price_service(app)
    ensure_refresh_state(app)
    init_scheduler(app)


def _register_api(app: Flask) -> Api:
    from .health import blp as health_blp
    from .prices import blp as prices_blp

    api = Api(app)
    app.extensions["smorest_api"] = api
    api.register_blueprint(health_blp, url_prefix="/health")
    api.register_blueprint(prices_blp, url_prefix="/prices")
    return api
