"""CORS handling so browser dashboards can read prices directly."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from flask import Response, make_response, request


@dataclass(frozen=True)
class CorsPolicy:
    origins: tuple[str, ...]
    headers: tuple[str, ...]
    methods: tuple[str, ...]
    max_age: int

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> CorsPolicy:
        return cls(
            origins=_split(config.get("CORS_ALLOWED_ORIGINS", "*")),
            headers=_split(config.get("CORS_ALLOWED_HEADERS", "Content-Type,Authorization")),
            methods=_split(config.get("CORS_ALLOWED_METHODS", "GET,POST,OPTIONS")),
            max_age=int(config.get("CORS_MAX_AGE", 600)),
        )

    @property
    def wildcard(self) -> bool:
        return "*" in self.origins

    def allows(self, origin: str | None) -> bool:
        return bool(origin) and (self.wildcard or origin in self.origins)

    def decorate(self, response: Response, origin: str) -> Response:
        response.headers["Access-Control-Allow-Origin"] = "*" if self.wildcard else origin
        vary = [item.strip() for item in (response.headers.get("Vary") or "").split(",") if item.strip()]
        if "Origin" not in vary:
            vary.append("Origin")
        response.headers["Vary"] = ", ".join(vary)
        return response


def init_cors(app) -> CorsPolicy | None:
    """Answer preflight requests and tag responses for allowed origins."""

    if app.config.get("_cors_configured"):
        return app.extensions.get("cors_policy")

    policy = CorsPolicy.from_config(app.config)
    if not policy.origins:
        return None

    @app.before_request
    def handle_preflight():
        origin = request.headers.get("Origin")
        if request.method != "OPTIONS" or origin is None:
            return None
        if not policy.allows(origin):
            return make_response("", 403)

        response = policy.decorate(make_response("", 204), origin)
        requested = request.headers.get("Access-Control-Request-Method")
        methods = policy.methods
        if requested and requested not in methods:
            methods = methods + (requested,)
        response.headers["Access-Control-Allow-Methods"] = ", ".join(methods)
        response.headers["Access-Control-Allow-Headers"] = request.headers.get(
            "Access-Control-Request-Headers", ", ".join(policy.headers)
        )
        response.headers["Access-Control-Max-Age"] = str(policy.max_age)
        return response

    @app.after_request
    def apply_cors(response: Response):
        origin = request.headers.get("Origin")
        if policy.allows(origin):
            policy.decorate(response, origin)
        return response

    app.config["_cors_configured"] = True
    app.extensions["cors_policy"] = policy
    return policy


def _split(raw: str | Iterable[str] | None) -> tuple[str, ...]:
    if raw is None:
        return ()
    items = raw.split(",") if isinstance(raw, str) else list(raw)
    return tuple(item.strip() for item in items if item and item.strip())
