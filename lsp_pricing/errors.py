"""API error types and the JSON error envelope shared by every endpoint."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from flask import Flask, jsonify
from werkzeug.exceptions import UnprocessableEntity

logger = logging.getLogger(__name__)

# webargs nests messages under the request location.
REQUEST_LOCATIONS = frozenset({"json", "query", "querystring", "form", "headers", "view_args"})


class APIError(Exception):
    """Base class for API-level errors."""

    status_code: int = 400

    def __init__(
        self, message: str, *, status_code: int | None = None, payload: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload or {}


class ValidationError(APIError):
    """A request value failed validation, e.g. a channel size out of bounds."""

    status_code = 422


class NotFoundError(APIError):
    """A referenced resource (such as a provider id) does not exist or is inactive."""

    status_code = 404


DEFAULT_STATUS_MESSAGES: dict[int, str] = {
    400: "Request could not be processed.",
    404: "Resource not found.",
    422: "Submitted data is invalid.",
}


def register_error_handlers(app: Flask) -> None:
    """Render APIError and request-parsing failures with the same envelope."""

    @app.errorhandler(APIError)
    def handle_api_error(error: APIError):
        body: dict[str, Any] = {
            "message": error.message or DEFAULT_STATUS_MESSAGES.get(error.status_code, "Request failed.")
        }
        body.update(error.payload)
        field = error.payload.get("field")
        if field and "field_errors" not in body:
            body["field_errors"] = {str(field): [body["message"]]}
        if error.status_code >= 500:
            logger.error("API error %s: %s", error.status_code, body["message"])
        return jsonify(body), error.status_code

    @app.errorhandler(UnprocessableEntity)
    def handle_unprocessable(error: UnprocessableEntity):
        data = getattr(error, "data", None) or {}
        field_errors = flatten_messages(data.get("messages") or {})
        body: dict[str, Any] = {"message": DEFAULT_STATUS_MESSAGES[422]}
        if field_errors:
            body["field_errors"] = field_errors
        return jsonify(body), 422


def flatten_messages(messages: Mapping[str, Any] | list[Any] | str) -> dict[str, list[str]]:
    """Flatten a nested marshmallow message tree into ``{"a.b": [msg, ...]}``."""

    flattened: dict[str, list[str]] = {}

    def visit(node: Any, path: tuple[str, ...]) -> None:
        if isinstance(node, Mapping):
            for key, value in node.items():
                key = str(key)
                visit(value, path if not path and key in REQUEST_LOCATIONS else path + (key,))
        elif isinstance(node, (list, tuple)):
            for item in node:
                visit(item, path)
        elif node is not None:
            flattened.setdefault(".".join(path) or "non_field_errors", []).append(str(node))

    visit(messages, ())
    return flattened
