"""Prices blueprint exposing the price service operations."""

from __future__ import annotations

from flask_smorest import Blueprint

blp = Blueprint("Prices", __name__, description="LSP channel price quotes")

from . import routes  # noqa: E402,F401
