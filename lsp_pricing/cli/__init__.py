"""CLI entry points."""

from __future__ import annotations

from flask import Flask

from .fetch_prices import fetch_prices


def register_cli(app: Flask) -> None:
    """Register CLI commands on the given Flask app."""

    app.cli.add_command(fetch_prices)
