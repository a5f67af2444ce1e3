"""SQLAlchemy engine and session factory backing the price cache."""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for the cache tables."""


_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker[Session]] = None


def init_app(app: Any) -> Optional[Engine]:
    """Create the process-wide engine from ``SQLALCHEMY_DATABASE_URI``.

    An empty URI leaves persistence unconfigured; the cache store then
    reports "no data" instead of failing. Sessions are short-lived and
    opened per store call, so several fetch threads can write at once.
    """

    global _engine, _session_factory

    if _engine is not None:
        return _engine

    database_uri = str(app.config.get("SQLALCHEMY_DATABASE_URI") or "").strip()
    if not database_uri:
        logger.warning("DATABASE_URL is empty; price cache persistence is disabled.")
        return None

    _engine = create_engine(database_uri)
    _session_factory = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)
    app.extensions["sqlalchemy_engine"] = _engine
    logger.info("Price cache bound to %s", _engine.url.render_as_string(hide_password=True))
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Database engine has not been initialized. Call init_app first.")
    return _engine


def get_session_factory() -> Optional[sessionmaker[Session]]:
    """Return the session factory, or None when persistence is unconfigured."""

    return _session_factory
