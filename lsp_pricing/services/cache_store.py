"""Persistent price cache partitioned by channel size, with bounded history."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from lsp_pricing.models import PriceHistory, PriceSnapshot
from lsp_pricing.providers.schemas import HistoryEntry, Quote
from lsp_pricing.utils.datetime import ensure_utc, utc_now

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


class CacheStore:
    """Read/write helpers over the ``price_snapshots`` and ``price_history`` tables.

    Backend failures never escape: reads return empty results and writes
    return ``False``. A store built without a session factory behaves as
    permanently unreachable.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker[Session]],
        *,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if history_limit < 1:
            raise ValueError("history_limit must be at least 1")
        self._session_factory = session_factory
        self._history_limit = history_limit
        self._clock = clock

    @property
    def is_configured(self) -> bool:
        return self._session_factory is not None

    @property
    def history_limit(self) -> int:
        return self._history_limit

    def write_snapshot(self, channel_size_sat: int, quotes: Sequence[Quote]) -> bool:
        """Replace the current bucket and append to history in one transaction."""

        if self._session_factory is None:
            logger.warning("Cache store not configured; dropping snapshot for %s sat", channel_size_sat)
            return False

        now = ensure_utc(self._clock())
        payload = [quote.to_dict() for quote in quotes]
        try:
            with self._session_factory.begin() as session:
                snapshot = session.get(PriceSnapshot, channel_size_sat)
                if snapshot is None:
                    session.add(
                        PriceSnapshot(
                            channel_size_sat=channel_size_sat,
                            quotes=payload,
                            provider_count=len(payload),
                            updated_at=now,
                        )
                    )
                else:
                    snapshot.quotes = payload
                    snapshot.provider_count = len(payload)
                    snapshot.updated_at = now
                session.add(
                    PriceHistory(recorded_at=now, channel_size_sat=channel_size_sat, quotes=payload)
                )
                session.flush()
                self._trim_history(session)
        except SQLAlchemyError as exc:
            logger.error("Failed to write snapshot for %s sat: %s", channel_size_sat, exc)
            return False

        logger.debug("Stored %s quotes for %s sat", len(payload), channel_size_sat)
        return True

    def read_current(self, channel_size_sat: int) -> list[Quote]:
        if self._session_factory is None:
            return []
        try:
            with self._session_factory() as session:
                snapshot = session.get(PriceSnapshot, channel_size_sat)
                if snapshot is None:
                    return []
                raw_quotes = list(snapshot.quotes or [])
        except SQLAlchemyError as exc:
            logger.error("Failed to read snapshot for %s sat: %s", channel_size_sat, exc)
            return []
        return _decode_quotes(raw_quotes, channel_size_sat)

    def read_history(self, limit: int | None = None) -> list[HistoryEntry]:
        """Return history entries, newest first."""

        if self._session_factory is None:
            return []
        statement = select(PriceHistory).order_by(PriceHistory.id.desc())
        if limit is not None:
            statement = statement.limit(max(limit, 0))
        try:
            with self._session_factory() as session:
                rows = [
                    (row.recorded_at, row.channel_size_sat, list(row.quotes or []))
                    for row in session.scalars(statement)
                ]
        except SQLAlchemyError as exc:
            logger.error("Failed to read price history: %s", exc)
            return []
        return [
            HistoryEntry(
                timestamp=recorded_at,
                channel_size_sat=size,
                quotes=_decode_quotes(raw_quotes, size),
            )
            for recorded_at, size, raw_quotes in rows
        ]

    def available_channel_sizes(self) -> list[int]:
        if self._session_factory is None:
            return []
        statement = select(PriceSnapshot.channel_size_sat).order_by(PriceSnapshot.channel_size_sat)
        try:
            with self._session_factory() as session:
                return [int(size) for size in session.scalars(statement)]
        except SQLAlchemyError as exc:
            logger.error("Failed to list channel sizes: %s", exc)
            return []

    def metadata(self, channel_size_sat: int) -> dict[str, Any] | None:
        """Return bucket metadata (last update, provider count) if present."""

        if self._session_factory is None:
            return None
        try:
            with self._session_factory() as session:
                snapshot = session.get(PriceSnapshot, channel_size_sat)
                if snapshot is None:
                    return None
                return {
                    "channel_size_sat": snapshot.channel_size_sat,
                    "last_update": ensure_utc(snapshot.updated_at),
                    "provider_count": snapshot.provider_count,
                }
        except SQLAlchemyError as exc:
            logger.error("Failed to read metadata for %s sat: %s", channel_size_sat, exc)
            return None

    def status(self) -> dict[str, Any]:
        """Summarize backend reachability for health reporting."""

        status: dict[str, Any] = {
            "configured": self.is_configured,
            "connected": False,
            "channel_sizes": [],
            "history_count": 0,
            "last_update": None,
            "error": None,
        }
        if self._session_factory is None:
            status["error"] = "Cache store not configured"
            return status
        try:
            with self._session_factory() as session:
                sizes = [
                    int(size)
                    for size in session.scalars(
                        select(PriceSnapshot.channel_size_sat).order_by(PriceSnapshot.channel_size_sat)
                    )
                ]
                history_count = session.scalar(select(func.count(PriceHistory.id))) or 0
                last_update = session.scalar(select(func.max(PriceSnapshot.updated_at)))
        except SQLAlchemyError as exc:
            status["error"] = str(exc)
            return status

        status.update(
            connected=True,
            channel_sizes=sizes,
            history_count=int(history_count),
            last_update=ensure_utc(last_update) if last_update is not None else None,
        )
        return status

    def clear(self) -> bool:
        if self._session_factory is None:
            return False
        try:
            with self._session_factory.begin() as session:
                session.execute(delete(PriceHistory))
                session.execute(delete(PriceSnapshot))
        except SQLAlchemyError as exc:
            logger.error("Failed to clear price cache: %s", exc)
            return False
        return True

    def _trim_history(self, session: Session) -> None:
        cutoff = session.scalar(
            select(PriceHistory.id)
            .order_by(PriceHistory.id.desc())
            .offset(self._history_limit - 1)
            .limit(1)
        )
        if cutoff is not None:
            session.execute(delete(PriceHistory).where(PriceHistory.id < cutoff))


def _decode_quotes(raw_quotes: list[dict[str, Any]], channel_size_sat: int) -> list[Quote]:
    quotes: list[Quote] = []
    for raw in raw_quotes:
        try:
            quotes.append(Quote.from_dict(raw))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping unreadable cached quote for %s sat: %s", channel_size_sat, exc)
    return quotes
