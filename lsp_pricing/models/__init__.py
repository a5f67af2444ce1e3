"""SQLAlchemy ORM models backing the price cache."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, BigInteger, desc
from sqlalchemy.orm import Mapped, mapped_column

from lsp_pricing.database import Base


class PriceSnapshot(Base):
    """Current quotes for one channel size bucket."""

    __tablename__ = "price_snapshots"

    channel_size_sat: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    quotes: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    provider_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<PriceSnapshot size={self.channel_size_sat} providers={self.provider_count}>"


class PriceHistory(Base):
    """Append-only record of a snapshot write."""

    __tablename__ = "price_history"
    __table_args__ = (
        Index("ix_price_history_recorded_at_desc", desc("recorded_at")),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    channel_size_sat: Mapped[int] = mapped_column(BigInteger, nullable=False)
    quotes: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return (
            f"<PriceHistory id={self.id} size={self.channel_size_sat} "
            f"at={self.recorded_at.isoformat()}>"
        )
