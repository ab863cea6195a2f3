"""SQLAlchemy models for persistent storage.

Every per-chat configuration lives in one table, namespaced by a
collection name (``buybot``, ``text_logs``, ...) and the owning bot.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, Index, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class SubscriberModel(Base):
    """One destination's configuration for one bot and one collection."""

    __tablename__ = "subscribers"

    collection: Mapped[str] = mapped_column(String(64), primary_key=True, nullable=False)
    bot_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, nullable=False)
    destination: Mapped[int] = mapped_column(BigInteger, primary_key=True, nullable=False)

    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (Index("idx_subscribers_collection_bot", "collection", "bot_id"),)
