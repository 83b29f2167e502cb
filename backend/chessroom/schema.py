"""Таблицы базы данных."""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class DBSession(Base):
    __tablename__ = "sessions"
    id: Mapped[str] = mapped_column(primary_key=True)
    fen: Mapped[str]
    moves_uci: Mapped[list[str]] = mapped_column(JSON, default=list)
    history: Mapped[list[str]] = mapped_column(JSON, default=list)
    players: Mapped[dict[str, str]] = mapped_column(JSON, default=dict)
    identities: Mapped[dict[str, str]] = mapped_column(JSON, default=dict)
    time_control: Mapped[int]
    remaining_ms: Mapped[dict[str, int]] = mapped_column(JSON, default=dict)
    is_private: Mapped[bool] = mapped_column(default=False)
    is_bot: Mapped[bool] = mapped_column(default=False)
    bot_strength: Mapped[int] = mapped_column(default=1)
    status: Mapped[str]
    winner: Mapped[Optional[str]]
    reason: Mapped[Optional[str]]
    analysis: Mapped[Optional[dict]] = mapped_column(JSON, default=None)
    created_at: Mapped[datetime] = mapped_column(default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now)


class DBUser(Base):
    __tablename__ = "users"
    identity_id: Mapped[str] = mapped_column(primary_key=True)
    games: Mapped[int] = mapped_column(default=0)
    wins: Mapped[int] = mapped_column(default=0)
    losses: Mapped[int] = mapped_column(default=0)
    draws: Mapped[int] = mapped_column(default=0)
    rating: Mapped[int] = mapped_column(default=1200)
