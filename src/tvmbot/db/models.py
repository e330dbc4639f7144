"""SQLAlchemy ORM models for the TvM bot database.

Two tables, both keyed by Discord guild id: ``guild_config`` holds the game
settings and the current cycle, ``log_settings`` the message audit log
configuration.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Integer
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from tvmbot.config import DEFAULT_TOTAL_PLAYERS


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class GuildConfigRow(Base):
    __tablename__ = "guild_config"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)

    host_role_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    player_role_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    spec_role_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    repl_role_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    dead_role_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    na_channel_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    signups_channel_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    can_change_na: Mapped[bool] = mapped_column(Boolean, default=True)
    settings_locked: Mapped[bool] = mapped_column(Boolean, default=False)
    signups_on: Mapped[bool] = mapped_column(Boolean, default=True)
    total_players: Mapped[int] = mapped_column(Integer, default=DEFAULT_TOTAL_PLAYERS)
    total_signups: Mapped[int] = mapped_column(Integer, default=0)

    # Serialized Cycle; null until the first cycle is created.
    cycle: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    # User ids that submitted a night action this night.
    na_submitted: Mapped[list | None] = mapped_column(JSON, nullable=True)
    # Saved roster of player ids, null when none is saved.
    players: Mapped[list | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


class LogSettingsRow(Base):
    __tablename__ = "log_settings"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    log_channel_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    whitelist_channel_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)
    blacklist_channel_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)
