"""Repository pattern for database access.

Wraps SQLAlchemy async sessions. One ``guild_config`` and one
``log_settings`` row per guild, created lazily on first write. JSON columns
are always reassigned rather than mutated in place so SQLAlchemy sees the
change.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from tvmbot.config import DEFAULT_TOTAL_PLAYERS
from tvmbot.core.errors import LookupFailure
from tvmbot.db.models import GuildConfigRow, LogSettingsRow
from tvmbot.models.config import ChannelKind, GameConfig, LogSettings, RoleKind
from tvmbot.models.cycle import Cycle

logger = logging.getLogger(__name__)

UNREADABLE_CYCLE = (
    "This server's saved cycle couldn't be read. Ask a host to check the bot's logs."
)


def load_cycle(guild_id: int, blob: dict | None) -> Cycle:
    """Validate a stored cycle blob, reporting a corrupt one as a lookup failure."""
    try:
        return Cycle.from_blob(blob)
    except ValidationError as exc:
        logger.warning(
            "stored_cycle_invalid guild_id=%d errors=%d", guild_id, exc.error_count()
        )
        raise LookupFailure(UNREADABLE_CYCLE) from exc


class Repository:
    """Async repository for all database operations."""

    def __init__(
        self, session: AsyncSession, default_total_players: int = DEFAULT_TOTAL_PLAYERS
    ) -> None:
        self.session = session
        self.default_total_players = default_total_players

    # --- Guild config ---

    async def get_config_row(self, guild_id: int) -> GuildConfigRow | None:
        return await self.session.get(GuildConfigRow, guild_id)

    async def get_or_create_config_row(self, guild_id: int) -> GuildConfigRow:
        row = await self.get_config_row(guild_id)
        if row is None:
            row = GuildConfigRow(guild_id=guild_id, total_players=self.default_total_players)
            self.session.add(row)
            await self.session.flush()
        return row

    async def get_game_config(self, guild_id: int) -> GameConfig | None:
        """Return the guild's config, or None if the guild was never set up."""
        row = await self.get_config_row(guild_id)
        if row is None:
            return None
        return self.to_game_config(row)

    async def load_game_config(self, guild_id: int) -> GameConfig:
        """Like get_game_config, but a missing row reads as all defaults."""
        config = await self.get_game_config(guild_id)
        if config is None:
            return GameConfig(guild_id=guild_id, total_players=self.default_total_players)
        return config

    def to_game_config(self, row: GuildConfigRow) -> GameConfig:
        return GameConfig(
            guild_id=row.guild_id,
            host_role_id=row.host_role_id,
            player_role_id=row.player_role_id,
            spec_role_id=row.spec_role_id,
            repl_role_id=row.repl_role_id,
            dead_role_id=row.dead_role_id,
            na_channel_id=row.na_channel_id,
            signups_channel_id=row.signups_channel_id,
            can_change_na=row.can_change_na if row.can_change_na is not None else True,
            settings_locked=bool(row.settings_locked),
            signups_on=row.signups_on if row.signups_on is not None else True,
            total_players=(
                row.total_players
                if row.total_players is not None
                else self.default_total_players
            ),
            total_signups=row.total_signups or 0,
            cycle=load_cycle(row.guild_id, row.cycle),
            na_submitted=list(row.na_submitted or []),
            players=list(row.players) if row.players is not None else None,
        )

    async def set_role(self, guild_id: int, kind: RoleKind, role_id: int) -> None:
        row = await self.get_or_create_config_row(guild_id)
        setattr(row, kind.column, role_id)
        await self.session.flush()

    async def set_channel(self, guild_id: int, kind: ChannelKind, channel_id: int) -> None:
        row = await self.get_or_create_config_row(guild_id)
        setattr(row, kind.column, channel_id)
        await self.session.flush()

    async def update_config(self, guild_id: int, **values: object) -> GameConfig:
        """Set plain columns (flags and counters) on the guild's config row."""
        row = await self.get_or_create_config_row(guild_id)
        for name, value in values.items():
            if not hasattr(GuildConfigRow, name):
                raise AttributeError(f"guild_config has no column {name!r}")
            setattr(row, name, value)
        await self.session.flush()
        return self.to_game_config(row)

    # --- Cycle ---

    async def get_cycle(self, guild_id: int) -> Cycle:
        row = await self.get_config_row(guild_id)
        return load_cycle(guild_id, row.cycle if row else None)

    async def set_cycle(self, guild_id: int, cycle: Cycle) -> None:
        row = await self.get_or_create_config_row(guild_id)
        row.cycle = cycle.to_blob()
        await self.session.flush()

    # --- Night actions ---

    async def clear_night_actions(self, guild_id: int) -> None:
        row = await self.get_or_create_config_row(guild_id)
        row.na_submitted = []
        await self.session.flush()

    async def record_night_action(self, guild_id: int, user_id: int) -> None:
        row = await self.get_or_create_config_row(guild_id)
        submitted = list(row.na_submitted or [])
        if user_id not in submitted:
            row.na_submitted = [*submitted, user_id]
            await self.session.flush()

    # --- Sign-ups ---

    async def adjust_signups(self, guild_id: int, delta: int) -> int:
        """Add ``delta`` to the sign-up counter, never going below zero."""
        row = await self.get_or_create_config_row(guild_id)
        row.total_signups = max(0, (row.total_signups or 0) + delta)
        await self.session.flush()
        return row.total_signups

    async def set_signups(self, guild_id: int, total: int) -> None:
        row = await self.get_or_create_config_row(guild_id)
        row.total_signups = max(0, total)
        await self.session.flush()

    # --- Roster ---

    async def save_roster(self, guild_id: int, player_ids: list[int]) -> None:
        row = await self.get_or_create_config_row(guild_id)
        row.players = list(player_ids)
        await self.session.flush()

    async def clear_roster(self, guild_id: int) -> None:
        row = await self.get_or_create_config_row(guild_id)
        row.players = None
        await self.session.flush()

    # --- Log settings ---

    async def get_log_settings(self, guild_id: int) -> LogSettings:
        row = await self.session.get(LogSettingsRow, guild_id)
        if row is None:
            return LogSettings(guild_id=guild_id)
        return LogSettings(
            guild_id=guild_id,
            log_channel_id=row.log_channel_id,
            whitelist_channel_ids=list(row.whitelist_channel_ids or []),
            blacklist_channel_ids=list(row.blacklist_channel_ids or []),
        )

    async def _get_or_create_log_row(self, guild_id: int) -> LogSettingsRow:
        row = await self.session.get(LogSettingsRow, guild_id)
        if row is None:
            row = LogSettingsRow(guild_id=guild_id)
            self.session.add(row)
            await self.session.flush()
        return row

    async def set_log_channel(self, guild_id: int, channel_id: int) -> None:
        row = await self._get_or_create_log_row(guild_id)
        row.log_channel_id = channel_id
        await self.session.flush()

    async def update_log_filter(
        self, guild_id: int, which: str, channel_id: int, add: bool
    ) -> list[int]:
        """Add to or remove from the ``whitelist`` or ``blacklist``.

        Returns the updated list.
        """
        if which not in ("whitelist", "blacklist"):
            raise ValueError(f"unknown log filter {which!r}")
        row = await self._get_or_create_log_row(guild_id)
        column = f"{which}_channel_ids"
        ids = [i for i in (getattr(row, column) or []) if i != channel_id]
        if add:
            ids.append(channel_id)
        setattr(row, column, ids)
        await self.session.flush()
        return ids


class GuildCycleStore:
    """CycleStore for one guild, backed by a Repository."""

    def __init__(self, repo: Repository, guild_id: int) -> None:
        self.repo = repo
        self.guild_id = guild_id

    async def read_cycle(self) -> Cycle:
        return await self.repo.get_cycle(self.guild_id)

    async def write_cycle(self, cycle: Cycle) -> None:
        await self.repo.set_cycle(self.guild_id, cycle)

    async def clear_night_actions(self) -> None:
        await self.repo.clear_night_actions(self.guild_id)

    async def read_night_actions_channel(self) -> int | None:
        row = await self.repo.get_config_row(self.guild_id)
        return row.na_channel_id if row else None

    async def write_night_actions_channel(self, channel_id: int) -> None:
        await self.repo.set_channel(self.guild_id, ChannelKind.NIGHT_ACTIONS, channel_id)
