"""Guild-scoped game configuration and message-log settings."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

from tvmbot.config import DEFAULT_TOTAL_PLAYERS
from tvmbot.models.cycle import Cycle


class RoleKind(StrEnum):
    """Roles a host can configure. Values are the config column prefixes."""

    HOST = "host"
    PLAYER = "player"
    SPECTATOR = "spec"
    REPLACEMENT = "repl"
    DEAD = "dead"

    @property
    def column(self) -> str:
        return f"{self.value}_role_id"

    @property
    def display_name(self) -> str:
        return _ROLE_TITLES[self]


_ROLE_TITLES: dict[RoleKind, str] = {
    RoleKind.HOST: "Host",
    RoleKind.PLAYER: "Player",
    RoleKind.SPECTATOR: "Spectator",
    RoleKind.REPLACEMENT: "Replacement",
    RoleKind.DEAD: "Dead Player",
}


class ChannelKind(StrEnum):
    NIGHT_ACTIONS = "na"
    SIGNUPS = "signups"

    @property
    def column(self) -> str:
        return f"{self.value}_channel_id"

    @property
    def display_name(self) -> str:
        return "Night Actions" if self is ChannelKind.NIGHT_ACTIONS else "Sign-ups"


class GameConfig(BaseModel):
    """Read view of a guild's ``guild_config`` row."""

    guild_id: int
    host_role_id: int | None = None
    player_role_id: int | None = None
    spec_role_id: int | None = None
    repl_role_id: int | None = None
    dead_role_id: int | None = None
    na_channel_id: int | None = None
    signups_channel_id: int | None = None
    can_change_na: bool = True
    settings_locked: bool = False
    signups_on: bool = True
    total_players: int = DEFAULT_TOTAL_PLAYERS
    total_signups: int = 0
    cycle: Cycle = Field(default_factory=Cycle)
    na_submitted: list[int] = Field(default_factory=list)
    players: list[int] | None = None

    def role_id(self, kind: RoleKind) -> int | None:
        return getattr(self, kind.column)

    def channel_id(self, kind: ChannelKind) -> int | None:
        return getattr(self, kind.column)


class LogSettings(BaseModel):
    """Read view of a guild's ``log_settings`` row."""

    guild_id: int
    log_channel_id: int | None = None
    whitelist_channel_ids: list[int] = Field(default_factory=list)
    blacklist_channel_ids: list[int] = Field(default_factory=list)
