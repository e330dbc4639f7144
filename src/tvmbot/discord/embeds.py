"""Discord embed builders for the TvM bot.

Each builder takes already-computed domain data and returns a styled
embed ready to send. Nothing here talks to the database or the API.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import discord

from tvmbot.core.voting import render_vote_count, render_vote_history
from tvmbot.models.config import ChannelKind, RoleKind

if TYPE_CHECKING:
    from tvmbot.core.audit import LoggedContent
    from tvmbot.models.config import GameConfig, LogSettings
    from tvmbot.models.votes import HistoryEntry, VoteCount, VoterId

COLOR_VOTE_COUNT = 0x00CDFF  # Cyan: vote counts
COLOR_INFO = 0x9B52FF  # Purple: settings and listings
COLOR_EDIT = 0xFF9300  # Orange: edited message log
COLOR_DELETE = 0xFF0000  # Red: deleted message log


def build_vote_count_embed(
    vote_count: VoteCount,
    names: Mapping[VoterId, str],
    channel_mention: str,
) -> discord.Embed:
    embed = discord.Embed(
        title="Vote Count",
        description=f"__Counting from {channel_mention} channel.__\n\n"
        + render_vote_count(vote_count, names),
        color=COLOR_VOTE_COUNT,
    )
    return embed


def build_vote_history_embed(
    entries: Sequence[HistoryEntry],
    voter_name: str,
    channel_mention: str,
) -> discord.Embed:
    """Vote history of one player, oldest directive first."""
    embed = discord.Embed(
        description=f"Considering votes in {channel_mention} channel.\n\n"
        + render_vote_history(entries),
        color=COLOR_VOTE_COUNT,
    )
    embed.set_author(name=f"{voter_name}'s Voting History")
    embed.set_footer(text="All times are in UTC.")
    return embed


def _role_line(title: str, role_id: int | None) -> str:
    return f"{title} Role: <@&{role_id}>" if role_id else f"{title} Role: `Not set`"


def _channel_line(title: str, channel_id: int | None) -> str:
    return f"{title} Channel: <#{channel_id}>" if channel_id else f"{title} Channel: `Not set`"


def build_settings_embed(config: GameConfig, guild_name: str) -> discord.Embed:
    """The `/tvm show` summary of roles, channels and game flags."""
    embed = discord.Embed(title=f"TvM Settings for {guild_name}", color=COLOR_INFO)
    embed.add_field(
        name="Roles",
        value="\n".join(_role_line(k.display_name, config.role_id(k)) for k in RoleKind),
        inline=False,
    )
    embed.add_field(
        name="Channels",
        value="\n".join(_channel_line(k.display_name, config.channel_id(k)) for k in ChannelKind),
        inline=False,
    )
    cycle = config.cycle
    misc = [
        f"Can Change Night Action: `{str(config.can_change_na).lower()}`",
        f"Sign-ups: `{'open' if config.signups_on else 'closed'}`",
        f"Total Players: `{config.total_players}`",
        f"Total Sign-ups: `{config.total_signups}`",
        f"Cycle: `{cycle.number}` ({cycle.state.value.replace('_', ' ')})",
        f"Roster Saved: `{'yes' if config.players is not None else 'no'}`",
    ]
    embed.add_field(name="Miscellaneous", value="\n".join(misc), inline=False)
    locked = "Settings are locked." if config.settings_locked else "Settings are unlocked."
    embed.set_footer(text=locked)
    return embed


def build_member_list_embed(title: str, names: Sequence[str]) -> discord.Embed:
    """Numbered listing of role holders, e.g. ``Total Players: 9``."""
    embed = discord.Embed(
        title=f"{title}: {len(names)}",
        description="\n".join(f"{i}. {name}" for i, name in enumerate(names, 1)),
        color=COLOR_INFO,
    )
    return embed


def build_log_settings_embed(settings: LogSettings) -> discord.Embed:
    def _mentions(ids: Sequence[int]) -> str:
        return ", ".join(f"<#{i}>" for i in ids) or "`None`"

    embed = discord.Embed(title="Message Log Settings", color=COLOR_INFO)
    embed.add_field(
        name="Log Channel",
        value=f"<#{settings.log_channel_id}>" if settings.log_channel_id else "`Not set`",
        inline=False,
    )
    embed.add_field(name="Whitelisted", value=_mentions(settings.whitelist_channel_ids))
    embed.add_field(name="Blacklisted", value=_mentions(settings.blacklist_channel_ids))
    return embed


def build_edit_log_embed(
    *,
    author: str,
    author_id: int,
    channel_mention: str,
    message_id: int,
    jump_url: str,
    before: LoggedContent,
    after: LoggedContent,
) -> discord.Embed:
    embed = discord.Embed(
        description=f"[Click here to jump to the message.]({jump_url})",
        color=COLOR_EDIT,
        timestamp=datetime.now(UTC),
    )
    embed.add_field(name=before.field_name, value=before.field_value, inline=True)
    embed.add_field(name=after.field_name, value=after.field_value, inline=True)
    embed.add_field(name="Channel", value=channel_mention, inline=False)
    embed.set_author(name=f"{author} ({author_id}) - Edited Message")
    embed.set_footer(text=f"Message ID: {message_id}")
    return embed


def build_delete_log_embed(
    *,
    author: str,
    author_id: int,
    channel_mention: str,
    message_id: int,
    content: LoggedContent,
    attachments: Sequence[str] = (),
) -> discord.Embed:
    embed = discord.Embed(color=COLOR_DELETE, timestamp=datetime.now(UTC))
    embed.add_field(name=content.field_name, value=content.field_value, inline=False)
    embed.add_field(name="Channel", value=channel_mention, inline=True)
    if attachments:
        embed.add_field(name="Attachments", value="\n".join(attachments), inline=True)
    embed.set_author(name=f"{author} ({author_id}) - Deleted Message")
    embed.set_footer(text=f"Message ID: {message_id}")
    return embed


def build_player_list_embed(names: Sequence[str], color: int = COLOR_INFO) -> discord.Embed:
    """The list hosts post publicly with `/playerlist`."""
    embed = discord.Embed(
        title="Player List",
        description="\n".join(f"{i}. {name}" for i, name in enumerate(names, 1)),
        color=color,
    )
    embed.set_footer(text=f"Total Players: {len(names)}")
    return embed


def build_jump_embed(jump_url: str) -> discord.Embed:
    return discord.Embed(
        description=f"[Click here to jump to the top.]({jump_url})", color=COLOR_INFO
    )
