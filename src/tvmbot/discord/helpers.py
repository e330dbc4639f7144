"""Discord bot helpers: DB session context, role lookups, message cleaning."""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import discord
from sqlalchemy.ext.asyncio import AsyncEngine

from tvmbot.config import DEFAULT_TOTAL_PLAYERS
from tvmbot.core.errors import LookupFailure, PreconditionFailed, ServiceUnavailable
from tvmbot.core.voting import clean_mentions
from tvmbot.db.engine import get_session
from tvmbot.db.repository import Repository
from tvmbot.models.config import GameConfig, RoleKind
from tvmbot.models.votes import ChatMessage

logger = logging.getLogger(__name__)


@asynccontextmanager
async def db_session(
    engine: AsyncEngine | None,
    default_total_players: int = DEFAULT_TOTAL_PLAYERS,
) -> AsyncGenerator[Repository, None]:
    """Yield a Repository bound to a fresh async session."""
    if engine is None:
        raise ServiceUnavailable(
            "The game database is temporarily unavailable. "
            "Try again in a moment -- if this persists, let a host know."
        )
    async with get_session(engine) as session:
        yield Repository(session, default_total_players=default_total_players)


def is_host(member: discord.Member, config: GameConfig) -> bool:
    """Host role holders and server administrators count as hosts."""
    if member.guild_permissions.administrator:
        return True
    host_role_id = config.host_role_id
    return host_role_id is not None and any(r.id == host_role_id for r in member.roles)


def require_host(member: discord.Member, config: GameConfig) -> None:
    if not is_host(member, config):
        raise PreconditionFailed("You don't have enough permissions to run this command.")


def require_unlocked(config: GameConfig) -> None:
    if config.settings_locked:
        raise PreconditionFailed("TvM settings are locked!")


def configured_role(guild: discord.Guild, config: GameConfig, kind: RoleKind) -> discord.Role:
    """Resolve a configured role, failing with the message players expect."""
    role_id = config.role_id(kind)
    if role_id is None:
        raise PreconditionFailed(f"{kind.display_name} role has not been set up.")
    role = guild.get_role(role_id)
    if role is None:
        raise LookupFailure(f"{kind.display_name} role couldn't be found.")
    return role


def role_holders(role: discord.Role) -> dict[int, str]:
    """Member id -> display name for every holder of ``role``."""
    return {m.id: m.display_name for m in role.members}


_MEMBER_REF = re.compile(r"^(?:<@!?(\d+)>|(\d+))$")


def resolve_members(guild: discord.Guild, text: str) -> list[discord.Member]:
    """Members named in ``text`` by mention, id or unique name, space separated."""
    members = []
    for token in text.split():
        match = _MEMBER_REF.match(token)
        if match:
            member = guild.get_member(int(match.group(1) or match.group(2)))
        else:
            member = guild.get_member_named(token)
        if member is None:
            raise LookupFailure(f"No member found from {token}.")
        members.append(member)
    return members


def to_chat_message(message: discord.Message) -> ChatMessage:
    mentions = {user.id: user.display_name for user in message.mentions}
    return ChatMessage(
        author_id=message.author.id,
        text=clean_mentions(message.content, mentions),
        created_at=message.created_at,
    )


async def fetch_chat_messages(
    channel: discord.abc.Messageable, limit: int | None
) -> list[ChatMessage]:
    """Recent messages in ``channel``, newest first, with mentions cleaned."""
    return [to_chat_message(m) async for m in channel.history(limit=limit)]
