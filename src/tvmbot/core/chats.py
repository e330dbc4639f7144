"""Private chat provisioning and role randomisation for hosts.

Player chats give every Player-role holder one channel that only they, the
hosts and the bot can see. The player's member overwrite on that channel is
what ``/nightaction`` checks for, so these are the channels night actions
are submitted from.
"""

from __future__ import annotations

import dataclasses
import logging
import random
import re
from collections.abc import Mapping, Sequence

from tvmbot.core.cycle import ChannelAccess, Confirm, GuildGateway, require_confirmation
from tvmbot.core.errors import ExternalCallFailed, PreconditionFailed

logger = logging.getLogger(__name__)

DEFAULT_CHATS_CATEGORY = "Private Chats"
SPECTATOR_CHAT_NAME = "spectator-chat"
MAFIA_CHAT_NAME = "mafia-chat"

_NON_CHANNEL_CHARS = re.compile(r"[^\w-]+")


def private_channel_name(name: str) -> str:
    """Text channel name for a player: lower case, runs of other characters as ``-``."""
    slug = _NON_CHANNEL_CHARS.sub("-", name.strip().lower()).strip("-")
    return slug or "player"


@dataclasses.dataclass(frozen=True)
class PlayerChats:
    category_id: int
    # player id -> private channel id
    channel_ids: dict[int, int]


async def create_player_chats(
    gateway: GuildGateway,
    confirm: Confirm,
    players: Mapping[int, str],
    host_role_id: int | None,
    category_name: str | None = None,
) -> PlayerChats:
    """Create a hidden category holding one private channel per player.

    Nothing is created until the host confirms. A failure part-way through
    leaves the channels made so far in place.
    """
    if not players:
        raise PreconditionFailed("Nobody has the Player role.")
    name = (category_name or "").strip() or DEFAULT_CHATS_CATEGORY

    await require_confirmation(
        confirm,
        f"Are you sure you want to create `{len(players)}` player chats in `{name}`?",
        "Cancelled player chats creation.",
    )

    try:
        category_id = await gateway.create_category(name, ChannelAccess.HOST_ONLY)
    except ExternalCallFailed as exc:
        raise ExternalCallFailed("Could not create a category.") from exc

    roles = [host_role_id] if host_role_id is not None else []
    channel_ids: dict[int, int] = {}
    for player_id, player_name in players.items():
        try:
            channel_ids[player_id] = await gateway.create_text_channel(
                private_channel_name(player_name),
                category_id=category_id,
                access=ChannelAccess.PRIVATE,
                members=[player_id],
                roles=roles,
            )
        except ExternalCallFailed as exc:
            logger.warning(
                "player_chats_incomplete category=%d created=%d total=%d",
                category_id,
                len(channel_ids),
                len(players),
            )
            raise ExternalCallFailed(
                "I couldn't create a channel. Please check my permissions."
            ) from exc

    logger.info("player_chats_created category=%d channels=%d", category_id, len(channel_ids))
    return PlayerChats(category_id=category_id, channel_ids=channel_ids)


async def create_spectator_chat(gateway: GuildGateway, spec_role_id: int) -> int:
    """A ``spectator-chat`` channel visible to the Spectator role only."""
    try:
        channel_id = await gateway.create_text_channel(
            SPECTATOR_CHAT_NAME, access=ChannelAccess.PRIVATE, roles=[spec_role_id]
        )
    except ExternalCallFailed as exc:
        raise ExternalCallFailed("I'm unable to create a channel.") from exc
    logger.info("spectator_chat_created id=%d", channel_id)
    return channel_id


async def create_mafia_chat(
    gateway: GuildGateway, member_ids: Sequence[int], host_role_id: int | None
) -> int:
    """A ``mafia-chat`` channel for the given members and the hosts."""
    members = list(dict.fromkeys(member_ids))
    if not members:
        raise PreconditionFailed("Name at least one mafia member.")
    roles = [host_role_id] if host_role_id is not None else []
    try:
        channel_id = await gateway.create_text_channel(
            MAFIA_CHAT_NAME, access=ChannelAccess.PRIVATE, members=members, roles=roles
        )
    except ExternalCallFailed as exc:
        raise ExternalCallFailed("I'm unable to create a channel.") from exc
    logger.info("mafia_chat_created id=%d members=%d", channel_id, len(members))
    return channel_id


# ---------------------------------------------------------------------------
# Role randomisation
# ---------------------------------------------------------------------------


def parse_role_list(text: str) -> list[str]:
    """Comma-separated role names, blanks dropped. Repeats are kept."""
    return [part.strip() for part in text.split(",") if part.strip()]


def randomize_roles(
    players: Sequence[str], roles: Sequence[str], rng: random.Random | None = None
) -> list[tuple[str, str]]:
    """Deal ``roles`` out to ``players`` at random, one each.

    The counts must match exactly.
    """
    if not roles:
        raise PreconditionFailed("List the roles to hand out, separated by commas.")
    if len(players) != len(roles):
        raise PreconditionFailed(
            "Number of members with `Player` role is not equal to number of roles."
        )
    dealt = list(roles)
    (rng or random.Random()).shuffle(dealt)
    return list(zip(players, dealt, strict=True))


def format_assignments(assignments: Sequence[tuple[str, str]]) -> str:
    return "\n".join(f"{name}: {role}" for name, role in assignments)
