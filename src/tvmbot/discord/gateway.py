"""discord.py implementation of the cycle state machine's GuildGateway."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import discord

from tvmbot.core.cycle import ChannelAccess, Overwrite
from tvmbot.core.errors import ExternalCallFailed, LookupFailure

logger = logging.getLogger(__name__)

_GENERIC_FAILURE = "Discord rejected that request. Check my permissions and try again."

Grantee = discord.Role | discord.Member


def to_overwrites(channel: discord.abc.GuildChannel) -> list[Overwrite]:
    """Flatten a channel's permission overwrites for the pure helpers."""
    return [
        Overwrite(
            target_id=target.id,
            is_role=isinstance(target, discord.Role),
            send_messages=overwrite.send_messages,
        )
        for target, overwrite in channel.overwrites.items()
    ]


class DiscordGuildGateway:
    """Channel and permission operations on one guild."""

    def __init__(self, guild: discord.Guild) -> None:
        self.guild = guild

    def _overwrites(
        self,
        access: ChannelAccess,
        player_role: discord.Role | None = None,
        grantees: Sequence[Grantee] = (),
    ) -> dict[Grantee, discord.PermissionOverwrite]:
        everyone = self.guild.default_role
        me = self.guild.me
        if access is ChannelAccess.DAY_CATEGORY:
            overwrites = {
                everyone: discord.PermissionOverwrite(
                    read_messages=True, add_reactions=True, send_messages=False
                ),
                me: discord.PermissionOverwrite(send_messages=True, embed_links=True),
            }
            if player_role is not None:
                overwrites[player_role] = discord.PermissionOverwrite(
                    send_messages=True, attach_files=False
                )
            return overwrites
        if access is ChannelAccess.NIGHT_HIDDEN:
            return {
                everyone: discord.PermissionOverwrite(read_messages=False),
                me: discord.PermissionOverwrite(
                    read_messages=True, send_messages=True, embed_links=True
                ),
            }
        if access is ChannelAccess.HOST_ONLY:
            return {
                everyone: discord.PermissionOverwrite(read_messages=False),
                me: discord.PermissionOverwrite(
                    read_messages=True, send_messages=True, add_reactions=True
                ),
            }
        if access is ChannelAccess.PRIVATE:
            overwrites = {
                everyone: discord.PermissionOverwrite(read_messages=False),
                me: discord.PermissionOverwrite(
                    read_messages=True, send_messages=True, add_reactions=True
                ),
            }
            for grantee in grantees:
                overwrites[grantee] = discord.PermissionOverwrite(
                    read_messages=True,
                    send_messages=True,
                    add_reactions=True,
                    embed_links=True,
                    read_message_history=True,
                    attach_files=True,
                )
            return overwrites
        return {
            everyone: discord.PermissionOverwrite(read_messages=True, send_messages=False),
            me: discord.PermissionOverwrite(send_messages=True, embed_links=True),
        }

    async def _channel(self, channel_id: int) -> discord.abc.GuildChannel:
        """Cached channel, falling back to an API fetch."""
        channel = self.guild.get_channel(channel_id)
        if channel is not None:
            return channel
        try:
            return await self.guild.fetch_channel(channel_id)
        except (discord.NotFound, discord.Forbidden) as exc:
            raise LookupFailure(f"I couldn't find the channel <#{channel_id}>.") from exc
        except discord.HTTPException as exc:
            raise ExternalCallFailed(_GENERIC_FAILURE) from exc

    def _grantees(self, members: Sequence[int], roles: Sequence[int]) -> list[Grantee]:
        grantees: list[Grantee] = []
        for member_id in members:
            member = self.guild.get_member(member_id)
            if member is None:
                raise LookupFailure(f"I couldn't find the member <@{member_id}>.")
            grantees.append(member)
        for role_id in roles:
            role = self.guild.get_role(role_id)
            if role is None:
                raise LookupFailure(f"I couldn't find the role <@&{role_id}>.")
            grantees.append(role)
        return grantees

    async def create_category(
        self, name: str, access: ChannelAccess, player_role_id: int | None = None
    ) -> int:
        player_role = self.guild.get_role(player_role_id) if player_role_id else None
        try:
            category = await self.guild.create_category(
                name, overwrites=self._overwrites(access, player_role)
            )
        except discord.HTTPException as exc:
            raise ExternalCallFailed(_GENERIC_FAILURE) from exc
        logger.info("category_created guild_id=%d name=%s id=%d", self.guild.id, name, category.id)
        return category.id

    async def create_text_channel(
        self,
        name: str,
        *,
        category_id: int | None = None,
        access: ChannelAccess | None = None,
        members: Sequence[int] = (),
        roles: Sequence[int] = (),
    ) -> int:
        kwargs: dict[str, object] = {}
        if category_id is not None:
            kwargs["category"] = await self._channel(category_id)
        if access is not None:
            kwargs["overwrites"] = self._overwrites(
                access, grantees=self._grantees(members, roles)
            )
        try:
            channel = await self.guild.create_text_channel(name, **kwargs)
        except discord.HTTPException as exc:
            raise ExternalCallFailed(_GENERIC_FAILURE) from exc
        logger.info("channel_created guild_id=%d name=%s id=%d", self.guild.id, name, channel.id)
        return channel.id

    async def channel_exists(self, channel_id: int | None) -> bool:
        if channel_id is None:
            return False
        try:
            await self._channel(channel_id)
        except LookupFailure:
            return False
        return True

    async def role_exists(self, role_id: int | None) -> bool:
        return role_id is not None and self.guild.get_role(role_id) is not None

    async def remove_role_overwrite(self, channel_id: int, role_id: int) -> None:
        channel = await self._channel(channel_id)
        role = self.guild.get_role(role_id)
        if role is None:
            raise LookupFailure("Player role doesn't exist or is invalid now.")
        try:
            await channel.set_permissions(role, overwrite=None)
        except discord.HTTPException as exc:
            raise ExternalCallFailed(_GENERIC_FAILURE) from exc

    async def clear_overwrites(self, channel_id: int) -> None:
        channel = await self._channel(channel_id)
        try:
            await channel.edit(overwrites={})
        except discord.HTTPException as exc:
            raise ExternalCallFailed(_GENERIC_FAILURE) from exc

    async def send(self, channel_id: int, content: str) -> None:
        channel = await self._channel(channel_id)
        if not isinstance(channel, discord.TextChannel):
            raise LookupFailure(f"<#{channel_id}> is not a text channel.")
        try:
            await channel.send(content)
        except discord.HTTPException as exc:
            raise ExternalCallFailed(_GENERIC_FAILURE) from exc
