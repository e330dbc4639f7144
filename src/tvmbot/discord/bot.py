"""Discord bot for hosting Town-vs-Mafia games.

Runs alongside FastAPI using the same event loop. Slash commands cover vote
counting, the day/night cycle, sign-ups, night actions, private chats, game
settings and the edit/delete message log.

Every handler funnels its failures through ``_guarded``: TvMError subclasses
become the reply text, database and Discord errors are logged and reported
with a generic message. No exception escapes a handler.

The bot is optional: if DISCORD_BOT_TOKEN is not set, nothing starts.
"""

from __future__ import annotations

import asyncio
import io
import logging
from collections.abc import AsyncGenerator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import TYPE_CHECKING, Literal

import discord
from discord import Intents, app_commands
from discord.ext import commands
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from tvmbot.core.audit import split_for_field, should_log_channel
from tvmbot.core.chats import (
    create_mafia_chat,
    create_player_chats,
    create_spectator_chat,
    format_assignments,
    parse_role_list,
    randomize_roles,
)
from tvmbot.core.cycle import (
    ChannelAccess,
    Confirm,
    ConfirmResult,
    CycleStateMachine,
    cycle_is_day,
    describe_elapsed,
    ensure_night_actions_channel,
    is_day,
    phase_channel,
)
from tvmbot.core.errors import (
    ExternalCallFailed,
    LookupFailure,
    PreconditionFailed,
    TvMError,
)
from tvmbot.core.signups import (
    check_capacity,
    check_night_action,
    check_signups_open,
    format_night_action,
    member_can_send,
    signup_role_changes,
)
from tvmbot.core.voting import select_active_voters, select_vote_channel, tally_votes, vote_history
from tvmbot.db.repository import GuildCycleStore, Repository
from tvmbot.discord.embeds import (
    build_delete_log_embed,
    build_edit_log_embed,
    build_jump_embed,
    build_log_settings_embed,
    build_member_list_embed,
    build_player_list_embed,
    build_settings_embed,
    build_vote_count_embed,
    build_vote_history_embed,
)
from tvmbot.discord.gateway import DiscordGuildGateway, to_overwrites
from tvmbot.discord.helpers import (
    configured_role,
    db_session,
    fetch_chat_messages,
    require_host,
    require_unlocked,
    resolve_members,
    role_holders,
)
from tvmbot.discord.views import ask_yes_no
from tvmbot.models.config import ChannelKind, GameConfig, RoleKind

if TYPE_CHECKING:
    from tvmbot.config import Settings

logger = logging.getLogger(__name__)

LOG_CHANNEL_NAME = "log"

DB_UNAVAILABLE = (
    "I couldn't reach the game database just now. "
    "Try again in a moment -- if this persists, let a host know."
)
DISCORD_FAILED = "Discord rejected that request. Check my permissions and try again."


class TvMBot(commands.Bot):
    """The TvM assistant Discord bot.

    Runs in-process with FastAPI. All game state lives in the database and
    is loaded per command, so the bot itself holds no per-guild state.
    """

    def __init__(self, settings: Settings, engine: AsyncEngine | None = None) -> None:
        intents = Intents.default()
        intents.message_content = True  # Vote directives are read from message text
        intents.members = True  # Role holder listings need the member cache

        super().__init__(
            command_prefix="!",
            intents=intents,
            description="TvM assistant -- vote counter, cycle keeper and sign-up desk.",
        )
        self.settings = settings
        self.engine = engine
        self.runner_task: asyncio.Task[None] | None = None
        self._setup_commands()

    # ------------------------------------------------------------------
    # Command registration
    # ------------------------------------------------------------------

    def _setup_commands(self) -> None:
        """Register slash commands on the bot's command tree."""

        # --- Voting ---

        @self.tree.command(name="votecount", description="Count the current votes")
        @app_commands.describe(
            channel="Voting channel to count from (defaults to the current cycle's)",
            roster="Only count players on the saved roster",
        )
        @app_commands.guild_only()
        async def votecount_command(
            interaction: discord.Interaction,
            channel: discord.TextChannel | None = None,
            roster: bool = False,
        ) -> None:
            await self._handle_votecount(interaction, channel, roster)

        @self.tree.command(name="votehistory", description="Show everything a player voted")
        @app_commands.describe(
            user="Player to look up (defaults to you)",
            channel="Voting channel to read (defaults to the current cycle's)",
        )
        @app_commands.guild_only()
        async def votehistory_command(
            interaction: discord.Interaction,
            user: discord.Member | None = None,
            channel: discord.TextChannel | None = None,
        ) -> None:
            await self._handle_votehistory(interaction, user, channel)

        @self.tree.command(name="timesince", description="How long ago the current phase began")
        @app_commands.guild_only()
        async def timesince_command(interaction: discord.Interaction) -> None:
            await self._handle_timesince(interaction)

        @self.tree.command(name="top", description="Link to the first message of a channel")
        @app_commands.describe(channel="Channel to jump to the top of (defaults to this one)")
        @app_commands.guild_only()
        async def top_command(
            interaction: discord.Interaction, channel: discord.TextChannel | None = None
        ) -> None:
            await self._handle_top(interaction, channel)

        # --- Cycle ---

        @self.tree.command(name="cycle", description="Create the next day's category and channels")
        @app_commands.describe(number="Cycle number (defaults to the next one)")
        @app_commands.guild_only()
        async def cycle_command(
            interaction: discord.Interaction, number: str | None = None
        ) -> None:
            await self._handle_cycle(interaction, number)

        @self.tree.command(name="night", description="Close the day channels and open the night")
        @app_commands.guild_only()
        async def night_command(interaction: discord.Interaction) -> None:
            await self._handle_night(interaction)

        # --- Private chats and role randomisation ---

        @self.tree.command(
            name="playerchats", description="Create a private channel for every player"
        )
        @app_commands.describe(category="Category name (defaults to Private Chats)")
        @app_commands.guild_only()
        async def playerchats_command(
            interaction: discord.Interaction, category: str | None = None
        ) -> None:
            await self._handle_playerchats(interaction, category)

        @self.tree.command(name="specchat", description="Create a private spectator channel")
        @app_commands.guild_only()
        async def specchat_command(interaction: discord.Interaction) -> None:
            await self._handle_specchat(interaction)

        @self.tree.command(name="mafiachat", description="Create a private mafia channel")
        @app_commands.describe(members="Mafia members: mentions, ids or unique names")
        @app_commands.guild_only()
        async def mafiachat_command(interaction: discord.Interaction, members: str) -> None:
            await self._handle_mafiachat(interaction, members)

        @self.tree.command(name="rand", description="Randomly hand out roles to the players")
        @app_commands.describe(roles="Roles separated by commas, one per player")
        @app_commands.guild_only()
        async def rand_command(interaction: discord.Interaction, roles: str) -> None:
            await self._handle_rand(interaction, roles)

        # --- Sign-ups and players ---

        @self.tree.command(name="in", description="Sign up as a player")
        @app_commands.guild_only()
        async def in_command(interaction: discord.Interaction) -> None:
            await self._handle_signup(interaction, RoleKind.PLAYER)

        @self.tree.command(name="out", description="Sign up as a spectator")
        @app_commands.guild_only()
        async def out_command(interaction: discord.Interaction) -> None:
            await self._handle_signup(interaction, RoleKind.SPECTATOR)

        @self.tree.command(name="repl", description="Sign up as a replacement")
        @app_commands.guild_only()
        async def repl_command(interaction: discord.Interaction) -> None:
            await self._handle_signup(interaction, RoleKind.REPLACEMENT)

        @self.tree.command(name="total", description="Show how many people are signed up")
        @app_commands.guild_only()
        async def total_command(interaction: discord.Interaction) -> None:
            await self._handle_total(interaction)

        @self.tree.command(
            name="synctotal", description="Reset the sign-up count to the Player role holders"
        )
        @app_commands.guild_only()
        async def synctotal_command(interaction: discord.Interaction) -> None:
            await self._handle_synctotal(interaction)

        @self.tree.command(name="players", description="List everyone with the Player role")
        @app_commands.guild_only()
        async def players_command(interaction: discord.Interaction) -> None:
            await self._handle_role_listing(interaction, RoleKind.PLAYER)

        @self.tree.command(
            name="replacements", description="List everyone with the Replacement role"
        )
        @app_commands.guild_only()
        async def replacements_command(interaction: discord.Interaction) -> None:
            await self._handle_role_listing(interaction, RoleKind.REPLACEMENT)

        @self.tree.command(name="playerlist", description="Post the player list in a channel")
        @app_commands.describe(channel="Where to post the list")
        @app_commands.guild_only()
        async def playerlist_command(
            interaction: discord.Interaction, channel: discord.TextChannel
        ) -> None:
            await self._handle_playerlist(interaction, channel)

        @self.tree.command(name="kill", description="Swap a player's Player role for Dead Player")
        @app_commands.describe(user="The player who died")
        @app_commands.guild_only()
        async def kill_command(interaction: discord.Interaction, user: discord.Member) -> None:
            await self._handle_kill(interaction, user)

        @self.tree.command(name="nightaction", description="Submit your night action")
        @app_commands.describe(action="What you do tonight")
        @app_commands.guild_only()
        async def nightaction_command(interaction: discord.Interaction, action: str) -> None:
            await self._handle_nightaction(interaction, action)

        roster_group = app_commands.Group(
            name="roster", description="Saved player roster for roster-only vote counts",
            guild_only=True,
        )

        @roster_group.command(name="save", description="Save the current Player role holders")
        async def roster_save_command(interaction: discord.Interaction) -> None:
            await self._handle_roster(interaction, save=True)

        @roster_group.command(name="clear", description="Forget the saved roster")
        async def roster_clear_command(interaction: discord.Interaction) -> None:
            await self._handle_roster(interaction, save=False)

        self.tree.add_command(roster_group)

        # --- Settings ---

        tvm_group = app_commands.Group(
            name="tvm", description="TvM game settings", guild_only=True
        )

        @tvm_group.command(name="role", description="Set one of the game roles")
        @app_commands.describe(kind="Which role to set", role="The server role to use")
        async def tvm_role_command(
            interaction: discord.Interaction, kind: RoleKind, role: discord.Role
        ) -> None:
            await self._handle_set_role(interaction, kind, role)

        @tvm_group.command(name="channel", description="Set one of the game channels")
        @app_commands.describe(kind="Which channel to set", channel="The channel to use")
        async def tvm_channel_command(
            interaction: discord.Interaction, kind: ChannelKind, channel: discord.TextChannel
        ) -> None:
            await self._handle_set_channel(interaction, kind, channel)

        @tvm_group.command(name="changena", description="Allow or forbid changing night actions")
        @app_commands.describe(value="Leave empty to toggle")
        async def tvm_changena_command(
            interaction: discord.Interaction, value: bool | None = None
        ) -> None:
            await self._handle_changena(interaction, value)

        @tvm_group.command(name="maxplayers", description="Maximum number of sign-ups")
        async def tvm_maxplayers_command(
            interaction: discord.Interaction, number: app_commands.Range[int, 0]
        ) -> None:
            await self._handle_maxplayers(interaction, number)

        @tvm_group.command(name="signups", description="Open or close sign-ups")
        async def tvm_signups_command(
            interaction: discord.Interaction, state: Literal["open", "close"]
        ) -> None:
            await self._handle_signups_toggle(interaction, state == "open")

        @tvm_group.command(name="lock", description="Lock the TvM settings")
        async def tvm_lock_command(interaction: discord.Interaction) -> None:
            await self._handle_lock(interaction, locked=True)

        @tvm_group.command(name="unlock", description="Unlock the TvM settings")
        async def tvm_unlock_command(interaction: discord.Interaction) -> None:
            await self._handle_lock(interaction, locked=False)

        @tvm_group.command(name="show", description="Show the TvM settings")
        async def tvm_show_command(interaction: discord.Interaction) -> None:
            await self._handle_show_settings(interaction)

        self.tree.add_command(tvm_group)

        # --- Message log ---

        log_group = app_commands.Group(
            name="log", description="Edited and deleted message log", guild_only=True
        )

        @log_group.command(name="channel", description="Set (or create) the log channel")
        @app_commands.describe(channel="Leave empty to create a read-only #log channel")
        async def log_channel_command(
            interaction: discord.Interaction, channel: discord.TextChannel | None = None
        ) -> None:
            await self._handle_log_channel(interaction, channel)

        @log_group.command(name="whitelist", description="Always log a channel")
        async def log_whitelist_command(
            interaction: discord.Interaction, channel: discord.TextChannel
        ) -> None:
            await self._handle_log_filter(interaction, "whitelist", channel, add=True)

        @log_group.command(name="unwhitelist", description="Remove a channel from the whitelist")
        async def log_unwhitelist_command(
            interaction: discord.Interaction, channel: discord.TextChannel
        ) -> None:
            await self._handle_log_filter(interaction, "whitelist", channel, add=False)

        @log_group.command(name="blacklist", description="Never log a channel")
        async def log_blacklist_command(
            interaction: discord.Interaction, channel: discord.TextChannel
        ) -> None:
            await self._handle_log_filter(interaction, "blacklist", channel, add=True)

        @log_group.command(name="unblacklist", description="Remove a channel from the blacklist")
        async def log_unblacklist_command(
            interaction: discord.Interaction, channel: discord.TextChannel
        ) -> None:
            await self._handle_log_filter(interaction, "blacklist", channel, add=False)

        @log_group.command(name="settings", description="Show the message log settings")
        async def log_settings_command(interaction: discord.Interaction) -> None:
            await self._handle_log_settings(interaction)

        self.tree.add_command(log_group)

    async def setup_hook(self) -> None:
        """Called when the bot is ready to start. Syncs slash commands."""
        if self.settings.discord_guild_id:
            guild = discord.Object(id=int(self.settings.discord_guild_id))
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
            logger.info("discord_commands_synced guild_id=%s", self.settings.discord_guild_id)
        else:
            await self.tree.sync()
            logger.info("discord_commands_synced globally")

    async def on_ready(self) -> None:
        user = self.user
        name = user.name if user else "unknown"
        logger.info("discord_bot_ready user=%s guilds=%d", name, len(self.guilds))

    # ------------------------------------------------------------------
    # Shared plumbing
    # ------------------------------------------------------------------

    def _repo(self) -> AbstractAsyncContextManager[Repository]:
        return db_session(self.engine, self.settings.tvm_default_total_players)

    @staticmethod
    async def _reply(
        interaction: discord.Interaction,
        content: str | None = None,
        *,
        embed: discord.Embed | None = None,
        ephemeral: bool = False,
    ) -> None:
        kwargs: dict[str, object] = {"ephemeral": ephemeral}
        if content is not None:
            kwargs["content"] = content
        if embed is not None:
            kwargs["embed"] = embed
        if interaction.response.is_done():
            await interaction.followup.send(**kwargs)
        else:
            await interaction.response.send_message(**kwargs)

    @asynccontextmanager
    async def _guarded(
        self, interaction: discord.Interaction, command: str
    ) -> AsyncGenerator[None, None]:
        """Turn anything a handler raises into a reply."""
        try:
            yield
        except ExternalCallFailed as exc:
            logger.exception("discord_%s_external_failure", command)
            await self._reply(interaction, exc.message)
        except TvMError as exc:
            logger.info("discord_%s_rejected reason=%s", command, type(exc).__name__)
            await self._reply(interaction, exc.message)
        except SQLAlchemyError:
            logger.exception("discord_%s_db_failed", command)
            await self._reply(interaction, DB_UNAVAILABLE)
        except discord.HTTPException:
            logger.exception("discord_%s_http_failed", command)
            await self._reply(interaction, DISCORD_FAILED)

    @staticmethod
    def _guild(interaction: discord.Interaction) -> discord.Guild:
        if interaction.guild is None:
            raise LookupFailure("This command can only be used in a server.")
        return interaction.guild

    @staticmethod
    def _member(interaction: discord.Interaction) -> discord.Member:
        if not isinstance(interaction.user, discord.Member):
            raise LookupFailure("I couldn't fetch details about you.")
        return interaction.user

    @staticmethod
    def _text_channel(guild: discord.Guild, channel_id: int) -> discord.TextChannel:
        channel = guild.get_channel(channel_id)
        if not isinstance(channel, discord.TextChannel):
            raise LookupFailure(f"I couldn't find the channel <#{channel_id}>.")
        return channel

    async def _load_config(self, guild_id: int) -> GameConfig:
        async with self._repo() as repo:
            return await repo.load_game_config(guild_id)

    async def _load_host_config(
        self, interaction: discord.Interaction, *, check_lock: bool = False
    ) -> GameConfig:
        """Config of the invoking guild, after checking the user is a host."""
        guild = self._guild(interaction)
        config = await self._load_config(guild.id)
        require_host(self._member(interaction), config)
        if check_lock:
            require_unlocked(config)
        return config

    # ------------------------------------------------------------------
    # Voting
    # ------------------------------------------------------------------

    async def _handle_votecount(
        self,
        interaction: discord.Interaction,
        channel: discord.TextChannel | None,
        roster: bool,
    ) -> None:
        """Handle /votecount -- rank the current votes of the active players."""
        await interaction.response.defer()
        async with self._guarded(interaction, "votecount"):
            guild = self._guild(interaction)
            config = await self._load_config(guild.id)

            channel_id = select_vote_channel(channel.id if channel else None, config.cycle)
            target = channel or self._text_channel(guild, channel_id)
            player_role = configured_role(guild, config, RoleKind.PLAYER)
            voters = select_active_voters(role_holders(player_role), config.players, roster)

            messages = await fetch_chat_messages(target, self.settings.history_limit())
            vote_count = tally_votes(messages, voters, channel_id)

            embed = build_vote_count_embed(vote_count, voters, target.mention)
            await interaction.followup.send(embed=embed)
            logger.info(
                "vote_count_posted guild_id=%d channel=%d voters=%d messages=%d",
                guild.id,
                channel_id,
                vote_count.total_voters,
                len(messages),
            )

    async def _handle_votehistory(
        self,
        interaction: discord.Interaction,
        user: discord.Member | None,
        channel: discord.TextChannel | None,
    ) -> None:
        await interaction.response.defer()
        async with self._guarded(interaction, "votehistory"):
            guild = self._guild(interaction)
            member = user or self._member(interaction)
            config = await self._load_config(guild.id)

            channel_id = select_vote_channel(channel.id if channel else None, config.cycle)
            target = channel or self._text_channel(guild, channel_id)

            messages = await fetch_chat_messages(target, self.settings.history_limit())
            entries = vote_history(reversed(messages), member.id)
            embed = build_vote_history_embed(entries, member.display_name, target.mention)
            await interaction.followup.send(embed=embed)

    async def _handle_timesince(self, interaction: discord.Interaction) -> None:
        """Handle /timesince -- age of the first message in the open phase channel."""
        await interaction.response.defer()
        async with self._guarded(interaction, "timesince"):
            guild = self._guild(interaction)
            config = await self._load_config(guild.id)
            cycle = config.cycle
            if not cycle.started:
                raise PreconditionFailed("Game doesn't appear to have started.")

            derived = None
            if cycle.phase is None:
                day_channel = guild.get_channel(cycle.day_channel_id or 0)
                if day_channel is None:
                    raise LookupFailure("Day channel couldn't be fetched.")
                derived = is_day(
                    to_overwrites(day_channel), config.player_role_id, guild.default_role.id
                )
            day = cycle_is_day(cycle, derived)
            label, channel_id = phase_channel(cycle, day)
            channel = guild.get_channel(channel_id or 0)
            if not isinstance(channel, discord.TextChannel):
                raise LookupFailure(f"{'Day' if day else 'Night'} channel couldn't be fetched.")

            first = [m async for m in channel.history(limit=1, oldest_first=True)]
            if not first:
                await interaction.followup.send(f"The {channel.mention} channel seems empty.")
                return
            elapsed = (discord.utils.utcnow() - first[0].created_at).total_seconds()
            await interaction.followup.send(describe_elapsed(label, elapsed))

    async def _handle_top(
        self, interaction: discord.Interaction, channel: discord.TextChannel | None
    ) -> None:
        """Handle /top -- jump link to the first message of a channel."""
        await interaction.response.defer()
        async with self._guarded(interaction, "top"):
            target = channel or interaction.channel
            if not isinstance(target, discord.TextChannel):
                raise LookupFailure("Unable to get details of this channel.")
            try:
                first = [m async for m in target.history(limit=1, oldest_first=True)]
            except discord.HTTPException as exc:
                raise ExternalCallFailed(
                    "I couldn't fetch the first message in the channel."
                ) from exc
            if not first:
                await interaction.followup.send(f"The {target.mention} channel seems to be empty.")
                return
            url = first[0].jump_url
            try:
                await interaction.followup.send(embed=build_jump_embed(url))
            except discord.Forbidden:
                # No embed permission here; the bare link still works.
                await interaction.followup.send(url)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def _confirm(self, interaction: discord.Interaction) -> Confirm:
        async def confirm(prompt: str) -> ConfirmResult:
            return await ask_yes_no(
                interaction, prompt, timeout=self.settings.tvm_confirm_timeout_seconds
            )

        return confirm

    def _state_machine(
        self, interaction: discord.Interaction, repo: Repository, guild: discord.Guild
    ) -> CycleStateMachine:
        return CycleStateMachine(
            store=GuildCycleStore(repo, guild.id),
            gateway=DiscordGuildGateway(guild),
            confirm=self._confirm(interaction),
        )

    async def _handle_cycle(self, interaction: discord.Interaction, number: str | None) -> None:
        """Handle /cycle -- create the Day n category, day, voting and night channels."""
        await interaction.response.defer()
        async with self._guarded(interaction, "cycle"):
            guild = self._guild(interaction)
            config = await self._load_host_config(interaction)
            async with self._repo() as repo:
                machine = self._state_machine(interaction, repo, guild)
                cycle = await machine.create_cycle(number, config.player_role_id)
            await interaction.followup.send(
                f"Created cycle `{cycle.number}` category and channels!"
            )
            logger.info("discord_cycle_created guild_id=%d number=%d", guild.id, cycle.number)

    async def _handle_night(self, interaction: discord.Interaction) -> None:
        """Handle /night -- close the day channels and open the night channel."""
        await interaction.response.defer()
        async with self._guarded(interaction, "night"):
            guild = self._guild(interaction)
            config = await self._load_host_config(interaction)
            async with self._repo() as repo:
                machine = self._state_machine(interaction, repo, guild)
                outcome = await machine.advance_to_night(config.player_role_id)
            await interaction.followup.send(f"Night {outcome.cycle.number} channel opened.")
            if not outcome.announced:
                await interaction.followup.send(outcome.announcement_error)

    # ------------------------------------------------------------------
    # Private chats and role randomisation
    # ------------------------------------------------------------------

    @staticmethod
    def _host_role_id(guild: discord.Guild, config: GameConfig) -> int | None:
        """The configured host role, when it still exists."""
        role_id = config.host_role_id
        if role_id is None or guild.get_role(role_id) is None:
            return None
        return role_id

    async def _handle_playerchats(
        self, interaction: discord.Interaction, category: str | None
    ) -> None:
        """Handle /playerchats -- one private channel per Player-role holder."""
        await interaction.response.defer()
        async with self._guarded(interaction, "playerchats"):
            guild = self._guild(interaction)
            config = await self._load_host_config(interaction)
            player_role = configured_role(guild, config, RoleKind.PLAYER)
            players = dict(sorted(role_holders(player_role).items(), key=lambda p: p[1].lower()))
            chats = await create_player_chats(
                DiscordGuildGateway(guild),
                self._confirm(interaction),
                players,
                self._host_role_id(guild, config),
                category,
            )
            await interaction.followup.send("Created player chats.")
            logger.info(
                "discord_player_chats_created guild_id=%d channels=%d",
                guild.id,
                len(chats.channel_ids),
            )

    async def _handle_specchat(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer()
        async with self._guarded(interaction, "specchat"):
            guild = self._guild(interaction)
            config = await self._load_host_config(interaction)
            spec_role = configured_role(guild, config, RoleKind.SPECTATOR)
            channel_id = await create_spectator_chat(DiscordGuildGateway(guild), spec_role.id)
            await interaction.followup.send(f"Created <#{channel_id}>.")

    async def _handle_mafiachat(self, interaction: discord.Interaction, members: str) -> None:
        await interaction.response.defer()
        async with self._guarded(interaction, "mafiachat"):
            guild = self._guild(interaction)
            config = await self._load_host_config(interaction)
            mafia = resolve_members(guild, members)
            channel_id = await create_mafia_chat(
                DiscordGuildGateway(guild),
                [m.id for m in mafia],
                self._host_role_id(guild, config),
            )
            await interaction.followup.send(f"Created <#{channel_id}>.")

    async def _handle_rand(self, interaction: discord.Interaction, roles: str) -> None:
        """Handle /rand -- deal the listed roles out to the players at random."""
        async with self._guarded(interaction, "rand"):
            guild = self._guild(interaction)
            config = await self._load_host_config(interaction)
            player_role = configured_role(guild, config, RoleKind.PLAYER)
            names = sorted(role_holders(player_role).values(), key=str.lower)
            assignments = randomize_roles(names, parse_role_list(roles))
            await self._reply(interaction, format_assignments(assignments), ephemeral=True)

    # ------------------------------------------------------------------
    # Sign-ups and players
    # ------------------------------------------------------------------

    async def _handle_signup(self, interaction: discord.Interaction, kind: RoleKind) -> None:
        """Handle /in, /out and /repl."""
        await interaction.response.defer()
        async with self._guarded(interaction, f"signup_{kind.value}"):
            guild = self._guild(interaction)
            member = self._member(interaction)
            async with self._repo() as repo:
                config = await repo.load_game_config(guild.id)
                check_signups_open(config, interaction.channel_id or 0)
                if kind is RoleKind.PLAYER:
                    check_capacity(config)

                add, remove = signup_role_changes(kind)
                role = configured_role(guild, config, add)
                if role in member.roles:
                    raise PreconditionFailed(f"You already have the `{role.name}` role.")
                await self._change_role(member, role, add=True)
                if add is RoleKind.PLAYER:
                    await repo.adjust_signups(guild.id, 1)

                for other in remove:
                    other_id = config.role_id(other)
                    other_role = guild.get_role(other_id) if other_id else None
                    if other_role is None or other_role not in member.roles:
                        continue
                    await self._change_role(member, other_role, add=False)
                    if other is RoleKind.PLAYER:
                        await repo.adjust_signups(guild.id, -1)

            await interaction.followup.send(f"Added {add.display_name} role!")
            logger.info(
                "discord_signup guild_id=%d user=%d role=%s", guild.id, member.id, add.value
            )

    @staticmethod
    async def _change_role(member: discord.Member, role: discord.Role, *, add: bool) -> None:
        try:
            if add:
                await member.add_roles(role)
            else:
                await member.remove_roles(role)
        except discord.HTTPException as exc:
            raise ExternalCallFailed(
                "I either don't have the permissions to manage roles or the "
                f"`{role.name}` role is above my highest role."
            ) from exc

    async def _handle_total(self, interaction: discord.Interaction) -> None:
        async with self._guarded(interaction, "total"):
            guild = self._guild(interaction)
            config = await self._load_config(guild.id)
            await self._reply(
                interaction,
                f"`{config.total_signups}` people are signed up.\n\n"
                "If you think the count is not correct, use the `/synctotal` command "
                "to fix the count.",
            )

    async def _handle_synctotal(self, interaction: discord.Interaction) -> None:
        async with self._guarded(interaction, "synctotal"):
            guild = self._guild(interaction)
            config = await self._load_host_config(interaction)
            player_role = configured_role(guild, config, RoleKind.PLAYER)
            async with self._repo() as repo:
                await repo.set_signups(guild.id, len(player_role.members))
            await self._reply(interaction, "Synced total signups.")

    async def _handle_role_listing(self, interaction: discord.Interaction, kind: RoleKind) -> None:
        """Handle /players and /replacements."""
        async with self._guarded(interaction, f"list_{kind.value}"):
            guild = self._guild(interaction)
            config = await self._load_config(guild.id)
            role = configured_role(guild, config, kind)
            names = sorted(role_holders(role).values(), key=str.lower)
            plural = "Players" if kind is RoleKind.PLAYER else "Replacements"
            if not names:
                await self._reply(interaction, f"No {plural.lower()}!")
                return
            await self._reply(interaction, embed=build_member_list_embed(f"Total {plural}", names))

    async def _handle_playerlist(
        self, interaction: discord.Interaction, channel: discord.TextChannel
    ) -> None:
        async with self._guarded(interaction, "playerlist"):
            guild = self._guild(interaction)
            config = await self._load_host_config(interaction)
            role = configured_role(guild, config, RoleKind.PLAYER)
            names = sorted(role_holders(role).values(), key=str.lower)
            if not names:
                await self._reply(interaction, "No players!")
                return
            try:
                await channel.send(embed=build_player_list_embed(names, role.color.value))
            except discord.HTTPException as exc:
                raise ExternalCallFailed(
                    "I couldn't send the player list. Please check if I have permissions "
                    f"to embed links in {channel.mention}."
                ) from exc
            await self._reply(interaction, f"Posted the player list in {channel.mention}.")

    async def _handle_kill(self, interaction: discord.Interaction, user: discord.Member) -> None:
        async with self._guarded(interaction, "kill"):
            guild = self._guild(interaction)
            config = await self._load_host_config(interaction)
            player_role = configured_role(guild, config, RoleKind.PLAYER)
            dead_role = configured_role(guild, config, RoleKind.DEAD)
            if player_role not in user.roles:
                raise PreconditionFailed("User doesn't have the player role!")
            await self._change_role(user, player_role, add=False)
            await self._change_role(user, dead_role, add=True)
            await self._reply(
                interaction, "Removed player role and added dead player role to the user!"
            )
            logger.info("discord_player_killed guild_id=%d user=%d", guild.id, user.id)

    async def _handle_roster(self, interaction: discord.Interaction, *, save: bool) -> None:
        """Handle /roster save and /roster clear."""
        async with self._guarded(interaction, "roster"):
            guild = self._guild(interaction)
            config = await self._load_host_config(interaction)
            async with self._repo() as repo:
                if not save:
                    await repo.clear_roster(guild.id)
                    await self._reply(interaction, "Cleared the saved roster.")
                    return
                player_role = configured_role(guild, config, RoleKind.PLAYER)
                ids = sorted(role_holders(player_role))
                await repo.save_roster(guild.id, ids)
            await self._reply(interaction, f"Saved a roster of `{len(ids)}` players.")

    async def _handle_nightaction(self, interaction: discord.Interaction, action: str) -> None:
        """Handle /nightaction -- forward a private-channel action to the hosts."""
        await interaction.response.defer()
        async with self._guarded(interaction, "nightaction"):
            guild = self._guild(interaction)
            member = self._member(interaction)
            channel = interaction.channel
            if not isinstance(channel, discord.abc.GuildChannel):
                raise LookupFailure("Unable to get details of this channel.")

            async with self._repo() as repo:
                config = await repo.load_game_config(guild.id)
                private = member_can_send(to_overwrites(channel), member.id)
                updated = check_night_action(config, member.id, private)

                gateway = DiscordGuildGateway(guild)
                na_channel_id = await ensure_night_actions_channel(
                    GuildCycleStore(repo, guild.id), gateway
                )
                await gateway.send(
                    na_channel_id, format_night_action(member.display_name, action, updated)
                )
                await repo.record_night_action(guild.id, member.id)

            await interaction.followup.send("Submitted night action!")
            logger.info(
                "night_action_submitted guild_id=%d user=%d updated=%s",
                guild.id,
                member.id,
                updated,
            )

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def _handle_set_role(
        self, interaction: discord.Interaction, kind: RoleKind, role: discord.Role
    ) -> None:
        async with self._guarded(interaction, "tvm_role"):
            guild = self._guild(interaction)
            await self._load_host_config(interaction, check_lock=True)
            async with self._repo() as repo:
                await repo.set_role(guild.id, kind, role.id)
            await self._reply(interaction, f"{kind.display_name} role set to `{role.name}`.")
            logger.info("tvm_role_set guild_id=%d kind=%s role=%d", guild.id, kind.value, role.id)

    async def _handle_set_channel(
        self, interaction: discord.Interaction, kind: ChannelKind, channel: discord.TextChannel
    ) -> None:
        async with self._guarded(interaction, "tvm_channel"):
            guild = self._guild(interaction)
            await self._load_host_config(interaction, check_lock=True)
            async with self._repo() as repo:
                await repo.set_channel(guild.id, kind, channel.id)
            await self._reply(
                interaction, f"{kind.display_name} channel set to {channel.mention}."
            )

    async def _handle_changena(self, interaction: discord.Interaction, value: bool | None) -> None:
        async with self._guarded(interaction, "tvm_changena"):
            guild = self._guild(interaction)
            config = await self._load_host_config(interaction, check_lock=True)
            allowed = (not config.can_change_na) if value is None else value
            async with self._repo() as repo:
                await repo.update_config(guild.id, can_change_na=allowed)
            if allowed:
                await self._reply(interaction, "Players can now change their night actions.")
            else:
                await self._reply(
                    interaction, "Players can no longer change their night actions."
                )

    async def _handle_maxplayers(self, interaction: discord.Interaction, number: int) -> None:
        async with self._guarded(interaction, "tvm_maxplayers"):
            guild = self._guild(interaction)
            await self._load_host_config(interaction, check_lock=True)
            async with self._repo() as repo:
                await repo.update_config(guild.id, total_players=number)
            await self._reply(interaction, f"Maximum players set to `{number}`.")

    async def _handle_signups_toggle(self, interaction: discord.Interaction, open_: bool) -> None:
        async with self._guarded(interaction, "tvm_signups"):
            guild = self._guild(interaction)
            await self._load_host_config(interaction, check_lock=True)
            async with self._repo() as repo:
                await repo.update_config(guild.id, signups_on=open_)
            await self._reply(interaction, "Sign-ups opened." if open_ else "Sign-ups closed.")

    async def _handle_lock(self, interaction: discord.Interaction, *, locked: bool) -> None:
        """Handle /tvm lock and /tvm unlock. Unlocking works while locked."""
        async with self._guarded(interaction, "tvm_lock"):
            guild = self._guild(interaction)
            await self._load_host_config(interaction, check_lock=locked)
            async with self._repo() as repo:
                await repo.update_config(guild.id, settings_locked=locked)
            await self._reply(
                interaction, "TvM settings locked." if locked else "TvM settings unlocked."
            )
            logger.info("tvm_settings_lock guild_id=%d locked=%s", guild.id, locked)

    async def _handle_show_settings(self, interaction: discord.Interaction) -> None:
        async with self._guarded(interaction, "tvm_show"):
            guild = self._guild(interaction)
            config = await self._load_config(guild.id)
            await self._reply(interaction, embed=build_settings_embed(config, guild.name))

    # ------------------------------------------------------------------
    # Message log
    # ------------------------------------------------------------------

    async def _handle_log_channel(
        self, interaction: discord.Interaction, channel: discord.TextChannel | None
    ) -> None:
        await interaction.response.defer()
        async with self._guarded(interaction, "log_channel"):
            guild = self._guild(interaction)
            await self._load_host_config(interaction)
            if channel is None:
                gateway = DiscordGuildGateway(guild)
                channel_id = await gateway.create_text_channel(
                    LOG_CHANNEL_NAME, access=ChannelAccess.READ_ONLY
                )
            else:
                channel_id = channel.id
            async with self._repo() as repo:
                await repo.set_log_channel(guild.id, channel_id)
            await interaction.followup.send(
                f"Edited and deleted messages will be logged in <#{channel_id}>."
            )

    async def _handle_log_filter(
        self,
        interaction: discord.Interaction,
        which: Literal["whitelist", "blacklist"],
        channel: discord.TextChannel,
        *,
        add: bool,
    ) -> None:
        async with self._guarded(interaction, f"log_{which}"):
            guild = self._guild(interaction)
            await self._load_host_config(interaction)
            async with self._repo() as repo:
                await repo.update_log_filter(guild.id, which, channel.id, add)
            verb = "Added" if add else "Removed"
            direction = "to" if add else "from"
            await self._reply(interaction, f"{verb} {channel.mention} {direction} the {which}.")

    async def _handle_log_settings(self, interaction: discord.Interaction) -> None:
        async with self._guarded(interaction, "log_settings"):
            guild = self._guild(interaction)
            async with self._repo() as repo:
                settings = await repo.get_log_settings(guild.id)
            await self._reply(interaction, embed=build_log_settings_embed(settings))

    async def _log_target(
        self, guild: discord.Guild, channel: discord.abc.GuildChannel
    ) -> discord.TextChannel | None:
        """The log channel to report a change in ``channel`` to, if any."""
        async with self._repo() as repo:
            settings = await repo.get_log_settings(guild.id)
        if settings.log_channel_id is None or settings.log_channel_id == channel.id:
            return None
        public = channel.permissions_for(guild.default_role).read_messages
        if not should_log_channel(settings, channel.id, public):
            return None
        target = guild.get_channel(settings.log_channel_id)
        return target if isinstance(target, discord.TextChannel) else None

    async def on_message_edit(self, before: discord.Message, after: discord.Message) -> None:
        if after.guild is None or after.author.bot or before.content == after.content:
            return
        if not isinstance(after.channel, discord.abc.GuildChannel):
            return
        try:
            target = await self._log_target(after.guild, after.channel)
            if target is None:
                return
            old = split_for_field(before.content, "Before")
            new = split_for_field(after.content, "After")
            embed = build_edit_log_embed(
                author=str(after.author),
                author_id=after.author.id,
                channel_mention=after.channel.mention,
                message_id=after.id,
                jump_url=after.jump_url,
                before=old,
                after=new,
            )
            files = [
                discord.File(io.BytesIO(part.file_text.encode()), filename=part.file_name)
                for part in (old, new)
                if part.file_name and part.file_text is not None
            ]
            await target.send(embed=embed, files=files)
        except (TvMError, SQLAlchemyError, discord.HTTPException):
            logger.exception("message_log_edit_failed guild_id=%d", after.guild.id)

    async def on_message_delete(self, message: discord.Message) -> None:
        if message.guild is None or message.author.bot:
            return
        if not isinstance(message.channel, discord.abc.GuildChannel):
            return
        try:
            target = await self._log_target(message.guild, message.channel)
            if target is None:
                return
            content = split_for_field(message.content, "Deleted")
            embed = build_delete_log_embed(
                author=str(message.author),
                author_id=message.author.id,
                channel_mention=message.channel.mention,
                message_id=message.id,
                content=content,
                attachments=[a.filename for a in message.attachments],
            )
            files = []
            if content.file_name and content.file_text is not None:
                files.append(
                    discord.File(
                        io.BytesIO(content.file_text.encode()), filename=content.file_name
                    )
                )
            await target.send(embed=embed, files=files)
        except (TvMError, SQLAlchemyError, discord.HTTPException):
            logger.exception("message_log_delete_failed guild_id=%d", message.guild.id)


def is_discord_enabled(settings: Settings) -> bool:
    """Check whether Discord integration should be started.

    Returns True only when discord_enabled is True, a token is set, AND the
    environment is not development, so a local server never connects to a
    live guild by accident.
    """
    if settings.tvm_env == "development":
        logger.info("discord_bot_skipped_in_development")
        return False
    return bool(settings.discord_enabled and settings.discord_bot_token)


async def start_discord_bot(settings: Settings, engine: AsyncEngine | None = None) -> TvMBot:
    """Create and start the Discord bot in the current event loop.

    Returns the bot instance so the caller can stop it during shutdown.
    The bot runs as a background task; this function returns immediately
    after starting it.
    """
    bot = TvMBot(settings=settings, engine=engine)

    async def _run_bot() -> None:
        try:
            await bot.start(settings.discord_bot_token)
        except asyncio.CancelledError:
            logger.info("discord_bot_cancelled")
        except Exception:  # Last-resort handler -- bot.start can raise connection and auth errors
            logger.exception("discord_bot_error")
        finally:
            if not bot.is_closed():
                await bot.close()

    bot.runner_task = asyncio.create_task(_run_bot(), name="discord-bot")
    logger.info("discord_bot_started")
    return bot
