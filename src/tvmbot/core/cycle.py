"""Cycle state machine: provisioning a day and opening the night.

Game states:
    NOT_STARTED -> DAY (create_cycle)
    DAY -> NIGHT (advance_to_night)
    DAY | NIGHT -> DAY (create_cycle for the next number)

The phase is stored on the Cycle itself. Channel permission changes are
effects of a transition and are never read back to decide the state,
except for cycles persisted before the phase field existed (see is_day).

The machine talks to Discord only through ``GuildGateway`` and to the
database only through ``CycleStore``, so both can be faked in tests.
Every external mutation happens strictly after the yes/no confirmation.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from enum import StrEnum
from typing import Protocol

from tvmbot.core.errors import (
    ConfirmationCancelled,
    ExternalCallFailed,
    LookupFailure,
    PreconditionFailed,
)
from tvmbot.models.cycle import Cycle, CycleState, Phase

logger = logging.getLogger(__name__)

NIGHT_ACTIONS_CHANNEL_NAME = "night-actions"


class ChannelAccess(StrEnum):
    """Permission presets the gateway knows how to build."""

    # Everyone reads and reacts, players send (no attachments), bot sends embeds.
    DAY_CATEGORY = "day_category"
    # Hidden from everyone; the bot can read and send.
    NIGHT_HIDDEN = "night_hidden"
    # Hidden from everyone; the bot can read, send and react.
    HOST_ONLY = "host_only"
    # Everyone reads, nobody but the bot sends.
    READ_ONLY = "read_only"
    # Hidden from everyone; the listed members and roles read, send and attach.
    PRIVATE = "private"


class ConfirmResult(StrEnum):
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    TIMED_OUT = "timed_out"


# prompt -> answer; the Discord layer implements this with a button view.
Confirm = Callable[[str], Awaitable[ConfirmResult]]


class GuildGateway(Protocol):
    """Channel and permission operations for one guild.

    Implementations raise ``ExternalCallFailed`` when the platform refuses
    or fails a call.
    """

    async def create_category(
        self, name: str, access: ChannelAccess, player_role_id: int | None = None
    ) -> int: ...

    async def create_text_channel(
        self,
        name: str,
        *,
        category_id: int | None = None,
        access: ChannelAccess | None = None,
        members: Sequence[int] = (),
        roles: Sequence[int] = (),
    ) -> int: ...

    async def channel_exists(self, channel_id: int | None) -> bool: ...

    async def role_exists(self, role_id: int | None) -> bool: ...

    async def remove_role_overwrite(self, channel_id: int, role_id: int) -> None: ...

    async def clear_overwrites(self, channel_id: int) -> None: ...

    async def send(self, channel_id: int, content: str) -> None: ...


class CycleStore(Protocol):
    """Persistence for one guild's cycle and night-action bookkeeping."""

    async def read_cycle(self) -> Cycle: ...

    async def write_cycle(self, cycle: Cycle) -> None: ...

    async def clear_night_actions(self) -> None: ...

    async def read_night_actions_channel(self) -> int | None: ...

    async def write_night_actions_channel(self, channel_id: int) -> None: ...


# Phase each state may move into. Both create_cycle (-> DAY) and
# advance_to_night (-> NIGHT) check this before asking for confirmation.
ALLOWED_TRANSITIONS: dict[CycleState, set[Phase]] = {
    CycleState.NOT_STARTED: {Phase.DAY},
    CycleState.DAY: {Phase.DAY, Phase.NIGHT},
    CycleState.NIGHT: {Phase.DAY},
    CycleState.UNKNOWN: {Phase.DAY, Phase.NIGHT},
}


def check_transition(cycle: Cycle, target: Phase) -> None:
    state = cycle.state
    if target in ALLOWED_TRANSITIONS[state]:
        return
    if state is CycleState.NOT_STARTED:
        raise PreconditionFailed(
            "The game hasn't started yet. Create a cycle first with `/cycle`."
        )
    if state is CycleState.NIGHT and target is Phase.NIGHT:
        raise PreconditionFailed(f"It is already night {cycle.number}.")
    raise PreconditionFailed(f"Can't move from {state.value} to {target.value}.")


async def require_confirmation(confirm: Confirm, prompt: str, cancelled: str) -> None:
    """Ask ``prompt``; raise ConfirmationCancelled unless the answer is yes."""
    result = await confirm(prompt)
    if result is ConfirmResult.CONFIRMED:
        return
    if result is ConfirmResult.TIMED_OUT:
        raise ConfirmationCancelled(f"No response received. {cancelled}", timed_out=True)
    raise ConfirmationCancelled(cancelled)


def resolve_cycle_number(previous: Cycle, requested: str | int | None) -> int:
    """Number for the next cycle.

    An integer argument wins. Anything that isn't an integer (including
    nothing at all) means "the one after the current cycle".
    """
    number: int | None
    if isinstance(requested, int):
        number = requested
    else:
        try:
            number = int(str(requested).strip()) if requested is not None else None
        except ValueError:
            number = None

    if number is None:
        return previous.number + 1
    if number < 1:
        raise PreconditionFailed("Cycle number must be at least 1.")
    return number


@dataclasses.dataclass(frozen=True)
class NightOutcome:
    """Result of advance_to_night.

    The permission changes are applied whenever an outcome is returned.
    ``announcement_error`` is set when the night-actions message could not
    be posted; nothing is rolled back in that case.
    """

    cycle: Cycle
    night_actions_channel_id: int | None = None
    announcement_error: str | None = None

    @property
    def announced(self) -> bool:
        return self.announcement_error is None


async def ensure_night_actions_channel(store: CycleStore, gateway: GuildGateway) -> int:
    """Return the night-actions channel, creating a host-only one if missing."""
    channel_id = await store.read_night_actions_channel()
    if channel_id is not None and await gateway.channel_exists(channel_id):
        return channel_id

    try:
        channel_id = await gateway.create_text_channel(
            NIGHT_ACTIONS_CHANNEL_NAME, access=ChannelAccess.HOST_ONLY
        )
    except ExternalCallFailed as exc:
        raise ExternalCallFailed("Unable to create a channel for night actions.") from exc

    await store.write_night_actions_channel(channel_id)
    logger.info("night_actions_channel_created id=%d", channel_id)
    return channel_id


class CycleStateMachine:
    """Drives one guild's game through its day/night cycles."""

    def __init__(self, store: CycleStore, gateway: GuildGateway, confirm: Confirm) -> None:
        self.store = store
        self.gateway = gateway
        self.confirm = confirm

    async def current_voting_channel(self) -> int | None:
        """Default channel for vote counts and vote history."""
        cycle = await self.store.read_cycle()
        return cycle.votes_channel_id

    async def create_cycle(self, requested: str | int | None, player_role_id: int | None) -> Cycle:
        """Provision the ``Day n`` category with its day, voting and night channels.

        A failure creating the category leaves everything unchanged. A
        failure on a later channel propagates and leaves the channels made
        so far in place; the stored cycle is only replaced once all three
        exist.
        """
        previous = await self.store.read_cycle()
        number = resolve_cycle_number(previous, requested)
        check_transition(previous, Phase.DAY)
        if player_role_id is None:
            raise PreconditionFailed("Player role hasn't been set up. Use `/tvm role`.")

        await require_confirmation(
            self.confirm,
            f"Are you sure you want to create cycle `{number}` channels? Make sure you "
            "have the day text ready. Users will be able to talk in the day and vote "
            "channels as soon as they are created.",
            "Cancelled cycle creation.",
        )

        if not await self.gateway.role_exists(player_role_id):
            raise LookupFailure("Player role doesn't exist or is invalid now.")

        try:
            category_id = await self.gateway.create_category(
                f"Day {number}", ChannelAccess.DAY_CATEGORY, player_role_id
            )
        except ExternalCallFailed as exc:
            raise ExternalCallFailed("I'm unable to create a category.") from exc

        day_id = await self.gateway.create_text_channel(f"day-{number}", category_id=category_id)
        votes_id = await self.gateway.create_text_channel(
            f"day-{number}-voting", category_id=category_id
        )
        night_id = await self.gateway.create_text_channel(
            f"night-{number}", category_id=category_id, access=ChannelAccess.NIGHT_HIDDEN
        )

        cycle = Cycle(
            number=number,
            day_channel_id=day_id,
            votes_channel_id=votes_id,
            night_channel_id=night_id,
            phase=Phase.DAY,
        )
        await self.store.write_cycle(cycle)
        await self.store.clear_night_actions()
        logger.info(
            "cycle_created number=%d previous=%d day=%d votes=%d night=%d",
            number,
            previous.number,
            day_id,
            votes_id,
            night_id,
        )
        return cycle

    async def advance_to_night(self, player_role_id: int | None) -> NightOutcome:
        """Close the day channels to players and open the night channel.

        Preconditions are checked before any external call is made.
        """
        cycle = await self.store.read_cycle()
        check_transition(cycle, Phase.NIGHT)
        if player_role_id is None:
            raise PreconditionFailed("Player role hasn't been set up. Use `/tvm role`.")

        await require_confirmation(
            self.confirm,
            f"Are you sure you want to start night `{cycle.number}`? Make sure you have "
            "already posted the night-starting text. Users will be able to talk in the "
            "night channel as soon as the channel is opened.",
            "Cancelled starting of night.",
        )

        for channel_id, label in (
            (cycle.day_channel_id, "day"),
            (cycle.votes_channel_id, "votes"),
            (cycle.night_channel_id, "night"),
        ):
            if not await self.gateway.channel_exists(channel_id):
                raise LookupFailure(f"I couldn't get the current {label} channel.")

        if not await self.gateway.role_exists(player_role_id):
            raise LookupFailure("Player role doesn't exist or is invalid now.")

        try:
            await self.gateway.remove_role_overwrite(cycle.day_channel_id, player_role_id)
            await self.gateway.remove_role_overwrite(cycle.votes_channel_id, player_role_id)
            await self.gateway.clear_overwrites(cycle.night_channel_id)
        except ExternalCallFailed as exc:
            raise ExternalCallFailed("I couldn't change permissions for the channels.") from exc

        night = cycle.model_copy(update={"phase": Phase.NIGHT})
        await self.store.write_cycle(night)
        await self.store.clear_night_actions()
        logger.info("night_started number=%d", night.number)

        try:
            na_channel_id = await ensure_night_actions_channel(self.store, self.gateway)
        except ExternalCallFailed as exc:
            logger.warning("night_announcement_failed number=%d reason=%s", night.number, exc)
            return NightOutcome(night, announcement_error=exc.message)

        try:
            await self.gateway.send(
                na_channel_id, f"**Night {night.number} begins!**\n\n\n\n\u200b"
            )
        except ExternalCallFailed:
            logger.warning(
                "night_announcement_failed number=%d channel=%d", night.number, na_channel_id
            )
            return NightOutcome(
                night,
                night_actions_channel_id=na_channel_id,
                announcement_error="I couldn't send a message in the night actions channel.",
            )
        return NightOutcome(night, night_actions_channel_id=na_channel_id)


# ---------------------------------------------------------------------------
# Reading the phase back (legacy cycles) and /timesince
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True)
class Overwrite:
    """Platform-neutral view of one channel permission overwrite.

    ``send_messages`` is True when explicitly allowed, False when denied,
    None when left to inherit.
    """

    target_id: int
    is_role: bool
    send_messages: bool | None = None


def is_day(
    overwrites: Iterable[Overwrite], player_role_id: int | None, everyone_role_id: int
) -> bool:
    """True when the day channel lets players (or everyone) send messages.

    Only used for cycles stored without a phase.
    """
    for ow in overwrites:
        if not ow.is_role or ow.send_messages is not True:
            continue
        if ow.target_id == player_role_id or ow.target_id == everyone_role_id:
            return True
    return False


def cycle_is_day(cycle: Cycle, derived: bool | None = None) -> bool:
    """The stored phase when known, otherwise the permission-derived answer."""
    if cycle.phase is not None:
        return cycle.phase is Phase.DAY
    return bool(derived)


def phase_channel(cycle: Cycle, day: bool) -> tuple[str, int | None]:
    """Label and channel for the half of the cycle that is currently open."""
    if day:
        return f"Day {cycle.number}", cycle.day_channel_id
    return f"Night {cycle.number}", cycle.night_channel_id


_PERIODS = (
    ("day", "days", 60 * 60 * 24),
    ("hour", "hours", 60 * 60),
    ("minute", "minutes", 60),
)


def format_duration(total_seconds: float) -> str:
    """Humanize a duration in days, hours and minutes.

    Returns an empty string for anything under a minute.
    """
    remaining = int(total_seconds)
    parts = []
    for name, plural, seconds in _PERIODS:
        if remaining < seconds:
            continue
        value, remaining = divmod(remaining, seconds)
        parts.append(f"{value} {plural if value > 1 else name}")
    return ", ".join(parts)


def describe_elapsed(label: str, total_seconds: float) -> str:
    duration = format_duration(total_seconds)
    if not duration:
        return f"{label} began a few seconds ago."
    return f"{label} began about {duration} ago."
