"""Sign-up and night-action rules.

Pure checks over a guild's GameConfig. Each raises PreconditionFailed with
the message the user sees; the Discord handlers do the role changes.
"""

from __future__ import annotations

from collections.abc import Iterable

from tvmbot.core.cycle import Overwrite
from tvmbot.core.errors import PreconditionFailed
from tvmbot.models.config import GameConfig, RoleKind

# Sign-up command -> role it grants. The other two sign-up roles are removed.
SIGNUP_ROLES: tuple[RoleKind, ...] = (RoleKind.PLAYER, RoleKind.SPECTATOR, RoleKind.REPLACEMENT)


def check_signups_open(config: GameConfig, channel_id: int) -> None:
    if config.cycle.started:
        raise PreconditionFailed("You can't do that now. The game has started.")
    if not config.signups_on:
        raise PreconditionFailed("Sign-ups are closed.")
    if config.signups_channel_id is None:
        raise PreconditionFailed("Sign-ups channel has not been set up.")
    if channel_id != config.signups_channel_id:
        raise PreconditionFailed("This command can only be used in the sign-ups channel.")


def check_capacity(config: GameConfig) -> None:
    if config.total_signups >= config.total_players:
        raise PreconditionFailed("Maximum allowed players already signed up.")


def signup_role_changes(kind: RoleKind) -> tuple[RoleKind, tuple[RoleKind, ...]]:
    """Return ``(role to add, roles to remove)`` for a sign-up command."""
    if kind not in SIGNUP_ROLES:
        raise ValueError(f"{kind} is not a sign-up role")
    return kind, tuple(r for r in SIGNUP_ROLES if r is not kind)


def check_night_action(config: GameConfig, user_id: int, in_private_channel: bool) -> bool:
    """Validate a night-action submission.

    Returns True when this replaces an earlier submission.
    """
    if not in_private_channel:
        raise PreconditionFailed(
            "This doesn't look like your private channel. "
            "This command can only be used in your private channel."
        )
    resubmission = user_id in config.na_submitted
    if resubmission and not config.can_change_na:
        raise PreconditionFailed("You've already submitted a night action.")
    return resubmission


def format_night_action(name: str, action: str, updated: bool) -> str:
    title = f"{name}'s Night Action"
    if updated:
        title += " (Updated)"
    return f"**{title}**\n{action}"


def member_can_send(overwrites: Iterable[Overwrite], user_id: int) -> bool:
    """True when a channel carries a member overwrite letting ``user_id`` send.

    Private channels are recognised this way.
    """
    return any(
        not ow.is_role and ow.target_id == user_id and ow.send_messages is True
        for ow in overwrites
    )
