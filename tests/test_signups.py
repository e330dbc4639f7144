"""Tests for sign-up, night-action and message-log rules."""

import pytest

from tvmbot.core.audit import FIELD_LIMIT, should_log_channel, split_for_field
from tvmbot.core.cycle import Overwrite
from tvmbot.core.errors import PreconditionFailed
from tvmbot.core.signups import (
    check_capacity,
    check_night_action,
    check_signups_open,
    format_night_action,
    member_can_send,
    signup_role_changes,
)
from tvmbot.models.config import GameConfig, LogSettings, RoleKind
from tvmbot.models.cycle import Cycle

SIGNUPS = 77


def make_config(**overrides) -> GameConfig:
    values = {"guild_id": 1, "signups_channel_id": SIGNUPS}
    values.update(overrides)
    return GameConfig(**values)


class TestSignupsOpen:
    def test_open(self):
        check_signups_open(make_config(), SIGNUPS)

    def test_game_started(self):
        with pytest.raises(PreconditionFailed, match="The game has started"):
            check_signups_open(make_config(cycle=Cycle(number=1)), SIGNUPS)

    def test_closed(self):
        with pytest.raises(PreconditionFailed, match="Sign-ups are closed"):
            check_signups_open(make_config(signups_on=False), SIGNUPS)

    def test_no_channel(self):
        with pytest.raises(PreconditionFailed, match="has not been set up"):
            check_signups_open(make_config(signups_channel_id=None), SIGNUPS)

    def test_wrong_channel(self):
        with pytest.raises(PreconditionFailed, match="only be used in the sign-ups channel"):
            check_signups_open(make_config(), 5)


class TestCapacity:
    def test_room_left(self):
        check_capacity(make_config(total_players=2, total_signups=1))

    def test_full(self):
        with pytest.raises(PreconditionFailed, match="Maximum allowed players"):
            check_capacity(make_config(total_players=2, total_signups=2))

    def test_zero_cap(self):
        with pytest.raises(PreconditionFailed):
            check_capacity(make_config(total_players=0))


class TestSignupRoleChanges:
    def test_player(self):
        add, remove = signup_role_changes(RoleKind.PLAYER)
        assert add is RoleKind.PLAYER
        assert remove == (RoleKind.SPECTATOR, RoleKind.REPLACEMENT)

    def test_not_a_signup_role(self):
        with pytest.raises(ValueError):
            signup_role_changes(RoleKind.HOST)


class TestNightAction:
    def test_first_submission(self):
        assert check_night_action(make_config(), 9, in_private_channel=True) is False

    def test_resubmission_allowed(self):
        assert check_night_action(make_config(na_submitted=[9]), 9, True) is True

    def test_resubmission_forbidden(self):
        config = make_config(na_submitted=[9], can_change_na=False)
        with pytest.raises(PreconditionFailed, match="already submitted"):
            check_night_action(config, 9, True)

    def test_public_channel(self):
        with pytest.raises(PreconditionFailed, match="private channel"):
            check_night_action(make_config(), 9, in_private_channel=False)

    def test_format(self):
        assert format_night_action("Ligi", "Visit Arius", False) == (
            "**Ligi's Night Action**\nVisit Arius"
        )
        assert format_night_action("Ligi", "Kill", True).startswith(
            "**Ligi's Night Action (Updated)**"
        )

    def test_member_can_send(self):
        overwrites = [
            Overwrite(9, is_role=True, send_messages=True),
            Overwrite(10, is_role=False, send_messages=True),
        ]
        assert member_can_send(overwrites, 10)
        assert not member_can_send(overwrites, 9)


class TestShouldLogChannel:
    settings = LogSettings(guild_id=1, whitelist_channel_ids=[5], blacklist_channel_ids=[6])

    def test_whitelist_beats_privacy(self):
        assert should_log_channel(self.settings, 5, everyone_can_read=False)

    def test_blacklist_beats_public(self):
        assert not should_log_channel(self.settings, 6, everyone_can_read=True)

    def test_public_by_default(self):
        assert should_log_channel(self.settings, 7, everyone_can_read=True)
        assert not should_log_channel(self.settings, 7, everyone_can_read=False)


class TestSplitForField:
    def test_short(self):
        part = split_for_field("hello", "Before")
        assert part.field_name == "Before Content"
        assert part.field_value == "hello"
        assert part.file_name is None

    def test_empty(self):
        assert split_for_field("", "Deleted").field_value == "*No text content*"

    def test_long_is_attached(self):
        content = "x" * (FIELD_LIMIT + 1)
        part = split_for_field(content, "After")
        assert part.field_value.endswith("Full message attached below.")
        assert len(part.field_value) <= FIELD_LIMIT
        assert part.file_name == "after.txt"
        assert part.file_text == content
