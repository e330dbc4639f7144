"""Tests for private chat provisioning and role randomisation."""

from __future__ import annotations

import random

import pytest

from tvmbot.core.chats import (
    DEFAULT_CHATS_CATEGORY,
    MAFIA_CHAT_NAME,
    SPECTATOR_CHAT_NAME,
    create_mafia_chat,
    create_player_chats,
    create_spectator_chat,
    format_assignments,
    parse_role_list,
    private_channel_name,
    randomize_roles,
)
from tvmbot.core.cycle import ChannelAccess, ConfirmResult
from tvmbot.core.errors import ConfirmationCancelled, ExternalCallFailed, PreconditionFailed

HOST_ROLE = 10
SPEC_ROLE = 30


class ChannelRecorder:
    """Gateway double that only creates channels. ``fail_on`` names what raises."""

    def __init__(self) -> None:
        self.categories: list[tuple[str, ChannelAccess]] = []
        self.channels: list[dict] = []
        self.fail_on: set[str] = set()
        self._next_id = 700

    async def create_category(self, name, access, player_role_id=None):
        if "category" in self.fail_on:
            raise ExternalCallFailed("boom")
        self._next_id += 1
        self.categories.append((name, access))
        return self._next_id

    async def create_text_channel(
        self, name, *, category_id=None, access=None, members=(), roles=()
    ):
        if name in self.fail_on:
            raise ExternalCallFailed("boom")
        self._next_id += 1
        self.channels.append(
            {
                "id": self._next_id,
                "name": name,
                "category_id": category_id,
                "access": access,
                "members": list(members),
                "roles": list(roles),
            }
        )
        return self._next_id


def answer(result: ConfirmResult):
    async def confirm(prompt: str) -> ConfirmResult:
        return result

    return confirm


PLAYERS = {1: "Arius", 2: "Ligi", 3: "Craw Daddy"}


class TestPrivateChannelName:
    def test_lowercases_and_dashes(self):
        assert private_channel_name("Craw Daddy") == "craw-daddy"

    def test_strips_symbols(self):
        assert private_channel_name("  ~Ligi!! ") == "ligi"

    def test_never_empty(self):
        assert private_channel_name("!!!") == "player"


class TestPlayerChats:
    async def test_one_private_channel_per_player(self):
        gateway = ChannelRecorder()
        chats = await create_player_chats(
            gateway, answer(ConfirmResult.CONFIRMED), PLAYERS, HOST_ROLE
        )

        assert gateway.categories == [(DEFAULT_CHATS_CATEGORY, ChannelAccess.HOST_ONLY)]
        assert [c["name"] for c in gateway.channels] == ["arius", "ligi", "craw-daddy"]
        for player_id, channel in zip(PLAYERS, gateway.channels, strict=True):
            assert channel["access"] is ChannelAccess.PRIVATE
            assert channel["category_id"] == chats.category_id
            assert channel["members"] == [player_id]
            assert channel["roles"] == [HOST_ROLE]
        assert chats.channel_ids == {1: 702, 2: 703, 3: 704}

    async def test_custom_category_without_host_role(self):
        gateway = ChannelRecorder()
        await create_player_chats(
            gateway, answer(ConfirmResult.CONFIRMED), PLAYERS, None, "Secret Chats"
        )
        assert gateway.categories[0][0] == "Secret Chats"
        assert all(c["roles"] == [] for c in gateway.channels)

    async def test_declined_creates_nothing(self):
        gateway = ChannelRecorder()
        with pytest.raises(ConfirmationCancelled, match="Cancelled player chats creation."):
            await create_player_chats(gateway, answer(ConfirmResult.DECLINED), PLAYERS, None)
        assert gateway.categories == []
        assert gateway.channels == []

    async def test_timed_out(self):
        with pytest.raises(ConfirmationCancelled) as exc_info:
            await create_player_chats(
                ChannelRecorder(), answer(ConfirmResult.TIMED_OUT), PLAYERS, None
            )
        assert exc_info.value.timed_out

    async def test_no_players(self):
        gateway = ChannelRecorder()
        with pytest.raises(PreconditionFailed, match="Nobody has the Player role"):
            await create_player_chats(gateway, answer(ConfirmResult.CONFIRMED), {}, None)
        assert gateway.categories == []

    async def test_category_failure(self):
        gateway = ChannelRecorder()
        gateway.fail_on.add("category")
        with pytest.raises(ExternalCallFailed, match="Could not create a category."):
            await create_player_chats(gateway, answer(ConfirmResult.CONFIRMED), PLAYERS, None)
        assert gateway.channels == []

    async def test_channel_failure_keeps_earlier_channels(self):
        gateway = ChannelRecorder()
        gateway.fail_on.add("ligi")
        with pytest.raises(ExternalCallFailed, match="check my permissions"):
            await create_player_chats(gateway, answer(ConfirmResult.CONFIRMED), PLAYERS, None)
        assert [c["name"] for c in gateway.channels] == ["arius"]


class TestSpectatorAndMafiaChats:
    async def test_spectator_chat(self):
        gateway = ChannelRecorder()
        await create_spectator_chat(gateway, SPEC_ROLE)
        (channel,) = gateway.channels
        assert channel["name"] == SPECTATOR_CHAT_NAME
        assert channel["access"] is ChannelAccess.PRIVATE
        assert channel["roles"] == [SPEC_ROLE]
        assert channel["members"] == []

    async def test_spectator_chat_failure(self):
        gateway = ChannelRecorder()
        gateway.fail_on.add(SPECTATOR_CHAT_NAME)
        with pytest.raises(ExternalCallFailed, match="unable to create a channel"):
            await create_spectator_chat(gateway, SPEC_ROLE)

    async def test_mafia_chat_dedupes_members(self):
        gateway = ChannelRecorder()
        await create_mafia_chat(gateway, [5, 6, 5], HOST_ROLE)
        (channel,) = gateway.channels
        assert channel["name"] == MAFIA_CHAT_NAME
        assert channel["members"] == [5, 6]
        assert channel["roles"] == [HOST_ROLE]

    async def test_mafia_chat_needs_members(self):
        with pytest.raises(PreconditionFailed):
            await create_mafia_chat(ChannelRecorder(), [], None)


class TestRandomizeRoles:
    def test_parse_role_list(self):
        assert parse_role_list(" doctor, mafioso,, jailor ,") == ["doctor", "mafioso", "jailor"]

    def test_every_role_dealt_once(self):
        roles = ["doctor", "mafioso", "mafioso"]
        assignments = randomize_roles(["Arius", "Craw", "Ligi"], roles, random.Random(7))
        assert [name for name, _ in assignments] == ["Arius", "Craw", "Ligi"]
        assert sorted(role for _, role in assignments) == sorted(roles)

    def test_seeded_deal_is_reproducible(self):
        players, roles = ["Arius", "Craw", "Ligi"], ["a", "b", "c"]
        first = randomize_roles(players, roles, random.Random(3))
        assert randomize_roles(players, roles, random.Random(3)) == first

    def test_count_mismatch(self):
        with pytest.raises(PreconditionFailed, match="not equal to number of roles"):
            randomize_roles(["Arius", "Ligi"], ["doctor"])

    def test_no_roles(self):
        with pytest.raises(PreconditionFailed):
            randomize_roles([], [])

    def test_format(self):
        text = format_assignments([("Arius", "jailor"), ("Ligi", "mafioso")])
        assert text == "Arius: jailor\nLigi: mafioso"
