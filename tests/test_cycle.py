"""Tests for the cycle state machine, against a fake store and gateway."""

from __future__ import annotations

import pytest

from tvmbot.core.cycle import (
    ALLOWED_TRANSITIONS,
    ChannelAccess,
    ConfirmResult,
    CycleStateMachine,
    Overwrite,
    check_transition,
    cycle_is_day,
    describe_elapsed,
    ensure_night_actions_channel,
    format_duration,
    is_day,
    phase_channel,
    resolve_cycle_number,
)
from tvmbot.core.errors import (
    ConfirmationCancelled,
    ExternalCallFailed,
    LookupFailure,
    PreconditionFailed,
)
from tvmbot.models.cycle import Cycle, CycleState, Phase

PLAYER_ROLE = 500
EVERYONE = 1


class FakeStore:
    def __init__(self, cycle: Cycle | None = None, na_channel_id: int | None = None) -> None:
        self.cycle = cycle or Cycle()
        self.na_channel_id = na_channel_id
        self.na_cleared = 0

    async def read_cycle(self) -> Cycle:
        return self.cycle

    async def write_cycle(self, cycle: Cycle) -> None:
        self.cycle = cycle

    async def clear_night_actions(self) -> None:
        self.na_cleared += 1

    async def read_night_actions_channel(self) -> int | None:
        return self.na_channel_id

    async def write_night_actions_channel(self, channel_id: int) -> None:
        self.na_channel_id = channel_id


class FakeGateway:
    """Records every call; ``fail_on`` names the operation (or channel) that raises."""

    def __init__(self, *, channels: set[int] | None = None, roles: set[int] | None = None) -> None:
        self.calls: list[tuple] = []
        self.channels = channels if channels is not None else set()
        self.roles = roles if roles is not None else {PLAYER_ROLE}
        self.fail_on: set[str] = set()
        # channel name -> (member ids, role ids) granted access
        self.grants: dict[str, tuple[tuple[int, ...], tuple[int, ...]]] = {}
        self._next_id = 100

    def _new_id(self) -> int:
        self._next_id += 1
        self.channels.add(self._next_id)
        return self._next_id

    async def create_category(self, name, access, player_role_id=None):
        self.calls.append(("create_category", name, access, player_role_id))
        if "create_category" in self.fail_on:
            raise ExternalCallFailed("boom")
        return self._new_id()

    async def create_text_channel(
        self, name, *, category_id=None, access=None, members=(), roles=()
    ):
        self.calls.append(("create_text_channel", name, category_id, access))
        self.grants[name] = (tuple(members), tuple(roles))
        if name in self.fail_on:
            raise ExternalCallFailed("boom")
        return self._new_id()

    async def channel_exists(self, channel_id):
        self.calls.append(("channel_exists", channel_id))
        return channel_id in self.channels

    async def role_exists(self, role_id):
        self.calls.append(("role_exists", role_id))
        return role_id in self.roles

    async def remove_role_overwrite(self, channel_id, role_id):
        self.calls.append(("remove_role_overwrite", channel_id, role_id))
        if "remove_role_overwrite" in self.fail_on:
            raise ExternalCallFailed("boom")

    async def clear_overwrites(self, channel_id):
        self.calls.append(("clear_overwrites", channel_id))

    async def send(self, channel_id, content):
        self.calls.append(("send", channel_id, content))
        if "send" in self.fail_on:
            raise ExternalCallFailed("boom")

    def names(self) -> list[str]:
        return [c[0] for c in self.calls]


def answer(result: ConfirmResult):
    prompts: list[str] = []

    async def confirm(prompt: str) -> ConfirmResult:
        prompts.append(prompt)
        return result

    confirm.prompts = prompts  # type: ignore[attr-defined]
    return confirm


def day_cycle(number: int = 3) -> Cycle:
    return Cycle(
        number=number,
        day_channel_id=11,
        votes_channel_id=12,
        night_channel_id=13,
        phase=Phase.DAY,
    )


# ---------------------------------------------------------------------------
# Numbering
# ---------------------------------------------------------------------------


class TestResolveCycleNumber:
    def test_first_cycle(self):
        assert resolve_cycle_number(Cycle(), None) == 1

    def test_next_after_existing(self):
        assert resolve_cycle_number(Cycle(number=4), None) == 5

    def test_explicit_argument_wins(self):
        assert resolve_cycle_number(Cycle(number=4), "2") == 2
        assert resolve_cycle_number(Cycle(number=4), 7) == 7

    def test_non_integer_falls_back(self):
        assert resolve_cycle_number(Cycle(number=4), "next") == 5

    def test_below_one_rejected(self):
        with pytest.raises(PreconditionFailed):
            resolve_cycle_number(Cycle(), "0")


class TestCycleModel:
    def test_not_started(self):
        assert Cycle().state is CycleState.NOT_STARTED

    def test_legacy_blob(self):
        cycle = Cycle.from_blob({"number": 2, "day": 1, "night": 2, "votes": 3})
        assert (cycle.day_channel_id, cycle.night_channel_id, cycle.votes_channel_id) == (1, 2, 3)
        assert cycle.state is CycleState.UNKNOWN

    def test_blob_round_trip(self):
        cycle = day_cycle()
        assert Cycle.from_blob(cycle.to_blob()) == cycle

    def test_label(self):
        assert day_cycle(2).label() == "Day 2"
        assert day_cycle(2).model_copy(update={"phase": Phase.NIGHT}).label() == "Night 2"


# ---------------------------------------------------------------------------
# create_cycle
# ---------------------------------------------------------------------------


class TestCreateCycle:
    async def test_provisions_day(self):
        store, gateway = FakeStore(), FakeGateway()
        confirm = answer(ConfirmResult.CONFIRMED)
        machine = CycleStateMachine(store, gateway, confirm)

        cycle = await machine.create_cycle(None, PLAYER_ROLE)

        assert cycle.number == 1
        assert cycle.state is CycleState.DAY
        assert store.cycle == cycle
        assert store.na_cleared == 1
        category = gateway.calls[1]
        assert category == ("create_category", "Day 1", ChannelAccess.DAY_CATEGORY, PLAYER_ROLE)
        created = [c for c in gateway.calls if c[0] == "create_text_channel"]
        assert [c[1] for c in created] == ["day-1", "day-1-voting", "night-1"]
        assert created[2][3] is ChannelAccess.NIGHT_HIDDEN
        assert "`1`" in confirm.prompts[0]

    async def test_explicit_number(self):
        store = FakeStore(day_cycle(4))
        machine = CycleStateMachine(store, FakeGateway(), answer(ConfirmResult.CONFIRMED))
        cycle = await machine.create_cycle("2", PLAYER_ROLE)
        assert cycle.number == 2

    async def test_requires_player_role(self):
        gateway = FakeGateway()
        machine = CycleStateMachine(FakeStore(), gateway, answer(ConfirmResult.CONFIRMED))
        with pytest.raises(PreconditionFailed, match="Player role"):
            await machine.create_cycle(None, None)
        assert gateway.calls == []

    async def test_declined(self):
        store, gateway = FakeStore(), FakeGateway()
        machine = CycleStateMachine(store, gateway, answer(ConfirmResult.DECLINED))
        with pytest.raises(ConfirmationCancelled) as exc_info:
            await machine.create_cycle(None, PLAYER_ROLE)
        assert exc_info.value.message == "Cancelled cycle creation."
        assert not exc_info.value.timed_out
        assert gateway.calls == []
        assert store.cycle == Cycle()

    async def test_timed_out(self):
        gateway = FakeGateway()
        machine = CycleStateMachine(FakeStore(), gateway, answer(ConfirmResult.TIMED_OUT))
        with pytest.raises(ConfirmationCancelled) as exc_info:
            await machine.create_cycle(None, PLAYER_ROLE)
        assert exc_info.value.message == "No response received. Cancelled cycle creation."
        assert exc_info.value.timed_out
        assert gateway.calls == []

    async def test_deleted_player_role(self):
        gateway = FakeGateway(roles=set())
        machine = CycleStateMachine(FakeStore(), gateway, answer(ConfirmResult.CONFIRMED))
        with pytest.raises(LookupFailure):
            await machine.create_cycle(None, PLAYER_ROLE)
        assert "create_category" not in gateway.names()

    async def test_category_failure_leaves_state(self):
        store, gateway = FakeStore(day_cycle(2)), FakeGateway()
        gateway.fail_on.add("create_category")
        machine = CycleStateMachine(store, gateway, answer(ConfirmResult.CONFIRMED))
        with pytest.raises(ExternalCallFailed, match="unable to create a category"):
            await machine.create_cycle(None, PLAYER_ROLE)
        assert store.cycle == day_cycle(2)
        assert "create_text_channel" not in gateway.names()

    async def test_later_channel_failure_keeps_created_channels(self):
        store, gateway = FakeStore(), FakeGateway()
        gateway.fail_on.add("night-1")
        machine = CycleStateMachine(store, gateway, answer(ConfirmResult.CONFIRMED))
        with pytest.raises(ExternalCallFailed):
            await machine.create_cycle(None, PLAYER_ROLE)
        created = [c[1] for c in gateway.calls if c[0] == "create_text_channel"]
        assert created == ["day-1", "day-1-voting", "night-1"]
        assert store.cycle == Cycle()


# ---------------------------------------------------------------------------
# advance_to_night
# ---------------------------------------------------------------------------


class TestAdvanceToNight:
    async def test_not_started_makes_no_external_calls(self):
        gateway = FakeGateway()
        confirm = answer(ConfirmResult.CONFIRMED)
        machine = CycleStateMachine(FakeStore(), gateway, confirm)
        with pytest.raises(PreconditionFailed, match="hasn't started"):
            await machine.advance_to_night(PLAYER_ROLE)
        assert gateway.calls == []
        assert confirm.prompts == []

    async def test_already_night(self):
        night = day_cycle(2).model_copy(update={"phase": Phase.NIGHT})
        gateway = FakeGateway()
        machine = CycleStateMachine(FakeStore(night), gateway, answer(ConfirmResult.CONFIRMED))
        with pytest.raises(PreconditionFailed, match="already night 2"):
            await machine.advance_to_night(PLAYER_ROLE)
        assert gateway.calls == []

    async def test_opens_night_and_announces(self):
        store = FakeStore(day_cycle(3), na_channel_id=99)
        gateway = FakeGateway(channels={11, 12, 13, 99})
        machine = CycleStateMachine(store, gateway, answer(ConfirmResult.CONFIRMED))

        outcome = await machine.advance_to_night(PLAYER_ROLE)

        assert outcome.announced
        assert outcome.cycle.state is CycleState.NIGHT
        assert store.cycle.phase is Phase.NIGHT
        assert store.na_cleared == 1
        assert ("remove_role_overwrite", 11, PLAYER_ROLE) in gateway.calls
        assert ("remove_role_overwrite", 12, PLAYER_ROLE) in gateway.calls
        assert ("clear_overwrites", 13) in gateway.calls
        assert gateway.calls[-1] == ("send", 99, "**Night 3 begins!**\n\n\n\n\u200b")

    async def test_missing_channel_named(self):
        gateway = FakeGateway(channels={11, 13})
        machine = CycleStateMachine(
            FakeStore(day_cycle()), gateway, answer(ConfirmResult.CONFIRMED)
        )
        with pytest.raises(LookupFailure, match="current votes channel"):
            await machine.advance_to_night(PLAYER_ROLE)
        assert "remove_role_overwrite" not in gateway.names()

    async def test_declined(self):
        store = FakeStore(day_cycle())
        gateway = FakeGateway(channels={11, 12, 13})
        machine = CycleStateMachine(store, gateway, answer(ConfirmResult.DECLINED))
        with pytest.raises(ConfirmationCancelled, match="Cancelled starting of night."):
            await machine.advance_to_night(PLAYER_ROLE)
        assert gateway.calls == []
        assert store.cycle.phase is Phase.DAY

    async def test_permission_failure(self):
        store = FakeStore(day_cycle())
        gateway = FakeGateway(channels={11, 12, 13})
        gateway.fail_on.add("remove_role_overwrite")
        machine = CycleStateMachine(store, gateway, answer(ConfirmResult.CONFIRMED))
        with pytest.raises(ExternalCallFailed, match="change permissions"):
            await machine.advance_to_night(PLAYER_ROLE)
        assert store.cycle.phase is Phase.DAY

    async def test_creates_night_actions_channel(self):
        store = FakeStore(day_cycle())
        gateway = FakeGateway(channels={11, 12, 13})
        machine = CycleStateMachine(store, gateway, answer(ConfirmResult.CONFIRMED))

        outcome = await machine.advance_to_night(PLAYER_ROLE)

        assert outcome.night_actions_channel_id == store.na_channel_id
        assert (
            "create_text_channel",
            "night-actions",
            None,
            ChannelAccess.HOST_ONLY,
        ) in gateway.calls

    async def test_announcement_failure_is_not_rolled_back(self):
        store = FakeStore(day_cycle(), na_channel_id=99)
        gateway = FakeGateway(channels={11, 12, 13, 99})
        gateway.fail_on.add("send")
        machine = CycleStateMachine(store, gateway, answer(ConfirmResult.CONFIRMED))

        outcome = await machine.advance_to_night(PLAYER_ROLE)

        assert not outcome.announced
        assert "night actions channel" in outcome.announcement_error
        assert store.cycle.phase is Phase.NIGHT

    async def test_legacy_cycle_may_advance(self):
        legacy = day_cycle().model_copy(update={"phase": None})
        store = FakeStore(legacy, na_channel_id=99)
        gateway = FakeGateway(channels={11, 12, 13, 99})
        machine = CycleStateMachine(store, gateway, answer(ConfirmResult.CONFIRMED))
        outcome = await machine.advance_to_night(PLAYER_ROLE)
        assert outcome.cycle.phase is Phase.NIGHT

    async def test_current_voting_channel(self):
        machine = CycleStateMachine(
            FakeStore(day_cycle()), FakeGateway(), answer(ConfirmResult.CONFIRMED)
        )
        assert await machine.current_voting_channel() == 12


class TestEnsureNightActionsChannel:
    async def test_reuses_existing(self):
        store = FakeStore(na_channel_id=99)
        gateway = FakeGateway(channels={99})
        assert await ensure_night_actions_channel(store, gateway) == 99
        assert "create_text_channel" not in gateway.names()

    async def test_recreates_deleted(self):
        store = FakeStore(na_channel_id=99)
        gateway = FakeGateway()
        channel_id = await ensure_night_actions_channel(store, gateway)
        assert channel_id != 99
        assert store.na_channel_id == channel_id

    async def test_creation_failure(self):
        gateway = FakeGateway()
        gateway.fail_on.add("night-actions")
        with pytest.raises(ExternalCallFailed, match="night actions"):
            await ensure_night_actions_channel(FakeStore(), gateway)


# ---------------------------------------------------------------------------
# Phase read-back and /timesince helpers
# ---------------------------------------------------------------------------


class TestIsDay:
    def test_player_role_may_send(self):
        overwrites = [Overwrite(PLAYER_ROLE, is_role=True, send_messages=True)]
        assert is_day(overwrites, PLAYER_ROLE, EVERYONE)

    def test_everyone_may_send(self):
        overwrites = [Overwrite(EVERYONE, is_role=True, send_messages=True)]
        assert is_day(overwrites, PLAYER_ROLE, EVERYONE)

    def test_closed(self):
        overwrites = [
            Overwrite(EVERYONE, is_role=True, send_messages=False),
            Overwrite(PLAYER_ROLE, is_role=False, send_messages=True),
        ]
        assert not is_day(overwrites, PLAYER_ROLE, EVERYONE)

    def test_stored_phase_wins(self):
        night = day_cycle().model_copy(update={"phase": Phase.NIGHT})
        assert cycle_is_day(night, derived=True) is False
        legacy = day_cycle().model_copy(update={"phase": None})
        assert cycle_is_day(legacy, derived=True) is True

    def test_phase_channel(self):
        assert phase_channel(day_cycle(3), True) == ("Day 3", 11)
        assert phase_channel(day_cycle(3), False) == ("Night 3", 13)


class TestFormatDuration:
    def test_under_a_minute(self):
        assert format_duration(59) == ""
        assert describe_elapsed("Day 1", 10) == "Day 1 began a few seconds ago."

    def test_hours_and_minutes(self):
        assert format_duration(2 * 3600 + 5 * 60 + 9) == "2 hours, 5 minutes"

    def test_singular(self):
        assert format_duration(86400 + 3600 + 60) == "1 day, 1 hour, 1 minute"

    def test_describe(self):
        assert describe_elapsed("Night 2", 3 * 86400) == "Night 2 began about 3 days ago."


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------


class TestTransitions:
    @pytest.mark.parametrize(
        "state_cycle", [Cycle(), day_cycle(), Cycle(number=2, phase=Phase.NIGHT)]
    )
    def test_new_day_always_allowed(self, state_cycle: Cycle):
        check_transition(state_cycle, Phase.DAY)

    def test_night_only_from_day_or_unknown(self):
        check_transition(day_cycle(), Phase.NIGHT)
        check_transition(Cycle(number=2), Phase.NIGHT)
        with pytest.raises(PreconditionFailed, match="hasn't started"):
            check_transition(Cycle(), Phase.NIGHT)
        with pytest.raises(PreconditionFailed, match="already night 2"):
            check_transition(Cycle(number=2, phase=Phase.NIGHT), Phase.NIGHT)

    async def test_create_cycle_consults_table(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setitem(ALLOWED_TRANSITIONS, CycleState.DAY, {Phase.NIGHT})
        gateway = FakeGateway()
        confirm = answer(ConfirmResult.CONFIRMED)
        machine = CycleStateMachine(FakeStore(day_cycle()), gateway, confirm)

        with pytest.raises(PreconditionFailed, match="from day to day"):
            await machine.create_cycle(None, PLAYER_ROLE)
        assert gateway.calls == []
        assert confirm.prompts == []
