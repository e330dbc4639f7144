"""Cycle models: one day/night round of the game and its channels."""

from __future__ import annotations

from enum import StrEnum

from pydantic import AliasChoices, BaseModel, Field


class Phase(StrEnum):
    """Which half of the cycle is currently open for talking."""

    DAY = "day"
    NIGHT = "night"


class CycleState(StrEnum):
    """Derived game state.

    ``NOT_STARTED`` while the cycle number is 0; otherwise mirrors the phase.
    ``UNKNOWN`` only appears for cycles persisted before the phase was stored.
    """

    NOT_STARTED = "not_started"
    DAY = "day"
    NIGHT = "night"
    UNKNOWN = "unknown"


class Cycle(BaseModel):
    """The active cycle of a guild's game.

    Replaced wholesale every time a new cycle is provisioned. Each channel
    id is independently optional: provisioning may have failed part-way.
    Older blobs used the keys ``day``/``night``/``votes`` and carried no
    phase; both are still accepted.
    """

    model_config = {"frozen": True, "populate_by_name": True}

    number: int = Field(default=0, ge=0)
    day_channel_id: int | None = Field(
        default=None, validation_alias=AliasChoices("day_channel_id", "day")
    )
    night_channel_id: int | None = Field(
        default=None, validation_alias=AliasChoices("night_channel_id", "night")
    )
    votes_channel_id: int | None = Field(
        default=None, validation_alias=AliasChoices("votes_channel_id", "votes")
    )
    phase: Phase | None = None

    @property
    def started(self) -> bool:
        return self.number > 0

    @property
    def state(self) -> CycleState:
        if not self.started:
            return CycleState.NOT_STARTED
        if self.phase is None:
            return CycleState.UNKNOWN
        return CycleState(self.phase.value)

    def label(self, is_day: bool | None = None) -> str:
        """Human label such as ``Day 3`` or ``Night 3``.

        ``is_day`` overrides the stored phase (used for legacy cycles).
        """
        if is_day is None:
            is_day = self.phase is not Phase.NIGHT
        return f"{'Day' if is_day else 'Night'} {self.number}"

    @classmethod
    def from_blob(cls, blob: dict | None) -> Cycle:
        """Load a persisted cycle, treating a missing blob as "not started"."""
        if not blob:
            return cls()
        return cls.model_validate(blob)

    def to_blob(self) -> dict:
        return self.model_dump(mode="json")
