"""Vote models: parsed directives, ledger entries and ranked buckets.

VoteAction is a closed variant: ``Vote(target)``, ``Unvote(target)`` or
``Abstain()``. Equality is by variant + target, so actions can be used
directly as bucket keys. A ledger value of ``None`` means "no vote".
"""

from __future__ import annotations

import dataclasses
from datetime import datetime

VoterId = int


@dataclasses.dataclass(frozen=True)
class Vote:
    """VTL, vote to lynch ``target`` (already capitalised)."""

    target: str

    def describe(self) -> str:
        return f"VTL {self.target}"


@dataclasses.dataclass(frozen=True)
class Unvote:
    """UNVTL, retract a vote. ``target`` may be empty."""

    target: str = ""

    def describe(self) -> str:
        return f"UnVTL {self.target}".rstrip()


@dataclasses.dataclass(frozen=True)
class Abstain:
    """VTNL, vote to not lynch anyone."""

    def describe(self) -> str:
        return "VTNL"


VoteAction = Vote | Unvote | Abstain

# voter -> current action, None meaning "explicitly no vote"
Ledger = dict[VoterId, VoteAction | None]


@dataclasses.dataclass(frozen=True)
class ChatMessage:
    """A single message read from a voting channel, with mentions cleaned."""

    author_id: VoterId
    text: str
    created_at: datetime | None = None


@dataclasses.dataclass(frozen=True)
class VoteBucket:
    """Voters sharing the same current action.

    ``key`` is None for the "not voting" bucket.
    """

    key: VoteAction | None
    voters: tuple[VoterId, ...]

    @property
    def count(self) -> int:
        return len(self.voters)


@dataclasses.dataclass(frozen=True)
class VoteCount:
    """Ranked result of a vote count, ready for rendering."""

    channel_id: int | None
    buckets: tuple[VoteBucket, ...]
    ledger: Ledger = dataclasses.field(default_factory=dict)

    @property
    def total_voters(self) -> int:
        return sum(b.count for b in self.buckets)


@dataclasses.dataclass(frozen=True)
class HistoryEntry:
    """One directive from a voter's vote history."""

    action: VoteAction
    created_at: datetime | None = None
