"""Vote counting: parse chat directives, replay them into a ledger, rank the result.

Pipeline for one count:

    messages (newest-first, from Discord)
        -> reversed to oldest-first
        -> parse_vote() per message of an active voter
        -> build_ledger(): latest directive per voter wins, Unvote clears
        -> non-voters filled in as None ("not voting")
        -> aggregate_votes(): buckets by count desc, VTNL then Not voting last

Everything here is synchronous and side-effect free; the Discord layer
fetches history and resolves names.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime

from tvmbot.core.errors import LookupFailure, PreconditionFailed
from tvmbot.models.cycle import Cycle
from tvmbot.models.votes import (
    Abstain,
    ChatMessage,
    HistoryEntry,
    Ledger,
    Unvote,
    Vote,
    VoteAction,
    VoteBucket,
    VoteCount,
    VoterId,
)

# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

# Markdown emphasis/spoiler characters players wrap their votes in.
_EMPHASIS = r"*_~|"
_OPEN = rf"^[{_EMPHASIS}]*"
_SEP = rf"[\s{_EMPHASIS}]+"
_TARGET = rf"([^{_EMPHASIS}\n]+)"

# Compiled once at import; tested in this order.
VOTE_RE = re.compile(rf"{_OPEN}vtl[{_EMPHASIS}]*{_SEP}{_TARGET}", re.IGNORECASE | re.ASCII)
UNVOTE_RE = re.compile(
    rf"{_OPEN}un-?vtl[{_EMPHASIS}]*(?:$|{_SEP}{_TARGET}?)",
    re.IGNORECASE | re.ASCII,
)
ABSTAIN_RE = re.compile(rf"{_OPEN}vtnl(?![a-z0-9])", re.IGNORECASE | re.ASCII)


def capitalize(text: str) -> str:
    """Upper-case the first letter of each word and lower-case the rest.

    Only ASCII letters change case; words are rejoined with single spaces.
    """
    words = []
    for word in text.split():
        head, tail = word[0], word[1:]
        head = head.upper() if head.isascii() else head
        tail = "".join(c.lower() if c.isascii() else c for c in tail)
        words.append(head + tail)
    return " ".join(words)


def parse_vote(text: str) -> VoteAction | None:
    """Parse a cleaned message into a vote directive.

    The directive must open the message: ``"VTL Arius"`` is a vote,
    ``"I will VTL Arius"`` is not. Returns None for ordinary chatter.
    """
    match = VOTE_RE.match(text)
    if match:
        target = capitalize(match.group(1))
        if target:
            return Vote(target)

    match = UNVOTE_RE.match(text)
    if match:
        return Unvote(capitalize(match.group(1) or ""))

    if ABSTAIN_RE.match(text):
        return Abstain()
    return None


def clean_mentions(text: str, mentions: Mapping[int, str]) -> str:
    """Replace ``<@id>`` / ``<@!id>`` tokens with the member's display name."""
    for user_id, name in mentions.items():
        text = text.replace(f"<@{user_id}>", name).replace(f"<@!{user_id}>", name)
    return text


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


def build_ledger(
    messages: Iterable[ChatMessage],
    active_voters: Iterable[VoterId],
) -> Ledger:
    """Replay ``messages`` (oldest first) into voter -> current action.

    Later directives overwrite earlier ones. Any Unvote clears the voter's
    entry regardless of its target. Active voters without a directive end
    up as None, so every active voter has exactly one entry.
    """
    voters = list(dict.fromkeys(active_voters))
    eligible = set(voters)
    ledger: Ledger = {}

    for message in messages:
        if message.author_id not in eligible:
            continue
        action = parse_vote(message.text)
        if action is None:
            continue
        if isinstance(action, Unvote):
            ledger[message.author_id] = None
        else:
            ledger[message.author_id] = action

    for voter in voters:
        ledger.setdefault(voter, None)
    return ledger


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def aggregate_votes(ledger: Ledger) -> list[VoteBucket]:
    """Group the ledger into buckets ranked by voter count.

    Ties keep first-seen order. The VTNL bucket and then the "not voting"
    bucket are always moved to the end, whatever their size.
    """
    grouped: dict[VoteAction | None, list[VoterId]] = {}
    for voter, action in ledger.items():
        grouped.setdefault(action, []).append(voter)

    buckets = [VoteBucket(key, tuple(voters)) for key, voters in grouped.items()]
    buckets.sort(key=lambda b: b.count, reverse=True)

    trailing = []
    for special in (Abstain(), None):
        for i, bucket in enumerate(buckets):
            if bucket.key == special:
                trailing.append(buckets.pop(i))
                break
    return buckets + trailing


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


def select_active_voters(
    role_holders: Mapping[VoterId, str],
    roster: Sequence[VoterId] | None,
    restrict_to_roster: bool,
) -> dict[VoterId, str]:
    """Return the voters whose messages count, keyed by id with display names.

    By default every Player-role holder votes. With ``restrict_to_roster``
    only role holders on the saved roster do.
    """
    if not restrict_to_roster:
        return dict(role_holders)
    if not roster:
        raise PreconditionFailed(
            "No player roster has been saved. A host can save one with `/roster save`."
        )
    allowed = set(roster)
    return {vid: name for vid, name in role_holders.items() if vid in allowed}


def select_vote_channel(explicit_channel_id: int | None, cycle: Cycle) -> int:
    """Pick the channel to count from: explicit argument, else the cycle's votes channel."""
    if explicit_channel_id is not None:
        return explicit_channel_id
    if cycle.votes_channel_id is not None:
        return cycle.votes_channel_id
    raise LookupFailure(
        "The game doesn't appear to have begun. If it has, ask a host to use the "
        "`/cycle` command.\n\nMeanwhile, you can pass the voting channel explicitly, "
        "like `/votecount channel:#day-1-voting`."
    )


def tally_votes(
    messages_newest_first: Sequence[ChatMessage],
    active_voters: Iterable[VoterId],
    channel_id: int | None = None,
) -> VoteCount:
    """Count votes from a newest-first message list, as Discord returns history."""
    ledger = build_ledger(reversed(messages_newest_first), active_voters)
    return VoteCount(
        channel_id=channel_id,
        buckets=tuple(aggregate_votes(ledger)),
        ledger=ledger,
    )


def vote_history(
    messages_oldest_first: Iterable[ChatMessage],
    voter_id: VoterId,
) -> list[HistoryEntry]:
    """Every directive ``voter_id`` sent, in chronological order."""
    entries = []
    for message in messages_oldest_first:
        if message.author_id != voter_id:
            continue
        action = parse_vote(message.text)
        if action is not None:
            entries.append(HistoryEntry(action, message.created_at))
    return entries


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def render_vote_count(vote_count: VoteCount, names: Mapping[VoterId, str]) -> str:
    """Render ranked buckets, one line each.

    Vote buckets: ``1. **Arius** - 2 (Ligi, Craw)``. The VTNL and
    "Not voting" lines carry no rank and are separated by a blank line.
    """
    lines: list[str] = []
    rank = 0
    for bucket in vote_count.buckets:
        voters = ", ".join(names.get(v, str(v)) for v in bucket.voters)
        if isinstance(bucket.key, Vote):
            rank += 1
            lines.append(f"{rank}. **{bucket.key.target}** - {bucket.count} ({voters})")
        elif isinstance(bucket.key, Abstain):
            lines.append(f"\n**VTNL** - {bucket.count} ({voters})")
        else:
            lines.append(f"\n**Not voting** - {bucket.count} ({voters})")
    return "\n".join(lines).strip()


def ordinal(day: int) -> str:
    if day in (1, 21, 31):
        return f"{day}st"
    if day in (2, 22):
        return f"{day}nd"
    if day in (3, 23):
        return f"{day}rd"
    return f"{day}th"


def _format_when(when: datetime) -> str:
    hour = when.hour % 12 or 12
    suffix = "am" if when.hour < 12 else "pm"
    return f"on {ordinal(when.day)} {when:%B} at {hour}:{when:%M} {suffix}"


def render_vote_history(entries: Sequence[HistoryEntry]) -> str:
    """Numbered list of directives, e.g. ``1. **VTL Arius** (on 5th March at 3:04 pm)``."""
    if not entries:
        return "No votes."
    lines = []
    for i, entry in enumerate(entries, start=1):
        line = f"{i}. **{entry.action.describe()}**"
        if entry.created_at is not None:
            line += f" ({_format_when(entry.created_at)})"
        lines.append(line)
    return "\n".join(lines)
