"""Message audit log rules: which channels are logged and how long content is shown."""

from __future__ import annotations

import dataclasses

from tvmbot.models.config import LogSettings

# Discord's limit for a single embed field value.
FIELD_LIMIT = 1024
PREVIEW_CHARS = 500


def should_log_channel(settings: LogSettings, channel_id: int, everyone_can_read: bool) -> bool:
    """Whitelist wins, then blacklist; otherwise only public channels are logged."""
    if channel_id in settings.whitelist_channel_ids:
        return True
    if channel_id in settings.blacklist_channel_ids:
        return False
    return everyone_can_read


@dataclasses.dataclass(frozen=True)
class LoggedContent:
    """Embed field for one side of an edit/delete, plus the overflow file if any."""

    field_name: str
    field_value: str
    file_name: str | None = None
    file_text: str | None = None


def split_for_field(content: str, label: str) -> LoggedContent:
    """Fit ``content`` into an embed field named ``"{label} Content"``.

    Long content is previewed and the full text returned for attaching as
    ``{label}.txt``.
    """
    name = f"{label} Content"
    if len(content) <= FIELD_LIMIT:
        return LoggedContent(name, content or "*No text content*")
    preview = f"{content[:PREVIEW_CHARS].strip()}...\n\nFull message attached below."
    return LoggedContent(name, preview, file_name=f"{label.lower()}.txt", file_text=content)
