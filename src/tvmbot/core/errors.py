"""Error taxonomy for TvM commands.

Every error carries the message shown to the user. Command handlers catch
``TvMError`` at their boundary and reply with ``str(exc)``; nothing here is
meant to terminate the process.
"""

from __future__ import annotations


class TvMError(Exception):
    """Base class for failures that are reported back to the invoking user."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class LookupFailure(TvMError):
    """A channel, role, member or guild config could not be resolved."""


class PreconditionFailed(TvMError):
    """The game is in the wrong state, or a required setting is missing."""


class ExternalCallFailed(TvMError):
    """A chat-platform call failed (permissions, rate limit, network)."""


class ServiceUnavailable(TvMError):
    """The store could not be reached. Reported without retry."""


class ConfirmationCancelled(TvMError):
    """The user answered "no" to a confirmation prompt, or it timed out."""

    def __init__(self, message: str, *, timed_out: bool = False) -> None:
        super().__init__(message)
        self.timed_out = timed_out
