"""Application settings via pydantic-settings. Loads from environment and .env file."""

from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings

# Sign-up cap used until a host sets one with `/tvm maxplayers`.
DEFAULT_TOTAL_PLAYERS = 12


class Settings(BaseSettings):
    """TvM assistant configuration.

    All values can be overridden via environment variables or .env file.
    """

    # Discord
    discord_bot_token: str = ""
    discord_guild_id: str = ""  # Sync slash commands to one guild instead of globally
    discord_enabled: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///tvmbot.db"

    # Environment
    tvm_env: str = "development"

    # Game hosting
    tvm_confirm_timeout_seconds: int = 30
    tvm_vote_message_limit: int = 100  # 0 reads the whole channel history
    tvm_default_total_players: int = DEFAULT_TOTAL_PLAYERS

    # Logging
    tvm_log_level: str = "INFO"

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    @field_validator("tvm_confirm_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("TVM_CONFIRM_TIMEOUT_SECONDS must be positive")
        return value

    @field_validator("tvm_vote_message_limit", "tvm_default_total_players")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    def history_limit(self) -> int | None:
        """Return the message-history limit to pass to discord.py.

        ``None`` means the whole channel is read.
        """
        return self.tvm_vote_message_limit or None
