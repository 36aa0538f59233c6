"""Configuration helpers for the workwatch bot."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Literal, Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

Language = Literal["en", "ja", "zh-TW"]

_LANGUAGES = ("en", "ja", "zh-TW")


class WatchSettings(BaseModel):
    """Tuning values threaded into the stores, context builder and pipeline."""

    context_window_hours: int = 2
    context_max_messages: int = 100
    message_retention_hours: int = 24
    notification_cooldown_minutes: int = 30
    language: Language = "en"
    excluded_channels: List[int] = Field(default_factory=list)


class BotSettings(BaseModel):
    """Runtime configuration parsed from environment variables."""

    discord_token: str = Field(..., alias="DISCORD_TOKEN")
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4o-mini", alias="OPENAI_MODEL")
    openai_base_url: Optional[str] = Field(default=None, alias="OPENAI_BASE_URL")
    database_url: Optional[str] = Field(
        default=None,
        alias="DATABASE_URL",
        validation_alias=AliasChoices("DATABASE_URL", "SUPABASE_DB_URL", "database_url"),
    )
    language: str = Field(default="en", alias="LANGUAGE")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    context_window_hours: int = Field(default=2, alias="CONTEXT_WINDOW_HOURS", ge=1)
    context_max_messages: int = Field(default=100, alias="CONTEXT_MAX_MESSAGES", ge=1)
    message_retention_hours: int = Field(default=24, alias="MESSAGE_RETENTION_HOURS", ge=1)
    notification_cooldown_minutes: int = Field(
        default=30, alias="NOTIFICATION_COOLDOWN_MINUTES", ge=0
    )
    excluded_channels: List[int] = Field(default_factory=list, alias="EXCLUDED_CHANNELS")

    class Config:
        populate_by_name = True

    @field_validator("language", mode="before")
    @classmethod
    def _normalise_language(cls, value: object) -> str:
        if value in _LANGUAGES:
            return str(value)
        logger.warning('Invalid language "%s", defaulting to "en"', value)
        return "en"

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, value: object) -> str:
        level = str(value or "INFO").upper()
        if level == "WARN":
            level = "WARNING"
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR"}:
            logger.warning('Invalid log level "%s", defaulting to "INFO"', value)
            return "INFO"
        return level

    @field_validator("excluded_channels", mode="before")
    @classmethod
    def _split_channels(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, str):
            return [int(part.strip()) for part in value.split(",") if part.strip()]
        return value

    @property
    def watch(self) -> WatchSettings:
        return WatchSettings(
            context_window_hours=self.context_window_hours,
            context_max_messages=self.context_max_messages,
            message_retention_hours=self.message_retention_hours,
            notification_cooldown_minutes=self.notification_cooldown_minutes,
            language=self.language,
            excluded_channels=list(self.excluded_channels),
        )


def load_settings(env_file: str | None = ".env") -> BotSettings:
    """Load and validate configuration, raising a helpful error if missing."""

    if env_file and Path(env_file).exists():
        load_dotenv(env_file)

    try:
        settings = BotSettings.model_validate(os.environ)
    except ValidationError as exc:
        missing = [err["loc"][0] for err in exc.errors() if err["type"] == "missing"]
        if not missing:
            raise RuntimeError(f"Invalid configuration: {exc}") from exc
        raise RuntimeError(
            (
                "Missing required configuration values: "
                f"{', '.join(str(key) for key in missing)}. "
                "Ensure DISCORD_TOKEN is set before running the bot."
            )
        ) from exc

    return settings
