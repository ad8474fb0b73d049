"""
Recurring Reminders - Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Messaging channel: "telegram" | "memory" (dry run, nothing is sent)
    CHANNEL_PROVIDER: str = "telegram"
    TELEGRAM_BOT_TOKEN: str = ""

    # Destination chat, resolved once and persisted in the DB
    DESTINATION_NAME: str = "Our Reminders"
    DESTINATION_CHAT_ID: str = ""

    # Storage and task templates
    DATABASE_PATH: str = "data/reminders.db"
    TASKS_FILE: str = "tasks.json"
    SYNC_TASK_UPDATES: bool = False

    # Default zone for tasks that don't name one
    TIMEZONE: str = "Asia/Colombo"

    # How often the reminder cycle runs
    CYCLE_INTERVAL_MINUTES: int = 15

    # Message content
    MENTIONS: list[str] = []
    ACK_EMOJIS: list[str] = []

    LOG_LEVEL: str = "INFO"

    @field_validator("MENTIONS", "ACK_EMOJIS", mode="before")
    @classmethod
    def parse_csv(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [item.strip() for item in v.split(",") if item.strip()]
        return []

    @field_validator("CYCLE_INTERVAL_MINUTES", mode="before")
    @classmethod
    def parse_interval(cls, v: str | int) -> int:
        minutes = int(v)
        if minutes < 1:
            raise ValueError("CYCLE_INTERVAL_MINUTES must be at least 1")
        return minutes

    @field_validator("SYNC_TASK_UPDATES", mode="before")
    @classmethod
    def parse_bool(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() in ("1", "true", "yes", "on")

    @field_validator("CHANNEL_PROVIDER", "LOG_LEVEL", mode="before")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        return str(v).strip()


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    provider = os.getenv("CHANNEL_PROVIDER", "telegram").strip().lower()
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if provider == "telegram" and (not token or token.startswith("your-")):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        CHANNEL_PROVIDER=provider,
        TELEGRAM_BOT_TOKEN=token,
        DESTINATION_NAME=os.getenv("DESTINATION_NAME", "Our Reminders"),
        DESTINATION_CHAT_ID=os.getenv("DESTINATION_CHAT_ID", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/reminders.db"),
        TASKS_FILE=os.getenv("TASKS_FILE", "tasks.json"),
        SYNC_TASK_UPDATES=os.getenv("SYNC_TASK_UPDATES", "false"),
        TIMEZONE=os.getenv("TIMEZONE", "Asia/Colombo"),
        CYCLE_INTERVAL_MINUTES=os.getenv("CYCLE_INTERVAL_MINUTES", "15"),
        MENTIONS=os.getenv("MENTIONS", ""),
        ACK_EMOJIS=os.getenv("ACK_EMOJIS", ""),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )


# Singleton, imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
