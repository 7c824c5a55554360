"""
SpeakEasy Assistant — Centralized configuration.

Loads all settings from .env and validates them.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from speakeasy/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

_MAX_SWEEP_SECONDS = 60


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # LLM — provider-agnostic (gemini, anthropic, openai, cohere, openrouter).
    # An empty key disables the AI-assisted parsing and scoring paths.
    LLM_PROVIDER: str = "gemini"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str = ""

    # Audio — OpenAI Whisper (transcription only)
    OPENAI_API_KEY: str = ""
    TRANSCRIPTION_LANGUAGE: str = "en"

    # Telegram (only needed by the chat surface)
    TELEGRAM_BOT_TOKEN: str = ""
    ALLOWED_USER_IDS: list[int] = []

    # SQLite
    DATABASE_PATH: str = "data/speakeasy.db"

    # Time handling
    TIMEZONE: str = "UTC"
    DEFAULT_EVENT_MINUTES: int = 60

    # Reminders
    REMINDER_SWEEP_SECONDS: int = _MAX_SWEEP_SECONDS
    GEOFENCE_RADIUS_METERS: int = 150

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("DEFAULT_EVENT_MINUTES", "GEOFENCE_RADIUS_METERS", mode="before")
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator("REMINDER_SWEEP_SECONDS", mode="before")
    @classmethod
    def clamp_sweep(cls, v: str | int) -> int:
        # The polling fallback must wake at least once a minute.
        return max(1, min(int(v), _MAX_SWEEP_SECONDS))

    @property
    def ai_enabled(self) -> bool:
        key = self.LLM_API_KEY
        return bool(key) and not key.startswith("your-")


def _load_settings() -> Settings:
    """Load settings from environment."""
    return Settings(
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "gemini"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=os.getenv("LLM_API_KEY", ""),
        OPENAI_API_KEY=os.getenv("OPENAI_API_KEY", ""),
        TRANSCRIPTION_LANGUAGE=os.getenv("TRANSCRIPTION_LANGUAGE", "en"),
        TELEGRAM_BOT_TOKEN=os.getenv("TELEGRAM_BOT_TOKEN", ""),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/speakeasy.db"),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        DEFAULT_EVENT_MINUTES=os.getenv("DEFAULT_EVENT_MINUTES", "60"),
        REMINDER_SWEEP_SECONDS=os.getenv("REMINDER_SWEEP_SECONDS", str(_MAX_SWEEP_SECONDS)),
        GEOFENCE_RADIUS_METERS=os.getenv("GEOFENCE_RADIUS_METERS", "150"),
    )


# Singleton — imported by all other modules as:
#   from speakeasy.config import settings
settings = _load_settings()
