"""
StudyBuddies — Centralized configuration.

Loads all settings from .env and validates required keys.
Every other module reads its defaults from here.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from studybuddies/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # Record source: "firestore" | "memory"
    RECORD_SOURCE: str = "firestore"

    # Firebase (only needed when RECORD_SOURCE=firestore)
    FIREBASE_PROJECT_ID: str = ""
    FIREBASE_CREDENTIALS_PATH: str = ""   # empty → application default credentials

    # Collections
    LESSONS_COLLECTION: str = "lessons"
    USERS_COLLECTION: str = "users"

    # Lesson dates are stored as wall-clock strings, e.g. "Jan 8, 2026" + "4:00 PM"
    TIMEZONE: str = "Asia/Jerusalem"
    LESSON_DATETIME_FORMAT: str = "%b %d, %Y %I:%M %p"

    # Security
    ALLOWED_USER_IDS: list[int] = []

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("RECORD_SOURCE", mode="before")
    @classmethod
    def normalize_source(cls, v: str) -> str:
        return (v or "firestore").strip().lower()


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        RECORD_SOURCE=os.getenv("RECORD_SOURCE", "firestore"),
        FIREBASE_PROJECT_ID=os.getenv("FIREBASE_PROJECT_ID", ""),
        FIREBASE_CREDENTIALS_PATH=os.getenv("FIREBASE_CREDENTIALS_PATH", ""),
        LESSONS_COLLECTION=os.getenv("LESSONS_COLLECTION", "lessons"),
        USERS_COLLECTION=os.getenv("USERS_COLLECTION", "users"),
        TIMEZONE=os.getenv("TIMEZONE", "Asia/Jerusalem"),
        LESSON_DATETIME_FORMAT=os.getenv("LESSON_DATETIME_FORMAT", "%b %d, %Y %I:%M %p"),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
    )


# Singleton — imported by all other modules as:
#   from studybuddies.config import settings
settings = _load_settings()
