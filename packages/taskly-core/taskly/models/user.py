"""
User model for Taskly.

Users are created by the identity handshake; the scheduling core only reads
their timezone and notification settings.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

DEFAULT_REMINDER_TIME = "09:00"


@dataclass
class UserSettings:
    """Per-user notification preferences."""

    notifications: bool = True
    reminder_time: str = DEFAULT_REMINDER_TIME
    daily_summary: bool = True

    def to_dict(self) -> dict:
        return {
            "notifications": self.notifications,
            "reminder_time": self.reminder_time,
            "daily_summary": self.daily_summary,
        }

    @classmethod
    def from_value(cls, value: Any) -> "UserSettings":
        """Build settings from a dict or a JSON string (SQLite/JSONB column)."""
        if isinstance(value, str):
            value = json.loads(value) if value else {}
        value = value or {}
        return cls(
            notifications=_as_bool(value.get("notifications"), True),
            reminder_time=value.get("reminder_time") or DEFAULT_REMINDER_TIME,
            daily_summary=_as_bool(value.get("daily_summary"), True),
        )


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass
class User:
    """
    A Telegram user of the app.

    Attributes:
        telegram_id: Telegram user id, also the private chat id for messages
        id: Internal identifier (UUID)
        first_name: Telegram first name
        username: Telegram username
        timezone: IANA zone name; None means the configured default
        settings: Notification preferences
        created_at: When the user first signed in
    """

    telegram_id: int
    id: str = field(default_factory=lambda: str(uuid4()))
    first_name: Optional[str] = None
    username: Optional[str] = None
    timezone: Optional[str] = None
    settings: UserSettings = field(default_factory=UserSettings)
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = datetime.now(timezone.utc)

    @property
    def chat_id(self) -> int:
        return self.telegram_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "telegram_id": self.telegram_id,
            "first_name": self.first_name,
            "username": self.username,
            "timezone": self.timezone,
            "settings": self.settings.to_dict(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "User":
        """Create User from dictionary (e.g., database row)."""
        created_at = data.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
        return cls(
            id=data.get("id"),
            telegram_id=int(data.get("telegram_id") or 0),
            first_name=data.get("first_name"),
            username=data.get("username"),
            timezone=data.get("timezone"),
            settings=UserSettings.from_value(data.get("settings")),
            created_at=created_at,
        )
