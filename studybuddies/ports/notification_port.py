"""Notification port — abstract interface for delivering a fired reminder.

The trigger receiver depends on this protocol, never on a specific
messaging provider.
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Abstract delivery interface used by trigger receivers."""

    async def send_message(self, chat_id: int, text: str) -> None: ...
