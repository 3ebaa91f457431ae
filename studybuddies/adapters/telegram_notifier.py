"""Telegram notification adapter — implements NotificationPort.

Wraps a telegram.Bot so fired reminders reach the user's chat.
"""

from __future__ import annotations

import logging

from telegram import Bot

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(self, chat_id: int, text: str) -> None:
        await self._bot.send_message(chat_id=chat_id, text=text, parse_mode="Markdown")
        logger.debug("Message sent to chat %d", chat_id)
