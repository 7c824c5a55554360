"""Telegram notification adapter — implements NotificationPort.

Owner ids are Telegram user ids; a private chat's id equals the user's id.
"""

from __future__ import annotations

import logging

from telegram import Bot

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_notification(self, owner_id: str, title: str, body: str) -> None:
        await self._bot.send_message(chat_id=int(owner_id), text=f"🔔 {title}\n{body}")
        logger.debug("Notification sent to %s: %s", owner_id, title)
