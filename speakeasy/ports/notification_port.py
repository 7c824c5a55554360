"""Notification port — abstract interface for delivering reminders to users.

Core modules depend on this protocol, never on a specific messaging provider.
Delivery is best-effort: implementations may raise, and callers log and drop.
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Abstract notification interface used by the reminder scheduler."""

    async def send_notification(self, owner_id: str, title: str, body: str) -> None: ...
