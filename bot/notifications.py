"""
Discord notification channel for quest updates.

Persistent notifications (pinned quest, active objective) are a single
message edited in place. Transient ones (objective/quest completed) are
sent with ``delete_after`` and forgotten.
"""

import logging
from typing import Any, Dict, Optional

import discord

from tools.notification_coalescer import NotificationKind
from tools.rate_limiter import discord_limiter

logger = logging.getLogger("QuestNotifications")

TRANSIENT_SECONDS = 30


def format_notification(kind: NotificationKind, payload: Dict[str, Any]) -> str:
    quest = payload.get("questName") or payload.get("name") or payload.get("questId", "?")
    if kind == NotificationKind.QUEST_PINNED:
        return f"\U0001f4cc **Pinned quest:** {quest} ({payload.get('status', 'Not Started')})"
    if kind == NotificationKind.ACTIVE_OBJECTIVE:
        if payload.get("cleared"):
            return "\U0001f3af *No objective tracked.*"
        return f"\U0001f3af **Tracking:** {quest} #{int(payload.get('index', 0)) + 1}: {payload.get('text', '')}"
    if kind == NotificationKind.OBJECTIVE_COMPLETED:
        return f"✅ Objective complete: {payload.get('text', '')} ({quest})"
    return f"\U0001f3c6 **Quest complete:** {quest}"


class DiscordNotificationChannel:
    """Posts notifications to one text channel."""

    def __init__(self, channel: "discord.abc.Messageable", transient_seconds: float = TRANSIENT_SECONDS):
        self.channel = channel
        self.transient_seconds = transient_seconds

    async def create(self, kind: NotificationKind, payload: Dict[str, Any], persistent: bool) -> Optional[Any]:
        await discord_limiter.acquire()
        content = format_notification(kind, payload)
        if persistent:
            return await self.channel.send(content)
        await self.channel.send(content, delete_after=self.transient_seconds)
        return None

    async def update(self, handle: Any, kind: NotificationKind, payload: Dict[str, Any]) -> bool:
        await discord_limiter.acquire()
        try:
            await handle.edit(content=format_notification(kind, payload))
            return True
        except discord.NotFound:
            logger.info(f"{kind.value} message was deleted, posting a new one.")
            return False
