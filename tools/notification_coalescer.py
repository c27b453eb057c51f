"""
NotificationCoalescer — debounces user-facing quest notifications.

Pure Python + asyncio. The channel that actually shows a notification is
passed in (Discord in production, a recorder in tests).

Each kind has its own debounce timer: a call within the window resets the
timer and replaces the payload, so only the last call of a burst is
delivered. Persistent kinds keep one live notification which later calls
edit in place; transient kinds are sent and left to expire.

Channel failures are logged and never reach the caller.
"""

import asyncio
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Tuple

logger = logging.getLogger("NotificationCoalescer")


class NotificationKind(str, Enum):
    QUEST_PINNED = "questPinned"
    ACTIVE_OBJECTIVE = "activeObjective"
    OBJECTIVE_COMPLETED = "objectiveCompleted"
    QUEST_COMPLETED = "questCompleted"

    @property
    def persistent(self) -> bool:
        return self in (NotificationKind.QUEST_PINNED, NotificationKind.ACTIVE_OBJECTIVE)


class NotificationChannel(Protocol):
    async def create(self, kind: NotificationKind, payload: Dict[str, Any], persistent: bool) -> Any:
        """Show a new notification. Returns a handle for later updates."""
        ...

    async def update(self, handle: Any, kind: NotificationKind, payload: Dict[str, Any]) -> bool:
        """Edit a live notification. False when the handle is no longer valid."""
        ...


@dataclass
class NotificationState:
    """Live notification handles for one session.

    Create it when the session starts and clear it when the session ends.
    """

    handles: Dict[NotificationKind, Any] = field(default_factory=dict)

    def clear(self) -> None:
        self.handles.clear()


class NotificationCoalescer:
    """Usage:
        coalescer = NotificationCoalescer(channel, NotificationState())
        coalescer.notify("activeObjective", {...})   # from inside the event loop
        await coalescer.close()                     # session end
    """

    def __init__(
        self,
        channel: Optional[NotificationChannel] = None,
        state: Optional[NotificationState] = None,
        window_seconds: float = 0.1,
    ):
        self.channel = channel
        self.state = state if state is not None else NotificationState()
        self.window_seconds = window_seconds
        self._pending: Dict[NotificationKind, Tuple[asyncio.Task, Dict[str, Any]]] = {}
        self._locks: Dict[NotificationKind, asyncio.Lock] = {}

    def bind(self, channel: NotificationChannel) -> None:
        self.channel = channel

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def notify(self, kind, payload: Optional[Dict[str, Any]] = None) -> None:
        """Schedule a notification. Returns immediately."""
        kind = NotificationKind(kind)
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No event loop, dropping {kind.value} notification.")
            return

        previous = self._pending.get(kind)
        if previous is not None:
            previous[0].cancel()
        task = asyncio.create_task(self._debounced(kind))
        self._pending[kind] = (task, dict(payload or {}))

    async def _debounced(self, kind: NotificationKind) -> None:
        try:
            await asyncio.sleep(self.window_seconds)
        except asyncio.CancelledError:
            return  # superseded by a newer call
        entry = self._pending.get(kind)
        if entry is not None and entry[0] is asyncio.current_task():
            del self._pending[kind]
            await self._deliver(kind, entry[1])

    def _lock(self, kind: NotificationKind) -> asyncio.Lock:
        lock = self._locks.get(kind)
        if lock is None:
            lock = self._locks[kind] = asyncio.Lock()
        return lock

    async def _deliver(self, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        # one delivery per kind at a time; the handle is stored before the next starts
        async with self._lock(kind):
            await self._deliver_locked(kind, payload)

    async def _deliver_locked(self, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        if self.channel is None:
            logger.debug(f"No notification channel bound, {kind.value} not shown.")
            return
        try:
            if kind.persistent:
                handle = self.state.handles.get(kind)
                if handle is not None and await self.channel.update(handle, kind, payload):
                    return
                self.state.handles[kind] = await self.channel.create(kind, payload, True)
            else:
                await self.channel.create(kind, payload, False)
        except Exception as e:
            logger.error(f"Notification channel failed for {kind.value}: {e}", exc_info=True)

    async def flush(self) -> None:
        """Deliver every pending notification now."""
        pending = list(self._pending.items())
        self._pending.clear()
        for kind, (task, payload) in pending:
            task.cancel()
            await self._deliver(kind, payload)

    async def close(self) -> None:
        """Drop pending notifications and forget live handles."""
        for task, _payload in self._pending.values():
            task.cancel()
        self._pending.clear()
        self.state.clear()
        self._locks.clear()
