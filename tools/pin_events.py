"""
Pin Events — reacting to the pin store, and placing pins by map click.

PinEventRouter turns pin store events (and scene changes) into debounced
reconciliation runs. PinPlacementController runs the interactive "click on
the map to place this pin" flow.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Set, AsyncIterator, Dict, Any

from models.pins import Pin, PinEvent, PinEventType, PinPlacement, PIN_OWNER_TAG

logger = logging.getLogger("PinEvents")


class PinEventRouter:
    """Collects scene scopes from events and reconciles once per burst.

    Args:
        reconciler: ReconciliationService.
        debounce_seconds: Quiet period before a reconciliation runs.
    """

    def __init__(self, reconciler, owner_tag: str = PIN_OWNER_TAG, debounce_seconds: float = 0.25):
        self.reconciler = reconciler
        self.owner_tag = owner_tag
        self.debounce_seconds = debounce_seconds
        self._scenes: Set[str] = set()
        self._all_scenes = False
        self._timer: Optional[asyncio.Task] = None

    @property
    def is_pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def handle(self, event: PinEvent) -> bool:
        """Queue a reconciliation for the event. False if the event is not ours."""
        if event.owner_tag != self.owner_tag:
            return False
        if event.type == PinEventType.DELETED_ALL or not event.scene_id:
            self._all_scenes = True
        else:
            self._scenes.add(event.scene_id)
        self._schedule()
        return True

    def handle_scene_updated(self, scene_id: str) -> None:
        self._scenes.add(scene_id)
        self._schedule()

    def _schedule(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.create_task(self._timer_task())

    async def _timer_task(self) -> None:
        try:
            await asyncio.sleep(self.debounce_seconds)
        except asyncio.CancelledError:
            return
        await self._run_reconcile()

    async def _run_reconcile(self) -> None:
        all_scenes, scenes = self._all_scenes, sorted(self._scenes)
        self._all_scenes = False
        self._scenes.clear()
        try:
            if all_scenes:
                await self.reconciler.reconcile()
            else:
                for scene_id in scenes:
                    await self.reconciler.reconcile(scene_id)
        except Exception as e:
            logger.error(f"Event-triggered reconciliation failed: {e}", exc_info=True)

    async def flush(self) -> None:
        """Run the pending reconciliation now."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        if self._all_scenes or self._scenes:
            await self._run_reconcile()

    async def run(self, stream: AsyncIterator[PinEvent]) -> None:
        """Consume an event stream until it ends."""
        async for event in stream:
            if self.handle(event):
                logger.debug(f"Pin event {event.type.value} on {event.scene_id or 'all scenes'}")
        logger.info("Pin event stream ended.")

    async def close(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        self._scenes.clear()
        self._all_scenes = False


# ---------------------------------------------------------------------------
# Interactive placement
# ---------------------------------------------------------------------------

@dataclass
class PlacementSession:
    quest_id: str
    objective_index: Optional[int]
    future: asyncio.Future = field(repr=False)


class PinPlacementController:
    """One placement at a time: begin, then a click places or cancel aborts.

    While a session is open a click listener is registered and ``preview``
    describes what is being placed; both are removed when it ends, however
    it ends.
    """

    def __init__(self, pin_sync, vault):
        self.pin_sync = pin_sync
        self.vault = vault
        self.listeners: Dict[str, Any] = {}
        self.preview: Optional[Dict[str, Any]] = None
        self._session: Optional[PlacementSession] = None

    @property
    def is_placing(self) -> bool:
        return self._session is not None

    def begin(self, quest_id: str, objective_index: Optional[int] = None) -> PlacementSession:
        if self._session is not None:
            self.cancel()
        session = PlacementSession(
            quest_id=quest_id,
            objective_index=objective_index,
            future=asyncio.get_running_loop().create_future(),
        )
        self._session = session
        self.listeners['click'] = self.click
        self.preview = {'questId': quest_id, 'objectiveIndex': objective_index}
        logger.info(f"Placing pin for {quest_id}{'' if objective_index is None else f' #{objective_index}'}")
        return session

    def click(self, scene_id: str, x: float, y: float) -> bool:
        session = self._session
        if session is None or session.future.done():
            return False
        session.future.set_result(PinPlacement(scene_id=scene_id, x=x, y=y))
        return True

    def cancel(self) -> bool:
        session = self._session
        if session is None or session.future.done():
            return False
        session.future.set_result(None)
        return True

    def _end(self, session: PlacementSession) -> None:
        if self._session is session:
            self._session = None
            self.listeners.pop('click', None)
            self.preview = None

    async def wait(self, session: PlacementSession) -> Optional[PinPlacement]:
        """Wait for the click. None when the placement is cancelled."""
        try:
            return await session.future
        finally:
            self._end(session)

    async def place_interactively(self, quest_id: str,
                                  objective_index: Optional[int] = None) -> Optional[Pin]:
        """Wait for a map click and put the pin there.

        A pin already linked to the quest/objective is moved; otherwise a new
        one is created at the click.
        """
        session = self.begin(quest_id, objective_index)
        placement = await self.wait(session)
        if placement is None:
            logger.info("Pin placement cancelled.")
            return None

        quest = self.vault.get_quest(quest_id)
        if quest is None:
            logger.warning(f"Quest {quest_id} disappeared during placement.")
            return None
        existing = await self.pin_sync.linked_pin(quest, objective_index)
        if existing is not None:
            return await self.pin_sync.place(existing, placement)
        if objective_index is None:
            return await self.pin_sync.create_quest_pin(quest, placement)
        return await self.pin_sync.create_objective_pin(quest, objective_index, placement)
