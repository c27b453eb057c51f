"""
Quest Service — user actions on quests, wired through the whole data flow.

    document write -> decode objectives -> recompute status
        -> recompute ownership / push pins -> notify

The document write is the only step that has to succeed. Everything after
it is best-effort: pin store and notification failures are logged and the
document change stands.
"""

import logging
from typing import Optional

from integrations.pin_store_errors import PinStoreError
from models.quests import Quest, QuestStatus, ObjectiveState
from tools.active_objective import ActiveObjectiveTracker, ActiveSelection
from tools.notification_coalescer import NotificationKind
from tools.quest_errors import QuestNotFoundError, QuestPinError, ObjectiveIndexError
from tools.quest_status import QuestStatusMachine, StatusChange
from tools.task_markup import decode_objectives, encode_objective_state

logger = logging.getLogger("QuestService")


class QuestService:
    def __init__(self, vault, status_machine: QuestStatusMachine, pin_sync=None,
                 tracker: Optional[ActiveObjectiveTracker] = None, notifier=None):
        self.vault = vault
        self.status_machine = status_machine
        self.pin_sync = pin_sync
        self.tracker = tracker
        self.notifier = notifier

    def load(self, quest_id: str) -> Quest:
        quest = self.vault.get_quest(quest_id)
        if quest is None:
            raise QuestNotFoundError(f"No quest with id {quest_id}.")
        return quest

    def _notify(self, kind: NotificationKind, payload: dict) -> None:
        if self.notifier is not None:
            self.notifier.notify(kind, payload)

    async def _push_styles(self, quest: Quest) -> None:
        if self.pin_sync is None:
            return
        try:
            await self.pin_sync.update_styles(quest)
        except PinStoreError as e:
            logger.error(f"Pin update for '{quest.name}' failed: {e}")

    # ------------------------------------------------------------------
    # Objectives
    # ------------------------------------------------------------------

    async def set_objective_state(self, quest_id: str, index: int,
                                  state: ObjectiveState) -> StatusChange:
        quest = self.load(quest_id)
        state = ObjectiveState(state)
        previous = quest.objective(index)
        body = encode_objective_state(quest.body, index, state)
        if not self.vault.save_quest_body(quest, body):
            raise QuestPinError(f"Could not write quest '{quest.name}'.")
        quest.objectives = decode_objectives(body) or []

        change = self.status_machine.recompute_status(quest)
        await self._push_styles(quest)

        if state == ObjectiveState.COMPLETED and previous.state != ObjectiveState.COMPLETED:
            objective = quest.objective(index)
            self._notify(NotificationKind.OBJECTIVE_COMPLETED, {
                "questId": quest.id,
                "questName": quest.name,
                "index": index,
                "text": objective.text if objective else "",
            })
        return change

    async def toggle_objective_hidden(self, quest_id: str, index: int) -> ObjectiveState:
        quest = self.load(quest_id)
        objective = quest.objective(index)
        if objective is None:
            raise ObjectiveIndexError(f"Quest '{quest.name}' has no objective {index}.")
        new_state = ObjectiveState.ACTIVE if objective.state == ObjectiveState.HIDDEN else ObjectiveState.HIDDEN
        await self.set_objective_state(quest_id, index, new_state)
        return new_state

    # ------------------------------------------------------------------
    # Quest status / visibility
    # ------------------------------------------------------------------

    async def set_quest_status(self, quest_id: str, status) -> StatusChange:
        quest = self.load(quest_id)
        change = self.status_machine.apply_status(quest, QuestStatus.parse(status))
        await self._push_styles(quest)
        return change

    async def toggle_quest_visibility(self, quest_id: str) -> bool:
        quest = self.load(quest_id)
        visible = not quest.visible
        if not self.vault.set_quest_flag(quest, 'visible', visible):
            raise QuestPinError(f"Could not write quest '{quest.name}'.")
        if self.pin_sync is not None:
            try:
                await self.pin_sync.update_visibility(quest.id)
            except PinStoreError as e:
                logger.error(f"Pin visibility update for '{quest.name}' failed: {e}")
        logger.info(f"Quest '{quest.name}' is now {'visible' if visible else 'hidden'}.")
        return visible

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def track_objective(self, quest_id: str, index: int) -> Optional[ActiveSelection]:
        """Make the objective the active one, or clear it if it already is."""
        quest = self.load(quest_id)
        objective = quest.objective(index)
        if objective is None:
            raise ObjectiveIndexError(f"Quest '{quest.name}' has no objective {index}.")
        selection = self.tracker.toggle_active(quest.id, index)
        if selection is None:
            self._notify(NotificationKind.ACTIVE_OBJECTIVE, {"questId": quest.id, "cleared": True})
        else:
            self._notify(NotificationKind.ACTIVE_OBJECTIVE, {
                "questId": quest.id,
                "questName": quest.name,
                "index": index,
                "text": objective.text,
            })
        return selection

    def pin_quest(self, quest_id: str) -> Quest:
        quest = self.load(quest_id)
        self.tracker.pin_quest(quest.id)
        self._notify(NotificationKind.QUEST_PINNED, {
            "questId": quest.id,
            "questName": quest.name,
            "status": quest.status.value,
        })
        return quest
