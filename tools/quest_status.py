"""
Quest Status — derives and applies quest status and category transitions.

    Not Started -> In Progress -> Complete
    Failed is reachable from any state, but only by an explicit assignment.

The category is never forced by status. ``originalCategory`` is remembered
the first time a quest with a normal category moves into Complete/Failed,
and is put back when the quest returns to Not Started/In Progress while
sitting in a "Completed"/"Failed" category.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from models.quests import Quest, QuestStatus, ObjectiveState, is_normal_category

logger = logging.getLogger("QuestStatus")


@dataclass
class StatusChange:
    """Result of a status recomputation or assignment."""

    previous: QuestStatus
    status: QuestStatus
    category_patch: Optional[str] = None
    captured_category: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.previous != self.status or self.category_patch is not None

    @property
    def completed_now(self) -> bool:
        return self.status == QuestStatus.COMPLETE and self.previous != QuestStatus.COMPLETE


def derive_status(quest: Quest) -> QuestStatus:
    """Status implied by the objectives, starting from the quest's current status."""
    current = quest.status
    if current == QuestStatus.FAILED:
        return current  # only a manual assignment leaves Failed
    if quest.all_objectives_completed:
        return QuestStatus.COMPLETE
    if current == QuestStatus.COMPLETE:
        return QuestStatus.IN_PROGRESS
    if current == QuestStatus.NOT_STARTED and any(
        o.state in (ObjectiveState.COMPLETED, ObjectiveState.FAILED) for o in quest.objectives
    ):
        return QuestStatus.IN_PROGRESS
    return current


def plan_transition(quest: Quest, new_status: QuestStatus) -> StatusChange:
    """Work out the category side effects of moving ``quest`` to ``new_status``."""
    change = StatusChange(previous=quest.status, status=new_status)
    if new_status.is_terminal:
        if quest.original_category is None and is_normal_category(quest.category):
            change.captured_category = quest.category
    elif quest.original_category and not is_normal_category(quest.category):
        change.category_patch = quest.original_category
    return change


class QuestStatusMachine:
    """Applies status transitions to quest documents.

    Args:
        vault: VaultManager used to persist the Status:/Category: lines and flags.
        notifier: Optional NotificationCoalescer; gets one ``questCompleted``
            per transition into Complete.
    """

    def __init__(self, vault, notifier=None):
        self.vault = vault
        self.notifier = notifier

    def recompute_status(self, quest: Quest) -> StatusChange:
        """Call after any objective state change."""
        return self._apply(quest, derive_status(quest))

    def apply_status(self, quest: Quest, new_status: QuestStatus) -> StatusChange:
        """Manual assignment. Always honored, regardless of objective completion."""
        return self._apply(quest, QuestStatus.parse(new_status))

    def _apply(self, quest: Quest, new_status: QuestStatus) -> StatusChange:
        change = plan_transition(quest, new_status)
        if not change.changed and change.captured_category is None:
            return change

        if change.captured_category is not None:
            if self.vault.set_quest_flag(quest, 'originalCategory', change.captured_category):
                quest.original_category = change.captured_category

        if change.changed:
            body = self.vault.save_quest_fields(
                quest,
                status=change.status.value if change.previous != change.status else None,
                category=change.category_patch,
            )
            if body is None:
                logger.error(f"Failed to persist status for quest '{quest.name}'")
                return StatusChange(previous=change.previous, status=change.previous)
            quest.status = change.status
            if change.category_patch is not None:
                quest.category = change.category_patch
            logger.info(f"Quest '{quest.name}': {change.previous.value} -> {change.status.value}")

        if change.completed_now and self.notifier is not None:
            self.notifier.notify("questCompleted", {"questId": quest.id, "name": quest.name})
        return change
