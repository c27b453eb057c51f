"""
Active Objective — the one objective a user is currently tracking.

Stored as a single ``activeObjective`` flag on the user's document, so a new
selection simply overwrites the old one. The pinned quest lives next to it
under ``pinnedQuest``.
"""

import logging
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger("ActiveObjective")

ACTIVE_FLAG = "activeObjective"
PINNED_FLAG = "pinnedQuest"


class ActiveSelection(BaseModel):
    quest_id: str = Field(alias="questId")
    index: int

    model_config = {"populate_by_name": True}


class ActiveObjectiveTracker:
    """Per-user single active objective.

    Args:
        vault: VaultManager; the selection is kept on the user's document.
        user_id: The user whose selection this tracker manages.
    """

    def __init__(self, vault, user_id: str):
        self.vault = vault
        self.user_id = str(user_id)
        self._path: Optional[str] = None

    @property
    def path(self) -> str:
        if self._path is None:
            self._path = self.vault.user_file(self.user_id)
        return self._path

    def set_active(self, quest_id: str, objective_index: int) -> ActiveSelection:
        """Clear whatever was active, then record the new selection."""
        self.clear_all()
        selection = ActiveSelection(quest_id=str(quest_id), index=int(objective_index))
        self.vault.set_flag(self.path, ACTIVE_FLAG, selection.model_dump(by_alias=True))
        logger.info(f"User {self.user_id} tracking {quest_id} #{objective_index}")
        return selection

    def clear_active(self, quest_id: str) -> bool:
        """Clear the selection if it belongs to ``quest_id``."""
        current = self.get_active()
        if current is None or current.quest_id != str(quest_id):
            return False
        self.clear_all()
        return True

    def clear_all(self) -> None:
        if self.vault.get_flag(self.path, ACTIVE_FLAG) is not None:
            self.vault.unset_flag(self.path, ACTIVE_FLAG)

    def get_active(self) -> Optional[ActiveSelection]:
        raw = self.vault.get_flag(self.path, ACTIVE_FLAG)
        if not raw:
            return None
        try:
            return ActiveSelection.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Discarding malformed active objective for {self.user_id}: {e}")
            return None

    def toggle_active(self, quest_id: str, objective_index: int) -> Optional[ActiveSelection]:
        """Select the objective, or clear it when it is already the active one."""
        current = self.get_active()
        if current and current.quest_id == str(quest_id) and current.index == int(objective_index):
            self.clear_active(quest_id)
            return None
        return self.set_active(quest_id, objective_index)

    def pin_quest(self, quest_id: str) -> None:
        """Pin a quest. Any active objective is cleared first."""
        self.clear_all()
        self.vault.set_flag(self.path, PINNED_FLAG, str(quest_id))

    def get_pinned_quest(self) -> Optional[str]:
        return self.vault.get_flag(self.path, PINNED_FLAG)
