"""
Quest schema — quests, their objectives, and the pin linkage kept on the quest document.
"""

from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, field_validator


class QuestStatus(str, Enum):
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    COMPLETE = "Complete"
    FAILED = "Failed"

    @classmethod
    def parse(cls, value: Optional[str]) -> "QuestStatus":
        """Lenient parse of a status label. Unknown text means Not Started."""
        if isinstance(value, cls):
            return value
        text = (value or "").strip().lower()
        if text in ("complete", "completed"):
            return cls.COMPLETE
        for status in cls:
            if status.value.lower() == text:
                return status
        return cls.NOT_STARTED

    @property
    def is_terminal(self) -> bool:
        return self in (QuestStatus.COMPLETE, QuestStatus.FAILED)


class ObjectiveState(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    HIDDEN = "hidden"


DEFAULT_CATEGORIES = ["Main Quest", "Side Quest"]

# Categories a quest is shown under once it is finished. Anything else is a
# "normal" category that originalCategory can remember.
TERMINAL_CATEGORIES = {"completed", "failed"}


def is_normal_category(category: Optional[str]) -> bool:
    return bool(category) and category.strip().lower() not in TERMINAL_CATEGORIES


class Objective(BaseModel):
    """One task-list item. Position in the list is its only identity."""

    index: int
    text: str = ""
    state: ObjectiveState = ObjectiveState.ACTIVE
    hint: Optional[str] = None  # GM-only, from ||...||
    unlocks: List[str] = Field(default_factory=list)  # treasure names, from ((...))


class ObjectivePinLink(BaseModel):
    pin_id: str = Field(alias="pinId")
    scene_id: Optional[str] = Field(default=None, alias="sceneId")

    model_config = {"populate_by_name": True}


class PinLinkage(BaseModel):
    """Join between quest/objective identity and pin identity.

    Stored on the quest document as the flags ``pinId``, ``sceneId`` and
    ``objectivePins`` (a map keyed by the objective index as a string).
    """

    quest_pin_id: Optional[str] = None
    quest_scene_id: Optional[str] = None
    objective_pins: Dict[int, ObjectivePinLink] = Field(default_factory=dict)

    @classmethod
    def from_flags(cls, flags: Dict[str, Any]) -> "PinLinkage":
        objective_pins: Dict[int, ObjectivePinLink] = {}
        for key, entry in (flags.get("objectivePins") or {}).items():
            if not isinstance(entry, dict) or not entry.get("pinId"):
                continue
            try:
                objective_pins[int(key)] = ObjectivePinLink.model_validate(entry)
            except (TypeError, ValueError):
                continue
        return cls(
            quest_pin_id=flags.get("pinId"),
            quest_scene_id=flags.get("sceneId"),
            objective_pins=objective_pins,
        )

    def to_flags(self) -> Dict[str, Any]:
        return {
            "pinId": self.quest_pin_id,
            "sceneId": self.quest_scene_id,
            "objectivePins": {
                str(index): link.model_dump(by_alias=True)
                for index, link in sorted(self.objective_pins.items())
            },
        }


class Quest(BaseModel):
    """A quest document, parsed."""

    id: str
    name: str
    quest_index: int = 0
    category: str = ""
    status: QuestStatus = QuestStatus.NOT_STARTED
    objectives: List[Objective] = Field(default_factory=list)
    visible: bool = True
    original_category: Optional[str] = None
    linkage: PinLinkage = Field(default_factory=PinLinkage)
    path: Optional[str] = None  # vault-relative file path
    body: str = ""

    @field_validator("status", mode="before")
    @classmethod
    def validate_status(cls, v):
        return QuestStatus.parse(v)

    def objective(self, index: int) -> Optional[Objective]:
        if 0 <= index < len(self.objectives):
            return self.objectives[index]
        return None

    @property
    def all_objectives_completed(self) -> bool:
        return bool(self.objectives) and all(
            o.state == ObjectiveState.COMPLETED for o in self.objectives
        )

    model_config = {"extra": "allow"}
