"""
Pydantic v2 data models — the contract for quest and pin state.

Quest documents are parsed into these models at the vault boundary and
pin-store payloads are validated through them before anything downstream
branches on them.
"""

from models.quests import (
    Quest,
    QuestStatus,
    Objective,
    ObjectiveState,
    ObjectivePinLink,
    PinLinkage,
    DEFAULT_CATEGORIES,
    is_normal_category,
)
from models.pins import (
    PIN_OWNER_TAG,
    OwnershipLevel,
    OwnershipMap,
    Pin,
    PinType,
    PinPlacement,
    PinStyle,
    PinConfig,
    LegacyPinRecord,
    PinEvent,
    PinEventType,
)

__all__ = [
    "Quest",
    "QuestStatus",
    "Objective",
    "ObjectiveState",
    "ObjectivePinLink",
    "PinLinkage",
    "DEFAULT_CATEGORIES",
    "is_normal_category",
    "PIN_OWNER_TAG",
    "OwnershipLevel",
    "OwnershipMap",
    "Pin",
    "PinType",
    "PinPlacement",
    "PinStyle",
    "PinConfig",
    "LegacyPinRecord",
    "PinEvent",
    "PinEventType",
]
