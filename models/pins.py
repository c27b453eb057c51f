"""
Pin schema — records held by the external pin store (map annotation service).

Field aliases match the pin store's camelCase wire format; dump with
``by_alias=True`` when talking to it.
"""

from enum import Enum, IntEnum
from typing import Optional, Dict
from pydantic import BaseModel, Field, AliasChoices

# Owner tag stamped on every pin this system creates.
PIN_OWNER_TAG = "quest-pins"


class OwnershipLevel(IntEnum):
    NONE = 0
    LIMITED = 1
    OBSERVER = 2
    OWNER = 3


class OwnershipMap(BaseModel):
    default: OwnershipLevel = OwnershipLevel.NONE
    users: Dict[str, OwnershipLevel] = Field(default_factory=dict)

    def level_for(self, user_id: str) -> OwnershipLevel:
        return self.users.get(user_id, self.default)


class PinType(str, Enum):
    QUEST = "quest"
    OBJECTIVE = "objective"


class PinPlacement(BaseModel):
    scene_id: str = Field(alias="sceneId")
    x: float
    y: float

    model_config = {"populate_by_name": True}


class PinStyle(BaseModel):
    fill: str = "#ffff00"
    stroke: str = "#000000"
    stroke_width: int = Field(default=2, alias="strokeWidth")

    model_config = {"populate_by_name": True}


class PinConfig(BaseModel):
    """Back-references plus denormalized display fields."""

    quest_id: str = Field(alias="questId")
    quest_index: Optional[int] = Field(default=None, alias="questIndex")
    objective_index: Optional[int] = Field(default=None, alias="objectiveIndex")
    quest_category: Optional[str] = Field(default=None, alias="questCategory")
    quest_status: Optional[str] = Field(default=None, alias="questStatus")
    quest_state: Optional[str] = Field(default=None, alias="questState")  # visible | hidden
    objective_state: Optional[str] = Field(default=None, alias="objectiveState")
    objective_text: Optional[str] = Field(default=None, alias="objectiveText")

    model_config = {"populate_by_name": True, "extra": "allow"}


class Pin(BaseModel):
    id: str
    module_id: str = Field(default=PIN_OWNER_TAG, alias="moduleId")
    type: PinType
    shape: str = "circle"
    image: str = ""
    text: str = ""
    size: int = 32
    style: PinStyle = Field(default_factory=PinStyle)
    ownership: OwnershipMap = Field(default_factory=OwnershipMap)
    config: PinConfig
    placement: Optional[PinPlacement] = None

    model_config = {"populate_by_name": True, "extra": "allow"}

    @property
    def is_placed(self) -> bool:
        return self.placement is not None

    @property
    def scene_id(self) -> Optional[str]:
        return self.placement.scene_id if self.placement else None

    @property
    def quest_id(self) -> str:
        return self.config.quest_id

    @property
    def objective_index(self) -> Optional[int]:
        return self.config.objective_index

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude={"placement"})


class LegacyPinRecord(BaseModel):
    """Flat pin record from the pre-pin-store format, kept in scene flags."""

    pin_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("pinId", "pin_id"))
    quest_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("questId", "questUuid", "quest_id")
    )
    objective_index: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("objectiveIndex", "objective_index")
    )
    x: float = 0
    y: float = 0
    quest_index: Optional[int] = Field(default=None, validation_alias=AliasChoices("questIndex", "quest_index"))
    quest_category: Optional[str] = Field(default=None, validation_alias=AliasChoices("questCategory", "quest_category"))
    quest_state: Optional[str] = Field(default=None, validation_alias=AliasChoices("questState", "quest_state"))
    quest_status: Optional[str] = Field(default=None, validation_alias=AliasChoices("questStatus", "quest_status"))

    model_config = {"extra": "allow"}

    @property
    def is_objective_pin(self) -> bool:
        return self.objective_index is not None


class PinEventType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    UNPLACED = "unplaced"
    PLACED = "placed"
    DELETED_ALL = "deletedAll"


class PinEvent(BaseModel):
    type: PinEventType
    owner_tag: Optional[str] = Field(default=None, alias="ownerTag")
    scene_id: Optional[str] = Field(default=None, alias="sceneId")
    pin_id: Optional[str] = Field(default=None, alias="pinId")

    model_config = {"populate_by_name": True, "extra": "allow"}
