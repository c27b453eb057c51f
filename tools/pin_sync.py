"""
Pin Sync — pushes quest and objective state into the pin store.

One operation per pin lifecycle event (create, delete, place/unplace, restyle,
visibility). Each call is idempotent for a single pin but a batch is not
transactional: if it fails halfway, some pins are updated and some are not,
and ReconciliationService repairs the linkage later.

The pin store is optional. With no store every operation is a no-op that
returns None/False/0.
"""

import uuid
import logging
from typing import Optional, Dict, Any, List, Tuple

from integrations.pin_store_errors import (
    PinStoreError,
    PinNotFoundError,
    PinPermissionError,
)
from models.pins import (
    Pin,
    PinType,
    PinStyle,
    PinConfig,
    PinPlacement,
    OwnershipMap,
    PIN_OWNER_TAG,
)
from models.quests import (
    Quest,
    Objective,
    ObjectiveState,
    ObjectivePinLink,
    PinLinkage,
    QuestStatus,
)
from tools.pin_ownership import PinOwnershipCalculator

logger = logging.getLogger("PinSync")

# ---------------------------------------------------------------------------
# Appearance tables
# ---------------------------------------------------------------------------

HIDDEN_COLOR = "#000000"

QUEST_STATUS_COLORS = {
    QuestStatus.COMPLETE: "#00ff00",
    QuestStatus.FAILED: "#ff0000",
    QuestStatus.IN_PROGRESS: "#ffff00",
    QuestStatus.NOT_STARTED: "#ffffff",
}

OBJECTIVE_STATE_COLORS = {
    ObjectiveState.COMPLETED: "#00ff00",
    ObjectiveState.FAILED: "#ff0000",
    ObjectiveState.HIDDEN: HIDDEN_COLOR,
    ObjectiveState.ACTIVE: "#ffff00",
}

QUEST_PIN_SHAPE = ("circle", 32)
OBJECTIVE_PIN_SHAPE = ("square", 28)


def new_pin_id() -> str:
    return uuid.uuid4().hex[:16]


def quest_pin_label(quest: Quest) -> str:
    return f"Q{quest.quest_index} {quest.name}".strip()


def objective_pin_label(quest: Quest, objective: Objective) -> str:
    return f"Q{quest.quest_index}.{objective.index + 1} {objective.text}".strip()


def quest_pin_style(quest: Quest) -> PinStyle:
    fill = QUEST_STATUS_COLORS[quest.status] if quest.visible else HIDDEN_COLOR
    return PinStyle(fill=fill)


def objective_pin_style(quest: Quest, objective: Objective) -> PinStyle:
    fill = OBJECTIVE_STATE_COLORS[objective.state] if quest.visible else HIDDEN_COLOR
    return PinStyle(fill=fill)


def _quest_config(quest: Quest) -> PinConfig:
    return PinConfig(
        quest_id=quest.id,
        quest_index=quest.quest_index,
        quest_category=quest.category or None,
        quest_status=quest.status.value,
        quest_state="visible" if quest.visible else "hidden",
    )


def _objective_config(quest: Quest, objective: Objective) -> PinConfig:
    config = _quest_config(quest)
    config.objective_index = objective.index
    config.objective_state = objective.state.value
    config.objective_text = objective.text
    return config


def build_quest_pin(quest: Quest, ownership: OwnershipMap, pin_id: Optional[str] = None) -> Pin:
    shape, size = QUEST_PIN_SHAPE
    return Pin(
        id=pin_id or new_pin_id(),
        module_id=PIN_OWNER_TAG,
        type=PinType.QUEST,
        shape=shape,
        size=size,
        text=quest_pin_label(quest),
        style=quest_pin_style(quest),
        ownership=ownership,
        config=_quest_config(quest),
    )


def build_objective_pin(quest: Quest, objective: Objective, ownership: OwnershipMap,
                        pin_id: Optional[str] = None) -> Pin:
    shape, size = OBJECTIVE_PIN_SHAPE
    return Pin(
        id=pin_id or new_pin_id(),
        module_id=PIN_OWNER_TAG,
        type=PinType.OBJECTIVE,
        shape=shape,
        size=size,
        text=objective_pin_label(quest, objective),
        style=objective_pin_style(quest, objective),
        ownership=ownership,
        config=_objective_config(quest, objective),
    )


def _patch_from(pin: Pin, *fields: str) -> Dict[str, Any]:
    wire = pin.to_wire()
    return {k: wire[k] for k in fields if k in wire}


# ---------------------------------------------------------------------------
# PinSyncService
# ---------------------------------------------------------------------------

class PinSyncService:
    """Projects quest state onto pins.

    Args:
        pin_store: A PinStoreCapability, or None when there is no pin store at all.
        vault: VaultManager, where the PinLinkage is persisted.
        ownership: PinOwnershipCalculator bound to the privileged users.
    """

    def __init__(self, pin_store, vault, ownership: Optional[PinOwnershipCalculator] = None):
        self.pin_store = pin_store
        self.vault = vault
        self.ownership = ownership or PinOwnershipCalculator.from_vault(vault)

    @property
    def available(self) -> bool:
        return self.pin_store is not None and self.pin_store.is_available()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_quest_pin(self, quest: Quest,
                               placement: Optional[PinPlacement] = None) -> Optional[Pin]:
        """Create the quest's pin, unplaced unless ``placement`` is given.

        A quest already linked to a live pin keeps that pin; it is only placed.
        """
        if not self.available:
            logger.info(f"Pin store unavailable, no pin for quest '{quest.name}'.")
            return None

        try:
            existing = await self._live(quest.linkage.quest_pin_id)
            if existing is not None:
                pin = await self.pin_store.place(existing.id, placement) if placement else existing
            else:
                pin = build_quest_pin(quest, self.ownership.ownership_for(quest))
                pin = await self.pin_store.create(pin, placement)
        except PinPermissionError:
            raise
        except PinStoreError as e:
            logger.error(f"Failed to create pin for quest '{quest.name}': {e}")
            return None

        linkage = quest.linkage.model_copy(deep=True)
        linkage.quest_pin_id = pin.id
        linkage.quest_scene_id = pin.scene_id
        self.vault.save_linkage(quest, linkage)
        logger.info(f"Quest pin {pin.id} for '{quest.name}' ({pin.scene_id or 'unplaced'})")
        return pin

    async def create_objective_pin(self, quest: Quest, index: int,
                                   placement: Optional[PinPlacement] = None) -> Optional[Pin]:
        if not self.available:
            logger.info(f"Pin store unavailable, no pin for '{quest.name}' objective {index}.")
            return None
        objective = quest.objective(index)
        if objective is None:
            logger.warning(f"Quest '{quest.name}' has no objective {index}.")
            return None

        link = quest.linkage.objective_pins.get(index)
        try:
            existing = await self._live(link.pin_id if link else None)
            if existing is not None:
                pin = await self.pin_store.place(existing.id, placement) if placement else existing
            else:
                pin = build_objective_pin(quest, objective, self.ownership.ownership_for(quest, objective))
                pin = await self.pin_store.create(pin, placement)
        except PinPermissionError:
            raise
        except PinStoreError as e:
            logger.error(f"Failed to create pin for '{quest.name}' objective {index}: {e}")
            return None

        linkage = quest.linkage.model_copy(deep=True)
        linkage.objective_pins[index] = ObjectivePinLink(pin_id=pin.id, scene_id=pin.scene_id)
        self.vault.save_linkage(quest, linkage)
        logger.info(f"Objective pin {pin.id} for '{quest.name}' #{index} ({pin.scene_id or 'unplaced'})")
        return pin

    async def _live(self, pin_id: Optional[str]) -> Optional[Pin]:
        if not pin_id:
            return None
        return await self.pin_store.get(pin_id)

    async def linked_pin(self, quest: Quest, index: Optional[int] = None) -> Optional[Pin]:
        """The live pin linked to the quest, or to objective ``index``."""
        if not self.available:
            return None
        if index is None:
            pin_id = quest.linkage.quest_pin_id
        else:
            link = quest.linkage.objective_pins.get(index)
            pin_id = link.pin_id if link else None
        try:
            return await self._live(pin_id)
        except PinStoreError as e:
            logger.warning(f"Could not look up pin {pin_id} of '{quest.name}': {e}")
            return None

    # ------------------------------------------------------------------
    # Deletion / placement
    # ------------------------------------------------------------------

    async def delete_pins(self, quest_id: str, scene_id: Optional[str] = None) -> Dict[str, int]:
        """Delete the quest pin and objective pins of a quest, on one scene or all.

        Continues past failures. The linkage entries in scope are cleared
        whatever the outcome of the individual deletes.
        """
        counts = {"deleted": 0, "errors": 0}
        quest = self.vault.get_quest(quest_id)
        if quest is None:
            logger.warning(f"delete_pins: quest {quest_id} not found.")
            return counts
        if not self.available:
            logger.info("Pin store unavailable, nothing deleted.")
            return counts

        targets = self._linked_ids(quest.linkage, scene_id)
        try:
            for pin in await self._list_scope(scene_id):
                if pin.quest_id == quest.id:
                    targets[pin.id] = pin.scene_id
        except PinStoreError as e:
            logger.warning(f"Could not list pins for '{quest.name}', using linkage only: {e}")

        for pin_id, pin_scene in targets.items():
            try:
                await self.pin_store.delete(pin_id, pin_scene)
                counts["deleted"] += 1
            except PinNotFoundError:
                logger.debug(f"Pin {pin_id} already gone.")
            except PinStoreError as e:
                counts["errors"] += 1
                logger.error(f"Failed to delete pin {pin_id} of '{quest.name}': {e}")

        linkage = quest.linkage.model_copy(deep=True)
        if scene_id is None or linkage.quest_scene_id == scene_id:
            linkage.quest_pin_id = None
            linkage.quest_scene_id = None
        linkage.objective_pins = {
            idx: link for idx, link in linkage.objective_pins.items()
            if scene_id is not None and link.scene_id != scene_id
        }
        self.vault.save_linkage(quest, linkage)
        logger.info(
            f"Deleted {counts['deleted']} pin(s) of '{quest.name}' "
            f"({scene_id or 'all scenes'}), {counts['errors']} error(s)"
        )
        return counts

    async def delete_pin(self, pin_id: str) -> bool:
        """Delete a single pin by id and drop it from whichever quest links it.

        Returns True when a pin was deleted. A pin that is already gone still
        has its linkage entry cleared.
        """
        if not self.available:
            logger.info("Pin store unavailable, nothing deleted.")
            return False

        deleted = False
        quest_id = None
        try:
            pin = await self.pin_store.get(pin_id)
            if pin is not None:
                quest_id = pin.quest_id
                await self.pin_store.delete(pin_id, pin.scene_id)
                deleted = True
        except PinNotFoundError:
            logger.debug(f"Pin {pin_id} already gone.")
        except PinPermissionError:
            raise
        except PinStoreError as e:
            logger.error(f"Failed to delete pin {pin_id}: {e}")
            return False

        quest = self.vault.get_quest(quest_id) if quest_id else None
        if quest is None or pin_id not in self._linked_ids(quest.linkage, None):
            quest = next((q for q in self.vault.list_quests()
                          if pin_id in self._linked_ids(q.linkage, None)), None)
        if quest is not None:
            linkage = quest.linkage.model_copy(deep=True)
            if linkage.quest_pin_id == pin_id:
                linkage.quest_pin_id = None
                linkage.quest_scene_id = None
            linkage.objective_pins = {
                idx: link for idx, link in linkage.objective_pins.items() if link.pin_id != pin_id
            }
            self.vault.save_linkage(quest, linkage)
            logger.info(f"Pin {pin_id} unlinked from '{quest.name}'.")
        if deleted:
            logger.info(f"Deleted pin {pin_id}.")
        return deleted

    async def _list_scope(self, scene_id: Optional[str]) -> List[Pin]:
        if scene_id:
            return await self.pin_store.list(PIN_OWNER_TAG, scene_id=scene_id)
        pins = await self.pin_store.list(PIN_OWNER_TAG)
        pins.extend(await self.pin_store.list(PIN_OWNER_TAG, unplaced=True))
        return pins

    @staticmethod
    def _linked_ids(linkage: PinLinkage, scene_id: Optional[str]) -> Dict[str, Optional[str]]:
        ids: Dict[str, Optional[str]] = {}
        if linkage.quest_pin_id and (scene_id is None or linkage.quest_scene_id == scene_id):
            ids[linkage.quest_pin_id] = linkage.quest_scene_id
        for link in linkage.objective_pins.values():
            if scene_id is None or link.scene_id == scene_id:
                ids[link.pin_id] = link.scene_id
        return ids

    async def unplace(self, pin: Pin) -> Optional[Pin]:
        """Take a pin off its scene. The record and its linkage id survive."""
        if not self.available:
            return None
        try:
            updated = await self.pin_store.unplace(pin.id)
        except PinPermissionError:
            raise
        except PinStoreError as e:
            logger.error(f"Failed to unplace pin {pin.id}: {e}")
            return None
        self._relink(updated, scene_id=None)
        return updated

    async def place(self, pin: Pin, placement: PinPlacement) -> Optional[Pin]:
        if not self.available:
            return None
        try:
            updated = await self.pin_store.place(pin.id, placement)
        except PinPermissionError:
            raise
        except PinStoreError as e:
            logger.error(f"Failed to place pin {pin.id}: {e}")
            return None
        self._relink(updated, scene_id=placement.scene_id)
        return updated

    def _relink(self, pin: Pin, scene_id: Optional[str]) -> None:
        quest = self.vault.get_quest(pin.quest_id)
        if quest is None:
            return
        linkage = quest.linkage.model_copy(deep=True)
        if pin.type == PinType.QUEST:
            linkage.quest_pin_id = pin.id
            linkage.quest_scene_id = scene_id
        elif pin.objective_index is not None:
            linkage.objective_pins[pin.objective_index] = ObjectivePinLink(pin_id=pin.id, scene_id=scene_id)
        self.vault.save_linkage(quest, linkage)

    # ------------------------------------------------------------------
    # Appearance / visibility
    # ------------------------------------------------------------------

    def _targets(self, quest: Quest, scene_id: Optional[str] = None) -> List[Tuple[Pin, Optional[str]]]:
        """Freshly built pins for every linked pin of the quest, with their scene."""
        targets = []
        linkage = quest.linkage
        if linkage.quest_pin_id and (scene_id is None or linkage.quest_scene_id == scene_id):
            pin = build_quest_pin(quest, self.ownership.ownership_for(quest), linkage.quest_pin_id)
            targets.append((pin, linkage.quest_scene_id))
        for index, link in sorted(linkage.objective_pins.items()):
            if scene_id is not None and link.scene_id != scene_id:
                continue
            objective = quest.objective(index)
            if objective is None:
                logger.warning(f"Quest '{quest.name}' links a pin to missing objective {index}.")
                continue
            ownership = self.ownership.ownership_for(quest, objective)
            targets.append((build_objective_pin(quest, objective, ownership, link.pin_id), link.scene_id))
        return targets

    async def _push(self, quest: Quest, fields: Tuple[str, ...], scene_id: Optional[str] = None) -> int:
        if not self.available:
            return 0
        updated = 0
        for pin, pin_scene in self._targets(quest, scene_id):
            try:
                await self.pin_store.update(pin.id, _patch_from(pin, *fields), pin_scene)
                updated += 1
            except PinNotFoundError:
                logger.info(f"Linked pin {pin.id} of '{quest.name}' is gone; left for reconciliation.")
            except PinStoreError as e:
                logger.error(f"Failed to update pin {pin.id} of '{quest.name}': {e}")
        return updated

    async def update_visibility(self, quest_id: str, scene_id: Optional[str] = None) -> int:
        """Re-push ownership for the quest's existing pins. Never creates pins."""
        quest = self.vault.get_quest(quest_id)
        if quest is None:
            logger.warning(f"update_visibility: quest {quest_id} not found.")
            return 0
        return await self._push(quest, ("ownership", "style", "config"), scene_id)

    async def update_styles(self, quest: Quest) -> int:
        """Re-push appearance and ownership for the quest's existing pins."""
        return await self._push(quest, ("text", "shape", "size", "style", "ownership", "config"))

    async def set_global_visibility(self, visible: bool) -> bool:
        """Show or hide every quest pin at once through the module switch."""
        if not self.available:
            return False
        try:
            await self.pin_store.set_module_visibility(PIN_OWNER_TAG, visible)
        except PinStoreError as e:
            logger.error(f"Failed to set quest pin visibility: {e}")
            return False
        logger.info(f"Quest pins {'shown' if visible else 'hidden'}.")
        return True

    async def get_global_visibility(self) -> bool:
        if not self.available:
            return True
        try:
            return await self.pin_store.get_module_visibility(PIN_OWNER_TAG)
        except PinStoreError as e:
            logger.warning(f"Could not read quest pin visibility: {e}")
            return True
