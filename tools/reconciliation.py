"""
Reconciliation — repairs quest pin linkage from what the pin store really holds.

Pull-based and safe to run at any time, as often as needed:

  1. list every quest-pins pin in scope, plus every unplaced one
  2. index them by quest (quest pins) and by (quest, objective) (objective pins)
  3. per quest: take live pins as the truth, drop recorded ids that no longer exist
  4. write the linkage back only when it changed

Reconciliation never creates or deletes pins, it only edits linkage.
When the pin store cannot be observed (unavailable, or listing failed) the
linkage is left untouched.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from integrations.pin_store_errors import PinStoreError
from models.pins import Pin, PinType, PIN_OWNER_TAG
from models.quests import Quest, ObjectivePinLink

logger = logging.getLogger("Reconciliation")

PinKey = Tuple[str, Optional[int]]


@dataclass
class ReconciliationReport:
    scene_id: Optional[str] = None
    pins_seen: int = 0
    quests_checked: int = 0
    repaired: int = 0
    duplicates: int = 0
    errors: int = 0
    skipped: bool = False

    def summary(self) -> str:
        if self.skipped:
            return "Reconciliation skipped: pin store not observable."
        return (
            f"Checked {self.quests_checked} quest(s) against {self.pins_seen} pin(s): "
            f"{self.repaired} repaired, {self.duplicates} duplicate(s), {self.errors} error(s)."
        )


def pin_key(pin: Pin) -> PinKey:
    if pin.type == PinType.QUEST:
        return pin.quest_id, None
    return pin.quest_id, pin.objective_index


def _pick(candidates: List[Pin], recorded_id: Optional[str]) -> Pin:
    """Choose one pin out of duplicates: the recorded one, else placed first, then lowest id."""
    for pin in candidates:
        if pin.id == recorded_id:
            return pin
    return sorted(candidates, key=lambda p: (not p.is_placed, p.id))[0]


class ReconciliationService:
    """Makes every quest's PinLinkage match the pin store.

    Args:
        pin_store: A PinStoreCapability (or None).
        vault: VaultManager holding the quest documents.
    """

    def __init__(self, pin_store, vault, owner_tag: str = PIN_OWNER_TAG):
        self.pin_store = pin_store
        self.vault = vault
        self.owner_tag = owner_tag

    async def reconcile(self, scene_id: Optional[str] = None) -> ReconciliationReport:
        report = ReconciliationReport(scene_id=scene_id)
        if self.pin_store is None or not self.pin_store.is_available():
            logger.info("Pin store unavailable, reconciliation skipped.")
            report.skipped = True
            return report

        try:
            pins = await self._collect(scene_id)
        except PinStoreError as e:
            logger.error(f"Could not list pins, reconciliation skipped: {e}")
            report.skipped = True
            return report

        by_id = {pin.id: pin for pin in pins}
        index: Dict[PinKey, List[Pin]] = {}
        for pin in by_id.values():
            index.setdefault(pin_key(pin), []).append(pin)
        report.pins_seen = len(by_id)

        for quest in self.vault.list_quests():
            report.quests_checked += 1
            try:
                if await self._repair(quest, index, by_id, report):
                    report.repaired += 1
            except Exception as e:
                report.errors += 1
                logger.error(f"Reconciliation failed for quest '{quest.name}': {e}", exc_info=True)

        logger.info(f"[{scene_id or 'all scenes'}] {report.summary()}")
        return report

    async def _collect(self, scene_id: Optional[str]) -> List[Pin]:
        if scene_id:
            pins = await self.pin_store.list(self.owner_tag, scene_id=scene_id)
        else:
            pins = await self.pin_store.list(self.owner_tag)
        pins.extend(await self.pin_store.list(self.owner_tag, unplaced=True))
        return pins

    async def _repair(self, quest: Quest, index: Dict[PinKey, List[Pin]],
                      by_id: Dict[str, Pin], report: ReconciliationReport) -> bool:
        before = quest.linkage.to_flags()
        linkage = quest.linkage.model_copy(deep=True)

        # Quest pin
        live = index.get((quest.id, None))
        if live:
            if len(live) > 1:
                report.duplicates += len(live) - 1
                logger.warning(f"{len(live)} quest pins for '{quest.name}': {[p.id for p in live]}")
            chosen = _pick(live, linkage.quest_pin_id)
            linkage.quest_pin_id = chosen.id
            linkage.quest_scene_id = chosen.scene_id
        elif linkage.quest_pin_id:
            found, scene = await self._verify(
                linkage.quest_pin_id, (quest.id, None), by_id, linkage.quest_scene_id
            )
            if not found:
                logger.info(f"Quest pin {linkage.quest_pin_id} of '{quest.name}' no longer exists.")
                linkage.quest_pin_id = None
                linkage.quest_scene_id = None
            else:
                linkage.quest_scene_id = scene

        # Objective pins found live
        live_indexes = set()
        for (quest_id, objective_index), candidates in index.items():
            if quest_id != quest.id or objective_index is None:
                continue
            live_indexes.add(objective_index)
            recorded = linkage.objective_pins.get(objective_index)
            if len(candidates) > 1:
                report.duplicates += len(candidates) - 1
                logger.warning(
                    f"{len(candidates)} pins for '{quest.name}' objective {objective_index}: "
                    f"{[p.id for p in candidates]}"
                )
            chosen = _pick(candidates, recorded.pin_id if recorded else None)
            linkage.objective_pins[objective_index] = ObjectivePinLink(
                pin_id=chosen.id, scene_id=chosen.scene_id
            )

        # Recorded objective pins not seen in scope
        for objective_index, link in list(linkage.objective_pins.items()):
            if objective_index in live_indexes:
                continue
            found, scene = await self._verify(
                link.pin_id, (quest.id, objective_index), by_id, link.scene_id
            )
            if not found:
                logger.info(
                    f"Objective pin {link.pin_id} of '{quest.name}' #{objective_index} no longer exists."
                )
                del linkage.objective_pins[objective_index]
            else:
                link.scene_id = scene

        if linkage.to_flags() == before:
            return False
        if not self.vault.save_linkage(quest, linkage):
            raise OSError(f"could not write linkage for quest {quest.id}")
        logger.info(f"Repaired pin linkage of '{quest.name}'.")
        return True

    async def _verify(self, pin_id: str, key: PinKey, by_id: Dict[str, Pin],
                      recorded_scene: Optional[str]) -> Tuple[bool, Optional[str]]:
        """Is a recorded pin still there for this key? Returns (found, scene).

        A pin seen in scope under another key belongs to someone else. A pin
        outside the scope is looked up directly; if that lookup fails the
        recorded id is kept.
        """
        seen = by_id.get(pin_id)
        if seen is not None:
            return pin_key(seen) == key, seen.scene_id
        try:
            pin = await self.pin_store.get(pin_id)
        except PinStoreError as e:
            logger.warning(f"Could not verify pin {pin_id}, keeping it: {e}")
            return True, recorded_scene
        if pin is None:
            return False, None
        return pin_key(pin) == key, pin.scene_id
