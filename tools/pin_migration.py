"""
Pin Migration — one-time move of legacy scene pin arrays into the pin store.

Older campaigns kept their quest pins as a flat list under the scene's
``questPins`` flag. Each scene is migrated once and then marked with
``questPinsMigrated``; a marked scene is a no-op, so this can run on every
startup.

Migrated pins keep their original id and coordinates. Objective pins take
their text and state from the quest document, not from the legacy copy.
The legacy list is left in place for manual rollback.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any

from pydantic import ValidationError

from integrations.pin_store_errors import PinStoreError
from models.pins import LegacyPinRecord, PinPlacement
from models.quests import ObjectivePinLink
from tools.pin_ownership import PinOwnershipCalculator
from tools.pin_sync import build_quest_pin, build_objective_pin

logger = logging.getLogger("PinMigration")

LEGACY_PINS_FLAG = "questPins"
MIGRATED_FLAG = "questPinsMigrated"


@dataclass
class MigrationResult:
    migrated: int = 0
    skipped: int = 0
    errors: int = 0

    def __add__(self, other: "MigrationResult") -> "MigrationResult":
        return MigrationResult(
            migrated=self.migrated + other.migrated,
            skipped=self.skipped + other.skipped,
            errors=self.errors + other.errors,
        )

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class MigrationService:
    """Converts legacy pin records into pin-store pins, scene by scene."""

    def __init__(self, pin_store, vault, ownership: Optional[PinOwnershipCalculator] = None):
        self.pin_store = pin_store
        self.vault = vault
        self.ownership = ownership or PinOwnershipCalculator.from_vault(vault)

    def _scene_file(self, scene: Any) -> Optional[str]:
        if isinstance(scene, dict):
            return scene.get('file') or self.vault.find_scene_file(scene.get('id'))
        return self.vault.find_scene_file(scene)

    def needs_migration(self, scene: Any) -> bool:
        fpath = self._scene_file(scene)
        return bool(fpath) and not self.vault.get_flag(fpath, MIGRATED_FLAG)

    async def migrate_scene(self, scene: Any) -> MigrationResult:
        """Migrate one scene, given its id or its document (from ``vault.get_scene``)."""
        result = MigrationResult()
        fpath = self._scene_file(scene)
        if fpath is None:
            logger.warning(f"Scene {scene} not found, nothing to migrate.")
            return result

        fm, _body = self.vault.read_file(fpath)
        scene_id = str(fm.get('id'))
        flags = self.vault.get_flags(fpath)
        if flags.get(MIGRATED_FLAG):
            return result

        records = flags.get(LEGACY_PINS_FLAG) or []
        if not records:
            self.vault.set_flag(fpath, MIGRATED_FLAG, True)
            logger.info(f"Scene {scene_id}: no legacy pins, marked migrated.")
            return result

        if self.pin_store is None or not self.pin_store.is_available():
            logger.info(f"Scene {scene_id}: pin store unavailable, migration postponed.")
            return result

        for raw in records:
            outcome = await self._migrate_record(scene_id, raw)
            setattr(result, outcome, getattr(result, outcome) + 1)

        self.vault.set_flag(fpath, MIGRATED_FLAG, True)
        logger.info(
            f"Scene {scene_id}: migrated {result.migrated}, skipped {result.skipped}, "
            f"errors {result.errors}"
        )
        return result

    async def _migrate_record(self, scene_id: str, raw: Any) -> str:
        """Migrate one legacy record. Returns 'migrated', 'skipped' or 'errors'."""
        try:
            record = LegacyPinRecord.model_validate(raw)
        except ValidationError as e:
            logger.error(f"Scene {scene_id}: invalid legacy pin record {raw!r}: {e}")
            return 'errors'
        if not record.pin_id or not record.quest_id:
            logger.error(f"Scene {scene_id}: legacy pin record missing pinId/questId: {raw!r}")
            return 'errors'

        quest = self.vault.get_quest(record.quest_id)
        if quest is None:
            logger.info(f"Legacy pin {record.pin_id}: quest {record.quest_id} no longer exists.")
            return 'skipped'

        try:
            if await self.pin_store.exists(record.pin_id):
                logger.info(f"Legacy pin {record.pin_id} already in the pin store.")
                return 'skipped'

            linkage = quest.linkage.model_copy(deep=True)
            placement = PinPlacement(scene_id=scene_id, x=record.x, y=record.y)
            if record.is_objective_pin:
                objective = quest.objective(record.objective_index)
                if objective is None:
                    logger.info(
                        f"Legacy pin {record.pin_id}: '{quest.name}' has no objective "
                        f"{record.objective_index}."
                    )
                    return 'skipped'
                link = linkage.objective_pins.get(objective.index)
                if link and await self.pin_store.exists(link.pin_id):
                    logger.info(f"Objective {objective.index} of '{quest.name}' already has pin {link.pin_id}.")
                    return 'skipped'
                pin = build_objective_pin(
                    quest, objective, self.ownership.ownership_for(quest, objective), record.pin_id
                )
                created = await self.pin_store.create(pin, placement)
                linkage.objective_pins[objective.index] = ObjectivePinLink(
                    pin_id=created.id, scene_id=scene_id
                )
            else:
                if linkage.quest_pin_id and await self.pin_store.exists(linkage.quest_pin_id):
                    logger.info(f"Quest '{quest.name}' already has pin {linkage.quest_pin_id}.")
                    return 'skipped'
                pin = build_quest_pin(quest, self.ownership.ownership_for(quest), record.pin_id)
                created = await self.pin_store.create(pin, placement)
                linkage.quest_pin_id = created.id
                linkage.quest_scene_id = scene_id
        except PinStoreError as e:
            logger.error(f"Failed to migrate legacy pin {record.pin_id}: {e}")
            return 'errors'

        self.vault.save_linkage(quest, linkage)
        return 'migrated'

    async def migrate_all(self) -> MigrationResult:
        total = MigrationResult()
        for fpath in self.vault.list_scene_files():
            fm, _body = self.vault.read_file(fpath)
            if not fm.get('id'):
                continue
            try:
                total = total + await self.migrate_scene({**fm, 'file': fpath})
            except Exception as e:
                total.errors += 1
                logger.error(f"Migration of scene {fpath} failed: {e}", exc_info=True)
        logger.info(f"Migration complete: {total.as_dict()}")
        return total
