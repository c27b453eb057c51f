"""
Vault Watcher — picks up quest and scene edits made directly in the vault.

Quest documents are edited by hand as often as through the bot. A changed
quest body (or visibility flag) gets its status recomputed and its pins
restyled. A changed scene flag block queues a reconciliation for that scene.

Change detection compares SHA-256 hashes against the last seen value. The
bot's own writes are picked up as well; syncing them again changes nothing.
"""

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from integrations.pin_store_errors import PinStoreError
from models.quests import Quest

logger = logging.getLogger("VaultWatcher")


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def quest_hash(quest: Quest) -> str:
    return _digest(f"{quest.visible}\n{quest.body}")


def flags_hash(flags: Dict) -> str:
    return _digest(json.dumps(flags, sort_keys=True, default=str))


@dataclass
class VaultChanges:
    quests: List[str] = field(default_factory=list)
    scenes: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.quests or self.scenes)


class VaultWatcher:
    """Polls the vault and pushes direct edits into the pin store.

    Args:
        vault: VaultManager.
        status_machine: QuestStatusMachine.
        pin_sync: PinSyncService.
        event_router: PinEventRouter, for scene flag changes.
        interval_seconds: Time between polls in ``run()``.
    """

    def __init__(self, vault, status_machine, pin_sync, event_router=None,
                 interval_seconds: float = 5.0):
        self.vault = vault
        self.status_machine = status_machine
        self.pin_sync = pin_sync
        self.event_router = event_router
        self.interval_seconds = interval_seconds
        self._quest_hashes: Dict[str, str] = {}
        self._scene_hashes: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def sync_quest(self, quest_id: str) -> Optional[Quest]:
        """Recompute one quest's status from its document and restyle its pins."""
        quest = self.vault.get_quest(quest_id)
        if quest is None:
            logger.warning(f"sync_quest: quest {quest_id} not found.")
            return None
        await self._sync(quest)
        return quest

    async def _sync(self, quest: Quest) -> None:
        change = self.status_machine.recompute_status(quest)
        if change.changed:
            logger.info(f"Quest '{quest.name}' edited in the vault: {change.previous.value} -> {change.status.value}")
        try:
            await self.pin_sync.update_styles(quest)
        except PinStoreError as e:
            logger.error(f"Pin restyle failed for quest '{quest.name}': {e}")
        fresh = self.vault.get_quest(quest.id)
        if fresh is not None:
            self._quest_hashes[quest.id] = quest_hash(fresh)

    async def sync_all(self) -> int:
        """Startup sweep: sync every quest and take the scene baseline."""
        count = 0
        for quest in self.vault.list_quests():
            await self._sync(quest)
            count += 1
        self._scene_hashes = self._scan_scenes()
        logger.info(f"Vault sweep synced {count} quest(s).")
        return count

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def _scan_scenes(self) -> Dict[str, str]:
        hashes = {}
        for fpath in self.vault.list_scene_files():
            fm, _body = self.vault.read_file(fpath)
            if fm.get('id'):
                hashes[str(fm['id'])] = flags_hash(self.vault.get_flags(fpath))
        return hashes

    async def poll(self) -> VaultChanges:
        """Compare the vault against the last seen hashes and act on the differences.

        A quest or scene seen for the first time is recorded, and a quest is
        synced, but a new scene does not trigger a reconcile.
        """
        changes = VaultChanges()

        for quest in self.vault.list_quests():
            if self._quest_hashes.get(quest.id) != quest_hash(quest):
                changes.quests.append(quest.id)
                await self._sync(quest)

        scenes = self._scan_scenes()
        for scene_id, digest in scenes.items():
            previous = self._scene_hashes.get(scene_id)
            if previous is not None and previous != digest:
                changes.scenes.append(scene_id)
                if self.event_router is not None:
                    self.event_router.handle_scene_updated(scene_id)
        self._scene_hashes = scenes

        if changes:
            logger.info(f"Vault changes: {len(changes.quests)} quest(s), {len(changes.scenes)} scene(s).")
        return changes

    async def run(self) -> None:
        """Poll until cancelled."""
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.poll()
            except Exception as e:
                logger.error(f"Vault poll failed: {e}", exc_info=True)
