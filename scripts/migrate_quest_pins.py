"""
Quest Pin Migration Script

Moves legacy scene pin arrays (the ``questPins`` scene flag) into the pin
store, then reconciles every quest's pin linkage.

Usage:
    python scripts/migrate_quest_pins.py --dry-run       # Report what would migrate
    python scripts/migrate_quest_pins.py                 # Migrate + reconcile
    python scripts/migrate_quest_pins.py --scene Scene.abc --reconcile-only

Legacy pin data is NEVER deleted. It stays in the scene flags for manual rollback.
"""

import sys
import os
import asyncio
import argparse
import logging

# Ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from dotenv import load_dotenv
from pydantic import ValidationError

from integrations.pin_store import PinStoreClient
from models.pins import LegacyPinRecord
from tools.vault_manager import VaultManager
from tools.pin_migration import MigrationService, LEGACY_PINS_FLAG, MIGRATED_FLAG
from tools.reconciliation import ReconciliationService

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("Migration")


def survey(vault: VaultManager, scene_id=None):
    """Count legacy records per scene without touching anything."""
    summary = {}
    for fpath in vault.list_scene_files():
        fm, _body = vault.read_file(fpath)
        if not fm.get("id") or (scene_id and str(fm["id"]) != scene_id):
            continue
        flags = vault.get_flags(fpath)
        records = flags.get(LEGACY_PINS_FLAG) or []
        valid = 0
        for raw in records:
            try:
                record = LegacyPinRecord.model_validate(raw)
            except ValidationError as e:
                logger.error(f"  [FAIL] {fm['id']}: {e}")
                continue
            if record.pin_id and record.quest_id:
                valid += 1
            else:
                logger.error(f"  [FAIL] {fm['id']}: record without pinId/questId: {raw!r}")
        state = "migrated" if flags.get(MIGRATED_FLAG) else "pending"
        logger.info(f"  [{state}] {fm.get('name', fm['id'])}: {valid}/{len(records)} valid legacy pin(s)")
        summary[str(fm["id"])] = {"records": len(records), "valid": valid, "state": state}
    return summary


async def main():
    parser = argparse.ArgumentParser(description="Migrate legacy quest pins into the pin store")
    parser.add_argument("--dry-run", action="store_true", help="Report only, change nothing")
    parser.add_argument("--vault-path", default=os.getenv("QUEST_VAULT_PATH", "campaign_vault"),
                        help="Path to the campaign vault")
    parser.add_argument("--scene", default=None, help="Limit to one scene id")
    parser.add_argument("--reconcile-only", action="store_true", help="Skip migration, only reconcile")
    args = parser.parse_args()

    vault = VaultManager(vault_path=args.vault_path)
    logger.info(f"Vault path: {vault.vault_path}")

    logger.info("=" * 60)
    logger.info("Phase 1: Survey legacy pin records")
    logger.info("=" * 60)
    summary = survey(vault, args.scene)
    pending = sum(1 for s in summary.values() if s["state"] == "pending")
    logger.info(f"{len(summary)} scene(s), {pending} pending migration")

    if args.dry_run:
        logger.info("--dry-run complete. Nothing was written.")
        return

    pin_store = PinStoreClient()
    if not await pin_store.probe():
        logger.error("Pin store unavailable. Aborting.")
        await pin_store.close()
        return

    try:
        if not args.reconcile_only:
            logger.info("=" * 60)
            logger.info("Phase 2: Migrate")
            logger.info("=" * 60)
            migrator = MigrationService(pin_store, vault)
            if args.scene:
                result = await migrator.migrate_scene(args.scene)
            else:
                result = await migrator.migrate_all()
            logger.info(f"Migration result: {result.as_dict()}")

        logger.info("=" * 60)
        logger.info("Phase 3: Reconcile pin linkage")
        logger.info("=" * 60)
        report = await ReconciliationService(pin_store, vault).reconcile(args.scene)
        logger.info(report.summary())
    finally:
        await pin_store.close()


if __name__ == "__main__":
    asyncio.run(main())
