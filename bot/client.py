"""
Quest Pins — Discord Bot Client

Builds the quest-pin services and runs the startup sequence. All !commands
live in the Quest Pins cog (bot/cogs/quest_pin_cog.py).

Startup (on_ready, once):
    probe pin store -> migrate legacy pins -> full reconcile -> vault sweep
        -> bind notifications to the channel -> listen for pin events
        -> poll the vault for direct edits
"""

import os
import asyncio
import logging
from typing import Optional

import discord
from discord.ext import commands
from dotenv import load_dotenv

from integrations.pin_store import PinStoreClient
from integrations.pin_store_errors import PinStoreError
from models.pins import PIN_OWNER_TAG
from bot.notifications import DiscordNotificationChannel
from tools.vault_manager import VaultManager
from tools.pin_ownership import PinOwnershipCalculator
from tools.quest_status import QuestStatusMachine
from tools.pin_sync import PinSyncService
from tools.reconciliation import ReconciliationService
from tools.pin_migration import MigrationService
from tools.active_objective import ActiveObjectiveTracker
from tools.notification_coalescer import NotificationCoalescer, NotificationState
from tools.quest_service import QuestService
from tools.pin_events import PinEventRouter, PinPlacementController
from tools.vault_watcher import VaultWatcher

logger = logging.getLogger("QuestPins_Bot")

# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------
load_dotenv()
DISCORD_TOKEN = os.getenv("DISCORD_BOT_TOKEN")
NOTIFY_CHANNEL_ID = os.getenv("QUEST_NOTIFY_CHANNEL_ID")
VAULT_PATH = os.getenv("QUEST_VAULT_PATH", "campaign_vault")
PIN_USER_ID = os.getenv("QUEST_PIN_USER_ID", "gm")
NOTIFY_DEBOUNCE_MS = int(os.getenv("QUEST_NOTIFY_DEBOUNCE_MS", "100"))
VAULT_POLL_SECONDS = float(os.getenv("QUEST_VAULT_POLL_SECONDS", "5"))

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
if not os.path.exists("logs"):
    os.makedirs("logs")

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.FileHandler("logs/quest_pins.log", encoding="utf-8"),
        logging.StreamHandler(),
    ],
)

# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------
vault = VaultManager(vault_path=VAULT_PATH)
pin_store = PinStoreClient()  # probed in on_ready
ownership = PinOwnershipCalculator.from_vault(vault)

notification_state = NotificationState()
notifier = NotificationCoalescer(state=notification_state, window_seconds=NOTIFY_DEBOUNCE_MS / 1000)

status_machine = QuestStatusMachine(vault, notifier=notifier)
pin_sync = PinSyncService(pin_store, vault, ownership)
reconciler = ReconciliationService(pin_store, vault)
migrator = MigrationService(pin_store, vault, ownership)
tracker = ActiveObjectiveTracker(vault, PIN_USER_ID)
quest_service = QuestService(vault, status_machine, pin_sync, tracker, notifier)
event_router = PinEventRouter(reconciler)
placement = PinPlacementController(pin_sync, vault)
watcher = VaultWatcher(vault, status_machine, pin_sync, event_router, interval_seconds=VAULT_POLL_SECONDS)

# ---------------------------------------------------------------------------
# Discord Bot Instance
# ---------------------------------------------------------------------------
intents = discord.Intents.default()
intents.message_content = True
bot = commands.Bot(command_prefix="!", intents=intents, help_command=None)

# Attach shared services to bot so cogs can access them via self.bot
bot.vault = vault
bot.pin_store = pin_store
bot.pin_sync = pin_sync
bot.reconciler = reconciler
bot.migrator = migrator
bot.quest_service = quest_service
bot.notifier = notifier
bot.event_router = event_router
bot.placement = placement
bot.watcher = watcher

_startup_done = False
_event_task: Optional[asyncio.Task] = None
_watch_task: Optional[asyncio.Task] = None


async def _listen_for_pin_events():
    """Feed the relay's pin event stream into the router, reconnecting on failure."""
    while pin_store.is_available():
        try:
            await event_router.run(pin_store.events(PIN_OWNER_TAG))
        except PinStoreError as e:
            logger.warning(f"Pin event stream error: {e}")
        except Exception as e:
            logger.error(f"Pin event listener crashed: {e}", exc_info=True)
        await asyncio.sleep(5)


async def startup():
    """Probe, migrate, reconcile, sweep, bind notifications, listen. Runs once."""
    global _startup_done, _event_task, _watch_task
    if _startup_done:
        return
    _startup_done = True

    if await pin_store.probe():
        logger.info("Pin store available — quest pins active.")
    else:
        logger.warning("Pin store unavailable — quest pins disabled, quests still tracked.")

    result = await migrator.migrate_all()
    if result.migrated or result.errors:
        logger.info(f"Legacy pin migration: {result.as_dict()}")

    report = await reconciler.reconcile()
    logger.info(report.summary())

    await watcher.sync_all()

    if NOTIFY_CHANNEL_ID:
        channel = bot.get_channel(int(NOTIFY_CHANNEL_ID))
        if channel is None:
            logger.warning(f"Could not find notification channel {NOTIFY_CHANNEL_ID}")
        else:
            notifier.bind(DiscordNotificationChannel(channel))
            logger.info(f"Quest notifications -> #{channel}")
    else:
        logger.info("QUEST_NOTIFY_CHANNEL_ID not set — notifications are log-only.")

    if pin_store.is_available():
        _event_task = asyncio.create_task(_listen_for_pin_events())
    if VAULT_POLL_SECONDS > 0:
        _watch_task = asyncio.create_task(watcher.run())


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------
@bot.event
async def on_ready():
    logger.info(f"Logged in as {bot.user.name} ({bot.user.id})")
    logger.info(f"Vault path: {vault.vault_path}")
    await startup()
    print("Quest Pins online.")


# ---------------------------------------------------------------------------
# Cog Loading & Entry Point
# ---------------------------------------------------------------------------
async def load_cogs():
    """Load all Cog extensions."""
    await bot.load_extension("bot.cogs.quest_pin_cog")
    logger.info("All Cogs loaded.")


async def main():
    """Async entry point — load cogs then start the bot."""
    try:
        async with bot:
            await load_cogs()
            await bot.start(DISCORD_TOKEN)
    finally:
        if _event_task is not None:
            _event_task.cancel()
        if _watch_task is not None:
            _watch_task.cancel()
        await event_router.close()
        await notifier.close()
        await pin_store.close()


def run():
    """Synchronous entry point for scripts."""
    if not DISCORD_TOKEN:
        print("Error: DISCORD_BOT_TOKEN not found via os.getenv")
        return
    asyncio.run(main())


if __name__ == "__main__":
    run()
