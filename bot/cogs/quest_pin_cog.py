"""
Quest Pin Cog — operator commands for quests and their map pins.

Quests are referenced by their vault id, objectives by their 1-based number.

Commands:
    !reconcile [scene]               — Repair pin linkage (one scene or all)
    !migrate                         — Migrate legacy scene pins
    !objective <quest> <n> <state>   — Set an objective active/completed/failed/hidden
    !queststatus <quest> <status>    — Set quest status manually
    !questvisible <quest>            — Toggle quest visibility for players
    !track <quest> <n>               — Track (or untrack) an objective
    !pinquest <quest>                — Pin a quest
    !questsync [quest]               — Re-read quests edited in the vault
    !questpins [show|hide]           — Show, hide or report every quest pin
    !deletepins <quest> [scene]      — Delete a quest's pins
    !deletepin <pin_id>              — Delete one pin
    !placepin <quest> [n]            — Place a pin with the next !mapclick
    !unplacepin <quest> [n]          — Take a pin off its scene
    !mapclick <scene> <x> <y>        — Click on the map during placement
    !cancelplace                     — Abort placement
"""

import asyncio
import logging
from discord.ext import commands

from integrations.pin_store_errors import PinPermissionError
from models.quests import ObjectiveState, QuestStatus
from tools.quest_errors import QuestPinError

logger = logging.getLogger("QuestPin_Cog")


class QuestPinCog(commands.Cog, name="Quest Pins"):
    """Quest and pin commands."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.vault = bot.vault
        self.pin_sync = bot.pin_sync
        self.reconciler = bot.reconciler
        self.migrator = bot.migrator
        self.quests = bot.quest_service
        self.placement = bot.placement
        self.watcher = bot.watcher
        self._placement_task = None

    async def cog_command_error(self, ctx: commands.Context, error: Exception):
        original = getattr(error, "original", error)
        if isinstance(original, PinPermissionError):
            await ctx.send("Permission denied by the pin store.")
        elif isinstance(original, QuestPinError):
            await ctx.send(f"{original}")
        elif isinstance(error, (commands.BadArgument, commands.MissingRequiredArgument)):
            await ctx.send(f"Usage: `!{ctx.command.qualified_name} {ctx.command.signature}`")
        else:
            logger.error(f"Command !{ctx.command} failed: {original}", exc_info=original)
            await ctx.send("Something went wrong. Check the log.")

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    @commands.command(name="reconcile")
    async def reconcile_cmd(self, ctx: commands.Context, scene: str = None):
        """Repair quest pin linkage against the pin store."""
        async with ctx.typing():
            report = await self.reconciler.reconcile(scene)
        await ctx.send(report.summary())

    @commands.command(name="migrate")
    async def migrate_cmd(self, ctx: commands.Context):
        """Migrate legacy scene pins into the pin store."""
        async with ctx.typing():
            result = await self.migrator.migrate_all()
        await ctx.send(
            f"**Migration:** {result.migrated} migrated, {result.skipped} skipped, {result.errors} error(s)."
        )

    # ------------------------------------------------------------------
    # Quest state
    # ------------------------------------------------------------------

    @commands.command(name="objective")
    async def objective_cmd(self, ctx: commands.Context, quest_id: str, number: int, state: str):
        """Set an objective's state: active, completed, failed or hidden."""
        try:
            new_state = ObjectiveState(state.lower())
        except ValueError:
            await ctx.send("State must be one of: active, completed, failed, hidden.")
            return
        change = await self.quests.set_objective_state(quest_id, number - 1, new_state)
        msg = f"Objective {number} of `{quest_id}` is now **{new_state.value}**."
        if change.previous != change.status:
            msg += f" Quest status: {change.previous.value} → **{change.status.value}**."
        await ctx.send(msg)

    @commands.command(name="queststatus")
    async def queststatus_cmd(self, ctx: commands.Context, quest_id: str, *, status: str):
        """Set a quest's status manually (the only way to fail a quest)."""
        change = await self.quests.set_quest_status(quest_id, QuestStatus.parse(status))
        await ctx.send(f"`{quest_id}`: {change.previous.value} → **{change.status.value}**")

    @commands.command(name="questvisible")
    async def questvisible_cmd(self, ctx: commands.Context, quest_id: str):
        """Toggle whether players can see a quest's pins."""
        visible = await self.quests.toggle_quest_visibility(quest_id)
        await ctx.send(f"`{quest_id}` is now {'visible to players' if visible else 'hidden from players'}.")

    @commands.command(name="track")
    async def track_cmd(self, ctx: commands.Context, quest_id: str, number: int):
        """Track an objective. Tracking it again clears it."""
        selection = self.quests.track_objective(quest_id, number - 1)
        if selection is None:
            await ctx.send("No objective tracked.")
        else:
            await ctx.send(f"Tracking objective {number} of `{quest_id}`.")

    @commands.command(name="pinquest")
    async def pinquest_cmd(self, ctx: commands.Context, quest_id: str):
        """Pin a quest (clears the tracked objective)."""
        quest = self.quests.pin_quest(quest_id)
        await ctx.send(f"Pinned **{quest.name}**.")

    @commands.command(name="questsync")
    async def questsync_cmd(self, ctx: commands.Context, quest_id: str = None):
        """Recompute status and restyle pins after editing quests in the vault."""
        if quest_id is None:
            async with ctx.typing():
                count = await self.watcher.sync_all()
            await ctx.send(f"Synced {count} quest(s) from the vault.")
            return
        quest = await self.watcher.sync_quest(quest_id)
        if quest is None:
            await ctx.send(f"No quest `{quest_id}`.")
        else:
            await ctx.send(f"Synced **{quest.name}**: {quest.status.value}.")

    # ------------------------------------------------------------------
    # Pins
    # ------------------------------------------------------------------

    @commands.command(name="questpins")
    async def questpins_cmd(self, ctx: commands.Context, mode: str = None):
        """Show or hide every quest pin at once. With no argument, report the current setting."""
        if mode is None:
            if not self.pin_sync.available:
                await ctx.send("Pin store not available.")
                return
            visible = await self.pin_sync.get_global_visibility()
            await ctx.send(f"Quest pins are {'shown' if visible else 'hidden'}.")
            return
        if mode.lower() not in ("show", "hide"):
            await ctx.send("Usage: `!questpins [show|hide]`")
            return
        if await self.pin_sync.set_global_visibility(mode.lower() == "show"):
            await ctx.send(f"Quest pins {'shown' if mode.lower() == 'show' else 'hidden'}.")
        else:
            await ctx.send("Pin store not available.")

    @commands.command(name="deletepins")
    async def deletepins_cmd(self, ctx: commands.Context, quest_id: str, scene: str = None):
        """Delete a quest's pins on one scene, or everywhere."""
        if not self.pin_sync.available:
            await ctx.send("Pin store not available.")
            return
        self.quests.load(quest_id)
        counts = await self.pin_sync.delete_pins(quest_id, scene)
        await ctx.send(f"Deleted {counts['deleted']} pin(s), {counts['errors']} error(s).")

    @commands.command(name="deletepin")
    async def deletepin_cmd(self, ctx: commands.Context, pin_id: str):
        """Delete a single pin by id."""
        if not self.pin_sync.available:
            await ctx.send("Pin store not available.")
            return
        if await self.pin_sync.delete_pin(pin_id):
            await ctx.send(f"Deleted pin `{pin_id}`.")
        else:
            await ctx.send(f"Pin `{pin_id}` not deleted (not found or the store refused).")

    @commands.command(name="placepin")
    async def placepin_cmd(self, ctx: commands.Context, quest_id: str, number: int = None):
        """Start placing a quest (or objective) pin. Finish with !mapclick."""
        if not self.pin_sync.available:
            await ctx.send("Pin store not available.")
            return
        self.quests.load(quest_id)
        index = None if number is None else number - 1
        self._placement_task = asyncio.create_task(self._place(ctx, quest_id, index))
        await asyncio.sleep(0)  # let the session open
        await ctx.send("Waiting for a map click: use `!mapclick <scene> <x> <y>` or `!cancelplace`.")

    async def _place(self, ctx: commands.Context, quest_id: str, index):
        try:
            pin = await self.placement.place_interactively(quest_id, index)
        except PinPermissionError:
            await ctx.send("Permission denied by the pin store.")
            return
        if pin is None:
            await ctx.send("No pin placed.")
        else:
            await ctx.send(f"Placed pin `{pin.id}` on {pin.scene_id} at ({pin.placement.x:.0f}, {pin.placement.y:.0f}).")

    @commands.command(name="unplacepin")
    async def unplacepin_cmd(self, ctx: commands.Context, quest_id: str, number: int = None):
        """Take a quest (or objective) pin off its scene. The pin is kept."""
        if not self.pin_sync.available:
            await ctx.send("Pin store not available.")
            return
        quest = self.quests.load(quest_id)
        index = None if number is None else number - 1
        pin = await self.pin_sync.linked_pin(quest, index)
        if pin is None:
            await ctx.send("No pin linked.")
            return
        if await self.pin_sync.unplace(pin) is None:
            await ctx.send(f"Could not unplace pin `{pin.id}`.")
        else:
            await ctx.send(f"Pin `{pin.id}` taken off {pin.scene_id or 'the map'}.")

    @commands.command(name="mapclick")
    async def mapclick_cmd(self, ctx: commands.Context, scene: str, x: float, y: float):
        """Deliver a map click to the open placement."""
        if not self.placement.click(scene, x, y):
            await ctx.send("No placement in progress.")

    @commands.command(name="cancelplace")
    async def cancelplace_cmd(self, ctx: commands.Context):
        """Abort the open placement."""
        if not self.placement.cancel():
            await ctx.send("No placement in progress.")


async def setup(bot: commands.Bot):
    await bot.add_cog(QuestPinCog(bot))
