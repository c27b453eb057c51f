"""
Tests for bot/cogs/quest_pin_cog.py — pin commands against the in-memory store.

Command callbacks are called directly with a mocked context; no Discord
connection is made.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from bot.cogs.quest_pin_cog import QuestPinCog
from models.pins import PinPlacement, PIN_OWNER_TAG
from tools.pin_events import PinPlacementController
from tools.pin_ownership import PinOwnershipCalculator
from tools.pin_sync import PinSyncService
from tools.quest_service import QuestService
from tools.quest_status import QuestStatusMachine
from tools.vault_watcher import VaultWatcher


@pytest.fixture
def sync(pin_store, vault):
    return PinSyncService(pin_store, vault, PinOwnershipCalculator(["gm1"]))


@pytest.fixture
def cog(vault, sync):
    status_machine = QuestStatusMachine(vault)
    bot = SimpleNamespace(
        vault=vault,
        pin_sync=sync,
        reconciler=AsyncMock(),
        migrator=AsyncMock(),
        quest_service=QuestService(vault, status_machine, sync),
        placement=PinPlacementController(sync, vault),
        watcher=VaultWatcher(vault, status_machine, sync),
    )
    return QuestPinCog(bot)


@pytest.fixture
def ctx():
    context = MagicMock()
    context.send = AsyncMock()
    return context


def said(ctx) -> str:
    return ctx.send.await_args.args[0]


def at(scene):
    return PinPlacement(scene_id=scene, x=10, y=20)


class TestDeletePin:

    def test_deletes_one_pin(self, cog, ctx, sync, pin_store, vault, make_quest):
        quest = make_quest("q1")
        qp = asyncio.run(sync.create_quest_pin(quest, at("Scene.a")))
        op = asyncio.run(sync.create_objective_pin(quest, 0, at("Scene.a")))

        asyncio.run(QuestPinCog.deletepin_cmd.callback(cog, ctx, op.id))

        assert said(ctx) == f"Deleted pin `{op.id}`."
        assert set(pin_store.pins) == {qp.id}
        assert vault.get_quest("q1").linkage.objective_pins == {}

    def test_unknown_pin(self, cog, ctx):
        asyncio.run(QuestPinCog.deletepin_cmd.callback(cog, ctx, "nope"))
        assert "not deleted" in said(ctx)


class TestUnplacePin:

    def test_unplaces_quest_pin(self, cog, ctx, sync, pin_store, vault, make_quest):
        qp = asyncio.run(sync.create_quest_pin(make_quest("q1"), at("Scene.a")))

        asyncio.run(QuestPinCog.unplacepin_cmd.callback(cog, ctx, "q1"))

        assert said(ctx) == f"Pin `{qp.id}` taken off Scene.a."
        assert qp.id in pin_store.pins
        assert not pin_store.pins[qp.id].is_placed
        linkage = vault.get_quest("q1").linkage
        assert (linkage.quest_pin_id, linkage.quest_scene_id) == (qp.id, None)

    def test_unplaces_objective_pin(self, cog, ctx, sync, pin_store, vault, make_quest):
        op = asyncio.run(sync.create_objective_pin(make_quest("q1"), 1, at("Scene.b")))
        asyncio.run(QuestPinCog.unplacepin_cmd.callback(cog, ctx, "q1", 2))
        assert not pin_store.pins[op.id].is_placed
        assert vault.get_quest("q1").linkage.objective_pins[1].scene_id is None

    def test_nothing_linked(self, cog, ctx, make_quest):
        make_quest("q1")
        asyncio.run(QuestPinCog.unplacepin_cmd.callback(cog, ctx, "q1", 1))
        assert said(ctx) == "No pin linked."


class TestQuestPins:

    def test_report_without_argument(self, cog, ctx, pin_store):
        pin_store.module_visibility[PIN_OWNER_TAG] = False
        asyncio.run(QuestPinCog.questpins_cmd.callback(cog, ctx))
        assert said(ctx) == "Quest pins are hidden."
        assert ("get_module_visibility", None) in pin_store.calls

    def test_show(self, cog, ctx, pin_store):
        asyncio.run(QuestPinCog.questpins_cmd.callback(cog, ctx, "show"))
        assert said(ctx) == "Quest pins shown."
        assert pin_store.module_visibility[PIN_OWNER_TAG] is True

    def test_bad_mode(self, cog, ctx):
        asyncio.run(QuestPinCog.questpins_cmd.callback(cog, ctx, "maybe"))
        assert said(ctx).startswith("Usage:")


class TestQuestSync:

    def test_sync_one_quest(self, cog, ctx, vault, make_quest):
        make_quest("q1", items=["~~Only task~~"])
        asyncio.run(QuestPinCog.questsync_cmd.callback(cog, ctx, "q1"))
        assert said(ctx) == "Synced **Quest q1**: Complete."
        assert vault.get_quest("q1").status.value == "Complete"

    def test_unknown_quest(self, cog, ctx):
        asyncio.run(QuestPinCog.questsync_cmd.callback(cog, ctx, "nope"))
        assert said(ctx) == "No quest `nope`."
