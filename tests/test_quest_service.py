"""
Tests for tools/quest_service.py — the full path from a document edit to pins and notifications.
"""

import asyncio

import pytest

from integrations.pin_store_errors import PinStoreError
from models.pins import OwnershipLevel, PinPlacement
from models.quests import ObjectiveState, QuestStatus
from tools.active_objective import ActiveObjectiveTracker
from tools.notification_coalescer import NotificationCoalescer, NotificationKind
from tools.pin_ownership import PinOwnershipCalculator
from tools.pin_sync import PinSyncService
from tools.quest_errors import QuestNotFoundError, ObjectiveIndexError
from tools.quest_service import QuestService
from tools.quest_status import QuestStatusMachine


@pytest.fixture
def coalescer(channel):
    return NotificationCoalescer(channel, window_seconds=0.02)


@pytest.fixture
def sync(pin_store, vault):
    return PinSyncService(pin_store, vault, PinOwnershipCalculator(["gm1"]))


@pytest.fixture
def service(vault, sync, coalescer):
    return QuestService(vault, QuestStatusMachine(vault, coalescer), sync,
                        ActiveObjectiveTracker(vault, "p1"), coalescer)


def kinds(channel):
    return [c[0] for c in channel.created]


class TestObjectiveCascade:

    def test_completing_last_objective_completes_quest(self, service, sync, pin_store, vault,
                                                       channel, coalescer, make_quest):
        quest = make_quest("q1", items=["Open gate", "~~Find key~~"], status="In Progress")

        async def run():
            pin = await sync.create_quest_pin(quest, PinPlacement(scene_id="Scene.a", x=1, y=1))
            change = await service.set_objective_state("q1", 0, ObjectiveState.COMPLETED)
            await asyncio.sleep(0.1)
            return pin, change

        pin, change = asyncio.run(run())
        assert change.completed_now
        reloaded = vault.get_quest("q1")
        assert reloaded.status == QuestStatus.COMPLETE
        assert "~~Open gate~~" in reloaded.body
        assert pin_store.pins[pin.id].config.quest_status == "Complete"
        assert kinds(channel).count(NotificationKind.QUEST_COMPLETED) == 1
        assert kinds(channel).count(NotificationKind.OBJECTIVE_COMPLETED) == 1

    def test_repeated_completion_notifies_once(self, service, channel, make_quest):
        make_quest("q1", items=["Only"], status="In Progress")

        async def run():
            await service.set_objective_state("q1", 0, ObjectiveState.COMPLETED)
            await service.set_objective_state("q1", 0, ObjectiveState.COMPLETED)
            await asyncio.sleep(0.1)

        asyncio.run(run())
        assert kinds(channel).count(NotificationKind.QUEST_COMPLETED) == 1
        assert kinds(channel).count(NotificationKind.OBJECTIVE_COMPLETED) == 1

    def test_first_progress_starts_quest(self, service, vault, make_quest):
        make_quest("q1", items=["A", "B"])
        change = asyncio.run(service.set_objective_state("q1", 1, ObjectiveState.FAILED))
        assert change.status == QuestStatus.IN_PROGRESS
        assert vault.get_quest("q1").objectives[1].state == ObjectiveState.FAILED

    def test_reopening_objective_reopens_quest(self, service, vault, make_quest):
        make_quest("q1", items=["~~A~~"], status="Complete", category="Completed",
                   flags={"originalCategory": "Side Quest"})
        change = asyncio.run(service.set_objective_state("q1", 0, ObjectiveState.ACTIVE))
        assert change.status == QuestStatus.IN_PROGRESS
        quest = vault.get_quest("q1")
        assert quest.category == "Side Quest"

    def test_pin_store_down_keeps_document_change(self, service, pin_store, sync, vault, make_quest):
        quest = make_quest("q1", items=["A", "B"])
        asyncio.run(sync.create_quest_pin(quest))
        pin_store.fail("update", PinStoreError("relay down"))
        asyncio.run(service.set_objective_state("q1", 0, ObjectiveState.COMPLETED))
        assert vault.get_quest("q1").objectives[0].state == ObjectiveState.COMPLETED

    def test_toggle_hidden(self, service, vault, make_quest):
        make_quest("q1", items=["A"])
        assert asyncio.run(service.toggle_objective_hidden("q1", 0)) == ObjectiveState.HIDDEN
        assert "*A*" in vault.get_quest("q1").body
        assert asyncio.run(service.toggle_objective_hidden("q1", 0)) == ObjectiveState.ACTIVE
        assert vault.get_quest("q1").objectives[0].text == "A"

    def test_unknown_quest_and_index(self, service, make_quest):
        make_quest("q1")
        with pytest.raises(QuestNotFoundError):
            asyncio.run(service.set_objective_state("nope", 0, ObjectiveState.COMPLETED))
        with pytest.raises(ObjectiveIndexError):
            asyncio.run(service.set_objective_state("q1", 5, ObjectiveState.COMPLETED))


class TestQuestLevel:

    def test_manual_status(self, service, vault, make_quest):
        make_quest("q1", items=["A"], status="In Progress", category="Main Quest")
        asyncio.run(service.set_quest_status("q1", "Failed"))
        quest = vault.get_quest("q1")
        assert quest.status == QuestStatus.FAILED
        assert quest.original_category == "Main Quest"

    def test_toggle_visibility_updates_pins(self, service, sync, pin_store, vault, make_quest):
        quest = make_quest("q1")

        async def run():
            pin = await sync.create_quest_pin(quest, PinPlacement(scene_id="Scene.a", x=1, y=1))
            visible = await service.toggle_quest_visibility("q1")
            return pin, visible

        pin, visible = asyncio.run(run())
        assert visible is False
        assert vault.get_quest("q1").visible is False
        assert pin_store.pins[pin.id].ownership.level_for("p1") == OwnershipLevel.NONE


class TestTracking:

    def test_track_and_untrack(self, service, channel, make_quest):
        make_quest("q1", items=["A", "B"])

        async def run():
            first = service.track_objective("q1", 1)
            second = service.track_objective("q1", 1)
            await asyncio.sleep(0.1)
            return first, second

        first, second = asyncio.run(run())
        assert first.index == 1
        assert second is None
        # both calls fall in one window
        assert channel.created == [(NotificationKind.ACTIVE_OBJECTIVE, {"questId": "q1", "cleared": True}, True)]

    def test_track_bad_index(self, service, make_quest):
        make_quest("q1", items=["A"])
        with pytest.raises(ObjectiveIndexError):
            service.track_objective("q1", 3)

    def test_pin_quest_clears_tracking(self, service, vault, channel, make_quest):
        make_quest("q1")
        make_quest("q2")

        async def run():
            service.track_objective("q1", 0)
            service.pin_quest("q2")
            await asyncio.sleep(0.1)

        asyncio.run(run())
        assert service.tracker.get_active() is None
        assert service.tracker.get_pinned_quest() == "q2"
        assert set(kinds(channel)) == {NotificationKind.ACTIVE_OBJECTIVE, NotificationKind.QUEST_PINNED}
