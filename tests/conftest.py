"""
Shared pytest fixtures for the quest pin test suite.

FakePinStore is an in-memory pin store with the same surface as
PinStoreClient. RecordingChannel records what the notification coalescer
delivers. The vault fixtures build a throwaway campaign vault under tmp_path.
"""

import os
from typing import Dict, Optional, List, Any

import pytest

from integrations.pin_store_errors import PinStoreError, PinNotFoundError
from models.pins import Pin, PinPlacement
from tools.vault_manager import VaultManager


# ---------------------------------------------------------------------------
# Fake pin store
# ---------------------------------------------------------------------------

class FakePinStore:
    """In-memory PinStoreCapability.

    Usage:
        store = FakePinStore()
        store.fail("delete", PinStoreError("boom"), pin_id="abc")   # one pin
        store.fail("list", PinStoreError("down"))                   # every call
        store.remove_externally("abc")                              # drift
    """

    def __init__(self, available: bool = True):
        self.available = available
        self.pins: Dict[str, Pin] = {}
        self.module_visibility: Dict[str, bool] = {}
        self.calls: List[tuple] = []
        self._failures: Dict[Any, Exception] = {}

    def is_available(self) -> bool:
        return self.available

    def fail(self, op: str, error: Exception, pin_id: Optional[str] = None):
        self._failures[(op, pin_id)] = error

    def _check(self, op: str, pin_id: Optional[str] = None):
        self.calls.append((op, pin_id))
        error = self._failures.get((op, pin_id)) or self._failures.get((op, None))
        if error is not None:
            raise error

    def _get(self, pin_id: str) -> Pin:
        if pin_id not in self.pins:
            raise PinNotFoundError(f"Not found: {pin_id}")
        return self.pins[pin_id]

    def remove_externally(self, pin_id: str):
        del self.pins[pin_id]

    def add_externally(self, pin: Pin, placement: Optional[PinPlacement] = None) -> Pin:
        stored = pin.model_copy(deep=True, update={"placement": placement})
        self.pins[pin.id] = stored
        return stored

    async def create(self, pin: Pin, placement: Optional[PinPlacement] = None) -> Pin:
        self._check("create", pin.id)
        if pin.id in self.pins:
            raise PinStoreError(f"Duplicate pin id {pin.id}")
        return self.add_externally(pin, placement).model_copy(deep=True)

    async def get(self, pin_id: str) -> Optional[Pin]:
        self._check("get", pin_id)
        pin = self.pins.get(pin_id)
        return pin.model_copy(deep=True) if pin else None

    async def update(self, pin_id: str, patch: Dict[str, Any], scene_id: Optional[str] = None) -> Pin:
        self._check("update", pin_id)
        data = self._get(pin_id).model_dump(by_alias=True)
        for key, value in patch.items():
            if key == "config":
                data["config"] = {**data["config"], **value}
            else:
                data[key] = value
        self.pins[pin_id] = Pin.model_validate(data)
        return self.pins[pin_id].model_copy(deep=True)

    async def delete(self, pin_id: str, scene_id: Optional[str] = None) -> None:
        self._check("delete", pin_id)
        self._get(pin_id)
        del self.pins[pin_id]

    async def place(self, pin_id: str, placement: PinPlacement) -> Pin:
        self._check("place", pin_id)
        self._get(pin_id).placement = placement
        return self.pins[pin_id].model_copy(deep=True)

    async def unplace(self, pin_id: str) -> Pin:
        self._check("unplace", pin_id)
        self._get(pin_id).placement = None
        return self.pins[pin_id].model_copy(deep=True)

    async def list(self, owner_tag: str, scene_id: Optional[str] = None,
                   unplaced: bool = False) -> List[Pin]:
        self._check("list")
        result = []
        for pin in self.pins.values():
            if pin.module_id != owner_tag:
                continue
            if unplaced:
                if pin.is_placed:
                    continue
            elif not pin.is_placed or (scene_id and pin.scene_id != scene_id):
                continue
            result.append(pin.model_copy(deep=True))
        return result

    async def exists(self, pin_id: str) -> bool:
        self._check("exists", pin_id)
        return pin_id in self.pins

    async def set_module_visibility(self, owner_tag: str, visible: bool) -> None:
        self._check("set_module_visibility")
        self.module_visibility[owner_tag] = visible

    async def get_module_visibility(self, owner_tag: str) -> bool:
        self._check("get_module_visibility")
        return self.module_visibility.get(owner_tag, True)


# ---------------------------------------------------------------------------
# Recording notification channel
# ---------------------------------------------------------------------------

class RecordingChannel:
    """Notification channel that records create/update calls."""

    def __init__(self, fail: bool = False):
        self.created: List[tuple] = []
        self.updated: List[tuple] = []
        self.valid_handles = set()
        self.fail = fail

    async def create(self, kind, payload, persistent):
        if self.fail:
            raise RuntimeError("channel down")
        handle = f"msg-{len(self.created) + 1}"
        self.created.append((kind, payload, persistent))
        if persistent:
            self.valid_handles.add(handle)
        return handle

    async def update(self, handle, kind, payload):
        if self.fail:
            raise RuntimeError("channel down")
        if handle not in self.valid_handles:
            return False
        self.updated.append((handle, kind, payload))
        return True

    @property
    def calls(self) -> int:
        return len(self.created) + len(self.updated)


# ---------------------------------------------------------------------------
# Vault builders
# ---------------------------------------------------------------------------

def quest_body(items: List[str], status: str = "Not Started", category: str = "Main Quest") -> str:
    lines = [
        f"**Category:** {category}",
        f"**Status:** {status}",
        "",
        "A job worth doing.",
        "",
        "**Tasks:**",
    ]
    lines.extend(f"- {item}" for item in items)
    return "\n".join(lines) + "\n"


@pytest.fixture
def vault(tmp_path):
    """VaultManager over an empty vault with one GM and one player."""
    vm = VaultManager(str(tmp_path / "vault"))
    vm.write_file(os.path.join(vm.USERS, "gm.md"), {"id": "gm1", "name": "Game Master", "role": "gm"}, "")
    vm.write_file(os.path.join(vm.USERS, "player.md"), {"id": "p1", "name": "Player", "role": "player"}, "")
    return vm


@pytest.fixture
def make_quest(vault):
    """Factory: make_quest('q1', 'Name', ['task a', '~~task b~~']) -> Quest."""

    def _make(quest_id, name=None, items=("First task", "Second task"), status="Not Started",
              category="Main Quest", quest_index=1, flags=None):
        vault.create_quest(quest_id, name or f"Quest {quest_id}", quest_body(list(items), status, category),
                           quest_index=quest_index, flags=flags)
        return vault.get_quest(quest_id)

    return _make


@pytest.fixture
def make_scene(vault):
    """Factory: make_scene('Scene.a', legacy=[...], migrated=False) -> file path."""

    def _make(scene_id, name=None, legacy=None, migrated=False):
        flags = {}
        if legacy is not None:
            flags["questPins"] = legacy
        if migrated:
            flags["questPinsMigrated"] = True
        rel_path = os.path.join(vault.SCENES, f"{scene_id}.md")
        vault.write_file(rel_path, {"id": scene_id, "name": name or scene_id,
                                    "flags": {vault.namespace: flags}}, "")
        return rel_path

    return _make


@pytest.fixture
def pin_store():
    return FakePinStore()


@pytest.fixture
def channel():
    return RecordingChannel()
