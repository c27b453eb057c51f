import os
import shutil
import tempfile
import threading
import unittest

from models.quests import PinLinkage, ObjectivePinLink, QuestStatus, ObjectiveState
from tools.vault_manager import VaultManager, parse_frontmatter, build_frontmatter


QUEST_BODY = """**Category:** Side Quest
**Status:** In Progress

Find out who stole the ledger.

**Tasks:**
- Talk to the clerk
- ~~Search the office~~
- *Follow the smuggler*
"""


class TestFrontmatter(unittest.TestCase):

    def test_round_trip(self):
        text = build_frontmatter({"id": "q1", "flags": {"quest-pins": {"visible": False}}}, "Body\n")
        fm, body = parse_frontmatter(text)
        self.assertEqual(fm["flags"]["quest-pins"]["visible"], False)
        self.assertEqual(body, "Body\n")

    def test_no_frontmatter(self):
        self.assertEqual(parse_frontmatter("just text"), ({}, "just text"))

    def test_broken_yaml(self):
        fm, _body = parse_frontmatter("---\nid: [unclosed\n---\nbody")
        self.assertEqual(fm, {})


class TestVaultManager(unittest.TestCase):
    def setUp(self):
        self.test_vault_dir = tempfile.mkdtemp(prefix="quest_vault_")
        self.vm = VaultManager(self.test_vault_dir)
        self.vm.write_file(os.path.join(self.vm.USERS, "gm.md"), {"id": "gm1", "role": "gm"}, "")
        self.vm.write_file(os.path.join(self.vm.USERS, "co-gm.md"), {"id": "gm2", "role": "GM"}, "")
        self.vm.write_file(os.path.join(self.vm.USERS, "player.md"), {"id": "p1", "role": "player"}, "")
        self.path = self.vm.create_quest("q1", "The Stolen Ledger", QUEST_BODY, quest_index=3)

    def tearDown(self):
        shutil.rmtree(self.test_vault_dir, ignore_errors=True)

    # -- flags --

    def test_flags_are_namespaced(self):
        self.vm.set_flag(self.path, "visible", False)
        fm, _body = self.vm.read_file(self.path)
        self.assertEqual(fm["flags"]["quest-pins"]["visible"], False)
        self.assertNotIn("visible", fm)

    def test_other_namespaces_untouched(self):
        fm, body = self.vm.read_file(self.path)
        fm["flags"]["other-module"] = {"keep": 1}
        self.vm.write_file(self.path, fm, body)
        self.vm.set_flag(self.path, "pinId", "abc")
        fm, _body = self.vm.read_file(self.path)
        self.assertEqual(fm["flags"]["other-module"], {"keep": 1})

    def test_update_and_unset(self):
        self.vm.update_flags(self.path, updates={"a": 1, "b": 2})
        self.vm.update_flags(self.path, updates={"c": 3}, unset=["a"])
        self.assertEqual(self.vm.get_flags(self.path), {"b": 2, "c": 3})
        self.assertEqual(self.vm.get_flag(self.path, "missing", "default"), "default")

    def test_missing_document(self):
        self.assertFalse(self.vm.set_flag("04 - Quests/nope.md", "a", 1))
        self.assertFalse(self.vm.exists("04 - Quests/nope.md"))
        self.assertEqual(self.vm.read_file("04 - Quests/nope.md"), ({}, ""))

    def test_update_body_keeps_frontmatter(self):
        self.vm.set_flag(self.path, "visible", False)
        self.vm.update_body(self.path, "new body\n")
        fm, body = self.vm.read_file(self.path)
        self.assertEqual(body, "new body\n")
        self.assertEqual(fm["id"], "q1")
        self.assertEqual(self.vm.get_flag(self.path, "visible"), False)

    # -- quests --

    def test_get_quest(self):
        quest = self.vm.get_quest("q1")
        self.assertEqual(quest.name, "The Stolen Ledger")
        self.assertEqual(quest.quest_index, 3)
        self.assertEqual(quest.category, "Side Quest")
        self.assertEqual(quest.status, QuestStatus.IN_PROGRESS)
        self.assertEqual([o.state for o in quest.objectives],
                         [ObjectiveState.ACTIVE, ObjectiveState.COMPLETED, ObjectiveState.HIDDEN])
        self.assertTrue(quest.visible)
        self.assertIsNone(quest.linkage.quest_pin_id)

    def test_unknown_quest(self):
        self.assertIsNone(self.vm.get_quest("nope"))
        self.assertIsNone(self.vm.find_quest_file("nope"))

    def test_list_quests(self):
        self.vm.create_quest("q2", "Second", QUEST_BODY)
        self.assertEqual(sorted(q.id for q in self.vm.list_quests()), ["q1", "q2"])
        self.assertEqual(sorted(self.vm.list_quest_ids()), ["q1", "q2"])

    def test_save_quest_fields(self):
        quest = self.vm.get_quest("q1")
        body = self.vm.save_quest_fields(quest, status="Complete", category="Completed")
        self.assertIn("**Status:** Complete", body)
        reloaded = self.vm.get_quest("q1")
        self.assertEqual(reloaded.status, QuestStatus.COMPLETE)
        self.assertEqual(reloaded.category, "Completed")
        self.assertIn("Find out who stole the ledger.", reloaded.body)

    def test_save_linkage(self):
        quest = self.vm.get_quest("q1")
        linkage = PinLinkage(quest_pin_id="pin-1", quest_scene_id="Scene.a",
                             objective_pins={2: ObjectivePinLink(pin_id="pin-2", scene_id=None)})
        self.assertTrue(self.vm.save_linkage(quest, linkage))
        stored = self.vm.get_quest("q1").linkage
        self.assertEqual(stored.quest_pin_id, "pin-1")
        self.assertEqual(stored.objective_pins[2].pin_id, "pin-2")
        self.assertIsNone(stored.objective_pins[2].scene_id)

    # -- scenes and users --

    def test_scenes(self):
        self.vm.write_file(os.path.join(self.vm.SCENES, "harbor.md"), {"id": "Scene.h", "name": "Harbor"}, "")
        self.assertEqual(self.vm.get_scene("Scene.h")["name"], "Harbor")
        self.assertIsNone(self.vm.get_scene("Scene.x"))
        self.assertEqual(len(self.vm.list_scene_files()), 1)

    def test_privileged_users(self):
        self.assertEqual(self.vm.get_privileged_user_ids(), ["gm1", "gm2"])

    def test_user_file(self):
        self.assertEqual(self.vm.user_file("p1"), os.path.join(self.vm.USERS, "player.md"))
        created = self.vm.user_file("newbie")
        self.assertTrue(self.vm.exists(created))
        self.assertEqual(self.vm.user_file("newbie"), created)
        self.assertNotIn("newbie", self.vm.get_privileged_user_ids())

    # -- writes --

    def test_no_temp_files_left(self):
        for i in range(5):
            self.vm.set_flag(self.path, "n", i)
        folder = os.path.join(self.test_vault_dir, self.vm.QUESTS)
        self.assertEqual([f for f in os.listdir(folder) if f.endswith(".tmp")], [])

    def test_concurrent_writes(self):
        self.vm.write_file("test.md", {"count": 0}, "Initial Body")

        def worker():
            for _ in range(10):
                self.vm.write_file("test.md", {"count": 1}, "Updated Body")

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        fm, body = self.vm.read_file("test.md")
        self.assertEqual(fm.get("count"), 1)
        self.assertEqual(body, "Updated Body")


if __name__ == "__main__":
    unittest.main()
