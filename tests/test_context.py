import unittest
from unittest.mock import MagicMock

from sheet_engine.cloud import RemoteSync
from sheet_engine.context import CharacterContext
from sheet_engine.storage import MemoryStore

INVOCATIONS_L2 = "class:primary:Warlock:L2:choice:invocations"


class CharacterContextTests(unittest.TestCase):
    def setUp(self):
        self.store = MemoryStore()
        self.ctx = CharacterContext(store=self.store, remote=RemoteSync(""), key="ctx_test")

    def _level_up(self, **extra):
        inputs = {
            "subclassName": "The Fiend",
            "classChoices": {INVOCATIONS_L2: ["devils-sight", "eldritch-sight"]},
            "hpRoll": 6,
            "learnSpellIds": ["hex"],
        }
        inputs.update(extra)
        self.ctx.start_level_up()
        self.ctx.level_up_input(inputs)
        return self.ctx.commit_level_up()

    def test_loaded_record_is_prepared(self):
        keys = [f["key"] for f in self.ctx.state["features"]]
        self.assertIn("class:primary:Warlock:L1:pact-magic", keys)
        self.assertIsNotNone(self.store.get("ctx_test"))

    def test_race_updates_spell_modifier(self):
        ok, _ = self.ctx.set_race("tiefling")
        self.assertTrue(ok)
        self.assertEqual(1, self.ctx.state["primary"]["spellMod"])
        again = CharacterContext(store=self.store, remote=RemoteSync(""), key="ctx_test")
        self.assertEqual("tiefling", again.state["raceId"])

    def test_unknown_background(self):
        before = self.ctx.state
        self.assertEqual((False, "Unknown background: x."), self.ctx.set_background("x"))
        self.assertEqual(before, self.ctx.state)

    def test_class_saves(self):
        ok, msg = self.ctx.apply_class_saves()
        self.assertTrue(ok)
        self.assertEqual("Saving throws set to WIS, CHA.", msg)
        self.assertTrue(self.ctx.state["saves"]["CHA"])
        self.assertFalse(self.ctx.state["saves"]["STR"])

    def test_wizard_calls_need_an_open_wizard(self):
        self.assertEqual((False, "No level up in progress."), self.ctx.commit_level_up())
        self.assertEqual((False, "No level up in progress."), self.ctx.level_up_next())

    def test_level_up_then_undo(self):
        ok, msg = self._level_up()
        self.assertTrue(ok, msg)
        self.assertIsNone(self.ctx.wizard)
        self.assertEqual(2, self.ctx.state["primary"]["classLevel"])
        self.assertEqual("The Fiend", self.ctx.state["primary"]["subclass"])
        self.assertEqual(16, self.ctx.state["combat"]["hpMax"])

        ok, _ = self.ctx.undo_level_up()
        self.assertTrue(ok)
        self.assertEqual(1, self.ctx.state["primary"]["classLevel"])
        self.assertEqual("", self.ctx.state["primary"]["subclass"])
        self.assertEqual(10, self.ctx.state["combat"]["hpMax"])
        self.assertEqual([], self.ctx.state["spells"]["known"])

    def test_failed_commit_keeps_wizard_open(self):
        ok, msg = self._level_up(hpRoll=None)
        self.assertFalse(ok)
        self.assertEqual("Enter your HP roll (1-8).", msg)
        self.assertIsNotNone(self.ctx.wizard)
        self.assertEqual(1, self.ctx.state["primary"]["classLevel"])

    def test_class_choice_change_resyncs(self):
        self._level_up()
        ok, _ = self.ctx.set_class_choice(INVOCATIONS_L2, ["beguiling-influence", "eldritch-sight"])
        self.assertTrue(ok)
        keys = [f["key"] for f in self.ctx.state["features"]]
        self.assertIn(f"choice:{INVOCATIONS_L2}:beguiling-influence", keys)
        self.assertNotIn(f"choice:{INVOCATIONS_L2}:devils-sight", keys)
        self.assertEqual(1, self.ctx.state["skills"]["deception"])

    def test_manual_level_needs_unlocked_build(self):
        self.assertFalse(self.ctx.set_level_manual(3)[0])
        self.ctx.set_build_locked(False)
        ok, msg = self.ctx.set_level_manual(3)
        self.assertTrue(ok, msg)
        self.assertEqual(3, self.ctx.state["level"])

    def test_rest_and_slots(self):
        self.assertTrue(self.ctx.use_slot("pact")[0])
        self.assertFalse(self.ctx.use_slot("pact")[0])
        self.ctx.state["combat"]["hpNow"] = 1
        ok, msg = self.ctx.short_rest({"d8": 1}, "roll", roller=lambda faces: 3)
        self.assertTrue(ok)
        self.assertEqual("Short rest: healed 3 HP.", msg)
        self.assertEqual(4, self.ctx.state["combat"]["hpNow"])
        self.assertEqual(0, self.ctx.state["resources"]["pactSlotsUsed"])

    def test_manual_resource_outlives_level_changes(self):
        self.assertTrue(self.ctx.add_resource("Mystic Arcanum")[0])
        self.ctx.set_build_locked(False)
        self.assertTrue(self.ctx.set_level_manual(11)[0])
        self.assertTrue(self.ctx.set_level_manual(10)[0])
        arcana = [r for r in self.ctx.state["resources"]["custom"] if r["name"] == "Mystic Arcanum"]
        self.assertEqual([{"name": "Mystic Arcanum", "cur": 0, "max": 0, "reset": "none", "source": "manual"}], arcana)
        again = CharacterContext(store=self.store, remote=RemoteSync(""), key="ctx_test")
        self.assertEqual(self.ctx.state["resources"]["custom"], again.state["resources"]["custom"])

    def test_manual_edits_are_saved(self):
        self.assertTrue(self.ctx.set_skill_level("insight", 1)[0])
        self.assertTrue(self.ctx.add_proficiency("language", "Sylvan")[0])
        self.assertTrue(self.ctx.add_feature("Patron's mark", "A rune on the palm.")[0])
        again = CharacterContext(store=self.store, remote=RemoteSync(""), key="ctx_test")
        self.assertEqual(1, again.state["skills"]["insight"])
        self.assertEqual("manual", again.state["profSources"]["insight"])
        self.assertIn({"value": "Sylvan", "source": "manual"}, again.state["languageProficiencies"])
        self.assertIn("Patron's mark", [f["name"] for f in again.state["features"]])

    def test_known_spells_need_catalog_and_unlock(self):
        self.assertEqual((False, "Unlock the build to edit known spells."), self.ctx.set_spell_known("hex"))
        self.ctx.set_build_locked(False)
        self.assertEqual((False, "Unknown spell: wish-upon-a-star."), self.ctx.set_spell_known("wish-upon-a-star"))
        self.assertTrue(self.ctx.set_spell_known("hex")[0])
        self.assertTrue(self.ctx.set_spell_prepared("hex")[0])
        self.assertEqual(["hex"], self.ctx.state["spells"]["prepared"])
        self.assertEqual(["hex"], [s["id"] for s in self.ctx.view()["knownSpells"]])

    def test_equipment_feeds_sheet(self):
        self.assertTrue(self.ctx.set_equipment_item("shields", "0", {"name": "Shield", "acBonus": "2"})[0])
        self.assertTrue(self.ctx.set_equipment_item("weapons", 0, {"name": "Dagger", "hitDice": "1d4"})[0])
        self.assertTrue(self.ctx.equip_weapon(0)[0])
        self.assertEqual(12, self.ctx.view()["sheet"]["armor_class"])
        self.assertEqual("1d4", self.ctx.state["combat"]["weaponDice"])
        self.assertFalse(self.ctx.equip_weapon("x")[0])
        self.assertTrue(self.ctx.add_bag_item("Chalk")[0])
        self.assertTrue(self.ctx.remove_bag_item(0)[0])
        self.assertEqual([], self.ctx.state["equipment"]["bag"]["items"])


class CloudContextTests(unittest.TestCase):
    def setUp(self):
        self.remote = MagicMock(spec=RemoteSync)
        self.ctx = CharacterContext(store=MemoryStore(), remote=self.remote, key="cloud_test")

    def test_failed_load_changes_nothing(self):
        before = self.ctx.state
        self.remote.load.return_value = {"ok": False, "message": "Cloud load failed: boom"}
        res = self.ctx.cloud_load("abc")
        self.assertFalse(res["ok"])
        self.assertEqual(before, self.ctx.state)

    def test_successful_load_replaces_record(self):
        self.ctx.start_level_up()
        self.remote.load.return_value = {
            "ok": True,
            "message": "Loaded from cloud.",
            "payload": {"id": "abc", "name": "Vex", "primary": {"className": "Warlock", "classLevel": 3}},
        }
        res = self.ctx.cloud_load("abc")
        self.assertTrue(res["ok"])
        self.assertIsNone(self.ctx.wizard)
        self.assertEqual("Vex", self.ctx.state["name"])
        self.assertEqual(3, self.ctx.state["level"])
        self.assertIn("class:primary:Warlock:L1:pact-magic", [f["key"] for f in self.ctx.state["features"]])

    def test_load_defaults_to_own_id(self):
        self.remote.load.return_value = {"ok": False, "message": "nope"}
        self.ctx.cloud_load()
        self.remote.load.assert_called_once_with(self.ctx.state["id"])

    def test_save_sends_current_record(self):
        self.remote.save.return_value = {"ok": True, "message": "Saved to cloud."}
        self.assertTrue(self.ctx.cloud_save()["ok"])
        self.remote.save.assert_called_once_with(self.ctx.state)


if __name__ == "__main__":
    unittest.main()
