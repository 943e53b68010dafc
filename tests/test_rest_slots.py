import unittest

from sheet_engine.calc import build_sheet_context, spell_slots_for_state
from sheet_engine.character import default_character_state, derive
from sheet_engine.rest import apply_long_rest, apply_short_rest, restore_spell_slot, use_spell_slot


def warlock(level: int, **abilities) -> dict:
    state = default_character_state()
    state["primary"]["classLevel"] = level
    state["abilities"].update(abilities)
    state["rest"]["hitDice"] = None
    return derive(state)


class PactSlotsTests(unittest.TestCase):
    def test_warlock_5_pact_slots(self):
        slots = spell_slots_for_state(warlock(5))
        self.assertEqual({}, slots["spellcastingSlots"])
        self.assertEqual(2, slots["pactMagic"]["slots"])
        self.assertEqual(3, slots["pactMagic"]["slotLevel"])

    def test_warlock_17_has_four_arcana_levels(self):
        pact = spell_slots_for_state(warlock(17))["pactMagic"]
        self.assertEqual(4, pact["slots"])
        self.assertEqual(5, pact["slotLevel"])
        self.assertEqual([6, 7, 8, 9], pact["arcanum"])

    def test_use_slot_when_none_left_is_a_noop(self):
        state = warlock(5)
        state["resources"]["pactSlotsUsed"] = 2
        nxt, ok, msg = use_spell_slot(state, "pact")
        self.assertFalse(ok)
        self.assertEqual("No pact slots remaining.", msg)
        self.assertIs(state, nxt)

    def test_use_and_restore_pact_slot(self):
        state = warlock(5)
        used, ok, _ = use_spell_slot(state, "pact")
        self.assertTrue(ok)
        self.assertEqual(1, used["resources"]["pactSlotsUsed"])
        restored, ok, _ = restore_spell_slot(used, "pact")
        self.assertTrue(ok)
        self.assertEqual(0, restored["resources"]["pactSlotsUsed"])
        self.assertFalse(restore_spell_slot(restored, "pact")[1])

    def test_standard_slots_do_not_exist_for_warlock(self):
        state = warlock(5)
        nxt, ok, msg = use_spell_slot(state, "standard", 1)
        self.assertFalse(ok)
        self.assertEqual("No level 1 slots remaining.", msg)


class RestTests(unittest.TestCase):
    def test_short_rest_spends_hit_dice_and_refills_pact(self):
        state = warlock(3, CON=14)
        state["combat"]["hpMax"] = 24
        state["combat"]["hpNow"] = 5
        state["resources"]["pactSlotsUsed"] = 2
        state["resources"]["custom"] = [
            {"name": "Short thing", "cur": 0, "max": 2, "reset": "short"},
            {"name": "Long thing", "cur": 0, "max": 1, "reset": "long"},
        ]
        nxt, healed = apply_short_rest(state, {"d8": 2}, "roll", roller=lambda faces: 4)
        self.assertEqual(12, healed)
        self.assertEqual(17, nxt["combat"]["hpNow"])
        self.assertEqual({"max": 3, "remaining": 1}, nxt["rest"]["hitDice"]["d8"])
        self.assertEqual(0, nxt["resources"]["pactSlotsUsed"])
        self.assertEqual([2, 0], [r["cur"] for r in nxt["resources"]["custom"]])

    def test_short_rest_cannot_spend_more_than_remaining(self):
        state = warlock(1)
        state["combat"]["hpNow"] = 1
        nxt, healed = apply_short_rest(state, {"d8": 5}, "average")
        self.assertEqual(5, healed)
        self.assertEqual({"max": 1, "remaining": 0}, nxt["rest"]["hitDice"]["d8"])

    def test_long_rest_restores_everything(self):
        state = warlock(3)
        state["combat"]["hpNow"] = 2
        state["combat"]["hpTemp"] = 4
        state["rest"]["hitDice"] = {"d8": {"max": 3, "remaining": 0}}
        state["resources"]["pactSlotsUsed"] = 2
        state["resources"]["custom"] = [{"name": "Long thing", "cur": 0, "max": 1, "reset": "long"}]
        nxt = apply_long_rest(state)
        self.assertEqual(nxt["combat"]["hpMax"], nxt["combat"]["hpNow"])
        self.assertEqual(0, nxt["combat"]["hpTemp"])
        self.assertEqual({"d8": {"max": 3, "remaining": 3}}, nxt["rest"]["hitDice"])
        self.assertEqual(0, nxt["resources"]["pactSlotsUsed"])
        self.assertEqual(1, nxt["resources"]["custom"][0]["cur"])
        self.assertNotIn("preparedUnlock", nxt["rest"])


class SheetContextTests(unittest.TestCase):
    def test_sheet_numbers(self):
        state = warlock(5, CHA=16, DEX=14, WIS=12)
        state["primary"]["spellMod"] = 3
        state["skills"]["perception"] = 1
        sheet = build_sheet_context(state)
        self.assertEqual(3, sheet["proficiency_bonus"])
        self.assertEqual(14, sheet["spell_save_dc"])
        self.assertEqual(6, sheet["spell_attack_bonus"])
        self.assertEqual(2, sheet["initiative"])
        self.assertEqual(14, sheet["passive_perception"])
        self.assertEqual("d8", sheet["hit_die"])
        self.assertEqual(1, sheet["earned_pick_slots"])
        self.assertEqual(6, sheet["spell_limits"][0]["knownSpellsMax"])
        self.assertEqual(3, sheet["spell_limits"][0]["invocationsKnownMax"])


if __name__ == "__main__":
    unittest.main()
