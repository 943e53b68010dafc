import unittest

from sheet_engine.calc import armor_class, build_sheet_context
from sheet_engine.character import default_character_state, derive
from sheet_engine.equipment import (
    add_bag_item,
    clear_equipment_item,
    equip_weapon,
    equipment_ac_bonus,
    remove_bag_item,
    set_equipment_item,
)


def fresh() -> dict:
    state = default_character_state()
    state["combat"]["acBase"] = 11
    state["combat"]["acBonusExtra"] = 1
    return derive(state)


class ArmorClassTests(unittest.TestCase):
    def test_item_bonuses_add_to_ac(self):
        state = fresh()
        self.assertEqual(12, armor_class(state))
        state, ok, msg = set_equipment_item(state, "body", 0, {"name": "Studded leather", "acBonus": "1"})
        self.assertTrue(ok)
        self.assertEqual("Item saved.", msg)
        state, _, _ = set_equipment_item(state, "shields", 0, {"name": "Shield", "acBonus": "2"})
        state, _, _ = set_equipment_item(state, "ringsLeft", 5, {"name": "Ring of protection", "acBonus": "1.5"})
        self.assertEqual(4.5, equipment_ac_bonus(state["equipment"]))
        self.assertEqual(16, armor_class(state))
        self.assertEqual(16, build_sheet_context(state)["armor_class"])

    def test_non_numeric_bonus_counts_as_zero(self):
        state, _, _ = set_equipment_item(fresh(), "head", 0, {"name": "Hat", "acBonus": "+lots"})
        state, _, _ = set_equipment_item(state, "neck", 0, {"name": "Amulet", "acBonus": "nan"})
        self.assertEqual(12, armor_class(state))

    def test_ac_never_below_zero(self):
        state = fresh()
        state["combat"]["acBase"] = 0
        state["combat"]["acBonusExtra"] = 0
        state, _, _ = set_equipment_item(state, "body", 0, {"name": "Cursed mail", "acBonus": "-5"})
        self.assertEqual(0, armor_class(state))

    def test_cleared_item_stops_counting(self):
        state, _, _ = set_equipment_item(fresh(), "shields", 0, {"name": "Shield", "acBonus": "2"})
        state, ok, msg = clear_equipment_item(state, "shields", 0)
        self.assertTrue(ok)
        self.assertEqual("Item removed.", msg)
        self.assertEqual("", state["equipment"]["slots"]["shields"][0]["name"])
        self.assertEqual(12, armor_class(state))


class WeaponTests(unittest.TestCase):
    def test_equip_mirrors_weapon_dice(self):
        state = fresh()
        state, _, _ = set_equipment_item(state, "weapons", 0, {"name": "Dagger", "hitDice": "1d4"})
        state, _, _ = set_equipment_item(state, "weapons", 1, {"name": "Quarterstaff", "hitDice": "1d6"})
        self.assertEqual("", state["combat"]["weaponDice"])

        state, ok, msg = equip_weapon(state, 1)
        self.assertTrue(ok)
        self.assertEqual("Equipped Quarterstaff.", msg)
        self.assertEqual("1d6", state["combat"]["weaponDice"])

        state, _, _ = equip_weapon(state, 0)
        self.assertEqual("1d4", state["combat"]["weaponDice"])
        self.assertEqual([True, False], [w["equipped"] for w in state["equipment"]["slots"]["weapons"][:2]])

        # editing the equipped weapon keeps the mirror in step
        state, _, _ = set_equipment_item(state, "weapons", 0, {"hitDice": "1d4+1"})
        self.assertEqual("1d4+1", state["combat"]["weaponDice"])

    def test_weapon_without_dice_keeps_hand_written_value(self):
        state = fresh()
        state["combat"]["weaponDice"] = "2d6"
        state, _, _ = set_equipment_item(state, "weapons", 2, {"name": "Improvised club"})
        state, ok, msg = equip_weapon(state, 2)
        self.assertTrue(ok)
        self.assertEqual("2d6", state["combat"]["weaponDice"])

    def test_unnamed_weapon_message(self):
        self.assertEqual("Equipped weapon 4.", equip_weapon(fresh(), 3)[2])

    def test_bad_slots(self):
        state = fresh()
        nxt, ok, msg = set_equipment_item(state, "tail", 0, {"name": "Bow"})
        self.assertFalse(ok)
        self.assertEqual("Unknown equipment slot: tail.", msg)
        self.assertIs(state, nxt)
        self.assertEqual("head has no slot 3.", set_equipment_item(state, "head", 3, {})[2])
        self.assertEqual("weapons has no slot 6.", equip_weapon(state, 6)[2])
        self.assertEqual("shields has no slot -1.", clear_equipment_item(state, "shields", -1)[2])

    def test_only_weapons_take_hit_dice(self):
        state, _, _ = set_equipment_item(fresh(), "arms", 1, {"name": "Bracers", "hitDice": "1d8", "equipped": True})
        item = state["equipment"]["slots"]["arms"][1]
        self.assertNotIn("hitDice", item)
        self.assertNotIn("equipped", item)


class BagTests(unittest.TestCase):
    def test_add_and_remove(self):
        state = fresh()
        nxt, ok, msg = add_bag_item(state, "  Rope (50 ft)  ")
        self.assertTrue(ok)
        self.assertEqual("Added Rope (50 ft).", msg)
        self.assertEqual(["Rope (50 ft)"], nxt["equipment"]["bag"]["items"])
        self.assertEqual([], state["equipment"]["bag"]["items"])

        nxt, _, _ = add_bag_item(nxt, "Torch")
        nxt, ok, msg = remove_bag_item(nxt, 0)
        self.assertTrue(ok)
        self.assertEqual("Removed Rope (50 ft).", msg)
        self.assertEqual(["Torch"], nxt["equipment"]["bag"]["items"])

    def test_errors(self):
        state = fresh()
        self.assertEqual((state, False, "Enter an item name."), add_bag_item(state, " "))
        self.assertEqual((state, False, "No such item."), remove_bag_item(state, 0))


if __name__ == "__main__":
    unittest.main()
