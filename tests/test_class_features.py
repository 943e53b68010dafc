import unittest

from sheet_engine.character import default_character_state, derive
from sheet_engine.class_features import (
    choices_at_level,
    list_class_choices_for_state,
    parse_choice_key,
    resync_class_features,
    set_class_choice,
    sync_class_features,
)
from sheet_engine.data_loader import default_rule_data

INVOCATIONS_L2 = "class:primary:Warlock:L2:choice:invocations"
PACT_BOON_L3 = "class:primary:Warlock:L3:choice:pact-boon"


def warlock(level: int, choices: dict | None = None) -> dict:
    state = default_character_state()
    state["primary"]["classLevel"] = level
    state["classChoices"] = dict(choices or {})
    return derive(state)


class SyncTests(unittest.TestCase):
    def setUp(self):
        self.cf = default_rule_data().class_features

    def test_level_1_grants(self):
        state = sync_class_features(warlock(1), self.cf)
        self.assertEqual(
            ["class:primary:Warlock:L1:otherworldly-patron", "class:primary:Warlock:L1:pact-magic"],
            [f["key"] for f in state["features"]],
        )
        self.assertTrue(all(f["source"] == "class-primary" for f in state["features"]))

    def test_sync_is_idempotent(self):
        once = sync_class_features(warlock(11, {INVOCATIONS_L2: ["beguiling-influence", "devils-sight"]}), self.cf)
        self.assertEqual(once, sync_class_features(once, self.cf))

    def test_fulfilled_choice_applies_option_effects(self):
        state = sync_class_features(warlock(2, {INVOCATIONS_L2: ["beguiling-influence", "devils-sight"]}), self.cf)
        keys = [f["key"] for f in state["features"]]
        self.assertIn(f"choice:{INVOCATIONS_L2}:beguiling-influence", keys)
        self.assertIn(f"choice:{INVOCATIONS_L2}:devils-sight", keys)
        self.assertEqual(1, state["skills"]["deception"])
        self.assertEqual(1, state["skills"]["persuasion"])
        self.assertEqual("class-primary", state["profSources"]["persuasion"])

    def test_partial_choice_grants_nothing(self):
        state = sync_class_features(warlock(2, {INVOCATIONS_L2: ["beguiling-influence"]}), self.cf)
        self.assertFalse(any(f["key"].startswith("choice:") for f in state["features"]))
        self.assertEqual(0, state["skills"]["deception"])

    def test_level_scaled_resource_follows_class_level(self):
        state = sync_class_features(warlock(11), self.cf)
        arcanum = next(r for r in state["resources"]["custom"] if r["name"] == "Mystic Arcanum")
        self.assertEqual((1, 1), (arcanum["cur"], arcanum["max"]))

        state["primary"]["classLevel"] = 13
        state = sync_class_features(state, self.cf)
        arcanum = next(r for r in state["resources"]["custom"] if r["name"] == "Mystic Arcanum")
        self.assertEqual((2, 2), (arcanum["cur"], arcanum["max"]))

        arcanum["cur"] = 0
        state = sync_class_features(state, self.cf)
        arcanum = next(r for r in state["resources"]["custom"] if r["name"] == "Mystic Arcanum")
        self.assertEqual((0, 2), (arcanum["cur"], arcanum["max"]))

    def test_resync_drops_grants_above_level(self):
        state = sync_class_features(warlock(11), self.cf)
        state["resources"]["custom"].insert(0, {"name": "Luck", "cur": 1, "max": 3, "reset": "long", "source": "manual"})
        state["primary"]["classLevel"] = 10
        lowered = resync_class_features(state, self.cf)
        self.assertEqual(["Luck"], [r["name"] for r in lowered["resources"]["custom"]])
        self.assertNotIn("class:primary:Warlock:L11:mystic-arcanum", [f["key"] for f in lowered["features"]])

    def test_resync_keeps_spent_resources(self):
        state = sync_class_features(warlock(13), self.cf)
        arcanum = next(r for r in state["resources"]["custom"] if r["name"] == "Mystic Arcanum")
        arcanum["cur"] = 1
        again = resync_class_features(state, self.cf)
        arcanum = next(r for r in again["resources"]["custom"] if r["name"] == "Mystic Arcanum")
        self.assertEqual((1, 2), (arcanum["cur"], arcanum["max"]))
        self.assertEqual([f["key"] for f in state["features"]], [f["key"] for f in again["features"]])


class ChoiceTests(unittest.TestCase):
    def setUp(self):
        self.cf = default_rule_data().class_features

    def test_parse_choice_key(self):
        self.assertEqual(("primary", "Warlock", 2), parse_choice_key(INVOCATIONS_L2))
        self.assertIsNone(parse_choice_key("class:primary:Warlock:L2:pact-magic"))

    def test_option_pool_is_resolved(self):
        [choice] = choices_at_level(self.cf, "Warlock", 5)
        self.assertEqual("invocation-5", choice["id"])
        self.assertEqual(1, choice["choose"])
        self.assertIn("agonizing-blast", [o["id"] for o in choice["options"]])

    def test_list_choices_reports_pending_and_pool(self):
        state = warlock(3, {INVOCATIONS_L2: ["devils-sight", "eldritch-sight"]})
        items = {c["choiceKey"]: c for c in list_class_choices_for_state(state, self.cf)}
        self.assertEqual({INVOCATIONS_L2, PACT_BOON_L3}, set(items))
        self.assertTrue(items[INVOCATIONS_L2]["fulfilled"])
        self.assertEqual("invocations", items[INVOCATIONS_L2]["pool"])
        self.assertFalse(items[PACT_BOON_L3]["fulfilled"])
        self.assertEqual("", items[PACT_BOON_L3]["pool"])

    def test_set_choice_validates(self):
        state = warlock(2)
        _, ok, msg = set_class_choice(state, self.cf, PACT_BOON_L3, ["pact-of-the-tome"])
        self.assertFalse(ok)
        self.assertEqual("That choice is above your class level.", msg)
        _, ok, msg = set_class_choice(state, self.cf, INVOCATIONS_L2, ["nope"])
        self.assertFalse(ok)
        self.assertEqual("Unknown option: nope.", msg)
        _, ok, msg = set_class_choice(state, self.cf, INVOCATIONS_L2, ["devils-sight", "eldritch-sight", "misty-visions"])
        self.assertFalse(ok)
        self.assertEqual("Choose at most 2.", msg)
        nxt, ok, _ = set_class_choice(state, self.cf, INVOCATIONS_L2, ["devils-sight", "devils-sight"])
        self.assertTrue(ok)
        self.assertEqual(["devils-sight"], nxt["classChoices"][INVOCATIONS_L2])
        self.assertEqual({}, state["classChoices"])

    def test_set_choice_rejects_option_taken_from_same_pool(self):
        state = warlock(5, {INVOCATIONS_L2: ["devils-sight", "eldritch-sight"]})
        key = "class:primary:Warlock:L5:choice:invocation-5"
        _, ok, msg = set_class_choice(state, self.cf, key, ["devils-sight"])
        self.assertFalse(ok)
        self.assertEqual("devils-sight is already chosen.", msg)
        nxt, ok, _ = set_class_choice(state, self.cf, key, ["agonizing-blast"])
        self.assertTrue(ok)
        # re-saving the same choice does not collide with itself
        _, ok, _ = set_class_choice(nxt, self.cf, INVOCATIONS_L2, ["devils-sight", "misty-visions"])
        self.assertTrue(ok)

    def test_changing_a_choice_swaps_its_grants(self):
        state = sync_class_features(warlock(3), self.cf)
        state, ok, _ = set_class_choice(state, self.cf, PACT_BOON_L3, ["pact-of-the-tome"])
        self.assertTrue(ok)
        state = resync_class_features(state, self.cf)
        self.assertEqual([{"value": "Book of Shadows", "source": "class-primary"}], state["toolProficiencies"])

        state, ok, _ = set_class_choice(state, self.cf, PACT_BOON_L3, ["pact-of-the-chain"])
        state = resync_class_features(state, self.cf)
        self.assertEqual([], state["toolProficiencies"])
        keys = [f["key"] for f in state["features"]]
        self.assertIn(f"choice:{PACT_BOON_L3}:pact-of-the-chain", keys)
        self.assertNotIn(f"choice:{PACT_BOON_L3}:pact-of-the-tome", keys)


if __name__ == "__main__":
    unittest.main()
