import unittest

from sheet_engine.character import default_character_state
from sheet_engine.effects import (
    EffectContext,
    ResourceEnsure,
    apply_effects,
    parse_effect,
    resource_max,
)


class ResourceEnsureTests(unittest.TestCase):
    def test_max_by_level_uses_nearest_lower_level(self):
        effect = ResourceEnsure("Mystic Arcanum", "long", None, {11: 1, 13: 2})
        self.assertEqual(1, resource_max(effect, EffectContext(class_level=12)))
        self.assertEqual(2, resource_max(effect, EffectContext(class_level=13)))
        self.assertEqual(0, resource_max(effect, EffectContext(class_level=5)))

    def test_flat_max_is_the_fallback(self):
        effect = ResourceEnsure("Arcanum", "long", 3, {11: 1})
        self.assertEqual(3, resource_max(effect, EffectContext(class_level=5)))

    def test_creates_resource_owned_by_source(self):
        state = apply_effects(
            default_character_state(),
            [{"type": "resourceEnsure", "name": "Eldritch Master", "reset": "long", "max": 1}],
            EffectContext(source="class-primary"),
        )
        self.assertEqual(
            [{"name": "Eldritch Master", "cur": 1, "max": 1, "reset": "long", "source": "class-primary"}],
            state["resources"]["custom"],
        )

    def test_resource_of_another_source_is_left_alone(self):
        state = default_character_state()
        state["resources"]["custom"] = [{"name": "Luck", "cur": 0, "max": 3, "reset": "long", "source": "race"}]
        nxt = apply_effects(
            state,
            [{"type": "resourceEnsure", "name": "Luck", "reset": "short", "max": 5}],
            EffectContext(source="class-primary"),
        )
        self.assertEqual(state["resources"]["custom"], nxt["resources"]["custom"])

    def test_spent_resource_is_not_refilled_when_max_is_unchanged(self):
        state = default_character_state()
        state["resources"]["custom"] = [{"name": "Arcanum", "cur": 0, "max": 2, "reset": "long", "source": "class-primary"}]
        effect = {"type": "resourceEnsure", "name": "Arcanum", "reset": "long", "maxByLevel": {"11": 1, "13": 2, "15": 3}}
        same = apply_effects(state, [effect], EffectContext(source="class-primary", class_level=14))
        self.assertEqual(0, same["resources"]["custom"][0]["cur"])
        grown = apply_effects(state, [effect], EffectContext(source="class-primary", class_level=15))
        self.assertEqual({"cur": 3, "max": 3}, {k: grown["resources"]["custom"][0][k] for k in ("cur", "max")})
        shrunk = apply_effects(
            {**state, "resources": {"custom": [{"name": "Arcanum", "cur": 2, "max": 2, "reset": "long", "source": "class-primary"}]}},
            [effect],
            EffectContext(source="class-primary", class_level=12),
        )
        self.assertEqual({"cur": 1, "max": 1}, {k: shrunk["resources"]["custom"][0][k] for k in ("cur", "max")})


class OtherEffectsTests(unittest.TestCase):
    def test_skill_proficiency_never_downgrades(self):
        state = default_character_state()
        state["skills"]["arcana"] = 2
        nxt = apply_effects(state, [{"type": "skillProficiency", "skillId": "arcana", "level": 1}], {"source": "background"})
        self.assertEqual(2, nxt["skills"]["arcana"])
        self.assertNotIn("arcana", nxt["profSources"])

    def test_skill_proficiency_records_source(self):
        nxt = apply_effects(
            default_character_state(),
            [{"type": "skillProficiency", "skillId": "deception", "level": 1}],
            {"source": "class-primary"},
        )
        self.assertEqual(1, nxt["skills"]["deception"])
        self.assertEqual("class-primary", nxt["profSources"]["deception"])

    def test_ability_increase_is_capped(self):
        state = default_character_state()
        state["abilities"]["CHA"] = 19
        nxt = apply_effects(state, [{"type": "abilityIncrease", "ability": "CHA", "amount": 2}])
        self.assertEqual(20, nxt["abilities"]["CHA"])

    def test_tool_and_language_are_deduplicated(self):
        effects = [
            {"type": "toolProficiency", "value": "Dice set"},
            {"type": "toolProficiency", "value": "Dice set"},
            {"type": "languageProficiency", "value": "Infernal", "source": "race"},
        ]
        nxt = apply_effects(default_character_state(), effects, {"source": "background"})
        self.assertEqual([{"value": "Dice set", "source": "background"}], nxt["toolProficiencies"])
        self.assertEqual([{"value": "Infernal", "source": "race"}], nxt["languageProficiencies"])

    def test_hp_now_add_stays_within_max(self):
        state = default_character_state()
        state["combat"]["hpNow"] = 3
        nxt = apply_effects(state, [{"type": "hpNowAdd", "amount": 50}])
        self.assertEqual(state["combat"]["hpMax"], nxt["combat"]["hpNow"])

    def test_input_record_is_not_mutated(self):
        state = default_character_state()
        apply_effects(state, [{"type": "savingThrowProficiency", "ability": "WIS"}])
        self.assertFalse(state["saves"]["WIS"])

    def test_unknown_effect_is_ignored(self):
        self.assertIsNone(parse_effect({"type": "teleport"}))
        self.assertIsNone(parse_effect({"type": "resourceEnsure"}))
        self.assertIsNone(parse_effect("hex"))


if __name__ == "__main__":
    unittest.main()
