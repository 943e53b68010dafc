from __future__ import annotations
from typing import Any, Dict

# 5e (2014) lookup tables. Only the Warlock progression is modeled in full;
# the hit die map covers every SRD class so hit-dice pools stay correct for
# imported records.

ABILITIES = ["STR", "DEX", "CON", "INT", "WIS", "CHA"]

SKILLS: Dict[str, str] = {
    "acrobatics": "DEX",
    "animalHandling": "WIS",
    "arcana": "INT",
    "athletics": "STR",
    "deception": "CHA",
    "history": "INT",
    "insight": "WIS",
    "intimidation": "CHA",
    "investigation": "INT",
    "medicine": "WIS",
    "nature": "INT",
    "perception": "WIS",
    "performance": "CHA",
    "persuasion": "CHA",
    "religion": "INT",
    "sleightOfHand": "DEX",
    "stealth": "DEX",
    "survival": "WIS",
}

SKILL_LABELS: Dict[str, str] = {
    "acrobatics": "Acrobatics",
    "animalHandling": "Animal Handling",
    "arcana": "Arcana",
    "athletics": "Athletics",
    "deception": "Deception",
    "history": "History",
    "insight": "Insight",
    "intimidation": "Intimidation",
    "investigation": "Investigation",
    "medicine": "Medicine",
    "nature": "Nature",
    "perception": "Perception",
    "performance": "Performance",
    "persuasion": "Persuasion",
    "religion": "Religion",
    "sleightOfHand": "Sleight of Hand",
    "stealth": "Stealth",
    "survival": "Survival",
}

ABILITY_MIN = 1
ABILITY_MAX = 30
# ASI / feat ability cap
ABILITY_ASI_CAP = 20

MAX_LEVEL = 20

HIT_DIE_BY_CLASS: Dict[str, str] = {
    "Barbarian": "d12",
    "Fighter": "d10",
    "Paladin": "d10",
    "Ranger": "d10",
    "Bard": "d8",
    "Cleric": "d8",
    "Druid": "d8",
    "Monk": "d8",
    "Rogue": "d8",
    "Warlock": "d8",
    "Artificer": "d8",
    "Sorcerer": "d6",
    "Wizard": "d6",
}

SPELLCASTING_ABILITY_BY_CLASS = {
    "Warlock": "CHA",
}

SAVING_THROWS_BY_CLASS = {
    "Warlock": ["WIS", "CHA"],
}

ASI_LEVELS_BY_CLASS = {
    "Warlock": [4, 8, 12, 16, 19],
}

# Indexed by Warlock level (index 0 = no levels).
SPELLS_KNOWN_TABLE = [0, 2, 3, 4, 5, 6, 7, 8, 9, 10, 10, 11, 11, 12, 12, 13, 13, 14, 14, 15, 15]
CANTRIPS_KNOWN_TABLE = [0, 2, 2, 2, 3, 3, 3, 3, 3, 3, 4, 4, 4, 4, 4, 4, 4, 4, 4, 4, 4]

WARLOCK_PACT_TABLE = {
    "slotLevel": [0, 1, 1, 2, 2, 3, 3, 4, 4, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5],
    "slots": [0, 1, 2, 2, 2, 2, 2, 2, 2, 2, 2, 3, 3, 3, 3, 3, 3, 4, 4, 4, 4],
    "invocationsKnown": [0, 0, 2, 2, 2, 3, 3, 4, 4, 5, 5, 5, 6, 6, 6, 7, 7, 7, 8, 8, 8],
}

# Warlock level -> spell level of the Mystic Arcanum gained
MYSTIC_ARCANUM_BY_LEVEL = {
    11: 6,
    13: 7,
    15: 8,
    17: 9,
}

RESOURCE_RESETS = ("none", "short", "long")

PROFICIENCY_LEVELS = (0, 1, 2)

# Origin tags for sourced contributions
SOURCE_BACKGROUND = "background"
SOURCE_RACE = "race"
SOURCE_CLASS_PRIMARY = "class-primary"
SOURCE_FEAT = "feat"
SOURCE_MANUAL = "manual"

TOUGH_FEAT_ID = "feat_tough"


def ability_mod(score) -> int:
    # 5e: (score - 10) // 2 arrotondato per difetto
    try:
        s = int(score)
    except (TypeError, ValueError):
        s = 10
    return (s - 10) // 2


def proficiency_bonus(level) -> int:
    # 5e: 1-4:+2, 5-8:+3, 9-12:+4, 13-16:+5, 17-20:+6
    try:
        lvl = int(level)
    except (TypeError, ValueError):
        lvl = 1
    lvl = max(1, min(MAX_LEVEL, lvl))
    return 2 + (lvl - 1) // 4


def hit_die_for_class(class_name: str | None) -> str:
    return HIT_DIE_BY_CLASS.get((class_name or "").strip(), "")


def die_faces(die: Any) -> int:
    raw = str(die or "").strip().lower()
    if not raw.startswith("d"):
        return 0
    try:
        return max(0, int(raw[1:]))
    except ValueError:
        return 0


def _table_value(table: list[int], class_level) -> int:
    try:
        lv = int(class_level)
    except (TypeError, ValueError):
        lv = 0
    lv = max(0, min(MAX_LEVEL, lv))
    return table[lv]


def spells_known_limit(class_name: str | None, class_level) -> int | None:
    if (class_name or "").strip() != "Warlock":
        return None
    return _table_value(SPELLS_KNOWN_TABLE, class_level)


def cantrips_known_limit(class_name: str | None, class_level) -> int | None:
    if (class_name or "").strip() != "Warlock":
        return None
    return _table_value(CANTRIPS_KNOWN_TABLE, class_level)


def pact_slots_max(class_level) -> int:
    return _table_value(WARLOCK_PACT_TABLE["slots"], class_level)


def pact_slot_level(class_level) -> int:
    return _table_value(WARLOCK_PACT_TABLE["slotLevel"], class_level)


def invocations_known(class_level) -> int:
    return _table_value(WARLOCK_PACT_TABLE["invocationsKnown"], class_level)


def asi_levels(class_name: str | None) -> list[int]:
    return list(ASI_LEVELS_BY_CLASS.get((class_name or "").strip(), []))


def has_asi_at_level(class_name: str | None, class_level) -> bool:
    try:
        lv = int(class_level)
    except (TypeError, ValueError):
        return False
    return lv in asi_levels(class_name)


def count_asi_slots(class_name: str | None, class_level) -> int:
    try:
        lv = int(class_level)
    except (TypeError, ValueError):
        lv = 0
    return sum(1 for x in asi_levels(class_name) if lv >= x)
