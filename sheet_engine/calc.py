# sheet_engine/calc.py
from __future__ import annotations

from typing import Any

from .equipment import equipment_ac_bonus
from .rules import (
    ABILITIES,
    MAX_LEVEL,
    MYSTIC_ARCANUM_BY_LEVEL,
    SKILL_LABELS,
    SKILLS,
    SPELLCASTING_ABILITY_BY_CLASS,
    ability_mod,
    cantrips_known_limit,
    count_asi_slots,
    die_faces,
    hit_die_for_class,
    invocations_known,
    pact_slot_level,
    pact_slots_max,
    proficiency_bonus,
    spells_known_limit,
)


def clamp_int(v: Any, default: int, min_v: int | None = None, max_v: int | None = None) -> int:
    try:
        x = int(v)
    except (TypeError, ValueError, OverflowError):
        x = default
    if min_v is not None:
        x = max(min_v, x)
    if max_v is not None:
        x = min(max_v, x)
    return x


def total_level(state: dict) -> int:
    """Total character level. Multiclassing is disabled, so it is the primary class level."""
    primary = state.get("primary") if isinstance(state.get("primary"), dict) else {}
    lv = clamp_int(primary.get("classLevel"), 0, 0, MAX_LEVEL)
    return clamp_int(max(1, lv), 1, 1, MAX_LEVEL)


def class_level(state: dict) -> int:
    primary = state.get("primary") if isinstance(state.get("primary"), dict) else {}
    return clamp_int(primary.get("classLevel"), 0, 0, MAX_LEVEL)


def class_name(state: dict) -> str:
    primary = state.get("primary") if isinstance(state.get("primary"), dict) else {}
    return str(primary.get("className") or "").strip()


def ability_score(state: dict, ability: str) -> int:
    abilities = state.get("abilities") if isinstance(state.get("abilities"), dict) else {}
    return clamp_int(abilities.get(ability), 10, 1, 30)


def spell_mod_for_block(state: dict, block: dict | None) -> int:
    cn = str((block or {}).get("className") or "").strip()
    ab = SPELLCASTING_ABILITY_BY_CLASS.get(cn)
    if not ab:
        return 0
    return ability_mod(ability_score(state, ab))


def save_bonus(state: dict, ability: str) -> int:
    base = ability_mod(ability_score(state, ability))
    saves = state.get("saves") if isinstance(state.get("saves"), dict) else {}
    prof = proficiency_bonus(total_level(state)) if saves.get(ability) else 0
    return base + prof


def skill_bonus(state: dict, skill_id: str) -> int:
    ab = SKILLS.get(skill_id, "INT")
    base = ability_mod(ability_score(state, ab))
    pb = proficiency_bonus(total_level(state))
    skills = state.get("skills") if isinstance(state.get("skills"), dict) else {}
    lvl = clamp_int(skills.get(skill_id), 0, 0, 2)
    return base + pb * lvl


def passive_perception(state: dict) -> int:
    return 10 + skill_bonus(state, "perception") + clamp_int(state.get("perceptionMisc"), 0, -50, 50)


def initiative(state: dict) -> int:
    combat = state.get("combat") if isinstance(state.get("combat"), dict) else {}
    return ability_mod(ability_score(state, "DEX")) + clamp_int(combat.get("initiativeMisc"), 0, -99, 99)


def spell_save_dc(state: dict) -> int:
    primary = state.get("primary") if isinstance(state.get("primary"), dict) else {}
    return 8 + proficiency_bonus(total_level(state)) + clamp_int(primary.get("spellMod"), 0, -10, 10)


def spell_attack_bonus(state: dict) -> int:
    primary = state.get("primary") if isinstance(state.get("primary"), dict) else {}
    return proficiency_bonus(total_level(state)) + clamp_int(primary.get("spellMod"), 0, -10, 10)


def armor_class(state: dict) -> int:
    """acBase + acBonusExtra + every item acBonus, truncated, never below 0."""
    combat = state.get("combat") if isinstance(state.get("combat"), dict) else {}
    base = clamp_int(combat.get("acBase"), 10, 0, 99)
    extra = clamp_int(combat.get("acBonusExtra"), 0, -99, 99)
    return max(0, int(base + extra + equipment_ac_bonus(state.get("equipment"))))


def average_roll(faces: int) -> int:
    # media arrotondata per eccesso: d8 -> 5, d6 -> 4, d10 -> 6, d12 -> 7
    return faces // 2 + 1


def recommended_hp_max(state: dict) -> int:
    """Max die at level 1, the rounded-up average die afterwards, CON on every level."""
    faces = die_faces(hit_die_for_class(class_name(state)))
    con = ability_mod(ability_score(state, "CON"))
    hp = 0
    for i in range(1, class_level(state) + 1):
        hp += (faces if i == 1 else average_roll(faces)) + con
    return max(0, hp)


def spell_slots_for_state(state: dict) -> dict:
    """Slot table for the record.

    Warlock-only build: there are no standard Spellcasting slots, every slot
    comes from Pact Magic.
    """
    wl = class_level(state) if class_name(state) == "Warlock" else 0
    slots = pact_slots_max(wl)
    arcanum = sorted(v for k, v in MYSTIC_ARCANUM_BY_LEVEL.items() if wl >= k)
    return {
        "spellcastingSlots": {},
        "pactMagic": {"slots": slots, "slotLevel": pact_slot_level(wl), "arcanum": arcanum} if slots > 0 else None,
    }


def slots_max(state: dict, slot_level) -> int:
    slots = spell_slots_for_state(state)["spellcastingSlots"]
    return clamp_int(slots.get(str(slot_level)), 0, 0, 99)


def pact_slots_max_for_state(state: dict) -> int:
    pact = spell_slots_for_state(state)["pactMagic"]
    return int(pact["slots"]) if pact else 0


def spell_limits_for_state(state: dict) -> list[dict]:
    lv = class_level(state)
    cn = class_name(state)
    if lv <= 0 or not cn:
        return []
    return [{
        "label": "Primary",
        "className": cn,
        "classLevel": lv,
        "knownSpellsMax": spells_known_limit(cn, lv),
        "cantripsKnownMax": cantrips_known_limit(cn, lv),
        "invocationsKnownMax": invocations_known(lv) if cn == "Warlock" else 0,
        "preparedSpellsMax": None,
    }]


def earned_pick_slots(state: dict) -> int:
    return count_asi_slots(class_name(state), class_level(state))


def build_sheet_context(state: dict) -> dict:
    """Read-only numbers consumed by the rendering layer."""
    lvl = total_level(state)
    skills = state.get("skills") if isinstance(state.get("skills"), dict) else {}
    return {
        "level": lvl,
        "proficiency_bonus": proficiency_bonus(lvl),
        "abilities": [
            {"ability": a, "score": ability_score(state, a), "mod": ability_mod(ability_score(state, a))}
            for a in ABILITIES
        ],
        "saves": [
            {"ability": a, "proficient": bool((state.get("saves") or {}).get(a)), "bonus": save_bonus(state, a)}
            for a in ABILITIES
        ],
        "skills": [
            {
                "id": sid,
                "label": SKILL_LABELS[sid],
                "ability": ab,
                "level": clamp_int(skills.get(sid), 0, 0, 2),
                "bonus": skill_bonus(state, sid),
                "source": (state.get("profSources") or {}).get(sid, ""),
            }
            for sid, ab in SKILLS.items()
        ],
        "passive_perception": passive_perception(state),
        "initiative": initiative(state),
        "armor_class": armor_class(state),
        "spell_save_dc": spell_save_dc(state),
        "spell_attack_bonus": spell_attack_bonus(state),
        "hit_die": hit_die_for_class(class_name(state)),
        "recommended_hp_max": recommended_hp_max(state),
        "slots": spell_slots_for_state(state),
        "spell_limits": spell_limits_for_state(state),
        "earned_pick_slots": earned_pick_slots(state),
    }
