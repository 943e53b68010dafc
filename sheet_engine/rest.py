from __future__ import annotations

import copy
import random
from typing import Callable

from loguru import logger

from .calc import (
    ability_score,
    average_roll,
    clamp_int,
    pact_slots_max_for_state,
    slots_max,
)
from .rules import MAX_LEVEL, ability_mod, die_faces, hit_die_for_class


def default_hit_dice_pools(state: dict) -> dict:
    """Full pools built from the class block(s): one die per class level."""
    pools: dict[str, dict] = {}

    def add(die: str, count: int) -> None:
        if not die or not count:
            return
        pool = pools.setdefault(die, {"max": 0, "remaining": 0})
        pool["max"] += count
        pool["remaining"] += count

    primary = state.get("primary") if isinstance(state.get("primary"), dict) else {}
    add(hit_die_for_class(primary.get("className")), clamp_int(primary.get("classLevel"), 0, 0, MAX_LEVEL))
    if state.get("multiclass"):
        secondary = state.get("secondary") if isinstance(state.get("secondary"), dict) else {}
        add(hit_die_for_class(secondary.get("className")), clamp_int(secondary.get("classLevel"), 0, 0, MAX_LEVEL))
    return pools


def adjust_hit_die_pool(state: dict, class_name: str, delta: int) -> None:
    """Grow or shrink the class's hit-die pool by ``delta`` dice (max and remaining), in place."""
    die = hit_die_for_class(class_name)
    if not die or not delta:
        return
    rest = state.setdefault("rest", {"hitDice": {}})
    if not isinstance(rest.get("hitDice"), dict):
        rest["hitDice"] = {}
    pools = rest["hitDice"]
    pool = pools.get(die) if isinstance(pools.get(die), dict) else {"max": 0, "remaining": 0}
    new_max = clamp_int(clamp_int(pool.get("max"), 0) + delta, 0, 0, MAX_LEVEL)
    remaining = clamp_int(clamp_int(pool.get("remaining"), 0) + delta, 0, 0, new_max)
    if new_max <= 0:
        pools.pop(die, None)
    else:
        pools[die] = {"max": new_max, "remaining": remaining}


def roll_die(faces: int) -> int:
    f = max(1, int(faces or 0))
    return random.SystemRandom().randint(1, f)


def apply_short_rest(
    state: dict,
    spend: dict[str, int] | None = None,
    mode: str = "roll",
    roller: Callable[[int], int] | None = None,
) -> tuple[dict, int]:
    """Spend hit dice, refill pact slots and short-rest resources.

    ``spend`` maps die strings to counts, e.g. ``{"d8": 2}``. Returns the new
    record and the HP healed.
    """
    nxt = copy.deepcopy(state)
    rest = nxt.setdefault("rest", {"hitDice": None})
    if not isinstance(rest.get("hitDice"), dict):
        rest["hitDice"] = default_hit_dice_pools(nxt)

    roll = roller or roll_die
    con = ability_mod(ability_score(nxt, "CON"))
    healed = 0
    for die, raw in (spend or {}).items():
        pool = rest["hitDice"].get(die)
        if not isinstance(pool, dict):
            continue
        use = min(clamp_int(raw, 0, 0, 999), clamp_int(pool.get("remaining"), 0, 0))
        pool["remaining"] = clamp_int(pool.get("remaining"), 0, 0) - use
        faces = die_faces(die)
        for _ in range(use):
            base = average_roll(faces) if mode == "average" else roll(faces)
            healed += max(0, base + con)

    combat = nxt.setdefault("combat", {})
    hp_max = clamp_int(combat.get("hpMax"), 0, 0)
    combat["hpNow"] = clamp_int(clamp_int(combat.get("hpNow"), 0, 0) + healed, 0, 0, hp_max)

    resources = nxt.setdefault("resources", {"spellSlotsUsed": {}, "pactSlotsUsed": 0, "custom": []})
    resources["pactSlotsUsed"] = 0
    for r in resources.get("custom") or []:
        if isinstance(r, dict) and r.get("reset") == "short":
            r["cur"] = clamp_int(r.get("max"), 0, 0)
    logger.info(f"Short rest: healed {healed} HP")
    return nxt, healed


def apply_long_rest(state: dict) -> dict:
    nxt = copy.deepcopy(state)
    rest = nxt.setdefault("rest", {})
    rest["hitDice"] = default_hit_dice_pools(nxt)

    combat = nxt.setdefault("combat", {})
    combat["hpNow"] = clamp_int(combat.get("hpMax"), 0, 0)
    combat["hpTemp"] = 0

    resources = nxt.setdefault("resources", {})
    resources["spellSlotsUsed"] = {}
    resources["pactSlotsUsed"] = 0
    for r in resources.get("custom") or []:
        if isinstance(r, dict) and r.get("reset") in ("short", "long"):
            r["cur"] = clamp_int(r.get("max"), 0, 0)
    logger.info("Long rest completed")
    return nxt


def use_spell_slot(state: dict, slot_type: str, slot_level: int = 0) -> tuple[dict, bool, str]:
    """Mark one slot used. Using a slot when none remain changes nothing."""
    nxt = copy.deepcopy(state)
    resources = nxt.setdefault("resources", {})
    if slot_type == "pact":
        max_v = pact_slots_max_for_state(nxt)
        used = clamp_int(resources.get("pactSlotsUsed"), 0, 0, max_v)
        if used >= max_v:
            return state, False, "No pact slots remaining."
        resources["pactSlotsUsed"] = used + 1
        return nxt, True, f"Pact slot used ({max_v - used - 1}/{max_v} left)."

    key = str(clamp_int(slot_level, 0, 0, 9))
    max_v = slots_max(nxt, key)
    used_map = resources.setdefault("spellSlotsUsed", {})
    used = clamp_int(used_map.get(key), 0, 0, max_v)
    if used >= max_v:
        return state, False, f"No level {key} slots remaining."
    used_map[key] = used + 1
    return nxt, True, f"Level {key} slot used."


def restore_spell_slot(state: dict, slot_type: str, slot_level: int = 0) -> tuple[dict, bool, str]:
    nxt = copy.deepcopy(state)
    resources = nxt.setdefault("resources", {})
    if slot_type == "pact":
        used = clamp_int(resources.get("pactSlotsUsed"), 0, 0)
        if used <= 0:
            return state, False, "No pact slots to restore."
        resources["pactSlotsUsed"] = used - 1
        return nxt, True, "Pact slot restored."

    key = str(clamp_int(slot_level, 0, 0, 9))
    used_map = resources.setdefault("spellSlotsUsed", {})
    used = clamp_int(used_map.get(key), 0, 0)
    if used <= 0:
        return state, False, f"No level {key} slots to restore."
    used_map[key] = used - 1
    return nxt, True, f"Level {key} slot restored."
