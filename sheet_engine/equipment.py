# sheet_engine/equipment.py
"""Equipment slots and bag.

Every item may carry an ``acBonus`` (free text; only numbers count) that is
added to the total AC. Weapons also carry ``hitDice``; at most one weapon is
equipped and its dice are mirrored into ``combat.weaponDice``.
"""

from __future__ import annotations

import copy
import math
from typing import Any

# (id, label, slots)
EQUIP_GROUPS = (
    ("head", "Head", 3),
    ("neck", "Neck", 3),
    ("body", "Body/Armor", 3),
    ("waist", "Waist", 3),
    ("legs", "Legs", 3),
    ("feet", "Feet", 3),
    ("face", "Face", 3),
    ("shoulders", "Shoulders", 3),
    ("torso", "Torso", 3),
    ("arms", "Arms", 3),
    ("ringsRight", "Rings (right)", 6),
    ("ringsLeft", "Rings (left)", 6),
    ("shields", "Shields", 3),
    ("weapons", "Weapons", 6),
)
GROUP_SLOTS = {gid: n for gid, _, n in EQUIP_GROUPS}
ITEM_FIELDS = ("name", "short", "long", "acBonus")
WEAPON_FIELDS = ITEM_FIELDS + ("hitDice",)


def empty_item(group: str) -> dict:
    item = {f: "" for f in ITEM_FIELDS}
    if group == "weapons":
        item["hitDice"] = ""
        item["equipped"] = False
    return item


def default_equipment() -> dict:
    return {
        "slots": {gid: [empty_item(gid) for _ in range(n)] for gid, _, n in EQUIP_GROUPS},
        "bag": {"items": []},
    }


def _text(v: Any) -> str:
    if v is None or isinstance(v, (dict, list)):
        return ""
    return str(v)


def normalize_equipment(raw: Any) -> dict:
    """Full slot layout with string fields; at most one equipped weapon."""
    eq = raw if isinstance(raw, dict) else {}
    src_slots = eq.get("slots") if isinstance(eq.get("slots"), dict) else {}
    slots: dict[str, list[dict]] = {}
    for gid, _, n in EQUIP_GROUPS:
        items = src_slots.get(gid) if isinstance(src_slots.get(gid), list) else []
        out = []
        for i in range(n):
            it = items[i] if i < len(items) and isinstance(items[i], dict) else {}
            item = empty_item(gid)
            for f in WEAPON_FIELDS if gid == "weapons" else ITEM_FIELDS:
                item[f] = _text(it.get(f))
            if gid == "weapons":
                item["equipped"] = it.get("equipped") is True
            out.append(item)
        slots[gid] = out

    seen = False
    for w in slots["weapons"]:
        if w["equipped"] and seen:
            w["equipped"] = False
        seen = seen or w["equipped"]

    bag = eq.get("bag") if isinstance(eq.get("bag"), dict) else {}
    items = bag.get("items") if isinstance(bag.get("items"), list) else []
    return {
        "slots": slots,
        "bag": {"items": [s for s in (_text(x).strip() for x in items) if s]},
    }


def _number(v: Any) -> float:
    try:
        n = float(str(v).strip()) if str(v or "").strip() else 0.0
    except ValueError:
        return 0.0
    return n if math.isfinite(n) else 0.0


def equipment_ac_bonus(equipment: Any) -> float:
    """Sum of every numeric ``acBonus`` across all slots. Anything else counts as 0."""
    eq = equipment if isinstance(equipment, dict) else {}
    slots = eq.get("slots") if isinstance(eq.get("slots"), dict) else {}
    total = 0.0
    for items in slots.values():
        for it in items if isinstance(items, list) else []:
            if isinstance(it, dict):
                total += _number(it.get("acBonus"))
    return total


def equipped_weapon(equipment: Any) -> dict | None:
    eq = equipment if isinstance(equipment, dict) else {}
    weapons = (eq.get("slots") or {}).get("weapons") if isinstance(eq.get("slots"), dict) else None
    for w in weapons if isinstance(weapons, list) else []:
        if isinstance(w, dict) and w.get("equipped") is True:
            return w
    return None


def equipped_weapon_dice(equipment: Any) -> str:
    w = equipped_weapon(equipment)
    return _text(w.get("hitDice")).strip() if w else ""


# ----------------------------------------------------------------------
# mutators: (state, ok, message); the input record is never modified
# ----------------------------------------------------------------------
def _slot_error(group: str, index: int) -> str:
    if group not in GROUP_SLOTS:
        return f"Unknown equipment slot: {group}."
    if not 0 <= index < GROUP_SLOTS[group]:
        return f"{group} has no slot {index}."
    return ""


def set_equipment_item(state: dict, group: str, index: int, fields: dict) -> tuple[dict, bool, str]:
    msg = _slot_error(group, index)
    if msg:
        return state, False, msg
    nxt = copy.deepcopy(state)
    nxt["equipment"] = normalize_equipment(nxt.get("equipment"))
    item = nxt["equipment"]["slots"][group][index]
    allowed = WEAPON_FIELDS if group == "weapons" else ITEM_FIELDS
    for f in allowed:
        if f in (fields or {}):
            item[f] = _text(fields[f])
    if item.get("equipped"):
        combat = nxt.setdefault("combat", {})
        combat["weaponDice"] = equipped_weapon_dice(nxt["equipment"]) or _text(combat.get("weaponDice"))
    return nxt, True, "Item saved."


def clear_equipment_item(state: dict, group: str, index: int) -> tuple[dict, bool, str]:
    msg = _slot_error(group, index)
    if msg:
        return state, False, msg
    nxt = copy.deepcopy(state)
    nxt["equipment"] = normalize_equipment(nxt.get("equipment"))
    nxt["equipment"]["slots"][group][index] = empty_item(group)
    return nxt, True, "Item removed."


def equip_weapon(state: dict, index: int) -> tuple[dict, bool, str]:
    """Equip the weapon in slot ``index`` (unequipping the others) and mirror its dice."""
    msg = _slot_error("weapons", index)
    if msg:
        return state, False, msg
    nxt = copy.deepcopy(state)
    nxt["equipment"] = normalize_equipment(nxt.get("equipment"))
    for i, w in enumerate(nxt["equipment"]["slots"]["weapons"]):
        w["equipped"] = i == index
    combat = nxt.setdefault("combat", {})
    # un'arma senza dadi lascia quelli già scritti a mano
    combat["weaponDice"] = equipped_weapon_dice(nxt["equipment"]) or _text(combat.get("weaponDice"))
    name = nxt["equipment"]["slots"]["weapons"][index]["name"] or f"weapon {index + 1}"
    return nxt, True, f"Equipped {name}."


def add_bag_item(state: dict, name: str) -> tuple[dict, bool, str]:
    value = _text(name).strip()
    if not value:
        return state, False, "Enter an item name."
    nxt = copy.deepcopy(state)
    nxt["equipment"] = normalize_equipment(nxt.get("equipment"))
    nxt["equipment"]["bag"]["items"].append(value)
    return nxt, True, f"Added {value}."


def remove_bag_item(state: dict, index: int) -> tuple[dict, bool, str]:
    eq = normalize_equipment(state.get("equipment"))
    if not 0 <= index < len(eq["bag"]["items"]):
        return state, False, "No such item."
    nxt = copy.deepcopy(state)
    nxt["equipment"] = eq
    removed = eq["bag"]["items"].pop(index)
    return nxt, True, f"Removed {removed}."
