# sheet_engine/spells.py
"""Spell catalog helpers: which spells a character may learn, search, and the level-up learn plan."""

from __future__ import annotations

from typing import Any

from .calc import clamp_int
from .rules import MAX_LEVEL, cantrips_known_limit, spells_known_limit


def is_known_caster(class_name: str | None) -> bool:
    return (class_name or "").strip() == "Warlock"


def find_subclass(subclasses_data: dict | None, class_name: str, subclass_name: str) -> dict | None:
    for entry in (subclasses_data or {}).get("classes") or []:
        if isinstance(entry, dict) and entry.get("class") == class_name:
            for sub in entry.get("subclasses") or []:
                if isinstance(sub, dict) and sub.get("name") == subclass_name:
                    return sub
    return None


def subclass_names(subclasses_data: dict | None, class_name: str) -> list[str]:
    for entry in (subclasses_data or {}).get("classes") or []:
        if isinstance(entry, dict) and entry.get("class") == class_name:
            return [str(s.get("name")) for s in entry.get("subclasses") or [] if isinstance(s, dict) and s.get("name")]
    return []


def _ids_up_to(by_level: Any, class_level: int) -> list[str]:
    ids: list[str] = []
    if not isinstance(by_level, dict):
        return ids
    for k, arr in by_level.items():
        if clamp_int(k, 99, 0, 99) <= class_level and isinstance(arr, list):
            ids += [str(x) for x in arr if x]
    return ids


def _spell_rules(state: dict, subclasses_data: dict | None) -> tuple[dict, int]:
    primary = state.get("primary") if isinstance(state.get("primary"), dict) else {}
    class_name = str(primary.get("className") or "").strip()
    sub = find_subclass(subclasses_data, class_name, str(primary.get("subclass") or "").strip())
    rules = sub.get("spellRules") if isinstance(sub, dict) and isinstance(sub.get("spellRules"), dict) else {}
    return rules, clamp_int(primary.get("classLevel"), 0, 0, MAX_LEVEL)


def always_prepared_ids(state: dict, subclasses_data: dict | None) -> list[str]:
    """Subclass spells added to the class list (patron expanded spells)."""
    rules, lvl = _spell_rules(state, subclasses_data)
    ids = _ids_up_to(rules.get("alwaysPreparedByLevel"), lvl)
    # flat legacy list
    if isinstance(rules.get("alwaysPrepared"), list):
        ids += [str(x) for x in rules["alwaysPrepared"] if x]
    return list(dict.fromkeys(ids))


def auto_known_ids_at_level(subclasses_data: dict | None, class_name: str, subclass_name: str, level: int) -> list[str]:
    """Spells a subclass grants for free on reaching exactly ``level``."""
    sub = find_subclass(subclasses_data, class_name, subclass_name)
    rules = sub.get("spellRules") if isinstance(sub, dict) and isinstance(sub.get("spellRules"), dict) else {}
    by_level = rules.get("autoKnownByLevel") if isinstance(rules.get("autoKnownByLevel"), dict) else {}
    arr = by_level.get(str(level)) or []
    return [str(x) for x in arr if x] if isinstance(arr, list) else []


def max_spell_level(spellcasting_data: dict | None, progression: str | None, class_level: int) -> int:
    prog = ((spellcasting_data or {}).get("progressions") or {}).get(progression or "")
    lv = clamp_int(class_level, 0, 0, MAX_LEVEL)
    if not isinstance(prog, dict) or lv <= 0:
        return 0
    by_level = prog.get("maxSpellLevel")
    if isinstance(by_level, dict):
        return clamp_int(by_level.get(str(lv)), 0, 0, 9)
    table = prog.get("pactMagicTable")
    if isinstance(table, dict):
        row = table.get(str(lv))
        return clamp_int((row or {}).get("slotLevel"), 0, 0, 9) if isinstance(row, dict) else 0
    return clamp_int(by_level, 0, 0, 9)


def _spell_id(entry: Any) -> str:
    if isinstance(entry, dict):
        return str(entry.get("id") or "")
    return str(entry or "")


def allowed_spell_ids(state: dict, spellcasting_data: dict | None, subclasses_data: dict | None) -> list[str]:
    """Class list up to the highest castable level, plus subclass spells."""
    primary = state.get("primary") if isinstance(state.get("primary"), dict) else {}
    class_name = str(primary.get("className") or "").strip()
    class_level = clamp_int(primary.get("classLevel"), 0, 0, MAX_LEVEL)
    allowed: list[str] = []
    if class_name and class_level > 0:
        cls = ((spellcasting_data or {}).get("classes") or {}).get(class_name) or {}
        rules, _ = _spell_rules(state, subclasses_data)
        progression = rules.get("progression") or cls.get("progression")
        list_by_level = cls.get("spellListByLevel") or {}
        if rules.get("spellSourceClass"):
            source_cls = ((spellcasting_data or {}).get("classes") or {}).get(rules["spellSourceClass"]) or {}
            list_by_level = source_cls.get("spellListByLevel") or list_by_level
        top = max_spell_level(spellcasting_data, progression, class_level)
        for lv in range(0, top + 1):
            allowed += [_spell_id(s) for s in list_by_level.get(str(lv)) or []]
    allowed += always_prepared_ids(state, subclasses_data)
    return list(dict.fromkeys(x for x in allowed if x))


def spell_index(spells_data: dict | None) -> dict[str, dict]:
    return {str(s.get("id")): s for s in (spells_data or {}).get("spells") or [] if isinstance(s, dict) and s.get("id")}


def search_spells(
    spells_data: dict | None,
    q: str = "",
    level: int | None = None,
    allowed_ids: list[str] | None = None,
    limit: int = 50,
) -> list[dict]:
    """Text search on name/school/text, optionally restricted to a level and an id set."""
    needle = (q or "").strip().lower()
    allowed = set(allowed_ids) if allowed_ids is not None else None
    out: list[dict] = []
    for sp in (spells_data or {}).get("spells") or []:
        if not isinstance(sp, dict):
            continue
        if allowed is not None and sp.get("id") not in allowed:
            continue
        if level is not None and clamp_int(sp.get("level"), -1) != level:
            continue
        hay = " ".join(str(sp.get(k) or "") for k in ("name", "school", "text")).lower()
        if needle and needle not in hay:
            continue
        out.append(sp)
    out.sort(key=lambda s: (clamp_int(s.get("level"), 0), str(s.get("name") or "").lower()))
    return out[: max(1, int(limit or 50))]


def build_spell_learn_plan(
    class_name: str,
    subclass_name: str,
    from_level: int,
    to_level: int,
    subclasses_data: dict | None = None,
    subclass_is_new: bool = False,
    known: list[str] | None = None,
) -> dict:
    """What the spells step of a level-up must collect.

    Subclass auto-known spells come from the destination level; a subclass
    picked in this same level-up also brings the ones from earlier levels.
    """
    plan = {
        "cantripsToChoose": 0,
        "spellsToChoose": 0,
        "autoCantripIds": [],
        "canReplaceSpell": False,
        "spellListLabel": "Known",
    }
    if not is_known_caster(class_name):
        return plan
    k_from = spells_known_limit(class_name, from_level) or 0
    k_to = spells_known_limit(class_name, to_level) or 0
    c_from = cantrips_known_limit(class_name, from_level) or 0
    c_to = cantrips_known_limit(class_name, to_level) or 0
    plan["spellsToChoose"] = max(0, k_to - k_from)
    plan["cantripsToChoose"] = max(0, c_to - c_from)
    first = 1 if subclass_is_new else to_level
    auto: list[str] = []
    for lv in range(first, to_level + 1):
        auto += auto_known_ids_at_level(subclasses_data, class_name, subclass_name, lv)
    have = set(known or [])
    plan["autoCantripIds"] = [x for x in dict.fromkeys(auto) if x not in have]
    plan["canReplaceSpell"] = True
    return plan
