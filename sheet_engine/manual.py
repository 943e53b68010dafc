# sheet_engine/manual.py
"""Hand edits made on the sheet, outside the level-up wizard.

Everything added here is tagged ``manual`` so that stripping or re-syncing
background, race or class contributions never touches it.
"""

from __future__ import annotations

import copy
import secrets

from loguru import logger

from .calc import clamp_int
from .rules import RESOURCE_RESETS, SKILL_LABELS, SKILLS, SOURCE_MANUAL

PROFICIENCY_KEYS = {"tool": "toolProficiencies", "language": "languageProficiencies"}
RESOURCE_MAX = 999


def set_skill_level(state: dict, skill_id: str, level) -> tuple[dict, bool, str]:
    """0 = none, 1 = proficient, 2 = expertise.

    An unattributed skill raised by hand becomes ``manual``; clearing a manual
    skill drops its attribution.
    """
    if skill_id not in SKILLS:
        return state, False, f"Unknown skill: {skill_id}."
    lvl = clamp_int(level, 0, 0, 2)
    nxt = copy.deepcopy(state)
    nxt.setdefault("skills", {})[skill_id] = lvl
    prof_sources = nxt.get("profSources") if isinstance(nxt.get("profSources"), dict) else {}
    if lvl == 0 and prof_sources.get(skill_id) == SOURCE_MANUAL:
        del prof_sources[skill_id]
    elif lvl > 0 and not prof_sources.get(skill_id):
        prof_sources[skill_id] = SOURCE_MANUAL
    nxt["profSources"] = prof_sources
    return nxt, True, f"{SKILL_LABELS.get(skill_id, skill_id)} updated."


def _prof_key(kind: str) -> str:
    return PROFICIENCY_KEYS.get(str(kind or "").strip().lower(), "")


def add_proficiency(state: dict, kind: str, value: str) -> tuple[dict, bool, str]:
    key = _prof_key(kind)
    if not key:
        return state, False, f"Unknown proficiency kind: {kind}."
    val = str(value or "").strip()
    if not val:
        return state, False, "Enter a value."
    entries = state.get(key) if isinstance(state.get(key), list) else []
    if any(isinstance(x, dict) and str(x.get("value") or "").strip().lower() == val.lower() for x in entries):
        return state, False, f"Already proficient: {val}."
    nxt = copy.deepcopy(state)
    nxt[key] = [x for x in nxt.get(key) or [] if isinstance(x, dict)]
    nxt[key].append({"value": val, "source": SOURCE_MANUAL})
    return nxt, True, f"Added {val}."


def remove_proficiency(state: dict, kind: str, value: str) -> tuple[dict, bool, str]:
    key = _prof_key(kind)
    if not key:
        return state, False, f"Unknown proficiency kind: {kind}."
    val = str(value or "").strip().lower()
    entries = [x for x in state.get(key) or [] if isinstance(x, dict)]
    kept = [x for x in entries if str(x.get("value") or "").strip().lower() != val]
    if len(kept) == len(entries):
        return state, False, f"Not proficient: {value}."
    nxt = copy.deepcopy(state)
    nxt[key] = copy.deepcopy(kept)
    return nxt, True, f"Removed {value}."


# ----------------------------------------------------------------------
# features
# ----------------------------------------------------------------------
def add_custom_feature(state: dict, name: str, text: str = "") -> tuple[dict, bool, str]:
    title = str(name or "").strip() or "Custom Feature"
    nxt = copy.deepcopy(state)
    feature = {"key": f"manual:{secrets.token_hex(6)}", "source": SOURCE_MANUAL, "name": title, "text": str(text or "")}
    nxt.setdefault("features", []).append(feature)
    return nxt, True, f"Added {title}."


def remove_custom_feature(state: dict, key: str) -> tuple[dict, bool, str]:
    features = state.get("features") or []
    target = next((f for f in features if isinstance(f, dict) and f.get("key") == key), None)
    if target is None:
        return state, False, "No such feature."
    if target.get("source") != SOURCE_MANUAL:
        # le feature di classe/razza/background si tolgono cambiando l'origine
        return state, False, f"{target.get('name') or key} is granted by {target.get('source') or 'another source'}."
    nxt = copy.deepcopy(state)
    nxt["features"] = [f for f in nxt["features"] if not (isinstance(f, dict) and f.get("key") == key)]
    return nxt, True, f"Removed {target.get('name') or key}."


# ----------------------------------------------------------------------
# custom resources
# ----------------------------------------------------------------------
def _resources(state: dict) -> list:
    res = state.get("resources") if isinstance(state.get("resources"), dict) else {}
    return res.get("custom") if isinstance(res.get("custom"), list) else []


def _name_taken(resources: list, name: str, skip: int = -1) -> bool:
    return any(
        i != skip and isinstance(r, dict) and str(r.get("name") or "").strip() == name
        for i, r in enumerate(resources)
    )


def add_resource(state: dict, name: str) -> tuple[dict, bool, str]:
    """New tracker at 0/0, never reset. Class or race effects will not adopt it."""
    title = str(name or "").strip()
    if not title:
        return state, False, "Enter a resource name."
    if _name_taken(_resources(state), title):
        return state, False, f"A resource named {title} already exists."
    nxt = copy.deepcopy(state)
    resources = nxt.setdefault("resources", {})
    if not isinstance(resources.get("custom"), list):
        resources["custom"] = []
    resources["custom"].append({"name": title, "cur": 0, "max": 0, "reset": "none", "source": SOURCE_MANUAL})
    return nxt, True, f"Added {title}."


def update_resource(state: dict, index: int, fields: dict) -> tuple[dict, bool, str]:
    """Edit name, cur, max and reset of the resource at ``index``.

    Counts are clamped to 0..999 and ``cur`` never exceeds ``max``.
    """
    current = _resources(state)
    if not 0 <= index < len(current) or not isinstance(current[index], dict):
        return state, False, "No such resource."
    f = fields if isinstance(fields, dict) else {}
    nxt = copy.deepcopy(state)
    res = nxt["resources"]["custom"][index]

    if "name" in f:
        title = str(f.get("name") or "").strip()
        if not title:
            return state, False, "Enter a resource name."
        if _name_taken(current, title, skip=index):
            return state, False, f"A resource named {title} already exists."
        res["name"] = title
    if "reset" in f:
        if f.get("reset") not in RESOURCE_RESETS:
            return state, False, f"Unknown reset: {f.get('reset')}."
        res["reset"] = f["reset"]
    if "max" in f:
        res["max"] = clamp_int(f.get("max"), 0, 0, RESOURCE_MAX)
    max_v = clamp_int(res.get("max"), 0, 0, RESOURCE_MAX)
    res["cur"] = clamp_int(f.get("cur") if "cur" in f else res.get("cur"), 0, 0, max_v)
    return nxt, True, f"{res.get('name') or 'Resource'} updated."


def remove_resource(state: dict, index: int) -> tuple[dict, bool, str]:
    current = _resources(state)
    if not 0 <= index < len(current):
        return state, False, "No such resource."
    nxt = copy.deepcopy(state)
    removed = nxt["resources"]["custom"].pop(index)
    name = removed.get("name") if isinstance(removed, dict) else ""
    return nxt, True, f"Removed {name or 'resource'}."


# ----------------------------------------------------------------------
# spells
# ----------------------------------------------------------------------
def set_spell_known(state: dict, spell_id: str, known: bool) -> tuple[dict, bool, str]:
    """Learn or forget a spell by hand. Only while the build is unlocked.

    Forgetting a spell also un-prepares it.
    """
    if (state.get("build") or {}).get("locked", True):
        return state, False, "Unlock the build to edit known spells."
    sid = str(spell_id or "").strip()
    if not sid:
        return state, False, "Pick a spell."
    nxt = copy.deepcopy(state)
    spells = nxt.setdefault("spells", {})
    current = [s for s in spells.get("known") or [] if isinstance(s, str)]
    if known:
        if sid in current:
            return state, False, "Spell already known."
        spells["known"] = current + [sid]
        logger.info(f"Spell learned by hand: {sid}")
        return nxt, True, f"Learned {sid}."
    if sid not in current:
        return state, False, "Spell not known."
    spells["known"] = [s for s in current if s != sid]
    spells["prepared"] = [s for s in spells.get("prepared") or [] if s != sid]
    logger.info(f"Spell forgotten by hand: {sid}")
    return nxt, True, f"Forgot {sid}."


def set_spell_prepared(state: dict, spell_id: str, prepared: bool) -> tuple[dict, bool, str]:
    sid = str(spell_id or "").strip()
    spells = state.get("spells") if isinstance(state.get("spells"), dict) else {}
    if sid not in (spells.get("known") or []):
        return state, False, "Spell not known."
    nxt = copy.deepcopy(state)
    current = [s for s in nxt["spells"].get("prepared") or [] if isinstance(s, str) and s != sid]
    nxt["spells"]["prepared"] = current + [sid] if prepared else current
    return nxt, True, "Prepared." if prepared else "Unprepared."
