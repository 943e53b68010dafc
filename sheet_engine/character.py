# sheet_engine/character.py
"""Character record: default shape and the Deriver.

Every load and save goes through :func:`derive`. It never fails: bad or
missing fields are replaced with their default and numbers are clamped into
their domain. It never adds or removes sourced contributions.
"""

from __future__ import annotations

import copy
import secrets
from typing import Any

from .calc import clamp_int, pact_slots_max_for_state, spell_slots_for_state
from .equipment import default_equipment, normalize_equipment
from .rest import default_hit_dice_pools
from .rules import (
    ABILITIES,
    ABILITY_MAX,
    ABILITY_MIN,
    MAX_LEVEL,
    RESOURCE_RESETS,
    SKILLS,
    SOURCE_MANUAL,
    die_faces,
)

CHAR_STORAGE_KEY = "dnd_character_state_v1"
STATE_VERSION = 7

DETAIL_FIELDS = ("appearance", "backstory", "allies", "treasure")


def _blank_state() -> dict:
    return {
        "version": STATE_VERSION,
        "id": "",
        "name": "",
        "race": "",
        "raceId": "",
        "raceBonusesApplied": {},
        "alignment": "",
        "inspirationPoints": 0,
        "multiclass": False,
        "abilities": {a: 10 for a in ABILITIES},
        "saves": {a: False for a in ABILITIES},
        "skills": {s: 0 for s in SKILLS},
        "backgroundId": "",
        "backgroundName": "",
        "profSources": {},
        "toolProficiencies": [],
        "languageProficiencies": [],
        "proficiencyMisc": 0,
        "perceptionMisc": 0,
        "combat": {
            "hpMax": 10,
            "hpNow": 10,
            "hpTemp": 0,
            "acBase": 10,
            "acBonusExtra": 0,
            "weaponDice": "",
            "speed": 30,
            "initiativeMisc": 0,
        },
        "level": 1,
        "primary": {"className": "Warlock", "classLevel": 1, "subclass": "", "spellMod": 0},
        "secondary": {"className": "", "classLevel": 0, "subclass": "", "spellMod": 0},
        "features": [],
        "picks": [],
        "rest": {"hitDice": None},
        "resources": {"spellSlotsUsed": {}, "pactSlotsUsed": 0, "custom": []},
        "spells": {
            "known": [],
            "knownByBlock": {"primary": [], "secondary": []},
            "prepared": [],
            "pendingLearn": 0,
            "notes": "",
        },
        "classChoices": {},
        "build": {"locked": True, "log": [], "redo": []},
        "equipment": default_equipment(),
        "notes": "",
        "details": {k: "" for k in DETAIL_FIELDS},
    }


def new_character_id() -> str:
    return secrets.token_hex(12)


def default_character_state() -> dict:
    state = _blank_state()
    state["id"] = new_character_id()
    return derive(state)


def merge_over_defaults(payload: Any) -> dict:
    """Deep-merge a persisted (possibly partial or legacy) payload over a fresh default."""
    base = default_character_state()
    if not isinstance(payload, dict):
        return base
    merged = {**base, **copy.deepcopy(payload)}
    for key in (
        "abilities", "saves", "skills", "combat", "primary", "secondary", "details",
        "spells", "build", "rest", "resources", "raceBonusesApplied", "profSources",
    ):
        extra = payload.get(key)
        merged[key] = {**base[key], **copy.deepcopy(extra)} if isinstance(extra, dict) else base[key]
    for key in ("features", "picks", "toolProficiencies", "languageProficiencies"):
        merged[key] = copy.deepcopy(payload[key]) if isinstance(payload.get(key), list) else base[key]
    if not str(merged.get("id") or "").strip():
        merged["id"] = base["id"]
    return merged


def _str(v: Any) -> str:
    if v is None:
        return ""
    return v if isinstance(v, str) else str(v)


def _dedupe_str_list(v: Any) -> list[str]:
    if isinstance(v, str):
        v = [v]
    if not isinstance(v, list):
        return []
    out: list[str] = []
    for x in v:
        s = _str(x).strip() if isinstance(x, (str, int)) else ""
        if s and s not in out:
            out.append(s)
    return out


def _sourced_list(v: Any) -> list[dict]:
    out: list[dict] = []
    seen: set[str] = set()
    for item in v if isinstance(v, list) else []:
        if isinstance(item, str):
            # vecchio formato: stringa semplice
            item = {"value": item, "source": SOURCE_MANUAL}
        if not isinstance(item, dict):
            continue
        value = _str(item.get("value")).strip()
        if not value or value in seen:
            continue
        seen.add(value)
        out.append({**item, "value": value, "source": _str(item.get("source"))})
    return out


def _features(v: Any) -> list[dict]:
    out: list[dict] = []
    seen: set[str] = set()
    for f in v if isinstance(v, list) else []:
        if not isinstance(f, dict):
            continue
        key = _str(f.get("key")).strip()
        if not key or key in seen:
            continue
        seen.add(key)
        out.append({**f, "key": key, "source": _str(f.get("source")), "name": _str(f.get("name")), "text": _str(f.get("text"))})
    return out


def _prof_sources(v: Any) -> dict[str, str]:
    if not isinstance(v, dict):
        return {}
    # legacy shape: {"skills": {...}, "tools": {...}, "languages": {...}}
    if isinstance(v.get("skills"), dict):
        v = v["skills"]
    return {k: val for k, val in v.items() if k in SKILLS and isinstance(val, str) and val}


def _custom_resources(v: Any) -> list[dict]:
    out: list[dict] = []
    for r in v if isinstance(v, list) else []:
        if not isinstance(r, dict):
            continue
        max_v = clamp_int(r.get("max"), 0, 0, 9999)
        reset = r.get("reset") if r.get("reset") in RESOURCE_RESETS else "none"
        item = {**r, "name": _str(r.get("name")), "cur": clamp_int(r.get("cur"), 0, 0, max_v), "max": max_v, "reset": reset}
        if "source" in r:
            item["source"] = _str(r.get("source"))
        out.append(item)
    return out


def _hit_dice(v: Any, state: dict) -> dict:
    if not isinstance(v, dict):
        return default_hit_dice_pools(state)
    out: dict[str, dict] = {}
    for die, pool in v.items():
        key = str(die)
        if die_faces(key) <= 0 or not isinstance(pool, dict):
            continue
        max_v = clamp_int(pool.get("max"), 0, 0, MAX_LEVEL)
        out[key] = {"max": max_v, "remaining": clamp_int(pool.get("remaining"), max_v, 0, max_v)}
    return out


def derive(raw: Any) -> dict:
    """Normalize and clamp a raw record. Pure, total and idempotent."""
    blank = _blank_state()
    s = copy.deepcopy(raw) if isinstance(raw, dict) else blank

    def section(key: str) -> dict:
        val = s.get(key)
        return val if isinstance(val, dict) else copy.deepcopy(blank[key])

    s["version"] = STATE_VERSION
    for key in ("id", "name", "race", "raceId", "alignment", "backgroundId", "backgroundName", "notes"):
        s[key] = _str(s.get(key))
    s["inspirationPoints"] = clamp_int(s.get("inspirationPoints"), 0, 0, 99)
    s["proficiencyMisc"] = clamp_int(s.get("proficiencyMisc"), 0, -20, 20)
    s["perceptionMisc"] = clamp_int(s.get("perceptionMisc"), 0, -50, 50)

    abilities = section("abilities")
    s["abilities"] = {a: clamp_int(abilities.get(a), 10, ABILITY_MIN, ABILITY_MAX) for a in ABILITIES}
    saves = section("saves")
    s["saves"] = {a: bool(saves.get(a)) for a in ABILITIES}
    skills = section("skills")
    s["skills"] = {sid: clamp_int(skills.get(sid), 0, 0, 2) for sid in SKILLS}
    bonuses = section("raceBonusesApplied")
    s["raceBonusesApplied"] = {a: clamp_int(bonuses.get(a), 0, -10, 10) for a in ABILITIES if a in bonuses}

    s["profSources"] = _prof_sources(s.get("profSources"))
    s["toolProficiencies"] = _sourced_list(s.get("toolProficiencies"))
    s["languageProficiencies"] = _sourced_list(s.get("languageProficiencies"))
    s["features"] = _features(s.get("features"))
    s["picks"] = [p for p in s.get("picks") or [] if isinstance(p, dict)] if isinstance(s.get("picks"), list) else []

    # Multiclassing is pinned off in this build.
    primary = {**blank["primary"], **section("primary")}
    primary["className"] = _str(primary.get("className")).strip()
    primary["subclass"] = _str(primary.get("subclass")).strip()
    primary["classLevel"] = clamp_int(primary.get("classLevel"), 0, 0, MAX_LEVEL)
    primary["spellMod"] = clamp_int(primary.get("spellMod"), 0, -10, 10)
    s["primary"] = primary
    s["secondary"] = copy.deepcopy(blank["secondary"])
    s["multiclass"] = False
    s["level"] = clamp_int(max(1, primary["classLevel"]), 1, 1, MAX_LEVEL)

    combat = {**blank["combat"], **section("combat")}
    combat["hpMax"] = clamp_int(combat.get("hpMax"), 0, 0, 9999)
    combat["hpNow"] = clamp_int(combat.get("hpNow"), 0, 0, combat["hpMax"])
    combat["hpTemp"] = clamp_int(combat.get("hpTemp"), 0, 0, 9999)
    combat["acBase"] = clamp_int(combat.get("acBase"), 10, 0, 99)
    combat["acBonusExtra"] = clamp_int(combat.get("acBonusExtra"), 0, -99, 99)
    combat["speed"] = clamp_int(combat.get("speed"), 30, 0, 999)
    combat["initiativeMisc"] = clamp_int(combat.get("initiativeMisc"), 0, -99, 99)
    combat["weaponDice"] = _str(combat.get("weaponDice"))
    s["combat"] = combat
    s["equipment"] = normalize_equipment(s.get("equipment"))

    resources = section("resources")
    standard = spell_slots_for_state(s)["spellcastingSlots"]
    used = resources.get("spellSlotsUsed") if isinstance(resources.get("spellSlotsUsed"), dict) else {}
    resources["spellSlotsUsed"] = {
        k: clamp_int(used.get(k), 0, 0, clamp_int(v, 0, 0, 99)) for k, v in standard.items()
    }
    resources["pactSlotsUsed"] = clamp_int(resources.get("pactSlotsUsed"), 0, 0, pact_slots_max_for_state(s))
    resources["custom"] = _custom_resources(resources.get("custom"))
    s["resources"] = resources

    rest = section("rest")
    # contatore obsoleto dei vecchi salvataggi
    rest.pop("preparedUnlock", None)
    rest["hitDice"] = _hit_dice(rest.get("hitDice"), s)
    s["rest"] = rest

    spells = section("spells")
    blocks = spells.get("knownByBlock") if isinstance(spells.get("knownByBlock"), dict) else None
    if isinstance(spells.get("known"), list):
        known = _dedupe_str_list(spells.get("known"))
    elif blocks is not None:
        # legacy shape with per-block lists only
        known = _dedupe_str_list(_dedupe_str_list(blocks.get("primary")) + _dedupe_str_list(blocks.get("secondary")))
    else:
        known = []
    spells["known"] = known
    # flat list is the primary-block list
    spells["knownByBlock"] = {"primary": list(known), "secondary": []}
    spells["prepared"] = _dedupe_str_list(spells.get("prepared"))
    spells["pendingLearn"] = clamp_int(spells.get("pendingLearn"), 0, 0, 99)
    spells["notes"] = _str(spells.get("notes"))
    s["spells"] = spells

    choices = section("classChoices")
    s["classChoices"] = {_str(k): _dedupe_str_list(v) for k, v in choices.items()}

    build = section("build")
    build["locked"] = build.get("locked") if isinstance(build.get("locked"), bool) else True
    build["log"] = [e for e in build.get("log") or [] if isinstance(e, dict)] if isinstance(build.get("log"), list) else []
    build["redo"] = [e for e in build.get("redo") or [] if isinstance(e, dict)] if isinstance(build.get("redo"), list) else []
    s["build"] = build

    details = section("details")
    s["details"] = {**details, **{k: _str(details.get(k)) for k in DETAIL_FIELDS}}
    return s
