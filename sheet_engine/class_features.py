# sheet_engine/class_features.py
"""Per-level class grants and choice points.

Grants are applied once, keyed by a stable feature key. Level-scaled
resources (``resourceEnsure``) are refreshed on every sync so their maxima
follow the class level. Selections live in ``state["classChoices"]`` as
``{choiceKey: [optionId, ...]}``.
"""

from __future__ import annotations

import copy
import re
from typing import Any

from loguru import logger

from .calc import clamp_int
from .effects import EffectContext, apply_effects, scaling_only
from .rules import MAX_LEVEL, SOURCE_CLASS_PRIMARY
from .sources import strip_source


def slug(s: Any) -> str:
    out = re.sub(r"[^a-z0-9]+", "-", str(s or "").strip().lower()).strip("-")[:64]
    return out or "x"


def grant_key(which: str, class_name: str, level: int, grant_id: str) -> str:
    return f"class:{which}:{class_name}:L{level}:{grant_id}"


def choice_key(which: str, class_name: str, level: int, choice_id: str) -> str:
    return f"class:{which}:{class_name}:L{level}:choice:{choice_id}"


def choice_feature_key(choice_key_str: str, option_id: str) -> str:
    return f"choice:{choice_key_str}:{option_id}"


_CHOICE_KEY_RE = re.compile(r"^class:(primary|secondary):([^:]+):L(\d+):choice:")


def parse_choice_key(key: str) -> tuple[str, str, int] | None:
    """``(which, className, level)`` of a choice key, or None."""
    m = _CHOICE_KEY_RE.match(str(key or ""))
    if not m:
        return None
    return m.group(1), m.group(2), int(m.group(3))


def _selected(v: Any) -> list[str]:
    if isinstance(v, list):
        return [str(x) for x in v if x not in (None, "")]
    if isinstance(v, str) and v:
        return [v]
    return []


def _class_data(class_features_data: dict | None, class_name: str) -> dict:
    classes = (class_features_data or {}).get("classes") if isinstance(class_features_data, dict) else None
    cd = classes.get(class_name) if isinstance(classes, dict) else None
    return cd if isinstance(cd, dict) else {}


def _class_levels(class_features_data: dict | None, class_name: str) -> dict:
    levels = _class_data(class_features_data, class_name).get("levels")
    return levels if isinstance(levels, dict) else {}


def level_entry(class_features_data: dict | None, class_name: str, level: int) -> dict:
    entry = _class_levels(class_features_data, class_name).get(str(level))
    return entry if isinstance(entry, dict) else {}


def choices_at_level(class_features_data: dict | None, class_name: str, level: int) -> list[dict]:
    """Choice definitions introduced at exactly ``level``, with id, choose and options resolved.

    A choice may list its options inline or name a shared pool with
    ``optionsFrom`` (e.g. Eldritch Invocations, offered at several levels).
    """
    pools = _class_data(class_features_data, class_name).get("optionPools")
    pools = pools if isinstance(pools, dict) else {}
    out = []
    for ch in level_entry(class_features_data, class_name, level).get("choices") or []:
        if not isinstance(ch, dict):
            continue
        cid = str(ch.get("id") or slug(ch.get("name") or "choice"))
        out.append({
            **ch,
            "id": cid,
            "choose": clamp_int(ch.get("choose"), 1, 1, 20),
            "options": [o for o in ch.get("options") or pools.get(str(ch.get("optionsFrom") or "")) or [] if isinstance(o, dict)],
        })
    return out


def _has_feature(state: dict, key: str) -> bool:
    return any(isinstance(f, dict) and f.get("key") == key for f in state.get("features") or [])


def _apply_block(state: dict, which: str, block: dict, class_features_data: dict) -> dict:
    class_name = str(block.get("className") or "").strip()
    class_level = clamp_int(block.get("classLevel"), 0, 0, MAX_LEVEL)
    if not class_name or class_level <= 0:
        return state
    source = SOURCE_CLASS_PRIMARY if which == "primary" else "class-secondary"
    choices_state = state.get("classChoices") if isinstance(state.get("classChoices"), dict) else {}

    for lv in range(1, class_level + 1):
        entry = level_entry(class_features_data, class_name, lv)
        if not entry:
            continue
        ctx = EffectContext(source=source, class_name=class_name, class_level=class_level, grant_level=lv)

        for g in entry.get("grants") or []:
            if not isinstance(g, dict):
                continue
            gid = str(g.get("id") or slug(g.get("name") or "feature"))
            key = grant_key(which, class_name, lv, gid)
            effects = g.get("effects") or []
            if not _has_feature(state, key):
                state.setdefault("features", []).append(
                    {"key": key, "source": source, "name": str(g.get("name") or gid), "text": str(g.get("text") or "")}
                )
                state = apply_effects(state, effects, ctx)
            else:
                state = apply_effects(state, scaling_only(effects), ctx)

        for ch in choices_at_level(class_features_data, class_name, lv):
            ckey = choice_key(which, class_name, lv, ch["id"])
            selected = _selected(choices_state.get(ckey))
            if len(selected) < ch["choose"]:
                # pending: shows up in list_class_choices_for_state
                continue
            for opt_id in selected[: ch["choose"]]:
                opt = next((o for o in ch["options"] if str(o.get("id")) == opt_id), {})
                fkey = choice_feature_key(ckey, opt_id)
                effects = opt.get("effects") or []
                if not _has_feature(state, fkey):
                    state.setdefault("features", []).append({
                        "key": fkey,
                        "source": source,
                        "name": f"{ch.get('name') or ch['id']}: {opt.get('name') or opt_id}",
                        "text": str(opt.get("text") or ""),
                    })
                    state = apply_effects(state, effects, ctx)
                else:
                    state = apply_effects(state, scaling_only(effects), ctx)
    return state


def sync_class_features(state: dict, class_features_data: dict | None) -> dict:
    """Bring class grants and fulfilled choices up to the current class level. Idempotent."""
    nxt = copy.deepcopy(state)
    if not isinstance((class_features_data or {}).get("classes"), dict):
        return nxt
    if not isinstance(nxt.get("classChoices"), dict):
        nxt["classChoices"] = {}
    if not isinstance(nxt.get("features"), list):
        nxt["features"] = []

    primary = nxt.get("primary") if isinstance(nxt.get("primary"), dict) else {}
    nxt = _apply_block(nxt, "primary", primary, class_features_data)
    if nxt.get("multiclass"):
        secondary = nxt.get("secondary") if isinstance(nxt.get("secondary"), dict) else {}
        nxt = _apply_block(nxt, "secondary", secondary, class_features_data)
    logger.debug(f"Class features synced: {len(nxt['features'])} features")
    return nxt


def _restore_order(items: list, before: list, key_of) -> list:
    rank = {}
    for i, item in enumerate(before):
        k = key_of(item)
        if k is not None and k not in rank:
            rank[k] = i
    tail = len(before)
    return sorted(items, key=lambda x: rank.get(key_of(x), tail))


def resync_class_features(state: dict, class_features_data: dict | None) -> dict:
    """Strip class contributions and sync again, keeping display order and spent resources.

    Used after the class level goes down, when grants above the new level
    have to disappear.
    """
    before = copy.deepcopy(state)
    nxt = sync_class_features(strip_source(state, SOURCE_CLASS_PRIMARY), class_features_data)

    def by_key(f):
        return f.get("key") if isinstance(f, dict) else None

    def by_value(x):
        return x.get("value") if isinstance(x, dict) else None

    def by_name(r):
        return str(r.get("name") or "").strip() if isinstance(r, dict) else None

    nxt["features"] = _restore_order(nxt.get("features") or [], before.get("features") or [], by_key)
    for key in ("toolProficiencies", "languageProficiencies"):
        nxt[key] = _restore_order(nxt.get(key) or [], before.get(key) or [], by_value)

    old_resources = (before.get("resources") or {}).get("custom") or []
    old_cur = {by_name(r): r.get("cur") for r in old_resources if isinstance(r, dict)}
    custom = _restore_order((nxt.get("resources") or {}).get("custom") or [], old_resources, by_name)
    for r in custom:
        name = by_name(r)
        if name in old_cur:
            r["cur"] = clamp_int(old_cur[name], 0, 0, clamp_int(r.get("max"), 0, 0, 9999))
    nxt.setdefault("resources", {})["custom"] = custom
    return nxt


def list_class_choices_for_state(state: dict, class_features_data: dict | None) -> list[dict]:
    """Every choice up to the current class level, with its selection and whether it is fulfilled."""
    out: list[dict] = []
    blocks = [("primary", state.get("primary"))]
    if state.get("multiclass"):
        blocks.append(("secondary", state.get("secondary")))
    choices_state = state.get("classChoices") if isinstance(state.get("classChoices"), dict) else {}

    for which, block in blocks:
        block = block if isinstance(block, dict) else {}
        class_name = str(block.get("className") or "").strip()
        class_level = clamp_int(block.get("classLevel"), 0, 0, MAX_LEVEL)
        if not class_name or class_level <= 0:
            continue
        for lv in range(1, class_level + 1):
            for ch in choices_at_level(class_features_data, class_name, lv):
                key = choice_key(which, class_name, lv, ch["id"])
                selected = _selected(choices_state.get(key))
                out.append({
                    "choiceKey": key,
                    "which": which,
                    "className": class_name,
                    "classLevel": class_level,
                    "level": lv,
                    "id": ch["id"],
                    "name": str(ch.get("name") or ch["id"]),
                    "prompt": str(ch.get("prompt") or ""),
                    "pool": str(ch.get("optionsFrom") or ""),
                    "choose": ch["choose"],
                    "options": ch["options"],
                    "selected": selected,
                    "fulfilled": len(selected) >= ch["choose"],
                })
    return out


def find_choice(class_features_data: dict | None, key: str) -> dict | None:
    parsed = parse_choice_key(key)
    if not parsed:
        return None
    _, class_name, lv = parsed
    for ch in choices_at_level(class_features_data, class_name, lv):
        if key.endswith(f":choice:{ch['id']}"):
            return ch
    return None


def set_class_choice(
    state: dict, class_features_data: dict | None, key: str, option_ids: list[Any]
) -> tuple[dict, bool, str]:
    """Record a selection for a reachable choice. Deduped; at most ``choose`` options, all known ids."""
    parsed = parse_choice_key(key)
    primary = state.get("primary") if isinstance(state.get("primary"), dict) else {}
    if not parsed or parsed[0] != "primary" or parsed[1] != str(primary.get("className") or "").strip():
        return state, False, "Unknown choice."
    if parsed[2] > clamp_int(primary.get("classLevel"), 0, 0, MAX_LEVEL):
        return state, False, "That choice is above your class level."
    ch = find_choice(class_features_data, key)
    if ch is None:
        return state, False, "Unknown choice."

    picked: list[str] = []
    for raw in option_ids if isinstance(option_ids, list) else []:
        oid = str(raw or "").strip()
        if oid and oid not in picked:
            picked.append(oid)
    valid = {str(o.get("id")) for o in ch["options"]}
    unknown = [o for o in picked if o not in valid]
    if unknown:
        return state, False, f"Unknown option: {unknown[0]}."
    if len(picked) > ch["choose"]:
        return state, False, f"Choose at most {ch['choose']}."
    pool = str(ch.get("optionsFrom") or "")
    if pool:
        taken = {
            x
            for c in list_class_choices_for_state(state, class_features_data)
            if c["pool"] == pool and c["choiceKey"] != key
            for x in c["selected"]
        }
        dup = [o for o in picked if o in taken]
        if dup:
            return state, False, f"{dup[0]} is already chosen."

    nxt = copy.deepcopy(state)
    if not isinstance(nxt.get("classChoices"), dict):
        nxt["classChoices"] = {}
    nxt["classChoices"][key] = picked
    return nxt, True, "Choice saved."
