# sheet_engine/sources.py
"""Origin tags: scoped removal of contributions and the background/race appliers.

Re-selecting a background or race always strips the old contributions first
and then applies the new ones; nothing is diffed.
"""

from __future__ import annotations

import copy

from loguru import logger

from .calc import clamp_int
from .effects import EffectContext, apply_effects
from .rules import ABILITIES, ABILITY_MAX, ABILITY_MIN, SKILL_LABELS, SKILLS, SOURCE_BACKGROUND, SOURCE_RACE

# nomi "umani" delle abilità usati nei dati dei background
_SKILL_ALIASES = {label.lower(): sid for sid, label in SKILL_LABELS.items()}


def _skill_id(raw) -> str:
    s = str(raw or "").strip()
    if s in SKILLS:
        return s
    return _SKILL_ALIASES.get(s.lower(), s.lower() if s.lower() in SKILLS else "")


def strip_source(state: dict, source: str) -> dict:
    """Remove every contribution tagged with ``source``.

    Features, tool/language entries and custom resources with that source are
    dropped. A skill attributed to the source loses exactly one proficiency
    step.
    """
    nxt = copy.deepcopy(state)
    if not source:
        return nxt

    nxt["features"] = [f for f in nxt.get("features") or [] if not (isinstance(f, dict) and (f.get("source") or "") == source)]
    for key in ("toolProficiencies", "languageProficiencies"):
        nxt[key] = [x for x in nxt.get(key) or [] if not (isinstance(x, dict) and (x.get("source") or "") == source)]

    resources = nxt.get("resources") if isinstance(nxt.get("resources"), dict) else None
    if resources is not None:
        resources["custom"] = [
            r for r in resources.get("custom") or []
            if not (isinstance(r, dict) and (r.get("source") or "") == source)
        ]

    prof_sources = nxt.get("profSources") if isinstance(nxt.get("profSources"), dict) else {}
    skills = nxt.setdefault("skills", {})
    for sid, tag in list(prof_sources.items()):
        if tag != source:
            continue
        del prof_sources[sid]
        skills[sid] = max(0, clamp_int(skills.get(sid), 0, 0, 2) - 1)
    nxt["profSources"] = prof_sources
    return nxt


def apply_background(state: dict, background: dict | None) -> dict:
    """Strip the previous background, then grant the new one (or none)."""
    nxt = strip_source(state, SOURCE_BACKGROUND)
    bg = background if isinstance(background, dict) else {}
    bg_id = str(bg.get("id") or "")
    nxt["backgroundId"] = bg_id
    nxt["backgroundName"] = str(bg.get("name") or "")
    if not bg:
        return nxt

    effects: list[dict] = []
    for raw in bg.get("skills") or []:
        sid = _skill_id(raw)
        if sid:
            effects.append({"type": "skillProficiency", "skillId": sid, "level": 1})
    effects += [{"type": "toolProficiency", "value": t} for t in bg.get("tools") or []]
    effects += [{"type": "languageProficiency", "value": lang} for lang in bg.get("languages") or []]
    nxt = apply_effects(nxt, effects, EffectContext(source=SOURCE_BACKGROUND))

    feature = bg.get("feature") if isinstance(bg.get("feature"), dict) else None
    if feature and (feature.get("name") or feature.get("text")):
        key = f"bg:{bg_id or bg.get('name') or 'background'}"
        if not any(f.get("key") == key for f in nxt["features"]):
            nxt["features"].append({
                "key": key,
                "source": SOURCE_BACKGROUND,
                "name": str(feature.get("name") or "Background Feature"),
                "text": str(feature.get("text") or ""),
            })
    logger.info(f"Background set to {nxt['backgroundName'] or '-'}")
    return nxt


def apply_race(state: dict, race: dict | None) -> dict:
    """Undo the previously applied race, then apply ``race`` (or none)."""
    nxt = copy.deepcopy(state)
    abilities = nxt.setdefault("abilities", {})
    applied = nxt.get("raceBonusesApplied") if isinstance(nxt.get("raceBonusesApplied"), dict) else {}
    for ab, amt in applied.items():
        if ab in ABILITIES:
            abilities[ab] = clamp_int(clamp_int(abilities.get(ab), 10) - clamp_int(amt, 0, -10, 10), 10, ABILITY_MIN, ABILITY_MAX)
    nxt["raceBonusesApplied"] = {}
    nxt = strip_source(nxt, SOURCE_RACE)

    rc = race if isinstance(race, dict) else {}
    race_id = str(rc.get("id") or "")
    nxt["raceId"] = race_id
    nxt["race"] = str(rc.get("name") or "")
    if not rc:
        return nxt

    abilities = nxt["abilities"]
    bonuses = rc.get("abilityBonuses") if isinstance(rc.get("abilityBonuses"), dict) else {}
    for ab, raw in bonuses.items():
        if ab not in ABILITIES:
            continue
        before = clamp_int(abilities.get(ab), 10, ABILITY_MIN, ABILITY_MAX)
        after = clamp_int(before + clamp_int(raw, 0, -10, 10), before, ABILITY_MIN, ABILITY_MAX)
        abilities[ab] = after
        # only what really landed, so removal is exact
        if after != before:
            nxt["raceBonusesApplied"][ab] = nxt["raceBonusesApplied"].get(ab, 0) + (after - before)

    if rc.get("speed") is not None:
        nxt.setdefault("combat", {})["speed"] = clamp_int(rc.get("speed"), 30, 0, 999)

    effects: list = []
    for raw in rc.get("skills") or []:
        sid = _skill_id(raw)
        if sid:
            effects.append({"type": "skillProficiency", "skillId": sid, "level": 1})
    effects += [{"type": "toolProficiency", "value": t} for t in rc.get("tools") or []]
    effects += [{"type": "languageProficiency", "value": lang} for lang in rc.get("languages") or []]
    effects += [e for e in rc.get("effects") or [] if isinstance(e, dict)]
    nxt = apply_effects(nxt, effects, EffectContext(source=SOURCE_RACE))

    features = nxt.setdefault("features", [])
    for trait in rc.get("traits") or []:
        if not isinstance(trait, dict):
            continue
        name = str(trait.get("name") or "").strip()
        text = str(trait.get("text") or "").strip()
        if not name and not text:
            continue
        key = f"race:{race_id or rc.get('name') or 'race'}:{name or 'trait'}"
        if not any(f.get("key") == key for f in features):
            features.append({"key": key, "source": SOURCE_RACE, "name": name or "Racial Trait", "text": text})
    logger.info(f"Race set to {nxt['race'] or '-'}")
    return nxt
