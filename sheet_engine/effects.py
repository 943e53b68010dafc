# sheet_engine/effects.py
"""Declarative effects applied to a character record.

Rule data describes effects as dicts tagged by ``type``. They are parsed into
one dataclass per kind and applied through a single ``match``:

- skillProficiency: ``{skillId, level(1|2)}``
- savingThrowProficiency: ``{ability}``
- toolProficiency / languageProficiency: ``{value, source?}``
- abilityIncrease: ``{ability, amount, min?, max?}``
- hpNowAdd: ``{amount}``
- resourceEnsure: ``{name, reset, max | maxByLevel, fill?}``

Apart from abilityIncrease and hpNowAdd every kind is idempotent, so grants
that may run more than once must not carry those two.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Union

from loguru import logger

from .calc import clamp_int
from .rules import ABILITIES, ABILITY_ASI_CAP, ABILITY_MAX, ABILITY_MIN, RESOURCE_RESETS, SKILLS


@dataclass(frozen=True)
class SkillProficiency:
    skill_id: str
    level: int = 1
    source: str = ""


@dataclass(frozen=True)
class SavingThrowProficiency:
    ability: str


@dataclass(frozen=True)
class ToolProficiency:
    value: str
    source: str = ""


@dataclass(frozen=True)
class LanguageProficiency:
    value: str
    source: str = ""


@dataclass(frozen=True)
class AbilityIncrease:
    ability: str
    amount: int
    min: int = ABILITY_MIN
    max: int = ABILITY_ASI_CAP


@dataclass(frozen=True)
class HpNowAdd:
    amount: int


@dataclass(frozen=True)
class ResourceEnsure:
    name: str
    reset: str = "none"
    max: int | None = None
    max_by_level: dict[int, int] = field(default_factory=dict)
    fill: bool = True


Effect = Union[
    SkillProficiency,
    SavingThrowProficiency,
    ToolProficiency,
    LanguageProficiency,
    AbilityIncrease,
    HpNowAdd,
    ResourceEnsure,
]


@dataclass(frozen=True)
class EffectContext:
    source: str = ""
    class_name: str = ""
    class_level: int = 0
    grant_level: int = 0


def _int_keys(raw: Any) -> dict[int, int]:
    out: dict[int, int] = {}
    if not isinstance(raw, dict):
        return out
    for k, v in raw.items():
        try:
            out[int(k)] = int(v)
        except (TypeError, ValueError):
            continue
    return out


def parse_effect(raw: Any) -> Effect | None:
    """Build an effect from its rule-data dict. Unknown or malformed entries give None."""
    if isinstance(raw, (SkillProficiency, SavingThrowProficiency, ToolProficiency, LanguageProficiency,
                        AbilityIncrease, HpNowAdd, ResourceEnsure)):
        return raw
    if not isinstance(raw, dict):
        return None
    kind = str(raw.get("type") or "")
    match kind:
        case "skillProficiency":
            sid = str(raw.get("skillId") or "")
            return SkillProficiency(sid, clamp_int(raw.get("level"), 1, 1, 2), str(raw.get("source") or "")) if sid else None
        case "savingThrowProficiency":
            ab = str(raw.get("ability") or "")
            return SavingThrowProficiency(ab) if ab else None
        case "toolProficiency" | "languageProficiency":
            value = str(raw.get("value") or "").strip()
            if not value:
                return None
            cls = ToolProficiency if kind == "toolProficiency" else LanguageProficiency
            return cls(value, str(raw.get("source") or ""))
        case "abilityIncrease":
            ab = str(raw.get("ability") or "")
            if not ab:
                return None
            max_v = clamp_int(raw.get("max"), ABILITY_ASI_CAP, ABILITY_MIN, ABILITY_MAX) if raw.get("max") is not None else ABILITY_ASI_CAP
            min_v = clamp_int(raw.get("min"), ABILITY_MIN, ABILITY_MIN, max_v) if raw.get("min") is not None else ABILITY_MIN
            return AbilityIncrease(ab, clamp_int(raw.get("amount"), 0, -10, 10), min_v, max_v)
        case "hpNowAdd":
            return HpNowAdd(clamp_int(raw.get("amount"), 0, -9999, 9999))
        case "resourceEnsure":
            name = str(raw.get("name") or "").strip()
            if not name:
                return None
            reset = raw.get("reset") if raw.get("reset") in RESOURCE_RESETS else "none"
            max_v = clamp_int(raw.get("max"), 0, 0, 9999) if raw.get("max") is not None else None
            fill = True if raw.get("fill") is None else bool(raw.get("fill"))
            return ResourceEnsure(name, reset, max_v, _int_keys(raw.get("maxByLevel")), fill)
    return None


def parse_effects(raw: Any) -> list[Effect]:
    if not isinstance(raw, list):
        return []
    return [e for e in (parse_effect(x) for x in raw) if e is not None]


def resource_max(effect: ResourceEnsure, ctx: EffectContext) -> int:
    """Level-scaled maximum: exact level, else nearest lower level, else the flat max, else 0."""
    if effect.max_by_level:
        lv = clamp_int(ctx.class_level or ctx.grant_level, 0, 0, 20)
        if lv in effect.max_by_level:
            return clamp_int(effect.max_by_level[lv], 0, 0, 9999)
        lower = [k for k in effect.max_by_level if k <= lv]
        if lower:
            return clamp_int(effect.max_by_level[max(lower)], 0, 0, 9999)
    if effect.max is not None:
        return effect.max
    return 0


def _add_sourced(state: dict, key: str, value: str, source: str) -> None:
    items = state.get(key) if isinstance(state.get(key), list) else []
    if not any(isinstance(x, dict) and x.get("value") == value for x in items):
        items.append({"value": value, "source": source})
    state[key] = items


def _ensure_resource(state: dict, effect: ResourceEnsure, ctx: EffectContext) -> None:
    resources = state.setdefault("resources", {})
    custom = resources.get("custom") if isinstance(resources.get("custom"), list) else []
    resources["custom"] = custom
    desired = resource_max(effect, ctx)
    src = ctx.source

    existing = next((r for r in custom if isinstance(r, dict) and str(r.get("name") or "").strip() == effect.name), None)
    if existing is None:
        custom.append({
            "name": effect.name,
            "cur": desired if effect.fill else 0,
            "max": desired,
            "reset": effect.reset,
            "source": src,
        })
        return

    owner = str(existing.get("source") or "")
    if owner and src and owner != src:
        # risorsa di un'altra origine: non la tocchiamo
        logger.debug(f"resourceEnsure skipped for {effect.name!r}: owned by {owner!r}")
        return

    prev_max = clamp_int(existing.get("max"), 0, 0, 9999)
    existing["reset"] = effect.reset
    existing["max"] = desired
    existing["cur"] = clamp_int(existing.get("cur"), 0, 0, desired)
    # refill only when the level-scaled maximum moves
    if effect.fill and desired != prev_max:
        existing["cur"] = desired
    if not owner and src:
        existing["source"] = src


def apply_effect(state: dict, effect: Effect, ctx: EffectContext) -> None:
    """Apply one effect in place."""
    match effect:
        case SkillProficiency(skill_id=sid, level=lvl, source=esrc):
            skills = state.setdefault("skills", {})
            if sid not in SKILLS:
                return
            if lvl > clamp_int(skills.get(sid), 0, 0, 2):
                skills[sid] = lvl
                src = esrc or ctx.source
                if src:
                    state.setdefault("profSources", {})[sid] = src
        case SavingThrowProficiency(ability=ab):
            if ab in ABILITIES:
                state.setdefault("saves", {})[ab] = True
        case ToolProficiency(value=value, source=esrc):
            _add_sourced(state, "toolProficiencies", value, esrc or ctx.source or "trait")
        case LanguageProficiency(value=value, source=esrc):
            _add_sourced(state, "languageProficiencies", value, esrc or ctx.source or "trait")
        case AbilityIncrease(ability=ab, amount=amount, min=min_v, max=max_v):
            abilities = state.setdefault("abilities", {})
            if ab in ABILITIES:
                abilities[ab] = clamp_int(clamp_int(abilities.get(ab), 10) + amount, min_v, min_v, max_v)
        case HpNowAdd(amount=amount):
            combat = state.setdefault("combat", {})
            hp_max = clamp_int(combat.get("hpMax"), 0, 0, 9999)
            combat["hpNow"] = clamp_int(clamp_int(combat.get("hpNow"), 0) + amount, 0, 0, hp_max)
        case ResourceEnsure():
            _ensure_resource(state, effect, ctx)


def apply_effects(state: dict, effects: list[Any], ctx: EffectContext | dict | None = None) -> dict:
    """Return a copy of ``state`` with ``effects`` applied.

    ``effects`` may hold raw rule-data dicts or parsed effects.
    """
    if isinstance(ctx, dict):
        ctx = EffectContext(
            source=str(ctx.get("source") or ""),
            class_name=str(ctx.get("className") or ""),
            class_level=clamp_int(ctx.get("classLevel"), 0, 0, 20),
            grant_level=clamp_int(ctx.get("grantLevel"), 0, 0, 20),
        )
    ctx = ctx or EffectContext()
    nxt = copy.deepcopy(state)
    for effect in parse_effects(list(effects or [])):
        apply_effect(nxt, effect, ctx)
    return nxt


def scaling_only(effects: list[Any]) -> list[Effect]:
    """Subset of effects that is re-applied on every sync (level-scaled pools)."""
    return [e for e in parse_effects(effects) if isinstance(e, ResourceEnsure)]
