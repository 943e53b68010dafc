# sheet_engine/levelup.py
"""Level-up wizard, atomic commit and exact undo.

The wizard walks a variable list of steps::

    choose -> [subclass] -> choices -> hp -> [asi] -> [spells] -> summary

The list is recomputed from the record and the wizard inputs every time it is
needed, and the current step is stored as a tag. Moving forward validates the
current step; moving back never does. Every validation returns
``(ok, message)`` and leaves the record untouched.

``commit_level_up`` re-validates every step, then applies the whole level in
one go and appends a log entry to ``build.log``. ``undo_last_level_up`` pops
that entry and applies its inverse.
"""

from __future__ import annotations

import copy
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from loguru import logger

from .calc import ability_score, clamp_int, total_level
from .class_features import (
    choice_key,
    choices_at_level,
    list_class_choices_for_state,
    parse_choice_key,
    resync_class_features,
    sync_class_features,
)
from .data_loader import RuleData
from .rest import adjust_hit_die_pool
from .rules import (
    ABILITIES,
    ABILITY_ASI_CAP,
    ABILITY_MAX,
    ABILITY_MIN,
    MAX_LEVEL,
    SOURCE_FEAT,
    TOUGH_FEAT_ID,
    ability_mod,
    die_faces,
    has_asi_at_level,
    hit_die_for_class,
)
from .spells import (
    allowed_spell_ids,
    build_spell_learn_plan,
    max_spell_level,
    spell_index,
    subclass_names,
)

STEP_CHOOSE = "choose"
STEP_SUBCLASS = "subclass"
STEP_CHOICES = "choices"
STEP_HP = "hp"
STEP_ASI = "asi"
STEP_SPELLS = "spells"
STEP_SUMMARY = "summary"

STEP_ORDER = (STEP_CHOOSE, STEP_SUBCLASS, STEP_CHOICES, STEP_HP, STEP_ASI, STEP_SPELLS, STEP_SUMMARY)


def new_levelup_id() -> str:
    return f"lvlup:{secrets.token_hex(8)}"


def has_feat(state: dict, feat_id: str) -> bool:
    fid = (feat_id or "").strip()
    if not fid:
        return False
    return any(isinstance(p, dict) and p.get("type") == "feat" and p.get("featId") == fid for p in state.get("picks") or [])


def tough_bonus_on_level_up(state_before: dict, gaining_tough_now: bool, new_total_level: int) -> int:
    """Extra HP from the Tough feat for this level.

    Twice the new total level when the feat is gained now, +2 on every later
    level, nothing otherwise.
    """
    had = has_feat(state_before, TOUGH_FEAT_ID)
    if gaining_tough_now and not had:
        return 2 * clamp_int(new_total_level, 1, 1, MAX_LEVEL)
    if had:
        return 2
    return 0


def _id_list(v: Any) -> list[str]:
    if isinstance(v, str):
        v = [v]
    if not isinstance(v, list):
        return []
    return [str(x).strip() for x in v if str(x or "").strip()]


def _normalize_asi(choice: dict) -> tuple[dict[str, int] | None, str]:
    """ASI input -> ability delta. Accepts ``mode`` +2 / +1+1 or a ready ``delta``."""
    if isinstance(choice.get("delta"), dict):
        delta = {str(k): clamp_int(v, 0) for k, v in choice["delta"].items()}
        values = sorted(delta.values())
        if any(ab not in ABILITIES for ab in delta) or values not in ([2], [1, 1]):
            return None, "An ASI is +2 to one ability or +1 to two different abilities."
        return delta, ""
    mode = str(choice.get("mode") or "+2")
    if mode == "+2":
        ab = str(choice.get("ab") or "").strip()
        if ab not in ABILITIES:
            return None, "Pick an ability."
        return {ab: 2}, ""
    a = str(choice.get("ab1") or "").strip()
    b = str(choice.get("ab2") or "").strip()
    if a not in ABILITIES or b not in ABILITIES:
        return None, "Pick two abilities."
    if a == b:
        return None, "Ability A and B must be different."
    return {a: 1, b: 1}, ""


@dataclass
class LevelUpWizard:
    """In-progress level-up. Holds inputs only; the record is passed in on every call."""

    data: RuleData
    id: str = field(default_factory=new_levelup_id)
    step: str = STEP_CHOOSE
    which: str = "primary"
    class_name: str = ""
    subclass_name: str = ""
    from_level: int = 0
    to_level: int = 0
    class_choices: dict[str, list[str]] = field(default_factory=dict)
    hp_roll: int | None = None
    asi_feat: dict | None = None
    learn_cantrip_ids: list[str] = field(default_factory=list)
    learn_spell_ids: list[str] = field(default_factory=list)
    do_replace: bool = False
    replace_from_id: str = ""
    replace_to_id: str = ""

    # ------------------------------------------------------------------
    # inputs
    # ------------------------------------------------------------------
    def update(self, payload: dict) -> None:
        """Merge user inputs (camelCase keys, as sent by the UI)."""
        p = payload if isinstance(payload, dict) else {}
        if "subclassName" in p:
            self.subclass_name = str(p.get("subclassName") or "").strip()
        if isinstance(p.get("classChoices"), dict):
            for k, v in p["classChoices"].items():
                self.class_choices[str(k)] = _id_list(v)
        if "hpRoll" in p:
            raw = p.get("hpRoll")
            self.hp_roll = None if raw in (None, "") else clamp_int(raw, 0)
        if "asiFeat" in p:
            self.asi_feat = p["asiFeat"] if isinstance(p.get("asiFeat"), dict) else None
        if "learnCantripIds" in p:
            self.learn_cantrip_ids = _id_list(p.get("learnCantripIds"))
        if "learnSpellIds" in p:
            self.learn_spell_ids = _id_list(p.get("learnSpellIds"))
        if "doReplace" in p:
            self.do_replace = bool(p.get("doReplace"))
        if "replaceFromId" in p:
            self.replace_from_id = str(p.get("replaceFromId") or "").strip()
        if "replaceToId" in p:
            self.replace_to_id = str(p.get("replaceToId") or "").strip()

    # ------------------------------------------------------------------
    # steps
    # ------------------------------------------------------------------
    def _refresh_target(self, state: dict) -> None:
        primary = state.get("primary") if isinstance(state.get("primary"), dict) else {}
        self.class_name = str(primary.get("className") or "").strip()
        self.from_level = clamp_int(primary.get("classLevel"), 0, 0, MAX_LEVEL)
        self.to_level = self.from_level + 1
        current_sub = str(primary.get("subclass") or "").strip()
        if current_sub:
            self.subclass_name = current_sub

    def _subclass_pending(self, state: dict) -> bool:
        primary = state.get("primary") if isinstance(state.get("primary"), dict) else {}
        return bool(subclass_names(self.data.subclasses, self.class_name)) and not str(primary.get("subclass") or "").strip()

    def spell_plan(self, state: dict) -> dict:
        known = list((state.get("spells") or {}).get("known") or [])
        return build_spell_learn_plan(
            self.class_name,
            self.subclass_name,
            self.from_level,
            self.to_level,
            self.data.subclasses,
            subclass_is_new=self._subclass_pending(state),
            known=known,
        )

    def steps(self, state: dict) -> list[str]:
        if not self.class_name:
            self._refresh_target(state)
        out = [STEP_CHOOSE]
        if self._subclass_pending(state):
            out.append(STEP_SUBCLASS)
        out += [STEP_CHOICES, STEP_HP]
        if has_asi_at_level(self.class_name, self.to_level):
            out.append(STEP_ASI)
        plan = self.spell_plan(state)
        known = (state.get("spells") or {}).get("known") or []
        if (
            plan["cantripsToChoose"] > 0
            or plan["spellsToChoose"] > 0
            or plan["autoCantripIds"]
            or (plan["canReplaceSpell"] and known)
        ):
            out.append(STEP_SPELLS)
        out.append(STEP_SUMMARY)
        return out

    def next(self, state: dict) -> tuple[bool, str]:
        ok, msg = self.validate_step(state, self.step)
        if not ok:
            return False, msg
        steps = self.steps(state)
        later = [s for s in STEP_ORDER[STEP_ORDER.index(self.step) + 1:] if s in steps]
        if later:
            self.step = later[0]
        return True, ""

    def back(self, state: dict) -> tuple[bool, str]:
        steps = self.steps(state)
        earlier = [s for s in STEP_ORDER[: STEP_ORDER.index(self.step)] if s in steps]
        if not earlier:
            return False, "Already at the first step."
        self.step = earlier[-1]
        return True, ""

    # ------------------------------------------------------------------
    # validation
    # ------------------------------------------------------------------
    def validate_step(self, state: dict, step: str) -> tuple[bool, str]:
        if step == STEP_CHOOSE:
            return self._validate_choose(state)
        if step == STEP_SUBCLASS:
            return self._validate_subclass(state)
        if step == STEP_CHOICES:
            return self._validate_choices(state)
        if step == STEP_HP:
            return self._validate_hp(state)
        if step == STEP_ASI:
            return self._validate_asi(state)
        if step == STEP_SPELLS:
            return self._validate_spells(state)
        return True, ""

    def validate_all(self, state: dict) -> tuple[bool, str]:
        ok, msg = self._validate_choose(state)
        if not ok:
            return ok, msg
        for step in self.steps(state):
            ok, msg = self.validate_step(state, step)
            if not ok:
                return ok, msg
        return True, ""

    def _validate_choose(self, state: dict) -> tuple[bool, str]:
        self._refresh_target(state)
        if not self.class_name:
            return False, "Missing class."
        if total_level(state) >= MAX_LEVEL or self.from_level >= MAX_LEVEL:
            return False, "You are already level 20."
        if self.to_level > MAX_LEVEL:
            return False, "Class level cannot exceed 20."
        return True, ""

    def _validate_subclass(self, state: dict) -> tuple[bool, str]:
        options = subclass_names(self.data.subclasses, self.class_name)
        if not options:
            return True, ""
        if not self.subclass_name:
            return False, "Choose a subclass."
        if self.subclass_name not in options:
            return False, f"Unknown subclass: {self.subclass_name}."
        return True, ""

    def pending_choices(self) -> list[dict]:
        """Choice definitions introduced at the destination level, keyed for this wizard."""
        out = []
        for ch in choices_at_level(self.data.class_features, self.class_name, self.to_level):
            out.append({**ch, "choiceKey": choice_key(self.which, self.class_name, self.to_level, ch["id"])})
        return out

    def _validate_choices(self, state: dict) -> tuple[bool, str]:
        earlier = list_class_choices_for_state(state, self.data.class_features)
        for ch in self.pending_choices():
            picked = self.class_choices.get(ch["choiceKey"]) or []
            need = ch["choose"]
            name = ch.get("name") or ch["id"]
            if len(picked) != need or len(set(picked)) != len(picked):
                return False, f"Complete: {name} (choose {need})."
            valid = {str(o.get("id")) for o in ch["options"]}
            bad = [x for x in picked if x not in valid]
            if bad:
                return False, f"{name}: unknown option {bad[0]}."
            pool = str(ch.get("optionsFrom") or "")
            if pool:
                taken = {x for c in earlier if c["pool"] == pool for x in c["selected"]}
                dup = [x for x in picked if x in taken]
                if dup:
                    return False, f"{name}: {dup[0]} is already chosen."
        return True, ""

    def hit_die_faces(self) -> int:
        return die_faces(hit_die_for_class(self.class_name))

    def _validate_hp(self, state: dict) -> tuple[bool, str]:
        faces = self.hit_die_faces()
        if faces <= 0:
            return False, "This class has no hit die."
        if self.hp_roll is None or not 1 <= self.hp_roll <= faces:
            return False, f"Enter your HP roll (1-{faces})."
        return True, ""

    def base_hp_gain(self, state: dict) -> int:
        return max(1, clamp_int(self.hp_roll, 1) + ability_mod(ability_score(state, "CON")))

    def resolved_asi_feat(self) -> tuple[dict | None, str]:
        """The ASI/feat input as ``{"type": "asi", "delta"}`` or ``{"type": "feat", "featId"}``.

        The stored input is left as the user sent it.
        """
        choice = self.asi_feat
        if not isinstance(choice, dict):
            return None, "Choose ASI or feat."
        kind = choice.get("type")
        if kind == "asi":
            delta, msg = _normalize_asi(choice)
            if delta is None:
                return None, msg
            return {"type": "asi", "delta": delta}, ""
        if kind == "feat":
            feat_id = str(choice.get("featId") or "").strip()
            if not feat_id:
                return None, "Pick a feat."
            return {"type": "feat", "featId": feat_id}, ""
        return None, "Choose ASI or feat."

    def _validate_asi(self, state: dict) -> tuple[bool, str]:
        resolved, msg = self.resolved_asi_feat()
        if resolved is None:
            return False, msg
        if resolved["type"] == "asi":
            for ab, amt in resolved["delta"].items():
                if ability_score(state, ab) + amt > ABILITY_ASI_CAP:
                    return False, f"{ab} would exceed {ABILITY_ASI_CAP}. Choose a different ASI split."
            return True, ""
        feat_id = resolved["featId"]
        if self.data.feat(feat_id) is None:
            return False, f"Unknown feat: {feat_id}."
        if has_feat(state, feat_id):
            return False, "You already have that feat."
        return True, ""

    def _target_allowed_ids(self, state: dict) -> set[str]:
        preview = copy.deepcopy(state)
        preview.setdefault("primary", {})
        preview["primary"]["classLevel"] = self.to_level
        preview["primary"]["subclass"] = self.subclass_name
        return set(allowed_spell_ids(preview, self.data.spellcasting, self.data.subclasses))

    def _validate_spells(self, state: dict) -> tuple[bool, str]:
        plan = self.spell_plan(state)
        can_need = plan["cantripsToChoose"]
        sp_need = plan["spellsToChoose"]
        cantrips = self.learn_cantrip_ids
        spells = self.learn_spell_ids
        if len(cantrips) != can_need:
            return False, f"Choose exactly {can_need} cantrip{'' if can_need == 1 else 's'}."
        if len(spells) != sp_need:
            return False, f"Choose exactly {sp_need} spell{'' if sp_need == 1 else 's'}."

        picks = cantrips + spells
        if len(set(picks)) != len(picks):
            return False, "The same spell was picked twice."
        known = set((state.get("spells") or {}).get("known") or [])
        already = [x for x in picks if x in known or x in plan["autoCantripIds"]]
        if already:
            return False, f"You already know {already[0]}."

        catalog = spell_index(self.data.spells)
        allowed = self._target_allowed_ids(state)
        top = max_spell_level(
            self.data.spellcasting,
            ((self.data.spellcasting.get("classes") or {}).get(self.class_name) or {}).get("progression"),
            self.to_level,
        )

        def spell_lv(sid: str) -> int | None:
            sp = catalog.get(sid)
            return clamp_int(sp.get("level"), 0, 0, 9) if sp else None

        for sid in cantrips:
            if sid not in allowed or spell_lv(sid) != 0:
                return False, f"{sid} is not a cantrip you can learn."
        for sid in spells:
            lv = spell_lv(sid)
            if sid not in allowed or lv is None or not 1 <= lv <= max(1, top):
                return False, f"{sid} is not a spell you can learn."

        if self.do_replace:
            src, dst = self.replace_from_id, self.replace_to_id
            if not src or not dst:
                return False, "Select both the spell to replace and the new spell."
            if src == dst:
                return False, "Replacement spell must be different."
            if src not in known:
                return False, "You can only replace a spell you already know."
            if spell_lv(src) == 0:
                return False, "Cantrips cannot be replaced on level up."
            if dst in known:
                return False, "You already know the replacement spell."
            if dst in picks or dst in plan["autoCantripIds"]:
                return False, "Do not pick the replacement spell as a learned spell in the same level."
            lv = spell_lv(dst)
            if dst not in allowed or lv is None or not 1 <= lv <= max(1, top):
                return False, f"{dst} is not a spell you can learn."
        return True, ""

    def to_view(self, state: dict) -> dict:
        """Read-only snapshot for the rendering layer."""
        steps = self.steps(state)
        return {
            "id": self.id,
            "step": self.step,
            "steps": steps,
            "className": self.class_name,
            "subclassName": self.subclass_name,
            "subclassOptions": subclass_names(self.data.subclasses, self.class_name),
            "fromLevel": self.from_level,
            "toLevel": self.to_level,
            "choices": self.pending_choices(),
            "classChoices": copy.deepcopy(self.class_choices),
            "hitDie": hit_die_for_class(self.class_name),
            "hpRoll": self.hp_roll,
            "asiFeat": copy.deepcopy(self.asi_feat),
            "spellPlan": self.spell_plan(state),
            "learnCantripIds": list(self.learn_cantrip_ids),
            "learnSpellIds": list(self.learn_spell_ids),
            "doReplace": self.do_replace,
            "replaceFromId": self.replace_from_id,
            "replaceToId": self.replace_to_id,
        }


def open_level_up(state: dict, data: RuleData) -> LevelUpWizard:
    wiz = LevelUpWizard(data=data)
    wiz._refresh_target(state)
    return wiz


def commit_level_up(state: dict, wizard: LevelUpWizard, data: RuleData) -> tuple[dict, bool, str]:
    """Apply the whole level atomically. On failure the record is returned unchanged."""
    ok, msg = wizard.validate_all(state)
    if not ok:
        return state, False, msg

    before = state
    steps = wizard.steps(state)
    nxt = copy.deepcopy(state)
    build = nxt.setdefault("build", {"locked": True, "log": [], "redo": []})
    build["redo"] = []
    build.setdefault("log", [])

    primary = nxt["primary"]
    primary["classLevel"] = clamp_int(clamp_int(primary.get("classLevel"), 0) + 1, 0, 0, MAX_LEVEL)
    nxt["level"] = total_level(nxt)
    subclass_chosen = False
    if wizard.subclass_name and not str(primary.get("subclass") or "").strip():
        primary["subclass"] = wizard.subclass_name
        subclass_chosen = True

    if not isinstance(nxt.get("classChoices"), dict):
        nxt["classChoices"] = {}
    for ch in wizard.pending_choices():
        picked = wizard.class_choices.get(ch["choiceKey"])
        if picked:
            nxt["classChoices"][ch["choiceKey"]] = list(dict.fromkeys(picked))

    # HP
    combat = nxt.setdefault("combat", {})
    prev_max = clamp_int(combat.get("hpMax"), 0, 0, 9999)
    prev_now = clamp_int(combat.get("hpNow"), 0, 0, 9999)
    asi_feat = wizard.resolved_asi_feat()[0] if STEP_ASI in steps else None
    gaining_tough = bool(asi_feat and asi_feat.get("type") == "feat" and asi_feat.get("featId") == TOUGH_FEAT_ID)
    tough = tough_bonus_on_level_up(before, gaining_tough, nxt["level"])
    hp_gain = clamp_int(wizard.base_hp_gain(before) + tough, 1, 1, 999)
    combat["hpMax"] = clamp_int(prev_max + hp_gain, 1, 1, 9999)
    bump = hp_gain if prev_now >= prev_max else 0
    combat["hpNow"] = clamp_int(prev_now + bump, 0, 0, combat["hpMax"])

    adjust_hit_die_pool(nxt, primary["className"], +1)

    # ASI / feat
    grant_id = wizard.id
    granted_at = {"which": wizard.which, "className": primary["className"], "level": primary["classLevel"]}
    picks = nxt.setdefault("picks", [])
    if asi_feat and asi_feat.get("type") == "asi":
        delta = asi_feat["delta"]
        abilities = nxt.setdefault("abilities", {})
        for ab, amt in delta.items():
            abilities[ab] = clamp_int(clamp_int(abilities.get(ab), 10) + amt, 10, ABILITY_MIN, ABILITY_MAX)
        name = f"ASI ({primary['className']} {primary['classLevel']}): " + ", ".join(f"{a} +{v}" for a, v in delta.items())
        picks.append({"type": "asi", "name": name, "text": name, "delta": dict(delta), "grantId": grant_id, "grantedAt": granted_at})
    elif asi_feat and asi_feat.get("type") == "feat":
        feat_id = asi_feat["featId"]
        feat = data.feat(feat_id) or {}
        text = "\n".join(str(x) for x in feat.get("effects") or [] if x)
        name = str(feat.get("name") or feat_id)
        picks.append({
            "type": "feat",
            "featId": feat_id,
            "name": name,
            "text": text,
            "requirementsText": str(feat.get("requirementsText") or ""),
            "grantId": grant_id,
            "grantedAt": granted_at,
        })
        nxt.setdefault("features", []).append(
            {"key": f"feat:{feat_id}:{grant_id}", "source": SOURCE_FEAT, "name": name, "text": text, "grantId": grant_id}
        )

    # Spells
    learned: list[str] = []
    unlearned: list[str] = []
    plan = wizard.spell_plan(before)
    replaced = None
    if STEP_SPELLS in steps:
        spells = nxt.setdefault("spells", {})
        known = spells.get("known") if isinstance(spells.get("known"), list) else []
        spells["known"] = known
        for sid in plan["autoCantripIds"] + wizard.learn_cantrip_ids + wizard.learn_spell_ids:
            if sid and sid not in known:
                known.append(sid)
                learned.append(sid)
        if wizard.do_replace:
            idx = known.index(wizard.replace_from_id)
            known[idx] = wizard.replace_to_id
            unlearned.append(wizard.replace_from_id)
            learned.append(wizard.replace_to_id)
            replaced = {"from": wizard.replace_from_id, "to": wizard.replace_to_id}
        spells["knownByBlock"] = {"primary": list(known), "secondary": []}

    entry = {
        "id": grant_id,
        "kind": "levelUp",
        "at": datetime.now(timezone.utc).isoformat(),
        "which": wizard.which,
        "className": primary["className"],
        "subclassName": primary.get("subclass") or "",
        "subclassChosen": subclass_chosen,
        "fromLevel": wizard.from_level,
        "toLevel": wizard.to_level,
        "hp": {"die": hit_die_for_class(primary["className"]), "roll": wizard.hp_roll, "gain": hp_gain},
        "asiFeat": copy.deepcopy(asi_feat),
        "spells": {
            "learned": learned,
            "unlearned": unlearned,
            "autoCantripIds": list(plan["autoCantripIds"]) if STEP_SPELLS in steps else [],
            "learnCantripIds": list(wizard.learn_cantrip_ids) if STEP_SPELLS in steps else [],
            "learnSpellIds": list(wizard.learn_spell_ids) if STEP_SPELLS in steps else [],
            "replaced": replaced,
        },
    }
    build["log"].append(entry)

    nxt = sync_class_features(nxt, data.class_features)
    logger.info(
        f"Level up committed: {entry['className']} {entry['fromLevel']} -> {entry['toLevel']} (+{hp_gain} HP, {grant_id})"
    )
    return nxt, True, f"{entry['className']} is now level {entry['toLevel']}."


def undo_last_level_up(state: dict, data: RuleData) -> tuple[dict, bool, str]:
    """Reverse the most recent committed level-up, and only that one."""
    build = state.get("build") if isinstance(state.get("build"), dict) else {}
    log = build.get("log") if isinstance(build.get("log"), list) else []
    if not log:
        return state, False, "No level up actions to undo."

    nxt = copy.deepcopy(state)
    build = nxt["build"]
    last = build["log"].pop()
    if not isinstance(build.get("redo"), list):
        build["redo"] = []
    build["redo"].append(last)

    primary = nxt.setdefault("primary", {})
    primary["classLevel"] = clamp_int(clamp_int(primary.get("classLevel"), 0) - 1, 0, 0, MAX_LEVEL)
    nxt["level"] = total_level(nxt)
    if last.get("subclassChosen"):
        primary["subclass"] = ""

    combat = nxt.setdefault("combat", {})
    gain = clamp_int((last.get("hp") or {}).get("gain"), 0, 0, 999)
    combat["hpMax"] = clamp_int(clamp_int(combat.get("hpMax"), 0) - gain, 1, 1, 9999)
    combat["hpNow"] = clamp_int(combat.get("hpNow"), 0, 0, combat["hpMax"])

    adjust_hit_die_pool(nxt, str(last.get("className") or primary.get("className") or ""), -1)

    grant_id = last.get("id")
    asi_feat = last.get("asiFeat") if isinstance(last.get("asiFeat"), dict) else {}
    if asi_feat.get("type") == "asi":
        abilities = nxt.setdefault("abilities", {})
        for ab, amt in (asi_feat.get("delta") or {}).items():
            if ab in ABILITIES:
                abilities[ab] = clamp_int(clamp_int(abilities.get(ab), 10) - clamp_int(amt, 0), 10, ABILITY_MIN, ABILITY_MAX)
    nxt["picks"] = [p for p in nxt.get("picks") or [] if not (isinstance(p, dict) and p.get("grantId") == grant_id)]
    nxt["features"] = [f for f in nxt.get("features") or [] if not (isinstance(f, dict) and f.get("grantId") == grant_id)]

    spells_log = last.get("spells") if isinstance(last.get("spells"), dict) else {}
    spells = nxt.setdefault("spells", {})
    known = spells.get("known") if isinstance(spells.get("known"), list) else []
    replaced = spells_log.get("replaced")
    if isinstance(replaced, dict):
        src, dst = replaced.get("from"), replaced.get("to")
        if dst in known and src not in known:
            known[known.index(dst)] = src
        else:
            known = [x for x in known if x != dst]
            if src and src not in known:
                known.append(src)
    learned = set(spells_log.get("learned") or [])
    if isinstance(replaced, dict):
        learned.discard(replaced.get("from"))
    spells["known"] = [x for x in known if x not in learned]
    spells["knownByBlock"] = {"primary": list(spells["known"]), "secondary": []}

    class_name = str(primary.get("className") or "").strip()
    cur_lv = clamp_int(primary.get("classLevel"), 0, 0, MAX_LEVEL)
    choices = nxt.get("classChoices") if isinstance(nxt.get("classChoices"), dict) else {}
    for key in list(choices):
        parsed = parse_choice_key(key)
        if parsed and parsed[0] == "primary" and parsed[1] == class_name and parsed[2] > cur_lv:
            del choices[key]
    nxt["classChoices"] = choices

    nxt = resync_class_features(nxt, data.class_features)
    logger.info(f"Level up undone: {last.get('className')} {last.get('toLevel')} -> {last.get('fromLevel')} ({grant_id})")
    return nxt, True, f"Undid {last.get('className')} {last.get('fromLevel')}→{last.get('toLevel')}."


def remove_pick(state: dict, index: int) -> tuple[dict, bool, str]:
    """Manual pick removal, only on unlocked builds. Reverts an ASI's ability delta."""
    if (state.get("build") or {}).get("locked", True):
        return state, False, "Build is locked."
    picks = state.get("picks") if isinstance(state.get("picks"), list) else []
    if not 0 <= index < len(picks):
        return state, False, "No such pick."
    nxt = copy.deepcopy(state)
    pick = nxt["picks"].pop(index)
    if isinstance(pick, dict) and pick.get("type") == "asi":
        abilities = nxt.setdefault("abilities", {})
        for ab, amt in (pick.get("delta") or {}).items():
            if ab in ABILITIES:
                abilities[ab] = clamp_int(clamp_int(abilities.get(ab), 10) - clamp_int(amt, 0), 10, ABILITY_MIN, ABILITY_MAX)
    gid = pick.get("grantId") if isinstance(pick, dict) else None
    if gid:
        nxt["features"] = [f for f in nxt.get("features") or [] if not (isinstance(f, dict) and f.get("grantId") == gid)]
    return nxt, True, f"Removed {pick.get('name') if isinstance(pick, dict) else 'pick'}."


def set_class_level_manual(state: dict, level: int, data: RuleData) -> tuple[dict, bool, str]:
    """Direct class level edit, only on unlocked builds. Hit-die pools follow the change."""
    if (state.get("build") or {}).get("locked", True):
        return state, False, "Build is locked: use the level up wizard."
    primary = state.get("primary") if isinstance(state.get("primary"), dict) else {}
    old = clamp_int(primary.get("classLevel"), 0, 0, MAX_LEVEL)
    new = clamp_int(level, old, 1, MAX_LEVEL)
    nxt = copy.deepcopy(state)
    nxt["primary"]["classLevel"] = new
    nxt["level"] = total_level(nxt)
    adjust_hit_die_pool(nxt, str(primary.get("className") or ""), new - old)
    if new < old:
        choices = nxt.get("classChoices") if isinstance(nxt.get("classChoices"), dict) else {}
        for key in list(choices):
            parsed = parse_choice_key(key)
            if parsed and parsed[2] > new:
                del choices[key]
        nxt = resync_class_features(nxt, data.class_features)
    else:
        nxt = sync_class_features(nxt, data.class_features)
    return nxt, True, f"Class level set to {new}."

