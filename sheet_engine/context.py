# sheet_engine/context.py
"""The single owner of the current character record.

Every mutator takes the latest record, runs a pure transformation over it
and, on success, persists the result through :meth:`CharacterContext.save`.
Mutators return ``(ok, message)``; on failure nothing changes.
"""

from __future__ import annotations

import copy

from loguru import logger

from . import config
from .calc import build_sheet_context, clamp_int, spell_mod_for_block
from .character import default_character_state, derive
from .class_features import list_class_choices_for_state, resync_class_features, set_class_choice, sync_class_features
from .cloud import RemoteSync, remote_sync_from_env
from .data_loader import RuleData, default_rule_data
from .equipment import add_bag_item, clear_equipment_item, equip_weapon, remove_bag_item, set_equipment_item
from .levelup import (
    LevelUpWizard,
    commit_level_up,
    open_level_up,
    remove_pick,
    set_class_level_manual,
    undo_last_level_up,
)
from .manual import (
    add_custom_feature,
    add_proficiency,
    add_resource,
    remove_custom_feature,
    remove_proficiency,
    remove_resource,
    set_skill_level,
    set_spell_known,
    set_spell_prepared,
    update_resource,
)
from .rest import apply_long_rest, apply_short_rest, restore_spell_slot, use_spell_slot
from .rules import ABILITIES, SAVING_THROWS_BY_CLASS
from .sources import apply_background, apply_race
from .spells import allowed_spell_ids, always_prepared_ids, search_spells, spell_index
from .storage import KeyValueStore, SqliteStore, load_character_state, save_character_state, state_from_payload


class CharacterContext:
    def __init__(
        self,
        store: KeyValueStore | None = None,
        data: RuleData | None = None,
        remote: RemoteSync | None = None,
        key: str | None = None,
    ):
        # rule tables first: nothing is derived without them
        self.data = data or default_rule_data()
        self.store = store if store is not None else SqliteStore()
        self.remote = remote or remote_sync_from_env()
        self.key = key or config.storage_key()
        self.wizard: LevelUpWizard | None = None
        self.state: dict = self.load()

    # ------------------------------------------------------------------
    # load / save
    # ------------------------------------------------------------------
    def prepare(self, state: dict) -> dict:
        """Class sync, spell modifier and derive: what every persisted record goes through."""
        nxt = sync_class_features(derive(state), self.data.class_features)
        nxt["primary"]["spellMod"] = spell_mod_for_block(nxt, nxt.get("primary"))
        return derive(nxt)

    def load(self) -> dict:
        self.state = self.prepare(load_character_state(self.store, self.key))
        return self.state

    def save(self, state: dict | None = None) -> dict:
        self.state = save_character_state(self.store, self.prepare(state if state is not None else self.state), self.key)
        return self.state

    def reset(self) -> dict:
        self.wizard = None
        logger.info("Character reset to defaults")
        return self.save(default_character_state())

    def _apply(self, result: tuple[dict, bool, str]) -> tuple[bool, str]:
        nxt, ok, msg = result
        if ok:
            self.save(nxt)
        return ok, msg

    # ------------------------------------------------------------------
    # read-only views
    # ------------------------------------------------------------------
    def view(self) -> dict:
        s = self.state
        catalog = spell_index(self.data.spells)
        return {
            "sheet": build_sheet_context(s),
            "classChoices": list_class_choices_for_state(s, self.data.class_features),
            "knownSpells": [catalog.get(sid, {"id": sid, "name": sid}) for sid in s["spells"]["known"]],
            "alwaysPreparedIds": always_prepared_ids(s, self.data.subclasses),
            "allowedSpellIds": allowed_spell_ids(s, self.data.spellcasting, self.data.subclasses),
            "buildLocked": s["build"]["locked"],
            "levelUp": self.wizard.to_view(s) if self.wizard else None,
        }

    def search_spells(self, q: str = "", level: int | None = None, only_allowed: bool = True) -> list[dict]:
        allowed = allowed_spell_ids(self.state, self.data.spellcasting, self.data.subclasses) if only_allowed else None
        return search_spells(self.data.spells, q, level, allowed)

    # ------------------------------------------------------------------
    # selections
    # ------------------------------------------------------------------
    def set_background(self, background_id: str) -> tuple[bool, str]:
        bg = self.data.background(background_id) if background_id else None
        if background_id and bg is None:
            return False, f"Unknown background: {background_id}."
        self.save(apply_background(self.state, bg))
        return True, "Background updated."

    def set_race(self, race_id: str) -> tuple[bool, str]:
        race = self.data.race(race_id) if race_id else None
        if race_id and race is None:
            return False, f"Unknown race: {race_id}."
        self.save(apply_race(self.state, race))
        return True, "Race updated."

    def set_class_choice(self, key: str, option_ids: list) -> tuple[bool, str]:
        nxt, ok, msg = set_class_choice(self.state, self.data.class_features, key, option_ids)
        if not ok:
            return ok, msg
        # a changed selection must drop the old option's grants
        self.save(resync_class_features(nxt, self.data.class_features))
        return True, msg

    def apply_class_saves(self) -> tuple[bool, str]:
        class_name = self.state["primary"]["className"]
        saves = SAVING_THROWS_BY_CLASS.get(class_name)
        if not saves:
            return False, "No saving throws known for this class."
        nxt = copy.deepcopy(self.state)
        nxt["saves"] = {ab: ab in saves for ab in ABILITIES}
        self.save(nxt)
        return True, f"Saving throws set to {', '.join(saves)}."

    def set_build_locked(self, locked: bool) -> tuple[bool, str]:
        nxt = copy.deepcopy(self.state)
        nxt["build"]["locked"] = bool(locked)
        self.save(nxt)
        return True, "Build locked." if locked else "Build unlocked."

    def set_level_manual(self, level) -> tuple[bool, str]:
        return self._apply(set_class_level_manual(self.state, clamp_int(level, 0), self.data))

    def remove_pick(self, index) -> tuple[bool, str]:
        return self._apply(remove_pick(self.state, clamp_int(index, -1)))

    # ------------------------------------------------------------------
    # level-up wizard
    # ------------------------------------------------------------------
    def start_level_up(self) -> tuple[bool, str]:
        self.wizard = open_level_up(self.state, self.data)
        return True, ""

    def level_up_input(self, payload: dict) -> tuple[bool, str]:
        if self.wizard is None:
            return False, "No level up in progress."
        self.wizard.update(payload)
        return True, ""

    def level_up_next(self) -> tuple[bool, str]:
        if self.wizard is None:
            return False, "No level up in progress."
        return self.wizard.next(self.state)

    def level_up_back(self) -> tuple[bool, str]:
        if self.wizard is None:
            return False, "No level up in progress."
        return self.wizard.back(self.state)

    def commit_level_up(self) -> tuple[bool, str]:
        if self.wizard is None:
            return False, "No level up in progress."
        nxt, ok, msg = commit_level_up(self.state, self.wizard, self.data)
        if ok:
            self.save(nxt)
            self.wizard = None
        return ok, msg

    def cancel_level_up(self) -> tuple[bool, str]:
        self.wizard = None
        return True, ""

    def undo_level_up(self) -> tuple[bool, str]:
        return self._apply(undo_last_level_up(self.state, self.data))

    # ------------------------------------------------------------------
    # manual edits
    # ------------------------------------------------------------------
    def set_skill_level(self, skill_id: str, level) -> tuple[bool, str]:
        return self._apply(set_skill_level(self.state, skill_id, level))

    def add_proficiency(self, kind: str, value: str) -> tuple[bool, str]:
        return self._apply(add_proficiency(self.state, kind, value))

    def remove_proficiency(self, kind: str, value: str) -> tuple[bool, str]:
        return self._apply(remove_proficiency(self.state, kind, value))

    def add_feature(self, name: str, text: str = "") -> tuple[bool, str]:
        return self._apply(add_custom_feature(self.state, name, text))

    def remove_feature(self, key: str) -> tuple[bool, str]:
        return self._apply(remove_custom_feature(self.state, key))

    def add_resource(self, name: str) -> tuple[bool, str]:
        return self._apply(add_resource(self.state, name))

    def update_resource(self, index, fields: dict) -> tuple[bool, str]:
        return self._apply(update_resource(self.state, clamp_int(index, -1), fields))

    def remove_resource(self, index) -> tuple[bool, str]:
        return self._apply(remove_resource(self.state, clamp_int(index, -1)))

    def set_spell_known(self, spell_id: str, known: bool = True) -> tuple[bool, str]:
        if known and spell_id not in spell_index(self.data.spells):
            return False, f"Unknown spell: {spell_id}."
        return self._apply(set_spell_known(self.state, spell_id, known))

    def set_spell_prepared(self, spell_id: str, prepared: bool = True) -> tuple[bool, str]:
        return self._apply(set_spell_prepared(self.state, spell_id, prepared))

    # ------------------------------------------------------------------
    # equipment
    # ------------------------------------------------------------------
    def set_equipment_item(self, group: str, index, fields: dict) -> tuple[bool, str]:
        return self._apply(set_equipment_item(self.state, group, clamp_int(index, -1), fields))

    def clear_equipment_item(self, group: str, index) -> tuple[bool, str]:
        return self._apply(clear_equipment_item(self.state, group, clamp_int(index, -1)))

    def equip_weapon(self, index) -> tuple[bool, str]:
        return self._apply(equip_weapon(self.state, clamp_int(index, -1)))

    def add_bag_item(self, name: str) -> tuple[bool, str]:
        return self._apply(add_bag_item(self.state, name))

    def remove_bag_item(self, index) -> tuple[bool, str]:
        return self._apply(remove_bag_item(self.state, clamp_int(index, -1)))

    # ------------------------------------------------------------------
    # slots / rest
    # ------------------------------------------------------------------
    def use_slot(self, slot_type: str, slot_level: int = 0) -> tuple[bool, str]:
        return self._apply(use_spell_slot(self.state, slot_type, slot_level))

    def restore_slot(self, slot_type: str, slot_level: int = 0) -> tuple[bool, str]:
        return self._apply(restore_spell_slot(self.state, slot_type, slot_level))

    def short_rest(self, spend: dict | None = None, mode: str = "roll", roller=None) -> tuple[bool, str]:
        nxt, healed = apply_short_rest(self.state, spend, mode, roller)
        self.save(nxt)
        return True, f"Short rest: healed {healed} HP."

    def long_rest(self) -> tuple[bool, str]:
        self.save(apply_long_rest(self.state))
        return True, "Long rest completed."

    # ------------------------------------------------------------------
    # remote sync
    # ------------------------------------------------------------------
    def cloud_save(self) -> dict:
        return self.remote.save(self.state)

    def cloud_load(self, character_id: str | None = None) -> dict:
        result = self.remote.load(character_id or self.state.get("id") or "")
        if not result.get("ok"):
            return {"ok": False, "message": result.get("message") or "Cloud load failed."}
        self.wizard = None
        self.save(state_from_payload(result["payload"]))
        return {"ok": True, "message": result.get("message") or "Loaded from cloud."}
