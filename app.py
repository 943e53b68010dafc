from __future__ import annotations

from typing import Any

from flask import Flask, jsonify, request
from loguru import logger

from sheet_engine import config
from sheet_engine.calc import clamp_int
from sheet_engine.context import CharacterContext
from sheet_engine.logging_config import configure_logging
from sheet_engine.spells import spell_index


def _payload() -> dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _result(ok: bool, msg: str, ctx: CharacterContext, status: int = 400):
    """``(ok, message)`` -> JSON response; the view is attached on success."""
    body: dict[str, Any] = {"ok": ok, "message": msg}
    if ok:
        body["view"] = ctx.view()
        return jsonify(body)
    return jsonify(body), status


def _error(msg: str, status: int):
    return jsonify({"ok": False, "message": msg}), status


def create_app(context: CharacterContext | None = None) -> Flask:
    app = Flask(__name__)
    app.secret_key = config.secret_key()

    # Il contesto apre lo store (e crea lo schema) una volta sola all'avvio.
    ctx = context or CharacterContext()
    app.extensions["character_context"] = ctx

    # ------------------------------------------------------------------
    # character
    # ------------------------------------------------------------------
    @app.get("/api/character")
    def get_character():
        return jsonify(ctx.state)

    @app.get("/api/character/view")
    def get_view():
        return jsonify(ctx.view())

    @app.post("/api/character/reset")
    def reset_character():
        ctx.reset()
        return _result(True, "Character reset.", ctx)

    @app.post("/api/character/background")
    def set_background():
        bg_id = str(_payload().get("backgroundId") or "").strip()
        if bg_id and ctx.data.background(bg_id) is None:
            return _error(f"Unknown background: {bg_id}.", 404)
        ok, msg = ctx.set_background(bg_id)
        return _result(ok, msg, ctx)

    @app.post("/api/character/race")
    def set_race():
        race_id = str(_payload().get("raceId") or "").strip()
        if race_id and ctx.data.race(race_id) is None:
            return _error(f"Unknown race: {race_id}.", 404)
        ok, msg = ctx.set_race(race_id)
        return _result(ok, msg, ctx)

    @app.post("/api/character/class-choice")
    def set_class_choice():
        p = _payload()
        ok, msg = ctx.set_class_choice(str(p.get("choiceKey") or ""), p.get("optionIds") or [])
        return _result(ok, msg, ctx)

    @app.post("/api/character/saves")
    def apply_class_saves():
        ok, msg = ctx.apply_class_saves()
        return _result(ok, msg, ctx)

    @app.post("/api/character/level")
    def set_level():
        ok, msg = ctx.set_level_manual(_payload().get("level"))
        return _result(ok, msg, ctx)

    @app.post("/api/character/picks/remove")
    def remove_pick():
        ok, msg = ctx.remove_pick(_payload().get("index"))
        return _result(ok, msg, ctx)

    @app.post("/api/build/lock")
    def set_build_lock():
        ok, msg = ctx.set_build_locked(bool(_payload().get("locked", True)))
        return _result(ok, msg, ctx)

    @app.get("/api/spells")
    def search_spells():
        raw_level = request.args.get("level")
        level = clamp_int(raw_level, 0, 0, 9) if raw_level not in (None, "") else None
        only_allowed = (request.args.get("all") or "").strip().lower() not in ("1", "true", "yes")
        return jsonify({"spells": ctx.search_spells(request.args.get("q") or "", level, only_allowed)})

    # ------------------------------------------------------------------
    # level up
    # ------------------------------------------------------------------
    @app.post("/api/levelup/start")
    def levelup_start():
        ok, msg = ctx.start_level_up()
        return _result(ok, msg, ctx)

    def _wizard_call(fn, *args):
        if ctx.wizard is None:
            return _error("No level up in progress.", 409)
        ok, msg = fn(*args)
        return _result(ok, msg, ctx)

    @app.post("/api/levelup/input")
    def levelup_input():
        return _wizard_call(ctx.level_up_input, _payload())

    @app.post("/api/levelup/next")
    def levelup_next():
        return _wizard_call(ctx.level_up_next)

    @app.post("/api/levelup/back")
    def levelup_back():
        return _wizard_call(ctx.level_up_back)

    @app.post("/api/levelup/commit")
    def levelup_commit():
        return _wizard_call(ctx.commit_level_up)

    @app.post("/api/levelup/cancel")
    def levelup_cancel():
        return _wizard_call(ctx.cancel_level_up)

    @app.post("/api/levelup/undo")
    def levelup_undo():
        if not (ctx.state.get("build") or {}).get("log"):
            return _error("No level up actions to undo.", 409)
        ok, msg = ctx.undo_level_up()
        return _result(ok, msg, ctx)

    # ------------------------------------------------------------------
    # manual edits
    # ------------------------------------------------------------------
    @app.post("/api/character/skill")
    def set_skill():
        p = _payload()
        ok, msg = ctx.set_skill_level(str(p.get("skillId") or ""), p.get("level"))
        return _result(ok, msg, ctx)

    @app.post("/api/character/proficiency")
    def add_proficiency():
        p = _payload()
        ok, msg = ctx.add_proficiency(str(p.get("kind") or ""), str(p.get("value") or ""))
        return _result(ok, msg, ctx)

    @app.post("/api/character/proficiency/remove")
    def remove_proficiency():
        p = _payload()
        ok, msg = ctx.remove_proficiency(str(p.get("kind") or ""), str(p.get("value") or ""))
        return _result(ok, msg, ctx)

    @app.post("/api/character/feature")
    def add_feature():
        p = _payload()
        ok, msg = ctx.add_feature(str(p.get("name") or ""), str(p.get("text") or ""))
        return _result(ok, msg, ctx)

    @app.post("/api/character/feature/remove")
    def remove_feature():
        ok, msg = ctx.remove_feature(str(_payload().get("key") or ""))
        return _result(ok, msg, ctx)

    @app.post("/api/resources")
    def add_resource():
        ok, msg = ctx.add_resource(str(_payload().get("name") or ""))
        return _result(ok, msg, ctx)

    @app.post("/api/resources/update")
    def update_resource():
        p = _payload()
        fields = {k: p[k] for k in ("name", "cur", "max", "reset") if k in p}
        ok, msg = ctx.update_resource(p.get("index"), fields)
        return _result(ok, msg, ctx)

    @app.post("/api/resources/remove")
    def remove_resource():
        ok, msg = ctx.remove_resource(_payload().get("index"))
        return _result(ok, msg, ctx)

    @app.post("/api/spells/known")
    def set_spell_known():
        p = _payload()
        spell_id = str(p.get("spellId") or "").strip()
        known = bool(p.get("known", True))
        if ctx.state["build"]["locked"]:
            return _error("Unlock the build to edit known spells.", 409)
        if known and spell_id not in spell_index(ctx.data.spells):
            return _error(f"Unknown spell: {spell_id}.", 404)
        ok, msg = ctx.set_spell_known(spell_id, known)
        return _result(ok, msg, ctx)

    @app.post("/api/spells/prepared")
    def set_spell_prepared():
        p = _payload()
        ok, msg = ctx.set_spell_prepared(str(p.get("spellId") or "").strip(), bool(p.get("prepared", True)))
        return _result(ok, msg, ctx)

    # ------------------------------------------------------------------
    # equipment
    # ------------------------------------------------------------------
    @app.post("/api/equipment/item")
    def set_equipment_item():
        p = _payload()
        fields = p.get("item") if isinstance(p.get("item"), dict) else {}
        ok, msg = ctx.set_equipment_item(str(p.get("group") or ""), p.get("index"), fields)
        return _result(ok, msg, ctx)

    @app.post("/api/equipment/clear")
    def clear_equipment_item():
        p = _payload()
        ok, msg = ctx.clear_equipment_item(str(p.get("group") or ""), p.get("index"))
        return _result(ok, msg, ctx)

    @app.post("/api/equipment/equip")
    def equip_weapon():
        ok, msg = ctx.equip_weapon(_payload().get("index"))
        return _result(ok, msg, ctx)

    @app.post("/api/equipment/bag")
    def add_bag_item():
        ok, msg = ctx.add_bag_item(str(_payload().get("name") or ""))
        return _result(ok, msg, ctx)

    @app.post("/api/equipment/bag/remove")
    def remove_bag_item():
        ok, msg = ctx.remove_bag_item(_payload().get("index"))
        return _result(ok, msg, ctx)

    # ------------------------------------------------------------------
    # slots / rest
    # ------------------------------------------------------------------
    @app.post("/api/slots/use")
    def use_slot():
        p = _payload()
        ok, msg = ctx.use_slot(str(p.get("slotType") or "pact"), clamp_int(p.get("slotLevel"), 0, 0, 9))
        return _result(ok, msg, ctx)

    @app.post("/api/slots/restore")
    def restore_slot():
        p = _payload()
        ok, msg = ctx.restore_slot(str(p.get("slotType") or "pact"), clamp_int(p.get("slotLevel"), 0, 0, 9))
        return _result(ok, msg, ctx)

    @app.post("/api/rest/short")
    def short_rest():
        p = _payload()
        spend = p.get("spend") if isinstance(p.get("spend"), dict) else {}
        mode = "average" if p.get("mode") == "average" else "roll"
        ok, msg = ctx.short_rest(spend, mode)
        return _result(ok, msg, ctx)

    @app.post("/api/rest/long")
    def long_rest():
        ok, msg = ctx.long_rest()
        return _result(ok, msg, ctx)

    # ------------------------------------------------------------------
    # remote sync
    # ------------------------------------------------------------------
    @app.post("/api/cloud/save")
    def cloud_save():
        if not ctx.remote.is_configured():
            return _error("Cloud sync is not configured.", 400)
        res = ctx.cloud_save()
        return _result(bool(res.get("ok")), str(res.get("message") or ""), ctx, status=502)

    @app.post("/api/cloud/load")
    def cloud_load():
        if not ctx.remote.is_configured():
            return _error("Cloud sync is not configured.", 400)
        res = ctx.cloud_load(str(_payload().get("characterId") or "").strip() or None)
        return _result(bool(res.get("ok")), str(res.get("message") or ""), ctx, status=502)

    logger.debug(f"App ready, rule data: {ctx.data.summary()}")
    return app


if __name__ == "__main__":
    configure_logging()
    create_app().run(host="127.0.0.1", port=8090, debug=True)
