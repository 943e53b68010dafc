import argparse
import sys
from pathlib import Path

# Root del progetto (così trova "sheet_engine" senza installazione)
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from sheet_engine.data_loader import RuleData, RuleDataError, load_rule_data  # noqa: E402
from sheet_engine.spells import spell_index  # noqa: E402


def missing_spell_refs(data: RuleData) -> list[str]:
    """Spell ids referenced by class lists or subclasses that are not in the catalog."""
    catalog = spell_index(data.spells)
    problems: list[str] = []

    for class_name, cls in (data.spellcasting.get("classes") or {}).items():
        for lv, ids in (cls.get("spellListByLevel") or {}).items():
            for sid in ids or []:
                sp = catalog.get(sid)
                if sp is None:
                    problems.append(f"{class_name} list L{lv}: unknown spell {sid}")
                elif str(sp.get("level")) != str(lv):
                    problems.append(f"{class_name} list L{lv}: {sid} is level {sp.get('level')}")

    for entry in data.subclasses.get("classes") or []:
        for sub in entry.get("subclasses") or []:
            rules = sub.get("spellRules") or {}
            for key in ("alwaysPreparedByLevel", "autoKnownByLevel"):
                for lv, ids in (rules.get(key) or {}).items():
                    for sid in ids or []:
                        if sid not in catalog:
                            problems.append(f"{sub.get('name')} {key} L{lv}: unknown spell {sid}")
    return problems


def missing_option_pools(data: RuleData) -> list[str]:
    problems: list[str] = []
    for class_name, cd in (data.class_features.get("classes") or {}).items():
        pools = cd.get("optionPools") or {}
        for lv, entry in (cd.get("levels") or {}).items():
            for ch in entry.get("choices") or []:
                pool = ch.get("optionsFrom")
                if pool and pool not in pools:
                    problems.append(f"{class_name} L{lv} {ch.get('id')}: unknown option pool {pool}")
                if not pool and not ch.get("options"):
                    problems.append(f"{class_name} L{lv} {ch.get('id')}: no options")
    return problems


def main() -> None:
    ap = argparse.ArgumentParser(description="Controlla la coerenza dei dati regole (JSON).")
    ap.add_argument(
        "--data-dir",
        dest="data_dir",
        default="",
        help="Cartella con i file JSON (default: DND_DATA_DIR o sheet_engine/data)",
    )
    args = ap.parse_args()

    try:
        data = load_rule_data(args.data_dir or None)
    except RuleDataError as e:
        raise SystemExit(f"ERRORE: {e}")

    for name, n in data.summary().items():
        print(f"{name}: {n}")

    problems = missing_spell_refs(data) + missing_option_pools(data)
    for p in problems:
        print(f"- {p}")
    if problems:
        raise SystemExit(f"ERRORE: {len(problems)} problemi nei dati regole.")
    print("OK: dati regole coerenti.")


if __name__ == "__main__":
    main()
