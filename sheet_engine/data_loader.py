# sheet_engine/data_loader.py
"""Static rule tables (JSON), loaded once and never modified.

Loading is all or nothing: a missing file, bad JSON or a missing root key
raises :class:`RuleDataError` before any rules are computed.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from loguru import logger

from . import config

# file -> (root key, expected type)
TABLES: dict[str, tuple[str, type]] = {
    "classes.json": ("classes", list),
    "backgrounds.json": ("backgrounds", list),
    "races.json": ("races", list),
    "spellcasting.json": ("classes", dict),
    "spells.json": ("spells", list),
    "subclasses.json": ("classes", list),
    "feats.json": ("items", list),
    "class_features.json": ("classes", dict),
}


class RuleDataError(RuntimeError):
    pass


@dataclass(frozen=True)
class RuleData:
    classes: dict
    backgrounds: dict
    races: dict
    spellcasting: dict
    spells: dict
    subclasses: dict
    feats: dict
    class_features: dict

    def _find(self, table: dict, root: str, item_id: str) -> dict | None:
        for item in table.get(root) or []:
            if isinstance(item, dict) and item.get("id") == item_id:
                return item
        return None

    def feat(self, feat_id: str) -> dict | None:
        return self._find(self.feats, "items", feat_id)

    def background(self, background_id: str) -> dict | None:
        return self._find(self.backgrounds, "backgrounds", background_id)

    def race(self, race_id: str) -> dict | None:
        return self._find(self.races, "races", race_id)

    def class_info(self, class_name: str) -> dict | None:
        for item in self.classes.get("classes") or []:
            if isinstance(item, dict) and item.get("name") == class_name:
                return item
        return None

    def summary(self) -> dict[str, int]:
        return {
            "classes": len(self.classes.get("classes") or []),
            "backgrounds": len(self.backgrounds.get("backgrounds") or []),
            "races": len(self.races.get("races") or []),
            "spellcastingClasses": len(self.spellcasting.get("classes") or {}),
            "spells": len(self.spells.get("spells") or []),
            "subclasses": sum(len(c.get("subclasses") or []) for c in self.subclasses.get("classes") or []),
            "feats": len(self.feats.get("items") or []),
            "classFeatures": len(self.class_features.get("classes") or {}),
        }


def _read_table(path: Path, root: str, kind: type) -> dict:
    if not path.exists():
        raise RuleDataError(f"Missing rule data file: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise RuleDataError(f"Cannot read {path.name}: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get(root), kind):
        raise RuleDataError(f"{path.name}: missing root key '{root}'")
    return data


def load_rule_data(data_dir: str | Path | None = None) -> RuleData:
    base = Path(data_dir) if data_dir else config.data_dir()
    tables = {name: _read_table(base / name, root, kind) for name, (root, kind) in TABLES.items()}
    data = RuleData(
        classes=tables["classes.json"],
        backgrounds=tables["backgrounds.json"],
        races=tables["races.json"],
        spellcasting=tables["spellcasting.json"],
        spells=tables["spells.json"],
        subclasses=tables["subclasses.json"],
        feats=tables["feats.json"],
        class_features=tables["class_features.json"],
    )
    logger.debug(f"Rule data loaded from {base}: {data.summary()}")
    return data


@lru_cache(maxsize=1)
def default_rule_data() -> RuleData:
    return load_rule_data()
