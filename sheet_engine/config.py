# sheet_engine/config.py
"""Settings from environment variables, read at call time (like ``DND_STORAGE``)."""

from __future__ import annotations

import os
from pathlib import Path

# Root progetto (cartella che contiene app.py)
PROJECT_ROOT = Path(__file__).resolve().parent.parent
PACKAGE_ROOT = Path(__file__).resolve().parent

DEFAULT_STORAGE_KEY = "dnd_character_state_v1"


def db_path() -> Path:
    raw = (os.getenv("DND_DB_PATH") or "").strip()
    return Path(raw) if raw else PROJECT_ROOT / "db" / "dnd_sheet.sqlite3"


def storage_key() -> str:
    return (os.getenv("DND_STORAGE_KEY") or "").strip() or DEFAULT_STORAGE_KEY


def data_dir() -> Path:
    raw = (os.getenv("DND_DATA_DIR") or "").strip()
    return Path(raw) if raw else PACKAGE_ROOT / "data"


def sync_url() -> str:
    return (os.getenv("DND_SYNC_URL") or "").strip().rstrip("/")


def sync_token() -> str:
    return (os.getenv("DND_SYNC_TOKEN") or "").strip()


def sync_timeout() -> float:
    try:
        return max(0.1, float(os.getenv("DND_SYNC_TIMEOUT") or 10))
    except ValueError:
        return 10.0


def secret_key() -> str:
    return os.getenv("DND_SECRET_KEY") or "dev-secret-change-me"
