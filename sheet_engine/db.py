# sheet_engine/db.py
from __future__ import annotations

import sqlite3
from pathlib import Path

from . import config


def connect(path: str | Path | None = None) -> sqlite3.Connection:
    """Connessione SQLite con PRAGMA utili e row_factory."""
    db_file = Path(path) if path else config.db_path()
    db_file.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_file)
    conn.row_factory = sqlite3.Row

    # journaling sicuro
    conn.execute("PRAGMA journal_mode = WAL;")
    conn.execute("PRAGMA synchronous = NORMAL;")
    return conn


def ensure_schema(conn: sqlite3.Connection) -> None:
    """Crea lo schema DB (idempotente)."""
    conn.executescript(
        """
        -- =========================================
        -- Key-value store: un record per chiave
        -- =========================================
        CREATE TABLE IF NOT EXISTS kv_store (
            key TEXT PRIMARY KEY,
            value BLOB NOT NULL,
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        );
        """
    )
    conn.commit()
