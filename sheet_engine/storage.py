# sheet_engine/storage.py
"""Persistenza del record personaggio.

Backend: key-value store. ``SqliteStore`` (default) keeps one row per key in
``kv_store``; ``MemoryStore`` is the in-process equivalent.

Public API:
    - load_character_state(store, key) -> dict
    - save_character_state(store, state, key) -> dict
    - reset_character_state(store, key) -> dict
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Protocol

from loguru import logger

from . import config
from .character import default_character_state, derive, merge_over_defaults
from .db import connect, ensure_schema


class KeyValueStore(Protocol):
    def get(self, key: str) -> bytes | None: ...

    def set(self, key: str, value: bytes) -> None: ...


class MemoryStore:
    def __init__(self, initial: dict[str, bytes] | None = None):
        self._data: dict[str, bytes] = dict(initial or {})

    def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)


class SqliteStore:
    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path else config.db_path()
        with self._connect() as conn:
            ensure_schema(conn)

    def _connect(self) -> sqlite3.Connection:
        return connect(self.path)

    def get(self, key: str) -> bytes | None:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM kv_store WHERE key=?;", (key,)).fetchone()
        if not row:
            return None
        value = row["value"]
        return value.encode("utf-8") if isinstance(value, str) else bytes(value)

    def set(self, key: str, value: bytes) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO kv_store(key, value, updated_at)
                VALUES(?, ?, datetime('now'))
                ON CONFLICT(key) DO UPDATE SET
                    value=excluded.value,
                    updated_at=datetime('now');
                """,
                (key, sqlite3.Binary(value)),
            )
            conn.commit()


def _key(key: str | None) -> str:
    return (key or "").strip() or config.storage_key()


def state_from_payload(payload: object) -> dict:
    """Partial or legacy payload -> full record (merge over defaults, then derive)."""
    return derive(merge_over_defaults(payload))


def load_character_state(store: KeyValueStore, key: str | None = None) -> dict:
    """Carica il record. Chiave assente o JSON rotto -> record di default."""
    k = _key(key)
    raw = store.get(k)
    if raw is None:
        return default_character_state()
    try:
        payload = json.loads(raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"Stored character under {k!r} is not valid JSON, using defaults: {e}")
        return default_character_state()
    if not isinstance(payload, dict):
        logger.warning(f"Stored character under {k!r} is not an object, using defaults")
        return default_character_state()
    return state_from_payload(payload)


def save_character_state(store: KeyValueStore, state: dict, key: str | None = None) -> dict:
    """Derive and persist; returns what was written."""
    clean = derive(state)
    store.set(_key(key), json.dumps(clean, ensure_ascii=False).encode("utf-8"))
    return clean


def reset_character_state(store: KeyValueStore, key: str | None = None) -> dict:
    return save_character_state(store, default_character_state(), key)
