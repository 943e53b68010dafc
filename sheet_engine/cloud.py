# sheet_engine/cloud.py
"""Optional remote save/load of the character record.

Every call returns ``{"ok": bool, "message": str, ...}``; transport errors
are reported, never raised. Nothing here touches the local record.
"""

from __future__ import annotations

from urllib.parse import quote

import requests
from loguru import logger

from . import config


class RemoteSync:
    def __init__(self, base_url: str = "", token: str = "", timeout: float = 10.0):
        self.base_url = (base_url or "").strip().rstrip("/")
        self.token = (token or "").strip()
        self.timeout = timeout

    def is_configured(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _url(self, character_id: str) -> str:
        return f"{self.base_url}/characters/{quote(character_id, safe='')}"

    def save(self, record: dict) -> dict:
        if not self.is_configured():
            return {"ok": False, "message": "Cloud sync is not configured."}
        character_id = str((record or {}).get("id") or "").strip()
        if not character_id:
            return {"ok": False, "message": "Character has no id."}
        try:
            response = requests.put(
                self._url(character_id),
                json={"payload": record},
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning(f"Cloud save failed for {character_id}: {e}")
            return {"ok": False, "message": f"Cloud save failed: {e}"}
        logger.info(f"Cloud save ok for {character_id}")
        return {"ok": True, "message": "Saved to cloud."}

    def load(self, character_id: str) -> dict:
        if not self.is_configured():
            return {"ok": False, "message": "Cloud sync is not configured."}
        cid = (character_id or "").strip()
        if not cid:
            return {"ok": False, "message": "Missing character id."}
        try:
            response = requests.get(self._url(cid), headers=self._headers(), timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as e:
            logger.warning(f"Cloud load failed for {cid}: {e}")
            return {"ok": False, "message": f"Cloud load failed: {e}"}
        except ValueError as e:
            logger.warning(f"Cloud load for {cid} returned invalid JSON: {e}")
            return {"ok": False, "message": "Cloud returned invalid JSON."}

        payload = body.get("payload") if isinstance(body, dict) else None
        if not isinstance(payload, dict):
            logger.warning(f"Cloud load for {cid} returned no character payload")
            return {"ok": False, "message": "Cloud returned no character."}
        logger.info(f"Cloud load ok for {cid}")
        return {"ok": True, "payload": payload, "message": "Loaded from cloud."}


def remote_sync_from_env() -> RemoteSync:
    return RemoteSync(config.sync_url(), config.sync_token(), config.sync_timeout())
