"""
Session-credential store.

A credential is the Playwright storage state (cookies + localStorage) of a
browser that a human logged into by hand.  The engine only reads it at
session start; the site's own cookie behaviour mutates it during use.

Two backends, same interface:

  * ``SupabaseSessionStore``: one row per provider in ``store_sessions``
    (``id``, ``provider``, ``storage_state``, ``updated_at``), upserted on
    ``id``.
  * ``FileSessionStore``: one JSON file per provider under ``SESSION_DIR``.

``build_session_store()`` picks Supabase when ``SUPABASE_URL`` and
``SUPABASE_SERVICE_KEY`` are both set.

A stored value that does not parse as a JSON object is reported as missing,
which surfaces as "session not configured" rather than a crash mid-launch.
Storage-state contents are never logged.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from supabase import create_client, Client

from config.stores import SESSION_DIR

logger = logging.getLogger(__name__)

SESSION_TABLE = "store_sessions"


def session_key(provider: str) -> str:
    return f"store:{provider}:playwright_storage_state"


def _decode(raw: Any, provider: str) -> dict[str, Any] | None:
    if raw is None:
        return None
    if isinstance(raw, dict):
        return raw
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("[%s] Stored session is not valid JSON; treating as missing", provider)
        return None
    if not isinstance(value, dict):
        logger.warning("[%s] Stored session is not an object; treating as missing", provider)
        return None
    return value


class SessionStore:
    """Interface shared by the backends."""

    def get_storage_state(self, provider: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def set_storage_state(self, provider: str, state: dict[str, Any]) -> None:
        raise NotImplementedError

    def delete_storage_state(self, provider: str) -> None:
        raise NotImplementedError

    def status(self, provider: str) -> dict[str, Any]:
        return {"provider": provider, "has_session": self.get_storage_state(provider) is not None}


class FileSessionStore(SessionStore):
    def __init__(self, directory: Path | str = SESSION_DIR) -> None:
        self.directory = Path(directory)

    def path_for(self, provider: str) -> Path:
        return self.directory / f"{session_key(provider).replace(':', '_')}.json"

    def get_storage_state(self, provider: str) -> dict[str, Any] | None:
        path = self.path_for(provider)
        if not path.exists():
            return None
        return _decode(path.read_text(encoding="utf-8"), provider)

    def set_storage_state(self, provider: str, state: dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self.path_for(provider).write_text(json.dumps(state), encoding="utf-8")
        logger.info("[%s] Session saved to %s", provider, self.path_for(provider))

    def delete_storage_state(self, provider: str) -> None:
        path = self.path_for(provider)
        if path.exists():
            path.unlink()
            logger.info("[%s] Session deleted", provider)


class SupabaseSessionStore(SessionStore):
    def __init__(self, db: Client) -> None:
        self.db = db

    def get_storage_state(self, provider: str) -> dict[str, Any] | None:
        resp = (
            self.db.table(SESSION_TABLE)
            .select("storage_state")
            .eq("id", session_key(provider))
            .limit(1)
            .execute()
        )
        if not resp.data:
            return None
        return _decode(resp.data[0].get("storage_state"), provider)

    def set_storage_state(self, provider: str, state: dict[str, Any]) -> None:
        row = {
            "id": session_key(provider),
            "provider": provider,
            "storage_state": json.dumps(state),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        self.db.table(SESSION_TABLE).upsert(row, on_conflict="id").execute()
        logger.info("[%s] Session saved to %s", provider, SESSION_TABLE)

    def delete_storage_state(self, provider: str) -> None:
        self.db.table(SESSION_TABLE).delete().eq("id", session_key(provider)).execute()
        logger.info("[%s] Session deleted from %s", provider, SESSION_TABLE)


def build_session_store() -> SessionStore:
    url = os.getenv("SUPABASE_URL", "")
    key = os.getenv("SUPABASE_SERVICE_KEY", "")
    if url and key:
        return SupabaseSessionStore(create_client(url, key))
    return FileSessionStore(Path(os.getenv("SESSION_DIR", str(SESSION_DIR))))
