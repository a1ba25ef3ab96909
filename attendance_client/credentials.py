from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path

from .types import AuthenticatedUser

TOKEN_KEY = "auth_token"
USER_KEY = "auth_user"


class CredentialStore:
    """Persists the auth token and logged-in user between runs.

    Set on login, cleared on logout or when the server reports the session
    expired.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=5)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                create table if not exists credentials (
                    key text primary key,
                    value text not null,
                    updated_at text not null
                )
                """
            )
            conn.commit()

    def store(self, token: str, user: AuthenticatedUser) -> None:
        now = datetime.now(timezone.utc).isoformat()
        body = json.dumps(
            {"id": user.user_id, "username": user.username, "name": user.name, "role": user.role},
            separators=(",", ":"),
        )
        with self._lock, self._connect() as conn:
            conn.executemany(
                "insert or replace into credentials (key, value, updated_at) values (?, ?, ?)",
                [(TOKEN_KEY, token, now), (USER_KEY, body, now)],
            )
            conn.commit()

    def _get(self, key: str) -> str | None:
        with self._lock, self._connect() as conn:
            row = conn.execute("select value from credentials where key = ?", (key,)).fetchone()
        return str(row["value"]) if row else None

    def get_token(self) -> str | None:
        return self._get(TOKEN_KEY)

    def get_user(self) -> AuthenticatedUser | None:
        raw = self._get(USER_KEY)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return None
        return AuthenticatedUser(
            user_id=str(data.get("id") or ""),
            username=str(data.get("username") or ""),
            name=data.get("name"),
            role=data.get("role"),
        )

    def clear(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("delete from credentials where key in (?, ?)", (TOKEN_KEY, USER_KEY))
            conn.commit()
