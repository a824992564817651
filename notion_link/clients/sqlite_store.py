"""SQLite-backed persistence for Notion connections and OAuth states."""

from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from notion_link.models.oauth import EncryptedSecret, OAuthStateRecord, StoredConnection


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_db(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SQLiteStore:
    """Relational store holding one connection row per user plus pending OAuth states."""

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False, timeout=10.0)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS notion_connections (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL UNIQUE,
                    encrypted_access_token BLOB,
                    access_token_iv BLOB,
                    encrypted_refresh_token BLOB,
                    refresh_token_iv BLOB,
                    expires_at TEXT NOT NULL,
                    scope TEXT,
                    workspace_id TEXT,
                    workspace_name TEXT,
                    status TEXT NOT NULL DEFAULT 'active',
                    refresh_count INTEGER NOT NULL DEFAULT 0,
                    last_used_at TEXT,
                    refreshed_at TEXT,
                    disconnected_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS oauth_states (
                    id TEXT PRIMARY KEY,
                    state_value TEXT NOT NULL UNIQUE,
                    user_id TEXT NOT NULL,
                    encrypted_pkce_verifier BLOB NOT NULL,
                    pkce_verifier_iv BLOB NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    consumed INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_oauth_states_user ON oauth_states (user_id)"
            )

    # OAuth states ---------------------------------------------------------

    def insert_oauth_state(
        self,
        *,
        state_value: str,
        user_id: str,
        verifier: EncryptedSecret,
        expires_at: datetime,
    ) -> str:
        state_id = str(uuid.uuid4())
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO oauth_states
                    (id, state_value, user_id, encrypted_pkce_verifier,
                     pkce_verifier_iv, created_at, expires_at, consumed)
                VALUES (?, ?, ?, ?, ?, ?, ?, 0)
                """,
                (
                    state_id,
                    state_value,
                    user_id,
                    verifier.ciphertext,
                    verifier.iv,
                    _to_db(_utcnow()),
                    _to_db(expires_at),
                ),
            )
        return state_id

    def get_oauth_state(self, state_value: str) -> Optional[OAuthStateRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM oauth_states WHERE state_value = ?",
                (state_value,),
            ).fetchone()
        if not row:
            return None
        return OAuthStateRecord(
            id=row["id"],
            state_value=row["state_value"],
            user_id=row["user_id"],
            encrypted_pkce_verifier=row["encrypted_pkce_verifier"],
            pkce_verifier_iv=row["pkce_verifier_iv"],
            created_at=_from_db(row["created_at"]),
            expires_at=_from_db(row["expires_at"]),
            consumed=bool(row["consumed"]),
        )

    def mark_state_consumed(self, state_id: str) -> bool:
        """Flip ``consumed`` exactly once; ``False`` means another caller won."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE oauth_states SET consumed = 1 WHERE id = ? AND consumed = 0",
                (state_id,),
            )
        return cursor.rowcount == 1

    def delete_oauth_state(self, state_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM oauth_states WHERE id = ?", (state_id,))

    def delete_consumed_states(self, user_id: str) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM oauth_states WHERE user_id = ? AND consumed = 1",
                (user_id,),
            )
        return cursor.rowcount

    def sweep_oauth_states(self, *, consumed_grace: timedelta) -> int:
        """Delete expired states and consumed states older than the grace window."""
        now = _utcnow()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                DELETE FROM oauth_states
                WHERE expires_at < ?
                   OR (consumed = 1 AND created_at < ?)
                """,
                (_to_db(now), _to_db(now - consumed_grace)),
            )
        return cursor.rowcount

    # Connections ----------------------------------------------------------

    def find_connection(self, user_id: str) -> Optional[StoredConnection]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM notion_connections WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if not row:
            return None
        return self._row_to_connection(row)

    def upsert_connection(
        self,
        *,
        user_id: str,
        access_token: EncryptedSecret,
        refresh_token: Optional[EncryptedSecret],
        expires_at: datetime,
        scope: Optional[str],
        workspace_id: Optional[str],
        workspace_name: Optional[str],
    ) -> None:
        now_iso = _to_db(_utcnow())
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO notion_connections
                    (id, user_id, encrypted_access_token, access_token_iv,
                     encrypted_refresh_token, refresh_token_iv, expires_at,
                     scope, workspace_id, workspace_name, status, refresh_count,
                     created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'active', 0, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    encrypted_access_token = excluded.encrypted_access_token,
                    access_token_iv = excluded.access_token_iv,
                    encrypted_refresh_token = excluded.encrypted_refresh_token,
                    refresh_token_iv = excluded.refresh_token_iv,
                    expires_at = excluded.expires_at,
                    scope = excluded.scope,
                    workspace_id = excluded.workspace_id,
                    workspace_name = excluded.workspace_name,
                    status = 'active',
                    refresh_count = 0,
                    refreshed_at = NULL,
                    disconnected_at = NULL,
                    created_at = excluded.created_at,
                    updated_at = excluded.updated_at
                """,
                (
                    str(uuid.uuid4()),
                    user_id,
                    access_token.ciphertext,
                    access_token.iv,
                    refresh_token.ciphertext if refresh_token else None,
                    refresh_token.iv if refresh_token else None,
                    _to_db(expires_at),
                    scope,
                    workspace_id,
                    workspace_name,
                    now_iso,
                    now_iso,
                ),
            )

    def update_tokens_after_refresh(
        self,
        *,
        user_id: str,
        access_token: EncryptedSecret,
        refresh_token: Optional[EncryptedSecret],
        expires_at: datetime,
    ) -> Optional[int]:
        """Persist rotated tokens on an active row.

        Returns the new ``refresh_count``, or ``None`` when no active row exists.
        """
        now_iso = _to_db(_utcnow())
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE notion_connections SET
                    encrypted_access_token = ?,
                    access_token_iv = ?,
                    encrypted_refresh_token = ?,
                    refresh_token_iv = ?,
                    expires_at = ?,
                    refreshed_at = ?,
                    refresh_count = refresh_count + 1,
                    updated_at = ?
                WHERE user_id = ? AND status = 'active'
                """,
                (
                    access_token.ciphertext,
                    access_token.iv,
                    refresh_token.ciphertext if refresh_token else None,
                    refresh_token.iv if refresh_token else None,
                    _to_db(expires_at),
                    now_iso,
                    now_iso,
                    user_id,
                ),
            )
            if cursor.rowcount != 1:
                return None
            row = conn.execute(
                "SELECT refresh_count FROM notion_connections WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        return int(row["refresh_count"])

    def disconnect_connection(self, user_id: str) -> bool:
        """Clear token material and mark the row disconnected. Idempotent."""
        now_iso = _to_db(_utcnow())
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE notion_connections SET
                    status = 'disconnected',
                    encrypted_access_token = NULL,
                    access_token_iv = NULL,
                    encrypted_refresh_token = NULL,
                    refresh_token_iv = NULL,
                    disconnected_at = COALESCE(disconnected_at, ?),
                    updated_at = ?
                WHERE user_id = ?
                """,
                (now_iso, now_iso, user_id),
            )
        return cursor.rowcount == 1

    def touch_last_used(self, user_id: str) -> None:
        now_iso = _to_db(_utcnow())
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE notion_connections SET last_used_at = ?, updated_at = ?
                WHERE user_id = ?
                """,
                (now_iso, now_iso, user_id),
            )

    def ping(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    @staticmethod
    def _row_to_connection(row: sqlite3.Row) -> StoredConnection:
        data: Dict[str, Any] = dict(row)
        for key in (
            "expires_at",
            "last_used_at",
            "refreshed_at",
            "disconnected_at",
            "created_at",
            "updated_at",
        ):
            data[key] = _from_db(data[key])
        return StoredConnection(**data)


__all__ = ["SQLiteStore"]
