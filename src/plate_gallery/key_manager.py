import hashlib
import logging
import secrets
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple
from uuid import uuid4

from .utils import ensure_directory, utcnow

logger = logging.getLogger(__name__)


@dataclass
class APIKeyRecord:
    id: str
    prefix: str
    user_id: str
    is_active: bool
    created_at: str


class KeyManager:
    """
    Issues and checks API keys for gallery admins.

    Keys are stored as SHA-256 hashes and each one belongs to a user profile.
    Whether the profile may use admin routes is decided by its ``is_admin``
    flag, not by the key itself.
    """

    def __init__(self, db_path: str = "data/plates.db", key_prefix: str = "plt_"):
        self.db_path = Path(db_path)
        self.key_prefix = key_prefix
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        ensure_directory(self.db_path.parent)
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        with self._get_conn() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS api_keys (
                    id TEXT PRIMARY KEY,
                    key_hash TEXT UNIQUE NOT NULL,
                    prefix TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    is_active BOOLEAN DEFAULT 1,
                    created_at TIMESTAMP NOT NULL
                )
            """)
        conn.close()

    def _hash_key(self, key: str) -> str:
        return hashlib.sha256(key.encode()).hexdigest()

    def create_key(self, user_id: str) -> Tuple[str, APIKeyRecord]:
        """
        Generate a new API key for a user profile.

        Returns:
            Tuple of (raw_api_key, record). The raw key is not stored and
            cannot be recovered later.
        """
        raw_key = f"{self.key_prefix}{secrets.token_urlsafe(32)}"
        record = APIKeyRecord(
            id=str(uuid4()),
            prefix=raw_key[:8],
            user_id=user_id,
            is_active=True,
            created_at=utcnow().isoformat(),
        )

        with self._get_conn() as conn:
            conn.execute("""
                INSERT INTO api_keys (id, key_hash, prefix, user_id, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (record.id, self._hash_key(raw_key), record.prefix, user_id, record.created_at))
        conn.close()

        logger.info(f"Issued API key {record.prefix}... for user {user_id}")
        return raw_key, record

    def validate_key(self, key: Optional[str]) -> Optional[APIKeyRecord]:
        """Return the active key record matching ``key``, or None."""
        if not key:
            return None

        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM api_keys WHERE key_hash = ? AND is_active = 1",
                (self._hash_key(key),),
            ).fetchone()
        conn.close()

        return self._row_to_record(row) if row else None

    def list_keys(self) -> list[APIKeyRecord]:
        with self._get_conn() as conn:
            rows = conn.execute("SELECT * FROM api_keys ORDER BY created_at DESC").fetchall()
        conn.close()
        return [self._row_to_record(row) for row in rows]

    def revoke_key(self, key_id: str) -> bool:
        with self._get_conn() as conn:
            cursor = conn.execute("UPDATE api_keys SET is_active = 0 WHERE id = ?", (key_id,))
            revoked = cursor.rowcount > 0
        conn.close()
        if revoked:
            logger.info(f"Revoked API key {key_id}")
        return revoked

    def _row_to_record(self, row: sqlite3.Row) -> APIKeyRecord:
        return APIKeyRecord(
            id=row["id"],
            prefix=row["prefix"],
            user_id=row["user_id"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
        )


def keys_match(candidate: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison that never matches an unset key."""
    if not candidate or not expected:
        return False
    return secrets.compare_digest(candidate, expected)
