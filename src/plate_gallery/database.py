"""
SQLite storage for collectors, palindromes and user profiles.

Rows are projected into the pydantic models from ``models`` before they
leave this module, so callers never handle raw sqlite rows.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from .models import Collector, Palindrome, UserProfile
from .utils import ensure_directory, utcnow

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path("data/plates.db")


def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _deserialize_datetime(s: Optional[str]) -> Optional[datetime]:
    if not s:
        return None
    return datetime.fromisoformat(s)


def _serialize_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None


class PlateDatabase:
    """
    SQLite database for the gallery.

    Thread-safe: every operation opens its own connection and SQLite runs in
    WAL mode, so FastAPI worker threads can share one instance.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)
        ensure_directory(self.db_path.parent)
        self._init_db()

    @contextmanager
    def _get_connection(self):
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_profiles (
                    id TEXT PRIMARY KEY,
                    email TEXT UNIQUE NOT NULL,
                    name TEXT,
                    avatar_url TEXT,
                    is_admin INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS collectors (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT,
                    location TEXT,
                    bio TEXT,
                    notes TEXT,
                    created_by_admin_id TEXT REFERENCES user_profiles(id) ON DELETE SET NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS palindromes (
                    id TEXT PRIMARY KEY,
                    license_plate TEXT NOT NULL,
                    image_url TEXT NOT NULL,
                    image_storage_path TEXT NOT NULL,
                    car_type TEXT,
                    location_found TEXT,
                    date_found TEXT,
                    additional_notes TEXT,
                    collector_id TEXT NOT NULL REFERENCES collectors(id) ON DELETE CASCADE,
                    uploaded_by_admin_id TEXT NOT NULL REFERENCES user_profiles(id),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_palindromes_created_at
                ON palindromes(created_at DESC)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_palindromes_collector
                ON palindromes(collector_id)
            """)

    # -- user profiles -----------------------------------------------------

    def create_user_profile(self, email: str, name: Optional[str] = None, is_admin: bool = False) -> UserProfile:
        now = utcnow()
        profile = UserProfile(
            id=str(uuid4()),
            email=email,
            name=name,
            is_admin=is_admin,
            created_at=now,
            updated_at=now,
        )
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO user_profiles (id, email, name, avatar_url, is_admin, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                profile.id,
                profile.email,
                profile.name,
                profile.avatar_url,
                int(profile.is_admin),
                _serialize_datetime(now),
                _serialize_datetime(now),
            ))
        logger.info(f"Created user profile {profile.id} ({email}, admin={is_admin})")
        return profile

    def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM user_profiles WHERE id = ?", (user_id,)).fetchone()
            return self._row_to_profile(row) if row else None

    def find_user_profile_by_email(self, email: str) -> Optional[UserProfile]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM user_profiles WHERE email = ?", (email,)).fetchone()
            return self._row_to_profile(row) if row else None

    def set_admin(self, user_id: str, is_admin: bool) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE user_profiles SET is_admin = ?, updated_at = ? WHERE id = ?",
                (int(is_admin), _serialize_datetime(utcnow()), user_id),
            )

    # -- collectors --------------------------------------------------------

    def create_collector(self, data: Dict[str, Any], created_by_admin_id: Optional[str] = None) -> Collector:
        """
        Insert a collector.

        Args:
            data: Validated collector fields (name, email, location, bio, notes)
            created_by_admin_id: Profile id of the admin creating the record

        Returns:
            The stored Collector
        """
        now = utcnow()
        collector = Collector(
            id=str(uuid4()),
            created_by_admin_id=created_by_admin_id,
            created_at=now,
            updated_at=now,
            **data,
        )
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO collectors (
                    id, name, email, location, bio, notes,
                    created_by_admin_id, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                collector.id,
                collector.name,
                collector.email,
                collector.location,
                collector.bio,
                collector.notes,
                collector.created_by_admin_id,
                _serialize_datetime(now),
                _serialize_datetime(now),
            ))
        return collector

    def get_collector(self, collector_id: str) -> Optional[Collector]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM collectors WHERE id = ?", (collector_id,)).fetchone()
            return self._row_to_collector(row) if row else None

    def list_collectors(self) -> List[Collector]:
        """All collectors ordered by name."""
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM collectors ORDER BY name").fetchall()
            return [self._row_to_collector(row) for row in rows]

    def delete_collector(self, collector_id: str) -> bool:
        """
        Delete a collector and, through the foreign key cascade, their palindromes.

        Returns:
            True if deleted, False if not found
        """
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM collectors WHERE id = ?", (collector_id,))
            return cursor.rowcount > 0

    # -- palindromes -------------------------------------------------------

    def create_palindrome(self, data: Dict[str, Any], uploaded_by_admin_id: str) -> Palindrome:
        """
        Insert a palindrome record.

        Args:
            data: Validated palindrome fields
            uploaded_by_admin_id: Profile id of the uploading admin

        Returns:
            The stored Palindrome

        Raises:
            sqlite3.IntegrityError: If the collector or admin does not exist
        """
        now = utcnow()
        palindrome = Palindrome(
            id=str(uuid4()),
            uploaded_by_admin_id=uploaded_by_admin_id,
            created_at=now,
            updated_at=now,
            **data,
        )
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO palindromes (
                    id, license_plate, image_url, image_storage_path,
                    car_type, location_found, date_found, additional_notes,
                    collector_id, uploaded_by_admin_id, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                palindrome.id,
                palindrome.license_plate,
                palindrome.image_url,
                palindrome.image_storage_path,
                palindrome.car_type,
                palindrome.location_found,
                _serialize_date(palindrome.date_found),
                palindrome.additional_notes,
                palindrome.collector_id,
                palindrome.uploaded_by_admin_id,
                _serialize_datetime(now),
                _serialize_datetime(now),
            ))
        return palindrome

    def get_palindrome(self, palindrome_id: str) -> Optional[Palindrome]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM palindromes WHERE id = ?", (palindrome_id,)).fetchone()
            return self._row_to_palindrome(row) if row else None

    def list_palindromes(self, collector_id: Optional[str] = None) -> List[Palindrome]:
        """
        List palindromes, newest upload first.

        Args:
            collector_id: Only return this collector's palindromes
        """
        query = "SELECT * FROM palindromes"
        params: Tuple[Any, ...] = ()
        if collector_id is not None:
            query += " WHERE collector_id = ?"
            params = (collector_id,)
        query += " ORDER BY created_at DESC"

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_palindrome(row) for row in rows]

    def list_palindromes_with_relations(self) -> Tuple[List[Palindrome], List[Collector], List[UserProfile]]:
        """
        Fetch everything needed to render the gallery in one read transaction.

        Returns:
            Tuple of (palindromes newest first, collectors, uploader profiles)
        """
        with self._get_connection() as conn:
            palindromes = [
                self._row_to_palindrome(row)
                for row in conn.execute("SELECT * FROM palindromes ORDER BY created_at DESC").fetchall()
            ]
            collectors = [
                self._row_to_collector(row)
                for row in conn.execute("SELECT * FROM collectors ORDER BY name").fetchall()
            ]
            admins = [
                self._row_to_profile(row)
                for row in conn.execute("""
                    SELECT * FROM user_profiles
                    WHERE id IN (SELECT DISTINCT uploaded_by_admin_id FROM palindromes)
                """).fetchall()
            ]
        return palindromes, collectors, admins

    def delete_palindrome(self, palindrome_id: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM palindromes WHERE id = ?", (palindrome_id,))
            return cursor.rowcount > 0

    # -- row projection ----------------------------------------------------

    def _row_to_profile(self, row: sqlite3.Row) -> UserProfile:
        return UserProfile(
            id=row["id"],
            email=row["email"],
            name=row["name"],
            avatar_url=row["avatar_url"],
            is_admin=bool(row["is_admin"]),
            created_at=_deserialize_datetime(row["created_at"]),
            updated_at=_deserialize_datetime(row["updated_at"]),
        )

    def _row_to_collector(self, row: sqlite3.Row) -> Collector:
        return Collector(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            location=row["location"],
            bio=row["bio"],
            notes=row["notes"],
            created_by_admin_id=row["created_by_admin_id"],
            created_at=_deserialize_datetime(row["created_at"]),
            updated_at=_deserialize_datetime(row["updated_at"]),
        )

    def _row_to_palindrome(self, row: sqlite3.Row) -> Palindrome:
        return Palindrome(
            id=row["id"],
            license_plate=row["license_plate"],
            image_url=row["image_url"],
            image_storage_path=row["image_storage_path"],
            car_type=row["car_type"],
            location_found=row["location_found"],
            date_found=date.fromisoformat(row["date_found"]) if row["date_found"] else None,
            additional_notes=row["additional_notes"],
            collector_id=row["collector_id"],
            uploaded_by_admin_id=row["uploaded_by_admin_id"],
            created_at=_deserialize_datetime(row["created_at"]),
            updated_at=_deserialize_datetime(row["updated_at"]),
        )
