"""SQLite persistence for tracked users, cached solutions and profile snapshots."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

from utils.logger import get_database_logger

logger = get_database_logger()

DIFFICULTIES = ("Easy", "Medium", "Hard")
SYNC_STATUSES = ("success", "failed")


def utc_now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def to_iso(value: datetime) -> str:
    """Second-precision UTC ISO string; such strings sort chronologically."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


class DatabaseManager:
    """Thread-safe wrapper around one SQLite connection.

    Storage classes call ``execute`` from worker threads via
    ``asyncio.to_thread``, so the connection is shared across threads and every
    statement runs under a lock.
    """

    SCHEMA: Sequence[str] = ()

    def __init__(self, db_path: str = "data/tracker.db"):
        self.db_path = db_path
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.connect()
        self.init_schema()

    def connect(self) -> sqlite3.Connection:
        with self._lock:
            if self._conn is None:
                self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
                self._conn.row_factory = sqlite3.Row
                self._conn.execute("PRAGMA foreign_keys = ON")
                logger.debug(f"Opened SQLite database at {self.db_path}")
            return self._conn

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def is_connected(self) -> bool:
        with self._lock:
            if self._conn is None:
                return False
            try:
                self._conn.execute("SELECT 1")
                return True
            except sqlite3.ProgrammingError:
                return False

    def ensure_connection(self) -> None:
        """Reopen the connection if it was closed; raises if that fails."""
        if self.is_connected():
            return
        logger.error("Database connection lost, reconnecting...")
        with self._lock:
            self._conn = None
            try:
                self.connect()
                self._conn.execute("SELECT 1")
            except sqlite3.Error as e:
                logger.error(f"Failed to reconnect to database: {e}")
                raise
        logger.info("Database reconnected successfully")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Hold the lock for several statements and commit them together."""
        with self._lock:
            conn = self.connect()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def init_schema(self) -> None:
        with self._lock:
            conn = self.connect()
            for statement in self.SCHEMA:
                conn.execute(statement)
            conn.commit()

    def execute(
        self,
        query: str,
        params: Sequence[Any] = (),
        fetchone: bool = False,
        fetchall: bool = False,
        commit: bool = False,
    ) -> Any:
        """Run one statement.

        Returns the first row for ``fetchone``, all rows for ``fetchall`` and
        the affected row count otherwise.
        """
        with self._lock:
            conn = self.connect()
            try:
                cursor = conn.execute(query, tuple(params))
                if fetchone:
                    result = cursor.fetchone()
                elif fetchall:
                    result = cursor.fetchall()
                else:
                    result = cursor.rowcount
                if commit:
                    conn.commit()
                return result
            except sqlite3.Error:
                if commit:
                    conn.rollback()
                raise


class TrackerDatabaseManager(DatabaseManager):
    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS tracked_users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            auth_user_id TEXT NOT NULL,
            username TEXT NOT NULL,
            normalized_username TEXT NOT NULL,
            user_id TEXT NOT NULL,
            real_name TEXT,
            added_by TEXT,
            added_at TEXT NOT NULL,
            last_viewed_at TEXT,
            notes TEXT,
            leetcode_session TEXT,
            leetcode_csrf_token TEXT,
            leetcode_session_updated_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (auth_user_id, normalized_username)
        )
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_tracked_users_normalized
        ON tracked_users (normalized_username)
        """,
        f"""
        CREATE TABLE IF NOT EXISTS solutions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            submission_id TEXT NOT NULL,
            auth_user_id TEXT NOT NULL,
            username TEXT NOT NULL DEFAULT 'unknown',
            normalized_username TEXT NOT NULL,
            problem_name TEXT NOT NULL,
            problem_slug TEXT NOT NULL DEFAULT '',
            problem_url TEXT NOT NULL DEFAULT '',
            difficulty TEXT NOT NULL DEFAULT 'Medium'
                CHECK (difficulty IN ({", ".join(f"'{d}'" for d in DIFFICULTIES)})),
            language TEXT NOT NULL DEFAULT 'Unknown',
            code TEXT NOT NULL DEFAULT '',
            runtime TEXT DEFAULT 'N/A',
            memory TEXT,
            status TEXT DEFAULT 'Accepted',
            timestamp INTEGER NOT NULL,
            submitted_at TEXT NOT NULL,
            notes TEXT,
            tags TEXT NOT NULL DEFAULT '[]',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (submission_id, auth_user_id)
        )
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_solutions_owner_user_time
        ON solutions (auth_user_id, normalized_username, timestamp DESC)
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_solutions_username_time
        ON solutions (username, timestamp)
        """,
        f"""
        CREATE TABLE IF NOT EXISTS profiles (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            auth_user_id TEXT NOT NULL,
            username TEXT NOT NULL,
            normalized_username TEXT NOT NULL,
            profile_url TEXT NOT NULL,
            real_name TEXT,
            avatar TEXT,
            ranking INTEGER,
            reputation INTEGER,
            total_solved INTEGER NOT NULL DEFAULT 0,
            easy_solved INTEGER NOT NULL DEFAULT 0,
            medium_solved INTEGER NOT NULL DEFAULT 0,
            hard_solved INTEGER NOT NULL DEFAULT 0,
            total_submissions INTEGER NOT NULL DEFAULT 0,
            acceptance_rate REAL NOT NULL DEFAULT 0,
            last_sync TEXT NOT NULL,
            auto_sync INTEGER NOT NULL DEFAULT 1,
            last_sync_status TEXT
                CHECK (last_sync_status IS NULL OR last_sync_status IN ({", ".join(f"'{s}'" for s in SYNC_STATUSES)})),
            last_sync_error TEXT,
            added_by TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (auth_user_id, normalized_username)
        )
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_profiles_auto_sync
        ON profiles (auto_sync, last_sync)
        """,
    )
