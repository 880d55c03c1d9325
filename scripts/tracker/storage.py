"""Data access for tracked users, cached solutions and profile snapshots."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from typing import Any, Dict, List, Optional, Tuple

from utils.database import DIFFICULTIES, TrackerDatabaseManager, utc_now_iso
from utils.logger import get_database_logger

logger = get_database_logger()

# Readable columns of tracked_users; the credential columns are only read by
# find_latest_session.
TRACKED_USER_COLUMNS = (
    "id",
    "auth_user_id",
    "username",
    "normalized_username",
    "user_id",
    "real_name",
    "added_by",
    "added_at",
    "last_viewed_at",
    "notes",
    "leetcode_session_updated_at",
    "created_at",
    "updated_at",
)

SOLUTION_FIELDS = (
    "username",
    "normalized_username",
    "problem_name",
    "problem_slug",
    "problem_url",
    "difficulty",
    "language",
    "code",
    "runtime",
    "memory",
    "status",
    "timestamp",
    "submitted_at",
    "notes",
    "tags",
)

PROFILE_STAT_FIELDS = (
    "total_solved",
    "easy_solved",
    "medium_solved",
    "hard_solved",
    "total_submissions",
    "acceptance_rate",
)


def normalize_username(username: Optional[str]) -> str:
    return (username or "").strip().lower()


def normalize_difficulty(value: Optional[str]) -> str:
    if value:
        value = value.strip().capitalize()
        if value in DIFFICULTIES:
            return value
    return "Medium"


def _row_to_dict(row: Optional[sqlite3.Row]) -> Optional[dict]:
    return dict(row) if row is not None else None


def _row_to_solution(row: Optional[sqlite3.Row]) -> Optional[dict]:
    solution = _row_to_dict(row)
    if solution is None:
        return None
    try:
        solution["tags"] = json.loads(solution.get("tags") or "[]")
    except json.JSONDecodeError:
        logger.warning(f"Invalid tags JSON for solution {solution.get('submission_id')}")
        solution["tags"] = []
    return solution


def _row_to_profile(row: Optional[sqlite3.Row]) -> Optional[dict]:
    profile = _row_to_dict(row)
    if profile is None:
        return None
    profile["auto_sync"] = bool(profile["auto_sync"])
    profile["stats"] = {field: profile.pop(field) for field in PROFILE_STAT_FIELDS}
    return profile


class TrackerStorage:
    """Async facade over ``TrackerDatabaseManager``; every call runs in a worker thread."""

    def __init__(self, db: TrackerDatabaseManager):
        self.db = db

    # --- connection ---

    async def ensure_connection(self) -> None:
        await asyncio.to_thread(self.db.ensure_connection)

    # --- tracked users ---

    def _get_tracked_user_sync(self, auth_user_id: str, normalized: str) -> Optional[dict]:
        row = self.db.execute(
            f"""
            SELECT {", ".join(TRACKED_USER_COLUMNS)}
            FROM tracked_users
            WHERE auth_user_id = ? AND normalized_username = ?
            """,
            (auth_user_id, normalized),
            fetchone=True,
        )
        return _row_to_dict(row)

    async def get_tracked_user(self, auth_user_id: str, username: str) -> Optional[dict]:
        return await asyncio.to_thread(self._get_tracked_user_sync, auth_user_id, normalize_username(username))

    def _list_tracked_users_sync(self, auth_user_id: str) -> List[dict]:
        rows = self.db.execute(
            f"""
            SELECT {", ".join(TRACKED_USER_COLUMNS)}
            FROM tracked_users
            WHERE auth_user_id = ?
            ORDER BY added_at ASC, id ASC
            """,
            (auth_user_id,),
            fetchall=True,
        )
        return [dict(row) for row in rows] if rows else []

    async def list_tracked_users(self, auth_user_id: str) -> List[dict]:
        return await asyncio.to_thread(self._list_tracked_users_sync, auth_user_id)

    def _add_tracked_user_sync(
        self,
        auth_user_id: str,
        username: str,
        added_by: Optional[str],
        notes: Optional[str],
    ) -> Tuple[dict, bool]:
        normalized = normalize_username(username)
        now = utc_now_iso()
        inserted = self.db.execute(
            """
            INSERT INTO tracked_users (
                auth_user_id, username, normalized_username, user_id,
                added_by, added_at, notes, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (auth_user_id, normalized_username) DO NOTHING
            """,
            (auth_user_id, username, normalized, auth_user_id, added_by, now, notes, now, now),
            commit=True,
        )
        if not inserted:
            # Already tracked: keep the latest display case
            self.db.execute(
                """
                UPDATE tracked_users SET username = ?, updated_at = ?
                WHERE auth_user_id = ? AND normalized_username = ? AND username != ?
                """,
                (username, now, auth_user_id, normalized, username),
                commit=True,
            )
        return self._get_tracked_user_sync(auth_user_id, normalized), bool(inserted)

    async def add_tracked_user(
        self,
        auth_user_id: str,
        username: str,
        added_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Tuple[dict, bool]:
        """Insert the relationship if missing; returns ``(row, created)``."""
        return await asyncio.to_thread(self._add_tracked_user_sync, auth_user_id, username, added_by, notes)

    def _delete_tracked_user_sync(self, auth_user_id: str, normalized: str) -> Optional[dict]:
        tracked = self._get_tracked_user_sync(auth_user_id, normalized)
        if tracked is None:
            return None
        with self.db.transaction() as conn:
            solutions = conn.execute(
                "DELETE FROM solutions WHERE auth_user_id = ? AND normalized_username = ?",
                (auth_user_id, normalized),
            ).rowcount
            profiles = conn.execute(
                "DELETE FROM profiles WHERE auth_user_id = ? AND normalized_username = ?",
                (auth_user_id, normalized),
            ).rowcount
            conn.execute(
                "DELETE FROM tracked_users WHERE auth_user_id = ? AND normalized_username = ?",
                (auth_user_id, normalized),
            )
        logger.info(
            f"Removed tracked user {tracked['username']} for {auth_user_id}: "
            f"{solutions} solutions, {profiles} profiles deleted"
        )
        return {"tracked_user": tracked, "deleted_solutions": solutions, "deleted_profiles": profiles}

    async def delete_tracked_user(self, auth_user_id: str, username: str) -> Optional[dict]:
        """Delete the relationship and that account's cached data for the username."""
        return await asyncio.to_thread(self._delete_tracked_user_sync, auth_user_id, normalize_username(username))

    def _touch_viewed_sync(self, auth_user_id: str, normalized: str) -> Optional[dict]:
        now = utc_now_iso()
        updated = self.db.execute(
            """
            UPDATE tracked_users SET last_viewed_at = ?, updated_at = ?
            WHERE auth_user_id = ? AND normalized_username = ?
            """,
            (now, now, auth_user_id, normalized),
            commit=True,
        )
        return self._get_tracked_user_sync(auth_user_id, normalized) if updated else None

    async def touch_viewed(self, auth_user_id: str, username: str) -> Optional[dict]:
        return await asyncio.to_thread(self._touch_viewed_sync, auth_user_id, normalize_username(username))

    def _set_leetcode_session_sync(
        self,
        auth_user_id: str,
        normalized: str,
        session: Optional[str],
        csrf_token: Optional[str],
    ) -> bool:
        now = utc_now_iso()
        updated = self.db.execute(
            """
            UPDATE tracked_users
            SET leetcode_session = ?, leetcode_csrf_token = ?,
                leetcode_session_updated_at = ?, updated_at = ?
            WHERE auth_user_id = ? AND normalized_username = ?
            """,
            (session, csrf_token, now, now, auth_user_id, normalized),
            commit=True,
        )
        return bool(updated)

    async def set_leetcode_session(
        self,
        auth_user_id: str,
        username: str,
        session: Optional[str],
        csrf_token: Optional[str],
    ) -> bool:
        return await asyncio.to_thread(
            self._set_leetcode_session_sync,
            auth_user_id,
            normalize_username(username),
            session,
            csrf_token,
        )

    def _find_latest_session_sync(self, normalized: str) -> Optional[dict]:
        row = self.db.execute(
            """
            SELECT username, leetcode_session, leetcode_csrf_token, leetcode_session_updated_at
            FROM tracked_users
            WHERE normalized_username = ?
              AND leetcode_session IS NOT NULL
              AND TRIM(leetcode_session) != ''
            ORDER BY leetcode_session_updated_at DESC, updated_at DESC
            LIMIT 1
            """,
            (normalized,),
            fetchone=True,
        )
        return _row_to_dict(row)

    async def find_latest_session(self, username: str) -> Optional[dict]:
        """Most recently updated stored session for a username across all owning accounts."""
        return await asyncio.to_thread(self._find_latest_session_sync, normalize_username(username))

    # --- solutions ---

    def _get_solution_sync(self, submission_id: str, auth_user_id: str) -> Optional[dict]:
        row = self.db.execute(
            "SELECT * FROM solutions WHERE submission_id = ? AND auth_user_id = ?",
            (submission_id, auth_user_id),
            fetchone=True,
        )
        return _row_to_solution(row)

    async def get_solution(self, submission_id: str, auth_user_id: str) -> Optional[dict]:
        return await asyncio.to_thread(self._get_solution_sync, str(submission_id), auth_user_id)

    @staticmethod
    def _solution_values(fields: Dict[str, Any]) -> Dict[str, Any]:
        values = {key: fields[key] for key in SOLUTION_FIELDS if key in fields}
        if "tags" in values:
            values["tags"] = json.dumps(list(values["tags"] or []))
        if "difficulty" in values:
            values["difficulty"] = normalize_difficulty(values["difficulty"])
        if "username" in values and "normalized_username" not in values:
            values["normalized_username"] = normalize_username(values["username"])
        return values

    def _insert_solution_metadata_sync(self, submission_id: str, auth_user_id: str, fields: Dict[str, Any]) -> bool:
        values = self._solution_values(fields)
        now = utc_now_iso()
        columns = ["submission_id", "auth_user_id", *values.keys(), "created_at", "updated_at"]
        params = [submission_id, auth_user_id, *values.values(), now, now]
        inserted = self.db.execute(
            f"""
            INSERT INTO solutions ({", ".join(columns)})
            VALUES ({", ".join("?" for _ in columns)})
            ON CONFLICT (submission_id, auth_user_id) DO NOTHING
            """,
            params,
            commit=True,
        )
        return bool(inserted)

    async def insert_solution_metadata(self, submission_id: str, auth_user_id: str, fields: Dict[str, Any]) -> bool:
        """Insert a new row; False if a row for (submission_id, auth_user_id) already exists."""
        return await asyncio.to_thread(self._insert_solution_metadata_sync, str(submission_id), auth_user_id, fields)

    def _upsert_solution_sync(self, submission_id: str, auth_user_id: str, fields: Dict[str, Any]) -> dict:
        values = self._solution_values(fields)
        now = utc_now_iso()
        columns = ["submission_id", "auth_user_id", *values.keys(), "created_at", "updated_at"]
        params = [submission_id, auth_user_id, *values.values(), now, now]
        updates = ", ".join(f"{key} = excluded.{key}" for key in [*values.keys(), "updated_at"])
        self.db.execute(
            f"""
            INSERT INTO solutions ({", ".join(columns)})
            VALUES ({", ".join("?" for _ in columns)})
            ON CONFLICT (submission_id, auth_user_id) DO UPDATE SET {updates}
            """,
            params,
            commit=True,
        )
        return self._get_solution_sync(submission_id, auth_user_id)

    async def upsert_solution(self, submission_id: str, auth_user_id: str, fields: Dict[str, Any]) -> dict:
        """Insert or update in place keyed by (submission_id, auth_user_id); the row id is preserved."""
        return await asyncio.to_thread(self._upsert_solution_sync, str(submission_id), auth_user_id, fields)

    def _update_solution_sync(self, submission_id: str, auth_user_id: str, fields: Dict[str, Any]) -> Optional[dict]:
        values = self._solution_values(fields)
        values["updated_at"] = utc_now_iso()
        self.db.execute(
            f"""
            UPDATE solutions SET {", ".join(f"{key} = ?" for key in values)}
            WHERE submission_id = ? AND auth_user_id = ?
            """,
            [*values.values(), submission_id, auth_user_id],
            commit=True,
        )
        return self._get_solution_sync(submission_id, auth_user_id)

    async def update_solution(self, submission_id: str, auth_user_id: str, fields: Dict[str, Any]) -> Optional[dict]:
        """Update only the given columns of an existing row; None if there is no such row."""
        return await asyncio.to_thread(self._update_solution_sync, str(submission_id), auth_user_id, fields)

    def _list_solutions_sync(self, auth_user_id: str, normalized: str, limit: int, skip: int) -> Tuple[List[dict], int]:
        rows = self.db.execute(
            """
            SELECT * FROM solutions
            WHERE auth_user_id = ? AND normalized_username = ?
            ORDER BY timestamp DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            (auth_user_id, normalized, limit, skip),
            fetchall=True,
        )
        total = self.db.execute(
            "SELECT COUNT(*) FROM solutions WHERE auth_user_id = ? AND normalized_username = ?",
            (auth_user_id, normalized),
            fetchone=True,
        )
        return [_row_to_solution(row) for row in rows or []], int(total[0]) if total else 0

    async def list_solutions(
        self, auth_user_id: str, username: str, limit: int = 100, skip: int = 0
    ) -> Tuple[List[dict], int]:
        return await asyncio.to_thread(
            self._list_solutions_sync, auth_user_id, normalize_username(username), limit, skip
        )

    # --- profiles ---

    def _get_profile_sync(self, auth_user_id: str, normalized: str) -> Optional[dict]:
        row = self.db.execute(
            "SELECT * FROM profiles WHERE auth_user_id = ? AND normalized_username = ?",
            (auth_user_id, normalized),
            fetchone=True,
        )
        return _row_to_profile(row)

    async def get_profile(self, auth_user_id: str, username: str) -> Optional[dict]:
        return await asyncio.to_thread(self._get_profile_sync, auth_user_id, normalize_username(username))

    def _upsert_profile_sync(self, auth_user_id: str, profile: Dict[str, Any], added_by: Optional[str]) -> dict:
        username = profile["username"]
        normalized = normalize_username(username)
        stats = profile.get("stats") or {}
        now = utc_now_iso()
        self.db.execute(
            f"""
            INSERT INTO profiles (
                auth_user_id, username, normalized_username, profile_url, real_name, avatar,
                ranking, reputation, {", ".join(PROFILE_STAT_FIELDS)},
                last_sync, added_by, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (auth_user_id, normalized_username) DO UPDATE SET
                username = excluded.username,
                profile_url = excluded.profile_url,
                real_name = excluded.real_name,
                avatar = excluded.avatar,
                ranking = excluded.ranking,
                reputation = excluded.reputation,
                {", ".join(f"{field} = excluded.{field}" for field in PROFILE_STAT_FIELDS)},
                updated_at = excluded.updated_at
            """,
            (
                auth_user_id,
                username,
                normalized,
                profile.get("profile_url") or f"https://leetcode.com/u/{username}/",
                profile.get("real_name"),
                profile.get("avatar"),
                profile.get("ranking"),
                profile.get("reputation"),
                *(stats.get(field, 0) or 0 for field in PROFILE_STAT_FIELDS),
                profile.get("last_sync") or now,
                added_by,
                now,
                now,
            ),
            commit=True,
        )
        return self._get_profile_sync(auth_user_id, normalized)

    async def upsert_profile(self, auth_user_id: str, profile: Dict[str, Any], added_by: Optional[str] = None) -> dict:
        """Insert or refresh a profile snapshot; sync bookkeeping columns are left untouched on update."""
        return await asyncio.to_thread(self._upsert_profile_sync, auth_user_id, profile, added_by)

    def _set_auto_sync_sync(self, auth_user_id: str, normalized: str, enabled: bool) -> bool:
        updated = self.db.execute(
            """
            UPDATE profiles SET auto_sync = ?, updated_at = ?
            WHERE auth_user_id = ? AND normalized_username = ?
            """,
            (1 if enabled else 0, utc_now_iso(), auth_user_id, normalized),
            commit=True,
        )
        return bool(updated)

    async def set_auto_sync(self, auth_user_id: str, username: str, enabled: bool) -> bool:
        return await asyncio.to_thread(self._set_auto_sync_sync, auth_user_id, normalize_username(username), enabled)

    def _list_profiles_due_for_sync_sync(self, cutoff: str) -> List[dict]:
        rows = self.db.execute(
            "SELECT * FROM profiles WHERE auto_sync = 1 AND last_sync < ?",
            (cutoff,),
            fetchall=True,
        )
        return [_row_to_profile(row) for row in rows or []]

    async def list_profiles_due_for_sync(self, cutoff: str) -> List[dict]:
        """Auto-sync profiles whose ``last_sync`` is older than ``cutoff`` (ISO string)."""
        return await asyncio.to_thread(self._list_profiles_due_for_sync_sync, cutoff)

    def _update_sync_status_sync(self, auth_user_id: str, normalized: str, success: bool, error: Optional[str]) -> bool:
        now = utc_now_iso()
        updated = self.db.execute(
            """
            UPDATE profiles
            SET last_sync = ?, last_sync_status = ?, last_sync_error = ?, updated_at = ?
            WHERE auth_user_id = ? AND normalized_username = ?
            """,
            (now, "success" if success else "failed", error, now, auth_user_id, normalized),
            commit=True,
        )
        return bool(updated)

    async def update_sync_status(
        self, auth_user_id: str, username: str, success: bool, error: Optional[str] = None
    ) -> bool:
        return await asyncio.to_thread(
            self._update_sync_status_sync, auth_user_id, normalize_username(username), success, error
        )

    def _clear_stale_sync_errors_sync(self, cutoff: str) -> int:
        return self.db.execute(
            """
            UPDATE profiles SET last_sync_error = NULL
            WHERE last_sync < ? AND last_sync_error IS NOT NULL
            """,
            (cutoff,),
            commit=True,
        )

    async def clear_stale_sync_errors(self, cutoff: str) -> int:
        return await asyncio.to_thread(self._clear_stale_sync_errors_sync, cutoff)
