"""Tracked-user lifecycle and the read paths built on top of the cache."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from leetcode import LeetCodeAPIError, LeetCodeClient
from utils.database import utc_now_iso
from utils.logger import get_sync_logger

from .auth import sanitize_token
from .solutions import SolutionViewer
from .storage import TrackerStorage, normalize_username

logger = get_sync_logger()

MAX_SOLUTIONS_PAGE = 5000


class TrackingError(Exception):
    """A request against tracking data that cannot be served.

    ``code`` is a short machine-readable reason such as ``not_tracked``.
    """

    def __init__(self, message: str, code: str = "tracking_error"):
        super().__init__(message)
        self.code = code


def _require_username(username: Optional[str]) -> str:
    username = (username or "").strip()
    if not username:
        raise TrackingError("Username is required", code="invalid_username")
    return username


class TrackingService:
    def __init__(self, client: LeetCodeClient, storage: TrackerStorage, viewer: SolutionViewer):
        self.client = client
        self.storage = storage
        self.viewer = viewer

    async def add_tracked_user(
        self,
        auth_user_id: str,
        username: str,
        added_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Track a username for an account; adding it again only refreshes the display case."""
        username = _require_username(username)
        tracked, created = await self.storage.add_tracked_user(auth_user_id, username, added_by, notes)
        if created:
            logger.info(f"Account {auth_user_id} now tracks {username}")
        else:
            logger.info(f"Account {auth_user_id} already tracks {username}")

        profile = await self.storage.get_profile(auth_user_id, username)
        if profile is None:
            profile = await self.refresh_profile(auth_user_id, username, added_by=added_by)
        return {"tracked_user": tracked, "created": created, "profile": profile}

    async def refresh_profile(
        self, auth_user_id: str, username: str, added_by: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Refresh the profile snapshot from LeetCode.

        When LeetCode cannot be reached or does not know the user, a bare
        profile row is still ensured so the scheduler picks the user up.
        """
        username = _require_username(username)
        try:
            snapshot = await self.client.fetch_user_profile(username)
        except LeetCodeAPIError as e:
            logger.warning(f"Could not refresh profile for {username}: {e}")
            snapshot = None

        if snapshot is None:
            existing = await self.storage.get_profile(auth_user_id, username)
            if existing is not None:
                return existing
            snapshot = {"username": username}
        return await self.storage.upsert_profile(auth_user_id, snapshot, added_by=added_by)

    async def remove_tracked_user(self, auth_user_id: str, username: str) -> Dict[str, Any]:
        username = _require_username(username)
        removed = await self.storage.delete_tracked_user(auth_user_id, username)
        if removed is None:
            raise TrackingError(f"User {username} was not being tracked", code="not_tracked")
        return removed

    async def mark_viewed(self, auth_user_id: str, username: str) -> Dict[str, Any]:
        tracked = await self.storage.touch_viewed(auth_user_id, _require_username(username))
        if tracked is None:
            raise TrackingError("Tracked user not found", code="not_tracked")
        return tracked

    async def set_leetcode_session(
        self,
        auth_user_id: str,
        username: str,
        session: Optional[str],
        csrf_token: Optional[str] = None,
    ) -> None:
        """Store (or clear, with an empty session) the LeetCode credentials for a tracked user."""
        updated = await self.storage.set_leetcode_session(
            auth_user_id,
            _require_username(username),
            sanitize_token(session),
            sanitize_token(csrf_token),
        )
        if not updated:
            raise TrackingError(f"User {username} is not tracked by this account", code="not_tracked")
        logger.info(f"Updated LeetCode session for {username} ({auth_user_id}) at {utc_now_iso()}")

    async def list_tracked_users(self, auth_user_id: str) -> List[Dict[str, Any]]:
        return await self.storage.list_tracked_users(auth_user_id)

    async def set_auto_sync(self, auth_user_id: str, username: str, enabled: bool) -> None:
        if not await self.storage.set_auto_sync(auth_user_id, _require_username(username), enabled):
            raise TrackingError(f"No profile for {username}", code="not_tracked")

    async def list_solutions(
        self, auth_user_id: str, username: str, limit: int = 100, skip: int = 0
    ) -> Dict[str, Any]:
        username = _require_username(username)
        if await self.storage.get_tracked_user(auth_user_id, username) is None:
            raise TrackingError(f"User {username} is not tracked by this account", code="not_tracked")

        limit = max(1, min(int(100 if limit is None else limit), MAX_SOLUTIONS_PAGE))
        skip = max(0, int(skip or 0))
        solutions, total = await self.storage.list_solutions(auth_user_id, username, limit, skip)
        return {"solutions": solutions, "total": total}

    async def view_submission(
        self, auth_user_id: str, submission_id: str, username: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Return a submission with its code for an account.

        Cached code is returned directly. Otherwise the submission must belong
        to a username the account tracks (the hint, or the cached row's
        username) before LeetCode is asked for it.

        Raises:
            TrackingError: with code ``not_tracked``, ``fetch_failed`` or ``no_code``.
        """
        cached = await self.storage.get_solution(submission_id, auth_user_id)
        if cached and cached.get("code"):
            return cached

        tracked = None
        hint = normalize_username(username)
        if hint:
            tracked = await self.storage.get_tracked_user(auth_user_id, hint)
        if tracked is None and cached and cached.get("normalized_username"):
            tracked = await self.storage.get_tracked_user(auth_user_id, cached["normalized_username"])
        if tracked is None:
            raise TrackingError("Please provide a tracked username to view this submission.", code="not_tracked")

        result = await self.viewer.fetch_solution(submission_id, auth_user_id, username=tracked["username"])
        if not result["success"]:
            raise TrackingError(result["message"] or "Failed to fetch solution", code="fetch_failed")
        if not result["solution"].get("code"):
            raise TrackingError("The solution exists but contains no code.", code="no_code")
        return result["solution"]
