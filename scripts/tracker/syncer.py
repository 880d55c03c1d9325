"""Reconcile a user's recent accepted submissions with the solution cache."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from leetcode import (
    BASE_URL,
    LeetCodeAPIError,
    LeetCodeClient,
    LeetCodeNetworkError,
    LeetCodeRateLimitError,
)
from utils.config import SyncConfig
from utils.logger import get_sync_logger

from .solutions import SolutionViewer
from .storage import TrackerStorage, normalize_username

logger = get_sync_logger()

DEFAULT_DIFFICULTY = "Medium"


class SolutionSyncer:
    """
    Pulls the latest accepted submissions for a LeetCode user and caches them
    for one owning account.

    Submissions are processed one at a time; those that need LeetCode are
    separated by fixed pauses to stay under its rate limits.
    """

    def __init__(
        self,
        client: LeetCodeClient,
        storage: TrackerStorage,
        viewer: SolutionViewer,
        config: Optional[SyncConfig] = None,
    ):
        self.client = client
        self.storage = storage
        self.viewer = viewer
        self.config = config or SyncConfig()

    async def _fetch_problem_metadata(self, slug: str) -> Dict[str, Any]:
        """Difficulty and tags for a problem.

        Any API error falls back to the defaults, except transport failures
        and rate limits that outlasted the client's retries, which propagate.
        """
        if not slug:
            return {"difficulty": DEFAULT_DIFFICULTY, "tags": []}
        await asyncio.sleep(self.config.problem_detail_delay)
        try:
            detail = await self.client.fetch_problem_detail(slug)
        except (LeetCodeNetworkError, LeetCodeRateLimitError):
            raise
        except LeetCodeAPIError as e:
            logger.warning(f"Could not fetch difficulty for {slug}: {e}")
            detail = None
        if not detail:
            return {"difficulty": DEFAULT_DIFFICULTY, "tags": []}
        return {
            "difficulty": detail.get("difficulty") or DEFAULT_DIFFICULTY,
            "tags": detail.get("tags") or [],
        }

    async def _backfill_code(self, submission_id: str, auth_user_id: str, username: str) -> bool:
        result = await self.viewer.fetch_solution(submission_id, auth_user_id, username=username)
        if not result["success"]:
            logger.info(f"Code unavailable for submission {submission_id}: {result['message']}")
            return False
        return True

    async def sync_user_solutions(self, username: str, auth_user_id: str) -> Dict[str, Any]:
        """
        Sync recent accepted submissions of ``username`` into ``auth_user_id``'s cache.

        Returns:
            dict: success, savedCount, skippedCount, totalProcessed

        Raises:
            LeetCodeAPIError: if the submission list itself cannot be fetched.
        """
        username = username.strip()
        normalized = normalize_username(username)
        logger.info(f"Starting sync for user: {username} (account {auth_user_id})")

        try:
            submissions = await self.client.fetch_recent_ac_submissions(username, self.config.recent_limit)
        except Exception as e:
            logger.error(f"Solution sync failed for {username}: {e}")
            raise
        logger.info(f"Found {len(submissions)} recent submissions")

        saved_count = 0
        skipped_count = 0
        # Only submissions that go to LeetCode are paced
        called_upstream = False

        for submission in submissions:
            submission_id = submission["submission_id"]
            try:
                existing = await self.storage.get_solution(submission_id, auth_user_id)
                if existing and existing.get("code"):
                    skipped_count += 1
                    logger.info(f"Solution already exists: {submission['title']}")
                    continue

                if called_upstream:
                    await asyncio.sleep(self.config.submission_delay)
                called_upstream = True

                if existing:
                    skipped_count += 1
                    logger.info(f"Solution already exists without code: {submission['title']}")
                    await self._backfill_code(submission_id, auth_user_id, username)
                    continue

                metadata = await self._fetch_problem_metadata(submission["slug"])
                slug = submission["slug"]
                inserted = await self.storage.insert_solution_metadata(
                    submission_id,
                    auth_user_id,
                    {
                        "username": username,
                        "normalized_username": normalized,
                        "problem_name": submission["title"],
                        "problem_slug": slug,
                        "problem_url": f"{BASE_URL}/problems/{slug}/" if slug else "",
                        "difficulty": metadata["difficulty"],
                        "language": submission["language"],
                        "code": "",
                        "runtime": submission["runtime"],
                        "memory": submission["memory"],
                        "status": submission["status"],
                        "timestamp": submission["timestamp"],
                        "submitted_at": submission["submission_time"],
                        "tags": metadata["tags"],
                    },
                )
                if not inserted:
                    # Another sync stored it between our check and insert
                    skipped_count += 1
                    logger.info(f"Solution stored concurrently: {submission['title']}")
                    continue

                saved_count += 1
                if await self._backfill_code(submission_id, auth_user_id, username):
                    logger.info(f"Saved: {submission['title']} ({metadata['difficulty']}) with code")
                else:
                    logger.info(f"Saved: {submission['title']} ({metadata['difficulty']}) without code")
            except Exception as e:
                logger.error(f"Error processing submission {submission_id}: {e}")
                skipped_count += 1

        logger.info(f"Solution sync complete for {username}: saved {saved_count}, skipped {skipped_count}")

        return {
            "success": True,
            "savedCount": saved_count,
            "skippedCount": skipped_count,
            "totalProcessed": len(submissions),
        }
