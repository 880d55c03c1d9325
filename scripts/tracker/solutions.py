"""Cached-or-fetch access to the source code of a single submission."""

from __future__ import annotations

from typing import Any, Dict, Optional

from leetcode import (
    ACCEPTED_STATUS_CODE,
    BASE_URL,
    LeetCodeAPIError,
    LeetCodeClient,
    LeetCodeRateLimitError,
    format_timestamp,
)
from utils.logger import get_sync_logger

from .auth import AuthResolver
from .storage import TrackerStorage, normalize_username

logger = get_sync_logger()

MESSAGE_NO_DETAILS = (
    "No submission details found. The submission may be private or require "
    "different LeetCode credentials."
)
MESSAGE_NO_CODE = "Submission details were returned without code (metadata only)."
MESSAGE_NOT_FOUND = "Submission not found"
MESSAGE_RATE_LIMITED = "Rate limited by LeetCode API"


def _failure(message: str) -> Dict[str, Any]:
    return {"success": False, "message": message}


def _status_text(status_code: Any) -> str:
    if status_code in (None, "", ACCEPTED_STATUS_CODE):
        return "Accepted"
    return str(status_code)


def solution_fields_from_detail(detail: Dict[str, Any], fallback_username: Optional[str]) -> Dict[str, Any]:
    """
    Map a ``submissionDetails`` payload onto solution columns.

    Only values present in the payload are returned, so an update never
    blanks out metadata the sync already stored. The owner reported by
    LeetCode wins over the caller's username hint.
    """
    question = detail.get("question") or {}
    lang = detail.get("lang") or {}
    fields: Dict[str, Any] = {
        "code": detail.get("code") or "",
        "language": lang.get("verboseName") or lang.get("name") or "Unknown",
        "runtime": detail.get("runtimeDisplay") or detail.get("runtime") or "N/A",
        "memory": detail.get("memoryDisplay") or detail.get("memory") or "N/A",
        "status": _status_text(detail.get("statusCode")),
    }

    username = (detail.get("user") or {}).get("username") or fallback_username
    if username:
        fields["username"] = username
        fields["normalized_username"] = normalize_username(username)

    if detail.get("timestamp"):
        timestamp = int(detail["timestamp"])
        fields["timestamp"] = timestamp
        fields["submitted_at"] = format_timestamp(timestamp)

    if question.get("title"):
        fields["problem_name"] = question["title"]
    slug = question.get("titleSlug")
    if slug:
        fields["problem_slug"] = slug
        fields["problem_url"] = f"{BASE_URL}/problems/{slug}/"
    if question.get("difficulty"):
        fields["difficulty"] = question["difficulty"]

    tags = [tag["name"] for tag in detail.get("topicTags") or [] if tag.get("name")]
    if tags:
        fields["tags"] = tags
    return fields


NEW_SOLUTION_DEFAULTS: Dict[str, Any] = {
    "username": "unknown",
    "normalized_username": "unknown",
    "problem_name": "Unknown Problem",
    "problem_slug": "",
    "problem_url": "",
    "difficulty": "Medium",
    "timestamp": 0,
    "submitted_at": format_timestamp(0),
    "tags": [],
}


class SolutionViewer:
    """
    Returns the code for a submission, fetching and caching it on a miss.

    Rows are scoped to the owning account: the same submission requested by
    two accounts is cached twice, independently.
    """

    def __init__(self, client: LeetCodeClient, storage: TrackerStorage, auth_resolver: AuthResolver):
        self.client = client
        self.storage = storage
        self.auth_resolver = auth_resolver

    async def fetch_solution(
        self,
        submission_id: str,
        auth_user_id: str,
        username: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Args:
            submission_id (str): LeetCode submission id
            auth_user_id (str): owning account the cache row belongs to
            username (str, optional): best guess at the submission's owner

        Returns:
            dict: ``{"success": True, "solution": {...}}`` or
            ``{"success": False, "message": str}``
        """
        submission_id = str(submission_id).strip()
        try:
            logger.info(f"Checking cache for solution {submission_id} ({auth_user_id})")
            existing = await self.storage.get_solution(submission_id, auth_user_id)
            if existing and existing.get("code"):
                logger.info(f"Found solution {submission_id} in cache")
                return {"success": True, "solution": existing}

            hint = username or (existing or {}).get("username")
            if hint == "unknown":
                hint = None
            credentials = await self.auth_resolver.resolve(hint)

            logger.info(f"Fetching solution {submission_id} from LeetCode (credentials: {credentials.source})")
            detail = await self.client.fetch_submission_detail(
                submission_id,
                session=credentials.session,
                csrf_token=credentials.csrf_token,
            )
            if not detail:
                logger.warning(f"No submission details found for {submission_id}")
                return _failure(MESSAGE_NO_DETAILS)
            if not detail.get("code"):
                logger.warning(f"No code found in submission {submission_id}")
                return _failure(MESSAGE_NO_CODE)

            solution = None
            if existing:
                logger.info(f"Updating cached solution {submission_id} with fetched code")
                updates = solution_fields_from_detail(detail, hint)
                if existing.get("normalized_username") not in (None, "", "unknown"):
                    # Keep the row under the tracked user it was synced for
                    updates.pop("username", None)
                    updates.pop("normalized_username", None)
                solution = await self.storage.update_solution(submission_id, auth_user_id, updates)
            if solution is None:
                logger.info(f"Caching new solution {submission_id}")
                fields = {**NEW_SOLUTION_DEFAULTS, **solution_fields_from_detail(detail, hint)}
                solution = await self.storage.upsert_solution(submission_id, auth_user_id, fields)
            return {"success": True, "solution": solution}

        except LeetCodeRateLimitError:
            logger.warning(f"Rate limited while fetching solution {submission_id}")
            return _failure(MESSAGE_RATE_LIMITED)
        except LeetCodeAPIError as e:
            logger.error(f"Error fetching solution {submission_id}: {e} (status={e.status})")
            if e.status == 404:
                return _failure(MESSAGE_NOT_FOUND)
            if e.status == 429:
                return _failure(MESSAGE_RATE_LIMITED)
            return _failure(str(e) or "Failed to fetch solution")
        except Exception as e:
            logger.error(f"Unexpected error fetching solution {submission_id}: {e}", exc_info=True)
            return _failure(str(e) or "Failed to fetch solution")
