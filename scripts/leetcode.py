import argparse
import asyncio
import json
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import aiohttp
import pytz
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from utils.base_crawler import BaseCrawler
from utils.config import CrawlerHttpConfig, LeetCodeConfig, get_config
from utils.logger import get_leetcode_logger

logger = get_leetcode_logger()

BASE_URL = "https://leetcode.com"
REDACTED_HEADERS = {"cookie", "x-csrftoken"}
ACCEPTED_STATUS_CODE = 10

RECENT_AC_SUBMISSIONS_QUERY = """
query recentAcSubmissions($username: String!, $limit: Int!) {
    recentAcSubmissionList(username: $username, limit: $limit) {
        id
        title
        titleSlug
        timestamp
        statusDisplay
        lang
        runtime
        memory
    }
}
"""

PROBLEM_DETAIL_QUERY = """
query getProblem($titleSlug: String!) {
    question(titleSlug: $titleSlug) {
        title
        titleSlug
        difficulty
        topicTags {
            name
        }
    }
}
"""

SUBMISSION_DETAIL_QUERY = """
query submissionDetails($submissionId: Int!) {
    submissionDetails(submissionId: $submissionId) {
        runtime
        runtimeDisplay
        memory
        memoryDisplay
        code
        timestamp
        statusCode
        user {
            username
        }
        lang {
            name
            verboseName
        }
        question {
            questionId
            title
            titleSlug
            difficulty
        }
        topicTags {
            name
            slug
        }
    }
}
"""

USER_PROFILE_QUERY = """
query getUserProfile($username: String!) {
    matchedUser(username: $username) {
        username
        profile {
            realName
            userAvatar
            ranking
            reputation
        }
        submitStats {
            acSubmissionNum {
                difficulty
                count
                submissions
            }
            totalSubmissionNum {
                difficulty
                count
                submissions
            }
        }
    }
}
"""

TEST_CONNECTION_QUERY = """
query testConnection($username: String!) {
    matchedUser(username: $username) {
        username
    }
}
"""


class LeetCodeAPIError(Exception):
    """Base error for LeetCode GraphQL calls. ``status`` is the HTTP status when known."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class LeetCodeNetworkError(LeetCodeAPIError):
    """Transport failure: connection reset/refused or timeout."""


class LeetCodeRateLimitError(LeetCodeAPIError):
    def __init__(self, message: str = "Rate limited by LeetCode API"):
        super().__init__(message, status=429)


class LeetCodeGraphQLError(LeetCodeAPIError):
    def __init__(self, message: str, errors: Optional[list] = None, status: Optional[int] = None):
        super().__init__(message, status=status)
        self.errors = errors or []


class LeetCodeResponseError(LeetCodeAPIError):
    """The response was not JSON or lacked the expected shape."""


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, (LeetCodeNetworkError, LeetCodeRateLimitError))


def _redact_headers(headers: Dict[str, str]) -> Dict[str, str]:
    return {key: ("***" if key.lower() in REDACTED_HEADERS else value) for key, value in headers.items()}


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    sleep = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(f"LeetCode request failed (attempt {retry_state.attempt_number}): {exc}. Retrying in {sleep:.1f}s")


def build_cookie(session: Optional[str], csrf_token: Optional[str]) -> Optional[str]:
    parts = []
    if session:
        parts.append(f"LEETCODE_SESSION={session}")
    if csrf_token:
        parts.append(f"csrftoken={csrf_token}")
    return "; ".join(parts) if parts else None


def format_timestamp(timestamp: int) -> str:
    """Epoch seconds to an ISO-8601 UTC string."""
    return datetime.fromtimestamp(int(timestamp), tz=pytz.utc).isoformat(timespec="seconds")


class LeetCodeClient(BaseCrawler):
    """
    Async client for the LeetCode GraphQL API.

    One ``aiohttp`` session is created lazily and reused; use the client as an
    async context manager or call ``close()`` when done.
    """

    def __init__(
        self,
        config: Optional[LeetCodeConfig] = None,
        http_config: Optional[CrawlerHttpConfig] = None,
    ):
        super().__init__("leetcode", http_config)
        self.config = config or get_config().get_leetcode_config()
        self.graphql_url = self.config.graphql_url
        self.max_retries = max(0, self.config.max_retries)
        self.retry_delay = max(0.0, self.config.retry_delay)
        self._session: Optional[aiohttp.ClientSession] = None

        logger.info(f"Initialized LeetCode client for {self.graphql_url}")

    async def __aenter__(self) -> "LeetCodeClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = self._create_aiohttp_session(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            )
        return self._session

    def _build_headers(
        self,
        referer: Optional[str] = None,
        session: Optional[str] = None,
        csrf_token: Optional[str] = None,
    ) -> Dict[str, str]:
        headers = self._headers(referer or f"{BASE_URL}/")
        headers["Content-Type"] = "application/json"
        headers["Origin"] = BASE_URL
        headers["X-Requested-With"] = "XMLHttpRequest"
        cookie = build_cookie(session, csrf_token)
        if cookie:
            headers["Cookie"] = cookie
        if csrf_token:
            headers["x-csrftoken"] = csrf_token
        return headers

    async def _post(self, payload: Dict[str, Any], headers: Dict[str, str]) -> tuple:
        """Send one POST and return ``(status, body)``; body is parsed JSON or raw text."""
        session = self._get_session()
        async with session.post(
            self.graphql_url,
            json=payload,
            headers=headers,
            proxy=self._get_aiohttp_request_proxy("https"),
            max_redirects=self.config.max_redirects,
        ) as res:
            text = await res.text()
            try:
                body = json.loads(text) if text else None
            except json.JSONDecodeError:
                body = text
            return res.status, body

    async def _request_once(self, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        try:
            status, body = await self._post(payload, headers)
        except asyncio.TimeoutError as e:
            raise LeetCodeNetworkError(f"Request timed out after {self.config.timeout:g}s") from e
        except aiohttp.TooManyRedirects as e:
            raise LeetCodeAPIError(f"Too many redirects (limit {self.config.max_redirects})", status=e.status) from e
        except aiohttp.ClientResponseError as e:
            if e.status == 429:
                raise LeetCodeRateLimitError() from e
            raise LeetCodeAPIError(e.message or f"HTTP {e.status}", status=e.status) from e
        except (aiohttp.ClientConnectionError, ConnectionResetError) as e:
            raise LeetCodeNetworkError(str(e) or e.__class__.__name__) from e

        if status == 429:
            raise LeetCodeRateLimitError()
        if status >= 400:
            snippet = str(body)[:200].replace("\n", " ") if body else ""
            raise LeetCodeAPIError(f"HTTP {status}: {snippet}".strip(), status=status)
        if not isinstance(body, dict):
            snippet = str(body)[:200].replace("\n", " ").replace("\r", " ")
            raise LeetCodeResponseError(f"Failed to parse JSON. Snippet: {snippet}", status=status)

        errors = body.get("errors")
        if errors:
            first = errors[0] if isinstance(errors[0], dict) else {}
            raise LeetCodeGraphQLError(first.get("message") or "Unknown GraphQL error", errors=errors, status=status)

        data = body.get("data")
        if not isinstance(data, dict):
            raise LeetCodeResponseError("Response is missing the 'data' object", status=status)
        return data

    async def query(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
        *,
        operation_name: Optional[str] = None,
        referer: Optional[str] = None,
        session: Optional[str] = None,
        csrf_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Run a GraphQL query and return its ``data`` object.

        Transport failures and HTTP 429 are retried ``max_retries`` times with
        linearly increasing backoff; anything else fails immediately.

        Raises:
            LeetCodeAPIError: or one of its subclasses.
        """
        payload: Dict[str, Any] = {"query": query, "variables": variables or {}}
        if operation_name:
            payload["operationName"] = operation_name
        headers = self._build_headers(referer, session, csrf_token)
        path = urlparse(self.graphql_url).path or "/"
        logger.debug(f"POST {path} ({operation_name or 'anonymous'})")

        retryer = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_incrementing(start=self.retry_delay, increment=self.retry_delay),
            retry=retry_if_exception(_is_retryable),
            before_sleep=_log_retry,
            reraise=True,
        )
        try:
            async for attempt in retryer:
                with attempt:
                    return await self._request_once(payload, headers)
        except LeetCodeAPIError as e:
            logger.error(
                f"LeetCode API error on POST {path} ({operation_name or 'anonymous'}): "
                f"{e} [status={e.status}] headers={_redact_headers(headers)}"
            )
            raise

    async def fetch_recent_ac_submissions(self, username: str, limit: int = 20) -> List[Dict[str, Any]]:
        """
        Fetch recent accepted submissions for a username, most recent first.

        Returns:
            list: dicts with submission_id, title, slug, timestamp, status,
            language, runtime, memory and submission_time.
        """
        logger.info(f"Fetching recent AC submissions for user: {username}")
        data = await self.query(
            RECENT_AC_SUBMISSIONS_QUERY,
            {"username": username, "limit": limit},
            operation_name="recentAcSubmissions",
            referer=f"{BASE_URL}/u/{username}/",
        )
        submissions = data.get("recentAcSubmissionList") or []
        logger.info(f"Successfully fetched {len(submissions)} submissions")

        results = []
        for submission in submissions:
            timestamp = int(submission["timestamp"])
            results.append(
                {
                    "submission_id": str(submission["id"]),
                    "title": submission.get("title") or "Unknown Problem",
                    "slug": submission.get("titleSlug") or "",
                    "timestamp": timestamp,
                    "status": submission.get("statusDisplay") or "Accepted",
                    "language": submission.get("lang") or "Unknown",
                    "runtime": submission.get("runtime") or "N/A",
                    "memory": submission.get("memory") or "N/A",
                    "submission_time": format_timestamp(timestamp),
                }
            )
        return results

    async def fetch_problem_detail(self, slug: str) -> Optional[Dict[str, Any]]:
        """Difficulty and topic tags for a problem slug; None if LeetCode has no such question."""
        data = await self.query(
            PROBLEM_DETAIL_QUERY,
            {"titleSlug": slug},
            operation_name="getProblem",
            referer=f"{BASE_URL}/problems/{slug}/",
        )
        question = data.get("question")
        if not question:
            return None
        return {
            "slug": question.get("titleSlug") or slug,
            "title": question.get("title"),
            "difficulty": question.get("difficulty"),
            "tags": [tag["name"] for tag in question.get("topicTags") or [] if tag.get("name")],
            "link": f"{BASE_URL}/problems/{slug}/",
        }

    async def fetch_submission_detail(
        self,
        submission_id: str,
        session: Optional[str] = None,
        csrf_token: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Raw ``submissionDetails`` object, or None when LeetCode returns nothing."""
        try:
            numeric_id = int(str(submission_id).strip())
        except ValueError:
            raise LeetCodeAPIError(f"Invalid submission id '{submission_id}'", status=404)

        data = await self.query(
            SUBMISSION_DETAIL_QUERY,
            {"submissionId": numeric_id},
            operation_name="submissionDetails",
            referer=f"{BASE_URL}/submissions/detail/{numeric_id}/",
            session=session,
            csrf_token=csrf_token,
        )
        return data.get("submissionDetails")

    async def fetch_user_profile(self, username: str) -> Optional[Dict[str, Any]]:
        """Profile and solved counts for a username; None if the user does not exist."""
        data = await self.query(
            USER_PROFILE_QUERY,
            {"username": username},
            operation_name="getUserProfile",
            referer=f"{BASE_URL}/u/{username}/",
        )
        user = data.get("matchedUser")
        if not user:
            return None

        stats = {
            "total_solved": 0,
            "easy_solved": 0,
            "medium_solved": 0,
            "hard_solved": 0,
            "total_submissions": 0,
            "acceptance_rate": 0.0,
        }
        submit_stats = user.get("submitStats") or {}
        accepted_submissions = 0
        for stat in submit_stats.get("acSubmissionNum") or []:
            difficulty = stat.get("difficulty")
            if difficulty == "All":
                stats["total_solved"] = stat.get("count", 0)
                accepted_submissions = stat.get("submissions", 0)
            elif difficulty == "Easy":
                stats["easy_solved"] = stat.get("count", 0)
            elif difficulty == "Medium":
                stats["medium_solved"] = stat.get("count", 0)
            elif difficulty == "Hard":
                stats["hard_solved"] = stat.get("count", 0)
        for stat in submit_stats.get("totalSubmissionNum") or []:
            if stat.get("difficulty") == "All":
                stats["total_submissions"] = stat.get("submissions", 0)
        if stats["total_submissions"]:
            stats["acceptance_rate"] = round(accepted_submissions * 100 / stats["total_submissions"], 2)

        profile = user.get("profile") or {}
        name = user.get("username") or username
        return {
            "username": name,
            "profile_url": f"{BASE_URL}/u/{name}/",
            "real_name": profile.get("realName"),
            "avatar": profile.get("userAvatar"),
            "ranking": profile.get("ranking"),
            "reputation": profile.get("reputation"),
            "stats": stats,
        }

    async def test_connection(self, username: str = "test") -> Dict[str, Any]:
        return await self.query(TEST_CONNECTION_QUERY, {"username": username}, operation_name="testConnection")


async def main():
    """Main entry point for running the LeetCode client from command line."""
    parser = argparse.ArgumentParser()
    parser.add_argument("--recent", type=str, metavar="USERNAME", help="Fetch recent accepted submissions")
    parser.add_argument("--limit", type=int, default=20, help="Number of submissions for --recent")
    parser.add_argument("--problem", type=str, metavar="SLUG", help="Fetch problem difficulty and tags")
    parser.add_argument("--submission", type=str, metavar="ID", help="Fetch submission detail")
    parser.add_argument("--profile", type=str, metavar="USERNAME", help="Fetch profile and solved counts")
    parser.add_argument("--test", action="store_true", help="Test the LeetCode API connection")
    args = parser.parse_args()

    async with LeetCodeClient() as client:
        if args.test:
            print(json.dumps(await client.test_connection(), indent=4))

        if args.recent:
            submissions = await client.fetch_recent_ac_submissions(args.recent, args.limit)
            print(json.dumps(submissions, indent=4, ensure_ascii=False))

        if args.problem:
            print(json.dumps(await client.fetch_problem_detail(args.problem), indent=4))

        if args.submission:
            leetcode_config = client.config
            detail = await client.fetch_submission_detail(
                args.submission,
                session=leetcode_config.session,
                csrf_token=leetcode_config.csrf_token,
            )
            print(json.dumps(detail, indent=4, ensure_ascii=False))

        if args.profile:
            print(json.dumps(await client.fetch_user_profile(args.profile), indent=4, ensure_ascii=False))


if __name__ == "__main__":
    asyncio.run(main())
