from typing import Any, Dict, List, Optional

import pytest

from leetcode import LeetCodeClient
from tracker.auth import AuthResolver
from tracker.solutions import SolutionViewer
from tracker.storage import TrackerStorage
from tracker.syncer import SolutionSyncer
from tracker.tracking import TrackingService
from utils.config import CrawlerHttpConfig, LeetCodeConfig, SyncConfig
from utils.database import TrackerDatabaseManager


def make_detail(submission_id: str, username: str = "alice", code: str = "print(1)", **overrides) -> Dict[str, Any]:
    detail = {
        "runtime": 40,
        "runtimeDisplay": "40 ms",
        "memory": 16000,
        "memoryDisplay": "16.1 MB",
        "code": code,
        "timestamp": 1700000000,
        "statusCode": 10,
        "user": {"username": username},
        "lang": {"name": "python3", "verboseName": "Python3"},
        "question": {
            "questionId": "1",
            "title": f"Problem {submission_id}",
            "titleSlug": f"problem-{submission_id}",
            "difficulty": "Easy",
        },
        "topicTags": [{"name": "Array", "slug": "array"}],
    }
    detail.update(overrides)
    return detail


def make_submission(submission_id: str, slug: Optional[str] = None, timestamp: int = 1700000000) -> Dict[str, Any]:
    slug = slug or f"problem-{submission_id}"
    return {
        "submission_id": submission_id,
        "title": f"Problem {submission_id}",
        "slug": slug,
        "timestamp": timestamp,
        "status": "Accepted",
        "language": "python3",
        "runtime": "40 ms",
        "memory": "16.1 MB",
        "submission_time": "2023-11-14T22:13:20+00:00",
    }


class FakeLeetCodeClient:
    """Stands in for ``LeetCodeClient``; responses and errors are keyed by id or slug."""

    def __init__(self):
        self.recent: List[Dict[str, Any]] = []
        self.recent_error: Optional[Exception] = None
        self.problems: Dict[str, Any] = {}
        self.details: Dict[str, Any] = {}
        self.profiles: Dict[str, Any] = {}
        self.detail_calls: List[Dict[str, Any]] = []
        self.problem_calls: List[str] = []

    async def fetch_recent_ac_submissions(self, username: str, limit: int = 20):
        if self.recent_error is not None:
            raise self.recent_error
        return list(self.recent[:limit])

    async def fetch_problem_detail(self, slug: str):
        self.problem_calls.append(slug)
        value = self.problems.get(slug)
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch_submission_detail(self, submission_id, session=None, csrf_token=None):
        self.detail_calls.append({"submission_id": str(submission_id), "session": session, "csrf_token": csrf_token})
        value = self.details.get(str(submission_id))
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch_user_profile(self, username: str):
        value = self.profiles.get(username.lower())
        if isinstance(value, Exception):
            raise value
        return value


@pytest.fixture
def db(tmp_path):
    manager = TrackerDatabaseManager(db_path=str(tmp_path / "tracker.db"))
    yield manager
    manager.close()


@pytest.fixture
def storage(db):
    return TrackerStorage(db)


@pytest.fixture
def fake_client():
    return FakeLeetCodeClient()


@pytest.fixture
def leetcode_config():
    return LeetCodeConfig(session="default-session", csrf_token="default-csrf", max_retries=2, retry_delay=0)


@pytest.fixture
def sync_config():
    return SyncConfig(submission_delay=0, problem_detail_delay=0, user_delay=0)


@pytest.fixture
def viewer(fake_client, storage, leetcode_config):
    return SolutionViewer(fake_client, storage, AuthResolver.from_config(storage, leetcode_config))


@pytest.fixture
def syncer(fake_client, storage, viewer, sync_config):
    return SolutionSyncer(fake_client, storage, viewer, sync_config)


@pytest.fixture
def tracking(fake_client, storage, viewer):
    return TrackingService(fake_client, storage, viewer)


@pytest.fixture
def client(leetcode_config):
    return LeetCodeClient(leetcode_config, CrawlerHttpConfig())
