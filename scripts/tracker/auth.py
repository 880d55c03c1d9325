"""Resolve which LeetCode session to present when fetching a submission."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

from utils.config import LeetCodeConfig
from utils.logger import get_sync_logger

from .storage import TrackerStorage, normalize_username

logger = get_sync_logger()

SOURCE_TRACKED_OVERRIDE = "tracked-override"
SOURCE_PROCESS_DEFAULT = "process-default"
SOURCE_NONE = "none"


def sanitize_token(token: Optional[str]) -> Optional[str]:
    if not token:
        return None
    token = token.strip()
    return token or None


@dataclass(frozen=True)
class LeetCodeCredentials:
    session: Optional[str] = None
    csrf_token: Optional[str] = None
    source: str = SOURCE_NONE
    username: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None


class CredentialProvider(ABC):
    @abstractmethod
    async def resolve(self, username: Optional[str]) -> Optional[LeetCodeCredentials]:
        """Return credentials, or None to let the next provider try."""


class TrackedUserCredentialProvider(CredentialProvider):
    """Session stored on a tracking relationship for the username, newest first.

    Looks across all owning accounts: the submission belongs to the LeetCode
    user, so any stored session for that user is the best candidate.
    """

    def __init__(self, storage: TrackerStorage, fallback_csrf_token: Optional[str] = None):
        self.storage = storage
        self.fallback_csrf_token = sanitize_token(fallback_csrf_token)

    async def resolve(self, username: Optional[str]) -> Optional[LeetCodeCredentials]:
        if not normalize_username(username):
            return None
        record = await self.storage.find_latest_session(username)
        if not record:
            return None
        session = sanitize_token(record.get("leetcode_session"))
        if not session:
            return None
        return LeetCodeCredentials(
            session=session,
            csrf_token=sanitize_token(record.get("leetcode_csrf_token")) or self.fallback_csrf_token,
            source=SOURCE_TRACKED_OVERRIDE,
            username=record.get("username"),
        )


class DefaultCredentialProvider(CredentialProvider):
    """Process-wide session configured at startup."""

    def __init__(self, session: Optional[str], csrf_token: Optional[str]):
        self.session = sanitize_token(session)
        self.csrf_token = sanitize_token(csrf_token)

    async def resolve(self, username: Optional[str]) -> Optional[LeetCodeCredentials]:
        if not self.session:
            return None
        return LeetCodeCredentials(
            session=self.session,
            csrf_token=self.csrf_token,
            source=SOURCE_PROCESS_DEFAULT,
            username=username,
        )


class AuthResolver:
    """Evaluates credential providers in order; the first non-empty result wins."""

    def __init__(self, providers: Sequence[CredentialProvider]):
        self.providers = list(providers)

    @classmethod
    def from_config(cls, storage: TrackerStorage, config: LeetCodeConfig) -> "AuthResolver":
        return cls(
            [
                TrackedUserCredentialProvider(storage, fallback_csrf_token=config.csrf_token),
                DefaultCredentialProvider(config.session, config.csrf_token),
            ]
        )

    async def resolve(self, username: Optional[str] = None) -> LeetCodeCredentials:
        for provider in self.providers:
            credentials = await provider.resolve(username)
            if credentials is not None:
                logger.debug(f"Resolved LeetCode credentials for {username or '<none>'} from {credentials.source}")
                return credentials
        # Callers proceed unauthenticated; private submissions will not resolve
        logger.debug(f"No LeetCode credentials available for {username or '<none>'}")
        return LeetCodeCredentials(source=SOURCE_NONE, username=username)
