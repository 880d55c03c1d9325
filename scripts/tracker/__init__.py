"""Submission sync and solution caching for tracked LeetCode users."""

from .auth import AuthResolver, LeetCodeCredentials
from .scheduler import AutoSyncScheduler
from .solutions import SolutionViewer
from .storage import TrackerStorage
from .syncer import SolutionSyncer
from .tracking import TrackingError, TrackingService

__all__ = [
    "AuthResolver",
    "AutoSyncScheduler",
    "LeetCodeCredentials",
    "SolutionSyncer",
    "SolutionViewer",
    "TrackerStorage",
    "TrackingError",
    "TrackingService",
]
