"""Application services."""

from tunebridge.application.services.conversion_service import ConversionService, SyncResult
from tunebridge.application.services.entity_lock import EntityLockRegistry
from tunebridge.application.services.follow_service import FollowResult, FollowService
from tunebridge.application.services.track_matching import (
    MatchingOutcome,
    TrackMatcher,
    TrackMatchingPool,
    build_jobs,
)

__all__ = [
    "ConversionService",
    "EntityLockRegistry",
    "FollowResult",
    "FollowService",
    "MatchingOutcome",
    "SyncResult",
    "TrackMatcher",
    "TrackMatchingPool",
    "build_jobs",
]
