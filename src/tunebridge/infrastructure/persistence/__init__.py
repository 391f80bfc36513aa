"""Persistence layer: ORM models, database and repositories."""

from tunebridge.infrastructure.persistence.database import Database
from tunebridge.infrastructure.persistence.models import (
    BackgroundJobModel,
    Base,
    FollowModel,
    FollowNotificationModel,
)
from tunebridge.infrastructure.persistence.repositories import (
    FollowNotificationRepository,
    FollowRepository,
)

__all__ = [
    "BackgroundJobModel",
    "Base",
    "Database",
    "FollowModel",
    "FollowNotificationModel",
    "FollowNotificationRepository",
    "FollowRepository",
]
