"""Domain entities."""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from tunebridge.domain.exceptions import TooManySubscribersError, ValidationError

# Hard cap on subscribers per followed entity.
MAX_SUBSCRIBERS = 20


class FollowStatus(str, Enum):
    """Lifecycle state of a follow."""

    ACTIVE = "active"
    # Stored URL couldn't be resolved during a sync pass; retried after a cool-down.
    FAILED = "failed"


def parse_subscribers(values: list[str] | list[uuid.UUID]) -> list[uuid.UUID]:
    """Turn raw subscriber ids into UUIDs, dropping duplicates but keeping order.

    Raises:
        ValidationError: If any value isn't a valid UUID
    """
    parsed: list[uuid.UUID] = []
    for raw in values:
        try:
            value = raw if isinstance(raw, uuid.UUID) else uuid.UUID(str(raw))
        except ValueError as e:
            raise ValidationError(f"Invalid subscriber id: {raw!r}") from e
        if value not in parsed:
            parsed.append(value)
    return parsed


@dataclass
class FollowRecord:
    """Persisted subscription of a set of subscribers to one playlist entity.

    Hey future me - one record per entity_id, ever. The first follow creates
    it, later follows only grow the subscriber set. Subscribers have set
    semantics (no dupes) and the set is capped at MAX_SUBSCRIBERS.
    updated_at is the sync watermark - the sync pass uses it to decide who
    is due again.
    """

    developer: str
    app: str
    entity_id: str
    entity_url: str
    subscribers: list[uuid.UUID] = field(default_factory=list)
    status: FollowStatus = FollowStatus.ACTIVE
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        if not self.entity_id:
            raise ValidationError("FollowRecord.entity_id cannot be empty")
        self.subscribers = parse_subscribers(self.subscribers)
        if len(self.subscribers) > MAX_SUBSCRIBERS:
            raise TooManySubscribersError(len(self.subscribers), MAX_SUBSCRIBERS)

    def has_subscriber(self, subscriber: uuid.UUID) -> bool:
        return subscriber in self.subscribers

    def add_subscriber(
        self, subscriber: uuid.UUID, limit: int = MAX_SUBSCRIBERS
    ) -> bool:
        """Add a subscriber, keeping the set within limit (never above MAX_SUBSCRIBERS).

        Returns:
            True if added, False if already present

        Raises:
            TooManySubscribersError: If the set is already at the limit
        """
        if subscriber in self.subscribers:
            return False
        cap = min(limit, MAX_SUBSCRIBERS)
        if len(self.subscribers) >= cap:
            raise TooManySubscribersError(len(self.subscribers) + 1, cap)
        self.subscribers.append(subscriber)
        return True

    def touch(self) -> None:
        """Advance the sync watermark."""
        self.updated_at = datetime.now(UTC)

    def mark_failed(self) -> None:
        self.status = FollowStatus.FAILED
        self.touch()


@dataclass
class FollowNotification:
    """Notification telling one subscriber that a followed playlist changed.

    data is the serialized PlaylistConversion (JSON text), stored as-is so
    the consumer gets exactly what the sync produced.
    """

    subscriber: uuid.UUID
    entity_id: str
    data: str
    notification_id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


__all__ = [
    "MAX_SUBSCRIBERS",
    "FollowNotification",
    "FollowRecord",
    "FollowStatus",
    "parse_subscribers",
]
