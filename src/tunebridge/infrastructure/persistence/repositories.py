"""Repository implementations for follows and follow notifications."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from sqlalchemy import and_, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tunebridge.domain.entities import (
    MAX_SUBSCRIBERS,
    FollowNotification,
    FollowRecord,
    FollowStatus,
)
from tunebridge.domain.exceptions import NotFoundError

from .models import (
    FollowModel,
    FollowNotificationModel,
    ensure_utc_aware,
    utc_now,
)


class FollowRepository:
    """SQLAlchemy repository for FollowRecord.

    Hey future me - this repo never commits! The caller owns the transaction
    (FollowService, FollowSyncWorker), so a follow + its subscriber upserts
    land atomically or not at all.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    def _model_to_entity(self, model: FollowModel) -> FollowRecord:
        return FollowRecord(
            id=model.id,
            developer=model.developer,
            app=model.app,
            entity_id=model.entity_id,
            entity_url=model.entity_url,
            subscribers=list(model.subscribers or []),
            status=FollowStatus(model.status),
            created_at=ensure_utc_aware(model.created_at),
            updated_at=ensure_utc_aware(model.updated_at),
        )

    async def add(self, follow: FollowRecord) -> None:
        """Insert a new follow.

        Flushes immediately so a duplicate entity_id raises IntegrityError
        here, where the caller can still handle it.
        """
        model = FollowModel(
            id=follow.id,
            developer=follow.developer,
            app=follow.app,
            entity_id=follow.entity_id,
            entity_url=follow.entity_url,
            subscribers=[str(s) for s in follow.subscribers],
            status=follow.status.value,
            created_at=follow.created_at,
            updated_at=follow.updated_at,
        )
        self.session.add(model)
        await self.session.flush()

    async def get_by_entity_id(self, entity_id: str) -> FollowRecord | None:
        stmt = select(FollowModel).where(FollowModel.entity_id == entity_id)
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._model_to_entity(model) if model else None

    async def get_by_id(self, follow_id: str) -> FollowRecord | None:
        model = await self.session.get(FollowModel, follow_id)
        return self._model_to_entity(model) if model else None

    # Yo, the row is read FOR UPDATE (a no-op on SQLite, a real row lock on
    # Postgres) so two requests adding different subscribers can't both read
    # the old list and overwrite each other's append.
    async def add_subscriber(
        self, entity_id: str, subscriber: uuid.UUID, limit: int = MAX_SUBSCRIBERS
    ) -> bool:
        """Add one subscriber to a follow's set.

        Returns:
            True if added, False if it was already there (zero rows touched)

        Raises:
            NotFoundError: No follow for entity_id
            TooManySubscribersError: The set is already at limit
        """
        stmt = (
            select(FollowModel)
            .where(FollowModel.entity_id == entity_id)
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        if model is None:
            raise NotFoundError("follow", entity_id)

        follow = self._model_to_entity(model)
        if not follow.add_subscriber(subscriber, limit):
            return False

        # JSON columns don't track in-place mutation; assign a new list.
        model.subscribers = [str(s) for s in follow.subscribers]
        await self.session.flush()
        return True

    async def list_due(
        self,
        min_resync: timedelta,
        failed_retry_after: timedelta,
        limit: int = 500,
        now: datetime | None = None,
    ) -> list[FollowRecord]:
        """Follows the sync pass should process now.

        Eligible: has entity id and url, and
        - active and not touched within min_resync, or
        - failed and not touched within failed_retry_after
        Oldest watermark first.
        """
        now = now or utc_now()
        stmt = (
            select(FollowModel)
            .where(
                FollowModel.entity_id != "",
                FollowModel.entity_url != "",
                or_(
                    and_(
                        FollowModel.status == FollowStatus.ACTIVE.value,
                        FollowModel.updated_at <= now - min_resync,
                    ),
                    and_(
                        FollowModel.status == FollowStatus.FAILED.value,
                        FollowModel.updated_at <= now - failed_retry_after,
                    ),
                ),
            )
            .order_by(FollowModel.updated_at)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [self._model_to_entity(m) for m in result.scalars().all()]

    async def touch(self, entity_id: str) -> bool:
        """Advance updated_at and mark the follow active again."""
        result = await self.session.execute(
            update(FollowModel)
            .where(FollowModel.entity_id == entity_id)
            .values(updated_at=utc_now(), status=FollowStatus.ACTIVE.value)
        )
        return (result.rowcount or 0) > 0

    async def mark_failed(self, follow_id: str) -> None:
        await self.session.execute(
            update(FollowModel)
            .where(FollowModel.id == follow_id)
            .values(status=FollowStatus.FAILED.value, updated_at=utc_now())
        )


class FollowNotificationRepository:
    """SQLAlchemy repository for follow notifications."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def add_batch(self, notifications: list[FollowNotification]) -> int:
        """Insert all notifications in one executemany round-trip.

        Returns:
            Number of rows inserted
        """
        if not notifications:
            return 0
        rows = [
            {
                "notification_id": str(n.notification_id),
                "subscriber": str(n.subscriber),
                "entity_id": n.entity_id,
                "data": n.data,
                "created_at": n.created_at,
            }
            for n in notifications
        ]
        await self.session.execute(insert(FollowNotificationModel), rows)
        return len(rows)

    async def list_for_subscriber(
        self, subscriber: uuid.UUID, limit: int = 50
    ) -> list[FollowNotification]:
        """Newest notifications for one subscriber."""
        stmt = (
            select(FollowNotificationModel)
            .where(FollowNotificationModel.subscriber == str(subscriber))
            .order_by(FollowNotificationModel.id.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [
            FollowNotification(
                subscriber=uuid.UUID(m.subscriber),
                entity_id=m.entity_id,
                data=m.data,
                notification_id=uuid.UUID(m.notification_id),
                created_at=ensure_utc_aware(m.created_at),
            )
            for m in result.scalars().all()
        ]

    async def count_for_entity(self, entity_id: str) -> int:
        stmt = select(func.count()).select_from(FollowNotificationModel).where(
            FollowNotificationModel.entity_id == entity_id
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one())
