"""SQLAlchemy ORM models for tunebridge."""

import uuid
from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy import JSON, Index, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# SQLite hands datetimes back without tzinfo even when we stored UTC. Run
# anything read from the DB through this before comparing with utc_now().
def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# FOLLOWS - playlist subscriptions watched by the sync pass
# =============================================================================
# Hey future me - entity_id is UNIQUE. That constraint is what keeps "one
# follow per playlist" true when two first-follows race: the loser gets an
# IntegrityError and FollowService retries it as a subscriber upsert.
#
# subscribers is a JSON list of uuid strings. Postgres could use uuid[], but
# JSON works on SQLite too and the list is capped at 20 anyway.
# =============================================================================


class FollowModel(Base):
    """A followed playlist and its subscribers."""

    __tablename__ = "follows"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    developer: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    app: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    entity_url: Mapped[str] = mapped_column(Text, nullable=False)
    subscribers: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    # active | failed
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )
    # Sync watermark; the pass picks follows whose updated_at is old enough.
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now, index=True
    )

    __table_args__ = (Index("ix_follows_status_updated", "status", "updated_at"),)


class FollowNotificationModel(Base):
    """One "playlist changed" notification for one subscriber."""

    __tablename__ = "follow_notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    notification_id: Mapped[str] = mapped_column(
        String(36), nullable=False, unique=True, default=lambda: str(uuid.uuid4())
    )
    subscriber: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    # Serialized PlaylistConversion (JSON text)
    data: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )


# =============================================================================
# BACKGROUND JOBS - durable task queue
# =============================================================================


class BackgroundJobModel(Base):
    """Persistent job storage for background workers."""

    __tablename__ = "background_jobs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    job_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    # pending, running, completed, failed, cancelled
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    # Jobs sharing a dedup_key inside the retention window are enqueued once.
    dedup_key: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    retain_until: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    result: Mapped[str | None] = mapped_column(Text, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    retries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    started_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    locked_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    next_run_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True, index=True
    )

    __table_args__ = (
        Index("ix_jobs_pending", "status", "priority", "created_at"),
        Index("ix_jobs_dedup", "dedup_key", "retain_until"),
    )
