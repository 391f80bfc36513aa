"""Durable follow-sync queue on top of the in-memory JobQueue.

Hey future me - every sync task is a row in background_jobs BEFORE it is put
on the asyncio queue. A restart in the middle of a pass then loses nothing:
recover_jobs() reloads whatever was still pending.

    run_sync_pass() ─► enqueue() ─► INSERT row ─► memory queue ─► worker
                                                                   │
                                    row status/result/error ◄──────┘

Dedup: a dedup_key blocks new rows while an older row with the same key is
pending/running, or finished but still inside its retain_until window. The
caller returns the older job's id instead. FollowSettings.dedupe_by_entity
decides whether the key is per run (uuid) or per playlist.

Claiming: a worker only runs a job if it flips the row from pending+unlocked
to running+locked_by=<worker_id>. Zero rows updated = another process won.
"""

import json
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tunebridge.application.workers.job_queue import (
    FINISHED_HISTORY,
    Job,
    JobQueue,
    JobStatus,
    JobType,
)
from tunebridge.infrastructure.persistence.models import BackgroundJobModel

logger = logging.getLogger(__name__)

LIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.RUNNING.value)
FINISHED_STATUSES = (
    JobStatus.COMPLETED.value,
    JobStatus.FAILED.value,
    JobStatus.CANCELLED.value,
)


@dataclass
class PersistentJobQueueStats:
    total_jobs: int = 0
    deduplicated_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    recovered_jobs: int = 0


class PersistentJobQueue(JobQueue):
    """JobQueue whose every state change is mirrored to background_jobs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_concurrent_jobs: int = 5,
        worker_id: str | None = None,
        lock_timeout_seconds: int = 300,
        finished_history: int = FINISHED_HISTORY,
    ) -> None:
        super().__init__(max_concurrent_jobs, finished_history)
        self._session_factory = session_factory
        self._worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        # RUNNING rows locked longer than this belong to a dead process.
        self._lock_timeout = timedelta(seconds=lock_timeout_seconds)
        self._stats = PersistentJobQueueStats()

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def stats(self) -> PersistentJobQueueStats:
        return self._stats

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session, session.begin():
            yield session

    async def _update_row(self, job_id: str, *conditions: Any, **values: Any) -> int:
        """UPDATE one job row; returns the number of rows changed (0 or 1)."""
        async with self._transaction() as session:
            result = await session.execute(
                update(BackgroundJobModel)
                .where(BackgroundJobModel.id == job_id, *conditions)
                .values(**values)
            )
        return result.rowcount or 0

    # =========================================================================
    # ENQUEUE / RECOVERY
    # =========================================================================

    async def enqueue(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        max_retries: int = 3,
        priority: int = 0,
        dedup_key: str | None = None,
        retention_seconds: int | None = None,
    ) -> str:
        """Persist and queue a job, or return the id of the live job holding dedup_key.

        retention_seconds keeps the key blocked after the job finishes; None
        frees it as soon as the job is no longer pending or running.
        """
        now = datetime.now(UTC)
        job = Job(
            id=str(uuid.uuid4()),
            job_type=job_type,
            payload=payload,
            max_retries=max_retries,
            priority=priority,
            created_at=now,
        )

        async with self._transaction() as session:
            if dedup_key:
                holder = await session.scalar(
                    select(BackgroundJobModel.id)
                    .where(
                        BackgroundJobModel.dedup_key == dedup_key,
                        or_(
                            BackgroundJobModel.status.in_(LIVE_STATUSES),
                            BackgroundJobModel.retain_until > now,
                        ),
                    )
                    .limit(1)
                )
                if holder is not None:
                    self._stats.deduplicated_jobs += 1
                    logger.debug(f"[JOBS] {dedup_key} already held by job {holder}")
                    return holder

            session.add(
                BackgroundJobModel(
                    id=job.id,
                    job_type=job_type.value,
                    status=JobStatus.PENDING.value,
                    priority=priority,
                    payload=json.dumps(payload),
                    dedup_key=dedup_key,
                    retain_until=(
                        now + timedelta(seconds=retention_seconds)
                        if retention_seconds
                        else None
                    ),
                    max_retries=max_retries,
                    created_at=now,
                )
            )

        self._jobs[job.id] = job
        await self._put(job)
        self._stats.total_jobs += 1
        logger.debug(f"[JOBS] Queued {job_type.value} job {job.id}")
        return job.id

    async def recover_jobs(self) -> int:
        """Release stale locks, then queue every pending row not yet in memory.

        Run before start() so recovered jobs don't race fresh ones.
        """
        stale_before = datetime.now(UTC) - self._lock_timeout

        async with self._transaction() as session:
            released = await session.execute(
                update(BackgroundJobModel)
                .where(
                    BackgroundJobModel.status == JobStatus.RUNNING.value,
                    BackgroundJobModel.locked_at < stale_before,
                )
                .values(
                    status=JobStatus.PENDING.value,
                    locked_by=None,
                    locked_at=None,
                    started_at=None,
                )
            )
            rows = (
                await session.scalars(
                    select(BackgroundJobModel)
                    .where(BackgroundJobModel.status == JobStatus.PENDING.value)
                    .order_by(
                        BackgroundJobModel.priority.desc(), BackgroundJobModel.created_at
                    )
                )
            ).all()

        if released.rowcount:
            logger.warning(f"[JOBS] Released {released.rowcount} job(s) locked by dead workers")

        recovered = 0
        for row in rows:
            if row.id in self._jobs:
                continue
            try:
                job = Job(
                    id=row.id,
                    job_type=JobType(row.job_type),
                    payload=json.loads(row.payload),
                    priority=row.priority,
                    retries=row.retries,
                    max_retries=row.max_retries,
                    error=row.error,
                )
            except ValueError as e:
                logger.error(f"[JOBS] Skipping unreadable job {row.id}: {e}")
                continue
            self._jobs[job.id] = job
            await self._put(job)
            recovered += 1

        self._stats.recovered_jobs += recovered
        return recovered

    # =========================================================================
    # STATE TRANSITIONS
    # =========================================================================

    async def _mark_job_running(self, job: Job) -> bool:
        now = datetime.now(UTC)
        claimed = await self._update_row(
            job.id,
            BackgroundJobModel.status == JobStatus.PENDING.value,
            BackgroundJobModel.locked_by.is_(None),
            status=JobStatus.RUNNING.value,
            locked_by=self._worker_id,
            locked_at=now,
            started_at=now,
        )
        if not claimed:
            return False
        job.mark_running()
        return True

    async def complete_job(self, job_id: str, result: Any = None) -> None:
        await self._update_row(
            job_id,
            status=JobStatus.COMPLETED.value,
            result=None if result is None else json.dumps(result),
            completed_at=datetime.now(UTC),
            locked_by=None,
            locked_at=None,
        )
        await super().complete_job(job_id, result)
        self._stats.completed_jobs += 1

    async def fail_job(self, job_id: str, error: str) -> None:
        """Store the error; the row goes back to pending while retries remain.

        The retry delay (2**attempt seconds) is the same one the memory side
        schedules, so next_run_at matches when the job is actually requeued.
        """
        now = datetime.now(UTC)
        async with self._transaction() as session:
            row = await session.get(BackgroundJobModel, job_id)
            if row is None:
                logger.warning(f"[JOBS] fail_job for unknown job {job_id}")
                return
            row.retries += 1
            row.error = error
            row.locked_by = None
            row.locked_at = None
            if row.retries < row.max_retries:
                row.status = JobStatus.PENDING.value
                row.next_run_at = now + timedelta(seconds=2**row.retries)
            else:
                row.status = JobStatus.FAILED.value
                row.completed_at = now
            attempts, final = row.retries, row.status == JobStatus.FAILED.value

        if final:
            self._stats.failed_jobs += 1
            logger.warning(f"[JOBS] Job {job_id} gave up after {attempts} attempt(s): {error}")
        else:
            logger.info(f"[JOBS] Job {job_id} attempt {attempts} failed, will retry")

        await super().fail_job(job_id, error)

    async def cancel_job(self, job_id: str) -> bool:
        if not await super().cancel_job(job_id):
            return False
        await self._update_row(
            job_id,
            BackgroundJobModel.status == JobStatus.PENDING.value,
            status=JobStatus.CANCELLED.value,
            completed_at=datetime.now(UTC),
        )
        return True

    # =========================================================================
    # HOUSEKEEPING
    # =========================================================================

    async def purge_finished(self, keep_days: int = 7) -> int:
        """Delete finished rows that no longer block a dedup key.

        A row goes once its retain_until has passed, or, without one, once it
        finished more than keep_days ago.
        """
        now = datetime.now(UTC)
        async with self._transaction() as session:
            result = await session.execute(
                delete(BackgroundJobModel).where(
                    BackgroundJobModel.status.in_(FINISHED_STATUSES),
                    or_(
                        BackgroundJobModel.retain_until <= now,
                        (BackgroundJobModel.retain_until.is_(None))
                        & (BackgroundJobModel.completed_at < now - timedelta(days=keep_days)),
                    ),
                )
            )
        purged = result.rowcount or 0
        if purged:
            logger.info(f"[JOBS] Purged {purged} finished job(s)")
        return purged

    async def count_jobs(
        self, job_type: JobType | None = None, status: JobStatus | None = None
    ) -> int:
        stmt = select(func.count()).select_from(BackgroundJobModel)
        if job_type is not None:
            stmt = stmt.where(BackgroundJobModel.job_type == job_type.value)
        if status is not None:
            stmt = stmt.where(BackgroundJobModel.status == status.value)
        async with self._session_factory() as session:
            return (await session.scalar(stmt)) or 0
