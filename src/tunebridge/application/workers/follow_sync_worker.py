"""Follow Sync Worker - re-checks followed playlists and notifies subscribers.

Hey future me - this is the loop that makes "follow" mean something!

Two halves:

1. run_sync_pass() (every sync_interval_seconds, or triggered externally)
   - loads follows that are due (see FollowRepository.list_due)
   - resolves each stored URL back into LinkInfo; if that fails the follow
     is marked FAILED and skipped until its cool-down passes
   - enqueues one durable FOLLOW_SYNC job per follow

2. _handle_follow_sync_job() / process_follow() (job queue workers)
   - ConversionService.sync_playlist() does the snapshot check under the
     per-entity lock and reconverts when needed
   - MISS      → converted + snapshot stored, NO notification (nothing to diff)
   - CHANGED   → one notification row per subscriber, inserted as one batch
   - UNCHANGED → nothing but the watermark
   - in every case updated_at advances so the follow drops out of the next pass

DEDUP KEY (known gap): by default each pass mints a fresh uuid as the job's
dedup key, so two passes inside the retention window enqueue the same entity
twice. The per-entity lock keeps the duplicates from racing, and the second
one just sees UNCHANGED. FOLLOW_DEDUPE_BY_ENTITY=true keys jobs by entity id
instead.
"""

import asyncio
import json
import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tunebridge.application.cache.conversion_cache import SnapshotStatus
from tunebridge.application.schemas import FollowTaskPayload
from tunebridge.application.services.conversion_service import ConversionService
from tunebridge.application.workers.job_queue import Job, JobType
from tunebridge.application.workers.persistent_job_queue import PersistentJobQueue
from tunebridge.config import FollowSettings
from tunebridge.domain.entities import FollowNotification
from tunebridge.domain.exceptions import DomainException, ValidationError
from tunebridge.domain.ports import ILinkResolver
from tunebridge.infrastructure.persistence.repositories import (
    FollowNotificationRepository,
    FollowRepository,
)

logger = logging.getLogger(__name__)


class FollowSyncWorker:
    """Schedules and processes follow syncs.

    Lifecycle:
    - register() hooks the job handler into the queue (before queue.start())
    - start() runs the pass loop until stop()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        job_queue: PersistentJobQueue,
        conversion_service: ConversionService,
        link_resolver: ILinkResolver,
        settings: FollowSettings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._job_queue = job_queue
        self._conversion = conversion_service
        self._resolver = link_resolver
        self._settings = settings or FollowSettings()
        self._running = False
        self._stats: dict[str, Any] = {
            "passes": 0,
            "last_pass_at": None,
            "enqueued_last_pass": 0,
            "failed_last_pass": 0,
            "notifications_sent": 0,
        }

    def register(self) -> None:
        """Register the FOLLOW_SYNC handler with the job queue."""
        self._job_queue.register_handler(JobType.FOLLOW_SYNC, self._handle_follow_sync_job)

    async def start(self) -> None:
        """Run sync passes until stop() is called."""
        self._running = True
        logger.info(
            f"FollowSyncWorker started (interval={self._settings.sync_interval_seconds}s)"
        )
        while self._running:
            try:
                await self.run_sync_pass()
            except Exception as e:
                # Next pass retries; one bad pass must not kill the loop.
                logger.exception(f"[SYNC] Sync pass failed: {e}")
            await asyncio.sleep(self._settings.sync_interval_seconds)

    def stop(self) -> None:
        """Signal the worker to stop."""
        self._running = False
        logger.info("FollowSyncWorker stopping...")

    # =========================================================================
    # SYNC PASS
    # =========================================================================

    async def run_sync_pass(self) -> int:
        """Enqueue one sync job per due follow.

        Returns:
            Number of jobs enqueued (deduplicated jobs count too)
        """
        payloads: list[FollowTaskPayload] = []
        failed = 0

        async with self._session_factory() as session:
            repo = FollowRepository(session)
            follows = await repo.list_due(
                min_resync=timedelta(seconds=self._settings.min_resync_seconds),
                failed_retry_after=timedelta(
                    seconds=self._settings.failed_retry_after_seconds
                ),
            )
            for follow in follows:
                try:
                    info = await self._resolver.resolve(follow.entity_url)
                except DomainException as e:
                    logger.warning(
                        f"[SYNC] Cannot resolve {follow.entity_url} for follow {follow.id}: "
                        f"{e.message}"
                    )
                    await repo.mark_failed(follow.id)
                    failed += 1
                    continue

                payloads.append(
                    FollowTaskPayload(
                        user=follow.id,
                        url=follow.entity_url,
                        entity_id=follow.entity_id,
                        platform=info.platform,
                        app=follow.app,
                        developer=follow.developer,
                    )
                )
            await session.commit()

        for payload in payloads:
            await self._job_queue.enqueue(
                JobType.FOLLOW_SYNC,
                payload.model_dump(),
                max_retries=self._settings.task_max_retries,
                dedup_key=self._dedup_key(payload),
                retention_seconds=self._settings.task_retention_seconds,
            )

        self._stats["passes"] += 1
        self._stats["last_pass_at"] = datetime.now(UTC)
        self._stats["enqueued_last_pass"] = len(payloads)
        self._stats["failed_last_pass"] = failed
        if payloads or failed:
            logger.info(f"[SYNC] Pass enqueued {len(payloads)} follow(s), {failed} failed")
        return len(payloads)

    def _dedup_key(self, payload: FollowTaskPayload) -> str:
        if self._settings.dedupe_by_entity:
            return f"follow_sync:{payload.platform}:{payload.entity_id}"
        return str(uuid.uuid4())

    # =========================================================================
    # PER-FOLLOW TASK
    # =========================================================================

    async def _handle_follow_sync_job(self, job: Job) -> dict[str, Any]:
        """Job handler: validate payload, then process_follow()."""
        try:
            payload = FollowTaskPayload.model_validate(job.payload)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid follow sync payload: {e}") from e

        status = await self.process_follow(payload)
        return {"entity_id": payload.entity_id, "status": status.value}

    async def process_follow(self, payload: FollowTaskPayload) -> SnapshotStatus:
        """Run change detection for one follow and fan out notifications.

        Raises:
            Whatever the conversion raises. The queue retries the job.
        """
        info = await self._resolver.resolve(payload.url)
        outcome = await self._conversion.sync_playlist(info)

        async with self._session_factory() as session:
            follows = FollowRepository(session)
            follow = await follows.get_by_entity_id(payload.entity_id)
            if follow is None:
                logger.info(f"[SYNC] Follow for {payload.entity_id} is gone, nothing to notify")
                return outcome.status

            inserted = 0
            if outcome.should_notify and outcome.conversion is not None:
                data = json.dumps(outcome.conversion.to_dict())
                notifications = [
                    FollowNotification(
                        subscriber=subscriber, entity_id=follow.entity_id, data=data
                    )
                    for subscriber in follow.subscribers
                ]
                inserted = await FollowNotificationRepository(session).add_batch(
                    notifications
                )

            await follows.touch(follow.entity_id)
            await session.commit()

        self._stats["notifications_sent"] += inserted
        logger.info(
            f"[SYNC] {payload.platform}:{payload.entity_id} {outcome.status.value}, "
            f"{inserted} notification(s)"
        )
        return outcome.status

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "running": self._running,
            "sync_interval": self._settings.sync_interval_seconds,
            "dedupe_by_entity": self._settings.dedupe_by_entity,
        }
