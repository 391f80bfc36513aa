"""Tests for FollowSyncWorker.

Covers the sync pass (due follows → durable jobs) and the per-follow task
(snapshot check → notifications → watermark) against a real in-memory DB.
"""

import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import FakePlatformService, StaticLinkResolver, playlist_link
from sqlalchemy import update

from tunebridge.application.cache.conversion_cache import SnapshotStatus
from tunebridge.application.schemas import FollowTaskPayload
from tunebridge.application.services.conversion_service import ConversionService
from tunebridge.application.services.follow_service import FollowService
from tunebridge.application.workers.follow_sync_worker import FollowSyncWorker
from tunebridge.application.workers.job_queue import Job, JobType
from tunebridge.application.workers.persistent_job_queue import PersistentJobQueue
from tunebridge.config import FollowSettings
from tunebridge.domain.entities import FollowStatus
from tunebridge.domain.exceptions import ValidationError
from tunebridge.infrastructure.persistence import (
    FollowModel,
    FollowNotificationRepository,
    FollowRepository,
)
from tunebridge.infrastructure.persistence.models import utc_now

# Hey future me - these tests verify the follow lifecycle:
# 1. First sync of a never-cached playlist stores the snapshot, notifies nobody
# 2. A changed marker fans out one notification per subscriber
# 3. Same marker again: no new rows, but updated_at still advances
# 4. Unresolvable URLs mark the follow failed instead of killing the pass

URL = "https://open.spotify.test/playlist/pl-1"
SUBSCRIBERS = [uuid.UUID(int=1), uuid.UUID(int=2)]


class TestFollowSyncWorker:
    """Test the per-follow sync task."""

    @pytest.fixture
    def resolver(self) -> StaticLinkResolver:
        return StaticLinkResolver({URL: playlist_link()})

    @pytest.fixture
    def job_queue(self) -> AsyncMock:
        queue = AsyncMock(spec=PersistentJobQueue)
        queue.register_handler = MagicMock()
        return queue

    @pytest.fixture
    def settings(self) -> FollowSettings:
        return FollowSettings(min_resync_seconds=0)

    @pytest.fixture
    def worker(
        self,
        session_factory,
        job_queue: AsyncMock,
        conversion_service: ConversionService,
        resolver: StaticLinkResolver,
        settings: FollowSettings,
    ) -> FollowSyncWorker:
        return FollowSyncWorker(
            session_factory=session_factory,
            job_queue=job_queue,
            conversion_service=conversion_service,
            link_resolver=resolver,
            settings=settings,
        )

    @pytest.fixture
    async def follow(self, session_factory):
        result = await FollowService(session_factory).follow_playlist(
            "dev-1", "app-1", URL, playlist_link(), SUBSCRIBERS
        )
        return result.follow

    def _payload(self, follow) -> FollowTaskPayload:
        return FollowTaskPayload(
            user=follow.id,
            url=URL,
            entity_id=follow.entity_id,
            platform="spotify",
            app="app-1",
            developer="dev-1",
        )

    async def _notification_count(self, session_factory) -> int:
        async with session_factory() as session:
            return await FollowNotificationRepository(session).count_for_entity("pl-1")

    async def _backdate(self, session_factory, hours: int = 1) -> None:
        async with session_factory() as session:
            await session.execute(
                update(FollowModel).values(updated_at=utc_now() - timedelta(hours=hours))
            )
            await session.commit()

    async def _follow_state(self, session_factory):
        async with session_factory() as session:
            return await FollowRepository(session).get_by_entity_id("pl-1")

    def test_register_hooks_handler(self, worker: FollowSyncWorker, job_queue) -> None:
        worker.register()
        job_queue.register_handler.assert_called_once()
        assert job_queue.register_handler.call_args.args[0] == JobType.FOLLOW_SYNC

    def test_stop(self, worker: FollowSyncWorker) -> None:
        worker._running = True
        worker.stop()
        assert worker._running is False

    @pytest.mark.asyncio
    async def test_first_sync_stores_snapshot_without_notifying(
        self, worker, follow, session_factory, cache
    ) -> None:
        status = await worker.process_follow(self._payload(follow))

        assert status == SnapshotStatus.MISS
        assert await cache.get_snapshot("spotify", "pl-1") == "v1"
        assert await self._notification_count(session_factory) == 0

    @pytest.mark.asyncio
    async def test_changed_marker_notifies_every_subscriber(
        self, worker, follow, session_factory, source_service: FakePlatformService
    ) -> None:
        await worker.process_follow(self._payload(follow))
        source_service.meta.last_updated = "v2"

        status = await worker.process_follow(self._payload(follow))

        assert status == SnapshotStatus.CHANGED
        async with session_factory() as session:
            repo = FollowNotificationRepository(session)
            assert await repo.count_for_entity("pl-1") == 2
            notes = await repo.list_for_subscriber(SUBSCRIBERS[0])
        assert len(notes) == 1
        assert '"target_platform": "deezer"' in notes[0].data
        assert worker.get_stats()["notifications_sent"] == 2

    @pytest.mark.asyncio
    async def test_unchanged_marker_only_moves_watermark(
        self, worker, follow, session_factory, source_service: FakePlatformService
    ) -> None:
        await worker.process_follow(self._payload(follow))
        source_service.meta.last_updated = "v2"
        await worker.process_follow(self._payload(follow))
        await self._backdate(session_factory)
        before = await self._follow_state(session_factory)

        status = await worker.process_follow(self._payload(follow))

        after = await self._follow_state(session_factory)
        assert status == SnapshotStatus.UNCHANGED
        assert await self._notification_count(session_factory) == 2
        assert after.updated_at > before.updated_at

    @pytest.mark.asyncio
    async def test_deleted_follow_is_skipped(
        self, worker, follow, session_factory
    ) -> None:
        async with session_factory() as session:
            await session.execute(FollowModel.__table__.delete())
            await session.commit()

        status = await worker.process_follow(self._payload(follow))

        assert status == SnapshotStatus.MISS
        assert await self._notification_count(session_factory) == 0

    @pytest.mark.asyncio
    async def test_job_handler_validates_payload(self, worker) -> None:
        job = Job(id="j1", job_type=JobType.FOLLOW_SYNC, payload={"url": URL})

        with pytest.raises(ValidationError):
            await worker._handle_follow_sync_job(job)

    @pytest.mark.asyncio
    async def test_job_handler_returns_status(self, worker, follow) -> None:
        job = Job(
            id="j1",
            job_type=JobType.FOLLOW_SYNC,
            payload=self._payload(follow).model_dump(),
        )

        result = await worker._handle_follow_sync_job(job)

        assert result == {"entity_id": "pl-1", "status": "miss"}


class TestSyncPass:
    """Test run_sync_pass() scheduling."""

    @pytest.fixture
    def job_queue(self) -> AsyncMock:
        queue = AsyncMock(spec=PersistentJobQueue)
        queue.enqueue = AsyncMock(return_value="job-id")
        return queue

    def _worker(
        self, session_factory, job_queue, conversion_service, resolver, **settings
    ) -> FollowSyncWorker:
        return FollowSyncWorker(
            session_factory=session_factory,
            job_queue=job_queue,
            conversion_service=conversion_service,
            link_resolver=resolver,
            settings=FollowSettings(min_resync_seconds=0, **settings),
        )

    async def _follow(self, session_factory, url: str = URL) -> str:
        result = await FollowService(session_factory).follow_playlist(
            "dev-1", "app-1", url, playlist_link(), SUBSCRIBERS
        )
        return result.follow.id

    @pytest.mark.asyncio
    async def test_enqueues_one_job_per_due_follow(
        self, session_factory, job_queue, conversion_service
    ) -> None:
        follow_id = await self._follow(session_factory)
        worker = self._worker(
            session_factory, job_queue, conversion_service,
            StaticLinkResolver({URL: playlist_link()}),
        )

        assert await worker.run_sync_pass() == 1

        job_queue.enqueue.assert_awaited_once()
        args, kwargs = job_queue.enqueue.call_args
        assert args[0] == JobType.FOLLOW_SYNC
        assert args[1]["user"] == follow_id
        assert args[1]["entity_id"] == "pl-1"
        assert kwargs["retention_seconds"] == 3600

    @pytest.mark.asyncio
    async def test_recently_synced_follows_are_skipped(
        self, session_factory, job_queue, conversion_service
    ) -> None:
        await self._follow(session_factory)
        worker = FollowSyncWorker(
            session_factory=session_factory,
            job_queue=job_queue,
            conversion_service=conversion_service,
            link_resolver=StaticLinkResolver({URL: playlist_link()}),
            settings=FollowSettings(min_resync_seconds=600),
        )

        assert await worker.run_sync_pass() == 0
        job_queue.enqueue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unresolvable_url_marks_follow_failed(
        self, session_factory, job_queue, conversion_service
    ) -> None:
        follow_id = await self._follow(session_factory)
        worker = self._worker(
            session_factory, job_queue, conversion_service, StaticLinkResolver()
        )

        assert await worker.run_sync_pass() == 0

        async with session_factory() as session:
            follow = await FollowRepository(session).get_by_id(follow_id)
        assert follow is not None
        assert follow.status == FollowStatus.FAILED
        assert worker.get_stats()["failed_last_pass"] == 1

    @pytest.mark.asyncio
    async def test_failed_follow_waits_for_cooldown(
        self, session_factory, job_queue, conversion_service
    ) -> None:
        await self._follow(session_factory)
        failing = self._worker(
            session_factory, job_queue, conversion_service, StaticLinkResolver()
        )
        await failing.run_sync_pass()

        worker = self._worker(
            session_factory, job_queue, conversion_service,
            StaticLinkResolver({URL: playlist_link()}),
        )

        assert await worker.run_sync_pass() == 0

    @pytest.mark.asyncio
    async def test_default_dedup_key_is_fresh_every_pass(
        self, session_factory, job_queue, conversion_service
    ) -> None:
        await self._follow(session_factory)
        worker = self._worker(
            session_factory, job_queue, conversion_service,
            StaticLinkResolver({URL: playlist_link()}),
        )

        await worker.run_sync_pass()
        await worker.run_sync_pass()

        keys = [call.kwargs["dedup_key"] for call in job_queue.enqueue.call_args_list]
        assert len(keys) == 2
        assert keys[0] != keys[1]

    @pytest.mark.asyncio
    async def test_entity_dedup_key_when_enabled(
        self, session_factory, job_queue, conversion_service
    ) -> None:
        await self._follow(session_factory)
        worker = self._worker(
            session_factory, job_queue, conversion_service,
            StaticLinkResolver({URL: playlist_link()}),
            dedupe_by_entity=True,
        )

        await worker.run_sync_pass()

        assert job_queue.enqueue.call_args.kwargs["dedup_key"] == "follow_sync:spotify:pl-1"
