"""Engine lifecycle - wiring at startup, teardown at shutdown.

Hey future me - build_engine() is the composition root: every service gets
its collaborators here and nowhere else. engine_lifespan() wraps it for a
host process (web app, CLI, worker container):

    async with engine_lifespan(registry, resolver) as engine:
        result = await engine.conversion.convert_playlist(info)

Startup order matters: tables → job recovery → handler registration →
queue workers → sync loop. Shutdown goes in reverse and always runs, even
if startup blew up halfway.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass

from tunebridge.application.cache.conversion_cache import ConversionCache
from tunebridge.application.services.conversion_service import ConversionService
from tunebridge.application.services.entity_lock import EntityLockRegistry
from tunebridge.application.services.follow_service import FollowService
from tunebridge.application.services.track_matching import TrackMatcher, TrackMatchingPool
from tunebridge.application.workers.follow_sync_worker import FollowSyncWorker
from tunebridge.application.workers.persistent_job_queue import PersistentJobQueue
from tunebridge.config import Settings, get_settings
from tunebridge.domain.exceptions import ConfigurationError
from tunebridge.domain.ports import IEventNotifier, ILinkResolver
from tunebridge.infrastructure.notifications import LoggingEventNotifier, WebhookEventNotifier
from tunebridge.infrastructure.observability import configure_logging
from tunebridge.infrastructure.persistence import Database
from tunebridge.infrastructure.plugins.registry import PlatformRegistry

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    """Everything a host process needs, wired together."""

    settings: Settings
    database: Database
    registry: PlatformRegistry
    cache: ConversionCache
    notifier: IEventNotifier
    conversion: ConversionService
    follows: FollowService
    job_queue: PersistentJobQueue
    sync_worker: FollowSyncWorker


def _validate_sqlite_path(settings: Settings) -> None:
    """Make sure the SQLite file's directory exists before the engine opens it."""
    db_path = settings._get_sqlite_db_path()
    if db_path is None:
        return
    try:
        if db_path.parent and str(db_path.parent) != ".":
            db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to create SQLite database directory '{db_path.parent}': {exc}. "
            "Update DATABASE_URL or adjust directory permissions."
        ) from exc


def _default_notifier(settings: Settings) -> IEventNotifier:
    if settings.notifier.webhook_enabled:
        return WebhookEventNotifier(settings.notifier)
    return LoggingEventNotifier()


def build_engine(
    registry: PlatformRegistry,
    link_resolver: ILinkResolver,
    settings: Settings | None = None,
    notifier: IEventNotifier | None = None,
    database: Database | None = None,
) -> Engine:
    """Wire all services. Does no I/O."""
    settings = settings or get_settings()
    database = database or Database(settings)
    notifier = notifier or _default_notifier(settings)

    cache = ConversionCache(track_ttl=settings.conversion.track_cache_ttl)
    pool = TrackMatchingPool(
        matcher=TrackMatcher(cache),
        worker_count=settings.conversion.worker_count,
        timeout_seconds=settings.conversion.timeout_seconds,
    )
    conversion = ConversionService(
        registry=registry,
        cache=cache,
        notifier=notifier,
        pool=pool,
        entity_locks=EntityLockRegistry(),
    )
    job_queue = PersistentJobQueue(session_factory=database.session_factory)
    sync_worker = FollowSyncWorker(
        session_factory=database.session_factory,
        job_queue=job_queue,
        conversion_service=conversion,
        link_resolver=link_resolver,
        settings=settings.follow,
    )
    return Engine(
        settings=settings,
        database=database,
        registry=registry,
        cache=cache,
        notifier=notifier,
        conversion=conversion,
        follows=FollowService(
            database.session_factory, max_subscribers=settings.follow.max_subscribers
        ),
        job_queue=job_queue,
        sync_worker=sync_worker,
    )


@asynccontextmanager
async def engine_lifespan(
    registry: PlatformRegistry,
    link_resolver: ILinkResolver,
    settings: Settings | None = None,
    notifier: IEventNotifier | None = None,
    queue_workers: int = 2,
    run_sync_loop: bool = True,
) -> AsyncGenerator[Engine, None]:
    """Start the engine, yield it, and shut everything down afterwards."""
    settings = settings or get_settings()
    configure_logging(
        log_level=settings.log_level,
        json_format=settings.observability.log_json_format,
        app_name=settings.app_name,
    )
    logger.info("Starting %s", settings.app_name)

    _validate_sqlite_path(settings)
    engine = build_engine(registry, link_resolver, settings=settings, notifier=notifier)
    sync_task: asyncio.Task[None] | None = None

    try:
        await engine.database.create_tables()
        await engine.job_queue.purge_finished()
        recovered = await engine.job_queue.recover_jobs()
        logger.info("Recovered %d pending job(s)", recovered)

        engine.sync_worker.register()
        await engine.job_queue.start(num_workers=queue_workers)

        if run_sync_loop:
            sync_task = asyncio.create_task(engine.sync_worker.start(), name="follow-sync")

        yield engine
    finally:
        logger.info("Shutting down %s", settings.app_name)
        engine.sync_worker.stop()
        if sync_task is not None:
            sync_task.cancel()
            with suppress(asyncio.CancelledError):
                await sync_task
        await engine.job_queue.stop()
        if isinstance(engine.notifier, WebhookEventNotifier):
            await engine.notifier.close()
        await engine.database.close()
