"""Conversion orchestrator - tracks and playlists across platforms.

Hey future me - this is the front door of the engine! Every conversion,
whether an app asked for it or the follow sync triggered it, goes through
ConversionService.

TRACK (convert_track):
    source.search_track_with_id → title/artist query →
        target == "all": search every other registered platform concurrently,
                         a platform that fails is just missing from the result
        otherwise:       search the one target, errors propagate

PLAYLIST (convert_playlist / sync_playlist):
    source.fetch_playlist_meta_info → snapshot check (under entity lock)
        UNCHANGED → cached result (track events replayed), no per-track calls
        CHANGED / MISS → fetch tracks → worker pool → sort → store result+marker
    events: metadata → track per match → done

Per-playlist failures (metadata fetch, unknown platform) propagate. Per-track
failures become omitted tracks. Event failures are logged and swallowed.
"""

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass

from tunebridge.application.cache.conversion_cache import ConversionCache, SnapshotStatus
from tunebridge.application.services.entity_lock import EntityLockRegistry
from tunebridge.application.services.track_matching import (
    TrackMatcher,
    TrackMatchingPool,
    build_jobs,
)
from tunebridge.domain.dtos import (
    ALL_PLATFORMS,
    LinkInfo,
    PlatformPlaylistTracks,
    PlaylistConversion,
    PlaylistMetadata,
    TrackConversion,
    TrackJob,
    TrackSearchResult,
)
from tunebridge.domain.exceptions import (
    ConfigurationError,
    NotFoundError,
    SerializationError,
)
from tunebridge.domain.ports.notification import DoneEvent, IEventNotifier, TrackEvent
from tunebridge.domain.ports.platform import IPlatformService
from tunebridge.infrastructure.observability.logging import set_correlation_id
from tunebridge.infrastructure.plugins.registry import PlatformRegistry

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """What a follow sync found and, unless UNCHANGED, the fresh conversion."""

    status: SnapshotStatus
    marker: str
    conversion: PlaylistConversion | None = None

    @property
    def should_notify(self) -> bool:
        # MISS has no previous state to diff against, so nobody gets notified.
        return self.status == SnapshotStatus.CHANGED and self.conversion is not None


class ConversionService:
    """Orchestrates track and playlist conversions."""

    def __init__(
        self,
        registry: PlatformRegistry,
        cache: ConversionCache,
        notifier: IEventNotifier,
        pool: TrackMatchingPool | None = None,
        entity_locks: EntityLockRegistry | None = None,
    ) -> None:
        self._registry = registry
        self._cache = cache
        self._notifier = notifier
        self._matcher = TrackMatcher(cache)
        self._pool = pool or TrackMatchingPool(matcher=self._matcher)
        self._locks = entity_locks or EntityLockRegistry()

    # =========================================================================
    # TRACKS
    # =========================================================================

    async def convert_track(self, info: LinkInfo) -> TrackConversion:
        """Convert one track to the target platform (or to every platform).

        Raises:
            ConfigurationError: No target platform, or an unregistered platform
            NotFoundError: Source track missing, or no match on a single target
            TransientUpstreamError: Upstream failure on source or single target
        """
        set_correlation_id(info.task_id or None)
        if not info.target_platform:
            raise ConfigurationError("Track conversion requires a target platform")
        if info.target_platform == info.platform:
            raise ConfigurationError(
                f"Source and target platform are both {info.platform!r}"
            )

        source = self._registry.require(info.platform)
        source_track = await self._fetch_source_track(source, info)
        query = source_track.to_search_data()

        conversion = TrackConversion(
            platforms={info.platform: source_track},
            source_platform=info.platform,
            target_platform=info.target_platform,
            task_id=info.task_id,
        )

        if info.target_platform == ALL_PLATFORMS:
            targets = self._registry.others(info.platform)
            services = [self._registry.require(p) for p in targets]
            outcomes = await asyncio.gather(
                *(self._matcher.match(query, p, s) for p, s in zip(targets, services)),
                return_exceptions=True,
            )
            for platform, outcome in zip(targets, outcomes):
                if isinstance(outcome, Exception):
                    logger.info(
                        f"[CONVERSION] '{query.title}' not converted to {platform}: {outcome}"
                    )
                    continue
                if isinstance(outcome, BaseException):
                    raise outcome
                if outcome is not None:
                    conversion.platforms[platform] = outcome
        else:
            target = self._registry.require(info.target_platform)
            match = await self._matcher.match(query, info.target_platform, target)
            if match is None:
                raise NotFoundError("track", query.title, info.target_platform)
            conversion.platforms[info.target_platform] = match

        logger.info(
            f"[CONVERSION] Track {info.platform}:{info.entity_id} → "
            f"{len(conversion.platforms) - 1} platform(s)"
        )
        return conversion

    async def _fetch_source_track(
        self, source: IPlatformService, info: LinkInfo
    ) -> TrackSearchResult:
        try:
            cached = await self._cache.get_track_by_id(info.platform, info.entity_id)
        except SerializationError as e:
            logger.warning(f"[CONVERSION] Ignoring unreadable source track cache: {e.message}")
            cached = None
        if cached is not None:
            return cached

        track = await source.search_track_with_id(info)
        await self._cache.cache_track_by_id(info.platform, info.entity_id, track)
        return track

    # =========================================================================
    # PLAYLISTS
    # =========================================================================

    async def convert_playlist(
        self,
        info: LinkInfo,
        cancel_event: asyncio.Event | None = None,
    ) -> PlaylistConversion:
        """Convert a playlist, serving the cached result if the marker is unchanged.

        Raises:
            ConfigurationError: Missing/"all"/unregistered target platform
            NotFoundError, TransientUpstreamError: Metadata or track list fetch failed
        """
        set_correlation_id(info.task_id or None)
        source, target = self._resolve_playlist_services(info)

        async with self._locks.hold(self._lock_key(info)):
            meta = await source.fetch_playlist_meta_info(info)
            await self._emit(
                "metadata", self._notifier.send_playlist_metadata_event(info, meta)
            )
            status = await self._check_snapshot(info, meta)

            if status == SnapshotStatus.UNCHANGED:
                cached = await self._load_cached(info)
                if cached is not None:
                    logger.info(
                        f"[CONVERSION] Playlist {info.platform}:{info.entity_id} unchanged, "
                        f"serving cached result"
                    )
                    await self._replay(info, cached)
                    return cached

            conversion, _ = await self._reconvert(info, source, target, meta, cancel_event)
            return conversion

    async def sync_playlist(self, info: LinkInfo) -> SyncResult:
        """Change-detection path used by the follow sync.

        UNCHANGED returns without converting or emitting anything. MISS and
        CHANGED run the full pipeline and store the new snapshot.
        """
        set_correlation_id(info.task_id or None)
        source, target = self._resolve_playlist_services(info)

        async with self._locks.hold(self._lock_key(info)):
            meta = await source.fetch_playlist_meta_info(info)
            status = await self._check_snapshot(info, meta)
            if status == SnapshotStatus.UNCHANGED:
                logger.debug(
                    f"[SYNC] {info.platform}:{info.entity_id} unchanged "
                    f"(marker={meta.last_updated!r})"
                )
                return SyncResult(status=status, marker=meta.last_updated)

            await self._emit(
                "metadata", self._notifier.send_playlist_metadata_event(info, meta)
            )
            conversion, complete = await self._reconvert(info, source, target, meta, None)
            if not complete:
                # Partial result wasn't stored; treat like a miss so nobody is notified.
                status = SnapshotStatus.MISS
            return SyncResult(status=status, marker=meta.last_updated, conversion=conversion)

    def _resolve_playlist_services(
        self, info: LinkInfo
    ) -> tuple[IPlatformService, IPlatformService]:
        if not info.target_platform:
            raise ConfigurationError("Playlist conversion requires a target platform")
        if info.target_platform == ALL_PLATFORMS:
            raise ConfigurationError("Playlist conversion needs exactly one target platform")
        if info.target_platform == info.platform:
            raise ConfigurationError(
                f"Source and target platform are both {info.platform!r}"
            )
        return (
            self._registry.require(info.platform),
            self._registry.require(info.target_platform),
        )

    @staticmethod
    def _lock_key(info: LinkInfo) -> str:
        return f"{info.platform}:{info.entity_id}"

    async def _check_snapshot(self, info: LinkInfo, meta: PlaylistMetadata) -> SnapshotStatus:
        # No marker means no way to tell versions apart: always reconvert.
        if not meta.last_updated:
            return SnapshotStatus.MISS
        try:
            return await self._cache.check_snapshot(
                info.platform, info.entity_id, meta.last_updated
            )
        except SerializationError as e:
            logger.warning(f"[CONVERSION] Unreadable snapshot marker, reconverting: {e.message}")
            return SnapshotStatus.MISS

    async def _load_cached(self, info: LinkInfo) -> PlaylistConversion | None:
        try:
            cached = await self._cache.get_playlist(info.platform, info.entity_id)
        except SerializationError as e:
            logger.warning(f"[CONVERSION] Unreadable cached playlist, reconverting: {e.message}")
            return None
        # The cached result belongs to whichever target converted it last.
        if cached is None or cached.target_platform != info.target_platform:
            return None
        cached.task_id = info.task_id
        return cached

    async def _reconvert(
        self,
        info: LinkInfo,
        source: IPlatformService,
        target: IPlatformService,
        meta: PlaylistMetadata,
        cancel_event: asyncio.Event | None,
    ) -> tuple[PlaylistConversion, bool]:
        """Run the full pipeline. Returns the result and whether it was stored."""
        tracks = await self._collect_source_tracks(source, info, meta)
        jobs = build_jobs(tracks, info.platform, info.target_platform)

        async def on_match(job: TrackJob) -> None:
            if job.result is not None:
                await self._send_track_event(info, job.result)

        outcome = await self._pool.run(jobs, target, cancel_event=cancel_event, on_match=on_match)

        conversion = PlaylistConversion(
            meta=meta,
            platforms={
                info.platform: PlatformPlaylistTracks.from_tracks(tracks),
                info.target_platform: PlatformPlaylistTracks.from_tracks(outcome.matched),
            },
            omitted_tracks=outcome.omitted,
            source_platform=info.platform,
            target_platform=info.target_platform,
            task_id=info.task_id,
        )

        stored = not outcome.cancelled and bool(meta.last_updated)
        if stored:
            await self._cache.store_conversion(
                info.platform, info.entity_id, conversion, meta.last_updated
            )
        elif not meta.last_updated:
            await self._cache.set_playlist(info.platform, info.entity_id, conversion)

        await self._send_done_event(info)
        logger.info(
            f"[CONVERSION] Playlist {info.platform}:{info.entity_id} → {info.target_platform}: "
            f"{len(outcome.matched)}/{len(tracks)} matched, {len(outcome.omitted)} omitted"
            + (" (cancelled)" if outcome.cancelled else "")
        )
        return conversion, stored

    async def _collect_source_tracks(
        self, source: IPlatformService, info: LinkInfo, meta: PlaylistMetadata
    ) -> list[TrackSearchResult]:
        """Ordered source tracks, via one-shot search when supported, else streamed."""
        search_result = await source.search_playlist_with_id(info)
        if search_result is not None:
            return list(search_result.tracks)

        sink: asyncio.Queue[TrackSearchResult | None] = asyncio.Queue()
        fetch = asyncio.create_task(
            source.fetch_tracks_for_source_platform(info, meta, sink),
            name=f"fetch-tracks-{info.entity_id}",
        )
        # Wakes the reader even if the fetch dies before sending its own None.
        fetch.add_done_callback(lambda _: sink.put_nowait(None))

        tracks: list[TrackSearchResult] = []
        try:
            while (track := await sink.get()) is not None:
                tracks.append(track)
            await fetch
        finally:
            if not fetch.done():
                fetch.cancel()
        return tracks

    # =========================================================================
    # EVENTS
    # =========================================================================

    async def _replay(self, info: LinkInfo, conversion: PlaylistConversion) -> None:
        for track in conversion.matched_tracks:
            await self._send_track_event(info, track)
        await self._send_done_event(info)

    async def _send_track_event(self, info: LinkInfo, track: TrackSearchResult) -> None:
        event = TrackEvent(platform=info.target_platform, task_id=info.task_id, track=track)
        await self._emit("track", self._notifier.send_track_event(info.app, event))

    async def _send_done_event(self, info: LinkInfo) -> None:
        event = DoneEvent(
            task_id=info.task_id,
            playlist_id=info.entity_id,
            source_platform=info.platform,
            target_platform=info.target_platform,
        )
        await self._emit(
            "done", self._notifier.send_event(info.app, event.event_type, event.to_dict())
        )

    async def _emit(self, kind: str, call: Awaitable[None]) -> None:
        """Await a notifier call; delivery is best-effort."""
        try:
            await call
        except Exception as e:
            logger.warning(f"[EVENT] Failed to send {kind} event: {e}")

