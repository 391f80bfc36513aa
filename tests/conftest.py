"""Shared fixtures: fake platforms, a recording notifier and an in-memory DB.

Hey future me - the fakes here are dumb. A FakePlatformService
"finds" any title by mirroring it onto its own platform unless the title is
listed in failures/misses, and it counts every call so tests can assert
"zero per-track searches" on the cached path.
"""

import asyncio
from collections.abc import AsyncGenerator
from dataclasses import replace
from typing import Any

import pytest

from tunebridge.application.cache.conversion_cache import ConversionCache
from tunebridge.application.services.conversion_service import ConversionService
from tunebridge.application.services.track_matching import TrackMatcher, TrackMatchingPool
from tunebridge.config import DatabaseSettings, Settings
from tunebridge.domain.dtos import (
    LinkInfo,
    PlaylistMetadata,
    PlaylistSearchResult,
    TrackSearchData,
    TrackSearchResult,
)
from tunebridge.domain.exceptions import NotFoundError, ValidationError
from tunebridge.domain.ports import IEventNotifier, ILinkResolver, IPlatformService, TrackEvent
from tunebridge.infrastructure.persistence import Database
from tunebridge.infrastructure.plugins.registry import PlatformRegistry


def make_track(n: int, platform: str = "spotify", duration_milli: int = 1000) -> TrackSearchResult:
    """Source track number n (1-based titles so failures read naturally: T2)."""
    return TrackSearchResult(
        url=f"https://{platform}.test/track/{n}",
        title=f"T{n}",
        artists=[f"Artist {n}"],
        duration_milli=duration_milli,
        id=f"{platform}-{n}",
    )


class FakePlatformService(IPlatformService):
    """In-memory platform with call counters and injectable failures."""

    def __init__(
        self,
        name: str,
        tracks: list[TrackSearchResult] | None = None,
        meta: PlaylistMetadata | None = None,
        one_shot: bool = False,
    ) -> None:
        self._name = name
        self.tracks = list(tracks or [])
        self.meta = meta or PlaylistMetadata(title="Road Trip", last_updated="v1")
        self.one_shot = one_shot
        # title -> exception raised by search_track_with_title
        self.failures: dict[str, BaseException] = {}
        # titles that return None from search_track_with_title
        self.misses: set[str] = set()
        # title -> seconds to sleep before answering
        self.delays: dict[str, float] = {}
        self.meta_error: BaseException | None = None
        self.fetch_error: BaseException | None = None

        self.search_calls = 0
        self.id_calls = 0
        self.meta_calls = 0
        self.fetch_calls = 0
        self.active = 0
        self.max_active = 0

    @property
    def platform(self) -> str:
        return self._name

    async def search_track_with_id(self, info: LinkInfo) -> TrackSearchResult:
        self.id_calls += 1
        for track in self.tracks:
            if track.id == info.entity_id:
                return track
        raise NotFoundError("track", info.entity_id, self._name)

    async def search_track_with_title(
        self, query: TrackSearchData
    ) -> TrackSearchResult | None:
        self.search_calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            delay = self.delays.get(query.title, 0)
            await asyncio.sleep(delay)
            if query.title in self.failures:
                raise self.failures[query.title]
            if query.title in self.misses:
                return None
            return TrackSearchResult(
                url=f"https://{self._name}.test/track/{query.title}",
                title=query.title,
                artists=list(query.artists),
                duration_milli=2000,
                id=f"{self._name}-{query.title}",
            )
        finally:
            self.active -= 1

    async def fetch_playlist_meta_info(self, info: LinkInfo) -> PlaylistMetadata:
        self.meta_calls += 1
        if self.meta_error is not None:
            raise self.meta_error
        return replace(self.meta, nb_tracks=len(self.tracks))

    async def fetch_tracks_for_source_platform(
        self,
        info: LinkInfo,
        meta: PlaylistMetadata,
        sink: "asyncio.Queue[TrackSearchResult | None]",
    ) -> None:
        self.fetch_calls += 1
        for track in self.tracks:
            await sink.put(track)
        if self.fetch_error is not None:
            raise self.fetch_error
        await sink.put(None)

    async def search_playlist_with_id(
        self, info: LinkInfo
    ) -> PlaylistSearchResult | None:
        if not self.one_shot:
            return None
        self.fetch_calls += 1
        return PlaylistSearchResult(
            meta=replace(self.meta, nb_tracks=len(self.tracks)), tracks=list(self.tracks)
        )


class RecordingNotifier(IEventNotifier):
    """Keeps every event as (event_type, payload) in order."""

    def __init__(self, fail: bool = False) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.fail = fail

    def _check(self) -> None:
        if self.fail:
            raise RuntimeError("notifier is down")

    async def send_playlist_metadata_event(
        self, info: LinkInfo, meta: PlaylistMetadata
    ) -> None:
        self._check()
        self.events.append(("playlist_conversion_metadata", meta.to_dict()))

    async def send_track_event(self, app_id: str, event: TrackEvent) -> None:
        self._check()
        self.events.append((event.event_type, event.to_dict()))

    async def send_event(
        self, app_id: str, event_type: str, payload: dict[str, Any]
    ) -> None:
        self._check()
        self.events.append((event_type, payload))

    def types(self) -> list[str]:
        return [event_type for event_type, _ in self.events]


class StaticLinkResolver(ILinkResolver):
    """Resolves only the URLs it was given."""

    def __init__(self, links: dict[str, LinkInfo] | None = None) -> None:
        self.links = dict(links or {})

    async def resolve(self, url: str) -> LinkInfo:
        try:
            return self.links[url]
        except KeyError:
            raise ValidationError(f"Unsupported link: {url}") from None


def playlist_link(
    entity_id: str = "pl-1",
    platform: str = "spotify",
    target: str = "deezer",
    task_id: str = "task-1",
) -> LinkInfo:
    return LinkInfo(
        platform=platform,
        entity="playlist",
        entity_id=entity_id,
        target_platform=target,
        task_id=task_id,
        app="app-1",
        developer="dev-1",
    )


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def source_service() -> FakePlatformService:
    return FakePlatformService("spotify", tracks=[make_track(n) for n in (1, 2, 3)])


@pytest.fixture
def target_service() -> FakePlatformService:
    return FakePlatformService("deezer")


@pytest.fixture
def registry(
    source_service: FakePlatformService, target_service: FakePlatformService
) -> PlatformRegistry:
    registry = PlatformRegistry()
    registry.register(source_service)
    registry.register(target_service)
    return registry


@pytest.fixture
def cache() -> ConversionCache:
    return ConversionCache()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def conversion_service(
    registry: PlatformRegistry, cache: ConversionCache, notifier: RecordingNotifier
) -> ConversionService:
    pool = TrackMatchingPool(matcher=TrackMatcher(cache), worker_count=2)
    return ConversionService(registry=registry, cache=cache, notifier=notifier, pool=pool)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(database=DatabaseSettings(url="sqlite+aiosqlite:///:memory:"))


@pytest.fixture
async def database(test_settings: Settings) -> AsyncGenerator[Database, None]:
    db = Database(test_settings)
    await db.create_tables()
    yield db
    await db.close()


@pytest.fixture
def session_factory(database: Database) -> Any:
    return database.session_factory
