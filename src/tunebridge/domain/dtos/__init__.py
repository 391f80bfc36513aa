"""Data transfer objects shared by every platform integration.

Hey future me - these are the shapes that cross the engine's seams: platform
services return them, the worker pool passes them around, the cache stores
them as JSON and the notifier ships them out. Keep them dumb. No network,
no DB, just data plus to_dict()/from_dict() so caching and events don't
each invent their own encoding.

The dict keys are the wire format (snake_case, e.g. duration_milli,
short_url). Changing a key breaks every cached conversion, so don't.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from tunebridge.domain.exceptions import ValidationError


class EntityType(str, Enum):
    """Kind of entity a link points at."""

    TRACK = "track"
    PLAYLIST = "playlist"


# Target platform value that fans a track conversion out to every platform.
ALL_PLATFORMS = "all"


@dataclass(frozen=True)
class LinkInfo:
    """Resolved identifier for a conversion request.

    Produced by an external URL resolver and never mutated afterwards.
    """

    platform: str
    entity: str
    entity_id: str
    target_platform: str = ""
    target_link: str = ""
    task_id: str = ""
    app: str = ""
    developer: str = ""

    def __post_init__(self) -> None:
        if not self.platform:
            raise ValidationError("LinkInfo.platform cannot be empty")
        if not self.entity_id:
            raise ValidationError("LinkInfo.entity_id cannot be empty")

    @property
    def is_playlist(self) -> bool:
        return self.entity == EntityType.PLAYLIST.value

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TrackSearchResult:
    """Canonical track as returned by any platform."""

    url: str
    title: str
    artists: list[str] = field(default_factory=list)
    album: str = ""
    duration: str = ""
    duration_milli: int = 0
    explicit: bool = False
    release_date: str = ""
    cover: str = ""
    id: str = ""
    preview: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrackSearchResult":
        return cls(
            url=data.get("url", ""),
            title=data.get("title", ""),
            artists=list(data.get("artists") or []),
            album=data.get("album", ""),
            duration=data.get("duration", ""),
            duration_milli=int(data.get("duration_milli") or 0),
            explicit=bool(data.get("explicit", False)),
            release_date=data.get("release_date", ""),
            cover=data.get("cover", ""),
            id=data.get("id", ""),
            preview=data.get("preview", ""),
        )

    def to_search_data(self) -> "TrackSearchData":
        """Build the title/artist query used to look this track up elsewhere."""
        return TrackSearchData(
            title=self.title, artists=list(self.artists), url=self.url, id=self.id
        )


@dataclass(frozen=True)
class TrackSearchData:
    """Minimal descriptor used to search a track on another platform."""

    title: str
    artists: list[str] = field(default_factory=list)
    url: str = ""
    id: str = ""

    @property
    def primary_artist(self) -> str:
        return self.artists[0] if self.artists else ""


@dataclass
class PlaylistMetadata:
    """Playlist header info.

    last_updated is the snapshot marker: whatever token the platform gives
    us (timestamp, snapshot id, checksum) to tell versions apart.
    """

    title: str
    owner: str = ""
    cover: str = ""
    url: str = ""
    length: str = ""
    nb_tracks: int = 0
    last_updated: str = ""
    description: str = ""
    short_url: str = ""
    entity: str = EntityType.PLAYLIST.value

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlaylistMetadata":
        return cls(
            title=data.get("title", ""),
            owner=data.get("owner", ""),
            cover=data.get("cover", ""),
            url=data.get("url", ""),
            length=data.get("length", ""),
            nb_tracks=int(data.get("nb_tracks") or 0),
            last_updated=data.get("last_updated", ""),
            description=data.get("description", ""),
            short_url=data.get("short_url", ""),
            entity=data.get("entity", EntityType.PLAYLIST.value),
        )


@dataclass
class PlaylistSearchResult:
    """Metadata plus ordered tracks from a single "playlist by id" call."""

    meta: PlaylistMetadata
    tracks: list[TrackSearchResult] = field(default_factory=list)


@dataclass
class TrackJob:
    """One unit of matching work.

    index is the 0-based position in the source playlist. It travels with
    the job so the aggregator can restore order after parallel completion.
    Exactly one worker owns a job at a time and writes result/error once.
    """

    track: TrackSearchResult
    index: int
    source_platform: str
    target_platform: str
    result: TrackSearchResult | None = None
    error: BaseException | None = None

    @property
    def matched(self) -> bool:
        return self.error is None and self.result is not None


@dataclass
class OmittedTrack:
    """Source track that got no match. index is 1-based."""

    title: str
    artists: list[str]
    url: str
    platform: str
    index: int

    @classmethod
    def from_job(cls, job: TrackJob) -> "OmittedTrack":
        return cls(
            title=job.track.title,
            artists=list(job.track.artists),
            url=job.track.url,
            platform=job.source_platform,
            index=job.index + 1,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OmittedTrack":
        return cls(
            title=data.get("title", ""),
            artists=list(data.get("artists") or []),
            url=data.get("url", ""),
            platform=data.get("platform", ""),
            index=int(data["index"]),
        )


@dataclass
class PlatformPlaylistTracks:
    """Tracks of one side of a conversion; length is the summed duration in ms."""

    tracks: list[TrackSearchResult] = field(default_factory=list)
    length: int = 0

    @classmethod
    def from_tracks(cls, tracks: list[TrackSearchResult]) -> "PlatformPlaylistTracks":
        return cls(tracks=tracks, length=sum(t.duration_milli for t in tracks))

    def to_dict(self) -> dict[str, Any]:
        return {"tracks": [t.to_dict() for t in self.tracks], "length": self.length}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlatformPlaylistTracks":
        return cls(
            tracks=[TrackSearchResult.from_dict(t) for t in data.get("tracks") or []],
            length=int(data.get("length") or 0),
        )


@dataclass
class PlaylistConversion:
    """Result of converting a playlist."""

    meta: PlaylistMetadata
    platforms: dict[str, PlatformPlaylistTracks] = field(default_factory=dict)
    omitted_tracks: list[OmittedTrack] = field(default_factory=list)
    source_platform: str = ""
    target_platform: str = ""
    task_id: str = ""
    entity: str = EntityType.PLAYLIST.value

    @property
    def matched_tracks(self) -> list[TrackSearchResult]:
        target = self.platforms.get(self.target_platform)
        return target.tracks if target else []

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "meta": self.meta.to_dict(),
            "platforms": {k: v.to_dict() for k, v in self.platforms.items()},
            "omitted_tracks": [o.to_dict() for o in self.omitted_tracks],
            "source_platform": self.source_platform,
            "target_platform": self.target_platform,
            "task_id": self.task_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlaylistConversion":
        return cls(
            entity=data.get("entity", EntityType.PLAYLIST.value),
            meta=PlaylistMetadata.from_dict(data.get("meta") or {}),
            platforms={
                k: PlatformPlaylistTracks.from_dict(v)
                for k, v in (data.get("platforms") or {}).items()
            },
            omitted_tracks=[
                OmittedTrack.from_dict(o) for o in data.get("omitted_tracks") or []
            ],
            source_platform=data.get("source_platform", ""),
            target_platform=data.get("target_platform", ""),
            task_id=data.get("task_id", ""),
        )


@dataclass
class TrackConversion:
    """Result of converting a single track.

    platforms holds the source track under the source key plus every target
    that matched. A target whose search failed is simply missing.
    """

    platforms: dict[str, TrackSearchResult] = field(default_factory=dict)
    source_platform: str = ""
    target_platform: str = ""
    task_id: str = ""
    entity: str = EntityType.TRACK.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "platforms": {k: v.to_dict() for k, v in self.platforms.items()},
            "source_platform": self.source_platform,
            "target_platform": self.target_platform,
            "task_id": self.task_id,
        }


__all__ = [
    "ALL_PLATFORMS",
    "EntityType",
    "LinkInfo",
    "OmittedTrack",
    "PlatformPlaylistTracks",
    "PlaylistConversion",
    "PlaylistMetadata",
    "PlaylistSearchResult",
    "TrackConversion",
    "TrackJob",
    "TrackSearchData",
    "TrackSearchResult",
]
