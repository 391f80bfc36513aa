"""Event notifier interface.

Hey future me - this is the PORT for conversion progress events. The
orchestrator and sync handler call it, an adapter (webhook, logging, a
message bus) delivers it. Delivery is best-effort: callers log and swallow
whatever an adapter raises, so never build logic that depends on an event
arriving.

Event flow for one playlist conversion:
    metadata resolved → one track event per matched track → done event
Cache hits replay the track events too, so consumers see the same stream.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from tunebridge.domain.dtos import LinkInfo, PlaylistMetadata, TrackSearchResult


class EventType(str, Enum):
    """Event types sent to app subscribers."""

    PLAYLIST_METADATA = "playlist_conversion_metadata"
    PLAYLIST_TRACK = "playlist_conversion_track"
    PLAYLIST_DONE = "playlist_conversion_done"


@dataclass
class MetadataEvent:
    platform: str
    meta: PlaylistMetadata
    event_type: str = EventType.PLAYLIST_METADATA.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "meta": self.meta.to_dict(),
            "event_type": self.event_type,
        }


@dataclass
class TrackEvent:
    platform: str
    task_id: str
    track: TrackSearchResult
    event_type: str = EventType.PLAYLIST_TRACK.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "task_id": self.task_id,
            "track": self.track.to_dict(),
            "event_type": self.event_type,
        }


@dataclass
class DoneEvent:
    task_id: str
    playlist_id: str
    source_platform: str
    target_platform: str
    event_type: str = EventType.PLAYLIST_DONE.value

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class IEventNotifier(ABC):
    """Delivers conversion events to the app that requested the work."""

    @abstractmethod
    async def send_playlist_metadata_event(
        self, info: LinkInfo, meta: PlaylistMetadata
    ) -> None:
        """Announce that playlist metadata was resolved."""
        ...

    @abstractmethod
    async def send_track_event(self, app_id: str, event: TrackEvent) -> None:
        """Announce one matched track."""
        ...

    @abstractmethod
    async def send_event(
        self, app_id: str, event_type: str, payload: dict[str, Any]
    ) -> None:
        """Send an arbitrary event (used for the done event)."""
        ...


__all__ = [
    "DoneEvent",
    "EventType",
    "IEventNotifier",
    "MetadataEvent",
    "TrackEvent",
]
