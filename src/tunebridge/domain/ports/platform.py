"""Platform capability interface.

Hey future me - this is the contract every streaming platform integration
implements. The engine never talks to Spotify/Deezer/etc directly. It asks
the PlatformRegistry for the IPlatformService behind a platform key and
calls these methods.

Implementation checklist for a new platform:
1. Subclass IPlatformService and return DTOs, never raw API JSON
2. Raise NotFoundError when the platform has no match
3. Raise TransientUpstreamError for timeouts, 5xx and 429s
4. Register the instance in the PlatformRegistry under its key

Credentials, OAuth and HTTP clients stay inside the implementation.
"""

import asyncio
from abc import ABC, abstractmethod
from enum import Enum

from tunebridge.domain.dtos import (
    LinkInfo,
    PlaylistMetadata,
    PlaylistSearchResult,
    TrackSearchData,
    TrackSearchResult,
)


class Platform(str, Enum):
    """Well-known platform keys.

    The registry accepts any string key. These are the ones with
    integrations today.
    """

    SPOTIFY = "spotify"
    DEEZER = "deezer"
    TIDAL = "tidal"
    APPLE_MUSIC = "applemusic"
    YTMUSIC = "ytmusic"


class IPlatformService(ABC):
    """Track and playlist lookups on one streaming platform."""

    @property
    @abstractmethod
    def platform(self) -> str:
        """Platform key this service answers for (e.g. "spotify")."""
        ...

    @abstractmethod
    async def search_track_with_id(self, info: LinkInfo) -> TrackSearchResult:
        """Fetch a track by its platform id.

        Raises:
            NotFoundError: Track doesn't exist
            TransientUpstreamError: Network or rate-limit failure
        """
        ...

    @abstractmethod
    async def search_track_with_title(
        self, query: TrackSearchData
    ) -> TrackSearchResult | None:
        """Find the best match for a title/artist query.

        Returns None (or raises NotFoundError) when nothing matches.
        """
        ...

    @abstractmethod
    async def fetch_playlist_meta_info(self, info: LinkInfo) -> PlaylistMetadata:
        """Fetch playlist header info including the last_updated marker."""
        ...

    @abstractmethod
    async def fetch_tracks_for_source_platform(
        self,
        info: LinkInfo,
        meta: PlaylistMetadata,
        sink: "asyncio.Queue[TrackSearchResult | None]",
    ) -> None:
        """Stream the playlist's tracks, in playlist order, into sink.

        Implementations page through the playlist and put() each track.
        They MUST put None when done, even on error, so the reader stops.
        """
        ...

    async def search_playlist_with_id(
        self, info: LinkInfo
    ) -> PlaylistSearchResult | None:
        """Fetch metadata and all tracks in one go.

        Optional. The default returns None, which makes the orchestrator use
        the streaming fetch instead.
        """
        return None


__all__ = ["IPlatformService", "Platform"]
