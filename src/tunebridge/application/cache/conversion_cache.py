"""Conversion cache - snapshot markers, converted playlists, matched tracks.

Hey future me - this cache is what makes change detection work!

Three kinds of entries, all stored as JSON strings:

    <platform>:playlist:<id>     last full PlaylistConversion   (no expiry)
    <platform>:snapshot:<id>     last-seen last_updated marker  (no expiry)
    <platform>-<artist>-<title>  matched track on <platform>    (24h)
    <platform>:track:<id>        source track fetched by id     (24h)

Track entries expire, playlist entries don't. A matched track stays the
same track, so it can be reused across playlists for a day. A playlist's membership and order
change whenever its owner edits it, so the snapshot entries never time out.
They are only ever overwritten after a successful reconversion.

Snapshot check:
    marker == cached marker  → UNCHANGED (serve cached result, no per-track work)
    marker != cached marker  → CHANGED   (reconvert, overwrite both entries)
    no cached marker         → MISS      (never converted)
"""

import json
import logging
import unicodedata
from enum import Enum
from typing import Any

from tunebridge.application.cache.base_cache import BaseCache, InMemoryCache
from tunebridge.domain.dtos import PlaylistConversion, TrackSearchResult
from tunebridge.domain.exceptions import SerializationError

logger = logging.getLogger(__name__)


class SnapshotStatus(str, Enum):
    """Outcome of comparing a live marker with the cached one."""

    MISS = "miss"
    CHANGED = "changed"
    UNCHANGED = "unchanged"


def normalize_string(value: str) -> str:
    """Normalize text for cache keys.

    Keeps letters and digits of any script and casefolds. Accents on Latin
    letters are stripped, marks on other scripts (dakuten, Cyrillic breve)
    are kept. "Beyoncé - Halo!" → "beyoncehalo", "米津玄師 レモン" →
    "米津玄師レモン". Text with no letters or digits ("!!!") is kept
    casefolded as-is, so it never collapses into the empty key.
    """
    kept: list[str] = []
    for ch in unicodedata.normalize("NFD", value):
        if unicodedata.combining(ch):
            if kept and not kept[-1].isascii():
                kept.append(ch)
        elif ch.isalnum():
            kept.append(ch)
    # NFC puts Hangul jamo and kana marks back together.
    normalized = unicodedata.normalize("NFC", "".join(kept)).casefold()
    return normalized or value.strip().casefold()


class ConversionCache:
    """Typed JSON cache for the conversion engine."""

    TRACK_TTL = 86400  # 24 hours
    # Playlist result and snapshot marker live until overwritten.
    SNAPSHOT_TTL: int | None = None

    def __init__(
        self,
        cache: BaseCache[str, str] | None = None,
        track_ttl: int = TRACK_TTL,
    ) -> None:
        self._cache: BaseCache[str, str] = cache or InMemoryCache()
        self._track_ttl = track_ttl

    @staticmethod
    def _make_playlist_key(platform: str, entity_id: str) -> str:
        return f"{platform}:playlist:{entity_id}"

    @staticmethod
    def _make_snapshot_key(platform: str, entity_id: str) -> str:
        return f"{platform}:snapshot:{entity_id}"

    @staticmethod
    def _make_track_match_key(platform: str, artist: str, title: str) -> str:
        return f"{platform}-{normalize_string(artist)}-{normalize_string(title)}"

    @staticmethod
    def _make_track_id_key(platform: str, track_id: str) -> str:
        return f"{platform}:track:{track_id}"

    def _encode(self, key: str, value: Any) -> str:
        try:
            return json.dumps(value)
        except (TypeError, ValueError) as e:
            raise SerializationError(key, str(e)) from e

    def _decode(self, key: str, raw: str) -> Any:
        try:
            return json.loads(raw)
        except ValueError as e:
            raise SerializationError(key, str(e)) from e

    # =========================================================================
    # SNAPSHOT MARKERS
    # =========================================================================

    async def get_snapshot(self, platform: str, entity_id: str) -> str | None:
        """Get the last-seen marker, None if never converted."""
        key = self._make_snapshot_key(platform, entity_id)
        raw = await self._cache.get(key)
        if raw is None:
            return None
        marker = self._decode(key, raw)
        if not isinstance(marker, str):
            raise SerializationError(key, f"marker must be a string, got {type(marker).__name__}")
        return marker

    async def set_snapshot(self, platform: str, entity_id: str, marker: str) -> None:
        key = self._make_snapshot_key(platform, entity_id)
        await self._cache.set(key, self._encode(key, marker), self.SNAPSHOT_TTL)

    async def check_snapshot(
        self, platform: str, entity_id: str, marker: str
    ) -> SnapshotStatus:
        """Compare the live marker with the cached one."""
        cached = await self.get_snapshot(platform, entity_id)
        if cached is None:
            return SnapshotStatus.MISS
        if cached == marker:
            return SnapshotStatus.UNCHANGED
        return SnapshotStatus.CHANGED

    # =========================================================================
    # PLAYLIST RESULTS
    # =========================================================================

    async def get_playlist(
        self, platform: str, entity_id: str
    ) -> PlaylistConversion | None:
        key = self._make_playlist_key(platform, entity_id)
        raw = await self._cache.get(key)
        if raw is None:
            return None
        data = self._decode(key, raw)
        try:
            return PlaylistConversion.from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise SerializationError(key, str(e)) from e

    async def set_playlist(
        self, platform: str, entity_id: str, conversion: PlaylistConversion
    ) -> None:
        key = self._make_playlist_key(platform, entity_id)
        await self._cache.set(
            key, self._encode(key, conversion.to_dict()), self.SNAPSHOT_TTL
        )

    async def store_conversion(
        self,
        platform: str,
        entity_id: str,
        conversion: PlaylistConversion,
        marker: str,
    ) -> None:
        """Overwrite result and marker together after a successful conversion.

        The result goes first so a reader that sees the new marker always
        finds a result at least as new.
        """
        await self.set_playlist(platform, entity_id, conversion)
        await self.set_snapshot(platform, entity_id, marker)
        logger.debug(f"[CACHE] Stored snapshot {platform}:{entity_id} marker={marker!r}")

    async def invalidate_playlist(self, platform: str, entity_id: str) -> bool:
        """Drop both entries so the next conversion runs the full pipeline."""
        removed_result = await self._cache.delete(self._make_playlist_key(platform, entity_id))
        removed_marker = await self._cache.delete(self._make_snapshot_key(platform, entity_id))
        return removed_result or removed_marker

    # =========================================================================
    # TRACK MATCHES
    # =========================================================================

    async def get_track_match(
        self, platform: str, artist: str, title: str
    ) -> TrackSearchResult | None:
        key = self._make_track_match_key(platform, artist, title)
        raw = await self._cache.get(key)
        if raw is None:
            return None
        return TrackSearchResult.from_dict(self._decode(key, raw))

    async def cache_track_match(
        self, platform: str, artist: str, title: str, track: TrackSearchResult
    ) -> None:
        key = self._make_track_match_key(platform, artist, title)
        await self._cache.set(key, self._encode(key, track.to_dict()), self._track_ttl)

    async def get_track_by_id(
        self, platform: str, track_id: str
    ) -> TrackSearchResult | None:
        key = self._make_track_id_key(platform, track_id)
        raw = await self._cache.get(key)
        if raw is None:
            return None
        return TrackSearchResult.from_dict(self._decode(key, raw))

    async def cache_track_by_id(
        self, platform: str, track_id: str, track: TrackSearchResult
    ) -> None:
        key = self._make_track_id_key(platform, track_id)
        await self._cache.set(key, self._encode(key, track.to_dict()), self._track_ttl)
