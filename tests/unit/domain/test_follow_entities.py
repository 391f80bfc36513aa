"""Tests for follow entities and conversion DTOs."""

import uuid

import pytest

from tunebridge.domain.dtos import (
    LinkInfo,
    OmittedTrack,
    PlatformPlaylistTracks,
    TrackJob,
    TrackSearchResult,
)
from tunebridge.domain.entities import (
    MAX_SUBSCRIBERS,
    FollowRecord,
    FollowStatus,
    parse_subscribers,
)
from tunebridge.domain.exceptions import TooManySubscribersError, ValidationError

A = uuid.UUID(int=1)


def _follow(subscribers: list) -> FollowRecord:
    return FollowRecord(
        developer="dev", app="app", entity_id="pl-1", entity_url="u", subscribers=subscribers
    )


class TestParseSubscribers:
    """Test subscriber id parsing."""

    def test_strings_and_uuids_mix(self) -> None:
        assert parse_subscribers([str(A), A]) == [A]

    def test_invalid_id_rejected(self) -> None:
        with pytest.raises(ValidationError):
            parse_subscribers(["not-a-uuid"])


class TestFollowRecord:
    """Test subscriber set rules."""

    def test_add_subscriber_is_idempotent(self) -> None:
        follow = _follow([A])
        assert follow.add_subscriber(A) is False
        assert follow.subscribers == [A]

    def test_cap_enforced_on_create(self) -> None:
        with pytest.raises(TooManySubscribersError):
            _follow([uuid.UUID(int=n) for n in range(MAX_SUBSCRIBERS + 1)])

    def test_cap_enforced_on_add(self) -> None:
        follow = _follow([uuid.UUID(int=n) for n in range(MAX_SUBSCRIBERS)])
        with pytest.raises(TooManySubscribersError):
            follow.add_subscriber(uuid.UUID(int=999))

    def test_lower_limit_on_add(self) -> None:
        follow = _follow([A, uuid.UUID(int=2)])
        with pytest.raises(TooManySubscribersError):
            follow.add_subscriber(uuid.UUID(int=3), limit=2)

    def test_limit_above_hard_cap_is_ignored(self) -> None:
        follow = _follow([uuid.UUID(int=n) for n in range(MAX_SUBSCRIBERS)])
        with pytest.raises(TooManySubscribersError):
            follow.add_subscriber(uuid.UUID(int=999), limit=MAX_SUBSCRIBERS * 2)

    def test_mark_failed_moves_watermark(self) -> None:
        follow = _follow([A])
        before = follow.updated_at

        follow.mark_failed()

        assert follow.status == FollowStatus.FAILED
        assert follow.updated_at >= before


class TestConversionDtos:
    """Test the small DTO helpers."""

    def test_link_info_requires_platform_and_id(self) -> None:
        with pytest.raises(ValidationError):
            LinkInfo(platform="", entity="playlist", entity_id="x")
        with pytest.raises(ValidationError):
            LinkInfo(platform="spotify", entity="playlist", entity_id="")

    def test_omitted_track_index_is_one_based(self) -> None:
        job = TrackJob(
            track=TrackSearchResult(url="u", title="T3", artists=["A"]),
            index=2,
            source_platform="spotify",
            target_platform="deezer",
        )

        omitted = OmittedTrack.from_job(job)

        assert omitted.index == 3
        assert omitted.platform == "spotify"

    def test_playlist_length_is_duration_sum(self) -> None:
        tracks = [
            TrackSearchResult(url="a", title="a", duration_milli=1500),
            TrackSearchResult(url="b", title="b", duration_milli=2500),
        ]
        assert PlatformPlaylistTracks.from_tracks(tracks).length == 4000
