"""Tests for the track matching worker pool."""

import asyncio

import pytest
from conftest import FakePlatformService, make_track

from tunebridge.application.cache.conversion_cache import ConversionCache
from tunebridge.application.services.track_matching import (
    TrackMatcher,
    TrackMatchingPool,
    build_jobs,
)
from tunebridge.domain.dtos import TrackJob, TrackSearchResult
from tunebridge.domain.exceptions import NotFoundError, TransientUpstreamError

# Hey future me - these tests pin down the pool's contract:
# 1. Output is in source order no matter which search finishes first
# 2. One failing track never aborts the rest
# 3. matched + omitted always partitions the input
# 4. Cancel/timeout still returns a complete partition


def _jobs(count: int) -> list[TrackJob]:
    return build_jobs([make_track(n) for n in range(1, count + 1)], "spotify", "deezer")


class TestBuildJobs:
    """Test job construction."""

    def test_indexes_follow_source_order(self) -> None:
        """Jobs carry their 0-based position in the source list."""
        jobs = _jobs(3)
        assert [job.index for job in jobs] == [0, 1, 2]
        assert [job.track.title for job in jobs] == ["T1", "T2", "T3"]
        assert all(job.target_platform == "deezer" for job in jobs)


class TestTrackMatchingPool:
    """Test TrackMatchingPool.run()."""

    def test_rejects_zero_workers(self) -> None:
        with pytest.raises(ValueError):
            TrackMatchingPool(worker_count=0)

    @pytest.mark.asyncio
    async def test_empty_input(self) -> None:
        """No jobs, no work, empty outcome."""
        outcome = await TrackMatchingPool().run([], FakePlatformService("deezer"))
        assert outcome.jobs == []
        assert outcome.matched == []
        assert outcome.omitted == []
        assert outcome.cancelled is False

    @pytest.mark.asyncio
    async def test_output_order_ignores_completion_order(self) -> None:
        """Later tracks finish first, output still follows the source."""
        target = FakePlatformService("deezer")
        for n in range(1, 7):
            # T1 is slowest, T6 fastest.
            target.delays[f"T{n}"] = (7 - n) * 0.01

        outcome = await TrackMatchingPool(worker_count=6).run(_jobs(6), target)

        assert [t.title for t in outcome.matched] == ["T1", "T2", "T3", "T4", "T5", "T6"]
        assert [job.index for job in outcome.jobs] == list(range(6))

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_going(self) -> None:
        """T2 fails upstream: T1 and T3 matched, T2 omitted with 1-based index 2."""
        target = FakePlatformService("deezer")
        target.failures["T2"] = TransientUpstreamError("rate limited", platform="deezer")

        outcome = await TrackMatchingPool(worker_count=2).run(_jobs(3), target)

        assert [t.title for t in outcome.matched] == ["T1", "T3"]
        assert len(outcome.omitted) == 1
        omitted = outcome.omitted[0]
        assert omitted.title == "T2"
        assert omitted.index == 2
        assert omitted.platform == "spotify"
        assert isinstance(outcome.jobs[1].error, TransientUpstreamError)

    @pytest.mark.asyncio
    async def test_no_match_becomes_not_found(self) -> None:
        """A None search result is an omission, not a crash."""
        target = FakePlatformService("deezer")
        target.misses.add("T1")

        outcome = await TrackMatchingPool().run(_jobs(2), target)

        assert [o.title for o in outcome.omitted] == ["T1"]
        assert isinstance(outcome.jobs[0].error, NotFoundError)

    @pytest.mark.asyncio
    async def test_matched_plus_omitted_is_everything(self) -> None:
        target = FakePlatformService("deezer")
        target.misses.update({"T3", "T7"})
        target.failures["T5"] = RuntimeError("boom")

        outcome = await TrackMatchingPool(worker_count=3).run(_jobs(10), target)

        assert len(outcome.matched) + len(outcome.omitted) == 10
        assert [o.index for o in outcome.omitted] == [3, 5, 7]

    @pytest.mark.asyncio
    async def test_concurrency_bounded_by_worker_count(self) -> None:
        target = FakePlatformService("deezer")
        for n in range(1, 21):
            target.delays[f"T{n}"] = 0.005

        await TrackMatchingPool(worker_count=4).run(_jobs(20), target)

        assert target.search_calls == 20
        assert 1 <= target.max_active <= 4

    @pytest.mark.asyncio
    async def test_on_match_called_once_per_match(self) -> None:
        target = FakePlatformService("deezer")
        target.misses.add("T2")
        seen: list[int] = []

        async def on_match(job: TrackJob) -> None:
            seen.append(job.index)

        await TrackMatchingPool().run(_jobs(3), target, on_match=on_match)

        assert sorted(seen) == [0, 2]

    @pytest.mark.asyncio
    async def test_on_match_errors_are_ignored(self) -> None:
        target = FakePlatformService("deezer")

        async def on_match(job: TrackJob) -> None:
            raise RuntimeError("listener crashed")

        outcome = await TrackMatchingPool().run(_jobs(3), target, on_match=on_match)

        assert len(outcome.matched) == 3

    @pytest.mark.asyncio
    async def test_cancel_reports_unfinished_as_omitted(self) -> None:
        """Cancelling after the first match omits everything still in flight."""
        target = FakePlatformService("deezer")
        target.delays["T2"] = 10
        target.delays["T3"] = 10
        cancel = asyncio.Event()

        async def on_match(job: TrackJob) -> None:
            cancel.set()

        outcome = await TrackMatchingPool(worker_count=1).run(
            _jobs(3), target, cancel_event=cancel, on_match=on_match
        )

        assert outcome.cancelled is True
        assert [t.title for t in outcome.matched] == ["T1"]
        assert [o.index for o in outcome.omitted] == [2, 3]
        assert all(isinstance(job.error, TransientUpstreamError) for job in outcome.jobs[1:])

    @pytest.mark.asyncio
    async def test_timeout_stops_the_run(self) -> None:
        target = FakePlatformService("deezer")
        target.delays.update({"T1": 10, "T2": 10})

        outcome = await TrackMatchingPool(timeout_seconds=0.05).run(_jobs(2), target)

        assert outcome.cancelled is True
        assert outcome.matched == []
        assert len(outcome.omitted) == 2
        # In-flight searches were cancelled, not left running.
        assert target.active == 0


class TestTrackMatcher:
    """Test the cache-backed single-track lookup."""

    @pytest.mark.asyncio
    async def test_second_lookup_served_from_cache(self) -> None:
        cache = ConversionCache()
        matcher = TrackMatcher(cache)
        target = FakePlatformService("deezer")
        query = make_track(1).to_search_data()

        first = await matcher.match(query, "deezer", target)
        second = await matcher.match(query, "deezer", target)

        assert first == second
        assert target.search_calls == 1

    @pytest.mark.asyncio
    async def test_misses_are_not_cached(self) -> None:
        cache = ConversionCache()
        matcher = TrackMatcher(cache)
        target = FakePlatformService("deezer")
        target.misses.add("T1")
        query = make_track(1).to_search_data()

        assert await matcher.match(query, "deezer", target) is None
        assert await matcher.match(query, "deezer", target) is None
        assert target.search_calls == 2

    @pytest.mark.asyncio
    async def test_unreadable_cache_entry_is_a_miss(self) -> None:
        cache = ConversionCache()
        query = make_track(1).to_search_data()
        key = cache._make_track_match_key("deezer", query.primary_artist, query.title)
        await cache._cache.set(key, "{not json", 60)
        target = FakePlatformService("deezer")

        result = await TrackMatcher(cache).match(query, "deezer", target)

        assert result is not None
        assert target.search_calls == 1

    @pytest.mark.asyncio
    async def test_non_latin_tracks_each_get_their_own_match(self) -> None:
        """Three different CJK/Hangul tracks must not share one cache entry."""
        source = [
            TrackSearchResult(url="u1", title="レモン", artists=["米津玄師"]),
            TrackSearchResult(url="u2", title="夜に駆ける", artists=["YOASOBI"]),
            TrackSearchResult(url="u3", title="강남스타일", artists=["싸이"]),
        ]
        target = FakePlatformService("deezer")
        pool = TrackMatchingPool(matcher=TrackMatcher(ConversionCache()), worker_count=1)

        outcome = await pool.run(build_jobs(source, "spotify", "deezer"), target)

        assert [t.title for t in outcome.matched] == ["レモン", "夜に駆ける", "강남스타일"]
        assert target.search_calls == 3
