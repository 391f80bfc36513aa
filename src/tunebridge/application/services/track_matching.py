"""Track matching - the parallel worker pool behind playlist conversion.

Hey future me - this is where a 500-track playlist becomes 500 concurrent-ish
searches on the target platform, and where ORDER gets restored afterwards.

PIPELINE (three strict stages, no partial reordering):

    producer ──put──> job_queue (bounded, W slots) ──get──> W workers
                                                              │
                         aggregator <──get── results_queue <──┘
                         (append under lock)

    1. producer enqueues every TrackJob, then one None per worker (= closed)
    2. each worker loops until it pulls None; the gather() over all workers
       is the barrier, after it the closer puts None on results_queue
    3. aggregator appends until it sees None, THEN one stable sort by index

Completion order is whatever the network decides. Output order must be the
source playlist order, so nothing downstream may trust list position before
the sort. Jobs carry their index for exactly that reason.

A failed search never aborts the playlist. The job keeps its error and ends
up in the omitted list with index+1 (1-based, like the playlist UI shows).

CANCELLATION: pass cancel_event and/or set timeout_seconds. When either
fires, every pool task is cancelled (which cancels in-flight HTTP calls) and
whatever hadn't resolved is reported as omitted. Callers still get a
complete matched+omitted partition of the source playlist.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from tunebridge.application.cache.conversion_cache import ConversionCache
from tunebridge.domain.dtos import OmittedTrack, TrackJob, TrackSearchData, TrackSearchResult
from tunebridge.domain.exceptions import (
    NotFoundError,
    SerializationError,
    TransientUpstreamError,
)
from tunebridge.domain.ports.platform import IPlatformService

logger = logging.getLogger(__name__)

DEFAULT_WORKER_COUNT = 10

MatchCallback = Callable[[TrackJob], Awaitable[None]]


def build_jobs(
    tracks: list[TrackSearchResult], source_platform: str, target_platform: str
) -> list[TrackJob]:
    """Create one job per source track, index = position in the source list."""
    return [
        TrackJob(
            track=track,
            index=index,
            source_platform=source_platform,
            target_platform=target_platform,
        )
        for index, track in enumerate(tracks)
    ]


@dataclass
class MatchingOutcome:
    """Sorted jobs plus the matched/omitted split."""

    jobs: list[TrackJob] = field(default_factory=list)
    cancelled: bool = False

    @property
    def matched(self) -> list[TrackSearchResult]:
        return [job.result for job in self.jobs if job.matched and job.result is not None]

    @property
    def omitted(self) -> list[OmittedTrack]:
        return [OmittedTrack.from_job(job) for job in self.jobs if not job.matched]


class TrackMatcher:
    """Single-track lookup on a target platform, backed by the track cache.

    Shared by the pool and by single-track conversion so both reuse the same
    cache entries. Upstream errors propagate. The pool turns them into
    omissions, single-track conversion decides per mode.
    """

    def __init__(self, cache: ConversionCache | None = None) -> None:
        self._cache = cache

    async def match(
        self, query: TrackSearchData, platform: str, service: IPlatformService
    ) -> TrackSearchResult | None:
        cached = await self._cached(query, platform)
        if cached is not None:
            return cached

        result = await service.search_track_with_title(query)
        if result is not None and self._cache is not None:
            await self._cache.cache_track_match(
                platform, query.primary_artist, query.title, result
            )
        return result

    async def _cached(
        self, query: TrackSearchData, platform: str
    ) -> TrackSearchResult | None:
        if self._cache is None:
            return None
        try:
            return await self._cache.get_track_match(
                platform, query.primary_artist, query.title
            )
        except SerializationError as e:
            # A broken entry is just a miss; the fresh match overwrites it.
            logger.warning(f"[MATCHING] Ignoring unreadable track cache entry: {e.message}")
            return None


class TrackMatchingPool:
    """Fixed-size pool of matching workers.

    Configuration:
    - worker_count: parallel searches per conversion (default 10)
    - timeout_seconds: deadline for the whole run (None = wait forever)
    """

    def __init__(
        self,
        matcher: TrackMatcher | None = None,
        worker_count: int = DEFAULT_WORKER_COUNT,
        timeout_seconds: float | None = None,
    ) -> None:
        if worker_count < 1:
            raise ValueError("worker_count must be >= 1")
        self._matcher = matcher or TrackMatcher()
        self._worker_count = worker_count
        self._timeout = timeout_seconds

    @property
    def worker_count(self) -> int:
        return self._worker_count

    async def run(
        self,
        jobs: list[TrackJob],
        target: IPlatformService,
        cancel_event: asyncio.Event | None = None,
        on_match: MatchCallback | None = None,
    ) -> MatchingOutcome:
        """Match every job against target and return them in index order.

        Args:
            jobs: One job per source track (see build_jobs)
            target: Platform service to search on
            cancel_event: Set it to stop early
            on_match: Awaited once per matched job, in completion order.
                Exceptions from it are logged and ignored.

        Returns:
            MatchingOutcome with len(jobs) entries sorted by index
        """
        if not jobs:
            return MatchingOutcome()

        workers = min(self._worker_count, len(jobs))
        job_queue: asyncio.Queue[TrackJob | None] = asyncio.Queue(maxsize=workers)
        results: asyncio.Queue[TrackJob | None] = asyncio.Queue(maxsize=workers)
        collected: list[TrackJob] = []
        collected_lock = asyncio.Lock()

        async def produce() -> None:
            for job in jobs:
                await job_queue.put(job)
            for _ in range(workers):
                await job_queue.put(None)

        async def work(worker_no: int) -> None:
            while True:
                job = await job_queue.get()
                if job is None:
                    return
                await self._match_job(job, target, worker_no)
                await results.put(job)

        async def drain_workers() -> None:
            await asyncio.gather(*(work(n) for n in range(workers)))
            await results.put(None)

        async def aggregate() -> None:
            while True:
                job = await results.get()
                if job is None:
                    return
                async with collected_lock:
                    collected.append(job)
                if on_match is not None and job.matched:
                    await self._run_callback(on_match, job)

        pipeline = [
            asyncio.create_task(produce(), name="matching-producer"),
            asyncio.create_task(drain_workers(), name="matching-workers"),
        ]
        aggregator = asyncio.create_task(aggregate(), name="matching-aggregator")
        cancel_waiter = (
            asyncio.create_task(cancel_event.wait(), name="matching-cancel")
            if cancel_event is not None
            else None
        )

        cancelled = False
        try:
            waiting: set[asyncio.Task] = {aggregator}
            if cancel_waiter is not None:
                waiting.add(cancel_waiter)
            done, _ = await asyncio.wait(
                waiting, timeout=self._timeout, return_when=asyncio.FIRST_COMPLETED
            )
            if aggregator not in done:
                cancelled = True
                reason = "cancelled" if cancel_waiter in done else "timed out"
                logger.warning(
                    f"[MATCHING] Pool {reason} with {len(collected)}/{len(jobs)} jobs resolved"
                )
            else:
                # Re-raises if the aggregator itself blew up.
                aggregator.result()
        finally:
            leftovers = [*pipeline, aggregator]
            if cancel_waiter is not None:
                leftovers.append(cancel_waiter)
            for task in leftovers:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*leftovers, return_exceptions=True)

        if cancelled:
            # jobs is the arena; anything a worker never finished gets an error.
            for job in jobs:
                if job.result is None and job.error is None:
                    job.error = TransientUpstreamError(
                        "Matching stopped before this track was resolved",
                        platform=job.target_platform,
                    )
            ordered = list(jobs)
        else:
            ordered = collected

        ordered.sort(key=lambda job: job.index)
        outcome = MatchingOutcome(jobs=ordered, cancelled=cancelled)
        logger.debug(
            f"[MATCHING] {len(outcome.matched)} matched, {len(outcome.omitted)} omitted "
            f"({workers} workers)"
        )
        return outcome

    async def _match_job(
        self, job: TrackJob, target: IPlatformService, worker_no: int
    ) -> None:
        query = job.track.to_search_data()
        try:
            result = await self._matcher.match(query, job.target_platform, target)
        except Exception as e:
            # Per-track failure: recorded on the job, never raised.
            job.error = e
            logger.debug(
                f"[MATCHING] worker={worker_no} index={job.index} "
                f"'{query.title}' failed on {job.target_platform}: {e}"
            )
            return

        if result is None:
            job.error = NotFoundError("track", query.title, job.target_platform)
        else:
            job.result = result

    async def _run_callback(self, callback: MatchCallback, job: TrackJob) -> None:
        try:
            await callback(job)
        except Exception as e:
            logger.warning(f"[MATCHING] on_match callback failed for index {job.index}: {e}")
