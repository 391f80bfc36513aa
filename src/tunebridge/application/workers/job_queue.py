"""In-memory job queue with priorities, handlers and worker tasks.

Hey future me - this is the BASE queue. PersistentJobQueue extends it with a
DB table so jobs survive restarts; everything about ordering, handler
dispatch and retries lives here.

Ordering: (-priority, counter) in an asyncio.PriorityQueue, so higher
priority first and FIFO within a priority.

Lifecycle of a job:
    PENDING → RUNNING → COMPLETED
                      → FAILED → (retries left) PENDING again after 2**n s
                      → FAILED (final)
    PENDING → CANCELLED (skipped when a worker pulls it)
"""

import asyncio
import logging
import uuid
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

FINISHED_HISTORY = 100


class JobType(str, Enum):
    """Kinds of background jobs."""

    FOLLOW_SYNC = "follow_sync"


class JobStatus(str, Enum):
    """Job lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class Job:
    """A unit of background work."""

    id: str
    job_type: JobType
    payload: dict[str, Any]
    status: JobStatus = JobStatus.PENDING
    priority: int = 0
    retries: int = 0
    max_retries: int = 3
    result: Any = None
    error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def mark_running(self) -> None:
        self.status = JobStatus.RUNNING
        self.started_at = datetime.now(UTC)

    def mark_completed(self, result: Any = None) -> None:
        self.status = JobStatus.COMPLETED
        self.result = result
        self.completed_at = datetime.now(UTC)

    def mark_failed(self, error: str) -> None:
        self.status = JobStatus.FAILED
        self.error = error
        self.retries += 1
        self.completed_at = datetime.now(UTC)

    def should_retry(self) -> bool:
        return self.retries < self.max_retries


JobHandler = Callable[[Job], Awaitable[Any]]


class JobQueue:
    """Priority job queue processed by a fixed number of worker tasks."""

    def __init__(
        self, max_concurrent_jobs: int = 5, finished_history: int = FINISHED_HISTORY
    ) -> None:
        self._queue: asyncio.PriorityQueue[tuple[int, int, Job]] = asyncio.PriorityQueue()
        self._counter = 0
        # Pending, running and retry-scheduled jobs only.
        self._jobs: dict[str, Job] = {}
        # Last few finished jobs for get_job(); oldest dropped first.
        self._finished: OrderedDict[str, Job] = OrderedDict()
        self._finished_history = finished_history
        self._running_jobs: set[str] = set()
        self._handlers: dict[JobType, JobHandler] = {}
        self._max_concurrent_jobs = max_concurrent_jobs
        self._semaphore = asyncio.Semaphore(max_concurrent_jobs)
        self._workers: list[asyncio.Task[None]] = []
        self._delayed: set[asyncio.Task[None]] = set()
        self._running = False

    def register_handler(self, job_type: JobType, handler: JobHandler) -> None:
        """Register the coroutine that processes jobs of job_type."""
        self._handlers[job_type] = handler

    async def enqueue(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        max_retries: int = 3,
        priority: int = 0,
    ) -> str:
        """Add a job to the queue.

        Returns:
            Job ID
        """
        job = Job(
            id=str(uuid.uuid4()),
            job_type=job_type,
            payload=payload,
            max_retries=max_retries,
            priority=priority,
        )
        self._jobs[job.id] = job
        await self._put(job)
        logger.debug(f"Enqueued job {job.id} ({job_type.value})")
        return job.id

    async def _put(self, job: Job, priority_offset: int = 0) -> None:
        await self._queue.put((-job.priority + priority_offset, self._counter, job))
        self._counter += 1

    def get_job(self, job_id: str) -> Job | None:
        """Live job, or one of the most recently finished ones."""
        return self._jobs.get(job_id) or self._finished.get(job_id)

    def _retire(self, job: Job) -> None:
        """Move a job that reached a final state out of the live registry."""
        self._jobs.pop(job.id, None)
        self._finished[job.id] = job
        while len(self._finished) > self._finished_history:
            self._finished.popitem(last=False)

    async def cancel_job(self, job_id: str) -> bool:
        """Cancel a pending job. Running or finished jobs can't be cancelled."""
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.PENDING:
            return False
        job.status = JobStatus.CANCELLED
        job.completed_at = datetime.now(UTC)
        # Still sitting in the priority queue; the worker skips it by status.
        self._retire(job)
        return True

    # =========================================================================
    # WORKERS
    # =========================================================================

    async def start(self, num_workers: int = 1) -> None:
        """Start worker tasks. Returns immediately."""
        if self._running:
            return
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"job-worker-{n}")
            for n in range(num_workers)
        ]
        logger.info(f"JobQueue started with {num_workers} worker(s)")

    async def stop(self) -> None:
        """Cancel all workers and pending retry timers."""
        self._running = False
        tasks = [*self._workers, *self._delayed]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers = []
        self._delayed.clear()
        logger.info("JobQueue stopped")

    async def _worker(self, worker_no: int) -> None:
        while self._running:
            _, _, job = await self._queue.get()
            try:
                if job.status == JobStatus.CANCELLED:
                    continue
                async with self._semaphore:
                    await self.process_job(job)
            except Exception as e:
                # Bookkeeping failed (DB down?) - log and keep the worker alive.
                logger.exception(f"Job worker {worker_no} error on job {job.id}: {e}")
            finally:
                self._queue.task_done()

    async def process_job(self, job: Job) -> None:
        """Run one job through its handler and record the outcome."""
        handler = self._handlers.get(job.job_type)
        if handler is None:
            await self.fail_job(job.id, f"No handler registered for {job.job_type.value}")
            return

        if not await self._mark_job_running(job):
            logger.debug(f"Job {job.id} was claimed elsewhere, skipping")
            self._jobs.pop(job.id, None)
            return

        self._running_jobs.add(job.id)
        try:
            result = await handler(job)
        except Exception as e:
            logger.warning(f"Job {job.id} ({job.job_type.value}) failed: {e}")
            await self.fail_job(job.id, str(e))
        else:
            await self.complete_job(job.id, result)

    async def join(self) -> None:
        """Wait until every queued job was processed (tests, shutdown drains)."""
        await self._queue.join()

    # =========================================================================
    # STATE TRANSITIONS (overridden by PersistentJobQueue)
    # =========================================================================

    async def _mark_job_running(self, job: Job) -> bool:
        job.mark_running()
        return True

    async def complete_job(self, job_id: str, result: Any = None) -> None:
        job = self._jobs.get(job_id)
        self._running_jobs.discard(job_id)
        if job:
            job.mark_completed(result)
            self._retire(job)

    async def fail_job(self, job_id: str, error: str) -> None:
        job = self._jobs.get(job_id)
        self._running_jobs.discard(job_id)
        if job is None:
            return
        job.mark_failed(error)
        if job.should_retry():
            self._schedule_retry(job, 2**job.retries)
        else:
            self._retire(job)

    def _schedule_retry(self, job: Job, delay_seconds: float) -> None:
        """Put the job back after delay_seconds with slightly lower priority."""
        job.status = JobStatus.PENDING

        async def requeue() -> None:
            await asyncio.sleep(delay_seconds)
            await self._put(job, priority_offset=1)

        task = asyncio.create_task(requeue(), name=f"job-retry-{job.id}")
        self._delayed.add(task)
        task.add_done_callback(self._delayed.discard)

    def get_stats(self) -> dict[str, Any]:
        by_status: dict[str, int] = {}
        for job in self._jobs.values():
            by_status[job.status.value] = by_status.get(job.status.value, 0) + 1
        return {
            "queued": self._queue.qsize(),
            "live": len(self._jobs),
            "running": len(self._running_jobs),
            "workers": len(self._workers),
            "by_status": by_status,
        }
