"""Background workers and the job queue."""

from tunebridge.application.workers.follow_sync_worker import FollowSyncWorker
from tunebridge.application.workers.job_queue import Job, JobQueue, JobStatus, JobType
from tunebridge.application.workers.persistent_job_queue import PersistentJobQueue

__all__ = [
    "FollowSyncWorker",
    "Job",
    "JobQueue",
    "JobStatus",
    "JobType",
    "PersistentJobQueue",
]
