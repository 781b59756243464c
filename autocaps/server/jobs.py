"""In-memory render job store with a bounded worker pool and TTL cleanup.

WHY: Renders take seconds to tens of minutes, so the HTTP API returns a job
id immediately and the work runs elsewhere. Clients follow the job by
polling its snapshot or by subscribing to its event stream. An in-memory
store is sufficient for a single-process service with no persistence
requirements.

HOW: Four components work together:
  JobStatus   : enum of valid job states
  RenderJob   : versioned dataclass holding the descriptor and job state
  JobStore    : thread-safe dict-based store with explicit transitions,
                monotonic progress, TTL cleanup, and a ThreadPoolExecutor
                that runs submitted work off the request path
  InvalidTransitionError : raised for transitions the table does not allow

RULES:
- All store mutations are protected by threading.Lock
- Transitions: queued → processing → done | failed, queued → failed
- done and failed are terminal; nothing leaves them
- Progress never decreases; values below the current one are ignored
- Progress is 1.0 only in the done state
- Every change bumps updated_at and the store's change counter, which event
  streams use to notice updates
- Job IDs are UUID4 hex strings generated at creation time
- Default TTL is 1 hour (3600 seconds), measured from completion
"""

from __future__ import annotations

import enum
import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional

from autocaps.config import JOB_TTL_S, MAX_CONCURRENT_RENDERS
from autocaps.render.models import RenderDescriptor

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = JOB_TTL_S

JOB_SCHEMA_VERSION = 1

# Highest progress value a job may report before it is done
MAX_ACTIVE_PROGRESS = 0.9999


class JobStatus(str, enum.Enum):
    """Valid states for a render job.

    HOW: Inherits from str so values serialize cleanly to JSON.

    RULES:
    - queued: job created, waiting for a worker
    - processing: a worker is rendering it
    - done: output uploaded, download_url set
    - failed: unrecoverable error at any stage, error set
    """

    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.FAILED)


_TRANSITIONS: Dict[JobStatus, tuple] = {
    JobStatus.QUEUED: (JobStatus.PROCESSING, JobStatus.FAILED),
    JobStatus.PROCESSING: (JobStatus.DONE, JobStatus.FAILED),
    JobStatus.DONE: (),
    JobStatus.FAILED: (),
}


class InvalidTransitionError(RuntimeError):
    """Raised when a job is moved to a state its current state does not allow."""

    def __init__(self, job_id: str, current: JobStatus, target: JobStatus) -> None:
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(
            "Job {} cannot move from {} to {}".format(job_id, current.value, target.value)
        )


@dataclass
class RenderJob:
    """Metadata and state for a single render job.

    WHY: The job record is the only thing shared between the request
    handler, the worker, and event streams. It is a closed record with an
    explicit schema version so its shape can evolve deliberately.

    RULES:
    - id / upload_id / descriptor are immutable after creation
    - progress: 0.0–1.0, non-decreasing
    - result_path / download_url are set only when done
    - error is set only when failed
    - started_at: when processing began; completed_at: terminal timestamp
    """

    id: str
    upload_id: str
    descriptor: RenderDescriptor
    status: JobStatus
    created_at: float
    updated_at: float
    progress: float = 0.0
    result_path: Optional[str] = None
    download_url: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    schema_version: int = JOB_SCHEMA_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "id": self.id,
            "upload_id": self.upload_id,
            "status": self.status.value,
            "progress": self.progress,
            "result_path": self.result_path,
            "download_url": self.download_url,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "descriptor": self.descriptor.to_dict(),
        }


class JobStore:
    """Thread-safe in-memory store for render jobs.

    WHY: Request handlers, render workers, and event streams all touch job
    state concurrently. A centralized store with locking keeps transitions
    totally ordered per job.

    HOW: Jobs live in a plain dict keyed by job ID. All mutations acquire a
    threading.Lock; status changes go through _transition(). Work is
    submitted to a ThreadPoolExecutor so no more than max_workers renders
    run at once; each worker marks its job failed if the task raises.

    RULES:
    - get_job() returns None for missing job IDs (no exceptions)
    - snapshot() returns a copy safe to read without the lock
    - create_job() raises ValueError when max_jobs active jobs exist
    - cleanup_expired() removes terminal jobs past their TTL
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_jobs: int = 100,
        max_workers: int = MAX_CONCURRENT_RENDERS,
    ) -> None:
        self._jobs: Dict[str, RenderJob] = {}
        self._lock = threading.Lock()
        self._ttl_seconds = ttl_seconds
        self.max_jobs = max_jobs
        self.max_workers = max(1, max_workers)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._version = 0

    # -----------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------

    @property
    def version(self) -> int:
        """Counter bumped on every change to any job."""
        with self._lock:
            return self._version

    def get_job(self, job_id: str) -> Optional[RenderJob]:
        """Retrieve a job by ID, or None if not found.

        RULES:
        - The returned RenderJob is the live instance (not a copy)
        """
        with self._lock:
            return self._jobs.get(job_id)

    def snapshot(self, job_id: str) -> Optional[RenderJob]:
        """A point-in-time copy of a job, or None if not found."""
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job is not None else None

    def list_jobs(self) -> List[RenderJob]:
        """All jobs ordered by creation time (oldest first)."""
        with self._lock:
            return sorted(self._jobs.values(), key=lambda j: j.created_at)

    # -----------------------------------------------------------------
    # Mutations
    # -----------------------------------------------------------------

    def create_job(
        self,
        descriptor: RenderDescriptor,
        job_id: Optional[str] = None,
    ) -> RenderJob:
        """Create a new job in the queued state.

        RULES:
        - job_id may be pre-allocated by the caller (the subtitle key is
          derived from it before the job exists); otherwise a UUID4 is used
        - Raises ValueError for a duplicate id or when max_jobs active jobs
          already exist
        """
        with self._lock:
            active = sum(1 for j in self._jobs.values() if not j.status.is_terminal)
            if active >= self.max_jobs:
                raise ValueError(
                    "Maximum number of concurrent jobs ({}) reached".format(self.max_jobs)
                )

            job_id = job_id or uuid.uuid4().hex
            if job_id in self._jobs:
                raise ValueError("Job {} already exists".format(job_id))

            now = time.time()
            job = RenderJob(
                id=job_id,
                upload_id=descriptor.upload_id,
                descriptor=descriptor,
                status=JobStatus.QUEUED,
                created_at=now,
                updated_at=now,
            )
            self._jobs[job_id] = job
            self._version += 1

        logger.info("Created render job %s for upload %s", job_id, descriptor.upload_id)
        return job

    def mark_processing(self, job_id: str) -> Optional[RenderJob]:
        return self._transition(job_id, JobStatus.PROCESSING)

    def mark_done(self, job_id: str, result_path: str, download_url: str) -> Optional[RenderJob]:
        return self._transition(
            job_id,
            JobStatus.DONE,
            progress=1.0,
            result_path=result_path,
            download_url=download_url,
        )

    def mark_failed(self, job_id: str, error: str) -> Optional[RenderJob]:
        return self._transition(job_id, JobStatus.FAILED, error=error or "Render failed")

    def update_progress(self, job_id: str, progress: float) -> Optional[RenderJob]:
        """Record render progress.

        RULES:
        - Ignored unless the job is processing
        - Capped at MAX_ACTIVE_PROGRESS; lower-than-current values are ignored
        - Returns the job, or None if job_id not found
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if job.status != JobStatus.PROCESSING:
                return job
            value = min(max(0.0, float(progress)), MAX_ACTIVE_PROGRESS)
            if value <= job.progress:
                return job
            job.progress = value
            job.updated_at = time.time()
            self._version += 1
            return job

    def _transition(self, job_id: str, target: JobStatus, **fields: Any) -> Optional[RenderJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if target not in _TRANSITIONS[job.status]:
                raise InvalidTransitionError(job_id, job.status, target)

            now = time.time()
            job.status = target
            for name, value in fields.items():
                setattr(job, name, value)
            job.updated_at = now
            if target == JobStatus.PROCESSING:
                job.started_at = now
            if target.is_terminal:
                job.completed_at = now
            self._version += 1

        logger.info("Render job %s -> %s", job_id, target.value)
        return job

    def delete_job(self, job_id: str) -> bool:
        """Delete a terminal job.

        RULES:
        - Returns True if the job was found and deleted, False if unknown
        - Raises InvalidTransitionError for queued or processing jobs
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            if not job.status.is_terminal:
                raise InvalidTransitionError(job_id, job.status, job.status)
            del self._jobs[job_id]
            self._version += 1

        logger.info("Deleted render job %s", job_id)
        return True

    def cleanup_expired(self) -> int:
        """Remove terminal jobs whose completed_at is older than the TTL.

        RULES:
        - Only done / failed jobs are candidates
        - Returns the count of removed jobs
        """
        now = time.time()
        expired: List[RenderJob] = []

        with self._lock:
            for job_id, job in list(self._jobs.items()):
                if not job.status.is_terminal or job.completed_at is None:
                    continue
                if now - job.completed_at > self._ttl_seconds:
                    expired.append(self._jobs.pop(job_id))
            if expired:
                self._version += 1

        for job in expired:
            logger.info("Expired render job %s (completed %.0fs ago)", job.id, now - job.completed_at)

        return len(expired)

    # -----------------------------------------------------------------
    # Execution
    # -----------------------------------------------------------------

    def run_in_background(self, job_id: str, task: Callable[[str, JobStore], None]) -> None:
        """Run task(job_id, store), marking the job failed if it raises.

        WHY: A worker that dies must not leave its job stuck in queued or
        processing forever.
        """
        try:
            task(job_id, self)
        except Exception as exc:
            logger.exception("Render task for job %s raised", job_id)
            job = self.get_job(job_id)
            if job is not None and not job.status.is_terminal:
                self.mark_failed(job_id, str(exc) or exc.__class__.__name__)

    def submit(self, job_id: str, task: Callable[[str, JobStore], None]) -> Future:
        """Queue task on the worker pool; never blocks the caller."""
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="autocaps-render"
                )
            executor = self._executor
        return executor.submit(self.run_in_background, job_id, task)

    def shutdown(self, wait: bool = False) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
