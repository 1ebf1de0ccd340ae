"""
Job Tracking

Track watermark generation jobs and bulk regeneration batches from
submission to completion. Records are kept in memory for status
polling and purged once they have been finished for longer than the
retention window.
"""

import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple, Union


logger = logging.getLogger(__name__)

MAX_BATCH_ERRORS = 100


class Priority(IntEnum):
    """Generation priority. Lower value is served first."""
    HIGH = 0
    NORMAL = 1
    LOW = 2

    @classmethod
    def parse(cls, value: Union["Priority", str, int]) -> "Priority":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown priority: {value}")
        return cls(value)

    @property
    def queue_name(self) -> str:
        return self.name.lower()


class JobState(Enum):
    """Job states."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


FINISHED_STATES = (JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED)


class BatchStatus(Enum):
    """Bulk regeneration states."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class JobRecord:
    """One asynchronous generation job."""
    job_key: str
    source_path: str
    state: JobState = JobState.QUEUED
    priority: Priority = Priority.NORMAL
    batch_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result_path: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_finished(self) -> bool:
        return self.state in FINISHED_STATES

    def update_state(
        self,
        state: JobState,
        result_path: Optional[str] = None,
        error: Optional[str] = None,
    ):
        """Update job state and timestamps."""
        self.state = state
        self.updated_at = datetime.utcnow()

        if state == JobState.RUNNING and not self.started_at:
            self.started_at = self.updated_at

        if result_path is not None:
            self.result_path = result_path
        if error is not None:
            self.error = error

        if state in FINISHED_STATES:
            self.completed_at = self.updated_at

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        data["priority"] = self.priority.queue_name
        for key in ("created_at", "updated_at", "started_at", "completed_at"):
            value = getattr(self, key)
            data[key] = value.isoformat() if value else None
        return data


@dataclass
class BatchRecord:
    """Aggregate progress of one bulk regeneration."""
    batch_id: str
    total: int
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    status: BatchStatus = BatchStatus.QUEUED
    errors: List[Dict[str, Any]] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def progress_percent(self) -> float:
        if self.total <= 0:
            return 100.0
        return round(self.processed / self.total * 100, 2)

    @property
    def is_finished(self) -> bool:
        return self.status in (BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.CANCELLED)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["progress_percent"] = self.progress_percent
        for key in ("created_at", "started_at", "completed_at"):
            value = getattr(self, key)
            data[key] = value.isoformat() if value else None
        return data


class JobTracker:
    """
    Thread-safe registry of job and batch records.

    Job records are keyed by job_key (the artifact cache key), so a
    second request for the same artifact finds the existing job.
    """

    def __init__(self):
        self._jobs: Dict[str, JobRecord] = {}
        self._batches: Dict[str, BatchRecord] = {}
        self._lock = threading.RLock()

    # =========================================================================
    # Jobs
    # =========================================================================

    def create_job(
        self,
        job_key: str,
        source_path: str,
        priority: Priority = Priority.NORMAL,
        batch_id: Optional[str] = None,
    ) -> JobRecord:
        job = JobRecord(job_key=job_key, source_path=source_path, priority=priority, batch_id=batch_id)
        with self._lock:
            self._jobs[job_key] = job
        logger.debug(f"Queued job {job_key} for {source_path} ({priority.queue_name})")
        return job

    def get_job(self, job_key: str) -> Optional[JobRecord]:
        with self._lock:
            return self._jobs.get(job_key)

    def find_active(self, job_key: str) -> Optional[JobRecord]:
        """Queued or running job for this key, if any."""
        with self._lock:
            job = self._jobs.get(job_key)
            if job is not None and not job.is_finished:
                return job
            return None

    def get_or_create_job(
        self,
        job_key: str,
        source_path: str,
        priority: Priority = Priority.NORMAL,
    ) -> Tuple[JobRecord, bool]:
        """
        Active job for job_key, or a new queued one.

        Returns:
            (job, created). Only the caller that gets created=True may
            enqueue work for the job.
        """
        with self._lock:
            existing = self.find_active(job_key)
            if existing is not None:
                return existing, False
            return self.create_job(job_key, source_path, priority=priority), True

    def update_job(
        self,
        job_key: str,
        state: JobState,
        result_path: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[JobRecord]:
        with self._lock:
            job = self._jobs.get(job_key)
            if job is None:
                return None
            job.update_state(state, result_path=result_path, error=error)

        if state == JobState.FAILED:
            logger.error(f"Job {job_key} failed: {error}")
        return job

    def cancel_queued(self) -> int:
        """Cancel every job that has not started yet. Returns the count."""
        cancelled = 0
        with self._lock:
            for job in self._jobs.values():
                if job.state == JobState.QUEUED:
                    job.update_state(JobState.CANCELLED, error="superseded")
                    cancelled += 1
        return cancelled

    def list_jobs(self, state: Optional[JobState] = None, limit: int = 100) -> List[JobRecord]:
        with self._lock:
            jobs = list(self._jobs.values())
        if state:
            jobs = [j for j in jobs if j.state == state]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]

    # =========================================================================
    # Batches
    # =========================================================================

    def create_batch(self, total: int) -> BatchRecord:
        batch = BatchRecord(batch_id=f"batch_{uuid.uuid4().hex[:16]}", total=total)
        with self._lock:
            self._batches[batch.batch_id] = batch
        logger.info(f"Created batch {batch.batch_id} with {total} items")
        return batch

    def get_batch(self, batch_id: str) -> Optional[BatchRecord]:
        with self._lock:
            return self._batches.get(batch_id)

    def start_batch(self, batch_id: str) -> None:
        with self._lock:
            batch = self._batches.get(batch_id)
            if batch is not None and batch.status == BatchStatus.QUEUED:
                batch.status = BatchStatus.PROCESSING
                batch.started_at = datetime.utcnow()

    def record_batch_item(
        self,
        batch_id: str,
        source_path: str,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        with self._lock:
            batch = self._batches.get(batch_id)
            if batch is None:
                return
            batch.processed += 1
            if success:
                batch.succeeded += 1
            else:
                batch.failed += 1
                batch.errors.append({
                    "source_path": source_path,
                    "error": error,
                    "at": datetime.utcnow().isoformat(),
                })
                del batch.errors[:-MAX_BATCH_ERRORS]

    def finish_batch(self, batch_id: str) -> Optional[BatchRecord]:
        """Mark a batch completed, or failed if no item succeeded."""
        with self._lock:
            batch = self._batches.get(batch_id)
            if batch is None or batch.is_finished:
                return batch
            if batch.total > 0 and batch.succeeded == 0 and batch.failed > 0:
                batch.status = BatchStatus.FAILED
            else:
                batch.status = BatchStatus.COMPLETED
            batch.completed_at = datetime.utcnow()

        logger.info(
            f"Batch {batch_id} {batch.status.value}: "
            f"{batch.succeeded} succeeded, {batch.failed} failed of {batch.total}"
        )
        return batch

    def cancel_batch(self, batch_id: str) -> bool:
        with self._lock:
            batch = self._batches.get(batch_id)
            if batch is None or batch.is_finished:
                return False
            batch.status = BatchStatus.CANCELLED
            batch.completed_at = datetime.utcnow()

        logger.info(f"Cancelled batch {batch_id}")
        return True

    def is_batch_cancelled(self, batch_id: str) -> bool:
        with self._lock:
            batch = self._batches.get(batch_id)
            return batch is not None and batch.status == BatchStatus.CANCELLED

    def active_batches(self) -> List[BatchRecord]:
        with self._lock:
            return [b for b in self._batches.values() if not b.is_finished]

    # =========================================================================
    # Maintenance
    # =========================================================================

    def cleanup(self, retention: timedelta) -> int:
        """Purge finished job and batch records older than retention."""
        cutoff = datetime.utcnow() - retention
        with self._lock:
            stale_jobs = [
                key for key, job in self._jobs.items()
                if job.is_finished and job.completed_at and job.completed_at < cutoff
            ]
            for key in stale_jobs:
                del self._jobs[key]

            stale_batches = [
                batch_id for batch_id, batch in self._batches.items()
                if batch.is_finished and batch.completed_at and batch.completed_at < cutoff
            ]
            for batch_id in stale_batches:
                del self._batches[batch_id]

        removed = len(stale_jobs) + len(stale_batches)
        if removed:
            logger.info(f"Purged {len(stale_jobs)} job and {len(stale_batches)} batch records")
        return removed

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            jobs = list(self._jobs.values())
            batches = list(self._batches.values())
        by_state = {state.value: 0 for state in JobState}
        for job in jobs:
            by_state[job.state.value] += 1
        return {
            "jobs": len(jobs),
            "by_state": by_state,
            "batches": len(batches),
            "active_batches": len([b for b in batches if not b.is_finished]),
        }
