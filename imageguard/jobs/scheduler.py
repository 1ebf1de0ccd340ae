"""
Generation Scheduler

Runs watermark generation off the request path.

- generate_sync(): renders on a thread pool and waits up to a timeout.
  On timeout the caller gets a GenerationTimeout outcome and serves
  the original; the render keeps running and still lands in the cache.
- generate_async(): queues a job on a priority queue (high, normal,
  low) consumed by worker threads and returns the JobRecord at once.
- submit_batch(): bulk regeneration in chunks of batch_size. A newer
  batch cancels older ones, which stop between items.
- start_periodic_cleanup(): daemon loop for age-based cache cleanup and
  job-record retention.

The scheduler knows nothing about rendering. It is given a generator
callable that takes a GenerationRequest and returns a result object
with `path` and `error` attributes.
"""

import itertools
import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout, wait
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from imageguard.errors import GenerationTimeout, WatermarkError
from imageguard.jobs.tracker import (
    BatchRecord,
    JobRecord,
    JobState,
    JobTracker,
    Priority,
)
from imageguard.settings import SettingsSnapshot


logger = logging.getLogger(__name__)

_STOP = object()


@dataclass(frozen=True)
class GenerationRequest:
    """Everything needed to render one artifact."""
    source_path: str
    cache_key: str
    snapshot: SettingsSnapshot
    device: Any = None
    # Cache epoch read before the snapshot; a put from an older epoch is discarded
    epoch: Optional[int] = None


@dataclass
class GenerationOutcome:
    """Result of a synchronous generation attempt."""
    result: Any = None
    error: Optional[WatermarkError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None

    @property
    def timed_out(self) -> bool:
        return isinstance(self.error, GenerationTimeout)


Generator = Callable[[GenerationRequest], Any]
BatchHandler = Callable[[str, SettingsSnapshot, Optional[SettingsSnapshot], Optional[int]], Any]


class GenerationScheduler:
    """
    Thread-based generation scheduler.

    Usage:
        scheduler = GenerationScheduler(service.generate, batch_handler=service.regenerate_item)
        scheduler.start()
        outcome = scheduler.generate_sync(request, timeout=10)
        job = scheduler.generate_async(request, Priority.LOW)
    """

    def __init__(
        self,
        generator: Generator,
        batch_handler: Optional[BatchHandler] = None,
        tracker: Optional[JobTracker] = None,
        worker_count: int = 2,
        pool_size: int = 2,
        batch_size: int = 50,
    ):
        self._generator = generator
        self._batch_handler = batch_handler
        self.tracker = tracker or JobTracker()
        self.worker_count = max(1, worker_count)
        self.pool_size = max(1, pool_size)
        self.batch_size = max(1, batch_size)

        self._queue: "queue.PriorityQueue" = queue.PriorityQueue()
        self._sequence = itertools.count()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._workers: List[threading.Thread] = []
        self._stop = threading.Event()
        self._cleanup_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._executor is not None and not self._stop.is_set()

    def start(self) -> None:
        with self._lock:
            if self._executor is not None:
                return
            self._stop.clear()
            self._executor = ThreadPoolExecutor(
                max_workers=self.pool_size,
                thread_name_prefix="imageguard-render",
            )
            for index in range(self.worker_count):
                worker = threading.Thread(
                    target=self._worker_loop,
                    name=f"imageguard-worker-{index}",
                    daemon=True,
                )
                worker.start()
                self._workers.append(worker)

        logger.info(f"Generation scheduler started ({self.worker_count} workers, pool of {self.pool_size})")

    def shutdown(self, wait_for_jobs: bool = True) -> None:
        with self._lock:
            if self._executor is None:
                return
            self._stop.set()
            for _ in self._workers:
                self._queue.put((len(Priority) + 1, next(self._sequence), _STOP, None))
            workers, self._workers = self._workers, []
            executor, self._executor = self._executor, None

        for worker in workers:
            worker.join(timeout=5)
        executor.shutdown(wait=wait_for_jobs)

        if self._cleanup_thread is not None:
            self._cleanup_thread.join(timeout=5)
            self._cleanup_thread = None

        logger.info("Generation scheduler stopped")

    def _require_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self.start()
        return self._executor

    # =========================================================================
    # Single generation
    # =========================================================================

    def generate_sync(self, request: GenerationRequest, timeout: Optional[float] = None) -> GenerationOutcome:
        """Render on the pool and wait. Never raises."""
        future = self._require_executor().submit(self._generator, request)
        try:
            result = future.result(timeout=timeout)
        except FuturesTimeout:
            logger.warning(
                f"Synchronous generation of {request.source_path} exceeded {timeout}s, serving original"
            )
            return GenerationOutcome(error=GenerationTimeout(
                f"Generation exceeded {timeout}s",
                source_path=request.source_path,
                cache_key=request.cache_key,
            ))
        except WatermarkError as e:
            return GenerationOutcome(error=e)
        except Exception as e:
            logger.error(f"Synchronous generation of {request.source_path} failed: {e}")
            return GenerationOutcome(error=WatermarkError(str(e), source_path=request.source_path))

        return GenerationOutcome(result=result, error=getattr(result, "error", None))

    def generate_async(
        self,
        request: GenerationRequest,
        priority: Priority = Priority.NORMAL,
    ) -> JobRecord:
        """Queue a job, or return the job already queued or running for this key."""
        priority = Priority.parse(priority)
        self._require_executor()
        job, created = self.tracker.get_or_create_job(request.cache_key, request.source_path, priority=priority)
        if not created:
            return job

        self._queue.put((int(priority), next(self._sequence), request.cache_key, request))
        return job

    def status(self, job_key: str) -> Optional[JobRecord]:
        return self.tracker.get_job(job_key)

    def supersede_pending(self) -> int:
        """Cancel queued jobs and running batches after a settings change."""
        cancelled = self.tracker.cancel_queued()
        for batch in self.tracker.active_batches():
            self.tracker.cancel_batch(batch.batch_id)
        if cancelled:
            logger.info(f"Superseded {cancelled} queued generation jobs")
        return cancelled

    def _worker_loop(self) -> None:
        while True:
            _, _, job_key, request = self._queue.get()
            try:
                if job_key is _STOP:
                    return
                self._run_job(job_key, request)
            finally:
                self._queue.task_done()

    def _run_job(self, job_key: str, request: GenerationRequest) -> None:
        job = self.tracker.get_job(job_key)
        if job is None or job.state != JobState.QUEUED:
            return

        self.tracker.update_job(job_key, JobState.RUNNING)
        try:
            result = self._generator(request)
        except Exception as e:
            self.tracker.update_job(job_key, JobState.FAILED, error=str(e))
            return

        error = getattr(result, "error", None)
        if error is not None:
            self.tracker.update_job(job_key, JobState.FAILED, error=str(error))
        else:
            self.tracker.update_job(job_key, JobState.COMPLETED, result_path=getattr(result, "path", None))

    # =========================================================================
    # Bulk regeneration
    # =========================================================================

    def submit_batch(
        self,
        paths: Sequence[str],
        new_snapshot: SettingsSnapshot,
        old_snapshot: Optional[SettingsSnapshot] = None,
        batch_size: Optional[int] = None,
        epoch: Optional[int] = None,
    ) -> BatchRecord:
        """
        Regenerate many artifacts in the background.

        Older batches still running are cancelled first. epoch is the
        cache epoch read before new_snapshot and is handed to every item.
        """
        if self._batch_handler is None:
            raise RuntimeError("No batch handler configured")

        for batch in self.tracker.active_batches():
            self.tracker.cancel_batch(batch.batch_id)
            logger.info(f"Batch {batch.batch_id} superseded by a newer bulk regeneration")

        paths = list(dict.fromkeys(paths))
        batch = self.tracker.create_batch(len(paths))
        self._require_executor()

        driver = threading.Thread(
            target=self._run_batch,
            args=(batch.batch_id, paths, new_snapshot, old_snapshot, batch_size or self.batch_size, epoch),
            name=f"imageguard-{batch.batch_id}",
            daemon=True,
        )
        driver.start()
        return batch

    def _run_batch(
        self,
        batch_id: str,
        paths: List[str],
        new_snapshot: SettingsSnapshot,
        old_snapshot: Optional[SettingsSnapshot],
        batch_size: int,
        epoch: Optional[int] = None,
    ) -> None:
        self.tracker.start_batch(batch_id)

        for start in range(0, len(paths), batch_size):
            if self.tracker.is_batch_cancelled(batch_id) or self._stop.is_set():
                break
            chunk = paths[start:start + batch_size]
            executor = self._executor
            if executor is None:
                break
            try:
                futures = [
                    executor.submit(self._run_batch_item, batch_id, path, new_snapshot, old_snapshot, epoch)
                    for path in chunk
                ]
            except RuntimeError:
                # Executor shut down mid-batch
                break
            wait(futures)

        self.tracker.finish_batch(batch_id)

    def _run_batch_item(
        self,
        batch_id: str,
        path: str,
        new_snapshot: SettingsSnapshot,
        old_snapshot: Optional[SettingsSnapshot],
        epoch: Optional[int] = None,
    ) -> None:
        if self.tracker.is_batch_cancelled(batch_id):
            return

        try:
            result = self._batch_handler(path, new_snapshot, old_snapshot, epoch)
        except Exception as e:
            logger.error(f"Batch {batch_id} failed on {path}: {e}")
            self.tracker.record_batch_item(batch_id, path, success=False, error=str(e))
            return

        error = getattr(result, "error", None)
        self.tracker.record_batch_item(
            batch_id, path, success=error is None, error=str(error) if error else None
        )

    def batch_status(self, batch_id: str) -> Optional[BatchRecord]:
        return self.tracker.get_batch(batch_id)

    def cancel_batch(self, batch_id: str) -> bool:
        return self.tracker.cancel_batch(batch_id)

    # =========================================================================
    # Maintenance
    # =========================================================================

    def cleanup(self, retention: timedelta) -> int:
        return self.tracker.cleanup(retention)

    def start_periodic_cleanup(self, interval: float, task: Callable[[], Any]) -> None:
        """Run task every interval seconds on a daemon thread until shutdown."""
        if self._cleanup_thread is not None:
            return

        def loop():
            while not self._stop.wait(interval):
                try:
                    task()
                except Exception as e:
                    logger.error(f"Periodic cleanup failed: {e}")

        self._cleanup_thread = threading.Thread(target=loop, name="imageguard-cleanup", daemon=True)
        self._cleanup_thread.start()
        logger.info(f"Periodic cleanup scheduled every {interval}s")

    def stats(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "queued": self._queue.qsize(),
            "workers": len(self._workers),
            "pool_size": self.pool_size,
            **self.tracker.stats(),
        }
