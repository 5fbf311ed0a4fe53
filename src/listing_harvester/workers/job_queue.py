"""Single-process job queue with a concurrency ceiling and crash recovery.

State lives on one :class:`JobQueue` instance: an ordered ``pending`` deque
(FIFO, insertion order is dispatch order) and an ``active`` set of job ids
occupying a worker slot.  Both are mutated only from synchronous code paths
(``enqueue``, ``_process_queue``, and the task done-callback) that contain
no ``await``, so on a single event loop every admission decision sees the
current active count and the ceiling can never be overshot.

Admission paths:

- :meth:`JobQueue.enqueue`, called by the submission API after inserting
  the ``jobs`` row.
- The recovery scan, run every ``poll_interval`` seconds while started and
  not paused.  It reads up to ``recovery_batch_size`` ``queued`` rows,
  oldest first, and enqueues any not already pending or active.  This is
  how jobs left behind by a crashed process get picked up.

On :meth:`JobQueue.start` any row still ``running`` is marked ``failed``:
its worker died with the previous process and the job is not retried.

Dispatch wraps each job in its own asyncio task.  The worker writes the
job's status transitions; the task wrapper publishes events, frees the
slot and contains every exception so nothing reaches the scheduler.  An
exception that escapes the worker before a terminal status was written
still ends with the row marked ``failed``.

Usage::

    queue = JobQueue(store, worker, concurrency=3, poll_interval=5.0)
    await queue.start()
    await queue.enqueue(QueueJob.from_record(job))
    ...
    await queue.stop()   # drains active jobs, then closes the browser
"""

from __future__ import annotations

import asyncio
import contextvars
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import structlog

from listing_harvester.config.settings import get_settings
from listing_harvester.core.event_bus import QueueEvent, QueueEventBus
from listing_harvester.core.models.base import utcnow
from listing_harvester.core.models.jobs import JobStatus
from listing_harvester.workers.job_worker import QueueJob

if TYPE_CHECKING:
    from listing_harvester.core.job_store import JobStore
    from listing_harvester.workers.browser import BrowserSession
    from listing_harvester.workers.job_worker import JobWorker

logger = structlog.get_logger(__name__)

INTERRUPTED_MESSAGE = "Job interrupted by service restart"


@dataclass(frozen=True)
class QueueStats:
    """Read-only queue snapshot returned by :meth:`JobQueue.get_stats`."""

    pending: int
    active: int
    concurrency: int
    running: bool
    paused: bool

    @property
    def saturation(self) -> float:
        """Fraction of worker slots in use, 0.0 to 1.0."""
        return self.active / self.concurrency if self.concurrency else 0.0


class JobQueue:
    """Concurrency-capped dispatcher for :class:`QueueJob` instances.

    Args:
        store: Job store, read by the recovery scan and the dispatch guard.
        worker: Executes dispatched jobs and owns their status writes.
        browser: Browser session closed by :meth:`stop` once drained.
        events: Event bus to publish on; a fresh one is created if omitted.
        concurrency: Maximum simultaneously active jobs.
        poll_interval: Seconds between recovery scans.
        recovery_batch_size: Rows fetched per recovery scan.
        drain_interval: Seconds between active-set checks in :meth:`stop`.
    """

    def __init__(
        self,
        store: JobStore,
        worker: JobWorker,
        *,
        browser: Optional[BrowserSession] = None,
        events: Optional[QueueEventBus] = None,
        concurrency: Optional[int] = None,
        poll_interval: Optional[float] = None,
        recovery_batch_size: Optional[int] = None,
        drain_interval: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self._store = store
        self._worker = worker
        self._browser = browser
        self.events = events or QueueEventBus()
        self.concurrency = (
            concurrency if concurrency is not None else settings.queue_concurrency
        )
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.poll_interval = poll_interval or settings.queue_poll_interval_seconds
        self.recovery_batch_size = recovery_batch_size or settings.queue_recovery_batch_size
        self.drain_interval = drain_interval or settings.queue_drain_interval_seconds

        self._pending: deque[QueueJob] = deque()
        self._pending_ids: set[str] = set()
        self._active: set[str] = set()
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._poll_task: Optional[asyncio.Task[None]] = None
        self._running = False
        self._stopping = False
        self._paused = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def active_ids(self) -> frozenset[str]:
        return frozenset(self._active)

    @property
    def pending_ids(self) -> tuple[str, ...]:
        return tuple(job.id for job in self._pending)

    def is_known(self, job_id: str) -> bool:
        """True while ``job_id`` is pending or active."""
        return job_id in self._pending_ids or job_id in self._active

    def get_stats(self) -> QueueStats:
        return QueueStats(
            pending=len(self._pending),
            active=len(self._active),
            concurrency=self.concurrency,
            running=self._running,
            paused=self._paused,
        )

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def enqueue(self, job: QueueJob) -> bool:
        """Admit ``job`` unless it is already pending or active.

        Dispatch is attempted immediately; :meth:`start` is only needed for
        the recovery scan.  After :meth:`stop` jobs are still admitted but
        not dispatched.

        Returns:
            True if the job was added, False for a duplicate.
        """
        if not self._admit(job):
            logger.debug("job_enqueue_skipped_duplicate", job_id=job.id)
            return False
        logger.info("job_queued", job_id=job.id, site=job.site, job_type=job.job_type.value)
        self.events.publish(QueueEvent.JOB_QUEUED, {"job": job})
        self._process_queue()
        return True

    def _admit(self, job: QueueJob) -> bool:
        if self.is_known(job.id):
            return False
        self._pending.append(job)
        self._pending_ids.add(job.id)
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Begin periodic recovery scanning (first scan runs immediately)."""
        if self._running:
            return
        self._running = True
        self._stopping = False
        await self.fail_interrupted_jobs()
        self._poll_task = asyncio.create_task(self._poll_loop(), name="job-queue-recovery")
        logger.info(
            "job_queue_started",
            concurrency=self.concurrency,
            poll_interval=self.poll_interval,
        )

    async def stop(self) -> None:
        """Stop scanning, wait for every active job, then release the browser.

        Pending jobs that never started stay ``queued`` in the store and are
        recovered by the next process.
        """
        self._running = False
        self._stopping = True
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        # No new dispatches from here on; pending jobs remain queued in the store.
        self._pending.clear()
        self._pending_ids.clear()

        while self._active:
            logger.info("job_queue_draining", active=len(self._active))
            await asyncio.sleep(self.drain_interval)

        await self.events.drain()
        if self._browser is not None:
            await self._browser.close()
        logger.info("job_queue_stopped")

    def pause(self) -> None:
        """Suspend recovery scanning; active and pending jobs are unaffected."""
        if self._paused:
            return
        self._paused = True
        logger.info("job_queue_paused")
        self.events.publish(QueueEvent.QUEUE_PAUSED, {})

    def resume(self) -> None:
        if not self._paused:
            return
        self._paused = False
        logger.info("job_queue_resumed")
        self.events.publish(QueueEvent.QUEUE_RESUMED, {})

    # ------------------------------------------------------------------
    # Recovery scan
    # ------------------------------------------------------------------

    async def fail_interrupted_jobs(self) -> int:
        """Mark ``running`` rows left by a previous process as ``failed``.

        Only one process runs the queue, so at startup a ``running`` row that
        this instance is not executing belongs to a worker that died mid-job.
        Such jobs are never re-queued.  Store errors are logged and end the
        sweep early.

        Returns:
            Number of jobs marked failed.
        """
        failed = 0
        skipped: set[str] = set()
        while True:
            try:
                records = await self._store.list_jobs(
                    status=JobStatus.RUNNING,
                    limit=self.recovery_batch_size + len(skipped) + len(self._active),
                    oldest_first=True,
                )
            except Exception as exc:  # noqa: BLE001
                logger.warning("job_queue_interrupted_sweep_failed", error=str(exc))
                break
            stale = [r for r in records if str(r.id) not in self._active and str(r.id) not in skipped]
            if not stale:
                break
            for record in stale:
                job_id = str(record.id)
                try:
                    await self._store.update_job_status(
                        job_id,
                        JobStatus.FAILED,
                        finished_at=utcnow(),
                        error_message=INTERRUPTED_MESSAGE,
                    )
                except Exception as exc:  # noqa: BLE001
                    logger.error("job_interrupted_status_write_failed", job_id=job_id, error=str(exc))
                    skipped.add(job_id)
                    continue
                failed += 1
        if failed:
            logger.warning("job_queue_interrupted_jobs_failed", count=failed)
        return failed

    async def _poll_loop(self) -> None:
        while self._running:
            if not self._paused:
                await self.recover()
            await asyncio.sleep(self.poll_interval)

    async def recover(self) -> int:
        """Enqueue persisted ``queued`` jobs this instance does not know about.

        Store errors are logged and swallowed; the next tick retries.

        Returns:
            Number of jobs newly admitted.
        """
        try:
            records = await self._store.list_jobs(
                status=JobStatus.QUEUED,
                limit=self.recovery_batch_size,
                oldest_first=True,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("job_queue_recovery_failed", error=str(exc))
            return 0

        admitted = 0
        for record in records:
            try:
                job = QueueJob.from_record(record)
            except Exception as exc:  # noqa: BLE001
                logger.warning("job_queue_recovery_bad_record", job_id=str(record.id), error=str(exc))
                continue
            if await self.enqueue(job):
                admitted += 1
        if admitted:
            logger.info("job_queue_recovered", admitted=admitted)
        return admitted

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _process_queue(self) -> None:
        """Fill free slots from the head of the pending queue.

        Synchronous so the check-then-admit sequence cannot interleave with
        another dispatch decision.
        """
        if self._stopping:
            return
        while self._pending and len(self._active) < self.concurrency:
            job = self._pending.popleft()
            self._pending_ids.discard(job.id)
            self._active.add(job.id)
            # Fresh context: request-scoped log bindings must not follow the job.
            task = asyncio.create_task(
                self._process_job(job),
                name=f"job-{job.id}",
                context=contextvars.Context(),
            )
            self._tasks[job.id] = task
            task.add_done_callback(lambda _t, job_id=job.id: self._on_job_done(job_id))

    def _on_job_done(self, job_id: str) -> None:
        self._active.discard(job_id)
        self._tasks.pop(job_id, None)
        self._process_queue()

    async def _claimable(self, job: QueueJob) -> bool:
        """Re-read the row; only a still-``queued`` job may run.

        Guards against a recovery snapshot that raced a job finishing.
        """
        record = await self._store.get_job(job.id)
        if record is None:
            logger.warning("job_dispatch_missing_record", job_id=job.id)
            return False
        if record.status != JobStatus.QUEUED.value:
            logger.info("job_dispatch_skipped", job_id=job.id, status=record.status)
            return False
        return True

    async def _ensure_failed(self, job: QueueJob, message: str) -> None:
        """Write ``failed`` unless the worker already recorded a terminal status."""
        try:
            record = await self._store.get_job(job.id)
            if record is None or JobStatus(record.status).is_terminal:
                return
            await self._store.update_job_status(
                job.id,
                JobStatus.FAILED,
                finished_at=utcnow(),
                error_message=message,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("job_fail_status_write_failed", job_id=job.id, error=str(exc))

    async def _process_job(self, job: QueueJob) -> None:
        try:
            if not await self._claimable(job):
                return
        except Exception as exc:  # noqa: BLE001
            # Store unavailable: leave the row queued for the next recovery scan.
            logger.warning("job_dispatch_check_failed", job_id=job.id, error=str(exc))
            return

        logger.info("job_started", job_id=job.id, site=job.site)
        self.events.publish(QueueEvent.JOB_STARTED, {"job": job})
        try:
            result = await self._worker.run(job)
        except Exception as exc:  # noqa: BLE001
            message = str(exc) or type(exc).__name__
            logger.error("job_failed", job_id=job.id, site=job.site, error=message)
            await self._ensure_failed(job, message)
            self.events.publish(QueueEvent.JOB_FAILED, {"job": job, "error": message})
            return

        logger.info(
            "job_completed",
            job_id=job.id,
            site=job.site,
            items=result.items_extracted,
            pages=result.pages_scraped,
            duration_ms=result.duration_ms,
        )
        self.events.publish(QueueEvent.JOB_COMPLETED, {"job": job, "result": result})
