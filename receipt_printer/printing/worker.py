"""
Background job poller for Receipt Printer.

This module owns:
- A periodic tick that fetches PENDING jobs from a JobQueue
- Claim -> render -> dispatch -> report for each job
- A single daemon thread driving the ticks (start/stop)

Each claim gets exactly one terminal report (COMPLETED or FAILED). A report
that cannot be persisted is logged and not retried, so the job stays PRINTING
until someone looks at it. One job's failure never stops the rest of the batch.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional

from receipt_printer.core.config import PAPER_PROFILES, PaperProfile, Settings
from receipt_printer.core.logging import job_context

from .dispatch import DeliveryDispatcher
from .jobs import JobQueue, JobStatus, PrintJob
from .render import RenderOptions, render_receipt

logger = logging.getLogger(__name__)

# Queue job type -> ticket kind
KIND_FOR_TYPE: Dict[str, str] = {"kitchen": "kitchen", "receipt": "receipt", "bill": "bill"}

SKIPPED = "SKIPPED"


@dataclass(frozen=True)
class JobOutcome:
    """What one tick did with one job."""

    job_id: str
    status: str
    error: Optional[str] = None
    method: Optional[str] = None
    reported: bool = False


class JobPoller:
    """
    Poll a job queue and print what it finds.

    poll_once() is non-reentrant: a call that overlaps a tick already in
    flight returns None without touching the queue. Within a batch, job ids
    are de-duplicated and processed sequentially, or on a bounded pool when
    max_workers > 1.
    """

    def __init__(
        self,
        queue: JobQueue,
        dispatcher: DeliveryDispatcher,
        printer: str,
        *,
        profile: Optional[PaperProfile] = None,
        options: Optional[RenderOptions] = None,
        interval: float = 5.0,
        max_workers: int = 1,
    ):
        self.queue = queue
        self.dispatcher = dispatcher
        self.printer = printer
        self.profile = profile or PAPER_PROFILES["80mm"]
        self.options = options or RenderOptions()
        self.interval = interval
        self.max_workers = max(1, int(max_workers))

        self._tick_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_settings(cls, queue: JobQueue, dispatcher: DeliveryDispatcher, printer: str, settings: Settings) -> "JobPoller":
        return cls(
            queue,
            dispatcher,
            printer,
            profile=settings.profile,
            options=RenderOptions.from_settings(settings),
            interval=settings.poll_interval,
            max_workers=settings.poll_workers,
        )

    # ----- Ticks -------------------------------------------------------------

    def poll_once(self) -> Optional[List[JobOutcome]]:
        """
        Run one tick. Returns the per-job outcomes, or None if a tick was already running.
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.debug("Previous tick still running; skipping")
            return None
        try:
            return self._run_batch()
        finally:
            self._tick_lock.release()

    def _run_batch(self) -> List[JobOutcome]:
        try:
            fetched = self.queue.fetch_pending()
        except Exception:
            logger.exception("Could not fetch pending jobs")
            return []

        seen = set()
        batch: List[PrintJob] = []
        for job in fetched:
            if job.id in seen:
                continue
            seen.add(job.id)
            batch.append(job)
        if not batch:
            return []
        logger.info("Processing %d pending job(s)", len(batch))

        if self.max_workers == 1 or len(batch) == 1:
            return [self.process(job) for job in batch]
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="receipt-job") as pool:
            return list(pool.map(self.process, batch))

    def process(self, job: PrintJob) -> JobOutcome:
        """Claim, print and report a single job. Never raises."""
        with job_context(job.id):
            try:
                claimed = self.queue.mark_printing(job.id)
            except Exception as e:
                logger.warning("Could not claim job %s: %s", job.id, e)
                return JobOutcome(job.id, SKIPPED, str(e))
            if not claimed:
                logger.debug("Job %s already claimed elsewhere", job.id)
                return JobOutcome(job.id, SKIPPED, "already claimed")

            try:
                outcome = self._print(job)
            except Exception as e:
                logger.exception("Job %s crashed while printing", job.id)
                outcome = JobOutcome(job.id, JobStatus.FAILED.value, f"{type(e).__name__}: {e}")

            return self._report(outcome)

    def _print(self, job: PrintJob) -> JobOutcome:
        kind = KIND_FOR_TYPE.get(str(job.job_type).lower())
        if kind is None:
            return JobOutcome(job.id, JobStatus.FAILED.value, f"unknown job type {job.job_type!r}")
        if job.template is None:
            return JobOutcome(job.id, JobStatus.FAILED.value, "job has no template")

        result = render_receipt(job.template, self.profile, kind=kind, options=self.options)
        if not result.ok:
            return JobOutcome(job.id, JobStatus.FAILED.value, f"render failed: {result.error}")

        delivery = self.dispatcher.dispatch(result.unwrap(), job.printer or self.printer)
        if delivery.success:
            return JobOutcome(job.id, JobStatus.COMPLETED.value, method=delivery.method)
        return JobOutcome(job.id, JobStatus.FAILED.value, str(delivery.error))

    def _report(self, outcome: JobOutcome) -> JobOutcome:
        try:
            if outcome.status == JobStatus.COMPLETED.value:
                self.queue.mark_completed(outcome.job_id)
            else:
                self.queue.mark_failed(outcome.job_id, outcome.error or "unknown error")
        except Exception as e:
            logger.error("Could not report %s for job %s (not retried): %s", outcome.status, outcome.job_id, e)
            return outcome
        logger.info("Job %s %s%s", outcome.job_id, outcome.status.lower(), f": {outcome.error}" if outcome.error else "")
        return JobOutcome(outcome.job_id, outcome.status, outcome.error, outcome.method, reported=True)

    # ----- Thread ------------------------------------------------------------

    @property
    def running(self) -> bool:
        return bool(self._thread) and self._thread.is_alive()  # type: ignore[union-attr]

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Exception:
                logger.exception("Poller tick failed")
            self._stop.wait(self.interval)

    def start(self) -> None:
        """
        Start the polling thread (idempotent).
        """
        if self.running:
            return
        self._stop.clear()
        t = threading.Thread(target=self._loop, daemon=True, name="receipt-printer-poller")
        t.start()
        self._thread = t
        logger.info("Job poller started (interval=%ss, workers=%d)", self.interval, self.max_workers)

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop scheduling ticks. A tick in flight finishes its jobs before the thread exits.
        """
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Job poller still finishing a tick after %ss", timeout)
            else:
                self._thread = None
        logger.info("Job poller stopped")


__all__ = ["JobOutcome", "JobPoller", "KIND_FOR_TYPE"]
