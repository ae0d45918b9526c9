"""
Print job model and the job queue protocol.

Lifecycle: PENDING -> PRINTING (claim) -> COMPLETED | FAILED. A claim is a
test-and-set on the queue; terminal transitions are only accepted from
PRINTING, so a job id gets at most one terminal report per claim.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol, Union

from receipt_printer.core.errors import QueueUpdateFailed
from receipt_printer.schemas import ReceiptTemplate

logger = logging.getLogger(__name__)

TemplateData = Union[ReceiptTemplate, Mapping[str, Any]]


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PRINTING = "PRINTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class JobType(str, Enum):
    KITCHEN = "kitchen"
    RECEIPT = "receipt"
    BILL = "bill"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_job_type(value: Union[str, JobType]) -> str:
    """Return the canonical job type string or raise ValueError."""
    try:
        return JobType(str(getattr(value, "value", value)).strip().lower()).value
    except ValueError:
        raise ValueError(f"Unknown job type: {value!r}") from None


@dataclass
class PrintJob:
    """A queued print request and its state."""

    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    job_type: str = JobType.RECEIPT.value
    template: Optional[TemplateData] = None
    # Overrides the poller's default printer when set
    printer: Optional[str] = None

    status: str = JobStatus.PENDING.value
    error: Optional[str] = None

    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        if isinstance(self.template, ReceiptTemplate):
            data["template"] = self.template.model_dump(mode="json")
        elif self.template is not None:
            data["template"] = dict(self.template)
        for key in ("created_at", "updated_at"):
            data[key] = data[key].isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PrintJob":
        values = dict(data)
        for key in ("created_at", "updated_at"):
            if isinstance(values.get(key), str):
                values[key] = datetime.fromisoformat(values[key])
        return cls(**values)

    def start(self) -> None:
        self.status = JobStatus.PRINTING.value
        self.updated_at = _utc_now()

    def complete(self) -> None:
        self.status = JobStatus.COMPLETED.value
        self.error = None
        self.updated_at = _utc_now()

    def fail(self, error: str) -> None:
        self.status = JobStatus.FAILED.value
        self.error = error
        self.updated_at = _utc_now()


class JobQueue(Protocol):
    """What the poller needs from a job store."""

    def fetch_pending(self) -> List[PrintJob]:
        """Return PENDING jobs in queue order."""

    def mark_printing(self, job_id: str) -> bool:
        """Claim a PENDING job. False when someone else already claimed it."""

    def mark_completed(self, job_id: str) -> None:
        """Record success for a claimed job."""

    def mark_failed(self, job_id: str, error: str) -> None:
        """Record failure with detail for a claimed job."""


class InMemoryJobQueue:
    """
    Thread-safe in-process queue. Insertion order is queue order.
    fetch_pending() returns copies, so callers never mutate stored jobs.
    """

    def __init__(self, jobs: Optional[List[PrintJob]] = None):
        self._jobs: Dict[str, PrintJob] = {}
        self._lock = threading.RLock()
        for job in jobs or []:
            self.add(job)

    def add(self, job: PrintJob) -> str:
        with self._lock:
            self._jobs[job.id] = job
        return job.id

    def enqueue(self, template: TemplateData, job_type: Union[str, JobType] = "receipt", printer: Optional[str] = None) -> str:
        job = PrintJob(job_type=normalize_job_type(job_type), template=template, printer=printer)
        logger.info("Enqueued %s job %s", job.job_type, job.id)
        return self.add(job)

    def get(self, job_id: str) -> Optional[PrintJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job else None

    def list_jobs(self) -> List[PrintJob]:
        with self._lock:
            return [replace(j) for j in self._jobs.values()]

    def fetch_pending(self) -> List[PrintJob]:
        with self._lock:
            return [replace(j) for j in self._jobs.values() if j.status == JobStatus.PENDING.value]

    def _require(self, job_id: str, status: JobStatus) -> PrintJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise QueueUpdateFailed(job_id, status.value, "unknown job")
        return job

    def mark_printing(self, job_id: str) -> bool:
        with self._lock:
            job = self._require(job_id, JobStatus.PRINTING)
            if job.status != JobStatus.PENDING.value:
                return False
            job.start()
            return True

    def mark_completed(self, job_id: str) -> None:
        with self._lock:
            job = self._require(job_id, JobStatus.COMPLETED)
            if job.status != JobStatus.PRINTING.value:
                raise QueueUpdateFailed(job_id, JobStatus.COMPLETED.value, f"job is {job.status}, not PRINTING")
            job.complete()

    def mark_failed(self, job_id: str, error: str) -> None:
        with self._lock:
            job = self._require(job_id, JobStatus.FAILED)
            if job.status != JobStatus.PRINTING.value:
                raise QueueUpdateFailed(job_id, JobStatus.FAILED.value, f"job is {job.status}, not PRINTING")
            job.fail(error)


__all__ = [
    "InMemoryJobQueue",
    "JobQueue",
    "JobStatus",
    "JobType",
    "PrintJob",
    "normalize_job_type",
]
