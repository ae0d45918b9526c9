import threading
import time
from typing import Any, List, Optional

import pytest

from receipt_printer.core.errors import AllDeliveryMethodsFailed, QueueUpdateFailed
from receipt_printer.printing.dispatch import DeliveryFailure, DeliveryResult, DeliverySuccess
from receipt_printer.printing.jobs import InMemoryJobQueue, JobStatus, PrintJob
from receipt_printer.printing.worker import SKIPPED, JobPoller


class FakeDispatcher:
    def __init__(self, succeed: bool = True, raises: Optional[Exception] = None, gate: Optional[threading.Event] = None):
        self.succeed = succeed
        self.raises = raises
        self.gate = gate
        self.calls: List[Any] = []
        self.lock = threading.Lock()

    def dispatch(self, payload, printer):
        if self.gate is not None:
            self.gate.wait(5)
        with self.lock:
            self.calls.append((payload, printer))
        if self.raises:
            raise self.raises
        if self.succeed:
            return DeliveryResult(True, printer, "escpos", (DeliverySuccess("escpos"),))
        failures = [DeliveryFailure("os-spooler", "no lp"), DeliveryFailure("escpos", "no device")]
        return DeliveryResult(False, printer, None, tuple(failures), AllDeliveryMethodsFailed(failures))


class CountingQueue(InMemoryJobQueue):
    """Records every terminal report so tests can check for duplicates."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.reports: List[Any] = []

    def mark_completed(self, job_id):
        self.reports.append((job_id, "COMPLETED"))
        super().mark_completed(job_id)

    def mark_failed(self, job_id, error):
        self.reports.append((job_id, "FAILED"))
        super().mark_failed(job_id, error)


def _queue_with(receipt_data, *job_types, queue_cls=InMemoryJobQueue):
    q = queue_cls()
    ids = [q.enqueue(receipt_data, job_type=t) for t in job_types]
    return q, ids


def test_pending_jobs_are_printed_and_completed(receipt_data):
    q, ids = _queue_with(receipt_data, "receipt", "bill")
    d = FakeDispatcher()
    outcomes = JobPoller(q, d, "EPSON TM-T20III Receipt").poll_once()

    assert [o.job_id for o in outcomes] == ids
    assert all(o.status == "COMPLETED" and o.reported and o.method == "escpos" for o in outcomes)
    assert [q.get(i).status for i in ids] == ["COMPLETED", "COMPLETED"]
    assert [printer for _, printer in d.calls] == ["EPSON TM-T20III Receipt"] * 2
    assert [payload.kind for payload, _ in d.calls] == ["receipt", "bill"]


def test_kitchen_job_renders_a_kitchen_ticket(receipt_data):
    q, ids = _queue_with(receipt_data, "kitchen")
    d = FakeDispatcher()
    JobPoller(q, d, "P").poll_once()
    payload = d.calls[0][0]
    assert payload.kind == "kitchen"
    assert "£" not in payload.text


def test_job_printer_overrides_default(receipt_data):
    q = InMemoryJobQueue()
    q.enqueue(receipt_data, printer="Bar Printer")
    d = FakeDispatcher()
    JobPoller(q, d, "Kitchen Printer").poll_once()
    assert d.calls[0][1] == "Bar Printer"


def test_render_failure_marks_failed_and_batch_continues(receipt_data):
    bad = dict(receipt_data, totals={"subtotal": "1.00"})
    q = InMemoryJobQueue()
    bad_id = q.enqueue(bad)
    good_id = q.enqueue(receipt_data)
    d = FakeDispatcher()
    outcomes = JobPoller(q, d, "P").poll_once()

    assert [o.status for o in outcomes] == ["FAILED", "COMPLETED"]
    failed = q.get(bad_id)
    assert failed.status == "FAILED"
    assert failed.error.startswith("render failed:")
    assert q.get(good_id).status == "COMPLETED"
    assert len(d.calls) == 1


def test_dispatch_failure_marks_failed_with_detail(receipt_data):
    q, ids = _queue_with(receipt_data, "receipt")
    JobPoller(q, FakeDispatcher(succeed=False), "P").poll_once()
    job = q.get(ids[0])
    assert job.status == "FAILED"
    assert "os-spooler: no lp" in job.error and "escpos: no device" in job.error


def test_dispatcher_exception_is_isolated_and_reported_once(receipt_data):
    q, ids = _queue_with(receipt_data, "receipt", "receipt", queue_cls=CountingQueue)
    outcomes = JobPoller(q, FakeDispatcher(raises=RuntimeError("boom")), "P").poll_once()
    assert [o.status for o in outcomes] == ["FAILED", "FAILED"]
    assert sorted(q.reports) == sorted((i, "FAILED") for i in ids)
    assert "RuntimeError: boom" in q.get(ids[0]).error


def test_lost_claim_is_skipped_without_printing(receipt_data):
    class LostRace(InMemoryJobQueue):
        def mark_printing(self, job_id):
            return False

    q = LostRace()
    job_id = q.enqueue(receipt_data)
    d = FakeDispatcher()
    outcomes = JobPoller(q, d, "P").poll_once()
    assert outcomes[0].status == SKIPPED
    assert d.calls == []
    assert q.get(job_id).status == "PENDING"


def test_claim_error_leaves_job_for_next_tick(receipt_data):
    class Flaky(InMemoryJobQueue):
        fail = True

        def mark_printing(self, job_id):
            if self.fail:
                raise QueueUpdateFailed(job_id, "PRINTING", "database is locked")
            return super().mark_printing(job_id)

    q = Flaky()
    job_id = q.enqueue(receipt_data)
    poller = JobPoller(q, FakeDispatcher(), "P")
    assert poller.poll_once()[0].status == SKIPPED
    assert q.get(job_id).status == "PENDING"

    q.fail = False
    assert poller.poll_once()[0].status == "COMPLETED"


def test_report_failure_is_logged_not_retried(receipt_data, caplog):
    class BrokenReports(CountingQueue):
        def mark_completed(self, job_id):
            self.reports.append((job_id, "COMPLETED"))
            raise QueueUpdateFailed(job_id, "COMPLETED", "disk full")

    q = BrokenReports()
    job_id = q.enqueue(receipt_data)
    outcomes = JobPoller(q, FakeDispatcher(), "P").poll_once()
    assert outcomes[0].status == "COMPLETED"
    assert not outcomes[0].reported
    assert q.reports == [(job_id, "COMPLETED")]
    assert q.get(job_id).status == "PRINTING"
    assert "not retried" in caplog.text


def test_duplicate_ids_in_a_batch_are_processed_once(receipt_data):
    class Duplicating(InMemoryJobQueue):
        def fetch_pending(self):
            jobs = super().fetch_pending()
            return jobs + jobs

    q = Duplicating()
    q.enqueue(receipt_data)
    d = FakeDispatcher()
    outcomes = JobPoller(q, d, "P").poll_once()
    assert len(outcomes) == 1
    assert len(d.calls) == 1


def test_fetch_failure_yields_empty_batch():
    class Down(InMemoryJobQueue):
        def fetch_pending(self):
            raise QueueUpdateFailed("*", "PENDING", "connection refused")

    assert JobPoller(Down(), FakeDispatcher(), "P").poll_once() == []


def test_overlapping_tick_is_skipped(receipt_data):
    q, _ = _queue_with(receipt_data, "receipt")
    gate = threading.Event()
    poller = JobPoller(q, FakeDispatcher(gate=gate), "P")
    results = []
    t = threading.Thread(target=lambda: results.append(poller.poll_once()))
    t.start()
    try:
        deadline = time.monotonic() + 5
        while not poller._tick_lock.locked() and time.monotonic() < deadline:
            time.sleep(0.01)
        assert poller.poll_once() is None
    finally:
        gate.set()
        t.join(5)
    assert results[0][0].status == "COMPLETED"


def test_two_pollers_on_one_snapshot_report_once(receipt_data):
    q, ids = _queue_with(receipt_data, "receipt", "kitchen", "bill", queue_cls=CountingQueue)
    snapshot = q.fetch_pending()
    gate = threading.Event()
    p1 = JobPoller(q, FakeDispatcher(gate=gate), "P")
    p2 = JobPoller(q, FakeDispatcher(gate=gate), "P")

    threads = [threading.Thread(target=lambda p=p: [p.process(j) for j in snapshot]) for p in (p1, p2)]
    for t in threads:
        t.start()
    gate.set()
    for t in threads:
        t.join(5)

    assert sorted(job_id for job_id, _ in q.reports) == sorted(ids)
    assert all(q.get(i).status == "COMPLETED" for i in ids)


def test_worker_pool_processes_whole_batch(receipt_data):
    q, ids = _queue_with(receipt_data, *(["receipt"] * 5), queue_cls=CountingQueue)
    outcomes = JobPoller(q, FakeDispatcher(), "P", max_workers=3).poll_once()
    assert sorted(o.job_id for o in outcomes) == sorted(ids)
    assert len(q.reports) == 5


def test_unknown_job_type_fails():
    q = InMemoryJobQueue([PrintJob(job_type="invoice", template={"business": {"name": "X"}})])
    outcomes = JobPoller(q, FakeDispatcher(), "P").poll_once()
    assert outcomes[0].status == "FAILED"
    assert "unknown job type" in outcomes[0].error


def test_start_and_stop_background_thread(receipt_data):
    q, ids = _queue_with(receipt_data, "receipt")
    poller = JobPoller(q, FakeDispatcher(), "P", interval=0.01)
    poller.start()
    try:
        deadline = time.monotonic() + 5
        while q.get(ids[0]).status != "COMPLETED" and time.monotonic() < deadline:
            time.sleep(0.01)
        assert poller.running
    finally:
        poller.stop(timeout=5)
    assert q.get(ids[0]).status == "COMPLETED"
    assert not poller.running


def test_in_memory_queue_rules(receipt_data):
    q = InMemoryJobQueue()
    job_id = q.enqueue(receipt_data, job_type="Kitchen")
    assert q.get(job_id).job_type == "kitchen"
    with pytest.raises(QueueUpdateFailed):
        q.mark_completed(job_id)
    assert q.mark_printing(job_id) is True
    assert q.mark_printing(job_id) is False
    assert q.fetch_pending() == []
    q.mark_failed(job_id, "paper out")
    assert q.get(job_id).status == JobStatus.FAILED.value
    with pytest.raises(QueueUpdateFailed):
        q.mark_printing("missing")
    with pytest.raises(ValueError):
        q.enqueue(receipt_data, job_type="invoice")


def test_print_job_to_dict_and_back(receipt_data):
    job = PrintJob(job_type="bill", template=receipt_data)
    data = job.to_dict()
    assert data["status"] == "PENDING"
    assert isinstance(data["created_at"], str)
    again = PrintJob.from_dict(data)
    assert again.id == job.id and again.created_at == job.created_at
