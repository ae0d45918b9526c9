import sqlite3

import pytest

from receipt_printer.core.db import SCHEMA_VERSION, SqliteJobQueue
from receipt_printer.core.errors import QueueUpdateFailed
from receipt_printer.printing.dispatch import DeliveryDispatcher, DeliveryMethod
from receipt_printer.printing.worker import JobPoller
from receipt_printer.schemas import parse_template


class RecordingMethod(DeliveryMethod):
    name = "recording"

    def __init__(self):
        self.jobs = []

    def deliver(self, payload, printer, timeout):
        self.jobs.append((payload, printer))


@pytest.fixture
def queue(tmp_path):
    q = SqliteJobQueue(str(tmp_path / "data" / "jobs.db"))
    yield q
    q.close()


def test_schema_bootstrap(tmp_path):
    path = tmp_path / "jobs.db"
    SqliteJobQueue(str(path)).close()
    conn = sqlite3.connect(str(path))
    try:
        assert conn.execute("SELECT version FROM schema_version").fetchall() == [(SCHEMA_VERSION,)]
        assert conn.execute("SELECT COUNT(*) FROM jobs").fetchone() == (0,)
    finally:
        conn.close()
    # Reopening does not duplicate the version row
    SqliteJobQueue(str(path)).close()
    conn = sqlite3.connect(str(path))
    try:
        assert conn.execute("SELECT COUNT(*) FROM schema_version").fetchone() == (1,)
    finally:
        conn.close()


def test_enqueue_and_fetch_in_queue_order(queue, receipt_data):
    first = queue.enqueue(receipt_data, job_type="kitchen")
    second = queue.enqueue(receipt_data, job_type="receipt", printer="Bar")
    pending = queue.fetch_pending()
    assert [j.id for j in pending] == [first, second]
    assert pending[0].job_type == "kitchen"
    assert pending[1].printer == "Bar"
    assert pending[0].status == "PENDING"


def test_stored_template_validates_again(queue, receipt_data):
    job_id = queue.enqueue(parse_template(receipt_data))
    stored = queue.get_job(job_id).template
    tpl = parse_template(stored)
    assert tpl.totals.total == parse_template(receipt_data).totals.total
    assert tpl.items[0].name == "Lamb Curry"


def test_claim_is_atomic_across_connections(tmp_path, receipt_data):
    path = str(tmp_path / "jobs.db")
    a, b = SqliteJobQueue(path), SqliteJobQueue(path)
    try:
        job_id = a.enqueue(receipt_data)
        assert a.mark_printing(job_id) is True
        assert b.mark_printing(job_id) is False
        assert b.fetch_pending() == []
    finally:
        a.close()
        b.close()


def test_terminal_transitions_require_a_claim(queue, receipt_data):
    job_id = queue.enqueue(receipt_data)
    with pytest.raises(QueueUpdateFailed):
        queue.mark_completed(job_id)
    assert queue.mark_printing(job_id)
    queue.mark_failed(job_id, "all delivery methods failed")
    job = queue.get_job(job_id)
    assert job.status == "FAILED"
    assert job.error == "all delivery methods failed"
    with pytest.raises(QueueUpdateFailed):
        queue.mark_failed(job_id, "again")


def test_unknown_job_type_is_rejected(queue, receipt_data):
    with pytest.raises(ValueError):
        queue.enqueue(receipt_data, job_type="invoice")


def test_list_jobs_filters_by_status(queue, receipt_data):
    a = queue.enqueue(receipt_data)
    b = queue.enqueue(receipt_data)
    queue.mark_printing(a)
    queue.mark_completed(a)
    assert [j.id for j in queue.list_jobs()] == [b, a]
    assert [j.id for j in queue.list_jobs(status="COMPLETED")] == [a]


def test_poller_end_to_end_with_sqlite(queue, receipt_data):
    job_id = queue.enqueue(receipt_data, job_type="bill")
    method = RecordingMethod()
    dispatcher = DeliveryDispatcher([method], timeout=2.0)
    outcomes = JobPoller(queue, dispatcher, "EPSON TM-T88V Receipt").poll_once()
    assert [o.status for o in outcomes] == ["COMPLETED"]
    assert queue.get_job(job_id).status == "COMPLETED"
    payload, printer = method.jobs[0]
    assert printer == "EPSON TM-T88V Receipt"
    assert payload.kind == "bill"
    assert payload.data.startswith(b"\x1b@")
