from __future__ import annotations

"""
SQLite-backed print job queue.

Features:
- DB path resolution with env/XDG defaults (see core.config.get_db_path)
- PRAGMAs for reliability: WAL, synchronous=NORMAL, busy_timeout
- Schema bootstrap with schema_version
- Atomic claim: UPDATE ... WHERE id = ? AND status = 'PENDING'
- Templates stored as JSON text
"""

import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Mapping, Optional, Union

from receipt_printer.core.config import get_db_path
from receipt_printer.core.errors import QueueUpdateFailed
from receipt_printer.printing.jobs import JobStatus, JobType, PrintJob, normalize_job_type
from receipt_printer.schemas import ReceiptTemplate

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


def _ensure_parent_dir(p: str) -> None:
    if p != ":memory:":
        Path(p).parent.mkdir(parents=True, exist_ok=True)


def _apply_pragmas(db: sqlite3.Connection) -> None:
    # journal_mode is not supported for :memory: databases; the call is a no-op there.
    db.execute("PRAGMA journal_mode = WAL")
    db.execute("PRAGMA synchronous = NORMAL")
    db.execute("PRAGMA busy_timeout = 5000")


def _connect(path: str) -> sqlite3.Connection:
    _ensure_parent_dir(path)
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    _apply_pragmas(conn)
    return conn


def _ensure_schema(db: sqlite3.Connection) -> None:
    """
    Create tables if not present and ensure schema_version is initialized.
    """
    with db:
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
              version INTEGER NOT NULL
            )
            """,
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS jobs (
              seq         INTEGER PRIMARY KEY AUTOINCREMENT,
              id          TEXT NOT NULL UNIQUE,
              job_type    TEXT NOT NULL,
              template    TEXT NOT NULL,
              printer     TEXT,
              status      TEXT NOT NULL DEFAULT 'PENDING',
              error       TEXT,
              created_at  TEXT NOT NULL,
              updated_at  TEXT NOT NULL
            )
            """,
        )
        db.execute("CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status, seq)")

        row = db.execute("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1").fetchone()
        if row is None:
            db.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        elif int(row["version"]) > SCHEMA_VERSION:
            logger.warning("Job database schema v%s is newer than supported v%s", row["version"], SCHEMA_VERSION)


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _template_json(template: Union[ReceiptTemplate, Mapping[str, Any]]) -> str:
    if isinstance(template, ReceiptTemplate):
        return template.model_dump_json()
    return json.dumps(dict(template), default=str)


def _row_to_job(row: sqlite3.Row) -> PrintJob:
    return PrintJob(
        id=row["id"],
        job_type=row["job_type"],
        template=json.loads(row["template"]),
        printer=row["printer"],
        status=row["status"],
        error=row["error"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class SqliteJobQueue:
    """
    Job queue persisted in SQLite. One connection per queue, serialized by a lock,
    so a single instance can be shared by the poller's worker threads.
    Separate processes coordinate through the atomic claim.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path or get_db_path()
        self._lock = threading.Lock()
        self._conn = _connect(self.path)
        _ensure_schema(self._conn)
        logger.debug("Opened job database %s", self.path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "SqliteJobQueue":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ----- Producers ---------------------------------------------------------

    def enqueue(
        self,
        template: Union[ReceiptTemplate, Mapping[str, Any]],
        job_type: Union[str, JobType] = "receipt",
        printer: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> str:
        """
        Insert a PENDING job. Returns the job id.
        """
        jtype = normalize_job_type(job_type)
        jid = job_id or uuid.uuid4().hex
        now = _iso_now()
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO jobs (id, job_type, template, printer, status, created_at, updated_at) VALUES (?,?,?,?,?,?,?)",
                (jid, jtype, _template_json(template), printer, JobStatus.PENDING.value, now, now),
            )
        logger.info("Enqueued %s job %s", jtype, jid)
        return jid

    def get_job(self, job_id: str) -> Optional[PrintJob]:
        with self._lock:
            row = self._conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return _row_to_job(row) if row else None

    def list_jobs(self, status: Optional[str] = None, limit: int = 100) -> List[PrintJob]:
        """
        Return jobs newest first, optionally filtered by status.
        """
        sql = "SELECT * FROM jobs"
        params: List[Any] = []
        if status:
            sql += " WHERE status = ?"
            params.append(status)
        sql += " ORDER BY seq DESC LIMIT ?"
        params.append(int(limit))
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_job(r) for r in rows]

    # ----- JobQueue protocol -------------------------------------------------

    def fetch_pending(self) -> List[PrintJob]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM jobs WHERE status = ? ORDER BY seq ASC",
                (JobStatus.PENDING.value,),
            ).fetchall()
        jobs: List[PrintJob] = []
        for row in rows:
            try:
                jobs.append(_row_to_job(row))
            except (ValueError, TypeError) as e:
                logger.error("Skipping unreadable job row %s: %s", row["id"], e)
        return jobs

    def _transition(self, job_id: str, target: JobStatus, expected: JobStatus, error: Optional[str] = None) -> int:
        try:
            with self._lock, self._conn:
                cur = self._conn.execute(
                    "UPDATE jobs SET status = ?, error = ?, updated_at = ? WHERE id = ? AND status = ?",
                    (target.value, error, _iso_now(), job_id, expected.value),
                )
                return cur.rowcount
        except sqlite3.Error as e:
            raise QueueUpdateFailed(job_id, target.value, str(e)) from e

    def mark_printing(self, job_id: str) -> bool:
        return self._transition(job_id, JobStatus.PRINTING, JobStatus.PENDING) == 1

    def mark_completed(self, job_id: str) -> None:
        if self._transition(job_id, JobStatus.COMPLETED, JobStatus.PRINTING) != 1:
            raise QueueUpdateFailed(job_id, JobStatus.COMPLETED.value, "job is not PRINTING")

    def mark_failed(self, job_id: str, error: str) -> None:
        if self._transition(job_id, JobStatus.FAILED, JobStatus.PRINTING, error) != 1:
            raise QueueUpdateFailed(job_id, JobStatus.FAILED.value, "job is not PRINTING")


__all__ = ["SCHEMA_VERSION", "SqliteJobQueue"]
