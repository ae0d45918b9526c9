"""
Logging utilities for Receipt Printer.

- Provide a JobIdFilter that attaches the id of the job being processed
- Provide a JsonFormatter for structured logs when RECEIPTPRINTER_JSON_LOGS=true
- Provide configure_logging() to initialize root logging with journald or console
"""

from __future__ import annotations

import contextlib
import logging
import os
from contextvars import ContextVar
from typing import Iterator, Optional

_CURRENT_JOB: ContextVar[Optional[str]] = ContextVar("receipt_printer_job_id", default=None)


@contextlib.contextmanager
def job_context(job_id: Optional[str]) -> Iterator[None]:
    """
    Tag log records emitted inside the block with job_id.
    """
    token = _CURRENT_JOB.set(job_id)
    try:
        yield
    finally:
        _CURRENT_JOB.reset(token)


class JobIdFilter(logging.Filter):
    """
    Attach job-scoped metadata (job_id) to log records.
    Outside of a job the value is "-".
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        record.job_id = _CURRENT_JOB.get() or "-"
        return True


class JsonFormatter(logging.Formatter):
    """
    Minimal JSON formatter that includes timestamp, level, logger, message and job_id.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        from json import dumps

        base = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "job_id": getattr(record, "job_id", "-"),
        }
        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)
        return dumps(base, ensure_ascii=False)


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure root logging for the service.

    Behavior:
    - Sets root logger to the given level (INFO by default)
    - Clears any existing handlers to avoid duplicates on repeated calls
    - Chooses JSON or plain formatter based on RECEIPTPRINTER_JSON_LOGS
    - Prefer systemd's JournalHandler, fallback to StreamHandler
    - Adds JobIdFilter so formatters can reference %(job_id)s

    Returns the configured root logger.
    """
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = []

    json_logs = os.environ.get("RECEIPTPRINTER_JSON_LOGS", "false").lower() in ("1", "true", "yes")
    formatter: logging.Formatter
    if json_logs:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter("[%(asctime)s] %(levelname)s %(job_id)s %(name)s: %(message)s")

    # Prefer systemd journal when available
    try:
        from systemd.journal import JournalHandler  # type: ignore

        handler: logging.Handler = JournalHandler()
        handler.setFormatter(formatter)
    except Exception:
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)

    handler.addFilter(JobIdFilter())
    root.addHandler(handler)
    return root


__all__ = ["JobIdFilter", "JsonFormatter", "configure_logging", "job_context"]
