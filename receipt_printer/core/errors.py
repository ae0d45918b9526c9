"""
Error types shared by the rendering and delivery layers.

Rendering failures are returned as values at the pipeline boundary; these
classes give them a type callers can inspect. Delivery and queue errors are
raised inside their layers and converted into structured results by the
dispatcher and poller.
"""

from __future__ import annotations

from typing import Any, List, Sequence


class ReceiptPrinterError(Exception):
    """Base class for all receipt printer errors."""


class TemplateInvalid(ReceiptPrinterError):
    """The template could not be read or failed validation. Aborts a render."""

    def __init__(self, message: str, errors: Sequence[Any] = ()):
        super().__init__(message)
        self.errors = list(errors)


class MediaEncodeFailed(ReceiptPrinterError):
    """A QR code or image could not be encoded. Recoverable per element."""


class DeliveryMethodFailed(ReceiptPrinterError):
    """A single delivery method failed; the dispatcher moves to the next one."""

    def __init__(self, method: str, reason: str):
        super().__init__(f"{method}: {reason}")
        self.method = method
        self.reason = reason


class AllDeliveryMethodsFailed(ReceiptPrinterError):
    """Every configured delivery method failed for one dispatch call."""

    def __init__(self, failures: Sequence[Any]):
        self.failures: List[Any] = list(failures)
        detail = "; ".join(f"{f.method}: {f.reason}" for f in self.failures) or "no delivery methods configured"
        super().__init__(f"All delivery methods failed ({detail})")


class QueueUpdateFailed(ReceiptPrinterError):
    """The job queue could not persist a status change."""

    def __init__(self, job_id: str, status: str, reason: str):
        super().__init__(f"Could not mark job {job_id} as {status}: {reason}")
        self.job_id = job_id
        self.status = status
        self.reason = reason


class PrinterNotFound(ReceiptPrinterError):
    """No printer could be chosen from what the host reports."""


__all__ = [
    "AllDeliveryMethodsFailed",
    "DeliveryMethodFailed",
    "MediaEncodeFailed",
    "PrinterNotFound",
    "QueueUpdateFailed",
    "ReceiptPrinterError",
    "TemplateInvalid",
]
