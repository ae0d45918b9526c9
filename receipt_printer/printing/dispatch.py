"""
Print delivery with ordered fallback methods.

A DeliveryDispatcher holds a read-only list of delivery methods and tries them
in order for each payload. Every attempt runs on its own thread with a bounded
timeout and resolves to exactly one structured outcome (DeliverySuccess or
DeliveryFailure); the first success ends the dispatch. Nothing is retried
inside a dispatch call.

Methods:
- os-spooler: raw job through the OS spooler (`lp -o raw`, or win32print on Windows)
- port-copy: payload written to a temp file and copied to a device or share path
- escpos: raw write through a python-escpos USB/Network/Serial connection
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from receipt_printer.core.config import Settings
from receipt_printer.core.errors import AllDeliveryMethodsFailed, DeliveryMethodFailed

from .render import RenderedPayload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliverySuccess:
    method: str
    elapsed: float = 0.0


@dataclass(frozen=True)
class DeliveryFailure:
    method: str
    reason: str
    elapsed: float = 0.0


Attempt = Union[DeliverySuccess, DeliveryFailure]


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one dispatch call, with every attempt in configured order."""

    success: bool
    printer: str
    method: Optional[str] = None
    attempts: Tuple[Attempt, ...] = ()
    error: Optional[AllDeliveryMethodsFailed] = None

    @property
    def failures(self) -> List[DeliveryFailure]:
        return [a for a in self.attempts if isinstance(a, DeliveryFailure)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "printer": self.printer,
            "method": self.method,
            "attempts": [
                {"method": a.method, "ok": isinstance(a, DeliverySuccess), "reason": getattr(a, "reason", None)}
                for a in self.attempts
            ],
            "error": str(self.error) if self.error else None,
        }


class DeliveryMethod(ABC):
    """One way of getting bytes to a printer. Raises DeliveryMethodFailed on failure."""

    name: str = "method"
    timeout: Optional[float] = None

    @abstractmethod
    def deliver(self, payload: RenderedPayload, printer: str, timeout: float) -> None:
        """Send the payload to the printer or raise DeliveryMethodFailed."""

    def fail(self, reason: str) -> DeliveryMethodFailed:
        return DeliveryMethodFailed(self.name, reason)


class SpoolerMethod(DeliveryMethod):
    """Submit a RAW job to the operating system spooler."""

    name = "os-spooler"

    def __init__(self, command: str = "lp", windows: Optional[bool] = None):
        self.command = command
        self.windows = (os.name == "nt") if windows is None else windows

    def deliver(self, payload: RenderedPayload, printer: str, timeout: float) -> None:
        if self.windows:
            self._deliver_win32(payload, printer)
        else:
            self._deliver_lp(payload, printer, timeout)

    def _deliver_lp(self, payload: RenderedPayload, printer: str, timeout: float) -> None:
        cmd = [self.command, "-d", printer, "-o", "raw"]
        try:
            proc = subprocess.run(cmd, input=payload.data, capture_output=True, timeout=timeout)
        except FileNotFoundError:
            raise self.fail(f"{self.command} command not found")
        except subprocess.TimeoutExpired:
            raise self.fail(f"{self.command} timed out after {timeout:g}s")
        except OSError as e:
            raise self.fail(f"{self.command} could not run: {e}")
        if proc.returncode != 0:
            detail = (proc.stderr or b"").decode("utf-8", "replace").strip() or f"exit status {proc.returncode}"
            raise self.fail(detail)
        logger.debug("lp accepted job: %s", (proc.stdout or b"").decode("utf-8", "replace").strip())

    def _deliver_win32(self, payload: RenderedPayload, printer: str) -> None:
        try:
            import win32print  # type: ignore
        except ImportError:
            raise self.fail("pywin32 is not installed")
        try:
            handle = win32print.OpenPrinter(printer)
        except Exception as e:
            raise self.fail(f"cannot open printer {printer!r}: {e}")
        try:
            win32print.StartDocPrinter(handle, 1, ("Receipt", None, "RAW"))
            try:
                win32print.StartPagePrinter(handle)
                win32print.WritePrinter(handle, payload.data)
                win32print.EndPagePrinter(handle)
            finally:
                win32print.EndDocPrinter(handle)
        except Exception as e:
            raise self.fail(f"spooler rejected job: {e}")
        finally:
            win32print.ClosePrinter(handle)


class PortCopyMethod(DeliveryMethod):
    """
    Copy the payload to a device or share path, e.g. ``/dev/usb/lp0`` or
    ``\\\\localhost\\{printer}``. ``{printer}`` in the path is replaced by the printer name.
    """

    name = "port-copy"

    def __init__(self, path_template: str = ""):
        self.path_template = path_template

    def deliver(self, payload: RenderedPayload, printer: str, timeout: float) -> None:
        if not self.path_template:
            raise self.fail("no port path configured")
        target = self.path_template.format(printer=printer)
        fd, tmp_path = tempfile.mkstemp(prefix="receipt_", suffix=".prn")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload.data)
            shutil.copyfile(tmp_path, target)
        except OSError as e:
            raise self.fail(f"copy to {target} failed: {e}")
        finally:
            try:
                os.unlink(tmp_path)
            except OSError as e:
                logger.warning("Could not remove temp file %s: %s", tmp_path, e)


def connect_printer(config: Mapping[str, Any], timeout: float = 10.0):
    """
    Create and return an ESC/POS printer instance based on the provided config.
    Supports USB, Network, and Serial with optional 'printer_profile'.
    """
    profile = config.get("printer_profile") or None
    kwargs: Dict[str, Any] = {"profile": profile} if profile else {}
    ptype = str(config.get("printer_type", "usb")).lower()

    if ptype == "usb":
        from escpos.printer import Usb

        vendor = int(str(config.get("usb_vendor_id", "0x04b8")), 16)
        product = int(str(config.get("usb_product_id", "0x0e28")), 16)
        return Usb(vendor, product, **kwargs)
    if ptype == "network":
        from escpos.printer import Network

        ip = str(config.get("network_ip", ""))
        if not ip:
            raise ValueError("network_ip is not configured")
        port = int(str(config.get("network_port", "9100")))
        return Network(ip, port, timeout=timeout, **kwargs)
    if ptype == "serial":
        from escpos.printer import Serial

        port = str(config.get("serial_port", ""))
        baud = int(str(config.get("serial_baudrate", "19200")))
        return Serial(port, baudrate=baud, timeout=timeout, **kwargs)
    raise ValueError(f"Unsupported printer type: {ptype}")


class EscposMethod(DeliveryMethod):
    """Write the payload unchanged through a python-escpos device connection."""

    name = "escpos"

    def __init__(self, connection: Optional[Mapping[str, Any]] = None):
        self.connection = dict(connection or {})

    def deliver(self, payload: RenderedPayload, printer: str, timeout: float) -> None:
        if not self.connection:
            raise self.fail("no escpos connection configured")
        try:
            p = connect_printer(self.connection, timeout=timeout)
        except Exception as e:
            raise self.fail(f"connection setup failed: {e}")
        try:
            p._raw(payload.data)
        except Exception as e:
            raise self.fail(f"write failed: {e}")
        finally:
            try:
                p.close()
            except Exception as e:
                logger.debug("escpos close failed: %s", e)


def build_methods(settings: Settings) -> List[DeliveryMethod]:
    """Instantiate the configured delivery methods in order; unknown names are skipped."""
    factories = {
        SpoolerMethod.name: lambda: SpoolerMethod(),
        PortCopyMethod.name: lambda: PortCopyMethod(settings.port_path),
        EscposMethod.name: lambda: EscposMethod(settings.escpos),
    }
    methods: List[DeliveryMethod] = []
    for name in settings.delivery_methods:
        factory = factories.get(name)
        if factory is None:
            logger.warning("Unknown delivery method %r ignored", name)
            continue
        methods.append(factory())
    return methods


def _attempt(method: DeliveryMethod, payload: RenderedPayload, printer: str, timeout: float) -> Optional[str]:
    """Run one delivery on its own daemon thread; return the failure reason, or None on success."""
    errors: List[Exception] = []

    def run() -> None:
        try:
            method.deliver(payload, printer, timeout)
        except Exception as e:
            errors.append(e)

    worker = threading.Thread(target=run, name=f"receipt-delivery-{method.name}", daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        return f"timed out after {timeout:g}s"
    if not errors:
        return None
    error = errors[0]
    if isinstance(error, DeliveryMethodFailed):
        return error.reason
    return f"{type(error).__name__}: {error}"


class DeliveryDispatcher:
    """
    Try each delivery method in order until one succeeds.

    The method list is fixed at construction and shared read-only between
    concurrent dispatch calls. Every attempt gets a thread of its own, so the
    timeout only covers the method's own run. A call's latency is bounded by
    the sum of the per-method timeouts; an attempt that overruns is reported
    as failed and its thread is abandoned.
    """

    def __init__(self, methods: Sequence[DeliveryMethod], timeout: float = 10.0):
        self.methods: Tuple[DeliveryMethod, ...] = tuple(methods)
        self.timeout = timeout

    @property
    def method_names(self) -> List[str]:
        return [m.name for m in self.methods]

    def dispatch(self, payload: RenderedPayload, printer: str) -> DeliveryResult:
        attempts: List[Attempt] = []
        for method in self.methods:
            timeout = method.timeout or self.timeout
            started = time.monotonic()
            reason = _attempt(method, payload, printer, timeout)
            elapsed = time.monotonic() - started
            if reason is None:
                attempts.append(DeliverySuccess(method.name, elapsed))
                logger.info("Delivered %d bytes to %s via %s (%.2fs)", len(payload.data), printer, method.name, elapsed)
                return DeliveryResult(True, printer, method.name, tuple(attempts))
            attempts.append(DeliveryFailure(method.name, reason, elapsed))
            logger.warning("Delivery via %s to %s failed: %s", method.name, printer, reason)

        error = AllDeliveryMethodsFailed([a for a in attempts if isinstance(a, DeliveryFailure)])
        logger.error("%s", error)
        return DeliveryResult(False, printer, None, tuple(attempts), error)


def build_dispatcher(settings: Settings, methods: Optional[Iterable[DeliveryMethod]] = None) -> DeliveryDispatcher:
    """Create a dispatcher from resolved settings (methods may be overridden)."""
    chosen = list(methods) if methods is not None else build_methods(settings)
    return DeliveryDispatcher(chosen, timeout=settings.method_timeout)


__all__ = [
    "Attempt",
    "DeliveryDispatcher",
    "DeliveryFailure",
    "DeliveryMethod",
    "DeliveryResult",
    "DeliverySuccess",
    "EscposMethod",
    "PortCopyMethod",
    "SpoolerMethod",
    "build_dispatcher",
    "build_methods",
    "connect_printer",
]
