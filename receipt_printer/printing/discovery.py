"""
Printer discovery: list the printers the host knows about and pick one.
"""

from __future__ import annotations

import logging
import os
import subprocess
from typing import Iterable, List, Optional, Sequence

from receipt_printer.core.errors import PrinterNotFound

logger = logging.getLogger(__name__)


def _lpstat_printers(timeout: float) -> List[str]:
    try:
        proc = subprocess.run(["lpstat", "-e"], capture_output=True, text=True, timeout=timeout)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning("lpstat unavailable: %s", e)
        return []
    if proc.returncode != 0:
        logger.warning("lpstat exited with %d: %s", proc.returncode, (proc.stderr or "").strip())
        return []
    return [line.strip() for line in proc.stdout.splitlines() if line.strip()]


def _win32_printers() -> List[str]:
    try:
        import win32print  # type: ignore
    except ImportError:
        logger.warning("pywin32 is not installed; cannot enumerate printers")
        return []
    flags = win32print.PRINTER_ENUM_LOCAL | win32print.PRINTER_ENUM_CONNECTIONS
    return [info[2] for info in win32print.EnumPrinters(flags)]


def list_printers(timeout: float = 5.0, windows: Optional[bool] = None) -> List[str]:
    """Return the printer names the OS reports, in the order it reports them."""
    if windows is None:
        windows = os.name == "nt"
    names = _win32_printers() if windows else _lpstat_printers(timeout)
    logger.debug("Discovered printers: %s", names)
    return names


def looks_like_receipt_printer(name: str) -> bool:
    lowered = name.lower()
    return "epson" in lowered and ("tm-" in lowered or "receipt" in lowered)


def choose_printer(available: Iterable[str], preferred: Sequence[str] = ()) -> str:
    """
    Pick a printer from `available`:
    1) the first name in `preferred` that is available (exact match)
    2) the first available name that looks like an Epson thermal receipt printer
    3) the first available name

    Raises:
        PrinterNotFound if nothing is available.
    """
    names = [n for n in available if n]
    if not names:
        raise PrinterNotFound("No printers available")
    for want in preferred:
        if want in names:
            return want
    for name in names:
        if looks_like_receipt_printer(name):
            logger.info("No preferred printer available; using %s", name)
            return name
    logger.info("No receipt printer recognised; falling back to %s", names[0])
    return names[0]


__all__ = ["choose_printer", "list_printers", "looks_like_receipt_printer"]
