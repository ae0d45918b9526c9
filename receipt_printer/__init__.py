"""
Receipt Printer package

Renders order receipts and kitchen tickets to ESC/POS byte streams and gets
them onto thermal printers:
- schemas: pydantic models for receipt templates
- printing: layout, command emission, media encoding, rendering, delivery and job polling
- core: config resolution, logging, errors and the SQLite job queue
- cli: the `receipt-printer` command
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
