"""
Core utilities for Receipt Printer.

This package groups helpers used across the printing code:
- config: paths, JSON load/save, paper profiles and resolved Settings
- logging: job id aware logging filters/formatters and root logger config
- errors: the exception hierarchy
- db: SQLite job queue (import receipt_printer.core.db directly)

Exports are explicit to keep static analyzers (e.g., Pyright) happy.
"""

from .config import (
    PAPER_PROFILES,
    PaperProfile,
    Settings,
    default_config_path,
    default_db_path,
    get_config_path,
    get_db_path,
    load_config,
    profile_for_columns,
    resolve_settings,
    save_config,
)
from .errors import (
    AllDeliveryMethodsFailed,
    DeliveryMethodFailed,
    MediaEncodeFailed,
    PrinterNotFound,
    QueueUpdateFailed,
    ReceiptPrinterError,
    TemplateInvalid,
)
from .logging import (
    JobIdFilter,
    JsonFormatter,
    configure_logging,
    job_context,
)

__all__ = [
    # config
    "PAPER_PROFILES",
    "PaperProfile",
    "Settings",
    "default_config_path",
    "default_db_path",
    "get_config_path",
    "get_db_path",
    "load_config",
    "profile_for_columns",
    "resolve_settings",
    "save_config",
    # errors
    "AllDeliveryMethodsFailed",
    "DeliveryMethodFailed",
    "MediaEncodeFailed",
    "PrinterNotFound",
    "QueueUpdateFailed",
    "ReceiptPrinterError",
    "TemplateInvalid",
    # logging
    "configure_logging",
    "job_context",
    "JobIdFilter",
    "JsonFormatter",
]
