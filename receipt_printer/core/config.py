"""
Config utilities for Receipt Printer.

Responsibilities:
- Resolve config/data paths with environment and XDG support
- Provide JSON load/save helpers for the service config
- Resolve the raw config mapping into a frozen Settings value once at startup
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaperProfile:
    """Character columns and printable dot width for one paper roll width."""

    name: str
    columns: int
    dots: int


PAPER_PROFILES: Dict[str, PaperProfile] = {
    "58mm": PaperProfile("58mm", 32, 384),
    "80mm": PaperProfile("80mm", 48, 576),
}

DEFAULT_PRINTERS: Tuple[str, ...] = ("EPSON TM-T20III Receipt", "EPSON TM-T88V Receipt")
DEFAULT_METHODS: Tuple[str, ...] = ("os-spooler", "port-copy", "escpos")

# python-escpos connection keys passed through untouched
ESCPOS_KEYS = (
    "printer_type",
    "printer_profile",
    "usb_vendor_id",
    "usb_product_id",
    "network_ip",
    "network_port",
    "serial_port",
    "serial_baudrate",
)


def profile_for_columns(columns: int) -> PaperProfile:
    """
    Return the known profile for a column count, or a custom one scaled at 12 dots per column.
    """
    for profile in PAPER_PROFILES.values():
        if profile.columns == columns:
            return profile
    return PaperProfile(f"{columns}col", columns, columns * 12)


def default_config_path() -> str:
    """
    Resolve the default config path using:
    1) $XDG_CONFIG_HOME/receiptprinter/config.json
    2) ~/.config/receiptprinter/config.json
    """
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return str(Path(xdg) / "receiptprinter" / "config.json")
    return str(Path.home() / ".config" / "receiptprinter" / "config.json")


def default_db_path() -> str:
    """
    Resolve the default job database path using:
    1) $XDG_DATA_HOME/receiptprinter/jobs.db
    2) ~/.local/share/receiptprinter/jobs.db
    """
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return str(Path(xdg) / "receiptprinter" / "jobs.db")
    return str(Path.home() / ".local" / "share" / "receiptprinter" / "jobs.db")


def get_config_path() -> str:
    """
    Return the config path honoring RECEIPTPRINTER_CONFIG_PATH override.
    """
    return os.environ.get("RECEIPTPRINTER_CONFIG_PATH", default_config_path())


def get_db_path() -> str:
    """
    Return the job database path honoring RECEIPTPRINTER_DB_PATH override.
    """
    return os.environ.get("RECEIPTPRINTER_DB_PATH", default_db_path())


def load_config(path: Optional[str] = None) -> Optional[dict[str, Any]]:
    """
    Load the JSON config if it exists; return None if missing.

    Raises:
        json.JSONDecodeError if the file exists but contains invalid JSON.
        OSError for I/O errors other than missing file.
    """
    cfg_path = Path(path or get_config_path())
    if not cfg_path.exists():
        return None
    with cfg_path.open("r", encoding="utf-8") as f:
        return json.load(f)


def save_config(data: dict[str, Any], path: Optional[str] = None) -> None:
    """
    Save the JSON config, creating parent directories as needed.

    Writes atomically by using a temporary file and os.replace().
    Raises OSError on I/O failures.
    """
    cfg_path = Path(path or get_config_path())
    cfg_path.parent.mkdir(parents=True, exist_ok=True)

    tmp_path = cfg_path.with_suffix(cfg_path.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, cfg_path)


@dataclass(frozen=True)
class Settings:
    """Process-wide printing settings, resolved once and passed explicitly."""

    printer_names: Tuple[str, ...] = DEFAULT_PRINTERS
    delivery_methods: Tuple[str, ...] = DEFAULT_METHODS
    method_timeout: float = 10.0
    profile: PaperProfile = PAPER_PROFILES["80mm"]
    encoding: str = "cp437"
    currency_symbol: str = "£"
    cut_feed_lines: int = 3
    cut_mode: str = "partial"
    qr_mode: str = "bitmap"
    logo_width: Optional[int] = None
    open_drawer: bool = False
    port_path: str = ""
    escpos: Mapping[str, Any] = field(default_factory=dict)
    poll_interval: float = 5.0
    poll_workers: int = 1
    db_path: str = field(default_factory=get_db_path)


def _as_int(cfg: Mapping[str, Any], key: str, default: int, minimum: int = 0) -> int:
    if cfg.get(key) is None:
        return default
    try:
        return max(minimum, int(cfg[key]))
    except (TypeError, ValueError):
        logger.warning("Invalid %s=%r in config; using %s", key, cfg.get(key), default)
        return default


def _as_float(cfg: Mapping[str, Any], key: str, default: float) -> float:
    if cfg.get(key) is None:
        return default
    try:
        value = float(cfg[key])
    except (TypeError, ValueError):
        logger.warning("Invalid %s=%r in config; using %s", key, cfg.get(key), default)
        return default
    return value if value > 0 else default


def _as_names(cfg: Mapping[str, Any], key: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    value = cfg.get(key)
    if value is None:
        return default
    if isinstance(value, str):
        value = [v for v in value.split(",")]
    names = tuple(str(v).strip() for v in value if str(v).strip())
    return names or default


def _resolve_profile(cfg: Mapping[str, Any]) -> PaperProfile:
    if cfg.get("columns") is not None:
        columns = _as_int(cfg, "columns", 48, minimum=16)
        return profile_for_columns(columns)
    width = str(cfg.get("paper_width", "80mm")).strip().lower()
    if width not in PAPER_PROFILES:
        logger.warning("Unknown paper_width=%r; using 80mm", width)
        width = "80mm"
    return PAPER_PROFILES[width]


def resolve_settings(cfg: Optional[Mapping[str, Any]] = None) -> Settings:
    """
    Turn a raw config mapping into Settings. Missing or malformed values fall back to defaults.
    """
    cfg = cfg or {}

    cut_mode = str(cfg.get("cut_mode", "partial")).lower()
    if cut_mode not in ("full", "partial"):
        logger.warning("Unknown cut_mode=%r; using partial", cut_mode)
        cut_mode = "partial"

    qr_mode = str(cfg.get("qr_mode", "bitmap")).lower()
    if qr_mode not in ("bitmap", "text"):
        logger.warning("Unknown qr_mode=%r; using bitmap", qr_mode)
        qr_mode = "bitmap"

    logo_width = cfg.get("logo_width")
    if logo_width is not None:
        logo_width = _as_int(cfg, "logo_width", 0, minimum=8) or None

    return Settings(
        printer_names=_as_names(cfg, "printer_names", DEFAULT_PRINTERS),
        delivery_methods=_as_names(cfg, "delivery_methods", DEFAULT_METHODS),
        method_timeout=_as_float(cfg, "method_timeout_seconds", 10.0),
        profile=_resolve_profile(cfg),
        encoding=str(cfg.get("encoding") or "cp437"),
        currency_symbol=str(cfg.get("currency_symbol", "£")),
        cut_feed_lines=_as_int(cfg, "cut_feed_lines", 3),
        cut_mode=cut_mode,
        qr_mode=qr_mode,
        logo_width=logo_width,
        open_drawer=bool(cfg.get("open_drawer", False)),
        port_path=str(cfg.get("port_path") or ""),
        escpos={k: cfg[k] for k in ESCPOS_KEYS if k in cfg},
        poll_interval=_as_float(cfg, "poll_interval_seconds", 5.0),
        poll_workers=_as_int(cfg, "poll_workers", 1, minimum=1),
        db_path=str(cfg.get("db_path") or get_db_path()),
    )


__all__ = [
    "DEFAULT_METHODS",
    "DEFAULT_PRINTERS",
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
]
