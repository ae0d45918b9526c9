import json

from receipt_printer.core.config import (
    DEFAULT_METHODS,
    DEFAULT_PRINTERS,
    PAPER_PROFILES,
    default_config_path,
    get_config_path,
    get_db_path,
    load_config,
    resolve_settings,
    save_config,
)


def test_defaults_without_config(monkeypatch, tmp_path):
    monkeypatch.setenv("RECEIPTPRINTER_DB_PATH", str(tmp_path / "jobs.db"))
    s = resolve_settings(None)
    assert s.printer_names == DEFAULT_PRINTERS
    assert s.delivery_methods == DEFAULT_METHODS
    assert s.profile == PAPER_PROFILES["80mm"]
    assert (s.encoding, s.currency_symbol, s.cut_mode, s.qr_mode) == ("cp437", "£", "partial", "bitmap")
    assert s.method_timeout == 10.0
    assert s.escpos == {}
    assert s.db_path == str(tmp_path / "jobs.db")


def test_paper_width_and_columns():
    assert resolve_settings({"paper_width": "58mm"}).profile.columns == 32
    assert resolve_settings({"columns": 32}).profile == PAPER_PROFILES["58mm"]
    custom = resolve_settings({"columns": 42}).profile
    assert (custom.name, custom.columns, custom.dots) == ("42col", 42, 504)


def test_malformed_values_fall_back_with_warning(caplog):
    s = resolve_settings(
        {
            "paper_width": "110mm",
            "cut_mode": "tear",
            "qr_mode": "hologram",
            "method_timeout_seconds": "soon",
            "cut_feed_lines": "many",
            "poll_workers": 0,
        }
    )
    assert s.profile.name == "80mm"
    assert s.cut_mode == "partial"
    assert s.qr_mode == "bitmap"
    assert s.method_timeout == 10.0
    assert s.cut_feed_lines == 3
    assert s.poll_workers == 1
    assert "cut_mode" in caplog.text


def test_names_accept_lists_or_comma_strings():
    s = resolve_settings({"printer_names": "Kitchen, Bar ,", "delivery_methods": ["escpos"]})
    assert s.printer_names == ("Kitchen", "Bar")
    assert s.delivery_methods == ("escpos",)


def test_escpos_connection_keys_are_collected():
    cfg = {"printer_type": "network", "network_ip": "192.168.1.50", "network_port": "9100", "theme": "dark"}
    assert dict(resolve_settings(cfg).escpos) == {
        "printer_type": "network",
        "network_ip": "192.168.1.50",
        "network_port": "9100",
    }


def test_config_path_resolution(monkeypatch, tmp_path):
    monkeypatch.delenv("RECEIPTPRINTER_CONFIG_PATH", raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
    assert default_config_path() == str(tmp_path / "receiptprinter" / "config.json")
    assert get_config_path() == default_config_path()
    monkeypatch.setenv("RECEIPTPRINTER_CONFIG_PATH", str(tmp_path / "x.json"))
    assert get_config_path() == str(tmp_path / "x.json")


def test_db_path_resolution(monkeypatch, tmp_path):
    monkeypatch.delenv("RECEIPTPRINTER_DB_PATH", raising=False)
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
    assert get_db_path() == str(tmp_path / "receiptprinter" / "jobs.db")


def test_save_and_load_config(tmp_path):
    path = tmp_path / "nested" / "config.json"
    assert load_config(str(path)) is None
    save_config({"paper_width": "58mm", "currency_symbol": "€"}, path=str(path))
    assert load_config(str(path)) == {"paper_width": "58mm", "currency_symbol": "€"}
    assert json.loads(path.read_text(encoding="utf-8"))["paper_width"] == "58mm"
    assert not path.with_suffix(".json.tmp").exists()
