"""
Command line entry point: `receipt-printer`.

Usage:
  receipt-printer render order.json --preview
  receipt-printer render order.json --kind kitchen --output ticket.bin
  receipt-printer print order.json --printer "EPSON TM-T20III Receipt"
  receipt-printer test-print
  receipt-printer printers
  receipt-printer enqueue order.json --kind bill
  receipt-printer poll --once

Exit code:
  0  on success
  1  on any render, delivery or configuration failure
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from receipt_printer.core.config import Settings, load_config, resolve_settings
from receipt_printer.core.errors import PrinterNotFound
from receipt_printer.core.logging import configure_logging
from receipt_printer.printing.discovery import choose_printer, list_printers
from receipt_printer.printing.dispatch import build_dispatcher
from receipt_printer.printing.render import KINDS, RenderOptions, RenderResult, render_receipt, render_test_page

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="receipt-printer",
        description="Render and print ESC/POS receipts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", default=None, help="Path to config JSON (default: $RECEIPTPRINTER_CONFIG_PATH or XDG)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    p_render = sub.add_parser("render", help="Render a template to bytes or a text preview")
    p_render.add_argument("template", help="Template JSON file ('-' for stdin)")
    p_render.add_argument("--kind", choices=KINDS, default="receipt")
    p_render.add_argument("--output", "-o", default=None, help="Write the ESC/POS payload to this file")
    p_render.add_argument("--preview", action="store_true", help="Print the laid-out text lines")

    p_print = sub.add_parser("print", help="Render a template and send it to a printer")
    p_print.add_argument("template", help="Template JSON file ('-' for stdin)")
    p_print.add_argument("--kind", choices=KINDS, default="receipt")
    p_print.add_argument("--printer", default=None, help="Printer name (default: discovered)")

    p_test = sub.add_parser("test-print", help="Print the test page")
    p_test.add_argument("--printer", default=None, help="Printer name (default: discovered)")

    sub.add_parser("printers", help="List printers and show which one would be used")

    p_enqueue = sub.add_parser("enqueue", help="Add a job to the SQLite job queue")
    p_enqueue.add_argument("template", help="Template JSON file ('-' for stdin)")
    p_enqueue.add_argument("--kind", choices=KINDS, default="receipt")
    p_enqueue.add_argument("--printer", default=None, help="Printer override for this job")
    p_enqueue.add_argument("--db", default=None, help="Job database path")

    p_poll = sub.add_parser("poll", help="Print pending jobs from the SQLite job queue")
    p_poll.add_argument("--once", action="store_true", help="Run a single tick and exit")
    p_poll.add_argument("--printer", default=None, help="Default printer name (default: discovered)")
    p_poll.add_argument("--db", default=None, help="Job database path")

    return parser.parse_args(argv)


def _read_template(source: str) -> Any:
    if source == "-":
        return json.load(sys.stdin)
    with Path(source).open("r", encoding="utf-8") as f:
        return json.load(f)


def _resolve_printer(requested: Optional[str], settings: Settings) -> str:
    if requested:
        return requested
    try:
        return choose_printer(list_printers(), settings.printer_names)
    except PrinterNotFound:
        if not settings.printer_names:
            raise
        logger.warning("No printers discovered; using configured %s", settings.printer_names[0])
        return settings.printer_names[0]


def _render_failed(result: RenderResult) -> int:
    print(f"Render failed: {result.error}", file=sys.stderr)
    for err in getattr(result.error, "errors", []) or []:
        loc = ".".join(str(p) for p in err.get("loc", ()))
        print(f"  {loc}: {err.get('msg')}", file=sys.stderr)
    return 1


def _deliver(result: RenderResult, requested: Optional[str], settings: Settings) -> int:
    if not result.ok:
        return _render_failed(result)
    printer = _resolve_printer(requested, settings)
    delivery = build_dispatcher(settings).dispatch(result.unwrap(), printer)
    print(json.dumps(delivery.to_dict(), indent=2))
    return 0 if delivery.success else 1


def cmd_render(args: argparse.Namespace, settings: Settings) -> int:
    result = render_receipt(
        _read_template(args.template),
        settings.profile,
        kind=args.kind,
        options=RenderOptions.from_settings(settings),
    )
    if not result.ok:
        return _render_failed(result)
    payload = result.unwrap()
    if args.output:
        Path(args.output).write_bytes(payload.data)
        logger.info("Wrote %d bytes to %s", len(payload.data), args.output)
    if args.preview or not args.output:
        sys.stdout.write(payload.text)
    return 0


def cmd_print(args: argparse.Namespace, settings: Settings) -> int:
    result = render_receipt(
        _read_template(args.template),
        settings.profile,
        kind=args.kind,
        options=RenderOptions.from_settings(settings),
    )
    return _deliver(result, args.printer, settings)


def cmd_test_print(args: argparse.Namespace, settings: Settings) -> int:
    result = render_test_page(settings.profile, options=RenderOptions.from_settings(settings))
    return _deliver(result, args.printer, settings)


def cmd_printers(args: argparse.Namespace, settings: Settings) -> int:
    names = list_printers()
    for name in names:
        print(name)
    try:
        chosen = choose_printer(names, settings.printer_names)
    except PrinterNotFound as e:
        print(f"No printer selected: {e}", file=sys.stderr)
        return 1
    print(f"Selected: {chosen}")
    return 0


def cmd_enqueue(args: argparse.Namespace, settings: Settings) -> int:
    from receipt_printer.core.db import SqliteJobQueue

    with SqliteJobQueue(args.db or settings.db_path) as queue:
        job_id = queue.enqueue(_read_template(args.template), job_type=args.kind, printer=args.printer)
    print(job_id)
    return 0


def cmd_poll(args: argparse.Namespace, settings: Settings) -> int:
    from receipt_printer.core.db import SqliteJobQueue
    from receipt_printer.printing.worker import JobPoller

    printer = _resolve_printer(args.printer, settings)
    with SqliteJobQueue(args.db or settings.db_path) as queue:
        poller = JobPoller.from_settings(queue, build_dispatcher(settings), printer, settings)
        if args.once:
            outcomes = poller.poll_once() or []
            summary: Dict[str, int] = {}
            for o in outcomes:
                summary[o.status] = summary.get(o.status, 0) + 1
            print(json.dumps(summary))
            return 1 if summary.get("FAILED") else 0

        poller.start()
        try:
            while poller.running:
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Shutting down job poller...")
        finally:
            poller.stop(timeout=settings.method_timeout * max(1, len(dispatcher.methods)) + settings.poll_interval)
    return 0


COMMANDS = {
    "render": cmd_render,
    "print": cmd_print,
    "test-print": cmd_test_print,
    "printers": cmd_printers,
    "enqueue": cmd_enqueue,
    "poll": cmd_poll,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the receipt-printer command."""
    args = parse_args(argv)

    configure_logging()
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        settings = resolve_settings(load_config(args.config))
    except (OSError, ValueError) as e:
        logger.error(f"Could not load config: {e}")
        return 1

    try:
        return COMMANDS[args.command](args, settings)
    except (OSError, ValueError, PrinterNotFound) as e:
        logger.error(f"{args.command} failed: {e}")
        if args.debug:
            logger.exception("Full traceback:")
        return 1


if __name__ == "__main__":
    sys.exit(main())
