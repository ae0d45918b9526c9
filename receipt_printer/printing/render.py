"""
Receipt rendering pipeline.

Builds layout directives for a validated ReceiptTemplate in fixed section
order (header, order details, items, footer), lays them out for the paper
profile and emits the ESC/POS byte stream. Failures never escape: a bad
template resolves to a RenderResult carrying TemplateInvalid, and a QR code or
logo that cannot be encoded is replaced by a placeholder line.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, List, Mapping, Optional, Tuple, Union

from receipt_printer.core.config import PAPER_PROFILES, PaperProfile, Settings
from receipt_printer.core.errors import MediaEncodeFailed, TemplateInvalid
from receipt_printer.schemas import ReceiptTemplate, parse_template

from .commands import CommandEmitter
from .layout import (
    Align,
    Bitmap,
    Blank,
    Directive,
    Emphasis,
    ItemRow,
    Row,
    Segment,
    Separator,
    Text,
    layout,
)
from .media import ASCII_GLYPHS, BLOCK_GLYPHS, MediaEncoder

logger = logging.getLogger(__name__)

KINDS = ("receipt", "bill", "kitchen")
TITLES = {"receipt": None, "bill": "BILL", "kitchen": "KITCHEN ORDER"}
KITCHEN_SIGN_OFF = "Thank you!"
ITEMS_HEADING = "ITEMS:"
QR_PLACEHOLDER = "[QR code unavailable]"
LOGO_PLACEHOLDER = "[logo unavailable]"


@dataclass(frozen=True)
class RenderOptions:
    currency_symbol: str = "£"
    encoding: str = "cp437"
    cut_feed_lines: int = 3
    cut_mode: str = "partial"
    open_drawer: bool = False
    qr_mode: str = "bitmap"
    logo_width: Optional[int] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "RenderOptions":
        return cls(
            currency_symbol=settings.currency_symbol,
            encoding=settings.encoding,
            cut_feed_lines=settings.cut_feed_lines,
            cut_mode=settings.cut_mode,
            open_drawer=settings.open_drawer,
            qr_mode=settings.qr_mode,
            logo_width=settings.logo_width,
        )


@dataclass(frozen=True)
class RenderedPayload:
    """Finished print job bytes plus what was used to produce them."""

    data: bytes
    columns: int
    dots: int
    profile: str
    kind: str = "receipt"
    lines: Tuple[str, ...] = ()
    qr_modes: Tuple[str, ...] = ()
    fallbacks: Tuple[str, ...] = ()

    @property
    def text(self) -> str:
        """Plain-text preview of the laid-out lines."""
        return "\n".join(self.lines) + "\n"

    @property
    def degraded(self) -> bool:
        return "text" in self.qr_modes or bool(self.fallbacks)


@dataclass(frozen=True)
class RenderResult:
    payload: Optional[RenderedPayload] = None
    error: Optional[TemplateInvalid] = None

    @property
    def ok(self) -> bool:
        return self.payload is not None

    def unwrap(self) -> RenderedPayload:
        if self.payload is None:
            raise self.error or TemplateInvalid("render produced no payload")
        return self.payload


def format_money(amount: Union[Decimal, int, float, str], symbol: str = "£") -> str:
    value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    if value < 0:
        return f"-{symbol}{-value}"
    return f"{symbol}{value}"


def _glyphs_for(encoding: str) -> dict:
    try:
        "".join(BLOCK_GLYPHS.values()).encode(encoding)
        return BLOCK_GLYPHS
    except (UnicodeEncodeError, LookupError):
        return ASCII_GLYPHS


def preview_lines(segments: List[Segment]) -> Tuple[str, ...]:
    out = []
    for seg in segments:
        if seg.raster is not None:
            out.append(f"[bitmap {seg.raster.width}x{seg.raster.height}]")
        else:
            out.append(seg.text)
    return tuple(out)


class _ReceiptBuilder:
    """Collects directives for one template; records QR modes and fallbacks as it goes."""

    def __init__(
        self,
        tpl: ReceiptTemplate,
        kind: str,
        options: RenderOptions,
        encoder: MediaEncoder,
        now: Optional[datetime] = None,
    ):
        self.tpl = tpl
        self.kind = kind
        self.now = now or datetime.now()
        self.options = options
        self.encoder = encoder
        self.qr_modes: List[str] = []
        self.fallbacks: List[str] = []

    def money(self, amount: Decimal) -> str:
        return format_money(amount, self.options.currency_symbol)

    def build(self) -> List[Directive]:
        d: List[Directive] = []
        self.header(d)
        self.order_details(d)
        self.items(d)
        self.footer(d)
        return d

    # ----- Sections ----------------------------------------------------------

    def header(self, d: List[Directive]) -> None:
        b = self.tpl.business
        d.append(Align("center"))
        self.logo(d)
        d += [Emphasis("double-size"), Text(b.name), Emphasis("normal")]
        if b.address:
            d.append(Text(b.address))
        if b.phone:
            d.append(Text(f"Tel: {b.phone}"))
        if b.email:
            d.append(Text(b.email))
        if b.website:
            d.append(Text(b.website))
        title = TITLES.get(self.kind)
        if title:
            d += [Emphasis("bold"), Text(title), Emphasis("normal")]
        self.qr_codes(d, "header")
        d += [Align("left"), Separator()]

    def order_details(self, d: List[Directive]) -> None:
        o = self.tpl.order
        kitchen = self.kind == "kitchen"
        rows: List[Tuple[str, bool]] = []
        if o.receipt_number:
            label = "Order #" if kitchen else "Receipt #"
            rows.append((f"{label}: {o.receipt_number}", kitchen))
        if o.date:
            rows.append((f"Date: {o.date.strftime('%d/%m/%Y %H:%M')}", False))
        elif kitchen:
            rows.append((f"Time: {self.now.strftime('%H:%M')}", False))
        if o.customer_name:
            rows.append((f"Customer: {o.customer_name}", False))
        if o.order_type:
            rows.append((f"Type: {o.order_type}", kitchen))
        if o.table:
            rows.append((f"Table: {o.table}", kitchen))
        if not rows:
            return
        for text, bold in rows:
            if bold:
                d += [Emphasis("bold"), Text(text), Emphasis("normal")]
            else:
                d.append(Text(text))
        d.append(Separator())

    def items(self, d: List[Directive]) -> None:
        kitchen = self.kind == "kitchen"
        # The heading is printed even when there are no items
        d += [Emphasis("bold"), Text(ITEMS_HEADING), Emphasis("normal")]
        for item in self.tpl.items:
            if kitchen:
                d += [Emphasis("bold"), ItemRow(item.quantity, item.name), Emphasis("normal")]
            else:
                d.append(ItemRow(item.quantity, item.name, self.money(item.line_total)))
            for mod in item.modifiers:
                price = None
                if not kitchen and mod.price:
                    price = self.money(mod.price * item.quantity)
                d.append(Row(f"  + {mod.name}", price))
            if item.note:
                d.append(Text(f"  * {item.note}"))
            if kitchen:
                d.append(Blank())

        if kitchen:
            if self.tpl.special_instructions:
                d += [
                    Separator(),
                    Emphasis("bold"),
                    Text("SPECIAL INSTRUCTIONS:"),
                    Emphasis("normal"),
                    Text(self.tpl.special_instructions),
                ]
        else:
            self.totals(d)
        d.append(Separator())

    def totals(self, d: List[Directive]) -> None:
        t = self.tpl.totals
        if t is None:
            return
        rows: List[Directive] = []
        if t.subtotal is not None:
            rows.append(Row("Subtotal", self.money(t.subtotal)))
        if t.tax is not None:
            rows.append(Row("Tax", self.money(t.tax)))
        if t.delivery_fee:
            rows.append(Row("Delivery", self.money(t.delivery_fee)))
        if t.total is not None:
            rows += [Emphasis("bold"), Row("TOTAL", self.money(t.total)), Emphasis("normal")]
        if rows:
            d.append(Separator())
            d += rows

    def footer(self, d: List[Directive]) -> None:
        tpl = self.tpl
        message = tpl.footer_message or (KITCHEN_SIGN_OFF if self.kind == "kitchen" else None)
        if not (message or tpl.qr_for_zone("footer") or tpl.business.vat_id):
            return
        d.append(Align("center"))
        if message:
            d.append(Text(message))
        self.qr_codes(d, "footer")
        if tpl.business.vat_id:
            d.append(Text(f"VAT No: {tpl.business.vat_id}"))
        d += [Align("left"), Separator()]

    # ----- Media -------------------------------------------------------------

    def logo(self, d: List[Directive]) -> None:
        source = self.tpl.logo or self.tpl.logo_path
        if not source:
            return
        try:
            raster = self.encoder.dither_image(source, self.options.logo_width)
        except MediaEncodeFailed as e:
            logger.warning("Logo skipped: %s", e)
            self.fallbacks.append("logo")
            d.append(Text(LOGO_PLACEHOLDER))
            return
        d.append(Bitmap(raster))

    def qr_codes(self, d: List[Directive], zone: str) -> None:
        for qr in self.tpl.qr_for_zone(zone):
            try:
                encoded = self.encoder.encode_qr(qr.content, qr.size)
            except MediaEncodeFailed as e:
                logger.warning("QR code in %s skipped: %s", zone, e)
                self.fallbacks.append(f"qr:{zone}")
                d.append(Text(QR_PLACEHOLDER))
                continue
            self.qr_modes.append(encoded.representation)
            if encoded.raster is not None:
                d.append(Bitmap(encoded.raster))
            else:
                d += [Text(line) for line in encoded.lines]


def _encoder_for(profile: PaperProfile, options: RenderOptions) -> MediaEncoder:
    return MediaEncoder(
        columns=profile.columns,
        dots=profile.dots,
        native_bitmap=options.qr_mode == "bitmap",
        glyphs=_glyphs_for(options.encoding),
    )


def _finish(
    directives: List[Directive],
    profile: PaperProfile,
    options: RenderOptions,
    kind: str,
    qr_modes: Tuple[str, ...] = (),
    fallbacks: Tuple[str, ...] = (),
) -> RenderedPayload:
    segments = layout(directives, profile.columns)
    emitter = CommandEmitter(
        encoding=options.encoding,
        feed_lines=options.cut_feed_lines,
        cut_mode=options.cut_mode,
        open_drawer=options.open_drawer,
    )
    return RenderedPayload(
        data=emitter.emit(segments),
        columns=profile.columns,
        dots=profile.dots,
        profile=profile.name,
        kind=kind,
        lines=preview_lines(segments),
        qr_modes=qr_modes,
        fallbacks=fallbacks,
    )


def render_receipt(
    template: Union[ReceiptTemplate, Mapping[str, Any]],
    profile: Optional[PaperProfile] = None,
    *,
    kind: str = "receipt",
    options: Optional[RenderOptions] = None,
    encoder: Optional[MediaEncoder] = None,
    now: Optional[datetime] = None,
) -> RenderResult:
    """
    Render a template into a print-ready payload.

    Args:
        template: A ReceiptTemplate or a mapping that validates into one.
        profile: Paper profile (defaults to 80mm / 48 columns).
        kind: "receipt", "bill" or "kitchen".
        options: Formatting options; defaults match the stock config.
        encoder: Media encoder override (e.g. to force text QR codes).
        now: Clock for kitchen tickets whose order carries no date.

    Returns:
        RenderResult with either `payload` or `error` set. Never raises.
    """
    profile = profile or PAPER_PROFILES["80mm"]
    options = options or RenderOptions()

    try:
        tpl = parse_template(template)
    except TemplateInvalid as e:
        logger.warning("Template rejected: %s", e)
        return RenderResult(error=e)
    if kind not in KINDS:
        return RenderResult(error=TemplateInvalid(f"unknown ticket kind {kind!r}"))

    builder = _ReceiptBuilder(tpl, kind, options, encoder or _encoder_for(profile, options), now)
    try:
        directives = builder.build()
        payload = _finish(
            directives,
            profile,
            options,
            kind,
            qr_modes=tuple(builder.qr_modes),
            fallbacks=tuple(builder.fallbacks),
        )
    except Exception as e:
        logger.exception("Render failed for %s %s", kind, tpl.order.receipt_number or "")
        return RenderResult(error=TemplateInvalid(f"render failed: {e}"))

    logger.info(
        "Rendered %s (%d bytes, %d columns, qr=%s, fallbacks=%s)",
        kind,
        len(payload.data),
        payload.columns,
        ",".join(payload.qr_modes) or "-",
        ",".join(payload.fallbacks) or "-",
    )
    return RenderResult(payload=payload)


def render_test_page(
    profile: Optional[PaperProfile] = None,
    *,
    options: Optional[RenderOptions] = None,
    now: Optional[datetime] = None,
    title: str = "RECEIPT PRINTER",
) -> RenderResult:
    """
    Render a short fixed page used to check that a printer path works end to end.
    """
    profile = profile or PAPER_PROFILES["80mm"]
    options = options or RenderOptions()
    now = now or datetime.now()
    directives: List[Directive] = [
        Align("center"),
        Emphasis("double-size"),
        Text(title),
        Emphasis("normal"),
        Text("Print Test"),
        Separator(),
        Align("left"),
        Text(f"Date: {now.strftime('%d/%m/%Y')}"),
        Text(f"Time: {now.strftime('%H:%M:%S')}"),
        Text(f"Paper: {profile.name} ({profile.columns} columns)"),
        Blank(),
        Text("If you can read this, printing is working."),
        Row("Currency check", format_money(Decimal("12.34"), options.currency_symbol)),
        Separator(),
        Align("center"),
        Text("Thank you!"),
    ]
    try:
        return RenderResult(payload=_finish(directives, profile, options, "test"))
    except Exception as e:
        logger.exception("Test page render failed")
        return RenderResult(error=TemplateInvalid(f"render failed: {e}"))


__all__ = [
    "ITEMS_HEADING",
    "KINDS",
    "LOGO_PLACEHOLDER",
    "QR_PLACEHOLDER",
    "RenderOptions",
    "RenderResult",
    "RenderedPayload",
    "format_money",
    "render_receipt",
    "render_test_page",
]
