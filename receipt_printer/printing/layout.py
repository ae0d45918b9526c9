"""
Fixed-width layout for receipt text.

Turns a sequence of layout directives into positioned text segments for a
paper profile measured in character columns. Pure functions only; no I/O.

Alignment is baked into each segment's text: centered and right-aligned lines
are space-filled to the full width, so the printer-side alignment mode set by
the command emitter only affects bitmaps.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Union

ALIGNMENTS = ("left", "center", "right")
EMPHASES = ("normal", "bold", "double-size")


@dataclass(frozen=True)
class Raster:
    """A 1-bit bitmap packed MSB first, one bit per dot, 1 = black."""

    width: int
    height: int
    data: bytes

    @property
    def bytes_per_row(self) -> int:
        return (self.width + 7) // 8

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[bool]]) -> "Raster":
        height = len(rows)
        width = len(rows[0]) if height else 0
        out = bytearray()
        for row in rows:
            byte = 0
            for x, black in enumerate(row):
                if black:
                    byte |= 1 << (7 - (x % 8))
                if x % 8 == 7:
                    out.append(byte)
                    byte = 0
            if width % 8:
                out.append(byte)
        return cls(width, height, bytes(out))

    def pixel(self, x: int, y: int) -> bool:
        byte = self.data[y * self.bytes_per_row + x // 8]
        return bool(byte & (1 << (7 - (x % 8))))


@dataclass(frozen=True)
class Segment:
    """One output line (or bitmap) tagged with alignment and emphasis."""

    text: str = ""
    align: str = "left"
    emphasis: str = "normal"
    raster: Optional[Raster] = None


# ----- Directives ------------------------------------------------------------


@dataclass(frozen=True)
class Align:
    value: str


@dataclass(frozen=True)
class Emphasis:
    value: str


@dataclass(frozen=True)
class Text:
    text: str


@dataclass(frozen=True)
class Row:
    """Label on the left, value right-aligned on the same line when it fits."""

    left: str
    right: Optional[str] = None


@dataclass(frozen=True)
class ItemRow:
    quantity: int
    name: str
    price: Optional[str] = None


@dataclass(frozen=True)
class Separator:
    char: str = "-"


@dataclass(frozen=True)
class Blank:
    pass


@dataclass(frozen=True)
class Feed:
    lines: int = 1


@dataclass(frozen=True)
class Bitmap:
    raster: Raster


Directive = Union[Align, Emphasis, Text, Row, ItemRow, Separator, Blank, Feed, Bitmap]


# ----- Arithmetic ------------------------------------------------------------


def effective_width(columns: int, emphasis: str) -> int:
    """Double-size glyphs are twice as wide, halving the usable columns."""
    if emphasis == "double-size":
        return max(1, columns // 2)
    return max(1, columns)


def wrap(text: str, width: int) -> List[str]:
    """
    Break text into lines no longer than width, at the nearest preceding space.
    Falls back to a hard break when a line has no usable space.
    """
    width = max(1, width)
    lines: List[str] = []
    while len(text) > width:
        cut = text.rfind(" ", 0, width + 1)
        if cut <= 0 or not text[:cut].strip():
            lines.append(text[:width])
            text = text[width:]
            continue
        lines.append(text[:cut].rstrip())
        text = text[cut + 1 :].lstrip()
    lines.append(text)
    return lines


def position(text: str, width: int, align: str) -> str:
    """Pad a line that already fits into width for the given alignment."""
    length = len(text)
    if align == "center":
        pad = max(0, (width - length) // 2)
        return " " * pad + text + " " * max(0, width - pad - length)
    if align == "right":
        return " " * max(0, width - length) + text
    return text


def _row_segments(left: str, right: Optional[str], width: int, emphasis: str) -> List[Segment]:
    if not right:
        return [Segment(line, "left", emphasis) for line in wrap(left, width)]
    if len(left) + 1 + len(right) <= width:
        gap = width - len(left) - len(right)
        return [Segment(left + " " * gap + right, "left", emphasis)]
    out = [Segment(line, "left", emphasis) for line in wrap(left, width)]
    out.append(Segment(position(right, width, "right"), "right", emphasis))
    return out


def layout(directives: Iterable[Directive], columns: int) -> List[Segment]:
    """
    Lay out directives for a paper profile of `columns` characters.

    Alignment and emphasis persist until changed, starting from left/normal.
    Returns the ordered segments; bitmaps are passed through with the current
    alignment.
    """
    align = "left"
    emphasis = "normal"
    segments: List[Segment] = []

    for d in directives:
        width = effective_width(columns, emphasis)
        if isinstance(d, Align):
            if d.value not in ALIGNMENTS:
                raise ValueError(f"unknown alignment {d.value!r}")
            align = d.value
        elif isinstance(d, Emphasis):
            if d.value not in EMPHASES:
                raise ValueError(f"unknown emphasis {d.value!r}")
            emphasis = d.value
        elif isinstance(d, Text):
            for raw in d.text.splitlines() or [""]:
                for line in wrap(raw, width):
                    segments.append(Segment(position(line, width, align), align, emphasis))
        elif isinstance(d, ItemRow):
            segments.extend(_row_segments(f"{d.quantity}x {d.name}", d.price, width, emphasis))
        elif isinstance(d, Row):
            segments.extend(_row_segments(d.left, d.right, width, emphasis))
        elif isinstance(d, Separator):
            segments.append(Segment((d.char or "-")[0] * width, align, emphasis))
        elif isinstance(d, Blank):
            segments.append(Segment("", align, emphasis))
        elif isinstance(d, Feed):
            segments.extend(Segment("", align, emphasis) for _ in range(max(0, d.lines)))
        elif isinstance(d, Bitmap):
            segments.append(Segment("", align, emphasis, raster=d.raster))
        else:
            raise TypeError(f"unsupported layout directive: {d!r}")

    return segments


__all__ = [
    "ALIGNMENTS",
    "EMPHASES",
    "Align",
    "Bitmap",
    "Blank",
    "Directive",
    "Emphasis",
    "Feed",
    "ItemRow",
    "Raster",
    "Row",
    "Segment",
    "Separator",
    "Text",
    "effective_width",
    "layout",
    "position",
    "wrap",
]
