"""
ESC/POS command emission.

Translates laid-out segments into the printer byte stream. The emitter tracks
two independent mode axes (alignment and emphasis) and only writes an
instruction when a segment needs a different mode than the one in effect.
Every call starts from the printer defaults (left / normal) after the
initialize instruction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Tuple

from .layout import Raster, Segment

logger = logging.getLogger(__name__)

ESC = b"\x1b"
GS = b"\x1d"


@dataclass(frozen=True)
class InstructionSet:
    """Byte sequences for one printer command language."""

    init: bytes
    align: Mapping[str, bytes]
    bold: Mapping[bool, bytes]
    size: Mapping[int, bytes]
    # emphasis name -> (bold, character size byte)
    emphasis_modes: Mapping[str, Tuple[bool, int]]
    line_feed: bytes
    feed_prefix: bytes
    cut: Mapping[str, bytes]
    raster_prefix: bytes
    drawer_pulse: bytes
    codepages: Mapping[str, bytes] = field(default_factory=dict)

    def feed(self, lines: int) -> bytes:
        return self.feed_prefix + bytes([max(0, min(255, lines))])

    def raster(self, image: Raster) -> bytes:
        """GS v 0 raster bit image: header with byte width and dot height, then rows."""
        xb = image.bytes_per_row
        header = bytes([xb & 0xFF, (xb >> 8) & 0xFF, image.height & 0xFF, (image.height >> 8) & 0xFF])
        return self.raster_prefix + header + image.data


ESCPOS = InstructionSet(
    init=ESC + b"@",
    align={"left": ESC + b"a\x00", "center": ESC + b"a\x01", "right": ESC + b"a\x02"},
    bold={True: ESC + b"E\x01", False: ESC + b"E\x00"},
    size={0x00: GS + b"!\x00", 0x11: GS + b"!\x11"},
    emphasis_modes={"normal": (False, 0x00), "bold": (True, 0x00), "double-size": (True, 0x11)},
    line_feed=b"\n",
    feed_prefix=ESC + b"d",
    cut={"full": GS + b"V\x00", "partial": GS + b"V\x01"},
    raster_prefix=GS + b"v0\x00",
    drawer_pulse=ESC + b"p\x00\x19\xfa",
    codepages={
        "cp437": ESC + b"t\x00",
        "cp850": ESC + b"t\x02",
        "cp860": ESC + b"t\x03",
        "cp863": ESC + b"t\x04",
        "cp865": ESC + b"t\x05",
        "cp1252": ESC + b"t\x10",
        "cp858": ESC + b"t\x13",
    },
)

DEFAULT_ALIGN = "left"
DEFAULT_EMPHASIS = "normal"


class CommandEmitter:
    """
    Emit a complete print job from segments.

    The stream is: initialize, code page, then per segment any needed mode
    changes followed by its text and terminator (or its raster), then a
    trailing feed to clear the cutter, an optional cash drawer pulse, and the
    cut.
    """

    def __init__(
        self,
        instructions: InstructionSet = ESCPOS,
        *,
        encoding: str = "cp437",
        feed_lines: int = 3,
        cut_mode: str = "partial",
        open_drawer: bool = False,
    ):
        if cut_mode not in instructions.cut:
            raise ValueError(f"unsupported cut mode {cut_mode!r}")
        self.instructions = instructions
        self.encoding = encoding
        self.feed_lines = feed_lines
        self.cut_mode = cut_mode
        self.open_drawer = open_drawer

    def encode_text(self, text: str) -> bytes:
        return text.encode(self.encoding, errors="replace")

    def emit(self, segments: Iterable[Segment]) -> bytes:
        ins = self.instructions
        out = bytearray(ins.init)
        codepage = ins.codepages.get(self.encoding.lower())
        if codepage:
            out += codepage

        align = DEFAULT_ALIGN
        bold, size = ins.emphasis_modes[DEFAULT_EMPHASIS]

        for seg in segments:
            if seg.align != align:
                out += ins.align[seg.align]
                align = seg.align
            want_bold, want_size = ins.emphasis_modes[seg.emphasis]
            if want_bold != bold:
                out += ins.bold[want_bold]
                bold = want_bold
            if want_size != size:
                out += ins.size[want_size]
                size = want_size

            if seg.raster is not None:
                out += ins.raster(seg.raster)
            else:
                out += self.encode_text(seg.text) + ins.line_feed

        if self.feed_lines > 0:
            out += ins.feed(self.feed_lines)
        if self.open_drawer:
            out += ins.drawer_pulse
        out += ins.cut[self.cut_mode]
        logger.debug("Emitted %d bytes (encoding=%s, cut=%s)", len(out), self.encoding, self.cut_mode)
        return bytes(out)


__all__ = ["CommandEmitter", "ESCPOS", "InstructionSet"]
