"""
Media encoding for receipts: QR codes and dithered images.

QR codes are produced either as a native raster bitmap (module grid scaled to
a dot size) or, when the printer path cannot take bitmaps, as rows of
half-block characters that fit within the paper's column budget. Every result
declares which representation was used.

Images are flattened, resized to a target width, converted to luminance and
reduced to 1 bit per pixel with Floyd-Steinberg error diffusion.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import qrcode
from PIL import Image

from receipt_printer.core.errors import MediaEncodeFailed

from .layout import Raster

logger = logging.getLogger(__name__)

ImageSource = Union[bytes, bytearray, str, Path, Image.Image]

# Size class -> minimum QR version (21 + 4 * (version - 1) modules per side)
QR_VERSIONS = {"small": 2, "medium": 4, "large": 6}
# Size class -> target bitmap width in dots
QR_DOTS = {"small": 160, "medium": 224, "large": 288}
QR_SIZES = ("small", "medium", "large")
QR_BITMAP_BORDER = 2
QR_TEXT_BORDER = 1

BLOCK_GLYPHS = {"full": "█", "upper": "▀", "lower": "▄", "empty": " "}
ASCII_GLYPHS = {"full": "#", "upper": '"', "lower": "o", "empty": " "}

THRESHOLD = 128


@dataclass(frozen=True)
class EncodedQR:
    """A QR code ready for layout, either as a bitmap or as text rows."""

    representation: str
    size: str
    modules: int
    raster: Optional[Raster] = None
    lines: Tuple[str, ...] = field(default_factory=tuple)


def qr_matrix(content: str, size: str = "medium", border: int = QR_BITMAP_BORDER) -> List[List[bool]]:
    """
    Return the QR module grid (quiet zone included) for content at a size class.
    The size class sets the minimum version; longer content grows the symbol.
    """
    if size not in QR_VERSIONS:
        raise MediaEncodeFailed(f"unknown QR size class {size!r}")
    if not content:
        raise MediaEncodeFailed("QR content is empty")
    try:
        qr = qrcode.QRCode(
            version=QR_VERSIONS[size],
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            border=border,
        )
        qr.add_data(content)
        qr.make(fit=True)
        return [list(row) for row in qr.get_matrix()]
    except Exception as e:
        raise MediaEncodeFailed(f"QR encoding failed: {e}") from e


def matrix_to_raster(matrix: Sequence[Sequence[bool]], scale: int) -> Raster:
    scale = max(1, scale)
    rows: List[List[bool]] = []
    for row in matrix:
        scaled = [cell for cell in row for _ in range(scale)]
        rows.extend(list(scaled) for _ in range(scale))
    return Raster.from_rows(rows)


def matrix_to_text(matrix: Sequence[Sequence[bool]], glyphs: Optional[dict] = None) -> Tuple[str, ...]:
    """Render two module rows per text line using half-block glyphs."""
    g = glyphs or BLOCK_GLYPHS
    lines: List[str] = []
    for y in range(0, len(matrix), 2):
        top = matrix[y]
        bottom = matrix[y + 1] if y + 1 < len(matrix) else [False] * len(top)
        chars = []
        for t, b in zip(top, bottom):
            if t and b:
                chars.append(g["full"])
            elif t:
                chars.append(g["upper"])
            elif b:
                chars.append(g["lower"])
            else:
                chars.append(g["empty"])
        lines.append("".join(chars))
    return tuple(lines)


def luminance(img: Image.Image) -> List[float]:
    """Row-major luminance values (0.299R + 0.587G + 0.114B) for an RGB image."""
    raw = img.convert("RGB").tobytes()
    return [0.299 * raw[i] + 0.587 * raw[i + 1] + 0.114 * raw[i + 2] for i in range(0, len(raw), 3)]


def floyd_steinberg(values: Sequence[float], width: int, height: int, threshold: float = THRESHOLD) -> Raster:
    """
    Error-diffusion dither of row-major grey values (0 black .. 255 white).

    Each pixel becomes black below the threshold and white otherwise; the
    quantization error goes 7/16 right, 3/16 down-left, 5/16 down and 1/16
    down-right. Neighbours outside the image are skipped and visited pixels
    are never touched again.
    """
    if len(values) != width * height:
        raise ValueError("value count does not match image size")
    px = [float(v) for v in values]
    rows: List[List[bool]] = []
    for y in range(height):
        row: List[bool] = []
        base = y * width
        for x in range(width):
            old = px[base + x]
            new = 0.0 if old < threshold else 255.0
            row.append(new == 0.0)
            err = old - new
            if not err:
                continue
            if x + 1 < width:
                px[base + x + 1] += err * 7 / 16
            if y + 1 < height:
                below = base + width
                if x > 0:
                    px[below + x - 1] += err * 3 / 16
                px[below + x] += err * 5 / 16
                if x + 1 < width:
                    px[below + x + 1] += err * 1 / 16
        rows.append(row)
    return Raster.from_rows(rows)


def _open_image(source: ImageSource) -> Image.Image:
    try:
        if isinstance(source, Image.Image):
            img = source
        elif isinstance(source, (bytes, bytearray)):
            img = Image.open(BytesIO(bytes(source)))
        else:
            img = Image.open(str(source))
        img.load()
        return img
    except Exception as e:
        raise MediaEncodeFailed(f"image could not be decoded: {e}") from e


def _flatten(img: Image.Image) -> Image.Image:
    """Composite transparent images onto white so transparent areas print blank."""
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        bg = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
        return Image.alpha_composite(bg, rgba).convert("RGB")
    return img.convert("RGB")


class MediaEncoder:
    """
    QR and image encoder bound to one paper profile.

    `native_bitmap` is the capability flag: when False, QR codes are always
    rendered as text rows. Callers can read `supports_native_bitmap` and each
    EncodedQR's `representation` to see what was produced.
    """

    def __init__(self, *, columns: int = 48, dots: int = 576, native_bitmap: bool = True, glyphs: Optional[dict] = None):
        self.columns = columns
        self.dots = dots
        self.native_bitmap = native_bitmap
        self.glyphs = glyphs or BLOCK_GLYPHS

    @property
    def supports_native_bitmap(self) -> bool:
        return self.native_bitmap

    def encode_qr(self, content: str, size: str = "medium") -> EncodedQR:
        if self.native_bitmap:
            return self._qr_bitmap(content, size)
        return self._qr_text(content, size)

    def _qr_bitmap(self, content: str, size: str) -> EncodedQR:
        matrix = qr_matrix(content, size, border=QR_BITMAP_BORDER)
        modules = len(matrix)
        if modules > self.dots:
            raise MediaEncodeFailed(f"QR code needs {modules} dots; paper has {self.dots}")
        scale = max(1, min(QR_DOTS[size], self.dots) // modules)
        return EncodedQR("bitmap", size, modules, raster=matrix_to_raster(matrix, scale))

    def _qr_text(self, content: str, size: str) -> EncodedQR:
        if size not in QR_VERSIONS:
            raise MediaEncodeFailed(f"unknown QR size class {size!r}")
        # Step down size classes until the symbol fits the column budget
        candidates = QR_SIZES[: QR_SIZES.index(size) + 1][::-1]
        widest = 0
        for candidate in candidates:
            matrix = qr_matrix(content, candidate, border=QR_TEXT_BORDER)
            widest = len(matrix)
            if widest <= self.columns:
                if candidate != size:
                    logger.info("QR size %s does not fit %d columns as text; using %s", size, self.columns, candidate)
                return EncodedQR("text", candidate, widest, lines=matrix_to_text(matrix, self.glyphs))
        raise MediaEncodeFailed(f"QR code needs {widest} columns as text; paper has {self.columns}")

    def dither_image(self, source: ImageSource, width: Optional[int] = None) -> Raster:
        """
        Decode an image, scale it to `width` dots (default: half the paper) keeping
        its aspect ratio, and dither it to a 1-bit raster.
        """
        img = _open_image(source)
        target = max(1, min(width or self.dots // 2, self.dots))
        try:
            img = _flatten(img)
            if img.width != target:
                height = max(1, int(round(img.height * target / float(img.width))))
                img = img.resize((target, height), Image.LANCZOS)
        except Exception as e:
            raise MediaEncodeFailed(f"image could not be converted: {e}") from e
        logger.debug("Dithering image to %dx%d", img.width, img.height)
        return floyd_steinberg(luminance(img), img.width, img.height)


__all__ = [
    "ASCII_GLYPHS",
    "BLOCK_GLYPHS",
    "EncodedQR",
    "MediaEncoder",
    "QR_SIZES",
    "QR_VERSIONS",
    "floyd_steinberg",
    "luminance",
    "matrix_to_raster",
    "matrix_to_text",
    "qr_matrix",
]
