import warnings
from io import BytesIO

import pytest
from PIL import Image

from receipt_printer.core.errors import MediaEncodeFailed
from receipt_printer.printing.media import (
    ASCII_GLYPHS,
    MediaEncoder,
    floyd_steinberg,
    luminance,
    matrix_to_text,
    qr_matrix,
)


def _checker(width: int, height: int) -> Image.Image:
    img = Image.new("L", (width, height), 255)
    px = img.load()
    for y in range(height):
        for x in range(width):
            if (x + y) % 2 == 0:
                px[x, y] = 0
    return img


def test_dither_of_pure_black_and_white_reproduces_it():
    values = [0, 255, 255, 0, 0, 0, 255, 255]
    raster = floyd_steinberg(values, 4, 2)
    got = [raster.pixel(x, y) for y in range(2) for x in range(4)]
    assert got == [v == 0 for v in values]


def test_luminance_is_row_major_without_deprecated_pillow_calls():
    img = Image.new("RGB", (2, 2), (255, 255, 255))
    img.putpixel((1, 0), (255, 0, 0))
    img.putpixel((0, 1), (0, 0, 0))
    with warnings.catch_warnings():
        warnings.simplefilter("error", DeprecationWarning)
        values = luminance(img)
    assert values == pytest.approx([255.0, 0.299 * 255, 0.0, 255.0])


def test_dither_image_keeps_a_bilevel_image_when_not_resized():
    img = _checker(16, 6)
    raster = MediaEncoder(dots=576).dither_image(img, width=16)
    assert (raster.width, raster.height) == (16, 6)
    for y in range(6):
        for x in range(16):
            assert raster.pixel(x, y) == ((x + y) % 2 == 0)


def test_mid_grey_dithers_to_roughly_half_black():
    raster = floyd_steinberg([127.5] * 400, 20, 20)
    black = sum(raster.pixel(x, y) for y in range(20) for x in range(20))
    assert 150 <= black <= 250


def test_transparent_areas_print_white():
    img = Image.new("RGBA", (24, 8), (0, 0, 0, 0))
    raster = MediaEncoder().dither_image(img, width=24)
    assert raster.data == bytes(len(raster.data))


def test_dither_image_scales_to_target_width_and_accepts_bytes():
    buf = BytesIO()
    Image.new("RGB", (100, 50), (0, 0, 0)).save(buf, format="PNG")
    raster = MediaEncoder(dots=384).dither_image(buf.getvalue())
    assert raster.width == 192
    assert raster.height == 96
    assert raster.pixel(10, 10)


def test_undecodable_image_raises_media_encode_failed():
    with pytest.raises(MediaEncodeFailed):
        MediaEncoder().dither_image(b"definitely not an image")


def test_qr_bitmap_fits_the_dot_width():
    enc = MediaEncoder(columns=32, dots=384)
    qr = enc.encode_qr("https://example.com", "large")
    assert qr.representation == "bitmap"
    assert qr.raster is not None
    assert qr.raster.width <= 384
    assert qr.raster.width == qr.raster.height


def test_small_qr_as_text_fits_32_columns():
    enc = MediaEncoder(columns=32, dots=384, native_bitmap=False)
    assert not enc.supports_native_bitmap
    qr = enc.encode_qr("https://example.com", "small")
    assert qr.representation == "text"
    assert qr.lines
    assert all(len(line) <= 32 for line in qr.lines)


def test_text_qr_steps_down_size_to_fit():
    enc = MediaEncoder(columns=32, dots=384, native_bitmap=False)
    qr = enc.encode_qr("https://example.com", "large")
    assert qr.size == "small"
    assert all(len(line) <= 32 for line in qr.lines)


def test_text_qr_that_cannot_fit_raises():
    enc = MediaEncoder(columns=12, dots=144, native_bitmap=False)
    with pytest.raises(MediaEncodeFailed):
        enc.encode_qr("https://example.com", "small")


def test_size_class_sets_minimum_module_count():
    small = qr_matrix("hi", "small", border=0)
    large = qr_matrix("hi", "large", border=0)
    assert len(small) == 25
    assert len(large) == 41


def test_matrix_to_text_uses_two_rows_per_line():
    matrix = [[True, False, False], [True, True, False], [False, True, True]]
    lines = matrix_to_text(matrix, ASCII_GLYPHS)
    assert lines == ("#o ", " \"\"")
