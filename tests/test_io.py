from __future__ import annotations

import io
import struct
from pathlib import Path
from tempfile import TemporaryDirectory
import unittest

from PIL import Image

from engine.buffer import PixelBuffer
from engine.io import (
    encode_bmp,
    export_buffer,
    ingest_image,
    load_buffer,
    normalize_format,
    save_buffer,
)


def _three_by_two() -> PixelBuffer:
    buf = PixelBuffer.blank(3, 2, (0, 0, 0, 255))
    buf.pixels[0, 0] = (255, 0, 0, 255)
    buf.pixels[1, 0] = (10, 20, 30, 255)
    return buf


class BmpTests(unittest.TestCase):
    def test_header_fields(self) -> None:
        data = encode_bmp(_three_by_two())
        # 3 px * 3 bytes = 9, padded to 12 per row
        self.assertEqual(len(data), 54 + 24)
        magic, file_size, _, _, offset = struct.unpack("<2sIHHI", data[:14])
        self.assertEqual(magic, b"BM")
        self.assertEqual(file_size, 78)
        self.assertEqual(offset, 54)
        info = struct.unpack("<IiiHHIIiiII", data[14:54])
        self.assertEqual(info[:5], (40, 3, 2, 1, 24))
        self.assertEqual(info[6], 24)
        self.assertEqual(info[7:9], (2835, 2835))

    def test_rows_are_bottom_up_bgr(self) -> None:
        data = encode_bmp(_three_by_two())
        first_row = data[54:66]
        second_row = data[66:78]
        self.assertEqual(first_row[:3], bytes([30, 20, 10]))
        self.assertEqual(second_row[:3], bytes([0, 0, 255]))
        self.assertEqual(first_row[9:], b"\x00\x00\x00")

    def test_pillow_reads_it_back(self) -> None:
        with Image.open(io.BytesIO(encode_bmp(_three_by_two()))) as img:
            self.assertEqual(img.size, (3, 2))
            self.assertEqual(img.convert("RGB").getpixel((0, 0)), (255, 0, 0))


class ExportTests(unittest.TestCase):
    def test_format_names(self) -> None:
        self.assertEqual(normalize_format("JPG"), "jpeg")
        self.assertEqual(normalize_format("image/png"), "png")
        self.assertEqual(normalize_format(".tif"), "tiff")
        with self.assertRaises(ValueError):
            normalize_format("gif")

    def test_png_keeps_pixels(self) -> None:
        src = _three_by_two()
        src.pixels[1, 2] = (1, 2, 3, 4)
        out = ingest_image(export_buffer(src, "png"))
        self.assertTrue(out.same_pixels(src))

    def test_jpeg_is_flattened(self) -> None:
        data = export_buffer(PixelBuffer.blank(4, 4, (0, 0, 0, 0)), "jpeg", 0.8)
        self.assertEqual(data[:2], b"\xff\xd8")
        with Image.open(io.BytesIO(data)) as img:
            self.assertEqual(img.mode, "RGB")
            r, g, b = img.getpixel((1, 1))
            self.assertGreater(min(r, g, b), 240)

    def test_save_picks_format_from_extension(self) -> None:
        with TemporaryDirectory() as td:
            path = Path(td) / "out.bmp"
            save_buffer(str(path), _three_by_two())
            self.assertEqual(path.read_bytes()[:2], b"BM")
            loaded = load_buffer(str(path))
        self.assertEqual(loaded.size, (3, 2))


if __name__ == "__main__":
    unittest.main()
