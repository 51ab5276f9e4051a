from __future__ import annotations

import io
import logging
import struct
from typing import Optional

import numpy as np
from PIL import Image

from engine.buffer import PixelBuffer

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("png", "jpeg", "bmp", "webp", "tiff")
EXTENSIONS = {"png": ".png", "jpeg": ".jpg", "bmp": ".bmp", "webp": ".webp", "tiff": ".tiff"}
MIME_TYPES = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "bmp": "image/bmp",
    "webp": "image/webp",
    "tiff": "image/tiff",
}

_FORMAT_ALIASES = {"jpg": "jpeg", "tif": "tiff"}

BMP_PIXELS_PER_METER = 2835


def load_image_rgba(path: str) -> Image.Image:
    img = Image.open(path)
    # Convert to RGBA for consistent alpha work
    return img.convert("RGBA")


def save_image(path: str, img_rgba: Image.Image) -> None:
    img_rgba.save(path)


def normalize_format(fmt: str) -> str:
    f = (fmt or "").strip().lower().lstrip(".")
    if f.startswith("image/"):
        f = f[len("image/"):]
    f = _FORMAT_ALIASES.get(f, f)
    if f not in EXPORT_FORMATS:
        raise ValueError(f"unsupported export format: {fmt}")
    return f


def ingest_image(data: bytes, mime_hint: Optional[str] = None) -> PixelBuffer:
    """Decode an uploaded image into a PixelBuffer; this runs to completion before returning."""
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        logger.debug("decoded %s image %dx%d (hint %s)", img.format, img.width, img.height, mime_hint)
        return PixelBuffer.from_pil(img)


def load_buffer(path: str) -> PixelBuffer:
    return PixelBuffer.from_pil(load_image_rgba(path))


def flatten_onto(buf: PixelBuffer, rgb: tuple[int, int, int] = (255, 255, 255)) -> Image.Image:
    bg = Image.new("RGBA", buf.size, rgb + (255,))
    bg.alpha_composite(buf.to_pil())
    return bg.convert("RGB")


def encode_bmp(buf: PixelBuffer) -> bytes:
    """24-bit bottom-up BMP; alpha is dropped."""
    w, h = buf.width, buf.height
    row_size = (w * 3 + 3) & ~3
    image_size = row_size * h
    file_size = 14 + 40 + image_size

    header = struct.pack("<2sIHHI", b"BM", file_size, 0, 0, 14 + 40)
    info = struct.pack(
        "<IiiHHIIiiII",
        40,
        w,
        h,
        1,
        24,
        0,
        image_size,
        BMP_PIXELS_PER_METER,
        BMP_PIXELS_PER_METER,
        0,
        0,
    )

    rows = np.zeros((h, row_size), dtype=np.uint8)
    rows[:, : w * 3] = buf.pixels[::-1, :, 2::-1].reshape(h, w * 3)
    return header + info + rows.tobytes()


def export_buffer(buf: PixelBuffer, fmt: str = "png", quality: float = 0.9) -> bytes:
    f = normalize_format(fmt)
    if f == "bmp":
        return encode_bmp(buf)

    out = io.BytesIO()
    q = int(round(max(0.0, min(1.0, float(quality))) * 100))
    if f == "jpeg":
        flatten_onto(buf).save(out, format="JPEG", quality=q)
    elif f == "webp":
        buf.to_pil().save(out, format="WEBP", quality=q)
    elif f == "tiff":
        buf.to_pil().save(out, format="TIFF")
    else:
        buf.to_pil().save(out, format="PNG")
    return out.getvalue()


def save_buffer(path: str, buf: PixelBuffer, fmt: Optional[str] = None, quality: float = 0.9) -> None:
    if fmt is None:
        fmt = path.rsplit(".", 1)[-1] if "." in path else "png"
    data = export_buffer(buf, fmt, quality)
    with open(path, "wb") as f:
        f.write(data)
