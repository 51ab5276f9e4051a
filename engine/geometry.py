from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from engine.buffer import PixelBuffer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rect:
    x: int
    y: int
    width: int
    height: int


def normalize_crop_rect(
    buf: PixelBuffer, x: float, y: float, width: float, height: float
) -> Optional[Rect]:
    """
    Validated crop rectangle in buffer coordinates, or None when the crop must
    be rejected.

    A negative width or height is treated as a drag in the opposite direction.
    Both edges are clamped to the buffer, so only the overlapping part is kept.
    """
    x, y, width, height = float(x), float(y), float(width), float(height)
    if width < 0:
        x, width = x + width, -width
    if height < 0:
        y, height = y + height, -height
    if width <= 0 or height <= 0:
        return None

    x0 = max(0, math.floor(x))
    y0 = max(0, math.floor(y))
    if x0 >= buf.width or y0 >= buf.height:
        return None

    x1 = min(buf.width, math.floor(x + width))
    y1 = min(buf.height, math.floor(y + height))
    if x1 <= x0 or y1 <= y0:
        return None
    return Rect(x0, y0, x1 - x0, y1 - y0)


def crop(buf: PixelBuffer, x: float, y: float, width: float, height: float) -> PixelBuffer:
    rect = normalize_crop_rect(buf, x, y, width, height)
    if rect is None:
        logger.debug("crop rejected: (%s, %s, %s, %s) on %dx%d", x, y, width, height, buf.width, buf.height)
        return buf
    region = buf.pixels[rect.y:rect.y + rect.height, rect.x:rect.x + rect.width]
    return PixelBuffer.from_array(region.copy())


def resize(buf: PixelBuffer, new_width: int, new_height: int) -> PixelBuffer:
    nw, nh = int(new_width), int(new_height)
    if nw <= 0 or nh <= 0:
        logger.debug("resize rejected: %dx%d", nw, nh)
        return buf
    sx = np.floor(np.arange(nw) * (buf.width / nw)).astype(np.intp)
    sy = np.floor(np.arange(nh) * (buf.height / nh)).astype(np.intp)
    np.clip(sx, 0, buf.width - 1, out=sx)
    np.clip(sy, 0, buf.height - 1, out=sy)
    return PixelBuffer.from_array(buf.pixels[sy[:, None], sx[None, :]])


def _exact_trig(angle: float) -> tuple[float, float]:
    a = float(angle) % 360.0
    quarter_turns = {0.0: (1.0, 0.0), 90.0: (0.0, 1.0), 180.0: (-1.0, 0.0), 270.0: (0.0, -1.0)}
    if a in quarter_turns:
        return quarter_turns[a]
    rad = math.radians(a)
    return math.cos(rad), math.sin(rad)


def rotate(buf: PixelBuffer, angle: float) -> PixelBuffer:
    """
    Rotate clockwise by ``angle`` degrees into the enclosing bounding box.

    Each destination pixel centre is mapped back into the source; samples that
    land outside the source stay transparent.
    """
    cos, sin = _exact_trig(angle)
    w, h = buf.width, buf.height
    new_w_f = abs(w * cos) + abs(h * sin)
    new_h_f = abs(w * sin) + abs(h * cos)
    new_w = max(1, int(math.floor(round(new_w_f, 9))))
    new_h = max(1, int(math.floor(round(new_h_f, 9))))

    cx, cy = w / 2.0, h / 2.0
    ncx, ncy = new_w / 2.0, new_h / 2.0

    ys, xs = np.mgrid[0:new_h, 0:new_w].astype(np.float64)
    dx = xs + 0.5 - ncx
    dy = ys + 0.5 - ncy
    src_x = np.floor(dx * cos + dy * sin + cx).astype(np.intp)
    src_y = np.floor(-dx * sin + dy * cos + cy).astype(np.intp)

    inside = (src_x >= 0) & (src_x < w) & (src_y >= 0) & (src_y < h)
    out = np.zeros((new_h, new_w, 4), dtype=np.uint8)
    out[inside] = buf.pixels[src_y[inside], src_x[inside]]
    return PixelBuffer.from_array(out)


def rotate_90_cw(buf: PixelBuffer) -> PixelBuffer:
    return rotate(buf, 90)


def rotate_90_ccw(buf: PixelBuffer) -> PixelBuffer:
    return rotate(buf, -90)


def rotate_180(buf: PixelBuffer) -> PixelBuffer:
    return rotate(buf, 180)


def flip_horizontal(buf: PixelBuffer) -> PixelBuffer:
    return PixelBuffer.from_array(buf.pixels[:, ::-1].copy())


def flip_vertical(buf: PixelBuffer) -> PixelBuffer:
    return PixelBuffer.from_array(buf.pixels[::-1].copy())
