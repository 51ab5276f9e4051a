"""
Client-side stand-ins for the AI tools.

These are cheap pixel heuristics, not models. Each returns an ``AIResult``;
when the heuristic finds nothing to do the status is ``inconclusive`` and
``process_with_fallback`` hands the image to an external vendor if one is
configured.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

import numpy as np
from PIL import Image

from engine.buffer import PixelBuffer, clamp_u8, luminance
from engine.errors import AIHeuristicInconclusive, OpResult, VendorUnavailable
from engine.morphology import dilate_mask, erode_mask
from engine.spatial import box_blur_rgb, sharpen

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_INCONCLUSIVE = "inconclusive"

OBJECT_VARIANCE_THRESHOLD = 100.0


@dataclass
class AIResult:
    status: str
    buffer: PixelBuffer
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK


class AIVendor(Protocol):
    def process_image(self, buffer: PixelBuffer, kind: str) -> PixelBuffer:
        """Run ``kind`` remotely; raise VendorUnavailable when that is not possible."""
        ...


def _round_half_up(values: np.ndarray) -> np.ndarray:
    return np.floor(values + 0.5)


def _gray_u8(buf: PixelBuffer) -> np.ndarray:
    return np.clip(_round_half_up(luminance(buf.pixels)), 0, 255).astype(np.int32)


def _window_sums(plane: np.ndarray, radius: int) -> np.ndarray:
    """Sum of each (2r+1)^2 window, counting only in-bounds samples."""
    r = int(radius)
    h, w = plane.shape[:2]
    padded = np.pad(plane.astype(np.float64), [(r, r), (r, r)] + [(0, 0)] * (plane.ndim - 2))
    sat = np.zeros((padded.shape[0] + 1, padded.shape[1] + 1) + plane.shape[2:], dtype=np.float64)
    sat[1:, 1:] = padded.cumsum(axis=0).cumsum(axis=1)
    b = 2 * r + 1
    return sat[b:b + h, b:b + w] - sat[0:h, b:b + w] - sat[b:b + h, 0:w] + sat[0:h, 0:w]


def background_level(gray: np.ndarray) -> int:
    """Most common luminance on the image border; ties go to the first seen."""
    edges = np.concatenate(
        [
            np.stack([gray[0], gray[-1]], axis=1).ravel(),
            np.stack([gray[:, 0], gray[:, -1]], axis=1).ravel(),
        ]
    )
    return int(Counter(edges.tolist()).most_common(1)[0][0])


def _has_background_neighbour(mask: np.ndarray) -> np.ndarray:
    h, w = mask.shape
    bg = np.pad(~mask, 1, constant_values=False)
    out = np.zeros((h, w), dtype=bool)
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            if dy == 0 and dx == 0:
                continue
            out |= bg[1 + dy:1 + dy + h, 1 + dx:1 + dx + w]
    return out


def remove_background(
    buf: PixelBuffer, threshold: float = 0.5, smoothing: int = 3, feathering: int = 5
) -> AIResult:
    """
    Make pixels close to the dominant border luminance transparent.

    ``smoothing`` sets both the number of mask clean-up rounds and the
    radius used to soften alpha along the cut. ``feathering`` is accepted for
    parity with the vendor parameters and does not change the result.
    """
    gray = _gray_u8(buf)
    bg = background_level(gray)
    tolerance = float(threshold) * 128.0
    fg = np.abs(gray - bg) >= tolerance

    for _ in range(max(0, int(smoothing))):
        fg = dilate_mask(erode_mask(fg))

    out = buf.pixels.copy()
    out[..., 3] = np.where(fg, out[..., 3], 0)

    r = max(0, int(smoothing))
    h, w = fg.shape
    if r > 0 and h > 2 and w > 2:
        edge = fg & _has_background_neighbour(fg)
        edge[0, :] = edge[-1, :] = False
        edge[:, 0] = edge[:, -1] = False
        if edge.any():
            alpha = out[..., 3]
            sums = _window_sums(alpha, r)
            counts = _window_sums(np.ones_like(alpha), r)
            out[..., 3] = np.where(edge, clamp_u8(sums / counts), alpha)

    result = PixelBuffer.from_array(out)
    if np.array_equal(result.pixels[..., 3], buf.pixels[..., 3]):
        return AIResult(STATUS_INCONCLUSIVE, buf.clone(), "no background detected")
    return AIResult(STATUS_OK, result)


def object_mask(buf: PixelBuffer) -> np.ndarray:
    """High local variance (5x5, luminance) marks object pixels; the border is never marked."""
    gray = _gray_u8(buf).astype(np.float64)
    h, w = gray.shape
    mask = np.zeros((h, w), dtype=bool)
    if h < 3 or w < 3:
        return mask
    sums = _window_sums(gray, 2)
    sq = _window_sums(gray * gray, 2)
    counts = _window_sums(np.ones_like(gray), 2)
    mean = sums / counts
    variance = sq / counts - mean * mean
    mask[1:-1, 1:-1] = variance[1:-1, 1:-1] > OBJECT_VARIANCE_THRESHOLD
    return mask


def remove_objects(buf: PixelBuffer, inpainting_radius: int = 15) -> AIResult:
    mask = object_mask(buf)
    if not mask.any():
        return AIResult(STATUS_INCONCLUSIVE, buf.clone(), "no objects detected")

    r = max(0, int(inpainting_radius))
    keep = (~mask).astype(np.float64)
    rgb = buf.pixels[..., :3].astype(np.float64) * keep[..., None]
    sums = _window_sums(rgb, r)
    counts = _window_sums(keep, r)[..., None]
    fill = np.where(counts > 0, np.floor(sums / np.maximum(counts, 1.0)), 128.0)

    out = buf.pixels.copy()
    out[mask, :3] = fill[mask].astype(np.uint8)
    return AIResult(STATUS_OK, PixelBuffer.from_array(out))


def enhance_resolution(
    buf: PixelBuffer, scale_factor: float = 2.0, sharpening: float = 1.2, noise_reduction: float = 0.3
) -> AIResult:
    new_w = int(np.floor(buf.width * float(scale_factor)))
    new_h = int(np.floor(buf.height * float(scale_factor)))
    if new_w <= 0 or new_h <= 0:
        return AIResult(STATUS_INCONCLUSIVE, buf.clone(), f"scale factor {scale_factor} gives an empty image")

    scaled = buf.to_pil().resize((new_w, new_h), resample=Image.Resampling.LANCZOS)
    out = PixelBuffer.from_pil(scaled)
    if noise_reduction > 0:
        out = box_blur_rgb(out, int(np.floor(float(noise_reduction) * 3)) + 1)
    if sharpening > 0:
        out = sharpen(out, float(sharpening))
    return AIResult(STATUS_OK, out)


def auto_color_correct(buf: PixelBuffer) -> AIResult:
    rgb = buf.pixels[..., :3].astype(np.float64)
    avg = rgb.reshape(-1, 3).mean(axis=0)
    avg_brightness = float(rgb.mean())

    contrast_factor = 1.2 if avg_brightness < 100 else 0.9 if avg_brightness > 180 else 1.1

    x = np.clip(rgb + (128.0 - avg_brightness), 0, 255)
    x = np.clip((x - 128.0) * contrast_factor + 128.0, 0, 255)
    x = np.clip((x - avg) * 1.1 + 128.0, 0, 255)
    gray = (x[..., 0] * 0.299 + x[..., 1] * 0.587 + x[..., 2] * 0.114)[..., None]
    x = np.clip(gray + 1.1 * (x - gray), 0, 255)

    out = buf.pixels.copy()
    out[..., :3] = clamp_u8(x)
    return AIResult(STATUS_OK, PixelBuffer.from_array(out))


HEURISTICS: Dict[str, Callable[..., AIResult]] = {
    "remove_background": remove_background,
    "remove_objects": remove_objects,
    "enhance_resolution": enhance_resolution,
    "auto_color_correct": auto_color_correct,
}


def process_with_fallback(
    buf: PixelBuffer, kind: str, vendor: Optional[AIVendor] = None, **params
) -> OpResult:
    if kind not in HEURISTICS:
        raise ValueError(f"unknown AI operation: {kind}")

    result = HEURISTICS[kind](buf, **params)
    if result.ok:
        return OpResult.success(result.buffer, result.message)

    if vendor is None:
        logger.debug("%s inconclusive and no vendor configured: %s", kind, result.message)
        return OpResult.fail(AIHeuristicInconclusive, result.message)

    logger.info("%s inconclusive (%s); asking vendor", kind, result.message)
    try:
        return OpResult.success(vendor.process_image(buf, kind), "processed by vendor")
    except VendorUnavailable as e:
        logger.warning("vendor failed for %s: %s", kind, e)
        return OpResult.fail(VendorUnavailable, str(e))
