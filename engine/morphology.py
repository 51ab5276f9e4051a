from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from engine.buffer import PixelBuffer, clamp_u8, luminance
from engine.errors import check_kernel_size

logger = logging.getLogger(__name__)

BINARY_THRESHOLD = 128
WATERSHED_TOLERANCE = 10

_WHITE = np.array([255, 255, 255, 255], dtype=np.uint8)
_BLACK = np.array([0, 0, 0, 255], dtype=np.uint8)


@dataclass
class SegmentationResult:
    labels: np.ndarray
    count: int
    image: PixelBuffer


def binarize(buf: PixelBuffer) -> np.ndarray:
    return luminance(buf.pixels) > BINARY_THRESHOLD


def _window_reduce(binary: np.ndarray, k: int, all_fg: bool) -> np.ndarray:
    windows = sliding_window_view(binary, (k, k))
    if all_fg:
        return windows.all(axis=(-2, -1))
    return windows.any(axis=(-2, -1))


def _structuring_pass(buf: PixelBuffer, kernel_size: int, all_fg: bool) -> PixelBuffer:
    k = check_kernel_size(kernel_size)
    half = k // 2
    out = buf.pixels.copy()
    if buf.height < k or buf.width < k:
        return PixelBuffer.from_array(out)
    fg = _window_reduce(binarize(buf), k, all_fg)
    interior = out[half:buf.height - half, half:buf.width - half]
    interior[...] = np.where(fg[..., None], _WHITE, _BLACK)
    return PixelBuffer.from_array(out)


def erode(buf: PixelBuffer, kernel_size: int = 3) -> PixelBuffer:
    """Foreground survives only where the whole window is foreground.

    Pixels closer than kernel_size // 2 to the border keep their source value.
    """
    return _structuring_pass(buf, kernel_size, all_fg=True)


def dilate(buf: PixelBuffer, kernel_size: int = 3) -> PixelBuffer:
    return _structuring_pass(buf, kernel_size, all_fg=False)


def opening(buf: PixelBuffer, kernel_size: int = 3) -> PixelBuffer:
    return dilate(erode(buf, kernel_size), kernel_size)


def closing(buf: PixelBuffer, kernel_size: int = 3) -> PixelBuffer:
    return erode(dilate(buf, kernel_size), kernel_size)


def _difference(a: PixelBuffer, b: PixelBuffer) -> PixelBuffer:
    diff = a.pixels[..., :3].astype(np.int16) - b.pixels[..., :3].astype(np.int16)
    out = np.empty_like(a.pixels)
    out[..., :3] = np.clip(diff, 0, 255).astype(np.uint8)
    out[..., 3] = 255
    return PixelBuffer.from_array(out)


def morphological_gradient(buf: PixelBuffer, kernel_size: int = 3) -> PixelBuffer:
    return _difference(dilate(buf, kernel_size), erode(buf, kernel_size))


def top_hat(buf: PixelBuffer, kernel_size: int = 3) -> PixelBuffer:
    return _difference(buf, opening(buf, kernel_size))


def black_hat(buf: PixelBuffer, kernel_size: int = 3) -> PixelBuffer:
    return _difference(closing(buf, kernel_size), buf)


def _local_mean_clamped(gray: np.ndarray, block_size: int) -> np.ndarray:
    half = block_size // 2
    padded = np.pad(gray.astype(np.float64), half, mode="edge")
    # Summed-area table over the edge-padded plane.
    sat = np.zeros((padded.shape[0] + 1, padded.shape[1] + 1), dtype=np.float64)
    sat[1:, 1:] = padded.cumsum(axis=0).cumsum(axis=1)
    h, w = gray.shape
    b = 2 * half + 1
    total = sat[b:b + h, b:b + w] - sat[0:h, b:b + w] - sat[b:b + h, 0:w] + sat[0:h, 0:w]
    return total / float(b * b)


def adaptive_threshold(buf: PixelBuffer, block_size: int = 15, c: float = 2.0) -> PixelBuffer:
    block = check_kernel_size(block_size)
    gray = clamp_u8(luminance(buf.pixels))
    threshold = _local_mean_clamped(gray, block) - float(c)
    fg = gray.astype(np.float64) > threshold
    out = np.where(fg[..., None], _WHITE, _BLACK).astype(np.uint8)
    return PixelBuffer.from_array(out)


def _palette(count: int, seed: Optional[int]) -> np.ndarray:
    rng = np.random.default_rng(seed)
    colors = np.zeros((count + 1, 4), dtype=np.uint8)
    if count:
        colors[1:, :3] = rng.integers(0, 256, size=(count, 3), dtype=np.uint8)
        colors[1:, 3] = 255
    return colors


def _labels_to_image(labels: np.ndarray, count: int, seed: Optional[int]) -> PixelBuffer:
    return PixelBuffer.from_array(_palette(count, seed)[labels])


def connected_components(buf: PixelBuffer, seed: Optional[int] = None) -> SegmentationResult:
    """
    Label 4-connected foreground regions of the binarized image.

    Labels are assigned 1..n in raster-scan order of each region's first pixel,
    so the label map is deterministic; only the visualisation colours are random.
    """
    binary = binarize(buf)
    h, w = binary.shape
    labels = np.zeros((h, w), dtype=np.int32)
    current = 0

    for y0, x0 in zip(*np.nonzero(binary)):
        if labels[y0, x0] != 0:
            continue
        current += 1
        stack = [(int(x0), int(y0))]
        while stack:
            cx, cy = stack.pop()
            if cx < 0 or cx >= w or cy < 0 or cy >= h:
                continue
            if not binary[cy, cx] or labels[cy, cx] != 0:
                continue
            labels[cy, cx] = current
            stack.append((cx + 1, cy))
            stack.append((cx - 1, cy))
            stack.append((cx, cy + 1))
            stack.append((cx, cy - 1))

    logger.debug("connected components: %d regions", current)
    return SegmentationResult(labels=labels, count=current, image=_labels_to_image(labels, current, seed))


def _strict_minima(gray: np.ndarray) -> np.ndarray:
    h, w = gray.shape
    minima = np.zeros((h, w), dtype=bool)
    if h < 3 or w < 3:
        return minima
    centre = gray[1:-1, 1:-1]
    is_min = np.ones_like(centre, dtype=bool)
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            if dy == 0 and dx == 0:
                continue
            neighbour = gray[1 + dy:h - 1 + dy, 1 + dx:w - 1 + dx]
            is_min &= neighbour > centre
    minima[1:-1, 1:-1] = is_min
    return minima


def watershed(buf: PixelBuffer, seed: Optional[int] = None) -> SegmentationResult:
    """
    Simplified watershed: grow each strict local luminance minimum by BFS.

    A neighbour joins the region while its luminance stays within
    WATERSHED_TOLERANCE of the pixel that reached it. This is a heuristic
    approximation, not a priority-flood watershed.
    """
    gray = clamp_u8(luminance(buf.pixels)).astype(np.int32)
    h, w = gray.shape
    labels = np.zeros((h, w), dtype=np.int32)
    current = 0

    for y0, x0 in zip(*np.nonzero(_strict_minima(gray))):
        if labels[y0, x0] != 0:
            continue
        current += 1
        q: deque[tuple[int, int, int]] = deque()
        q.append((int(x0), int(y0), int(gray[y0, x0])))
        while q:
            cx, cy, threshold = q.popleft()
            if cx < 0 or cx >= w or cy < 0 or cy >= h:
                continue
            if labels[cy, cx] != 0:
                continue
            value = int(gray[cy, cx])
            if value > threshold + WATERSHED_TOLERANCE:
                continue
            labels[cy, cx] = current
            q.append((cx + 1, cy, value))
            q.append((cx - 1, cy, value))
            q.append((cx, cy + 1, value))
            q.append((cx, cy - 1, value))

    logger.debug("watershed: %d regions", current)
    return SegmentationResult(labels=labels, count=current, image=_labels_to_image(labels, current, seed))


def erode_mask(mask: np.ndarray) -> np.ndarray:
    """3x3 erosion of a boolean mask; the one-pixel border is left as is."""
    out = mask.copy()
    if mask.shape[0] >= 3 and mask.shape[1] >= 3:
        out[1:-1, 1:-1] = _window_reduce(mask, 3, all_fg=True)
    return out


def dilate_mask(mask: np.ndarray) -> np.ndarray:
    out = mask.copy()
    if mask.shape[0] >= 3 and mask.shape[1] >= 3:
        out[1:-1, 1:-1] = _window_reduce(mask, 3, all_fg=False)
    return out
