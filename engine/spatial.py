from __future__ import annotations

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from engine.buffer import PixelBuffer, clamp_u8, luminance
from engine.errors import check_kernel_size

SMOOTHING_KINDS = ("mean", "gaussian", "median")

_SOBEL_X = np.array([[-1, 0, 1], [-2, 0, 2], [-1, 0, 1]], dtype=np.float64)
_SOBEL_Y = np.array([[-1, -2, -1], [0, 0, 0], [1, 2, 1]], dtype=np.float64)


def gaussian_kernel_1d(radius: int) -> np.ndarray:
    r = int(radius)
    x = np.arange(-r, r + 1, dtype=np.float64)
    k = np.exp(-(x * x) / (2.0 * r * r))
    return k / k.sum()


def _convolve_axis(arr: np.ndarray, kernel: np.ndarray, axis: int) -> np.ndarray:
    # Edge-clamped 1D convolution along rows (axis=1) or columns (axis=0).
    r = kernel.size // 2
    pad = [(0, 0)] * arr.ndim
    pad[axis] = (r, r)
    padded = np.pad(arr, pad, mode="edge")
    out = np.zeros_like(arr, dtype=np.float64)
    n = arr.shape[axis]
    for i, weight in enumerate(kernel):
        out += weight * np.take(padded, np.arange(i, i + n), axis=axis)
    return out


def _conv3x3_interior(plane: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    # Valid-region 3x3 correlation; result is (H-2)x(W-2).
    h, w = plane.shape[:2]
    out = np.zeros((h - 2, w - 2) + plane.shape[2:], dtype=np.float64)
    for ky in range(3):
        for kx in range(3):
            weight = kernel[ky, kx]
            if weight == 0:
                continue
            out += weight * plane[ky:ky + h - 2, kx:kx + w - 2]
    return out


def gaussian_blur(buf: PixelBuffer, radius: int = 0) -> PixelBuffer:
    r = int(radius)
    if r <= 0:
        return buf.clone()
    kernel = gaussian_kernel_1d(r)
    src = buf.pixels.astype(np.float64)
    # Each pass stores back into bytes, like writing to a clamped canvas buffer.
    horiz = clamp_u8(_convolve_axis(src, kernel, axis=1)).astype(np.float64)
    vert = _convolve_axis(horiz, kernel, axis=0)
    return PixelBuffer.from_array(clamp_u8(vert))


def sharpen(buf: PixelBuffer, amount: float = 1.0) -> PixelBuffer:
    a = float(amount)
    if buf.width < 3 or buf.height < 3:
        return buf.clone()
    kernel = np.array([[0, -a, 0], [-a, 1 + 4 * a, -a], [0, -a, 0]], dtype=np.float64)
    out = buf.pixels.copy()
    rgb = buf.pixels[..., :3].astype(np.float64)
    out[1:-1, 1:-1, :3] = clamp_u8(_conv3x3_interior(rgb, kernel))
    return PixelBuffer.from_array(out)


def edge_detection(buf: PixelBuffer) -> PixelBuffer:
    out = buf.pixels.copy()
    if buf.width < 3 or buf.height < 3:
        return PixelBuffer.from_array(out)
    gray = luminance(buf.pixels)
    gx = _conv3x3_interior(gray, _SOBEL_X)
    gy = _conv3x3_interior(gray, _SOBEL_Y)
    mag = clamp_u8(np.sqrt(gx * gx + gy * gy))
    out[1:-1, 1:-1, 0] = mag
    out[1:-1, 1:-1, 1] = mag
    out[1:-1, 1:-1, 2] = mag
    return PixelBuffer.from_array(out)


def smoothing(buf: PixelBuffer, kind: str = "mean", kernel_size: int = 3) -> PixelBuffer:
    k = check_kernel_size(kernel_size)
    kind_norm = (kind or "mean").strip().lower()
    if kind_norm not in SMOOTHING_KINDS:
        raise ValueError(f"unknown smoothing kind: {kind}")

    half = k // 2
    if kind_norm == "gaussian":
        return gaussian_blur(buf, half)

    out = buf.pixels.copy()
    if buf.height < k or buf.width < k:
        return PixelBuffer.from_array(out)

    # windows: (H-k+1, W-k+1, 4, k, k); only fully-inside windows are rewritten
    windows = sliding_window_view(buf.pixels, (k, k), axis=(0, 1))
    if kind_norm == "mean":
        agg = clamp_u8(windows.astype(np.float64).mean(axis=(-2, -1)))
    else:
        flat = windows.reshape(windows.shape[:3] + (k * k,))
        agg = np.sort(flat, axis=-1)[..., (k * k) // 2]
    out[half:buf.height - half, half:buf.width - half] = agg
    return PixelBuffer.from_array(out)


def box_blur_rgb(buf: PixelBuffer, kernel_size: int) -> PixelBuffer:
    """Interior box blur of the colour channels; alpha and the border are kept."""
    k = max(1, int(kernel_size))
    half = k // 2
    out = buf.pixels.copy()
    if half == 0 or buf.height <= 2 * half or buf.width <= 2 * half:
        return PixelBuffer.from_array(out)
    size = 2 * half + 1
    windows = sliding_window_view(buf.pixels[..., :3], (size, size), axis=(0, 1))
    out[half:buf.height - half, half:buf.width - half, :3] = clamp_u8(
        windows.astype(np.float64).mean(axis=(-2, -1))
    )
    return PixelBuffer.from_array(out)
