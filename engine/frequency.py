"""
Frequency-domain filtering on the luminance plane.

The transforms here are the direct DFT definitions applied row by row and then
column by column, which costs O(W^2 H + H^2 W). Large images are slow and the
work cannot be interrupted once started; pass ``fast=True`` to use numpy's FFT
instead (same results up to floating point error).

Filter masks are built around ``(W // 2, H // 2)`` and applied to the
*unshifted* spectrum.
"""

from __future__ import annotations

import logging

import numpy as np

from engine.buffer import PixelBuffer, clamp_u8, luminance

logger = logging.getLogger(__name__)

DEFAULT_CUTOFF = 30.0
DEFAULT_ORDER = 2
HOMOMORPHIC_GAMMA_H = 1.5
HOMOMORPHIC_GAMMA_L = 0.5
HOMOMORPHIC_C = 1.0


def image_to_matrix(buf: PixelBuffer) -> np.ndarray:
    return luminance(buf.pixels)


def matrix_to_image(matrix: np.ndarray) -> PixelBuffer:
    """Gray image from a real matrix; values are clamped and alpha is opaque."""
    m = np.asarray(matrix, dtype=np.float64)
    value = clamp_u8(np.nan_to_num(m, nan=0.0, posinf=255.0, neginf=0.0))
    out = np.empty(m.shape + (4,), dtype=np.uint8)
    out[..., 0] = value
    out[..., 1] = value
    out[..., 2] = value
    out[..., 3] = 255
    return PixelBuffer.from_array(out)


def _dft_matrix(n: int, sign: float) -> np.ndarray:
    k = np.arange(n)
    return np.exp(sign * 2j * np.pi * np.outer(k, k) / n)


def dft1d(signal) -> np.ndarray:
    x = np.asarray(signal, dtype=np.complex128)
    return _dft_matrix(x.size, -1.0) @ x


def idft1d(spectrum) -> np.ndarray:
    s = np.asarray(spectrum, dtype=np.complex128)
    return (_dft_matrix(s.size, 1.0) @ s) / s.size


def fft2d(matrix: np.ndarray, fast: bool = False) -> np.ndarray:
    m = np.asarray(matrix, dtype=np.complex128)
    if fast:
        return np.fft.fft2(m)
    h, w = m.shape
    # rows, then columns
    rows = m @ _dft_matrix(w, -1.0).T
    return _dft_matrix(h, -1.0) @ rows


def ifft2d(spectrum: np.ndarray, fast: bool = False) -> np.ndarray:
    """Inverse 2D transform; only the real part is returned."""
    s = np.asarray(spectrum, dtype=np.complex128)
    if fast:
        return np.fft.ifft2(s).real
    h, w = s.shape
    rows = (s @ _dft_matrix(w, 1.0).T) / w
    return ((_dft_matrix(h, 1.0) @ rows) / h).real


def magnitude(spectrum: np.ndarray) -> np.ndarray:
    return np.abs(spectrum)


def shift_spectrum(values: np.ndarray) -> np.ndarray:
    h, w = values.shape
    return np.roll(values, shift=(-(h // 2), -(w // 2)), axis=(0, 1))


def log_transform(mag: np.ndarray) -> np.ndarray:
    peak = float(np.max(mag)) if mag.size else 0.0
    if peak <= 0.0:
        return np.zeros_like(mag, dtype=np.float64)
    return np.log1p(mag) / np.log1p(peak) * 255.0


def _distance_grid(width: int, height: int) -> np.ndarray:
    cx, cy = width // 2, height // 2
    ys, xs = np.mgrid[0:height, 0:width].astype(np.float64)
    return np.sqrt((xs - cx) ** 2 + (ys - cy) ** 2)


def ideal_lowpass_mask(width: int, height: int, cutoff: float) -> np.ndarray:
    return (_distance_grid(width, height) <= float(cutoff)).astype(np.float64)


def ideal_highpass_mask(width: int, height: int, cutoff: float) -> np.ndarray:
    return 1.0 - ideal_lowpass_mask(width, height, cutoff)


def gaussian_lowpass_mask(width: int, height: int, cutoff: float) -> np.ndarray:
    sigma = float(cutoff) / 3.0
    d = _distance_grid(width, height)
    return np.exp(-(d * d) / (2.0 * sigma * sigma))


def gaussian_highpass_mask(width: int, height: int, cutoff: float) -> np.ndarray:
    return 1.0 - gaussian_lowpass_mask(width, height, cutoff)


def butterworth_lowpass_mask(width: int, height: int, cutoff: float, order: int = DEFAULT_ORDER) -> np.ndarray:
    d = _distance_grid(width, height)
    return 1.0 / (1.0 + np.power(d / float(cutoff), 2 * int(order)))


def butterworth_highpass_mask(width: int, height: int, cutoff: float, order: int = DEFAULT_ORDER) -> np.ndarray:
    return 1.0 - butterworth_lowpass_mask(width, height, cutoff, order)


def homomorphic_mask(
    width: int,
    height: int,
    gamma_h: float = HOMOMORPHIC_GAMMA_H,
    gamma_l: float = HOMOMORPHIC_GAMMA_L,
    c: float = HOMOMORPHIC_C,
    cutoff: float = DEFAULT_CUTOFF,
) -> np.ndarray:
    d2 = _distance_grid(width, height) ** 2
    return (gamma_h - gamma_l) * (1.0 - np.exp(-c * d2 / (cutoff * cutoff))) + gamma_l


def apply_frequency_filter(buf: PixelBuffer, mask: np.ndarray, fast: bool = False) -> PixelBuffer:
    mask = np.asarray(mask, dtype=np.float64)
    if mask.shape != (buf.height, buf.width):
        raise ValueError(f"mask shape {mask.shape} does not match image {buf.height}x{buf.width}")
    logger.info("frequency filter on %dx%d image (fast=%s)", buf.width, buf.height, fast)
    spectrum = fft2d(image_to_matrix(buf), fast=fast)
    return matrix_to_image(ifft2d(spectrum * mask, fast=fast))


def spectrum(buf: PixelBuffer, fast: bool = False) -> PixelBuffer:
    mag = magnitude(fft2d(image_to_matrix(buf), fast=fast))
    return matrix_to_image(log_transform(shift_spectrum(mag)))


def ideal_lowpass(buf: PixelBuffer, cutoff: float = DEFAULT_CUTOFF, fast: bool = False) -> PixelBuffer:
    return apply_frequency_filter(buf, ideal_lowpass_mask(buf.width, buf.height, cutoff), fast=fast)


def ideal_highpass(buf: PixelBuffer, cutoff: float = DEFAULT_CUTOFF, fast: bool = False) -> PixelBuffer:
    return apply_frequency_filter(buf, ideal_highpass_mask(buf.width, buf.height, cutoff), fast=fast)


def gaussian_lowpass(buf: PixelBuffer, cutoff: float = DEFAULT_CUTOFF, fast: bool = False) -> PixelBuffer:
    return apply_frequency_filter(buf, gaussian_lowpass_mask(buf.width, buf.height, cutoff), fast=fast)


def gaussian_highpass(buf: PixelBuffer, cutoff: float = DEFAULT_CUTOFF, fast: bool = False) -> PixelBuffer:
    return apply_frequency_filter(buf, gaussian_highpass_mask(buf.width, buf.height, cutoff), fast=fast)


def butterworth_lowpass(
    buf: PixelBuffer, cutoff: float = DEFAULT_CUTOFF, order: int = DEFAULT_ORDER, fast: bool = False
) -> PixelBuffer:
    return apply_frequency_filter(buf, butterworth_lowpass_mask(buf.width, buf.height, cutoff, order), fast=fast)


def butterworth_highpass(
    buf: PixelBuffer, cutoff: float = DEFAULT_CUTOFF, order: int = DEFAULT_ORDER, fast: bool = False
) -> PixelBuffer:
    return apply_frequency_filter(buf, butterworth_highpass_mask(buf.width, buf.height, cutoff, order), fast=fast)


def homomorphic(
    buf: PixelBuffer,
    gamma_h: float = HOMOMORPHIC_GAMMA_H,
    gamma_l: float = HOMOMORPHIC_GAMMA_L,
    c: float = HOMOMORPHIC_C,
    cutoff: float = DEFAULT_CUTOFF,
    fast: bool = False,
) -> PixelBuffer:
    logger.info("homomorphic filter on %dx%d image (fast=%s)", buf.width, buf.height, fast)
    log_plane = np.log1p(image_to_matrix(buf))
    mask = homomorphic_mask(buf.width, buf.height, gamma_h, gamma_l, c, cutoff)
    filtered = ifft2d(fft2d(log_plane, fast=fast) * mask, fast=fast)
    return matrix_to_image(np.expm1(filtered))
