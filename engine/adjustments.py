from __future__ import annotations

import numpy as np

from engine.buffer import PixelBuffer, clamp_u8, luminance

_SEPIA = np.array(
    [
        [0.393, 0.769, 0.189],
        [0.349, 0.686, 0.168],
        [0.272, 0.534, 0.131],
    ],
    dtype=np.float64,
)


def _with_rgb(buf: PixelBuffer, rgb: np.ndarray) -> PixelBuffer:
    out = buf.pixels.copy()
    out[..., :3] = clamp_u8(rgb)
    return PixelBuffer.from_array(out)


def _rgb(buf: PixelBuffer) -> np.ndarray:
    return buf.pixels[..., :3].astype(np.float64)


def grayscale(buf: PixelBuffer) -> PixelBuffer:
    gray = luminance(buf.pixels)
    return _with_rgb(buf, np.repeat(gray[..., None], 3, axis=2))


def sepia(buf: PixelBuffer) -> PixelBuffer:
    return _with_rgb(buf, _rgb(buf) @ _SEPIA.T)


def invert(buf: PixelBuffer) -> PixelBuffer:
    out = buf.pixels.copy()
    out[..., :3] = 255 - out[..., :3]
    return PixelBuffer.from_array(out)


def brightness(buf: PixelBuffer, value: float = 0.0) -> PixelBuffer:
    """value is a percentage; +100 adds a full 255 to every channel."""
    return _with_rgb(buf, _rgb(buf) + float(value) * 255.0 / 100.0)


def contrast(buf: PixelBuffer, value: float = 0.0) -> PixelBuffer:
    v = float(max(-255.0, min(258.0, value)))
    factor = (259.0 * (v + 255.0)) / (255.0 * (259.0 - v))
    return _with_rgb(buf, factor * (_rgb(buf) - 128.0) + 128.0)


def saturation(buf: PixelBuffer, value: float = 100.0) -> PixelBuffer:
    """value is a percentage: 0 is grayscale, 100 leaves the image unchanged."""
    s = float(value) / 100.0
    rgb = _rgb(buf)
    gray = luminance(buf.pixels)[..., None]
    return _with_rgb(buf, gray + s * (rgb - gray))


def highlights(buf: PixelBuffer, amount: float = 0.0) -> PixelBuffer:
    mask = (luminance(buf.pixels) / 255.0) ** 2
    return _with_rgb(buf, _rgb(buf) + float(amount) * mask[..., None])


def shadows(buf: PixelBuffer, amount: float = 0.0) -> PixelBuffer:
    mask = (1.0 - luminance(buf.pixels) / 255.0) ** 2
    return _with_rgb(buf, _rgb(buf) + float(amount) * mask[..., None])


def vignette(buf: PixelBuffer, intensity: float = 0.0, size: float = 50.0, feather: float = 50.0) -> PixelBuffer:
    """
    Radial falloff around the image centre.

    size and feather are percentages of the centre-to-corner distance.
    Negative intensity darkens the edges, positive intensity lightens them.
    """
    h, w = buf.height, buf.width
    cx, cy = w / 2.0, h / 2.0
    max_dist = float(np.sqrt(cx * cx + cy * cy))
    radius = (float(size) / 100.0) * max_dist
    feather_r = (float(feather) / 100.0) * max_dist
    strength = abs(float(intensity)) / 100.0

    ys, xs = np.mgrid[0:h, 0:w].astype(np.float64)
    dist = np.sqrt((xs - cx) ** 2 + (ys - cy) ** 2)

    start = radius - feather_r
    factor = np.ones((h, w), dtype=np.float64)
    if feather_r > 0:
        in_band = dist > start
        progress = (dist - start) / feather_r
        factor = np.where(in_band, 1.0 - progress * strength, factor)
    else:
        factor = np.where(dist > radius, 1.0 - strength, factor)

    rgb = _rgb(buf)
    if intensity < 0:
        out = rgb * factor[..., None]
    else:
        light = 1.0 + (1.0 - factor) * float(intensity) / 100.0
        out = rgb * light[..., None]
    return _with_rgb(buf, out)


def gamma_correction(buf: PixelBuffer, gamma: float = 1.0) -> PixelBuffer:
    g = float(max(0.01, gamma))
    return _with_rgb(buf, 255.0 * np.power(_rgb(buf) / 255.0, 1.0 / g))


def global_threshold(buf: PixelBuffer, threshold: float = 128) -> PixelBuffer:
    binary = np.where(luminance(buf.pixels) > float(threshold), 255.0, 0.0)
    return _with_rgb(buf, np.repeat(binary[..., None], 3, axis=2))


def tone_curve(buf: PixelBuffer, highlights_shift: float = 0.0, shadows_shift: float = 0.0) -> PixelBuffer:
    shadows_pt = 64.0 + float(shadows_shift)
    mid_pt = 128.0
    highlights_pt = 192.0 + float(highlights_shift)

    v = np.arange(256, dtype=np.float64)
    lut = np.where(
        v <= 64,
        (v / 64.0) * shadows_pt,
        np.where(
            v <= 192,
            shadows_pt + (mid_pt - shadows_pt) * ((v - 64.0) / 128.0),
            mid_pt + (highlights_pt - mid_pt) * ((v - 192.0) / 63.0),
        ),
    )
    lut_u8 = clamp_u8(np.floor(lut + 0.5))
    out = buf.pixels.copy()
    out[..., :3] = lut_u8[out[..., :3]]
    return PixelBuffer.from_array(out)


def apply_adjustments_rgba(
    buf: PixelBuffer,
    brightness_pct: float = 0.0,
    contrast_value: float = 0.0,
    saturation_pct: float = 100.0,
    highlights_amount: float = 0.0,
    shadows_amount: float = 0.0,
    vignette_intensity: float = 0.0,
    vignette_size: float = 50.0,
    vignette_feather: float = 50.0,
) -> PixelBuffer:
    out = buf
    if brightness_pct:
        out = brightness(out, brightness_pct)
    if contrast_value:
        out = contrast(out, contrast_value)
    if saturation_pct != 100.0:
        out = saturation(out, saturation_pct)
    if highlights_amount:
        out = highlights(out, highlights_amount)
    if shadows_amount:
        out = shadows(out, shadows_amount)
    if vignette_intensity:
        out = vignette(out, vignette_intensity, vignette_size, vignette_feather)
    if out is buf:
        out = buf.clone()
    return out
