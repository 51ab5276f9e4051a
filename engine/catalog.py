from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from engine import adjustments, frequency, morphology, spatial
from engine.buffer import PixelBuffer


@dataclass(frozen=True)
class FilterSpec:
    name: str
    category: str
    fn: Callable[..., PixelBuffer]
    # Frequency-domain filters are slow; hosts should yield before running them.
    heavy: bool = False


def _smoothing(kind: str) -> Callable[..., PixelBuffer]:
    def run(buf: PixelBuffer, kernel_size: int = 3) -> PixelBuffer:
        return spatial.smoothing(buf, kind, kernel_size)

    return run


def _segmentation(fn: Callable[..., morphology.SegmentationResult]) -> Callable[..., PixelBuffer]:
    def run(buf: PixelBuffer, seed: Optional[int] = None) -> PixelBuffer:
        return fn(buf, seed=seed).image

    return run


_SPECS = [
    FilterSpec("Grayscale", "basic", adjustments.grayscale),
    FilterSpec("Sepia", "basic", adjustments.sepia),
    FilterSpec("Invert", "basic", adjustments.invert),
    FilterSpec("Brightness", "adjust", adjustments.brightness),
    FilterSpec("Contrast", "adjust", adjustments.contrast),
    FilterSpec("Saturation", "adjust", adjustments.saturation),
    FilterSpec("Highlights", "adjust", adjustments.highlights),
    FilterSpec("Shadows", "adjust", adjustments.shadows),
    FilterSpec("Vignette", "adjust", adjustments.vignette),
    FilterSpec("Tone Curve", "adjust", adjustments.tone_curve),
    FilterSpec("Gamma Correction", "basic", adjustments.gamma_correction),
    FilterSpec("Global Threshold", "basic", adjustments.global_threshold),
    FilterSpec("Gaussian Blur", "spatial", spatial.gaussian_blur),
    FilterSpec("Sharpen", "spatial", spatial.sharpen),
    FilterSpec("Edge Detection", "spatial", spatial.edge_detection),
    FilterSpec("Mean Smoothing", "spatial", _smoothing("mean")),
    FilterSpec("Gaussian Smoothing", "spatial", _smoothing("gaussian")),
    FilterSpec("Median Smoothing", "spatial", _smoothing("median")),
    FilterSpec("Erosion", "morphology", morphology.erode),
    FilterSpec("Dilation", "morphology", morphology.dilate),
    FilterSpec("Opening", "morphology", morphology.opening),
    FilterSpec("Closing", "morphology", morphology.closing),
    FilterSpec("Morphological Gradient", "morphology", morphology.morphological_gradient),
    FilterSpec("Top Hat", "morphology", morphology.top_hat),
    FilterSpec("Black Hat", "morphology", morphology.black_hat),
    FilterSpec("Adaptive Threshold", "segmentation", morphology.adaptive_threshold),
    FilterSpec("Connected Components", "segmentation", _segmentation(morphology.connected_components)),
    FilterSpec("Watershed", "segmentation", _segmentation(morphology.watershed)),
    FilterSpec("Frequency Spectrum", "frequency", frequency.spectrum, heavy=True),
    FilterSpec("Ideal Low-Pass", "frequency", frequency.ideal_lowpass, heavy=True),
    FilterSpec("Ideal High-Pass", "frequency", frequency.ideal_highpass, heavy=True),
    FilterSpec("Gaussian Low-Pass", "frequency", frequency.gaussian_lowpass, heavy=True),
    FilterSpec("Gaussian High-Pass", "frequency", frequency.gaussian_highpass, heavy=True),
    FilterSpec("Butterworth Low-Pass", "frequency", frequency.butterworth_lowpass, heavy=True),
    FilterSpec("Butterworth High-Pass", "frequency", frequency.butterworth_highpass, heavy=True),
    FilterSpec("Homomorphic Filter", "frequency", frequency.homomorphic, heavy=True),
]

FILTERS: Dict[str, FilterSpec] = {spec.name: spec for spec in _SPECS}


def get_filter(name: str) -> FilterSpec:
    try:
        return FILTERS[name]
    except KeyError:
        raise KeyError(f"unknown filter: {name}") from None


def filter_names(category: Optional[str] = None) -> List[str]:
    return [spec.name for spec in _SPECS if category is None or spec.category == category]


def categories() -> List[str]:
    seen: List[str] = []
    for spec in _SPECS:
        if spec.category not in seen:
            seen.append(spec.category)
    return seen


def apply_filter(name: str, buffer: PixelBuffer, **params) -> PixelBuffer:
    return get_filter(name).fn(buffer, **params)
