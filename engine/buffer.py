from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from PIL import Image

LUMA_R = 0.299
LUMA_G = 0.587
LUMA_B = 0.114


def pil_to_np_rgba(img: Image.Image) -> np.ndarray:
    arr = np.array(img.convert("RGBA"), dtype=np.uint8)
    if arr.ndim != 3 or arr.shape[2] != 4:
        raise ValueError("Expected RGBA image")
    return arr


def np_rgba_to_pil(arr: np.ndarray) -> Image.Image:
    return Image.fromarray(np.ascontiguousarray(arr, dtype=np.uint8))


def luminance(rgba: np.ndarray) -> np.ndarray:
    rgb = rgba[..., :3].astype(np.float64)
    return rgb[..., 0] * LUMA_R + rgb[..., 1] * LUMA_G + rgb[..., 2] * LUMA_B


def clamp_u8(values: np.ndarray) -> np.ndarray:
    # Matches Uint8ClampedArray stores: round half to even then saturate.
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)


@dataclass(eq=False)
class PixelBuffer:
    """
    Width/height-tagged RGBA image.

    ``pixels`` is an HxWx4 uint8 array in row-major RGBA order, i.e. the same
    memory layout as a flat ``width * height * 4`` byte array.
    """

    width: int
    height: int
    pixels: np.ndarray

    def __post_init__(self) -> None:
        if int(self.width) <= 0 or int(self.height) <= 0:
            raise ValueError(f"PixelBuffer dimensions must be positive, got {self.width}x{self.height}")
        self.width = int(self.width)
        self.height = int(self.height)
        arr = np.asarray(self.pixels)
        if arr.dtype != np.uint8:
            raise ValueError("pixels must be uint8")
        if arr.ndim == 1:
            if arr.size != self.width * self.height * 4:
                raise ValueError("pixels length must equal width*height*4")
            arr = arr.reshape(self.height, self.width, 4)
        if arr.shape != (self.height, self.width, 4):
            raise ValueError(f"pixels shape {arr.shape} does not match {self.height}x{self.width}x4")
        self.pixels = arr

    @classmethod
    def from_array(cls, arr: np.ndarray) -> PixelBuffer:
        if arr.ndim != 3 or arr.shape[2] != 4:
            raise ValueError("Expected HxWx4 array")
        return cls(width=arr.shape[1], height=arr.shape[0], pixels=np.ascontiguousarray(arr, dtype=np.uint8))

    @classmethod
    def from_bytes(cls, width: int, height: int, data: bytes) -> PixelBuffer:
        return cls(width=width, height=height, pixels=np.frombuffer(data, dtype=np.uint8).copy())

    @classmethod
    def from_pil(cls, img: Image.Image) -> PixelBuffer:
        return cls.from_array(pil_to_np_rgba(img))

    @classmethod
    def blank(cls, width: int, height: int, rgba: tuple[int, int, int, int] = (0, 0, 0, 0)) -> PixelBuffer:
        arr = np.empty((int(height), int(width), 4), dtype=np.uint8)
        arr[...] = np.array(rgba, dtype=np.uint8)
        return cls(width=width, height=height, pixels=arr)

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)

    def clone(self) -> PixelBuffer:
        return PixelBuffer(width=self.width, height=self.height, pixels=self.pixels.copy())

    def to_bytes(self) -> bytes:
        return self.pixels.tobytes()

    def to_pil(self) -> Image.Image:
        return np_rgba_to_pil(self.pixels)

    def same_pixels(self, other: PixelBuffer) -> bool:
        return self.size == other.size and bool(np.array_equal(self.pixels, other.pixels))

    def has_transparency(self) -> bool:
        return bool(np.any(self.pixels[..., 3] < 255))
