from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Type

from engine.buffer import PixelBuffer


class EditorError(Exception):
    """Base class for editor failures that callers may want to surface."""


class InvalidGeometry(EditorError):
    pass


class UnsupportedKernelSize(EditorError, ValueError):
    pass


class AIHeuristicInconclusive(EditorError):
    pass


class VendorUnavailable(EditorError):
    pass


class LayerLocked(EditorError):
    pass


class Busy(EditorError):
    pass


def check_kernel_size(kernel_size: int) -> int:
    k = int(kernel_size)
    if k < 3 or k % 2 == 0:
        raise UnsupportedKernelSize(f"kernel size must be odd and >= 3, got {kernel_size}")
    return k


@dataclass
class OpResult:
    ok: bool
    buffer: Optional[PixelBuffer] = None
    error: Optional[Type[EditorError]] = None
    message: str = ""

    @classmethod
    def success(cls, buffer: Optional[PixelBuffer] = None, message: str = "") -> OpResult:
        return cls(ok=True, buffer=buffer, message=message)

    @classmethod
    def fail(cls, error: Type[EditorError], message: str = "") -> OpResult:
        return cls(ok=False, error=error, message=message)

    @property
    def inconclusive(self) -> bool:
        return self.error is AIHeuristicInconclusive
