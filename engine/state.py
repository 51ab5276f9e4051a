from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple, Union

from engine.buffer import PixelBuffer
from engine.config import EngineConfig

logger = logging.getLogger(__name__)

LAYER_KINDS = ("background", "text", "shape", "image", "frame", "empty")
RASTER_KINDS = ("background", "image", "empty")
BLEND_MODES = ("normal", "multiply", "screen", "overlay", "darken", "lighten", "difference")
SHAPE_TYPES = ("rectangle", "circle", "triangle", "line")

_BLEND_ALIASES = {"source-over": "normal"}


def normalize_blend_mode(mode: Optional[str]) -> str:
    m = (mode or "normal").strip().lower()
    m = _BLEND_ALIASES.get(m, m)
    if m not in BLEND_MODES:
        raise ValueError(f"unknown blend mode: {mode}")
    return m


@dataclass
class RasterContent:
    buffer: Optional[PixelBuffer] = None


@dataclass
class TextContent:
    text: str = "Lorem ipsum"
    font_family: str = "Arial"
    font_size: int = 24
    color: str = "#000000"
    orientation: str = "horizontal"
    alignment: str = "left"
    weight: str = "normal"
    style: str = "normal"
    underline: bool = False
    letter_spacing: float = 0.0
    line_height: float = 1.2


@dataclass
class ShapeContent:
    shape_type: str = "rectangle"
    color: str = "#000000"
    fill_color: Optional[str] = None
    stroke_width: int = 2

    def __post_init__(self) -> None:
        if self.shape_type not in SHAPE_TYPES:
            raise ValueError(f"unknown shape type: {self.shape_type}")


@dataclass
class FrameContent:
    color: str = "#000000"
    stroke_width: int = 5


LayerContent = Union[RasterContent, TextContent, ShapeContent, FrameContent]

_CONTENT_FOR_KIND = {
    "background": RasterContent,
    "image": RasterContent,
    "empty": RasterContent,
    "text": TextContent,
    "shape": ShapeContent,
    "frame": FrameContent,
}


@dataclass
class Layer:
    id: str
    name: str
    kind: str
    visible: bool = True
    locked: bool = False
    opacity: int = 100
    position: Tuple[int, int] = (0, 0)
    size: Tuple[int, int] = (0, 0)
    blend_mode: str = "normal"
    content: LayerContent = field(default_factory=RasterContent)

    def __post_init__(self) -> None:
        if self.kind not in LAYER_KINDS:
            raise ValueError(f"unknown layer kind: {self.kind}")
        expected = _CONTENT_FOR_KIND[self.kind]
        if not isinstance(self.content, expected):
            raise ValueError(f"{self.kind} layer needs {expected.__name__}, got {type(self.content).__name__}")
        self.opacity = max(0, min(100, int(round(self.opacity))))
        self.blend_mode = normalize_blend_mode(self.blend_mode)
        self.position = (int(self.position[0]), int(self.position[1]))
        self.size = (int(self.size[0]), int(self.size[1]))

    @property
    def is_raster(self) -> bool:
        return self.kind in RASTER_KINDS

    @property
    def buffer(self) -> Optional[PixelBuffer]:
        if isinstance(self.content, RasterContent):
            return self.content.buffer
        return None

    def copy(self) -> Layer:
        """Deep copy; raster pixels are cloned."""
        return copy.deepcopy(self)


def default_content(kind: str) -> LayerContent:
    if kind not in _CONTENT_FOR_KIND:
        raise ValueError(f"unknown layer kind: {kind}")
    return _CONTENT_FOR_KIND[kind]()


class LayerStack:
    """
    Ordered layers, bottom to top.

    Policy rejections (locked layer, last layer, bottom layer) are reported by a
    False/None return value and leave the stack untouched.
    """

    def __init__(self, width: int, height: int, config: Optional[EngineConfig] = None) -> None:
        self.width = int(width)
        self.height = int(height)
        self.config = config or EngineConfig()
        self.layers: List[Layer] = []
        self.active_id: Optional[str] = None

    def __len__(self) -> int:
        return len(self.layers)

    def __iter__(self):
        return iter(self.layers)

    @staticmethod
    def _new_id() -> str:
        return uuid.uuid4().hex

    # ---- lookup ----
    def find(self, layer_id: Optional[str]) -> Optional[Layer]:
        for layer in self.layers:
            if layer.id == layer_id:
                return layer
        return None

    def index_of(self, layer_id: Optional[str]) -> int:
        for i, layer in enumerate(self.layers):
            if layer.id == layer_id:
                return i
        return -1

    def active_layer(self) -> Optional[Layer]:
        layer = self.find(self.active_id)
        if layer is None and self.layers:
            layer = self.layers[-1]
            self.active_id = layer.id
        return layer

    def set_active(self, layer_id: str) -> bool:
        if self.find(layer_id) is None:
            return False
        self.active_id = layer_id
        return True

    def background(self) -> Optional[Layer]:
        for layer in self.layers:
            if layer.kind == "background":
                return layer
        return None

    # ---- creation ----
    def _push(self, layer: Layer) -> Layer:
        self.layers.append(layer)
        self.active_id = layer.id
        return layer

    def add_background(self, buffer: PixelBuffer, name: str = "Background") -> Optional[Layer]:
        if self.background() is not None:
            logger.debug("background layer already present")
            return None
        layer = Layer(
            id=self._new_id(),
            name=name,
            kind="background",
            locked=True,
            size=buffer.size,
            content=RasterContent(buffer.clone()),
        )
        self.layers.insert(0, layer)
        self.active_id = layer.id
        return layer

    def add_layer(
        self,
        kind: str = "empty",
        content: Optional[LayerContent] = None,
        name: Optional[str] = None,
        position: Tuple[int, int] = (0, 0),
        size: Optional[Tuple[int, int]] = None,
    ) -> Layer:
        if kind == "background":
            raise ValueError("use add_background for the background layer")
        layer = Layer(
            id=self._new_id(),
            name=name or f"Layer {len(self.layers) + 1}",
            kind=kind,
            position=position,
            size=size or (self.width, self.height),
            content=content if content is not None else default_content(kind),
        )
        return self._push(layer)

    def add_text_layer(
        self,
        text: Optional[str] = None,
        color: str = "#000000",
        font_size: int = 24,
        font_family: str = "Arial",
        position: Optional[Tuple[int, int]] = None,
    ) -> Layer:
        body = self.config.default_text if text is None else text
        content = TextContent(text=body, font_family=font_family, font_size=font_size, color=color)
        pos = position if position is not None else (self.width // 2 - 50, self.height // 2)
        return self.add_layer("text", content, name=f"Text: {body}", position=pos, size=(100, 30))

    def add_shape_layer(
        self,
        shape_type: str = "rectangle",
        color: str = "#000000",
        fill_color: Optional[str] = None,
        stroke_width: int = 2,
        position: Optional[Tuple[int, int]] = None,
        size: Tuple[int, int] = (100, 100),
    ) -> Layer:
        content = ShapeContent(shape_type=shape_type, color=color, fill_color=fill_color, stroke_width=stroke_width)
        pos = position if position is not None else (self.width // 2 - 50, self.height // 2 - 50)
        return self.add_layer("shape", content, name=f"Shape: {shape_type}", position=pos, size=size)

    def add_frame_layer(self, color: str = "#000000", stroke_width: int = 5) -> Layer:
        return self.add_layer(
            "frame",
            FrameContent(color=color, stroke_width=stroke_width),
            name="Frame Layer",
            position=(10, 10),
            size=(self.width - 20, self.height - 20),
        )

    def add_image_layer(self, buffer: PixelBuffer, name: str = "Image Layer") -> Layer:
        pos = (self.width // 2 - buffer.width // 2, self.height // 2 - buffer.height // 2)
        return self.add_layer("image", RasterContent(buffer.clone()), name=name, position=pos, size=buffer.size)

    # ---- structure ----
    def duplicate(self, layer_id: str) -> Optional[Layer]:
        src = self.find(layer_id)
        if src is None:
            return None
        offset = int(self.config.duplicate_offset)
        dup = src.copy()
        dup.id = self._new_id()
        dup.name = f"{src.name} Copy"
        dup.locked = False
        dup.position = (src.position[0] + offset, src.position[1] + offset)
        if dup.kind == "background":
            # only one background per stack
            dup.kind = "image"
        return self._push(dup)

    def merge_down(self, layer_id: str) -> bool:
        from engine.compositor import merge_layers

        idx = self.index_of(layer_id)
        if idx <= 0:
            return False
        upper = self.layers[idx]
        lower = self.layers[idx - 1]
        if upper.locked or lower.locked:
            logger.debug("merge_down rejected: locked layer involved")
            return False

        merged = merge_layers(lower, upper, self.width, self.height)
        kind = lower.kind if lower.is_raster else "image"
        self.layers[idx - 1] = replace(
            lower,
            kind=kind,
            position=(0, 0),
            size=(self.width, self.height),
            content=RasterContent(merged),
        )
        del self.layers[idx]
        self.active_id = lower.id
        return True

    def delete(self, layer_id: str) -> bool:
        idx = self.index_of(layer_id)
        if idx < 0:
            return False
        if self.layers[idx].locked or len(self.layers) <= 1:
            logger.debug("delete rejected for %s", layer_id)
            return False
        del self.layers[idx]
        if self.active_id == layer_id:
            self.active_id = self.layers[max(0, idx - 1)].id
        return True

    def move(self, layer_id: str, new_index: int) -> bool:
        idx = self.index_of(layer_id)
        if idx < 0:
            return False
        target = max(0, min(int(new_index), len(self.layers) - 1))
        if target == idx:
            return False
        layer = self.layers.pop(idx)
        self.layers.insert(target, layer)
        return True

    # ---- properties ----
    def _mutable(self, layer_id: str) -> Optional[Layer]:
        layer = self.find(layer_id)
        if layer is None:
            return None
        if layer.locked:
            logger.debug("layer %s is locked", layer.name)
            return None
        return layer

    def toggle_visibility(self, layer_id: str) -> bool:
        layer = self.find(layer_id)
        if layer is None:
            return False
        layer.visible = not layer.visible
        return True

    def toggle_lock(self, layer_id: str) -> bool:
        layer = self.find(layer_id)
        if layer is None:
            return False
        layer.locked = not layer.locked
        return True

    def set_opacity(self, layer_id: str, opacity: float) -> bool:
        layer = self._mutable(layer_id)
        if layer is None:
            return False
        layer.opacity = max(0, min(100, int(round(opacity))))
        return True

    def set_position(self, layer_id: str, x: int, y: int) -> bool:
        layer = self._mutable(layer_id)
        if layer is None:
            return False
        layer.position = (int(x), int(y))
        return True

    def set_blend_mode(self, layer_id: str, mode: str) -> bool:
        layer = self._mutable(layer_id)
        if layer is None:
            return False
        layer.blend_mode = normalize_blend_mode(mode)
        return True

    def set_content(self, layer_id: str, content: LayerContent) -> bool:
        layer = self._mutable(layer_id)
        if layer is None:
            return False
        expected = _CONTENT_FOR_KIND[layer.kind]
        if not isinstance(content, expected):
            raise ValueError(f"{layer.kind} layer needs {expected.__name__}")
        layer.content = content
        if isinstance(content, RasterContent) and content.buffer is not None:
            layer.size = content.buffer.size
        return True

    def replace_layer(self, layer: Layer) -> bool:
        """Swap in a stored copy of a layer by id, ignoring its lock."""
        idx = self.index_of(layer.id)
        if idx < 0:
            return False
        self.layers[idx] = layer.copy()
        return True

    def insert_layer(self, layer: Layer, index: Optional[int] = None) -> None:
        pos = len(self.layers) if index is None else max(0, min(int(index), len(self.layers)))
        self.layers.insert(pos, layer.copy())

    def remove_layer(self, layer_id: str) -> bool:
        """Drop a layer regardless of lock; used when rolling history back."""
        idx = self.index_of(layer_id)
        if idx < 0:
            return False
        del self.layers[idx]
        if self.active_id == layer_id:
            self.active_id = self.layers[-1].id if self.layers else None
        return True

    def snapshot(self) -> List[Layer]:
        return [layer.copy() for layer in self.layers]

    def restore(self, layers: List[Layer], width: int, height: int) -> None:
        self.width = int(width)
        self.height = int(height)
        self.layers = [layer.copy() for layer in layers]
        if self.find(self.active_id) is None:
            self.active_id = self.layers[-1].id if self.layers else None
