from __future__ import annotations

import base64
import io
import json
import uuid
from pathlib import Path
from typing import Optional

from PIL import Image

from engine.buffer import PixelBuffer
from engine.config import EngineConfig
from engine.state import (
    FrameContent,
    Layer,
    LayerContent,
    LayerStack,
    RasterContent,
    ShapeContent,
    TextContent,
)


PROJECT_VERSION = 1


def encode_png_b64(buf: PixelBuffer) -> str:
    out = io.BytesIO()
    buf.to_pil().save(out, format="PNG")
    return base64.b64encode(out.getvalue()).decode("ascii")


def decode_png_b64(data: str) -> PixelBuffer:
    with Image.open(io.BytesIO(base64.b64decode(data))) as img:
        return PixelBuffer.from_pil(img)


def _content_to_raw(content: LayerContent) -> dict:
    if isinstance(content, RasterContent):
        return {"png_data": None if content.buffer is None else encode_png_b64(content.buffer)}
    if isinstance(content, TextContent):
        return {
            "text": content.text,
            "font_family": content.font_family,
            "font_size": content.font_size,
            "color": content.color,
            "orientation": content.orientation,
            "alignment": content.alignment,
            "weight": content.weight,
            "style": content.style,
            "underline": bool(content.underline),
            "letter_spacing": content.letter_spacing,
            "line_height": content.line_height,
        }
    if isinstance(content, ShapeContent):
        return {
            "shape_type": content.shape_type,
            "color": content.color,
            "fill_color": content.fill_color,
            "stroke_width": content.stroke_width,
        }
    return {"color": content.color, "stroke_width": content.stroke_width}


def _content_from_raw(kind: str, raw: dict) -> LayerContent:
    if kind in ("background", "image", "empty"):
        data = raw.get("png_data")
        return RasterContent(decode_png_b64(data) if data else None)
    if kind == "text":
        return TextContent(
            text=str(raw.get("text", "")),
            font_family=str(raw.get("font_family", "Arial")),
            font_size=int(raw.get("font_size", 24)),
            color=str(raw.get("color", "#000000")),
            orientation=str(raw.get("orientation", "horizontal")).lower(),
            alignment=str(raw.get("alignment", "left")).lower(),
            weight=str(raw.get("weight", "normal")).lower(),
            style=str(raw.get("style", "normal")).lower(),
            underline=bool(raw.get("underline", False)),
            letter_spacing=float(raw.get("letter_spacing", 0.0)),
            line_height=float(raw.get("line_height", 1.2)),
        )
    if kind == "shape":
        fill = raw.get("fill_color")
        return ShapeContent(
            shape_type=str(raw.get("shape_type", "rectangle")).lower(),
            color=str(raw.get("color", "#000000")),
            fill_color=None if fill is None else str(fill),
            stroke_width=int(raw.get("stroke_width", 2)),
        )
    return FrameContent(color=str(raw.get("color", "#000000")), stroke_width=int(raw.get("stroke_width", 5)))


def _pair(raw, default: tuple[int, int]) -> tuple[int, int]:
    if isinstance(raw, (list, tuple)) and len(raw) == 2:
        return (int(raw[0]), int(raw[1]))
    return default


def _layer_to_raw(layer: Layer) -> dict:
    return {
        "id": layer.id,
        "name": layer.name,
        "kind": layer.kind,
        "visible": bool(layer.visible),
        "locked": bool(layer.locked),
        "opacity": layer.opacity,
        "position": list(layer.position),
        "size": list(layer.size),
        "blend_mode": layer.blend_mode,
        "content": _content_to_raw(layer.content),
    }


def _layer_from_raw(raw: dict, idx: int, canvas: tuple[int, int]) -> Layer:
    kind = str(raw.get("kind", "empty")).lower()
    content_raw = raw.get("content", {})
    if not isinstance(content_raw, dict):
        content_raw = {}
    return Layer(
        id=str(raw.get("id") or uuid.uuid4().hex),
        name=str(raw.get("name", f"Layer {idx + 1}")),
        kind=kind,
        visible=bool(raw.get("visible", True)),
        locked=bool(raw.get("locked", kind == "background")),
        opacity=int(raw.get("opacity", 100)),
        position=_pair(raw.get("position"), (0, 0)),
        size=_pair(raw.get("size"), canvas),
        blend_mode=str(raw.get("blend_mode", "normal")).lower(),
        content=_content_from_raw(kind, content_raw),
    )


def save_project(path: str, stack: LayerStack) -> None:
    project_file = Path(path)
    payload = {
        "version": PROJECT_VERSION,
        "state": {
            "width": stack.width,
            "height": stack.height,
            "active_layer_index": stack.index_of(stack.active_id),
            "layers": [_layer_to_raw(layer) for layer in stack.layers],
        },
    }
    project_file.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def load_project(path: str, config: Optional[EngineConfig] = None) -> LayerStack:
    project_file = Path(path)
    raw = json.loads(project_file.read_text(encoding="utf-8"))
    state_raw = raw.get("state", {})

    width = int(state_raw.get("width", 512))
    height = int(state_raw.get("height", 512))
    stack = LayerStack(width, height, config)

    layers_raw = state_raw.get("layers")
    if isinstance(layers_raw, list):
        for idx, item in enumerate(layers_raw):
            if isinstance(item, dict):
                stack.layers.append(_layer_from_raw(item, idx, (width, height)))

    active = int(state_raw.get("active_layer_index", len(stack.layers) - 1))
    if stack.layers:
        active = max(0, min(active, len(stack.layers) - 1))
        stack.active_id = stack.layers[active].id
    return stack
