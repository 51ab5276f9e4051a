from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, Optional, Tuple

import numpy as np
from PIL import Image, ImageColor, ImageDraw, ImageFont

from engine.buffer import PixelBuffer, pil_to_np_rgba

if TYPE_CHECKING:
    from engine.state import Layer, LayerStack

logger = logging.getLogger(__name__)

CHECKER_LIGHT = (0xF0, 0xF0, 0xF0, 255)
CHECKER_DARK = (0xD0, 0xD0, 0xD0, 255)


def _blend(base: np.ndarray, top: np.ndarray, mode: str) -> np.ndarray:
    base_rgb = base[..., :3].astype(np.float32) / 255.0
    top_rgb = top[..., :3].astype(np.float32) / 255.0
    base_a = base[..., 3:4].astype(np.float32) / 255.0
    top_a = top[..., 3:4].astype(np.float32) / 255.0

    mode = (mode or "normal").lower()
    if mode == "multiply":
        blend_rgb = base_rgb * top_rgb
    elif mode == "screen":
        blend_rgb = 1.0 - (1.0 - base_rgb) * (1.0 - top_rgb)
    elif mode == "overlay":
        blend_rgb = np.where(base_rgb <= 0.5, 2.0 * base_rgb * top_rgb, 1.0 - 2.0 * (1.0 - base_rgb) * (1.0 - top_rgb))
    elif mode == "darken":
        blend_rgb = np.minimum(base_rgb, top_rgb)
    elif mode == "lighten":
        blend_rgb = np.maximum(base_rgb, top_rgb)
    elif mode == "difference":
        blend_rgb = np.abs(base_rgb - top_rgb)
    else:
        blend_rgb = top_rgb

    # Separable modes only apply where there is something underneath.
    blend_rgb = blend_rgb * base_a + top_rgb * (1.0 - base_a)

    out_a = top_a + base_a * (1.0 - top_a)
    premul_top = blend_rgb * top_a
    premul_base = base_rgb * base_a
    out_premul = premul_top + premul_base * (1.0 - top_a)
    out_rgb = np.where(out_a > 0, out_premul / np.maximum(out_a, 1e-6), 0.0)

    out = np.empty_like(base)
    out[..., :3] = np.clip(np.rint(out_rgb * 255.0), 0, 255).astype(np.uint8)
    out[..., 3] = np.clip(np.rint(out_a[..., 0] * 255.0), 0, 255).astype(np.uint8)
    return out


def checkerboard(width: int, height: int, cell: int = 10) -> np.ndarray:
    ys, xs = np.mgrid[0:height, 0:width]
    dark = ((xs // cell) + (ys // cell)) % 2 == 1
    out = np.empty((height, width, 4), dtype=np.uint8)
    out[...] = np.array(CHECKER_LIGHT, dtype=np.uint8)
    out[dark] = np.array(CHECKER_DARK, dtype=np.uint8)
    return out


def parse_color(value: Optional[str]) -> Optional[Tuple[int, int, int, int]]:
    if value is None or str(value).strip().lower() in ("", "transparent", "none"):
        return None
    return ImageColor.getcolor(str(value), "RGBA")


def _blit(canvas: np.ndarray, src: np.ndarray, x: int, y: int) -> None:
    out_h, out_w = canvas.shape[:2]
    src_h, src_w = src.shape[:2]
    x0 = max(0, x)
    y0 = max(0, y)
    x1 = min(out_w, x + src_w)
    y1 = min(out_h, y + src_h)
    if x1 <= x0 or y1 <= y0:
        return
    sx0 = x0 - x
    sy0 = y0 - y
    canvas[y0:y1, x0:x1] = src[sy0:sy0 + (y1 - y0), sx0:sx0 + (x1 - x0)]


def load_font(family: str, size: int, bold: bool = False, italic: bool = False) -> ImageFont.ImageFont:
    suffix = ""
    if bold and italic:
        suffix = "-BoldOblique"
    elif bold:
        suffix = "-Bold"
    elif italic:
        suffix = "-Oblique"

    candidates = [f"{family}{suffix}.ttf", f"{family}.ttf", f"{family.lower()}.ttf", f"DejaVuSans{suffix}.ttf", "DejaVuSans.ttf"]
    for name in candidates:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    logger.debug("no TrueType font for %r, using Pillow default", family)
    return ImageFont.load_default(size=size)


def _render_text(draw: ImageDraw.ImageDraw, layer: Layer) -> None:
    content = layer.content
    if not content.text:
        return
    size = max(1, int(content.font_size))
    font = load_font(content.font_family, size, content.weight == "bold", content.style == "italic")
    fill = parse_color(content.color) or (0, 0, 0, 255)
    spacing = float(content.letter_spacing or 0.0)
    x0, y0 = layer.position

    if content.orientation == "vertical":
        step = size + spacing
        for i, ch in enumerate(content.text):
            y = y0 + i * step
            draw.text((x0, y), ch, font=font, fill=fill)
            if content.underline and ch not in (" ", "\n"):
                draw.line([(x0, y + size + 2), (x0 + size * 0.6, y + size + 2)], fill=fill, width=1)
        return

    line_step = size * float(content.line_height or 1.2)
    for i, line in enumerate(content.text.split("\n")):
        y = y0 + i * line_step
        width = _text_width(font, line, spacing)
        x = float(x0)
        if content.alignment == "center":
            x -= width / 2.0
        elif content.alignment == "right":
            x -= width

        if spacing:
            cx = x
            for ch in line:
                draw.text((cx, y), ch, font=font, fill=fill)
                cx += font.getlength(ch) + spacing
        else:
            draw.text((x, y), line, font=font, fill=fill)

        if content.underline:
            draw.line([(x, y + size + 2), (x + width, y + size + 2)], fill=fill, width=1)


def _text_width(font: ImageFont.ImageFont, line: str, spacing: float) -> float:
    if not line:
        return 0.0
    return float(font.getlength(line)) + spacing * len(line)


def _render_shape(draw: ImageDraw.ImageDraw, layer: Layer) -> None:
    content = layer.content
    x, y = layer.position
    w, h = layer.size
    stroke = parse_color(content.color) or (0, 0, 0, 255)
    fill = parse_color(content.fill_color)
    width = max(1, int(content.stroke_width or 2))

    if content.shape_type == "rectangle":
        draw.rectangle([x, y, x + w, y + h], fill=fill, outline=stroke, width=width)
    elif content.shape_type == "circle":
        r = min(w, h) / 2.0
        cx, cy = x + w / 2.0, y + h / 2.0
        draw.ellipse([cx - r, cy - r, cx + r, cy + r], fill=fill, outline=stroke, width=width)
    elif content.shape_type == "triangle":
        pts = [(x + w / 2.0, y), (x, y + h), (x + w, y + h)]
        draw.polygon(pts, fill=fill, outline=stroke, width=width)
    elif content.shape_type == "line":
        draw.line([(x, y), (x + w, y + h)], fill=stroke, width=width)


def _render_frame(draw: ImageDraw.ImageDraw, layer: Layer) -> None:
    x, y = layer.position
    w, h = layer.size
    stroke = parse_color(layer.content.color) or (0, 0, 0, 255)
    draw.rectangle([x, y, x + w, y + h], outline=stroke, width=max(1, int(layer.content.stroke_width or 5)))


def render_layer(layer: Layer, width: int, height: int, apply_opacity: bool = True) -> Optional[np.ndarray]:
    """Canvas-sized RGBA tile for one layer, or None when it draws nothing."""
    if layer.is_raster:
        buf = layer.buffer
        if buf is None:
            return None
        tile = np.zeros((height, width, 4), dtype=np.uint8)
        _blit(tile, buf.pixels, layer.position[0], layer.position[1])
    else:
        img = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        draw = ImageDraw.Draw(img)
        if layer.kind == "text":
            _render_text(draw, layer)
        elif layer.kind == "shape":
            _render_shape(draw, layer)
        elif layer.kind == "frame":
            _render_frame(draw, layer)
        tile = pil_to_np_rgba(img)

    if apply_opacity and layer.opacity < 100:
        a = tile[..., 3].astype(np.float32)
        tile[..., 3] = np.clip(np.rint(a * (layer.opacity / 100.0)), 0, 255).astype(np.uint8)
    return tile


def composite_layers(
    layers: Iterable[Layer], width: int, height: int, checker_cell: Optional[int] = None
) -> PixelBuffer:
    if checker_cell:
        base = checkerboard(width, height, checker_cell)
    else:
        base = np.zeros((height, width, 4), dtype=np.uint8)

    for layer in layers:
        if not layer.visible:
            continue
        tile = render_layer(layer, width, height)
        if tile is None:
            continue
        base = _blend(base, tile, layer.blend_mode)

    return PixelBuffer.from_array(base)


def redraw(stack: LayerStack, transparency_grid: bool = False) -> PixelBuffer:
    cell = stack.config.checkerboard_cell if transparency_grid else None
    return composite_layers(stack.layers, stack.width, stack.height, checker_cell=cell)


def merge_layers(lower: Layer, upper: Layer, width: int, height: int) -> PixelBuffer:
    """Render ``upper`` onto ``lower`` with the upper layer's opacity and blend mode."""
    base = render_layer(lower, width, height, apply_opacity=False)
    if base is None:
        base = np.zeros((height, width, 4), dtype=np.uint8)
    top = render_layer(upper, width, height)
    if top is not None:
        base = _blend(base, top, upper.blend_mode)
    return PixelBuffer.from_array(base)
