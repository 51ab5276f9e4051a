from __future__ import annotations

import unittest

import numpy as np

from engine.buffer import PixelBuffer
from engine.compositor import (
    CHECKER_DARK,
    CHECKER_LIGHT,
    checkerboard,
    composite_layers,
    merge_layers,
    parse_color,
    redraw,
    render_layer,
)
from engine.state import Layer, LayerStack, RasterContent


def _raster(rgba: tuple[int, int, int, int], w: int = 4, h: int = 4, **kwargs) -> Layer:
    return Layer(
        id=f"l{rgba}",
        name="layer",
        kind="image",
        size=(w, h),
        content=RasterContent(PixelBuffer.blank(w, h, rgba)),
        **kwargs,
    )


WHITE = (255, 255, 255, 255)
RED = (255, 0, 0, 255)


class CompositeTests(unittest.TestCase):
    def test_opaque_layer_covers_base(self) -> None:
        out = composite_layers([_raster(WHITE), _raster(RED)], 4, 4)
        self.assertTrue(np.all(out.pixels == np.array(RED, dtype=np.uint8)))

    def test_half_opacity_mixes(self) -> None:
        out = composite_layers([_raster(WHITE), _raster(RED, opacity=50)], 4, 4)
        r, g, b, a = out.pixels[1, 1].tolist()
        self.assertEqual((r, a), (255, 255))
        self.assertLessEqual(abs(g - 127), 1)
        self.assertLessEqual(abs(b - 127), 1)

    def test_hidden_layer_is_ignored(self) -> None:
        out = composite_layers([_raster(WHITE), _raster(RED, visible=False)], 4, 4)
        self.assertTrue(np.all(out.pixels == 255))

    def test_multiply_and_difference(self) -> None:
        gray = (128, 128, 128, 255)
        out = composite_layers([_raster(gray), _raster(gray, blend_mode="multiply")], 4, 4)
        self.assertLessEqual(abs(int(out.pixels[0, 0, 0]) - 64), 1)

        out = composite_layers([_raster(WHITE), _raster(RED, blend_mode="difference")], 4, 4)
        self.assertEqual(out.pixels[0, 0].tolist(), [0, 255, 255, 255])

    def test_blend_mode_over_empty_canvas_is_plain(self) -> None:
        out = composite_layers([_raster(RED, blend_mode="multiply")], 4, 4)
        self.assertEqual(out.pixels[0, 0].tolist(), list(RED))

    def test_offset_layer_is_clipped(self) -> None:
        small = _raster(RED, w=2, h=2, position=(3, 3))
        out = composite_layers([_raster(WHITE), small], 4, 4)
        self.assertEqual(out.pixels[3, 3].tolist(), list(RED))
        self.assertEqual(out.pixels[2, 2].tolist(), list(WHITE))

    def test_checkerboard_cells(self) -> None:
        grid = checkerboard(20, 10, cell=10)
        self.assertEqual(tuple(grid[0, 0]), CHECKER_LIGHT)
        self.assertEqual(tuple(grid[0, 10]), CHECKER_DARK)

    def test_transparent_canvas_shows_grid_when_asked(self) -> None:
        stack = LayerStack(20, 10)
        stack.add_layer()
        self.assertEqual(int(redraw(stack).pixels[0, 0, 3]), 0)
        self.assertEqual(tuple(redraw(stack, transparency_grid=True).pixels[0, 10]), CHECKER_DARK)

    def test_parse_color(self) -> None:
        self.assertEqual(parse_color("#ff0000"), (255, 0, 0, 255))
        self.assertIsNone(parse_color("transparent"))
        self.assertIsNone(parse_color(None))


class VectorLayerTests(unittest.TestCase):
    def test_text_layer_draws_pixels(self) -> None:
        stack = LayerStack(200, 100)
        layer = stack.add_text_layer("Hello", color="#ff0000", position=(10, 10))
        tile = render_layer(layer, 200, 100)
        self.assertGreater(int(tile[..., 3].max()), 0)
        self.assertEqual(int(tile[90:, :, 3].max()), 0)

    def test_shape_outline(self) -> None:
        stack = LayerStack(200, 200)
        layer = stack.add_shape_layer("rectangle", color="#00ff00", stroke_width=2)
        tile = render_layer(layer, 200, 200)
        self.assertEqual(tile[50, 50].tolist(), [0, 255, 0, 255])
        self.assertEqual(int(tile[100, 100, 3]), 0)

    def test_filled_shape(self) -> None:
        stack = LayerStack(50, 50)
        layer = stack.add_shape_layer("rectangle", fill_color="#0000ff", position=(0, 0), size=(20, 20))
        tile = render_layer(layer, 50, 50)
        self.assertEqual(tile[10, 10].tolist(), [0, 0, 255, 255])

    def test_frame_follows_canvas_inset(self) -> None:
        stack = LayerStack(60, 40)
        layer = stack.add_frame_layer(color="#000000")
        tile = render_layer(layer, 60, 40)
        self.assertEqual(int(tile[10, 30, 3]), 255)
        self.assertEqual(int(tile[0, 0, 3]), 0)
        self.assertEqual(int(tile[20, 30, 3]), 0)


class MergeTests(unittest.TestCase):
    def test_merge_uses_upper_opacity(self) -> None:
        out = merge_layers(_raster(WHITE), _raster(RED, opacity=50), 4, 4)
        self.assertEqual(int(out.pixels[0, 0, 0]), 255)
        self.assertLessEqual(abs(int(out.pixels[0, 0, 1]) - 127), 1)

    def test_merge_ignores_lower_opacity(self) -> None:
        out = merge_layers(_raster(WHITE, opacity=10), _raster(RED, w=1, h=1), 4, 4)
        self.assertEqual(out.pixels[3, 3].tolist(), list(WHITE))


if __name__ == "__main__":
    unittest.main()
