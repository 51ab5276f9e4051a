from __future__ import annotations

import json
from pathlib import Path
from tempfile import TemporaryDirectory
import unittest

from engine.buffer import PixelBuffer
from engine.project_io import load_project, save_project
from engine.state import LayerStack


class ProjectIOTests(unittest.TestCase):
    def test_layers_round_trip(self) -> None:
        stack = LayerStack(8, 6)
        bg_buf = PixelBuffer.blank(8, 6, (12, 34, 56, 255))
        bg_buf.pixels[0, 0] = (1, 2, 3, 4)
        stack.add_background(bg_buf)
        text = stack.add_text_layer("Hi", color="#ff00ff", font_size=18)
        text.content.underline = True
        stack.add_shape_layer("circle", fill_color="#00ff00")
        frame = stack.add_frame_layer()
        frame.opacity = 40
        frame.blend_mode = "screen"
        stack.set_active(text.id)

        with TemporaryDirectory() as td:
            path = Path(td) / "doc.lumen"
            save_project(str(path), stack)
            loaded = load_project(str(path))

        self.assertEqual((loaded.width, loaded.height), (8, 6))
        self.assertEqual([layer.kind for layer in loaded.layers], ["background", "text", "shape", "frame"])
        self.assertEqual([layer.id for layer in loaded.layers], [layer.id for layer in stack.layers])
        self.assertTrue(loaded.layers[0].locked)
        self.assertTrue(loaded.layers[0].buffer.same_pixels(bg_buf))

        t = loaded.layers[1].content
        self.assertEqual((t.text, t.color, t.font_size, t.underline), ("Hi", "#ff00ff", 18, True))
        self.assertEqual(loaded.layers[2].content.shape_type, "circle")
        self.assertEqual(loaded.layers[2].content.fill_color, "#00ff00")
        self.assertEqual(loaded.layers[3].opacity, 40)
        self.assertEqual(loaded.layers[3].blend_mode, "screen")
        self.assertEqual(loaded.active_id, text.id)

    def test_missing_fields_use_defaults(self) -> None:
        payload = {
            "version": 1,
            "state": {
                "width": 20,
                "height": 10,
                "layers": [
                    {"kind": "text", "content": {"text": "plain"}},
                    {"kind": "empty", "blend_mode": "source-over"},
                ],
            },
        }
        with TemporaryDirectory() as td:
            path = Path(td) / "old.lumen"
            path.write_text(json.dumps(payload), encoding="utf-8")
            loaded = load_project(str(path))

        self.assertEqual(len(loaded), 2)
        text = loaded.layers[0]
        self.assertEqual(text.name, "Layer 1")
        self.assertEqual(text.content.font_family, "Arial")
        self.assertEqual(text.content.line_height, 1.2)
        self.assertFalse(text.locked)
        empty = loaded.layers[1]
        self.assertEqual(empty.blend_mode, "normal")
        self.assertIsNone(empty.buffer)
        self.assertEqual(empty.size, (20, 10))
        self.assertEqual(loaded.active_id, empty.id)


if __name__ == "__main__":
    unittest.main()
