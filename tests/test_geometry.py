from __future__ import annotations

import unittest

import numpy as np

from engine.buffer import PixelBuffer
from engine.geometry import (
    crop,
    flip_horizontal,
    flip_vertical,
    normalize_crop_rect,
    resize,
    rotate,
    rotate_90_ccw,
    rotate_90_cw,
    rotate_180,
)


def _numbered(w: int, h: int) -> PixelBuffer:
    arr = np.zeros((h, w, 4), dtype=np.uint8)
    arr[..., 0] = np.arange(w * h, dtype=np.uint8).reshape(h, w)
    arr[..., 3] = 255
    return PixelBuffer.from_array(arr)


def _gradient(w: int, h: int) -> PixelBuffer:
    ys, xs = np.mgrid[0:h, 0:w]
    arr = np.zeros((h, w, 4), dtype=np.uint8)
    arr[..., 0] = xs * 5
    arr[..., 1] = ys * 6
    arr[..., 2] = 128
    arr[..., 3] = 255
    return PixelBuffer.from_array(arr)


class RotateTests(unittest.TestCase):
    def test_quarter_turn_swaps_dimensions(self) -> None:
        out = rotate_90_cw(_numbered(3, 2))
        self.assertEqual(out.size, (2, 3))

    def test_quarter_turn_is_clockwise(self) -> None:
        src = _numbered(3, 2)
        out = rotate(src, 90)
        # top-left of the result comes from the bottom-left of the source
        self.assertEqual(out.pixels[0, 0].tolist(), src.pixels[1, 0].tolist())
        self.assertEqual(out.pixels[0, 1].tolist(), src.pixels[0, 0].tolist())

    def test_four_quarter_turns_are_identity(self) -> None:
        src = _numbered(3, 2)
        out = src
        for _ in range(4):
            out = rotate(out, 90)
        self.assertTrue(out.same_pixels(src))

    def test_cw_then_ccw_is_identity(self) -> None:
        src = _numbered(4, 3)
        self.assertTrue(rotate_90_ccw(rotate_90_cw(src)).same_pixels(src))
        self.assertTrue(rotate_180(rotate_180(src)).same_pixels(src))

    def test_half_turn_reverses_pixels(self) -> None:
        src = _numbered(3, 2)
        out = rotate_180(src)
        self.assertTrue(np.array_equal(out.pixels, src.pixels[::-1, ::-1]))

    def test_diagonal_rotation_grows_canvas(self) -> None:
        out = rotate(PixelBuffer.blank(10, 10, (255, 0, 0, 255)), 45)
        self.assertEqual(out.size, (14, 14))
        self.assertEqual(int(out.pixels[0, 0, 3]), 0)
        self.assertEqual(int(out.pixels[7, 7, 3]), 255)

    def test_arbitrary_angle_round_trip_on_gradient(self) -> None:
        src = _gradient(40, 30)
        m = 4
        ref = src.pixels[m:-m, m:-m].astype(np.int32)
        for angle in (30, 45, 17):
            with self.subTest(angle=angle):
                out = rotate(rotate(src, angle), -angle)
                ox = (out.width - src.width) // 2
                oy = (out.height - src.height) // 2
                window = out.pixels[oy:oy + src.height, ox:ox + src.width].astype(np.int32)
                inner = window[m:-m, m:-m]
                self.assertTrue((inner[..., 3] == 255).all())
                # nearest sampling twice plus a half pixel of window rounding: at most 2 px off
                err_x = np.abs(inner[..., 0] - ref[..., 0])
                err_y = np.abs(inner[..., 1] - ref[..., 1])
                self.assertLessEqual(int(err_x.max()), 2 * 5)
                self.assertLessEqual(int(err_y.max()), 2 * 6)
                self.assertLess(float(err_x.mean()), 5.0)
                self.assertLess(float(err_y.mean()), 6.0)

    def test_rotation_is_centred_on_the_output_canvas(self) -> None:
        # 12 * sqrt(2) floors to 16, dropping almost half a pixel
        out = rotate(PixelBuffer.blank(12, 12, (0, 0, 255, 255)), 45)
        self.assertEqual(out.size, (16, 16))
        alpha = out.pixels[..., 3]
        self.assertEqual(int(alpha[0, 0]), 0)
        self.assertEqual(int(alpha[8, 8]), 255)
        self.assertTrue(np.array_equal(alpha, alpha[::-1, ::-1]))
        self.assertTrue(np.array_equal(alpha, alpha.T))


class FlipTests(unittest.TestCase):
    def test_flips_are_involutions(self) -> None:
        src = _numbered(4, 3)
        self.assertTrue(flip_horizontal(flip_horizontal(src)).same_pixels(src))
        self.assertTrue(flip_vertical(flip_vertical(src)).same_pixels(src))

    def test_horizontal_flip_mirrors_rows(self) -> None:
        src = _numbered(3, 1)
        self.assertEqual(flip_horizontal(src).pixels[0, :, 0].tolist(), [2, 1, 0])


class CropResizeTests(unittest.TestCase):
    def test_crop_outside_returns_same_buffer(self) -> None:
        src = _numbered(5, 4)
        self.assertIs(crop(src, 10, 0, 2, 2), src)
        self.assertIs(crop(src, 1, 1, 0, 2), src)

    def test_negative_extent_is_normalized(self) -> None:
        src = _numbered(5, 4)
        rect = normalize_crop_rect(src, 4, 0, -2, 2)
        self.assertIsNotNone(rect)
        self.assertEqual((rect.x, rect.y, rect.width, rect.height), (2, 0, 2, 2))

    def test_crop_past_top_left_keeps_overlap(self) -> None:
        src = _numbered(10, 10)
        out = crop(src, -2, -2, 6, 6)
        self.assertIsNot(out, src)
        self.assertEqual(out.size, (4, 4))
        self.assertEqual(int(out.pixels[0, 0, 0]), 0)
        self.assertEqual(int(out.pixels[3, 3, 0]), 33)

    def test_reversed_drag_past_edge_keeps_overlap(self) -> None:
        src = _numbered(10, 10)
        rect = normalize_crop_rect(src, 4, 4, -8, -8)
        self.assertEqual((rect.x, rect.y, rect.width, rect.height), (0, 0, 4, 4))
        self.assertEqual(crop(src, 4, 4, -8, -8).size, (4, 4))

    def test_crop_entirely_left_of_canvas_is_rejected(self) -> None:
        src = _numbered(5, 4)
        self.assertIs(crop(src, -10, 0, 5, 2), src)
        self.assertIsNone(normalize_crop_rect(src, 0, -6, 3, 4))

    def test_far_edge_is_clamped(self) -> None:
        src = _numbered(5, 4)
        out = crop(src, 3, 3, 100, 100)
        self.assertEqual(out.size, (2, 1))
        self.assertEqual(int(out.pixels[0, 0, 0]), 18)

    def test_crop_copies_region(self) -> None:
        src = _numbered(5, 4)
        out = crop(src, 1, 1, 2, 2)
        self.assertEqual(out.pixels[..., 0].tolist(), [[6, 7], [11, 12]])
        out.pixels[0, 0, 0] = 99
        self.assertEqual(int(src.pixels[1, 1, 0]), 6)

    def test_nearest_neighbour_upscale(self) -> None:
        out = resize(_numbered(2, 1), 4, 1)
        self.assertEqual(out.pixels[0, :, 0].tolist(), [0, 0, 1, 1])

    def test_non_positive_resize_returns_same_buffer(self) -> None:
        src = _numbered(2, 2)
        self.assertIs(resize(src, 0, 5), src)
        self.assertIs(resize(src, 3, -1), src)


if __name__ == "__main__":
    unittest.main()
