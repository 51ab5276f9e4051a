from __future__ import annotations

import unittest

import numpy as np

from engine.buffer import PixelBuffer
from engine.errors import UnsupportedKernelSize
from engine.morphology import (
    adaptive_threshold,
    black_hat,
    closing,
    connected_components,
    dilate,
    erode,
    morphological_gradient,
    opening,
    top_hat,
    watershed,
)


def _noise(w: int, h: int, seed: int = 0) -> PixelBuffer:
    rng = np.random.default_rng(seed)
    arr = rng.integers(0, 256, size=(h, w, 4), dtype=np.uint8)
    arr[..., 3] = 255
    return PixelBuffer.from_array(arr)


class MorphologyTests(unittest.TestCase):
    def test_erosion_removes_one_pixel_line(self) -> None:
        buf = PixelBuffer.blank(7, 7, (0, 0, 0, 255))
        buf.pixels[3, :, :3] = 255
        out = erode(buf, 3)
        self.assertTrue(np.all(out.pixels[1:-1, 1:-1, :3] == 0))
        # the border ring keeps its source values
        self.assertEqual(out.pixels[3, 0, :3].tolist(), [255, 255, 255])

    def test_dilation_grows_single_pixel(self) -> None:
        buf = PixelBuffer.blank(5, 5, (0, 0, 0, 255))
        buf.pixels[2, 2, :3] = 255
        out = dilate(buf, 3)
        self.assertTrue(np.all(out.pixels[1:4, 1:4, :3] == 255))

    def test_opening_and_closing_compose(self) -> None:
        buf = _noise(9, 8)
        self.assertTrue(opening(buf, 3).same_pixels(dilate(erode(buf, 3), 3)))
        self.assertTrue(closing(buf, 3).same_pixels(erode(dilate(buf, 3), 3)))

    def test_output_is_binary_and_opaque(self) -> None:
        out = erode(_noise(6, 6), 3)
        interior = out.pixels[1:-1, 1:-1]
        self.assertTrue(np.all(np.isin(interior[..., :3], (0, 255))))
        self.assertTrue(np.all(interior[..., 3] == 255))

    def test_derived_operators_are_opaque(self) -> None:
        buf = _noise(6, 6, seed=3)
        for op in (morphological_gradient, top_hat, black_hat):
            out = op(buf, 3)
            self.assertTrue(np.all(out.pixels[..., 3] == 255))

    def test_even_kernel_is_rejected(self) -> None:
        with self.assertRaises(UnsupportedKernelSize):
            erode(_noise(5, 5), 2)

    def test_adaptive_threshold_uniform_is_white(self) -> None:
        out = adaptive_threshold(PixelBuffer.blank(6, 4, (90, 90, 90, 10)))
        self.assertTrue(np.all(out.pixels == 255))


class SegmentationTests(unittest.TestCase):
    def _two_blobs(self) -> PixelBuffer:
        buf = PixelBuffer.blank(8, 6, (0, 0, 0, 255))
        buf.pixels[0:2, 0:2, :3] = 255
        buf.pixels[4:6, 5:8, :3] = 255
        return buf

    def test_connected_components_labels_in_scan_order(self) -> None:
        res = connected_components(self._two_blobs(), seed=1)
        self.assertEqual(res.count, 2)
        self.assertEqual(int(res.labels[0, 0]), 1)
        self.assertEqual(int(res.labels[5, 7]), 2)
        self.assertEqual(int(res.labels[3, 3]), 0)
        self.assertEqual(int(res.image.pixels[3, 3, 3]), 0)
        self.assertEqual(int(res.image.pixels[0, 0, 3]), 255)

    def test_seeded_colours_repeat(self) -> None:
        a = connected_components(self._two_blobs(), seed=7)
        b = connected_components(self._two_blobs(), seed=7)
        self.assertTrue(a.image.same_pixels(b.image))

    def test_diagonal_pixels_are_separate_components(self) -> None:
        buf = PixelBuffer.blank(3, 3, (0, 0, 0, 255))
        buf.pixels[0, 0, :3] = 255
        buf.pixels[1, 1, :3] = 255
        self.assertEqual(connected_components(buf).count, 2)

    def test_watershed_single_minimum(self) -> None:
        buf = PixelBuffer.blank(5, 5, (200, 200, 200, 255))
        buf.pixels[2, 2, :3] = 0
        res = watershed(buf, seed=0)
        self.assertEqual(res.count, 1)
        self.assertEqual(int(res.labels[2, 2]), 1)
        self.assertEqual(int((res.labels > 0).sum()), 1)

    def test_watershed_flat_image_has_no_regions(self) -> None:
        res = watershed(PixelBuffer.blank(4, 4, (10, 10, 10, 255)))
        self.assertEqual(res.count, 0)
        self.assertTrue(np.all(res.image.pixels[..., 3] == 0))


if __name__ == "__main__":
    unittest.main()
