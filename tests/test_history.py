from __future__ import annotations

import unittest

from engine.buffer import PixelBuffer
from engine.history import HistoryLog, LayerDiffEntry, SnapshotEntry
from engine.state import Layer


def _snap(action: str, value: int = 0) -> SnapshotEntry:
    return SnapshotEntry(action, PixelBuffer.blank(2, 2, (value, value, value, 255)))


def _layer(opacity: int) -> Layer:
    return Layer(id="L", name="layer", kind="empty", opacity=opacity)


class Recorder:
    def __init__(self) -> None:
        self.calls: list = []

    def snapshot(self, entry: SnapshotEntry) -> None:
        self.calls.append(("snapshot", entry.action))

    def layer(self, entry: LayerDiffEntry, state) -> None:
        self.calls.append(("layer", entry.action, None if state is None else state.opacity))


class HistoryLogTests(unittest.TestCase):
    def setUp(self) -> None:
        self.rec = Recorder()
        self.log = HistoryLog(100, self.rec.snapshot, self.rec.layer)

    def test_limit_drops_oldest(self) -> None:
        log = HistoryLog(3)
        for i in range(5):
            log.record(_snap(f"s{i}"))
        self.assertEqual(log.labels(), ["s2", "s3", "s4"])
        self.assertEqual(log.index, 2)

    def test_bounds_are_no_ops(self) -> None:
        self.assertFalse(self.log.undo())
        self.log.record(_snap("open"))
        self.assertFalse(self.log.undo())
        self.assertFalse(self.log.redo())
        self.assertEqual(self.rec.calls, [])

    def test_record_after_undo_truncates(self) -> None:
        for name in ("a", "b", "c"):
            self.log.record(_snap(name))
        self.log.undo()
        self.log.undo()
        self.log.record(_snap("d"))
        self.assertEqual(self.log.labels(), ["a", "d"])
        self.assertFalse(self.log.can_redo)

    def test_layer_diff_undo_and_redo(self) -> None:
        self.log.record(_snap("open"))
        self.log.record(LayerDiffEntry("Opacity", "L", _layer(100), _layer(40)))
        self.assertTrue(self.log.undo())
        self.assertEqual(self.rec.calls[-1], ("layer", "Opacity", 100))
        self.assertTrue(self.log.redo())
        self.assertEqual(self.rec.calls[-1], ("layer", "Opacity", 40))

    def test_undoing_snapshot_replays_from_earlier_snapshot(self) -> None:
        self.log.record(_snap("open"))
        self.log.record(LayerDiffEntry("Opacity", "L", _layer(100), _layer(40)))
        self.log.record(_snap("crop"))
        self.rec.calls.clear()
        self.assertTrue(self.log.undo())
        self.assertEqual(self.rec.calls, [("snapshot", "open"), ("layer", "Opacity", 40)])
        self.assertEqual(self.log.index, 1)

    def test_jump_to_walks_the_log(self) -> None:
        for name in ("a", "b", "c", "d"):
            self.log.record(_snap(name))
        self.assertTrue(self.log.jump_to(1))
        self.assertEqual(self.log.index, 1)
        self.assertTrue(self.log.jump_to(3))
        self.assertEqual(self.rec.calls[-1], ("snapshot", "d"))
        self.assertFalse(self.log.jump_to(9))

    def test_entries_are_stored_as_copies(self) -> None:
        entry = _snap("open", 10)
        self.log.record(entry)
        entry.image.pixels[...] = 0
        self.assertEqual(int(self.log.current.image.pixels[0, 0, 0]), 10)

    def test_undo_then_redo_round_trip(self) -> None:
        for i in range(5):
            self.log.record(_snap(f"s{i}", i))
        for _ in range(4):
            self.assertTrue(self.log.undo())
        for _ in range(4):
            self.assertTrue(self.log.redo())
        self.assertEqual(self.log.current.action, "s4")
        self.assertEqual(self.rec.calls[-1], ("snapshot", "s4"))


if __name__ == "__main__":
    unittest.main()
