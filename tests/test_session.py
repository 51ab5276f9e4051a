from __future__ import annotations

import unittest

import numpy as np

from engine.buffer import PixelBuffer
from engine.config import EngineConfig
from engine.errors import Busy, EditorError, InvalidGeometry, LayerLocked
from engine.io import export_buffer
from engine.session import EditorSession


def _png(w: int = 4, h: int = 3, rgba: tuple[int, int, int, int] = (200, 100, 50, 255)) -> bytes:
    return export_buffer(PixelBuffer.blank(w, h, rgba), "png")


def _opened(**kwargs) -> EditorSession:
    session = EditorSession(EngineConfig(segmentation_seed=1), **kwargs)
    result = session.open_image(_png(), "image/png")
    assert result.ok
    return session


class DocumentTests(unittest.TestCase):
    def test_open_image_starts_history(self) -> None:
        session = _opened()
        meta = session.metadata()
        self.assertEqual((meta["width"], meta["height"], meta["layer_count"]), (4, 3, 1))
        self.assertEqual(session.history.labels(), ["Open image"])
        self.assertFalse(session.history.can_undo)
        self.assertTrue(session.stack.background().locked)

    def test_operations_need_a_document(self) -> None:
        session = EditorSession()
        res = session.apply_filter("Invert")
        self.assertFalse(res.ok)
        self.assertIs(res.error, EditorError)
        self.assertFalse(session.undo())

    def test_export_bmp(self) -> None:
        data = _opened().export("bmp")
        self.assertEqual(data[:2], b"BM")


class FilterTests(unittest.TestCase):
    def test_locked_background_refuses_filters(self) -> None:
        session = _opened()
        res = session.apply_filter("Invert")
        self.assertFalse(res.ok)
        self.assertIs(res.error, LayerLocked)
        self.assertEqual(res.message, "This layer is locked. Unlock it first.")
        self.assertEqual(len(session.history), 1)

    def test_filter_after_unlock_and_undo(self) -> None:
        session = _opened()
        bg_id = session.stack.background().id
        self.assertTrue(session.toggle_lock(bg_id).ok)
        res = session.apply_filter("Invert")
        self.assertTrue(res.ok)
        self.assertEqual(session.flatten().pixels[0, 0].tolist(), [55, 155, 205, 255])
        self.assertEqual(session.history.labels(), ["Open image", "Lock", "Filter: Invert"])

        self.assertTrue(session.undo())
        self.assertEqual(session.flatten().pixels[0, 0].tolist(), [200, 100, 50, 255])
        self.assertFalse(session.stack.background().locked)
        self.assertTrue(session.undo())
        self.assertTrue(session.stack.background().locked)
        self.assertFalse(session.undo())

        self.assertTrue(session.redo())
        self.assertTrue(session.redo())
        self.assertEqual(session.flatten().pixels[0, 0].tolist(), [55, 155, 205, 255])
        self.assertFalse(session.redo())

    def test_repeated_undo_redo_restores_every_state(self) -> None:
        session = _opened()
        session.toggle_lock(session.stack.background().id)
        states = [session.flatten().pixels.copy()]
        for name, params in (("Brightness", {"value": 20}), ("Invert", {}), ("Grayscale", {})):
            self.assertTrue(session.apply_filter(name, **params).ok)
            states.append(session.flatten().pixels.copy())

        for expected in reversed(states[:-1]):
            session.undo()
            self.assertTrue(np.array_equal(session.flatten().pixels, expected))
        for expected in states[1:]:
            session.redo()
            self.assertTrue(np.array_equal(session.flatten().pixels, expected))

    def test_heavy_filter_waits_for_scheduler(self) -> None:
        jobs = []
        session = _opened(scheduler=jobs.append)
        session.toggle_lock(session.stack.background().id)
        done = []

        res = session.apply_filter("Frequency Spectrum", on_done=done.append)
        self.assertTrue(res.ok)
        self.assertEqual(res.message, "scheduled")
        self.assertTrue(session.busy)

        blocked = session.apply_filter("Invert")
        self.assertIs(blocked.error, Busy)
        self.assertFalse(session.undo())

        jobs.pop()()
        self.assertFalse(session.busy)
        self.assertEqual(len(done), 1)
        self.assertTrue(done[0].ok)
        self.assertEqual(session.history.labels()[-1], "Filter: Frequency Spectrum")

    def test_crashing_deferred_job_still_reports_and_frees_session(self) -> None:
        jobs = []
        session = _opened(scheduler=jobs.append)
        session.toggle_lock(session.stack.background().id)
        before = len(session.history)
        done = []

        res = session.apply_filter("Ideal Low-Pass", on_done=done.append, radius=5)
        self.assertEqual(res.message, "scheduled")
        with self.assertLogs("engine.session", level="ERROR"):
            jobs.pop()()

        self.assertFalse(session.busy)
        self.assertEqual(len(done), 1)
        self.assertFalse(done[0].ok)
        self.assertIs(done[0].error, EditorError)
        self.assertEqual(len(session.history), before)
        self.assertTrue(session.apply_filter("Invert").ok)

    def test_ai_tool_on_unlocked_layer(self) -> None:
        session = _opened()
        session.toggle_lock(session.stack.background().id)
        res = session.run_ai("auto_color_correct")
        self.assertTrue(res.ok)
        self.assertEqual(session.history.labels()[-1], "AI: auto_color_correct")

    def test_inconclusive_ai_leaves_history_alone(self) -> None:
        session = _opened()
        session.toggle_lock(session.stack.background().id)
        res = session.run_ai("remove_objects")
        self.assertTrue(res.inconclusive)
        self.assertEqual(len(session.history), 2)


class GeometryTests(unittest.TestCase):
    def test_rejected_crop_changes_nothing(self) -> None:
        session = _opened()
        res = session.crop(100, 100, 5, 5)
        self.assertIs(res.error, InvalidGeometry)
        self.assertEqual(len(session.history), 1)

    def test_crop_then_undo(self) -> None:
        session = _opened()
        session.add_text_layer("x")
        self.assertTrue(session.crop(1, 1, 2, 2).ok)
        self.assertEqual(session.metadata()["layer_count"], 1)
        self.assertEqual(session.flatten().size, (2, 2))

        self.assertTrue(session.undo())
        self.assertEqual(session.flatten().size, (4, 3))
        self.assertEqual(session.metadata()["layer_count"], 2)
        self.assertTrue(session.undo())
        self.assertEqual(session.metadata()["layer_count"], 1)

    def test_rotate_swaps_canvas(self) -> None:
        session = _opened()
        self.assertTrue(session.rotate(90).ok)
        self.assertEqual(session.flatten().size, (3, 4))
        self.assertTrue(session.stack.background().locked)


class LayerTests(unittest.TestCase):
    def test_delete_and_undo(self) -> None:
        session = _opened()
        layer_id = session.add_layer().message
        self.assertEqual(session.metadata()["layer_count"], 2)
        self.assertTrue(session.delete_layer(layer_id).ok)
        self.assertEqual(session.metadata()["layer_count"], 1)
        self.assertTrue(session.undo())
        self.assertEqual(session.stack.index_of(layer_id), 1)

    def test_locked_layer_delete_is_reported(self) -> None:
        session = _opened()
        session.add_layer()
        res = session.delete_layer(session.stack.background().id)
        self.assertIs(res.error, LayerLocked)

    def test_duplicate_and_merge_down(self) -> None:
        session = _opened()
        session.toggle_lock(session.stack.background().id)
        dup_id = session.duplicate_layer(session.stack.background().id).message
        self.assertEqual(session.stack.find(dup_id).position, (20, 20))
        self.assertTrue(session.merge_down(dup_id).ok)
        self.assertEqual(session.metadata()["layer_count"], 1)
        self.assertTrue(session.undo())
        self.assertEqual(session.metadata()["layer_count"], 2)

    def test_opacity_edit_is_undoable(self) -> None:
        session = _opened()
        layer_id = session.add_shape_layer().message
        self.assertTrue(session.set_opacity(layer_id, 30).ok)
        self.assertEqual(session.stack.find(layer_id).opacity, 30)
        session.undo()
        self.assertEqual(session.stack.find(layer_id).opacity, 100)


class TextToolTests(unittest.TestCase):
    def test_text_editing_blocks_other_tools(self) -> None:
        session = _opened()
        self.assertTrue(session.begin_text((1, 1)))
        self.assertIs(session.apply_filter("Invert").error, Busy)
        self.assertIs(session.crop(0, 0, 2, 2).error, Busy)
        self.assertFalse(session.undo())
        session.cancel_text()
        self.assertEqual(session.metadata()["layer_count"], 1)

    def test_commit_adds_layer_and_undo_removes_it(self) -> None:
        session = _opened()
        session.begin_text((1, 1))
        session.text.update("Caption")
        res = session.commit_text()
        self.assertTrue(res.ok)
        layer = session.stack.find(res.message)
        self.assertEqual(layer.content.text, "Caption")
        self.assertEqual(layer.name, "Text: Caption")

        self.assertTrue(session.undo())
        self.assertIsNone(session.stack.find(res.message))
        self.assertTrue(session.redo())
        self.assertIsNotNone(session.stack.find(res.message))

    def test_edit_existing_text(self) -> None:
        session = _opened()
        layer_id = session.add_text_layer("old").message
        self.assertTrue(session.begin_text_edit(layer_id))
        session.text.update("new")
        self.assertTrue(session.commit_text().ok)
        self.assertEqual(session.stack.find(layer_id).content.text, "new")
        session.undo()
        self.assertEqual(session.stack.find(layer_id).content.text, "old")

    def test_escape_cancels(self) -> None:
        session = _opened()
        session.begin_text()
        self.assertTrue(session.text.handle_key("Escape"))
        self.assertFalse(session.text.blocks_tools)


if __name__ == "__main__":
    unittest.main()
