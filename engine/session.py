from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple

from engine import geometry
from engine.ai_heuristics import AIVendor, process_with_fallback
from engine.buffer import PixelBuffer
from engine.catalog import get_filter
from engine.compositor import redraw
from engine.config import EngineConfig
from engine.errors import Busy, EditorError, InvalidGeometry, LayerLocked, OpResult
from engine.history import HistoryLog, LayerDiffEntry, SnapshotEntry
from engine.io import export_buffer, ingest_image
from engine.project_io import load_project, save_project
from engine.state import Layer, LayerStack, RasterContent
from engine.text_edit import TextEditSession

logger = logging.getLogger(__name__)

Job = Callable[[], None]
Scheduler = Callable[[Job], None]
Callback = Optional[Callable[[OpResult], None]]


def run_now(job: Job) -> None:
    job()


class EditorSession:
    """
    One open document: the layer stack, its history and the text tool.

    Operations return an ``OpResult``. Heavy work goes through ``scheduler``,
    which may defer it (the Qt host waits one timer tick so a busy indicator
    can paint); while it runs every other operation is refused with ``Busy``.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        vendor: Optional[AIVendor] = None,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.vendor = vendor
        self.scheduler = scheduler or run_now
        self.stack: Optional[LayerStack] = None
        self.history = HistoryLog(self.config.history_limit, self._restore_snapshot, self._restore_layer)
        self.text = TextEditSession(self.config.default_text)
        self.busy = False
        self.busy_label = ""

    # ---- document ----
    def open_image(self, data: bytes, mime_hint: Optional[str] = None) -> OpResult:
        if self.busy:
            return OpResult.fail(Busy, "another operation is running")
        return self.load_buffer(ingest_image(data, mime_hint))

    def load_buffer(self, buffer: PixelBuffer, action: str = "Open image") -> OpResult:
        if self.busy:
            return OpResult.fail(Busy, "another operation is running")
        self.text.cancel()
        self._reset_to_background(buffer)
        self.history.clear()
        self._record_snapshot(action)
        return OpResult.success(self.flatten())

    def open_project(self, path: str) -> OpResult:
        if self.busy:
            return OpResult.fail(Busy, "another operation is running")
        self.text.cancel()
        self.stack = load_project(path, self.config)
        self.history.clear()
        self._record_snapshot("Open project")
        return OpResult.success(self.flatten())

    def save_project(self, path: str) -> None:
        if self.stack is None:
            raise EditorError("no document is open")
        save_project(path, self.stack)

    @property
    def has_document(self) -> bool:
        return self.stack is not None

    def flatten(self) -> PixelBuffer:
        if self.stack is None:
            raise EditorError("no document is open")
        return redraw(self.stack)

    def render(self, transparency_grid: bool = False) -> PixelBuffer:
        if self.stack is None:
            raise EditorError("no document is open")
        return redraw(self.stack, transparency_grid=transparency_grid)

    def metadata(self) -> dict:
        if self.stack is None:
            return {"width": 0, "height": 0, "layer_count": 0, "history_length": len(self.history)}
        active = self.stack.active_layer()
        return {
            "width": self.stack.width,
            "height": self.stack.height,
            "layer_count": len(self.stack),
            "history_length": len(self.history),
            "active_layer": None if active is None else active.name,
        }

    def export(self, fmt: str = "png", quality: Optional[float] = None) -> bytes:
        q = self.config.jpeg_quality if quality is None else quality
        return export_buffer(self.flatten(), fmt, q)

    # ---- gating ----
    def _refuse(self) -> Optional[OpResult]:
        if self.stack is None:
            return OpResult.fail(EditorError, "no document is open")
        if self.busy:
            return OpResult.fail(Busy, f"busy: {self.busy_label}")
        if self.text.blocks_tools:
            return OpResult.fail(Busy, "finish or cancel text editing first")
        return None

    def _editable_raster(self) -> Tuple[Optional[Layer], Optional[OpResult]]:
        layer = self.stack.active_layer()
        if layer is None or not layer.is_raster or layer.buffer is None:
            return None, OpResult.fail(EditorError, "select a layer with pixels first")
        if layer.locked:
            return None, OpResult.fail(LayerLocked, "This layer is locked. Unlock it first.")
        return layer, None

    def _run(self, label: str, work: Callable[[], OpResult], heavy: bool, on_done: Callback) -> OpResult:
        self.busy = True
        self.busy_label = label
        outcome: list[OpResult] = []

        def job() -> None:
            try:
                result = work()
            except EditorError as e:
                result = OpResult.fail(type(e), str(e))
            except Exception as e:
                logger.exception("%s failed", label)
                result = OpResult.fail(EditorError, f"{label} failed: {e}")
            finally:
                self.busy = False
                self.busy_label = ""
            outcome.append(result)
            if on_done is not None:
                on_done(result)

        if heavy:
            logger.info("scheduling %s", label)
            self.scheduler(job)
        else:
            job()
        if outcome:
            return outcome[0]
        return OpResult.success(message="scheduled")

    # ---- pixel operations on the active layer ----
    def _commit_pixels(self, layer_id: str, action: str, out: PixelBuffer) -> OpResult:
        idx = self.stack.index_of(layer_id)
        before = self.stack.find(layer_id)
        if before is None:
            return OpResult.fail(EditorError, "layer disappeared while processing")
        prev = before.copy()
        if not self.stack.set_content(layer_id, RasterContent(out)):
            return OpResult.fail(LayerLocked, "This layer is locked. Unlock it first.")
        new = self.stack.find(layer_id).copy()
        self.history.record(LayerDiffEntry(action, layer_id, prev, new, idx))
        return OpResult.success(out)

    def apply_filter(self, name: str, on_done: Callback = None, **params) -> OpResult:
        refused = self._refuse()
        if refused is not None:
            return refused
        spec = get_filter(name)
        layer, err = self._editable_raster()
        if err is not None:
            return err

        if spec.category == "frequency":
            params.setdefault("fast", self.config.use_fast_fft)
        if name in ("Connected Components", "Watershed"):
            params.setdefault("seed", self.config.segmentation_seed)

        src = layer.buffer
        layer_id = layer.id

        def work() -> OpResult:
            out = spec.fn(src, **params)
            return self._commit_pixels(layer_id, f"Filter: {name}", out)

        return self._run(name, work, spec.heavy, on_done)

    def run_ai(self, kind: str, on_done: Callback = None, **params) -> OpResult:
        refused = self._refuse()
        if refused is not None:
            return refused
        layer, err = self._editable_raster()
        if err is not None:
            return err

        src = layer.buffer
        layer_id = layer.id

        def work() -> OpResult:
            result = process_with_fallback(src, kind, self.vendor, **params)
            if not result.ok:
                return result
            return self._commit_pixels(layer_id, f"AI: {kind}", result.buffer)

        return self._run(kind, work, True, on_done)

    # ---- document geometry (flattens the stack) ----
    def _geometry(self, action: str, op: Callable[[PixelBuffer], PixelBuffer]) -> OpResult:
        refused = self._refuse()
        if refused is not None:
            return refused
        flat = self.flatten()
        out = op(flat)
        if out is flat:
            return OpResult.fail(InvalidGeometry, f"{action} rejected")
        self._reset_to_background(out)
        self._record_snapshot(action)
        return OpResult.success(out)

    def crop(self, x: float, y: float, width: float, height: float) -> OpResult:
        return self._geometry("Crop", lambda b: geometry.crop(b, x, y, width, height))

    def resize(self, width: int, height: int) -> OpResult:
        return self._geometry("Resize", lambda b: geometry.resize(b, width, height))

    def rotate(self, angle: float) -> OpResult:
        return self._geometry(f"Rotate {angle:g}", lambda b: geometry.rotate(b, angle))

    def flip_horizontal(self) -> OpResult:
        return self._geometry("Flip horizontal", geometry.flip_horizontal)

    def flip_vertical(self) -> OpResult:
        return self._geometry("Flip vertical", geometry.flip_vertical)

    # ---- layers ----
    def _record_added(self, action: str, layer: Optional[Layer]) -> OpResult:
        if layer is None:
            return OpResult.fail(EditorError, f"{action} rejected")
        idx = self.stack.index_of(layer.id)
        self.history.record(LayerDiffEntry(action, layer.id, None, layer.copy(), idx))
        return OpResult.success(message=layer.id)

    def add_layer(self, kind: str = "empty") -> OpResult:
        refused = self._refuse()
        return refused or self._record_added("Add layer", self.stack.add_layer(kind))

    def add_text_layer(self, text: Optional[str] = None, **kwargs) -> OpResult:
        refused = self._refuse()
        return refused or self._record_added("Add text", self.stack.add_text_layer(text, **kwargs))

    def add_shape_layer(self, shape_type: str = "rectangle", **kwargs) -> OpResult:
        refused = self._refuse()
        return refused or self._record_added("Add shape", self.stack.add_shape_layer(shape_type, **kwargs))

    def add_frame_layer(self, **kwargs) -> OpResult:
        refused = self._refuse()
        return refused or self._record_added("Add frame", self.stack.add_frame_layer(**kwargs))

    def add_image_layer(self, buffer: PixelBuffer, name: str = "Image Layer") -> OpResult:
        refused = self._refuse()
        return refused or self._record_added("Add image", self.stack.add_image_layer(buffer, name))

    def duplicate_layer(self, layer_id: str) -> OpResult:
        refused = self._refuse()
        return refused or self._record_added("Duplicate layer", self.stack.duplicate(layer_id))

    def delete_layer(self, layer_id: str) -> OpResult:
        refused = self._refuse()
        if refused is not None:
            return refused
        layer = self.stack.find(layer_id)
        idx = self.stack.index_of(layer_id)
        prev = None if layer is None else layer.copy()
        if not self.stack.delete(layer_id):
            if layer is not None and layer.locked:
                return OpResult.fail(LayerLocked, "This layer is locked. Unlock it first.")
            return OpResult.fail(EditorError, "cannot delete this layer")
        self.history.record(LayerDiffEntry("Delete layer", layer_id, prev, None, idx))
        return OpResult.success()

    def merge_down(self, layer_id: str) -> OpResult:
        refused = self._refuse()
        if refused is not None:
            return refused
        if not self.stack.merge_down(layer_id):
            return OpResult.fail(EditorError, "cannot merge this layer down")
        self._record_snapshot("Merge down")
        return OpResult.success()

    def move_layer(self, layer_id: str, new_index: int) -> OpResult:
        refused = self._refuse()
        if refused is not None:
            return refused
        if not self.stack.move(layer_id, new_index):
            return OpResult.fail(EditorError, "layer not moved")
        self._record_snapshot("Move layer")
        return OpResult.success()

    def _layer_edit(self, action: str, layer_id: str, change: Callable[[], bool]) -> OpResult:
        refused = self._refuse()
        if refused is not None:
            return refused
        layer = self.stack.find(layer_id)
        if layer is None:
            return OpResult.fail(EditorError, "no such layer")
        idx = self.stack.index_of(layer_id)
        prev = layer.copy()
        if not change():
            if layer.locked:
                return OpResult.fail(LayerLocked, "This layer is locked. Unlock it first.")
            return OpResult.fail(EditorError, f"{action} rejected")
        new = self.stack.find(layer_id).copy()
        self.history.record(LayerDiffEntry(action, layer_id, prev, new, idx))
        return OpResult.success()

    def set_opacity(self, layer_id: str, opacity: float) -> OpResult:
        return self._layer_edit("Opacity", layer_id, lambda: self.stack.set_opacity(layer_id, opacity))

    def set_position(self, layer_id: str, x: int, y: int) -> OpResult:
        return self._layer_edit("Move", layer_id, lambda: self.stack.set_position(layer_id, x, y))

    def set_blend_mode(self, layer_id: str, mode: str) -> OpResult:
        return self._layer_edit("Blend mode", layer_id, lambda: self.stack.set_blend_mode(layer_id, mode))

    def toggle_visibility(self, layer_id: str) -> OpResult:
        return self._layer_edit("Visibility", layer_id, lambda: self.stack.toggle_visibility(layer_id))

    def toggle_lock(self, layer_id: str) -> OpResult:
        return self._layer_edit("Lock", layer_id, lambda: self.stack.toggle_lock(layer_id))

    # ---- text tool ----
    def begin_text(self, position: Optional[Tuple[int, int]] = None) -> bool:
        if self._refuse() is not None:
            return False
        pos = position if position is not None else (self.stack.width // 2 - 50, self.stack.height // 2)
        return self.text.begin_add(pos)

    def begin_text_edit(self, layer_id: str) -> bool:
        if self._refuse() is not None:
            return False
        layer = self.stack.find(layer_id)
        return layer is not None and self.text.begin_edit(layer)

    def commit_text(self) -> OpResult:
        if self.stack is None or not self.text.blocks_tools:
            return OpResult.fail(EditorError, "no text being edited")
        editing_id = self.text.layer_id
        prev_layer = self.stack.find(editing_id) if editing_id else None
        prev = None if prev_layer is None else prev_layer.copy()
        idx = self.stack.index_of(editing_id) if editing_id else -1

        layer = self.text.apply(self.stack)
        if layer is None:
            return OpResult.fail(EditorError, "text not applied")
        if prev is None:
            idx = self.stack.index_of(layer.id)
        self.history.record(LayerDiffEntry("Text", layer.id, prev, layer.copy(), idx))
        return OpResult.success(message=layer.id)

    def cancel_text(self) -> None:
        self.text.cancel()

    # ---- history ----
    def undo(self) -> bool:
        if self.busy or self.text.blocks_tools:
            return False
        return self.history.undo()

    def redo(self) -> bool:
        if self.busy or self.text.blocks_tools:
            return False
        return self.history.redo()

    def jump_to(self, index: int) -> bool:
        if self.busy or self.text.blocks_tools:
            return False
        return self.history.jump_to(index)

    def _record_snapshot(self, action: str) -> None:
        self.history.record(SnapshotEntry(action, self.flatten(), self.stack.snapshot()))

    def _reset_to_background(self, buffer: PixelBuffer) -> None:
        stack = LayerStack(buffer.width, buffer.height, self.config)
        stack.add_background(buffer)
        self.stack = stack

    def _restore_snapshot(self, entry: SnapshotEntry) -> None:
        if entry.layers is None:
            self._reset_to_background(entry.image)
        else:
            if self.stack is None:
                self.stack = LayerStack(entry.image.width, entry.image.height, self.config)
            self.stack.restore(entry.layers, entry.image.width, entry.image.height)

    def _restore_layer(self, entry: LayerDiffEntry, state: Optional[Layer]) -> None:
        if self.stack is None:
            return
        if state is None:
            self.stack.remove_layer(entry.layer_id)
        elif not self.stack.replace_layer(state):
            self.stack.insert_layer(state, entry.index)
