from __future__ import annotations
import logging
from pathlib import Path
from typing import Optional
from PIL import Image

from PySide6.QtCore import Qt, QTimer
from PySide6.QtGui import QAction, QActionGroup, QImage, QKeySequence, QIcon
from PySide6.QtWidgets import (
    QMainWindow, QWidget, QFileDialog, QVBoxLayout, QMessageBox, QDockWidget, QInputDialog,
    QListWidget, QListWidgetItem, QPushButton, QHBoxLayout
)

from engine.ai_heuristics import AIVendor
from engine.batch import batch_apply_filter
from engine.catalog import categories, filter_names
from engine.config import EngineConfig
from engine.errors import Busy, LayerLocked, OpResult
from engine.io import EXTENSIONS, load_buffer
from engine.session import EditorSession
from engine.state import BLEND_MODES, SHAPE_TYPES
from ui.canvas_widget import CanvasWidget

logger = logging.getLogger(__name__)

# (param, label, default, min, max, decimals); decimals 0 asks for an int
FILTER_PARAMS: dict[str, list[tuple[str, str, float, float, float, int]]] = {
    "Brightness": [("value", "Brightness %", 20, -100, 100, 0)],
    "Contrast": [("value", "Contrast", 30, -255, 255, 0)],
    "Saturation": [("value", "Saturation %", 150, 0, 300, 0)],
    "Highlights": [("amount", "Highlights", 30, -100, 100, 0)],
    "Shadows": [("amount", "Shadows", 30, -100, 100, 0)],
    "Vignette": [("intensity", "Intensity", -50, -100, 100, 0)],
    "Tone Curve": [
        ("highlights_shift", "Highlights shift", 0, -64, 63, 0),
        ("shadows_shift", "Shadows shift", 0, -64, 64, 0),
    ],
    "Gamma Correction": [("gamma", "Gamma", 1.5, 0.1, 5.0, 2)],
    "Global Threshold": [("threshold", "Threshold", 128, 0, 255, 0)],
    "Gaussian Blur": [("radius", "Radius", 2, 0, 50, 0)],
    "Sharpen": [("amount", "Amount", 1.0, 0.0, 5.0, 2)],
    "Mean Smoothing": [("kernel_size", "Kernel size (odd)", 3, 3, 31, 0)],
    "Gaussian Smoothing": [("kernel_size", "Kernel size (odd)", 3, 3, 31, 0)],
    "Median Smoothing": [("kernel_size", "Kernel size (odd)", 3, 3, 31, 0)],
    "Erosion": [("kernel_size", "Kernel size (odd)", 3, 3, 31, 0)],
    "Dilation": [("kernel_size", "Kernel size (odd)", 3, 3, 31, 0)],
    "Opening": [("kernel_size", "Kernel size (odd)", 3, 3, 31, 0)],
    "Closing": [("kernel_size", "Kernel size (odd)", 3, 3, 31, 0)],
    "Morphological Gradient": [("kernel_size", "Kernel size (odd)", 3, 3, 31, 0)],
    "Top Hat": [("kernel_size", "Kernel size (odd)", 3, 3, 31, 0)],
    "Black Hat": [("kernel_size", "Kernel size (odd)", 3, 3, 31, 0)],
    "Ideal Low-Pass": [("cutoff", "Cutoff", 30, 1, 1000, 1)],
    "Ideal High-Pass": [("cutoff", "Cutoff", 30, 1, 1000, 1)],
    "Gaussian Low-Pass": [("cutoff", "Cutoff", 30, 1, 1000, 1)],
    "Gaussian High-Pass": [("cutoff", "Cutoff", 30, 1, 1000, 1)],
    "Butterworth Low-Pass": [("cutoff", "Cutoff", 30, 1, 1000, 1), ("order", "Order", 2, 1, 10, 0)],
    "Butterworth High-Pass": [("cutoff", "Cutoff", 30, 1, 1000, 1), ("order", "Order", 2, 1, 10, 0)],
}

AI_TOOLS = [
    ("Remove Background", "remove_background"),
    ("Remove Objects", "remove_objects"),
    ("Enhance Resolution", "enhance_resolution"),
    ("Auto Color Correct", "auto_color_correct"),
]

CATEGORY_TITLES = {
    "basic": "Basic",
    "adjust": "Adjust",
    "spatial": "Spatial",
    "morphology": "Morphology",
    "segmentation": "Segmentation",
    "frequency": "Frequency Domain",
}


def pil_rgba_to_qimage(img: Image.Image) -> QImage:
    img = img.convert("RGBA")
    w, h = img.size
    data = img.tobytes("raw", "RGBA")
    qimg = QImage(data, w, h, QImage.Format_RGBA8888)
    # Important: keep a copy because Python-owned bytes may be freed
    return qimg.copy()


class MainWindow(QMainWindow):
    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        vendor: Optional[AIVendor] = None,
        logo_path: Optional[Path] = None,
    ):
        super().__init__()
        self._logo_path = logo_path or Path(__file__).resolve().parent.parent / "assets" / "Logo.png"
        if self._logo_path.exists():
            self.setWindowIcon(QIcon(str(self._logo_path)))
        self.setWindowTitle("Lumen Canvas")

        self.config = config or EngineConfig()
        self.session = EditorSession(self.config, vendor, scheduler=self._schedule)
        self._project_path: Optional[str] = None
        self._show_grid = True
        self._drag_delta = (0, 0)
        self._syncing_lists = False

        self._act_undo: Optional[QAction] = None
        self._act_redo: Optional[QAction] = None

        # Central
        self.canvas = CanvasWidget(
            on_move_layer=self._drag_layer,
            on_move_finish=self._finish_layer_drag,
            on_crop_rect=self._crop_rect,
            on_place_text=self._place_text,
            on_escape=self._cancel_tools,
        )
        self.canvas.setAcceptDrops(True)

        central = QWidget()
        lay = QVBoxLayout()
        lay.addWidget(self.canvas)
        central.setLayout(lay)
        self.setCentralWidget(central)

        self._build_menu()
        self._build_layers_dock()
        self._build_history_dock()

        self.setAcceptDrops(True)
        self.resize(1200, 800)
        self._rerender()

    # ---------------------------
    # Menu / Actions
    # ---------------------------
    def _action(self, title: str, slot, shortcut=None) -> QAction:
        act = QAction(title, self)
        if shortcut is not None:
            act.setShortcut(shortcut)
        act.triggered.connect(slot)
        return act

    def _build_menu(self) -> None:
        mfile = self.menuBar().addMenu("File")
        mfile.addAction(self._action("Open...", self.open_file, QKeySequence.StandardKey.Open))
        mfile.addAction(self._action("Open Project...", self.open_project))
        mfile.addAction(self._action("Export As...", self.export_as, QKeySequence.StandardKey.SaveAs))
        mfile.addAction(self._action("Save Project As...", self.save_project_as))
        mfile.addAction(self._action("Batch Filter...", self.batch_filter))
        mfile.addSeparator()
        mfile.addAction(self._action("Quit", self.close, QKeySequence.StandardKey.Quit))

        self._act_undo = self._action("Undo", self._undo, QKeySequence.StandardKey.Undo)
        self._act_redo = self._action("Redo", self._redo, QKeySequence.StandardKey.Redo)
        medit = self.menuBar().addMenu("Edit")
        medit.addAction(self._act_undo)
        medit.addAction(self._act_redo)

        mtools = self.menuBar().addMenu("Tools")
        group = QActionGroup(self)
        for title, tool, key in (("Move", "move", "V"), ("Crop", "crop", "R"), ("Text", "text", "T")):
            act = QAction(title, self, checkable=True)
            act.setShortcut(key)
            act.setChecked(tool == "move")
            act.triggered.connect(lambda _=False, t=tool: self.canvas.set_tool(t))
            group.addAction(act)
            mtools.addAction(act)

        mimage = self.menuBar().addMenu("Image")
        mimage.addAction(self._action("Resize...", self._resize_image))
        mimage.addAction(self._action("Rotate 90 CW", lambda: self._on_result(self.session.rotate(90), "Rotate")))
        mimage.addAction(self._action("Rotate 90 CCW", lambda: self._on_result(self.session.rotate(-90), "Rotate")))
        mimage.addAction(self._action("Rotate 180", lambda: self._on_result(self.session.rotate(180), "Rotate")))
        mimage.addAction(self._action("Rotate...", self._rotate_image))
        mimage.addSeparator()
        mimage.addAction(self._action("Flip Horizontal", lambda: self._on_result(self.session.flip_horizontal(), "Flip")))
        mimage.addAction(self._action("Flip Vertical", lambda: self._on_result(self.session.flip_vertical(), "Flip")))

        mfilters = self.menuBar().addMenu("Filters")
        for category in categories():
            sub = mfilters.addMenu(CATEGORY_TITLES.get(category, category.title()))
            for name in filter_names(category):
                sub.addAction(self._action(name, lambda _=False, n=name: self._apply_filter(n)))

        mai = self.menuBar().addMenu("AI")
        for title, kind in AI_TOOLS:
            mai.addAction(self._action(title, lambda _=False, k=kind: self._run_ai(k)))

        mlayer = self.menuBar().addMenu("Layer")
        mlayer.addAction(self._action("New Layer", lambda: self._on_result(self.session.add_layer(), "New layer")))
        mshape = mlayer.addMenu("New Shape")
        for shape in SHAPE_TYPES:
            mshape.addAction(
                self._action(shape.title(), lambda _=False, s=shape: self._on_result(self.session.add_shape_layer(s), "Shape"))
            )
        mlayer.addAction(self._action("New Frame", lambda: self._on_result(self.session.add_frame_layer(), "Frame")))
        mlayer.addAction(self._action("New Image Layer...", self._add_image_layer))
        mlayer.addSeparator()
        mlayer.addAction(self._action("Duplicate", lambda: self._with_active(self.session.duplicate_layer, "Duplicate")))
        mlayer.addAction(self._action("Delete", lambda: self._with_active(self.session.delete_layer, "Delete")))
        mlayer.addAction(self._action("Merge Down", lambda: self._with_active(self.session.merge_down, "Merge down")))
        mlayer.addAction(self._action("Move Up", lambda: self._shift_active(1)))
        mlayer.addAction(self._action("Move Down", lambda: self._shift_active(-1)))
        mlayer.addSeparator()
        mlayer.addAction(self._action("Toggle Visibility", lambda: self._with_active(self.session.toggle_visibility, "Visibility")))
        mlayer.addAction(self._action("Toggle Lock", lambda: self._with_active(self.session.toggle_lock, "Lock")))
        mlayer.addAction(self._action("Opacity...", self._set_opacity))
        mblend = mlayer.addMenu("Blend Mode")
        for mode in BLEND_MODES:
            mblend.addAction(self._action(mode.title(), lambda _=False, m=mode: self._set_blend_mode(m)))
        mlayer.addAction(self._action("Edit Text...", self._edit_text))

        grid_act = QAction("Transparency Grid", self, checkable=True)
        grid_act.setChecked(self._show_grid)
        grid_act.toggled.connect(self._on_grid_toggled)
        mview = self.menuBar().addMenu("View")
        mview.addAction(self._action("Reset View", self.canvas.reset_view))
        mview.addAction(grid_act)

    # ---------------------------
    # Docks
    # ---------------------------
    def _build_layers_dock(self) -> None:
        dock = QDockWidget("Layers", self)
        dock.setAllowedAreas(Qt.LeftDockWidgetArea | Qt.RightDockWidgetArea)
        root = QWidget()
        v = QVBoxLayout(root)

        self.layer_list = QListWidget()
        self.layer_list.currentRowChanged.connect(self._on_layer_row_changed)
        self.layer_list.itemDoubleClicked.connect(lambda *_: self._edit_text())
        v.addWidget(self.layer_list, 1)

        row = QHBoxLayout()
        for title, slot in (
            ("Eye", lambda: self._with_active(self.session.toggle_visibility, "Visibility")),
            ("Lock", lambda: self._with_active(self.session.toggle_lock, "Lock")),
            ("Up", lambda: self._shift_active(1)),
            ("Down", lambda: self._shift_active(-1)),
        ):
            btn = QPushButton(title)
            btn.clicked.connect(slot)
            row.addWidget(btn)
        v.addLayout(row)

        dock.setWidget(root)
        self.addDockWidget(Qt.RightDockWidgetArea, dock)

    def _build_history_dock(self) -> None:
        dock = QDockWidget("History", self)
        dock.setAllowedAreas(Qt.LeftDockWidgetArea | Qt.RightDockWidgetArea)
        self.history_list = QListWidget()
        self.history_list.itemClicked.connect(self._on_history_clicked)
        dock.setWidget(self.history_list)
        self.addDockWidget(Qt.RightDockWidgetArea, dock)

    # ---------------------------
    # File IO
    # ---------------------------
    def open_file(self) -> None:
        path, _ = QFileDialog.getOpenFileName(
            self, "Open Image", "", "Images (*.png *.jpg *.jpeg *.bmp *.webp *.tif *.tiff)"
        )
        if not path:
            return
        self._load_path(path)

    def _load_path(self, path: str) -> None:
        try:
            data = Path(path).read_bytes()
            result = self.session.open_image(data)
        except Exception as e:
            QMessageBox.critical(self, "Open failed", str(e))
            return
        self._project_path = None
        self.canvas.reset_view()
        self._on_result(result, "Open")

    def export_as(self) -> None:
        if not self.session.has_document:
            QMessageBox.information(self, "Nothing to export", "Load an image first.")
            return

        path, _ = QFileDialog.getSaveFileName(
            self, "Export As", "", "PNG (*.png);;JPG (*.jpg *.jpeg);;BMP (*.bmp);;WEBP (*.webp);;TIFF (*.tif *.tiff)"
        )
        if not path:
            return
        ext = Path(path).suffix.lower().lstrip(".")
        if not ext:
            ext = "png"
            path += EXTENSIONS["png"]
        try:
            data = self.session.export(ext)
            Path(path).write_bytes(data)
        except Exception as e:
            QMessageBox.critical(self, "Export failed", str(e))
            return
        self.statusBar().showMessage(f"Exported {Path(path).name}", 3000)

    def open_project(self) -> None:
        path, _ = QFileDialog.getOpenFileName(
            self, "Open Project", "", "Lumen Project (*.lumen);;JSON (*.json)"
        )
        if not path:
            return
        try:
            result = self.session.open_project(path)
        except Exception as e:
            QMessageBox.critical(self, "Open project failed", str(e))
            return
        self._project_path = path
        self._on_result(result, "Open project")

    def save_project_as(self) -> None:
        if not self.session.has_document:
            QMessageBox.information(self, "Nothing to save", "Load an image first.")
            return
        path, _ = QFileDialog.getSaveFileName(
            self, "Save Project As", "", "Lumen Project (*.lumen);;JSON (*.json)"
        )
        if not path:
            return
        if not (path.lower().endswith(".lumen") or path.lower().endswith(".json")):
            path += ".lumen"
        try:
            self.session.save_project(path)
        except Exception as e:
            QMessageBox.critical(self, "Save project failed", str(e))
            return
        self._project_path = path

    def batch_filter(self) -> None:
        name, ok = QInputDialog.getItem(self, "Batch Filter", "Filter", filter_names(), 0, False)
        if not ok:
            return
        params = self._ask_params(name)
        if params is None:
            return
        in_dir = QFileDialog.getExistingDirectory(self, "Input Folder")
        if not in_dir:
            return
        out_dir = QFileDialog.getExistingDirectory(self, "Output Folder")
        if not out_dir:
            return
        try:
            count = batch_apply_filter(in_dir, out_dir, name, **params)
        except Exception as e:
            QMessageBox.critical(self, "Batch failed", str(e))
            return
        QMessageBox.information(self, "Batch Filter", f"Processed {count} image(s).")

    # ---------------------------
    # Drag & drop support
    # ---------------------------
    def dragEnterEvent(self, e) -> None:
        if e.mimeData().hasUrls():
            e.acceptProposedAction()

    def dropEvent(self, e) -> None:
        urls = e.mimeData().urls()
        if not urls:
            return
        path = urls[0].toLocalFile()
        if path:
            self._load_path(path)

    # ---------------------------
    # Operations
    # ---------------------------
    def _schedule(self, job) -> None:
        # Give the status bar a chance to paint before the heavy work starts
        self.statusBar().showMessage(f"Processing {self.session.busy_label}...")
        QTimer.singleShot(self.config.heavy_op_delay_ms, job)

    def _on_result(self, result: OpResult, title: str) -> None:
        if not result.ok:
            logger.info("%s failed: %s", title, result.message)
            if result.error is LayerLocked:
                QMessageBox.information(self, title, result.message)
            elif result.inconclusive:
                QMessageBox.information(self, title, f"Nothing to do: {result.message}")
            elif result.error is Busy:
                self.statusBar().showMessage(result.message, 3000)
            else:
                QMessageBox.warning(self, title, result.message or f"{title} failed")
        self._rerender()

    def _ask_params(self, name: str) -> Optional[dict]:
        params = {}
        for key, label, default, lo, hi, decimals in FILTER_PARAMS.get(name, []):
            if decimals == 0:
                value, ok = QInputDialog.getInt(self, name, label, int(default), int(lo), int(hi))
            else:
                value, ok = QInputDialog.getDouble(self, name, label, float(default), float(lo), float(hi), decimals)
            if not ok:
                return None
            params[key] = value
        return params

    def _apply_filter(self, name: str) -> None:
        if not self.session.has_document:
            return
        params = self._ask_params(name)
        if params is None:
            return
        try:
            result = self.session.apply_filter(name, on_done=lambda r: self._on_result(r, name), **params)
        except ValueError as e:
            QMessageBox.warning(self, name, str(e))
            return
        if result.message == "scheduled":
            self._rerender()
        else:
            self._on_result(result, name)

    def _run_ai(self, kind: str) -> None:
        if not self.session.has_document:
            return
        title = kind.replace("_", " ").title()
        result = self.session.run_ai(kind, on_done=lambda r: self._on_result(r, title))
        if result.message == "scheduled":
            self._rerender()
        else:
            self._on_result(result, title)

    def _resize_image(self) -> None:
        if not self.session.has_document:
            return
        meta = self.session.metadata()
        w, ok = QInputDialog.getInt(self, "Resize", "Width", meta["width"], 1, 16384)
        if not ok:
            return
        h, ok = QInputDialog.getInt(self, "Resize", "Height", meta["height"], 1, 16384)
        if not ok:
            return
        self._on_result(self.session.resize(w, h), "Resize")

    def _rotate_image(self) -> None:
        if not self.session.has_document:
            return
        angle, ok = QInputDialog.getDouble(self, "Rotate", "Angle (clockwise)", 45.0, -360.0, 360.0, 1)
        if ok:
            self._on_result(self.session.rotate(angle), "Rotate")

    def _crop_rect(self, x: float, y: float, w: float, h: float) -> None:
        if self.session.has_document and (w or h):
            self._on_result(self.session.crop(x, y, w, h), "Crop")

    # ---------------------------
    # Layers
    # ---------------------------
    def _active_id(self) -> Optional[str]:
        if not self.session.has_document:
            return None
        layer = self.session.stack.active_layer()
        return None if layer is None else layer.id

    def _with_active(self, op, title: str) -> None:
        layer_id = self._active_id()
        if layer_id is not None:
            self._on_result(op(layer_id), title)

    def _shift_active(self, step: int) -> None:
        layer_id = self._active_id()
        if layer_id is None:
            return
        idx = self.session.stack.index_of(layer_id)
        self._on_result(self.session.move_layer(layer_id, idx + step), "Move layer")

    def _set_opacity(self) -> None:
        layer_id = self._active_id()
        if layer_id is None:
            return
        current = self.session.stack.find(layer_id).opacity
        value, ok = QInputDialog.getInt(self, "Opacity", "Opacity %", current, 0, 100)
        if ok:
            self._on_result(self.session.set_opacity(layer_id, value), "Opacity")

    def _set_blend_mode(self, mode: str) -> None:
        layer_id = self._active_id()
        if layer_id is not None:
            self._on_result(self.session.set_blend_mode(layer_id, mode), "Blend mode")

    def _add_image_layer(self) -> None:
        if not self.session.has_document:
            return
        path, _ = QFileDialog.getOpenFileName(
            self, "Add Image Layer", "", "Images (*.png *.jpg *.jpeg *.bmp *.webp *.tif *.tiff)"
        )
        if not path:
            return
        try:
            buf = load_buffer(path)
        except Exception as e:
            QMessageBox.critical(self, "Open failed", str(e))
            return
        self._on_result(self.session.add_image_layer(buf, Path(path).stem), "Image layer")

    def _drag_layer(self, dx: int, dy: int) -> None:
        if self._active_id() is None:
            return
        self._drag_delta = (self._drag_delta[0] + dx, self._drag_delta[1] + dy)
        self.statusBar().showMessage(f"Move by ({self._drag_delta[0]}, {self._drag_delta[1]})")

    def _finish_layer_drag(self) -> None:
        dx, dy = self._drag_delta
        self._drag_delta = (0, 0)
        layer_id = self._active_id()
        if layer_id is None or (dx == 0 and dy == 0):
            return
        x, y = self.session.stack.find(layer_id).position
        self._on_result(self.session.set_position(layer_id, x + dx, y + dy), "Move")

    def _on_layer_row_changed(self, row: int) -> None:
        if self._syncing_lists or row < 0 or not self.session.has_document:
            return
        layers = self.session.stack.layers
        # list shows the top layer first
        idx = len(layers) - 1 - row
        if 0 <= idx < len(layers):
            self.session.stack.set_active(layers[idx].id)
            self._update_status()

    def _on_history_clicked(self, item: QListWidgetItem) -> None:
        if self.session.jump_to(self.history_list.row(item)):
            self._rerender()

    # ---------------------------
    # Text tool
    # ---------------------------
    def _place_text(self, x: int, y: int) -> None:
        if not self.session.begin_text((x, y)):
            return
        self._prompt_text("Add Text")

    def _edit_text(self) -> None:
        layer_id = self._active_id()
        if layer_id is None or not self.session.begin_text_edit(layer_id):
            return
        self._prompt_text("Edit Text")

    def _prompt_text(self, title: str) -> None:
        text, ok = QInputDialog.getText(self, title, "Text", text=self.session.text.draft)
        if not ok:
            self.session.cancel_text()
            self._rerender()
            return
        self.session.text.update(text)
        self._on_result(self.session.commit_text(), title)

    def _cancel_tools(self) -> None:
        self.session.text.handle_key("Escape")
        self._rerender()

    # ---------------------------
    # History
    # ---------------------------
    def _undo(self) -> None:
        if self.session.undo():
            self._rerender()

    def _redo(self) -> None:
        if self.session.redo():
            self._rerender()

    def _update_undo_redo_actions(self) -> None:
        free = not self.session.busy and not self.session.text.blocks_tools
        if self._act_undo is not None:
            self._act_undo.setEnabled(free and self.session.history.can_undo)
        if self._act_redo is not None:
            self._act_redo.setEnabled(free and self.session.history.can_redo)

    def _on_grid_toggled(self, on: bool) -> None:
        self._show_grid = bool(on)
        self._rerender()

    # ---------------------------
    # Rendering
    # ---------------------------
    def _sync_lists(self) -> None:
        self._syncing_lists = True
        self.layer_list.clear()
        self.history_list.clear()
        if self.session.has_document:
            active = self._active_id()
            for layer in reversed(self.session.stack.layers):
                flags = ("" if layer.visible else " [hidden]") + (" [locked]" if layer.locked else "")
                item = QListWidgetItem(f"{layer.name}{flags}")
                self.layer_list.addItem(item)
                if layer.id == active:
                    self.layer_list.setCurrentItem(item)
            for i, label in enumerate(self.session.history.labels()):
                self.history_list.addItem(QListWidgetItem(label))
                if i == self.session.history.index:
                    self.history_list.setCurrentRow(i)
        self._syncing_lists = False

    def _update_status(self) -> None:
        meta = self.session.metadata()
        if self.session.busy:
            self.statusBar().showMessage(f"Processing {self.session.busy_label}...")
            return
        if not self.session.has_document:
            self.statusBar().showMessage("No image")
            return
        msg = (
            f"Canvas: {meta['width']}x{meta['height']} | Layers: {meta['layer_count']} | "
            f"Active: {meta.get('active_layer') or '-'} | History: {meta['history_length']}"
        )
        self.statusBar().showMessage(msg)

    def _rerender(self) -> None:
        if self.session.has_document:
            buf = self.session.render(transparency_grid=self._show_grid)
            self.canvas.set_preview(pil_rgba_to_qimage(buf.to_pil()), buf.size)
        else:
            self.canvas.set_preview(None, (512, 512))
        self._sync_lists()
        self._update_undo_redo_actions()
        self._update_status()
