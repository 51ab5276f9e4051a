from __future__ import annotations
from typing import Optional, Callable, Tuple

from PySide6.QtCore import Qt, QPoint, QRectF
from PySide6.QtGui import QPainter, QImage, QPixmap, QColor, QPen
from PySide6.QtWidgets import QWidget


class CanvasWidget(QWidget):
    """
    Shows the composited document (QImage) with view zoom/pan.
    Supports:
      - wheel: view zoom
      - middle-drag: pan view
      - move tool: left-drag moves the active layer (on_move_layer(dx, dy) in canvas px)
      - crop tool: left-drag a rectangle, released as on_crop_rect(x, y, w, h)
      - text tool: click to place text (on_place_text(x, y))
    """
    def __init__(
        self,
        on_move_layer: Callable[[int, int], None],
        on_move_finish: Callable[[], None],
        on_crop_rect: Callable[[float, float, float, float], None],
        on_place_text: Callable[[int, int], None],
        on_escape: Optional[Callable[[], None]] = None,
        parent: Optional[QWidget] = None,
    ):
        super().__init__(parent)
        self.setMouseTracking(True)
        self.setFocusPolicy(Qt.StrongFocus)

        self._preview: Optional[QImage] = None
        self._out_size: Tuple[int, int] = (512, 512)

        # View transform
        self._view_zoom = 1.0
        self._view_pan_x = 0.0
        self._view_pan_y = 0.0

        # Interaction
        self.tool = "move"
        self._dragging_left = False
        self._dragging_mid = False
        self._last_pos = QPoint()
        self._move_accum = (0.0, 0.0)
        self._crop_start: Optional[Tuple[float, float]] = None
        self._crop_rect: Optional[Tuple[float, float, float, float]] = None

        self._on_move_layer = on_move_layer
        self._on_move_finish = on_move_finish
        self._on_crop_rect = on_crop_rect
        self._on_place_text = on_place_text
        self._on_escape = on_escape

    def set_preview(self, qimg: Optional[QImage], out_size: Tuple[int, int]) -> None:
        self._preview = qimg
        self._out_size = out_size
        self.update()

    def set_tool(self, tool: str) -> None:
        self.tool = tool
        self._crop_start = None
        self._crop_rect = None
        self.update()

    def reset_view(self) -> None:
        self._view_zoom = 1.0
        self._view_pan_x = 0.0
        self._view_pan_y = 0.0
        self.update()

    def _canvas_rect(self) -> QRectF:
        out_w, out_h = self._out_size
        cx = self.width() * 0.5 + self._view_pan_x
        cy = self.height() * 0.5 + self._view_pan_y
        draw_w = out_w * self._view_zoom
        draw_h = out_h * self._view_zoom
        return QRectF(cx - draw_w * 0.5, cy - draw_h * 0.5, draw_w, draw_h)

    def paintEvent(self, _) -> None:
        p = QPainter(self)
        p.fillRect(self.rect(), QColor(30, 30, 30))

        if self._preview is None:
            p.setPen(QPen(QColor(220, 220, 220)))
            p.drawText(self.rect(), Qt.AlignCenter, "Drop an image or File > Open...")
            return

        r = self._canvas_rect()
        pm = QPixmap.fromImage(self._preview)
        p.drawPixmap(int(r.left()), int(r.top()), int(r.width()), int(r.height()), pm)

        p.setPen(QPen(QColor(240, 240, 240), 1))
        p.drawRect(r)

        if self.tool == "crop" and self._crop_rect is not None:
            self._draw_crop_overlay(p, r)

        p.setPen(QPen(QColor(220, 220, 220)))
        msg = "Wheel: view zoom | Middle-drag: pan view"
        if self.tool == "crop":
            msg = "Crop: drag a rectangle | " + msg
        elif self.tool == "text":
            msg = "Text: click to place, Esc cancels | " + msg
        else:
            msg = "Move: drag the active layer | " + msg
        p.drawText(10, self.height() - 10, msg)

    def _draw_crop_overlay(self, p: QPainter, r: QRectF) -> None:
        out_w, out_h = self._out_size
        if out_w <= 0 or out_h <= 0:
            return
        x, y, w, h = self._crop_rect
        if w < 0:
            x, w = x + w, -w
        if h < 0:
            y, h = y + h, -h
        sx = r.width() / float(out_w)
        sy = r.height() / float(out_h)
        sel = QRectF(r.left() + x * sx, r.top() + y * sy, w * sx, h * sy)

        shade = QColor(0, 0, 0, 90)
        p.fillRect(QRectF(r.left(), r.top(), r.width(), max(0.0, sel.top() - r.top())), shade)
        p.fillRect(QRectF(r.left(), sel.bottom(), r.width(), max(0.0, r.bottom() - sel.bottom())), shade)
        p.fillRect(QRectF(r.left(), sel.top(), max(0.0, sel.left() - r.left()), sel.height()), shade)
        p.fillRect(QRectF(sel.right(), sel.top(), max(0.0, r.right() - sel.right()), sel.height()), shade)

        pen = QPen(QColor(255, 255, 255), 1)
        pen.setDashPattern([4, 4])
        p.setPen(pen)
        p.drawRect(sel)

    def _widget_to_canvas(self, pos: QPoint, clamp: bool = False) -> Optional[Tuple[float, float]]:
        """
        Convert widget coords to canvas pixel coords.
        Returns None outside the canvas unless ``clamp`` is set.
        """
        out_w, out_h = self._out_size
        r = self._canvas_rect()
        if r.width() <= 0 or r.height() <= 0:
            return None
        u = (pos.x() - r.left()) / r.width()
        v = (pos.y() - r.top()) / r.height()
        if not clamp and (u < 0 or v < 0 or u > 1 or v > 1):
            return None
        u = max(0.0, min(1.0, u))
        v = max(0.0, min(1.0, v))
        return (u * out_w, v * out_h)

    def wheelEvent(self, e) -> None:
        delta = e.angleDelta().y()
        if delta == 0:
            return
        factor = 1.1 if delta > 0 else (1.0 / 1.1)
        self._view_zoom = max(0.05, min(20.0, self._view_zoom * factor))
        self.update()
        e.accept()

    def mousePressEvent(self, e) -> None:
        self._last_pos = e.position().toPoint()

        if e.button() == Qt.LeftButton:
            if self._preview is None:
                return
            if self.tool == "text":
                xy = self._widget_to_canvas(self._last_pos)
                if xy is not None:
                    self._on_place_text(int(xy[0]), int(xy[1]))
                return
            if self.tool == "crop":
                xy = self._widget_to_canvas(self._last_pos)
                if xy is not None:
                    self._crop_start = xy
                    self._crop_rect = (xy[0], xy[1], 0.0, 0.0)
                return
            self._dragging_left = True
            self._move_accum = (0.0, 0.0)
        elif e.button() == Qt.MiddleButton:
            self._dragging_mid = True

    def mouseMoveEvent(self, e) -> None:
        pos = e.position().toPoint()
        dx = pos.x() - self._last_pos.x()
        dy = pos.y() - self._last_pos.y()
        self._last_pos = pos

        if self._crop_start is not None:
            xy = self._widget_to_canvas(pos, clamp=True)
            if xy is not None:
                sx, sy = self._crop_start
                self._crop_rect = (sx, sy, xy[0] - sx, xy[1] - sy)
                self.update()
        elif self._dragging_left:
            if self._view_zoom > 1e-6:
                ax = self._move_accum[0] + dx / self._view_zoom
                ay = self._move_accum[1] + dy / self._view_zoom
                # whole canvas pixels only
                step_x, step_y = int(ax), int(ay)
                if step_x or step_y:
                    self._on_move_layer(step_x, step_y)
                self._move_accum = (ax - step_x, ay - step_y)
        elif self._dragging_mid:
            self._view_pan_x += dx
            self._view_pan_y += dy
            self.update()

    def mouseReleaseEvent(self, e) -> None:
        if e.button() == Qt.LeftButton:
            if self._crop_start is not None:
                rect = self._crop_rect
                self._crop_start = None
                self._crop_rect = None
                self.update()
                if rect is not None:
                    self._on_crop_rect(*rect)
            if self._dragging_left:
                self._dragging_left = False
                self._on_move_finish()
        elif e.button() == Qt.MiddleButton:
            self._dragging_mid = False

    def keyPressEvent(self, e) -> None:
        if e.key() == Qt.Key_Escape and self._on_escape is not None:
            if self._crop_start is not None:
                self._crop_start = None
                self._crop_rect = None
                self.update()
            self._on_escape()
            e.accept()
            return
        super().keyPressEvent(e)
