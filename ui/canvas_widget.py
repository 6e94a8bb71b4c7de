from __future__ import annotations
from typing import Optional, Callable, Tuple

from PySide6.QtCore import Qt, QPoint, QRectF
from PySide6.QtGui import QPainter, QImage, QPixmap, QColor, QPen
from PySide6.QtWidgets import QWidget

from core.state import OUTPUT_SIZE

# Zoom percent added per wheel notch
WHEEL_ZOOM_STEP = 5


class CanvasWidget(QWidget):
    """
    Shows the 300x400 crop frame preview (QImage) with view zoom/pan.
    Supports:
      - left-drag: pan the source (calls on_pan(dx, dy) in frame px)
      - wheel: crop zoom about the cursor (calls on_zoom(delta, anchor))
      - ctrl+wheel: view zoom
      - middle-drag: pan view
      - dropping image files (calls on_files_dropped(paths))
    """
    def __init__(
        self,
        on_pan: Callable[[float, float], None],
        on_zoom: Callable[[int, Optional[Tuple[float, float]]], None],
        on_files_dropped: Optional[Callable[[list[str]], None]] = None,
        on_drag_finished: Optional[Callable[[], None]] = None,
        parent: Optional[QWidget] = None,
    ):
        super().__init__(parent)
        self.setMouseTracking(True)
        self.setFocusPolicy(Qt.StrongFocus)
        self.setMinimumSize(320, 420)

        self._preview: Optional[QImage] = None
        self._out_size: Tuple[int, int] = OUTPUT_SIZE

        # View transform
        self._view_zoom = 1.0
        self._view_pan_x = 0.0
        self._view_pan_y = 0.0

        # Interaction
        self._dragging_left = False
        self._dragging_mid = False
        self._last_pos = QPoint()

        self._on_pan = on_pan
        self._on_zoom = on_zoom
        self._on_files_dropped = on_files_dropped
        self._on_drag_finished = on_drag_finished

        self.setAcceptDrops(True)

    def set_preview(self, qimg: Optional[QImage], out_size: Tuple[int, int] = OUTPUT_SIZE) -> None:
        self._preview = qimg
        self._out_size = out_size
        self.update()

    def reset_view(self) -> None:
        self._view_zoom = 1.0
        self._view_pan_x = 0.0
        self._view_pan_y = 0.0
        self.update()

    def _frame_rect(self) -> QRectF:
        out_w, out_h = self._out_size
        cx = self.width() * 0.5 + self._view_pan_x
        cy = self.height() * 0.5 + self._view_pan_y
        draw_w = out_w * self._view_zoom
        draw_h = out_h * self._view_zoom
        return QRectF(cx - draw_w * 0.5, cy - draw_h * 0.5, draw_w, draw_h)

    def paintEvent(self, _) -> None:
        p = QPainter(self)
        p.setRenderHint(QPainter.Antialiasing, True)

        p.fillRect(self.rect(), QColor(30, 30, 30))

        if self._preview is None:
            p.setPen(QPen(QColor(220, 220, 220)))
            p.drawText(self.rect(), Qt.AlignCenter, "Drop portraits here or File > Add Images...")
            return

        r = self._frame_rect()
        pm = QPixmap.fromImage(self._preview)
        p.drawPixmap(int(r.left()), int(r.top()), int(r.width()), int(r.height()), pm)

        # Frame border
        p.setPen(QPen(QColor(240, 240, 240), 1))
        p.drawRect(r)

        # Rule-of-thirds guides
        p.setPen(QPen(QColor(255, 255, 255, 60), 1))
        for i in (1, 2):
            x = r.left() + r.width() * i / 3.0
            y = r.top() + r.height() * i / 3.0
            p.drawLine(int(x), int(r.top()), int(x), int(r.bottom()))
            p.drawLine(int(r.left()), int(y), int(r.right()), int(y))

        p.setPen(QPen(QColor(220, 220, 220)))
        msg = "Left-drag: pan | Wheel: zoom crop | Ctrl+Wheel: view zoom | Middle-drag: pan view"
        p.drawText(10, self.height() - 10, msg)

    def _widget_to_frame_xy(self, pos: QPoint) -> Optional[Tuple[float, float]]:
        """
        Convert widget coords to crop-frame coords.
        Returns None if outside the frame.
        """
        r = self._frame_rect()
        if r.width() <= 0 or r.height() <= 0 or not r.contains(pos.x(), pos.y()):
            return None
        out_w, out_h = self._out_size
        u = (pos.x() - r.left()) / r.width()
        v = (pos.y() - r.top()) / r.height()
        return (u * out_w, v * out_h)

    def wheelEvent(self, e) -> None:
        delta = e.angleDelta().y()
        if delta == 0:
            return

        if e.modifiers() & Qt.ControlModifier:
            # View zoom
            factor = 1.1 if delta > 0 else (1.0 / 1.1)
            self._view_zoom = max(0.25, min(8.0, self._view_zoom * factor))
            self.update()
            e.accept()
            return

        step = WHEEL_ZOOM_STEP if delta > 0 else -WHEEL_ZOOM_STEP
        anchor = self._widget_to_frame_xy(e.position().toPoint())
        self._on_zoom(step, anchor)
        e.accept()

    def mousePressEvent(self, e) -> None:
        self._last_pos = e.position().toPoint()
        if e.button() == Qt.LeftButton:
            self._dragging_left = True
        elif e.button() == Qt.MiddleButton:
            self._dragging_mid = True

    def mouseMoveEvent(self, e) -> None:
        pos = e.position().toPoint()
        dx = pos.x() - self._last_pos.x()
        dy = pos.y() - self._last_pos.y()
        self._last_pos = pos

        if self._dragging_left:
            # Widget pixels -> frame pixels
            if self._view_zoom > 1e-6:
                self._on_pan(dx / self._view_zoom, dy / self._view_zoom)
        elif self._dragging_mid:
            self._view_pan_x += dx
            self._view_pan_y += dy
            self.update()

    def mouseReleaseEvent(self, e) -> None:
        if e.button() == Qt.LeftButton:
            if self._dragging_left and self._on_drag_finished is not None:
                self._on_drag_finished()
            self._dragging_left = False
        elif e.button() == Qt.MiddleButton:
            self._dragging_mid = False

    def dragEnterEvent(self, e) -> None:
        if e.mimeData().hasUrls():
            e.acceptProposedAction()

    def dropEvent(self, e) -> None:
        paths = [u.toLocalFile() for u in e.mimeData().urls() if u.toLocalFile()]
        if paths and self._on_files_dropped is not None:
            self._on_files_dropped(paths)
