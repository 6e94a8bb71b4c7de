from __future__ import annotations
from concurrent.futures import Future
from pathlib import Path
from typing import Optional
import numpy as np
from PIL import Image

from PySide6.QtCore import Qt, QTimer
from PySide6.QtGui import QAction, QImage, QKeySequence, QIcon, QPixmap
from PySide6.QtWidgets import (
    QMainWindow, QWidget, QFileDialog, QVBoxLayout, QHBoxLayout, QLabel, QLineEdit,
    QSpinBox, QSlider, QCheckBox, QPushButton, QMessageBox, QDockWidget, QGroupBox, QScrollArea
)

from core.batch import batch_crop_folder, bundle_zip, export_records
from core.compositor import np_rgba_to_pil, render_preview
from core.config import EngineConfig
from core.errors import CropEngineError
from core.io import save_image
from core.logger import get_logger
from core.session import CropSession
from core.session_io import load_session, save_session
from core.state import OUTPUT_SIZE, ZOOM_MAX, ZOOM_MIN, CropResult, EditRecord
from ui.canvas_widget import CanvasWidget
from ui.gallery_widget import GalleryWidget

_logger = get_logger("ui")


def pil_rgba_to_qimage(img: Image.Image) -> QImage:
    img = img.convert("RGBA")
    w, h = img.size
    data = img.tobytes("raw", "RGBA")
    qimg = QImage(data, w, h, QImage.Format_RGBA8888)
    # Important: keep a copy because Python-owned bytes may be freed
    return qimg.copy()


def np_rgba_to_qimage(arr: np.ndarray) -> QImage:
    return pil_rgba_to_qimage(np_rgba_to_pil(arr))


class MainWindow(QMainWindow):
    def __init__(self, config: Optional[EngineConfig] = None, logo_path: Optional[Path] = None):
        super().__init__()
        self._logo_path = logo_path or Path(__file__).resolve().parent.parent / "assets" / "Logo.png"
        if self._logo_path.exists():
            self.setWindowIcon(QIcon(str(self._logo_path)))
        self.setWindowTitle("Portrait Crop")

        self.config = config or EngineConfig()
        self.session = CropSession(self.config)
        self._current_id: Optional[str] = None
        self._session_path: Optional[str] = None
        self._pending: list[tuple[str, Future]] = []

        # Finished background commits are picked up on the GUI thread
        self._poll_timer = QTimer(self)
        self._poll_timer.setInterval(50)
        self._poll_timer.timeout.connect(self._poll_commits)

        # Central
        self.canvas = CanvasWidget(
            on_pan=self._pan,
            on_zoom=self._zoom,
            on_files_dropped=self.add_paths,
            on_drag_finished=self._refresh_gallery,
        )

        central = QWidget()
        lay = QVBoxLayout()
        lay.addWidget(self.canvas)
        central.setLayout(lay)
        self.setCentralWidget(central)

        self._build_menu()
        self._build_gallery_dock()
        self._build_controls_dock()

        self.setAcceptDrops(True)
        self.resize(1200, 800)
        self._refresh_all()

    # ---------------------------
    # Menu / Actions
    # ---------------------------
    def _build_menu(self) -> None:
        add_act = QAction("Add Images...", self)
        add_act.setShortcut(QKeySequence.StandardKey.Open)
        add_act.triggered.connect(self.add_images)

        open_session_act = QAction("Open Session...", self)
        open_session_act.triggered.connect(self.open_session)

        save_session_act = QAction("Save Session As...", self)
        save_session_act.setShortcut(QKeySequence.StandardKey.SaveAs)
        save_session_act.triggered.connect(self.save_session_as)

        save_crop_act = QAction("Save Crop As...", self)
        save_crop_act.triggered.connect(self.save_crop_as)

        export_act = QAction("Export Accepted...", self)
        export_act.setShortcut("Ctrl+E")
        export_act.triggered.connect(self.export_folder)

        zip_act = QAction("Download Zip...", self)
        zip_act.triggered.connect(self.export_zip)

        batch_act = QAction("Batch Crop Folder...", self)
        batch_act.triggered.connect(self.batch_folder)

        reset_view = QAction("Reset View", self)
        reset_view.triggered.connect(self.canvas.reset_view)

        quit_act = QAction("Quit", self)
        quit_act.setShortcut(QKeySequence.StandardKey.Quit)
        quit_act.triggered.connect(self.close)

        mfile = self.menuBar().addMenu("File")
        mfile.addAction(add_act)
        mfile.addAction(open_session_act)
        mfile.addAction(save_session_act)
        mfile.addSeparator()
        mfile.addAction(save_crop_act)
        mfile.addAction(export_act)
        mfile.addAction(zip_act)
        mfile.addAction(batch_act)
        mfile.addSeparator()
        mfile.addAction(quit_act)

        mview = self.menuBar().addMenu("View")
        mview.addAction(reset_view)

    # ---------------------------
    # Docks
    # ---------------------------
    def _build_gallery_dock(self) -> None:
        dock = QDockWidget("Images", self)
        dock.setAllowedAreas(Qt.LeftDockWidgetArea | Qt.RightDockWidgetArea)
        self.gallery = GalleryWidget(
            on_selected=self._select_record,
            on_accept_toggled=self._set_accepted,
            on_remove_request=self._remove_record,
        )
        dock.setWidget(self.gallery)
        self.addDockWidget(Qt.LeftDockWidgetArea, dock)

    def _build_controls_dock(self) -> None:
        dock = QDockWidget("Controls", self)
        dock.setAllowedAreas(Qt.LeftDockWidgetArea | Qt.RightDockWidgetArea)

        scroll = QScrollArea()
        scroll.setWidgetResizable(True)
        panel = QWidget()
        v = QVBoxLayout(panel)

        if self._logo_path.exists():
            logo_label = QLabel()
            logo_label.setAlignment(Qt.AlignCenter)
            logo_pm = QPixmap(str(self._logo_path))
            if not logo_pm.isNull():
                logo_label.setPixmap(logo_pm.scaled(180, 64, Qt.KeepAspectRatio, Qt.SmoothTransformation))
                v.addWidget(logo_label)

        g_frame, gl_frame = self._make_group("Framing")
        zoom_row = QHBoxLayout()
        zoom_row.addWidget(QLabel("Zoom"))
        self.zoom_slider = QSlider(Qt.Horizontal)
        self.zoom_slider.setRange(ZOOM_MIN, ZOOM_MAX)
        self.zoom_slider.valueChanged.connect(self._on_zoom_widget_changed)
        zoom_row.addWidget(self.zoom_slider, 1)
        self.zoom_spin = QSpinBox()
        self.zoom_spin.setRange(ZOOM_MIN, ZOOM_MAX)
        self.zoom_spin.setSuffix("%")
        self.zoom_spin.valueChanged.connect(self._on_zoom_widget_changed)
        zoom_row.addWidget(self.zoom_spin)
        gl_frame.addLayout(zoom_row)

        self.grey_chk = QCheckBox("Black && White")
        self.grey_chk.toggled.connect(self._on_greyscale_toggled)
        gl_frame.addWidget(self.grey_chk)

        frame_btn_row = QHBoxLayout()
        self.auto_btn = QPushButton("Auto-Frame")
        self.auto_btn.clicked.connect(self._auto_frame)
        frame_btn_row.addWidget(self.auto_btn)
        self.fit_btn = QPushButton("Fit")
        self.fit_btn.clicked.connect(self._fit)
        frame_btn_row.addWidget(self.fit_btn)
        self.reset_btn = QPushButton("Reset Position")
        self.reset_btn.clicked.connect(self._reset_position)
        frame_btn_row.addWidget(self.reset_btn)
        gl_frame.addLayout(frame_btn_row)
        v.addWidget(g_frame)

        g_review, gl_review = self._make_group("Review")
        review_row = QHBoxLayout()
        self.save_btn = QPushButton("Save Crop")
        self.save_btn.setShortcut("Ctrl+S")
        self.save_btn.clicked.connect(self._save_crop)
        review_row.addWidget(self.save_btn)
        self.reject_btn = QPushButton("Reject")
        self.reject_btn.clicked.connect(self._reject)
        review_row.addWidget(self.reject_btn)
        self.accept_btn = QPushButton("Accept")
        self.accept_btn.clicked.connect(self._accept)
        review_row.addWidget(self.accept_btn)
        gl_review.addLayout(review_row)

        gl_review.addWidget(QLabel("Final result:"))
        self.result_label = QLabel("No crop saved yet")
        self.result_label.setAlignment(Qt.AlignCenter)
        self.result_label.setMinimumSize(OUTPUT_SIZE[0] // 2, OUTPUT_SIZE[1] // 2)
        gl_review.addWidget(self.result_label)
        v.addWidget(g_review)

        g_export, gl_export = self._make_group("Export")
        self.prefix_edit = QLineEdit(self.config.file_prefix)
        self.prefix_edit.setPlaceholderText("Filename prefix")
        self._add_labeled_row(gl_export, "Prefix", self.prefix_edit)
        export_row = QHBoxLayout()
        self.export_btn = QPushButton("Export Folder...")
        self.export_btn.clicked.connect(self.export_folder)
        export_row.addWidget(self.export_btn)
        self.zip_btn = QPushButton("Download Zip...")
        self.zip_btn.clicked.connect(self.export_zip)
        export_row.addWidget(self.zip_btn)
        gl_export.addLayout(export_row)
        v.addWidget(g_export)

        v.addStretch(1)
        scroll.setWidget(panel)
        dock.setWidget(scroll)
        self.addDockWidget(Qt.RightDockWidgetArea, dock)

    def _make_group(self, title: str) -> tuple[QGroupBox, QVBoxLayout]:
        g = QGroupBox(title)
        gl = QVBoxLayout()
        g.setLayout(gl)
        return g, gl

    def _add_labeled_row(self, layout: QVBoxLayout, label: str, widget: Optional[QWidget]) -> None:
        row = QHBoxLayout()
        row.addWidget(QLabel(label))
        if widget is not None:
            row.addWidget(widget, 1)
        layout.addLayout(row)

    # ---------------------------
    # File IO
    # ---------------------------
    def add_images(self) -> None:
        patterns = " ".join(f"*{e}" for e in self.config.accepted_extensions)
        paths, _ = QFileDialog.getOpenFileNames(self, "Add Images", "", f"Images ({patterns})")
        if paths:
            self.add_paths(paths)

    def add_paths(self, paths: list[str]) -> None:
        errors: list[str] = []
        last: Optional[EditRecord] = None
        for path in paths:
            try:
                last = self.session.ingest_path(path)
            except CropEngineError as e:
                errors.append(str(e))
        if last is not None:
            self._current_id = last.record_id
        self._refresh_all()
        if errors:
            QMessageBox.warning(self, "Some images were skipped", "\n".join(errors))

    def open_session(self) -> None:
        path, _ = QFileDialog.getOpenFileName(self, "Open Session", "", "Crop Session (*.json)")
        if not path:
            return
        try:
            loaded = load_session(path, self.config)
        except (OSError, ValueError, CropEngineError) as e:
            QMessageBox.critical(self, "Open session failed", str(e))
            return

        self._pending.clear()
        self.session.close(wait=False)
        self.session = loaded
        self._session_path = path
        ids = loaded.record_ids()
        self._current_id = ids[0] if ids else None
        self._refresh_all()

        missing = [r.name or r.record_id for r in loaded.records() if r.source is None]
        if missing:
            QMessageBox.warning(
                self,
                "Session loaded with missing sources",
                "These images could not be reloaded:\n" + "\n".join(missing),
            )

    def save_session_as(self) -> None:
        path, _ = QFileDialog.getSaveFileName(self, "Save Session As", "", "Crop Session (*.json)")
        if not path:
            return
        if not path.lower().endswith(".json"):
            path += ".json"
        try:
            save_session(path, self.session)
        except OSError as e:
            QMessageBox.critical(self, "Save session failed", str(e))
            return
        self._session_path = path

    def save_crop_as(self) -> None:
        rec = self._current_record()
        if rec is None or rec.crop is None:
            QMessageBox.information(self, "Nothing to save", "Save a crop first.")
            return
        path, _ = QFileDialog.getSaveFileName(self, "Save Crop As", "", "PNG (*.png);;JPG (*.jpg *.jpeg)")
        if not path:
            return
        try:
            img = rec.crop.encoded.to_pil()
            if Path(path).suffix.lower() in {".jpg", ".jpeg"}:
                img = img.convert("RGB")
            save_image(path, img)
        except OSError as e:
            QMessageBox.critical(self, "Save failed", str(e))

    def export_folder(self) -> None:
        if not self.session.exportable_records():
            QMessageBox.information(self, "Nothing to export", "Accept at least one image first.")
            return
        out_dir = QFileDialog.getExistingDirectory(self, "Export Folder")
        if not out_dir:
            return
        try:
            written = export_records(self.session, out_dir, self.prefix_edit.text())
        except OSError as e:
            QMessageBox.critical(self, "Export failed", str(e))
            return
        QMessageBox.information(self, "Export", f"Exported {len(written)} images.")

    def export_zip(self) -> None:
        if not self.session.exportable_records():
            QMessageBox.information(self, "Nothing to export", "Accept at least one image first.")
            return
        prefix = self.prefix_edit.text()
        path, _ = QFileDialog.getSaveFileName(self, "Download Zip", f"{prefix}portraits.zip", "Zip (*.zip)")
        if not path:
            return
        try:
            target = bundle_zip(self.session, path, prefix)
        except OSError as e:
            QMessageBox.critical(self, "Export failed", str(e))
            return
        QMessageBox.information(self, "Export", f"Saved {target.name}.")

    def batch_folder(self) -> None:
        in_dir = QFileDialog.getExistingDirectory(self, "Batch Input Folder")
        if not in_dir:
            return
        out_dir = QFileDialog.getExistingDirectory(self, "Batch Output Folder")
        if not out_dir:
            return
        try:
            count = batch_crop_folder(in_dir, out_dir, self.config, self.prefix_edit.text())
        except OSError as e:
            QMessageBox.critical(self, "Batch failed", str(e))
            return
        QMessageBox.information(self, "Batch Crop", f"Exported {count} images.")

    def dragEnterEvent(self, e) -> None:
        if e.mimeData().hasUrls():
            e.acceptProposedAction()

    def dropEvent(self, e) -> None:
        paths = [u.toLocalFile() for u in e.mimeData().urls() if u.toLocalFile()]
        if paths:
            self.add_paths(paths)

    def closeEvent(self, e) -> None:
        self._poll_timer.stop()
        self.session.close(wait=False)
        super().closeEvent(e)

    # ---------------------------
    # Record actions
    # ---------------------------
    def _current_record(self) -> Optional[EditRecord]:
        if self._current_id is None or self._current_id not in self.session:
            return None
        return self.session.get(self._current_id)

    def _run(self, title: str, fn, *args) -> bool:
        """Run a session action for the current record; errors become a dialog."""
        if self._current_id is None:
            return False
        try:
            fn(self._current_id, *args)
        except CropEngineError as e:
            _logger.warning("%s failed for %s: %s", title, self._current_id, e)
            QMessageBox.critical(self, f"{title} failed", str(e))
            return False
        return True

    def _select_record(self, record_id: str) -> None:
        self._current_id = record_id
        self._refresh_editor()

    def _set_accepted(self, record_id: str, accepted: bool) -> None:
        try:
            self.session.set_accepted(record_id, accepted)
        except CropEngineError as e:
            QMessageBox.critical(self, "Accept failed", str(e))
        # The list is rebuilt, so not from inside its own itemChanged signal
        QTimer.singleShot(0, self._refresh_all)

    def _remove_record(self, record_id: str) -> None:
        self.session.remove(record_id)
        if record_id == self._current_id:
            ids = self.session.record_ids()
            self._current_id = ids[0] if ids else None
        self._refresh_all()

    def _pan(self, dx: float, dy: float) -> None:
        if self._run("Pan", self.session.update_viewport, None, (dx, dy)):
            self._refresh_editor()

    def _zoom(self, step: int, anchor: Optional[tuple[float, float]]) -> None:
        if self._run("Zoom", self.session.update_viewport, step, None, False, anchor):
            self._refresh_editor()
            self._refresh_gallery()

    def _on_zoom_widget_changed(self, value: int) -> None:
        rec = self._current_record()
        if rec is None or rec.transform.zoom_percent == value:
            return
        if self._run("Zoom", self.session.set_viewport, value):
            self._refresh_all()

    def _on_greyscale_toggled(self, on: bool) -> None:
        rec = self._current_record()
        if rec is None or rec.transform.is_greyscale == on:
            return
        if self._run("Greyscale", self.session.set_viewport, None, None, on):
            self._refresh_all()

    def _auto_frame(self) -> None:
        if self._run("Auto-Frame", self.session.estimate):
            self._refresh_all()

    def _fit(self) -> None:
        if self._run("Fit", self.session.fit_viewport):
            self._refresh_all()

    def _reset_position(self) -> None:
        if self._run("Reset", self.session.reset_viewport):
            self._refresh_all()

    def _save_crop(self) -> None:
        if self._current_id is None:
            return
        try:
            fut = self.session.commit_crop_async(self._current_id)
        except CropEngineError as e:
            QMessageBox.critical(self, "Save failed", str(e))
            return
        self._pending.append((self._current_id, fut))
        if not self._poll_timer.isActive():
            self._poll_timer.start()
        self.statusBar().showMessage("Saving crop...")

    def _poll_commits(self) -> None:
        still: list[tuple[str, Future]] = []
        for rid, fut in self._pending:
            if not fut.done():
                still.append((rid, fut))
                continue
            try:
                fut.result()
            except CropEngineError as e:
                QMessageBox.critical(self, "Save failed", str(e))
        self._pending = still
        if not still:
            self._poll_timer.stop()
        self._refresh_all()

    def _reject(self) -> None:
        if self._run("Reject", self.session.reject):
            self._refresh_all()

    def _accept(self) -> None:
        if self._run("Accept", self.session.accept):
            self._refresh_all()

    # ---------------------------
    # Rendering
    # ---------------------------
    def _refresh_all(self) -> None:
        self._refresh_gallery()
        self._refresh_editor()

    def _refresh_gallery(self) -> None:
        self.gallery.set_records(self.session.records())
        if self._current_id is not None:
            self.gallery.listw.blockSignals(True)
            self.gallery.select(self._current_id)
            self.gallery.listw.blockSignals(False)

    def _refresh_editor(self) -> None:
        rec = self._current_record()
        has_rec = rec is not None
        for w in (self.zoom_slider, self.zoom_spin, self.grey_chk, self.auto_btn, self.fit_btn,
                  self.reset_btn, self.save_btn, self.reject_btn, self.accept_btn):
            w.setEnabled(has_rec)
        if rec is None:
            self.canvas.set_preview(None)
            self._show_result(None)
            self._update_status()
            return

        t = rec.transform.copy()
        self.canvas.set_preview(pil_rgba_to_qimage(render_preview(rec.source, t, self.config)))

        for w in (self.zoom_slider, self.zoom_spin, self.grey_chk):
            w.blockSignals(True)
        self.zoom_slider.setValue(t.zoom_percent)
        self.zoom_spin.setValue(t.zoom_percent)
        self.grey_chk.setChecked(t.is_greyscale)
        for w in (self.zoom_slider, self.zoom_spin, self.grey_chk):
            w.blockSignals(False)

        self._show_result(rec.crop)
        self._update_status()

    def _show_result(self, crop: Optional[CropResult]) -> None:
        if crop is None:
            self.result_label.setPixmap(QPixmap())
            self.result_label.setText("No crop saved yet")
            return
        pm = QPixmap.fromImage(np_rgba_to_qimage(crop.pixels))
        self.result_label.setPixmap(
            pm.scaled(OUTPUT_SIZE[0] // 2, OUTPUT_SIZE[1] // 2, Qt.KeepAspectRatio, Qt.SmoothTransformation)
        )

    def _update_status(self) -> None:
        rec = self._current_record()
        if rec is None:
            self.statusBar().showMessage(f"{len(self.session)} images")
            return
        src_size = f"{rec.source.width}x{rec.source.height}" if rec.source is not None else "missing"
        t = rec.transform
        dirty = " (unsaved changes)" if self.session.needs_save(rec.record_id) else ""
        msg = (
            f"{rec.name} | Source: {src_size} | Zoom: {t.zoom_percent}% | "
            f"Pan: ({t.pan_x:.1f}, {t.pan_y:.1f}) | {rec.state.value}{dirty}"
        )
        self.statusBar().showMessage(msg)
