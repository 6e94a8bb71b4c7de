from __future__ import annotations
from typing import Callable, Optional

from PySide6.QtCore import QSize, Qt
from PySide6.QtGui import QColor, QIcon, QImage, QPixmap
from PySide6.QtWidgets import (
    QWidget, QVBoxLayout, QHBoxLayout, QPushButton, QListWidget, QListWidgetItem, QLabel
)

from core.compositor import THUMB_SIZE, render_thumbnail
from core.lifecycle import RecordState
from core.state import EditRecord

_BADGES = {
    RecordState.UPLOADED: ("new", QColor(160, 160, 160)),
    RecordState.ESTIMATING: ("framing", QColor(160, 160, 160)),
    RecordState.ESTIMATED: ("framed", QColor(120, 170, 230)),
    RecordState.EDITING: ("edited", QColor(230, 180, 80)),
    RecordState.SAVED: ("saved", QColor(120, 200, 120)),
    RecordState.ACCEPTED: ("accepted", QColor(60, 200, 90)),
    RecordState.REJECTED: ("rejected", QColor(220, 90, 90)),
}


class GalleryWidget(QWidget):
    """
    Record list:
    - Each item stores the record id in Qt.UserRole
    - Check state mirrors acceptance; toggling calls on_accept_toggled
    - Icons show the committed crop once accepted, the source otherwise
    """
    def __init__(
        self,
        on_selected: Callable[[str], None],
        on_accept_toggled: Callable[[str, bool], None],
        on_remove_request: Callable[[str], None],
        parent: Optional[QWidget] = None,
    ):
        super().__init__(parent)
        self._on_selected = on_selected
        self._on_accept_toggled = on_accept_toggled
        self._on_remove_request = on_remove_request
        # record id -> (what the thumbnail shows, icon)
        self._icons: dict[str, tuple[object, QIcon]] = {}

        self.listw = QListWidget()
        self.listw.setIconSize(QSize(*THUMB_SIZE))
        self.listw.currentItemChanged.connect(self._current_changed)
        self.listw.itemChanged.connect(self._item_changed)

        rm_btn = QPushButton("Remove")
        rm_btn.clicked.connect(self._remove_selected)

        self.count_label = QLabel("0 images, 0 accepted")

        row = QHBoxLayout()
        row.addWidget(self.count_label, 1)
        row.addWidget(rm_btn)

        lay = QVBoxLayout()
        lay.addWidget(QLabel("Images (check to accept):"))
        lay.addWidget(self.listw)
        lay.addLayout(row)
        self.setLayout(lay)

    def _current_changed(self, cur: Optional[QListWidgetItem], _prev) -> None:
        if cur is not None:
            self._on_selected(cur.data(Qt.UserRole))

    def _item_changed(self, it: QListWidgetItem) -> None:
        accepted = it.checkState() == Qt.Checked
        self._on_accept_toggled(it.data(Qt.UserRole), accepted)

    def _remove_selected(self) -> None:
        rid = self.current_id()
        if rid is not None:
            self._on_remove_request(rid)

    def current_id(self) -> Optional[str]:
        it = self.listw.currentItem()
        return None if it is None else it.data(Qt.UserRole)

    def select(self, record_id: str) -> None:
        for i in range(self.listw.count()):
            if self.listw.item(i).data(Qt.UserRole) == record_id:
                self.listw.setCurrentRow(i)
                return

    def set_records(self, records: list[EditRecord]) -> None:
        """Rebuild the list; keeps the current selection where possible."""
        current = self.current_id()
        self.listw.blockSignals(True)
        self.listw.clear()
        for rec in records:
            item = QListWidgetItem(self._fmt(rec))
            item.setData(Qt.UserRole, rec.record_id)
            item.setFlags(item.flags() | Qt.ItemIsUserCheckable | Qt.ItemIsSelectable | Qt.ItemIsEnabled)
            item.setCheckState(Qt.Checked if rec.is_accepted else Qt.Unchecked)
            item.setForeground(_BADGES[rec.state][1])
            item.setToolTip(rec.src_path or rec.name)
            item.setIcon(self._icon(rec))
            self.listw.addItem(item)
            if rec.record_id == current:
                self.listw.setCurrentItem(item)
        self.listw.blockSignals(False)
        live = {r.record_id for r in records}
        for rid in [k for k in self._icons if k not in live]:
            del self._icons[rid]

        accepted = sum(1 for r in records if r.is_exportable)
        self.count_label.setText(f"{len(records)} images, {accepted} accepted")

    @staticmethod
    def _fmt(rec: EditRecord) -> str:
        badge = _BADGES[rec.state][0]
        if rec.source is None:
            badge = "missing"
        return f"{rec.name or rec.record_id}  [{badge}]"

    def _icon(self, rec: EditRecord) -> QIcon:
        with rec.lock:
            key = (rec.crop.handle if rec.is_exportable else None, rec.source is not None)
        cached = self._icons.get(rec.record_id)
        if cached is not None and cached[0] == key:
            return cached[1]
        arr = render_thumbnail(rec)
        h, w, _ = arr.shape
        qimg = QImage(arr.tobytes(), w, h, 4 * w, QImage.Format_RGBA8888).copy()
        icon = QIcon(QPixmap.fromImage(qimg))
        self._icons[rec.record_id] = (key, icon)
        return icon
