"""Per-image edit records and the crop commit pipeline.

A ``CropSession`` owns every ``EditRecord`` in a table keyed by record id.
Each record carries its own lock, so one record's transform and state are
only ever mutated by one writer at a time while different records can be
worked on in parallel.

Commits are versioned per record: every save request bumps
``save_version`` and snapshots the transform. A render that finishes after
a newer request was made is dropped instead of being attached.
"""
from __future__ import annotations

import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple

import numpy as np

from core.compositor import render_crop
from core.config import EngineConfig
from core.encoder import ImageEncoder, make_encoder
from core.errors import EncoderError, InvalidSourceError, SourceUnavailableError, UnknownRecordError
from core.framing import estimate_initial_framing, fill_zoom
from core.io import load_source_image
from core.lifecycle import RecordState, transition
from core.logger import get_logger
from core.state import (
    DEFAULT_ZOOM,
    OUTPUT_HEIGHT,
    OUTPUT_WIDTH,
    CropResult,
    EditRecord,
    SourceImage,
    ViewportTransform,
)
from core.viewport import apply_viewport_update, centered_pan

_logger = get_logger("session")

__all__ = ["CropSession", "estimate_initial_framing"]


def _new_record_id() -> str:
    return f"img-{uuid.uuid4().hex[:12]}"


class CropSession:
    def __init__(self, config: Optional[EngineConfig] = None, encoder: Optional[ImageEncoder] = None):
        self.config = config or EngineConfig()
        self.encoder = encoder or make_encoder(self.config)
        self._records: Dict[str, EditRecord] = {}
        self._table_lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    # ---------------------------
    # Table access
    # ---------------------------
    def get(self, record_id: str) -> EditRecord:
        with self._table_lock:
            rec = self._records.get(record_id)
        if rec is None:
            raise UnknownRecordError(record_id)
        return rec

    def __contains__(self, record_id: object) -> bool:
        with self._table_lock:
            return record_id in self._records

    def __len__(self) -> int:
        with self._table_lock:
            return len(self._records)

    def records(self) -> List[EditRecord]:
        with self._table_lock:
            return list(self._records.values())

    def record_ids(self) -> List[str]:
        with self._table_lock:
            return list(self._records.keys())

    def state_of(self, record_id: str) -> RecordState:
        return self.get(record_id).state

    def exportable_records(self) -> List[EditRecord]:
        return [r for r in self.records() if r.is_exportable]

    # ---------------------------
    # Ingestion / removal
    # ---------------------------
    def ingest(
        self,
        source: SourceImage,
        record_id: Optional[str] = None,
        name: Optional[str] = None,
        src_path: Optional[str] = None,
        estimate: bool = True,
    ) -> EditRecord:
        if not isinstance(source, SourceImage):
            raise InvalidSourceError("ingest expects a decoded SourceImage")
        rid = record_id or _new_record_id()
        rec = EditRecord(
            record_id=rid,
            source=source,
            transform=ViewportTransform(is_greyscale=self.config.default_greyscale),
            name=name if name is not None else source.name,
            src_path=src_path if src_path is not None else source.path,
        )
        with self._table_lock:
            if rid in self._records:
                raise InvalidSourceError(f"duplicate record id: {rid}")
            self._records[rid] = rec
        _logger.info("ingested %s (%s, %dx%d)", rid, rec.name or "unnamed", source.width, source.height)

        if estimate:
            self.estimate(rid)
        return rec

    def ingest_path(self, path: str, estimate: bool = True) -> EditRecord:
        source = load_source_image(path, self.config)
        return self.ingest(source, estimate=estimate)

    def add_unavailable(
        self,
        record_id: str,
        name: str,
        src_path: Optional[str],
        transform: ViewportTransform,
    ) -> EditRecord:
        """Register a record whose source could not be loaded.

        The framing is kept so it can be inspected; committing raises
        ``SourceUnavailableError`` until the record is removed.
        """
        rec = EditRecord(
            record_id=record_id,
            source=None,
            transform=transform.copy(),
            state=RecordState.EDITING,
            name=name,
            src_path=src_path,
        )
        with self._table_lock:
            if record_id in self._records:
                raise InvalidSourceError(f"duplicate record id: {record_id}")
            self._records[record_id] = rec
        _logger.warning("record %s restored without source: %s", record_id, src_path)
        return rec

    def remove(self, record_id: str) -> None:
        with self._table_lock:
            rec = self._records.pop(record_id, None)
        if rec is None:
            raise UnknownRecordError(record_id)
        with rec.lock:
            # Invalidate any in-flight commit and drop the buffers.
            rec.save_version += 1
            rec.crop = None
            rec.source = None
        _logger.info("removed %s", record_id)

    # ---------------------------
    # Framing
    # ---------------------------
    def estimate(self, record_id: str) -> ViewportTransform:
        rec = self.get(record_id)
        with rec.lock:
            rec.state = transition(rec.state, RecordState.ESTIMATING, rec.has_crop)
            is_grey = rec.transform.is_greyscale
            if rec.source is None:
                t = ViewportTransform(zoom_percent=DEFAULT_ZOOM, is_greyscale=is_grey)
            else:
                t = estimate_initial_framing(rec.source.width, rec.source.height, is_greyscale=is_grey)
            rec.transform = t
            rec.state = transition(rec.state, RecordState.ESTIMATED, rec.has_crop)
            _logger.debug("estimated %s: zoom=%d pan=(%.1f, %.1f)", record_id, t.zoom_percent, t.pan_x, t.pan_y)
            return t.copy()

    def _edit(self, rec: EditRecord, new_transform: ViewportTransform) -> ViewportTransform:
        # Caller holds rec.lock
        rec.state = transition(rec.state, RecordState.EDITING, rec.has_crop)
        rec.transform = new_transform
        return new_transform.copy()

    def update_viewport(
        self,
        record_id: str,
        zoom_delta: Optional[float] = None,
        pan_delta: Optional[Tuple[float, float]] = None,
        greyscale_toggle: bool = False,
        anchor: Optional[Tuple[float, float]] = None,
    ) -> ViewportTransform:
        rec = self.get(record_id)
        with rec.lock:
            new_t = apply_viewport_update(
                rec.transform,
                zoom_delta=zoom_delta,
                pan_delta=pan_delta,
                greyscale_toggle=greyscale_toggle,
                anchor=anchor,
            )
            return self._edit(rec, new_t)

    def set_viewport(
        self,
        record_id: str,
        zoom_percent: Optional[float] = None,
        pan: Optional[Tuple[float, float]] = None,
        is_greyscale: Optional[bool] = None,
    ) -> ViewportTransform:
        rec = self.get(record_id)
        with rec.lock:
            new_t = rec.transform.copy()
            if zoom_percent is not None:
                new_t.zoom_percent = zoom_percent
            if pan is not None:
                new_t.pan_x, new_t.pan_y = pan
            if is_greyscale is not None:
                new_t.is_greyscale = is_greyscale
            return self._edit(rec, new_t)

    def reset_viewport(self, record_id: str) -> ViewportTransform:
        return self.set_viewport(record_id, zoom_percent=DEFAULT_ZOOM, pan=(0.0, 0.0))

    def fit_viewport(self, record_id: str) -> ViewportTransform:
        rec = self.get(record_id)
        with rec.lock:
            if rec.source is None:
                raise SourceUnavailableError(f"source image for {record_id} is not available")
            zoom = fill_zoom(rec.source.width, rec.source.height)
            pan = centered_pan(rec.source.width, rec.source.height, zoom)
            return self.set_viewport(record_id, zoom_percent=zoom, pan=pan)

    # ---------------------------
    # Commit pipeline
    # ---------------------------
    def _begin_commit(self, rec: EditRecord) -> Tuple[int, SourceImage, ViewportTransform, RecordState]:
        # Caller holds rec.lock
        if rec.source is None:
            raise SourceUnavailableError(f"source image for {rec.record_id} is not available")
        target = RecordState.ACCEPTED if rec.state is RecordState.ACCEPTED else RecordState.SAVED
        transition(rec.state, target, True)
        rec.save_version += 1
        return rec.save_version, rec.source, rec.transform.copy(), rec.state

    def _render(self, record_id: str, version: int, source: SourceImage, snapshot: ViewportTransform) -> CropResult:
        pixels = render_crop(source, snapshot, self.config)
        if pixels.shape != (OUTPUT_HEIGHT, OUTPUT_WIDTH, 4) or not np.all(pixels[..., 3] == 255):
            raise EncoderError(f"refusing to encode a malformed buffer of shape {pixels.shape}")
        try:
            encoded = self.encoder.encode(pixels)
        except Exception as e:
            raise EncoderError(f"encoding crop for {record_id} failed: {e}") from e
        pixels.flags.writeable = False
        return CropResult(pixels=pixels, transform=snapshot, version=version, encoded=encoded)

    def _finish_commit(self, rec: EditRecord, result: CropResult, started_in: RecordState) -> Optional[CropResult]:
        with rec.lock:
            if result.version != rec.save_version:
                _logger.debug(
                    "discarding stale crop for %s (version %d, current %d)",
                    rec.record_id, result.version, rec.save_version,
                )
                return None
            rec.crop = result
            if rec.state is started_in and rec.transform == result.transform:
                target = RecordState.ACCEPTED if rec.state is RecordState.ACCEPTED else RecordState.SAVED
                rec.state = transition(rec.state, target, True)
            else:
                # Rejected or re-framed while rendering: keep that decision.
                _logger.debug("crop for %s attached, state left at %s", rec.record_id, rec.state.value)
            _logger.info("saved crop for %s (version %d, %s)", rec.record_id, result.version, result.handle)
            return result

    def commit_crop(self, record_id: str) -> Optional[CropResult]:
        """Rasterize, optionally desaturate, and encode the current viewport.

        Returns the attached ``CropResult``. Returns None only when a newer
        save for the same record was requested while this one was rendering.
        """
        rec = self.get(record_id)
        with rec.lock:
            version, source, snapshot, started_in = self._begin_commit(rec)
        result = self._render(record_id, version, source, snapshot)
        return self._finish_commit(rec, result, started_in)

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.config.max_workers,
                    thread_name_prefix="crop-commit",
                )
            return self._executor

    def commit_crop_async(self, record_id: str) -> "Future[Optional[CropResult]]":
        """Like ``commit_crop`` but renders on a worker thread.

        The transform snapshot and version are taken before this returns, so
        later edits never leak into this result.
        """
        rec = self.get(record_id)
        with rec.lock:
            version, source, snapshot, started_in = self._begin_commit(rec)

        def _job() -> Optional[CropResult]:
            result = self._render(record_id, version, source, snapshot)
            return self._finish_commit(rec, result, started_in)

        return self._get_executor().submit(_job)

    # ---------------------------
    # Review decisions
    # ---------------------------
    def needs_save(self, record_id: str) -> bool:
        rec = self.get(record_id)
        with rec.lock:
            return rec.crop is None or rec.crop.transform != rec.transform

    def accept(self, record_id: str) -> RecordState:
        """Mark a record for export, saving its current framing first if needed.

        The implicit save is synchronous, so an accepted record always has
        a crop that matches its transform.
        """
        rec = self.get(record_id)
        with rec.lock:
            if rec.crop is None or rec.crop.transform != rec.transform:
                self.commit_crop(record_id)
            rec.state = transition(rec.state, RecordState.ACCEPTED, rec.has_crop)
            _logger.info("accepted %s", record_id)
            return rec.state

    def unaccept(self, record_id: str) -> RecordState:
        rec = self.get(record_id)
        with rec.lock:
            if rec.state is RecordState.ACCEPTED:
                rec.state = transition(rec.state, RecordState.SAVED, rec.has_crop)
            return rec.state

    def set_accepted(self, record_id: str, accepted: bool) -> RecordState:
        return self.accept(record_id) if accepted else self.unaccept(record_id)

    def reject(self, record_id: str) -> RecordState:
        rec = self.get(record_id)
        with rec.lock:
            rec.state = transition(rec.state, RecordState.REJECTED, rec.has_crop)
            _logger.info("rejected %s", record_id)
            return rec.state

    # ---------------------------
    # Shutdown
    # ---------------------------
    def close(self, wait: bool = True) -> None:
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

    def __enter__(self) -> "CropSession":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
