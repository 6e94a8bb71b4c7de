from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Optional

from core.config import EngineConfig
from core.errors import CropEngineError
from core.io import load_source_image
from core.lifecycle import RecordState
from core.logger import get_logger
from core.session import CropSession
from core.state import DEFAULT_ZOOM, EditRecord, ViewportTransform

_logger = get_logger("session_io")

SESSION_VERSION = 1


def _normalize_src_for_save(src_path: str | None, session_file: Path) -> str | None:
    if not src_path:
        return None
    try:
        src = Path(src_path).resolve()
        base = session_file.parent.resolve()
        return str(src.relative_to(base))
    except ValueError:
        return src_path


def _normalize_src_for_load(src_path: str | None, session_file: Path) -> str | None:
    if not src_path:
        return None
    p = Path(src_path)
    if p.is_absolute():
        return str(p)
    return str((session_file.parent / p).resolve())


def _record_to_raw(rec: EditRecord, session_file: Path) -> dict:
    with rec.lock:
        t = rec.transform
        return {
            "id": rec.record_id,
            "name": rec.name,
            "src_path": _normalize_src_for_save(rec.src_path, session_file),
            "zoom_percent": t.zoom_percent,
            "pan_x": t.pan_x,
            "pan_y": t.pan_y,
            "is_greyscale": bool(t.is_greyscale),
            "state": rec.state.value,
        }


def _num(raw: dict, key: str, default: float) -> float:
    try:
        v = float(raw.get(key, default))
    except (TypeError, ValueError):
        _logger.warning("ignoring invalid %s %r", key, raw.get(key))
        return default
    return v if math.isfinite(v) else default


def _transform_from_raw(raw: dict, default_greyscale: bool) -> ViewportTransform:
    grey = raw.get("is_greyscale", default_greyscale)
    return ViewportTransform(
        zoom_percent=_num(raw, "zoom_percent", DEFAULT_ZOOM),
        pan_x=_num(raw, "pan_x", 0.0),
        pan_y=_num(raw, "pan_y", 0.0),
        is_greyscale=grey if isinstance(grey, bool) else default_greyscale,
    )


def _state_from_raw(raw: dict) -> RecordState:
    try:
        return RecordState(str(raw.get("state", RecordState.EDITING.value)).lower())
    except ValueError:
        return RecordState.EDITING


def save_session(path: str, session: CropSession) -> None:
    session_file = Path(path)
    payload = {
        "version": SESSION_VERSION,
        "records": [_record_to_raw(rec, session_file) for rec in session.records()],
    }
    session_file.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    _logger.info("session saved: %s (%d records)", path, len(session))


def _restore_record(session: CropSession, raw: dict, session_file: Path, idx: int) -> None:
    record_id = str(raw.get("id") or f"img-restored-{idx + 1}")
    name = str(raw.get("name", ""))
    src_path = _normalize_src_for_load(raw.get("src_path"), session_file)
    transform = _transform_from_raw(raw, session.config.default_greyscale)
    state = _state_from_raw(raw)

    try:
        if not src_path:
            raise CropEngineError("no source path recorded")
        source = load_source_image(src_path, session.config)
    except CropEngineError as e:
        _logger.warning("could not reload %s: %s", src_path or name, e)
        session.add_unavailable(record_id, name, src_path, transform)
        return

    session.ingest(source, record_id=record_id, name=name or source.name, src_path=src_path, estimate=False)
    session.set_viewport(
        record_id,
        zoom_percent=transform.zoom_percent,
        pan=transform.pan,
        is_greyscale=transform.is_greyscale,
    )
    # Rasterization is deterministic, so re-committing reproduces the saved crop.
    if state in (RecordState.SAVED, RecordState.ACCEPTED):
        session.commit_crop(record_id)
    if state is RecordState.ACCEPTED:
        session.accept(record_id)
    elif state is RecordState.REJECTED:
        session.reject(record_id)


def load_session(path: str, config: Optional[EngineConfig] = None) -> CropSession:
    session_file = Path(path)
    raw = json.loads(session_file.read_text(encoding="utf-8"))
    records_raw = raw.get("records", []) if isinstance(raw, dict) else []

    session = CropSession(config)
    if not isinstance(records_raw, list):
        records_raw = []
    for idx, item in enumerate(records_raw):
        if not isinstance(item, dict):
            _logger.warning("skipping session record %d: not an object", idx + 1)
            continue
        try:
            _restore_record(session, item, session_file, idx)
        except (CropEngineError, TypeError, ValueError) as e:
            _logger.warning("skipping session record %d (%s): %s", idx + 1, item.get("id"), e)
    _logger.info("session loaded: %s (%d records)", path, len(session))
    return session
