from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from core.config import EngineConfig
from core.errors import CropEngineError
from core.logger import get_logger
from core.session import CropSession
from core.state import EditRecord

_logger = get_logger("batch")


def iter_images(folder: str, exts: Iterable[str]) -> Iterable[Path]:
    allowed = {e.lower() for e in exts}
    root = Path(folder)
    for p in sorted(root.iterdir()):
        if p.is_file() and p.suffix.lower() in allowed:
            yield p


def export_filename(prefix: str, name: str, extension: str = ".png") -> str:
    stem = Path(name).stem if name else ""
    return f"{prefix}{stem or 'portrait'}{extension}"


def _planned_files(records: List[EditRecord], prefix: str) -> List[Tuple[str, EditRecord]]:
    used: set[str] = set()
    out: List[Tuple[str, EditRecord]] = []
    for rec in records:
        if rec.crop is None:
            continue
        ext = rec.crop.encoded.extension
        fname = export_filename(prefix, rec.name, ext)
        base = export_filename(prefix, rec.name, "")
        n = 2
        while fname.lower() in used:
            fname = f"{base}_{n}{ext}"
            n += 1
        used.add(fname.lower())
        out.append((fname, rec))
    return out


def export_records(session: CropSession, output_dir: str, prefix: Optional[str] = None) -> List[Path]:
    """Write the encoded crop of every accepted record into ``output_dir``."""
    pfx = session.config.file_prefix if prefix is None else prefix
    out_root = Path(output_dir)
    out_root.mkdir(parents=True, exist_ok=True)

    written: List[Path] = []
    for fname, rec in _planned_files(session.exportable_records(), pfx):
        path = out_root / fname
        path.write_bytes(rec.crop.encoded.data)
        written.append(path)
    _logger.info("exported %d crops to %s", len(written), out_root)
    return written


def bundle_zip(session: CropSession, zip_path: Optional[str] = None, prefix: Optional[str] = None) -> Path:
    """Pack every accepted crop into a single zip archive."""
    pfx = session.config.file_prefix if prefix is None else prefix
    target = Path(zip_path) if zip_path else Path(f"{pfx}portraits.zip")
    target.parent.mkdir(parents=True, exist_ok=True)

    planned = _planned_files(session.exportable_records(), pfx)
    with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for fname, rec in planned:
            zf.writestr(fname, rec.crop.encoded.data)
    _logger.info("bundled %d crops into %s", len(planned), target)
    return target


def batch_crop_folder(
    input_dir: str,
    output_dir: str,
    config: Optional[EngineConfig] = None,
    prefix: Optional[str] = None,
) -> int:
    """Headless run: estimate, commit and export every image in a folder."""
    cfg = config or EngineConfig()
    with CropSession(cfg) as session:
        for src_path in iter_images(input_dir, cfg.accepted_extensions):
            try:
                rec = session.ingest_path(str(src_path))
                session.accept(rec.record_id)
            except CropEngineError as e:
                _logger.warning("skipping %s: %s", src_path.name, e)
        return len(export_records(session, output_dir, prefix))
