from __future__ import annotations

import unittest
import zipfile
from pathlib import Path
from tempfile import TemporaryDirectory

import numpy as np
from PIL import Image

from core.batch import batch_crop_folder, bundle_zip, export_filename, export_records
from core.config import EngineConfig
from core.session import CropSession
from core.state import SourceImage


def _source(name: str) -> SourceImage:
    arr = np.full((600, 400, 4), (90, 140, 200, 255), dtype=np.uint8)
    return SourceImage(pixels=arr, name=name)


def _write_image(path: Path, size=(320, 480)) -> None:
    Image.new("RGB", size, (30, 80, 160)).save(path)


class ExportNamingTests(unittest.TestCase):
    def test_prefix_and_stem(self) -> None:
        self.assertEqual(export_filename("portrait_", "jane.doe.jpg"), "portrait_jane.doe.png")
        self.assertEqual(export_filename("", "a.png", ".jpg"), "a.jpg")
        self.assertEqual(export_filename("x_", ""), "x_portrait.png")


class ExportTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = CropSession(EngineConfig(resample="nearest"))

    def tearDown(self) -> None:
        self.session.close()

    def test_only_accepted_records_are_exported(self) -> None:
        accepted = self.session.ingest(_source("one.jpg"))
        saved = self.session.ingest(_source("two.jpg"))
        rejected = self.session.ingest(_source("three.jpg"))
        self.session.accept(accepted.record_id)
        self.session.commit_crop(saved.record_id)
        self.session.accept(rejected.record_id)
        self.session.reject(rejected.record_id)

        with TemporaryDirectory() as td:
            written = export_records(self.session, td)
            self.assertEqual([p.name for p in written], ["portrait_one.png"])
            self.assertEqual(written[0].read_bytes(), accepted.crop.encoded.data)

    def test_duplicate_names_are_suffixed(self) -> None:
        for _ in range(3):
            rec = self.session.ingest(_source("Face.JPG"))
            self.session.accept(rec.record_id)

        with TemporaryDirectory() as td:
            written = export_records(self.session, td, prefix="p_")
            self.assertEqual([p.name for p in written], ["p_Face.png", "p_Face_2.png", "p_Face_3.png"])

    def test_bundle_zip(self) -> None:
        for name in ("a.png", "b.png"):
            rec = self.session.ingest(_source(name))
            self.session.accept(rec.record_id)

        with TemporaryDirectory() as td:
            target = bundle_zip(self.session, str(Path(td) / "out" / "crops.zip"))
            with zipfile.ZipFile(target) as zf:
                self.assertEqual(sorted(zf.namelist()), ["portrait_a.png", "portrait_b.png"])
                img = Image.open(zf.open("portrait_a.png"))
                self.assertEqual(img.size, (300, 400))


class BatchFolderTests(unittest.TestCase):
    def test_batch_crops_every_valid_image(self) -> None:
        with TemporaryDirectory() as td:
            src = Path(td) / "in"
            dst = Path(td) / "out"
            src.mkdir()
            _write_image(src / "a.jpg")
            _write_image(src / "b.png", size=(900, 500))
            (src / "notes.txt").write_text("not an image", encoding="utf-8")
            (src / "broken.png").write_bytes(b"not really a png")

            with self.assertLogs("portrait_crop.batch", level="WARNING"):
                count = batch_crop_folder(str(src), str(dst), EngineConfig(file_prefix="id_"))

            self.assertEqual(count, 2)
            names = sorted(p.name for p in dst.iterdir())
            self.assertEqual(names, ["id_a.png", "id_b.png"])
            with Image.open(dst / "id_a.png") as img:
                self.assertEqual(img.size, (300, 400))


if __name__ == "__main__":
    unittest.main()
