from __future__ import annotations

import unittest

import numpy as np

from core.config import EngineConfig
from core.encoder import JpegEncoder, PngEncoder, content_handle, make_encoder


def _frame() -> np.ndarray:
    ys, xs = np.mgrid[0:400, 0:300]
    arr = np.empty((400, 300, 4), dtype=np.uint8)
    arr[..., 0] = xs % 256
    arr[..., 1] = ys % 256
    arr[..., 2] = 128
    arr[..., 3] = 255
    return arr


class EncoderTests(unittest.TestCase):
    def test_png_is_lossless(self) -> None:
        frame = _frame()
        encoded = PngEncoder().encode(frame)
        self.assertEqual(encoded.mime_type, "image/png")
        self.assertEqual(encoded.extension, ".png")
        decoded = np.asarray(encoded.to_pil().convert("RGBA"))
        np.testing.assert_array_equal(decoded, frame)

    def test_handle_is_content_addressed(self) -> None:
        frame = _frame()
        a = PngEncoder().encode(frame)
        b = PngEncoder().encode(frame.copy())
        self.assertTrue(a.handle.startswith("sha1:"))
        self.assertEqual(a.handle, b.handle)
        self.assertEqual(a.handle, content_handle(a.data))
        frame[0, 0, 0] ^= 1
        self.assertNotEqual(PngEncoder().encode(frame).handle, a.handle)

    def test_jpeg_drops_alpha(self) -> None:
        encoded = JpegEncoder(quality=90).encode(_frame())
        self.assertEqual(encoded.mime_type, "image/jpeg")
        self.assertEqual(encoded.extension, ".jpg")
        img = encoded.to_pil()
        self.assertEqual(img.mode, "RGB")
        self.assertEqual(img.size, (300, 400))
        self.assertGreater(encoded.size_bytes, 0)

    def test_make_encoder_follows_config(self) -> None:
        self.assertIsInstance(make_encoder(), PngEncoder)
        jpeg = make_encoder(EngineConfig(output_format="jpg", jpeg_quality=80))
        self.assertIsInstance(jpeg, JpegEncoder)
        self.assertEqual(jpeg.quality, 80)
        png = make_encoder(EngineConfig(png_compress_level=42))
        self.assertEqual(png.compress_level, 9)


if __name__ == "__main__":
    unittest.main()
