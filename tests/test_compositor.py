from __future__ import annotations

import unittest

import numpy as np

from core.compositor import THUMB_SIZE, destination_rect, rasterize, render_crop, render_thumbnail
from core.config import EngineConfig
from core.lifecycle import RecordState
from core.session import CropSession
from core.state import EditRecord, SourceImage, ViewportTransform
from core.viewport import Rect


def _solid(w: int, h: int, rgba=(200, 30, 60, 255)) -> SourceImage:
    arr = np.empty((h, w, 4), dtype=np.uint8)
    arr[...] = rgba
    return SourceImage(pixels=arr, name="solid.png")


def _pattern(w: int, h: int) -> SourceImage:
    ys, xs = np.mgrid[0:h, 0:w]
    arr = np.empty((h, w, 4), dtype=np.uint8)
    arr[..., 0] = (xs * 7) % 256
    arr[..., 1] = (ys * 3) % 256
    arr[..., 2] = (xs + ys) % 256
    arr[..., 3] = 255
    return SourceImage(pixels=arr, name="pattern.png")


def _is_white(arr: np.ndarray) -> np.ndarray:
    return np.all(arr == 255, axis=2)


class RasterizeTests(unittest.TestCase):
    def test_identity_viewport_is_top_left_crop(self) -> None:
        src = _pattern(1000, 1000)
        out = rasterize(src, ViewportTransform(zoom_percent=100), resample="nearest")
        self.assertEqual(out.shape, (400, 300, 4))
        np.testing.assert_array_equal(out, src.pixels[0:400, 0:300])

    def test_identity_viewport_has_no_background(self) -> None:
        out = rasterize(_solid(1000, 1000), ViewportTransform(zoom_percent=100))
        self.assertFalse(np.any(_is_white(out)))
        self.assertTrue(np.all(np.abs(out[..., 0].astype(int) - 200) <= 1))

    def test_viewport_entirely_off_image_is_pure_background(self) -> None:
        t = ViewportTransform(zoom_percent=100, pan_x=-2000.0, pan_y=0.0)
        out = rasterize(_solid(1000, 1000), t)
        self.assertEqual(out.shape, (400, 300, 4))
        self.assertTrue(np.all(out == 255))

    def test_partial_overlap_lands_in_place(self) -> None:
        src = _solid(100, 100, (255, 0, 0, 255))
        out = rasterize(src, ViewportTransform(zoom_percent=100, pan_x=50.0, pan_y=60.0), resample="nearest")
        red = np.all(out == (255, 0, 0, 255), axis=2)
        self.assertTrue(np.all(red[60:160, 50:150]))
        self.assertEqual(int(red.sum()), 100 * 100)
        self.assertTrue(np.all(_is_white(out)[~red]))

    def test_left_edge_clip_is_not_stretched(self) -> None:
        src = _solid(100, 100, (0, 0, 255, 255))
        out = rasterize(src, ViewportTransform(zoom_percent=100, pan_x=-50.0), resample="nearest")
        blue = np.all(out == (0, 0, 255, 255), axis=2)
        self.assertTrue(np.all(blue[:100, :50]))
        self.assertEqual(int(blue.sum()), 50 * 100)

    def test_fractional_pan_is_not_rescaled(self) -> None:
        src = _pattern(1000, 1000)
        out = rasterize(src, ViewportTransform(zoom_percent=100, pan_x=0.4), resample="nearest")
        # Column 0 is only partly covered and keeps the background
        self.assertTrue(np.all(_is_white(out[:, :1])))
        np.testing.assert_array_equal(out[:, 1:], src.pixels[0:400, 1:300])

    def test_fractional_pan_at_right_edge(self) -> None:
        src = _pattern(100, 100)
        out = rasterize(src, ViewportTransform(zoom_percent=100, pan_x=10.5, pan_y=0.0), resample="nearest")
        # Source spans frame x in [10.5, 110.5): whole pixels 11..109
        np.testing.assert_array_equal(out[:100, 11:110], src.pixels[:, 1:100])
        self.assertTrue(np.all(_is_white(out[:, 110:])))
        self.assertTrue(np.all(_is_white(out[:, :11])))

    def test_zoom_scales_destination(self) -> None:
        src = _solid(100, 100, (0, 255, 0, 255))
        out = rasterize(src, ViewportTransform(zoom_percent=200), resample="nearest")
        green = np.all(out == (0, 255, 0, 255), axis=2)
        self.assertTrue(np.all(green[:200, :200]))
        self.assertEqual(int(green.sum()), 200 * 200)

    def test_zoomed_out_large_source_fills_frame(self) -> None:
        out = rasterize(_solid(2000, 2000, (10, 20, 30, 255)), ViewportTransform(zoom_percent=20))
        self.assertFalse(np.any(_is_white(out)))

    def test_output_size_is_exact_for_any_viewport(self) -> None:
        src = _pattern(137, 211)
        for zoom in (10, 33, 100, 177, 200):
            for pan in ((0.0, 0.0), (-5000.0, 0.0), (299.6, 399.6), (-12.3, 45.6), (1e6, -1e6)):
                t = ViewportTransform(zoom_percent=zoom, pan_x=pan[0], pan_y=pan[1])
                out = rasterize(src, t)
                self.assertEqual(out.shape, (400, 300, 4))
                self.assertEqual(out.dtype, np.uint8)
                self.assertTrue(np.all(out[..., 3] == 255))

    def test_transparent_source_composites_over_white(self) -> None:
        out = rasterize(_solid(400, 400, (0, 0, 0, 0)), ViewportTransform(zoom_percent=100))
        self.assertTrue(np.all(out == 255))

        half = rasterize(_solid(400, 400, (0, 0, 0, 128)), ViewportTransform(zoom_percent=100), resample="nearest")
        self.assertTrue(np.all(np.abs(half[..., 0].astype(int) - 127) <= 1))
        self.assertTrue(np.all(half[..., 3] == 255))

    def test_custom_background(self) -> None:
        t = ViewportTransform(zoom_percent=100, pan_x=5000.0)
        out = rasterize(_solid(10, 10), t, background=(1, 2, 3))
        self.assertTrue(np.all(out == (1, 2, 3, 255)))

    def test_deterministic(self) -> None:
        src = _pattern(640, 480)
        t = ViewportTransform(zoom_percent=137, pan_x=-33.25, pan_y=12.5)
        np.testing.assert_array_equal(rasterize(src, t), rasterize(src, t))

    def test_destination_rect(self) -> None:
        t = ViewportTransform(zoom_percent=100, pan_x=50.0)
        visible = Rect(-50.0, 0.0, 250.0, 400.0)
        clamped = Rect(0.0, 0.0, 100.0, 100.0)
        self.assertEqual(destination_rect(t, visible, clamped), Rect(50.0, 0.0, 150.0, 100.0))


class RenderCropTests(unittest.TestCase):
    def test_greyscale_applied_to_output_only(self) -> None:
        src = _pattern(500, 500)
        before = src.pixels.copy()
        out = render_crop(src, ViewportTransform(zoom_percent=100, is_greyscale=True))
        self.assertTrue(np.array_equal(out[..., 0], out[..., 1]))
        self.assertTrue(np.array_equal(out[..., 0], out[..., 2]))
        np.testing.assert_array_equal(src.pixels, before)

    def test_colour_kept_when_greyscale_off(self) -> None:
        out = render_crop(
            _solid(500, 500, (255, 0, 0, 255)),
            ViewportTransform(zoom_percent=100, is_greyscale=False),
            EngineConfig(resample="nearest"),
        )
        self.assertTrue(np.all(out == (255, 0, 0, 255)))


class ThumbnailTests(unittest.TestCase):
    def test_unaccepted_record_shows_source_center(self) -> None:
        arr = np.zeros((400, 600, 4), dtype=np.uint8)
        arr[..., 3] = 255
        arr[:, 200:400, 0] = 255  # red middle third
        rec = EditRecord(record_id="img-t", source=SourceImage(pixels=arr))
        thumb = render_thumbnail(rec)
        self.assertEqual(thumb.shape, (THUMB_SIZE[1], THUMB_SIZE[0], 4))
        # 3:4 center crop of a 3:2 image lands inside the red band
        self.assertTrue(np.all(thumb[..., 0] > 200))
        self.assertTrue(np.all(thumb[..., 1] < 50))

    def test_accepted_record_shows_committed_crop(self) -> None:
        with CropSession(EngineConfig(resample="nearest")) as session:
            rec = session.ingest(_solid(800, 1200, (255, 0, 0, 255)), estimate=False)
            colour = render_thumbnail(rec)
            self.assertTrue(np.all(colour[..., 0] == 255))
            session.accept(rec.record_id)
            self.assertIs(rec.state, RecordState.ACCEPTED)
            grey = render_thumbnail(rec)
        self.assertTrue(np.array_equal(grey[..., 0], grey[..., 1]))
        self.assertTrue(np.all(grey[..., 0] == 76))

    def test_missing_source_is_blank(self) -> None:
        rec = EditRecord(record_id="img-gone", source=None)
        self.assertTrue(np.all(render_thumbnail(rec) == 255))


if __name__ == "__main__":
    unittest.main()
