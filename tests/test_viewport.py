from __future__ import annotations

import unittest

from core.state import ViewportTransform, clamp_zoom
from core.viewport import (
    Rect,
    apply_viewport_update,
    centered_pan,
    frame_to_source,
    source_to_frame,
    visible_source_rect,
)


class ClampZoomTests(unittest.TestCase):
    def test_out_of_range_values_are_clamped(self) -> None:
        self.assertEqual(clamp_zoom(5), 10)
        self.assertEqual(clamp_zoom(-40), 10)
        self.assertEqual(clamp_zoom(250), 200)
        self.assertEqual(clamp_zoom(99.6), 100)

    def test_clamping_is_idempotent(self) -> None:
        for v in range(-50, 300, 7):
            once = clamp_zoom(v)
            self.assertEqual(clamp_zoom(once), once)
            self.assertTrue(10 <= once <= 200)

    def test_non_finite_values(self) -> None:
        self.assertEqual(clamp_zoom(float("nan")), 100)
        self.assertEqual(clamp_zoom(float("inf")), 200)
        self.assertEqual(clamp_zoom(float("-inf")), 10)

    def test_transform_clamps_on_every_assignment(self) -> None:
        t = ViewportTransform(zoom_percent=500)
        self.assertEqual(t.zoom_percent, 200)
        t.zoom_percent = 3
        self.assertEqual(t.zoom_percent, 10)
        t.zoom_percent = 123.4
        self.assertEqual(t.zoom_percent, 123)


class MappingTests(unittest.TestCase):
    def test_forward_then_inverse_round_trips(self) -> None:
        for zoom in (10, 37, 100, 150, 200):
            for pan in ((0.0, 0.0), (-2000.0, 15.5), (123.25, -987.75)):
                t = ViewportTransform(zoom_percent=zoom, pan_x=pan[0], pan_y=pan[1])
                for pt in ((0.0, 0.0), (10.5, 20.25), (4000.0, -3.0)):
                    fx, fy = source_to_frame(t, *pt)
                    sx, sy = frame_to_source(t, fx, fy)
                    self.assertAlmostEqual(sx, pt[0], places=9)
                    self.assertAlmostEqual(sy, pt[1], places=9)

    def test_visible_rect_identity(self) -> None:
        r = visible_source_rect(ViewportTransform(zoom_percent=100))
        self.assertEqual(r, Rect(0.0, 0.0, 300.0, 400.0))

    def test_visible_rect_zoomed_and_panned(self) -> None:
        r = visible_source_rect(ViewportTransform(zoom_percent=200, pan_x=-100.0, pan_y=-50.0))
        self.assertAlmostEqual(r.left, 50.0)
        self.assertAlmostEqual(r.top, 25.0)
        self.assertAlmostEqual(r.right, 200.0)
        self.assertAlmostEqual(r.bottom, 225.0)

    def test_visible_rect_is_not_clamped(self) -> None:
        r = visible_source_rect(ViewportTransform(zoom_percent=100, pan_x=-2000.0))
        self.assertAlmostEqual(r.left, 2000.0)
        self.assertAlmostEqual(r.right, 2300.0)
        self.assertTrue(r.intersect(Rect(0, 0, 1000, 1000)).is_empty)

    def test_centered_pan(self) -> None:
        self.assertEqual(centered_pan(150, 200, 200), (0.0, 0.0))
        self.assertEqual(centered_pan(100, 100, 100), (100.0, 150.0))


class ApplyViewportUpdateTests(unittest.TestCase):
    def test_deltas_are_applied_to_a_copy(self) -> None:
        t = ViewportTransform(zoom_percent=100, pan_x=1.0, pan_y=2.0, is_greyscale=True)
        out = apply_viewport_update(t, zoom_delta=25, pan_delta=(10, -5), greyscale_toggle=True)
        self.assertEqual(out.zoom_percent, 125)
        self.assertEqual(out.pan, (11.0, -3.0))
        self.assertFalse(out.is_greyscale)
        self.assertEqual(t, ViewportTransform(zoom_percent=100, pan_x=1.0, pan_y=2.0, is_greyscale=True))

    def test_zoom_delta_is_clamped(self) -> None:
        t = ViewportTransform(zoom_percent=190)
        self.assertEqual(apply_viewport_update(t, zoom_delta=1000).zoom_percent, 200)
        self.assertEqual(apply_viewport_update(t, zoom_delta=-1000).zoom_percent, 10)

    def test_pan_is_unbounded(self) -> None:
        t = apply_viewport_update(ViewportTransform(), pan_delta=(-1e6, 1e6))
        self.assertEqual(t.pan, (-1e6, 1e6))

    def test_anchor_keeps_source_point_fixed(self) -> None:
        t = ViewportTransform(zoom_percent=100, pan_x=10.0, pan_y=20.0)
        before = frame_to_source(t, 150.0, 200.0)
        out = apply_viewport_update(t, zoom_delta=50, anchor=(150.0, 200.0))
        after = frame_to_source(out, 150.0, 200.0)
        self.assertEqual(out.zoom_percent, 150)
        self.assertAlmostEqual(before[0], after[0], places=9)
        self.assertAlmostEqual(before[1], after[1], places=9)

    def test_zoom_without_anchor_keeps_pan(self) -> None:
        t = ViewportTransform(zoom_percent=100, pan_x=10.0, pan_y=20.0)
        out = apply_viewport_update(t, zoom_delta=-30)
        self.assertEqual(out.pan, (10.0, 20.0))


if __name__ == "__main__":
    unittest.main()
