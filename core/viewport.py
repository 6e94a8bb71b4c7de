from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from core.state import OUTPUT_SIZE, ViewportTransform, clamp_zoom


@dataclass(frozen=True)
class Rect:
    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return max(0.0, self.right - self.left)

    @property
    def height(self) -> float:
        return max(0.0, self.bottom - self.top)

    @property
    def is_empty(self) -> bool:
        return self.right <= self.left or self.bottom <= self.top

    def intersect(self, other: "Rect") -> "Rect":
        return Rect(
            max(self.left, other.left),
            max(self.top, other.top),
            min(self.right, other.right),
            min(self.bottom, other.bottom),
        )


def source_to_frame(transform: ViewportTransform, x: float, y: float) -> Tuple[float, float]:
    s = transform.scale
    return (x * s + transform.pan_x, y * s + transform.pan_y)


def frame_to_source(transform: ViewportTransform, x: float, y: float) -> Tuple[float, float]:
    s = transform.scale
    return ((x - transform.pan_x) / s, (y - transform.pan_y) / s)


def visible_source_rect(
    transform: ViewportTransform,
    out_size: Tuple[int, int] = OUTPUT_SIZE,
) -> Rect:
    """Region of source-pixel space that projects onto the output frame.

    The result is not clamped to the source bounds; it may lie partly or
    entirely outside the image.
    """
    out_w, out_h = out_size
    left, top = frame_to_source(transform, 0.0, 0.0)
    right, bottom = frame_to_source(transform, float(out_w), float(out_h))
    return Rect(left, top, right, bottom)


def centered_pan(
    src_w: int,
    src_h: int,
    zoom_percent: int,
    out_size: Tuple[int, int] = OUTPUT_SIZE,
) -> Tuple[float, float]:
    out_w, out_h = out_size
    s = clamp_zoom(zoom_percent) / 100.0
    return ((out_w - src_w * s) * 0.5, (out_h - src_h * s) * 0.5)


def apply_viewport_update(
    transform: ViewportTransform,
    zoom_delta: Optional[float] = None,
    pan_delta: Optional[Tuple[float, float]] = None,
    greyscale_toggle: bool = False,
    anchor: Optional[Tuple[float, float]] = None,
) -> ViewportTransform:
    """Return a new transform with the deltas applied.

    Zoom is clamped into range. With ``anchor`` (an output-frame point) the
    source pixel under the anchor stays under it after zooming; without it
    the pan is left alone, so the image scales about its top-left corner.
    """
    out = transform.copy()
    if zoom_delta:
        new_zoom = clamp_zoom(out.zoom_percent + float(zoom_delta))
        if anchor is not None and new_zoom != out.zoom_percent:
            ax, ay = float(anchor[0]), float(anchor[1])
            sx, sy = frame_to_source(out, ax, ay)
            s = new_zoom / 100.0
            out.pan_x = ax - sx * s
            out.pan_y = ay - sy * s
        out.zoom_percent = new_zoom
    if pan_delta is not None:
        dx, dy = pan_delta
        out.pan_x = out.pan_x + float(dx)
        out.pan_y = out.pan_y + float(dy)
    if greyscale_toggle:
        out.is_greyscale = not out.is_greyscale
    return out
