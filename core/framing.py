from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

from core.logger import get_logger
from core.state import DEFAULT_ZOOM, OUTPUT_SIZE, ZOOM_MAX, ViewportTransform, clamp_zoom

_logger = get_logger("framing")

# Aspect-ratio band edges (width / height)
TALL_BELOW = 0.6
WIDE_FROM = 1.5


@dataclass(frozen=True)
class SubjectRect:
    x: float
    y: float
    w: float
    h: float

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.w * 0.5, self.y + self.h * 0.5)

    @property
    def aspect(self) -> float:
        return self.w / self.h if self.h > 0 else 0.0


def _is_degenerate(width: float, height: float) -> bool:
    try:
        w = float(width)
        h = float(height)
    except (TypeError, ValueError):
        return True
    return not (math.isfinite(w) and math.isfinite(h)) or w <= 0 or h <= 0


def estimate_subject_rect(width: float, height: float) -> SubjectRect:
    """Guess where a head-and-shoulders subject sits in a photo of this size.

    Purely geometric: the aspect ratio picks one of three composition bands.
    The rectangle is shrunk to fit the image first, then translated inside it.
    """
    W = float(width)
    H = float(height)
    r = W / H

    if TALL_BELOW <= r < WIDE_FROM:
        # Portrait / near-square: subject in the upper center
        fw = min(W * 0.4, H * 0.3)
        fh = fw * 1.2
        fx = (W - fw) / 2.0
        fy = H * 0.15
    elif r >= WIDE_FROM:
        # Landscape: subject slightly left of center
        fw = min(W * 0.25, H * 0.6)
        fh = fw * 1.2
        fx = W * 0.3
        fy = (H - fh) / 2.0
    else:
        # Very tall
        fw = min(W * 0.6, H * 0.45)
        fh = fw * 1.33
        fx = (W - fw) / 2.0
        fy = H * 0.1

    fw = min(fw, W)
    fh = min(fh, H)
    fx = max(0.0, min(fx, W - fw))
    fy = max(0.0, min(fy, H - fh))
    return SubjectRect(fx, fy, fw, fh)


def fit_zoom(rect: SubjectRect, out_size: Tuple[int, int] = OUTPUT_SIZE) -> int:
    out_w, out_h = out_size
    if rect.w <= 0 or rect.h <= 0:
        return DEFAULT_ZOOM
    if rect.aspect > out_w / float(out_h):
        # Relatively wider than the frame: height is the limiting dimension
        raw = out_h / rect.h * 100.0
    else:
        raw = out_w / rect.w * 100.0
    return clamp_zoom(raw)


def estimate_initial_framing(
    width: float,
    height: float,
    is_greyscale: bool = True,
    out_size: Tuple[int, int] = OUTPUT_SIZE,
) -> ViewportTransform:
    if _is_degenerate(width, height):
        _logger.debug("degenerate dimensions %sx%s, using default framing", width, height)
        return ViewportTransform(zoom_percent=DEFAULT_ZOOM, pan_x=0.0, pan_y=0.0, is_greyscale=is_greyscale)

    rect = estimate_subject_rect(width, height)
    zoom = fit_zoom(rect, out_size)
    s = zoom / 100.0
    cx, cy = rect.center
    out_w, out_h = out_size
    pan_x = out_w * 0.5 - cx * s
    pan_y = out_h * 0.5 - cy * s
    _logger.debug(
        "framing %sx%s: subject=(%.1f, %.1f, %.1f, %.1f) zoom=%d pan=(%.1f, %.1f)",
        width, height, rect.x, rect.y, rect.w, rect.h, zoom, pan_x, pan_y,
    )
    return ViewportTransform(zoom_percent=zoom, pan_x=pan_x, pan_y=pan_y, is_greyscale=is_greyscale)


def fill_zoom(width: float, height: float, out_size: Tuple[int, int] = OUTPUT_SIZE) -> int:
    """Zoom that lets an image smaller than the frame cover it; 100 otherwise."""
    if _is_degenerate(width, height):
        return DEFAULT_ZOOM
    out_w, out_h = out_size
    min_scale = max(out_w / float(width), out_h / float(height))
    if min_scale > 1.0:
        # ceil so the integer zoom still covers the frame
        return clamp_zoom(min(math.ceil(min_scale * 100.0 - 1e-9), ZOOM_MAX))
    return DEFAULT_ZOOM
