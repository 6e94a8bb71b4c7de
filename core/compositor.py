from __future__ import annotations

import math
from typing import Optional, Tuple

import numpy as np
from PIL import Image, ImageOps

from core.adjustments import apply_greyscale_rgba
from core.config import EngineConfig
from core.state import OUTPUT_SIZE, EditRecord, SourceImage, ViewportTransform
from core.viewport import Rect, visible_source_rect

# Float slack when snapping destination edges to whole pixels
_EDGE_EPS = 1e-6

# Gallery thumbnails share the 3:4 frame aspect
THUMB_SIZE: Tuple[int, int] = (60, 80)

_RESAMPLE = {
    "nearest": Image.Resampling.NEAREST,
    "bilinear": Image.Resampling.BILINEAR,
    "bicubic": Image.Resampling.BICUBIC,
    "lanczos": Image.Resampling.LANCZOS,
}


def pil_to_np_rgba(img: Image.Image) -> np.ndarray:
    arr = np.array(img.convert("RGBA"), dtype=np.uint8)
    if arr.ndim != 3 or arr.shape[2] != 4:
        raise ValueError("Expected RGBA image")
    return arr


def np_rgba_to_pil(arr: np.ndarray) -> Image.Image:
    return Image.fromarray(np.ascontiguousarray(arr, dtype=np.uint8))


def _over(base: np.ndarray, top: np.ndarray) -> np.ndarray:
    """Composite ``top`` over an opaque ``base``; the result is opaque."""
    base_rgb = base[..., :3].astype(np.float32)
    top_rgb = top[..., :3].astype(np.float32)
    top_a = top[..., 3:4].astype(np.float32) / 255.0

    out_rgb = top_rgb * top_a + base_rgb * (1.0 - top_a)

    out = np.empty_like(base)
    out[..., :3] = np.clip(np.rint(out_rgb), 0, 255).astype(np.uint8)
    out[..., 3] = 255
    return out


def background_canvas(
    out_size: Tuple[int, int] = OUTPUT_SIZE,
    background: Tuple[int, int, int] = (255, 255, 255),
) -> np.ndarray:
    out_w, out_h = out_size
    base = np.empty((out_h, out_w, 4), dtype=np.uint8)
    base[..., 0] = background[0]
    base[..., 1] = background[1]
    base[..., 2] = background[2]
    base[..., 3] = 255
    return base


def destination_rect(transform: ViewportTransform, visible: Rect, clamped: Rect) -> Rect:
    """Where the clamped source region lands in the output frame."""
    s = transform.scale
    left = (clamped.left - visible.left) * s
    top = (clamped.top - visible.top) * s
    return Rect(left, top, left + clamped.width * s, top + clamped.height * s)


def rasterize(
    source: SourceImage,
    transform: ViewportTransform,
    out_size: Tuple[int, int] = OUTPUT_SIZE,
    resample: str = "lanczos",
    background: Tuple[int, int, int] = (255, 255, 255),
) -> np.ndarray:
    """Render the viewport into an exact ``out_size`` opaque RGBA buffer.

    Output pixels not covered by the source keep the background fill. A
    viewport that misses the image entirely yields pure background.
    """
    out_w, out_h = out_size
    base = background_canvas(out_size, background)

    visible = visible_source_rect(transform, out_size)
    clamped = visible.intersect(Rect(0.0, 0.0, float(source.width), float(source.height)))
    if clamped.is_empty:
        return base

    # Only whole output pixels covered by the source are drawn; the source box
    # is mapped back from those pixel edges so the scale stays exactly zoom/100.
    dest = destination_rect(transform, visible, clamped)
    x0 = max(0, math.ceil(dest.left - _EDGE_EPS))
    y0 = max(0, math.ceil(dest.top - _EDGE_EPS))
    x1 = min(out_w, math.floor(dest.right + _EDGE_EPS))
    y1 = min(out_h, math.floor(dest.bottom + _EDGE_EPS))
    if x1 <= x0 or y1 <= y0:
        return base

    s = transform.scale
    box = (
        min(max(visible.left + x0 / s, clamped.left), clamped.right),
        min(max(visible.top + y0 / s, clamped.top), clamped.bottom),
        min(max(visible.left + x1 / s, clamped.left), clamped.right),
        min(max(visible.top + y1 / s, clamped.top), clamped.bottom),
    )

    src_img = np_rgba_to_pil(source.pixels)
    scaled = src_img.resize(
        (x1 - x0, y1 - y0),
        resample=_RESAMPLE.get(resample, Image.Resampling.LANCZOS),
        box=box,
    )

    tile = np.zeros_like(base)
    tile[y0:y1, x0:x1] = pil_to_np_rgba(scaled)
    return _over(base, tile)


def render_crop(
    source: SourceImage,
    transform: ViewportTransform,
    config: Optional[EngineConfig] = None,
    resample: Optional[str] = None,
) -> np.ndarray:
    """Rasterize, then desaturate when the transform asks for it."""
    cfg = config or EngineConfig()
    out = rasterize(
        source,
        transform,
        out_size=OUTPUT_SIZE,
        resample=resample or cfg.resample,
        background=cfg.background_rgb,
    )
    if transform.is_greyscale:
        apply_greyscale_rgba(out, inplace=True)
    return out


def render_preview(
    source: Optional[SourceImage],
    transform: ViewportTransform,
    config: Optional[EngineConfig] = None,
    fast: bool = True,
) -> Image.Image:
    """Interactive preview of the current viewport as a PIL image."""
    cfg = config or EngineConfig()
    if source is None:
        return np_rgba_to_pil(background_canvas(OUTPUT_SIZE, cfg.background_rgb))
    arr = render_crop(source, transform, cfg, resample="bilinear" if fast else None)
    return np_rgba_to_pil(arr)


def render_thumbnail(
    record: EditRecord,
    size: Tuple[int, int] = THUMB_SIZE,
    background: Tuple[int, int, int] = (255, 255, 255),
) -> np.ndarray:
    """Small 3:4 RGBA icon for a record.

    Accepted records show their committed crop; everything else shows the
    source, center-cropped to fill the thumbnail.
    """
    with record.lock:
        crop = record.crop if record.is_exportable else None
        source = record.source
    if crop is not None:
        img = np_rgba_to_pil(crop.pixels).resize(size, Image.Resampling.BILINEAR)
    elif source is not None:
        img = ImageOps.fit(np_rgba_to_pil(source.pixels), size, Image.Resampling.BILINEAR)
    else:
        return background_canvas(size, background)
    return _over(background_canvas(size, background), pil_to_np_rgba(img))
