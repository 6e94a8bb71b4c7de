from __future__ import annotations

import numpy as np

# ITU-R BT.601 luma weights
LUMA_R = 0.299
LUMA_G = 0.587
LUMA_B = 0.114


def _check_rgba(rgba: np.ndarray) -> None:
    if rgba.dtype != np.uint8 or rgba.ndim != 3 or rgba.shape[2] != 4:
        raise ValueError("rgba must be HxWx4 uint8")


def luma(rgba: np.ndarray) -> np.ndarray:
    _check_rgba(rgba)
    rgb = rgba[..., :3].astype(np.float64)
    grey = rgb[..., 0] * LUMA_R + rgb[..., 1] * LUMA_G + rgb[..., 2] * LUMA_B
    # Round half to even, the same way every time
    return np.clip(np.rint(grey), 0, 255).astype(np.uint8)


def apply_greyscale_rgba(rgba: np.ndarray, inplace: bool = False) -> np.ndarray:
    """Set R=G=B to the luma of each pixel. Alpha is left untouched."""
    grey = luma(rgba)
    out = rgba if inplace else rgba.copy()
    out[..., 0] = grey
    out[..., 1] = grey
    out[..., 2] = grey
    return out


def is_greyscale_rgba(rgba: np.ndarray) -> bool:
    _check_rgba(rgba)
    r = rgba[..., 0]
    return bool(np.array_equal(r, rgba[..., 1]) and np.array_equal(r, rgba[..., 2]))
