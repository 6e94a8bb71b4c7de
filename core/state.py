from __future__ import annotations

import math
import threading
import time
from dataclasses import FrozenInstanceError, dataclass, field, replace
from typing import TYPE_CHECKING, Optional, Tuple

import numpy as np

from core.errors import InvalidSourceError
from core.lifecycle import RecordState, is_exportable

if TYPE_CHECKING:
    from core.encoder import EncodedImage

# Output frame (fixed portrait size)
OUTPUT_WIDTH = 300
OUTPUT_HEIGHT = 400
OUTPUT_SIZE: Tuple[int, int] = (OUTPUT_WIDTH, OUTPUT_HEIGHT)

ZOOM_MIN = 10
ZOOM_MAX = 200
DEFAULT_ZOOM = 100


def clamp_zoom(value: float) -> int:
    v = float(value)
    if math.isnan(v):
        return DEFAULT_ZOOM
    if math.isinf(v):
        return ZOOM_MAX if v > 0 else ZOOM_MIN
    return max(ZOOM_MIN, min(ZOOM_MAX, int(round(v))))


@dataclass(frozen=True)
class SourceImage:
    """Decoded source pixels (HxWx4 uint8 RGBA), never mutated."""

    pixels: np.ndarray
    name: str = ""
    path: Optional[str] = None

    def __post_init__(self) -> None:
        arr = self.pixels
        if not isinstance(arr, np.ndarray) or arr.ndim != 3 or arr.shape[2] != 4:
            raise InvalidSourceError("source pixels must be an HxWx4 array")
        if arr.shape[0] <= 0 or arr.shape[1] <= 0:
            raise InvalidSourceError(f"degenerate source dimensions: {arr.shape[1]}x{arr.shape[0]}")
        if arr.dtype != np.uint8:
            raise InvalidSourceError("source pixels must be uint8")
        arr = np.array(arr, dtype=np.uint8, copy=True)
        arr.flags.writeable = False
        object.__setattr__(self, "pixels", arr)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)


@dataclass
class ViewportTransform:
    # Scaled source top-left sits at (pan_x, pan_y) in output-frame pixels.
    zoom_percent: int = DEFAULT_ZOOM
    pan_x: float = 0.0
    pan_y: float = 0.0
    is_greyscale: bool = True

    def __setattr__(self, name: str, value) -> None:
        if getattr(self, "_frozen", False):
            raise FrozenInstanceError(f"cannot assign to field {name!r} of a committed transform")
        if name == "zoom_percent":
            value = clamp_zoom(value)
        elif name in ("pan_x", "pan_y"):
            value = float(value)
        elif name == "is_greyscale":
            value = bool(value)
        object.__setattr__(self, name, value)

    @property
    def scale(self) -> float:
        return self.zoom_percent / 100.0

    @property
    def pan(self) -> Tuple[float, float]:
        return (self.pan_x, self.pan_y)

    @property
    def is_frozen(self) -> bool:
        return getattr(self, "_frozen", False)

    def copy(self) -> "ViewportTransform":
        """Editable copy; a frozen transform copies to an unfrozen one."""
        return replace(self)

    def frozen(self) -> "ViewportTransform":
        out = replace(self)
        object.__setattr__(out, "_frozen", True)
        return out


@dataclass(frozen=True)
class CropResult:
    """Committed output. ``transform`` is a frozen copy of the framing used."""

    pixels: np.ndarray
    transform: ViewportTransform
    version: int
    encoded: "EncodedImage"
    created_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        object.__setattr__(self, "transform", self.transform.frozen())

    @property
    def handle(self) -> str:
        return self.encoded.handle


@dataclass
class EditRecord:
    record_id: str
    source: Optional[SourceImage]
    transform: ViewportTransform = field(default_factory=ViewportTransform)
    crop: Optional[CropResult] = None
    state: RecordState = RecordState.UPLOADED
    save_version: int = 0
    name: str = ""
    src_path: Optional[str] = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def has_crop(self) -> bool:
        return self.crop is not None

    @property
    def is_exportable(self) -> bool:
        return is_exportable(self.state, self.has_crop)

    @property
    def is_accepted(self) -> bool:
        return self.state is RecordState.ACCEPTED
