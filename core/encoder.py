from __future__ import annotations

import hashlib
from dataclasses import dataclass
from io import BytesIO
from typing import Optional, Protocol

import numpy as np
from PIL import Image

from core.config import EngineConfig


@dataclass(frozen=True)
class EncodedImage:
    data: bytes
    mime_type: str
    extension: str
    handle: str

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    def to_pil(self) -> Image.Image:
        img = Image.open(BytesIO(self.data))
        img.load()
        return img


class ImageEncoder(Protocol):
    def encode(self, pixels: np.ndarray) -> EncodedImage:
        ...


def content_handle(data: bytes) -> str:
    return "sha1:" + hashlib.sha1(data).hexdigest()


class PngEncoder:
    mime_type = "image/png"
    extension = ".png"

    def __init__(self, compress_level: int = 6):
        self.compress_level = int(compress_level)

    def encode(self, pixels: np.ndarray) -> EncodedImage:
        img = Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8))
        buf = BytesIO()
        img.save(buf, format="PNG", compress_level=self.compress_level)
        data = buf.getvalue()
        return EncodedImage(data=data, mime_type=self.mime_type, extension=self.extension, handle=content_handle(data))


class JpegEncoder:
    mime_type = "image/jpeg"
    extension = ".jpg"

    def __init__(self, quality: int = 95):
        self.quality = int(quality)

    def encode(self, pixels: np.ndarray) -> EncodedImage:
        # JPG has no alpha; the buffer is opaque so dropping it is lossless.
        img = Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8)).convert("RGB")
        buf = BytesIO()
        img.save(buf, format="JPEG", quality=self.quality)
        data = buf.getvalue()
        return EncodedImage(data=data, mime_type=self.mime_type, extension=self.extension, handle=content_handle(data))


def make_encoder(config: Optional[EngineConfig] = None) -> ImageEncoder:
    cfg = config or EngineConfig()
    if cfg.output_format == "jpeg":
        return JpegEncoder(quality=cfg.jpeg_quality)
    return PngEncoder(compress_level=cfg.png_compress_level)
