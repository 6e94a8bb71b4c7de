from __future__ import annotations

from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from core.compositor import pil_to_np_rgba
from core.config import EngineConfig
from core.errors import InvalidSourceError
from core.state import SourceImage


def validate_upload(path: str, config: Optional[EngineConfig] = None) -> Path:
    cfg = config or EngineConfig()
    p = Path(path)
    if not p.is_file():
        raise InvalidSourceError(f"{p.name} couldn't be uploaded.")
    if p.suffix.lower() not in cfg.accepted_extensions:
        accepted = ", ".join(e.lstrip(".").upper() for e in cfg.accepted_extensions)
        raise InvalidSourceError(f"{p.name} has an invalid file type. Accepted types: {accepted}.")
    if p.stat().st_size > cfg.max_file_bytes:
        raise InvalidSourceError(f"{p.name} is too large. Max size is {cfg.max_file_mb:g}MB.")
    return p


def load_image_rgba(path: str) -> Image.Image:
    img = Image.open(path)
    # Convert to RGBA for consistent alpha work
    return img.convert("RGBA")


def source_from_pil(img: Image.Image, name: str = "", path: Optional[str] = None) -> SourceImage:
    return SourceImage(pixels=pil_to_np_rgba(img), name=name, path=path)


def load_source_image(path: str, config: Optional[EngineConfig] = None) -> SourceImage:
    p = validate_upload(path, config)
    try:
        img = load_image_rgba(str(p))
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidSourceError(f"{p.name} couldn't be decoded: {e}") from e
    return source_from_pil(img, name=p.name, path=str(p))


def save_image(path: str, img_rgba: Image.Image) -> None:
    # Saving as PNG preserves alpha
    img_rgba.save(path)
