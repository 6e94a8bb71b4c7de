from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

from core.logger import get_logger

_logger = get_logger("config")

RESAMPLE_MODES = ("nearest", "bilinear", "bicubic", "lanczos")
OUTPUT_FORMATS = ("png", "jpeg")


@dataclass
class EngineConfig:
    # Rasterization
    background_rgb: Tuple[int, int, int] = (255, 255, 255)
    resample: str = "lanczos"

    # Editing defaults
    default_greyscale: bool = True

    # Encoding
    output_format: str = "png"
    png_compress_level: int = 6
    jpeg_quality: int = 95

    # Export
    file_prefix: str = "portrait_"

    # Upload limits
    max_file_mb: float = 10.0
    accepted_extensions: Tuple[str, ...] = (".jpg", ".jpeg", ".png")

    # Background commits
    max_workers: int = 2

    def __post_init__(self) -> None:
        self.resample = str(self.resample).lower()
        if self.resample not in RESAMPLE_MODES:
            raise ValueError(f"unknown resample mode: {self.resample}")
        self.output_format = str(self.output_format).lower()
        if self.output_format == "jpg":
            self.output_format = "jpeg"
        if self.output_format not in OUTPUT_FORMATS:
            raise ValueError(f"unknown output format: {self.output_format}")
        self.background_rgb = tuple(max(0, min(255, int(c))) for c in self.background_rgb)  # type: ignore[assignment]
        self.png_compress_level = max(0, min(9, int(self.png_compress_level)))
        self.jpeg_quality = max(1, min(95, int(self.jpeg_quality)))
        self.max_workers = max(1, int(self.max_workers))
        self.accepted_extensions = tuple(str(e).lower() for e in self.accepted_extensions)

    @property
    def max_file_bytes(self) -> int:
        return int(self.max_file_mb * 1024 * 1024)


def _config_to_raw(config: EngineConfig) -> dict:
    return {
        "background_rgb": list(config.background_rgb),
        "resample": config.resample,
        "default_greyscale": bool(config.default_greyscale),
        "output_format": config.output_format,
        "png_compress_level": config.png_compress_level,
        "jpeg_quality": config.jpeg_quality,
        "file_prefix": config.file_prefix,
        "max_file_mb": config.max_file_mb,
        "accepted_extensions": list(config.accepted_extensions),
        "max_workers": config.max_workers,
    }


def config_from_raw(raw: dict) -> EngineConfig:
    defaults = EngineConfig()
    bg = raw.get("background_rgb", list(defaults.background_rgb))
    if not isinstance(bg, list) or len(bg) != 3:
        bg = list(defaults.background_rgb)
    exts = raw.get("accepted_extensions", list(defaults.accepted_extensions))
    if not isinstance(exts, list) or not exts:
        exts = list(defaults.accepted_extensions)

    resample = str(raw.get("resample", defaults.resample)).lower()
    if resample not in RESAMPLE_MODES:
        _logger.warning("ignoring unknown resample mode %r", resample)
        resample = defaults.resample
    output_format = str(raw.get("output_format", defaults.output_format)).lower()
    if output_format not in OUTPUT_FORMATS + ("jpg",):
        _logger.warning("ignoring unknown output format %r", output_format)
        output_format = defaults.output_format

    return EngineConfig(
        background_rgb=(int(bg[0]), int(bg[1]), int(bg[2])),
        resample=resample,
        default_greyscale=bool(raw.get("default_greyscale", defaults.default_greyscale)),
        output_format=output_format,
        png_compress_level=int(raw.get("png_compress_level", defaults.png_compress_level)),
        jpeg_quality=int(raw.get("jpeg_quality", defaults.jpeg_quality)),
        file_prefix=str(raw.get("file_prefix", defaults.file_prefix)),
        max_file_mb=float(raw.get("max_file_mb", defaults.max_file_mb)),
        accepted_extensions=tuple(str(e) for e in exts),
        max_workers=int(raw.get("max_workers", defaults.max_workers)),
    )


def save_config(path: str, config: EngineConfig) -> None:
    Path(path).write_text(json.dumps(_config_to_raw(config), indent=2), encoding="utf-8")
    _logger.debug("config saved: %s", path)


def load_config(path: str) -> EngineConfig:
    config_file = Path(path)
    if not config_file.exists():
        return EngineConfig()
    raw = json.loads(config_file.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        _logger.warning("config file %s is not an object, using defaults", path)
        return EngineConfig()
    _logger.debug("config loaded: %s", path)
    return config_from_raw(raw)
