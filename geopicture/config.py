"""Runtime settings read from GEOPICTURE_* environment variables."""
from __future__ import annotations

import dataclasses
import logging
import os

log = logging.getLogger(__name__)

SUPPORTED_LANCZOS_RADII = (2, 3)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning("Ignoring non-integer %s=%r, using %d", name, raw, default)
        return default


@dataclasses.dataclass(frozen=True)
class Settings:
    max_workers: int = dataclasses.field(default_factory=lambda: os.cpu_count() or 1)
    lanczos_radius: int = 3
    jpeg_quality: int = 95
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the environment (call ``load_dotenv()`` first for .env support)."""
        radius = _int_env("GEOPICTURE_LANCZOS_RADIUS", 3)
        if radius not in SUPPORTED_LANCZOS_RADII:
            log.warning("GEOPICTURE_LANCZOS_RADIUS=%d is not one of %s, using 3", radius, SUPPORTED_LANCZOS_RADII)
            radius = 3
        quality = min(100, max(1, _int_env("GEOPICTURE_JPEG_QUALITY", 95)))
        return cls(
            max_workers=max(1, _int_env("GEOPICTURE_MAX_WORKERS", os.cpu_count() or 1)),
            lanczos_radius=radius,
            jpeg_quality=quality,
            log_level=os.getenv("GEOPICTURE_LOG_LEVEL", "WARNING").upper(),
        )


def get_settings() -> Settings:
    return Settings.from_env()
