"""geopicture: decode camera containers, Lanczos-resize, read and write EXIF geotags."""
from __future__ import annotations

__version__ = "0.1.0"
