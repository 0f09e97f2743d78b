"""EXIF metadata: GPS rational codec and geotag read/write."""
from __future__ import annotations

from geopicture.metadata.gps import GeoLocation, GPSRational, Rational

__all__ = ["GeoLocation", "GPSRational", "Rational"]
