"""EXIF geotag reading/writing and a short camera-settings summary, via piexif."""
from __future__ import annotations

import io
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import numpy as np
import piexif
from PIL import Image

from geopicture.errors import PixelIntegrityError, UnsupportedFormatError
from geopicture.metadata.gps import GeoLocation, GPSRational, Rational, signed_angle

log = logging.getLogger(__name__)

EXIF_TIME_FORMAT = "%Y:%m:%d %H:%M:%S"
GEOTAG_FORMATS = ("JPEG",)


def load_exif(path: Path) -> dict[str, Any]:
    """piexif dictionary for ``path``; empty IFDs when the file carries no EXIF."""
    try:
        return piexif.load(str(path))
    except Exception as exc:
        log.debug("piexif cannot read %s directly (%s), trying Pillow", path.name, exc)

    try:
        with Image.open(path) as img:
            exif_bytes = img.info.get("exif")
    except OSError:
        exif_bytes = None
    if exif_bytes:
        try:
            return piexif.load(exif_bytes)
        except Exception as exc:
            log.debug("Ignoring unreadable EXIF block in %s: %s", path.name, exc)
    return {"0th": {}, "Exif": {}, "GPS": {}, "1st": {}, "thumbnail": None}


def read_geotag(exif_dict: dict[str, Any]) -> Optional[GeoLocation]:
    gps = exif_dict.get("GPS") or {}
    lat = GPSRational.decode(gps.get(piexif.GPSIFD.GPSLatitude))
    lon = GPSRational.decode(gps.get(piexif.GPSIFD.GPSLongitude))
    if lat is None or lon is None:
        return None
    return GeoLocation(
        signed_angle(lat, gps.get(piexif.GPSIFD.GPSLatitudeRef)),
        signed_angle(lon, gps.get(piexif.GPSIFD.GPSLongitudeRef)),
    )


def get_geotag(path: Path | str) -> Optional[GeoLocation]:
    """GPS position stored in ``path``, or ``None``."""
    return read_geotag(load_exif(Path(path)))


def write_geotag(exif_dict: dict[str, Any], location: GeoLocation) -> dict[str, Any]:
    gps = exif_dict.setdefault("GPS", {})
    gps[piexif.GPSIFD.GPSLatitudeRef] = location.latitude_ref
    gps[piexif.GPSIFD.GPSLatitude] = GPSRational.from_angle(location.latitude).to_exif()
    gps[piexif.GPSIFD.GPSLongitudeRef] = location.longitude_ref
    gps[piexif.GPSIFD.GPSLongitude] = GPSRational.from_angle(location.longitude).to_exif()
    return exif_dict


def _pixels(data: bytes) -> np.ndarray:
    with Image.open(io.BytesIO(data)) as img:
        return np.asarray(img)


def verify_pixels(original: bytes, updated: bytes) -> None:
    """Raise ``PixelIntegrityError`` unless both encodings decode to identical pixels."""
    before, after = _pixels(original), _pixels(updated)
    if before.shape != after.shape:
        raise PixelIntegrityError(f"Image dimensions changed from {before.shape} to {after.shape}")
    if not np.array_equal(before, after):
        raise PixelIntegrityError("Image pixels changed while updating metadata")


def set_geotag(source: Path | str, target: Path | str, location: GeoLocation) -> None:
    """Copy ``source`` to ``target`` with a new GPS position.

    The EXIF segment is replaced without re-encoding the image data.  The result
    is decoded and compared against the source before anything is written.
    """
    source, target = Path(source), Path(target)
    data = source.read_bytes()
    with Image.open(io.BytesIO(data)) as img:
        if img.format not in GEOTAG_FORMATS:
            raise UnsupportedFormatError(f"Cannot write geotags to {img.format or 'unknown'} files")

    exif_dict = write_geotag(load_exif(source), location)
    # piexif.dump needs the thumbnail and its 1st IFD together or not at all
    if not (exif_dict.get("thumbnail") and exif_dict.get("1st")):
        exif_dict["thumbnail"] = None
        exif_dict["1st"] = {}
    try:
        exif_bytes = piexif.dump(exif_dict)
    except ValueError as exc:
        raise UnsupportedFormatError(f"Cannot re-serialize the EXIF data of {source.name}: {exc}") from exc

    output = io.BytesIO()
    piexif.insert(exif_bytes, data, output)
    updated = output.getvalue()
    verify_pixels(data, updated)

    target.write_bytes(updated)
    log.info("Geotagged %s at %.5f, %.5f", target.name, location.latitude, location.longitude)


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace").rstrip("\x00").strip()
    return str(value).strip()


def _number(value: float) -> str:
    return f"{value:g}"


def _exif_value(exif_dict: dict[str, Any], tag: int) -> Any:
    return (exif_dict.get("Exif") or {}).get(tag)


def timestamp_from_exif(exif_dict: dict[str, Any]) -> Optional[datetime]:
    raw = _exif_value(exif_dict, piexif.ExifIFD.DateTimeOriginal)
    if raw is None:
        raw = (exif_dict.get("0th") or {}).get(piexif.ImageIFD.DateTime)
    if raw is None:
        return None
    try:
        return datetime.strptime(_text(raw), EXIF_TIME_FORMAT)
    except ValueError:
        log.debug("Unparseable EXIF timestamp %r", raw)
        return None


def get_timestamp(path: Path | str) -> Optional[datetime]:
    """Capture time from ``DateTimeOriginal``, falling back to ``DateTime``."""
    return timestamp_from_exif(load_exif(Path(path)))


def summarize(exif_dict: dict[str, Any]) -> str:
    parts: list[str] = []

    model = (exif_dict.get("0th") or {}).get(piexif.ImageIFD.Model)
    if model:
        parts.append(_text(model))

    exposure = Rational.decode(_exif_value(exif_dict, piexif.ExifIFD.ExposureTime))
    if exposure is not None:
        parts.append(_number(float(exposure)) + "s")

    aperture = Rational.decode(_exif_value(exif_dict, piexif.ExifIFD.FNumber))
    if aperture is not None:
        parts.append("f/" + _number(float(aperture)))

    focal = Rational.decode(_exif_value(exif_dict, piexif.ExifIFD.FocalLength))
    if focal is not None:
        parts.append(_number(float(focal)) + "mm")

    iso = _exif_value(exif_dict, piexif.ExifIFD.ISOSpeedRatings)
    if isinstance(iso, (tuple, list)):
        iso = iso[0] if iso else None
    if iso is not None:
        parts.append(f"ISO{iso}")

    timestamp = timestamp_from_exif(exif_dict)
    if timestamp is not None:
        parts.append(timestamp.strftime("%Y-%m-%d %H:%M:%S"))

    return ", ".join(parts)


def metadata_summary(path: Path | str) -> str:
    """One-line camera summary such as ``Canon EOS R5, 0.005s, f/8, 35mm, ISO100, ...``."""
    return summarize(load_exif(Path(path)))
