"""Picture loading orchestrator: pick a decoder, decode, normalize, downscale."""
from __future__ import annotations

import enum
import logging
from pathlib import Path
from typing import BinaryIO, Callable, Optional

from geopicture.config import Settings, get_settings
from geopicture.pixels import DecodedPicture, PixelFormat, Rotation
from geopicture.processing.cmyk import cmyk_to_bgra
from geopicture.processing.lanczos import limit_width
from geopicture.processing.parallel import CancellationToken, check_cancelled
from geopicture.readers import psd, raw, standard

log = logging.getLogger(__name__)


class PictureFormat(enum.Enum):
    CR2 = "cr2"
    CR3 = "cr3"
    PSD = "psd"
    GENERIC = "generic"


Decoder = Callable[[BinaryIO, Rotation, int, Optional[CancellationToken]], Optional[DecodedPicture]]

DECODERS: dict[PictureFormat, Decoder] = {
    PictureFormat.CR2: raw.decode_cr2,
    PictureFormat.CR3: raw.decode_cr3,
    PictureFormat.PSD: psd.decode,
    PictureFormat.GENERIC: standard.decode,
}

_EXTENSION_FORMATS = {
    **{ext: PictureFormat.CR2 for ext in raw.CR2_EXTENSIONS},
    **{ext: PictureFormat.CR3 for ext in raw.CR3_EXTENSIONS},
    **{ext: PictureFormat.PSD for ext in psd.PSD_EXTENSIONS},
}


def format_for_path(path: Path | str) -> PictureFormat:
    """Decoder variant for a file name (extension match is case-insensitive)."""
    return _EXTENSION_FORMATS.get(Path(path).suffix.lower(), PictureFormat.GENERIC)


def sniff_format(header: bytes) -> PictureFormat:
    """Decoder variant from the first 12+ bytes of a file."""
    if header[:4] == b"II*\x00" and header[8:10] == b"CR":
        return PictureFormat.CR2
    if header[4:8] == b"ftyp" and header[8:12] == b"crx ":
        return PictureFormat.CR3
    if header[:4] == psd.PSD_SIGNATURE:
        return PictureFormat.PSD
    return PictureFormat.GENERIC


def decode_stream(
    stream: BinaryIO,
    picture_format: Optional[PictureFormat] = None,
    *,
    rotation: Rotation = Rotation.ROTATE_0,
    max_width: int = 0,
    token: Optional[CancellationToken] = None,
) -> DecodedPicture:
    """Decode ``stream`` with the given variant (sniffed when omitted).

    A CR3 stream without a preview marker is decoded whole by Pillow.
    """
    if picture_format is None:
        start = stream.tell()
        picture_format = sniff_format(stream.read(16))
        stream.seek(start)
    log.debug("Decoding with %s decoder", picture_format.name)

    start = stream.tell()
    picture = DECODERS[picture_format](stream, rotation, max_width, token)
    if picture is None:
        check_cancelled(token)
        log.info("No embedded preview found, falling back to generic decoding")
        stream.seek(start)
        picture = standard.decode(stream, rotation, max_width, token)
    return picture


def normalize(picture: DecodedPicture, token: Optional[CancellationToken] = None,
              settings: Optional[Settings] = None) -> DecodedPicture:
    """Convert CMYK pixels to BGRA; anything else passes through."""
    if picture.buffer.pixel_format is not PixelFormat.CMYK32:
        return picture
    settings = settings or get_settings()
    converted = cmyk_to_bgra(picture.buffer, token, settings.max_workers)
    return DecodedPicture(converted, picture.rotation, picture.source_format)


def load_picture(
    path: Path | str,
    max_width: int = 0,
    token: Optional[CancellationToken] = None,
    settings: Optional[Settings] = None,
) -> DecodedPicture:
    """Decode a picture file to an RGB-family buffer no wider than ``max_width``.

    ``max_width <= 0`` keeps the decoded size.
    """
    path = Path(path)
    settings = settings or get_settings()
    picture_format = format_for_path(path)
    with open(path, "rb") as f:
        picture = decode_stream(f, picture_format, max_width=max_width, token=token)
    picture = normalize(picture, token, settings)
    buffer = limit_width(picture.buffer, max_width, token, settings)
    if buffer is not picture.buffer:
        picture = DecodedPicture(buffer, picture.rotation, picture.source_format)
    log.debug("Loaded %s: %dx%d %s", path.name, picture.width, picture.height, buffer.pixel_format.name)
    return picture
