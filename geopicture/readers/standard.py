"""Standard raster reader/writer using Pillow."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, BinaryIO, Optional

import numpy as np
from PIL import Image, UnidentifiedImageError

from geopicture.errors import UnsupportedFormatError
from geopicture.pixels import DEFAULT_DPI, DecodedPicture, PixelBuffer, PixelFormat, Rotation
from geopicture.processing.parallel import CancellationToken, check_cancelled

log = logging.getLogger(__name__)

ORIENTATION_TAG = 274

SAVE_FORMATS = {
    ".jpg": "JPEG",
    ".jpeg": "JPEG",
    ".png": "PNG",
    ".tif": "TIFF",
    ".tiff": "TIFF",
    ".bmp": "BMP",
}

_MODE_FORMATS = {
    "L": PixelFormat.GRAY8,
    "I;16": PixelFormat.GRAY16,
    "I;16L": PixelFormat.GRAY16,
    "I;16B": PixelFormat.GRAY16,
    "RGB": PixelFormat.RGB24,
    "RGBA": PixelFormat.RGBA32,
    "CMYK": PixelFormat.CMYK32,
}


def image_to_buffer(img: Image.Image) -> PixelBuffer:
    """Copy a Pillow image into a ``PixelBuffer``, converting exotic modes to RGB(A)."""
    mode = img.mode
    if mode not in _MODE_FORMATS:
        has_alpha = "A" in mode or "transparency" in img.info
        img = img.convert("RGBA" if has_alpha else "RGB")
        mode = img.mode
    fmt = _MODE_FORMATS[mode]
    arr = np.asarray(img)
    if arr.ndim == 2:
        arr = arr[:, :, None]
    arr = arr.astype(fmt.dtype, copy=False)

    dpi = img.info.get("dpi")
    if isinstance(dpi, tuple) and len(dpi) == 2 and all(dpi):
        dpi_pair = (float(dpi[0]), float(dpi[1]))
    else:
        dpi_pair = (DEFAULT_DPI, DEFAULT_DPI)
    return PixelBuffer(arr, fmt, dpi_pair)


def buffer_to_image(buffer: PixelBuffer) -> Image.Image:
    fmt = buffer.pixel_format
    pixels = buffer.pixels
    if fmt is PixelFormat.GRAY8:
        return Image.fromarray(np.ascontiguousarray(pixels[:, :, 0]))
    if fmt is PixelFormat.GRAY16:
        return Image.fromarray(pixels[:, :, 0].astype("<u2"))
    if fmt is PixelFormat.RGB24:
        return Image.fromarray(pixels)
    if fmt is PixelFormat.RGB48:
        log.warning("Pillow has no 48-bit RGB mode, reducing to 8 bits per sample")
        return Image.fromarray((pixels >> 8).astype(np.uint8))
    if fmt is PixelFormat.RGBA32:
        return Image.fromarray(pixels)
    if fmt is PixelFormat.BGRA32:
        return Image.fromarray(np.ascontiguousarray(pixels[:, :, [2, 1, 0, 3]]))
    return Image.frombytes("CMYK", (buffer.width, buffer.height), buffer.tobytes())


def decode(
    stream: BinaryIO,
    rotation: Rotation = Rotation.ROTATE_0,
    max_width: int = 0,
    token: Optional[CancellationToken] = None,
) -> DecodedPicture:
    """Decode any Pillow-supported raster from ``stream``."""
    from geopicture.processing.lanczos import limit_width

    try:
        img = Image.open(stream)
    except UnidentifiedImageError as exc:
        raise UnsupportedFormatError(f"Unrecognised raster data: {exc}") from exc

    with img:
        fmt_name = img.format or ""
        if max_width > 0 and img.width > max_width and fmt_name == "JPEG":
            # DCT scaling: decodes at the smallest 1/2^n size still >= the request
            img.draft(img.mode, (max_width, max(1, img.height * max_width // img.width)))
        orientation = img.getexif().get(ORIENTATION_TAG)
        if orientation in (3, 6, 8):
            rotation = Rotation.from_orientation(orientation)
        check_cancelled(token)
        buffer = image_to_buffer(img)
    check_cancelled(token)

    buffer = limit_width(buffer, max_width, token)
    return DecodedPicture(buffer, rotation, fmt_name)


def save_picture(buffer: PixelBuffer, path: Path, quality: int = 95) -> None:
    """Save ``buffer`` to ``path``; the format follows the file extension."""
    ext = path.suffix.lower()
    fmt = SAVE_FORMATS.get(ext)
    if fmt is None:
        raise UnsupportedFormatError(f"Unsupported file format {ext}")

    if buffer.pixel_format is PixelFormat.CMYK32 and fmt != "JPEG":
        from geopicture.processing.cmyk import cmyk_to_bgra
        buffer = cmyk_to_bgra(buffer)
    img = buffer_to_image(buffer)
    if fmt in ("JPEG", "BMP") and img.mode == "RGBA":
        img = img.convert("RGB")
    if fmt in ("JPEG", "BMP") and img.mode == "I;16":
        img = Image.fromarray((buffer.pixels[:, :, 0] >> 8).astype(np.uint8))

    options: dict[str, Any] = {"dpi": buffer.dpi}
    if fmt == "JPEG":
        options["quality"] = quality
    elif fmt == "TIFF":
        options["compression"] = "tiff_deflate"
    log.debug("Saving %dx%d %s as %s to %s", buffer.width, buffer.height, buffer.pixel_format.name, fmt, path)
    img.save(path, format=fmt, **options)
