"""CMYK to BGRA conversion with a fixed SWOP-like polynomial (not ICC accurate)."""
from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from geopicture.pixels import PixelBuffer, PixelFormat
from geopicture.processing.parallel import CancellationToken, parallel_for

log = logging.getLogger(__name__)

# (constant, c, m, y, c*m, y*c, y*m) on complemented ink values 0..255
_RED = (80.0, 0.5882, -0.3529, -0.1373, 0.00185, 0.00046, 0.0)
_GREEN = (66.0, -0.1961, 0.2745, -0.0627, 0.00215, 0.00008, 0.00062)
_BLUE = (86.0, -0.3255, -0.1569, 0.1647, 0.00046, 0.00123, 0.00215)


def _channel(coef: tuple[float, ...], c: np.ndarray, m: np.ndarray, y: np.ndarray) -> np.ndarray:
    k0, kc, km, ky, kcm, kyc, kym = (np.float32(v) for v in coef)
    return k0 + kc * c + km * m + ky * y + kcm * c * m + kyc * y * c + kym * y * m


def _convert_rows(src: np.ndarray) -> np.ndarray:
    samples = src.astype(np.float32)
    c = 255 - samples[..., 0]
    m = 255 - samples[..., 1]
    y = 255 - samples[..., 2]
    k = (255 - samples[..., 3]) / np.float32(255)

    out = np.empty(src.shape, dtype=np.uint8)
    for plane, coef in ((0, _BLUE), (1, _GREEN), (2, _RED)):
        value = _channel(coef, c, m, y) * k + np.float32(0.5)
        out[..., plane] = np.clip(value, 0, 255).astype(np.uint8)
    out[..., 3] = 255
    return out


def cmyk_to_bgra(
    source: PixelBuffer,
    token: Optional[CancellationToken] = None,
    max_workers: Optional[int] = None,
) -> Optional[PixelBuffer]:
    """Convert an interleaved CMYK32 buffer to BGRA32; ``None`` for any other layout."""
    if source.pixel_format is not PixelFormat.CMYK32:
        log.debug("CMYK conversion skipped for %s", source.pixel_format.name)
        return None
    src = source.pixels
    dst = np.empty(src.shape, dtype=np.uint8)

    def run(start: int, stop: int) -> None:
        dst[start:stop] = _convert_rows(src[start:stop])

    parallel_for(source.height, run, token=token, max_workers=max_workers)
    return PixelBuffer(dst, PixelFormat.BGRA32, source.dpi)
