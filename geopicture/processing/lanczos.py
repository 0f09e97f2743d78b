"""Separable Lanczos resampling of 8-bit interleaved pixel buffers.

The resize runs as two 1-D passes: horizontal first (when the width changes)
into an intermediate buffer, then vertical (when the height changes).  Each
pass uses a ``WeightTable`` computed once per axis and shared read-only by
the worker bands.

When downscaling, the kernel is stretched by the inverse scale factor so the
filter also acts as a low-pass pre-filter; when upscaling the native support
radius is used.  Source indices that fall outside the line are clamped to the
nearest edge sample, and every destination weight row is normalized to sum to
one, so a uniform image stays uniform at any size.
"""
from __future__ import annotations

import dataclasses
import logging
from typing import Callable, Optional

import numpy as np

from geopicture.config import Settings, get_settings
from geopicture.pixels import PixelBuffer
from geopicture.processing.parallel import CancellationToken, parallel_for

log = logging.getLogger(__name__)

Kernel = Callable[[np.ndarray], np.ndarray]


def sinc(x):
    """Normalized sinc, ``sin(pi x) / (pi x)``."""
    x = np.asarray(x, dtype=np.float64)
    out = np.sinc(x)
    return float(out) if out.ndim == 0 else out


def lanczos(x, a: int = 3):
    """Lanczos kernel with support radius ``a``.

    ``a * sin(pi x) * sin(pi x / a) / (pi x)^2`` for ``0 < |x| < a``, 1 at the
    origin and 0 outside the support.
    """
    x = np.abs(np.asarray(x, dtype=np.float64))
    px = np.pi * x
    with np.errstate(divide="ignore", invalid="ignore"):
        value = a * np.sin(px) * np.sin(px / a) / (px * px)
    out = np.where(x < 1e-8, 1.0, np.where(x < a, value, 0.0))
    return float(out) if out.ndim == 0 else out


def lanczos2(x):
    return lanczos(x, 2)


def lanczos3(x):
    return lanczos(x, 3)


@dataclasses.dataclass(frozen=True)
class WeightTable:
    """Per-destination source taps for one axis.

    ``indices[i, t]`` and ``weights[i, t]`` give the ``t``-th contributing source
    sample of destination ``i``; rows shorter than ``taps`` are padded with
    zero weights.  ``scale[i]`` is the factor that normalized row ``i``.
    """

    src_len: int
    indices: np.ndarray
    weights: np.ndarray
    scale: np.ndarray
    counts: np.ndarray

    @property
    def dst_len(self) -> int:
        return self.indices.shape[0]

    @property
    def taps(self) -> int:
        return self.indices.shape[1]

    def pairs(self, i: int) -> list[tuple[int, float]]:
        """Ordered ``(source index, weight)`` pairs for destination ``i``."""
        n = int(self.counts[i])
        return [(int(s), float(w)) for s, w in zip(self.indices[i, :n], self.weights[i, :n])]


def build_weight_table(src_len: int, dst_len: int, radius: int = 3, kernel: Optional[Kernel] = None) -> WeightTable:
    if src_len < 1 or dst_len < 1:
        raise ValueError(f"Line lengths must be positive, got {src_len} -> {dst_len}")
    if kernel is None:
        kernel = lambda x: lanczos(x, radius)  # noqa: E731

    scale_wn = (src_len - 1) / max(dst_len - 1, 1)
    scale_nw = (dst_len - 1) / max(src_len - 1, 1)
    if dst_len < src_len:
        window = radius * scale_wn
        stretch = scale_nw if scale_nw > 0 else dst_len / src_len
    else:
        window = float(radius)
        stretch = 1.0

    center = np.arange(dst_len, dtype=np.float64) * scale_wn
    p_min = np.floor(center - window).astype(np.int64)
    p_max = np.ceil(center + window).astype(np.int64)
    counts = p_max - p_min + 1
    taps = int(counts.max())

    positions = p_min[:, None] + np.arange(taps, dtype=np.int64)[None, :]
    valid = positions <= p_max[:, None]

    raw = np.asarray(kernel((positions - center[:, None]) * stretch), dtype=np.float64) * stretch
    raw = np.where(valid, raw, 0.0)
    total = raw.sum(axis=1)
    scale = np.zeros(dst_len, dtype=np.float64)
    np.divide(1.0, total, out=scale, where=total > 0)

    weights = raw * scale[:, None]
    indices = np.where(valid, np.clip(positions, 0, src_len - 1), 0)

    for arr in (indices, weights, scale, counts):
        arr.flags.writeable = False
    return WeightTable(src_len=src_len, indices=indices, weights=weights, scale=scale, counts=counts)


def _to_bytes(acc: np.ndarray) -> np.ndarray:
    # round half up, then clamp to the byte range
    return np.clip(np.floor(acc + 0.5), 0, 255).astype(np.uint8)


class LanczosResampler:
    def __init__(self, radius: int = 3, max_workers: Optional[int] = None, band_size: int = 64) -> None:
        if radius not in (2, 3):
            raise ValueError(f"Lanczos radius must be 2 or 3, got {radius}")
        self.radius = radius
        self.max_workers = max_workers
        self.band_size = band_size

    def resize(
        self,
        source: PixelBuffer,
        width: int,
        height: int,
        dpi_x: Optional[float] = None,
        dpi_y: Optional[float] = None,
        token: Optional[CancellationToken] = None,
    ) -> Optional[PixelBuffer]:
        """Resize ``source`` to ``width`` x ``height``.

        Returns ``source`` itself when the size is unchanged and ``None`` when
        the pixel layout is not 8 bits per sample.
        """
        if width == source.width and height == source.height:
            return source
        if width < 1 or height < 1:
            raise ValueError(f"Target size must be positive, got {width}x{height}")
        if source.bits_per_sample != 8:
            log.debug("Lanczos resize does not handle %s", source.pixel_format.name)
            return None

        log.debug(
            "Resizing %dx%d %s to %dx%d (a=%d)",
            source.width, source.height, source.pixel_format.name, width, height, self.radius,
        )
        pixels = source.pixels
        if width != source.width:
            table = build_weight_table(source.width, width, self.radius)
            pixels = self._horizontal(pixels, table, token)
        if height != source.height:
            table = build_weight_table(source.height, height, self.radius)
            pixels = self._vertical(pixels, table, token)

        dpi = (
            dpi_x if dpi_x is not None else source.dpi[0],
            dpi_y if dpi_y is not None else source.dpi[1],
        )
        return PixelBuffer(pixels, source.pixel_format, dpi)

    def _horizontal(self, src: np.ndarray, table: WeightTable, token: Optional[CancellationToken]) -> np.ndarray:
        rows, _, planes = src.shape
        dst = np.empty((rows, table.dst_len, planes), dtype=np.uint8)

        def run(start: int, stop: int) -> None:
            block = src[start:stop].astype(np.float64)
            acc = np.zeros((stop - start, table.dst_len, planes), dtype=np.float64)
            for t in range(table.taps):
                acc += block[:, table.indices[:, t], :] * table.weights[None, :, t, None]
            dst[start:stop] = _to_bytes(acc)

        parallel_for(rows, run, token=token, max_workers=self.max_workers, band_size=self.band_size)
        return dst

    def _vertical(self, src: np.ndarray, table: WeightTable, token: Optional[CancellationToken]) -> np.ndarray:
        _, cols, planes = src.shape
        dst = np.empty((table.dst_len, cols, planes), dtype=np.uint8)

        def run(start: int, stop: int) -> None:
            block = src[:, start:stop].astype(np.float64)
            acc = np.zeros((table.dst_len, stop - start, planes), dtype=np.float64)
            for t in range(table.taps):
                acc += block[table.indices[:, t]] * table.weights[:, t, None, None]
            dst[:, start:stop] = _to_bytes(acc)

        parallel_for(cols, run, token=token, max_workers=self.max_workers, band_size=self.band_size)
        return dst


def resize(
    source: PixelBuffer,
    width: int,
    height: int,
    dpi_x: Optional[float] = None,
    dpi_y: Optional[float] = None,
    token: Optional[CancellationToken] = None,
    *,
    radius: int = 3,
    max_workers: Optional[int] = None,
) -> Optional[PixelBuffer]:
    return LanczosResampler(radius, max_workers).resize(source, width, height, dpi_x, dpi_y, token)


def fit_width(source: PixelBuffer, max_width: int) -> tuple[int, int]:
    """Target size that caps the width at ``max_width`` and keeps the aspect ratio."""
    if max_width <= 0 or source.width <= max_width:
        return source.width, source.height
    height = max(1, int(round(source.height * max_width / source.width)))
    return max_width, height


def limit_width(
    source: PixelBuffer,
    max_width: int,
    token: Optional[CancellationToken] = None,
    settings: Optional[Settings] = None,
) -> PixelBuffer:
    """Downscale ``source`` so its width does not exceed ``max_width``.

    Buffers the resampler cannot handle are returned at their decoded size.
    """
    width, height = fit_width(source, max_width)
    if (width, height) == (source.width, source.height):
        return source
    settings = settings or get_settings()
    resized = resize(
        source, width, height, token=token,
        radius=settings.lanczos_radius, max_workers=settings.max_workers,
    )
    if resized is None:
        log.info("Keeping %s picture at %dx%d, resampler does not support it",
                 source.pixel_format.name, source.width, source.height)
        return source
    return resized
