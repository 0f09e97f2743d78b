"""Pixel processing: Lanczos resampling, CMYK conversion, parallel helpers."""
from __future__ import annotations

from geopicture.processing.cmyk import cmyk_to_bgra
from geopicture.processing.lanczos import LanczosResampler, build_weight_table, resize
from geopicture.processing.parallel import CancellationToken

__all__ = ["CancellationToken", "LanczosResampler", "build_weight_table", "cmyk_to_bgra", "resize"]
