"""Exception types raised by the decoders and metadata writers."""
from __future__ import annotations


class PictureError(ValueError):
    """Base class for every failure raised by geopicture."""


class UnsupportedFormatError(PictureError):
    """Container signature or markers were not recognised."""


class UnsupportedColorModeError(PictureError):
    """Color mode and bit depth combination is not implemented."""

    def __init__(self, color_mode: str, bit_depth: int) -> None:
        super().__init__(f"Unsupported color mode {color_mode} at {bit_depth} bits")
        self.color_mode = color_mode
        self.bit_depth = bit_depth


class NoRenderableLayerError(PictureError):
    """No visible, non-empty layer was found in a layered document."""


class MalformedContainerError(PictureError):
    """IFD chain or box structure is invalid."""


class OperationCancelledError(PictureError):
    """A cancellation token was observed mid-operation."""


class PixelIntegrityError(PictureError):
    """Re-encoded pixels differ from the source pixels."""
