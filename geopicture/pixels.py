"""Canonical pixel buffer and the small enums that travel with it."""
from __future__ import annotations

import dataclasses
import enum

import numpy as np

DEFAULT_DPI = 96.0


class PixelFormat(enum.Enum):
    """Interleaved sample layouts: (channel order, bits per sample)."""

    GRAY8 = ("L", 8)
    GRAY16 = ("L", 16)
    RGB24 = ("RGB", 8)
    RGB48 = ("RGB", 16)
    RGBA32 = ("RGBA", 8)
    BGRA32 = ("BGRA", 8)
    CMYK32 = ("CMYK", 8)

    @property
    def channel_order(self) -> str:
        return self.value[0]

    @property
    def channels(self) -> int:
        return len(self.value[0])

    @property
    def bits_per_sample(self) -> int:
        return self.value[1]

    @property
    def bytes_per_sample(self) -> int:
        return self.value[1] // 8

    @property
    def bytes_per_pixel(self) -> int:
        return self.channels * self.bytes_per_sample

    @property
    def dtype(self) -> type:
        return np.uint8 if self.bits_per_sample == 8 else np.uint16


class Rotation(enum.IntEnum):
    ROTATE_0 = 0
    ROTATE_90 = 90
    ROTATE_180 = 180
    ROTATE_270 = 270

    @classmethod
    def from_orientation(cls, orientation: int | None) -> "Rotation":
        """Map an EXIF/TIFF orientation value to the rotation a viewer must apply."""
        return {3: cls.ROTATE_180, 6: cls.ROTATE_90, 8: cls.ROTATE_270}.get(orientation or 0, cls.ROTATE_0)


@dataclasses.dataclass(frozen=True)
class PixelBuffer:
    """Immutable interleaved pixels, shape ``(height, width, channels)``."""

    pixels: np.ndarray
    pixel_format: PixelFormat
    dpi: tuple[float, float] = (DEFAULT_DPI, DEFAULT_DPI)

    def __post_init__(self) -> None:
        fmt = self.pixel_format
        if self.pixels.ndim != 3 or self.pixels.shape[2] != fmt.channels:
            raise ValueError(
                f"{fmt.name} needs shape (h, w, {fmt.channels}), got {self.pixels.shape}"
            )
        if self.pixels.dtype != fmt.dtype:
            raise ValueError(f"{fmt.name} needs dtype {np.dtype(fmt.dtype)}, got {self.pixels.dtype}")
        pixels = np.ascontiguousarray(self.pixels)
        pixels.flags.writeable = False
        object.__setattr__(self, "pixels", pixels)

    @classmethod
    def from_bytes(
        cls,
        data: bytes | bytearray | memoryview,
        width: int,
        height: int,
        pixel_format: PixelFormat,
        dpi: tuple[float, float] = (DEFAULT_DPI, DEFAULT_DPI),
    ) -> "PixelBuffer":
        """Wrap packed native-endian interleaved samples."""
        expected = width * height * pixel_format.bytes_per_pixel
        if len(data) != expected:
            raise ValueError(f"Expected {expected} bytes for {width}x{height} {pixel_format.name}, got {len(data)}")
        arr = np.frombuffer(bytes(data), dtype=pixel_format.dtype)
        return cls(arr.reshape(height, width, pixel_format.channels), pixel_format, dpi)

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def channels(self) -> int:
        return self.pixel_format.channels

    @property
    def bits_per_sample(self) -> int:
        return self.pixel_format.bits_per_sample

    @property
    def nbytes(self) -> int:
        return self.pixels.nbytes

    def tobytes(self) -> bytes:
        return self.pixels.tobytes()


@dataclasses.dataclass(frozen=True)
class DecodedPicture:
    """Decoder output: pixels plus the rotation the consumer should apply."""

    buffer: PixelBuffer
    rotation: Rotation = Rotation.ROTATE_0
    source_format: str = ""

    @property
    def width(self) -> int:
        return self.buffer.width

    @property
    def height(self) -> int:
        return self.buffer.height
