"""EXIF rational and GPS degree/minute/second codec.

An EXIF RATIONAL is a 4-byte numerator followed by a 4-byte denominator.  A GPS
latitude or longitude is three of them (degrees, minutes, seconds), 24 bytes
in total.  Values are also handled as a signed 64-bit integer per rational,
the packed little-endian form read as one ``int64``.
"""
from __future__ import annotations

import dataclasses
import struct
from typing import Sequence

_PAIR = struct.Struct("<ii")
_INT64 = struct.Struct("<q")


@dataclasses.dataclass(frozen=True)
class Rational:
    numerator: int
    denominator: int

    @classmethod
    def from_bytes(cls, data: bytes) -> "Rational":
        return cls(*_PAIR.unpack(bytes(data[:8])))

    @classmethod
    def from_int64(cls, value: int) -> "Rational":
        return cls.from_bytes(_INT64.pack(value))

    def to_bytes(self) -> bytes:
        return _PAIR.pack(self.numerator, self.denominator)

    def to_int64(self) -> int:
        return _INT64.unpack(self.to_bytes())[0]

    def to_tuple(self) -> tuple[int, int]:
        return self.numerator, self.denominator

    def __float__(self) -> float:
        # 5 decimal digits, like the rest of the EXIF value handling
        if self.denominator == 0:
            return 0.0
        return round(self.numerator / self.denominator, 5)

    @classmethod
    def decode(cls, raw: object) -> "Rational | None":
        """Rational from 8 bytes, an int64, or a ``(numerator, denominator)`` pair."""
        if isinstance(raw, (bytes, bytearray)) and len(raw) >= 8:
            return cls.from_bytes(raw)
        if isinstance(raw, int) and not isinstance(raw, bool):
            return cls.from_int64(raw)
        if isinstance(raw, (tuple, list)) and len(raw) == 2 and all(isinstance(v, int) for v in raw):
            return cls(int(raw[0]), int(raw[1]))
        return None


@dataclasses.dataclass(frozen=True)
class GPSRational:
    """Degrees, minutes and seconds of one coordinate, as three rationals.

    ``angle`` is always the magnitude; the hemisphere lives in the separate
    reference tag (``N``/``S``, ``E``/``W``).
    """

    degrees: Rational
    minutes: Rational
    seconds: Rational

    @classmethod
    def from_angle(cls, angle: float) -> "GPSRational":
        """Encode ``|angle|`` with whole degrees, minutes and rounded seconds.

        Integer seconds discretize the position to about 30 m.
        """
        remainder = abs(angle)
        degrees = int(remainder)
        remainder -= degrees
        minutes = int(remainder * 60.0)
        remainder -= minutes / 60.0
        seconds = int(remainder * 3600.0 + 0.5)
        return cls(Rational(degrees, 1), Rational(minutes, 1), Rational(seconds, 1))

    @classmethod
    def from_bytes(cls, data: bytes) -> "GPSRational":
        if len(data) < 24:
            raise ValueError(f"GPS rational needs 24 bytes, got {len(data)}")
        return cls(*(Rational.from_bytes(data[i:i + 8]) for i in (0, 8, 16)))

    @classmethod
    def from_int64s(cls, values: Sequence[int]) -> "GPSRational":
        if len(values) != 3:
            raise ValueError(f"GPS rational needs 3 values, got {len(values)}")
        return cls(*(Rational.from_int64(v) for v in values))

    @classmethod
    def decode(cls, raw: object) -> "GPSRational | None":
        """Accepts 24 packed bytes, three int64 values, or three ``(num, den)`` pairs."""
        if isinstance(raw, (bytes, bytearray)):
            return cls.from_bytes(bytes(raw)) if len(raw) >= 24 else None
        if isinstance(raw, (tuple, list)) and len(raw) == 3:
            parts = [Rational.decode(v) for v in raw]
            if any(p is None for p in parts):
                return None
            return cls(*parts)  # type: ignore[arg-type]
        return None

    @property
    def angle(self) -> float:
        return float(self.degrees) + float(self.minutes) / 60.0 + float(self.seconds) / 3600.0

    def to_bytes(self) -> bytes:
        return self.degrees.to_bytes() + self.minutes.to_bytes() + self.seconds.to_bytes()

    def to_int64s(self) -> list[int]:
        return [self.degrees.to_int64(), self.minutes.to_int64(), self.seconds.to_int64()]

    def to_exif(self) -> tuple[tuple[int, int], ...]:
        """piexif representation: ``((d, 1), (m, 1), (s, 1))``."""
        return self.degrees.to_tuple(), self.minutes.to_tuple(), self.seconds.to_tuple()


def signed_angle(rational: GPSRational, ref: object) -> float:
    """Apply the hemisphere reference: ``S`` and ``W`` negate."""
    if isinstance(ref, (bytes, bytearray)):
        ref = ref.decode("ascii", errors="ignore")
    ref = str(ref or "").strip("\x00 ").upper()
    return -rational.angle if ref in ("S", "W") else rational.angle


@dataclasses.dataclass(frozen=True)
class GeoLocation:
    latitude: float
    longitude: float

    @property
    def latitude_ref(self) -> str:
        return "N" if self.latitude >= 0 else "S"

    @property
    def longitude_ref(self) -> str:
        return "E" if self.longitude >= 0 else "W"

    @classmethod
    def parse(cls, text: str) -> "GeoLocation":
        """Parse ``"lat, lon"`` in decimal degrees."""
        parts = [p.strip() for p in text.replace(";", ",").split(",")]
        if len(parts) != 2:
            raise ValueError(f"Expected 'latitude, longitude', got {text!r}")
        lat, lon = float(parts[0]), float(parts[1])
        if not -90.0 <= lat <= 90.0 or not -180.0 <= lon <= 180.0:
            raise ValueError(f"Coordinate out of range: {lat}, {lon}")
        return cls(lat, lon)
