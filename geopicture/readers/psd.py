"""Photoshop (PSD) reader.

Parses the document header, the layer records with their planar channel
data, and the merged composite image that Photoshop stores after the layers.
One layer is chosen for display (see ``select_layer``) and its channel planes
are interleaved into a ``PixelBuffer``.

Supported: Grayscale 8/16-bit, RGB 8/16-bit and CMYK 8-bit; raw, PackBits,
ZIP and ZIP-with-prediction channel compression.  PSB (large document)
files are not handled.
"""
from __future__ import annotations

import dataclasses
import enum
import logging
import struct
import zlib
from typing import BinaryIO, Optional

import numpy as np

from geopicture.errors import (
    MalformedContainerError,
    NoRenderableLayerError,
    UnsupportedColorModeError,
    UnsupportedFormatError,
)
from geopicture.pixels import DecodedPicture, PixelBuffer, PixelFormat, Rotation
from geopicture.processing.parallel import CancellationToken, check_cancelled, parallel_for

log = logging.getLogger(__name__)

PSD_EXTENSIONS = {".psd"}
PSD_SIGNATURE = b"8BPS"

COMPRESSION_RAW = 0
COMPRESSION_RLE = 1
COMPRESSION_ZIP = 2
COMPRESSION_ZIP_PREDICTION = 3

LAYER_FLAG_HIDDEN = 0x02


class ColorMode(enum.IntEnum):
    BITMAP = 0
    GRAYSCALE = 1
    INDEXED = 2
    RGB = 3
    CMYK = 4
    MULTICHANNEL = 7
    DUOTONE = 8
    LAB = 9


# (color mode, bit depth) -> interleaved output layout
_PIXEL_FORMATS = {
    (ColorMode.GRAYSCALE, 8): PixelFormat.GRAY8,
    (ColorMode.GRAYSCALE, 16): PixelFormat.GRAY16,
    (ColorMode.RGB, 8): PixelFormat.RGB24,
    (ColorMode.RGB, 16): PixelFormat.RGB48,
    (ColorMode.CMYK, 8): PixelFormat.CMYK32,
}


@dataclasses.dataclass(frozen=True)
class PsdHeader:
    version: int
    channels: int
    height: int
    width: int
    depth: int
    color_mode: int

    @property
    def bytes_per_sample(self) -> int:
        return max(1, self.depth // 8)


@dataclasses.dataclass
class PsdLayer:
    name: str
    top: int
    left: int
    bottom: int
    right: int
    opacity: int = 255
    visible: bool = True
    channels: dict[int, bytes] = dataclasses.field(default_factory=dict)
    is_base: bool = False

    @property
    def width(self) -> int:
        return max(0, self.right - self.left)

    @property
    def height(self) -> int:
        return max(0, self.bottom - self.top)


@dataclasses.dataclass
class PsdDocument:
    header: PsdHeader
    layers: list[PsdLayer]
    base_layer: PsdLayer

    @property
    def color_mode(self) -> int:
        return self.header.color_mode

    @property
    def depth(self) -> int:
        return self.header.depth


class _Reader:
    """Big-endian primitive reads; running out of data is a malformed file."""

    def __init__(self, stream: BinaryIO) -> None:
        self.stream = stream

    def read(self, size: int) -> bytes:
        data = self.stream.read(size)
        if len(data) < size:
            raise MalformedContainerError(f"PSD data truncated: wanted {size} bytes, got {len(data)}")
        return data

    def unpack(self, fmt: str) -> tuple:
        return struct.unpack(">" + fmt, self.read(struct.calcsize(">" + fmt)))

    def u8(self) -> int:
        return self.unpack("B")[0]

    def u16(self) -> int:
        return self.unpack("H")[0]

    def i16(self) -> int:
        return self.unpack("h")[0]

    def u32(self) -> int:
        return self.unpack("I")[0]

    def tell(self) -> int:
        return self.stream.tell()

    def seek(self, position: int) -> None:
        self.stream.seek(position)


def unpack_bits(data: bytes, expected: int) -> bytes:
    """Decode PackBits run-length data into exactly ``expected`` bytes."""
    out = bytearray()
    i = 0
    n = len(data)
    while i < n and len(out) < expected:
        header = data[i]
        i += 1
        if header < 128:
            count = header + 1
            out += data[i:i + count]
            i += count
        elif header > 128:
            if i >= n:
                break
            out += data[i:i + 1] * (257 - header)
            i += 1
        # 128 is a no-op
    if len(out) < expected:
        raise MalformedContainerError(f"PackBits data decoded to {len(out)} bytes, expected {expected}")
    return bytes(out[:expected])


def _undo_prediction(data: bytes, rows: int, cols: int, bytes_per_sample: int) -> bytes:
    if bytes_per_sample == 1:
        arr = np.frombuffer(data, dtype=np.uint8).reshape(rows, cols)
        return np.cumsum(arr, axis=1, dtype=np.uint8).tobytes()
    if bytes_per_sample == 2:
        arr = np.frombuffer(data, dtype=">u2").reshape(rows, cols)
        return np.cumsum(arr, axis=1, dtype=np.uint16).astype(">u2").tobytes()
    raise UnsupportedFormatError("ZIP prediction is only supported for 8 and 16-bit data")


def _decode_plane(compression: int, payload: bytes, rows: int, cols: int, bytes_per_sample: int) -> bytes:
    row_bytes = cols * bytes_per_sample
    expected = rows * row_bytes
    if expected == 0:
        return b""
    if compression == COMPRESSION_RAW:
        if len(payload) < expected:
            raise MalformedContainerError(f"Raw channel has {len(payload)} bytes, expected {expected}")
        return payload[:expected]
    if compression == COMPRESSION_RLE:
        # per-row byte counts precede the PackBits data
        counts = struct.unpack(f">{rows}H", payload[: rows * 2])
        start = rows * 2
        return unpack_bits(payload[start:start + sum(counts)], expected)
    if compression in (COMPRESSION_ZIP, COMPRESSION_ZIP_PREDICTION):
        try:
            data = zlib.decompress(payload)
        except zlib.error as exc:
            raise MalformedContainerError(f"Corrupt ZIP channel data: {exc}") from exc
        if len(data) < expected:
            raise MalformedContainerError(f"ZIP channel has {len(data)} bytes, expected {expected}")
        data = data[:expected]
        if compression == COMPRESSION_ZIP_PREDICTION:
            data = _undo_prediction(data, rows, cols, bytes_per_sample)
        return data
    raise UnsupportedFormatError(f"Unknown PSD channel compression {compression}")


def _read_header(reader: _Reader) -> PsdHeader:
    if reader.read(4) != PSD_SIGNATURE:
        raise UnsupportedFormatError("Missing 8BPS signature")
    version = reader.u16()
    if version != 1:
        raise UnsupportedFormatError(f"PSD version {version} is not supported")
    reader.read(6)
    channels, height, width, depth, color_mode = reader.unpack("HIIHH")
    return PsdHeader(version, channels, height, width, depth, color_mode)


def _read_pascal_name(reader: _Reader) -> str:
    length = reader.u8()
    name = reader.read(length).decode("latin-1")
    padding = (4 - (length + 1) % 4) % 4
    reader.read(padding)
    return name


def _read_layers(reader: _Reader, header: PsdHeader, token: Optional[CancellationToken]) -> list[PsdLayer]:
    section_length = reader.u32()
    section_end = reader.tell() + section_length
    if section_length == 0:
        return []

    info_length = reader.u32()
    layers: list[PsdLayer] = []
    if info_length > 0:
        count = abs(reader.i16())
        records: list[tuple[PsdLayer, list[tuple[int, int]]]] = []
        for _ in range(count):
            top, left, bottom, right = reader.unpack("iiii")
            channel_count = reader.u16()
            channel_info = [reader.unpack("hI") for _ in range(channel_count)]
            if reader.read(4) != b"8BIM":
                raise MalformedContainerError("Layer record without 8BIM blend signature")
            reader.read(4)  # blend mode key
            opacity, _clipping, flags, _filler = reader.unpack("BBBB")
            extra_length = reader.u32()
            extra_end = reader.tell() + extra_length
            reader.read(reader.u32())  # layer mask data
            reader.read(reader.u32())  # blending ranges
            name = _read_pascal_name(reader)
            reader.seek(extra_end)
            layer = PsdLayer(
                name=name, top=top, left=left, bottom=bottom, right=right,
                opacity=opacity, visible=not flags & LAYER_FLAG_HIDDEN,
            )
            records.append((layer, channel_info))

        for layer, channel_info in records:
            check_cancelled(token)
            for channel_id, length in channel_info:
                payload = reader.read(length)
                if channel_id < -1 or length < 2:
                    continue  # user masks use the mask rectangle
                compression = struct.unpack(">H", payload[:2])[0]
                layer.channels[channel_id] = _decode_plane(
                    compression, payload[2:], layer.height, layer.width, header.bytes_per_sample
                )
            layers.append(layer)

    reader.seek(section_end)
    return layers


def _read_base_layer(reader: _Reader, header: PsdHeader) -> PsdLayer:
    base = PsdLayer(name="", top=0, left=0, bottom=header.height, right=header.width, is_base=True)
    compression = reader.u16()
    rows, cols, bps = header.height, header.width, header.bytes_per_sample
    plane_size = rows * cols * bps
    if plane_size == 0:
        return base

    if compression == COMPRESSION_RLE:
        total_rows = rows * header.channels
        counts = reader.unpack(f"{total_rows}H")
        for ch in range(header.channels):
            size = sum(counts[ch * rows:(ch + 1) * rows])
            base.channels[ch] = unpack_bits(reader.read(size), plane_size)
    elif compression == COMPRESSION_RAW:
        for ch in range(header.channels):
            base.channels[ch] = reader.read(plane_size)
    else:
        payload = reader.stream.read()
        data = _decode_plane(compression, payload, rows * header.channels, cols, bps)
        for ch in range(header.channels):
            base.channels[ch] = data[ch * plane_size:(ch + 1) * plane_size]
    return base


def pixel_format_for(color_mode: int, depth: int) -> PixelFormat:
    """Output layout for a (color mode, depth) pair this reader can render."""
    try:
        mode = ColorMode(color_mode)
    except ValueError:
        raise UnsupportedColorModeError(str(color_mode), depth) from None
    pixel_format = _PIXEL_FORMATS.get((mode, depth))
    if pixel_format is None:
        raise UnsupportedColorModeError(mode.name, depth)
    return pixel_format


def read_document(stream: BinaryIO, token: Optional[CancellationToken] = None) -> PsdDocument:
    reader = _Reader(stream)
    header = _read_header(reader)
    # plane sizes follow the depth; reject unrenderable modes before reading any
    pixel_format_for(header.color_mode, header.depth)
    log.debug(
        "PSD %dx%d, %d channels, mode %d, %d-bit",
        header.width, header.height, header.channels, header.color_mode, header.depth,
    )
    reader.read(reader.u32())  # color mode data
    reader.read(reader.u32())  # image resources
    layers = _read_layers(reader, header, token)
    check_cancelled(token)
    base = _read_base_layer(reader, header)
    return PsdDocument(header, layers, base)


def select_layer(document: PsdDocument) -> PsdLayer:
    """First visible, opaque-enough, non-empty layer; the merged image otherwise."""
    for layer in document.layers:
        if layer.visible and layer.opacity > 0 and layer.width > 0 and layer.height > 0:
            return layer
    base = document.base_layer
    if base.width > 0 and base.height > 0 and base.channels:
        return base
    raise NoRenderableLayerError("No visible layer with pixels in PSD file")


def create_layer_buffer(
    document: PsdDocument,
    layer: PsdLayer,
    token: Optional[CancellationToken] = None,
    max_workers: Optional[int] = None,
) -> PixelBuffer:
    """Interleave the planar channels of ``layer`` into one buffer."""
    pixel_format = pixel_format_for(document.color_mode, document.depth)

    planes = pixel_format.channels
    bps = pixel_format.bytes_per_sample
    pixel_size = planes * bps
    count = layer.width * layer.height
    for ch in range(planes):
        data = layer.channels.get(ch)
        if data is None or len(data) != count * bps:
            raise MalformedContainerError(f"Layer '{layer.name}' is missing color channel {ch}")

    dest = np.empty(count * pixel_size, dtype=np.uint8)

    def scatter(start: int, stop: int) -> None:
        for ch in range(start, stop):
            source = np.frombuffer(layer.channels[ch], dtype=np.uint8)
            for byte in range(bps):
                dest[ch * bps + byte::pixel_size] = source[byte::bps]

    parallel_for(planes, scatter, token=token, max_workers=max_workers, band_size=1)

    if bps == 2:
        samples = dest.view(">u2").astype(np.uint16)
    else:
        samples = dest
    if pixel_format is PixelFormat.CMYK32:
        # PSD stores CMYK inverted (255 = no ink)
        samples = 255 - samples
    return PixelBuffer.from_bytes(samples.tobytes(), layer.width, layer.height, pixel_format)


def decode(
    stream: BinaryIO,
    rotation: Rotation = Rotation.ROTATE_0,
    max_width: int = 0,
    token: Optional[CancellationToken] = None,
) -> DecodedPicture:
    from geopicture.processing.lanczos import limit_width

    document = read_document(stream, token)
    layer = select_layer(document)
    log.debug("Rendering PSD layer %r (%dx%d)", layer.name or "<merged>", layer.width, layer.height)
    buffer = create_layer_buffer(document, layer, token)
    buffer = limit_width(buffer, max_width, token)
    return DecodedPicture(buffer, rotation, "PSD")
