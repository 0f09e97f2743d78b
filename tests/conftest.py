"""Synthetic picture containers assembled byte by byte."""
from __future__ import annotations

import io
import struct
import zlib

import numpy as np
import pytest
from PIL import Image


def encode_jpeg(width: int, height: int, color=(200, 40, 40), quality: int = 95, exif: bytes | None = None) -> bytes:
    img = Image.new("RGB", (width, height), color)
    out = io.BytesIO()
    options = {"quality": quality}
    if exif is not None:
        options["exif"] = exif
    img.save(out, format="JPEG", **options)
    return out.getvalue()


def pack_bits(data: bytes) -> bytes:
    """PackBits encoder (literal runs only, plus repeats of 3+ bytes)."""
    out = bytearray()
    i = 0
    n = len(data)
    while i < n:
        run = 1
        while i + run < n and run < 128 and data[i + run] == data[i]:
            run += 1
        if run >= 3:
            out.append(257 - run)
            out.append(data[i])
            i += run
            continue
        start = i
        while i < n and i - start < 128:
            if i + 2 < n and data[i] == data[i + 1] == data[i + 2]:
                break
            i += 1
        out.append(i - start - 1)
        out += data[start:i]
    return bytes(out)


def build_cr2(jpeg: bytes, width: int, height: int, orientation: int = 1, compression: int = 6) -> bytes:
    """Minimal CR2: 16-byte header, one IFD describing a strip with the preview."""
    entries = [
        (0x100, 3, 1, width),
        (0x101, 3, 1, height),
        (0x103, 3, 1, compression),
        (0x111, 4, 1, 0),  # patched below
        (0x112, 3, 1, orientation),
        (0x117, 4, 1, len(jpeg)),
    ]
    ifd_offset = 16
    data_offset = ifd_offset + 2 + 12 * len(entries) + 4
    entries[3] = (0x111, 4, 1, data_offset)

    out = bytearray(b"II*\x00" + struct.pack("<I", ifd_offset) + b"CR\x02\x00" + b"\x00" * 4)
    out += struct.pack("<H", len(entries))
    for tag, field_type, count, value in entries:
        out += struct.pack("<HHII", tag, field_type, count, value)
    out += struct.pack("<I", 0)
    out += jpeg
    return bytes(out)


def build_cr3(jpeg: bytes | None, lead: int = 256) -> bytes:
    """ISO-BMFF-like file: ftyp box, filler, then an mdat box holding the preview."""
    out = bytearray(struct.pack(">I", 24) + b"ftypcrx " + b"\x00" * 12)
    out += bytes(range(256)) * (lead // 256) + b"\x00" * (lead % 256)
    if jpeg is not None:
        out += struct.pack(">I", 16 + len(jpeg)) + b"mdat" + b"\x00" * 8 + jpeg
    else:
        out += b"\x00" * 64
    return bytes(out)


def _pascal(name: str) -> bytes:
    raw = name.encode("latin-1")
    data = bytes([len(raw)]) + raw
    return data + b"\x00" * ((4 - len(data) % 4) % 4)


def _plane_bytes(plane: np.ndarray, depth: int) -> bytes:
    return plane.astype(">u2" if depth == 16 else np.uint8).tobytes()


def _channel_payload(plane: np.ndarray, depth: int, compression: int) -> bytes:
    raw = _plane_bytes(plane, depth)
    if compression == 0:
        return struct.pack(">H", 0) + raw
    if compression == 1:
        row_bytes = plane.shape[1] * (2 if depth == 16 else 1)
        rows = [pack_bits(raw[r * row_bytes:(r + 1) * row_bytes]) for r in range(plane.shape[0])]
        return struct.pack(">H", 1) + struct.pack(f">{len(rows)}H", *map(len, rows)) + b"".join(rows)
    if compression == 2:
        return struct.pack(">H", 2) + zlib.compress(raw)
    raise ValueError(compression)


def build_psd(
    composite: np.ndarray,
    color_mode: int,
    depth: int = 8,
    layers: list[dict] | None = None,
    compression: int = 0,
) -> bytes:
    """PSD with a merged image of shape (h, w, channels) and optional layers.

    Each layer dict holds ``pixels`` (h, w, channels), ``top``/``left``,
    ``name``, ``opacity`` and ``hidden``.  Sample values are written as given,
    so CMYK planes must already be in the inverted on-disk convention.
    """
    height, width, channels = composite.shape
    out = bytearray(b"8BPS" + struct.pack(">H", 1) + b"\x00" * 6)
    out += struct.pack(">HIIHH", channels, height, width, depth, color_mode)
    out += struct.pack(">I", 0)  # color mode data
    out += struct.pack(">I", 0)  # image resources

    if layers:
        records = bytearray()
        channel_data = bytearray()
        for layer in layers:
            pixels = layer["pixels"]
            top, left = layer.get("top", 0), layer.get("left", 0)
            h, w, n = pixels.shape
            payloads = [_channel_payload(pixels[:, :, c], depth, compression) for c in range(n)]
            records += struct.pack(">iiii", top, left, top + h, left + w)
            records += struct.pack(">H", n)
            for c, payload in enumerate(payloads):
                records += struct.pack(">hI", c, len(payload))
            flags = 0x02 if layer.get("hidden") else 0
            records += b"8BIM" + b"norm" + struct.pack(">BBBB", layer.get("opacity", 255), 0, flags, 0)
            extra = struct.pack(">I", 0) + struct.pack(">I", 0) + _pascal(layer.get("name", "Layer"))
            records += struct.pack(">I", len(extra)) + extra
            for payload in payloads:
                channel_data += payload
        info = struct.pack(">h", len(layers)) + bytes(records) + bytes(channel_data)
        if len(info) % 2:
            info += b"\x00"
        section = struct.pack(">I", len(info)) + info + struct.pack(">I", 0)  # empty global mask
        out += struct.pack(">I", len(section)) + section
    else:
        out += struct.pack(">I", 0)

    if compression == 1:
        row_bytes = width * (2 if depth == 16 else 1)
        counts: list[int] = []
        rows: list[bytes] = []
        for c in range(channels):
            raw = _plane_bytes(composite[:, :, c], depth)
            for r in range(height):
                packed = pack_bits(raw[r * row_bytes:(r + 1) * row_bytes])
                counts.append(len(packed))
                rows.append(packed)
        out += struct.pack(">H", 1) + struct.pack(f">{len(counts)}H", *counts) + b"".join(rows)
    else:
        out += struct.pack(">H", 0)
        for c in range(channels):
            out += _plane_bytes(composite[:, :, c], depth)
    return bytes(out)


@pytest.fixture
def gradient_rgb():
    """12x8 RGB gradient with distinct values per channel."""
    y, x = np.mgrid[0:8, 0:12]
    return np.stack([x * 20, y * 30, (x + y) * 10], axis=-1).astype(np.uint8)


@pytest.fixture
def red_jpeg():
    return encode_jpeg(64, 48)


@pytest.fixture
def make_jpeg():
    return encode_jpeg


@pytest.fixture
def make_cr2():
    return build_cr2


@pytest.fixture
def make_cr3():
    return build_cr3


@pytest.fixture
def make_psd():
    return build_psd
