"""Canon raw readers: extract the embedded JPEG preview from CR2 and CR3 files.

No demosaicing happens here.  CR2 files are TIFF containers whose first IFD
describes a full-size JPEG preview; CR3 files are ISO-BMFF containers where
the preview is found by scanning for an ``mdat`` box followed by a JPEG
start-of-image marker.  Either way the preview bytes are handed to the
Pillow-backed standard reader.
"""
from __future__ import annotations

import io
import logging
import struct
from typing import BinaryIO, Optional

from geopicture.errors import MalformedContainerError, UnsupportedFormatError
from geopicture.pixels import DecodedPicture, Rotation
from geopicture.processing.parallel import CancellationToken, check_cancelled
from geopicture.readers import standard
from geopicture.readers.ifd import IfdReader
from geopicture.readers.offset_stream import OffsetStreamView

log = logging.getLogger(__name__)

CR2_EXTENSIONS = {".cr2"}
CR3_EXTENSIONS = {".cr3"}

TAG_IMAGE_WIDTH = 0x100
TAG_IMAGE_HEIGHT = 0x101
TAG_COMPRESSION = 0x103
TAG_MODEL = 0x110
TAG_STRIP_OFFSETS = 0x111
TAG_ORIENTATION = 0x112
TAG_STRIP_BYTE_COUNTS = 0x117

COMPRESSION_JPEG = 6

CR3_BUFFER_SIZE = 65536
CR3_BOX_MARKER = b"mdat"
JPEG_SOI = b"\xff\xd8\xff"


def decode_cr2(
    stream: BinaryIO,
    rotation: Rotation = Rotation.ROTATE_0,
    max_width: int = 0,
    token: Optional[CancellationToken] = None,
) -> DecodedPicture:
    """Decode the JPEG preview of a CR2 file.

    Raises ``UnsupportedFormatError`` when the TIFF header is wrong or no IFD
    describes an image, and ``MalformedContainerError`` when the first IFD
    offset points outside the file.
    """
    header = stream.read(8)
    if len(header) < 8 or header[:2] != b"II" or struct.unpack("<h", header[2:4])[0] != 42:
        raise UnsupportedFormatError("Not a little-endian TIFF/CR2 container")
    ifd_offset = struct.unpack("<I", header[4:8])[0]

    reader = IfdReader(stream, ifd_offset)
    if ifd_offset < 8 or ifd_offset + 2 > reader.length:
        raise MalformedContainerError(f"First IFD offset {ifd_offset} outside file of {reader.length} bytes")

    width = height = image_offset = image_size = 0
    compression = -1
    for entry in reader.entries():
        tag = entry.tag_id
        if tag == TAG_IMAGE_WIDTH:
            width = entry.value
        elif tag == TAG_IMAGE_HEIGHT:
            height = entry.value
        elif tag == TAG_COMPRESSION:
            compression = entry.value
        elif tag == TAG_MODEL:
            log.debug("CR2 camera model: %s", reader.read_ascii(entry))
        elif tag == TAG_STRIP_OFFSETS:
            image_offset = next(iter(reader.read_longs(entry)), 0)
        elif tag == TAG_ORIENTATION:
            rotation = Rotation.from_orientation(entry.value)
        elif tag == TAG_STRIP_BYTE_COUNTS:
            image_size = next(iter(reader.read_longs(entry)), 0)
        check_cancelled(token)

        if image_size > 0 and image_offset > 0 and width > 0 and height > 0 and compression >= 0:
            if compression == COMPRESSION_JPEG:
                log.debug("CR2 JPEG preview %dx%d at %d (%d bytes)", width, height, image_offset, image_size)
                stream.seek(image_offset)
                preview = stream.read(image_size)
                if len(preview) < image_size:
                    raise MalformedContainerError("CR2 preview extends past end of file")
                return _tagged(standard.decode(io.BytesIO(preview), rotation, max_width, token), "CR2")
            log.debug("CR2 compression %d not supported, decoding whole file", compression)
            stream.seek(0)
            return _tagged(standard.decode(stream, rotation, max_width, token), "CR2")

    raise UnsupportedFormatError("No usable image directory in CR2 file")


def decode_cr3(
    stream: BinaryIO,
    rotation: Rotation = Rotation.ROTATE_0,
    max_width: int = 0,
    token: Optional[CancellationToken] = None,
) -> Optional[DecodedPicture]:
    """Decode the JPEG preview of a CR3 file, or return ``None`` if none is found.

    The scan does not detect a marker that straddles two read buffers.
    """
    buffer = stream.read(CR3_BUFFER_SIZE)
    while len(buffer) > 10:
        check_cancelled(token)
        index = buffer.find(CR3_BOX_MARKER)
        if index < 0:
            buffer = stream.read(CR3_BUFFER_SIZE)
            continue
        index2 = buffer.find(JPEG_SOI, index)
        if index2 < 0:
            buffer = stream.read(CR3_BUFFER_SIZE)
            index2 = buffer.find(JPEG_SOI)
            if index2 < 0:
                continue
        stream.seek(index2 - len(buffer), io.SEEK_CUR)
        log.debug("CR3 preview found at offset %d", stream.tell())
        view = OffsetStreamView(stream)
        return _tagged(standard.decode(view, rotation, max_width, token), "CR3")
    log.debug("No preview marker pair found in CR3 stream")
    return None


def _tagged(picture: DecodedPicture, source_format: str) -> DecodedPicture:
    return DecodedPicture(picture.buffer, picture.rotation, source_format)
