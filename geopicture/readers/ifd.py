"""Little-endian TIFF Image File Directory walker."""
from __future__ import annotations

import dataclasses
import enum
import io
import struct
from typing import BinaryIO, Iterator

_ENTRY = struct.Struct("<HhiI")
ENTRY_SIZE = _ENTRY.size  # 12


class FieldType(enum.IntEnum):
    BYTE = 1
    ASCII = 2
    SHORT = 3
    LONG = 4
    RATIONAL = 5
    UNDEFINED = 7
    SSHORT = 8
    SLONG = 9
    SRATIONAL = 10
    FLOAT = 11
    DOUBLE = 12


@dataclasses.dataclass(frozen=True)
class IfdEntry:
    tag_id: int
    field_type: int
    value_count: int
    value_or_offset: int

    @property
    def value(self) -> int:
        """Inline scalar value; SHORT/BYTE values occupy the low bytes."""
        if self.field_type in (FieldType.SHORT, FieldType.SSHORT):
            return self.value_or_offset & 0xFFFF
        if self.field_type == FieldType.BYTE:
            return self.value_or_offset & 0xFF
        return self.value_or_offset


class IfdReader:
    """Enumerate the entries of an IFD chain starting at ``offset``.

    Follows each directory's trailing next-IFD pointer.  The walk stops at a
    zero pointer, at a pointer back into data already read, or when an entry
    would run past the end of the stream.
    """

    def __init__(self, stream: BinaryIO, offset: int) -> None:
        self._stream = stream
        self._offset = offset
        self._length = stream.seek(0, io.SEEK_END)

    @property
    def length(self) -> int:
        return self._length

    def _read(self, fmt: str) -> int:
        size = struct.calcsize(fmt)
        data = self._stream.read(size)
        if len(data) < size:
            raise EOFError("Unexpected end of IFD data")
        return struct.unpack(fmt, data)[0]

    def entries(self) -> Iterator[IfdEntry]:
        offset = self._offset
        stream = self._stream
        while True:
            stream.seek(offset)
            count = self._read("<H")
            for _ in range(count):
                if stream.tell() + ENTRY_SIZE > self._length:
                    return
                yield IfdEntry(*_ENTRY.unpack(stream.read(ENTRY_SIZE)))
            if stream.tell() + 4 > self._length:
                return
            offset = self._read("<I")
            if offset < stream.tell() or offset + 2 >= self._length:
                return

    def read_ascii(self, entry: IfdEntry) -> str:
        if entry.value_count > 4:
            position = self._stream.tell()
            self._stream.seek(entry.value_or_offset)
            raw = self._stream.read(entry.value_count)
            self._stream.seek(position)
        else:
            raw = entry.value_or_offset.to_bytes(4, "little")[: entry.value_count]
        return raw.decode("ascii", errors="replace").rstrip("\x00")

    def read_longs(self, entry: IfdEntry) -> list[int]:
        if entry.value_count == 1:
            return [entry.value_or_offset]
        end = entry.value_or_offset + entry.value_count * 4
        if entry.value_count < 1 or end > self._length:
            return []
        position = self._stream.tell()
        self._stream.seek(entry.value_or_offset)
        values = list(struct.unpack(f"<{entry.value_count}I", self._stream.read(entry.value_count * 4)))
        self._stream.seek(position)
        return values
