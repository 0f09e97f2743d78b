"""Read-only window onto a seekable stream, starting at its current position."""
from __future__ import annotations

import io
from typing import BinaryIO


class OffsetStreamView(io.RawIOBase):
    """Expose ``source`` from its current position onwards as a stream of its own.

    Position 0 of the view maps to ``source.tell()`` at construction.  Reads and
    seeks are forwarded to the wrapped stream; nothing is copied.  Writing is not
    supported.  The wrapped stream is closed with the view only when
    ``owns_source`` is true.
    """

    def __init__(self, source: BinaryIO, owns_source: bool = False) -> None:
        super().__init__()
        if not source.seekable():
            raise io.UnsupportedOperation("OffsetStreamView needs a seekable source")
        self._source = source
        self._offset = source.tell()
        self._owns_source = owns_source

    @property
    def offset(self) -> int:
        """Position of the view's origin in the wrapped stream."""
        return self._offset

    def readable(self) -> bool:
        return self._source.readable()

    def seekable(self) -> bool:
        return True

    def writable(self) -> bool:
        return False

    def tell(self) -> int:
        return self._source.tell() - self._offset

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            if offset < 0:
                raise ValueError(f"Negative seek position {offset}")
            return self._source.seek(offset + self._offset, io.SEEK_SET) - self._offset
        if whence in (io.SEEK_CUR, io.SEEK_END):
            return self._source.seek(offset, whence) - self._offset
        raise ValueError(f"Invalid whence {whence}")

    def readinto(self, buffer) -> int:
        data = self._source.read(len(buffer))
        n = len(data)
        buffer[:n] = data
        return n

    def read(self, size: int = -1) -> bytes:
        return self._source.read(size)

    def __len__(self) -> int:
        position = self._source.tell()
        end = self._source.seek(0, io.SEEK_END)
        self._source.seek(position, io.SEEK_SET)
        return end - self._offset

    def write(self, data) -> int:
        raise io.UnsupportedOperation("OffsetStreamView is read-only")

    def truncate(self, size=None) -> int:
        raise io.UnsupportedOperation("OffsetStreamView is read-only")

    def flush(self) -> None:
        if self.closed:
            raise ValueError("I/O operation on closed stream")

    def close(self) -> None:
        if not self.closed and self._owns_source:
            self._source.close()
        super().close()
