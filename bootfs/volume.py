"""Readable disk volumes and the handles of files opened on them."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from typing import Optional

_BYTES_LIKE = (bytes, bytearray, memoryview)


class Volume:
    """A byte range of a disk image: a whole disk or one partition of it.

    ``source`` is either a bytes-like object or a seekable binary file.
    ``offset`` is where the volume starts within the source and ``size`` its
    length (by default everything up to the end of the source).
    """

    def __init__(self, source, offset: int = 0, size: Optional[int] = None,
                 sector_size: int = 512, pxe: bool = False) -> None:
        if offset < 0:
            raise ValueError("volume offset must not be negative")
        if sector_size <= 0:
            raise ValueError("sector size must be positive")

        if isinstance(source, _BYTES_LIKE):
            self._buffer: Optional[bytes] = bytes(source)
            self._file = None
            total = len(self._buffer)
        else:
            self._buffer = None
            self._file = source
            total = source.seek(0, os.SEEK_END)

        available = max(0, total - offset)
        if size is None:
            size = available
        elif size < 0 or size > available:
            raise ValueError("volume size exceeds the data available")

        self.offset = offset
        self.size = size
        self.sector_size = sector_size
        self.pxe = pxe

    def read(self, offset: int, count: int) -> bytes:
        """Return ``count`` bytes starting ``offset`` bytes into the volume."""
        if offset < 0 or count < 0:
            raise ValueError("offset and count must not be negative")
        if offset + count > self.size:
            raise OSError(
                f"read of {count} bytes at {offset} is past the end of the volume"
            )
        start = self.offset + offset
        if self._buffer is not None:
            return self._buffer[start:start + count]
        self._file.seek(start)
        data = self._file.read(count)
        if len(data) != count:
            raise OSError(f"short read of {len(data)} of {count} bytes at {offset}")
        return bytes(data)

    def __repr__(self) -> str:
        return (f"Volume(offset={self.offset}, size={self.size}, "
                f"sector_size={self.sector_size}, pxe={self.pxe})")


class FileHandle(ABC):
    """An open file on a volume."""

    def __init__(self, volume: Optional[Volume], size: int,
                 path: Optional[str] = None) -> None:
        self.volume = volume
        self.size = size
        self.path = path
        self.closed = False
        self._contents: Optional[bytes] = None

    @abstractmethod
    def read(self, loc: int, count: int) -> bytes:
        """Return ``count`` bytes starting at byte ``loc`` of the file."""

    def read_all(self) -> bytes:
        """Return the whole file; the contents are read once and kept."""
        self._ensure_open()
        if self._contents is None:
            self._contents = bytes(self.read(0, self.size))
        return self._contents

    def close(self) -> None:
        """Release the handle; further reads raise ValueError."""
        self.closed = True
        self._contents = None

    def _ensure_open(self) -> None:
        if self.closed:
            raise ValueError("I/O operation on closed file")

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class MemoryFile(FileHandle):
    """A file whose contents are already held in memory."""

    def __init__(self, data, volume: Optional[Volume] = None,
                 path: Optional[str] = None) -> None:
        data = bytes(data)
        super().__init__(volume, len(data), path)
        self._data = data

    def read(self, loc: int, count: int) -> bytes:
        self._ensure_open()
        if loc < 0 or count < 0 or loc + count > self.size:
            raise ValueError(f"read of {count} bytes at {loc} is outside the file")
        return self._data[loc:loc + count]

    def read_all(self) -> bytes:
        self._ensure_open()
        return self._data