"""Read-only ISO 9660 file access with Rock Ridge name support."""

from __future__ import annotations

import weakref
from typing import NamedTuple, Optional, Union

from bootfs.volume import FileHandle, Volume

SECTOR_SIZE = 2048

_FIRST_VOLUME_DESCRIPTOR = 0x10
_VDT_PRIMARY = 1
_VDT_TERMINATOR = 255
_SIGNATURE = b"CD001"
_ROOT_ENTRY_OFFSET = 156
_ENTRY_HEADER_SIZE = 33

_root_cache: "weakref.WeakKeyDictionary[Volume, bytes]" = weakref.WeakKeyDictionary()


class _Extent(NamedTuple):
    lba: int
    size: int


def _cstr(data: bytes) -> bytes:
    return data.split(b"\0", 1)[0]


def _extent_of(entry: bytes) -> _Extent:
    return _Extent(int.from_bytes(entry[2:6], "little"),
                   int.from_bytes(entry[10:14], "little"))


def _find_primary_descriptor(volume: Volume) -> bytes:
    lba = _FIRST_VOLUME_DESCRIPTOR
    while True:
        descriptor = volume.read(lba * SECTOR_SIZE, SECTOR_SIZE)
        if descriptor[0] == _VDT_PRIMARY:
            return descriptor
        if descriptor[0] == _VDT_TERMINATOR:
            raise ValueError("ISO9660: no primary volume descriptor")
        lba += 1


def _root_directory(volume: Volume) -> bytes:
    root = _root_cache.get(volume)
    if root is None:
        descriptor = _find_primary_descriptor(volume)
        extent = _extent_of(descriptor[_ROOT_ENTRY_OFFSET:])
        root = volume.read(extent.lba * SECTOR_SIZE, extent.size)
        _root_cache[volume] = root
    return root


def _load_name(entry: bytes) -> tuple[bytes, bool]:
    """Return the entry's name and whether it came from a Rock Ridge NM field."""
    name_len = entry[32]
    sys_start = _ENTRY_HEADER_SIZE + name_len
    if name_len % 2 == 0:
        sys_start += 1
    sysarea = entry[sys_start:]

    pos = 0
    remaining = len(sysarea)
    rr_len = 0
    while remaining >= 4 and (sysarea[pos + 3] == 1 or sysarea[pos + 2] == 2):
        if sysarea[pos:pos + 2] == b"NM":
            rr_len = sysarea[pos + 2] - 5
            break
        step = sysarea[pos + 2]
        if step == 0:
            break
        remaining -= step
        pos += step

    if rr_len > 0:
        return _cstr(sysarea[pos + 5:pos + 5 + rr_len]), True

    raw = entry[_ENTRY_HEADER_SIZE:_ENTRY_HEADER_SIZE + name_len]
    name = bytearray()
    for j, ch in enumerate(raw):
        if ch == ord(";"):
            break
        following = _ENTRY_HEADER_SIZE + j + 1
        if ch == ord(".") and following < len(entry) and entry[following] == ord(";"):
            break
        name.append(ch)
    return _cstr(bytes(name)), False


def _find(directory: bytes, filename: bytes, case_insensitive: bool) -> Optional[_Extent]:
    pos = 0
    size = len(directory)
    while size > 0:
        length = directory[pos]
        if length == 0:
            if size <= SECTOR_SIZE:
                return None
            aligned = size - size % SECTOR_SIZE
            if aligned == size:
                aligned -= SECTOR_SIZE
            pos += size - aligned
            size = aligned
            continue
        if length < _ENTRY_HEADER_SIZE or length > size:
            return None

        entry = directory[pos:pos + length]
        name, rock_ridge = _load_name(entry)
        if rock_ridge and not case_insensitive:
            matched = name == filename
        else:
            matched = name.lower() == filename.lower()
        if matched:
            return _extent_of(entry)

        size -= length
        pos += length
    return None


class Iso9660File(FileHandle):
    """A file stored as one contiguous extent of an ISO 9660 volume."""

    def __init__(self, volume: Volume, lba: int, size: int,
                 path: Optional[str] = None) -> None:
        super().__init__(volume, size, path)
        self.lba = lba

    def read(self, loc: int, count: int) -> bytes:
        self._ensure_open()
        return self.volume.read(self.lba * SECTOR_SIZE + loc, count)


def iso9660_open(volume: Volume, path: Union[str, bytes],
                 case_insensitive: bool = False) -> Optional[Iso9660File]:
    """Open ``path`` on an ISO 9660 volume; return None if it is not there."""
    try:
        signature = volume.read(_FIRST_VOLUME_DESCRIPTOR * SECTOR_SIZE + 1, 5)
    except OSError:
        return None
    if signature != _SIGNATURE:
        return None

    current = _root_directory(volume)

    display_path = path if isinstance(path, str) else path.decode("utf-8", "replace")
    remaining = path.encode("utf-8") if isinstance(path, str) else bytes(path)
    remaining = remaining.lstrip(b"/")

    while True:
        component, separator, rest = remaining.partition(b"/")
        extent = _find(current, component, case_insensitive)
        if extent is None:
            return None
        if not separator:
            break
        remaining = rest
        current = volume.read(extent.lba * SECTOR_SIZE, extent.size)

    return Iso9660File(volume, extent.lba, extent.size, path=display_path)