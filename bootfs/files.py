"""Open files on a volume by trying every supported filesystem in turn."""

from __future__ import annotations

from typing import Optional, Union

from bootfs.ext2 import ext2_get_guid, ext2_get_label, ext2_open
from bootfs.fat32 import fat32_get_label, fat32_open
from bootfs.iso9660 import iso9660_open
from bootfs.volume import FileHandle, Volume

_OPENERS = (ext2_open, iso9660_open, fat32_open)


def fopen(volume: Volume, filename: Union[str, bytes],
          case_insensitive: bool = False) -> Optional[FileHandle]:
    """Open ``filename`` on ``volume``; return None if no filesystem has it.

    A missing leading slash is added. Filesystems are tried in the order
    ext2, ISO 9660, FAT.
    """
    if isinstance(filename, bytes):
        filename = filename.decode("utf-8", "replace")
    path = filename if filename.startswith("/") else "/" + filename

    if volume.pxe:
        raise OSError(f"cannot open {path}: PXE volumes need a TFTP client")

    for opener in _OPENERS:
        handle = opener(volume, path, case_insensitive)
        if handle is not None:
            handle.path = path
            return handle
    return None


def fs_get_label(volume: Volume) -> Optional[str]:
    """Return the label of a FAT or ext2 volume, or None."""
    label = fat32_get_label(volume)
    if label is not None:
        return label
    return ext2_get_label(volume)


def fs_get_guid(volume: Volume) -> Optional[bytes]:
    """Return the 16 raw filesystem UUID bytes of the volume, or None."""
    return ext2_get_guid(volume)