"""Read-only ext2/ext3/ext4 file access, including extents and symlinks."""

from __future__ import annotations

import logging
import struct
import warnings
from dataclasses import dataclass
from typing import Optional, Union

from bootfs.volume import FileHandle, Volume

_log = logging.getLogger(__name__)

_SUPERBLOCK_OFFSET = 1024
_SUPERBLOCK_SIZE = 336
_INODE_SIZE = 128
_BGD_SIZE = 32
_EXT4_BGD_SIZE = 64
_ROOT_INODE = 2

_MAGIC = 0xEF53
_FS_UNRECOVERABLE_ERRORS = 3

_IF_COMPRESSION = 0x01
_IF_META_BG = 0x0010
_IF_64BIT = 0x80
_IF_INLINE_DATA = 0x8000
_IF_ENCRYPT = 0x10000

_EXTENTS_FLAG = 0x80000
_EXTENT_MAGIC = 0xF30A

_FMT_MASK = 0xF000
_S_IFDIR = 0x4000
_S_IFREG = 0x8000
_S_IFLNK = 0xA000

_DIRENT = struct.Struct("<IHBB")
_EXTENT_HEADER = struct.Struct("<HHHH")
_EXTENT_INDEX = struct.Struct("<IIH")
_EXTENT_LEAF = struct.Struct("<IHHI")
_EXTENT_RECORD = 12

_SYMLINK_INLINE_LIMIT = 59
_MAX_SYMLINK_DEPTH = 40


def _cstr(data: bytes) -> bytes:
    return data.split(b"\0", 1)[0]


def _u16(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset:offset + 2], "little")


def _u32(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset:offset + 4], "little")


@dataclass(frozen=True)
class _Superblock:
    log_block_size: int
    inodes_per_group: int
    magic: int
    state: int
    rev_level: int
    inode_size: int
    feature_incompat: int
    uuid: bytes
    volume_name: bytes
    group_desc_size: int

    @classmethod
    def parse(cls, data: bytes) -> "_Superblock":
        return cls(
            log_block_size=_u32(data, 24),
            inodes_per_group=_u32(data, 40),
            magic=_u16(data, 56),
            state=_u16(data, 58),
            rev_level=_u32(data, 76),
            inode_size=_u16(data, 88),
            feature_incompat=_u32(data, 96),
            uuid=bytes(data[104:120]),
            volume_name=bytes(data[120:136]),
            group_desc_size=_u16(data, 254),
        )

    @property
    def block_size(self) -> int:
        return 1024 << self.log_block_size


@dataclass(frozen=True)
class _Inode:
    mode: int
    size: int
    blocks_count: int
    flags: int
    raw_blocks: bytes

    @classmethod
    def parse(cls, data: bytes) -> "_Inode":
        return cls(
            mode=_u16(data, 0),
            size=_u32(data, 4),
            blocks_count=_u32(data, 28),
            flags=_u32(data, 32),
            raw_blocks=bytes(data[40:100]),
        )

    @property
    def kind(self) -> int:
        return self.mode & _FMT_MASK

    @property
    def uses_extents(self) -> bool:
        return bool(self.flags & _EXTENTS_FLAG)

    def pointer(self, slot: int) -> int:
        return _u32(self.raw_blocks, slot * 4)


def _read_superblock(volume: Volume) -> Optional[_Superblock]:
    try:
        raw = volume.read(_SUPERBLOCK_OFFSET, _SUPERBLOCK_SIZE)
    except OSError:
        return None
    sb = _Superblock.parse(raw)
    if sb.magic != _MAGIC:
        return None
    return sb


def _absolute_path(target: bytes, cwd: bytes) -> bytes:
    base = target if target.startswith(b"/") else cwd + b"/" + target
    parts: list[bytes] = []
    for part in base.split(b"/"):
        if part in (b"", b"."):
            continue
        if part == b"..":
            if parts:
                parts.pop()
            continue
        parts.append(part)
    return b"/" + b"/".join(parts)


class _Filesystem:
    """A mounted ext2 volume: superblock, root inode and lookup logic."""

    def __init__(self, volume: Volume, sb: _Superblock, case_insensitive: bool) -> None:
        self.volume = volume
        self.sb = sb
        self.block_size = sb.block_size
        self.case_insensitive = case_insensitive
        self.root = self.get_inode(_ROOT_INODE)

    @classmethod
    def mount(cls, volume: Volume, case_insensitive: bool) -> Optional["_Filesystem"]:
        sb = _read_superblock(volume)
        if sb is None:
            return None
        unsupported = _IF_COMPRESSION | _IF_INLINE_DATA | _IF_META_BG
        if sb.rev_level != 0 and sb.feature_incompat & unsupported:
            _log.info("ext2: filesystem has unsupported features %x", sb.feature_incompat)
            return None
        if sb.rev_level != 0 and sb.feature_incompat & _IF_ENCRYPT:
            warnings.warn("ext2: file system has encryption feature on, stuff may misbehave")
        if sb.state == _FS_UNRECOVERABLE_ERRORS:
            _log.info("ext2: unrecoverable errors found")
            return None
        if sb.inodes_per_group == 0:
            return None
        return cls(volume, sb, case_insensitive)

    def _wide_descriptors(self) -> bool:
        sb = self.sb
        size = sb.group_desc_size
        return bool(sb.rev_level != 0
                    and sb.feature_incompat & _IF_64BIT
                    and size != 0
                    and size & (size - 1) == 0
                    and size > 32)

    def get_inode(self, number: int) -> Optional[_Inode]:
        if number == 0:
            return None
        sb = self.sb
        group, index = divmod(number - 1, sb.inodes_per_group)
        bs = self.block_size
        bgd_start = bs if bs >= 2048 else bs * 2
        ino_size = _INODE_SIZE if sb.rev_level == 0 else sb.inode_size

        if self._wide_descriptors():
            desc = self.volume.read(bgd_start + _EXT4_BGD_SIZE * group, _EXT4_BGD_SIZE)
            table = _u32(desc, 8) | (_u32(desc, 36) << 32)
        else:
            desc = self.volume.read(bgd_start + _BGD_SIZE * group, _BGD_SIZE)
            table = _u32(desc, 8)

        offset = table * bs + ino_size * index
        return _Inode.parse(self.volume.read(offset, _INODE_SIZE))

    def _pointer_at(self, block: int, slot: int) -> int:
        return _u32(self.volume.read(block * self.block_size + slot * 4, 4), 0)

    def _mapped_block(self, inode: _Inode, logical: int) -> int:
        per_block = self.block_size // 4
        if logical < 12:
            return inode.pointer(logical)
        rel = logical - 12
        if rel < per_block:
            return self._pointer_at(inode.pointer(12), rel)
        rel -= per_block
        index, slot = divmod(rel, per_block)
        if index >= per_block:
            first, second = divmod(index, per_block)
            first_block = self._pointer_at(inode.pointer(14), first)
            indirect = self._pointer_at(first_block, second)
        else:
            indirect = self._pointer_at(inode.pointer(13), index)
        return self._pointer_at(indirect, slot)

    def _extent_block(self, inode: _Inode, logical: int) -> int:
        bs = self.block_size
        node = inode.raw_blocks.ljust(bs, b"\0")
        while True:
            magic, entries, _max, depth = _EXTENT_HEADER.unpack_from(node, 0)
            if magic != _EXTENT_MAGIC:
                raise ValueError("ext2: invalid extent magic")
            records = [node[_EXTENT_RECORD * (k + 1):_EXTENT_RECORD * (k + 2)]
                       .ljust(_EXTENT_RECORD, b"\0") for k in range(entries)]
            if depth == 0:
                break
            child = None
            for record in records:
                first, leaf, leaf_hi = _EXTENT_INDEX.unpack_from(record)
                if logical < first:
                    break
                child = (leaf_hi << 32) | leaf
            if child is None:
                raise ValueError("ext2: extent not found")
            node = self.volume.read(child * bs, bs)

        found = None
        for record in records:
            extent = _EXTENT_LEAF.unpack_from(record)
            if logical < extent[0]:
                break
            found = extent
        if found is None:
            raise ValueError("ext2: extent for block not found")
        first, length, start_hi, start = found
        offset = logical - first
        if offset >= length:
            raise ValueError("ext2: block longer than extent")
        return ((start_hi << 32) + start) + offset

    def _block_index(self, inode: _Inode, logical: int, cache: dict) -> int:
        if inode.uses_extents:
            return self._extent_block(inode, logical)
        if logical not in cache:
            cache[logical] = self._mapped_block(inode, logical)
        return cache[logical]

    def read_inode(self, inode: _Inode, loc: int, count: int, cache: dict) -> bytes:
        bs = self.block_size
        out = bytearray()
        progress = 0
        while progress < count:
            logical, offset = divmod(loc + progress, bs)
            chunk = min(count - progress, bs - offset)
            physical = self._block_index(inode, logical, cache)
            out += self.volume.read(physical * bs + offset, chunk)
            progress += chunk
        return bytes(out)

    def _names_equal(self, token: bytes, name: bytes) -> bool:
        if self.case_insensitive:
            return token.lower() == name.lower()
        return token == name

    def _find_entry(self, directory: _Inode, token: bytes) -> Optional[int]:
        cache: dict = {}
        pos = 0
        while pos < directory.size:
            header = self.read_inode(directory, pos, _DIRENT.size, cache)
            number, rec_len, name_len, _kind = _DIRENT.unpack(header)
            name = _cstr(self.read_inode(directory, pos + _DIRENT.size, name_len, cache))
            if self._names_equal(token, name):
                return number
            if rec_len == 0:
                return None
            pos += rec_len
        return None

    def lookup(self, path: bytes, depth: int = 0) -> Optional[int]:
        """Return the inode number of the entry named by absolute ``path``."""
        if not path.startswith(b"/"):
            raise ValueError("ext2: Path does not start in /")
        components = _cstr(path)[1:].split(b"/")
        current = self.root
        cwd_len = 1
        for position, token in enumerate(components):
            if current is None:
                return None
            number = self._find_entry(current, token)
            if number is None:
                return None
            if position == len(components) - 1:
                return number
            current = self.resolve(self.get_inode(number), path[:cwd_len], _S_IFDIR, depth)
            if current is None:
                return None
            cwd_len += len(token) + 1
        return None

    def resolve(self, inode: Optional[_Inode], cwd: bytes, wanted: int,
                depth: int) -> Optional[_Inode]:
        """Follow symlinks from ``inode`` until an inode of kind ``wanted``."""
        hops = 0
        while inode is not None and inode.kind != wanted:
            if inode.kind != _S_IFLNK:
                _log.info("ext2: path entry is of the wrong type")
                return None
            if hops >= _MAX_SYMLINK_DEPTH:
                return None
            inode = self._follow_symlink(inode, cwd, depth + hops)
            hops += 1
        return inode

    def _follow_symlink(self, inode: _Inode, cwd: bytes, depth: int) -> Optional[_Inode]:
        if inode.size >= _SYMLINK_INLINE_LIMIT:
            _log.info("ext2: Symlinks with destination paths longer than 60 chars unsupported")
            return None
        if depth >= _MAX_SYMLINK_DEPTH:
            return None
        target = _cstr(inode.raw_blocks[:_SYMLINK_INLINE_LIMIT])
        number = self.lookup(_absolute_path(target, cwd), depth + 1)
        if number is None:
            return None
        return self.get_inode(number)


class Ext2File(FileHandle):
    """A regular file on an ext2-family volume."""

    def __init__(self, fs: _Filesystem, inode: _Inode, path: Optional[str] = None) -> None:
        super().__init__(fs.volume, inode.size, path)
        self._fs = fs
        self._inode = inode
        self._block_map: dict = {}

    def read(self, loc: int, count: int) -> bytes:
        self._ensure_open()
        if loc < 0 or count < 0:
            raise ValueError("offset and count must not be negative")
        return self._fs.read_inode(self._inode, loc, count, self._block_map)


def ext2_open(volume: Volume, path: Union[str, bytes],
              case_insensitive: bool = False) -> Optional[Ext2File]:
    """Open absolute ``path`` on an ext2 volume; return None if it is not there."""
    fs = _Filesystem.mount(volume, case_insensitive)
    if fs is None:
        return None

    display = path if isinstance(path, str) else path.decode("utf-8", "replace")
    raw = path.encode("utf-8") if isinstance(path, str) else bytes(path)

    cut = raw.rfind(b"/", 1)
    cwd = raw[:cut] if cut > 0 else b""

    number = fs.lookup(raw)
    if number is None:
        return None
    inode = fs.resolve(fs.get_inode(number), cwd, _S_IFREG, 0)
    if inode is None:
        return None
    return Ext2File(fs, inode, path=display)


def ext2_get_guid(volume: Volume) -> Optional[bytes]:
    """Return the 16 raw UUID bytes of an ext2 volume, or None."""
    sb = _read_superblock(volume)
    if sb is None:
        return None
    return sb.uuid


def ext2_get_label(volume: Volume) -> Optional[str]:
    """Return the volume label of an ext2 volume, or None if it has none."""
    sb = _read_superblock(volume)
    if sb is None or sb.rev_level < 1:
        return None
    label = _cstr(sb.volume_name)
    if not label:
        return None
    return label.decode("utf-8", "replace")