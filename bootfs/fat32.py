"""Read-only FAT12/FAT16/FAT32 file access with long file name support."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Iterator, NamedTuple, Optional, Union

from bootfs.volume import FileHandle, Volume

_BPB_SIZE = 512
_ENTRY_SIZE = 32
_LFN_MAX_ENTRIES = 20
_LFN_BUFFER = _LFN_MAX_ENTRIES * 13 + 1

_ATTR_LFN = 0x0F
_ATTR_VOLLABEL = 0x08
_LFN_FIRST = 0x40

_CLUSTER_LIMITS = {12: 0xFEF, 16: 0xFFEF, 32: 0xFFFFFEF}
_SIZE_T = 1 << 64


def _cstr(data: bytes) -> bytes:
    return data.split(b"\0", 1)[0]


class _DirEntry(NamedTuple):
    name: bytes
    attribute: int
    cluster_high: int
    cluster_low: int
    size: int

    @classmethod
    def parse(cls, raw: bytes) -> "_DirEntry":
        raw = raw.ljust(_ENTRY_SIZE, b"\0")
        high, = struct.unpack_from("<H", raw, 20)
        low, size = struct.unpack_from("<HI", raw, 26)
        return cls(bytes(raw[:11]), raw[11], high, low, size)

    def first_cluster(self, fat_type: int) -> int:
        if fat_type == 32:
            return self.cluster_low | (self.cluster_high << 16)
        return self.cluster_low


def _to_8_3(name: bytes) -> Optional[bytes]:
    """Return the padded 11-byte short name for ``name``, or None if it has none."""
    dest = bytearray(b" " * 11)
    j = 0
    ext = False
    for ch in name:
        if ch == ord("."):
            if ext:
                return None
            ext = True
            j = 8
            continue
        if j >= 11 or (j >= 8 and not ext):
            return None
        dest[j] = bytes([ch]).upper()[0]
        j += 1
    return bytes(dest)


@dataclass
class _Context:
    volume: Volume
    fat_type: int
    bytes_per_sector: int
    sectors_per_cluster: int
    reserved_sectors: int
    number_of_fats: int
    hidden_sectors: int
    sectors_per_fat: int
    fat_start_lba: int
    data_start_lba: int
    root_directory_cluster: int
    root_entries: int
    root_start: int
    root_size: int
    label: Optional[bytes] = None

    @classmethod
    def load(cls, volume: Volume) -> Optional["_Context"]:
        try:
            bpb = volume.read(0, _BPB_SIZE)
        except OSError:
            return None

        if not (bpb[0x36:0x39] == b"FAT"
                or bpb[0x52:0x55] == b"FAT"
                or bpb[0x03:0x08] == b"FAT32"):
            return None

        (bps, spc, reserved, fats, root_entries,
         sectors16, _media, spf16) = struct.unpack_from("<HBHBHHBH", bpb, 11)
        hidden, sectors32, spf32 = struct.unpack_from("<III", bpb, 28)
        root_cluster, = struct.unpack_from("<I", bpb, 44)

        if bps == 0 or spc == 0:
            return None

        root_dir_sects = (root_entries * 32 + bps - 1) // bps
        data_sects = ((sectors16 or sectors32)
                      - (reserved + fats * (spf16 or spf32) + root_dir_sects)) % _SIZE_T
        clusters = data_sects // spc

        if clusters < 4085:
            fat_type = 12
        elif clusters < 65525:
            fat_type = 16
        else:
            fat_type = 32

        sectors_per_fat = spf32 if fat_type == 32 else spf16
        root_start = reserved + fats * sectors_per_fat
        root_size = -(-(root_entries * _ENTRY_SIZE) // bps)
        data_start = root_start if fat_type == 32 else root_start + root_size

        ctx = cls(
            volume=volume,
            fat_type=fat_type,
            bytes_per_sector=bps,
            sectors_per_cluster=spc,
            reserved_sectors=reserved,
            number_of_fats=fats,
            hidden_sectors=hidden,
            sectors_per_fat=sectors_per_fat,
            fat_start_lba=reserved,
            data_start_lba=data_start,
            root_directory_cluster=root_cluster,
            root_entries=root_entries,
            root_start=root_start,
            root_size=root_size,
        )
        buffer = ctx._directory_buffer(ctx.root_directory)
        if buffer is not None:
            ctx.label = ctx._find_label(buffer)
        return ctx

    @property
    def cluster_size(self) -> int:
        return self.sectors_per_cluster * self.bytes_per_sector

    @property
    def root_directory(self) -> Optional[int]:
        """Cluster of the root directory, or None for the fixed FAT12/16 root."""
        return self.root_directory_cluster if self.fat_type == 32 else None

    def next_cluster(self, cluster: int) -> int:
        base = self.fat_start_lba * self.bytes_per_sector
        if self.fat_type == 12:
            raw, = struct.unpack("<H", self.volume.read(base + cluster + cluster // 2, 2))
            return raw & 0xFFF if cluster % 2 == 0 else raw >> 4
        if self.fat_type == 16:
            raw, = struct.unpack("<H", self.volume.read(base + cluster * 2, 2))
            return raw
        raw, = struct.unpack("<I", self.volume.read(base + cluster * 4, 4))
        return raw & 0x0FFFFFFF

    def cluster_chain(self, initial: int) -> Optional[list[int]]:
        limit = _CLUSTER_LIMITS[self.fat_type]
        if initial < 2 or initial > limit:
            return None
        chain = [initial]
        seen = {initial}
        cluster = initial
        while True:
            cluster = self.next_cluster(cluster)
            if cluster < 2 or cluster > limit:
                return chain
            if cluster in seen:
                raise ValueError("FAT: cluster chain loops back on itself")
            seen.add(cluster)
            chain.append(cluster)

    def read_chain(self, chain: list[int], loc: int, count: int) -> bytes:
        bs = self.cluster_size
        out = bytearray()
        progress = 0
        while progress < count:
            block, offset = divmod(loc + progress, bs)
            chunk = min(count - progress, bs - offset)
            if block >= len(chain):
                raise ValueError("FAT: read past the end of the cluster chain")
            base = ((self.data_start_lba + (chain[block] - 2) * self.sectors_per_cluster)
                    * self.bytes_per_sector)
            out += self.volume.read(base + offset, chunk)
            progress += chunk
        return bytes(out)

    def _directory_buffer(self, directory: Optional[int]) -> Optional[bytes]:
        bs = self.cluster_size
        if directory is not None:
            chain = self.cluster_chain(directory)
            if chain is None:
                return None
            return self.read_chain(chain, 0, len(chain) * bs)
        clusters = -(-(self.root_entries * _ENTRY_SIZE) // bs)
        data = self.volume.read(self.root_start * self.bytes_per_sector,
                                self.root_entries * _ENTRY_SIZE)
        return data.ljust(clusters * bs, b"\0")

    @staticmethod
    def _entries(buffer: bytes) -> Iterator[tuple[int, bytes]]:
        for i in range(len(buffer) // _ENTRY_SIZE):
            raw = buffer[i * _ENTRY_SIZE:(i + 1) * _ENTRY_SIZE]
            if raw[0] == 0:
                return
            yield i, raw

    def _find_label(self, buffer: bytes) -> Optional[bytes]:
        for _i, raw in self._entries(buffer):
            if raw[11] != _ATTR_VOLLABEL:
                continue
            return _cstr(bytes(raw[:11]).rstrip(b" "))
        return None

    def find_entry(self, directory: Optional[int], name: bytes,
                   case_insensitive: bool) -> Optional[_DirEntry]:
        buffer = self._directory_buffer(directory)
        if buffer is None:
            return None

        wanted = name.lower() if case_insensitive else name
        short_name = _to_8_3(name)
        lfn = bytearray(_LFN_BUFFER)

        for i, raw in self._entries(buffer):
            attribute = raw[11]
            if attribute == _ATTR_LFN:
                sequence = raw[0]
                if sequence & _LFN_FIRST:
                    lfn[:] = b" " * _LFN_BUFFER
                index = ((sequence & 0x1F) - 1) * 13
                if index < 0 or index >= _LFN_MAX_ENTRIES * 13:
                    continue
                lfn[index:index + 5] = raw[1:11:2]
                lfn[index + 5:index + 11] = raw[14:26:2]
                lfn[index + 11:index + 13] = raw[28:32:2]
                if index != 0:
                    continue
                trimmed = bytes(lfn[:_LFN_BUFFER - 1]).rstrip(b" ")
                lfn[len(trimmed)] = 0
                long_name = _cstr(bytes(lfn))
                if case_insensitive:
                    long_name = long_name.lower()
                if long_name == wanted:
                    following = buffer[(i + 1) * _ENTRY_SIZE:(i + 2) * _ENTRY_SIZE]
                    return _DirEntry.parse(following)

            if attribute & _ATTR_VOLLABEL:
                continue
            if short_name is not None and raw[:11] == short_name:
                return _DirEntry.parse(raw)
        return None


class Fat32File(FileHandle):
    """A file on a FAT12, FAT16 or FAT32 volume."""

    def __init__(self, volume: Volume, context: _Context, first_cluster: int,
                 size: int, chain: Optional[list[int]],
                 path: Optional[str] = None) -> None:
        super().__init__(volume, size, path)
        self._context = context
        self.first_cluster = first_cluster
        self.cluster_chain = tuple(chain or ())

    @property
    def fat_type(self) -> int:
        """12, 16 or 32."""
        return self._context.fat_type

    def read(self, loc: int, count: int) -> bytes:
        self._ensure_open()
        if loc < 0 or count < 0:
            raise ValueError("offset and count must not be negative")
        return self._context.read_chain(list(self.cluster_chain), loc, count)


def fat32_open(volume: Volume, path: Union[str, bytes],
               case_insensitive: bool = False) -> Optional[Fat32File]:
    """Open ``path`` on a FAT volume; return None if it is not there."""
    ctx = _Context.load(volume)
    if ctx is None:
        return None

    display = path if isinstance(path, str) else path.decode("utf-8", "replace")
    raw = path.encode("utf-8") if isinstance(path, str) else bytes(path)
    remaining = _cstr(raw).lstrip(b"/")

    directory = ctx.root_directory
    while True:
        component, separator, rest = remaining.partition(b"/")
        if len(component) >= _LFN_BUFFER:
            return None
        entry = ctx.find_entry(directory, component, case_insensitive)
        if entry is None:
            return None
        if not separator:
            first = entry.first_cluster(ctx.fat_type)
            chain = ctx.cluster_chain(first)
            return Fat32File(volume, ctx, first, entry.size, chain, path=display)
        directory = entry.first_cluster(ctx.fat_type)
        remaining = rest


def fat32_get_label(volume: Volume) -> Optional[str]:
    """Return the volume label stored in the root directory, or None."""
    ctx = _Context.load(volume)
    if ctx is None or ctx.label is None:
        return None
    return ctx.label.decode("latin-1")