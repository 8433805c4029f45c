"""Locate ACPI and SMBIOS structures in a snapshot of low physical memory.

``memory`` is any bytes-like object indexed by physical address.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, replace
from itertools import chain
from typing import ClassVar, Optional

_SDT = struct.Struct("<4sIBB6s8sI4sI")
_RSDP = struct.Struct("<8sB6sBIIQB3s")
_SMBIOS32 = struct.Struct("<4sBBBBHB5s5sBHIHB")
_SMBIOS64 = struct.Struct("<5sBBBBBBBHQ")

_RSDP_SIGNATURE = b"RSD PTR "
_RSDP_V1_SIZE = 20
_SCAN_END = 0x100000
_BIOS_AREA_START = 0xE0000
_SMBIOS_START = 0xF0000
_EBDA_POINTER = 0x40E
_EBDA_DEFAULT = 0x80000
_EBDA_LIMIT = 0xA0000


def _pad(data, size: int) -> bytes:
    return bytes(data[:size]).ljust(size, b"\0")


def _read(memory, address: int, size: int) -> bytes:
    if address < 0 or size <= 0:
        return b"\0" * max(size, 0)
    return _pad(memory[address:address + size], size)


def checksum(data) -> int:
    """Return the byte sum of ``data`` modulo 256; valid tables sum to zero."""
    return sum(bytes(data)) & 0xFF


@dataclass(frozen=True)
class Sdt:
    """System description table header."""

    SIZE: ClassVar[int] = _SDT.size

    signature: bytes
    length: int
    revision: int
    checksum: int
    oem_id: bytes
    oem_table_id: bytes
    oem_revision: int
    creator_id: bytes
    creator_revision: int
    address: int = 0

    @classmethod
    def from_bytes(cls, data) -> "Sdt":
        return cls(*_SDT.unpack(_pad(data, _SDT.size)))


@dataclass(frozen=True)
class Rsdp:
    """Root system description pointer (revision 2 fields are zero when absent)."""

    SIZE: ClassVar[int] = _RSDP.size

    signature: bytes
    checksum: int
    oem_id: bytes
    revision: int
    rsdt_address: int
    length: int
    xsdt_address: int
    extended_checksum: int
    reserved: bytes
    address: int = 0

    @classmethod
    def from_bytes(cls, data) -> "Rsdp":
        return cls(*_RSDP.unpack(_pad(data, _RSDP.size)))


@dataclass(frozen=True)
class SmbiosEntryPoint32:
    """32-bit SMBIOS entry point ("_SM_")."""

    SIZE: ClassVar[int] = _SMBIOS32.size

    anchor: bytes
    checksum: int
    length: int
    major_version: int
    minor_version: int
    max_structure_size: int
    entry_point_revision: int
    formatted_area: bytes
    intermediate_anchor: bytes
    intermediate_checksum: int
    table_length: int
    table_address: int
    number_of_structures: int
    bcd_revision: int
    address: int = 0

    @classmethod
    def from_bytes(cls, data) -> "SmbiosEntryPoint32":
        return cls(*_SMBIOS32.unpack(_pad(data, _SMBIOS32.size)))


@dataclass(frozen=True)
class SmbiosEntryPoint64:
    """64-bit SMBIOS entry point ("_SM3_")."""

    SIZE: ClassVar[int] = _SMBIOS64.size

    anchor: bytes
    checksum: int
    length: int
    major_version: int
    minor_version: int
    docrev: int
    entry_point_revision: int
    reserved: int
    max_structure_size: int
    table_address: int
    address: int = 0

    @classmethod
    def from_bytes(cls, data) -> "SmbiosEntryPoint64":
        return cls(*_SMBIOS64.unpack(_pad(data, _SMBIOS64.size)))


def _ebda_from_bios_data_area(memory) -> int:
    ebda = int.from_bytes(_read(memory, _EBDA_POINTER, 2), "little") << 4
    if ebda < _EBDA_DEFAULT or ebda >= _EBDA_LIMIT:
        ebda = _EBDA_DEFAULT
    return ebda


def find_rsdp(memory, ebda: Optional[int] = None) -> Optional[Rsdp]:
    """Search the first KiB of the EBDA, then 0xE0000-0xFFFFF, for the RSDP."""
    if ebda is None:
        ebda = _ebda_from_bios_data_area(memory)
    candidates = chain(
        range(ebda, min(ebda + 1024, _SCAN_END), 16),
        range(_BIOS_AREA_START, _SCAN_END, 16),
    )
    for address in candidates:
        if (_read(memory, address, 8) == _RSDP_SIGNATURE
                and checksum(_read(memory, address, _RSDP_V1_SIZE)) == 0):
            return replace(Rsdp.from_bytes(_read(memory, address, Rsdp.SIZE)),
                           address=address)
    return None


def find_rsdp_v1(memory, ebda: Optional[int] = None) -> Optional[Rsdp]:
    """Return the RSDP only if it is revision 0 or 1."""
    rsdp = find_rsdp(memory, ebda)
    if rsdp is not None and rsdp.revision < 2:
        return rsdp
    return None


def find_rsdp_v2(memory, ebda: Optional[int] = None) -> Optional[Rsdp]:
    """Return the RSDP only if it is revision 2 or later."""
    rsdp = find_rsdp(memory, ebda)
    if rsdp is not None and rsdp.revision >= 2:
        return rsdp
    return None


def find_smbios(memory) -> tuple[Optional[SmbiosEntryPoint32], Optional[SmbiosEntryPoint64]]:
    """Return the 32-bit and 64-bit SMBIOS entry points, each or None."""
    return (
        _scan_smbios(memory, b"_SM_", SmbiosEntryPoint32),
        _scan_smbios(memory, b"_SM3_", SmbiosEntryPoint64),
    )


def _scan_smbios(memory, anchor: bytes, kind):
    for address in range(_SMBIOS_START, _SCAN_END, 16):
        if _read(memory, address, len(anchor)) != anchor:
            continue
        entry = kind.from_bytes(_read(memory, address, kind.SIZE))
        if checksum(_read(memory, address, entry.length)) == 0:
            return replace(entry, address=address)
    return None


def get_table(memory, signature, index: int = 0, ebda: Optional[int] = None) -> Optional[Sdt]:
    """Return the ``index``-th valid table with ``signature``, or None."""
    if isinstance(signature, str):
        signature = signature.encode("ascii")
    signature = bytes(signature)[:4]

    rsdp = find_rsdp(memory, ebda)
    if rsdp is None:
        return None

    use_xsdt = rsdp.revision >= 2 and rsdp.xsdt_address != 0
    root_address = rsdp.xsdt_address if use_xsdt else rsdp.rsdt_address
    root = Sdt.from_bytes(_read(memory, root_address, Sdt.SIZE))

    width = 8 if use_xsdt else 4
    entry_count = max(0, root.length - Sdt.SIZE) // width
    pointers = _read(memory, root_address + Sdt.SIZE, entry_count * width)
    fmt = "<%d%s" % (entry_count, "Q" if use_xsdt else "I")

    found = 0
    for pointer in struct.unpack(fmt, pointers):
        table = Sdt.from_bytes(_read(memory, pointer, Sdt.SIZE))
        if table.signature != signature:
            continue
        if checksum(_read(memory, pointer, table.length)) != 0:
            continue
        if found == index:
            return replace(table, address=pointer)
        found += 1
    return None