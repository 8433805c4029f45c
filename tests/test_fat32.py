import struct

import pytest

from bootfs.fat32 import Fat32File, fat32_get_label, fat32_open
from bootfs.volume import Volume

SECTOR = 512
HELLO = bytes(range(256)) * 2 + b"x" * 88
CFG = b"TIMEOUT=5\nDEFAULT=1\n"
LONG = b"long file contents\n"

LAYOUTS = {
    12: dict(reserved=1, fats=1, root_entries=16, spf16=1, s16=64,
             spf32=0, s32=0, sig_off=0x36, sig=b"FAT12   "),
    16: dict(reserved=1, fats=1, root_entries=16, spf16=20, s16=5000,
             spf32=0, s32=0, sig_off=0x36, sig=b"FAT16   "),
    32: dict(reserved=32, fats=1, root_entries=0, spf16=0, s16=0,
             spf32=600, s32=70000, sig_off=0x52, sig=b"FAT32   "),
}
END = {12: 0xFFF, 16: 0xFFFF, 32: 0x0FFFFFFF}


def dirent(name, attr, cluster=0, size=0):
    assert len(name) == 11
    return (name + bytes([attr]) + bytes(8) + struct.pack("<H", cluster >> 16)
            + bytes(4) + struct.pack("<HI", cluster & 0xFFFF, size))


def lfn_entries(name):
    units = name.encode("utf-16-le")
    chars = len(name)
    pieces = -(-chars // 13)
    if chars < pieces * 13:
        units += b"\0\0" + b"\xff\xff" * (pieces * 13 - chars - 1)
    out = b""
    for k in reversed(range(pieces)):
        part = units[k * 26:(k + 1) * 26]
        seq = (k + 1) | (0x40 if k == pieces - 1 else 0)
        out += (bytes([seq]) + part[:10] + bytes([0x0F, 0, 0]) + part[10:22]
                + b"\0\0" + part[22:26])
    return out


def build_image(kind, loop=False, label=True):
    lay = LAYOUTS[kind]
    fat_start = lay["reserved"]
    root_start = fat_start + lay["fats"] * (lay["spf16"] or lay["spf32"])
    root_sectors = -(-lay["root_entries"] * 32 // SECTOR)
    data_start = root_start + root_sectors
    image = bytearray((data_start + 6) * SECTOR)

    struct.pack_into("<HBHBHHBH", image, 11, SECTOR, 1, lay["reserved"], lay["fats"],
                     lay["root_entries"], lay["s16"], 0xF8, lay["spf16"])
    struct.pack_into("<III", image, 28, 0, lay["s32"], lay["spf32"])
    if kind == 32:
        struct.pack_into("<I", image, 44, 2)
    image[lay["sig_off"]:lay["sig_off"] + 8] = lay["sig"]
    image[510:512] = b"\x55\xaa"

    def set_fat(n, value):
        base = fat_start * SECTOR
        if kind == 12:
            off = base + n + n // 2
            cur, = struct.unpack_from("<H", image, off)
            if n % 2 == 0:
                cur = (cur & 0xF000) | value
            else:
                cur = (cur & 0x000F) | (value << 4)
            struct.pack_into("<H", image, off, cur)
        elif kind == 16:
            struct.pack_into("<H", image, base + 2 * n, value)
        else:
            struct.pack_into("<I", image, base + 4 * n, value)

    def cluster_offset(n):
        return (data_start + n - 2) * SECTOR

    root = b""
    if label:
        root += dirent(b"BOOTDISK   ", 0x08)
    root += (dirent(b"HELLO   TXT", 0x20, 3, len(HELLO))
             + dirent(b"BOOT       ", 0x10, 5)
             + dirent(b"EMPTY   TXT", 0x20, 0, 0))
    if kind == 32:
        image[cluster_offset(2):cluster_offset(2) + len(root)] = root
        set_fat(2, END[kind])
    else:
        image[root_start * SECTOR:root_start * SECTOR + len(root)] = root

    set_fat(3, 3 if loop else 4)
    set_fat(4, END[kind])
    image[cluster_offset(3):cluster_offset(3) + 512] = HELLO[:512]
    image[cluster_offset(4):cluster_offset(4) + len(HELLO) - 512] = HELLO[512:]

    boot = (dirent(b".          ", 0x10, 5) + dirent(b"..         ", 0x10, 0)
            + lfn_entries("longfilename.conf")
            + dirent(b"LONGFI~1CON", 0x20, 7, len(LONG))
            + dirent(b"LIMINE  CFG", 0x20, 6, len(CFG)))
    image[cluster_offset(5):cluster_offset(5) + len(boot)] = boot
    set_fat(5, END[kind])
    image[cluster_offset(6):cluster_offset(6) + len(CFG)] = CFG
    set_fat(6, END[kind])
    image[cluster_offset(7):cluster_offset(7) + len(LONG)] = LONG
    set_fat(7, END[kind])
    return bytes(image)


KINDS = [12, 16, 32]


@pytest.mark.parametrize("kind", KINDS)
def test_open_root_file(kind):
    f = fat32_open(Volume(build_image(kind)), "/HELLO.TXT")
    assert isinstance(f, Fat32File)
    assert f.size == len(HELLO)
    assert f.read_all() == HELLO


@pytest.mark.parametrize("kind", KINDS)
def test_fat_type_detected(kind):
    f = fat32_open(Volume(build_image(kind)), "/HELLO.TXT")
    assert f.fat_type == kind


@pytest.mark.parametrize("kind", KINDS)
def test_label(kind):
    assert fat32_get_label(Volume(build_image(kind))) == "BOOTDISK"


@pytest.mark.parametrize("kind", KINDS)
def test_no_label(kind):
    assert fat32_get_label(Volume(build_image(kind, label=False))) is None


@pytest.mark.parametrize("kind", KINDS)
def test_nested_short_name(kind):
    f = fat32_open(Volume(build_image(kind)), "/boot/limine.cfg")
    assert f.read_all() == CFG


@pytest.mark.parametrize("kind", KINDS)
def test_long_name_case_sensitivity(kind):
    volume = Volume(build_image(kind))
    assert fat32_open(volume, "/BOOT/longfilename.conf").read_all() == LONG
    assert fat32_open(volume, "/BOOT/LongFileName.conf") is None
    found = fat32_open(volume, "/BOOT/LongFileName.conf", case_insensitive=True)
    assert found.read_all() == LONG


@pytest.mark.parametrize("kind", KINDS)
def test_short_alias_of_long_name(kind):
    f = fat32_open(Volume(build_image(kind)), "/boot/LONGFI~1.CON")
    assert f.read_all() == LONG


@pytest.mark.parametrize("kind", KINDS)
def test_missing_paths(kind):
    volume = Volume(build_image(kind))
    assert fat32_open(volume, "/NOPE.TXT") is None
    assert fat32_open(volume, "/nodir/hello.txt") is None
    assert fat32_open(volume, "/a.b.c") is None


def test_slashes_and_bytes_path():
    volume = Volume(build_image(12))
    assert fat32_open(volume, "///hello.txt").read_all() == HELLO
    assert fat32_open(volume, "HELLO.TXT").read_all() == HELLO
    assert fat32_open(volume, b"/HELLO.TXT").read_all() == HELLO


def test_partial_read_across_clusters():
    f = fat32_open(Volume(build_image(16)), "/HELLO.TXT")
    assert f.read(500, 30) == HELLO[500:530]
    assert f.read(0, 0) == b""


def test_read_past_chain_raises():
    f = fat32_open(Volume(build_image(32)), "/HELLO.TXT")
    with pytest.raises(ValueError):
        f.read(1020, 10)


@pytest.mark.parametrize("kind", KINDS)
def test_empty_file(kind):
    f = fat32_open(Volume(build_image(kind)), "/EMPTY.TXT")
    assert f.size == 0
    assert f.read_all() == b""


def test_looping_chain_raises():
    with pytest.raises(ValueError):
        fat32_open(Volume(build_image(12, loop=True)), "/HELLO.TXT")


def test_closed_file_rejects_reads():
    f = fat32_open(Volume(build_image(12)), "/HELLO.TXT")
    f.close()
    with pytest.raises(ValueError):
        f.read(0, 1)


def test_context_manager_closes():
    with fat32_open(Volume(build_image(32)), "/boot/limine.cfg") as f:
        assert f.read_all() == CFG
    assert f.closed is True


def test_volume_at_offset():
    data = bytes(4096) + build_image(16)
    volume = Volume(data, offset=4096)
    assert fat32_open(volume, "/HELLO.TXT").read_all() == HELLO
    assert fat32_get_label(volume) == "BOOTDISK"


def test_not_fat_volume():
    volume = Volume(bytes(8192))
    assert fat32_open(volume, "/HELLO.TXT") is None
    assert fat32_get_label(volume) is None


def test_volume_smaller_than_boot_sector():
    volume = Volume(bytes(100))
    assert fat32_open(volume, "/HELLO.TXT") is None
    assert fat32_get_label(volume) is None