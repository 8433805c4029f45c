# bootfs

`bootfs` reads the structures a bootloader reads before an operating system is
running. It works only on raw bytes: disk and partition images, and snapshots
of physical memory. It needs nothing outside the standard library.

What it covers:

- **Filesystems** (`bootfs.ext2`, `bootfs.fat32`, `bootfs.iso9660`,
  `bootfs.files`). It opens files read-only on ext2/ext3/ext4, FAT12/16/32 and
  ISO 9660 volumes. For ext2 it handles block maps, extents and short
  symlinks. For FAT it handles long file names. For ISO 9660 it handles Rock
  Ridge names. Lookups can ignore case.
- **Boot menu configuration** (`bootfs.config`). It parses configs with
  `:`-prefixed entries, nested directories, `${NAME}=value` macro definitions
  and `${NAME}` expansion, and can check the file against a BLAKE2b digest.
- **ACPI and SMBIOS** (`bootfs.acpi`). It finds the RSDP, ACPI tables and
  SMBIOS entry points in a memory snapshot.
- **BLAKE2b-512** (`bootfs.blake2b`). A pure-Python BLAKE2b without a key.
- **VGA text mode** (`bootfs.textmode`). An in-memory model of an 80x25
  text-mode screen with double buffering.

## Installation

```
pip install .
```

## Volumes and files

`bootfs.volume.Volume` wraps a bytes-like object or a seekable binary file.
It can also cover one byte range of it, with `offset` and `size`. Every file
handle is a `FileHandle` and has these members:

- `read(loc, count)`, which returns bytes;
- `read_all()`, which reads the whole file once and keeps the contents;
- `close()`;
- `size` and `path`.

You can use a handle as a context manager.

```python
from bootfs.volume import Volume
from bootfs.files import fopen, fs_get_label, fs_get_guid

with open("partition.img", "rb") as fp:
    volume = Volume(fp.read())

print(fs_get_label(volume))   # FAT label first, then ext2 label, or None
print(fs_get_guid(volume))    # 16 raw ext2 UUID bytes, or None

handle = fopen(volume, "boot/limine.cfg", case_insensitive=True)
if handle is not None:
    with handle:
        data = handle.read_all()
```

`fopen` adds a leading `/` to the path when it has none. It then tries the
filesystems in this order: ext2, ISO 9660, FAT. It returns `None` when none of
them has the file. It raises `OSError` for a volume created with `pxe=True`.

You can also call one filesystem directly: `ext2_open`, `iso9660_open` or
`fat32_open`. Each takes `(volume, path, case_insensitive=False)` and returns
`None` when the file is not there. `ext2_get_label`, `ext2_get_guid` and
`fat32_get_label` read volume metadata.

`bootfs.volume.MemoryFile` is a file handle over bytes you already hold.

## Boot menu configuration

```python
from bootfs.config import parse_config

config = parse_config(
    b"TIMEOUT=5\n"
    b":My OS\n"
    b"COMMENT=Default entry\n"
    b"PROTOCOL=limine\n"
)
print(config.get_value("TIMEOUT"))          # "5"
for entry in config.menu:
    print(entry.name, entry.comment, entry.children)
```

`Config.get_value(key, index=0, config=None)` looks up a key. By default it
searches the global section, the text before the first entry. To search an
entry instead, pass that entry's `body`.

`Config.get_tuple(key1, key2, index=0, config=None)` returns a pair:

- the `index`-th value of `key1`;
- the value of `key2` that follows it, or `None` when the next `key1` comes
  first.

Each `MenuEntry` has these fields:

- `name`, `body` and `comment`;
- `children` and `parent`;
- `expanded`, which is true for directories whose name starts with `+`.

`parse_config(data, expected_b2sum=None)` raises `ConfigError` in these cases:

- the file is malformed (a parentless child entry, or bad macro syntax);
- the file grows more than four times its size when macros are expanded;
- the file does not match the hex digest given in `expected_b2sum`.

A digest of all zeros turns the check off.

`load_config_from_volume(volume, expected_b2sum=None)` looks for `limine.cfg`
in these places, ignoring case:

- `/`
- `/limine`
- `/boot`
- `/boot/limine`
- `/EFI/BOOT`

It raises `FileNotFoundError` when none of them holds one.

## ACPI and SMBIOS

`memory` is any bytes-like object indexed by physical address.

```python
from bootfs.acpi import find_rsdp, find_smbios, get_table

rsdp = find_rsdp(memory, ebda=0x80000)
madt = get_table(memory, "APIC", 0, ebda=0x80000)
smbios32, smbios64 = find_smbios(memory)
```

`find_rsdp` first searches the first KiB of the EBDA, then 0xE0000–0xFFFFF.
When you leave out `ebda`, it reads the EBDA address from the BIOS data area.

`find_rsdp_v1` and `find_rsdp_v2` return the RSDP only when its revision
matches.

`get_table` uses the XSDT when the revision is 2 or higher and an XSDT address
is set. It uses the RSDT otherwise. It skips tables whose checksum fails.

The results are frozen dataclasses: `Rsdp`, `Sdt`, `SmbiosEntryPoint32` and
`SmbiosEntryPoint64`. Each has an `address` field.

## Hashing

```python
from bootfs.blake2b import blake2b

digest = blake2b(b"hello")   # 64 bytes
```

## Text-mode terminal

```python
from bootfs.textmode import TextModeTerminal

term = TextModeTerminal(managed=True)
for ch in "Hello":
    term.putchar(ch)
term.double_buffer_flush()
print(term.get_cursor_pos())          # (5, 0)
print(bytes(term.video_mem[:10:2]))   # b"Hello"
```

## What it does not do

`bootfs` does not do any of the following:

- boot anything;
- draw a menu or run an interactive console;
- talk to real disks, firmware, video hardware or the network.

It never writes to volumes. PXE/TFTP volumes cannot be opened. The text-mode
terminal is a model of the screen buffers only: it does not parse escape
sequences.