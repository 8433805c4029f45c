import struct

import pytest

from bootfs.blake2b import blake2b
from bootfs.config import ConfigError, load_config_from_volume, parse_config
from bootfs.volume import Volume

CFG = b"TIMEOUT=5\n\n:Linux\nPROTOCOL=linux\nKERNEL_PATH=boot:///vmlinuz\n"


def _dir_entry(name, attr, cluster, size):
    raw = bytearray(32)
    raw[:11] = name
    raw[11] = attr
    struct.pack_into("<H", raw, 26, cluster)
    struct.pack_into("<I", raw, 28, size)
    return bytes(raw)


def _fat12_image_with_config(cfg):
    img = bytearray(64 * 512)
    img[0:3] = b"\xeb\x3c\x90"
    img[3:11] = b"MSDOS5.0"
    struct.pack_into("<HBHBHHBH", img, 11, 512, 1, 1, 1, 16, 64, 0xF8, 1)
    img[0x36:0x3E] = b"FAT12   "

    def set_fat(cluster, value):
        off = 512 + cluster + cluster // 2
        word, = struct.unpack_from("<H", img, off)
        if cluster % 2 == 0:
            word = (word & 0xF000) | value
        else:
            word = (word & 0x000F) | (value << 4)
        struct.pack_into("<H", img, off, word)

    set_fat(3, 0xFFF)
    set_fat(4, 0xFFF)
    root = 2 * 512
    img[root:root + 32] = _dir_entry(b"BOOT       ", 0x10, 3, 0)
    img[4 * 512:4 * 512 + 32] = _dir_entry(b"LIMINE  CFG", 0x20, 4, len(cfg))
    img[5 * 512:5 * 512 + len(cfg)] = cfg
    return bytes(img)


def test_global_value_and_entry_body():
    cfg = parse_config(CFG)
    assert cfg.get_value("TIMEOUT") == "5"
    assert cfg.get_value("PROTOCOL") is None
    assert [e.name for e in cfg.menu] == ["Linux"]
    body = cfg.menu[0].body
    assert cfg.get_value("PROTOCOL", config=body) == "linux"
    assert cfg.get_value("KERNEL_PATH", config=body) == "boot:///vmlinuz"


def test_colons_in_values_do_not_start_entries():
    cfg = parse_config(CFG)
    assert len(cfg.menu) == 1


def test_value_index():
    cfg = parse_config(b"A=1\nA=2\n")
    assert cfg.get_value("A", 0) == "1"
    assert cfg.get_value("A", 1) == "2"
    assert cfg.get_value("A", 2) is None


def test_key_must_start_a_line():
    cfg = parse_config(b"XA=1\nA=2\n")
    assert cfg.get_value("A") == "2"


def test_carriage_returns_and_indentation_removed():
    cfg = parse_config(b"TIMEOUT=3\r\n  :Entry\r\n\tKERNEL=foo\r\n")
    assert cfg.get_value("TIMEOUT") == "3"
    assert cfg.menu[0].name == "Entry"
    assert cfg.get_value("KERNEL", config=cfg.menu[0].body) == "foo"


def test_nested_tree():
    cfg = parse_config(b":Dir\n::Child1\n::Child2\n:Other\n")
    assert [e.name for e in cfg.menu] == ["Dir", "Other"]
    directory = cfg.menu[0]
    assert [c.name for c in directory.children] == ["Child1", "Child2"]
    assert all(c.parent is directory for c in directory.children)
    assert directory.expanded is False
    assert cfg.menu[1].children == []


def test_plus_marks_directory_expanded():
    cfg = parse_config(b":+Dir\n::Child\n")
    assert cfg.menu[0].name == "Dir"
    assert cfg.menu[0].expanded is True


def test_parentless_child_is_an_error():
    with pytest.raises(ConfigError):
        parse_config(b":A\n:::B\n")


def test_comment_is_picked_up():
    cfg = parse_config(b":E\nCOMMENT=hello\n")
    assert cfg.menu[0].comment == "hello"


def test_macro_expansion():
    cfg = parse_config(b"${ROOT}=boot:///\n:E\nKERNEL_PATH=${ROOT}kernel\n")
    assert cfg.get_value("KERNEL_PATH", config=cfg.menu[0].body) == "boot:///kernel"


def test_undefined_macro_expands_to_nothing():
    cfg = parse_config(b"${A}=1\nX=${NOPE}y\n")
    assert cfg.get_value("X") == "y"


def test_malformed_macro_usage():
    with pytest.raises(ConfigError):
        parse_config(b"${A}=1\nX=${B\n")


def test_macro_overflow():
    data = b"${A}=" + b"x" * 40 + b"\nB=" + b"${A}" * 50 + b"\n"
    with pytest.raises(ConfigError, match="overflow"):
        parse_config(data)


def test_checksum_accepted():
    cfg = parse_config(CFG, blake2b(CFG).hex())
    assert cfg.get_value("TIMEOUT") == "5"


def test_checksum_mismatch():
    with pytest.raises(ConfigError, match="CHECKSUM MISMATCH"):
        parse_config(CFG, blake2b(b"other").hex())


def test_empty_checksum_skips_check():
    cfg = parse_config(CFG, "0" * 128)
    assert cfg.get_value("TIMEOUT") == "5"


def test_get_tuple_pairs_values():
    body = (b":M\nMODULE_PATH=a\nMODULE_CMDLINE=x\nMODULE_PATH=b\n"
            b"MODULE_PATH=c\nMODULE_CMDLINE=z\n")
    cfg = parse_config(body)
    text = cfg.menu[0].body
    assert cfg.get_tuple("MODULE_PATH", "MODULE_CMDLINE", 0, text) == ("a", "x")
    assert cfg.get_tuple("MODULE_PATH", "MODULE_CMDLINE", 1, text) == ("b", None)
    assert cfg.get_tuple("MODULE_PATH", "MODULE_CMDLINE", 2, text) == ("c", "z")
    assert cfg.get_tuple("MODULE_PATH", "MODULE_CMDLINE", 3, text) == (None, None)


def test_load_config_from_volume():
    cfg = load_config_from_volume(Volume(_fat12_image_with_config(CFG)))
    assert cfg.get_value("TIMEOUT") == "5"
    assert cfg.menu[0].name == "Linux"


def test_load_config_missing():
    with pytest.raises(FileNotFoundError):
        load_config_from_volume(Volume(bytes(8192)))