"""Boot menu configuration: checksum, macros, global options and the entry tree."""

from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from typing import Optional, Union

from bootfs.blake2b import OUT_BYTES, blake2b
from bootfs.files import fopen
from bootfs.volume import Volume

CONFIG_PATHS = (
    "/limine.cfg",
    "/limine/limine.cfg",
    "/boot/limine.cfg",
    "/boot/limine/limine.cfg",
    "/EFI/BOOT/limine.cfg",
)

EMPTY_B2SUM = "0" * (OUT_BYTES * 2)

_NAME_LIMIT = 63
_SEPARATOR = "\n"

_NOT_CHILD = -1
_DIRECT_CHILD = 0
_INDIRECT_CHILD = 1


class ConfigError(ValueError):
    """The configuration file is malformed or fails its checksum."""


@dataclass
class MenuEntry:
    """One boot menu entry; directories have children."""

    name: str
    body: str
    comment: Optional[str] = None
    expanded: bool = False
    children: list = field(default_factory=list)
    parent: Optional["MenuEntry"] = field(default=None, repr=False, compare=False)


def _find_value(text: str, key: str, index: int) -> Optional[tuple[str, int]]:
    """Return the ``index``-th value of ``key`` at a line start and where it begins."""
    needle = key + "="
    start = 0
    while True:
        i = text.find(needle, start)
        if i < 0:
            return None
        start = i + 1
        if i and text[i - 1] != _SEPARATOR:
            continue
        if index:
            index -= 1
            continue
        value_start = i + len(needle)
        end = text.find(_SEPARATOR, value_start)
        if end < 0:
            end = len(text)
        return text[value_start:end], value_start


class Config:
    """A parsed configuration: the global section and the menu tree."""

    def __init__(self, text: str) -> None:
        self.text = text
        self._entry_starts = [
            i for i, ch in enumerate(text)
            if ch == ":" and (i == 0 or text[i - 1] == _SEPARATOR)
        ]
        self.menu: list[MenuEntry] = self._build_tree(None, 1, 0)
        self.global_text = self._global_section()

    def _entry_name(self, index: int) -> Optional[str]:
        if index >= len(self._entry_starts):
            return None
        start = self._entry_starts[index]
        end = self.text.find(_SEPARATOR, start)
        if end < 0:
            end = len(self.text)
        return self.text[start:end][:_NAME_LIMIT]

    def _body_start(self, index: int) -> int:
        pos = self.text.find(_SEPARATOR, self._entry_starts[index] + 2)
        return len(self.text) if pos < 0 else pos

    def _entry_body(self, index: int) -> str:
        start = self._body_start(index)
        following = bisect.bisect_right(self._entry_starts, start)
        end = (self._entry_starts[following]
               if following < len(self._entry_starts) else len(self.text))
        return self.text[start:end]

    def _child_kind(self, depth: int, index: int) -> int:
        name = self._entry_name(index)
        if name is None or len(name) < depth + 1:
            return _NOT_CHILD
        if name[:depth] != ":" * depth:
            return _NOT_CHILD
        return _INDIRECT_CHILD if name[depth] == ":" else _DIRECT_CHILD

    def _is_directory(self, depth: int, index: int) -> bool:
        kind = self._child_kind(depth + 1, index + 1)
        if kind == _INDIRECT_CHILD:
            raise ConfigError("config: Malformed config file. Parentless child.")
        return kind == _DIRECT_CHILD

    def _build_tree(self, parent: Optional[MenuEntry], depth: int,
                    index: int) -> list[MenuEntry]:
        entries: list[MenuEntry] = []
        i = index
        while True:
            kind = self._child_kind(depth, i)
            if kind == _NOT_CHILD:
                return entries
            if kind == _INDIRECT_CHILD:
                i += 1
                continue

            name = self._entry_name(i)
            default_expanded = name[depth] == "+"
            body = self._entry_body(i)
            entry = MenuEntry(name=name[depth + default_expanded:], body=body,
                              parent=parent)
            if self._is_directory(depth, i):
                entry.children = self._build_tree(entry, depth + 1, i + 1)
                entry.expanded = default_expanded
            comment = _find_value(body, "COMMENT", 0)
            if comment is not None:
                entry.comment = comment[0]
            entries.append(entry)
            i += 1

    def _global_section(self) -> str:
        if not self._entry_starts:
            return self.text
        end = self._body_start(0)
        colon = self.text.rfind(":", 0, end)
        if colon > 0:
            return self.text[:colon - 1]
        return self.text

    def get_value(self, key: Optional[str], index: int = 0,
                  config: Optional[str] = None) -> Optional[str]:
        """Return the ``index``-th value of ``key`` in ``config`` (default: global section)."""
        if key is None:
            return None
        source = self.global_text if config is None else config
        found = _find_value(source, key, index)
        return None if found is None else found[0]

    def get_tuple(self, key1: str, key2: str, index: int = 0,
                  config: Optional[str] = None) -> tuple[Optional[str], Optional[str]]:
        """Return the ``index``-th ``key1`` value and the ``key2`` value that belongs to it.

        The second value is only paired when it appears before the next ``key1``.
        """
        source = self.global_text if config is None else config
        first = _find_value(source, key1, index)
        if first is None:
            return None, None
        value1, pos1 = first

        second = _find_value(source[pos1:], key2, 0)
        value2 = None
        last1 = pos1
        if second is not None:
            value2 = second[0]
            last1 = pos1 + second[1]

        following = _find_value(source, key1, index + 1)
        last2 = last1 if following is None else following[1]

        if value2 is not None and following is not None and last1 > last2:
            value2 = None
        return value1, value2


def _verify_checksum(raw: bytes, expected_b2sum: Optional[str]) -> None:
    if expected_b2sum is None:
        return
    expected = expected_b2sum[:OUT_BYTES * 2]
    if expected == EMPTY_B2SUM:
        return
    try:
        digest = bytes.fromhex(expected)
    except ValueError as exc:
        raise ConfigError("config: malformed checksum") from exc
    if len(digest) != OUT_BYTES:
        raise ConfigError("config: malformed checksum")
    if digest != blake2b(raw):
        raise ConfigError("!!! CHECKSUM MISMATCH FOR CONFIG FILE !!!")


def _normalise(text: str) -> str:
    text = text.replace("\r", "")
    return _SEPARATOR.join(line.lstrip(" \t") for line in text.split(_SEPARATOR))


def _is_definition_start(buf: str, i: int) -> bool:
    size = len(buf)
    return ((size - i >= 3 and buf.startswith("\n${", i))
            or (i == 0 and size >= 2 and buf.startswith("${")))


def _load_macros(buf: str) -> dict[str, str]:
    def at(k: int) -> str:
        return buf[k] if k < len(buf) else "\0"

    macros: dict[str, str] = {}
    i = 0
    while i < len(buf):
        if not _is_definition_start(buf, i):
            i += 1
            continue
        i += 3 if i else 2
        name_start = i
        while at(i) not in "}\n\0":
            i += 1
        name = buf[name_start:i]
        if at(i) in "\n\0" or at(i + 1) != "=":
            continue
        i += 2
        value_start = i
        while at(i) not in "\n\0":
            i += 1
        macros[name] = buf[value_start:i]
    return macros


def _expand_macros(text: str) -> str:
    buf = text + "\0"
    macros = _load_macros(buf)
    if not macros:
        return text

    def at(k: int) -> str:
        return buf[k] if k < len(buf) else "\0"

    size = len(buf)
    limit = size * 4
    out: list[str] = []
    i = 0
    while i < size:
        if _is_definition_start(buf, i):
            origin = i
            i += 3 if i else 2
            while True:
                ch = at(i)
                i += 1
                if ch == "}":
                    break
                if i >= size:
                    raise ConfigError("config: Malformed macro usage")
            if at(i) == "=":
                continue
            i = origin

        if size - i >= 2 and buf.startswith("${", i):
            i += 2
            name_start = i
            while at(i) not in "}\n\0":
                i += 1
            if at(i) != "}":
                raise ConfigError("config: Malformed macro usage")
            name = buf[name_start:i]
            i += 1
            value = macros.get(name, "")
            if len(out) + len(value) > limit:
                raise ConfigError("config: Macro-induced buffer overflow")
            out.extend(value)
            continue

        if len(out) >= limit:
            raise ConfigError("config: Macro-induced buffer overflow")
        out.append(buf[i])
        i += 1

    return "".join(out).split("\0", 1)[0]


def parse_config(data: Union[bytes, bytearray, str],
                 expected_b2sum: Optional[str] = None) -> Config:
    """Parse configuration text, checking it against a hex BLAKE2b digest if given."""
    raw = data.encode("utf-8") if isinstance(data, str) else bytes(data)
    _verify_checksum(raw, expected_b2sum)
    text = (raw.decode("utf-8", "replace") + _SEPARATOR).split("\0", 1)[0]
    text = _normalise(text)
    text = _expand_macros(text)
    return Config(text)


def load_config_from_volume(volume: Volume,
                            expected_b2sum: Optional[str] = None) -> Config:
    """Find and parse the configuration file on ``volume``.

    Raises FileNotFoundError when none of the standard locations holds one.
    """
    for path in CONFIG_PATHS:
        handle = fopen(volume, path, case_insensitive=True)
        if handle is not None:
            break
    else:
        raise FileNotFoundError("no configuration file found on the volume")
    with handle:
        data = handle.read_all()
    return parse_config(data, expected_b2sum)