import io

import pytest

from bootfs.volume import FileHandle, MemoryFile, Volume

DATA = bytes(range(256)) * 4


def test_read_returns_slice():
    volume = Volume(DATA)
    assert volume.read(10, 4) == DATA[10:14]
    assert volume.size == len(DATA)


def test_partition_offset():
    volume = Volume(DATA, offset=512)
    assert volume.read(0, 4) == DATA[512:516]
    assert volume.size == len(DATA) - 512


def test_size_limits_reads():
    volume = Volume(DATA, offset=100, size=50)
    assert volume.read(40, 10) == DATA[140:150]
    with pytest.raises(OSError):
        volume.read(40, 20)


def test_read_past_end_raises():
    volume = Volume(DATA)
    with pytest.raises(OSError):
        volume.read(len(DATA) - 2, 4)


def test_negative_read_rejected():
    volume = Volume(DATA)
    with pytest.raises(ValueError):
        volume.read(-1, 4)


def test_size_larger_than_source_rejected():
    with pytest.raises(ValueError):
        Volume(DATA, offset=1000, size=100)


def test_file_object_source():
    volume = Volume(io.BytesIO(DATA), offset=256)
    assert volume.read(3, 5) == DATA[259:264]
    assert volume.size == len(DATA) - 256


def test_memory_file_reads():
    f = MemoryFile(b"abcdef", path="/x")
    assert f.size == 6
    assert f.read(2, 3) == b"cde"
    assert f.read_all() == b"abcdef"


def test_memory_file_out_of_range():
    f = MemoryFile(b"abc")
    with pytest.raises(ValueError):
        f.read(2, 5)


def test_closed_file_cannot_be_read():
    f = MemoryFile(b"abc")
    f.close()
    assert f.closed
    with pytest.raises(ValueError):
        f.read(0, 1)


def test_context_manager_closes():
    with MemoryFile(b"abc") as f:
        assert f.read(0, 3) == b"abc"
    assert f.closed


class _CountingFile(FileHandle):
    def __init__(self, data):
        super().__init__(None, len(data))
        self.data = data
        self.calls = 0

    def read(self, loc, count):
        self.calls += 1
        return self.data[loc:loc + count]


def test_read_all_reads_once():
    f = _CountingFile(b"payload")
    assert FileHandle.read_all(f) == b"payload"
    assert FileHandle.read_all(f) == b"payload"
    assert f.calls == 1
    assert f.size == 7


def test_file_handle_is_abstract():
    with pytest.raises(TypeError):
        FileHandle(None, 0)