import hashlib

import pytest

from bootfs.blake2b import OUT_BYTES, blake2b


def test_empty_input_digest():
    assert blake2b(b"").hex() == (
        "786a02f742015903c6c6fd852552d272912f4740e15847618a86e217f71f5419"
        "d25e1031afee585313896444934eb04b903a685b1448b755d56f701afe9be2ce"
    )


def test_abc_digest():
    assert blake2b(b"abc").hex() == (
        "ba80a53f981c4d0d6a2797b69f12f6e94c212f14685ac4b74b12bb6fdbffa2d1"
        "7d87c5392aab792dc252d5de4533cc9518d38aa8dbf1925ab92386edd4009923"
    )


@pytest.mark.parametrize("length", [0, 1, 63, 127, 128, 129, 255, 256, 257, 1000, 4096])
def test_matches_reference(length):
    data = bytes((i * 7 + 3) & 0xFF for i in range(length))
    assert blake2b(data) == hashlib.blake2b(data).digest()


def test_digest_length():
    assert len(blake2b(b"limine")) == OUT_BYTES


def test_accepts_bytes_like():
    data = b"some configuration\n"
    assert blake2b(bytearray(data)) == blake2b(data)
    assert blake2b(memoryview(data)) == blake2b(data)


def test_different_inputs_differ():
    assert blake2b(b"a") != blake2b(b"b")