"""Unkeyed BLAKE2b with a 64-byte digest."""

from __future__ import annotations

import struct

BLOCK_BYTES = 128
OUT_BYTES = 64

_MASK = (1 << 64) - 1

_IV = (
    0x6A09E667F3BCC908,
    0xBB67AE8584CAA73B,
    0x3C6EF372FE94F82B,
    0xA54FF53A5F1D36F1,
    0x510E527FADE682D1,
    0x9B05688C2B3E6C1F,
    0x1F83D9ABFB41BD6B,
    0x5BE0CD19137E2179,
)

_SIGMA = (
    (0, 1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11, 12, 13, 14, 15),
    (14, 10, 4, 8, 9, 15, 13, 6, 1, 12, 0, 2, 11, 7, 5, 3),
    (11, 8, 12, 0, 5, 2, 15, 13, 10, 14, 3, 6, 7, 1, 9, 4),
    (7, 9, 3, 1, 13, 12, 11, 14, 2, 6, 5, 10, 4, 0, 15, 8),
    (9, 0, 5, 7, 2, 4, 10, 15, 14, 1, 11, 12, 6, 8, 3, 13),
    (2, 12, 6, 10, 0, 11, 8, 3, 4, 13, 7, 5, 15, 14, 1, 9),
    (12, 5, 1, 15, 14, 13, 4, 10, 0, 7, 6, 3, 9, 2, 8, 11),
    (13, 11, 7, 14, 12, 1, 3, 9, 5, 0, 15, 4, 8, 6, 2, 10),
    (6, 15, 14, 9, 11, 3, 0, 8, 12, 2, 13, 7, 1, 4, 10, 5),
    (10, 2, 8, 4, 7, 6, 1, 5, 15, 11, 9, 14, 3, 12, 13, 0),
    (0, 1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11, 12, 13, 14, 15),
    (14, 10, 4, 8, 9, 15, 13, 6, 1, 12, 0, 2, 11, 7, 5, 3),
)

# Column steps followed by diagonal steps of one round.
_G_LANES = (
    (0, 4, 8, 12),
    (1, 5, 9, 13),
    (2, 6, 10, 14),
    (3, 7, 11, 15),
    (0, 5, 10, 15),
    (1, 6, 11, 12),
    (2, 7, 8, 13),
    (3, 4, 9, 14),
)

# First parameter-block word: digest length 64, no key, fan-out 1, depth 1.
_PARAM_WORD0 = OUT_BYTES | (1 << 16) | (1 << 24)

_BLOCK = struct.Struct("<16Q")
_DIGEST = struct.Struct("<8Q")


def _rotr(word: int, count: int) -> int:
    return ((word >> count) | (word << (64 - count))) & _MASK


def _compress(h: list[int], block: bytes, counter: int, final: bool) -> list[int]:
    m = _BLOCK.unpack(block)
    v = list(h) + list(_IV)
    v[12] ^= counter & _MASK
    v[13] ^= (counter >> 64) & _MASK
    if final:
        v[14] ^= _MASK

    for sigma in _SIGMA:
        for step, (a, b, c, d) in enumerate(_G_LANES):
            x = m[sigma[2 * step]]
            y = m[sigma[2 * step + 1]]
            v[a] = (v[a] + v[b] + x) & _MASK
            v[d] = _rotr(v[d] ^ v[a], 32)
            v[c] = (v[c] + v[d]) & _MASK
            v[b] = _rotr(v[b] ^ v[c], 24)
            v[a] = (v[a] + v[b] + y) & _MASK
            v[d] = _rotr(v[d] ^ v[a], 16)
            v[c] = (v[c] + v[d]) & _MASK
            v[b] = _rotr(v[b] ^ v[c], 63)

    return [word ^ v[i] ^ v[i + 8] for i, word in enumerate(h)]


def blake2b(data) -> bytes:
    """Return the 64-byte BLAKE2b digest of ``data``."""
    data = bytes(data)
    h = list(_IV)
    h[0] ^= _PARAM_WORD0

    # The last block (possibly full, possibly empty) is always kept for finalisation.
    last = max(0, (len(data) - 1) // BLOCK_BYTES * BLOCK_BYTES)
    for offset in range(0, last, BLOCK_BYTES):
        h = _compress(h, data[offset:offset + BLOCK_BYTES], offset + BLOCK_BYTES, False)

    tail = data[last:].ljust(BLOCK_BYTES, b"\0")
    h = _compress(h, tail, len(data), True)
    return _DIGEST.pack(*h)