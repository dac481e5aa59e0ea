"""SipHash-1-3 and the checksum used to identify migration contents."""

from __future__ import annotations

import struct

_MASK = 0xFFFFFFFFFFFFFFFF


def _rotl(value: int, bits: int) -> int:
    return ((value << bits) | (value >> (64 - bits))) & _MASK


def _sip_round(v0: int, v1: int, v2: int, v3: int) -> tuple[int, int, int, int]:
    v0 = (v0 + v1) & _MASK
    v1 = _rotl(v1, 13) ^ v0
    v0 = _rotl(v0, 32)
    v2 = (v2 + v3) & _MASK
    v3 = _rotl(v3, 16) ^ v2
    v0 = (v0 + v3) & _MASK
    v3 = _rotl(v3, 21) ^ v0
    v2 = (v2 + v1) & _MASK
    v1 = _rotl(v1, 17) ^ v2
    v2 = _rotl(v2, 32)
    return v0, v1, v2, v3


def siphash13(data: bytes, k0: int = 0, k1: int = 0) -> int:
    """Return the 64-bit SipHash-1-3 of ``data`` under the key ``(k0, k1)``."""
    v0 = k0 ^ 0x736F6D6570736575
    v1 = k1 ^ 0x646F72616E646F6D
    v2 = k0 ^ 0x6C7967656E657261
    v3 = k1 ^ 0x7465646279746573

    length = len(data)
    full = length - length % 8
    for (word,) in struct.iter_unpack("<Q", data[:full]):
        v3 ^= word
        v0, v1, v2, v3 = _sip_round(v0, v1, v2, v3)
        v0 ^= word

    tail = int.from_bytes(data[full:], "little")
    last = ((length & 0xFF) << 56) | tail
    v3 ^= last
    v0, v1, v2, v3 = _sip_round(v0, v1, v2, v3)
    v0 ^= last

    v2 ^= 0xFF
    for _ in range(3):
        v0, v1, v2, v3 = _sip_round(v0, v1, v2, v3)
    return v0 ^ v1 ^ v2 ^ v3


def migration_checksum(name: str, version: int, sql: str) -> int:
    """Checksum of a migration's name, version and SQL.

    Strings are fed as their UTF-8 bytes followed by a 0xFF terminator and the
    version as a little-endian signed 32-bit integer, hashed with a zero key.
    """
    data = b"".join(
        (
            name.encode("utf-8"),
            b"\xff",
            struct.pack("<i", version),
            sql.encode("utf-8"),
            b"\xff",
        )
    )
    return siphash13(data)