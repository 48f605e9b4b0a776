"""
Unsigned LEB128 varint encoding and decoding.

Varints encode integers in 7-bit groups, low-order group first. The MSB of
each byte is a continuation bit: 1 means more bytes follow.

Byte structure::

    [C|D D D D D D D]
     ^-- Continuation bit (1 = more bytes, 0 = last byte)
       ^-----------^-- 7 bits of data

Used by:
    - multistream-select message length prefixes
    - protobuf field tags and lengths (public keys, Noise payloads)
    - mplex frame headers

Maximum value: 2^64 - 1 (10 bytes).

References:
    - https://protobuf.dev/programming-guides/encoding/#varints
"""

from __future__ import annotations

from typing import Final

MAX_VARINT_BYTES: Final[int] = 10
"""Longest valid encoding (64-bit values)."""


class VarintError(Exception):
    """Raised when varint encoding or decoding fails."""


def encode_varint(value: int) -> bytes:
    """
    Encode an unsigned integer as LEB128 varint.

    Args:
        value: Non-negative integer to encode.

    Returns:
        Varint-encoded bytes.

    Raises:
        ValueError: If value is negative.
    """
    if value < 0:
        raise ValueError("Varint must be non-negative")

    result = bytearray()
    while value >= 0x80:
        result.append((value & 0x7F) | 0x80)
        value >>= 7
    result.append(value)
    return bytes(result)


def decode_varint(data: bytes, offset: int = 0) -> tuple[int, int]:
    """
    Decode a varint from bytes at the given offset.

    Args:
        data: Input bytes containing the varint.
        offset: Starting position in data.

    Returns:
        Tuple of (decoded_value, bytes_consumed).

    Raises:
        VarintError: If the input is truncated or longer than 10 bytes.
    """
    result = 0
    shift = 0
    pos = offset

    while True:
        if pos >= len(data):
            raise VarintError("Truncated varint")
        if pos - offset >= MAX_VARINT_BYTES:
            raise VarintError("Varint too long")

        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        shift += 7

        if byte & 0x80 == 0:
            return result, pos - offset
