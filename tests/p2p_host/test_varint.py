"""Tests for unsigned LEB128 varints."""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from p2p_host.varint import VarintError, decode_varint, encode_varint


class TestEncodeVarint:
    """Known encodings."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (0, b"\x00"),
            (1, b"\x01"),
            (127, b"\x7f"),
            (128, b"\x80\x01"),
            (300, b"\xac\x02"),
            (16384, b"\x80\x80\x01"),
        ],
    )
    def test_known_values(self, value: int, expected: bytes) -> None:
        assert encode_varint(value) == expected

    def test_negative_rejected(self) -> None:
        with pytest.raises(ValueError, match="non-negative"):
            encode_varint(-1)


class TestDecodeVarint:
    """Decoding, offsets, and malformed input."""

    def test_reports_bytes_consumed(self) -> None:
        assert decode_varint(b"\xac\x02\xff") == (300, 2)

    def test_decodes_at_offset(self) -> None:
        assert decode_varint(b"\xff\x05", offset=1) == (5, 1)

    def test_truncated(self) -> None:
        with pytest.raises(VarintError, match="Truncated"):
            decode_varint(b"\x80")

    def test_empty(self) -> None:
        with pytest.raises(VarintError):
            decode_varint(b"")

    def test_too_long(self) -> None:
        with pytest.raises(VarintError, match="too long"):
            decode_varint(b"\x80" * 10 + b"\x01")


@given(st.integers(min_value=0, max_value=2**64 - 1))
def test_decode_inverts_encode(value: int) -> None:
    """Any 64-bit value survives encoding."""
    encoded = encode_varint(value)
    assert decode_varint(encoded) == (value, len(encoded))
