"""
PeerId derivation from public keys.

libp2p PeerIds are derived from the public key using multihash:
    1. Encode public key as protobuf (libp2p-crypto format)
    2. If encoded <= 42 bytes: PeerId = multihash(identity, encoded)
    3. If encoded > 42 bytes: PeerId = multihash(sha256, sha256(encoded))

Protobuf wire format (from crypto.proto):
    message PublicKey {
        required KeyType Type = 1;  // Field 1, varint
        required bytes Data = 2;    // Field 2, length-delimited
    }

For secp256k1 keys (33 bytes compressed), the encoded form is 37 bytes,
so the identity hash is used. The result is Base58-encoded for display.

References:
    - https://github.com/libp2p/specs/blob/master/peer-ids/peer-ids.md
    - https://github.com/multiformats/multihash
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import IntEnum
from typing import Final

from ..varint import decode_varint, encode_varint

__all__ = [
    "Base58",
    "KeyType",
    "Multihash",
    "MultihashCode",
    "PeerId",
    "PublicKeyProto",
]


class KeyType(IntEnum):
    """libp2p-crypto key type codes (from crypto.proto KeyType enum)."""

    RSA = 0
    ED25519 = 1
    SECP256K1 = 2
    ECDSA = 3


class MultihashCode(IntEnum):
    """Multihash function codes."""

    IDENTITY = 0x00
    """Identity "hash": no hashing, just wraps the data."""

    SHA256 = 0x12
    """SHA-256 hash (32-byte output)."""


_TAG_TYPE: Final[int] = 0x08
"""Protobuf tag for PublicKey.Type: field 1, varint."""

_TAG_DATA: Final[int] = 0x12
"""Protobuf tag for PublicKey.Data: field 2, length-delimited."""

_IDENTITY_THRESHOLD: Final[int] = 42
"""Threshold for identity vs SHA256 hashing (from libp2p spec)."""


class Base58:
    """Base58 encoding/decoding (Bitcoin-style alphabet)."""

    ALPHABET: Final[str] = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
    """Base58 alphabet (excludes 0, O, I, l)."""

    @classmethod
    def encode(cls, data: bytes) -> str:
        """Encode bytes as Base58. Leading zero bytes become leading '1's."""
        leading_zeros = len(data) - len(data.lstrip(b"\x00"))

        num = int.from_bytes(data, "big")
        result: list[str] = []
        while num > 0:
            num, remainder = divmod(num, 58)
            result.append(cls.ALPHABET[remainder])

        result.extend([cls.ALPHABET[0]] * leading_zeros)
        return "".join(reversed(result))

    @classmethod
    def decode(cls, s: str) -> bytes:
        """
        Decode Base58 string to bytes.

        Raises:
            ValueError: If string contains invalid characters.
        """
        leading_ones = len(s) - len(s.lstrip("1"))

        num = 0
        for char in s:
            index = cls.ALPHABET.find(char)
            if index < 0:
                raise ValueError(f"Invalid Base58 character: {char!r}")
            num = num * 58 + index

        result = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
        return b"\x00" * leading_ones + result


@dataclass(frozen=True, slots=True)
class Multihash:
    """
    A self-describing hash: [code][length][digest].

    Digests here are always small (identity <= 42, SHA256 = 32), so code and
    length fit in a single byte each.
    """

    code: MultihashCode
    """Hash function used."""

    digest: bytes
    """Hash output or identity data."""

    def encode(self) -> bytes:
        """Encode as multihash bytes."""
        if len(self.digest) > 127:
            raise ValueError(f"Digest too large for single-byte length: {len(self.digest)}")
        return bytes([self.code, len(self.digest)]) + self.digest

    @classmethod
    def from_data(cls, data: bytes) -> Multihash:
        """Identity multihash for data <= 42 bytes, SHA256 otherwise."""
        if len(data) <= _IDENTITY_THRESHOLD:
            return cls(code=MultihashCode.IDENTITY, digest=data)
        return cls(code=MultihashCode.SHA256, digest=hashlib.sha256(data).digest())


@dataclass(frozen=True, slots=True)
class PublicKeyProto:
    """A public key in libp2p-crypto protobuf format."""

    key_type: KeyType
    """Key algorithm type."""

    key_data: bytes
    """Raw public key bytes."""

    def encode(self) -> bytes:
        """
        Encode as protobuf wire format.

        Wire encoding:
            [0x08][type_varint][0x12][length_varint][key_bytes]
        """
        type_field = bytes([_TAG_TYPE]) + encode_varint(self.key_type)
        data_field = bytes([_TAG_DATA]) + encode_varint(len(self.key_data)) + self.key_data
        return type_field + data_field

    @classmethod
    def decode(cls, data: bytes) -> PublicKeyProto:
        """
        Decode from protobuf wire format.

        Raises:
            ValueError: If data is malformed or a field is missing.
        """
        key_type: int | None = None
        key_data: bytes | None = None
        offset = 0

        while offset < len(data):
            tag = data[offset]
            offset += 1
            value, consumed = decode_varint(data, offset)
            offset += consumed

            if tag == _TAG_TYPE:
                key_type = value
            elif tag == _TAG_DATA:
                if offset + value > len(data):
                    raise ValueError("Truncated public key data")
                key_data = data[offset : offset + value]
                offset += value
            else:
                raise ValueError(f"Unexpected protobuf tag: {tag:#x}")

        if key_type is None or key_data is None:
            raise ValueError("Public key protobuf is missing fields")

        return cls(key_type=KeyType(key_type), key_data=key_data)


@dataclass(frozen=True, slots=True)
class PeerId:
    """
    A libp2p peer identifier.

    PeerIds uniquely identify peers in the network. They are derived from
    public keys via multihash and displayed as Base58 strings.

    String format:
        - secp256k1 keys: "16Uiu2..." (identity multihash, 37 bytes)
        - Large keys (RSA, ECDSA): "Qm..." (SHA256 multihash)
    """

    multihash: bytes
    """Raw multihash bytes (before Base58 encoding)."""

    def __str__(self) -> str:
        return Base58.encode(self.multihash)

    def __repr__(self) -> str:
        return f"PeerId({self!s})"

    def to_base58(self) -> str:
        """Return the Base58-encoded PeerId string."""
        return Base58.encode(self.multihash)

    def to_bytes(self) -> bytes:
        """Return the raw multihash bytes."""
        return self.multihash

    @classmethod
    def from_base58(cls, s: str) -> PeerId:
        """
        Parse a Base58-encoded PeerId.

        Raises:
            ValueError: If string is not valid Base58.
        """
        return cls(multihash=Base58.decode(s))

    @classmethod
    def from_public_key(cls, public_key: PublicKeyProto) -> PeerId:
        """Derive a PeerId from a protobuf-encoded public key."""
        return cls(multihash=Multihash.from_data(public_key.encode()).encode())

    @classmethod
    def from_secp256k1(cls, public_key_bytes: bytes) -> PeerId:
        """
        Derive a PeerId from a 33-byte compressed secp256k1 public key.

        Raises:
            ValueError: If public key is not 33 bytes.
        """
        if len(public_key_bytes) != 33:
            raise ValueError(
                f"secp256k1 compressed key must be 33 bytes, got {len(public_key_bytes)}"
            )
        return cls.from_public_key(
            PublicKeyProto(key_type=KeyType.SECP256K1, key_data=public_key_bytes)
        )
