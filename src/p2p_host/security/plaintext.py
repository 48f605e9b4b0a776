"""
Plaintext security transport (/plaintext/2.0.0).

Installed when the host runs without security. Peers exchange their
public keys so the connection still carries peer identities, but
nothing is encrypted or authenticated.

Wire format (varint length-delimited protobuf):

    message Exchange {
        bytes id = 1;          // peer ID multihash bytes
        PublicKey pubkey = 2;  // PublicKey protobuf
    }

This must never be used outside of testing.
"""

from __future__ import annotations

import asyncio
from typing import Final

from multiaddr import Multiaddr

from ..identity import IdentityKeypair, PeerId, PublicKey
from ..transport.base import RawConn
from ..varint import VarintError, decode_varint, encode_varint
from .base import SecurityError

PLAINTEXT_PROTOCOL_ID: Final[str] = "/plaintext/2.0.0"
"""Protocol ID negotiated via multistream-select."""

MAX_EXCHANGE_SIZE: Final[int] = 4096
"""Upper bound on an Exchange message."""


def encode_exchange(identity: IdentityKeypair) -> bytes:
    """Encode our Exchange message, without the outer length prefix."""
    peer_id = identity.to_peer_id().to_bytes()
    pubkey = identity.public_key().to_proto().encode()
    return (
        b"\x0a" + encode_varint(len(peer_id)) + peer_id + b"\x12" + encode_varint(len(pubkey)) + pubkey
    )


def decode_exchange(data: bytes) -> tuple[bytes, PublicKey]:
    """
    Decode an Exchange message into (peer ID bytes, public key).

    Raises:
        SecurityError: If the message is malformed.
    """
    fields: dict[int, bytes] = {}
    offset = 0
    try:
        while offset < len(data):
            tag = data[offset]
            length, consumed = decode_varint(data, offset + 1)
            start = offset + 1 + consumed
            if start + length > len(data):
                raise SecurityError("Truncated exchange message")
            fields[tag] = data[start : start + length]
            offset = start + length
    except VarintError as e:
        raise SecurityError(f"Malformed exchange message: {e}") from e

    if 0x0A not in fields or 0x12 not in fields:
        raise SecurityError("Exchange message missing fields")
    try:
        return fields[0x0A], PublicKey.from_proto_bytes(fields[0x12])
    except ValueError as e:
        raise SecurityError(f"Invalid public key: {e}") from e


class PlaintextConn:
    """A raw connection annotated with peer identities."""

    def __init__(self, conn: RawConn, local_peer: PeerId, remote_public_key: PublicKey) -> None:
        self._conn = conn
        self.local_peer = local_peer
        self.remote_public_key = remote_public_key
        self.remote_peer = remote_public_key.to_peer_id()
        self.local_addr: Multiaddr = conn.local_addr
        self.remote_addr: Multiaddr = conn.remote_addr

    async def read(self, n: int = -1) -> bytes:
        return await self._conn.read(n)

    async def readexactly(self, n: int) -> bytes:
        return await self._conn.readexactly(n)

    async def write(self, data: bytes) -> None:
        await self._conn.write(data)

    async def close(self) -> None:
        await self._conn.close()


class PlaintextTransport:
    """Exchanges public keys in the clear."""

    def __init__(self, private_key: IdentityKeypair) -> None:
        self._identity = private_key
        self._local_peer = private_key.to_peer_id()

    async def _exchange(self, conn: RawConn) -> PublicKey:
        message = encode_exchange(self._identity)
        await conn.write(encode_varint(len(message)) + message)

        length_bytes = bytearray()
        while True:
            byte = await conn.readexactly(1)
            length_bytes += byte
            if byte[0] & 0x80 == 0:
                break
            if len(length_bytes) > 5:
                raise SecurityError("Exchange length varint too long")
        length, _ = decode_varint(bytes(length_bytes))
        if length > MAX_EXCHANGE_SIZE:
            raise SecurityError(f"Exchange message too large: {length}")

        try:
            raw_id, public_key = decode_exchange(await conn.readexactly(length))
        except asyncio.IncompleteReadError as e:
            raise SecurityError("Connection closed during key exchange") from e

        if PeerId.from_public_key(public_key.to_proto()).to_bytes() != raw_id:
            raise SecurityError("Peer ID does not match public key")
        return public_key

    async def secure_inbound(self, conn: RawConn) -> PlaintextConn:
        return PlaintextConn(conn, self._local_peer, await self._exchange(conn))

    async def secure_outbound(self, conn: RawConn, peer_id: PeerId | None) -> PlaintextConn:
        public_key = await self._exchange(conn)
        remote_peer = public_key.to_peer_id()
        if peer_id is not None and remote_peer != peer_id:
            raise SecurityError(f"Peer ID mismatch: expected {peer_id}, got {remote_peer}")
        return PlaintextConn(conn, self._local_peer, public_key)
