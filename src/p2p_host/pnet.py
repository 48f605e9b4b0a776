"""
Private network protection.

A private network is a set of hosts sharing a 32-byte pre-shared key.
Before any negotiation, each side sends a random 16-byte nonce and then
XORs all traffic with a ChaCha20 keystream derived from
the PSK and the sender's nonce. Peers without the key see only noise and
fail the following multistream negotiation.

Key file format (v1):

    /key/swarm/psk/1.0.0/
    /base16/
    <64 hex characters>
"""

from __future__ import annotations

import asyncio
import hashlib
import os
from typing import Final, Protocol, runtime_checkable

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms
from multiaddr import Multiaddr

from .transport.base import RawConn

PSK_SIZE: Final[int] = 32
"""Pre-shared key length."""

NONCE_SIZE: Final[int] = 16
"""Per-direction nonce length (the full ChaCha20 initial block)."""

PSK_V1_HEADER: Final[str] = "/key/swarm/psk/1.0.0/"
"""First line of a v1 key file."""


class ProtectorError(Exception):
    """Raised for invalid keys or failed protection handshakes."""


@runtime_checkable
class Protector(Protocol):
    """Wraps raw connections before they are upgraded."""

    async def protect(self, conn: RawConn) -> RawConn:
        """Return a connection whose traffic is protected."""
        ...


class PskConn:
    """A raw connection encrypted with per-direction ChaCha20 streams."""

    def __init__(self, conn: RawConn, psk: bytes, send_nonce: bytes, recv_nonce: bytes) -> None:
        self._conn = conn
        self._encryptor = Cipher(algorithms.ChaCha20(psk, send_nonce), mode=None).encryptor()
        self._decryptor = Cipher(algorithms.ChaCha20(psk, recv_nonce), mode=None).decryptor()
        self._write_lock = asyncio.Lock()
        self.local_addr: Multiaddr = conn.local_addr
        self.remote_addr: Multiaddr = conn.remote_addr

    async def read(self, n: int = -1) -> bytes:
        return self._decryptor.update(await self._conn.read(n))

    async def readexactly(self, n: int) -> bytes:
        return self._decryptor.update(await self._conn.readexactly(n))

    async def write(self, data: bytes) -> None:
        # The keystream position must follow wire order.
        async with self._write_lock:
            await self._conn.write(self._encryptor.update(data))

    async def close(self) -> None:
        await self._conn.close()


class PskProtector:
    """Protects connections with a pre-shared key."""

    def __init__(self, psk: bytes) -> None:
        if len(psk) != PSK_SIZE:
            raise ProtectorError(f"PSK must be {PSK_SIZE} bytes, got {len(psk)}")
        self._psk = psk

    @classmethod
    def generate(cls) -> PskProtector:
        """Create a protector for a new random network key."""
        return cls(os.urandom(PSK_SIZE))

    @classmethod
    def decode_v1(cls, text: str) -> PskProtector:
        """
        Load a key from the v1 key file format.

        Raises:
            ProtectorError: If the header, encoding, or key is invalid.
        """
        lines = [line.strip() for line in text.strip().splitlines()]
        if len(lines) != 3 or lines[0] != PSK_V1_HEADER:
            raise ProtectorError("Not a v1 PSK file")
        if lines[1] != "/base16/":
            raise ProtectorError(f"Unsupported PSK encoding: {lines[1]}")
        try:
            psk = bytes.fromhex(lines[2])
        except ValueError as e:
            raise ProtectorError(f"Invalid hex key: {e}") from e
        return cls(psk)

    def encode_v1(self) -> str:
        """Serialize the key in the v1 key file format."""
        return f"{PSK_V1_HEADER}\n/base16/\n{self._psk.hex()}\n"

    def fingerprint(self) -> bytes:
        """Short identifier of the network key, safe to log."""
        return hashlib.sha256(self._psk).digest()[:16]

    async def protect(self, conn: RawConn) -> PskConn:
        send_nonce = os.urandom(NONCE_SIZE)
        await conn.write(send_nonce)
        try:
            recv_nonce = await conn.readexactly(NONCE_SIZE)
        except asyncio.IncompleteReadError as e:
            raise ProtectorError("Connection closed during nonce exchange") from e
        return PskConn(conn, self._psk, send_nonce, recv_nonce)
