"""
Abstract interfaces for transports and connections.

These Protocol classes are the contract external transport authors target.
The method-only protocols are runtime checkable so constructor validation
can test a candidate class or instance against them.

Connection layering:

    RawConn        -> reliable byte stream (TCP), optionally protected (pnet)
    SecureConn     -> authenticated and encrypted (security transport)
    Connection     -> multiplexed streams (stream muxer)
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Awaitable, Callable, Protocol, runtime_checkable

from multiaddr import Multiaddr

from ..identity import PeerId

if TYPE_CHECKING:
    from .upgrader import Connection


class TransportError(Exception):
    """Raised when a transport cannot dial, listen, or upgrade."""


@runtime_checkable
class ReadWriteCloser(Protocol):
    """Byte stream with buffered reads."""

    async def read(self, n: int = -1) -> bytes:
        """
        Read up to n bytes (-1: next available chunk).

        Returns b"" at end of stream.
        """
        ...

    async def readexactly(self, n: int) -> bytes:
        """
        Read exactly n bytes.

        Raises:
            asyncio.IncompleteReadError: If the stream ends first.
        """
        ...

    async def write(self, data: bytes) -> None:
        """Write and flush data."""
        ...

    async def close(self) -> None:
        """Close the stream."""
        ...


class RawConn(ReadWriteCloser, Protocol):
    """An unupgraded connection with known endpoints."""

    local_addr: Multiaddr
    """Our side of the connection."""

    remote_addr: Multiaddr
    """The peer's side of the connection."""


ConnHandler = Callable[["Connection"], Awaitable[None]]
"""Callback invoked with each upgraded inbound connection."""


@runtime_checkable
class Listener(Protocol):
    """An open listening socket."""

    def multiaddr(self) -> Multiaddr:
        """The bound address (with the real port)."""
        ...

    async def close(self) -> None:
        """Stop accepting connections."""
        ...


@runtime_checkable
class Transport(Protocol):
    """
    Establishes upgraded connections over one family of addresses.

    Transports own the upgrade: `dial` returns a secure, multiplexed
    connection and `listen` hands only upgraded connections to the handler.
    """

    def can_dial(self, addr: Multiaddr) -> bool:
        """True if this transport understands the address."""
        ...

    async def dial(self, addr: Multiaddr, peer_id: PeerId | None) -> Connection:
        """Connect to addr, expecting peer_id when given."""
        ...

    async def listen(self, addr: Multiaddr, handler: ConnHandler) -> Listener:
        """Start accepting connections on addr."""
        ...


class ChunkBuffer:
    """
    Adapts a source of whole chunks to read(n)/readexactly(n).

    Encrypted sessions and muxed streams deliver complete messages, while
    negotiation code wants a few bytes at a time. Excess bytes are kept for
    the next read.
    """

    __slots__ = ("_next_chunk", "_buffer")

    def __init__(self, next_chunk: Callable[[], Awaitable[bytes]]) -> None:
        self._next_chunk = next_chunk
        self._buffer = b""

    async def read(self, n: int = -1) -> bytes:
        """Read up to n bytes; b"" when the source is exhausted."""
        if not self._buffer:
            self._buffer = await self._next_chunk()

        if n < 0:
            result, self._buffer = self._buffer, b""
        else:
            result, self._buffer = self._buffer[:n], self._buffer[n:]
        return result

    async def readexactly(self, n: int) -> bytes:
        """Read exactly n bytes."""
        result = b""
        while len(result) < n:
            chunk = await self.read(n - len(result))
            if not chunk:
                raise asyncio.IncompleteReadError(result, n)
            result += chunk
        return result
