"""
In-memory connections and recording fakes.

Each mock provides the minimal surface the code under test touches.
"""

from __future__ import annotations

import asyncio

from multiaddr import Multiaddr

from p2p_host.identity import PeerId
from p2p_host.transport.upgrader import Connection


class MemoryConn:
    """
    One end of an in-memory byte pipe.

    Writes are fed into the peer's reader. Closing either end delivers
    EOF to both; later writes from the other end are dropped, as a
    socket would accept them into its send buffer.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        peer_reader: asyncio.StreamReader,
        local_addr: Multiaddr,
        remote_addr: Multiaddr,
    ) -> None:
        self._reader = reader
        self._peer_reader = peer_reader
        self.local_addr = local_addr
        self.remote_addr = remote_addr
        self.peer: MemoryConn | None = None
        self.closed = False
        self.written: list[bytes] = []

    async def read(self, n: int = -1) -> bytes:
        return await self._reader.read(n if n > 0 else 65536)

    async def readexactly(self, n: int) -> bytes:
        return await self._reader.readexactly(n)

    async def write(self, data: bytes) -> None:
        if self.closed:
            raise ConnectionResetError("pipe closed")
        self.written.append(data)
        if self.peer is not None and self.peer.closed:
            return
        self._peer_reader.feed_data(data)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._reader.feed_eof()
        self._peer_reader.feed_eof()


def memory_conn_pair(
    dialer_addr: str = "/ip4/127.0.0.1/tcp/4001",
    listener_addr: str = "/ip4/127.0.0.1/tcp/4002",
) -> tuple[MemoryConn, MemoryConn]:
    """
    Create a connected (dialer, listener) pair.

    Must be called from a running event loop.
    """
    dialer_reader = asyncio.StreamReader()
    listener_reader = asyncio.StreamReader()
    dialer = MemoryConn(
        dialer_reader, listener_reader, Multiaddr(dialer_addr), Multiaddr(listener_addr)
    )
    listener = MemoryConn(
        listener_reader, dialer_reader, Multiaddr(listener_addr), Multiaddr(dialer_addr)
    )
    dialer.peer, listener.peer = listener, dialer
    return dialer, listener


class RecordingConnManager:
    """Connection manager that records what the network reports."""

    def __init__(self) -> None:
        self.connected_peers: list[PeerId] = []
        self.disconnected_peers: list[PeerId] = []
        self.tags: dict[tuple[PeerId, str], int] = {}
        self.closed = False

    def tag_peer(self, peer_id: PeerId, tag: str, value: int) -> None:
        self.tags[(peer_id, tag)] = value

    def untag_peer(self, peer_id: PeerId, tag: str) -> None:
        self.tags.pop((peer_id, tag), None)

    def connected(self, conn: Connection) -> None:
        self.connected_peers.append(conn.remote_peer)

    def disconnected(self, conn: Connection) -> None:
        self.disconnected_peers.append(conn.remote_peer)

    def close(self) -> None:
        self.closed = True


class RecordingReporter:
    """Bandwidth reporter that keeps every report."""

    def __init__(self) -> None:
        self.sent: list[tuple[int, str, PeerId]] = []
        self.received: list[tuple[int, str, PeerId]] = []

    def log_sent(self, size: int, protocol_id: str, peer_id: PeerId) -> None:
        self.sent.append((size, protocol_id, peer_id))

    def log_recv(self, size: int, protocol_id: str, peer_id: PeerId) -> None:
        self.received.append((size, protocol_id, peer_id))
