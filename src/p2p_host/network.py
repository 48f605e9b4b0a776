"""
The network: connections, listeners, and streams for one local peer.

The network owns the transports added to it. It dials peers at the
addresses recorded in the peerstore, keeps every live connection, and
hands each inbound stream to a single stream handler (the host's
protocol router).
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum, auto
from typing import Awaitable, Callable, Coroutine

from multiaddr import Multiaddr

from .connmgr import ConnManager
from .filters import AddressFilters
from .identity import PeerId
from .muxer.base import MuxedStream, MuxerError
from .peerstore import Peerstore
from .settings import HostSettings
from .transport.base import Listener, Transport, TransportError
from .transport.upgrader import Connection

logger = logging.getLogger(__name__)

StreamHandler = Callable[["Stream"], Awaitable[None]]
"""Callback for inbound streams."""


class DialError(Exception):
    """Raised when no address of a peer could be dialed."""

    def __init__(self, peer_id: PeerId, errors: list[str]) -> None:
        self.peer_id = peer_id
        self.errors = errors
        detail = "; ".join(errors) if errors else "no addresses"
        super().__init__(f"Failed to dial {peer_id}: {detail}")


class Connectedness(Enum):
    """Whether we hold a live connection to a peer."""

    NOT_CONNECTED = auto()
    CONNECTED = auto()


class Stream:
    """A multiplexed stream bound to its connection and protocol."""

    def __init__(self, muxed: MuxedStream, conn: Connection, protocol_id: str = "") -> None:
        self._muxed = muxed
        self.conn = conn
        self.protocol_id = protocol_id

    @property
    def remote_peer(self) -> PeerId:
        return self.conn.remote_peer

    async def read(self, n: int = -1) -> bytes:
        return await self._muxed.read(n)

    async def readexactly(self, n: int) -> bytes:
        return await self._muxed.readexactly(n)

    async def write(self, data: bytes) -> None:
        await self._muxed.write(data)

    async def close(self) -> None:
        await self._muxed.close()

    async def reset(self) -> None:
        await self._muxed.reset()


class Network:
    """Connection book-keeping for one local peer."""

    def __init__(
        self,
        peer_id: PeerId,
        peerstore: Peerstore,
        *,
        filters: AddressFilters | None = None,
        settings: HostSettings | None = None,
    ) -> None:
        self.peer_id = peer_id
        self.peerstore = peerstore
        self.filters = filters if filters is not None else AddressFilters()
        self.settings = settings if settings is not None else HostSettings()

        self._transports: list[Transport] = []
        self._listeners: list[Listener] = []
        self._conns: dict[PeerId, list[Connection]] = {}
        self._dial_locks: dict[PeerId, asyncio.Lock] = {}
        self._dial_waiters: dict[PeerId, int] = {}
        self._notifiees: list[ConnManager] = []
        self._stream_handler: StreamHandler | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    # Transports and listeners

    def add_transport(self, transport: Transport) -> None:
        self._transports.append(transport)

    def transports(self) -> list[Transport]:
        return list(self._transports)

    def _transport_for(self, addr: Multiaddr) -> Transport | None:
        for transport in self._transports:
            if transport.can_dial(addr):
                return transport
        return None

    async def listen(self, *addrs: Multiaddr) -> None:
        """
        Listen on every address that some transport supports.

        Failures are logged as long as at least one address succeeds.

        Raises:
            TransportError: If addresses were given and none could be used.
        """
        failures: list[str] = []
        for addr in addrs:
            transport = self._transport_for(addr)
            if transport is None:
                failures.append(f"{addr}: no transport for address")
                continue
            try:
                listener = await transport.listen(addr, self._add_conn)
            except (OSError, TransportError) as e:
                failures.append(f"{addr}: {e}")
                continue
            self._listeners.append(listener)

        for failure in failures:
            logger.warning("Listen failed: %s", failure)

        if addrs and len(failures) == len(addrs):
            raise TransportError(f"Failed to listen on any addresses: {failures}")

    def listen_addresses(self) -> list[Multiaddr]:
        """Bound addresses, with real ports."""
        return [listener.multiaddr() for listener in self._listeners]

    # Connections

    def notify(self, notifiee: ConnManager) -> None:
        """Report connection open and close events to notifiee."""
        self._notifiees.append(notifiee)

    def set_stream_handler(self, handler: StreamHandler) -> None:
        self._stream_handler = handler

    def peers(self) -> list[PeerId]:
        return [peer for peer, conns in self._conns.items() if conns]

    def conns_to_peer(self, peer_id: PeerId) -> list[Connection]:
        return [conn for conn in self._conns.get(peer_id, []) if not conn.is_closed()]

    def connectedness(self, peer_id: PeerId) -> Connectedness:
        if self.conns_to_peer(peer_id):
            return Connectedness.CONNECTED
        return Connectedness.NOT_CONNECTED

    async def dial_peer(self, peer_id: PeerId) -> Connection:
        """
        Return a live connection to peer_id, dialing if needed.

        Addresses are tried in peerstore order.

        Raises:
            DialError: If every address fails or none is known.
        """
        if peer_id == self.peer_id:
            raise DialError(peer_id, ["dial to self attempted"])
        if self._closed:
            raise DialError(peer_id, ["network closed"])

        lock = self._dial_locks.setdefault(peer_id, asyncio.Lock())
        self._dial_waiters[peer_id] = self._dial_waiters.get(peer_id, 0) + 1
        try:
            async with lock:
                existing = self.conns_to_peer(peer_id)
                if existing:
                    return existing[0]
                return await self._dial_addrs(peer_id)
        finally:
            # Drop the lock once no dial to this peer is pending.
            self._dial_waiters[peer_id] -= 1
            if not self._dial_waiters[peer_id]:
                del self._dial_waiters[peer_id]
                del self._dial_locks[peer_id]

    async def _dial_addrs(self, peer_id: PeerId) -> Connection:
        failures: list[str] = []
        for addr in self.peerstore.addrs(peer_id):
            if self.filters.addr_blocked(addr):
                failures.append(f"{addr}: address filtered")
                continue
            transport = self._transport_for(addr)
            if transport is None:
                failures.append(f"{addr}: no transport for address")
                continue
            try:
                conn = await asyncio.wait_for(
                    transport.dial(addr, peer_id), timeout=self.settings.dial_timeout_secs
                )
            except asyncio.TimeoutError:
                failures.append(f"{addr}: timed out")
                continue
            except (OSError, TransportError) as e:
                failures.append(f"{addr}: {e}")
                continue

            await self._add_conn(conn)
            return conn

        raise DialError(peer_id, failures)

    async def new_stream(self, peer_id: PeerId) -> Stream:
        """Open a stream to peer_id; no protocol is negotiated yet."""
        conn = await self.dial_peer(peer_id)
        return Stream(await conn.open_stream(), conn)

    async def close_peer(self, peer_id: PeerId) -> None:
        for conn in list(self._conns.get(peer_id, [])):
            await conn.close()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        for conns in list(self._conns.values()):
            for conn in list(conns):
                await conn.close()
        for listener in self._listeners:
            await listener.close()
        self._listeners.clear()

        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

    def _spawn(self, coro: Coroutine[object, object, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _add_conn(self, conn: Connection) -> None:
        if self._closed:
            await conn.close()
            return

        self._conns.setdefault(conn.remote_peer, []).append(conn)
        logger.info("Connected to %s", conn)
        for notifiee in self._notifiees:
            notifiee.connected(conn)
        self._spawn(self._serve(conn))

    async def _serve(self, conn: Connection) -> None:
        """Dispatch inbound streams until the connection closes."""
        try:
            while True:
                muxed = await conn.accept_stream()
                if self._stream_handler is None:
                    await muxed.reset()
                    continue
                self._spawn(self._stream_handler(Stream(muxed, conn)))
        except MuxerError:
            logger.info("Disconnected from %s", conn.remote_peer)
        finally:
            await self._remove_conn(conn)

    async def _remove_conn(self, conn: Connection) -> None:
        conns = self._conns.get(conn.remote_peer, [])
        if conn not in conns:
            return
        conns.remove(conn)
        if not conns:
            del self._conns[conn.remote_peer]
        # Also releases the socket when the session died on its own.
        await conn.close()
        for notifiee in self._notifiees:
            notifiee.disconnected(conn)
