"""
TCP transport over asyncio streams.

Dials and listens on /ip4/<host>/tcp/<port> and /ip6/<host>/tcp/<port>
addresses and upgrades every connection with the upgrader it was built
with.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Final

from multiaddr import Multiaddr

from ..addresses import from_socket, tcp_endpoint
from ..identity import PeerId
from .base import ConnHandler, TransportError
from .upgrader import Connection, Upgrader

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE: Final[int] = 64 * 1024
"""Bytes requested per socket read when the caller takes any amount."""

CLOSE_TIMEOUT_SECS: Final[float] = 1.0
"""How long a closing listener waits for its accepted connections."""


class TcpConn:
    """A raw TCP connection."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        family: socket.AddressFamily,
    ) -> None:
        self._reader = reader
        self._writer = writer
        local = writer.get_extra_info("sockname")
        remote = writer.get_extra_info("peername")
        self.local_addr = from_socket(family, local[0], local[1])
        self.remote_addr = from_socket(family, remote[0], remote[1])

    async def read(self, n: int = -1) -> bytes:
        return await self._reader.read(n if n > 0 else READ_CHUNK_SIZE)

    async def readexactly(self, n: int) -> bytes:
        return await self._reader.readexactly(n)

    async def write(self, data: bytes) -> None:
        self._writer.write(data)
        await self._writer.drain()

    async def close(self) -> None:
        if self._writer.is_closing():
            return
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError as e:
            logger.debug("Error closing TCP connection: %s", e)


class TcpListener:
    """A bound TCP server."""

    def __init__(self, server: asyncio.Server, addr: Multiaddr) -> None:
        self._server = server
        self._addr = addr

    def multiaddr(self) -> Multiaddr:
        return self._addr

    async def close(self) -> None:
        self._server.close()
        # wait_closed also waits for accepted connections still being upgraded.
        try:
            await asyncio.wait_for(self._server.wait_closed(), timeout=CLOSE_TIMEOUT_SECS)
        except asyncio.TimeoutError:
            logger.debug("Listener on %s closed with connections still open", self._addr)


class TcpTransport:
    """Dials and accepts TCP connections and upgrades them."""

    def __init__(self, upgrader: Upgrader) -> None:
        self._upgrader = upgrader

    def __repr__(self) -> str:
        return "TcpTransport()"

    def can_dial(self, addr: Multiaddr) -> bool:
        try:
            tcp_endpoint(addr)
        except ValueError:
            return False
        return True

    async def dial(self, addr: Multiaddr, peer_id: PeerId | None) -> Connection:
        """
        Connect and upgrade.

        Raises:
            OSError: If the TCP connection cannot be established.
            TransportError: If the address is unsupported or the upgrade fails.
        """
        try:
            family, host, port = tcp_endpoint(addr)
        except ValueError as e:
            raise TransportError(str(e)) from e

        reader, writer = await asyncio.open_connection(host, port, family=family)
        return await self._upgrader.upgrade_outbound(TcpConn(reader, writer, family), peer_id)

    async def listen(self, addr: Multiaddr, handler: ConnHandler) -> TcpListener:
        """
        Bind and accept connections.

        Port 0 binds an ephemeral port; the listener reports the real one.

        Raises:
            OSError: If the address cannot be bound.
            TransportError: If the address is unsupported.
        """
        try:
            family, host, port = tcp_endpoint(addr)
        except ValueError as e:
            raise TransportError(str(e)) from e

        async def on_connection(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
            raw = TcpConn(reader, writer, family)
            try:
                conn = await self._upgrader.upgrade_inbound(raw)
            except TransportError as e:
                logger.debug("Inbound upgrade from %s failed: %s", raw.remote_addr, e)
                return
            await handler(conn)

        server = await asyncio.start_server(on_connection, host, port, family=family)
        sockname = server.sockets[0].getsockname()
        bound = from_socket(family, sockname[0], sockname[1])
        logger.debug("Listening on %s", bound)
        return TcpListener(server, bound)
