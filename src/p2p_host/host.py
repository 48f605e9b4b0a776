"""
The basic host.

Wraps a network with protocol routing: each inbound stream negotiates
an application protocol with multistream-select and is handed to the
handler registered for it.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
from typing import Awaitable, Callable, Sequence

from multiaddr import Multiaddr

from .addresses import AddrsFactory, from_socket, is_wildcard, tcp_endpoint
from .connmgr import ConnManager, NullConnManager
from .identity import PeerId
from .metrics import BandwidthReporter, MeteredStream
from .muxer.base import MuxerError
from .nat import NATManager
from .network import Connectedness, Network, Stream
from .peerstore import AddrInfo, Peerstore
from .relay import RelayOpt
from .transport.multistream import (
    NegotiationError,
    negotiate_client,
    negotiate_lazy_client,
    negotiate_server,
)

logger = logging.getLogger(__name__)

ProtocolHandler = Callable[[Stream | MeteredStream], Awaitable[None]]
"""Application handler for one negotiated stream."""


def _interface_ips(family: socket.AddressFamily) -> list[str]:
    """Loopback plus the addresses the hostname resolves to."""
    ips = ["127.0.0.1" if family == socket.AF_INET else "::1"]
    try:
        infos = socket.getaddrinfo(socket.gethostname(), None, family, socket.SOCK_STREAM)
    except socket.gaierror:
        return ips
    for *_, sockaddr in infos:
        try:
            ip = ipaddress.ip_address(sockaddr[0])
        except ValueError:
            continue
        if ip.is_link_local or str(ip) in ips:
            continue
        ips.append(str(ip))
    return ips


def resolve_unspecified(addrs: Sequence[Multiaddr]) -> list[Multiaddr]:
    """Replace wildcard listen addresses with concrete interface addresses."""
    resolved: list[Multiaddr] = []
    for addr in addrs:
        if not is_wildcard(addr):
            candidates = [addr]
        else:
            family, _, port = tcp_endpoint(addr)
            candidates = [from_socket(family, ip, port) for ip in _interface_ips(family)]
        for candidate in candidates:
            if candidate not in resolved:
                resolved.append(candidate)
    return resolved


class BasicHost:
    """A network plus protocol routing."""

    def __init__(
        self,
        network: Network,
        *,
        conn_manager: ConnManager | None = None,
        addrs_factory: AddrsFactory | None = None,
        nat_manager: NATManager | None = None,
        reporter: BandwidthReporter | None = None,
        relay_opts: Sequence[RelayOpt] | None = None,
    ) -> None:
        self.network = network
        self.conn_manager = conn_manager if conn_manager is not None else NullConnManager()
        self.nat_manager = nat_manager
        self.reporter = reporter
        self.relay_opts: tuple[RelayOpt, ...] | None = (
            tuple(relay_opts) if relay_opts is not None else None
        )
        self._addrs_factory = addrs_factory
        self._handlers: dict[str, ProtocolHandler] = {}

        network.notify(self.conn_manager)
        network.set_stream_handler(self._handle_stream)

    def __repr__(self) -> str:
        return f"BasicHost({self.peer_id})"

    @property
    def peer_id(self) -> PeerId:
        return self.network.peer_id

    @property
    def peerstore(self) -> Peerstore:
        return self.network.peerstore

    @property
    def relay_enabled(self) -> bool:
        return self.relay_opts is not None

    def all_addrs(self) -> list[Multiaddr]:
        """Listen addresses with wildcards resolved, plus NAT mappings."""
        addrs = resolve_unspecified(self.network.listen_addresses())
        if self.nat_manager is not None:
            for addr in self.nat_manager.external_addrs():
                if addr not in addrs:
                    addrs.append(addr)
        return addrs

    def addrs(self) -> list[Multiaddr]:
        """Addresses advertised to other peers."""
        addrs = self.all_addrs()
        if self._addrs_factory is not None:
            return self._addrs_factory(addrs)
        return addrs

    def info(self) -> AddrInfo:
        return AddrInfo(self.peer_id, tuple(self.addrs()))

    def set_stream_handler(self, protocol_id: str, handler: ProtocolHandler) -> None:
        self._handlers[protocol_id] = handler

    def remove_stream_handler(self, protocol_id: str) -> None:
        self._handlers.pop(protocol_id, None)

    async def connect(self, peer: AddrInfo) -> None:
        """
        Ensure a connection to peer, recording its addresses first.

        Raises:
            DialError: If the peer cannot be reached.
        """
        self.peerstore.add_addrs(peer.peer_id, peer.addrs)
        if self.network.connectedness(peer.peer_id) is Connectedness.CONNECTED:
            return
        await self.network.dial_peer(peer.peer_id)

    async def new_stream(self, peer_id: PeerId, *protocol_ids: str) -> Stream | MeteredStream:
        """
        Open a stream and negotiate the first protocol the peer accepts.

        Raises:
            DialError: If the peer cannot be reached.
            NegotiationError: If the peer supports none of protocol_ids.
        """
        stream = await self.network.new_stream(peer_id)
        try:
            if len(protocol_ids) == 1:
                stream.protocol_id = await negotiate_lazy_client(stream, protocol_ids[0])
            else:
                stream.protocol_id = await negotiate_client(stream, list(protocol_ids))
        except (NegotiationError, MuxerError):
            await stream.reset()
            raise
        return self._wrap(stream)

    def _wrap(self, stream: Stream) -> Stream | MeteredStream:
        if self.reporter is None:
            return stream
        return MeteredStream(stream, self.reporter)

    async def _handle_stream(self, stream: Stream) -> None:
        try:
            stream.protocol_id = await negotiate_server(
                stream,
                set(self._handlers),
                timeout=self.network.settings.negotiation_timeout_secs,
            )
        except (NegotiationError, MuxerError) as e:
            logger.debug("Inbound stream from %s rejected: %s", stream.remote_peer, e)
            await stream.reset()
            return

        handler = self._handlers.get(stream.protocol_id)
        if handler is None:
            logger.debug("Handler for %s removed during negotiation", stream.protocol_id)
            await stream.reset()
            return

        try:
            await handler(self._wrap(stream))
        except Exception as e:
            logger.debug("Handler for %s failed: %s", stream.protocol_id, e)
            await stream.reset()

    async def close(self) -> None:
        if self.nat_manager is not None:
            await self.nat_manager.close()
        self.conn_manager.close()
        await self.network.close()
