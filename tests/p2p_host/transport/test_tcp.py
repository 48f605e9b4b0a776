"""Tests for the TCP transport over loopback."""

from __future__ import annotations

import asyncio

import pytest
from multiaddr import Multiaddr

from p2p_host.identity import IdentityKeypair
from p2p_host.transport.base import Listener, Transport, TransportError
from p2p_host.transport.tcp import TcpTransport
from p2p_host.transport.upgrader import Connection, UpgradeError
from tests.p2p_host.helpers import make_peer_id, make_upgrader


class TestCanDial:
    """Address support."""

    def test_implements_transport(self, keypair: IdentityKeypair) -> None:
        assert isinstance(TcpTransport(make_upgrader(keypair)), Transport)

    @pytest.mark.parametrize(
        ("addr", "expected"),
        [
            ("/ip4/127.0.0.1/tcp/4001", True),
            ("/ip6/::1/tcp/4001", True),
            ("/ip4/127.0.0.1/udp/4001", False),
            ("/ip4/127.0.0.1", False),
        ],
    )
    def test_can_dial(self, keypair: IdentityKeypair, addr: str, expected: bool) -> None:
        assert TcpTransport(make_upgrader(keypair)).can_dial(Multiaddr(addr)) is expected


class TestDialAndListen:
    """Loopback connections, upgraded on both ends."""

    @pytest.mark.anyio
    async def test_dial_listener(
        self, keypair: IdentityKeypair, keypair_2: IdentityKeypair
    ) -> None:
        accepted: asyncio.Queue[Connection] = asyncio.Queue()

        async def handler(conn: Connection) -> None:
            await accepted.put(conn)

        server = TcpTransport(make_upgrader(keypair_2))
        listener = await server.listen(Multiaddr("/ip4/127.0.0.1/tcp/0"), handler)
        assert isinstance(listener, Listener)
        addr = listener.multiaddr()
        assert str(addr).startswith("/ip4/127.0.0.1/tcp/")
        assert not str(addr).endswith("/tcp/0")

        client = TcpTransport(make_upgrader(keypair))
        conn = await client.dial(addr, keypair_2.to_peer_id())
        inbound = await asyncio.wait_for(accepted.get(), timeout=5)
        try:
            assert conn.remote_peer == keypair_2.to_peer_id()
            assert inbound.remote_peer == keypair.to_peer_id()
            assert conn.remote_addr == addr

            stream = await conn.open_stream()
            await stream.write(b"tcp")
            remote = await inbound.accept_stream()
            assert await remote.readexactly(3) == b"tcp"
        finally:
            await conn.close()
            await inbound.close()
            await listener.close()

    @pytest.mark.anyio
    async def test_dial_wrong_peer(
        self, keypair: IdentityKeypair, keypair_2: IdentityKeypair
    ) -> None:
        async def handler(conn: Connection) -> None:
            await conn.close()

        listener = await TcpTransport(make_upgrader(keypair_2)).listen(
            Multiaddr("/ip4/127.0.0.1/tcp/0"), handler
        )
        try:
            with pytest.raises(UpgradeError):
                await TcpTransport(make_upgrader(keypair)).dial(
                    listener.multiaddr(), make_peer_id(3)
                )
        finally:
            await listener.close()

    @pytest.mark.anyio
    async def test_dial_refused(self, keypair: IdentityKeypair) -> None:
        async def handler(conn: Connection) -> None:
            await conn.close()

        # Bind then close to get a port nobody listens on.
        listener = await TcpTransport(make_upgrader(keypair)).listen(
            Multiaddr("/ip4/127.0.0.1/tcp/0"), handler
        )
        addr = listener.multiaddr()
        await listener.close()

        with pytest.raises(OSError):
            await TcpTransport(make_upgrader(keypair)).dial(addr, None)

    @pytest.mark.anyio
    async def test_unsupported_address(self, keypair: IdentityKeypair) -> None:
        async def handler(conn: Connection) -> None:
            await conn.close()

        transport = TcpTransport(make_upgrader(keypair))
        with pytest.raises(TransportError, match="Not a TCP address"):
            await transport.listen(Multiaddr("/ip4/127.0.0.1/udp/0"), handler)
        with pytest.raises(TransportError, match="Not a TCP address"):
            await transport.dial(Multiaddr("/ip4/127.0.0.1/udp/1"), None)
