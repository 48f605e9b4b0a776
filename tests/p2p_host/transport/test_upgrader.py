"""
Tests for the connection upgrader.

Raw pipes are upgraded on both ends at once: protector, then security,
then the muxer, each negotiated with multistream-select.
"""

from __future__ import annotations

import asyncio

import pytest

from p2p_host.filters import AddressFilters
from p2p_host.identity import IdentityKeypair
from p2p_host.muxer.mplex import MPLEX_PROTOCOL_ID
from p2p_host.muxer.yamux import YAMUX_PROTOCOL_ID
from p2p_host.pnet import PskProtector
from p2p_host.security.noise import NOISE_PROTOCOL_ID
from p2p_host.transport.upgrader import Connection, Direction, Upgrader, UpgradeError
from tests.p2p_host.helpers import make_peer_id, make_upgrader, memory_conn_pair


async def _upgrade_pair(
    dialer_upgrader: Upgrader,
    listener_upgrader: Upgrader,
    expected: object = None,
) -> tuple[Connection | BaseException, Connection | BaseException]:
    dialer, listener = memory_conn_pair()

    async def outbound() -> Connection:
        return await dialer_upgrader.upgrade_outbound(dialer, expected)  # type: ignore[arg-type]

    results = await asyncio.gather(
        outbound(), listener_upgrader.upgrade_inbound(listener), return_exceptions=True
    )
    return results[0], results[1]


class TestUpgrade:
    """Successful upgrades."""

    @pytest.mark.anyio
    async def test_noise_yamux(self, keypair: IdentityKeypair, keypair_2: IdentityKeypair) -> None:
        outbound, inbound = await _upgrade_pair(
            make_upgrader(keypair), make_upgrader(keypair_2), keypair_2.to_peer_id()
        )
        assert isinstance(outbound, Connection) and isinstance(inbound, Connection)

        assert outbound.direction is Direction.OUTBOUND
        assert inbound.direction is Direction.INBOUND
        assert outbound.remote_peer == keypair_2.to_peer_id()
        assert inbound.remote_peer == keypair.to_peer_id()
        assert outbound.security_protocol == NOISE_PROTOCOL_ID
        assert outbound.muxer_protocol == YAMUX_PROTOCOL_ID

        stream = await outbound.open_stream()
        await stream.write(b"over yamux")
        accepted = await inbound.accept_stream()
        assert await accepted.readexactly(10) == b"over yamux"

        await outbound.close()
        await inbound.close()

    @pytest.mark.anyio
    async def test_mplex(self, keypair: IdentityKeypair, keypair_2: IdentityKeypair) -> None:
        outbound, inbound = await _upgrade_pair(
            make_upgrader(keypair, muxer=MPLEX_PROTOCOL_ID),
            make_upgrader(keypair_2, muxer=MPLEX_PROTOCOL_ID),
        )
        assert isinstance(outbound, Connection) and isinstance(inbound, Connection)
        assert inbound.muxer_protocol == MPLEX_PROTOCOL_ID
        await outbound.close()
        await inbound.close()

    @pytest.mark.anyio
    async def test_with_shared_psk(
        self, keypair: IdentityKeypair, keypair_2: IdentityKeypair
    ) -> None:
        psk = PskProtector(bytes(32))
        outbound, inbound = await _upgrade_pair(
            make_upgrader(keypair, protector=psk), make_upgrader(keypair_2, protector=psk)
        )
        assert isinstance(outbound, Connection) and isinstance(inbound, Connection)
        await outbound.close()
        await inbound.close()

    def test_protocol_lists(self, keypair: IdentityKeypair) -> None:
        upgrader = make_upgrader(keypair)
        assert upgrader.security_protocols == [NOISE_PROTOCOL_ID]
        assert upgrader.muxer_protocols == [YAMUX_PROTOCOL_ID]


class TestUpgradeFailures:
    """Every failure surfaces as UpgradeError and closes the raw connection."""

    @pytest.mark.anyio
    async def test_no_common_muxer(
        self, keypair: IdentityKeypair, keypair_2: IdentityKeypair
    ) -> None:
        outbound, inbound = await _upgrade_pair(
            make_upgrader(keypair, muxer=YAMUX_PROTOCOL_ID),
            make_upgrader(keypair_2, muxer=MPLEX_PROTOCOL_ID),
        )
        assert isinstance(outbound, UpgradeError)
        assert isinstance(inbound, UpgradeError)

    @pytest.mark.anyio
    async def test_wrong_peer(self, keypair: IdentityKeypair, keypair_2: IdentityKeypair) -> None:
        outbound, inbound = await _upgrade_pair(
            make_upgrader(keypair), make_upgrader(keypair_2), make_peer_id(3)
        )
        assert isinstance(outbound, UpgradeError)
        assert isinstance(inbound, UpgradeError)

    @pytest.mark.anyio
    async def test_psk_mismatch(self, keypair: IdentityKeypair, keypair_2: IdentityKeypair) -> None:
        outbound, inbound = await _upgrade_pair(
            make_upgrader(keypair, protector=PskProtector(bytes(32)), negotiation_timeout=0.5),
            make_upgrader(
                keypair_2, protector=PskProtector(b"\x01" * 32), negotiation_timeout=0.5
            ),
        )
        assert isinstance(outbound, UpgradeError)
        assert isinstance(inbound, UpgradeError)

    @pytest.mark.anyio
    async def test_filtered_remote(self, keypair: IdentityKeypair) -> None:
        filters = AddressFilters()
        filters.add_dial_filter("127.0.0.0/8")
        upgrader = make_upgrader(keypair)
        upgrader.filters = filters

        _, listener = memory_conn_pair()
        with pytest.raises(UpgradeError, match="filtered"):
            await upgrader.upgrade_inbound(listener)
        assert listener.closed

    @pytest.mark.anyio
    async def test_timeout_closes_connection(self, keypair: IdentityKeypair) -> None:
        upgrader = make_upgrader(keypair, negotiation_timeout=0.05)
        _, listener = memory_conn_pair()
        with pytest.raises(UpgradeError, match="timed out"):
            await upgrader.upgrade_inbound(listener)
        assert listener.closed
