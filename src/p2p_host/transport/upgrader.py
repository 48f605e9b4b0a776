"""
Connection upgrader.

Turns a raw byte stream into a usable libp2p connection:

    1. Refuse filtered remote addresses.
    2. Apply the private network protector, if any.
    3. Negotiate and run a security transport.
    4. Negotiate and start a stream muxer.

Each negotiation uses multistream-select. The dialer proposes protocols
in the order they were configured.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum, auto
from typing import Sequence

from multiaddr import Multiaddr

from ..filters import AddressFilters
from ..identity import PeerId, PublicKey
from ..muxer.base import MuxedConn, MuxedStream, StreamMuxer
from ..pnet import Protector
from ..security.base import SecureConn, SecureTransport
from ..settings import MAX_INBOUND_UPGRADES, NEGOTIATION_TIMEOUT_SECS
from .base import RawConn, TransportError
from .multistream import negotiate_client, negotiate_server

logger = logging.getLogger(__name__)


class UpgradeError(TransportError):
    """Raised when a raw connection cannot be upgraded."""


class Direction(Enum):
    """Which side initiated a connection."""

    INBOUND = auto()
    OUTBOUND = auto()


class Connection:
    """A secure, multiplexed connection to one peer."""

    def __init__(
        self,
        secure: SecureConn,
        muxed: MuxedConn,
        *,
        direction: Direction,
        security_protocol: str,
        muxer_protocol: str,
    ) -> None:
        self._muxed = muxed
        self.direction = direction
        self.security_protocol = security_protocol
        self.muxer_protocol = muxer_protocol
        self.local_peer: PeerId = secure.local_peer
        self.remote_peer: PeerId = secure.remote_peer
        self.remote_public_key: PublicKey = secure.remote_public_key
        self.local_addr: Multiaddr = secure.local_addr
        self.remote_addr: Multiaddr = secure.remote_addr

    def __repr__(self) -> str:
        return (
            f"Connection({self.remote_peer}, {self.remote_addr}, "
            f"{self.direction.name.lower()}, {self.security_protocol}, {self.muxer_protocol})"
        )

    async def open_stream(self) -> MuxedStream:
        return await self._muxed.open_stream()

    async def accept_stream(self) -> MuxedStream:
        return await self._muxed.accept_stream()

    async def close(self) -> None:
        await self._muxed.close()

    def is_closed(self) -> bool:
        return self._muxed.is_closed()


class Upgrader:
    """Applies protection, security, and multiplexing to raw connections."""

    def __init__(
        self,
        *,
        security: Sequence[tuple[str, SecureTransport]],
        muxers: Sequence[tuple[str, StreamMuxer]],
        protector: Protector | None = None,
        filters: AddressFilters | None = None,
        negotiation_timeout: float = NEGOTIATION_TIMEOUT_SECS,
        max_inbound_upgrades: int = MAX_INBOUND_UPGRADES,
    ) -> None:
        self._security = dict(security)
        self._muxers = dict(muxers)
        self.protector = protector
        self.filters = filters
        self._timeout = negotiation_timeout
        self._inbound_slots = asyncio.Semaphore(max_inbound_upgrades)

    @property
    def security_protocols(self) -> list[str]:
        return list(self._security)

    @property
    def muxer_protocols(self) -> list[str]:
        return list(self._muxers)

    async def upgrade_outbound(self, conn: RawConn, peer_id: PeerId | None) -> Connection:
        """
        Upgrade a connection we dialed.

        Raises:
            UpgradeError: If any step fails; the raw connection is closed.
        """
        return await self._upgrade(conn, peer_id, Direction.OUTBOUND)

    async def upgrade_inbound(self, conn: RawConn) -> Connection:
        """
        Upgrade a connection we accepted.

        Raises:
            UpgradeError: If any step fails; the raw connection is closed.
        """
        async with self._inbound_slots:
            return await self._upgrade(conn, None, Direction.INBOUND)

    async def _upgrade(
        self, conn: RawConn, peer_id: PeerId | None, direction: Direction
    ) -> Connection:
        if self.filters is not None and self.filters.addr_blocked(conn.remote_addr):
            await conn.close()
            raise UpgradeError(f"Address {conn.remote_addr} is filtered")

        try:
            return await asyncio.wait_for(
                self._run_steps(conn, peer_id, direction), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            await conn.close()
            raise UpgradeError(f"Upgrade timed out after {self._timeout}s") from None
        except Exception as e:
            await conn.close()
            raise UpgradeError(f"Failed to upgrade {direction.name.lower()} connection: {e}") from e

    async def _run_steps(
        self, conn: RawConn, peer_id: PeerId | None, direction: Direction
    ) -> Connection:
        initiator = direction is Direction.OUTBOUND

        if self.protector is not None:
            conn = await self.protector.protect(conn)

        if initiator:
            security_id = await negotiate_client(conn, self.security_protocols)
            secure = await self._security[security_id].secure_outbound(conn, peer_id)
        else:
            security_id = await negotiate_server(conn, set(self._security), self._timeout)
            secure = await self._security[security_id].secure_inbound(conn)

        if peer_id is not None and secure.remote_peer != peer_id:
            raise UpgradeError(f"Dialed {peer_id} but reached {secure.remote_peer}")

        if initiator:
            muxer_id = await negotiate_client(secure, self.muxer_protocols)
        else:
            muxer_id = await negotiate_server(secure, set(self._muxers), self._timeout)
        muxed = await self._muxers[muxer_id].new_conn(secure, initiator)

        logger.debug(
            "Upgraded %s connection with %s (%s, %s)",
            direction.name.lower(),
            secure.remote_peer,
            security_id,
            muxer_id,
        )
        return Connection(
            secure,
            muxed,
            direction=direction,
            security_protocol=security_id,
            muxer_protocol=muxer_id,
        )
