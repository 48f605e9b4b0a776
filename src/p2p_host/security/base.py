"""Security transport interface."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from multiaddr import Multiaddr

from ..identity import PeerId, PublicKey
from ..transport.base import RawConn, ReadWriteCloser


class SecurityError(Exception):
    """Raised when a security handshake fails or a peer cannot be authenticated."""


class SecureConn(ReadWriteCloser, Protocol):
    """An authenticated, encrypted connection."""

    local_peer: PeerId
    remote_peer: PeerId
    remote_public_key: PublicKey
    local_addr: Multiaddr
    remote_addr: Multiaddr


@runtime_checkable
class SecureTransport(Protocol):
    """
    Secures raw connections.

    Instances are selected by protocol ID through multistream-select
    before either method is called.
    """

    async def secure_inbound(self, conn: RawConn) -> SecureConn:
        """Run the responder side of the handshake."""
        ...

    async def secure_outbound(self, conn: RawConn, peer_id: PeerId | None) -> SecureConn:
        """
        Run the initiator side of the handshake.

        Raises:
            SecurityError: If peer_id is given and the remote proves a
                different identity.
        """
        ...
