"""Connection manager interface and the no-op default."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from .identity import PeerId

if TYPE_CHECKING:
    from .transport.upgrader import Connection


@runtime_checkable
class ConnManager(Protocol):
    """
    Tracks connections and decides which to keep.

    Peers are tagged with weighted labels; a manager that trims
    connections prefers to keep highly tagged peers.
    """

    def tag_peer(self, peer_id: PeerId, tag: str, value: int) -> None:
        ...

    def untag_peer(self, peer_id: PeerId, tag: str) -> None:
        ...

    def connected(self, conn: Connection) -> None:
        """Called by the network when a connection is established."""
        ...

    def disconnected(self, conn: Connection) -> None:
        """Called by the network when a connection is closed."""
        ...

    def close(self) -> None:
        ...


class NullConnManager:
    """Keeps every connection and ignores tags."""

    def tag_peer(self, peer_id: PeerId, tag: str, value: int) -> None:
        pass

    def untag_peer(self, peer_id: PeerId, tag: str) -> None:
        pass

    def connected(self, conn: Connection) -> None:
        pass

    def disconnected(self, conn: Connection) -> None:
        pass

    def close(self) -> None:
        pass
