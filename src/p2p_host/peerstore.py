"""
Peer book-keeping: known addresses and keys.

The network dials peers using the addresses recorded here; the host
records its own keys here at construction unless running insecure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Protocol, runtime_checkable

from multiaddr import Multiaddr

from .identity import IdentityKeypair, PeerId, PublicKey


@dataclass(frozen=True, slots=True)
class AddrInfo:
    """A peer and the addresses it can be reached at."""

    peer_id: PeerId
    """The peer's identity."""

    addrs: tuple[Multiaddr, ...] = ()
    """Dialable addresses, most preferred first."""


@runtime_checkable
class Peerstore(Protocol):
    """Storage for peer addresses and keys."""

    def add_addrs(self, peer_id: PeerId, addrs: Iterable[Multiaddr]) -> None:
        ...

    def addrs(self, peer_id: PeerId) -> list[Multiaddr]:
        ...

    def clear_addrs(self, peer_id: PeerId) -> None:
        ...

    def add_public_key(self, peer_id: PeerId, key: PublicKey) -> None:
        ...

    def public_key(self, peer_id: PeerId) -> PublicKey | None:
        ...

    def add_private_key(self, peer_id: PeerId, key: IdentityKeypair) -> None:
        ...

    def private_key(self, peer_id: PeerId) -> IdentityKeypair | None:
        ...

    def peers(self) -> list[PeerId]:
        ...

    def peer_info(self, peer_id: PeerId) -> AddrInfo:
        ...


@dataclass(slots=True)
class MemoryPeerstore:
    """In-memory peerstore. Not persisted across restarts."""

    _addrs: dict[PeerId, list[Multiaddr]] = field(default_factory=dict)
    _public_keys: dict[PeerId, PublicKey] = field(default_factory=dict)
    _private_keys: dict[PeerId, IdentityKeypair] = field(default_factory=dict)

    def add_addrs(self, peer_id: PeerId, addrs: Iterable[Multiaddr]) -> None:
        known = self._addrs.setdefault(peer_id, [])
        for addr in addrs:
            if addr not in known:
                known.append(addr)

    def addrs(self, peer_id: PeerId) -> list[Multiaddr]:
        return list(self._addrs.get(peer_id, []))

    def clear_addrs(self, peer_id: PeerId) -> None:
        self._addrs.pop(peer_id, None)

    def add_public_key(self, peer_id: PeerId, key: PublicKey) -> None:
        if key.to_peer_id() != peer_id:
            raise ValueError(f"Public key does not match peer {peer_id}")
        self._public_keys[peer_id] = key

    def public_key(self, peer_id: PeerId) -> PublicKey | None:
        return self._public_keys.get(peer_id)

    def add_private_key(self, peer_id: PeerId, key: IdentityKeypair) -> None:
        if key.to_peer_id() != peer_id:
            raise ValueError(f"Private key does not match peer {peer_id}")
        self._private_keys[peer_id] = key

    def private_key(self, peer_id: PeerId) -> IdentityKeypair | None:
        return self._private_keys.get(peer_id)

    def peers(self) -> list[PeerId]:
        known = {*self._addrs, *self._public_keys, *self._private_keys}
        return sorted(known, key=str)

    def peer_info(self, peer_id: PeerId) -> AddrInfo:
        return AddrInfo(peer_id, tuple(self.addrs(peer_id)))
