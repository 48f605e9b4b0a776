"""Tests for the in-memory peerstore."""

from __future__ import annotations

import pytest
from multiaddr import Multiaddr

from p2p_host.identity import IdentityKeypair, PeerId
from p2p_host.peerstore import AddrInfo, MemoryPeerstore, Peerstore


class TestMemoryPeerstore:
    """Addresses and keys."""

    def test_implements_protocol(self) -> None:
        assert isinstance(MemoryPeerstore(), Peerstore)

    def test_addrs_deduplicated_in_order(self, peer_id: PeerId) -> None:
        store = MemoryPeerstore()
        a = Multiaddr("/ip4/10.0.0.1/tcp/1")
        b = Multiaddr("/ip4/10.0.0.2/tcp/1")
        store.add_addrs(peer_id, [a, b])
        store.add_addrs(peer_id, [a])
        assert store.addrs(peer_id) == [a, b]
        assert store.peer_info(peer_id) == AddrInfo(peer_id, (a, b))

    def test_clear_addrs(self, peer_id: PeerId) -> None:
        store = MemoryPeerstore()
        store.add_addrs(peer_id, [Multiaddr("/ip4/10.0.0.1/tcp/1")])
        store.clear_addrs(peer_id)
        assert store.addrs(peer_id) == []

    def test_keys(self, keypair: IdentityKeypair, peer_id: PeerId) -> None:
        store = MemoryPeerstore()
        store.add_private_key(peer_id, keypair)
        store.add_public_key(peer_id, keypair.public_key())
        assert store.private_key(peer_id) is keypair
        assert store.public_key(peer_id) == keypair.public_key()
        assert store.peers() == [peer_id]

    def test_mismatched_key_rejected(
        self, keypair: IdentityKeypair, keypair_2: IdentityKeypair
    ) -> None:
        store = MemoryPeerstore()
        with pytest.raises(ValueError, match="does not match"):
            store.add_public_key(keypair.to_peer_id(), keypair_2.public_key())
        with pytest.raises(ValueError, match="does not match"):
            store.add_private_key(keypair.to_peer_id(), keypair_2)

    def test_unknown_peer(self, peer_id: PeerId) -> None:
        store = MemoryPeerstore()
        assert store.addrs(peer_id) == []
        assert store.public_key(peer_id) is None
        assert store.peers() == []
