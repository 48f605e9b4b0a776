"""
libp2p identity.

The identity key (secp256k1) derives the PeerId and signs identity proofs.
It is separate from any per-connection encryption key.
"""

from .keypair import IdentityKeypair, PublicKey
from .peer_id import Base58, KeyType, Multihash, MultihashCode, PeerId, PublicKeyProto

__all__ = [
    "IdentityKeypair",
    "PublicKey",
    "PeerId",
    "PublicKeyProto",
    "Multihash",
    "MultihashCode",
    "KeyType",
    "Base58",
]
