"""
secp256k1 identity keys for libp2p.

The public key is encoded in compressed format (33 bytes) and hashed to
derive the PeerId. The private half signs identity proofs during the
security handshake.
"""

from __future__ import annotations

from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from .peer_id import KeyType, PeerId, PublicKeyProto

__all__ = [
    "IdentityKeypair",
    "PublicKey",
]


@dataclass(frozen=True, slots=True)
class PublicKey:
    """
    Compressed secp256k1 public key.

    The compressed format starts with 0x02 (even y) or 0x03 (odd y),
    followed by the 32-byte x coordinate.
    """

    data: bytes
    """33-byte compressed point."""

    def __post_init__(self) -> None:
        if len(self.data) != 33 or self.data[0] not in (0x02, 0x03):
            raise ValueError("Expected a 33-byte compressed secp256k1 public key")

    def verify(self, message: bytes, signature: bytes) -> bool:
        """
        Verify an ECDSA-SHA256 signature.

        Args:
            message: Original message that was signed.
            signature: DER-encoded ECDSA signature.

        Returns:
            True if signature is valid, False otherwise.
        """
        public_key = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), self.data)
        try:
            public_key.verify(signature, message, ec.ECDSA(hashes.SHA256()))
            return True
        except InvalidSignature:
            return False

    def to_proto(self) -> PublicKeyProto:
        """Wrap this key in the libp2p-crypto protobuf message."""
        return PublicKeyProto(key_type=KeyType.SECP256K1, key_data=self.data)

    def to_peer_id(self) -> PeerId:
        """Derive the PeerId for this key."""
        return PeerId.from_public_key(self.to_proto())

    @classmethod
    def from_proto_bytes(cls, data: bytes) -> PublicKey:
        """
        Decode a protobuf-encoded public key.

        Raises:
            ValueError: If the encoding is malformed or not secp256k1.
        """
        proto = PublicKeyProto.decode(data)
        if proto.key_type != KeyType.SECP256K1:
            raise ValueError(f"Unsupported key type: {proto.key_type.name}")
        return cls(proto.key_data)


@dataclass(frozen=True, slots=True)
class IdentityKeypair:
    """
    secp256k1 keypair for libp2p identity.

    Used to derive PeerId and sign identity proofs during the handshake.
    """

    private_key: ec.EllipticCurvePrivateKey
    """The secp256k1 private key."""

    @classmethod
    def generate(cls) -> IdentityKeypair:
        """Generate a new random secp256k1 keypair."""
        return cls(private_key=ec.generate_private_key(ec.SECP256K1()))

    @classmethod
    def from_bytes(cls, data: bytes) -> IdentityKeypair:
        """
        Load keypair from raw private key bytes.

        Args:
            data: 32-byte secp256k1 private key.

        Raises:
            ValueError: If data is not a valid secp256k1 private key.
        """
        if len(data) != 32:
            raise ValueError(f"Expected 32 bytes, got {len(data)}")

        private_key = ec.derive_private_key(int.from_bytes(data, "big"), ec.SECP256K1())
        return cls(private_key=private_key)

    def private_key_bytes(self) -> bytes:
        """Return the raw 32-byte private key scalar."""
        return self.private_key.private_numbers().private_value.to_bytes(32, "big")

    def public_key(self) -> PublicKey:
        """Return the compressed public key."""
        data = self.private_key.public_key().public_bytes(
            encoding=serialization.Encoding.X962,
            format=serialization.PublicFormat.CompressedPoint,
        )
        return PublicKey(data)

    def public_key_bytes(self) -> bytes:
        """Return the compressed secp256k1 public key (33 bytes)."""
        return self.public_key().data

    def sign(self, message: bytes) -> bytes:
        """Sign a message with ECDSA-SHA256, returning a DER signature."""
        return self.private_key.sign(message, ec.ECDSA(hashes.SHA256()))

    def to_peer_id(self) -> PeerId:
        """Derive the PeerId from this identity key."""
        return self.public_key().to_peer_id()
