"""
Noise XX security transport (libp2p-noise).

Handshake pattern:

    -> e
    <- e, ee, s, es      + responder identity payload
    -> s, se             + initiator identity payload

Primitives: X25519 key agreement, ChaCha20-Poly1305, SHA256.

The static X25519 key is only a session key. Each side proves its libp2p
identity by signing "noise-libp2p-static-key:" + its static public key
with the secp256k1 identity key, carried in the encrypted payload:

    message NoiseHandshakePayload {
        bytes identity_key = 1;   // PublicKey protobuf
        bytes identity_sig = 2;
    }

Every handshake and transport message is prefixed with its length as a
2-byte big-endian integer.

References:
    - https://github.com/libp2p/specs/tree/master/noise
    - https://noiseprotocol.org/noise.html
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import struct
from dataclasses import dataclass, field
from typing import Final

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import x25519
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from multiaddr import Multiaddr

from ..identity import IdentityKeypair, PeerId, PublicKey
from ..transport.base import ChunkBuffer, RawConn
from ..varint import VarintError, decode_varint, encode_varint
from .base import SecurityError

logger = logging.getLogger(__name__)

NOISE_PROTOCOL_ID: Final[str] = "/noise"
"""Protocol ID negotiated via multistream-select."""

PROTOCOL_NAME: Final[bytes] = b"Noise_XX_25519_ChaChaPoly_SHA256"
"""Noise protocol name. Exactly 32 bytes, so it is used as-is for h."""

SIGNATURE_PREFIX: Final[bytes] = b"noise-libp2p-static-key:"
"""Domain separator for the identity signature."""

MAX_MESSAGE_SIZE: Final[int] = 65535
"""Largest frame expressible in the 2-byte length prefix."""

MAX_PLAINTEXT_SIZE: Final[int] = MAX_MESSAGE_SIZE - 16
"""Largest plaintext per frame (room for the Poly1305 tag)."""

_TAG_IDENTITY_KEY: Final = 0x0A
_TAG_IDENTITY_SIG: Final = 0x12


class NoiseError(SecurityError):
    """Raised when the Noise handshake or session fails."""


def _hkdf(chaining_key: bytes, ikm: bytes) -> tuple[bytes, bytes]:
    """The Noise HKDF: two 32-byte outputs from HMAC-SHA256."""
    temp_key = hmac.new(chaining_key, ikm, hashlib.sha256).digest()
    output1 = hmac.new(temp_key, b"\x01", hashlib.sha256).digest()
    output2 = hmac.new(temp_key, output1 + b"\x02", hashlib.sha256).digest()
    return output1, output2


def _raw_public(key: x25519.X25519PrivateKey) -> bytes:
    return key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


@dataclass(slots=True)
class CipherState:
    """A ChaCha20-Poly1305 key with its message counter."""

    key: bytes | None = None
    nonce: int = 0

    def has_key(self) -> bool:
        return self.key is not None

    def _nonce_bytes(self) -> bytes:
        # 4 zero bytes followed by the 64-bit little-endian counter.
        return b"\x00\x00\x00\x00" + struct.pack("<Q", self.nonce)

    def encrypt_with_ad(self, ad: bytes, plaintext: bytes) -> bytes:
        if self.key is None:
            return plaintext
        ciphertext = ChaCha20Poly1305(self.key).encrypt(self._nonce_bytes(), plaintext, ad)
        self.nonce += 1
        return ciphertext

    def decrypt_with_ad(self, ad: bytes, ciphertext: bytes) -> bytes:
        if self.key is None:
            return ciphertext
        try:
            plaintext = ChaCha20Poly1305(self.key).decrypt(self._nonce_bytes(), ciphertext, ad)
        except InvalidTag as e:
            raise NoiseError("Decryption failed") from e
        self.nonce += 1
        return plaintext


@dataclass(slots=True)
class SymmetricState:
    """Chaining key, handshake hash, and the current handshake cipher."""

    chaining_key: bytes = PROTOCOL_NAME
    handshake_hash: bytes = PROTOCOL_NAME
    cipher: CipherState = field(default_factory=CipherState)

    def mix_key(self, ikm: bytes) -> None:
        self.chaining_key, temp_key = _hkdf(self.chaining_key, ikm)
        self.cipher = CipherState(key=temp_key)

    def mix_hash(self, data: bytes) -> None:
        self.handshake_hash = hashlib.sha256(self.handshake_hash + data).digest()

    def encrypt_and_hash(self, plaintext: bytes) -> bytes:
        ciphertext = self.cipher.encrypt_with_ad(self.handshake_hash, plaintext)
        self.mix_hash(ciphertext)
        return ciphertext

    def decrypt_and_hash(self, ciphertext: bytes) -> bytes:
        plaintext = self.cipher.decrypt_with_ad(self.handshake_hash, ciphertext)
        self.mix_hash(ciphertext)
        return plaintext

    def split(self) -> tuple[CipherState, CipherState]:
        """Derive the (initiator->responder, responder->initiator) ciphers."""
        k1, k2 = _hkdf(self.chaining_key, b"")
        return CipherState(key=k1), CipherState(key=k2)


class XXHandshake:
    """
    State machine for one side of the XX pattern.

    Messages must be written and read in pattern order; each method
    handles exactly one message.
    """

    def __init__(self, static_key: x25519.X25519PrivateKey) -> None:
        self.state = SymmetricState()
        # Empty prologue.
        self.state.mix_hash(b"")
        self.static_key = static_key
        self.ephemeral_key = x25519.X25519PrivateKey.generate()
        self.remote_ephemeral: x25519.X25519PublicKey | None = None
        self.remote_static: bytes | None = None

    def _dh(self, local: x25519.X25519PrivateKey, remote: x25519.X25519PublicKey) -> bytes:
        return local.exchange(remote)

    def _read_ephemeral(self, message: bytes) -> bytes:
        if len(message) < 32:
            raise NoiseError("Handshake message too short")
        raw = message[:32]
        self.remote_ephemeral = x25519.X25519PublicKey.from_public_bytes(raw)
        self.state.mix_hash(raw)
        return message[32:]

    def _read_static(self, message: bytes) -> tuple[x25519.X25519PublicKey, bytes]:
        if len(message) < 48:
            raise NoiseError("Handshake message too short")
        raw = self.state.decrypt_and_hash(message[:48])
        self.remote_static = raw
        return x25519.X25519PublicKey.from_public_bytes(raw), message[48:]

    # -> e
    def write_message_1(self) -> bytes:
        ephemeral = _raw_public(self.ephemeral_key)
        self.state.mix_hash(ephemeral)
        return ephemeral + self.state.encrypt_and_hash(b"")

    def read_message_1(self, message: bytes) -> None:
        self.state.decrypt_and_hash(self._read_ephemeral(message))

    # <- e, ee, s, es
    def write_message_2(self, payload: bytes) -> bytes:
        assert self.remote_ephemeral is not None
        ephemeral = _raw_public(self.ephemeral_key)
        self.state.mix_hash(ephemeral)
        self.state.mix_key(self._dh(self.ephemeral_key, self.remote_ephemeral))
        static = self.state.encrypt_and_hash(_raw_public(self.static_key))
        self.state.mix_key(self._dh(self.static_key, self.remote_ephemeral))
        return ephemeral + static + self.state.encrypt_and_hash(payload)

    def read_message_2(self, message: bytes) -> bytes:
        rest = self._read_ephemeral(message)
        assert self.remote_ephemeral is not None
        self.state.mix_key(self._dh(self.ephemeral_key, self.remote_ephemeral))
        remote_static, rest = self._read_static(rest)
        self.state.mix_key(self._dh(self.ephemeral_key, remote_static))
        return self.state.decrypt_and_hash(rest)

    # -> s, se
    def write_message_3(self, payload: bytes) -> bytes:
        assert self.remote_ephemeral is not None
        static = self.state.encrypt_and_hash(_raw_public(self.static_key))
        self.state.mix_key(self._dh(self.static_key, self.remote_ephemeral))
        return static + self.state.encrypt_and_hash(payload)

    def read_message_3(self, message: bytes) -> bytes:
        remote_static, rest = self._read_static(message)
        self.state.mix_key(self._dh(self.ephemeral_key, remote_static))
        return self.state.decrypt_and_hash(rest)


def encode_payload(identity: IdentityKeypair, static_public: bytes) -> bytes:
    """Build the signed identity payload for our static key."""
    identity_key = identity.public_key().to_proto().encode()
    signature = identity.sign(SIGNATURE_PREFIX + static_public)
    return (
        bytes([_TAG_IDENTITY_KEY])
        + encode_varint(len(identity_key))
        + identity_key
        + bytes([_TAG_IDENTITY_SIG])
        + encode_varint(len(signature))
        + signature
    )


def verify_payload(payload: bytes, remote_static: bytes) -> PublicKey:
    """
    Check the remote identity payload against its static key.

    Returns:
        The proven identity key.

    Raises:
        NoiseError: If the payload is malformed or the signature is invalid.
    """
    fields: dict[int, bytes] = {}
    offset = 0
    try:
        while offset < len(payload):
            tag = payload[offset]
            offset += 1
            wire_type = tag & 0x07
            if wire_type == 0:
                _, consumed = decode_varint(payload, offset)
                offset += consumed
                continue
            if wire_type != 2:
                raise NoiseError(f"Unsupported wire type {wire_type}")
            length, consumed = decode_varint(payload, offset)
            offset += consumed
            if offset + length > len(payload):
                raise NoiseError("Truncated handshake payload")
            fields[tag] = payload[offset : offset + length]
            offset += length
    except VarintError as e:
        raise NoiseError(f"Malformed handshake payload: {e}") from e

    if _TAG_IDENTITY_KEY not in fields or _TAG_IDENTITY_SIG not in fields:
        raise NoiseError("Handshake payload missing identity")

    try:
        public_key = PublicKey.from_proto_bytes(fields[_TAG_IDENTITY_KEY])
    except ValueError as e:
        raise NoiseError(f"Invalid identity key: {e}") from e

    if not public_key.verify(SIGNATURE_PREFIX + remote_static, fields[_TAG_IDENTITY_SIG]):
        raise NoiseError("Invalid identity signature")
    return public_key


async def _write_frame(conn: RawConn, message: bytes) -> None:
    await conn.write(struct.pack(">H", len(message)) + message)


async def _read_frame(conn: RawConn) -> bytes:
    (length,) = struct.unpack(">H", await conn.readexactly(2))
    return await conn.readexactly(length)


class NoiseConn:
    """
    Encrypted session over a raw connection.

    Frames carry at most MAX_PLAINTEXT_SIZE bytes of plaintext; larger
    writes are split. Writes are serialized since each one consumes a
    nonce.
    """

    def __init__(
        self,
        conn: RawConn,
        send: CipherState,
        recv: CipherState,
        local_peer: PeerId,
        remote_public_key: PublicKey,
    ) -> None:
        self._conn = conn
        self._send = send
        self._recv = recv
        self._write_lock = asyncio.Lock()
        self._reader = ChunkBuffer(self._next_message)
        self.local_peer = local_peer
        self.remote_public_key = remote_public_key
        self.remote_peer = remote_public_key.to_peer_id()
        self.local_addr: Multiaddr = conn.local_addr
        self.remote_addr: Multiaddr = conn.remote_addr

    async def _next_message(self) -> bytes:
        while True:
            try:
                header = await self._conn.readexactly(2)
            except asyncio.IncompleteReadError as e:
                if not e.partial:
                    return b""
                raise NoiseError("Connection closed mid-frame") from e

            (length,) = struct.unpack(">H", header)
            ciphertext = await self._conn.readexactly(length)
            plaintext = self._recv.decrypt_with_ad(b"", ciphertext)
            if plaintext:
                return plaintext

    async def read(self, n: int = -1) -> bytes:
        return await self._reader.read(n)

    async def readexactly(self, n: int) -> bytes:
        return await self._reader.readexactly(n)

    async def write(self, data: bytes) -> None:
        async with self._write_lock:
            for start in range(0, len(data), MAX_PLAINTEXT_SIZE):
                chunk = data[start : start + MAX_PLAINTEXT_SIZE]
                await _write_frame(self._conn, self._send.encrypt_with_ad(b"", chunk))

    async def close(self) -> None:
        await self._conn.close()


class NoiseTransport:
    """
    Secures connections with Noise XX, authenticating libp2p identities.

    A fresh static X25519 key is generated per transport instance.
    """

    def __init__(self, private_key: IdentityKeypair) -> None:
        self._identity = private_key
        self._local_peer = private_key.to_peer_id()
        self._static_key = x25519.X25519PrivateKey.generate()
        self._payload = encode_payload(private_key, _raw_public(self._static_key))

    async def secure_outbound(self, conn: RawConn, peer_id: PeerId | None) -> NoiseConn:
        handshake = XXHandshake(self._static_key)

        await _write_frame(conn, handshake.write_message_1())
        payload = handshake.read_message_2(await _read_frame(conn))
        assert handshake.remote_static is not None
        remote_key = verify_payload(payload, handshake.remote_static)

        remote_peer = remote_key.to_peer_id()
        if peer_id is not None and remote_peer != peer_id:
            raise NoiseError(f"Peer ID mismatch: expected {peer_id}, got {remote_peer}")

        await _write_frame(conn, handshake.write_message_3(self._payload))

        send, recv = handshake.state.split()
        logger.debug("Noise handshake with %s complete (outbound)", remote_peer)
        return NoiseConn(conn, send, recv, self._local_peer, remote_key)

    async def secure_inbound(self, conn: RawConn) -> NoiseConn:
        handshake = XXHandshake(self._static_key)

        handshake.read_message_1(await _read_frame(conn))
        await _write_frame(conn, handshake.write_message_2(self._payload))
        payload = handshake.read_message_3(await _read_frame(conn))
        assert handshake.remote_static is not None
        remote_key = verify_payload(payload, handshake.remote_static)

        recv, send = handshake.state.split()
        logger.debug("Noise handshake with %s complete (inbound)", remote_key.to_peer_id())
        return NoiseConn(conn, send, recv, self._local_peer, remote_key)
