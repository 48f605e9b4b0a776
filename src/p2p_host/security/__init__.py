"""
Security transports.

A security transport authenticates the remote peer's identity and
encrypts the connection. Noise is the default; plaintext is installed
only when the host is built without security.
"""

from .base import SecureConn, SecureTransport, SecurityError
from .noise import NOISE_PROTOCOL_ID, NoiseConn, NoiseError, NoiseTransport
from .plaintext import PLAINTEXT_PROTOCOL_ID, PlaintextConn, PlaintextTransport

__all__ = [
    "NOISE_PROTOCOL_ID",
    "NoiseConn",
    "NoiseError",
    "NoiseTransport",
    "PLAINTEXT_PROTOCOL_ID",
    "PlaintextConn",
    "PlaintextTransport",
    "SecureConn",
    "SecureTransport",
    "SecurityError",
]
