"""
Transports and the connection upgrade pipeline.

A transport dials and listens on one family of addresses and returns
connections that are already secured and multiplexed. The TCP transport
and the upgrader live in `transport.tcp` and `transport.upgrader`.
"""

from .base import ChunkBuffer, ConnHandler, Listener, RawConn, ReadWriteCloser, Transport, TransportError
from .multistream import (
    MULTISTREAM_PROTOCOL_ID,
    NegotiationError,
    negotiate_client,
    negotiate_lazy_client,
    negotiate_server,
)

__all__ = [
    "ChunkBuffer",
    "ConnHandler",
    "Listener",
    "MULTISTREAM_PROTOCOL_ID",
    "NegotiationError",
    "RawConn",
    "ReadWriteCloser",
    "Transport",
    "TransportError",
    "negotiate_client",
    "negotiate_lazy_client",
    "negotiate_server",
]
