"""
Stream multiplexers.

A muxer runs many independent streams over one secure connection.
"""

from .base import MuxedConn, MuxedStream, MuxerError, StreamMuxer
from .mplex import MPLEX_PROTOCOL_ID, MplexSession, MplexStream, MplexTransport
from .yamux import YAMUX_PROTOCOL_ID, YamuxSession, YamuxStream, YamuxTransport

__all__ = [
    "MPLEX_PROTOCOL_ID",
    "MplexSession",
    "MplexStream",
    "MplexTransport",
    "MuxedConn",
    "MuxedStream",
    "MuxerError",
    "StreamMuxer",
    "YAMUX_PROTOCOL_ID",
    "YamuxSession",
    "YamuxStream",
    "YamuxTransport",
]
