"""Stream multiplexer interface."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from ..security.base import SecureConn
from ..transport.base import ReadWriteCloser


class MuxerError(Exception):
    """Raised on multiplexer protocol violations or use of a closed session."""


class MuxedStream(ReadWriteCloser, Protocol):
    """One logical stream inside a multiplexed connection."""

    async def reset(self) -> None:
        """Abort the stream in both directions."""
        ...


class MuxedConn(Protocol):
    """A multiplexed session over one secure connection."""

    async def open_stream(self) -> MuxedStream:
        """Open a new outbound stream."""
        ...

    async def accept_stream(self) -> MuxedStream:
        """
        Wait for the next inbound stream.

        Raises:
            MuxerError: Once the session is closed.
        """
        ...

    async def close(self) -> None:
        """Close the session and every stream in it."""
        ...

    def is_closed(self) -> bool:
        """True once the session has shut down."""
        ...


@runtime_checkable
class StreamMuxer(Protocol):
    """Turns a secure connection into a multiplexed session."""

    async def new_conn(self, conn: SecureConn, is_initiator: bool) -> MuxedConn:
        """Start a session; is_initiator is True on the dialing side."""
        ...
