"""
yamux stream multiplexer (/yamux/1.0.0).

Frame format (12-byte big-endian header):

    [version:1][type:1][flags:2][stream_id:4][length:4][body]

For DATA frames `length` is the body size; for WINDOW_UPDATE it is the
window delta; for PING it is an opaque value echoed back.

Streams opened by the dialing side use odd IDs, the listening side even
IDs. A stream is opened by a WINDOW_UPDATE carrying SYN and acknowledged
with ACK. Each direction starts with a 256KB window; a sender may not
have more unacknowledged bytes in flight than the receiver has granted.

References:
    - https://github.com/hashicorp/yamux/blob/master/spec.md
    - https://github.com/libp2p/specs/tree/master/yamux
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import struct
from dataclasses import dataclass
from enum import IntEnum, IntFlag
from typing import Final

from ..security.base import SecureConn, SecurityError
from ..transport.base import ChunkBuffer
from .base import MuxerError

logger = logging.getLogger(__name__)

YAMUX_PROTOCOL_ID: Final[str] = "/yamux/1.0.0"
"""Protocol ID negotiated via multistream-select."""

YAMUX_VERSION: Final[int] = 0
"""Protocol version carried in every header."""

HEADER_SIZE: Final[int] = 12
"""Fixed header length."""

INITIAL_WINDOW: Final[int] = 256 * 1024
"""Per-stream receive window granted at open."""

MAX_FRAME_SIZE: Final[int] = 1024 * 1024
"""Largest accepted DATA body; caps allocation from a hostile header."""

MAX_STREAMS: Final[int] = 1024
"""Maximum concurrently open streams per session."""


class YamuxType(IntEnum):
    """Frame types."""

    DATA = 0
    WINDOW_UPDATE = 1
    PING = 2
    GO_AWAY = 3


class YamuxFlags(IntFlag):
    """Stream lifecycle flags."""

    NONE = 0
    SYN = 0x1
    ACK = 0x2
    FIN = 0x4
    RST = 0x8


@dataclass(frozen=True, slots=True)
class YamuxFrame:
    """A decoded frame header with its body (DATA only)."""

    type: YamuxType
    flags: YamuxFlags
    stream_id: int
    length: int
    data: bytes = b""

    def encode(self) -> bytes:
        header = struct.pack(
            ">BBHII", YAMUX_VERSION, self.type, self.flags, self.stream_id, self.length
        )
        return header + self.data

    @classmethod
    def decode_header(cls, header: bytes) -> YamuxFrame:
        """
        Parse a 12-byte header.

        Raises:
            MuxerError: On an unknown version or type.
        """
        version, type_, flags, stream_id, length = struct.unpack(">BBHII", header)
        if version != YAMUX_VERSION:
            raise MuxerError(f"Unsupported yamux version: {version}")
        try:
            frame_type = YamuxType(type_)
        except ValueError:
            raise MuxerError(f"Unknown yamux frame type: {type_}") from None
        return cls(frame_type, YamuxFlags(flags), stream_id, length)


class YamuxStream:
    """One yamux stream with credit-based flow control."""

    def __init__(self, session: YamuxSession, stream_id: int) -> None:
        self._session = session
        self.stream_id = stream_id
        self._queue: asyncio.Queue[bytes] = asyncio.Queue()
        self._reader = ChunkBuffer(self._next_chunk)

        self._send_window = INITIAL_WINDOW
        self._window_open = asyncio.Event()
        self._window_open.set()

        self._recv_window = INITIAL_WINDOW
        self._consumed = 0
        """Bytes read by the application but not yet credited back."""

        self._read_closed = False
        self._write_closed = False
        self._reset = False

    async def _next_chunk(self) -> bytes:
        if self._reset:
            raise MuxerError("Stream reset")
        if self._queue.empty() and self._read_closed:
            return b""

        chunk = await self._queue.get()
        if not chunk:
            # Wake-up sentinel for FIN or RST.
            if self._reset:
                raise MuxerError("Stream reset")
            return b""

        self._consumed += len(chunk)
        if self._consumed >= INITIAL_WINDOW // 2 and not self._read_closed:
            delta, self._consumed = self._consumed, 0
            self._recv_window += delta
            await self._session.send_frame(
                YamuxFrame(YamuxType.WINDOW_UPDATE, YamuxFlags.NONE, self.stream_id, delta)
            )
        return chunk

    async def read(self, n: int = -1) -> bytes:
        return await self._reader.read(n)

    async def readexactly(self, n: int) -> bytes:
        return await self._reader.readexactly(n)

    async def write(self, data: bytes) -> None:
        while data:
            if self._reset:
                raise MuxerError("Stream reset")
            if self._write_closed:
                raise MuxerError("Stream closed for writing")

            if self._send_window == 0:
                self._window_open.clear()
                await self._window_open.wait()
                continue

            size = min(len(data), self._send_window, MAX_FRAME_SIZE)
            chunk, data = data[:size], data[size:]
            self._send_window -= size
            await self._session.send_frame(
                YamuxFrame(YamuxType.DATA, YamuxFlags.NONE, self.stream_id, size, chunk)
            )

    async def close(self) -> None:
        """Half-close: we send no more data but can still read."""
        if self._write_closed or self._reset:
            return
        self._write_closed = True
        await self._session.send_frame(
            YamuxFrame(YamuxType.DATA, YamuxFlags.FIN, self.stream_id, 0)
        )
        self._maybe_forget()

    async def reset(self) -> None:
        if self._reset:
            return
        self.handle_reset()
        if not self._session.is_closed():
            await self._session.send_frame(
                YamuxFrame(YamuxType.WINDOW_UPDATE, YamuxFlags.RST, self.stream_id, 0)
            )

    def _maybe_forget(self) -> None:
        if self._read_closed and self._write_closed:
            self._session.forget(self.stream_id)

    def handle_data(self, data: bytes) -> None:
        self._recv_window -= len(data)
        self._queue.put_nowait(data)

    def handle_window_update(self, delta: int) -> None:
        self._send_window += delta
        self._window_open.set()

    def handle_fin(self) -> None:
        self._read_closed = True
        self._queue.put_nowait(b"")
        self._maybe_forget()

    def handle_reset(self) -> None:
        self._reset = True
        self._read_closed = self._write_closed = True
        self._queue.put_nowait(b"")
        self._window_open.set()
        self._session.forget(self.stream_id)

    @property
    def recv_window(self) -> int:
        return self._recv_window


class YamuxSession:
    """A yamux session over one secure connection."""

    def __init__(self, conn: SecureConn, is_initiator: bool) -> None:
        self._conn = conn
        self._is_initiator = is_initiator
        self._next_stream_id = 1 if is_initiator else 2
        self._streams: dict[int, YamuxStream] = {}
        self._incoming: asyncio.Queue[YamuxStream | None] = asyncio.Queue()
        self._write_lock = asyncio.Lock()
        self._closed = False
        self._conn_closed = False
        self._read_task: asyncio.Task[None] | None = None

    def start(self) -> None:
        self._read_task = asyncio.create_task(self._read_loop())

    def is_closed(self) -> bool:
        return self._closed

    def forget(self, stream_id: int) -> None:
        self._streams.pop(stream_id, None)

    async def send_frame(self, frame: YamuxFrame) -> None:
        if self._closed:
            raise MuxerError("Session closed")
        async with self._write_lock:
            await self._conn.write(frame.encode())

    async def open_stream(self) -> YamuxStream:
        if self._closed:
            raise MuxerError("Session closed")
        if len(self._streams) >= MAX_STREAMS:
            raise MuxerError(f"Too many streams (max {MAX_STREAMS})")

        stream_id = self._next_stream_id
        self._next_stream_id += 2
        stream = YamuxStream(self, stream_id)
        self._streams[stream_id] = stream
        await self.send_frame(YamuxFrame(YamuxType.WINDOW_UPDATE, YamuxFlags.SYN, stream_id, 0))
        return stream

    async def accept_stream(self) -> YamuxStream:
        stream = await self._incoming.get()
        if stream is None:
            # Leave the marker for any other waiter.
            self._incoming.put_nowait(None)
            raise MuxerError("Session closed")
        return stream

    async def close(self) -> None:
        if self._conn_closed:
            return
        self._conn_closed = True

        if not self._closed:
            try:
                await self.send_frame(YamuxFrame(YamuxType.GO_AWAY, YamuxFlags.NONE, 0, 0))
            except (OSError, SecurityError) as e:
                logger.debug("Failed to send GO_AWAY: %s", e)
        self._shutdown()

        task = self._read_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._conn.close()

    def _shutdown(self) -> None:
        self._closed = True
        for stream in list(self._streams.values()):
            stream.handle_reset()
        self._streams.clear()
        self._incoming.put_nowait(None)

    async def _read_loop(self) -> None:
        try:
            while True:
                frame = YamuxFrame.decode_header(await self._conn.readexactly(HEADER_SIZE))
                data = b""
                if frame.type == YamuxType.DATA and frame.length:
                    if frame.length > MAX_FRAME_SIZE:
                        raise MuxerError(f"Frame too large: {frame.length}")
                    data = await self._conn.readexactly(frame.length)
                await self._dispatch(frame, data)
        except asyncio.IncompleteReadError:
            logger.debug("yamux connection closed by peer")
        except (OSError, MuxerError, SecurityError) as e:
            logger.debug("yamux session error: %s", e)
        finally:
            if not self._closed:
                self._shutdown()

    async def _dispatch(self, frame: YamuxFrame, data: bytes) -> None:
        if frame.type == YamuxType.PING:
            if not frame.flags & YamuxFlags.ACK:
                await self.send_frame(
                    YamuxFrame(YamuxType.PING, YamuxFlags.ACK, 0, frame.length)
                )
            return

        if frame.type == YamuxType.GO_AWAY:
            logger.debug("Peer sent GO_AWAY (code %d)", frame.length)
            return

        stream_id = frame.stream_id
        stream = self._streams.get(stream_id)

        if frame.flags & YamuxFlags.SYN:
            if stream is not None:
                raise MuxerError(f"Duplicate stream ID: {stream_id}")
            if (stream_id % 2 == 1) == self._is_initiator:
                raise MuxerError(f"Stream ID {stream_id} has the wrong parity")
            stream = YamuxStream(self, stream_id)
            self._streams[stream_id] = stream
            await self.send_frame(
                YamuxFrame(YamuxType.WINDOW_UPDATE, YamuxFlags.ACK, stream_id, 0)
            )
            self._incoming.put_nowait(stream)

        if stream is None:
            # Late frame for a stream we already forgot.
            return

        if frame.type == YamuxType.WINDOW_UPDATE:
            stream.handle_window_update(frame.length)
        elif data:
            if len(data) > stream.recv_window:
                logger.debug("Stream %d exceeded its receive window", stream_id)
                await stream.reset()
                return
            stream.handle_data(data)

        if frame.flags & YamuxFlags.FIN:
            stream.handle_fin()
        if frame.flags & YamuxFlags.RST:
            stream.handle_reset()


class YamuxTransport:
    """Creates yamux sessions."""

    async def new_conn(self, conn: SecureConn, is_initiator: bool) -> YamuxSession:
        session = YamuxSession(conn, is_initiator)
        session.start()
        return session
