"""
mplex stream multiplexer (/mplex/6.7.0).

Frame format:

    [header varint][length varint][data]
    header = (stream_id << 3) | flag

Each side numbers the streams it opens independently, so a stream is
identified by its ID together with which side opened it. The flag tells
the receiver which side that was:

    0 NewStream          opener announces the stream (data = name)
    1 MessageReceiver    data from the side that accepted the stream
    2 MessageInitiator   data from the side that opened the stream
    3 CloseReceiver      half-close by the accepting side
    4 CloseInitiator     half-close by the opening side
    5 ResetReceiver      reset by the accepting side
    6 ResetInitiator     reset by the opening side

mplex has no flow control.

References:
    - https://github.com/libp2p/specs/tree/master/mplex
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import IntEnum
from typing import Final

from ..security.base import SecureConn, SecurityError
from ..transport.base import ChunkBuffer
from ..varint import VarintError, decode_varint, encode_varint
from .base import MuxerError

logger = logging.getLogger(__name__)

MPLEX_PROTOCOL_ID: Final[str] = "/mplex/6.7.0"
"""Protocol ID negotiated via multistream-select."""

MAX_MESSAGE_SIZE: Final[int] = 1024 * 1024
"""Largest frame body."""


class MplexFlag(IntEnum):
    """Frame flags (low three bits of the header)."""

    NEW_STREAM = 0
    MESSAGE_RECEIVER = 1
    MESSAGE_INITIATOR = 2
    CLOSE_RECEIVER = 3
    CLOSE_INITIATOR = 4
    RESET_RECEIVER = 5
    RESET_INITIATOR = 6


StreamKey = tuple[int, bool]
"""(stream ID, opened locally)."""


class MplexStream:
    """One mplex stream."""

    def __init__(self, session: MplexSession, stream_id: int, opened_locally: bool) -> None:
        self._session = session
        self.stream_id = stream_id
        self.opened_locally = opened_locally
        self._queue: asyncio.Queue[bytes] = asyncio.Queue()
        self._reader = ChunkBuffer(self._next_chunk)
        self._read_closed = False
        self._write_closed = False
        self._reset = False

    @property
    def key(self) -> StreamKey:
        return (self.stream_id, self.opened_locally)

    def _flag(self, initiator: MplexFlag, receiver: MplexFlag) -> MplexFlag:
        return initiator if self.opened_locally else receiver

    async def _next_chunk(self) -> bytes:
        if self._reset:
            raise MuxerError("Stream reset")
        if self._queue.empty() and self._read_closed:
            return b""
        chunk = await self._queue.get()
        if not chunk and self._reset:
            raise MuxerError("Stream reset")
        return chunk

    async def read(self, n: int = -1) -> bytes:
        return await self._reader.read(n)

    async def readexactly(self, n: int) -> bytes:
        return await self._reader.readexactly(n)

    async def write(self, data: bytes) -> None:
        if self._reset:
            raise MuxerError("Stream reset")
        if self._write_closed:
            raise MuxerError("Stream closed for writing")
        flag = self._flag(MplexFlag.MESSAGE_INITIATOR, MplexFlag.MESSAGE_RECEIVER)
        for start in range(0, len(data), MAX_MESSAGE_SIZE):
            await self._session.send_frame(
                self.stream_id, flag, data[start : start + MAX_MESSAGE_SIZE]
            )

    async def close(self) -> None:
        if self._write_closed or self._reset:
            return
        self._write_closed = True
        flag = self._flag(MplexFlag.CLOSE_INITIATOR, MplexFlag.CLOSE_RECEIVER)
        await self._session.send_frame(self.stream_id, flag)
        if self._read_closed:
            self._session.forget(self.key)

    async def reset(self) -> None:
        if self._reset:
            return
        self.handle_reset()
        if not self._session.is_closed():
            flag = self._flag(MplexFlag.RESET_INITIATOR, MplexFlag.RESET_RECEIVER)
            await self._session.send_frame(self.stream_id, flag)

    def handle_data(self, data: bytes) -> None:
        if not self._read_closed and data:
            self._queue.put_nowait(data)

    def handle_close(self) -> None:
        self._read_closed = True
        self._queue.put_nowait(b"")
        if self._write_closed:
            self._session.forget(self.key)

    def handle_reset(self) -> None:
        self._reset = True
        self._read_closed = self._write_closed = True
        self._queue.put_nowait(b"")
        self._session.forget(self.key)


class MplexSession:
    """An mplex session over one secure connection."""

    def __init__(self, conn: SecureConn) -> None:
        self._conn = conn
        self._next_stream_id = 0
        self._streams: dict[StreamKey, MplexStream] = {}
        self._incoming: asyncio.Queue[MplexStream | None] = asyncio.Queue()
        self._write_lock = asyncio.Lock()
        self._closed = False
        self._conn_closed = False
        self._read_task: asyncio.Task[None] | None = None

    def start(self) -> None:
        self._read_task = asyncio.create_task(self._read_loop())

    def is_closed(self) -> bool:
        return self._closed

    def forget(self, key: StreamKey) -> None:
        self._streams.pop(key, None)

    async def send_frame(self, stream_id: int, flag: MplexFlag, data: bytes = b"") -> None:
        if self._closed:
            raise MuxerError("Session closed")
        frame = encode_varint(stream_id << 3 | flag) + encode_varint(len(data)) + data
        async with self._write_lock:
            await self._conn.write(frame)

    async def open_stream(self) -> MplexStream:
        if self._closed:
            raise MuxerError("Session closed")
        stream_id = self._next_stream_id
        self._next_stream_id += 1
        stream = MplexStream(self, stream_id, opened_locally=True)
        self._streams[stream.key] = stream
        await self.send_frame(stream_id, MplexFlag.NEW_STREAM, str(stream_id).encode())
        return stream

    async def accept_stream(self) -> MplexStream:
        stream = await self._incoming.get()
        if stream is None:
            self._incoming.put_nowait(None)
            raise MuxerError("Session closed")
        return stream

    async def close(self) -> None:
        if self._conn_closed:
            return
        self._conn_closed = True
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

    async def _read_uvarint(self) -> int:
        raw = bytearray()
        while True:
            byte = await self._conn.readexactly(1)
            raw += byte
            if byte[0] & 0x80 == 0:
                return decode_varint(bytes(raw))[0]
            if len(raw) >= 9:
                raise MuxerError("Varint too long")

    async def _read_loop(self) -> None:
        try:
            while True:
                header = await self._read_uvarint()
                length = await self._read_uvarint()
                if length > MAX_MESSAGE_SIZE:
                    raise MuxerError(f"Frame too large: {length}")
                data = await self._conn.readexactly(length) if length else b""
                self._dispatch(header >> 3, header & 0x07, data)
        except asyncio.IncompleteReadError:
            logger.debug("mplex connection closed by peer")
        except (OSError, MuxerError, SecurityError, VarintError) as e:
            logger.debug("mplex session error: %s", e)
        finally:
            if not self._closed:
                self._shutdown()

    def _dispatch(self, stream_id: int, flag: int, data: bytes) -> None:
        try:
            kind = MplexFlag(flag)
        except ValueError:
            raise MuxerError(f"Unknown mplex flag: {flag}") from None

        if kind == MplexFlag.NEW_STREAM:
            key = (stream_id, False)
            if key in self._streams:
                raise MuxerError(f"Duplicate stream ID: {stream_id}")
            stream = MplexStream(self, stream_id, opened_locally=False)
            self._streams[key] = stream
            self._incoming.put_nowait(stream)
            return

        # Frames from the opener refer to streams the peer opened.
        from_opener = kind in (
            MplexFlag.MESSAGE_INITIATOR,
            MplexFlag.CLOSE_INITIATOR,
            MplexFlag.RESET_INITIATOR,
        )
        stream = self._streams.get((stream_id, not from_opener))
        if stream is None:
            return

        if kind in (MplexFlag.MESSAGE_INITIATOR, MplexFlag.MESSAGE_RECEIVER):
            stream.handle_data(data)
        elif kind in (MplexFlag.CLOSE_INITIATOR, MplexFlag.CLOSE_RECEIVER):
            stream.handle_close()
        else:
            stream.handle_reset()


class MplexTransport:
    """Creates mplex sessions."""

    async def new_conn(self, conn: SecureConn, is_initiator: bool) -> MplexSession:
        session = MplexSession(conn)
        session.start()
        return session
