"""
Tests for the yamux stream multiplexer.

Frame header (12 bytes, big-endian):
    version (1) | type (1) | flags (2) | stream_id (4) | length (4)

Sessions run over an in-memory pipe; the pipe stands in for the secure
connection since yamux only reads and writes bytes.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest

from p2p_host.muxer.base import MuxerError
from p2p_host.muxer.yamux import (
    HEADER_SIZE,
    INITIAL_WINDOW,
    YAMUX_PROTOCOL_ID,
    YamuxFlags,
    YamuxFrame,
    YamuxSession,
    YamuxTransport,
    YamuxType,
)
from tests.p2p_host.helpers import memory_conn_pair


@pytest.fixture
async def sessions() -> AsyncIterator[tuple[YamuxSession, YamuxSession]]:
    """A connected (initiator, responder) session pair."""
    dialer, listener = memory_conn_pair()
    transport = YamuxTransport()
    client = await transport.new_conn(dialer, True)
    server = await transport.new_conn(listener, False)
    yield client, server
    await client.close()
    await server.close()


class TestYamuxFrame:
    """Header encoding."""

    def test_protocol_id(self) -> None:
        assert YAMUX_PROTOCOL_ID == "/yamux/1.0.0"

    def test_syn_header(self) -> None:
        frame = YamuxFrame(YamuxType.WINDOW_UPDATE, YamuxFlags.SYN, 1, 0)
        assert frame.encode() == bytes.fromhex("0001000100000001" "00000000")

    def test_data_frame_carries_body(self) -> None:
        frame = YamuxFrame(YamuxType.DATA, YamuxFlags.NONE, 3, 2, b"hi")
        encoded = frame.encode()
        assert len(encoded) == HEADER_SIZE + 2
        assert encoded[-2:] == b"hi"

    def test_decode_header(self) -> None:
        header = YamuxFrame(YamuxType.DATA, YamuxFlags.FIN, 7, 99).encode()
        decoded = YamuxFrame.decode_header(header)
        assert decoded.type == YamuxType.DATA
        assert decoded.flags == YamuxFlags.FIN
        assert decoded.stream_id == 7
        assert decoded.length == 99

    def test_decode_rejects_unknown_version(self) -> None:
        with pytest.raises(MuxerError, match="version"):
            YamuxFrame.decode_header(b"\x01" + b"\x00" * 11)

    def test_decode_rejects_unknown_type(self) -> None:
        with pytest.raises(MuxerError, match="frame type"):
            YamuxFrame.decode_header(b"\x00\x09" + b"\x00" * 10)


class TestYamuxSession:
    """Streams over a live session pair."""

    @pytest.mark.anyio
    async def test_stream_ids_by_side(self, sessions: tuple[YamuxSession, YamuxSession]) -> None:
        client, server = sessions
        assert (await client.open_stream()).stream_id == 1
        assert (await client.open_stream()).stream_id == 3
        assert (await server.open_stream()).stream_id == 2

    @pytest.mark.anyio
    async def test_echo(self, sessions: tuple[YamuxSession, YamuxSession]) -> None:
        client, server = sessions
        outbound = await client.open_stream()
        await outbound.write(b"ping")

        inbound = await server.accept_stream()
        assert inbound.stream_id == outbound.stream_id
        assert await inbound.readexactly(4) == b"ping"

        await inbound.write(b"pong")
        assert await outbound.readexactly(4) == b"pong"

    @pytest.mark.anyio
    async def test_half_close(self, sessions: tuple[YamuxSession, YamuxSession]) -> None:
        client, server = sessions
        outbound = await client.open_stream()
        await outbound.write(b"last words")
        await outbound.close()

        inbound = await server.accept_stream()
        assert await inbound.readexactly(10) == b"last words"
        assert await inbound.read() == b""

        # The other direction stays open.
        await inbound.write(b"still here")
        assert await outbound.readexactly(10) == b"still here"

    @pytest.mark.anyio
    async def test_write_after_close(self, sessions: tuple[YamuxSession, YamuxSession]) -> None:
        client, _ = sessions
        stream = await client.open_stream()
        await stream.close()
        with pytest.raises(MuxerError, match="closed for writing"):
            await stream.write(b"x")

    @pytest.mark.anyio
    async def test_reset(self, sessions: tuple[YamuxSession, YamuxSession]) -> None:
        client, server = sessions
        outbound = await client.open_stream()
        inbound = await server.accept_stream()

        await outbound.reset()
        with pytest.raises(MuxerError, match="reset"):
            await inbound.read()
        with pytest.raises(MuxerError, match="reset"):
            await outbound.write(b"x")

    @pytest.mark.anyio
    async def test_transfer_beyond_initial_window(
        self, sessions: tuple[YamuxSession, YamuxSession]
    ) -> None:
        client, server = sessions
        data = bytes(range(256)) * (3 * INITIAL_WINDOW // 256)
        outbound = await client.open_stream()

        async def receive() -> bytes:
            inbound = await server.accept_stream()
            return await inbound.readexactly(len(data))

        receiver = asyncio.create_task(receive())
        await asyncio.wait_for(outbound.write(data), timeout=10)
        assert await asyncio.wait_for(receiver, timeout=10) == data

    @pytest.mark.anyio
    async def test_many_concurrent_streams(
        self, sessions: tuple[YamuxSession, YamuxSession]
    ) -> None:
        client, server = sessions

        async def serve() -> None:
            for _ in range(5):
                stream = await server.accept_stream()
                await stream.write(await stream.readexactly(1) * 2)

        server_task = asyncio.create_task(serve())
        streams = [await client.open_stream() for _ in range(5)]
        for i, stream in enumerate(streams):
            await stream.write(bytes([i]))
        replies = [await stream.readexactly(2) for stream in streams]

        assert replies == [bytes([i, i]) for i in range(5)]
        await server_task

    @pytest.mark.anyio
    async def test_close_ends_accept(self, sessions: tuple[YamuxSession, YamuxSession]) -> None:
        client, server = sessions
        await client.close()

        assert client.is_closed()
        with pytest.raises(MuxerError, match="closed"):
            await asyncio.wait_for(server.accept_stream(), timeout=5)
        assert server.is_closed()

    @pytest.mark.anyio
    async def test_open_after_close(self, sessions: tuple[YamuxSession, YamuxSession]) -> None:
        client, _ = sessions
        await client.close()
        with pytest.raises(MuxerError, match="closed"):
            await client.open_stream()
