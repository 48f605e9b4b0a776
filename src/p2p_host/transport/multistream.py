r"""
multistream-select 1.0 negotiation.

Used at three layers of every connection: to pick the security
transport, then the stream muxer, then the application protocol of
each stream.

Wire format:
    Message = [varint length][payload + '\n']
    The length includes the trailing newline.

Example:
    Dialer                      Listener
    ------                      --------
    /multistream/1.0.0   ->
                         <-     /multistream/1.0.0
    /tls/1.0.0           ->
                         <-     na
    /noise               ->
                         <-     /noise

References:
    - https://github.com/multiformats/multistream-select
"""

from __future__ import annotations

import asyncio
from typing import Final

from ..varint import VarintError, decode_varint, encode_varint
from .base import ReadWriteCloser

MULTISTREAM_PROTOCOL_ID: Final[str] = "/multistream/1.0.0"
"""Protocol identifier for multistream-select 1.0."""

NA: Final[str] = "na"
"""Rejection response for unsupported protocols."""

MAX_MESSAGE_SIZE: Final[int] = 1024
"""Largest accepted message, newline included."""

MAX_NEGOTIATION_ATTEMPTS: Final[int] = 10
"""Proposals a listener accepts before giving up on the dialer."""

DEFAULT_TIMEOUT: Final[float] = 30.0
"""Default listener-side negotiation timeout (seconds)."""


class NegotiationError(Exception):
    """Raised when protocol negotiation fails."""


async def negotiate_client(stream: ReadWriteCloser, protocols: list[str]) -> str:
    """
    Propose protocols in preference order until one is accepted.

    Raises:
        NegotiationError: If every protocol is rejected or the peer
            misbehaves.
    """
    if not protocols:
        raise NegotiationError("No protocols to negotiate")

    await _write_message(stream, MULTISTREAM_PROTOCOL_ID)
    await _expect_header(stream)

    for protocol in protocols:
        await _write_message(stream, protocol)
        response = await _read_message(stream)

        if response == protocol:
            return protocol
        if response != NA:
            raise NegotiationError(f"Unexpected response: {response!r}")

    raise NegotiationError(f"No protocols accepted from: {protocols}")


async def negotiate_lazy_client(stream: ReadWriteCloser, protocol: str) -> str:
    """
    Propose a single protocol without waiting for the header first.

    Saves a round trip when only one protocol is acceptable.

    Raises:
        NegotiationError: If the protocol is rejected.
    """
    await _write_message(stream, MULTISTREAM_PROTOCOL_ID)
    await _write_message(stream, protocol)
    await _expect_header(stream)

    response = await _read_message(stream)
    if response == protocol:
        return protocol
    if response == NA:
        raise NegotiationError(f"Protocol rejected: {protocol}")
    raise NegotiationError(f"Unexpected response: {response!r}")


async def negotiate_server(
    stream: ReadWriteCloser,
    supported: set[str] | list[str],
    timeout: float = DEFAULT_TIMEOUT,
) -> str:
    """
    Accept the first proposal found in `supported`.

    The number of proposals is capped so a dialer cannot keep the
    listener busy with endless unsupported protocols.

    Raises:
        NegotiationError: On no match, too many attempts, or timeout.
    """
    if not supported:
        raise NegotiationError("No supported protocols")

    async def _negotiate() -> str:
        await _expect_header(stream)
        await _write_message(stream, MULTISTREAM_PROTOCOL_ID)

        for _ in range(MAX_NEGOTIATION_ATTEMPTS):
            proposal = await _read_message(stream)
            if proposal in supported:
                await _write_message(stream, proposal)
                return proposal
            await _write_message(stream, NA)

        raise NegotiationError(f"Too many negotiation attempts (>{MAX_NEGOTIATION_ATTEMPTS})")

    try:
        return await asyncio.wait_for(_negotiate(), timeout=timeout)
    except asyncio.TimeoutError:
        raise NegotiationError(f"Negotiation timed out after {timeout}s") from None


async def _expect_header(stream: ReadWriteCloser) -> None:
    header = await _read_message(stream)
    if header != MULTISTREAM_PROTOCOL_ID:
        raise NegotiationError(f"Invalid multistream header: {header!r}")


async def _write_message(stream: ReadWriteCloser, message: str) -> None:
    payload = message.encode("utf-8") + b"\n"
    await stream.write(encode_varint(len(payload)) + payload)


async def _read_message(stream: ReadWriteCloser) -> str:
    """
    Read one length-prefixed message, without its newline.

    Raises:
        NegotiationError: If the message is malformed or the stream ends.
    """
    # The length is read a byte at a time so nothing past this message
    # is consumed from the stream.
    length_bytes = bytearray()
    while True:
        byte = await stream.read(1)
        if not byte:
            raise NegotiationError("Connection closed while reading length")
        length_bytes.append(byte[0])
        if byte[0] & 0x80 == 0:
            break
        if len(length_bytes) > 5:
            raise NegotiationError("Varint too long")

    try:
        length, _ = decode_varint(bytes(length_bytes))
    except VarintError as e:
        raise NegotiationError(f"Invalid varint: {e}") from e

    if length == 0:
        raise NegotiationError("Empty message")
    if length > MAX_MESSAGE_SIZE:
        raise NegotiationError(f"Message too large: {length}")

    try:
        payload = await stream.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise NegotiationError("Connection closed mid-message") from e

    if not payload.endswith(b"\n"):
        raise NegotiationError("Message must end with newline")

    try:
        return payload[:-1].decode("utf-8")
    except UnicodeDecodeError as e:
        raise NegotiationError("Message is not valid UTF-8") from e
