"""
Bandwidth accounting.

The host wraps every stream it hands to application code so that bytes
read and written are reported with the stream's protocol and peer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from .identity import PeerId

if TYPE_CHECKING:
    from .network import Stream


@dataclass(slots=True)
class Stats:
    """Byte totals for one direction pair."""

    total_in: int = 0
    total_out: int = 0


@runtime_checkable
class BandwidthReporter(Protocol):
    """Receives per-stream traffic reports."""

    def log_sent(self, size: int, protocol_id: str, peer_id: PeerId) -> None:
        ...

    def log_recv(self, size: int, protocol_id: str, peer_id: PeerId) -> None:
        ...


class BandwidthCounter:
    """Keeps running totals overall, per protocol, and per peer."""

    def __init__(self) -> None:
        self._total = Stats()
        self._by_protocol: dict[str, Stats] = {}
        self._by_peer: dict[PeerId, Stats] = {}

    def log_sent(self, size: int, protocol_id: str, peer_id: PeerId) -> None:
        self._total.total_out += size
        self._by_protocol.setdefault(protocol_id, Stats()).total_out += size
        self._by_peer.setdefault(peer_id, Stats()).total_out += size

    def log_recv(self, size: int, protocol_id: str, peer_id: PeerId) -> None:
        self._total.total_in += size
        self._by_protocol.setdefault(protocol_id, Stats()).total_in += size
        self._by_peer.setdefault(peer_id, Stats()).total_in += size

    def totals(self) -> Stats:
        return Stats(self._total.total_in, self._total.total_out)

    def for_protocol(self, protocol_id: str) -> Stats:
        stats = self._by_protocol.get(protocol_id, Stats())
        return Stats(stats.total_in, stats.total_out)

    def for_peer(self, peer_id: PeerId) -> Stats:
        stats = self._by_peer.get(peer_id, Stats())
        return Stats(stats.total_in, stats.total_out)


class MeteredStream:
    """A stream that reports its traffic to a BandwidthReporter."""

    def __init__(self, stream: Stream, reporter: BandwidthReporter) -> None:
        self._stream = stream
        self._reporter = reporter

    @property
    def protocol_id(self) -> str:
        return self._stream.protocol_id

    @property
    def remote_peer(self) -> PeerId:
        return self._stream.remote_peer

    def _report_recv(self, data: bytes) -> bytes:
        if data:
            self._reporter.log_recv(len(data), self.protocol_id, self.remote_peer)
        return data

    async def read(self, n: int = -1) -> bytes:
        return self._report_recv(await self._stream.read(n))

    async def readexactly(self, n: int) -> bytes:
        return self._report_recv(await self._stream.readexactly(n))

    async def write(self, data: bytes) -> None:
        await self._stream.write(data)
        self._reporter.log_sent(len(data), self.protocol_id, self.remote_peer)

    async def close(self) -> None:
        await self._stream.close()

    async def reset(self) -> None:
        await self._stream.reset()
