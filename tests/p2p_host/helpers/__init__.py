"""Test helpers for p2p_host unit tests."""

from __future__ import annotations

from .builders import make_keypair, make_peer_id, make_upgrader
from .mocks import MemoryConn, RecordingConnManager, RecordingReporter, memory_conn_pair

__all__ = [
    "MemoryConn",
    "RecordingConnManager",
    "RecordingReporter",
    "make_keypair",
    "make_peer_id",
    "make_upgrader",
    "memory_conn_pair",
]
