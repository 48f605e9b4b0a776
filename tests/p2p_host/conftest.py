"""
Shared pytest fixtures for p2p_host tests.

Provides identity fixtures.
"""

from __future__ import annotations

import pytest

from p2p_host.identity import IdentityKeypair, PeerId
from tests.p2p_host.helpers import make_keypair

# -----------------------------------------------------------------------------
# Identity Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def keypair() -> IdentityKeypair:
    """Primary test identity."""
    return make_keypair(1)


@pytest.fixture
def keypair_2() -> IdentityKeypair:
    """Secondary test identity."""
    return make_keypair(2)


@pytest.fixture
def peer_id(keypair: IdentityKeypair) -> PeerId:
    """Peer ID of the primary identity."""
    return keypair.to_peer_id()
