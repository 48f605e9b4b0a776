"""
NAT traversal hooks.

A NAT manager reports the external addresses at which the host is
reachable. The host adds them to the addresses it advertises.
"""

from __future__ import annotations

import logging
from typing import Iterable, Protocol, runtime_checkable

from multiaddr import Multiaddr

from .network import Network

logger = logging.getLogger(__name__)


@runtime_checkable
class NATManager(Protocol):
    """Maintains port mappings for the network's listeners."""

    def external_addrs(self) -> list[Multiaddr]:
        """Externally reachable addresses discovered so far."""
        ...

    async def close(self) -> None:
        """Release any mappings."""
        ...


class StaticNATManager:
    """
    Reports a fixed set of external addresses.

    Used when the host sits behind a NAT whose port forwarding is set up
    out of band. With no addresses it reports nothing, which is the
    behavior of a host with no reachable gateway.
    """

    def __init__(self, network: Network, external: Iterable[Multiaddr] = ()) -> None:
        self._network = network
        self._external = list(external)

    def external_addrs(self) -> list[Multiaddr]:
        return list(self._external)

    async def close(self) -> None:
        logger.debug("NAT manager for %s closed", self._network.peer_id)


def new_nat_manager(network: Network) -> NATManager:
    """Default NAT manager: no mappings."""
    return StaticNATManager(network)
