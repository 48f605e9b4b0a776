"""IP-range filters applied to dialed and accepted connections."""

from __future__ import annotations

import ipaddress

from multiaddr import Multiaddr

from .addresses import ip_of

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


class AddressFilters:
    """
    A set of blocked IP networks.

    Addresses without an IP component are never blocked.
    """

    def __init__(self) -> None:
        self._blocked: list[IPNetwork] = []

    def add_dial_filter(self, network: IPNetwork | str) -> None:
        """Block every address inside network (e.g. "10.0.0.0/8")."""
        parsed = ipaddress.ip_network(network, strict=False)
        if parsed not in self._blocked:
            self._blocked.append(parsed)

    def remove_dial_filter(self, network: IPNetwork | str) -> bool:
        """Unblock a network; returns whether it was blocked."""
        parsed = ipaddress.ip_network(network, strict=False)
        if parsed in self._blocked:
            self._blocked.remove(parsed)
            return True
        return False

    def filters(self) -> list[IPNetwork]:
        return list(self._blocked)

    def addr_blocked(self, addr: Multiaddr) -> bool:
        ip = ip_of(addr)
        if ip is None:
            return False
        return any(ip in network for network in self._blocked)
