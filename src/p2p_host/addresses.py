"""
Multiaddr helpers.

Multiaddrs are self-describing addresses made of protocol/value segments:
"/ip4/127.0.0.1/tcp/9000" means IPv4 address 127.0.0.1, TCP port 9000.
Parsing and validation belong to the `multiaddr` library; this module only
extracts the pieces the TCP transport and the address filters need.
"""

from __future__ import annotations

import ipaddress
import socket
from typing import Callable, Final

from multiaddr import Multiaddr

__all__ = [
    "AddrsFactory",
    "from_socket",
    "ip_of",
    "is_wildcard",
    "parse_multiaddr",
    "tcp_endpoint",
]

AddrsFactory = Callable[[list[Multiaddr]], list[Multiaddr]]
"""Maps the host's listen addresses to the addresses it advertises."""

_IP_PROTOCOLS: Final[dict[str, socket.AddressFamily]] = {
    "ip4": socket.AF_INET,
    "ip6": socket.AF_INET6,
}
"""Address segments the TCP transport understands, by socket family."""


def parse_multiaddr(addr: str | Multiaddr) -> Multiaddr:
    """
    Validate an address string.

    Raises:
        ValueError: If the string is not a valid multiaddr.
    """
    if isinstance(addr, Multiaddr):
        return addr
    return Multiaddr(addr)


def _segments(addr: Multiaddr) -> list[tuple[str, str]]:
    """Split a multiaddr into (protocol, value) pairs."""
    parts = str(addr).strip("/").split("/")
    return [(parts[i], parts[i + 1]) for i in range(0, len(parts) - 1, 2)]


def tcp_endpoint(addr: Multiaddr) -> tuple[socket.AddressFamily, str, int]:
    """
    Extract (family, host, port) from an /ip4 or /ip6 TCP address.

    A trailing /p2p/<peer-id> segment is ignored.

    Raises:
        ValueError: If the address is not a plain IP + TCP address.
    """
    segments = _segments(addr)
    if len(segments) < 2:
        raise ValueError(f"Not a TCP address: {addr}")

    (ip_proto, host), (tcp_proto, port) = segments[0], segments[1]
    rest = segments[2:]
    if ip_proto not in _IP_PROTOCOLS or tcp_proto != "tcp" or any(p != "p2p" for p, _ in rest):
        raise ValueError(f"Not a TCP address: {addr}")

    return _IP_PROTOCOLS[ip_proto], host, int(port)


def ip_of(addr: Multiaddr) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    """Return the IP of the first /ip4 or /ip6 segment, if any."""
    for proto, value in _segments(addr):
        if proto in _IP_PROTOCOLS:
            return ipaddress.ip_address(value)
    return None


def is_wildcard(addr: Multiaddr) -> bool:
    """True for unspecified addresses (0.0.0.0 or ::)."""
    ip = ip_of(addr)
    return ip is not None and ip.is_unspecified


def from_socket(family: socket.AddressFamily, host: str, port: int) -> Multiaddr:
    """Build a TCP multiaddr from socket information."""
    proto = "ip6" if family == socket.AF_INET6 else "ip4"
    return Multiaddr(f"/{proto}/{host}/tcp/{port}")
