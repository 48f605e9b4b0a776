"""Tests for multiaddr helpers and wildcard resolution."""

from __future__ import annotations

import ipaddress
import socket

import pytest
from multiaddr import Multiaddr

from p2p_host.addresses import from_socket, ip_of, is_wildcard, parse_multiaddr, tcp_endpoint
from p2p_host.host import resolve_unspecified


class TestParseMultiaddr:
    """Validation is delegated to the multiaddr library."""

    def test_valid(self) -> None:
        assert str(parse_multiaddr("/ip4/127.0.0.1/tcp/9000")) == "/ip4/127.0.0.1/tcp/9000"

    def test_passes_multiaddr_through(self) -> None:
        addr = Multiaddr("/ip4/127.0.0.1/tcp/9000")
        assert parse_multiaddr(addr) is addr

    def test_invalid(self) -> None:
        with pytest.raises(ValueError):
            parse_multiaddr("/ip4/not-an-ip/tcp/9000")


class TestTcpEndpoint:
    """Extracting socket parameters."""

    def test_ip4(self) -> None:
        assert tcp_endpoint(Multiaddr("/ip4/10.0.0.1/tcp/4001")) == (
            socket.AF_INET,
            "10.0.0.1",
            4001,
        )

    def test_ip6(self) -> None:
        assert tcp_endpoint(Multiaddr("/ip6/::1/tcp/4001")) == (socket.AF_INET6, "::1", 4001)

    def test_udp_is_not_tcp(self) -> None:
        with pytest.raises(ValueError, match="Not a TCP address"):
            tcp_endpoint(Multiaddr("/ip4/10.0.0.1/udp/4001"))

    def test_ip_only_is_not_tcp(self) -> None:
        with pytest.raises(ValueError, match="Not a TCP address"):
            tcp_endpoint(Multiaddr("/ip4/10.0.0.1"))


class TestAddressPredicates:
    """ip_of and is_wildcard."""

    def test_ip_of(self) -> None:
        assert ip_of(Multiaddr("/ip4/10.1.2.3/tcp/1")) == ipaddress.ip_address("10.1.2.3")

    def test_wildcards(self) -> None:
        assert is_wildcard(Multiaddr("/ip4/0.0.0.0/tcp/0"))
        assert is_wildcard(Multiaddr("/ip6/::/tcp/0"))
        assert not is_wildcard(Multiaddr("/ip4/127.0.0.1/tcp/0"))

    def test_from_socket(self) -> None:
        assert str(from_socket(socket.AF_INET6, "::1", 5)) == "/ip6/::1/tcp/5"


class TestResolveUnspecified:
    """Wildcard listen addresses become concrete interface addresses."""

    def test_concrete_addresses_are_kept(self) -> None:
        addr = Multiaddr("/ip4/10.0.0.1/tcp/4001")
        assert resolve_unspecified([addr]) == [addr]

    def test_ip4_wildcard_includes_loopback(self) -> None:
        resolved = resolve_unspecified([Multiaddr("/ip4/0.0.0.0/tcp/4001")])
        assert Multiaddr("/ip4/127.0.0.1/tcp/4001") in resolved
        assert all(not is_wildcard(addr) for addr in resolved)
        assert all(str(addr).endswith("/tcp/4001") for addr in resolved)

    def test_duplicates_removed(self) -> None:
        addr = Multiaddr("/ip4/127.0.0.1/tcp/4001")
        assert resolve_unspecified([addr, addr]) == [addr]
