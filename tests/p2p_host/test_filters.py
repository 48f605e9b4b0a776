"""Tests for IP-range address filters."""

from __future__ import annotations

import ipaddress

from multiaddr import Multiaddr

from p2p_host.filters import AddressFilters


class TestAddressFilters:
    """Blocking and unblocking networks."""

    def test_empty_blocks_nothing(self) -> None:
        assert not AddressFilters().addr_blocked(Multiaddr("/ip4/10.0.0.1/tcp/1"))

    def test_blocks_inside_network(self) -> None:
        filters = AddressFilters()
        filters.add_dial_filter("10.0.0.0/8")
        assert filters.addr_blocked(Multiaddr("/ip4/10.200.0.1/tcp/1"))
        assert not filters.addr_blocked(Multiaddr("/ip4/11.0.0.1/tcp/1"))

    def test_ip6(self) -> None:
        filters = AddressFilters()
        filters.add_dial_filter(ipaddress.ip_network("fe80::/10"))
        assert filters.addr_blocked(Multiaddr("/ip6/fe80::1/tcp/1"))
        assert not filters.addr_blocked(Multiaddr("/ip4/10.0.0.1/tcp/1"))

    def test_host_bits_ignored(self) -> None:
        filters = AddressFilters()
        filters.add_dial_filter("192.168.1.77/24")
        assert filters.filters() == [ipaddress.ip_network("192.168.1.0/24")]

    def test_duplicates_collapse(self) -> None:
        filters = AddressFilters()
        filters.add_dial_filter("10.0.0.0/8")
        filters.add_dial_filter("10.0.0.0/8")
        assert len(filters.filters()) == 1

    def test_remove(self) -> None:
        filters = AddressFilters()
        filters.add_dial_filter("10.0.0.0/8")
        assert filters.remove_dial_filter("10.0.0.0/8")
        assert not filters.remove_dial_filter("10.0.0.0/8")
        assert not filters.addr_blocked(Multiaddr("/ip4/10.0.0.1/tcp/1"))
