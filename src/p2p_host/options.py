"""
Options for building a host.

Each function here returns an `Option`: a callable applied to a
`Config` that either records one subsystem choice or raises a
`ConfigError`. Single-value options fail if their slot is already set;
list options append. An option checks everything before mutating, so a
failed option leaves the config untouched.

Constructors passed to `transport`, `security`, `muxer` and
`nat_manager` are validated immediately. A bad constructor does not
raise here: the returned option raises when applied, with the location
of the call that registered it.
"""

from __future__ import annotations

import ipaddress
from typing import Any, Final

from multiaddr import Multiaddr

from .addresses import AddrsFactory, parse_multiaddr
from .config.config import Config, MuxerEntry, Option, SecurityEntry
from .config.constructor import (
    muxer_constructor,
    nat_manager_constructor,
    security_constructor,
    transport_constructor,
)
from .config.errors import (
    CardinalityError,
    ConfigError,
    ConstructorShapeError,
    MutualExclusionError,
    call_site,
)
from .connmgr import ConnManager
from .filters import AddressFilters, IPNetwork
from .identity import IdentityKeypair
from .metrics import BandwidthReporter
from .nat import new_nat_manager
from .peerstore import Peerstore
from .pnet import Protector, ProtectorError, PskProtector
from .relay import RelayOpt
from .settings import HostSettings

INSECURE_WITH_SECURITY: Final = (
    "cannot use security transports with an insecure libp2p configuration"
)
"""Message for combining security transports with NO_SECURITY."""


def _deferred_failure(error: ConstructorShapeError, location: str) -> Option:
    def option(cfg: Config) -> None:
        raise ConstructorShapeError(error.message, location=location) from error

    return option


def chain_options(*opts: Option) -> Option:
    """Combine options into one, applied in order."""

    def option(cfg: Config) -> None:
        cfg.apply(*opts)

    return option


def listen_addr_strings(*addrs: str) -> Option:
    """Listen on the given multiaddr strings."""

    def option(cfg: Config) -> None:
        parsed: list[Multiaddr] = []
        for addr in addrs:
            try:
                parsed.append(parse_multiaddr(addr))
            except ValueError as e:
                raise ConfigError(f"invalid listen address {addr!r}: {e}") from e
        cfg.listen_addrs = [*(cfg.listen_addrs or []), *parsed]

    return option


def listen_addrs(*addrs: Multiaddr) -> Option:
    """Listen on the given multiaddrs."""

    def option(cfg: Config) -> None:
        cfg.listen_addrs = [*(cfg.listen_addrs or []), *addrs]

    return option


def transport(constructor: Any) -> Option:
    """
    Add a transport.

    The constructor may request any host dependency, the upgrader
    included. Transports are tried in the order they were added.
    """
    location = call_site()
    try:
        adapted = transport_constructor(constructor)
    except ConstructorShapeError as e:
        return _deferred_failure(e, location)

    def option(cfg: Config) -> None:
        cfg.transports = [*(cfg.transports or []), adapted]

    return option


def security(protocol_id: str, constructor: Any) -> Option:
    """Add a security transport under protocol_id."""
    location = call_site()
    try:
        adapted = security_constructor(constructor)
    except ConstructorShapeError as e:
        return _deferred_failure(e, location)

    def option(cfg: Config) -> None:
        if cfg.insecure:
            raise MutualExclusionError(INSECURE_WITH_SECURITY)
        entry = SecurityEntry(protocol_id, adapted)
        cfg.security_transports = [*(cfg.security_transports or []), entry]

    return option


def muxer(protocol_id: str, constructor: Any) -> Option:
    """Add a stream muxer under protocol_id."""
    location = call_site()
    try:
        adapted = muxer_constructor(constructor)
    except ConstructorShapeError as e:
        return _deferred_failure(e, location)

    def option(cfg: Config) -> None:
        cfg.muxers = [*(cfg.muxers or []), MuxerEntry(protocol_id, adapted)]

    return option


def _no_security(cfg: Config) -> None:
    if cfg.security_transports:
        raise MutualExclusionError(INSECURE_WITH_SECURITY)
    cfg.insecure = True


NO_SECURITY: Final[Option] = _no_security
"""
Disable security.

Connections still exchange public keys (/plaintext/2.0.0) but nothing is
encrypted or authenticated. Only for testing.
"""


def _no_listen_addrs(cfg: Config) -> None:
    cfg.listen_addrs = []


NO_LISTEN_ADDRS: Final[Option] = _no_listen_addrs
"""Listen on nothing, suppressing the default listen addresses."""


def _no_transports(cfg: Config) -> None:
    cfg.transports = []


NO_TRANSPORTS: Final[Option] = _no_transports
"""Configure no transports. The host can neither dial nor listen."""


def identity(key: IdentityKeypair) -> Option:
    def option(cfg: Config) -> None:
        if cfg.peer_key is not None:
            raise CardinalityError("identities")
        cfg.peer_key = key

    return option


def peerstore(store: Peerstore) -> Option:
    def option(cfg: Config) -> None:
        if cfg.peerstore is not None:
            raise CardinalityError("peerstores")
        cfg.peerstore = store

    return option


def private_network(psk: bytes | Protector) -> Option:
    """
    Join a private network.

    Accepts a 32-byte pre-shared key or a ready protector.
    """

    def option(cfg: Config) -> None:
        if cfg.protector is not None:
            raise CardinalityError("private network protectors")
        if isinstance(psk, bytes):
            try:
                cfg.protector = PskProtector(psk)
            except ProtectorError as e:
                raise ConfigError(f"invalid private network key: {e}") from e
        else:
            cfg.protector = psk

    return option


def bandwidth_reporter(reporter: BandwidthReporter) -> Option:
    def option(cfg: Config) -> None:
        if cfg.reporter is not None:
            raise CardinalityError("bandwidth reporters")
        cfg.reporter = reporter

    return option


def connection_manager(manager: ConnManager) -> Option:
    def option(cfg: Config) -> None:
        if cfg.conn_manager is not None:
            raise CardinalityError("connection managers")
        cfg.conn_manager = manager

    return option


def addrs_factory(factory: AddrsFactory) -> Option:
    """Rewrite the addresses the host advertises."""

    def option(cfg: Config) -> None:
        if cfg.addrs_factory is not None:
            raise CardinalityError("address factories")
        cfg.addrs_factory = factory

    return option


def enable_relay(*opts: RelayOpt) -> Option:
    """Enable circuit relay with the given roles."""

    def option(cfg: Config) -> None:
        cfg.relay = True
        cfg.relay_opts = list(opts)

    return option


def filter_addresses(*networks: IPNetwork | str) -> Option:
    """Refuse connections to and from the given IP networks."""

    def option(cfg: Config) -> None:
        parsed: list[IPNetwork] = []
        for network in networks:
            try:
                parsed.append(ipaddress.ip_network(network, strict=False))
            except ValueError as e:
                raise ConfigError(f"invalid filter network {network!r}: {e}") from e
        if cfg.filters is None:
            cfg.filters = AddressFilters()
        for network in parsed:
            cfg.filters.add_dial_filter(network)

    return option


def nat_manager(constructor: Any) -> Option:
    """Use a custom NAT manager (instance or constructor)."""
    return _nat_manager(constructor, call_site())


def _nat_manager(constructor: Any, location: str) -> Option:
    try:
        adapted = nat_manager_constructor(constructor)
    except ConstructorShapeError as e:
        return _deferred_failure(e, location)

    def option(cfg: Config) -> None:
        if cfg.nat_manager is not None:
            raise CardinalityError("NAT managers")
        cfg.nat_manager = adapted

    return option


def nat_port_map() -> Option:
    """Use the default NAT manager."""
    return _nat_manager(new_nat_manager, call_site())


def host_settings(settings: HostSettings) -> Option:
    """Override timeouts and limits."""

    def option(cfg: Config) -> None:
        if cfg.settings is not None:
            raise CardinalityError("host settings")
        cfg.settings = settings

    return option
