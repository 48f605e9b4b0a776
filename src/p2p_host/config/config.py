"""
The host configuration aggregate and the host assembler.

A `Config` starts empty and is filled in by options. Slots left as
`None` are unset; the fallback defaults fill only those. `new_node`
consumes the finished config and builds a running host.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from multiaddr import Multiaddr

from ..addresses import AddrsFactory
from ..connmgr import ConnManager, NullConnManager
from ..filters import AddressFilters
from ..host import BasicHost
from ..identity import IdentityKeypair
from ..metrics import BandwidthReporter
from ..muxer.base import StreamMuxer
from ..nat import NATManager
from ..network import Network
from ..peerstore import Peerstore
from ..pnet import Protector
from ..relay import RelayOpt
from ..security.base import SecureTransport
from ..security.plaintext import PLAINTEXT_PROTOCOL_ID, PlaintextTransport
from ..settings import HostSettings
from ..transport.base import Transport
from ..transport.upgrader import Upgrader
from .constructor import Constructor, Dependency, DependencyRegistry
from .errors import ConfigError

logger = logging.getLogger(__name__)

Option = Callable[["Config"], None]
"""Mutates a Config; raises ConfigError if it cannot be applied."""


@dataclass(frozen=True, slots=True)
class MuxerEntry:
    """A stream muxer with its protocol ID."""

    protocol_id: str
    constructor: Constructor[StreamMuxer]


@dataclass(frozen=True, slots=True)
class SecurityEntry:
    """A security transport with its protocol ID."""

    protocol_id: str
    constructor: Constructor[SecureTransport]


@dataclass(slots=True)
class Config:
    """Every subsystem choice for one host."""

    peer_key: IdentityKeypair | None = None
    """The host's identity."""

    listen_addrs: list[Multiaddr] | None = None
    """Addresses to listen on. [] means explicitly none."""

    transports: list[Constructor[Transport]] | None = None
    """Transport constructors. [] means explicitly none."""

    muxers: list[MuxerEntry] | None = None
    """Stream muxers, in preference order."""

    security_transports: list[SecurityEntry] | None = None
    """Security transports, in preference order."""

    insecure: bool = False
    """Run without security (plaintext key exchange only)."""

    peerstore: Peerstore | None = None
    protector: Protector | None = None
    reporter: BandwidthReporter | None = None
    conn_manager: ConnManager | None = None
    addrs_factory: AddrsFactory | None = None

    relay: bool = False
    relay_opts: list[RelayOpt] = field(default_factory=list)

    filters: AddressFilters | None = None
    """Created on first use by the filter option."""

    nat_manager: Constructor[NATManager] | None = None
    settings: HostSettings | None = None

    def apply(self, *opts: Option) -> None:
        """
        Apply options in order.

        Raises:
            ConfigError: From the first failing option; later options are
                not applied.
        """
        for opt in opts:
            opt(self)

    async def new_node(self) -> BasicHost:
        """
        Build and start a host from this config.

        Raises:
            ConfigError: If the config cannot produce a host.
            TransportError: If none of the listen addresses can be used.
        """
        if self.peer_key is None:
            raise ConfigError("no peer key specified")
        if self.peerstore is None:
            raise ConfigError("no peerstore specified")

        peer_key = self.peer_key
        peer_id = peer_key.to_peer_id()
        if not self.insecure:
            self.peerstore.add_private_key(peer_id, peer_key)
            self.peerstore.add_public_key(peer_id, peer_key.public_key())

        settings = self.settings if self.settings is not None else HostSettings()
        filters = self.filters if self.filters is not None else AddressFilters()
        network = Network(peer_id, self.peerstore, filters=filters, settings=settings)

        registry = DependencyRegistry()
        registry.provide(Dependency.PRIVATE_KEY, peer_key)
        registry.provide(Dependency.PUBLIC_KEY, peer_key.public_key())
        registry.provide(Dependency.PEER_ID, peer_id)
        registry.provide(Dependency.NETWORK, network)
        registry.provide(Dependency.PEERSTORE, self.peerstore)
        registry.provide(Dependency.ADDRESS_FILTER, filters)
        registry.provide(Dependency.PROTECTOR, self.protector)

        nat_manager = self.nat_manager.build(registry) if self.nat_manager is not None else None
        host = BasicHost(
            network,
            conn_manager=self.conn_manager if self.conn_manager is not None else NullConnManager(),
            addrs_factory=self.addrs_factory,
            nat_manager=nat_manager,
            reporter=self.reporter,
            relay_opts=self.relay_opts if self.relay else None,
        )

        try:
            upgrader = Upgrader(
                security=self._build_security(registry, peer_key),
                muxers=self._build_muxers(registry),
                protector=self.protector,
                filters=filters,
                negotiation_timeout=settings.negotiation_timeout_secs,
                max_inbound_upgrades=settings.max_inbound_upgrades,
            )
            registry.provide(Dependency.UPGRADER, upgrader)

            for constructor in self.transports or []:
                network.add_transport(constructor.build(registry))

            await network.listen(*(self.listen_addrs or []))
        except BaseException:
            await host.close()
            raise

        logger.debug("Host %s listening on %s", peer_id, network.listen_addresses())
        return host

    def _build_security(
        self, registry: DependencyRegistry, peer_key: IdentityKeypair
    ) -> list[tuple[str, SecureTransport]]:
        if self.insecure:
            return [(PLAINTEXT_PROTOCOL_ID, PlaintextTransport(peer_key))]

        entries = self.security_transports or []
        if not entries:
            raise ConfigError("no security transports configured")
        _check_unique("security transport", [entry.protocol_id for entry in entries])
        return [(entry.protocol_id, entry.constructor.build(registry)) for entry in entries]

    def _build_muxers(self, registry: DependencyRegistry) -> list[tuple[str, StreamMuxer]]:
        entries = self.muxers or []
        if not entries:
            raise ConfigError("no stream muxers configured")
        _check_unique("muxer", [entry.protocol_id for entry in entries])
        return [(entry.protocol_id, entry.constructor.build(registry)) for entry in entries]


def _check_unique(kind: str, protocol_ids: list[str]) -> None:
    seen: set[str] = set()
    for protocol_id in protocol_ids:
        if protocol_id in seen:
            raise ConfigError(f"duplicate {kind}: {protocol_id}")
        seen.add(protocol_id)
