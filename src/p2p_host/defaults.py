"""
Default subsystems and the fallback policy.

Each default is an ordinary option. The table pairs each with a
predicate saying when the caller left that slot unconfigured.
`FALLBACK_DEFAULTS` applies only the entries whose predicate holds,
checking each against the config as already updated by earlier entries;
`DEFAULTS` applies all of them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Final

from .config.config import Config, Option
from .identity import IdentityKeypair
from .muxer.mplex import MPLEX_PROTOCOL_ID, MplexTransport
from .muxer.yamux import YAMUX_PROTOCOL_ID, YamuxTransport
from .options import chain_options, identity, listen_addr_strings, muxer, peerstore, security, transport
from .peerstore import MemoryPeerstore
from .security.noise import NOISE_PROTOCOL_ID, NoiseTransport
from .transport.tcp import TcpTransport

logger = logging.getLogger(__name__)

DEFAULT_LISTEN_ADDR_STRINGS: Final = ("/ip4/0.0.0.0/tcp/0", "/ip6/::/tcp/0")
"""Every interface, ephemeral port, on both IP versions."""

DEFAULT_LISTEN_ADDRS: Final[Option] = listen_addr_strings(*DEFAULT_LISTEN_ADDR_STRINGS)
"""Listen on all IPv4 and IPv6 interfaces."""

DEFAULT_TRANSPORTS: Final[Option] = chain_options(transport(TcpTransport))
"""TCP."""

DEFAULT_MUXERS: Final[Option] = chain_options(
    muxer(YAMUX_PROTOCOL_ID, YamuxTransport),
    muxer(MPLEX_PROTOCOL_ID, MplexTransport),
)
"""yamux, then mplex."""

DEFAULT_SECURITY: Final[Option] = security(NOISE_PROTOCOL_ID, NoiseTransport)
"""Noise."""


def _random_identity(cfg: Config) -> None:
    cfg.apply(identity(IdentityKeypair.generate()))


RANDOM_IDENTITY: Final[Option] = _random_identity
"""A freshly generated secp256k1 identity."""


def _default_peerstore(cfg: Config) -> None:
    cfg.apply(peerstore(MemoryPeerstore()))


DEFAULT_PEERSTORE: Final[Option] = _default_peerstore
"""An empty in-memory peerstore."""


@dataclass(frozen=True, slots=True)
class DefaultEntry:
    """One row of the default policy."""

    name: str
    """Label used in debug logging."""

    fallback: Callable[[Config], bool]
    """True when the slot was left unconfigured."""

    option: Option
    """The default to apply."""


DEFAULT_TABLE: Final[tuple[DefaultEntry, ...]] = (
    # Only listen by default when the caller picked neither transports nor
    # addresses: custom transports may not understand the TCP defaults.
    DefaultEntry(
        "listen addresses",
        lambda cfg: cfg.transports is None and cfg.listen_addrs is None,
        DEFAULT_LISTEN_ADDRS,
    ),
    DefaultEntry("transports", lambda cfg: cfg.transports is None, DEFAULT_TRANSPORTS),
    DefaultEntry("muxers", lambda cfg: cfg.muxers is None, DEFAULT_MUXERS),
    DefaultEntry(
        "security",
        lambda cfg: not cfg.insecure and cfg.security_transports is None,
        DEFAULT_SECURITY,
    ),
    DefaultEntry("identity", lambda cfg: cfg.peer_key is None, RANDOM_IDENTITY),
    DefaultEntry("peerstore", lambda cfg: cfg.peerstore is None, DEFAULT_PEERSTORE),
)
"""The default policy, in application order."""


def _defaults(cfg: Config) -> None:
    for entry in DEFAULT_TABLE:
        entry.option(cfg)


DEFAULTS: Final[Option] = _defaults
"""
Apply every default unconditionally.

Fails if an identity or peerstore is already set, or if security is
disabled.
"""


def _fallback_defaults(cfg: Config) -> None:
    for entry in DEFAULT_TABLE:
        if entry.fallback(cfg):
            logger.debug("Applying default %s", entry.name)
            entry.option(cfg)


FALLBACK_DEFAULTS: Final[Option] = _fallback_defaults
"""Apply the defaults for every slot left unconfigured."""
