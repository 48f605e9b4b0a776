"""
Build peer-to-peer hosts from composable options.

    host = await p2p_host.new(
        p2p_host.listen_addr_strings("/ip4/127.0.0.1/tcp/0"),
        p2p_host.NO_SECURITY,
    )

`new` fills in every subsystem the options left unconfigured (see
`p2p_host.defaults`); `new_without_defaults` does not.
"""

from .config import CardinalityError, Config, ConfigError, ConstructorShapeError, MutualExclusionError, Option
from .defaults import (
    DEFAULT_LISTEN_ADDRS,
    DEFAULT_MUXERS,
    DEFAULT_PEERSTORE,
    DEFAULT_SECURITY,
    DEFAULT_TRANSPORTS,
    DEFAULTS,
    FALLBACK_DEFAULTS,
    RANDOM_IDENTITY,
)
from .host import BasicHost
from .options import (
    NO_LISTEN_ADDRS,
    NO_SECURITY,
    NO_TRANSPORTS,
    addrs_factory,
    bandwidth_reporter,
    chain_options,
    connection_manager,
    enable_relay,
    filter_addresses,
    host_settings,
    identity,
    listen_addr_strings,
    listen_addrs,
    muxer,
    nat_manager,
    nat_port_map,
    peerstore,
    private_network,
    security,
    transport,
)


async def new(*opts: Option) -> BasicHost:
    """
    Build a host, filling unconfigured subsystems with defaults.

    Raises:
        ConfigError: If an option fails or the config cannot produce a host.
    """
    return await new_without_defaults(*opts, FALLBACK_DEFAULTS)


async def new_without_defaults(*opts: Option) -> BasicHost:
    """
    Build a host from exactly the given options.

    Every subsystem the host needs must be configured explicitly.
    """
    cfg = Config()
    cfg.apply(*opts)
    return await cfg.new_node()


__all__ = [
    "BasicHost",
    "CardinalityError",
    "Config",
    "ConfigError",
    "ConstructorShapeError",
    "DEFAULTS",
    "DEFAULT_LISTEN_ADDRS",
    "DEFAULT_MUXERS",
    "DEFAULT_PEERSTORE",
    "DEFAULT_SECURITY",
    "DEFAULT_TRANSPORTS",
    "FALLBACK_DEFAULTS",
    "MutualExclusionError",
    "NO_LISTEN_ADDRS",
    "NO_SECURITY",
    "NO_TRANSPORTS",
    "Option",
    "RANDOM_IDENTITY",
    "addrs_factory",
    "bandwidth_reporter",
    "chain_options",
    "connection_manager",
    "enable_relay",
    "filter_addresses",
    "host_settings",
    "identity",
    "listen_addr_strings",
    "listen_addrs",
    "muxer",
    "nat_manager",
    "nat_port_map",
    "new",
    "new_without_defaults",
    "peerstore",
    "private_network",
    "security",
    "transport",
]
