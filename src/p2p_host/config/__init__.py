"""
Host configuration engine.

Options mutate a `Config`; `Config.new_node` assembles the host.
"""

from .config import Config, MuxerEntry, Option, SecurityEntry
from .constructor import (
    Constructor,
    Dependency,
    DependencyRegistry,
    muxer_constructor,
    nat_manager_constructor,
    security_constructor,
    transport_constructor,
)
from .errors import CardinalityError, ConfigError, ConstructorShapeError, MutualExclusionError

__all__ = [
    "CardinalityError",
    "Config",
    "ConfigError",
    "Constructor",
    "ConstructorShapeError",
    "Dependency",
    "DependencyRegistry",
    "MutualExclusionError",
    "MuxerEntry",
    "Option",
    "SecurityEntry",
    "muxer_constructor",
    "nat_manager_constructor",
    "security_constructor",
    "transport_constructor",
]
