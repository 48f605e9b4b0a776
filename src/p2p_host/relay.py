"""Circuit relay options."""

from enum import Enum


class RelayOpt(Enum):
    """Roles a host may take in circuit relay."""

    HOP = "hop"
    """Relay traffic for other peers."""

    ACTIVE = "active"
    """Dial the destination when relaying (implies HOP)."""

    DISCOVERY = "discovery"
    """Look for relays to use on our behalf."""
