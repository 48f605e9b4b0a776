"""
Runtime tunables for the host.

These are not options in their own right: the `host_settings` option
installs a whole `HostSettings` value, and the assembler falls back to
the defaults below when none was given.
"""

from __future__ import annotations

import os
from typing import Final, Mapping

from pydantic import Field

from .base import StrictBaseModel

DIAL_TIMEOUT_SECS: Final = 15.0
"""Time allowed for one outbound dial, upgrade included."""

NEGOTIATION_TIMEOUT_SECS: Final = 10.0
"""Time allowed for a connection upgrade (security plus muxer)."""

MAX_INBOUND_UPGRADES: Final = 64
"""Inbound connections that may be upgrading at the same time."""

DIAL_TIMEOUT_ENV: Final = "P2P_HOST_DIAL_TIMEOUT"
"""Environment variable overriding the dial timeout (seconds)."""


class HostSettings(StrictBaseModel):
    """Timeouts and limits applied by the network and the upgrader."""

    dial_timeout_secs: float = Field(default=DIAL_TIMEOUT_SECS, gt=0)
    """Timeout for a single outbound dial."""

    negotiation_timeout_secs: float = Field(default=NEGOTIATION_TIMEOUT_SECS, gt=0)
    """Timeout for upgrading one connection."""

    max_inbound_upgrades: int = Field(default=MAX_INBOUND_UPGRADES, gt=0)
    """Concurrent inbound upgrades before new connections wait."""

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> HostSettings:
        """
        Build settings, honoring P2P_HOST_DIAL_TIMEOUT when set.

        Raises:
            ValueError: If the variable is not a positive number.
        """
        env = os.environ if environ is None else environ
        raw = env.get(DIAL_TIMEOUT_ENV)
        if raw is None:
            return cls()
        return cls(dial_timeout_secs=float(raw))
