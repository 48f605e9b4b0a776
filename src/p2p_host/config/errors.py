"""
Configuration errors.

Errors raised while applying an option may carry the source location of
the call that registered the offending value, so a failure surfacing at
host construction points back at user code.
"""

from __future__ import annotations

import inspect


class ConfigError(Exception):
    """An option could not be applied or the configuration is unusable."""

    def __init__(self, message: str, *, location: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        """"file:line" of the registration that caused the error, if known."""

    def __str__(self) -> str:
        if self.location is None:
            return self.message
        return f"{self.location}: {self.message}"


class CardinalityError(ConfigError):
    """A single-value slot was set twice."""

    def __init__(self, slot: str) -> None:
        super().__init__(f"cannot specify multiple {slot}")
        self.slot = slot


class MutualExclusionError(ConfigError):
    """Two options that cannot be combined were both given."""


class ConstructorShapeError(ConfigError):
    """A subsystem constructor has a shape the host cannot satisfy."""


def call_site(depth: int = 1) -> str:
    """
    Return "file:line" of a caller.

    With depth=1 this is the caller of the function that calls call_site.
    """
    frame = inspect.currentframe()
    try:
        for _ in range(depth + 1):
            if frame is None or frame.f_back is None:
                return "<unknown>"
            frame = frame.f_back
        assert frame is not None
        return f"{frame.f_code.co_filename}:{frame.f_lineno}"
    finally:
        del frame
