"""
Constructor adapter.

Transports, security transports, muxers, and NAT managers are supplied
to options either as ready instances or as constructors: a class or a
function whose parameters name the host components it needs. Parameters
are matched by their annotated type against a closed vocabulary:

    IdentityKeypair  -> the host's private key
    PublicKey        -> the host's public key
    PeerId           -> the host's peer ID
    Network          -> the network
    Peerstore        -> the peerstore
    AddressFilters   -> the address filters
    Protector        -> the private network protector (may be None)
    Upgrader         -> the connection upgrader (transports only)

Types are compared by identity; `X | None` is treated as `X`. A
parameter outside the vocabulary is allowed only if it has a default
and is not positional-only. Such a parameter is never injected: the
constructor always sees its default. Functions must annotate their
return type with a class implementing the expected interface.

Shapes are checked when the option is created, so a bad constructor is
reported at the option call site instead of at host construction.
"""

from __future__ import annotations

import inspect
import types
import typing
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Generic, TypeVar

from ..filters import AddressFilters
from ..identity import IdentityKeypair, PeerId, PublicKey
from ..muxer.base import StreamMuxer
from ..nat import NATManager
from ..network import Network
from ..peerstore import Peerstore
from ..pnet import Protector
from ..security.base import SecureTransport
from ..transport.base import Transport
from ..transport.upgrader import Upgrader
from .errors import ConfigError, ConstructorShapeError

T = TypeVar("T")


class Dependency(Enum):
    """Host components a constructor may request."""

    PRIVATE_KEY = auto()
    PUBLIC_KEY = auto()
    PEER_ID = auto()
    NETWORK = auto()
    PEERSTORE = auto()
    ADDRESS_FILTER = auto()
    PROTECTOR = auto()
    UPGRADER = auto()


VOCABULARY: dict[Any, Dependency] = {
    IdentityKeypair: Dependency.PRIVATE_KEY,
    PublicKey: Dependency.PUBLIC_KEY,
    PeerId: Dependency.PEER_ID,
    Network: Dependency.NETWORK,
    Peerstore: Dependency.PEERSTORE,
    AddressFilters: Dependency.ADDRESS_FILTER,
    Protector: Dependency.PROTECTOR,
    Upgrader: Dependency.UPGRADER,
}
"""Annotation type to dependency."""

TRANSPORT_DEPENDENCIES = frozenset(Dependency)
"""Transports may request anything, the upgrader included."""

UPGRADE_DEPENDENCIES = frozenset(Dependency) - {Dependency.UPGRADER}
"""Security transports and muxers are built before the upgrader exists."""


class DependencyRegistry:
    """Values available to constructors at assembly time."""

    def __init__(self) -> None:
        self._values: dict[Dependency, object] = {}

    def provide(self, dependency: Dependency, value: object) -> None:
        self._values[dependency] = value

    def resolve(self, dependency: Dependency) -> object:
        """
        Look up a dependency.

        Raises:
            ConfigError: If it has not been provided.
        """
        try:
            return self._values[dependency]
        except KeyError:
            raise ConfigError(f"{dependency.name.lower()} is not available") from None


@dataclass(frozen=True, slots=True)
class Parameter:
    """One injected parameter."""

    name: str
    dependency: Dependency
    positional_only: bool = False


@dataclass(frozen=True, slots=True)
class Constructor(Generic[T]):
    """A validated way to obtain a subsystem."""

    kind: str
    """Human-readable subsystem kind, e.g. "transport"."""

    target: Any
    """The class, function, or ready instance."""

    interface: type
    """Protocol the result must satisfy."""

    parameters: tuple[Parameter, ...] = ()
    """Injected parameters, in declaration order."""

    is_instance: bool = False
    """True if target is the subsystem itself."""

    @property
    def dependencies(self) -> tuple[Dependency, ...]:
        return tuple(param.dependency for param in self.parameters)

    def build(self, registry: DependencyRegistry) -> T:
        """
        Produce the subsystem, injecting exactly the declared dependencies.

        Raises:
            ConfigError: If a dependency is unavailable or the result does
                not implement the interface.
        """
        if self.is_instance:
            return self.target

        args: list[object] = []
        kwargs: dict[str, object] = {}
        for param in self.parameters:
            value = registry.resolve(param.dependency)
            if param.positional_only:
                args.append(value)
            else:
                kwargs[param.name] = value

        result = self.target(*args, **kwargs)
        if not isinstance(result, self.interface):
            raise ConfigError(
                f"{self.kind} constructor {_name(self.target)} returned "
                f"{type(result).__name__}, not a {self.interface.__name__}"
            )
        return result


def _name(value: object) -> str:
    return getattr(value, "__qualname__", None) or repr(value)


def _unwrap_optional(annotation: Any) -> Any:
    if typing.get_origin(annotation) in (typing.Union, types.UnionType):
        args = [arg for arg in typing.get_args(annotation) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def _lookup(annotation: Any) -> Dependency | None:
    try:
        return VOCABULARY.get(_unwrap_optional(annotation))
    except TypeError:
        # Unhashable annotation: certainly not in the vocabulary.
        return None


def _defines_init(cls: type) -> bool:
    """
    True if a concrete class in the MRO defines __init__.

    Protocol classes install a placeholder __init__ taking *args and
    **kwargs; a class inheriting it takes no dependencies.
    """
    for klass in cls.__mro__:
        if "__init__" in vars(klass):
            return klass is not object and not getattr(klass, "_is_protocol", False)
    return False


def _type_hints(fn: Any, kind: str, name: str) -> dict[str, Any]:
    try:
        return typing.get_type_hints(fn)
    except (NameError, TypeError) as e:
        raise ConstructorShapeError(f"{kind} constructor {name}: cannot resolve annotations: {e}") from e


def _parameters(
    target: Any, hints: dict[str, Any], kind: str, allowed: frozenset[Dependency]
) -> tuple[Parameter, ...]:
    name = _name(target)
    try:
        signature = inspect.signature(target)
    except (TypeError, ValueError) as e:
        raise ConstructorShapeError(f"{kind} constructor {name}: no inspectable signature") from e

    params: list[Parameter] = []
    for param in signature.parameters.values():
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            raise ConstructorShapeError(
                f"{kind} constructor {name}: variadic parameter {param.name!r} is not supported"
            )

        annotation = hints.get(param.name)
        dependency = _lookup(annotation) if annotation is not None else None
        positional_only = param.kind is inspect.Parameter.POSITIONAL_ONLY

        if dependency is None:
            if param.default is not inspect.Parameter.empty and not positional_only:
                continue
            described = _name(annotation) if annotation is not None else "no annotation"
            raise ConstructorShapeError(
                f"{kind} constructor {name}: parameter {param.name!r} ({described}) "
                "is not an injectable dependency"
            )
        if dependency not in allowed:
            raise ConstructorShapeError(
                f"{kind} constructor {name}: cannot depend on {dependency.name.lower()}"
            )
        params.append(Parameter(param.name, dependency, positional_only))
    return tuple(params)


def adapt(
    value: Any, *, kind: str, interface: type, allowed: frozenset[Dependency]
) -> Constructor[Any]:
    """
    Validate value as an instance or constructor of interface.

    Raises:
        ConstructorShapeError: If value cannot produce an interface
            implementation from the allowed dependencies.
    """
    name = _name(value)

    if isinstance(value, type):
        if not issubclass(value, interface):
            raise ConstructorShapeError(f"{kind} {name} does not implement {interface.__name__}")
        if not _defines_init(value):
            return Constructor(kind, value, interface)
        hints = _type_hints(value.__init__, kind, name)
        return Constructor(kind, value, interface, _parameters(value, hints, kind, allowed))

    if isinstance(value, interface):
        return Constructor(kind, value, interface, is_instance=True)

    if callable(value):
        hints = _type_hints(value, kind, name)
        returns = hints.get("return")
        if returns is None:
            raise ConstructorShapeError(
                f"{kind} constructor {name} has no return annotation; "
                f"expected a {interface.__name__}"
            )
        if not isinstance(returns, type) or not issubclass(returns, interface):
            raise ConstructorShapeError(
                f"{kind} constructor {name} returns {_name(returns)}, "
                f"not a {interface.__name__}"
            )
        return Constructor(kind, value, interface, _parameters(value, hints, kind, allowed))

    raise ConstructorShapeError(
        f"expected a {interface.__name__} or a constructor for one, got {type(value).__name__}"
    )


def transport_constructor(value: Any) -> Constructor[Transport]:
    return adapt(value, kind="transport", interface=Transport, allowed=TRANSPORT_DEPENDENCIES)


def security_constructor(value: Any) -> Constructor[SecureTransport]:
    return adapt(
        value, kind="security transport", interface=SecureTransport, allowed=UPGRADE_DEPENDENCIES
    )


def muxer_constructor(value: Any) -> Constructor[StreamMuxer]:
    return adapt(value, kind="muxer", interface=StreamMuxer, allowed=UPGRADE_DEPENDENCIES)


def nat_manager_constructor(value: Any) -> Constructor[NATManager]:
    return adapt(value, kind="NAT manager", interface=NATManager, allowed=UPGRADE_DEPENDENCIES)
