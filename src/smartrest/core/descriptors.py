"""Descriptor data model (source of truth).

Compile time produces ``ServiceDescriptor`` → ``MethodDescriptor`` →
``RouteEntry`` values collected in a ``RouteTable``; request time produces a
``NegotiatedRequest`` and finally an ``InvocationDescriptor``.

Objects
~~~~~~~
``AccessLevel``
    IntEnum ``PUBLIC=0, HYBRID=1, PROTECTED=2, PROTECTED_METHOD=3``. Higher
    levels need authentication; ``HYBRID`` proceeds unauthenticated when
    authentication fails; ``PROTECTED_METHOD`` is also invoked bypassing the
    ``@restricted`` visibility guard.

``ParameterDescriptor`` / ``MethodDescriptor`` / ``ServiceDescriptor``
    Frozen dataclasses. ``ParameterDescriptor.type_tag`` is ``"primitive"``,
    ``"array"`` or a class name. ``MethodDescriptor.metadata`` holds doc and
    declaration metadata, with per-parameter sub-maps under ``"param"``.

``RouteEntry``
    Verb, pattern, owning service id, method descriptor and positional
    defaults. Several entries may share one method.

``RouteTable``
    Verb → ordered list of entries. ``add`` keeps insertion order and replaces a
    duplicate pattern in place (first position kept); literal patterns are
    duplicates regardless of case. ``to_json``/``from_json``
    round-trip through pydantic; output is deterministic for identical input.

Invariants
~~~~~~~~~~
- Descriptors are never mutated after compilation; the table is frozen on
  first dispatch (``freeze``) and ``add`` then raises ``RuntimeError``.
- ``RouteEntry.arguments`` maps parameter name → position, derived from the
  method descriptor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from functools import cached_property
from typing import Any, Dict, List, Optional, Tuple

from pydantic import TypeAdapter

__all__ = [
    "AccessLevel",
    "ParameterDescriptor",
    "MethodDescriptor",
    "ServiceDescriptor",
    "RouteEntry",
    "RouteTable",
    "NegotiatedRequest",
    "InvocationDescriptor",
    "REQUEST_DATA",
]

logger = logging.getLogger("smartrest.compiler")

REQUEST_DATA = "request_data"


class AccessLevel(IntEnum):
    PUBLIC = 0
    HYBRID = 1
    PROTECTED = 2
    PROTECTED_METHOD = 3


@dataclass(frozen=True)
class ParameterDescriptor:
    """One method parameter as seen by the router."""

    name: str
    position: int
    required: bool = True
    default: Any = None
    type_tag: str = "primitive"
    keyword_only: bool = False

    @property
    def is_primitive(self) -> bool:
        return self.type_tag == "primitive"

    @property
    def is_request_data(self) -> bool:
        return self.name == REQUEST_DATA


@dataclass(frozen=True)
class MethodDescriptor:
    """Routing metadata for a single service method."""

    name: str
    parameters: Tuple[ParameterDescriptor, ...] = ()
    access_level: AccessLevel = AccessLevel.PUBLIC
    metadata: Dict[str, Any] = field(default_factory=dict)

    def parameter(self, name: str) -> Optional[ParameterDescriptor]:
        for param in self.parameters:
            if param.name == name:
                return param
        return None

    def param_metadata(self, name: str) -> Dict[str, Any]:
        return dict((self.metadata.get("param") or {}).get(name) or {})


@dataclass(frozen=True)
class ServiceDescriptor:
    """A registered service class and its routable methods."""

    class_id: str
    resource_path: str
    methods: Tuple[MethodDescriptor, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RouteEntry:
    verb: str
    pattern: str
    service: str
    method: MethodDescriptor
    defaults: Tuple[Any, ...] = ()

    @property
    def arguments(self) -> Dict[str, int]:
        return {param.name: param.position for param in self.method.parameters}

    @property
    def access_level(self) -> AccessLevel:
        return self.method.access_level


@dataclass
class RouteTable:
    """Verb → ordered route entries."""

    routes: Dict[str, List[RouteEntry]] = field(default_factory=dict)
    frozen: bool = field(default=False, compare=False, repr=False)

    def add(self, entry: RouteEntry) -> None:
        if self.frozen:
            raise RuntimeError("Route table is frozen; register services before dispatching")
        bucket = self.routes.setdefault(entry.verb, [])
        for index, existing in enumerate(bucket):
            if _same_pattern(existing.pattern, entry.pattern):
                logger.debug("Replacing %s %r (%s)", entry.verb, entry.pattern, entry.method.name)
                bucket[index] = entry
                return
        logger.debug("Adding %s %r -> %s.%s", entry.verb, entry.pattern, entry.service, entry.method.name)
        bucket.append(entry)

    def entries(self, verb: str) -> List[RouteEntry]:
        return list(self.routes.get(verb.upper(), ()))

    def freeze(self) -> "RouteTable":
        self.frozen = True
        return self

    @property
    def verbs(self) -> Tuple[str, ...]:
        return tuple(self.routes)

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self.routes.values())

    def describe(self) -> List[Tuple[str, str, str]]:
        """Return ``(verb, pattern, "service.method")`` rows in match order."""
        return [
            (verb, entry.pattern, f"{entry.service}.{entry.method.name}")
            for verb, bucket in self.routes.items()
            for entry in bucket
        ]

    def to_json(self) -> bytes:
        return _table_adapter().dump_json(self, exclude={"frozen"})

    @classmethod
    def from_json(cls, data: bytes) -> "RouteTable":
        return _table_adapter().validate_json(data)


def _same_pattern(left: str, right: str) -> bool:
    # literal patterns match case-insensitively, so they collide the same way
    if "{" in left or ":" in left or "{" in right or ":" in right:
        return left == right
    return left.lower() == right.lower()


_ADAPTER: Optional[TypeAdapter] = None


def _table_adapter() -> TypeAdapter:
    global _ADAPTER
    if _ADAPTER is None:
        _ADAPTER = TypeAdapter(RouteTable)
    return _ADAPTER


@dataclass
class NegotiatedRequest:
    """Formats and parameters resolved for one request."""

    request_format: Any
    response_format: Any
    body: Dict[str, Any] = field(default_factory=dict)
    payload: Any = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    vary_accept: bool = False


@dataclass
class InvocationDescriptor:
    """Fully bound call handed to the executor; built fresh per request."""

    service: str
    method: MethodDescriptor
    arguments: List[Any]
    access_level: AccessLevel
    metadata: Dict[str, Any] = field(default_factory=dict)
    route: Optional[RouteEntry] = None
    missing: Tuple[str, ...] = ()

    @cached_property
    def key(self) -> str:
        """Plugin/config key: ``<ClassName>.<method>``."""
        class_name = self.service.rsplit(":", 1)[-1].rsplit(".", 1)[-1]
        return f"{class_name}.{self.method.name}"
