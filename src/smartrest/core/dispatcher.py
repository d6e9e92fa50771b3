"""Dispatcher / URL matcher (source of truth).

``Dispatcher(table)`` resolves ``(verb, path)`` against a compiled
``RouteTable`` and binds request values to method arguments.

Normalisation (``Dispatcher.normalize``)
----------------------------------------
Query string stripped, percent-decoding applied, leading/trailing ``/``
removed, recognised format extensions removed from every segment. When an API
version is configured, a leading ``v<N>`` segment with
``minimum <= N <= api_version`` is consumed and reported as the requested
version; otherwise the requested version is ``api_version`` itself.

Matching (``Dispatcher.match``)
-------------------------------
Entries of the verb are tried in insertion order; the first structural match
wins.

- Literal patterns compare case-insensitively.
- ``{name}`` and ``:name`` placeholders become ``(?P<name>[^/]+)``; literal
  text is escaped; the whole path must match, case-insensitively. Captures are
  kept only for names that are parameters of the target method.
- No match raises ``RouteNotFound``.

Binding (``Dispatcher.bind``)
-----------------------------
Values merge with increasing precedence: parameter defaults, query
parameters, decoded body fields (body verbs only, mapping bodies only), path
captures. ``request_data`` receives the whole decoded body as sent, whatever
its shape. Each parameter is bound by name; a required
parameter with no value is bound to ``None`` and listed in
``InvocationDescriptor.missing`` for validation to report.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Mapping, Optional, Pattern, Tuple
from urllib.parse import unquote, urlsplit

from ..errors import RouteNotFound
from ..http import BODY_VERBS
from .descriptors import InvocationDescriptor, NegotiatedRequest, RouteEntry, RouteTable
from .negotiation import strip_extensions

__all__ = ["Dispatcher", "RouteMatch", "compile_pattern"]

_PLACEHOLDER_RE = re.compile(r"\{(?P<brace>\w+)\}|:(?P<colon>\w+)")
_VERSION_RE = re.compile(r"^v(?P<version>\d+)(?:/|$)", re.IGNORECASE)


def has_placeholders(pattern: str) -> bool:
    return "{" in pattern or ":" in pattern


@lru_cache(maxsize=1024)
def compile_pattern(pattern: str) -> Pattern[str]:
    """Translate a route pattern into an anchored, case-insensitive regex."""
    parts: List[str] = []
    position = 0
    for match in _PLACEHOLDER_RE.finditer(pattern):
        parts.append(re.escape(pattern[position : match.start()]))
        name = match.group("brace") or match.group("colon")
        parts.append(f"(?P<{name}>[^/]+)")
        position = match.end()
    parts.append(re.escape(pattern[position:]))
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE)


@dataclass
class RouteMatch:
    entry: RouteEntry
    captures: Dict[str, str] = field(default_factory=dict)


class Dispatcher:
    """Maps normalised request paths onto route entries."""

    __slots__ = ("table",)

    def __init__(self, table: RouteTable) -> None:
        self.table = table

    @staticmethod
    def normalize(
        uri: str,
        *,
        extensions: Iterable[str] = (),
        api_version: Optional[int] = None,
        minimum: int = 1,
    ) -> Tuple[str, Optional[int]]:
        """Return ``(path, requested_version)`` for a raw request URI."""
        path = unquote(urlsplit(uri).path).strip("/")
        path = strip_extensions(path, extensions)
        requested = api_version
        if api_version is not None:
            match = _VERSION_RE.match(path)
            if match and minimum <= int(match.group("version")) <= api_version:
                requested = int(match.group("version"))
                path = path[match.end() :].strip("/")
        return path, requested

    def match(self, verb: str, path: str) -> RouteMatch:
        verb = verb.upper()
        lowered = path.lower()
        for entry in self.table.entries(verb):
            if not has_placeholders(entry.pattern):
                if entry.pattern.lower() == lowered:
                    return RouteMatch(entry)
                continue
            found = compile_pattern(entry.pattern).match(path)
            if found is None:
                continue
            known = entry.arguments
            captures = {
                name: value
                for name, value in found.groupdict().items()
                if name in known and value is not None
            }
            return RouteMatch(entry, captures)
        raise RouteNotFound(f"No route for {verb} /{path}")

    @staticmethod
    def merge(
        match: RouteMatch,
        verb: str,
        body: Mapping[str, Any],
        query: Mapping[str, Any],
    ) -> Dict[str, Any]:
        """Merge request values for ``match``; later sources win."""
        merged: Dict[str, Any] = {}
        for param in match.entry.method.parameters:
            if not param.required:
                merged[param.name] = param.default
        merged.update(query)
        if verb.upper() in BODY_VERBS:
            merged.update(body)
        merged.update(match.captures)
        return merged

    def bind(
        self,
        match: RouteMatch,
        negotiated: NegotiatedRequest,
        verb: str,
        query: Mapping[str, Any],
    ) -> InvocationDescriptor:
        merged = self.merge(match, verb, negotiated.body, query)
        negotiated.parameters = merged
        method = match.entry.method
        arguments: List[Any] = []
        missing: List[str] = []
        for param in method.parameters:
            if param.is_request_data:
                payload = negotiated.payload
                arguments.append(dict(negotiated.body) if payload is None else payload)
            elif param.name in merged:
                arguments.append(merged[param.name])
            elif param.required:
                arguments.append(None)
                missing.append(param.name)
            else:
                arguments.append(param.default)
        return InvocationDescriptor(
            service=match.entry.service,
            method=method,
            arguments=arguments,
            access_level=method.access_level,
            metadata=dict(method.metadata),
            route=match.entry,
            missing=tuple(missing),
        )

    def resolve(
        self, verb: str, path: str, negotiated: NegotiatedRequest, query: Mapping[str, Any]
    ) -> InvocationDescriptor:
        """``match`` followed by ``bind``."""
        return self.bind(self.match(verb, path), negotiated, verb, query)
