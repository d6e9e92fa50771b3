"""Route compilation (source of truth).

``RouteCompiler(config).compile(service, table)`` appends the routes of one
``ServiceDescriptor`` to a ``RouteTable``. Compilation is a pure function of
(descriptor, config): identical input always yields an identical table.

Access level
------------
``derive_access_level(method)``: restricted visibility → 3; else a truthy
``protected`` annotation → 2; else ``hybrid`` → 1; else 0. The highest signal
wins, so a restricted method annotated ``@hybrid`` is still level 3.

Manual routes
-------------
Each ``url`` entry (``"VERB /path"``) produces exactly one route at
``resource_path + path`` with trailing ``/`` trimmed. Auto routing is skipped
for that method. ``@url-`` removes the method from the table altogether.

Auto routes (``config.auto_routing``)
-------------------------------------
1. Lower-case the method name. A leading verb token (``get``, ``post``, ``put``,
   ``patch``, ``delete``, ``head``, ``options``) optionally followed by ``_``
   is stripped and becomes the verb; otherwise the verb is ``GET``. The rest is
   the path segment; ``index`` (or nothing) mounts at the resource root.
2. Parameters are walked in order, ``request_data`` excluded, each appending a
   ``{name}`` segment.

   - ``smart_auto_routing`` on (ambiguity avoidance): the walk stops at the
     first optional or non-primitive parameter. Only the route that carries
     every walked parameter is emitted (the bare route when the walk is empty).
     Body verbs (POST/PUT/PATCH) also get the bare route, emitted first, because
     their values may come from the body.
   - off: the bare route plus one route per parameter prefix, shortest first.
     Every parameter, optional or not, extends the prefix (``request_data``
     still ends the walk).
3. Routes are inserted in generation order.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import List, Optional, Tuple

from ..config import Defaults
from ..http import BODY_VERBS
from .descriptors import AccessLevel, MethodDescriptor, RouteEntry, RouteTable, ServiceDescriptor
from .docparser import HTTP_VERBS, MalformedAnnotation, parse_url_annotation

__all__ = ["RouteCompiler", "derive_access_level", "split_method_name"]

logger = logging.getLogger("smartrest.compiler")

_VERB_PREFIX_RE = re.compile(
    r"^(?P<verb>" + "|".join(verb.lower() for verb in HTTP_VERBS) + r")_?(?P<rest>.*)$"
)


def derive_access_level(method: MethodDescriptor) -> AccessLevel:
    metadata = method.metadata
    if metadata.get("visibility") == "restricted":
        return AccessLevel.PROTECTED_METHOD
    if metadata.get("protected"):
        return AccessLevel.PROTECTED
    if metadata.get("hybrid"):
        return AccessLevel.HYBRID
    return AccessLevel.PUBLIC


def split_method_name(name: str) -> Tuple[str, str]:
    """Return ``(verb, segment)`` for an auto-routed method name."""
    lowered = name.lower()
    match = _VERB_PREFIX_RE.match(lowered)
    if match:
        verb, segment = match.group("verb").upper(), match.group("rest")
    else:
        verb, segment = "GET", lowered
    if segment == "index":
        segment = ""
    return verb, segment


def _join(resource_path: str, segment: str) -> str:
    if not segment:
        return resource_path.rstrip("/")
    return f"{resource_path}{segment}"


class RouteCompiler:
    """Turns service descriptors into route entries."""

    __slots__ = ("config",)

    def __init__(self, config: Optional[Defaults] = None) -> None:
        self.config = config or Defaults()

    def compile(self, service: ServiceDescriptor, table: Optional[RouteTable] = None) -> RouteTable:
        table = table if table is not None else RouteTable()
        for method in service.methods:
            if method.metadata.get("url-"):
                logger.debug("Skipping %s.%s (@url-)", service.class_id, method.name)
                continue
            method = replace(method, access_level=derive_access_level(method))
            defaults = tuple(param.default for param in method.parameters)
            for verb, pattern in self.patterns(service.resource_path, method):
                table.add(
                    RouteEntry(
                        verb=verb,
                        pattern=pattern,
                        service=service.class_id,
                        method=method,
                        defaults=defaults,
                    )
                )
        return table

    def patterns(self, resource_path: str, method: MethodDescriptor) -> List[Tuple[str, str]]:
        """All ``(verb, pattern)`` pairs for ``method`` in insertion order."""
        manual = self._manual_patterns(resource_path, method)
        if manual is not None:
            return manual
        if not self.config.auto_routing:
            return []
        return self._auto_patterns(resource_path, method)

    def _manual_patterns(
        self, resource_path: str, method: MethodDescriptor
    ) -> Optional[List[Tuple[str, str]]]:
        declared = method.metadata.get("url") or []
        if not declared:
            return None
        result: List[Tuple[str, str]] = []
        for spec in declared:
            try:
                verb, path = parse_url_annotation(spec)
            except MalformedAnnotation as exc:
                logger.warning("Ignoring url declaration on %s: %s", method.name, exc)
                continue
            result.append((verb, f"{resource_path}{path}".rstrip("/")))
        return result

    def _auto_patterns(self, resource_path: str, method: MethodDescriptor) -> List[Tuple[str, str]]:
        verb, segment = split_method_name(method.name)
        base = _join(resource_path, segment)
        smart = self.config.smart_auto_routing
        candidates = [base]
        url = base
        for param in method.parameters:
            if param.is_request_data:
                break
            if smart and (not param.required or not param.is_primitive):
                break
            url = f"{url}/{{{param.name}}}" if url else f"{{{param.name}}}"
            candidates.append(url)
        if not smart:
            return [(verb, pattern) for pattern in candidates]
        if len(candidates) > 1 and verb in BODY_VERBS:
            return [(verb, candidates[0]), (verb, candidates[-1])]
        return [(verb, candidates[-1])]
