"""Server configuration (source of truth).

``Defaults`` is a frozen dataclass threaded explicitly into the compiler,
negotiator, dispatcher and executor. Nothing reads process-wide globals.

Fields
------
- ``production_mode``: load/save the compiled route table through the route
  cache and disable pretty printing of response bodies.
- ``auto_routing``: derive routes from method names and parameters when a
  method declares no manual ``url``.
- ``smart_auto_routing``: ambiguity avoidance. Auto routes stop at the first
  optional or non-primitive parameter, and only the route carrying every
  required primitive parameter is emitted.
- ``api_access_level``: floor applied to every method's access level.
- ``header_cache_control`` / ``header_expires``: response cache headers.
  ``header_expires`` is a number of seconds; ``0`` is sent verbatim.
- ``suppress_response_code``: always answer with status 200.
- ``throttle``: minimum total latency in milliseconds (0 disables).
- ``wildcard_formats``: ``Accept`` wildcard class → format key (extension or
  MIME) used when no explicit type is registered. ``*/*`` falls back to the
  default (first registered) format.
- ``overridables`` / ``aliases``: query parameters allowed to override a field
  for one request, and alternative names for them.
- ``from_comments``: method metadata keys mapped onto fields for one request
  (e.g. ``@throttle 500`` on a method).
- ``cache_name``: key of the compiled route table in the blob store.

Merging
-------
``merge(**overrides)`` never mutates; it returns a new instance. Unknown keys
raise ``KeyError``. Values are coerced against the declared field type with
pydantic, so query-string values such as ``"true"`` or ``"250"`` land as
``bool``/``int``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from functools import lru_cache
from typing import Any, Dict, FrozenSet, Mapping, get_type_hints

from pydantic import TypeAdapter, ValidationError

__all__ = ["Defaults"]


@dataclass(frozen=True)
class Defaults:
    """Immutable server configuration."""

    production_mode: bool = False
    auto_routing: bool = True
    smart_auto_routing: bool = True
    api_access_level: int = 0
    header_cache_control: str = "no-cache, must-revalidate"
    header_expires: int = 0
    suppress_response_code: bool = False
    throttle: int = 0
    wildcard_formats: Mapping[str, str] = field(
        default_factory=lambda: {"application/*": "json", "text/*": "xml"}
    )
    overridables: FrozenSet[str] = frozenset({"suppress_response_code"})
    aliases: Mapping[str, str] = field(
        default_factory=lambda: {"suppress_status": "suppress_response_code"}
    )
    from_comments: Mapping[str, str] = field(
        default_factory=lambda: {
            "cache": "header_cache_control",
            "expires": "header_expires",
            "throttle": "throttle",
        }
    )
    cache_name: str = "routes"

    def merge(self, **overrides: Any) -> "Defaults":
        """Return a copy with ``overrides`` applied (values coerced to field types)."""
        if not overrides:
            return self
        hints = _field_types()
        coerced: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in hints:
                raise KeyError(f"Unknown configuration key: {key}")
            try:
                coerced[key] = _adapter(key).validate_python(value)
            except ValidationError as exc:
                raise ValueError(f"Invalid value for {key}: {value!r}") from exc
        return replace(self, **coerced)

    def request_overrides(
        self, query: Mapping[str, Any], metadata: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """Collect per-request overrides from query parameters and method metadata."""
        overrides: Dict[str, Any] = {}
        for key, value in metadata.items():
            target = self.from_comments.get(key)
            if target is not None:
                overrides[target] = value
        for key, value in query.items():
            key = self.aliases.get(key, key)
            if key in self.overridables:
                overrides[key] = value
        return overrides


@lru_cache(maxsize=1)
def _field_types() -> Dict[str, Any]:
    hints = get_type_hints(Defaults)
    return {f.name: hints[f.name] for f in fields(Defaults)}


@lru_cache(maxsize=None)
def _adapter(key: str) -> TypeAdapter:
    return TypeAdapter(_field_types()[key])
