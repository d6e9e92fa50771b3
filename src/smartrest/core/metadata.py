"""Metadata extraction (source of truth).

``extract_service(cls, resource_path)`` turns a service class into a
``ServiceDescriptor``; nothing else in the package inspects service classes.

Method discovery
----------------
- Walks the reversed MRO of ``cls`` (``object`` excluded) and scans each
  ``__dict__`` for plain functions and ``@restricted`` wrappers. A name keeps
  the position of its first (most basic) definition and the value of its last
  (most derived) one, so discovery is deterministic.
- Names starting with ``_`` are hidden: never extracted, never routed. This
  also keeps pre/post-process hooks (``_json_get_item``) out of the table.

Metadata
--------
- Class docstring → ``ServiceDescriptor.metadata``; its ``description`` is
  copied to every method as ``class_description`` and its other annotations are
  inherited by every method (method annotations win).
- Method docstring → ``docparser.parse_docstring``; malformed lines are logged
  at WARNING and dropped.
- ``@api`` markers are merged last: ``url``/``header`` lists are extended,
  ``param`` sub-maps merged per parameter, other keys replaced.
- ``metadata["visibility"]`` is ``"restricted"`` or ``"public"``;
  ``metadata["resource_path"]`` is the prefix the service is mounted at.

Parameters
----------
``self`` and ``*args``/``**kwargs`` are skipped. For the rest:
``required`` = no default; ``default`` = the default or ``None``;
``type_tag`` from the annotation: unannotated, ``Any`` and
``str/int/float/bool/bytes`` (and subclasses, ``Literal``) are
``"primitive"``; list/tuple/set/dict and their generics/ABCs are ``"array"``;
anything else is the annotation's qualified name. ``Optional[X]`` classifies
as ``X``.
"""

from __future__ import annotations

import collections.abc
import inspect
import logging
import types
import typing
from typing import Any, Callable, Dict, Iterator, List, Tuple

from .decorators import TARGET_ATTR_NAME, is_restricted
from .descriptors import MethodDescriptor, ParameterDescriptor, ServiceDescriptor
from .docparser import parse_docstring

__all__ = ["extract_service", "default_resource_path", "class_id", "type_tag"]

logger = logging.getLogger("smartrest.metadata")

_PRIMITIVES = (str, int, float, bool, bytes)
_PRIMITIVE_NAMES = frozenset({"str", "int", "float", "bool", "bytes", "Any"})
_ARRAY_ORIGINS = (
    list,
    tuple,
    set,
    frozenset,
    dict,
    collections.abc.Sequence,
    collections.abc.MutableSequence,
    collections.abc.Set,
    collections.abc.MutableSet,
    collections.abc.Mapping,
    collections.abc.MutableMapping,
    collections.abc.Iterable,
    collections.abc.Collection,
)
_ARRAY_NAMES = ("list", "tuple", "set", "frozenset", "dict", "List", "Tuple", "Set", "Dict", "Sequence", "Mapping")


def class_id(cls: type) -> str:
    return f"{cls.__module__}:{cls.__qualname__}"


def default_resource_path(cls: type) -> str:
    """Lower-cased class name, the mount point when none is given."""
    return cls.__name__.lower()


def type_tag(annotation: Any) -> str:
    """Classify an annotation as ``primitive``, ``array`` or a class name."""
    if annotation is inspect.Parameter.empty or annotation is Any or annotation is None:
        return "primitive"
    if isinstance(annotation, str):
        return _string_type_tag(annotation)
    origin = typing.get_origin(annotation)
    if origin is typing.Union or _is_union_type(origin):
        args = [arg for arg in typing.get_args(annotation) if arg is not type(None)]
        tags = [type_tag(arg) for arg in args]
        if len(set(tags)) == 1:
            return tags[0]
        if "array" in tags:
            return "array"
        return next((tag for tag in tags if tag != "primitive"), "primitive")
    if origin is typing.Literal:
        return "primitive"
    if origin is typing.Annotated:
        return type_tag(typing.get_args(annotation)[0])
    target = origin or annotation
    if target in _ARRAY_ORIGINS:
        return "array"
    if isinstance(target, type):
        if issubclass(target, _PRIMITIVES):
            return "primitive"
        if issubclass(target, (list, tuple, set, frozenset, dict)):
            return "array"
        return target.__qualname__
    return getattr(annotation, "__qualname__", None) or str(annotation)


def _is_union_type(origin: Any) -> bool:
    return origin is types.UnionType


def _string_type_tag(annotation: str) -> str:
    text = annotation.strip().strip("'\"")
    if text.startswith("Optional[") and text.endswith("]"):
        text = text[len("Optional[") : -1]
    head = text.split("[", 1)[0].split("|", 1)[0].strip()
    head = head.rsplit(".", 1)[-1]
    if head in _PRIMITIVE_NAMES:
        return "primitive"
    if head in _ARRAY_NAMES:
        return "array"
    return head or "primitive"


def _iter_candidate_methods(cls: type) -> Iterator[Tuple[str, Any]]:
    found: Dict[str, Any] = {}
    for base in reversed(cls.__mro__):
        if base is object:
            continue
        for attr_name, value in vars(base).items():
            if attr_name.startswith("_"):
                continue
            if inspect.isfunction(value) or is_restricted(value):
                found[attr_name] = value
            elif attr_name in found:
                del found[attr_name]
    yield from found.items()


def _unwrap(value: Any) -> Callable:
    return value.__wrapped__ if is_restricted(value) else value


def _resolve_hints(func: Callable) -> Dict[str, Any]:
    try:
        return typing.get_type_hints(func)
    except Exception:
        # Unresolvable forward references: fall back to the raw annotations.
        return dict(getattr(func, "__annotations__", {}) or {})


def _extract_parameters(func: Callable) -> Tuple[ParameterDescriptor, ...]:
    signature = inspect.signature(func)
    hints = _resolve_hints(func)
    params: List[ParameterDescriptor] = []
    position = 0
    for index, param in enumerate(signature.parameters.values()):
        if index == 0 and param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD):
            continue  # self
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        required = param.default is inspect.Parameter.empty
        params.append(
            ParameterDescriptor(
                name=param.name,
                position=position,
                required=required,
                default=None if required else param.default,
                type_tag=type_tag(hints.get(param.name, param.annotation)),
                keyword_only=param.kind is param.KEYWORD_ONLY,
            )
        )
        position += 1
    return tuple(params)


def _merge_markers(metadata: Dict[str, Any], markers: List[Dict[str, Any]]) -> None:
    for marker in markers:
        for key, value in marker.items():
            if key in ("url", "header"):
                metadata.setdefault(key, [])
                metadata[key] = list(metadata[key]) + list(value)
            elif key == "param":
                params = metadata.setdefault("param", {})
                for name, sub in value.items():
                    params.setdefault(name, {}).update(sub)
            else:
                metadata[key] = value


def _method_metadata(
    cls: type, name: str, value: Any, class_metadata: Dict[str, Any], resource_path: str
) -> Dict[str, Any]:
    func = _unwrap(value)
    metadata: Dict[str, Any] = {
        key: val
        for key, val in class_metadata.items()
        if key not in ("description", "long_description", "param", "url")
    }
    doc_metadata, errors = parse_docstring(inspect.getdoc(func))
    for error in errors:
        logger.warning("Dropped annotation on %s.%s: %s", cls.__qualname__, name, error)
    metadata.update(doc_metadata)
    _merge_markers(metadata, getattr(value, TARGET_ATTR_NAME, None) or [])
    if "description" in class_metadata:
        metadata["class_description"] = class_metadata["description"]
    metadata["resource_path"] = resource_path
    metadata["visibility"] = "restricted" if is_restricted(value) else "public"
    metadata.setdefault("param", {})
    return metadata


def extract_service(cls: type, resource_path: str = "") -> ServiceDescriptor:
    """Build the descriptor for ``cls`` mounted at ``resource_path``."""
    if not isinstance(cls, type):
        raise TypeError(f"Service must be a class, got {cls!r}")
    class_metadata, errors = parse_docstring(inspect.getdoc(cls) if cls.__doc__ else None)
    for error in errors:
        logger.warning("Dropped annotation on %s: %s", cls.__qualname__, error)
    methods: List[MethodDescriptor] = []
    for name, value in _iter_candidate_methods(cls):
        metadata = _method_metadata(cls, name, value, class_metadata, resource_path)
        methods.append(
            MethodDescriptor(
                name=name,
                parameters=_extract_parameters(_unwrap(value)),
                metadata=metadata,
            )
        )
    return ServiceDescriptor(
        class_id=class_id(cls),
        resource_path=resource_path,
        methods=tuple(methods),
        metadata=class_metadata,
    )
