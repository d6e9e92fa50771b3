"""Declaration helpers for service methods (source of truth).

Two helpers; neither touches a server at decoration time.

``api(*, url=None, access=None, status=None, header=None, param=None, **kwargs)``

- Returns a decorator storing a payload dict on the function under
  ``TARGET_ATTR_NAME`` (a list, so ``@api`` can be stacked). Existing markers
  are preserved; the new one is appended.
- ``url`` accepts ``"GET /path"`` or a list of them; each becomes a manual
  route exactly like a ``@url`` doc annotation.
- ``access`` accepts an ``AccessLevel``, its name (``"protected"``,
  ``"hybrid"``) or integer value; it is turned into the ``protected``/``hybrid``
  flags the compiler reads.
- ``status`` (int), ``header`` (str or list) and ``param`` (name → sub-map)
  mirror their doc annotations.
- Extra ``**kwargs`` are copied verbatim into the payload; plugin-scoped keys
  (``<plugin>_<key>``, e.g. ``logging_before=False``) are later routed to the
  named plugin.
- The decorator returns the original callable unchanged aside from the marker.

``restricted(func)``

- Python has no protected methods; ``restricted`` is their counterpart.
  The function is wrapped in a descriptor whose ``__get__`` raises
  ``AttributeError`` on instances, so normal attribute access cannot reach it.
- The extractor treats restricted methods as access level 3, and the executor
  calls them through ``__wrapped__`` (``resolve_restricted``).
- Markers applied before or after ``restricted`` both end up on the wrapper.
"""

from __future__ import annotations

import functools
from typing import Any, Callable, Dict, List, Optional, Union

__all__ = ["api", "restricted", "resolve_restricted", "is_restricted", "TARGET_ATTR_NAME"]

TARGET_ATTR_NAME = "__smartrest_api__"


def api(
    *,
    url: Optional[Union[str, List[str]]] = None,
    access: Any = None,
    status: Optional[int] = None,
    header: Optional[Union[str, List[str]]] = None,
    param: Optional[Dict[str, Dict[str, Any]]] = None,
    **kwargs: Any,
) -> Callable:
    """Attach routing declarations to a service method.

    Args:
        url: One or more ``"VERB /path"`` manual routes.
        access: Access level (``AccessLevel``, name or int).
        status: Success status code.
        header: Extra response header line(s), ``"Name: value"``.
        param: Per-parameter metadata sub-maps (e.g. ``{"id": {"validate": False}}``).
    """

    def decorator(func: Callable) -> Callable:
        markers = list(getattr(func, TARGET_ATTR_NAME, []))
        payload: Dict[str, Any] = {}
        if url is not None:
            payload["url"] = [url] if isinstance(url, str) else list(url)
        if access is not None:
            payload.update(_access_flags(access))
        if status is not None:
            payload["status"] = int(status)
        if header is not None:
            payload["header"] = [header] if isinstance(header, str) else list(header)
        if param is not None:
            payload["param"] = {name: dict(sub) for name, sub in param.items()}
        for key, value in kwargs.items():
            payload[key] = value
        markers.append(payload)
        setattr(func, TARGET_ATTR_NAME, markers)
        return func

    return decorator


def _access_flags(access: Any) -> Dict[str, bool]:
    from .descriptors import AccessLevel

    if isinstance(access, str):
        level = AccessLevel[access.strip().upper()]
    else:
        level = AccessLevel(int(access))
    if level >= AccessLevel.PROTECTED:
        return {"protected": True}
    if level == AccessLevel.HYBRID:
        return {"hybrid": True}
    return {}


class _Restricted:
    """Visibility guard around a service method."""

    def __init__(self, func: Callable) -> None:
        functools.update_wrapper(self, func)
        self._attr_name = func.__name__

    def __set_name__(self, owner: type, name: str) -> None:
        self._attr_name = name

    def __get__(self, instance: Any, owner: Optional[type] = None) -> Any:
        if instance is None:
            return self
        raise AttributeError(
            f"'{type(instance).__name__}.{self._attr_name}' is restricted and "
            "can only be invoked by the dispatcher"
        )

    def bind(self, instance: Any) -> Callable:
        return self.__wrapped__.__get__(instance, type(instance))  # type: ignore[attr-defined]


def restricted(func: Callable) -> _Restricted:
    """Mark a service method as restricted (access level 3)."""
    return _Restricted(func)


def is_restricted(value: Any) -> bool:
    return isinstance(value, _Restricted)


def resolve_restricted(instance: Any, name: str) -> Callable:
    """Return ``name`` bound to ``instance``, bypassing the restricted guard."""
    for base in type(instance).__mro__:
        value = vars(base).get(name)
        if value is None:
            continue
        if is_restricted(value):
            return value.bind(instance)
        return getattr(instance, name)
    raise AttributeError(f"{type(instance).__name__} has no method {name!r}")
