"""Invocation plugin contract (source of truth).

Objects
~~~~~~~
``BasePlugin``
    Base class of every invocation plugin. Responsibilities:

    - offer config helpers that delegate to the owning executor's
      ``_plugin_info`` store (no hidden per-plugin globals)
    - provide the optional hooks ``on_invocation(executor, invocation)`` and
      ``wrap_invocation(executor, invocation, call_next)`` used by the
      executor pipeline

    Required class attributes:

    - ``plugin_code`` – unique identifier used for registration (e.g. "logging")
    - ``plugin_description`` – human-readable description of the plugin

    Constructor signature: ``BasePlugin(executor, **config)``; ``**config`` is
    passed to ``configure()``.

    ``configure(**config)``
        Declares the accepted options through its signature. Subclass versions
        are wrapped by ``__init_subclass__`` so that:

        - ``flags`` (``"enabled,before:off"``) is parsed into booleans;
        - ``_target`` selects where the values are written: ``"--base--"``
          (default, server-wide), one invocation key (``"Users.get_index"``)
          or several comma separated keys;
        - values are validated with pydantic ``validate_call``.

    ``configuration(key=None)``
        Merged configuration: server-wide bucket updated with the bucket of
        ``key`` when given.

    ``on_invocation`` (default no-op)
        Called once per invocation key, the first time the executor resolves
        it.

    ``wrap_invocation`` (default identity)
        Returns a callable with the same signature as ``call_next``.

Store layout
~~~~~~~~~~~~
``executor._plugin_info[plugin_code][key] = {"config": {...}, "locals": {...}}``
with ``"--base--"`` as the server-wide key.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from pydantic import validate_call

__all__ = ["BasePlugin", "BASE_KEY"]

BASE_KEY = "--base--"


def _wrap_configure(original_configure: Callable) -> Callable:
    """Wrap a plugin's configure() to handle flags, _target, validation and storage."""
    checked = validate_call(original_configure)

    def configure(
        self: "BasePlugin", *, _target: str = BASE_KEY, flags: Optional[str] = None, **options: Any
    ) -> None:
        if flags:
            options = {**self._parse_flags(flags), **options}
        checked(self, **options)
        for target in _split_targets(_target):
            self._write_config(target, options)

    configure.__doc__ = original_configure.__doc__
    return configure


def _split_targets(target: str) -> List[str]:
    """``"A.get,B.post"`` names several invocation keys at once."""
    return [part.strip() for part in target.split(",") if part.strip()] or [BASE_KEY]


class BasePlugin:
    """Hook interface + configuration helpers for invocation plugins."""

    __slots__ = ("name", "_executor")

    plugin_code: str = ""
    plugin_description: str = ""

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if "configure" in cls.__dict__:
            cls.configure = _wrap_configure(cls.__dict__["configure"])

    def __init__(self, executor: Any, **config: Any):
        self.name = self.plugin_code
        self._executor = executor
        self._init_store()
        self.configure(**config)

    def _init_store(self) -> None:
        store = self._get_store()
        store.setdefault(self.name, {}).setdefault(
            BASE_KEY, {"config": {"enabled": True}, "locals": {}}
        )

    def configure(self, *, _target: str = BASE_KEY, flags: Optional[str] = None) -> None:
        """Base implementation only understands ``flags``."""
        if flags:
            for target in _split_targets(_target):
                self._write_config(target, self._parse_flags(flags))

    def _write_config(self, target: str, config: Dict[str, Any]) -> None:
        if not config:
            return
        plugin_bucket = self._get_store().setdefault(self.name, {})
        bucket = plugin_bucket.setdefault(target, {"config": {}, "locals": {}})
        bucket["config"].update(config)

    def configuration(self, key: Optional[str] = None) -> Dict[str, Any]:
        """Read merged configuration (server-wide + optional per-invocation override)."""
        plugin_bucket = self._get_store().get(self.name)
        if not plugin_bucket:
            return {}
        merged = dict(plugin_bucket.get(BASE_KEY, {}).get("config", {}))
        if key:
            merged.update(plugin_bucket.get(key, {}).get("config", {}))
        return merged

    def _parse_flags(self, flags: str) -> Dict[str, bool]:
        """``"enabled,before:off"`` → ``{"enabled": True, "before": False}``."""
        parsed: Dict[str, bool] = {}
        for item in filter(None, (part.strip() for part in flags.split(","))):
            name, _, state = item.partition(":")
            parsed[name.strip()] = state.strip().lower() not in ("off", "false", "0")
        return parsed

    def on_invocation(self, executor: Any, invocation: Any) -> None:  # pragma: no cover - default no-op
        """Hook run the first time an invocation key is seen."""

    def wrap_invocation(self, executor: Any, invocation: Any, call_next: Callable) -> Callable:
        """Wrap the call to the service method; default passthrough."""
        return call_next

    def _get_store(self) -> Dict[str, Any]:
        return getattr(self._executor, "_plugin_info")
