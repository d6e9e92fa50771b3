"""Logging plugin (source of truth).

Responsibilities
----------------
- Wrap each service invocation and report it:
  * ``before`` (default True): ``"{key} start"``
  * ``after`` (default True): ``"{key} end (<ms> ms)"``, elapsed milliseconds
    formatted as ``{elapsed:.2f}``
  * ``errors`` (default True): ``"{key} failed after <ms> ms: <ExcType>"``
    when the service raises; the exception is re-raised untouched.
  ``key`` is the invocation key, ``"<ClassName>.<method>"``.
- Sinks:
  * ``print`` true → ``print(message)``;
  * else ``log`` true → the logger (``info``, ``warning`` for failures) when it
    has handlers, otherwise ``print(message)`` so nothing is dropped;
  * else → no output.
- ``enabled`` gates the plugin entirely (default True).
- Logger defaults to ``logging.getLogger("smartrest")``.

Configuration
-------------
Keys ``enabled``, ``before``, ``after``, ``errors``, ``log``, ``print`` are
accepted server-wide (``restler.plug("logging", before=False)``), per
invocation key (``restler.logging.configure(_target="Users.get_index",
after=False)``), as a ``flags`` string (``"enabled:off,before"``) or as
plugin-scoped ``@api`` options on the method (``@api(logging_after=False)``).

Registration
------------
Importing the module registers the plugin as ``"logging"``.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

from smartrest.core.executor import InvocationExecutor
from smartrest.plugins._base_plugin import BasePlugin

_OPTIONS: Dict[str, bool] = {
    "enabled": True,
    "before": True,
    "after": True,
    "errors": True,
    "log": True,
    "print": False,
}


class LoggingPlugin(BasePlugin):
    """Reports service invocations with their timing."""

    plugin_code = "logging"
    plugin_description = "Reports service invocations with their timing"

    __slots__ = ("_logger",)

    def __init__(self, executor, *, logger: Optional[logging.Logger] = None, **cfg):
        self._logger = logger or logging.getLogger("smartrest")
        super().__init__(executor, **cfg)

    def configure(
        self,
        enabled: bool = True,
        before: bool = True,
        after: bool = True,
        errors: bool = True,
        log: bool = True,
        print: bool = False,  # noqa: A002 - mirrors the option name
    ):
        """Storage is handled by the wrapper added in ``__init_subclass__``."""

    def wrap_invocation(self, executor, invocation: Any, call_next: Callable):
        key = invocation.key

        def logged(*args, **kwargs):
            options = self.options_for(key)
            if not options["enabled"]:
                return call_next(*args, **kwargs)
            if options["before"]:
                self._report(options, "%s start", key)
            started = time.perf_counter()
            try:
                result = call_next(*args, **kwargs)
            except Exception as exc:
                if options["errors"]:
                    elapsed = (time.perf_counter() - started) * 1000
                    self._report(
                        options, "%s failed after %.2f ms: %s", key, elapsed, type(exc).__name__,
                        level=logging.WARNING,
                    )
                raise
            if options["after"]:
                elapsed = (time.perf_counter() - started) * 1000
                self._report(options, "%s end (%.2f ms)", key, elapsed)
            return result

        return logged

    def options_for(self, key: str) -> Dict[str, bool]:
        """Effective boolean options for invocation ``key``."""
        stored = self.configuration(key)
        flags = stored.pop("flags", None)
        if isinstance(flags, str):
            stored.update(self._parse_flags(flags))
        return {
            name: default if stored.get(name) is None else bool(stored[name])
            for name, default in _OPTIONS.items()
        }

    def _report(self, options: Dict[str, bool], template: str, *args: Any, level: int = logging.INFO):
        if options["print"]:
            print(template % args)
        elif options["log"]:
            if self._logger.hasHandlers():
                self._logger.log(level, template, *args)
            else:
                print(template % args)


InvocationExecutor.register_plugin(LoggingPlugin)
