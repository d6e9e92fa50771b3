"""Invocation executor with plugin pipeline (source of truth).

``InvocationExecutor(restler)`` turns a bound ``InvocationDescriptor`` into
the service method's return value. The request context (``RequestContext``
in ``server``) carries the request-local configuration and receives
``authenticated`` and ``service_instance``.

Steps of ``execute(context, **options)``
----------------------------------------
1. Access level = ``max(config.api_access_level, method level)``, written
   back to the invocation.
2. Level > 0: every registered authenticator class is instantiated (a
   ``restler`` attribute declared on the class is set to the server) and asked
   ``is_authenticated(context)``; the first ``True`` wins. No authenticators or
   no acceptance raises ``Unauthenticated``, except at ``HYBRID`` where the
   request proceeds with ``context.authenticated = False``.
3. Every argument runs through the server's validator unless its ``@param``
   metadata says ``validate: false``. Annotations come from the live function
   so cached route tables validate like freshly compiled ones.
4. The service class is instantiated with ``cls()``; ``restler`` (the server)
   and ``context`` (the request context) are set when the class declares
   them. The pre-process hook ``_<request ext>_<method>`` receives the
   arguments first when present.
5. The target is fetched through ``resolve_restricted`` (restricted methods
   bypass the visibility guard), wrapped with ``smartasync`` when it is a
   coroutine function and the ``use_smartasync`` option holds, wrapped by the
   attached plugins and called.

Plugins
-------
``register_plugin``/``available_plugins`` manage a global registry;
``plug(name, **config)`` attaches an instance. Plugins wrap the call in
reverse attachment order (last plugged closest to the target). Each layer is
guarded by ``is_plugin_enabled(key, plugin)`` where ``key`` is
``InvocationDescriptor.key``. Method options named ``<plugin>_<option>``
(``@api(logging_after=False)``) are written to that plugin's bucket for the
key the first time the key is executed.

Post-processing
---------------
``postprocess(context, encoded)`` calls ``_<method>_<response ext>`` on the
service instance with the encoded body; a non-``None`` return replaces it.
"""

from __future__ import annotations

import inspect
import logging
import typing
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Type

from smartseeds import SmartOptions

from ..errors import Unauthenticated
from ..plugins._base_plugin import BASE_KEY, BasePlugin
from ..validation import ValidationInfo
from .decorators import resolve_restricted
from .descriptors import AccessLevel, InvocationDescriptor

__all__ = ["InvocationExecutor"]

logger = logging.getLogger("smartrest.executor")

_PLUGIN_REGISTRY: Dict[str, Type[BasePlugin]] = {}


@dataclass
class _PluginSpec:
    factory: Type[BasePlugin]
    kwargs: Dict[str, Any]

    def instantiate(self, executor: "InvocationExecutor") -> BasePlugin:
        return self.factory(executor, **self.kwargs)


class InvocationExecutor:
    """Runs invocations through authentication, validation and plugins."""

    __slots__ = (
        "restler",
        "_plugin_specs",
        "_plugins",
        "_plugins_by_name",
        "_plugin_info",
        "_configured_keys",
        "_defaults",
        "_hints",
    )

    def __init__(self, restler: Any, *, use_smartasync: bool = True) -> None:
        self.restler = restler
        self._plugin_specs: List[_PluginSpec] = []
        self._plugins: List[BasePlugin] = []
        self._plugins_by_name: Dict[str, BasePlugin] = {}
        self._plugin_info: Dict[str, Dict[str, Any]] = {}
        self._configured_keys: Set[Tuple[str, str]] = set()
        self._defaults: Dict[str, Any] = {"use_smartasync": use_smartasync}
        self._hints: Dict[Tuple[type, str], Dict[str, Any]] = {}

    # ------------------------------------------------------------------
    # Plugin registration
    # ------------------------------------------------------------------
    @classmethod
    def register_plugin(cls, plugin_class: Type[BasePlugin], name: Optional[str] = None) -> None:
        """Register a plugin class globally.

        Args:
            plugin_class: A BasePlugin subclass with plugin_code defined
            name: Optional override name. An explicit name replaces any
                  existing registration; otherwise a different class already
                  registered under ``plugin_code`` is an error.
        """
        if not isinstance(plugin_class, type) or not issubclass(plugin_class, BasePlugin):
            raise TypeError("plugin_class must be a BasePlugin subclass")
        if not getattr(plugin_class, "plugin_code", None):
            raise ValueError(f"Plugin {plugin_class.__name__} has no plugin_code")
        code = name or plugin_class.plugin_code
        if name is None:
            existing = _PLUGIN_REGISTRY.get(code)
            if existing is not None and existing is not plugin_class:
                raise ValueError(f"Plugin '{code}' already registered")
        _PLUGIN_REGISTRY[code] = plugin_class

    @classmethod
    def available_plugins(cls) -> Dict[str, Type[BasePlugin]]:
        return dict(_PLUGIN_REGISTRY)

    def plug(self, plugin: str, **config: Any) -> "InvocationExecutor":
        """Attach a plugin by its registered name."""
        if not isinstance(plugin, str):
            raise TypeError(
                f"Plugin must be referenced by name string, got {type(plugin).__name__}"
            )
        plugin_class = _PLUGIN_REGISTRY.get(plugin)
        if plugin_class is None:
            available = ", ".join(sorted(_PLUGIN_REGISTRY)) or "none"
            raise ValueError(
                f"Unknown plugin '{plugin}'. Register it first. Available plugins: {available}"
            )
        spec = _PluginSpec(plugin_class, dict(config))
        self._plugin_specs.append(spec)
        instance = spec.instantiate(self)
        self._plugins.append(instance)
        self._plugins_by_name.setdefault(instance.name, instance)
        return self

    def iter_plugins(self) -> List[BasePlugin]:
        return list(self._plugins)

    def plugin(self, name: str) -> BasePlugin:
        plugin = self._plugins_by_name.get(name)
        if plugin is None:
            raise AttributeError(f"No plugin named '{name}' attached")
        return plugin

    def _plugin_bucket(self, plugin_name: str) -> Dict[str, Any]:
        bucket = self._plugin_info.get(plugin_name)
        if bucket is None:
            raise AttributeError(f"No plugin named '{plugin_name}' attached")
        bucket.setdefault(BASE_KEY, {"config": {}, "locals": {}})
        return bucket

    def set_plugin_enabled(self, key: str, plugin_name: str, enabled: bool = True) -> None:
        entry = self._plugin_bucket(plugin_name).setdefault(key, {"config": {}, "locals": {}})
        entry.setdefault("locals", {})["enabled"] = bool(enabled)

    def is_plugin_enabled(self, key: str, plugin_name: str) -> bool:
        bucket = self._plugin_bucket(plugin_name)
        entry_locals = bucket.get(key, {}).get("locals", {})
        if "enabled" in entry_locals:
            return bool(entry_locals["enabled"])
        return bool(bucket[BASE_KEY].get("locals", {}).get("enabled", True))

    # ------------------------------------------------------------------
    # Request-time steps
    # ------------------------------------------------------------------
    def authenticate(self, context: Any) -> bool:
        invocation: InvocationDescriptor = context.invocation
        level = AccessLevel(max(int(context.config.api_access_level), int(invocation.access_level)))
        invocation.access_level = level
        if level == AccessLevel.PUBLIC:
            return False
        try:
            self._check_authenticators(context)
        except Unauthenticated:
            if level != AccessLevel.HYBRID:
                raise
            logger.debug("Hybrid access to %s continues unauthenticated", invocation.key)
            context.authenticated = False
            return False
        context.authenticated = True
        return True

    def _check_authenticators(self, context: Any) -> None:
        authenticators = list(self.restler.authenticators)
        if not authenticators:
            raise Unauthenticated("No authentication class is registered")
        for auth_class in authenticators:
            auth = self.create_instance(auth_class, context)
            if auth.is_authenticated(context):
                return
        raise Unauthenticated()

    def validate(self, context: Any) -> List[Any]:
        invocation: InvocationDescriptor = context.invocation
        validator = self.restler.validator
        service_class = self.restler.service_class(invocation.service)
        hints = self._annotations(service_class, invocation.method.name)
        arguments = list(invocation.arguments)
        for param in invocation.method.parameters:
            if param.is_request_data:
                continue
            param_meta = invocation.method.param_metadata(param.name)
            if param_meta.get("validate") is False:
                continue
            info = ValidationInfo(
                name=param.name,
                required=param.required,
                default=param.default,
                type_tag=param.type_tag,
                annotation=hints.get(param.name, inspect.Parameter.empty),
                metadata=param_meta,
                missing=param.name in invocation.missing,
                method=invocation.key,
            )
            arguments[param.position] = validator.validate(arguments[param.position], info)
        invocation.arguments = arguments
        return arguments

    def _annotations(self, service_class: type, method_name: str) -> Dict[str, Any]:
        cache_key = (service_class, method_name)
        hints = self._hints.get(cache_key)
        if hints is None:
            func = _plain_function(service_class, method_name)
            try:
                hints = typing.get_type_hints(func)
            except Exception:
                hints = dict(getattr(func, "__annotations__", {}) or {})
            hints.pop("return", None)
            self._hints[cache_key] = hints
        return hints

    def create_instance(self, cls: type, context: Any = None) -> Any:
        instance = cls()
        if _declares(cls, "restler"):
            instance.restler = self.restler
        if context is not None and _declares(cls, "context"):
            instance.context = context
        return instance

    def execute(self, context: Any, **options: Any) -> Any:
        """Authenticate, validate and call the target; return its result."""
        opts = SmartOptions(options, defaults=self._defaults)
        use_smartasync = getattr(opts, "use_smartasync", True)

        invocation: InvocationDescriptor = context.invocation
        self.authenticate(context)
        self.validate(context)

        service_class = self.restler.service_class(invocation.service)
        instance = self.create_instance(service_class, context)
        context.service_instance = instance

        args, kwargs = _split_arguments(invocation)
        request_format = context.negotiated.request_format
        pre_process = getattr(instance, f"_{request_format.get_extension()}_{invocation.method.name}", None)
        if callable(pre_process):
            pre_process(*args, **kwargs)

        target = resolve_restricted(instance, invocation.method.name)
        if use_smartasync and inspect.iscoroutinefunction(target):
            from smartasync import smartasync  # type: ignore

            target = smartasync(target)
        handler = self._wrap_invocation(invocation, target)
        return handler(*args, **kwargs)

    def postprocess(self, context: Any, encoded: bytes) -> bytes:
        instance = getattr(context, "service_instance", None)
        if instance is None:
            return encoded
        extension = context.negotiated.response_format.get_extension()
        post_process = getattr(instance, f"_{context.invocation.method.name}_{extension}", None)
        if not callable(post_process):
            return encoded
        result = post_process(encoded)
        if result is None:
            return encoded
        return result if isinstance(result, bytes) else str(result).encode("utf-8")

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------
    def _apply_metadata_config(self, invocation: InvocationDescriptor) -> None:
        for plugin in self._plugins:
            marker = (plugin.name, invocation.key)
            if marker in self._configured_keys:
                continue
            self._configured_keys.add(marker)
            prefix = f"{plugin.name}_"
            options = {
                key[len(prefix) :]: value
                for key, value in invocation.metadata.items()
                if key.startswith(prefix) and len(key) > len(prefix)
            }
            if options:
                plugin.configure(_target=invocation.key, **options)
            plugin.on_invocation(self, invocation)

    def _wrap_invocation(self, invocation: InvocationDescriptor, call_next: Callable) -> Callable:
        self._apply_metadata_config(invocation)
        wrapped = call_next
        for plugin in reversed(self._plugins):
            plugin_call = plugin.wrap_invocation(self, invocation, wrapped)
            wrapped = self._create_wrapper(plugin, invocation.key, plugin_call, wrapped)
        return wrapped

    def _create_wrapper(
        self,
        plugin: BasePlugin,
        key: str,
        plugin_call: Callable,
        next_handler: Callable,
    ) -> Callable:
        @wraps(next_handler)
        def wrapper(*args, **kwargs):
            if not self.is_plugin_enabled(key, plugin.name):
                return next_handler(*args, **kwargs)
            return plugin_call(*args, **kwargs)

        return wrapper


def _declares(cls: type, name: str) -> bool:
    return any(name in vars(base) or name in getattr(base, "__annotations__", {}) for base in cls.__mro__)


def _plain_function(cls: type, name: str) -> Callable:
    for base in cls.__mro__:
        value = vars(base).get(name)
        if value is not None:
            return getattr(value, "__wrapped__", value)
    raise AttributeError(f"{cls.__name__} has no method {name!r}")


def _split_arguments(invocation: InvocationDescriptor) -> Tuple[List[Any], Dict[str, Any]]:
    args: List[Any] = []
    kwargs: Dict[str, Any] = {}
    for param in invocation.method.parameters:
        value = invocation.arguments[param.position]
        if param.keyword_only:
            kwargs[param.name] = value
        else:
            args.append(value)
    return args, kwargs
