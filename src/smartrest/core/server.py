"""Restler server facade (source of truth).

``Restler`` owns registration and the request lifecycle; every other piece of
the package is a collaborator it wires together.

Registration
------------
``set_supported_formats(*format_classes)`` (first = default format,
``JsonFormat`` when nothing is registered), ``add_api_class(cls,
resource_path=None)`` (default prefix: lower-cased class name; a trailing ``/``
is added when the prefix is non-empty), ``add_authentication_class(cls,
resource_path=None)`` (also routed like an API class, ``is_authenticated``
excluded), ``add_error_class(cls)``, ``set_api_version(version, minimum=1)``
(integers only, ``TypeError`` otherwise) and ``plug(name, **config)``.
The route table is compiled once, on first use, under a lock and then frozen;
registering anything afterwards raises ``RuntimeError``. In production mode the
table is loaded from and saved to the route cache; ``refresh_cache`` forces a
recompilation.

Request lifecycle (``handle``)
------------------------------
normalise path → negotiate formats (a failed response negotiation answers
406 directly) → decode body → match and bind → per-request configuration
(``Defaults.request_overrides``) → authenticate, validate, invoke →
``responder.format_response`` → encode (pretty printed unless production) →
post-process hook → headers → throttle.

A ``NotAcceptable`` raised by a service is answered like a failed
negotiation: plain text, no error handlers. Every other ``RestError`` and any
unexpected exception (logged, answered as 500) go
through ``handle_error``: registered error handlers expose
``handle_<status>(context)``; the first non-``None`` result becomes the body (a
``Response`` is sent as is). Otherwise the responder's error envelope with
``"<reason>: <detail>"`` is encoded with the negotiated (or default) format.

Headers: ``Cache-Control``, ``Expires`` (``0`` verbatim, else an HTTP date
``header_expires`` seconds ahead), ``Content-Type``, ``X-Powered-By``,
``Vary: Accept`` when the format came from ``Accept``, plus the method's
``header`` lines. Status: the method's ``status`` or 200;
``suppress_response_code`` forces 200.

``Restler`` is also a WSGI application.
"""

from __future__ import annotations

import email.utils
import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Type

from smartseeds.typeutils import safe_is_instance

from .. import __version__
from ..config import Defaults
from ..errors import STATUS_MESSAGES, NotAcceptable, RestError
from ..formats import Format, FormatMap, JsonFormat
from ..http import Request, Response
from ..responder import DefaultResponder
from ..validation import DefaultValidator
from .cache import BlobStore, RouteCache
from .compiler import RouteCompiler
from .descriptors import InvocationDescriptor, NegotiatedRequest, RouteTable
from .dispatcher import Dispatcher
from .executor import InvocationExecutor
from .metadata import class_id, default_resource_path, extract_service
from .negotiation import FormatNegotiator

__all__ = ["Restler", "RequestContext"]

logger = logging.getLogger("smartrest.server")

POWERED_BY = f"SmartRest/{__version__}"


@dataclass
class RequestContext:
    """Everything known about the request being served."""

    restler: Any
    request: Request
    config: Defaults
    path: str = ""
    requested_version: Optional[int] = None
    negotiated: Optional[NegotiatedRequest] = None
    invocation: Optional[InvocationDescriptor] = None
    authenticated: bool = False
    service_instance: Any = None
    status: int = 200
    started: float = 0.0

    @property
    def query(self) -> Dict[str, str]:
        return self.request.query


@dataclass(frozen=True)
class _Registration:
    cls: type
    resource_path: str
    exclude: Tuple[str, ...] = ()


class Restler:
    """Convention-driven HTTP API server."""

    def __init__(
        self,
        production_mode: bool = False,
        refresh_cache: bool = False,
        *,
        config: Optional[Defaults] = None,
        cache_store: Optional[BlobStore] = None,
        responder: Any = None,
        validator: Any = None,
    ) -> None:
        config = config or Defaults()
        if production_mode:
            config = replace(config, production_mode=True)
        self.config = config
        self.refresh_cache = refresh_cache
        self.responder = responder or DefaultResponder()
        self.validator = validator or DefaultValidator()
        self.cache = RouteCache(cache_store, name=config.cache_name)
        self.api_version: Optional[int] = None
        self.min_api_version = 1
        self._formats = FormatMap()
        self._registrations: List[_Registration] = []
        self._service_classes: Dict[str, type] = {}
        self._authenticators: List[type] = []
        self._error_classes: List[type] = []
        self._executor = InvocationExecutor(self)
        self._lock = threading.Lock()
        self._table: Optional[RouteTable] = None
        self._dispatcher: Optional[Dispatcher] = None
        self._negotiator: Optional[FormatNegotiator] = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def _check_open(self) -> None:
        if self._table is not None:
            raise RuntimeError("Routes are already compiled; register everything before serving")

    def set_supported_formats(self, *format_classes: Type[Format]) -> "Restler":
        self._check_open()
        self._formats.register(*format_classes)
        return self

    def add_api_class(self, cls: type, resource_path: Optional[str] = None) -> "Restler":
        return self._register(cls, resource_path)

    def add_authentication_class(self, cls: type, resource_path: Optional[str] = None) -> "Restler":
        if not callable(getattr(cls, "is_authenticated", None)):
            raise TypeError(f"{cls!r} does not implement is_authenticated(context)")
        self._register(cls, resource_path, exclude=("is_authenticated",))
        self._authenticators.append(cls)
        return self

    def add_error_class(self, cls: type) -> "Restler":
        self._check_open()
        if not isinstance(cls, type):
            raise TypeError(f"Error handler must be a class, got {cls!r}")
        self._error_classes.append(cls)
        return self

    def set_api_version(self, version: int, minimum: int = 1) -> "Restler":
        self._check_open()
        for value in (version, minimum):
            if not isinstance(value, int) or isinstance(value, bool):
                raise TypeError(f"API versions must be integers, got {value!r}")
        if minimum > version:
            raise ValueError(f"Minimum version {minimum} is above version {version}")
        self.api_version = version
        self.min_api_version = minimum
        return self

    def plug(self, plugin: str, **config: Any) -> "Restler":
        self._executor.plug(plugin, **config)
        return self

    def _register(
        self, cls: type, resource_path: Optional[str], exclude: Tuple[str, ...] = ()
    ) -> "Restler":
        self._check_open()
        if not isinstance(cls, type):
            raise TypeError(f"Service must be a class, got {cls!r}")
        if resource_path is None:
            resource_path = default_resource_path(cls)
        resource_path = resource_path.strip("/")
        if resource_path:
            resource_path += "/"
        self._registrations.append(_Registration(cls, resource_path, exclude))
        self._service_classes[class_id(cls)] = cls
        return self

    @property
    def authenticators(self) -> List[type]:
        return list(self._authenticators)

    @property
    def executor(self) -> InvocationExecutor:
        return self._executor

    def service_class(self, service_id: str) -> type:
        try:
            return self._service_classes[service_id]
        except KeyError:
            raise LookupError(f"Service {service_id!r} is not registered") from None

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return self._executor.plugin(name)

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------
    @property
    def route_table(self) -> RouteTable:
        """The compiled (and frozen) route table; compiles on first access."""
        if self._table is None:
            self._compile()
        return self._table  # type: ignore[return-value]

    def _compile(self) -> None:
        with self._lock:
            if self._table is not None:
                return
            if not self._formats:
                self._formats.register(JsonFormat)
            table = None
            production = self.config.production_mode
            if production and not self.refresh_cache:
                table = self.cache.load()
            if table is None:
                table = self._build_table()
                if production:
                    self.cache.save(table)
            self._negotiator = FormatNegotiator(self._formats, self.config)
            self._dispatcher = Dispatcher(table)
            self._table = table.freeze()
            logger.debug("Route table ready with %d routes", len(table))

    def _build_table(self) -> RouteTable:
        compiler = RouteCompiler(self.config)
        table = RouteTable()
        for registration in self._registrations:
            service = extract_service(registration.cls, registration.resource_path)
            if registration.exclude:
                methods = tuple(m for m in service.methods if m.name not in registration.exclude)
                service = replace(service, methods=methods)
            compiler.compile(service, table)
        return table

    # ------------------------------------------------------------------
    # Request lifecycle
    # ------------------------------------------------------------------
    def handle(self, request: Request) -> Response:
        context = RequestContext(self, request, self.config, started=time.perf_counter())
        try:
            if self._table is None:
                self._compile()
            response = self._serve(context)
        except NotAcceptable as exc:
            response = FormatNegotiator.not_acceptable(exc)
        except RestError as exc:
            response = self.handle_error(context, exc.status, exc.message)
        except Exception:
            logger.exception("Unhandled error serving %s %s", request.method, request.uri)
            response = self.handle_error(context, 500, "")
        self._throttle(context)
        return response

    def _serve(self, context: RequestContext) -> Response:
        request = context.request
        context.path, context.requested_version = Dispatcher.normalize(
            request.uri,
            extensions=self._formats.extensions,
            api_version=self.api_version,
            minimum=self.min_api_version,
        )
        negotiated = self._negotiator.negotiate(request)  # type: ignore[union-attr]
        if isinstance(negotiated, Response):
            return negotiated
        context.negotiated = negotiated
        invocation = self._dispatcher.resolve(  # type: ignore[union-attr]
            request.method, context.path, negotiated, request.query
        )
        context.invocation = invocation
        logger.debug("%s /%s -> %s", request.method, context.path, invocation.key)
        overrides = self.config.request_overrides(request.query, invocation.metadata)
        try:
            context.config = self.config.merge(**overrides)
        except ValueError as exc:
            raise RestError(400, str(exc)) from exc
        result = self._executor.execute(context)
        return self.respond(context, result)

    def respond(self, context: RequestContext, result: Any) -> Response:
        if safe_is_instance(result, "smartrest.http.Response"):
            return result
        invocation = context.invocation
        response_format = context.negotiated.response_format  # type: ignore[union-attr]
        data = self.responder.format_response(result)
        encoded = response_format.encode(data, pretty_print=not context.config.production_mode)
        encoded = self._executor.postprocess(context, encoded)
        status = int(invocation.metadata.get("status", 200))  # type: ignore[union-attr]
        context.status = status
        response = Response(status=status, body=encoded)
        self._apply_headers(context, response, response_format)
        response.add_headers(_header_lines(invocation.metadata.get("header") or ()))  # type: ignore[union-attr]
        return response

    def handle_error(self, context: RequestContext, status: int, message: str = "") -> Response:
        context.status = status
        reason = STATUS_MESSAGES.get(status, "Unknown")
        data: Any = None
        for handler_class in self._error_classes:
            handler = self._executor.create_instance(handler_class, context)
            method: Optional[Callable] = getattr(handler, f"handle_{status}", None)
            if not callable(method):
                continue
            data = method(context)
            if data is not None:
                break
        if safe_is_instance(data, "smartrest.http.Response"):
            return data
        if data is None:
            detail = f"{reason}: {message}" if message else reason
            data = self.responder.format_error(status, detail)
        response_format = self._error_format(context)
        body = response_format.encode(data, pretty_print=not context.config.production_mode)
        response = Response(status=status, body=body)
        self._apply_headers(context, response, response_format)
        return response

    def _error_format(self, context: RequestContext) -> Format:
        if context.negotiated is not None:
            return context.negotiated.response_format
        if self._negotiator is not None:
            response_format, _vary = self._negotiator.response_format(context.request)
            if response_format is not None:
                return response_format
        default = self._formats.default or JsonFormat
        return default()

    def _apply_headers(self, context: RequestContext, response: Response, response_format: Format) -> None:
        config = context.config
        response.set_header("Cache-Control", config.header_cache_control)
        response.set_header("Expires", _expires(config.header_expires))
        response.set_header("Content-Type", response_format.get_mime())
        response.set_header("X-Powered-By", POWERED_BY)
        if context.negotiated is not None and context.negotiated.vary_accept:
            response.set_header("Vary", "Accept")
        if config.suppress_response_code:
            response.status = 200

    def _throttle(self, context: RequestContext) -> None:
        throttle = context.config.throttle
        if not throttle:
            return
        elapsed = (time.perf_counter() - context.started) * 1000
        if elapsed < throttle:
            time.sleep((throttle - elapsed) / 1000)

    # ------------------------------------------------------------------
    # WSGI
    # ------------------------------------------------------------------
    def __call__(self, environ: Dict[str, Any], start_response: Callable) -> Iterable[bytes]:
        response = self.handle(Request.from_environ(environ))
        start_response(response.status_line, list(response.headers))
        return [response.body]


def _expires(seconds: int) -> str:
    if not seconds:
        return "0"
    return email.utils.formatdate(time.time() + seconds, usegmt=True)


def _header_lines(lines: Iterable[str]) -> List[Tuple[str, str]]:
    headers: List[Tuple[str, str]] = []
    for line in lines:
        name, sep, value = str(line).partition(":")
        if sep and name.strip():
            headers.append((name.strip(), value.strip()))
    return headers
