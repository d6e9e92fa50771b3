"""SmartRest public API surface (source of truth).

Recreate the module with these rules:
- Public exports: ``Restler`` (server facade), ``Request``/``Response``, the
  declaration helpers ``api`` and ``restricted``, ``AccessLevel``,
  ``Defaults``, the reference formats and the ``RestError`` family.
- Plugin registration: built-in plugins (``logging``) are imported for their
  side effect of calling ``InvocationExecutor.register_plugin``. Imports are
  done lazily via ``import_module`` to avoid cycles.

Constraints
-----------
- Import must stay lightweight: no server instantiation or route compilation.
- ``__version__`` is defined before any submodule import; the server reads it
  for ``X-Powered-By``.
"""

from importlib import import_module

__version__ = "0.1.0"

from .config import Defaults
from .core import AccessLevel, Restler, RequestContext, api, restricted
from .errors import (
    HandlerFault,
    NotAcceptable,
    RestError,
    RouteNotFound,
    Unauthenticated,
    UnsupportedMediaType,
    ValidationFailed,
)
from .formats import Format, JsonFormat, UrlEncodedFormat, XmlFormat
from .http import Request, Response

for _plugin in ("logging",):
    import_module(f"{__name__}.plugins.{_plugin}")
del _plugin

__all__ = [
    "Restler",
    "RequestContext",
    "Request",
    "Response",
    "api",
    "restricted",
    "AccessLevel",
    "Defaults",
    "Format",
    "JsonFormat",
    "UrlEncodedFormat",
    "XmlFormat",
    "RestError",
    "HandlerFault",
    "NotAcceptable",
    "RouteNotFound",
    "Unauthenticated",
    "UnsupportedMediaType",
    "ValidationFailed",
]
