"""Core runtime aggregator (source of truth).

Exposes the building blocks from one module without extra logic:

* ``descriptors`` → ``AccessLevel`` and the descriptor data model
* ``decorators`` → ``api``, ``restricted``
* ``metadata`` → ``extract_service``
* ``compiler`` → ``RouteCompiler``
* ``cache`` → ``RouteCache`` and the blob stores
* ``negotiation`` → ``FormatNegotiator``
* ``dispatcher`` → ``Dispatcher``
* ``executor`` → ``InvocationExecutor``
* ``server`` → ``Restler``, ``RequestContext``

Importing this module registers no plugins and compiles nothing.
"""

from .cache import FileBlobStore, MemoryBlobStore, RouteCache
from .compiler import RouteCompiler
from .decorators import api, restricted
from .descriptors import (
    AccessLevel,
    InvocationDescriptor,
    MethodDescriptor,
    NegotiatedRequest,
    ParameterDescriptor,
    RouteEntry,
    RouteTable,
    ServiceDescriptor,
)
from .dispatcher import Dispatcher
from .executor import InvocationExecutor
from .metadata import extract_service
from .negotiation import FormatNegotiator
from .server import RequestContext, Restler

__all__ = [
    "AccessLevel",
    "Dispatcher",
    "FileBlobStore",
    "FormatNegotiator",
    "InvocationDescriptor",
    "InvocationExecutor",
    "MemoryBlobStore",
    "MethodDescriptor",
    "NegotiatedRequest",
    "ParameterDescriptor",
    "RequestContext",
    "Restler",
    "RouteCache",
    "RouteCompiler",
    "RouteEntry",
    "RouteTable",
    "ServiceDescriptor",
    "api",
    "extract_service",
    "restricted",
]
