"""Exception family shared by the compiler, dispatcher and executor.

Every request-time failure is a :class:`RestError` carrying an HTTP status.
The server funnels all of them through ``Restler.handle_error`` except
:class:`NotAcceptable`, which is answered directly because no response
format exists yet to encode an error body.
"""

from __future__ import annotations

from typing import Dict, Optional

__all__ = [
    "STATUS_MESSAGES",
    "RestError",
    "HandlerFault",
    "NotAcceptable",
    "RouteNotFound",
    "Unauthenticated",
    "UnsupportedMediaType",
    "ValidationFailed",
]

STATUS_MESSAGES: Dict[int, str] = {
    100: "Continue",
    101: "Switching Protocols",
    200: "OK",
    201: "Created",
    202: "Accepted",
    203: "Non-Authoritative Information",
    204: "No Content",
    205: "Reset Content",
    206: "Partial Content",
    300: "Multiple Choices",
    301: "Moved Permanently",
    302: "Found",
    303: "See Other",
    304: "Not Modified",
    305: "Use Proxy",
    307: "Temporary Redirect",
    400: "Bad Request",
    401: "Unauthorized",
    402: "Payment Required",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    406: "Not Acceptable",
    407: "Proxy Authentication Required",
    408: "Request Timeout",
    409: "Conflict",
    410: "Gone",
    411: "Length Required",
    412: "Precondition Failed",
    413: "Request Entity Too Large",
    414: "Request-URI Too Long",
    415: "Unsupported Media Type",
    416: "Requested Range Not Satisfiable",
    417: "Expectation Failed",
    422: "Unprocessable Entity",
    429: "Too Many Requests",
    500: "Internal Server Error",
    501: "Not Implemented",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Gateway Timeout",
    505: "HTTP Version Not Supported",
}


class RestError(Exception):
    """An error that maps directly to an HTTP status code.

    Services raise it (or a subclass) to abort with a status; the server
    catches it and dispatches to the registered error handlers.
    """

    status: int = 500

    def __init__(self, status: Optional[int] = None, message: str = "") -> None:
        if status is not None:
            self.status = int(status)
        self.message = message
        super().__init__(str(self))

    @property
    def reason(self) -> str:
        return STATUS_MESSAGES.get(self.status, "Unknown")

    def __str__(self) -> str:
        if self.message:
            return f"{self.status}: {self.message}"
        return str(self.status)


class UnsupportedMediaType(RestError):
    """415 - the request ``Content-Type`` is not registered."""

    status = 415

    def __init__(self, message: str = "") -> None:
        super().__init__(message=message)


class NotAcceptable(RestError):
    """406 - no response format could be negotiated."""

    status = 406

    def __init__(self, message: str = "") -> None:
        super().__init__(message=message)


class RouteNotFound(RestError):
    """404 - no pattern matches the verb and path."""

    status = 404

    def __init__(self, message: str = "") -> None:
        super().__init__(message=message)


class Unauthenticated(RestError):
    """401 - access level demands authentication that did not succeed."""

    status = 401

    def __init__(self, message: str = "") -> None:
        super().__init__(message=message)


class ValidationFailed(RestError):
    """400 - a bound argument was rejected by the validator."""

    status = 400

    def __init__(self, message: str = "", *, parameter: Optional[str] = None) -> None:
        self.parameter = parameter
        super().__init__(message=message)


class HandlerFault(RestError):
    """Application-level failure signalled by a service method."""
