"""Request and response value objects.

The engine never touches a transport. Hosts build a :class:`Request` (or use
:meth:`Request.from_environ` for WSGI) and write back the :class:`Response`.
Headers are stored with lower-cased names; accessors are explicit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, urlsplit

from .errors import STATUS_MESSAGES

__all__ = ["Request", "Response", "BODY_VERBS"]

BODY_VERBS = frozenset({"POST", "PUT", "PATCH"})


def _normalize_headers(headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    return {str(k).lower(): str(v) for k, v in (headers or {}).items()}


@dataclass(frozen=True)
class Request:
    """An incoming HTTP request, already read from the transport.

    ``uri`` is the request target relative to the API root and may carry a
    query string (``/users/5.json?x=1``).
    """

    method: str
    uri: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "headers", _normalize_headers(self.headers))

    @property
    def path(self) -> str:
        return urlsplit(self.uri).path

    @property
    def query(self) -> Dict[str, str]:
        """Query string parameters; the last occurrence of a key wins."""
        return dict(parse_qsl(urlsplit(self.uri).query, keep_blank_values=True))

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("content-type") or None

    @property
    def accept(self) -> Optional[str]:
        return self.headers.get("accept") or None

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)

    @classmethod
    def from_environ(cls, environ: Mapping[str, Any]) -> "Request":
        """Build a request from a WSGI environ (``SCRIPT_NAME`` is the API root)."""
        headers: Dict[str, str] = {}
        for key, value in environ.items():
            if key.startswith("HTTP_"):
                headers[key[5:].replace("_", "-").lower()] = value
        if environ.get("CONTENT_TYPE"):
            headers["content-type"] = environ["CONTENT_TYPE"]
        uri = environ.get("PATH_INFO", "") or "/"
        if environ.get("QUERY_STRING"):
            uri = f"{uri}?{environ['QUERY_STRING']}"
        body = b""
        stream = environ.get("wsgi.input")
        length = environ.get("CONTENT_LENGTH") or ""
        if stream is not None and length.strip().isdigit():
            body = stream.read(int(length))
        return cls(
            method=environ.get("REQUEST_METHOD", "GET"),
            uri=uri,
            headers=headers,
            body=body,
        )


@dataclass
class Response:
    """Outgoing response. Mutable while the pipeline assembles it."""

    status: int = 200
    body: bytes = b""
    headers: List[Tuple[str, str]] = field(default_factory=list)

    def set_header(self, name: str, value: str) -> "Response":
        """Set ``name`` replacing any earlier value."""
        lowered = name.lower()
        self.headers = [(k, v) for k, v in self.headers if k.lower() != lowered]
        self.headers.append((name, value))
        return self

    def add_headers(self, headers: Iterable[Tuple[str, str]]) -> "Response":
        for name, value in headers:
            self.set_header(name, value)
        return self

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        lowered = name.lower()
        for key, value in reversed(self.headers):
            if key.lower() == lowered:
                return value
        return default

    @property
    def status_line(self) -> str:
        return f"{self.status} {STATUS_MESSAGES.get(self.status, 'Unknown')}"

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")
