"""Format negotiation (source of truth).

``FormatNegotiator(format_map, config)`` picks the response and request
formats for one request and decodes its body.

Response format, first success wins
-----------------------------------
1. Path extension. The path is split on ``.``; pieces are examined from the
   rightmost leftwards (the piece before the first dot is never an
   extension), cut at the first ``/``, lower-cased and looked up.
2. ``Accept``. Entries are split on ``,``. An explicit ``q=`` parameter is the
   quality, otherwise ``(N - position) / N`` for N entries. Entries are
   stable-sorted by quality (highest first) and the first registered MIME wins;
   the chosen format gets that MIME and ``vary_accept`` is set.
3. Wildcards, checked in the order of ``config.wildcard_formats``
   (``application/*`` then ``text/*``) and finally ``*/*`` which selects the
   default format. A missing ``Accept`` counts as ``*/*``.
4. Nothing left: a plain-text 406 ``Response`` is returned instead of a
   negotiated request. No exception is raised.

Request format
--------------
``Content-Type`` with parameters after ``;`` ignored. URL-encoded forms always
use ``UrlEncodedFormat``; a registered MIME gets a fresh instance of its
format with that MIME; anything else raises ``UnsupportedMediaType``. Without
a ``Content-Type`` the response format is reused.

Bodies are decoded only for body verbs (POST/PUT/PATCH). The decoded value is
kept as ``payload``; only a mapping payload also feeds ``body``, the pool of
named argument values.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

from ..config import Defaults
from ..errors import NotAcceptable, UnsupportedMediaType
from ..formats import Format, FormatMap, UrlEncodedFormat
from ..http import BODY_VERBS, Request, Response
from .descriptors import NegotiatedRequest

__all__ = ["FormatNegotiator", "parse_accept", "strip_extensions", "NOT_ACCEPTABLE_MESSAGE"]

NOT_ACCEPTABLE_MESSAGE = (
    "406 Not Acceptable: The server was unable to negotiate content for this request."
)


def strip_extensions(path: str, extensions: Iterable[str]) -> str:
    """Drop recognised ``.ext`` suffixes from every segment of ``path``."""
    extensions = tuple(ext.lower() for ext in extensions)
    if not extensions:
        return path
    segments = []
    for segment in path.split("/"):
        lowered = segment.lower()
        for extension in extensions:
            if lowered.endswith(extension) and len(segment) > len(extension):
                segment = segment[: -len(extension)]
                break
        segments.append(segment)
    return "/".join(segments)


def parse_accept(header: Optional[str]) -> List[Tuple[str, float]]:
    """Return ``(mime, quality)`` pairs sorted by quality, ties kept in order."""
    if not header or not header.strip():
        return [("*/*", 1.0)]
    chunks = [chunk.strip() for chunk in header.lower().split(",") if chunk.strip()]
    total = len(chunks)
    ranked: List[Tuple[str, float]] = []
    for position, chunk in enumerate(chunks):
        parts = [part.strip() for part in chunk.split(";")]
        mime = parts[0]
        quality = (total - position) / total
        for param in parts[1:]:
            key, _, value = param.partition("=")
            if key.strip() == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 0.0
        ranked.append((mime, quality))
    return sorted(ranked, key=lambda item: item[1], reverse=True)


class FormatNegotiator:
    """Selects request/response formats against a ``FormatMap``."""

    __slots__ = ("format_map", "config")

    def __init__(self, format_map: FormatMap, config: Optional[Defaults] = None) -> None:
        self.format_map = format_map
        self.config = config or Defaults()

    # ------------------------------------------------------------------
    # Response side
    # ------------------------------------------------------------------
    def from_extension(self, path: str) -> Optional[Format]:
        pieces = path.split(".")[1:]
        for piece in reversed(pieces):
            extension = piece.split("/", 1)[0].split("?", 1)[0].lower()
            if not extension:
                continue
            format_class = self.format_map.get(extension)
            if format_class is not None and extension in format_class.MIME_MAP.values():
                format_ = format_class()
                format_.set_extension(extension)
                return format_
        return None

    def from_accept(self, accept: Optional[str]) -> Tuple[Optional[Format], bool]:
        """Return ``(format, vary_accept)``; ``format`` is ``None`` when nothing fits."""
        ranked = parse_accept(accept)
        for mime, quality in ranked:
            if quality <= 0 or "/" not in mime or "*" in mime:
                continue
            format_class = self.format_map.get(mime)
            if format_class is not None:
                format_ = format_class()
                format_.set_mime(mime)
                return format_, True
        mimes = {mime for mime, quality in ranked if quality > 0}
        for wildcard, key in self.config.wildcard_formats.items():
            if wildcard in mimes:
                format_class = self.format_map.get(key)
                if format_class is not None:
                    return format_class(), False
        if "*/*" in mimes and self.format_map.default is not None:
            return self.format_map.default(), False
        return None, False

    def response_format(self, request: Request) -> Tuple[Optional[Format], bool]:
        format_ = self.from_extension(request.path)
        if format_ is not None:
            return format_, False
        return self.from_accept(request.accept)

    # ------------------------------------------------------------------
    # Request side
    # ------------------------------------------------------------------
    def request_format(self, request: Request, response_format: Format) -> Format:
        content_type = request.content_type
        if not content_type:
            return response_format
        mime = content_type.split(";", 1)[0].strip().lower()
        if mime == UrlEncodedFormat.MIME:
            return UrlEncodedFormat()
        format_class = self.format_map.get(mime) if "/" in mime else None
        if format_class is None:
            raise UnsupportedMediaType(f"Content type `{mime}` is not supported.")
        format_ = format_class()
        format_.set_mime(mime)
        return format_

    def decode_body(self, request: Request, request_format: Format) -> Any:
        """Decoded body of a body verb, ``None`` when there is nothing to decode."""
        if request.method not in BODY_VERBS or not request.body:
            return None
        return request_format.decode(request.body)

    # ------------------------------------------------------------------
    # Whole request
    # ------------------------------------------------------------------
    def negotiate(self, request: Request) -> Union[NegotiatedRequest, Response]:
        response_format, vary_accept = self.response_format(request)
        if response_format is None:
            return self.not_acceptable()
        request_format = self.request_format(request, response_format)
        payload = self.decode_body(request, request_format)
        return NegotiatedRequest(
            request_format=request_format,
            response_format=response_format,
            body=dict(payload) if isinstance(payload, Mapping) else {},
            payload=payload,
            vary_accept=vary_accept,
        )

    @staticmethod
    def not_acceptable(error: Optional[NotAcceptable] = None) -> Response:
        """Plain-text answer for ``error``; never encoded with a negotiated format."""
        message = (error.message if error is not None else "") or NOT_ACCEPTABLE_MESSAGE
        response = Response(status=NotAcceptable.status, body=message.encode("utf-8"))
        response.set_header("Content-Type", "text/plain; charset=utf-8")
        return response

    def strip_extensions(self, path: str) -> str:
        return strip_extensions(path, self.format_map.extensions)
