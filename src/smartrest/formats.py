"""Format collaborators and the registered format map.

The negotiator only consumes the :class:`Format` capability set
(``get_mime``/``get_extension``/``set_mime``/``set_extension``/``encode``/
``decode``). The concrete formats below are deliberately small reference
implementations.
"""

from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from typing import Any, Dict, Iterable, List, Optional, Type
from urllib.parse import parse_qsl, urlencode

from .errors import RestError

__all__ = [
    "Format",
    "FormatMap",
    "JsonFormat",
    "UrlEncodedFormat",
    "XmlFormat",
]


class Format:
    """Base class for data formats.

    Subclasses declare ``MIME_MAP`` (MIME type → extension); the first pair is
    the format's default MIME and extension.
    """

    MIME_MAP: Dict[str, str] = {}

    def __init__(self) -> None:
        mime, extension = next(iter(self.MIME_MAP.items()), ("", ""))
        self._mime = mime
        self._extension = extension

    def get_mime_map(self) -> Dict[str, str]:
        return dict(self.MIME_MAP)

    def get_mime(self) -> str:
        return self._mime

    def set_mime(self, mime: str) -> None:
        self._mime = mime

    def get_extension(self) -> str:
        return self._extension

    def set_extension(self, extension: str) -> None:
        self._extension = extension

    def encode(self, data: Any, pretty_print: bool = False) -> bytes:
        raise NotImplementedError

    def decode(self, data: bytes) -> Any:
        """Decoded body; a mapping supplies named argument values."""
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._mime}>"


class JsonFormat(Format):
    MIME_MAP = {"application/json": "json"}

    def encode(self, data: Any, pretty_print: bool = False) -> bytes:
        indent = 4 if pretty_print else None
        return json.dumps(data, indent=indent, default=str).encode("utf-8")

    def decode(self, data: bytes) -> Any:
        if not data.strip():
            return {}
        try:
            return json.loads(data)
        except ValueError as exc:
            raise RestError(400, f"Error decoding request. {exc}") from exc


class UrlEncodedFormat(Format):
    """``application/x-www-form-urlencoded`` bodies; only ever a request format."""

    MIME = "application/x-www-form-urlencoded"
    MIME_MAP = {MIME: "post"}

    def encode(self, data: Any, pretty_print: bool = False) -> bytes:
        if not isinstance(data, dict):
            data = {"response": data}
        return urlencode(data, doseq=True).encode("utf-8")

    def decode(self, data: bytes) -> Dict[str, Any]:
        return dict(parse_qsl(data.decode("utf-8"), keep_blank_values=True))


class XmlFormat(Format):
    """Flat XML: one child element per key under a ``<response>`` root."""

    MIME_MAP = {"application/xml": "xml", "text/xml": "xml"}
    ROOT = "response"

    def encode(self, data: Any, pretty_print: bool = False) -> bytes:
        root = ET.Element(self.ROOT)
        self._fill(root, data)
        if pretty_print:
            ET.indent(root)
        return ET.tostring(root, encoding="utf-8", xml_declaration=True)

    def _fill(self, node: ET.Element, data: Any) -> None:
        if isinstance(data, dict):
            for key, value in data.items():
                self._fill(ET.SubElement(node, str(key)), value)
        elif isinstance(data, (list, tuple)):
            for value in data:
                self._fill(ET.SubElement(node, "item"), value)
        elif data is not None:
            node.text = str(data)

    def decode(self, data: bytes) -> Dict[str, Any]:
        if not data.strip():
            return {}
        try:
            root = ET.fromstring(data)
        except ET.ParseError as exc:
            raise RestError(400, f"Error decoding request. {exc}") from exc
        return {child.tag: (child.text or "") for child in root}


class FormatMap:
    """Registered formats keyed by MIME type and by extension.

    The first class passed to :meth:`register` becomes the default format;
    first registration of a key wins.
    """

    __slots__ = ("_by_key", "_classes")

    def __init__(self, format_classes: Iterable[Type[Format]] = ()) -> None:
        self._by_key: Dict[str, Type[Format]] = {}
        self._classes: List[Type[Format]] = []
        self.register(*format_classes)

    def register(self, *format_classes: Type[Format]) -> None:
        for format_class in format_classes:
            if not isinstance(format_class, type) or not issubclass(format_class, Format):
                raise TypeError(f"{format_class!r} is not a valid Format class")
            if format_class not in self._classes:
                self._classes.append(format_class)
            for mime, extension in format_class.MIME_MAP.items():
                self._by_key.setdefault(mime.lower(), format_class)
                self._by_key.setdefault(extension.lower(), format_class)

    def __bool__(self) -> bool:
        return bool(self._classes)

    def __contains__(self, key: str) -> bool:
        return key.lower() in self._by_key

    def get(self, key: str) -> Optional[Type[Format]]:
        return self._by_key.get(key.lower())

    @property
    def default(self) -> Optional[Type[Format]]:
        return self._classes[0] if self._classes else None

    @property
    def extensions(self) -> List[str]:
        """Registered extensions, e.g. ``[".json", ".xml"]``."""
        seen: List[str] = []
        for format_class in self._classes:
            for extension in format_class.MIME_MAP.values():
                dotted = f".{extension.lower()}"
                if dotted not in seen:
                    seen.append(dotted)
        return seen
