"""Docstring annotation parser.

Service methods describe routing in their docstrings::

    def get_user(self, id: int, fields: str = "all"):
        \"\"\"Return one user.

        Fields are comma separated.

        @url GET /people/{id}
        @url GET /members/{id}
        @param id user identifier {@min 1}
        @param fields {@validate false}
        @hybrid
        @status 200
        @header Cache-Control: max-age=60
        \"\"\"

Rules
-----
- The first paragraph is ``description``; remaining free text before the first
  tag is ``long_description``.
- ``@tag value`` lines become metadata. A bare ``@tag`` is ``True``.
- ``url`` and ``header`` repeat and collect into lists; other tags keep the
  last value.
- ``{@key value}`` blocks inside a value are embedded data: under ``@param`` they
  go straight into that parameter's sub-map, elsewhere into ``<tag>_properties``.
  ``true``/``false`` and integers are converted.
- Untagged lines following a tag with a value continue that value.
- A malformed line (unknown verb in ``@url``, ``@param`` without a name,
  non-integer ``@status``, unbalanced ``{@``) is dropped and reported; the rest
  of the docstring is still parsed.
"""

from __future__ import annotations

import inspect
import re
from typing import Any, Dict, List, Optional, Tuple

__all__ = ["HTTP_VERBS", "MalformedAnnotation", "parse_docstring", "parse_url_annotation"]

HTTP_VERBS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")

REPEATABLE = frozenset({"url", "header"})

_TAG_RE = re.compile(r"^@(?P<tag>[A-Za-z_][\w-]*)(?:\s+(?P<value>.*))?$")
_EMBEDDED_RE = re.compile(r"\{@(?P<key>[\w-]+)(?:\s+(?P<value>[^{}]*))?\}")


class MalformedAnnotation(ValueError):
    """A single annotation line could not be understood."""


def parse_url_annotation(value: str) -> Tuple[str, str]:
    """Split ``"GET /path"`` into ``("GET", "path")`` (leading ``/`` dropped)."""
    parts = (value or "").split(None, 1)
    if not parts or parts[0].upper() not in HTTP_VERBS:
        raise MalformedAnnotation(f"@url needs one of {', '.join(HTTP_VERBS)}: {value!r}")
    verb = parts[0].upper()
    path = parts[1].strip().split()[0] if len(parts) > 1 and parts[1].strip() else ""
    return verb, path.lstrip("/")


def _coerce(value: Optional[str]) -> Any:
    if value is None:
        return True
    text = value.strip()
    lowered = text.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    if re.fullmatch(r"-?\d+", text):
        return int(text)
    return text


def _split_embedded(value: str) -> Tuple[str, Dict[str, Any]]:
    embedded: Dict[str, Any] = {}
    for match in _EMBEDDED_RE.finditer(value):
        embedded[match.group("key")] = _coerce(match.group("value"))
    remainder = _EMBEDDED_RE.sub("", value)
    if "{@" in remainder:
        raise MalformedAnnotation(f"Unbalanced embedded data in {value!r}")
    return " ".join(remainder.split()), embedded


def _apply_tag(metadata: Dict[str, Any], tag: str, value: Optional[str]) -> None:
    if tag == "param":
        if not value or not value.strip():
            raise MalformedAnnotation("@param without a parameter name")
        text, embedded = _split_embedded(value)
        name, _, description = text.partition(" ")
        name = name.lstrip("$")
        if not name.isidentifier():
            raise MalformedAnnotation(f"@param has an invalid name: {name!r}")
        sub = metadata.setdefault("param", {}).setdefault(name, {})
        if description:
            sub["description"] = description
        sub.update(embedded)
        return
    if tag == "url":
        verb, path = parse_url_annotation(value or "")
        metadata.setdefault("url", []).append(f"{verb} /{path}")
        return
    if tag == "status":
        try:
            metadata["status"] = int((value or "").strip())
        except ValueError:
            raise MalformedAnnotation(f"@status must be an integer: {value!r}") from None
        return
    if value is None:
        if tag in REPEATABLE:
            raise MalformedAnnotation(f"@{tag} needs a value")
        metadata[tag] = True
        return
    text, embedded = _split_embedded(value)
    if tag in REPEATABLE:
        metadata.setdefault(tag, []).append(text)
    else:
        metadata[tag] = _coerce(text) if text else True
    if embedded:
        metadata.setdefault(f"{tag}_properties", {}).update(embedded)


def parse_docstring(doc: Optional[str]) -> Tuple[Dict[str, Any], List[str]]:
    """Parse ``doc`` into metadata; return ``(metadata, errors)``."""
    metadata: Dict[str, Any] = {}
    errors: List[str] = []
    if not doc:
        return metadata, errors

    text_lines: List[str] = []
    tags: List[Tuple[str, Optional[str]]] = []
    for raw in inspect.cleandoc(doc).splitlines():
        line = raw.strip()
        match = _TAG_RE.match(line)
        if match:
            tags.append((match.group("tag"), match.group("value")))
        elif line.startswith("@"):
            errors.append(f"unparseable annotation {line!r}")
        elif tags:
            tag, value = tags[-1]
            if value is not None and line:
                tags[-1] = (tag, f"{value} {line}")
        else:
            text_lines.append(line)

    paragraphs = [p.strip() for p in "\n".join(text_lines).split("\n\n") if p.strip()]
    if paragraphs:
        metadata["description"] = " ".join(paragraphs[0].split())
    if len(paragraphs) > 1:
        metadata["long_description"] = "\n\n".join(paragraphs[1:])

    for tag, value in tags:
        try:
            _apply_tag(metadata, tag, value)
        except MalformedAnnotation as exc:
            errors.append(str(exc))
    return metadata, errors
