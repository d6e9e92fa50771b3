"""Route table cache.

A compiled ``RouteTable`` is stored as a single JSON blob under a name. The
store is pluggable (``get(name) -> bytes | None``, ``put(name, data)``); two
stores ship: in-memory and a directory of files.

``RouteCache.load`` never raises: a missing, corrupt or incompatible artifact
yields ``None`` and the caller recompiles. ``RouteCache.save`` never raises
either: unserialisable default values, values that would come back with a
different type (an ``Enum`` or ``tuple`` default read back as ``str`` or
``list``) and a failing store are logged at ERROR and reported with ``False``.
A table that is not cached is simply compiled again by the next process.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union, runtime_checkable

from .descriptors import RouteTable

__all__ = ["BlobStore", "MemoryBlobStore", "FileBlobStore", "RouteCache"]

logger = logging.getLogger("smartrest.cache")


@runtime_checkable
class BlobStore(Protocol):
    def get(self, name: str) -> Optional[bytes]: ...

    def put(self, name: str, data: bytes) -> None: ...


class MemoryBlobStore:
    """Process-local store, handy for tests and single-process servers."""

    __slots__ = ("_blobs",)

    def __init__(self) -> None:
        self._blobs: Dict[str, bytes] = {}

    def get(self, name: str) -> Optional[bytes]:
        return self._blobs.get(name)

    def put(self, name: str, data: bytes) -> None:
        self._blobs[name] = bytes(data)

    def __contains__(self, name: str) -> bool:
        return name in self._blobs


class FileBlobStore:
    """One ``<name>.json`` file per blob inside ``directory``.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace`` so readers never see a partial artifact.
    """

    __slots__ = ("directory",)

    def __init__(self, directory: Union[str, os.PathLike]) -> None:
        self.directory = Path(directory)

    def path_for(self, name: str) -> Path:
        return self.directory / f"{name}.json"

    def get(self, name: str) -> Optional[bytes]:
        try:
            return self.path_for(name).read_bytes()
        except FileNotFoundError:
            return None

    def put(self, name: str, data: bytes) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, self.path_for(name))
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise


class RouteCache:
    """Load/save a compiled route table through a ``BlobStore``."""

    __slots__ = ("store", "name")

    def __init__(self, store: Optional[BlobStore] = None, name: str = "routes") -> None:
        self.store = store if store is not None else MemoryBlobStore()
        self.name = name

    def load(self) -> Optional[RouteTable]:
        data = self.store.get(self.name)
        if data is None:
            logger.debug("No cached route table named %r", self.name)
            return None
        try:
            table = RouteTable.from_json(data)
        except ValueError as exc:
            logger.warning("Discarding cached route table %r: %s", self.name, exc)
            return None
        logger.debug("Loaded %d cached routes from %r", len(table), self.name)
        return table

    def save(self, table: RouteTable) -> bool:
        try:
            data = table.to_json()
            restored = RouteTable.from_json(data)
        except (TypeError, ValueError) as exc:
            logger.error("Route table %r is not serialisable: %s", self.name, exc)
            return False
        if not _identical(table, restored):
            logger.error(
                "Route table %r does not survive serialisation unchanged; not caching it", self.name
            )
            return False
        try:
            self.store.put(self.name, data)
        except OSError as exc:
            logger.error("Could not write route table %r: %s", self.name, exc)
            return False
        return True


def _identical(left: Any, right: Any) -> bool:
    """Equality that also requires every nested value to keep its exact type."""
    if type(left) is not type(right):
        return False
    if dataclasses.is_dataclass(left):
        return all(
            _identical(getattr(left, f.name), getattr(right, f.name))
            for f in dataclasses.fields(left)
            if f.compare
        )
    if isinstance(left, dict):
        return left.keys() == right.keys() and all(_identical(left[k], right[k]) for k in left)
    if isinstance(left, (list, tuple)):
        return len(left) == len(right) and all(_identical(a, b) for a, b in zip(left, right))
    return left == right
