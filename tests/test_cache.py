"""Tests for the route table cache and blob stores."""

import logging
from enum import Enum

from smartrest import Defaults, Request, Restler
from smartrest.core.cache import FileBlobStore, MemoryBlobStore, RouteCache
from smartrest.core.compiler import RouteCompiler
from smartrest.core.descriptors import RouteTable
from smartrest.core.metadata import extract_service


class Users:
    def get_index(self):
        return [{"id": 1}]

    def get_item(self, id: int, format: str = "full"):
        """One user.

        @status 200
        @param id {@min 1}
        """
        return {"id": id, "format": format}


class Opaque:
    def get_when(self, marker=object()):
        return "x"


class Mode(str, Enum):
    FAST = "fast"
    SLOW = "slow"


class Modes:
    def get_mode(self, mode=Mode.FAST, window=(1, 2)):
        return {"is_enum": isinstance(mode, Mode), "window": type(window).__name__}


def _table(cls=Users):
    return RouteCompiler(Defaults()).compile(extract_service(cls, "users/"), RouteTable())


def test_memory_round_trip():
    table = _table()
    cache = RouteCache(MemoryBlobStore())
    assert cache.save(table) is True
    loaded = cache.load()
    assert loaded is not None
    assert loaded.to_json() == table.to_json()
    assert loaded.describe() == table.describe()
    assert loaded.entries("GET")[1].method.param_metadata("id") == {"min": 1}


def test_missing_blob_loads_nothing():
    assert RouteCache(MemoryBlobStore(), "absent").load() is None


def test_corrupt_blob_is_discarded(caplog):
    store = MemoryBlobStore()
    store.put("routes", b"{not json")
    with caplog.at_level(logging.WARNING, logger="smartrest.cache"):
        assert RouteCache(store).load() is None
    assert "Discarding cached route table" in caplog.text


def test_unserialisable_defaults_are_reported(caplog):
    store = MemoryBlobStore()
    with caplog.at_level(logging.ERROR, logger="smartrest.cache"):
        assert RouteCache(store).save(_table(Opaque)) is False
    assert "not serialisable" in caplog.text
    assert "routes" not in store


def test_file_store_writes_atomically(tmp_path):
    store = FileBlobStore(tmp_path / "cache")
    cache = RouteCache(store, "api")
    assert cache.save(_table()) is True
    assert store.path_for("api").exists()
    assert [p.name for p in (tmp_path / "cache").iterdir()] == ["api.json"]
    assert cache.load().describe() == _table().describe()
    assert store.get("other") is None


def test_production_mode_saves_and_reuses_the_table(monkeypatch):
    store = MemoryBlobStore()
    first = Restler(production_mode=True, cache_store=store)
    first.add_api_class(Users)
    assert first.handle(Request("GET", "/users")).status == 200
    assert "routes" in store

    second = Restler(production_mode=True, cache_store=store)
    second.add_api_class(Users)

    def boom():
        raise AssertionError("table should come from the cache")

    monkeypatch.setattr(second, "_build_table", boom)
    response = second.handle(Request("GET", "/users/item/3"))
    assert response.status == 200
    assert b'"id":3' in response.body.replace(b" ", b"")


def test_refresh_cache_forces_recompilation():
    store = MemoryBlobStore()
    store.put("routes", RouteTable().to_json())
    restler = Restler(production_mode=True, refresh_cache=True, cache_store=store)
    restler.add_api_class(Users)
    assert len(restler.route_table) == 2
    assert len(RouteCache(store).load()) == 2


def test_development_mode_ignores_the_cache():
    store = MemoryBlobStore()
    restler = Restler(cache_store=store)
    restler.add_api_class(Users)
    assert len(restler.route_table) == 2
    assert "routes" not in store


def test_defaults_that_change_type_are_not_cached(caplog):
    store = MemoryBlobStore()
    with caplog.at_level(logging.ERROR, logger="smartrest.cache"):
        assert RouteCache(store).save(_table(Modes)) is False
    assert "does not survive serialisation" in caplog.text
    assert "routes" not in store


def test_warm_and_cold_servers_bind_the_same_defaults():
    store = MemoryBlobStore()
    bodies = []
    for _ in range(2):
        restler = Restler(production_mode=True, cache_store=store)
        restler.add_api_class(Modes)
        bodies.append(restler.handle(Request("GET", "/modes/mode")).body)
    assert bodies[0] == bodies[1]
    assert b'"is_enum":true' in bodies[0].replace(b" ", b"")
    assert b'"window":"tuple"' in bodies[0].replace(b" ", b"")
