"""Tests for route compilation."""

import pytest

from smartrest import Defaults, api, restricted
from smartrest.core.compiler import RouteCompiler, derive_access_level, split_method_name
from smartrest.core.descriptors import AccessLevel, RouteEntry, RouteTable
from smartrest.core.metadata import extract_service


class Item:
    def get_item(self, id, format="full"):
        return {}


class Users:
    def get_index(self):
        return []

    @restricted
    def post_validate(self, token):
        """Validate a token.

        @hybrid
        """
        return True


class Manual:
    def find(self, id):
        """Find by id.

        @url GET /people/{id}
        @url GET /members/:id
        """
        return {}

    def hidden(self):
        """Not routed.

        @url-
        """

    @api(access="protected")
    def put_record(self, id: int, request_data=None):
        return {}


class Search:
    def get_find(self, query, page: int = 1, size: int = 10):
        return []

    def get_tagged(self, tags: list, limit: int):
        return []


def _compile(cls, resource_path="", **config):
    compiler = RouteCompiler(Defaults(**config))
    return compiler.compile(extract_service(cls, resource_path))


def test_ambiguity_avoidance_emits_single_route():
    table = _compile(Item)
    assert table.describe() == [("GET", "item/{id}", table.entries("GET")[0].service + ".get_item")]


def test_without_ambiguity_avoidance_every_prefix_is_routed():
    table = _compile(Item, smart_auto_routing=False)
    assert [entry.pattern for entry in table.entries("GET")] == [
        "item",
        "item/{id}",
        "item/{id}/{format}",
    ]


def test_index_and_body_verbs():
    table = _compile(Users, "users/")
    assert [entry.pattern for entry in table.entries("GET")] == ["users"]
    post = table.entries("POST")
    assert [entry.pattern for entry in post] == ["users/validate", "users/validate/{token}"]
    assert all(entry.access_level == AccessLevel.PROTECTED_METHOD for entry in post)


def test_manual_routes_replace_auto_routing():
    table = _compile(Manual, "manual/")
    assert [entry.pattern for entry in table.entries("GET")] == [
        "manual/people/{id}",
        "manual/members/:id",
    ]
    put = table.entries("PUT")
    assert [entry.pattern for entry in put] == ["manual/record", "manual/record/{id}"]
    assert put[0].access_level == AccessLevel.PROTECTED
    assert all(entry.method.name != "hidden" for bucket in table.routes.values() for entry in bucket)


def test_walk_stops_at_optional_or_non_primitive_parameters():
    table = _compile(Search, "search/")
    assert [entry.pattern for entry in table.entries("GET")] == ["search/find/{query}", "search/tagged"]


def test_auto_routing_can_be_disabled():
    table = _compile(Manual, "manual/", auto_routing=False)
    assert table.verbs == ("GET",)
    assert len(table) == 2


def test_compilation_is_deterministic():
    first = _compile(Users, "users/")
    second = _compile(Users, "users/")
    assert first.to_json() == second.to_json()


def test_entries_carry_defaults_and_arguments():
    entry = _compile(Item).entries("GET")[0]
    assert entry.defaults == (None, "full")
    assert entry.arguments == {"id": 0, "format": 1}


def test_split_method_name():
    assert split_method_name("get_index") == ("GET", "")
    assert split_method_name("getItem") == ("GET", "item")
    assert split_method_name("deleteUser") == ("DELETE", "user")
    assert split_method_name("index") == ("GET", "")
    assert split_method_name("report") == ("GET", "report")
    assert split_method_name("post") == ("POST", "")


def test_derive_access_level_highest_signal_wins():
    service = extract_service(Users, "users/")
    levels = {method.name: derive_access_level(method) for method in service.methods}
    assert levels == {"get_index": AccessLevel.PUBLIC, "post_validate": AccessLevel.PROTECTED_METHOD}


def test_duplicate_pattern_replaced_in_place():
    first = _compile(Item).entries("GET")[0]
    other = _compile(Users, "users/").entries("GET")[0]
    table = RouteTable()
    table.add(first)
    table.add(other)
    table.add(RouteEntry("GET", "item/{id}", other.service, other.method))
    assert [(entry.pattern, entry.method.name) for entry in table.entries("GET")] == [
        ("item/{id}", "get_index"),
        ("users", "get_index"),
    ]


def test_frozen_table_rejects_additions():
    table = _compile(Item).freeze()
    with pytest.raises(RuntimeError):
        table.add(table.entries("GET")[0])
