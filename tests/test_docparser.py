"""Tests for docstring annotation parsing."""

import pytest

from smartrest.core.docparser import MalformedAnnotation, parse_docstring, parse_url_annotation

USER_DOC = """Return one user.

Fields are comma separated.

@url GET /people/{id}
@url GET /members/{id}
@param id user identifier {@min 1}
@param fields {@validate false}
@hybrid
@status 201
@header Cache-Control: max-age=60
"""


def test_descriptions_and_tags():
    metadata, errors = parse_docstring(USER_DOC)
    assert errors == []
    assert metadata["description"] == "Return one user."
    assert metadata["long_description"] == "Fields are comma separated."
    assert metadata["url"] == ["GET /people/{id}", "GET /members/{id}"]
    assert metadata["hybrid"] is True
    assert metadata["status"] == 201
    assert metadata["header"] == ["Cache-Control: max-age=60"]


def test_param_sub_maps_hold_embedded_data():
    metadata, _ = parse_docstring(USER_DOC)
    assert metadata["param"]["id"] == {"description": "user identifier", "min": 1}
    assert metadata["param"]["fields"] == {"validate": False}


def test_continuation_lines_extend_previous_tag():
    doc = """Lookup.

    @param id the user
        identifier to load
    """
    metadata, errors = parse_docstring(doc)
    assert errors == []
    assert metadata["param"]["id"]["description"] == "the user identifier to load"


def test_url_minus_suppresses_routing():
    metadata, errors = parse_docstring("Hidden.\n\n@url-")
    assert errors == []
    assert metadata["url-"] is True


def test_embedded_data_on_other_tags():
    metadata, _ = parse_docstring("@cache max-age=10 {@scope public}")
    assert metadata["cache"] == "max-age=10"
    assert metadata["cache_properties"] == {"scope": "public"}


def test_malformed_lines_are_dropped_and_reported():
    doc = """Partly broken.

    @url FETCH /nowhere
    @param
    @status often
    @param id {@min 1
    @protected
    """
    metadata, errors = parse_docstring(doc)
    assert len(errors) == 4
    assert "url" not in metadata
    assert "status" not in metadata
    assert "param" not in metadata
    assert metadata["protected"] is True


def test_empty_docstring():
    assert parse_docstring(None) == ({}, [])
    assert parse_docstring("") == ({}, [])


def test_parse_url_annotation():
    assert parse_url_annotation("get /users/{id}") == ("GET", "users/{id}")
    assert parse_url_annotation("POST /") == ("POST", "")
    assert parse_url_annotation("DELETE") == ("DELETE", "")
    with pytest.raises(MalformedAnnotation):
        parse_url_annotation("SEND /users")
    with pytest.raises(MalformedAnnotation):
        parse_url_annotation("")
