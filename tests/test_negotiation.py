"""Tests for request/response format negotiation."""

import pytest

from smartrest import Defaults, JsonFormat, Request, Response, UnsupportedMediaType, UrlEncodedFormat, XmlFormat
from smartrest.core.negotiation import NOT_ACCEPTABLE_MESSAGE, FormatNegotiator, parse_accept, strip_extensions
from smartrest.formats import FormatMap


def _negotiator(*formats, **config):
    return FormatNegotiator(FormatMap(formats or (JsonFormat, XmlFormat)), Defaults(**config))


def test_extension_beats_accept():
    request = Request("GET", "/users/5.xml", headers={"Accept": "application/json"})
    fmt, vary = _negotiator().response_format(request)
    assert isinstance(fmt, XmlFormat)
    assert fmt.get_extension() == "xml"
    assert vary is False


def test_explicit_quality_orders_accept():
    request = Request("GET", "/users", headers={"Accept": "application/xml;q=0.5, application/json;q=0.9"})
    fmt, vary = _negotiator().response_format(request)
    assert isinstance(fmt, JsonFormat)
    assert vary is True


def test_position_ranks_accept_without_quality():
    request = Request("GET", "/users", headers={"Accept": "text/xml, application/json"})
    fmt, vary = _negotiator().response_format(request)
    assert isinstance(fmt, XmlFormat)
    assert fmt.get_mime() == "text/xml"
    assert vary is True


def test_unregistered_types_are_skipped():
    request = Request("GET", "/users", headers={"Accept": "text/html, application/xml;q=0.1"})
    fmt, _ = _negotiator().response_format(request)
    assert isinstance(fmt, XmlFormat)


@pytest.mark.parametrize(
    "accept, expected",
    [
        ("text/*", XmlFormat),
        ("application/*", JsonFormat),
        ("*/*", JsonFormat),
        (None, JsonFormat),
    ],
)
def test_wildcards(accept, expected):
    headers = {"Accept": accept} if accept else {}
    fmt, vary = _negotiator().response_format(Request("GET", "/users", headers=headers))
    assert isinstance(fmt, expected)
    assert vary is False


def test_star_star_uses_first_registered_format():
    fmt, _ = _negotiator(XmlFormat, JsonFormat).response_format(Request("GET", "/x", headers={"Accept": "*/*"}))
    assert isinstance(fmt, XmlFormat)


def test_not_acceptable_is_a_plain_response():
    result = _negotiator().negotiate(Request("GET", "/users", headers={"Accept": "image/png"}))
    assert isinstance(result, Response)
    assert result.status == 406
    assert result.text == NOT_ACCEPTABLE_MESSAGE


def test_request_format_from_content_type():
    negotiator = _negotiator()
    request = Request("POST", "/users", headers={"Content-Type": "Application/XML; charset=utf-8"}, body=b"<r><a>1</a></r>")
    negotiated = negotiator.negotiate(request)
    assert isinstance(negotiated.request_format, XmlFormat)
    assert negotiated.request_format.get_mime() == "application/xml"
    assert isinstance(negotiated.response_format, JsonFormat)
    assert negotiated.body == {"a": "1"}


def test_urlencoded_forms_are_always_understood():
    request = Request(
        "POST",
        "/users",
        headers={"Content-Type": "application/x-www-form-urlencoded; charset=utf-8"},
        body=b"name=ann&age=7",
    )
    negotiated = _negotiator(JsonFormat).negotiate(request)
    assert isinstance(negotiated.request_format, UrlEncodedFormat)
    assert negotiated.body == {"name": "ann", "age": "7"}


def test_unsupported_content_type():
    request = Request("POST", "/users", headers={"Content-Type": "text/csv"}, body=b"a,b")
    with pytest.raises(UnsupportedMediaType):
        _negotiator().negotiate(request)


def test_missing_content_type_reuses_response_format():
    request = Request("PUT", "/users/1.json", body=b'{"name": "ann"}')
    negotiated = _negotiator().negotiate(request)
    assert negotiated.request_format is negotiated.response_format
    assert negotiated.body == {"name": "ann"}


def test_bodies_of_get_requests_are_not_decoded():
    request = Request("GET", "/users", headers={"Content-Type": "application/json"}, body=b"{not json")
    assert _negotiator().negotiate(request).body == {}


def test_parse_accept_is_stable_for_ties():
    ranked = parse_accept("a/x;q=0.5, b/y;q=0.5, c/z;q=0.9")
    assert [mime for mime, _ in ranked] == ["c/z", "a/x", "b/y"]


def test_strip_extensions():
    assert strip_extensions("users/5.json", [".json", ".xml"]) == "users/5"
    assert strip_extensions("report.XML/page", [".xml"]) == "report/page"
    assert strip_extensions(".json", [".json"]) == ".json"
    assert strip_extensions("users/5.csv", [".json"]) == "users/5.csv"


def test_non_mapping_bodies_are_kept_as_payload_only():
    request = Request("POST", "/notes", headers={"Content-Type": "application/json"}, body=b"[1, 2]")
    negotiated = _negotiator().negotiate(request)
    assert negotiated.payload == [1, 2]
    assert negotiated.body == {}
