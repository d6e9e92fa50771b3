"""End-to-end tests for the Restler request lifecycle."""

import asyncio
import io
import json
import logging
import sys

import pytest

from smartrest import (
    Defaults,
    JsonFormat,
    NotAcceptable,
    Request,
    Response,
    RestError,
    Restler,
    XmlFormat,
    api,
    restricted,
)


class Users:
    def get_index(self):
        return [{"id": 1}, {"id": 2}]

    def get_item(self, id: int, format: str = "full"):
        """One user.

        @param id {@min 1}
        """
        return {"id": id, "format": format}

    @restricted
    def post_validate(self, token: str):
        return {"valid": token == "secret"}


class KeyAuth:
    def is_authenticated(self, context):
        return context.request.query.get("key") == "open"


class Profile:
    context = None

    def get_me(self):
        """Current profile.

        @hybrid
        """
        return {"authenticated": self.context.authenticated}

    @api(access="protected")
    def get_secret(self):
        return {"secret": 42}


class Shop:
    restler = None

    def get_fail(self):
        raise RestError(409, "taken")

    def get_crash(self):
        raise ValueError("boom")

    @api(status=201, header="X-Total: 3")
    def post_order(self, item: str):
        return {"item": item}

    def get_slow(self):
        """Slow on purpose.

        @throttle 30
        """
        return {}

    def get_server(self):
        return {"same": self.restler is not None}

    def get_flags(self, *, verbose: bool = False):
        return {"verbose": verbose}

    def get_raw(self):
        return Response(status=202, body=b"raw")

    def get_picky(self):
        raise NotAcceptable("Only sepia tones are available.")

    def post_bulk(self, request_data):
        return {"type": type(request_data).__name__, "value": request_data}


class Things:
    @api(url="GET /lookup")
    def lookup(self, name):
        return {"name": name}

    def get_loose(self, code: int):
        """Loose.

        @param code {@validate false}
        """
        return {"code": code}


HOOK_CALLS = []


class Hooks:
    def _json_get_echo(self, word):
        HOOK_CALLS.append(("pre", word))

    def get_echo(self, word):
        return {"word": word}

    def _get_echo_json(self, encoded):
        return encoded.replace(b"hello", b"HELLO")


class Versioned:
    context = None

    def get_index(self):
        return {"version": self.context.requested_version}


class ErrorPages:
    def handle_404(self, context):
        return {"missing": context.path}


class Slow:
    async def get_wait(self):
        await asyncio.sleep(0)
        return {"done": True}


def _restler(*classes, **kwargs):
    restler = Restler(**kwargs)
    for cls in classes:
        restler.add_api_class(cls)
    return restler


def _json(response):
    return json.loads(response.body)


def test_users_scenario():
    restler = _restler(Users)
    restler.add_authentication_class(KeyAuth)

    response = restler.handle(Request("GET", "/users"))
    assert response.status == 200
    assert _json(response) == [{"id": 1}, {"id": 2}]

    response = restler.handle(Request("GET", "/users/item/5?format=short"))
    assert _json(response) == {"id": 5, "format": "short"}

    body = b'{"token": "secret"}'
    headers = {"Content-Type": "application/json"}
    response = restler.handle(Request("POST", "/users/validate?key=open", headers=headers, body=body))
    assert response.status == 200
    assert _json(response) == {"valid": True}

    response = restler.handle(Request("POST", "/users/validate", headers=headers, body=body))
    assert response.status == 401
    assert _json(response) == {"error": {"code": 401, "message": "Unauthorized"}}


def test_authenticator_methods_are_not_routed():
    restler = _restler(Users)
    restler.add_authentication_class(KeyAuth)
    patterns = [pattern for _verb, pattern, _target in restler.route_table.describe()]
    assert not any(pattern.startswith("keyauth") for pattern in patterns)


def test_hybrid_access_proceeds_unauthenticated():
    restler = _restler(Profile)
    restler.add_authentication_class(KeyAuth)
    assert _json(restler.handle(Request("GET", "/profile/me"))) == {"authenticated": False}
    assert _json(restler.handle(Request("GET", "/profile/me?key=open"))) == {"authenticated": True}


def test_protected_without_authenticators_is_refused():
    restler = _restler(Profile)
    assert restler.handle(Request("GET", "/profile/secret")).status == 401
    assert _json(restler.handle(Request("GET", "/profile/me"))) == {"authenticated": False}


def test_access_level_floor_from_config():
    restler = _restler(Users, config=Defaults(api_access_level=2))
    restler.add_authentication_class(KeyAuth)
    assert restler.handle(Request("GET", "/users")).status == 401
    assert restler.handle(Request("GET", "/users?key=open")).status == 200


def test_validation_failures_answer_400():
    restler = _restler(Users, Things)
    response = restler.handle(Request("GET", "/users/item/abc"))
    assert response.status == 400
    assert _json(response)["error"]["message"].startswith("Bad Request: Invalid value specified for `id`")

    assert restler.handle(Request("GET", "/users/item/0")).status == 400

    response = restler.handle(Request("GET", "/things/lookup"))
    assert response.status == 400
    assert "`name` is required" in _json(response)["error"]["message"]

    assert _json(restler.handle(Request("GET", "/things/lookup?name=x"))) == {"name": "x"}
    assert _json(restler.handle(Request("GET", "/things/loose/abc"))) == {"code": "abc"}


def test_service_errors_and_crashes(caplog):
    restler = _restler(Shop)
    response = restler.handle(Request("GET", "/shop/fail"))
    assert response.status == 409
    assert _json(response) == {"error": {"code": 409, "message": "Conflict: taken"}}

    with caplog.at_level(logging.ERROR, logger="smartrest.server"):
        response = restler.handle(Request("GET", "/shop/crash"))
    assert response.status == 500
    assert _json(response)["error"]["message"] == "Internal Server Error"
    assert "boom" in caplog.text


def test_not_found_and_error_handlers():
    restler = _restler(Users)
    response = restler.handle(Request("GET", "/nowhere"))
    assert response.status == 404
    assert _json(response)["error"]["code"] == 404

    restler = _restler(Users)
    restler.add_error_class(ErrorPages)
    response = restler.handle(Request("GET", "/nowhere/else"))
    assert response.status == 404
    assert _json(response) == {"missing": "nowhere/else"}


def test_response_headers():
    restler = _restler(Users)
    response = restler.handle(Request("GET", "/users", headers={"Accept": "application/json"}))
    assert response.header("Cache-Control") == "no-cache, must-revalidate"
    assert response.header("Expires") == "0"
    assert response.header("Content-Type") == "application/json"
    assert response.header("X-Powered-By").startswith("SmartRest/")
    assert response.header("Vary") == "Accept"

    response = restler.handle(Request("GET", "/users"))
    assert response.header("Vary") is None


def test_expires_header_is_an_http_date():
    restler = _restler(Users, config=Defaults(header_expires=60))
    assert restler.handle(Request("GET", "/users")).header("Expires").endswith("GMT")


def test_status_and_header_metadata():
    restler = _restler(Shop)
    response = restler.handle(Request("POST", "/shop/order", headers={"Content-Type": "application/json"}, body=b'{"item": "pen"}'))
    assert response.status == 201
    assert response.header("X-Total") == "3"
    assert _json(response) == {"item": "pen"}


def test_suppress_response_code_from_query():
    restler = _restler(Shop)
    response = restler.handle(Request("GET", "/shop/fail?suppress_status=true"))
    assert response.status == 200
    assert _json(response)["error"]["code"] == 409


def test_xml_by_extension():
    restler = _restler(Users)
    restler.set_supported_formats(JsonFormat, XmlFormat)
    response = restler.handle(Request("GET", "/users/item/5.xml"))
    assert response.status == 200
    assert response.header("Content-Type") == "application/xml"
    assert b"<id>5</id>" in response.body


def test_not_acceptable_and_unsupported_media_type():
    restler = _restler(Users)
    response = restler.handle(Request("GET", "/users", headers={"Accept": "image/png"}))
    assert response.status == 406
    assert response.text.startswith("406 Not Acceptable")

    response = restler.handle(Request("POST", "/users/validate", headers={"Content-Type": "text/csv"}, body=b"a"))
    assert response.status == 415
    assert response.header("Content-Type") == "application/json"


def test_pre_and_post_process_hooks():
    HOOK_CALLS.clear()
    restler = _restler(Hooks)
    response = restler.handle(Request("GET", "/hooks/echo/hello"))
    assert HOOK_CALLS == [("pre", "hello")]
    assert _json(response) == {"word": "HELLO"}


def test_throttle_sleeps_for_the_remainder(monkeypatch):
    sleeps = []
    monkeypatch.setattr("smartrest.core.server.time.sleep", sleeps.append)
    restler = _restler(Shop, config=Defaults(throttle=50))
    restler.handle(Request("GET", "/shop/server"))
    assert len(sleeps) == 1
    assert 0 < sleeps[0] <= 0.05

    sleeps.clear()
    _restler(Shop).handle(Request("GET", "/shop/slow"))
    assert len(sleeps) == 1
    assert sleeps[0] <= 0.03


def test_restler_attribute_keyword_only_and_raw_responses():
    restler = _restler(Shop)
    assert _json(restler.handle(Request("GET", "/shop/server"))) == {"same": True}
    assert _json(restler.handle(Request("GET", "/shop/flags?verbose=true"))) == {"verbose": True}
    response = restler.handle(Request("GET", "/shop/raw"))
    assert (response.status, response.body) == (202, b"raw")


def test_api_versions():
    restler = _restler(Versioned)
    with pytest.raises(TypeError):
        restler.set_api_version("2")
    restler.set_api_version(2)
    assert _json(restler.handle(Request("GET", "/v1/versioned"))) == {"version": 1}
    assert _json(restler.handle(Request("GET", "/v2/versioned"))) == {"version": 2}
    assert _json(restler.handle(Request("GET", "/versioned"))) == {"version": 2}


def test_registration_is_closed_after_first_request():
    restler = _restler(Users)
    restler.handle(Request("GET", "/users"))
    with pytest.raises(RuntimeError):
        restler.add_api_class(Shop)
    with pytest.raises(RuntimeError):
        restler.set_supported_formats(XmlFormat)


def test_custom_resource_path():
    restler = Restler().add_api_class(Users, "/api/people/")
    assert restler.handle(Request("GET", "/api/people")).status == 200
    assert Restler().add_api_class(Users, "").handle(Request("GET", "/")).status == 200


def test_coroutine_methods_run_through_smartasync(monkeypatch):
    wrapped = []

    def fake_smartasync(fn):
        wrapped.append(fn.__name__)

        def runner(*args, **kwargs):
            return asyncio.run(fn(*args, **kwargs))

        return runner

    fake_module = type(sys)("smartasync")
    fake_module.smartasync = fake_smartasync
    monkeypatch.setitem(sys.modules, "smartasync", fake_module)

    response = _restler(Slow).handle(Request("GET", "/slow/wait"))
    assert _json(response) == {"done": True}
    assert wrapped == ["get_wait"]


def test_wsgi_application():
    restler = _restler(Shop)
    captured = {}

    def start_response(status, headers):
        captured["status"] = status
        captured["headers"] = dict(headers)

    body = b'{"item": "ink"}'
    environ = {
        "REQUEST_METHOD": "POST",
        "PATH_INFO": "/shop/order",
        "QUERY_STRING": "",
        "CONTENT_TYPE": "application/json",
        "CONTENT_LENGTH": str(len(body)),
        "HTTP_ACCEPT": "application/json",
        "wsgi.input": io.BytesIO(body),
    }
    chunks = restler(environ, start_response)
    assert captured["status"] == "201 Created"
    assert captured["headers"]["Vary"] == "Accept"
    assert json.loads(b"".join(chunks)) == {"item": "ink"}


def test_request_data_receives_the_decoded_body_as_sent():
    restler = _restler(Shop)
    headers = {"Content-Type": "application/json"}
    response = restler.handle(Request("POST", "/shop/bulk", headers=headers, body=b"[1, 2]"))
    assert _json(response) == {"type": "list", "value": [1, 2]}

    response = restler.handle(Request("POST", "/shop/bulk", headers=headers, body=b'{"a": 1}'))
    assert _json(response) == {"type": "dict", "value": {"a": 1}}


def test_body_fields_beat_query_values():
    restler = _restler(Shop)
    response = restler.handle(
        Request("POST", "/shop/order?item=query", headers={"Content-Type": "application/json"}, body=b'{"item": "body"}')
    )
    assert _json(response) == {"item": "body"}


def test_services_can_refuse_with_not_acceptable():
    restler = _restler(Shop)
    restler.add_error_class(ErrorPages)
    response = restler.handle(Request("GET", "/shop/picky"))
    assert response.status == 406
    assert response.text == "Only sepia tones are available."
    assert response.header("Content-Type") == "text/plain; charset=utf-8"
