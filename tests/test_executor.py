"""Tests for tools.executor: request building, sending and response mapping."""

import json

import httpx
import pytest

from mcp_openapi_server.client import UpstreamClient
from mcp_openapi_server.errors import (
    InvalidArgumentsError,
    NetworkError,
    UpstreamStatusError,
    UpstreamTimeoutError,
)
from mcp_openapi_server.models import build_descriptor
from mcp_openapi_server.tools.executor import RequestExecutor


@pytest.fixture
def executor():
    # Building requests never opens the HTTP client.
    return RequestExecutor(UpstreamClient())


@pytest.fixture
def sender(upstream):
    return RequestExecutor(upstream)


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------


class TestWeatherExample:
    async def test_get_weather(self, sender, weather_api, httpx_mock):
        httpx_mock.add_response(
            method="GET",
            url="https://api.weather.com/v1/weather?city=Paris",
            json={"city": "Paris", "temp_c": 18},
        )
        result = await sender.execute(build_descriptor(weather_api), {"city": "Paris"})

        request = httpx_mock.get_request()
        assert request.headers["X-API-Key"] == "abc"
        assert request.content == b""
        assert result.status == 200
        assert result.body == {"city": "Paris", "temp_c": 18}
        assert result.headers["content-type"] == "application/json"
        assert result.to_payload()["status"] == 200
        assert result.to_text().startswith("Status: 200\n\nResponse:\n{")


# ---------------------------------------------------------------------------
# Request building
# ---------------------------------------------------------------------------


class TestPathSubstitution:
    def test_values_are_percent_encoded(self, executor, user_api):
        prepared = executor.prepare(
            build_descriptor(user_api), {"user_id": "a/b c", "body": {}}
        )
        assert prepared.url == "https://api.example.com/users/a%2Fb%20c"

    def test_missing_path_value(self, executor, user_api):
        with pytest.raises(InvalidArgumentsError) as exc_info:
            executor.prepare(build_descriptor(user_api), {"body": {}})
        assert exc_info.value.fields == ["user_id"]

    def test_non_string_path_value(self, executor):
        api = build_descriptor(
            {
                "name": "get_item",
                "description": "",
                "base_url": "https://example.com",
                "path": "/items/{item_id}",
                "method": "GET",
                "parameters": [{"name": "item_id", "in": "path", "type": "integer"}],
            }
        )
        assert executor.prepare(api, {"item_id": 42}).url == "https://example.com/items/42"


class TestQueryAssembly:
    def test_defaults_and_lists(self, executor):
        api = build_descriptor(
            {
                "name": "search",
                "description": "",
                "base_url": "https://example.com",
                "path": "/search",
                "method": "GET",
                "parameters": [
                    {"name": "ids", "in": "query", "type": "array"},
                    {"name": "exact", "in": "query", "type": "boolean", "default": True},
                    {"name": "limit", "in": "query", "type": "integer"},
                ],
            }
        )
        prepared = executor.prepare(api, {"ids": [1, 2]})
        assert prepared.params == [("ids", "1"), ("ids", "2"), ("exact", "true")]

    def test_unknown_arguments_ignored(self, executor, weather_api):
        prepared = executor.prepare(
            build_descriptor(weather_api), {"city": "Paris", "units": "metric"}
        )
        assert prepared.params == [("city", "Paris")]


class TestValidation:
    def test_missing_required(self, executor, weather_api):
        with pytest.raises(InvalidArgumentsError) as exc_info:
            executor.prepare(build_descriptor(weather_api), {})
        assert exc_info.value.fields == ["city"]
        assert exc_info.value.code == "invalid_arguments"

    def test_null_counts_as_absent(self, executor, weather_api):
        with pytest.raises(InvalidArgumentsError):
            executor.prepare(build_descriptor(weather_api), {"city": None})

    def test_type_mismatch(self, executor, weather_api):
        with pytest.raises(InvalidArgumentsError) as exc_info:
            executor.prepare(build_descriptor(weather_api), {"city": 75001})
        assert exc_info.value.fields == ["city"]
        assert "wrong type" in exc_info.value.message

    def test_bool_is_not_an_integer(self, executor):
        api = build_descriptor(
            {
                "name": "page",
                "description": "",
                "base_url": "https://example.com",
                "path": "/",
                "method": "GET",
                "parameters": [{"name": "n", "type": "integer"}],
            }
        )
        with pytest.raises(InvalidArgumentsError):
            executor.prepare(api, {"n": True})

    def test_required_body(self, executor, user_api):
        with pytest.raises(InvalidArgumentsError) as exc_info:
            executor.prepare(build_descriptor(user_api), {"user_id": "42"})
        assert exc_info.value.fields == ["body"]


class TestHeaders:
    def test_precedence(self, executor, user_api):
        user_api["headers"] = {
            "Accept": "application/json",
            "x-trace": "from-default",
            "Authorization": "from-default",
        }
        user_api["parameters"].append({"name": "authorization", "in": "header"})
        prepared = executor.prepare(
            build_descriptor(user_api),
            {
                "user_id": "42",
                "X-Trace": "from-param",
                "authorization": "from-param",
                "body": {},
            },
        )
        headers = prepared.headers
        assert headers["accept"] == "application/json"
        assert headers["x-trace"] == "from-param"
        assert headers["authorization"] == "Bearer s3cret"
        assert len(headers.get_list("authorization")) == 1

    def test_basic_auth(self, executor, weather_api):
        weather_api["authentication"] = {
            "type": "basic",
            "username": "user",
            "password": "pass",
        }
        prepared = executor.prepare(build_descriptor(weather_api), {"city": "Paris"})
        assert prepared.headers["authorization"] == "Basic dXNlcjpwYXNz"

    def test_no_auth(self, executor, weather_api):
        weather_api["authentication"] = {"type": "none"}
        prepared = executor.prepare(build_descriptor(weather_api), {"city": "Paris"})
        assert "authorization" not in prepared.headers
        assert "x-api-key" not in prepared.headers


class TestBody:
    def test_json_body(self, executor, user_api):
        prepared = executor.prepare(
            build_descriptor(user_api), {"user_id": "42", "body": {"email": "a@b.c"}}
        )
        assert json.loads(prepared.content) == {"email": "a@b.c"}
        assert prepared.headers["content-type"] == "application/json"

    def test_form_body(self, executor, user_api):
        user_api["request_body"]["content_type"] = "application/x-www-form-urlencoded"
        prepared = executor.prepare(
            build_descriptor(user_api),
            {"user_id": "42", "body": {"email": "a@b.c", "active": True}},
        )
        assert prepared.content == b"email=a%40b.c&active=true"
        assert prepared.headers["content-type"] == "application/x-www-form-urlencoded"

    def test_text_body(self, executor, user_api):
        user_api["request_body"]["content_type"] = "text/plain"
        prepared = executor.prepare(
            build_descriptor(user_api), {"user_id": "42", "body": "hello"}
        )
        assert prepared.content == b"hello"

    def test_explicit_content_type_kept(self, executor, user_api):
        user_api["headers"] = {"Content-Type": "application/merge-patch+json"}
        prepared = executor.prepare(
            build_descriptor(user_api), {"user_id": "42", "body": {"email": "x"}}
        )
        assert prepared.headers["content-type"] == "application/merge-patch+json"

    def test_no_body_argument_no_body(self, executor, weather_api):
        prepared = executor.prepare(build_descriptor(weather_api), {"city": "Paris"})
        assert prepared.content is None
        assert "content-type" not in prepared.headers


# ---------------------------------------------------------------------------
# Execution and response mapping
# ---------------------------------------------------------------------------


class TestExecution:
    async def test_put_with_body(self, sender, user_api, httpx_mock):
        httpx_mock.add_response(
            method="PUT",
            url="https://api.example.com/users/42?notify=false",
            status_code=201,
            headers={"Location": "/users/42", "X-Internal": "hidden"},
            json={"id": "42"},
        )
        result = await sender.execute(
            build_descriptor(user_api), {"user_id": "42", "body": {"email": "a@b.c"}}
        )
        request = httpx_mock.get_request()
        assert json.loads(request.content) == {"email": "a@b.c"}
        assert request.headers["authorization"] == "Bearer s3cret"
        assert result.status == 201
        assert result.headers["location"] == "/users/42"
        assert "x-internal" not in result.headers

    async def test_text_response(self, sender, weather_api, httpx_mock):
        httpx_mock.add_response(text="sunny", headers={"Content-Type": "text/plain"})
        result = await sender.execute(build_descriptor(weather_api), {"city": "Paris"})
        assert result.body == "sunny"

    async def test_empty_response(self, sender, weather_api, httpx_mock):
        httpx_mock.add_response(status_code=204)
        result = await sender.execute(build_descriptor(weather_api), {"city": "Paris"})
        assert result.status == 204
        assert result.body is None

    async def test_upstream_error_status(self, sender, weather_api, httpx_mock):
        httpx_mock.add_response(status_code=404, json={"detail": "unknown city"})
        with pytest.raises(UpstreamStatusError) as exc_info:
            await sender.execute(build_descriptor(weather_api), {"city": "Atlantis"})
        err = exc_info.value
        assert err.status_code == 404
        assert err.body == {"detail": "unknown city"}
        payload = err.to_payload()
        assert payload["error"] == "upstream_status"
        assert payload["status"] == 404

    async def test_timeout(self, sender, weather_api, httpx_mock):
        httpx_mock.add_exception(httpx.ReadTimeout("too slow"))
        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await sender.execute(build_descriptor(weather_api), {"city": "Paris"})
        assert exc_info.value.code == "timeout"

    async def test_network_failure(self, sender, weather_api, httpx_mock):
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))
        with pytest.raises(NetworkError) as exc_info:
            await sender.execute(build_descriptor(weather_api), {"city": "Paris"})
        assert exc_info.value.code == "network"

    async def test_invalid_arguments_send_nothing(self, sender, weather_api, httpx_mock):
        with pytest.raises(InvalidArgumentsError):
            await sender.execute(build_descriptor(weather_api), {})
        assert httpx_mock.get_requests() == []
