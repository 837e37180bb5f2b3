"""Shared fixtures for tests."""

import json
from pathlib import Path

import pytest

from mcp_openapi_server.client import ServerConfig, UpstreamClient
from mcp_openapi_server.storage import DescriptorStore
from mcp_openapi_server.tools.admin_gate import AdminGate
from mcp_openapi_server.tools.builtin_tools import BUILTIN_TOOL_NAMES, BuiltinTools
from mcp_openapi_server.tools.dispatcher import ToolDispatcher
from mcp_openapi_server.tools.executor import RequestExecutor
from mcp_openapi_server.tools.tool_registry import ToolRegistry


@pytest.fixture
def weather_api() -> dict:
    """The canonical weather descriptor payload."""
    return {
        "name": "get_weather",
        "description": "Current weather for a city",
        "base_url": "https://api.weather.com",
        "path": "/v1/weather",
        "method": "GET",
        "parameters": [
            {
                "name": "city",
                "description": "City name",
                "in": "query",
                "required": True,
                "type": "string",
            }
        ],
        "authentication": {"type": "api_key", "header_name": "X-API-Key", "key": "abc"},
        "tags": ["weather"],
    }


@pytest.fixture
def user_api() -> dict:
    return {
        "name": "update_user",
        "description": "Update a user",
        "base_url": "https://api.example.com/",
        "path": "/users/{user_id}",
        "method": "PUT",
        "parameters": [
            {"name": "user_id", "in": "path", "required": True, "type": "string"},
            {"name": "X-Trace", "in": "header", "type": "string"},
            {"name": "notify", "in": "query", "type": "boolean", "default": False},
        ],
        "request_body": {
            "content_type": "application/json",
            "required": True,
            "description": "User fields",
            "schema": {"type": "object", "properties": {"email": {"type": "string"}}},
        },
        "authentication": {"type": "bearer", "token": "s3cret"},
        "headers": {"Accept": "application/json"},
        "tags": ["users", "admin"],
    }


@pytest.fixture
def store_path(tmp_path) -> Path:
    return tmp_path / "mcp-openapi" / "apis.json"


@pytest.fixture
def store(store_path) -> DescriptorStore:
    s = DescriptorStore(store_path, reserved_names=BUILTIN_TOOL_NAMES)
    s.load()
    return s


@pytest.fixture
async def upstream():
    client = UpstreamClient(timeout=5.0)
    yield client
    await client.aclose()


def make_dispatcher(
    store: DescriptorStore, upstream: UpstreamClient, admin_disabled: bool = False
) -> ToolDispatcher:
    registry = ToolRegistry(store, AdminGate(active=admin_disabled))
    return ToolDispatcher(registry, BuiltinTools(store), RequestExecutor(upstream))


@pytest.fixture
def dispatcher(store, upstream) -> ToolDispatcher:
    return make_dispatcher(store, upstream)


@pytest.fixture
def gated_dispatcher(store, upstream) -> ToolDispatcher:
    return make_dispatcher(store, upstream, admin_disabled=True)


@pytest.fixture
def config(store_path) -> ServerConfig:
    return ServerConfig(store_path=store_path)


@pytest.fixture
def write_store():
    """Write a raw store document to *path*."""

    def _write(path: Path, apis: list) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps({"version": "1.0.0", "apis": apis}))

    return _write
