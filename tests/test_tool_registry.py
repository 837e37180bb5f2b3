"""Tests for tools.tool_registry."""

import pytest
from mcp.types import Tool

from mcp_openapi_server.errors import ToolNotFoundError
from mcp_openapi_server.models import build_descriptor
from mcp_openapi_server.tools.admin_gate import AdminGate
from mcp_openapi_server.tools.builtin_tools import (
    ADMIN_TOOL_NAMES,
    BUILTIN_TOOL_NAMES,
    QUERY_TOOL_NAMES,
)
from mcp_openapi_server.tools.tool_registry import ToolRegistry


class TestToolListing:
    def test_empty_store_lists_builtins(self, store):
        reg = ToolRegistry(store)
        assert set(reg.tool_names) == BUILTIN_TOOL_NAMES
        assert all(isinstance(t, Tool) for t in reg.get_tools())

    async def test_enabled_descriptors_listed(self, store, weather_api):
        await store.add(weather_api)
        reg = ToolRegistry(store)
        tools = {t.name: t for t in reg.get_tools()}
        assert tools["get_weather"].description == "Current weather for a city"

    async def test_disabled_descriptors_hidden(self, store, weather_api):
        await store.add(weather_api)
        await store.set_status("get_weather", "disabled")
        assert "get_weather" not in ToolRegistry(store).tool_names

    async def test_listing_follows_store_changes(self, store, weather_api):
        reg = ToolRegistry(store)
        assert "get_weather" not in reg.tool_names
        await store.add(weather_api)
        assert "get_weather" in reg.tool_names
        await store.delete("get_weather")
        assert "get_weather" not in reg.tool_names


class TestAdminGate:
    def test_gate_inactive_allows_everything(self):
        gate = AdminGate()
        assert all(gate.allows(name) for name in BUILTIN_TOOL_NAMES)

    def test_gate_blocks_only_admin_tools(self):
        gate = AdminGate(active=True)
        assert not any(gate.allows(name) for name in ADMIN_TOOL_NAMES)
        assert all(gate.allows(name) for name in QUERY_TOOL_NAMES)
        assert gate.allows("get_weather")

    def test_gated_listing(self, store):
        reg = ToolRegistry(store, AdminGate(active=True))
        assert set(reg.tool_names) == QUERY_TOOL_NAMES
        assert not reg.is_builtin("add_api")
        assert reg.is_builtin("list_apis")


class TestResolve:
    async def test_resolve_enabled(self, store, weather_api):
        api = await store.add(weather_api)
        assert ToolRegistry(store).resolve("get_weather") == api

    async def test_resolve_disabled_fails(self, store, weather_api):
        await store.add(weather_api)
        await store.set_status("get_weather", "disabled")
        with pytest.raises(ToolNotFoundError) as exc_info:
            ToolRegistry(store).resolve("get_weather")
        assert exc_info.value.message == "Unknown tool: get_weather"

    async def test_resolve_by_id_is_not_a_tool(self, store, weather_api):
        api = await store.add(weather_api)
        with pytest.raises(ToolNotFoundError):
            ToolRegistry(store).resolve(api.id)


class TestInputSchema:
    def test_parameters_become_properties(self, weather_api):
        schema = ToolRegistry._build_input_schema(build_descriptor(weather_api))
        assert schema == {
            "type": "object",
            "properties": {"city": {"type": "string", "description": "City name"}},
            "required": ["city"],
        }

    def test_default_enum_and_body(self, user_api):
        user_api["parameters"].append(
            {"name": "role", "in": "query", "type": "string", "enum": ["admin", "user"]}
        )
        schema = ToolRegistry._build_input_schema(build_descriptor(user_api))
        props = schema["properties"]
        assert props["notify"] == {"type": "boolean", "default": False}
        assert props["role"]["enum"] == ["admin", "user"]
        assert props["body"] == {
            "type": "object",
            "properties": {"email": {"type": "string"}},
            "description": "User fields",
        }
        assert schema["required"] == ["user_id", "body"]

    def test_body_without_schema_is_open_object(self, user_api):
        user_api["request_body"] = {"required": False}
        schema = ToolRegistry._build_input_schema(build_descriptor(user_api))
        assert schema["properties"]["body"] == {"type": "object"}
        assert "body" not in schema["required"]

    def test_non_object_schema_is_wrapped(self, user_api):
        user_api["request_body"] = {"schema": ["email"], "description": "fields"}
        schema = ToolRegistry._build_input_schema(build_descriptor(user_api))
        assert schema["properties"]["body"] == {
            "type": "object",
            "properties": ["email"],
            "description": "fields",
        }

    def test_no_required_key_when_nothing_required(self):
        api = build_descriptor(
            {
                "name": "ping",
                "description": "Ping",
                "base_url": "https://example.com",
                "path": "/ping",
                "method": "GET",
            }
        )
        assert ToolRegistry._build_input_schema(api) == {"type": "object", "properties": {}}
