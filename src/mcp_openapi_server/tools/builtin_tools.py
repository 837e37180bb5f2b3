"""Built-in tools that query and manage the registered APIs."""

from __future__ import annotations

from typing import Any, Awaitable, Callable

import structlog
from mcp.types import Tool

from ..errors import InvalidArgumentsError
from ..models.schemas import ApiStatus
from ..storage import DescriptorStore
from ..utils.logging import redact_payload

logger = structlog.get_logger(__name__)

# ─── Shared schema fragments ─────────────────────────────────────────

_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]

_PARAMETER_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "description": {"type": "string"},
        "in": {"type": "string", "enum": ["path", "query", "header"]},
        "required": {"type": "boolean"},
        "type": {
            "type": "string",
            "enum": ["string", "integer", "number", "boolean", "array", "object"],
        },
        "default": {"description": "Value used when the caller omits this parameter"},
        "enum": {"type": "array", "description": "Allowed values"},
    },
    "required": ["name", "in"],
}

_REQUEST_BODY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": "Request body definition",
    "properties": {
        "content_type": {"type": "string"},
        "schema": {"type": "object"},
        "required": {"type": "boolean"},
        "description": {"type": "string"},
    },
}

_AUTH_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": "Authentication configuration",
    "properties": {
        "type": {"type": "string", "enum": ["none", "api_key", "bearer", "basic"]},
        "header_name": {"type": "string"},
        "key": {"type": "string"},
        "token": {"type": "string"},
        "username": {"type": "string"},
        "password": {"type": "string"},
    },
}


def _id_or_name_schema(verb: str) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "id": {"type": "string", "description": f"API ID to {verb}"},
            "name": {
                "type": "string",
                "description": f"API name to {verb} (used if id is not provided)",
            },
        },
    }


def _descriptor_fields(prefix: str = "") -> dict[str, Any]:
    return {
        "description": {
            "type": "string",
            "description": f"{prefix}Description, used as the tool description",
        },
        "base_url": {
            "type": "string",
            "description": f"{prefix}Base URL (e.g. https://api.example.com)",
        },
        "path": {
            "type": "string",
            "description": f"{prefix}Path with optional {{param}} placeholders (e.g. /users/{{id}})",
        },
        "method": {"type": "string", "enum": _METHODS, "description": f"{prefix}HTTP method"},
        "parameters": {
            "type": "array",
            "description": f"{prefix}Parameter list",
            "items": _PARAMETER_SCHEMA,
        },
        "request_body": _REQUEST_BODY_SCHEMA,
        "authentication": _AUTH_SCHEMA,
        "headers": {
            "type": "object",
            "description": f"{prefix}Default headers sent with every request",
            "additionalProperties": {"type": "string"},
        },
        "tags": {"type": "array", "items": {"type": "string"}, "description": f"{prefix}Tags"},
    }


# ─── Tool definitions ────────────────────────────────────────────────

QUERY_TOOL_DEFINITIONS: list[Tool] = [
    Tool(
        name="list_apis",
        description=(
            "List all registered APIs with their status (enabled/disabled). "
            "Optionally filter by status or tag."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "status": {
                    "type": "string",
                    "enum": ["all", "enabled", "disabled"],
                    "description": "Filter APIs by status. Default is 'all'.",
                },
                "tag": {"type": "string", "description": "Filter APIs by tag."},
            },
        },
    ),
    Tool(
        name="get_api",
        description="Get the full definition of an API by its ID or name. Secrets are masked.",
        inputSchema=_id_or_name_schema("get"),
    ),
    Tool(
        name="list_apis_by_tag",
        description="List all APIs that have a specific tag.",
        inputSchema={
            "type": "object",
            "properties": {"tag": {"type": "string", "description": "Tag to filter by"}},
            "required": ["tag"],
        },
    ),
]

ADMIN_TOOL_DEFINITIONS: list[Tool] = [
    Tool(
        name="add_api",
        description=(
            "Register a new HTTP API. It becomes a tool named after the API "
            "that can be called through MCP."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "name": {
                    "type": "string",
                    "description": "Unique name for the API, used as the tool name",
                },
                **_descriptor_fields(),
                "status": {"type": "string", "enum": ["enabled", "disabled"]},
            },
            "required": ["name", "description", "base_url", "path", "method"],
        },
    ),
    Tool(
        name="update_api",
        description="Update an existing API definition. Only provided fields are changed.",
        inputSchema={
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "API ID to update"},
                "name": {
                    "type": "string",
                    "description": "API name to update (used to find the API if id is not provided)",
                },
                "new_name": {"type": "string", "description": "New name for the API"},
                **_descriptor_fields("New "),
            },
        },
    ),
    Tool(
        name="delete_api",
        description="Delete an API by its ID or name. Its tool is removed.",
        inputSchema=_id_or_name_schema("delete"),
    ),
    Tool(
        name="enable_api",
        description="Enable a disabled API. It appears as a tool again.",
        inputSchema=_id_or_name_schema("enable"),
    ),
    Tool(
        name="disable_api",
        description="Disable an API. Its tool is hidden but the definition is kept.",
        inputSchema=_id_or_name_schema("disable"),
    ),
]

BUILTIN_TOOL_DEFINITIONS: list[Tool] = QUERY_TOOL_DEFINITIONS + ADMIN_TOOL_DEFINITIONS

QUERY_TOOL_NAMES: frozenset[str] = frozenset(t.name for t in QUERY_TOOL_DEFINITIONS)
ADMIN_TOOL_NAMES: frozenset[str] = frozenset(t.name for t in ADMIN_TOOL_DEFINITIONS)
BUILTIN_TOOL_NAMES: frozenset[str] = QUERY_TOOL_NAMES | ADMIN_TOOL_NAMES


Handler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


class BuiltinTools:
    """Handles the built-in tools. Handlers return JSON-ready dicts."""

    def __init__(self, store: DescriptorStore):
        self.store = store
        self._handlers: dict[str, Handler] = {
            "list_apis": self._list_apis,
            "get_api": self._get_api,
            "list_apis_by_tag": self._list_apis_by_tag,
            "add_api": self._add_api,
            "update_api": self._update_api,
            "delete_api": self._delete_api,
            "enable_api": self._enable_api,
            "disable_api": self._disable_api,
        }

    @staticmethod
    def get_tools() -> list[Tool]:
        return list(BUILTIN_TOOL_DEFINITIONS)

    @staticmethod
    def is_mutation(name: str) -> bool:
        return name in ADMIN_TOOL_NAMES

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        handler = self._handlers.get(name)
        if handler is None:
            raise ValueError(f"Unknown built-in tool: {name}")
        logger.debug("builtin call", tool=name, arguments=redact_payload(arguments))
        return await handler(arguments)

    # ─── Queries ───────────────────────────────────────────────────

    async def _list_apis(self, arguments: dict[str, Any]) -> dict[str, Any]:
        status = arguments.get("status") or "all"
        if status not in ("all", "enabled", "disabled"):
            raise InvalidArgumentsError(
                "status must be one of: all, enabled, disabled", ["status"]
            )
        tag = _optional_str(arguments, "tag")
        apis = self.store.list_descriptors(status=status, tag=tag)
        return {"apis": [api.summary() for api in apis], "count": len(apis)}

    async def _get_api(self, arguments: dict[str, Any]) -> dict[str, Any]:
        return self.store.find(_identifier(arguments)).to_public_dict()

    async def _list_apis_by_tag(self, arguments: dict[str, Any]) -> dict[str, Any]:
        tag = _optional_str(arguments, "tag")
        if not tag:
            raise InvalidArgumentsError("Missing required argument: tag", ["tag"])
        apis = self.store.list_descriptors(tag=tag)
        return {"tag": tag, "apis": [api.summary() for api in apis], "count": len(apis)}

    # ─── Mutations ─────────────────────────────────────────────────

    async def _add_api(self, arguments: dict[str, Any]) -> dict[str, Any]:
        api = await self.store.add(dict(arguments))
        return {
            "message": f"API '{api.name}' added successfully with ID: {api.id}",
            "api": api.summary(),
        }

    async def _update_api(self, arguments: dict[str, Any]) -> dict[str, Any]:
        changes = dict(arguments)
        api_id = changes.pop("id", None)
        new_name = changes.pop("new_name", None)
        if api_id:
            target = api_id
            # With an id present, "name" is the new name.
            if new_name is None and "name" in changes:
                new_name = changes.pop("name")
        else:
            target = changes.pop("name", None)
            if not target:
                raise InvalidArgumentsError(
                    "Either id or name must be provided", ["id", "name"]
                )
        changes.pop("name", None)
        changes.pop("created_at", None)
        changes.pop("updated_at", None)
        if new_name is not None:
            changes["name"] = new_name

        api = await self.store.update(target, changes)
        return {"message": f"API '{api.name}' updated successfully", "api": api.summary()}

    async def _delete_api(self, arguments: dict[str, Any]) -> dict[str, Any]:
        api = await self.store.delete(_identifier(arguments))
        return {"message": f"API '{api.name}' deleted successfully", "id": api.id}

    async def _enable_api(self, arguments: dict[str, Any]) -> dict[str, Any]:
        api = await self.store.set_status(_identifier(arguments), ApiStatus.ENABLED)
        return {"message": f"API '{api.name}' enabled successfully", "api": api.summary()}

    async def _disable_api(self, arguments: dict[str, Any]) -> dict[str, Any]:
        api = await self.store.set_status(_identifier(arguments), ApiStatus.DISABLED)
        return {"message": f"API '{api.name}' disabled successfully", "api": api.summary()}


def _optional_str(arguments: dict[str, Any], key: str) -> str | None:
    value = arguments.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidArgumentsError(f"{key} must be a string", [key])
    return value


def _identifier(arguments: dict[str, Any]) -> str:
    identifier = _optional_str(arguments, "id") or _optional_str(arguments, "name")
    if not identifier:
        raise InvalidArgumentsError("Either id or name must be provided", ["id", "name"])
    return identifier
