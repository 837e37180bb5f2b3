"""Tool registry: turns the store's enabled descriptors into MCP Tools."""

from __future__ import annotations

from typing import Any

import structlog
from mcp.types import Tool

from ..errors import ToolNotFoundError
from ..models.schemas import BODY_ARGUMENT, APIDescriptor
from ..storage import DescriptorStore
from .admin_gate import AdminGate
from .builtin_tools import BUILTIN_TOOL_NAMES, BuiltinTools

logger = structlog.get_logger(__name__)


class ToolRegistry:
    """Computes the invocable tool set from the current store snapshot.

    Nothing is cached: every listing and every lookup reads the store, so a
    mutation is visible to the very next request.
    """

    def __init__(self, store: DescriptorStore, gate: AdminGate | None = None):
        self.store = store
        self.gate = gate or AdminGate()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_tools(self) -> list[Tool]:
        """Built-in tools allowed by the gate, then one tool per enabled API."""
        tools = [t for t in BuiltinTools.get_tools() if self.gate.allows(t.name)]
        tools.extend(self._to_mcp_tool(d) for d in self.store.list_descriptors("enabled"))
        return tools

    def is_builtin(self, tool_name: str) -> bool:
        return tool_name in BUILTIN_TOOL_NAMES and self.gate.allows(tool_name)

    def resolve(self, tool_name: str) -> APIDescriptor:
        """Return the enabled descriptor behind *tool_name*.

        Disabled, unknown and gated names all fail the same way.
        """
        for descriptor in self.store.list_descriptors("enabled"):
            if descriptor.name == tool_name:
                return descriptor
        raise ToolNotFoundError(tool_name)

    @property
    def tool_names(self) -> list[str]:
        return [t.name for t in self.get_tools()]

    # ------------------------------------------------------------------
    # MCP conversion
    # ------------------------------------------------------------------

    def _to_mcp_tool(self, descriptor: APIDescriptor) -> Tool:
        return Tool(
            name=descriptor.name,
            description=descriptor.description,
            inputSchema=self._build_input_schema(descriptor),
        )

    # ------------------------------------------------------------------
    # Input schema builder
    # ------------------------------------------------------------------

    @classmethod
    def _build_input_schema(cls, descriptor: APIDescriptor) -> dict[str, Any]:
        """Build a JSON Schema ``inputSchema`` from the parameters + body."""
        properties: dict[str, Any] = {}
        required: list[str] = []

        for param in descriptor.parameters:
            prop: dict[str, Any] = {"type": param.type.value}
            if param.description:
                prop["description"] = param.description
            if param.default is not None:
                prop["default"] = param.default
            if param.enum:
                prop["enum"] = list(param.enum)
            properties[param.name] = prop
            if param.required:
                required.append(param.name)

        body = descriptor.request_body
        if body is not None:
            properties[BODY_ARGUMENT] = cls._body_schema(body.body_schema, body.description)
            if body.required:
                required.append(BODY_ARGUMENT)

        result: dict[str, Any] = {
            "type": "object",
            "properties": properties,
        }
        if required:
            result["required"] = required
        return result

    @staticmethod
    def _body_schema(schema: Any, description: str) -> dict[str, Any]:
        if isinstance(schema, dict) and schema:
            prop = dict(schema)
        elif schema is not None:
            # Non-object schema: treat it as the property map of an object.
            prop = {"type": "object", "properties": schema}
        else:
            prop = {"type": "object"}
        if description and "description" not in prop:
            prop["description"] = description
        return prop
