"""Dispatch core shared by every transport."""

from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Optional

import structlog
from mcp import types

from ..errors import MCPOpenAPIError, ToolNotFoundError
from .builtin_tools import BuiltinTools
from .executor import RequestExecutor, format_body
from .tool_registry import ToolRegistry

logger = structlog.get_logger(__name__)

ToolsChangedCallback = Callable[[], Awaitable[None]]


class ToolDispatcher:
    """Lists tools and executes one decoded invocation into a ``CallToolResult``."""

    def __init__(
        self,
        registry: ToolRegistry,
        builtins: BuiltinTools,
        executor: RequestExecutor,
    ):
        self.registry = registry
        self.builtins = builtins
        self.executor = executor

    def list_tools(self) -> list[types.Tool]:
        tools = self.registry.get_tools()
        logger.info("list_tools", count=len(tools))
        return tools

    async def call_tool(
        self,
        name: str,
        arguments: Optional[dict[str, Any]],
        on_tools_changed: Optional[ToolsChangedCallback] = None,
    ) -> types.CallToolResult:
        arguments = arguments or {}
        logger.info("call_tool", tool=name)
        try:
            if self.registry.is_builtin(name):
                payload = await self.builtins.call_tool(name, arguments)
                if self.builtins.is_mutation(name) and on_tools_changed is not None:
                    await self._notify(on_tools_changed)
                return _success(json.dumps(payload, indent=2, ensure_ascii=False), payload)

            descriptor = self.registry.resolve(name)
            result = await self.executor.execute(descriptor, arguments)
            return _success(result.to_text(), result.to_payload())

        except ToolNotFoundError as e:
            logger.warning("Unknown tool", tool=name)
            return _error(e.message, e.to_payload())
        except MCPOpenAPIError as e:
            logger.error("Tool call failed", tool=name, error=e.code, message=e.message)
            return _error(e.message, e.to_payload())
        except Exception as e:
            logger.error("Unexpected error", error=str(e), tool=name, exc_info=True)
            return _error(
                f"Internal error: {e}", {"error": "internal", "message": str(e)}
            )

    @staticmethod
    async def _notify(callback: ToolsChangedCallback) -> None:
        # The mutation is already committed at this point.
        try:
            await callback()
        except Exception as e:
            logger.warning("tools/list_changed notification failed", error=str(e))


def _success(text: str, payload: dict[str, Any]) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=payload,
        isError=False,
    )


def _error(message: str, payload: dict[str, Any]) -> types.CallToolResult:
    if payload.get("error") == "upstream_status":
        body = payload.get("body")
        text = f"{message}\n\nResponse:\n{format_body(body)}" if body is not None else message
    else:
        text = f"Error: {message}"
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=payload,
        isError=True,
    )

