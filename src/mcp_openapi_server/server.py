"""MCP OpenAPI Server: registered HTTP APIs served as MCP tools."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import sys
from typing import Any, AsyncIterator, Dict, Optional, Sequence

import structlog
import uvicorn
from mcp import types
from mcp.server import Server
from mcp.server.models import InitializationOptions
from mcp.server.stdio import stdio_server
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from mcp.types import Tool
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Mount, Route
from starlette.types import Receive, Scope, Send

from . import __version__
from .client import ServerConfig, UpstreamClient
from .errors import StoreError
from .storage import DescriptorStore
from .tools.admin_gate import AdminGate
from .tools.builtin_tools import BUILTIN_TOOL_NAMES, BuiltinTools
from .tools.dispatcher import ToolDispatcher
from .tools.executor import RequestExecutor
from .tools.tool_registry import ToolRegistry
from .utils.auth import BearerTokenMiddleware
from .utils.logging import configure_logging

logger = structlog.get_logger(__name__)

SERVER_NAME = "mcp-openapi-server"

INSTRUCTIONS = (
    "This MCP server allows you to manage and call HTTP APIs as tools. "
    "Use list_apis to see the registered APIs and get_api to inspect one. "
    "Use add_api, update_api, delete_api, enable_api and disable_api to manage "
    "them when management is enabled. Every enabled API is exposed as a tool "
    "named after the API; path, query and header parameters are passed as "
    "arguments and the request body as the 'body' argument."
)


class MCPOpenAPIServer:
    """Wires the store, registry and executor into one MCP ``Server``."""

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        store: Optional[DescriptorStore] = None,
        upstream: Optional[UpstreamClient] = None,
    ):
        self.config = config or ServerConfig()
        self.server = Server(SERVER_NAME, version=__version__, instructions=INSTRUCTIONS)

        self.store = store or DescriptorStore(
            self.config.resolved_store_path, reserved_names=BUILTIN_TOOL_NAMES
        )
        self.upstream = upstream or UpstreamClient(timeout=self.config.request_timeout)

        self.gate = AdminGate(active=self.config.admin_disabled)
        self.registry = ToolRegistry(self.store, self.gate)
        self.dispatcher = ToolDispatcher(
            self.registry, BuiltinTools(self.store), RequestExecutor(self.upstream)
        )

        # Set by the stdio adapter: one invocation at a time.
        self._sequential_lock: Optional[asyncio.Lock] = None

        self._register_handlers()

    # ------------------------------------------------------------------
    # MCP handlers
    # ------------------------------------------------------------------

    def _register_handlers(self) -> None:
        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            return self.dispatcher.list_tools()

        @self.server.call_tool(validate_input=False)
        async def call_tool(name: str, arguments: Dict[str, Any]) -> types.CallToolResult:
            if self._sequential_lock is None:
                return await self._call(name, arguments)
            async with self._sequential_lock:
                return await self._call(name, arguments)

    async def _call(self, name: str, arguments: Dict[str, Any]) -> types.CallToolResult:
        return await self.dispatcher.call_tool(
            name, arguments, on_tools_changed=self._send_tool_list_changed
        )

    async def _send_tool_list_changed(self) -> None:
        await self.server.request_context.session.send_tool_list_changed()

    def initialization_options(self) -> InitializationOptions:
        return InitializationOptions(
            server_name=SERVER_NAME,
            server_version=__version__,
            capabilities=types.ServerCapabilities(
                tools=types.ToolsCapability(listChanged=True),
            ),
            instructions=INSTRUCTIONS,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load(self) -> int:
        return self.store.load()

    async def aclose(self) -> None:
        await self.upstream.aclose()

    # ------------------------------------------------------------------
    # Sequential adapter (stdio)
    # ------------------------------------------------------------------

    async def run_stdio(self) -> None:
        logger.info("Starting MCP OpenAPI server", transport="stdio")
        self._sequential_lock = asyncio.Lock()
        try:
            async with stdio_server() as (read_stream, write_stream):
                await self.server.run(
                    read_stream, write_stream, self.initialization_options()
                )
        finally:
            await self.aclose()

    # ------------------------------------------------------------------
    # Concurrent adapter (streamable HTTP)
    # ------------------------------------------------------------------

    def build_http_app(self) -> Starlette:
        session_manager = StreamableHTTPSessionManager(app=self.server)

        async def handle_mcp(scope: Scope, receive: Receive, send: Send) -> None:
            await session_manager.handle_request(scope, receive, send)

        async def health(_request: Request) -> JSONResponse:
            return JSONResponse(
                {"status": "ok", "version": __version__, "apis": len(self.store)}
            )

        @contextlib.asynccontextmanager
        async def lifespan(_app: Starlette) -> AsyncIterator[None]:
            async with session_manager.run():
                try:
                    yield
                finally:
                    await self.aclose()

        return Starlette(
            routes=[
                Route("/health", health, methods=["GET"]),
                Mount("/mcp", app=handle_mcp),
            ],
            middleware=[
                Middleware(BearerTokenMiddleware, token=self.config.inbound_token),
            ],
            lifespan=lifespan,
        )

    async def run_http(self) -> None:
        logger.info(
            "Starting MCP OpenAPI server",
            transport="http",
            host=self.config.host,
            port=self.config.port,
            auth=bool(self.config.inbound_token),
        )
        config = uvicorn.Config(
            self.build_http_app(),
            host=self.config.host,
            port=self.config.port,
            log_config=None,
        )
        await uvicorn.Server(config).serve()

    async def run(self) -> None:
        if self.config.transport == "http":
            await self.run_http()
        else:
            await self.run_stdio()


# ------------------------------------------------------------------
# Entry points
# ------------------------------------------------------------------


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mcp-openapi",
        description="Serve registered HTTP APIs as MCP tools.",
    )
    parser.add_argument("--transport", choices=["stdio", "http"], help="Transport to serve")
    parser.add_argument("--host", help="Bind address for the http transport")
    parser.add_argument("--port", type=int, help="Port for the http transport")
    parser.add_argument("--store", dest="store_path", help="Path of the API store file")
    parser.add_argument(
        "--nomg",
        dest="admin_disabled",
        action="store_const",
        const=True,
        help="Disable the management tools (add/update/delete/enable/disable)",
    )
    parser.add_argument(
        "--token", dest="inbound_token", help="Bearer token required by the http transport"
    )
    parser.add_argument(
        "--timeout", dest="request_timeout", type=float, help="Upstream timeout in seconds"
    )
    parser.add_argument("--log-level", dest="log_level", help="Log level (default INFO)")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ServerConfig:
    """Environment values, overridden by any flag given on the command line."""
    overrides = {k: v for k, v in vars(args).items() if v is not None}
    return ServerConfig(**overrides)


async def async_main(argv: Optional[Sequence[str]] = None) -> None:
    config = build_config(parse_args(argv))
    configure_logging(config.log_level)

    server = MCPOpenAPIServer(config)
    try:
        count = server.load()
    except StoreError as e:
        logger.error("Failed to load API store", error=str(e), path=str(server.store.path))
        sys.exit(1)
    logger.info(
        "API store ready",
        path=str(server.store.path),
        api_count=count,
        admin_disabled=config.admin_disabled,
    )

    try:
        await server.run()
    except KeyboardInterrupt:
        logger.info("Server shutdown requested")
    except Exception as e:
        logger.error("Server error", error=str(e), exc_info=True)
        sys.exit(1)


def main() -> None:
    """Synchronous entry point for console script."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
