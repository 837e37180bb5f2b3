"""Server configuration and the outbound HTTP client."""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

import httpx
import structlog
from pydantic import Field
from pydantic_settings import BaseSettings

from .errors import NetworkError, UpstreamTimeoutError

logger = structlog.get_logger(__name__)

DEFAULT_STORE_PATH = Path("~/.config/mcp-openapi/apis.json")


class ServerConfig(BaseSettings):
    """Configuration for the MCP OpenAPI server."""

    transport: Literal["stdio", "http"] = Field(
        default="stdio",
        description="stdio serves one session sequentially, http serves many concurrently",
    )
    host: str = Field(default="127.0.0.1", description="Bind address for http transport")
    port: int = Field(default=3000, ge=1, le=65535, description="Port for http transport")
    store_path: Path = Field(
        default=DEFAULT_STORE_PATH, description="JSON file holding registered APIs"
    )
    inbound_token: Optional[str] = Field(
        default=None, description="Bearer token required by the http transport"
    )
    admin_disabled: bool = Field(
        default=False, description="Hide the mutating built-in tools"
    )
    request_timeout: float = Field(
        default=30.0, gt=0, description="Upstream request timeout in seconds"
    )
    log_level: str = Field(default="INFO", description="Log level")

    model_config = {"env_prefix": "MCP_OPENAPI_", "case_sensitive": False}

    @property
    def resolved_store_path(self) -> Path:
        return Path(self.store_path).expanduser()


class UpstreamClient:
    """Sends single requests to registered upstream APIs.

    One ``httpx.AsyncClient`` is shared by every invocation; it is created
    lazily so the client can be built before an event loop exists.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self.client is None:
            self.client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=False,
                transport=self._transport,
            )
        return self.client

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    async def send(
        self,
        method: str,
        url: str,
        *,
        params: Optional[list[tuple[str, str]]] = None,
        headers: Optional[httpx.Headers] = None,
        content: Optional[bytes] = None,
    ) -> httpx.Response:
        """Send one request. No retries."""
        client = await self._ensure_client()
        request = client.build_request(
            method, url, params=params, headers=headers, content=content
        )
        try:
            response = await client.send(request)
        except httpx.TimeoutException as e:
            logger.warning(
                "Upstream timeout",
                method=request.method,
                host=request.url.host,
                path=request.url.path,
            )
            raise UpstreamTimeoutError(
                f"Request to {request.url.host} timed out after {self.timeout}s"
            ) from e
        except httpx.RequestError as e:
            logger.error(
                "Upstream request error",
                method=request.method,
                host=request.url.host,
                path=request.url.path,
                error=str(e),
            )
            raise NetworkError(f"Request to {request.url.host} failed: {e}") from e

        logger.info(
            "API request",
            method=request.method,
            host=request.url.host,
            path=request.url.path,
            status_code=response.status_code,
        )
        return response

