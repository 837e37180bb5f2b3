"""Exception hierarchy shared by the store, the executor and the dispatcher."""

from __future__ import annotations

from typing import Any


class MCPOpenAPIError(Exception):
    """Base exception. ``code`` is the stable identifier reported to clients."""

    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message}


# ─── Store ───────────────────────────────────────────────────────────


class StoreError(MCPOpenAPIError):
    code = "store_error"


class NotFoundError(StoreError):
    code = "not_found"


class ConflictError(StoreError):
    code = "conflict"


class CorruptStoreError(StoreError):
    code = "corrupt"


class StoreIOError(StoreError):
    code = "io_failure"


# ─── Descriptor validation ──────────────────────────────────────────


class DescriptorValidationError(MCPOpenAPIError):
    code = "invalid_descriptor"


class MissingFieldError(DescriptorValidationError):
    code = "missing_field"


class InvalidPathBindingError(DescriptorValidationError):
    code = "invalid_path_binding"


class DuplicateNameError(DescriptorValidationError):
    code = "duplicate_name"


# ─── Execution ───────────────────────────────────────────────────────


class ExecutionError(MCPOpenAPIError):
    code = "execution_error"


class NetworkError(ExecutionError):
    code = "network"


class UpstreamTimeoutError(ExecutionError):
    code = "timeout"


class UpstreamStatusError(ExecutionError):
    """The upstream answered, but with a non-2xx status."""

    code = "upstream_status"

    def __init__(
        self,
        status_code: int,
        body: Any = None,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(f"Upstream returned HTTP {status_code}")
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload.update(
            {"status": self.status_code, "headers": self.headers, "body": self.body}
        )
        return payload


# ─── Protocol ────────────────────────────────────────────────────────


class ProtocolError(MCPOpenAPIError):
    code = "protocol_error"


class ToolNotFoundError(ProtocolError):
    code = "tool_not_found"

    def __init__(self, tool_name: str):
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


class InvalidArgumentsError(ProtocolError):
    code = "invalid_arguments"

    def __init__(self, message: str, fields: list[str] | None = None):
        super().__init__(message)
        self.fields = fields or []

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["fields"] = self.fields
        return payload
