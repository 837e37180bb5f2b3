"""Request builder and executor for registered APIs."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import quote, urlencode

import httpx
import structlog

from ..client import UpstreamClient
from ..errors import InvalidArgumentsError, UpstreamStatusError
from ..models.schemas import (
    BODY_ARGUMENT,
    APIDescriptor,
    ParameterLocation,
    ParameterType,
)

logger = structlog.get_logger(__name__)

RELEVANT_RESPONSE_HEADERS = (
    "content-type",
    "content-length",
    "location",
    "etag",
    "last-modified",
    "cache-control",
    "retry-after",
    "link",
)

_TYPE_CHECKS = {
    ParameterType.STRING: lambda v: isinstance(v, str),
    ParameterType.INTEGER: lambda v: isinstance(v, int) and not isinstance(v, bool),
    ParameterType.NUMBER: lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    ParameterType.BOOLEAN: lambda v: isinstance(v, bool),
    ParameterType.ARRAY: lambda v: isinstance(v, list),
    ParameterType.OBJECT: lambda v: isinstance(v, dict),
}

_JSON_CONTENT_TYPE = re.compile(
    r"^application/([\w.+-]+\+)?json\b|^text/json\b", re.IGNORECASE
)


@dataclass
class PreparedRequest:
    """Everything needed to send one upstream call."""

    method: str
    url: str
    params: list[tuple[str, str]] = field(default_factory=list)
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    content: Optional[bytes] = None


@dataclass
class ExecutionResult:
    """A 2xx upstream response, mapped for the tool result."""

    status: int
    headers: dict[str, str]
    body: Any

    def to_payload(self) -> dict[str, Any]:
        return {"status": self.status, "headers": self.headers, "body": self.body}

    def to_text(self) -> str:
        return f"Status: {self.status}\n\nResponse:\n{format_body(self.body)}"


class RequestExecutor:
    """Turn a tool invocation into exactly one HTTP request."""

    def __init__(self, client: UpstreamClient):
        self.client = client

    async def execute(
        self, descriptor: APIDescriptor, arguments: dict[str, Any]
    ) -> ExecutionResult:
        prepared = self.prepare(descriptor, arguments)
        logger.info(
            "Dispatching",
            tool=descriptor.name,
            method=prepared.method,
            url=prepared.url,
        )
        response = await self.client.send(
            prepared.method,
            prepared.url,
            params=prepared.params or None,
            headers=prepared.headers,
            content=prepared.content,
        )
        return self.map_response(response)

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def prepare(
        self, descriptor: APIDescriptor, arguments: dict[str, Any]
    ) -> PreparedRequest:
        values = self._validate(descriptor, arguments)

        url = descriptor.base_url.rstrip("/") + self._substitute_path_params(
            descriptor, values
        )
        params = self._query_params(descriptor, values)
        headers = self._headers(descriptor, values)

        content = None
        body = arguments.get(BODY_ARGUMENT)
        if body is not None:
            content_type = (
                descriptor.request_body.content_type
                if descriptor.request_body is not None
                else "application/json"
            )
            content = self._encode_body(body, content_type)
            if "content-type" not in headers:
                headers["Content-Type"] = content_type

        return PreparedRequest(
            method=descriptor.method.value,
            url=url,
            params=params,
            headers=headers,
            content=content,
        )

    @staticmethod
    def _validate(
        descriptor: APIDescriptor, arguments: dict[str, Any]
    ) -> dict[str, Any]:
        """Check presence and JSON types. Returns the values to bind, defaults applied."""
        values: dict[str, Any] = {}
        missing: list[str] = []
        mismatched: list[str] = []

        for param in descriptor.parameters:
            value = arguments.get(param.name)
            if value is None:
                value = param.default
            if value is None:
                if param.required or param.location == ParameterLocation.PATH:
                    missing.append(param.name)
                continue
            if not _TYPE_CHECKS[param.type](value):
                mismatched.append(param.name)
                continue
            values[param.name] = value

        body = descriptor.request_body
        if body is not None and body.required and arguments.get(BODY_ARGUMENT) is None:
            missing.append(BODY_ARGUMENT)

        if missing or mismatched:
            parts = []
            if missing:
                parts.append(f"missing required argument(s): {', '.join(missing)}")
            if mismatched:
                parts.append(f"wrong type for argument(s): {', '.join(mismatched)}")
            raise InvalidArgumentsError(
                f"Invalid arguments for '{descriptor.name}': " + "; ".join(parts),
                missing + mismatched,
            )
        return values

    @staticmethod
    def _substitute_path_params(
        descriptor: APIDescriptor, values: dict[str, Any]
    ) -> str:
        """Replace ``{param}`` placeholders with percent-encoded values."""

        def _replacer(match: re.Match) -> str:
            key = match.group(1)
            if key not in values:
                raise InvalidArgumentsError(f"Missing path parameter: {key}", [key])
            return quote(_stringify(values[key]), safe="")

        return re.sub(r"\{([^{}/]+)\}", _replacer, descriptor.path)

    @staticmethod
    def _query_params(
        descriptor: APIDescriptor, values: dict[str, Any]
    ) -> list[tuple[str, str]]:
        params: list[tuple[str, str]] = []
        for param in descriptor.parameters_in(ParameterLocation.QUERY):
            if param.name not in values:
                continue
            value = values[param.name]
            if isinstance(value, list):
                params.extend((param.name, _stringify(item)) for item in value)
            else:
                params.append((param.name, _stringify(value)))
        return params

    @staticmethod
    def _headers(descriptor: APIDescriptor, values: dict[str, Any]) -> httpx.Headers:
        # default headers < header parameters < authentication
        headers = httpx.Headers(descriptor.headers)
        for param in descriptor.parameters_in(ParameterLocation.HEADER):
            if param.name in values:
                headers[param.name] = _stringify(values[param.name])
        descriptor.authentication.apply_to(headers)
        return headers

    @staticmethod
    def _encode_body(body: Any, content_type: str) -> bytes:
        media_type = content_type.split(";", 1)[0].strip().lower()
        if media_type == "application/x-www-form-urlencoded" and isinstance(body, dict):
            return urlencode({k: _stringify(v) for k, v in body.items()}).encode("utf-8")
        if _JSON_CONTENT_TYPE.match(media_type):
            return json.dumps(body).encode("utf-8")
        if isinstance(body, str):
            return body.encode("utf-8")
        return json.dumps(body).encode("utf-8")

    # ------------------------------------------------------------------
    # Response mapping
    # ------------------------------------------------------------------

    @staticmethod
    def map_response(response: httpx.Response) -> ExecutionResult:
        headers = {
            name: response.headers[name]
            for name in RELEVANT_RESPONSE_HEADERS
            if name in response.headers
        }
        body = parse_body(response)
        if not response.is_success:
            raise UpstreamStatusError(response.status_code, body=body, headers=headers)
        return ExecutionResult(status=response.status_code, headers=headers, body=body)


def parse_body(response: httpx.Response) -> Any:
    """JSON when the content type says so, raw text otherwise, None when empty."""
    if not response.content:
        return None
    content_type = response.headers.get("content-type", "")
    if _JSON_CONTENT_TYPE.match(content_type.strip()):
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


def format_body(body: Any) -> str:
    if body is None:
        return ""
    if isinstance(body, str):
        return body
    return json.dumps(body, indent=2, ensure_ascii=False)


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)
