"""Pydantic models for registered API descriptors and the store document.

A descriptor is everything needed to turn one HTTP endpoint into an MCP tool:
where it lives, which arguments go where, how to authenticate, and whether it
is currently exposed.
"""

from __future__ import annotations

import base64
import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, ClassVar, Literal, Optional, Union

import httpx
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_core import PydanticCustomError

from ..errors import (
    DescriptorValidationError,
    DuplicateNameError,
    InvalidPathBindingError,
    MissingFieldError,
)

TOOL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
PATH_PLACEHOLDER = re.compile(r"\{([^{}/]+)\}")

MASK = "***MASKED***"

# Tool argument carrying the request body; no parameter may use this name.
BODY_ARGUMENT = "body"


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


class ParameterLocation(str, Enum):
    PATH = "path"
    QUERY = "query"
    HEADER = "header"


class ParameterType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


class ApiStatus(str, Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"


class ApiParameter(BaseModel):
    """One argument of a registered API and where it goes in the request."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str = Field(min_length=1)
    description: str = ""
    location: ParameterLocation = Field(
        default=ParameterLocation.QUERY,
        validation_alias=AliasChoices("in", "location"),
        serialization_alias="in",
    )
    required: bool = False
    type: ParameterType = ParameterType.STRING
    default: Any = None
    enum: Optional[list[Any]] = None


class RequestBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    content_type: str = "application/json"
    required: bool = False
    description: str = ""
    body_schema: Any = Field(
        default=None,
        validation_alias=AliasChoices("schema", "body_schema"),
        serialization_alias="schema",
    )


# ─── Authentication ─────────────────────────────────────────────────


class NoAuth(BaseModel):
    model_config = ConfigDict(frozen=True)

    SECRET_FIELDS: ClassVar[tuple[str, ...]] = ()

    type: Literal["none"] = "none"

    def apply_to(self, headers: httpx.Headers) -> None:
        return None


class ApiKeyAuth(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    SECRET_FIELDS: ClassVar[tuple[str, ...]] = ("key",)

    type: Literal["api_key"] = "api_key"
    header_name: str = "X-API-Key"
    key: str = Field(validation_alias=AliasChoices("key", "api_key"))

    def apply_to(self, headers: httpx.Headers) -> None:
        headers[self.header_name] = self.key


class BearerAuth(BaseModel):
    model_config = ConfigDict(frozen=True)

    SECRET_FIELDS: ClassVar[tuple[str, ...]] = ("token",)

    type: Literal["bearer"] = "bearer"
    token: str

    def apply_to(self, headers: httpx.Headers) -> None:
        headers["Authorization"] = f"Bearer {self.token}"


class BasicAuth(BaseModel):
    model_config = ConfigDict(frozen=True)

    SECRET_FIELDS: ClassVar[tuple[str, ...]] = ("password",)

    type: Literal["basic"] = "basic"
    username: str
    password: str

    def apply_to(self, headers: httpx.Headers) -> None:
        credentials = f"{self.username}:{self.password}".encode("utf-8")
        encoded = base64.b64encode(credentials).decode("ascii")
        headers["Authorization"] = f"Basic {encoded}"


Authentication = Annotated[
    Union[NoAuth, ApiKeyAuth, BearerAuth, BasicAuth],
    Field(discriminator="type"),
]


def masked_authentication(auth: BaseModel) -> dict[str, Any]:
    """Dump *auth* with every secret field replaced by a mask."""
    data = auth.model_dump(mode="json")
    for field_name in getattr(auth, "SECRET_FIELDS", ()):
        if data.get(field_name):
            data[field_name] = MASK
    return data


def restore_masked_secrets(incoming: Any, existing: BaseModel) -> Any:
    """Put back *existing* secrets where *incoming* echoes the mask.

    Only applies when the authentication type is unchanged; a masked value
    for any other type is left in place and rejected by validation.
    """
    if not isinstance(incoming, dict) or incoming.get("type", "none") != existing.type:
        return incoming
    restored = dict(incoming)
    for key, value in incoming.items():
        field_name = "key" if key == "api_key" else key
        if value == MASK and field_name in existing.SECRET_FIELDS:
            restored[key] = getattr(existing, field_name)
    return restored


# ─── Descriptor ─────────────────────────────────────────────────────


class APIDescriptor(BaseModel):
    """A registered HTTP API, exposed as the MCP tool ``name``."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    description: str
    base_url: str
    path: str
    method: HttpMethod
    parameters: list[ApiParameter] = Field(default_factory=list)
    request_body: Optional[RequestBody] = None
    responses: list[dict[str, Any]] = Field(default_factory=list)
    authentication: Authentication = Field(default_factory=NoAuth)
    headers: dict[str, str] = Field(default_factory=dict)
    status: ApiStatus = ApiStatus.ENABLED
    tags: list[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=utcnow)
    updated_at: str = Field(default_factory=utcnow)

    @field_validator("name")
    @classmethod
    def _check_name(cls, v: str) -> str:
        if not TOOL_NAME_PATTERN.fullmatch(v):
            raise PydanticCustomError(
                "invalid_tool_name",
                "name must be 1-64 characters of letters, digits, '_' or '-'",
            )
        return v

    @field_validator("base_url")
    @classmethod
    def _check_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v

    @field_validator("path")
    @classmethod
    def _normalize_path(cls, v: str) -> str:
        if v and not v.startswith("/"):
            return "/" + v
        return v

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @field_validator("authentication", mode="before")
    @classmethod
    def _default_auth_type(cls, v: Any) -> Any:
        if v is None:
            return {"type": "none"}
        if isinstance(v, dict) and "type" not in v:
            return {**v, "type": "none"}
        return v

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))

    @model_validator(mode="after")
    def _check_parameters(self) -> "APIDescriptor":
        seen: set[str] = set()
        for param in self.parameters:
            if param.name == BODY_ARGUMENT:
                raise PydanticCustomError(
                    "duplicate_parameter",
                    "parameter name '{name}' is reserved for the request body",
                    {"name": param.name},
                )
            if param.name in seen:
                raise PydanticCustomError(
                    "duplicate_parameter",
                    "parameter '{name}' is declared more than once",
                    {"name": param.name},
                )
            seen.add(param.name)

        placeholders = self.path_placeholders()
        declared = {p.name for p in self.parameters_in(ParameterLocation.PATH)}
        unbound = [p for p in placeholders if p not in declared]
        unused = sorted(declared - set(placeholders))
        if unbound or unused or len(placeholders) != len(set(placeholders)):
            raise PydanticCustomError(
                "invalid_path_binding",
                "path '{path}' does not match its path parameters "
                "(undeclared: {unbound}, not in path: {unused})",
                {"path": self.path, "unbound": unbound, "unused": unused},
            )

        for field_name in self.authentication.SECRET_FIELDS:
            if getattr(self.authentication, field_name) == MASK:
                raise PydanticCustomError(
                    "masked_secret",
                    "authentication.{field} holds the masked placeholder, not a secret",
                    {"field": field_name},
                )
        return self

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def path_placeholders(self) -> list[str]:
        return PATH_PLACEHOLDER.findall(self.path)

    def parameters_in(self, location: ParameterLocation) -> list[ApiParameter]:
        return [p for p in self.parameters if p.location == location]

    @property
    def enabled(self) -> bool:
        return self.status == ApiStatus.ENABLED

    def to_storage_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_public_dict(self) -> dict[str, Any]:
        """Full descriptor with authentication secrets masked."""
        data = self.to_storage_dict()
        data["authentication"] = masked_authentication(self.authentication)
        return data

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "method": self.method.value,
            "base_url": self.base_url,
            "path": self.path,
            "status": self.status.value,
            "tags": list(self.tags),
        }


class StoreInfo(BaseModel):
    title: str = "MCP OpenAPI Store"
    description: str = "API definitions for MCP tools"
    version: str = "1.0.0"


class StoreDocument(BaseModel):
    """On-disk layout of the descriptor store file."""

    version: str = "1.0.0"
    info: StoreInfo = Field(default_factory=StoreInfo)
    apis: list[APIDescriptor] = Field(default_factory=list)

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "info": self.info.model_dump(mode="json"),
            "apis": [api.to_storage_dict() for api in self.apis],
        }


# ─── Construction with domain errors ────────────────────────────────


def _format_errors(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "descriptor"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def build_descriptor(payload: dict[str, Any]) -> APIDescriptor:
    """Validate *payload* into a descriptor, raising the descriptor error taxonomy."""
    try:
        return APIDescriptor.model_validate(payload)
    except ValidationError as exc:
        errors = exc.errors()
        kinds = {err["type"] for err in errors}
        message = _format_errors(exc)
        if "duplicate_parameter" in kinds:
            raise DuplicateNameError(message) from exc
        if "invalid_path_binding" in kinds:
            raise InvalidPathBindingError(message) from exc
        if kinds == {"missing"}:
            fields = [".".join(str(p) for p in err["loc"]) for err in errors]
            raise MissingFieldError(
                f"Missing required field(s): {', '.join(fields)}"
            ) from exc
        raise DescriptorValidationError(message) from exc
