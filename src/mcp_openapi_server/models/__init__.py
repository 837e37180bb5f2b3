"""Descriptor and store-document models."""

from .schemas import (
    APIDescriptor,
    ApiKeyAuth,
    ApiParameter,
    ApiStatus,
    BasicAuth,
    BearerAuth,
    HttpMethod,
    NoAuth,
    ParameterLocation,
    ParameterType,
    RequestBody,
    StoreDocument,
    build_descriptor,
)

__all__ = [
    "APIDescriptor",
    "ApiKeyAuth",
    "ApiParameter",
    "ApiStatus",
    "BasicAuth",
    "BearerAuth",
    "HttpMethod",
    "NoAuth",
    "ParameterLocation",
    "ParameterType",
    "RequestBody",
    "StoreDocument",
    "build_descriptor",
]
