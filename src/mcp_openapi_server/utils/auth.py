"""Shared-secret bearer authentication for the HTTP transport."""

from __future__ import annotations

import hmac
from typing import Iterable, Optional

import structlog
from starlette.datastructures import Headers
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

logger = structlog.get_logger(__name__)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token of an ``Authorization: Bearer <token>`` value.

    The scheme is matched case-insensitively. Anything else, including an
    empty token, yields ``None``.
    """
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


class BearerTokenMiddleware:
    """Reject HTTP requests that do not carry the configured bearer token."""

    def __init__(
        self,
        app: ASGIApp,
        token: Optional[str],
        exempt_paths: Iterable[str] = ("/health",),
    ):
        self.app = app
        self.token = token
        self.exempt_paths = frozenset(exempt_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self.token:
            await self.app(scope, receive, send)
            return
        if scope.get("method") == "OPTIONS" or scope.get("path") in self.exempt_paths:
            await self.app(scope, receive, send)
            return

        presented = extract_bearer_token(Headers(scope=scope).get("authorization"))
        if presented is not None and hmac.compare_digest(
            presented.encode("utf-8"), self.token.encode("utf-8")
        ):
            await self.app(scope, receive, send)
            return

        logger.warning("Rejected unauthenticated request", path=scope.get("path"))
        response = JSONResponse({"error": "Unauthorized"}, status_code=401)
        await response(scope, receive, send)
