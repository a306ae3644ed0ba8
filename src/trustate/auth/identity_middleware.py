"""Trusted-header identity middleware."""

from __future__ import annotations

import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from trustate.auth.context import (
    ROLES,
    RequestContext,
    reset_request_context,
    set_request_context,
)
from trustate.errors import Forbidden

logger = logging.getLogger(__name__)

USER_ID_HEADER = "x-user-id"
ROLE_HEADER = "x-user-role"
STATUS_HEADER = "x-user-status"

EXEMPT_PATHS = frozenset({"/health", "/ready"})


def is_exempt_path(path: str) -> bool:
    """Return True if the request path should bypass identity resolution."""
    return path in EXEMPT_PATHS


def require_role(ctx: RequestContext, *roles: str) -> None:
    if not ctx.has_role(*roles):
        raise Forbidden()


class IdentityMiddleware(BaseHTTPMiddleware):
    """Builds the RequestContext from identity headers set by the gateway."""

    async def dispatch(self, request: Request, call_next):
        if is_exempt_path(request.url.path):
            return await call_next(request)

        user_id = request.headers.get(USER_ID_HEADER, "").strip()
        role = request.headers.get(ROLE_HEADER, "").strip().lower()
        if not user_id or not role:
            return self._unauthorized("Missing caller identity")
        if role not in ROLES:
            logger.warning("Rejected unknown role %r for user %s", role, user_id)
            return JSONResponse(
                status_code=403,
                content={"error": "forbidden", "message": "Unknown role"},
            )

        ctx = RequestContext(
            user_id=user_id,
            role=role,
            status=request.headers.get(STATUS_HEADER) or None,
        )
        request.state.user_id = user_id
        request.state.role = role

        context_token = set_request_context(ctx)
        try:
            return await call_next(request)
        finally:
            reset_request_context(context_token)

    def _unauthorized(self, message: str) -> JSONResponse:
        return JSONResponse(
            {"error": "unauthorized", "message": message},
            status_code=401,
        )
