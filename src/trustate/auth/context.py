"""Request-scoped caller identity."""

from __future__ import annotations

import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

Role = Literal["broker", "agent", "client", "admin"]

ROLES: frozenset[str] = frozenset({"broker", "agent", "client", "admin"})

# Fields that must never appear in logs
SENSITIVE_FIELDS = frozenset(
    {
        "totp_secret",
        "secret",
        "password",
        "authorization",
        "session_token",
        "liveness_image_bytes",
    }
)


@dataclass(frozen=True)
class RequestContext:
    """
    Immutable request-scoped context.

    The upstream gateway authenticates the caller; this service trusts the
    forwarded user id, role and status attribute as given.
    """

    user_id: str
    role: Role
    status: str | None = None
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def has_role(self, *roles: str) -> bool:
        return self.role in roles


_request_context: ContextVar[RequestContext | None] = ContextVar(
    "request_context",
    default=None,
)


def set_request_context(ctx: RequestContext) -> Token[RequestContext | None]:
    """Set context and return reset token."""
    return _request_context.set(ctx)


def reset_request_context(token: Token[RequestContext | None]) -> None:
    """Reset context using token from set_request_context()."""
    _request_context.reset(token)


def get_request_context() -> RequestContext:
    """Get context or raise RuntimeError."""
    ctx = _request_context.get()
    if ctx is None:
        raise RuntimeError("No request context set")
    return ctx


def get_request_context_optional() -> RequestContext | None:
    """Get context or None (for exempt paths)."""
    return _request_context.get()
