"""Caller identity as forwarded by the upstream gateway."""

from trustate.auth.context import (
    ROLES,
    SENSITIVE_FIELDS,
    RequestContext,
    get_request_context,
    get_request_context_optional,
    reset_request_context,
    set_request_context,
)

__all__ = [
    "ROLES",
    "RequestContext",
    "SENSITIVE_FIELDS",
    "get_request_context",
    "get_request_context_optional",
    "reset_request_context",
    "set_request_context",
]
