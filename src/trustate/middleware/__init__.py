"""Security and audit middleware for the HTTP transport."""

from trustate.middleware.audit import AuditMiddleware
from trustate.middleware.security import PreAuthSecurityMiddleware, UserRateLimitMiddleware

__all__ = ["PreAuthSecurityMiddleware", "UserRateLimitMiddleware", "AuditMiddleware"]
