"""Starlette HTTP server assembly."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from trustate.app import AppContext, get_app_context
from trustate.auth.identity_middleware import IdentityMiddleware
from trustate.middleware.audit import AuditMiddleware
from trustate.middleware.security import PreAuthSecurityMiddleware, UserRateLimitMiddleware
from trustate.transport.routes import ApiRoutes

logger = logging.getLogger(__name__)


def create_http_app(context: AppContext | None = None) -> Starlette:
    """Create the HTTP application over ``context`` (the process-wide one by default)."""
    context = context or get_app_context()
    settings = context.settings
    trust_forwarded = settings.server.http_trust_forwarded_headers

    # Order: PreAuthSecurity -> Identity -> UserRateLimit -> Audit
    middleware: list[Middleware] = [
        Middleware(
            PreAuthSecurityMiddleware,
            config=settings.security,
            trust_forwarded_headers=trust_forwarded,
        ),
        Middleware(IdentityMiddleware),
        Middleware(UserRateLimitMiddleware, config=settings.security),
        Middleware(
            AuditMiddleware,
            enabled=settings.security.audit_enabled,
            trust_forwarded_headers=trust_forwarded,
        ),
    ]

    # CORS must be outermost so preflight requests never reach the identity check.
    if settings.server.http_enable_cors and settings.server.http_allowed_origins:
        middleware.insert(
            0,
            Middleware(
                CORSMiddleware,
                allow_origins=list(settings.server.http_allowed_origins),
                allow_methods=["POST", "GET", "OPTIONS"],
                allow_headers=[
                    "Content-Type",
                    "Accept",
                    "X-User-Id",
                    "X-User-Role",
                    "X-User-Status",
                ],
            ),
        )

    async def health_handler(request: Request) -> Response:
        return JSONResponse({"status": "healthy"})

    async def ready_handler(request: Request) -> Response:
        try:
            await asyncio.to_thread(context.store.fetch_one, "SELECT 1 AS ok", ())
        except Exception:
            logger.exception("Readiness check failed")
            return JSONResponse({"status": "unavailable"}, status_code=503)
        return JSONResponse({"status": "ready"})

    routes = [
        Route("/health", endpoint=health_handler, methods=["GET"]),
        Route("/ready", endpoint=ready_handler, methods=["GET"]),
        *ApiRoutes(context).routes(),
    ]

    @asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info("Starting Trustate HTTP server...")
        try:
            yield
        finally:
            logger.info("Stopping Trustate HTTP server...")

    return Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
