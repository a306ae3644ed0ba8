"""Request size limits, timeouts and rate limits.

``PreAuthSecurityMiddleware`` runs before identity headers are read and
limits by client IP. ``UserRateLimitMiddleware`` runs after them and
limits by caller, with separate tighter budgets for pairing-code attempts
and for verification calls.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from trustate.auth.identity_middleware import is_exempt_path
from trustate.config import SecuritySettings
from trustate.errors import (
    HeadersTooLarge,
    RateLimited,
    RequestTimeout,
    RequestTooLarge,
    TrustateError,
    ValidationError,
)

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0

_BODY_METHODS = ("POST", "PUT", "PATCH")


def _reject(error: TrustateError, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(error.to_dict(), status_code=error.status_code, headers=headers)


def _rate_limited(message: str) -> JSONResponse:
    return _reject(RateLimited(message), headers={"Retry-After": str(int(WINDOW_SECONDS))})


class SlidingWindowRateLimiter:
    """Per-key request timestamps over the last ``window_seconds``.

    Keys look like ``ip:<addr>``, ``user:<id>`` or ``user:<id>:<route class>``.
    Counters are process-local; several uvicorn workers each keep their own.
    """

    IDLE_SWEEP_SECONDS = 300.0

    def __init__(self, window_seconds: float = WINDOW_SECONDS) -> None:
        self._window_seconds = window_seconds
        self._hits: dict[str, deque[float]] = {}
        self._lock = asyncio.Lock()
        self._last_sweep = 0.0

    async def allow(self, key: str, limit: int, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        async with self._lock:
            if now - self._last_sweep > self._window_seconds:
                self.sweep(now)
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= now - self._window_seconds:
                hits.popleft()
            if len(hits) >= limit:
                return False
            hits.append(now)
            return True

    def sweep(self, now: float) -> None:
        """Drop keys idle for longer than ``IDLE_SWEEP_SECONDS``. Caller holds the lock."""
        self._last_sweep = now
        cutoff = now - self.IDLE_SWEEP_SECONDS
        for key in [k for k, hits in self._hits.items() if not hits or hits[-1] < cutoff]:
            del self._hits[key]

    def reset(self) -> None:
        self._hits.clear()
        self._last_sweep = 0.0


_shared_rate_limiter = SlidingWindowRateLimiter()


def get_shared_rate_limiter() -> SlidingWindowRateLimiter:
    return _shared_rate_limiter


def get_client_ip(request: Request, trust_forwarded_headers: bool = False) -> str:
    """Client address, taken from X-Forwarded-For / X-Real-IP only behind a trusted proxy."""
    candidate = None
    if trust_forwarded_headers:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            candidate = forwarded_for.split(",")[0]
        else:
            candidate = request.headers.get("x-real-ip")
    if candidate:
        # Printable ASCII only; the value ends up in log lines.
        return "".join(c for c in candidate.strip() if 0x20 <= ord(c) < 0x7F)
    if request.client:
        return request.client.host
    return "unknown"


class PreAuthSecurityMiddleware(BaseHTTPMiddleware):
    """Size limits, per-IP rate limit and request timeout, ahead of identity."""

    def __init__(
        self,
        app: Callable,
        config: SecuritySettings,
        trust_forwarded_headers: bool = False,
        rate_limiter: SlidingWindowRateLimiter | None = None,
    ) -> None:
        super().__init__(app)
        self.config = config
        self.rate_limiter = rate_limiter or _shared_rate_limiter
        self._trust_forwarded_headers = trust_forwarded_headers

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if is_exempt_path(request.url.path):
            return await call_next(request)

        rejection = await self._check_body(request) or self._check_headers(request)
        if rejection is not None:
            return rejection

        client_ip = get_client_ip(request, self._trust_forwarded_headers)
        if not await self.rate_limiter.allow(f"ip:{client_ip}", self.config.rate_limit_per_ip):
            logger.warning("Rate limit exceeded for IP %s on %s", client_ip, request.url.path)
            return _rate_limited("Too many requests from this IP")

        timeout = self.config.request_timeout_seconds
        try:
            return await asyncio.wait_for(call_next(request), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error("%s %s timed out after %ss", request.method, request.url.path, timeout)
            return _reject(RequestTimeout(f"Request timed out after {timeout} seconds"))

    async def _check_body(self, request: Request) -> Response | None:
        max_body = self.config.max_body_size_bytes
        too_large = RequestTooLarge(f"Request body exceeds {max_body} bytes")

        declared = request.headers.get("content-length")
        if declared:
            if declared.isdigit() and int(declared) > max_body:
                logger.warning("Declared body too large: %s > %d", declared, max_body)
                return _reject(too_large)
            if not declared.isdigit():
                logger.warning("Invalid Content-Length header: %r", declared)

        chunked = "chunked" in request.headers.get("transfer-encoding", "").lower()
        if not chunked and request.method not in _BODY_METHODS:
            return None

        # Content-Length can lie; count what actually arrives.
        try:
            body = await self.read_limited_body(request, max_body)
        except RequestTooLarge:
            logger.warning("Body exceeded %d bytes while streaming", max_body)
            return _reject(too_large)
        except Exception as exc:
            logger.warning("Failed to read request body: %s", exc)
            return _reject(ValidationError("Failed to read request body", code="invalid_request"))
        # Handlers read the cached body instead of the consumed stream.
        request._body = body
        return None

    @staticmethod
    async def read_limited_body(request: Request, max_size: int) -> bytes:
        buf = bytearray()
        async for chunk in request.stream():
            buf.extend(chunk)
            if len(buf) > max_size:
                raise RequestTooLarge()
        return bytes(buf)

    def _check_headers(self, request: Request) -> Response | None:
        limit = self.config.max_header_size_bytes
        size = sum(len(k) + len(v) for k, v in request.headers.items())
        if size <= limit:
            return None
        logger.warning("Headers too large: %d > %d", size, limit)
        return _reject(HeadersTooLarge(f"Headers exceed {limit} bytes"))


@dataclass(frozen=True)
class RouteClass:
    """A group of endpoints sharing one per-caller budget."""

    name: str
    path_prefix: str
    methods: tuple[str, ...]
    limit_setting: str

    def matches(self, request: Request) -> bool:
        return request.method in self.methods and request.url.path.startswith(self.path_prefix)


ROUTE_CLASSES: tuple[RouteClass, ...] = (
    RouteClass("pairing", "/api/broker/nexus/verify", ("POST",), "pairing_attempts_per_minute"),
    RouteClass(
        "verification",
        "/api/verification/",
        ("GET", "POST"),
        "verification_requests_per_minute",
    ),
)


class UserRateLimitMiddleware(BaseHTTPMiddleware):
    """Per-caller limits, applied after identity has set ``request.state.user_id``."""

    def __init__(
        self,
        app: Callable,
        config: SecuritySettings,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        route_classes: tuple[RouteClass, ...] = ROUTE_CLASSES,
    ) -> None:
        super().__init__(app)
        self.config = config
        self.rate_limiter = rate_limiter or _shared_rate_limiter
        self.route_classes = route_classes

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        user_id = getattr(request.state, "user_id", None)
        if is_exempt_path(request.url.path) or not user_id:
            return await call_next(request)

        if not await self.rate_limiter.allow(f"user:{user_id}", self.config.rate_limit_per_user):
            logger.warning("Rate limit exceeded for user %s", user_id)
            return _rate_limited("Too many requests from this user")

        for route_class in self.route_classes:
            if not route_class.matches(request):
                continue
            limit = getattr(self.config, route_class.limit_setting)
            if not await self.rate_limiter.allow(f"user:{user_id}:{route_class.name}", limit):
                logger.warning(
                    "%s limit exceeded for user %s (%d/min)", route_class.name, user_id, limit
                )
                return _rate_limited(f"Too many {route_class.name} requests")

        return await call_next(request)
