"""Per-request audit lines: who called which endpoint and how it ended."""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from trustate.auth.context import SENSITIVE_FIELDS
from trustate.auth.identity_middleware import is_exempt_path
from trustate.middleware.security import get_client_ip

logger = logging.getLogger(__name__)

MASK = "***MASKED***"

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")


def _build_secret_pattern(fields: frozenset[str]) -> re.Pattern[str]:
    names = "|".join(re.escape(name) for name in sorted(fields))
    return re.compile(rf'(["\']?(?:{names})["\']?\s*[:=]\s*)["\']?[^"\'\s,}}]*["\']?', re.I)


_SECRET_ASSIGNMENT = _build_secret_pattern(SENSITIVE_FIELDS)


def clean_log_value(value: str) -> str:
    """Neutralize control characters so a value cannot forge extra log lines."""
    return _CONTROL_CHARS.sub("_", value)


def mask_secrets(text: str) -> str:
    """Mask ``totp_secret=...`` style assignments of any sensitive field."""
    return _SECRET_ASSIGNMENT.sub(rf"\g<1>{MASK}", text)


class AuditMiddleware(BaseHTTPMiddleware):
    """Logs REQUEST_START and REQUEST_END for every API call.

    The end line carries the caller id and role set by the identity
    middleware, the status and duration, and for rejected calls the error
    code. Exception text is masked before it is logged.
    """

    def __init__(
        self,
        app: Callable,
        enabled: bool = True,
        trust_forwarded_headers: bool = False,
    ) -> None:
        super().__init__(app)
        self.enabled = enabled
        self._trust_forwarded_headers = trust_forwarded_headers

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled or is_exempt_path(request.url.path):
            return await call_next(request)

        request_id = clean_log_value(request.headers.get("x-request-id") or str(uuid.uuid4()))
        path = clean_log_value(request.url.path)
        started = time.monotonic()
        logger.info(
            "REQUEST_START request_id=%s method=%s path=%s client_ip=%s",
            request_id,
            request.method,
            path,
            get_client_ip(request, self._trust_forwarded_headers),
        )

        status_code = 500
        detail = ""
        try:
            response = await call_next(request)
            status_code = response.status_code
            error_code = getattr(request.state, "error_code", None)
            if error_code:
                detail = f" error={clean_log_value(error_code)}"
            return response
        except Exception as exc:
            detail = f" exception={clean_log_value(mask_secrets(str(exc)))}"
            raise
        finally:
            user_id = getattr(request.state, "user_id", None) or "anonymous"
            role = getattr(request.state, "role", None) or "-"
            logger.log(
                logging.ERROR if status_code >= 500 else logging.INFO,
                "REQUEST_END request_id=%s user_id=%s role=%s method=%s path=%s "
                "status=%s duration_ms=%d%s",
                request_id,
                clean_log_value(user_id),
                role,
                request.method,
                path,
                status_code,
                int((time.monotonic() - started) * 1000),
                detail,
            )
