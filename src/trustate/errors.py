"""Error taxonomy shared by the pairing engine and the verification pipeline.

Every failure a caller can observe is a ``TrustateError`` subclass carrying a
stable machine-readable ``code`` and the HTTP status the transport maps it
to. Provider and internal errors keep their detail out of ``message``; the
detail goes to the server-side log only.
"""

from __future__ import annotations


class TrustateError(Exception):
    """Base class for typed service failures."""

    code = "error"
    status_code = 400
    retryable = False
    default_message = "Request failed"

    def __init__(self, message: str | None = None, code: str | None = None) -> None:
        super().__init__(message or self.default_message)
        if code is not None:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)

    def to_dict(self) -> dict[str, object]:
        body: dict[str, object] = {"error": self.code, "message": self.message}
        if self.retryable:
            body["retryable"] = True
        return body


class ValidationError(TrustateError):
    code = "validation_error"
    status_code = 400
    default_message = "Missing or malformed input"


class MissingSessionId(ValidationError):
    code = "missing_session_id"
    default_message = "Missing sessionId"


class MissingImages(ValidationError):
    code = "missing_images"
    default_message = "Missing required images"


class InvalidCode(TrustateError):
    code = "invalid_code"
    status_code = 404
    default_message = "Invalid nexus code"


class InvalidOrExpiredCode(TrustateError):
    code = "invalid_or_expired_code"
    status_code = 401
    default_message = "Invalid or expired verification code"


class NotFoundOrUnauthorized(TrustateError):
    code = "not_found_or_unauthorized"
    status_code = 404
    default_message = "Request not found or not authorized"


class DuplicateRequest(TrustateError):
    code = "duplicate_request"
    status_code = 409
    default_message = "An active pairing request already exists for this agent"


class DuplicateNexus(TrustateError):
    code = "duplicate_nexus"
    status_code = 409
    default_message = "Nexus already exists for this broker"


class PardonExhausted(TrustateError):
    code = "pardon_exhausted"
    status_code = 409
    default_message = "Pairing request cancellation has already been used"


class ProviderError(TrustateError):
    """A downstream storage, OCR or biometric call failed.

    ``detail`` and ``provider_code`` are for logs; callers only see the
    generic message and may retry.
    """

    code = "provider_error"
    status_code = 502
    retryable = True
    default_message = "Upstream provider request failed, please retry"

    def __init__(
        self,
        provider: str,
        operation: str,
        detail: str = "",
        provider_code: str | None = None,
    ) -> None:
        super().__init__()
        self.provider = provider
        self.operation = operation
        self.detail = detail
        self.provider_code = provider_code


class InternalError(TrustateError):
    code = "internal_error"
    status_code = 500
    default_message = "Internal server error"


class Forbidden(TrustateError):
    code = "forbidden"
    status_code = 403
    default_message = "This operation is not available for your role"


class RateLimited(TrustateError):
    code = "rate_limit_exceeded"
    status_code = 429
    retryable = True
    default_message = "Too many requests"


class RequestTooLarge(TrustateError):
    code = "request_too_large"
    status_code = 413
    default_message = "Request body is too large"


class HeadersTooLarge(TrustateError):
    code = "headers_too_large"
    status_code = 431
    default_message = "Request headers are too large"


class RequestTimeout(TrustateError):
    code = "request_timeout"
    status_code = 504
    retryable = True
    default_message = "Request timed out"
