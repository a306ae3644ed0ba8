"""JSON endpoints for pairing, verification and activity.

Handlers take the acting user from the request context, never from the
body, and run the blocking store and boto3 work in a worker thread.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
from typing import Any, Awaitable, Callable

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from trustate.app import AppContext
from trustate.auth.context import RequestContext, get_request_context
from trustate.auth.identity_middleware import require_role
from trustate.errors import Forbidden, InternalError, TrustateError, ValidationError

logger = logging.getLogger(__name__)

Handler = Callable[[Any, Request], Awaitable[Response]]


def error_response(error: TrustateError) -> JSONResponse:
    return JSONResponse(error.to_dict(), status_code=error.status_code)


def endpoint(handler: Handler) -> Handler:
    """Map typed failures to their status code and hide everything else."""

    @functools.wraps(handler)
    async def wrapper(self: Any, request: Request) -> Response:
        try:
            return await handler(self, request)
        except TrustateError as exc:
            if exc.status_code >= 500:
                logger.error(
                    "%s %s failed: %s %s",
                    request.method,
                    request.url.path,
                    exc.code,
                    getattr(exc, "detail", ""),
                )
            error = exc
        except Exception:
            logger.exception("Unhandled error in %s %s", request.method, request.url.path)
            error = InternalError()
        # Picked up by the audit middleware
        request.state.error_code = error.code
        return error_response(error)

    return wrapper


async def read_json(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Request body must be valid JSON") from exc
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _str_field(body: dict[str, Any], *names: str) -> str | None:
    for name in names:
        value = body.get(name)
        if value is None:
            continue
        if not isinstance(value, str):
            raise ValidationError(f"{name} must be a string")
        return value
    return None


def _int_param(request: Request, name: str, default: int) -> int:
    value = request.query_params.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer") from exc


def _require_owned_key(ctx: RequestContext, key: str | None) -> None:
    """Non-admin callers may only reference objects under their own prefix."""
    if key is None or ctx.has_role("admin"):
        return
    if not key.startswith(f"temp/{ctx.user_id}/"):
        raise Forbidden("Object key does not belong to the caller")


async def _run(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    return await asyncio.to_thread(func, *args, **kwargs)


class ApiRoutes:
    """Binds the HTTP surface to one ``AppContext``."""

    def __init__(self, context: AppContext) -> None:
        self.context = context

    # Broker

    @endpoint
    async def generate_nexus(self, request: Request) -> Response:
        ctx = get_request_context()
        require_role(ctx, "broker")
        nexus_code = await _run(self.context.pairing.issue_pairing_material, ctx.user_id)
        return JSONResponse({"nexusCode": nexus_code}, status_code=201)

    @endpoint
    async def live_code(self, request: Request) -> Response:
        ctx = get_request_context()
        require_role(ctx, "broker")
        live = await _run(self.context.pairing.get_live_code, ctx.user_id)
        return JSONResponse(live.to_dict())

    @endpoint
    async def resolve_link(self, request: Request) -> Response:
        ctx = get_request_context()
        require_role(ctx, "agent")
        body = await read_json(request)
        link = await _run(
            self.context.pairing.resolve_nexus_link,
            _str_field(body, "nexusLink") or "",
        )
        return JSONResponse({"nexusCode": link.nexus_code, "broker": {"id": link.broker_id}})

    @endpoint
    async def verify_pairing(self, request: Request) -> Response:
        ctx = get_request_context()
        require_role(ctx, "agent")
        body = await read_json(request)
        request_id = await _run(
            self.context.pairing.validate_pairing,
            _str_field(body, "nexusCode") or "",
            _str_field(body, "totpCode", "code") or "",
            ctx.user_id,
        )
        return JSONResponse({"success": True, "requestId": request_id}, status_code=201)

    @endpoint
    async def list_requests(self, request: Request) -> Response:
        ctx = get_request_context()
        require_role(ctx, "broker")
        requests = await _run(self.context.pairing.list_broker_requests, ctx.user_id)
        return JSONResponse({"requests": [item.to_dict() for item in requests]})

    @endpoint
    async def respond(self, request: Request) -> Response:
        ctx = get_request_context()
        require_role(ctx, "broker")
        body = await read_json(request)
        result = await _run(
            self.context.pairing.respond_to_pairing,
            _str_field(body, "requestId") or "",
            ctx.user_id,
            _str_field(body, "action") or "",
        )
        return JSONResponse({"success": True, "request": result.to_dict()})

    # Agent

    @endpoint
    async def reset_broker(self, request: Request) -> Response:
        ctx = get_request_context()
        require_role(ctx, "agent")
        result = await _run(self.context.pairing.cancel_pairing, ctx.user_id)
        return JSONResponse({"cancelled": result.cancelled, "requestId": result.request_id})

    @endpoint
    async def agent_status(self, request: Request) -> Response:
        ctx = get_request_context()
        if ctx.has_role("agent"):
            agent_id = ctx.user_id
        else:
            require_role(ctx, "broker", "admin")
            agent_id = request.query_params.get("agentId", "")
            if not agent_id:
                raise ValidationError("Missing agentId")
        status = await _run(self.context.pairing.get_agent_status, agent_id)
        return JSONResponse({"agentId": agent_id, "status": status})

    # Verification

    @endpoint
    async def upload_url(self, request: Request) -> Response:
        ctx = get_request_context()
        body = await read_json(request)
        target = await _run(
            self.context.verification.issue_upload_target,
            ctx.user_id,
            _str_field(body, "documentType") or "",
            _str_field(body, "contentType") or "",
        )
        return JSONResponse(target.to_dict())

    @endpoint
    async def analyze_id(self, request: Request) -> Response:
        ctx = get_request_context()
        body = await read_json(request)
        key = _str_field(body, "s3Key")
        _require_owned_key(ctx, key)
        fields = await _run(self.context.verification.extract_fields, key or "")
        return JSONResponse({"fields": fields})

    @endpoint
    async def liveness(self, request: Request) -> Response:
        body = await read_json(request)
        result = await _run(
            self.context.verification.liveness,
            _str_field(body, "action"),
            _str_field(body, "sessionId"),
        )
        return JSONResponse(result)

    @endpoint
    async def compare_faces(self, request: Request) -> Response:
        ctx = get_request_context()
        body = await read_json(request)
        key = _str_field(body, "idImageKey")
        _require_owned_key(ctx, key)
        result = await _run(
            self.context.verification.compare_faces,
            key,
            _str_field(body, "livenessImageBytes"),
        )
        return JSONResponse(result.to_dict())

    @endpoint
    async def verify_identity(self, request: Request) -> Response:
        ctx = get_request_context()
        body = await read_json(request)
        document_key = _str_field(body, "documentKey")
        id_image_key = _str_field(body, "idImageKey")
        _require_owned_key(ctx, document_key)
        _require_owned_key(ctx, id_image_key)
        session = await _run(
            self.context.verification.verify_identity,
            ctx.user_id,
            document_key or "",
            _str_field(body, "livenessSessionId"),
            id_image_key=id_image_key,
        )
        return JSONResponse(session.to_dict())

    @endpoint
    async def verification_status(self, request: Request) -> Response:
        ctx = get_request_context()
        user_id = ctx.user_id
        requested = request.query_params.get("userId")
        if requested and requested != ctx.user_id:
            require_role(ctx, "admin")
            user_id = requested
        status = await _run(self.context.projection.get_verification_status, user_id)
        return JSONResponse({"userId": user_id, "status": status})

    @endpoint
    async def review_queue(self, request: Request) -> Response:
        require_role(get_request_context(), "admin")
        records = await _run(self.context.projection.list_review_queue)
        return JSONResponse({"queue": [record.to_dict() for record in records]})

    # Activity

    @endpoint
    async def list_activity(self, request: Request) -> Response:
        ctx = get_request_context()
        subject_id = request.path_params["subject_id"]
        await _run(self.context.activity.check_access, subject_id, ctx.user_id, ctx.role)
        page = await _run(
            self.context.activity.list,
            subject_id,
            page=_int_param(request, "page", 1),
            limit=_int_param(request, "limit", 20),
        )
        return JSONResponse(page.to_dict())

    @endpoint
    async def append_activity(self, request: Request) -> Response:
        ctx = get_request_context()
        body = await read_json(request)
        metadata = body.get("metadata")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("metadata must be an object")
        entry = await _run(
            self.context.activity.append_for_caller,
            subject_id=request.path_params["subject_id"],
            action_type=_str_field(body, "action_type", "actionType") or "",
            description=_str_field(body, "description") or "",
            actor_id=ctx.user_id,
            actor_role=ctx.role,
            metadata=metadata,
        )
        return JSONResponse({"log": entry.to_dict()}, status_code=201)

    def routes(self) -> list[Route]:
        return [
            Route("/api/broker/nexus/generate", self.generate_nexus, methods=["POST"]),
            Route("/api/broker/nexus", self.live_code, methods=["GET"]),
            Route("/api/broker/nexus/validate", self.resolve_link, methods=["POST"]),
            Route("/api/broker/nexus/verify", self.verify_pairing, methods=["POST"]),
            Route("/api/broker/requests", self.list_requests, methods=["GET"]),
            Route("/api/broker/requests/respond", self.respond, methods=["POST"]),
            Route("/api/agent/reset-broker", self.reset_broker, methods=["POST"]),
            Route("/api/agent/status", self.agent_status, methods=["GET"]),
            Route("/api/verification/upload-url", self.upload_url, methods=["POST"]),
            Route("/api/verification/analyze-id", self.analyze_id, methods=["POST"]),
            Route("/api/verification/liveness", self.liveness, methods=["POST"]),
            Route("/api/verification/compare-faces", self.compare_faces, methods=["POST"]),
            Route("/api/verification/verify", self.verify_identity, methods=["POST"]),
            Route("/api/verification/status", self.verification_status, methods=["GET"]),
            Route("/api/verification/review-queue", self.review_queue, methods=["GET"]),
            Route(
                "/api/transactions/{subject_id}/activity",
                self.list_activity,
                methods=["GET"],
            ),
            Route(
                "/api/transactions/{subject_id}/activity",
                self.append_activity,
                methods=["POST"],
            ),
        ]
