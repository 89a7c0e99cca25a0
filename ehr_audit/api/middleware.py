"""API middleware: correlation ID, actor context, audit trail recording."""

import logging
import re
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ehr_audit.api.dependencies import request_context
from ehr_audit.application.exceptions import ApplicationError
from ehr_audit.config.settings import get_settings
from ehr_audit.core.context import actor_id_ctx, correlation_id_ctx
from ehr_audit.domain.exceptions import DomainError
from ehr_audit.domain.models.audit_event import AuditAction
from ehr_audit.observability.metrics import AUDIT_FAIL_OPEN_PASSTHROUGH

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"
ACTOR_ID_HEADER = "X-Actor-ID"
ACTOR_ROLE_HEADER = "X-Actor-Role"
SESSION_HEADER = "X-Session-ID"

FAIL_CLOSED = "fail_closed"
FAIL_OPEN = "fail_open"

CLINICAL_PATH = re.compile(r"^/api/v\d+/(?P<resource>[A-Za-z][A-Za-z-]*)(?:/(?P<id>[^/]+))?")

_METHOD_ACTIONS = {
    "GET": AuditAction.READ,
    "POST": AuditAction.CREATE,
    "PUT": AuditAction.UPDATE,
    "PATCH": AuditAction.UPDATE,
    "DELETE": AuditAction.DELETE,
}

_RESOURCE_TYPES = {
    "patients": "Patient",
    "encounters": "Encounter",
    "observations": "Observation",
    "conditions": "Condition",
    "medications": "Medication",
    "allergies": "AllergyIntolerance",
    "immunizations": "Immunization",
    "procedures": "Procedure",
    "appointments": "Appointment",
    "documents": "DocumentReference",
    "orders": "ServiceRequest",
    "users": "User",
}


def resolve_resource(path: str) -> tuple[Optional[str], Optional[str]]:
    """Map /api/v<N>/<resource>[/<id>] to (resource_type, resource_id); (None, None) otherwise."""
    match = CLINICAL_PATH.match(path)
    if match is None:
        return None, None
    segment = match.group("resource").lower()
    return _RESOURCE_TYPES.get(segment, segment), match.group("id")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Generate or preserve correlation ID; attach to request.state, response header, and logging context."""

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        correlation_id_ctx.set(correlation_id)

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class ActorContextMiddleware(BaseHTTPMiddleware):
    """Copy gateway identity headers to request.state and the logging context. Absent headers stay None."""

    async def dispatch(self, request: Request, call_next) -> Response:
        actor_id = (request.headers.get(ACTOR_ID_HEADER) or "").strip() or None
        request.state.actor_id = actor_id
        request.state.actor_role = (request.headers.get(ACTOR_ROLE_HEADER) or "").strip() or None
        request.state.session_id = (request.headers.get(SESSION_HEADER) or "").strip() or None
        actor_id_ctx.set(actor_id)
        return await call_next(request)


class AuditTrailMiddleware(BaseHTTPMiddleware):
    """
    After response: append one hash-chained audit event for each clinical resource request.
    The recorder and metrics collector are read from app.state (set at startup).

    fail_closed: an append failure replaces the response with 503.
    fail_open: the failure is logged and counted and the original response is returned.
    """

    def __init__(self, app, failure_mode: Optional[str] = None) -> None:
        super().__init__(app)
        self._failure_mode = failure_mode

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        resource_type, resource_id = resolve_resource(request.url.path)
        action = _METHOD_ACTIONS.get(request.method.upper())
        if resource_type is None or action is None:
            return response

        recorder = request.app.state.audit_recorder
        try:
            await recorder.record_event(
                actor_id=getattr(request.state, "actor_id", None),
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                context=request_context(request, response.status_code),
                actor_role=getattr(request.state, "actor_role", None),
            )
        except (ApplicationError, DomainError) as e:
            failure_mode = self._failure_mode or get_settings().audit_failure_mode
            logger.error(
                "audit_trail_append_failed",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "failure_mode": failure_mode,
                    "error": e.message,
                },
            )
            if failure_mode == FAIL_OPEN:
                request.app.state.metrics.increment(AUDIT_FAIL_OPEN_PASSTHROUGH, category=resource_type)
                return response
            return JSONResponse(
                status_code=503,
                content={"detail": "Audit trail unavailable; request could not be recorded"},
            )
        return response
