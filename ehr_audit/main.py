# ehr_audit/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from ehr_audit.api.middleware import (
    ActorContextMiddleware,
    AuditTrailMiddleware,
    CorrelationIdMiddleware,
)
from ehr_audit.api.dependencies import get_audit_recorder, get_metrics
from ehr_audit.api.routers import audit, health
from ehr_audit.config.logging import configure_logging
from ehr_audit.config.settings import get_settings
from ehr_audit.application.exceptions import (
    ApplicationError,
    ConcurrencyConflictError,
    EmptyPeriodError,
    NotFoundError,
    PersistenceError,
)
from ehr_audit.domain.exceptions import DomainError, DomainValidationError
from ehr_audit.security.exceptions import AuthenticationError, AuthorizationError, SecurityError

settings = get_settings()
configure_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Process-wide recorder and metrics for AuditTrailMiddleware."""
    app.state.audit_recorder = get_audit_recorder()
    app.state.metrics = get_metrics()
    logger.info("audit_service_started", extra={"environment": settings.environment})
    yield


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    debug=settings.debug,
    lifespan=lifespan,
)

# Middleware order: last added runs first (outermost). Request flow: CorrelationId -> ActorContext -> AuditTrail.
app.add_middleware(AuditTrailMiddleware)
app.add_middleware(ActorContextMiddleware)
app.add_middleware(CorrelationIdMiddleware)


@app.exception_handler(DomainValidationError)
async def domain_validation_error_handler(request, exc: DomainValidationError):
    return JSONResponse(status_code=422, content={"detail": exc.message})


@app.exception_handler(DomainError)
async def domain_error_handler(request, exc: DomainError):
    return JSONResponse(status_code=400, content={"detail": exc.message})


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request, exc: AuthenticationError):
    return JSONResponse(status_code=401, content={"detail": exc.message})


@app.exception_handler(AuthorizationError)
async def authorization_error_handler(request, exc: AuthorizationError):
    return JSONResponse(status_code=403, content={"detail": exc.message})


@app.exception_handler(SecurityError)
async def security_error_handler(request, exc: SecurityError):
    logger.error("security_error", extra={"error": exc.message})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": exc.message})


@app.exception_handler(EmptyPeriodError)
async def empty_period_error_handler(request, exc: EmptyPeriodError):
    return JSONResponse(status_code=404, content={"detail": exc.message})


@app.exception_handler(ConcurrencyConflictError)
async def concurrency_conflict_error_handler(request, exc: ConcurrencyConflictError):
    return JSONResponse(status_code=409, content={"detail": exc.message})


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request, exc: PersistenceError):
    return JSONResponse(status_code=503, content={"detail": exc.message})


@app.exception_handler(ApplicationError)
async def application_error_handler(request, exc: ApplicationError):
    return JSONResponse(status_code=500, content={"detail": exc.message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request, exc: Exception):
    logger.exception("unhandled_error")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# Routers: /health, /metrics, /audit
app.include_router(health.router)
app.include_router(audit.router, prefix="/audit")
