# ehr_audit/api/routers/health.py

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ehr_audit.api.dependencies import get_metrics
from ehr_audit.config.settings import get_settings
from ehr_audit.observability.metrics import MetricsCollector

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    """Liveness with correlation ID from request state."""
    settings = get_settings()
    return {
        "status": "ok",
        "correlation_id": request.state.correlation_id,
        "environment": settings.environment,
        "version": settings.version,
    }


@router.get("/metrics")
async def metrics(collector: Annotated[MetricsCollector, Depends(get_metrics)]):
    """In-memory counters and latency histograms."""
    if not get_settings().enable_metrics:
        return JSONResponse(status_code=404, content={"detail": "Metrics disabled"})
    return collector.export_metrics()
