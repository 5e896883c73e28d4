"""Health check endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response

from dashsync.schemas.health import HealthState, HealthStatus
from dashsync.services.health_service import HealthChecker

router = APIRouter(tags=["health"])


def get_health_checker(request: Request) -> HealthChecker:
    checker: HealthChecker = request.app.state.health_checker
    return checker


@router.get("/healthz", response_model=HealthStatus)
@router.get("/health", response_model=HealthStatus)
@router.get("/", response_model=HealthStatus)
async def health_check(
    checker: Annotated[HealthChecker, Depends(get_health_checker)],
    response: Response,
) -> HealthStatus:
    """Health check endpoint for liveness/readiness probes.

    Degraded still answers 200; only an unhealthy sidecar answers 503.
    """
    status = checker.get_status()
    if status.status == HealthState.UNHEALTHY:
        response.status_code = 503
    return status
