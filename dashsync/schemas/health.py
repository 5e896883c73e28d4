"""Health check response schema."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel


class HealthState(StrEnum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class HealthStatus(BaseModel):
    status: HealthState
    timestamp: datetime
    grafana_healthy: bool
    git_sync_healthy: bool
    last_sync_time: datetime | None = None
    last_error: str | None = None
