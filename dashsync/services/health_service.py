"""Aggregate health state shared between the sync loop and the health endpoint."""

from __future__ import annotations

import threading
from datetime import UTC, datetime

from dashsync.schemas.health import HealthState, HealthStatus


class HealthChecker:
    """Thread-safe holder of the sidecar's health flags.

    The sync pass writes from a worker thread while the health endpoint reads
    from the event loop, so every access goes through ``_lock``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._grafana_healthy = False
        self._git_sync_healthy = False
        self._last_sync_time: datetime | None = None
        self._last_error = ""

    def set_grafana_health(self, healthy: bool) -> None:
        with self._lock:
            self._grafana_healthy = healthy

    def set_git_sync_health(self, healthy: bool) -> None:
        with self._lock:
            self._git_sync_healthy = healthy

    def set_last_sync(self, when: datetime | None = None) -> None:
        with self._lock:
            self._last_sync_time = when or datetime.now(UTC)

    def set_last_error(self, error: str) -> None:
        with self._lock:
            self._last_error = error

    def get_status(self) -> HealthStatus:
        """Return a snapshot: healthy when both checks pass, unhealthy when neither does."""
        with self._lock:
            grafana = self._grafana_healthy
            git_sync = self._git_sync_healthy
            last_sync = self._last_sync_time
            last_error = self._last_error

        if grafana and git_sync:
            state = HealthState.HEALTHY
        elif grafana or git_sync:
            state = HealthState.DEGRADED
        else:
            state = HealthState.UNHEALTHY

        return HealthStatus(
            status=state,
            timestamp=datetime.now(UTC),
            grafana_healthy=grafana,
            git_sync_healthy=git_sync,
            last_sync_time=last_sync,
            last_error=last_error or None,
        )
