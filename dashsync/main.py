"""FastAPI application entry point: health endpoint plus the background sync loop."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from dashsync.api.health import router as health_router
from dashsync.config import Settings
from dashsync.grafana.client import GrafanaClient
from dashsync.services.git_service import GitService
from dashsync.services.health_service import HealthChecker
from dashsync.services.source_service import DashboardSource
from dashsync.services.sync_service import Poller, SyncService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.INFO if debug else logging.WARNING)


def build_grafana_client(settings: Settings) -> GrafanaClient:
    return GrafanaClient(
        settings.grafana_url,
        token=settings.grafana_token,
        user=settings.grafana_user,
        password=settings.grafana_password,
        timeout=settings.grafana_timeout_sec,
    )


def build_git_service(settings: Settings) -> GitService:
    return GitService(
        repo_url=settings.repo_url,
        branch=settings.branch,
        repo_dir=settings.repo_dir,
        ssh_key=settings.ssh_key,
        https_user=settings.https_user,
        https_password=settings.https_password,
    )


def prepare_grafana(settings: Settings, client: GrafanaClient) -> GrafanaClient:
    """Wait for Grafana and make sure the client holds a usable token.

    When no token is configured a service-account token is provisioned with
    the admin credentials and a new client using it is returned.
    """
    client.wait_for_ready(settings.grafana_ready_timeout_sec)
    if settings.grafana_token:
        logger.info("Using provided Grafana service account token")
        return client

    logger.info("No Grafana token provided, creating a service account token")
    client.validate_auth()
    token = client.create_service_account_token(
        settings.service_account_name,
        settings.service_account_token_name,
        ready_timeout=settings.grafana_ready_timeout_sec,
    )
    authenticated = client.with_token(token)
    client.close()
    logger.info("Created Grafana service account token")
    return authenticated


async def _poll_loop(poller: Poller, interval: float, stop: asyncio.Event) -> None:
    """Run ``poller.poll_once`` every ``interval`` seconds until ``stop`` is set."""
    while not stop.is_set():
        try:
            await asyncio.to_thread(poller.poll_once)
        except Exception:
            logger.exception("Unexpected error during sync cycle")
            poller.health.set_last_error("unexpected error during sync cycle")
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=interval)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    health: HealthChecker = app.state.health_checker
    _configure_logging(settings.debug)
    settings.validate_runtime()
    logger.info("Starting dashsync with configuration: %s", settings.safe_for_log())

    client = build_grafana_client(settings)
    try:
        client = await asyncio.to_thread(prepare_grafana, settings, client)
    except Exception as exc:
        logger.critical("Grafana is not usable: %s", exc)
        client.close()
        raise
    health.set_grafana_health(True)

    git_service = build_git_service(settings)
    try:
        await asyncio.to_thread(git_service.clone)
    except Exception as exc:
        logger.critical("Failed to clone repository %s: %s", settings.repo_url, exc)
        git_service.close()
        client.close()
        raise
    health.set_git_sync_health(True)

    source = DashboardSource(settings.source_dir, settings.dashboards_dir)
    poller = Poller(git_service, SyncService(source, client), health)
    app.state.poller = poller

    stop = asyncio.Event()
    task = asyncio.create_task(_poll_loop(poller, settings.poll_interval_sec, stop))

    yield

    stop.set()
    try:
        await task
    except Exception as exc:
        logger.error("Error during sync loop shutdown: %s", exc, exc_info=True)

    git_service.close()
    client.close()
    logger.info("dashsync stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="dashsync",
        description="Git to Grafana dashboard sync sidecar",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.health_checker = HealthChecker()
    app.include_router(health_router)
    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the sidecar."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "dashsync.main:app",
        host=settings.host,
        port=settings.port,
        log_config=None,
    )
