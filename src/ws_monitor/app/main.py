from __future__ import annotations

"""
FastAPI application for the workspace monitor.

create_app() binds a MonitorConfig and a WorkspaceMonitor to the app; the
lifespan starts the monitor (initial full scan, watcher, periodic rescans)
and stops it on shutdown.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI

from ws_monitor.app.config import MonitorConfig, get_settings
from ws_monitor.app.deps import get_monitor
from ws_monitor.app.models import MonitorStatusResponse
from ws_monitor.app.routers import projects
from ws_monitor.app.workspaces.monitor import WorkspaceMonitor

logger = logging.getLogger("workspace_monitor")


def create_app(settings: Optional[MonitorConfig] = None, monitor: Optional[WorkspaceMonitor] = None) -> FastAPI:
    settings = settings or get_settings()
    monitor = monitor or WorkspaceMonitor(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await monitor.start()
        logger.info("Workspace monitor API startup complete.")
        try:
            yield
        finally:
            await monitor.stop()
            logger.info("Workspace monitor API shutdown complete.")

    app = FastAPI(
        title="WorkspaceMonitor",
        version=settings.service_version,
        description="Detects workspace projects and keeps their containers running behind Traefik.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.monitor = monitor
    app.state.started_at = time.time()

    app.include_router(projects.router, prefix="/api/projects", tags=["projects"])

    @app.get("/health")
    async def health() -> dict:
        """
        Basic health probe; unauthenticated.
        """
        return {
            "status": "ok",
            "service": "WorkspaceMonitor",
            "version": app.version,
        }

    @app.get("/api/status", response_model=MonitorStatusResponse)
    async def monitor_status(mon: WorkspaceMonitor = Depends(get_monitor)) -> MonitorStatusResponse:
        return MonitorStatusResponse(
            status="running" if mon.running else "stopped",
            running=mon.running,
            uptime_seconds=round(mon.uptime_seconds, 3),
            project_count=len(mon.projects()),
            config=mon.summary(),
        )

    return app


__all__ = ["create_app"]
