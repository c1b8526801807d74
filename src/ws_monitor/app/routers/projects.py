from __future__ import annotations

"""
Projects router: registry snapshots, generated compose documents, container logs,
and on-demand reconciliation.

Notes:
- Read-only routes are unauthenticated; reconcile requires the API key when configured.
- Every route reads through the WorkspaceMonitor; nothing here touches Docker directly
  except log retrieval, which the monitor delegates to its runtime client.
"""

import logging
from typing import Annotated, Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from ws_monitor.app.deps import enforce_api_key, get_monitor
from ws_monitor.app.errors import ContainerRuntimeError
from ws_monitor.app.models import (
    LogsResponse,
    ProjectListResponse,
    ProjectStatus,
    ReconcileResponse,
)
from ws_monitor.app.workspaces.monitor import WorkspaceMonitor

logger = logging.getLogger("workspace_monitor.api")

router = APIRouter()

ProjectName = Annotated[str, Path(min_length=1, max_length=255, pattern=r"^[^/\\]+$")]


def _not_found(name: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Project not found: {name}")


@router.get("", response_model=ProjectListResponse)
async def list_projects(monitor: WorkspaceMonitor = Depends(get_monitor)) -> ProjectListResponse:
    return ProjectListResponse(projects=monitor.snapshot())


@router.get("/{name}", response_model=ProjectStatus)
async def get_project(name: ProjectName, monitor: WorkspaceMonitor = Depends(get_monitor)) -> ProjectStatus:
    project = monitor.status(name)
    if project is None:
        raise _not_found(name)
    return project


@router.get("/{name}/service")
async def get_project_service(name: ProjectName, monitor: WorkspaceMonitor = Depends(get_monitor)) -> Dict[str, Any]:
    """
    The compose document the monitor would generate for this project.
    """
    try:
        spec = monitor.expected_service(name)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    if spec is None:
        raise _not_found(name)
    return spec


@router.get("/{name}/logs", response_model=LogsResponse)
async def get_project_logs(
    name: ProjectName,
    tail: int = Query(100, ge=1, le=10_000),
    monitor: WorkspaceMonitor = Depends(get_monitor),
) -> LogsResponse:
    try:
        lines = await monitor.logs(name, tail=tail)
    except KeyError:
        raise _not_found(name)
    except ContainerRuntimeError as e:
        logger.warning("Log retrieval failed: project=%s error=%s", name, e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return LogsResponse(project=name, logs=lines)


@router.post(
    "/{name}/reconcile",
    response_model=ReconcileResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(enforce_api_key)],
)
async def reconcile_project(name: ProjectName, monitor: WorkspaceMonitor = Depends(get_monitor)) -> ReconcileResponse:
    """
    Queue an immediate rescan; the project directory need not be registered yet.
    """
    if not monitor.running:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Workspace monitor is not running.")
    queued = monitor.request_scan(name)
    if not queued:
        logger.warning("Reconcile request not queued: project=%s", name)
    return ReconcileResponse(project=name, queued=queued)


__all__ = ["router"]
