from __future__ import annotations

"""
Shared FastAPI dependencies for the workspace monitor status API.

Contents:
- get_settings(): the MonitorConfig bound to the running app.
- get_monitor(): the WorkspaceMonitor owned by the app lifespan.
- enforce_api_key(): API key authentication for mutating routes.

Project policy notes:
- No lazy imports.
- No try/except guards around imports; failures should be explicit.
"""

import hmac
import os
from typing import Optional

from fastapi import HTTPException, Request, Security, status
from fastapi.security.api_key import APIKeyHeader

from ws_monitor.app.config import MonitorConfig
from ws_monitor.app.workspaces.monitor import WorkspaceMonitor


# -------------
# App state accessors
# -------------

def get_settings(request: Request) -> MonitorConfig:
    """
    Settings the app was created with (see create_app).
    """
    return request.app.state.settings


def get_monitor(request: Request) -> WorkspaceMonitor:
    monitor: Optional[WorkspaceMonitor] = getattr(request.app.state, "monitor", None)
    if monitor is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Workspace monitor is not available.",
        )
    return monitor


# -------------------
# API Key Auth (FastAPI)
# -------------------

api_key_header = APIKeyHeader(name=os.getenv("MONITOR_API_KEY_HEADER", "X-API-Key"), auto_error=False)


async def enforce_api_key(
    request: Request,
    provided_key: Optional[str] = Security(api_key_header),
) -> None:
    """
    Enforce API key authentication using the configured header.

    Behavior:
    - If MONITOR_API_KEY is set, requests must provide an exact match.
    - If it is not set, authentication is disabled (accept all).
    """
    settings = get_settings(request)
    if not settings.api_key:
        return
    if not provided_key or not hmac.compare_digest(provided_key, settings.api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key.",
        )


__all__ = [
    "get_settings",
    "get_monitor",
    "enforce_api_key",
]
