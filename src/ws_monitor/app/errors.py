from __future__ import annotations

"""
Exception hierarchy for the workspace monitor.

- DetectionError: a project directory could not be read or classified.
- ContainerRuntimeError: the container runtime was unreachable or a compose command failed.
- WatcherError: the OS file watch could not be established.
- ConfigurationError: invalid startup configuration (fatal at startup only).
"""

from typing import Optional


class WorkspaceMonitorError(Exception):
    """
    Base class for all monitor errors.
    """


class DetectionError(WorkspaceMonitorError):
    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{message} (path={path})")
        self.path = path


class ContainerRuntimeError(WorkspaceMonitorError):
    def __init__(self, container_name: str, message: str, *, output: Optional[str] = None) -> None:
        super().__init__(f"{message} (container={container_name})")
        self.container_name = container_name
        self.output = output


class WatcherError(WorkspaceMonitorError):
    pass


class ConfigurationError(WorkspaceMonitorError):
    pass


__all__ = [
    "WorkspaceMonitorError",
    "DetectionError",
    "ContainerRuntimeError",
    "WatcherError",
    "ConfigurationError",
]
