"""
ws_monitor package

This package contains the workspace monitor: project detection, compose
generation, the filesystem watcher, the container reconciler, and a small
FastAPI status API. It is lightweight at import time and does not import the
FastAPI app by default.

Public surface:
- __version__: string version of the package

To run the monitor (example):
    ws-monitor serve --host 127.0.0.1 --port 4000
"""

from ws_monitor.app import __version__

__all__ = ["__version__"]
