"""
Logging for the workspace monitor (ws_monitor).

The monitor logs to one rotating file and, for interactive runs, to stderr.
The file always receives the monitor's DEBUG records so every reconcile
decision can be traced afterwards; LOG_LEVEL applies to the console and to
third-party libraries. stdout stays free for the JSON and YAML the CLI prints.

Where the file goes, in order:
- MonitorConfig.log_file (WORKSPACE_MONITOR_LOG_FILE)
- <workspace>/<monitor dir>/logs/ws-monitor.log; the monitor's own directory is
  never scanned or watched, so writing there cannot trigger a rescan
- <tmp>/ws-monitor/ws-monitor.log

Line format:

    2024-05-01 12:00:00 INFO monitor [MainThread] Container started: project=api

`monitor` is the component (the logger name below `workspace_monitor`) and the
bracketed thread tells the event loop apart from watcher and worker threads.
Messages carry their own `project=` and `error=` fields.

Usage (once, before starting the monitor or uvicorn):

    from ws_monitor.app.logging_setup import setup_logging

    log_path = setup_logging(settings)
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
import tempfile
from pathlib import Path
from typing import List

from ws_monitor.app.config import MonitorConfig
from ws_monitor.app.errors import ConfigurationError

__all__ = [
    "APP_LOGGER_NAME",
    "LOG_FILE_NAME",
    "resolve_level",
    "log_path_candidates",
    "configure_third_party_loggers",
    "setup_logging",
]

APP_LOGGER_NAME = "workspace_monitor"
LOG_FILE_NAME = "ws-monitor.log"

_MAX_BYTES = 5 * 1024 * 1024
_BACKUP_COUNT = 5
_FILE_FORMAT = "%(asctime)s %(levelname)s %(component)s [%(threadName)s] %(message)s"
_CONSOLE_FORMAT = "%(asctime)s %(levelname)s %(component)s %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Marks handlers installed here so a second setup replaces them
_HANDLER_TAG = "_ws_monitor_handler"


class _ComponentFilter(logging.Filter):
    """
    Adds `record.component`: the logger name relative to the app logger.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if name == APP_LOGGER_NAME:
            record.component = "app"
        elif name.startswith(APP_LOGGER_NAME + "."):
            record.component = name[len(APP_LOGGER_NAME) + 1:]
        else:
            record.component = name
        return True


def resolve_level(name: str) -> int:
    """
    Raises:
        ConfigurationError for anything that is not a standard level name.
    """
    level = logging.getLevelName((name or "").strip().upper())
    if not isinstance(level, int):
        raise ConfigurationError(f"Unknown LOG_LEVEL: {name!r}")
    return level


def log_path_candidates(settings: MonitorConfig) -> List[Path]:
    candidates: List[Path] = []
    if settings.log_file is not None:
        candidates.append(Path(settings.log_file).expanduser())
    if settings.monitor_dir_name:
        candidates.append(settings.workspace_path / settings.monitor_dir_name / "logs" / LOG_FILE_NAME)
    candidates.append(Path(tempfile.gettempdir()) / "ws-monitor" / LOG_FILE_NAME)
    return candidates


def _open_log_path(candidates: List[Path]) -> Path:
    failures: List[str] = []
    for path in candidates:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, mode="a", encoding="utf-8"):
                pass
        except OSError as e:
            failures.append(f"{path} -> {e.__class__.__name__}: {e}")
            continue
        return path
    raise RuntimeError(f"No writable log file location. Attempts: {'; '.join(failures)}")


def configure_third_party_loggers(base_level: int) -> None:
    """
    Library chatter stays at WARNING unless the monitor itself runs at DEBUG.
    """
    lib_level = logging.INFO if base_level <= logging.DEBUG else logging.WARNING
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi", "docker", "urllib3", "watchdog"):
        logging.getLogger(name).setLevel(lib_level)

    # Per-request and per-inotify-event noise even when debugging
    for name in ("urllib3.connectionpool", "watchdog.observers.inotify_buffer", "asyncio"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _handler(handler: logging.Handler, level: int, fmt: str) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=_DATEFMT))
    handler.addFilter(_ComponentFilter())
    setattr(handler, _HANDLER_TAG, True)
    return handler


def setup_logging(settings: MonitorConfig, *, console: bool = True) -> Path:
    """
    Install the file handler (and the stderr console handler unless
    `console=False`) on the root logger. Calling it again replaces the
    handlers installed by an earlier call.

    Returns:
        Path to the active log file.

    Raises:
        ConfigurationError for an unknown log level.
        RuntimeError when no candidate location is writable.
    """
    level = resolve_level(settings.log_level)
    log_path = _open_log_path(log_path_candidates(settings))

    root = logging.getLogger()
    for existing in [h for h in root.handlers if getattr(h, _HANDLER_TAG, False)]:
        root.removeHandler(existing)
        existing.close()

    root.setLevel(logging.DEBUG)
    root.addHandler(
        _handler(
            logging.handlers.RotatingFileHandler(
                filename=log_path,
                maxBytes=_MAX_BYTES,
                backupCount=_BACKUP_COUNT,
                encoding="utf-8",
            ),
            logging.DEBUG,
            _FILE_FORMAT,
        )
    )
    if console:
        root.addHandler(_handler(logging.StreamHandler(stream=sys.stderr), level, _CONSOLE_FORMAT))

    logging.getLogger(APP_LOGGER_NAME).setLevel(logging.DEBUG)
    configure_third_party_loggers(level)

    logging.getLogger(APP_LOGGER_NAME).info(
        "Logging initialized: file=%s level=%s workspace=%s",
        log_path,
        logging.getLevelName(level),
        settings.workspace_path,
    )
    return log_path
