"""
Unified configuration for the workspace monitor (ws_monitor).

This module centralizes:
- Defaults for all monitor settings
- Loading from environment variables
- Optional .env file hydration via python-dotenv (never overrides the process env)
- Startup validation (ConfigurationError is fatal at startup only)

Usage:
    from ws_monitor.app.config import get_settings

    settings = get_settings()
    settings.validate()
    print(settings.workspace_path)

Notes:
- Environment variables always take precedence over .env values.
- SCAN_INTERVAL is read in seconds; values above 1000 are treated as
  milliseconds for compatibility with older deployments.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from ws_monitor.app.errors import ConfigurationError


# ----------------------------
# Helpers: env, parsing, types
# ----------------------------

_DOMAIN_RE = re.compile(
    r"^(?=.{1,253}$)(?!-)[A-Za-z0-9-]{1,63}(?<!-)(\.(?!-)[A-Za-z0-9-]{1,63}(?<!-))*$"
)

_DEFAULT_IGNORE = ["node_modules", ".git", "dist", "build", "*.log"]


def _split_csv(s: str | None) -> List[str]:
    if not s:
        return []
    return [part.strip() for part in s.split(",") if part.strip()]


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _scan_interval_seconds(raw: Optional[str]) -> float:
    if raw is None or not raw.strip():
        return 30.0
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"SCAN_INTERVAL must be a number, got {raw!r}")
    if value > 1000:
        value = value / 1000.0
    return value


# ----------------------------
# Unified configuration object
# ----------------------------

@dataclass(frozen=True)
class MonitorConfig:
    """
    Unified configuration for the workspace monitor.

    All fields are immutable once created. Use from_env() to construct an instance.
    """

    # Workspace layout
    workspace_path: Path
    monitor_dir_name: str
    default_project: str

    # Routing
    domain: str
    network: str
    cert_resolver: str

    # Reconciliation timing
    scan_interval_seconds: float
    event_debounce_seconds: float
    write_stability_seconds: float
    watch_depth: int
    event_queue_size: int
    extra_ignore_patterns: List[str]

    # Container runtime
    container_name_prefix: str
    compose_command: List[str]
    docker_client_timeout: int
    compose_timeout_seconds: int

    # Status API
    api_key: Optional[str]
    api_key_header_name: str
    web_host: str
    web_port: int

    # Service metadata
    service_version: str
    log_level: str
    log_file: Optional[Path]

    @staticmethod
    def from_env(dotenv: bool = True, dotenv_path: Optional[str | Path] = None) -> "MonitorConfig":
        """
        Construct MonitorConfig with values pulled from the current environment,
        optionally hydrated by a .env file if dotenv=True.
        """
        if dotenv:
            if dotenv_path:
                load_dotenv(Path(dotenv_path), override=False)
            else:
                load_dotenv(override=False)

        compose_cmd = (os.getenv("WORKSPACE_COMPOSE_COMMAND") or "docker compose").split()
        log_file = (os.getenv("WORKSPACE_MONITOR_LOG_FILE") or "").strip()

        return MonitorConfig(
            workspace_path=Path(os.getenv("WORKSPACE_PATH", "/workspaces")).expanduser(),
            monitor_dir_name=os.getenv("WORKSPACE_MONITOR_DIR", "monitor"),
            default_project=os.getenv("WORKSPACE_DEFAULT_PROJECT", "www"),
            domain=os.getenv("DOMAIN", "localhost").strip(),
            network=os.getenv("NETWORK", "traefik-network").strip(),
            cert_resolver=os.getenv("WORKSPACE_CERT_RESOLVER", "letsencrypt"),
            scan_interval_seconds=_scan_interval_seconds(os.getenv("SCAN_INTERVAL")),
            event_debounce_seconds=_env_float("WORKSPACE_EVENT_DEBOUNCE_SECONDS", 1.0),
            write_stability_seconds=_env_float("WORKSPACE_WRITE_STABILITY_SECONDS", 2.0),
            watch_depth=_env_int("WORKSPACE_WATCH_DEPTH", 2),
            event_queue_size=_env_int("WORKSPACE_EVENT_QUEUE_SIZE", 1024),
            extra_ignore_patterns=_split_csv(os.getenv("WORKSPACE_WATCH_IGNORE")),
            container_name_prefix=os.getenv("WORKSPACE_CONTAINER_PREFIX", "workspace-"),
            compose_command=compose_cmd,
            docker_client_timeout=_env_int("DOCKER_CLIENT_TIMEOUT", 60),
            compose_timeout_seconds=_env_int("WORKSPACE_COMPOSE_TIMEOUT_SECONDS", 600),
            api_key=os.getenv("MONITOR_API_KEY") or None,
            api_key_header_name=os.getenv("MONITOR_API_KEY_HEADER", "X-API-Key"),
            web_host=os.getenv("WEB_HOST", "0.0.0.0"),
            web_port=_env_int("WEB_PORT", 4000),
            service_version=os.getenv("WORKSPACE_MONITOR_VERSION", "0.1.0"),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip(),
            log_file=Path(log_file).expanduser() if log_file else None,
        )

    # ----------------------------
    # Validation
    # ----------------------------

    def validate(self) -> "MonitorConfig":
        """
        Raise ConfigurationError when the configuration cannot be used to start the monitor.
        Returns self so callers can chain `MonitorConfig.from_env().validate()`.
        """
        if not self.workspace_path.exists():
            raise ConfigurationError(f"Workspace root does not exist: {self.workspace_path}")
        if not self.workspace_path.is_dir():
            raise ConfigurationError(f"Workspace root is not a directory: {self.workspace_path}")
        if not _DOMAIN_RE.match(self.domain):
            raise ConfigurationError(f"Invalid domain: {self.domain!r}")
        if not self.network:
            raise ConfigurationError("NETWORK must not be empty")
        if self.scan_interval_seconds <= 0:
            raise ConfigurationError("SCAN_INTERVAL must be positive")
        if self.event_debounce_seconds < 0 or self.write_stability_seconds < 0:
            raise ConfigurationError("Debounce and stability periods must not be negative")
        if self.watch_depth < 0:
            raise ConfigurationError("WORKSPACE_WATCH_DEPTH must not be negative")
        if self.event_queue_size <= 0:
            raise ConfigurationError("WORKSPACE_EVENT_QUEUE_SIZE must be positive")
        if not self.compose_command:
            raise ConfigurationError("WORKSPACE_COMPOSE_COMMAND must not be empty")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ConfigurationError(f"Unknown LOG_LEVEL: {self.log_level!r}")
        return self

    # ----------------------------
    # Derived helpers / utilities
    # ----------------------------

    def container_name(self, project_name: str) -> str:
        """
        Produce the deterministic container name for a project.
        """
        return f"{self.container_name_prefix}{project_name}"

    def ignore_patterns(self) -> List[str]:
        """
        Glob patterns matched against every path component below the root:
        dependency and build output, version control, and logs. The monitor's
        own subtree is excluded separately (top level only).
        """
        return list(_DEFAULT_IGNORE) + list(self.extra_ignore_patterns)

    def project_url(self, project_name: str) -> str:
        if project_name == self.default_project:
            return f"https://{self.domain}/"
        return f"https://{self.domain}/{project_name}"


# ----------------------------
# Cached accessor
# ----------------------------

@lru_cache(maxsize=1)
def get_settings() -> MonitorConfig:
    """
    Cached settings accessor. Safe to import and call across the app.
    """
    return MonitorConfig.from_env(dotenv=True)


__all__ = [
    "MonitorConfig",
    "get_settings",
]
