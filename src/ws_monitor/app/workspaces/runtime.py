from __future__ import annotations

"""
Container runtime client for the workspace monitor.

This module provides:
- ContainerRuntimeClient: the narrow protocol the reconciler depends on
- DockerRuntimeClient: implementation using the Docker SDK for inspection and
  logs, and the compose CLI (run in the project directory) for start/stop
- Docker timestamp parsing

Container state is never cached as truth: every query goes to the daemon.
The only local memory is the configuration fingerprint used at each start,
which is what restart decisions compare against.
"""

import logging
import re
import subprocess
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Sequence

import docker
import requests
from docker import DockerClient
from docker.errors import DockerException, NotFound
from docker.models.containers import Container

from ws_monitor.app.errors import ContainerRuntimeError
from ws_monitor.app.models import ProjectRecord

logger = logging.getLogger("workspace_monitor.runtime")

_DOCKER_TIME_RE = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})?$")


class ContainerRuntimeClient(Protocol):
    def is_running(self, container_name: str) -> bool: ...

    def start(self, path: str, name: str, *, fingerprint: Optional[str] = None) -> None: ...

    def restart(self, path: str, name: str, *, fingerprint: Optional[str] = None) -> None: ...

    def stop(self, path: str, name: str) -> None: ...

    def needs_restart(self, container_name: str, record: ProjectRecord) -> bool: ...

    def logs(self, container_name: str, tail: int = 100) -> str: ...


def parse_docker_time(value: Optional[str]) -> Optional[datetime]:
    """
    Parse Docker's RFC3339 timestamps (nanosecond precision) into aware datetimes.
    Docker reports "0001-01-01T00:00:00Z" for containers that never started.
    """
    if not value:
        return None
    m = _DOCKER_TIME_RE.match(value.strip())
    if not m:
        return None
    base, frac, tz = m.groups()
    micro = (frac or "0")[:6].ljust(6, "0")
    offset = "+00:00" if tz in (None, "Z") else tz
    try:
        parsed = datetime.fromisoformat(f"{base}.{micro}{offset}")
    except ValueError:
        return None
    if parsed.year <= 1:
        return None
    return parsed


class DockerRuntimeClient:
    """
    ContainerRuntimeClient backed by the Docker daemon and the compose CLI.
    """

    def __init__(
        self,
        *,
        client_factory: Optional[Callable[[], DockerClient]] = None,
        compose_command: Sequence[str] = ("docker", "compose"),
        container_prefix: str = "workspace-",
        compose_timeout_seconds: int = 600,
        docker_timeout_seconds: int = 60,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self._client_factory = client_factory or (lambda: docker.from_env(timeout=docker_timeout_seconds))
        self._client: Optional[DockerClient] = None
        self.compose_command: List[str] = list(compose_command)
        self.container_prefix = container_prefix
        self.compose_timeout_seconds = compose_timeout_seconds
        self._run = runner
        self._lock = threading.Lock()
        self._fingerprints: Dict[str, str] = {}

    # --------------------------
    # Docker SDK access
    # --------------------------

    def container_name(self, name: str) -> str:
        return f"{self.container_prefix}{name}"

    def _docker(self) -> DockerClient:
        with self._lock:
            if self._client is None:
                try:
                    self._client = self._client_factory()
                except DockerException as e:
                    raise ContainerRuntimeError("<daemon>", f"Docker is not reachable: {e}") from e
            return self._client

    def _get(self, container_name: str) -> Optional[Container]:
        client = self._docker()
        try:
            return client.containers.get(container_name)
        except NotFound:
            return None
        except (DockerException, requests.exceptions.RequestException) as e:
            raise ContainerRuntimeError(container_name, f"Failed to inspect container: {e}") from e

    def close(self) -> None:
        with self._lock:
            client = self._client
            self._client = None
        if client is not None:
            client.close()

    # --------------------------
    # Queries
    # --------------------------

    def is_running(self, container_name: str) -> bool:
        c = self._get(container_name)
        return c is not None and getattr(c, "status", "") == "running"

    def started_at(self, container_name: str) -> Optional[datetime]:
        c = self._get(container_name)
        if c is None:
            return None
        state = (getattr(c, "attrs", {}) or {}).get("State") or {}
        return parse_docker_time(state.get("StartedAt"))

    def logs(self, container_name: str, tail: int = 100) -> str:
        c = self._get(container_name)
        if c is None:
            raise ContainerRuntimeError(container_name, "Container not found")
        try:
            raw = c.logs(tail=max(1, int(tail)))
        except (DockerException, requests.exceptions.RequestException) as e:
            raise ContainerRuntimeError(container_name, f"Failed to read logs: {e}") from e
        return raw.decode("utf-8", errors="replace") if isinstance(raw, (bytes, bytearray)) else str(raw)

    def needs_restart(self, container_name: str, record: ProjectRecord) -> bool:
        """
        Compare the record's fingerprint with the one used at the last start.

        When no fingerprint is known (the monitor restarted while the container
        kept running), a container spec modified after the container started
        means a restart; otherwise the current fingerprint is adopted.
        """
        current = record.fingerprint()
        with self._lock:
            known = self._fingerprints.get(container_name)
        if known is not None:
            return known != current

        started = self.started_at(container_name)
        spec_mtime: Optional[datetime] = None
        if record.container_spec:
            try:
                ts = (Path(record.path) / record.container_spec).stat().st_mtime
                spec_mtime = datetime.fromtimestamp(ts, tz=timezone.utc)
            except OSError:
                spec_mtime = None
        if started is not None and spec_mtime is not None and spec_mtime > started:
            logger.info("Container spec modified after container start: container=%s", container_name)
            return True

        with self._lock:
            self._fingerprints[container_name] = current
        return False

    # --------------------------
    # Compose commands
    # --------------------------

    def _compose(self, path: str, name: str, args: Sequence[str]) -> str:
        container_name = self.container_name(name)
        argv = [*self.compose_command, *args]
        logger.debug("Running compose: project=%s cwd=%s argv=%s", name, path, argv)
        try:
            result = self._run(
                argv,
                cwd=path,
                capture_output=True,
                text=True,
                timeout=self.compose_timeout_seconds,
            )
        except FileNotFoundError as e:
            raise ContainerRuntimeError(container_name, f"Compose command not found: {argv[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise ContainerRuntimeError(
                container_name, f"Compose command timed out after {self.compose_timeout_seconds}s"
            ) from e
        output = (result.stdout or "") + (result.stderr or "")
        if result.returncode != 0:
            raise ContainerRuntimeError(
                container_name,
                f"Compose {' '.join(args)} exited with {result.returncode}: {output.strip()[-500:]}",
                output=output,
            )
        return output

    def start(self, path: str, name: str, *, fingerprint: Optional[str] = None) -> None:
        container_name = self.container_name(name)
        logger.info("Starting project: project=%s path=%s", name, path)
        self._compose(path, name, ["up", "-d", "--build"])
        with self._lock:
            if fingerprint is not None:
                self._fingerprints[container_name] = fingerprint
            else:
                self._fingerprints.pop(container_name, None)
        logger.info("Started project: project=%s container=%s", name, container_name)

    def stop(self, path: str, name: str) -> None:
        container_name = self.container_name(name)
        logger.info("Stopping project: project=%s", name)
        self._compose(path, name, ["down"])
        with self._lock:
            self._fingerprints.pop(container_name, None)

    def restart(self, path: str, name: str, *, fingerprint: Optional[str] = None) -> None:
        logger.info("Restarting project: project=%s", name)
        self.stop(path, name)
        self.start(path, name, fingerprint=fingerprint)


__all__ = [
    "ContainerRuntimeClient",
    "DockerRuntimeClient",
    "parse_docker_time",
]
