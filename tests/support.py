"""
In-memory collaborators shared by the unit and integration tests.
"""

from __future__ import annotations

import dataclasses
import json
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ws_monitor.app.config import MonitorConfig
from ws_monitor.app.errors import ContainerRuntimeError, DetectionError, WatcherError
from ws_monitor.app.models import ProjectRecord
from ws_monitor.app.workspaces.detector import ProjectDetector


def make_settings(root: Path, **overrides: Any) -> MonitorConfig:
    base = MonitorConfig(
        workspace_path=Path(root),
        monitor_dir_name="monitor",
        default_project="www",
        domain="example.com",
        network="traefik-network",
        cert_resolver="letsencrypt",
        scan_interval_seconds=3600.0,
        event_debounce_seconds=0.05,
        write_stability_seconds=0.0,
        watch_depth=2,
        event_queue_size=64,
        extra_ignore_patterns=[],
        container_name_prefix="workspace-",
        compose_command=["docker", "compose"],
        docker_client_timeout=5,
        compose_timeout_seconds=30,
        api_key=None,
        api_key_header_name="X-API-Key",
        web_host="127.0.0.1",
        web_port=4000,
        service_version="0.1.0-test",
        log_level="DEBUG",
        log_file=None,
    )
    return dataclasses.replace(base, **overrides)


def write_project(root: Path, name: str, files: Dict[str, Any]) -> Path:
    """
    Create root/name with the given files; dict values are written as JSON.
    """
    project = root / name
    project.mkdir(parents=True, exist_ok=True)
    for filename, content in files.items():
        text = json.dumps(content) if isinstance(content, (dict, list)) else str(content)
        (project / filename).write_text(text, encoding="utf-8")
    return project


COMPOSE_STUB = "services:\n  app:\n    image: nginx:alpine\n"


class FakeRuntime:
    """
    ContainerRuntimeClient double that remembers start fingerprints like the Docker client does.
    """

    def __init__(self, prefix: str = "workspace-") -> None:
        self.prefix = prefix
        self.running: Set[str] = set()
        self.fingerprints: Dict[str, Optional[str]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.fail_start: Set[str] = set()
        self.log_text = ""
        self.log_error: Optional[ContainerRuntimeError] = None
        self.closed = 0
        self._lock = threading.Lock()

    def _record(self, op: str, target: str) -> None:
        with self._lock:
            self.calls.append((op, target))

    def count(self, op: str, target: Optional[str] = None) -> int:
        with self._lock:
            return sum(1 for o, t in self.calls if o == op and (target is None or t == target))

    def is_running(self, container_name: str) -> bool:
        self._record("is_running", container_name)
        return container_name in self.running

    def start(self, path: str, name: str, *, fingerprint: Optional[str] = None) -> None:
        self._record("start", name)
        if name in self.fail_start:
            raise ContainerRuntimeError(self.prefix + name, "compose up failed")
        self.running.add(self.prefix + name)
        self.fingerprints[self.prefix + name] = fingerprint

    def restart(self, path: str, name: str, *, fingerprint: Optional[str] = None) -> None:
        self._record("restart", name)
        self.running.add(self.prefix + name)
        self.fingerprints[self.prefix + name] = fingerprint

    def stop(self, path: str, name: str) -> None:
        self._record("stop", name)
        self.running.discard(self.prefix + name)

    def needs_restart(self, container_name: str, record: ProjectRecord) -> bool:
        self._record("needs_restart", container_name)
        return self.fingerprints.get(container_name) != record.fingerprint()

    def logs(self, container_name: str, tail: int = 100) -> str:
        self._record("logs", container_name)
        if self.log_error is not None:
            raise self.log_error
        return self.log_text

    def close(self) -> None:
        self.closed += 1


class FakeWatcher:
    """
    Stands in for ChangeWatcher; tests push events through `on_event` themselves.
    """

    instances: List["FakeWatcher"] = []

    def __init__(self, root: Path, on_event: Callable, *, fail: bool = False) -> None:
        self.root = root
        self.on_event = on_event
        self.fail = fail
        self.started = False
        self.stopped = False
        FakeWatcher.instances.append(self)

    @classmethod
    def factory(cls, root: Path, on_event: Callable) -> "FakeWatcher":
        return cls(root, on_event)

    @classmethod
    def failing(cls, root: Path, on_event: Callable) -> "FakeWatcher":
        return cls(root, on_event, fail=True)

    def start(self) -> None:
        if self.fail:
            raise WatcherError("inotify watch limit reached")
        self.started = True

    def stop(self, timeout: float = 5.0) -> None:
        self.stopped = True


class CountingDetector(ProjectDetector):
    """
    Real detection, with per-project call counts and injectable failures.
    """

    def __init__(self, fail: Optional[Dict[str, BaseException]] = None) -> None:
        super().__init__()
        self.fail = dict(fail or {})
        self.counts: Dict[str, int] = {}
        self._lock = threading.Lock()

    def detect(self, path):
        name = Path(path).name
        with self._lock:
            self.counts[name] = self.counts.get(name, 0) + 1
        if name in self.fail:
            raise self.fail[name]
        return super().detect(path)


class GatedDetector(ProjectDetector):
    """
    The first detect() call reads the directory, then blocks until `gate` is set.
    """

    def __init__(self) -> None:
        super().__init__()
        self.gate = threading.Event()
        self.entered = threading.Event()
        self._first = True
        self._lock = threading.Lock()

    def detect(self, path):
        with self._lock:
            first = self._first
            self._first = False
        record = super().detect(path)
        if first:
            self.entered.set()
            self.gate.wait(5)
        return record


def detection_error(name: str) -> DetectionError:
    return DetectionError(f"/workspaces/{name}", "Unreadable directory: permission denied")
