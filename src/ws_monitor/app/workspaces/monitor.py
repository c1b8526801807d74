from __future__ import annotations

"""
WorkspaceMonitor: the project registry and container reconciler.

One asyncio event loop owns all state below; nothing here is touched from
another thread except through `loop.call_soon_threadsafe`.

Producers:
- ChangeWatcher (observer + stability threads) -> `_on_watch_event`
- the periodic timer task
- `request_scan` (status API)

All of them feed one bounded queue drained by a single consumer task, which
debounces watcher events per project and spawns scan tasks. Blocking work
(detection, Docker calls, compose CLI) runs in worker threads.

Ordering:
- Each scan of a project takes a sequence number. A result older than the
  last applied one is discarded; a scan superseded while it ran skips
  container management.
- Container management for one project is serialized by a per-project lock.
- Periodic full scans never overlap; a tick during a running full scan is dropped.
- After stop() begins, results of in-flight scans are discarded.
"""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import yaml

from ws_monitor.app.config import MonitorConfig
from ws_monitor.app.errors import ConfigurationError, ContainerRuntimeError, DetectionError, WatcherError
from ws_monitor.app.models import ProjectRecord, ProjectState, ProjectStatus
from ws_monitor.app.workspaces.compose import build_service_spec, routing_rule, routing_rule_present
from ws_monitor.app.workspaces.core import OPT_OUT_MARKER, is_candidate_name, now_utc_iso, project_for_path
from ws_monitor.app.workspaces.detector import ProjectDetector
from ws_monitor.app.workspaces.runtime import ContainerRuntimeClient, DockerRuntimeClient
from ws_monitor.app.workspaces.watcher import ChangeEvent, ChangeWatcher

logger = logging.getLogger("workspace_monitor.monitor")

WatcherFactory = Callable[[Path, Callable[[ChangeEvent], None]], Any]


class ContainerAction(str, enum.Enum):
    started = "started"
    restarted = "restarted"
    unchanged = "unchanged"
    failed = "failed"


class _Work(enum.Enum):
    event = "event"      # watcher change, debounced
    project = "project"  # immediate rescan of one project
    full = "full"        # periodic full workspace scan


@dataclass(frozen=True)
class _WorkItem:
    kind: _Work
    name: Optional[str] = None


@dataclass
class _Tracking:
    state: ProjectState = ProjectState.unknown
    last_error: Optional[str] = None
    updated_at: Optional[str] = field(default_factory=now_utc_iso)


class WorkspaceMonitor:
    """
    Watches the workspace root and keeps one container per managed project running.

    Collaborators are injectable so tests can run without Docker or watchdog.
    """

    def __init__(
        self,
        settings: MonitorConfig,
        *,
        detector: Optional[ProjectDetector] = None,
        runtime: Optional[ContainerRuntimeClient] = None,
        watcher_factory: Optional[WatcherFactory] = None,
    ) -> None:
        self.settings = settings
        self.root = Path(settings.workspace_path).expanduser().resolve()
        self.detector = detector or ProjectDetector()
        self.runtime: ContainerRuntimeClient = runtime or DockerRuntimeClient(
            compose_command=settings.compose_command,
            container_prefix=settings.container_name_prefix,
            compose_timeout_seconds=settings.compose_timeout_seconds,
            docker_timeout_seconds=settings.docker_client_timeout,
        )
        self._watcher_factory: WatcherFactory = watcher_factory or self._default_watcher

        self._registry: Dict[str, ProjectRecord] = {}
        self._tracking: Dict[str, _Tracking] = {}
        self._scan_seq: Dict[str, int] = {}
        self._applied_seq: Dict[str, int] = {}
        self._project_locks: Dict[str, asyncio.Lock] = {}
        self._inert_logged: Set[str] = set()
        self._drift_checked: Dict[str, Optional[str]] = {}

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._consumer: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.Task] = None
        self._watcher: Any = None
        self._debounce: Dict[str, asyncio.TimerHandle] = {}
        self._inflight: Set[asyncio.Task] = set()
        self._full_scan_running = False
        self._running = False
        self._stopping = False
        self._started_at: Optional[float] = None

    # ----------------------------
    # Lifecycle
    # ----------------------------

    @property
    def running(self) -> bool:
        return self._running and not self._stopping

    @property
    def watching(self) -> bool:
        return self._watcher is not None

    @property
    def uptime_seconds(self) -> float:
        if self._started_at is None or not self.running:
            return 0.0
        return max(0.0, time.monotonic() - self._started_at)

    def _default_watcher(self, root: Path, on_event: Callable[[ChangeEvent], None]) -> ChangeWatcher:
        return ChangeWatcher(
            root,
            on_event,
            ignore=self.settings.ignore_patterns(),
            excluded_roots=[self.settings.monitor_dir_name] if self.settings.monitor_dir_name else [],
            max_depth=self.settings.watch_depth,
            stability_seconds=self.settings.write_stability_seconds,
        )

    async def start(self) -> None:
        """
        Full scan, then watcher, consumer and periodic timer.

        Raises:
            ConfigurationError if the workspace root is missing.
        """
        if self._running:
            return
        if not self.root.is_dir():
            raise ConfigurationError(f"Workspace root is not a directory: {self.root}")

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.settings.event_queue_size)
        self._stopping = False
        self._running = True
        self._started_at = time.monotonic()
        logger.info(
            "Workspace monitor starting: root=%s domain=%s network=%s interval=%.1fs",
            self.root,
            self.settings.domain,
            self.settings.network,
            self.settings.scan_interval_seconds,
        )

        await self.scan_workspace()
        if self._stopping:
            return

        self._consumer = asyncio.create_task(self._consume(), name="ws-monitor-consumer")
        self._timer = asyncio.create_task(self._tick(), name="ws-monitor-timer")

        watcher = self._watcher_factory(self.root, self._on_watch_event)
        try:
            await asyncio.to_thread(watcher.start)
        except WatcherError as exc:
            logger.warning("Watcher start failed, relying on periodic scans: error=%s", exc)
        else:
            self._watcher = watcher

        logger.info("Workspace monitor started: projects=%d watching=%s", len(self._registry), self.watching)

    async def stop(self, timeout: float = 5.0) -> None:
        """
        Idempotent. In-flight scans get `timeout` seconds to finish; their results are discarded.
        """
        if not self._running or self._stopping:
            return
        self._stopping = True
        logger.info("Workspace monitor stopping")

        for handle in self._debounce.values():
            handle.cancel()
        self._debounce.clear()

        background = [t for t in (self._timer, self._consumer) if t is not None]
        for task in background:
            task.cancel()

        watcher = self._watcher
        self._watcher = None
        if watcher is not None:
            await asyncio.to_thread(watcher.stop)

        inflight = list(self._inflight)
        if inflight:
            _, pending = await asyncio.wait(inflight, timeout=timeout)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        await asyncio.gather(*background, return_exceptions=True)

        # The Docker client reconnects lazily if the monitor is started again
        close = getattr(self.runtime, "close", None)
        if callable(close):
            await asyncio.to_thread(close)

        self._timer = None
        self._consumer = None
        self._queue = None
        self._running = False
        logger.info("Workspace monitor stopped")

    # ----------------------------
    # Producers
    # ----------------------------

    def _on_watch_event(self, event: ChangeEvent) -> None:
        # Called from watcher threads
        loop = self._loop
        if loop is None or self._stopping:
            return
        try:
            loop.call_soon_threadsafe(self._offer_change, event)
        except RuntimeError:
            logger.debug("Event loop closed, dropping change: path=%s", event.path)

    def _offer_change(self, event: ChangeEvent) -> None:
        target = project_for_path(self.root, event.path)
        if target is None:
            return
        name, _ = target
        if not is_candidate_name(name, self.settings.monitor_dir_name):
            return
        self._offer(_WorkItem(_Work.event, name))

    def _offer(self, item: _WorkItem) -> bool:
        queue = self._queue
        if queue is None or self._stopping:
            return False
        try:
            queue.put_nowait(item)
        except asyncio.QueueFull:
            logger.warning("Event queue full, dropping work: kind=%s project=%s", item.kind.value, item.name)
            return False
        return True

    async def _tick(self) -> None:
        interval = self.settings.scan_interval_seconds
        while True:
            await asyncio.sleep(interval)
            self._offer(_WorkItem(_Work.full))

    def request_scan(self, name: str) -> bool:
        """
        Queue an immediate rescan of one project. Must be called on the monitor's loop.
        Returns False if the monitor is not running, the name is not a project
        candidate, or the queue is full.
        """
        if not self.running or not is_candidate_name(name, self.settings.monitor_dir_name) or "/" in name:
            return False
        return self._offer(_WorkItem(_Work.project, name))

    # ----------------------------
    # Consumer
    # ----------------------------

    async def _consume(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            item: _WorkItem = await queue.get()
            try:
                if item.kind is _Work.event and item.name:
                    self._debounce_project(item.name)
                elif item.kind is _Work.project and item.name:
                    self._spawn(self._scan_named(item.name))
                elif item.kind is _Work.full:
                    if self._full_scan_running:
                        logger.debug("Full scan already running, skipping tick")
                    else:
                        self._spawn(self.scan_workspace())
            finally:
                queue.task_done()

    def _debounce_project(self, name: str) -> None:
        assert self._loop is not None
        handle = self._debounce.pop(name, None)
        if handle is not None:
            handle.cancel()
        self._debounce[name] = self._loop.call_later(
            self.settings.event_debounce_seconds, self._debounce_fired, name
        )

    def _debounce_fired(self, name: str) -> None:
        self._debounce.pop(name, None)
        if not self._stopping:
            self._spawn(self._scan_named(name))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background scan failed: error=%s", exc, exc_info=exc)

    async def _scan_named(self, name: str) -> Optional[ProjectRecord]:
        path = self.root / name
        if await asyncio.to_thread(self._opted_out, path):
            logger.debug("Project opted out of monitoring: project=%s", name)
            return None
        return await self.scan_project(path, name)

    # ----------------------------
    # Scanning
    # ----------------------------

    @staticmethod
    def _opted_out(path: Path) -> bool:
        return (path / OPT_OUT_MARKER).exists()

    def _list_candidates(self) -> List[Tuple[str, Path]]:
        out: List[Tuple[str, Path]] = []
        for entry in sorted(self.root.iterdir(), key=lambda p: p.name):
            if not is_candidate_name(entry.name, self.settings.monitor_dir_name):
                continue
            if not entry.is_dir() or self._opted_out(entry):
                continue
            out.append((entry.name, entry))
        return out

    async def scan_workspace(self) -> bool:
        """
        Scan every project directory and drop records for directories that are gone.

        Returns False when the scan was skipped (one already running, or the
        monitor is stopping) or the root could not be listed; the registry is
        left unchanged in that case.
        """
        if self._full_scan_running or self._stopping:
            return False
        self._full_scan_running = True
        try:
            try:
                listing = await asyncio.to_thread(self._list_candidates)
            except OSError as exc:
                logger.error("Workspace scan failed: root=%s error=%s", self.root, exc)
                return False

            seq_at_listing = dict(self._scan_seq)
            results = await asyncio.gather(
                *(self.scan_project(path, name) for name, path in listing),
                return_exceptions=True,
            )
            for (name, _), result in zip(listing, results):
                if isinstance(result, Exception):
                    logger.error("Project scan failed: project=%s error=%s", name, result, exc_info=result)
                    self._mark_error(name, str(result))

            if self._stopping:
                return False

            listed = {name for name, _ in listing}
            for name in sorted(set(self._registry) - listed):
                if self._applied_seq.get(name, 0) > seq_at_listing.get(name, 0):
                    # Re-detected after the listing was taken
                    continue
                self._forget(name)
            logger.debug("Workspace scan complete: listed=%d registered=%d", len(listing), len(self._registry))
            return True
        finally:
            self._full_scan_running = False

    def _forget(self, name: str) -> None:
        self._registry.pop(name, None)
        self._tracking.pop(name, None)
        self._inert_logged.discard(name)
        self._drift_checked.pop(name, None)
        handle = self._debounce.pop(name, None)
        if handle is not None:
            handle.cancel()
        logger.info("Project removed: project=%s", name)

    async def scan_project(self, path: Path, name: str) -> Optional[ProjectRecord]:
        """
        Detect one project, upsert its record, and reconcile its container.

        Returns the applied record, or None when the directory is gone, detection
        failed, or the result was stale.
        """
        seq = self._scan_seq.get(name, 0) + 1
        self._scan_seq[name] = seq

        try:
            record = await asyncio.to_thread(self.detector.detect, path)
        except DetectionError as exc:
            logger.error("Detection failed: project=%s error=%s", name, exc)
            self._mark_error(name, str(exc))
            return None

        if self._stopping:
            return None
        if self._applied_seq.get(name, 0) > seq:
            logger.debug("Discarding stale scan result: project=%s seq=%d", name, seq)
            return None
        if record is None:
            logger.debug("Project directory vanished before detection: project=%s", name)
            return None

        previous = self._registry.get(name)
        self._applied_seq[name] = seq
        self._registry[name] = record
        tracking = self._tracking.setdefault(name, _Tracking())
        tracking.last_error = None
        tracking.updated_at = now_utc_iso()
        if previous is None:
            logger.info("Project detected: project=%s type=%s", name, record.type.value)
        elif previous.revision != record.revision or previous.type != record.type:
            logger.info("Project changed: project=%s type=%s", name, record.type.value)

        if not record.container_managed:
            tracking.state = ProjectState.detected
            if name not in self._inert_logged:
                self._inert_logged.add(name)
                logger.info("No compose file, container not managed: project=%s", name)
            else:
                logger.debug("No compose file, container not managed: project=%s", name)
            return record

        self._inert_logged.discard(name)
        if tracking.state is ProjectState.unknown:
            tracking.state = ProjectState.detected
        await self._check_routing(name, record)

        lock = self._project_locks.setdefault(name, asyncio.Lock())
        async with lock:
            if self._stopping:
                return record
            if self._scan_seq.get(name) != seq:
                logger.debug("Scan superseded, skipping container management: project=%s seq=%d", name, seq)
                return record
            await self.manage_container(name, record)
        return record

    # ----------------------------
    # Container reconciliation
    # ----------------------------

    async def manage_container(self, name: str, record: ProjectRecord) -> ContainerAction:
        """
        Start the project's container if it is not running; restart it only when
        its configuration fingerprint changed. State is always re-queried.
        """
        container = self.settings.container_name(name)
        tracking = self._tracking.setdefault(name, _Tracking())
        try:
            running = await asyncio.to_thread(self.runtime.is_running, container)
            if not running:
                self._set_state(name, ProjectState.container_starting)
                await asyncio.to_thread(self.runtime.start, record.path, name, fingerprint=record.fingerprint())
                self._set_state(name, ProjectState.container_running)
                logger.info("Container started: project=%s container=%s", name, container)
                return ContainerAction.started

            if await asyncio.to_thread(self.runtime.needs_restart, container, record):
                self._set_state(name, ProjectState.container_needs_restart)
                logger.info("Configuration changed, restarting: project=%s container=%s", name, container)
                self._set_state(name, ProjectState.container_starting)
                await asyncio.to_thread(self.runtime.restart, record.path, name, fingerprint=record.fingerprint())
                self._set_state(name, ProjectState.container_running)
                return ContainerAction.restarted

            self._set_state(name, ProjectState.container_running)
            return ContainerAction.unchanged
        except ContainerRuntimeError as exc:
            logger.error("Container management failed: project=%s error=%s", name, exc)
            tracking.last_error = str(exc)
            tracking.updated_at = now_utc_iso()
            return ContainerAction.failed

    def _set_state(self, name: str, state: ProjectState) -> None:
        if self._stopping or name not in self._registry:
            return
        tracking = self._tracking.setdefault(name, _Tracking())
        tracking.state = state
        tracking.updated_at = now_utc_iso()

    def _mark_error(self, name: str, message: str) -> None:
        tracking = self._tracking.get(name)
        if tracking is None:
            return
        tracking.last_error = message
        tracking.updated_at = now_utc_iso()

    async def _check_routing(self, name: str, record: ProjectRecord) -> None:
        # Warn once per compose file content; the project's file is never rewritten
        if self._drift_checked.get(name, "") == record.container_spec_digest:
            return
        self._drift_checked[name] = record.container_spec_digest
        spec_path = Path(record.path) / str(record.container_spec)
        try:
            doc = await asyncio.to_thread(self._load_yaml, spec_path)
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("Compose file unreadable: project=%s file=%s error=%s", name, spec_path.name, exc)
            return
        expected = routing_rule(self.settings.domain, name, default_project=self.settings.default_project)
        if not routing_rule_present(doc, expected):
            logger.warning(
                "Compose file lacks expected routing rule: project=%s file=%s expected=%s",
                name,
                spec_path.name,
                expected,
            )

    @staticmethod
    def _load_yaml(path: Path) -> Any:
        with path.open("r", encoding="utf-8") as fh:
            return yaml.safe_load(fh)

    # ----------------------------
    # Read-only views
    # ----------------------------

    def projects(self) -> Dict[str, ProjectRecord]:
        return dict(self._registry)

    def get(self, name: str) -> Optional[ProjectRecord]:
        return self._registry.get(name)

    def status(self, name: str) -> Optional[ProjectStatus]:
        record = self._registry.get(name)
        if record is None:
            return None
        tracking = self._tracking.get(name) or _Tracking()
        return ProjectStatus(
            name=name,
            type=record.type,
            path=record.path,
            port=record.runtime.port,
            url=self.settings.project_url(name),
            container=self.settings.container_name(name),
            state=tracking.state,
            managed=record.container_managed,
            revision=record.revision,
            last_error=tracking.last_error,
            updated_at=tracking.updated_at,
        )

    def snapshot(self) -> List[ProjectStatus]:
        return [s for s in (self.status(name) for name in sorted(self._registry)) if s is not None]

    def expected_service(self, name: str) -> Optional[Dict[str, Any]]:
        """
        Raises:
            ValueError when the project name cannot be routed.
        """
        record = self._registry.get(name)
        if record is None:
            return None
        return build_service_spec(
            self.settings.domain,
            self.settings.network,
            name,
            record,
            default_project=self.settings.default_project,
            cert_resolver=self.settings.cert_resolver,
            container_prefix=self.settings.container_name_prefix,
        )

    async def logs(self, name: str, tail: int = 100) -> List[str]:
        """
        Raises:
            KeyError for an unknown project; ContainerRuntimeError from the runtime.
        """
        if name not in self._registry:
            raise KeyError(name)
        text = await asyncio.to_thread(self.runtime.logs, self.settings.container_name(name), tail)
        return text.splitlines()

    def summary(self) -> Dict[str, Any]:
        return {
            "workspace_path": str(self.root),
            "domain": self.settings.domain,
            "network": self.settings.network,
            "default_project": self.settings.default_project,
            "scan_interval_seconds": self.settings.scan_interval_seconds,
            "watching": self.watching,
        }


__all__ = [
    "ContainerAction",
    "WorkspaceMonitor",
]
