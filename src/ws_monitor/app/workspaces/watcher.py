from __future__ import annotations

"""
Filesystem change watcher for the workspace root.

Built on watchdog with non-recursive watches on every directory up to
`max_depth` levels below the root, so large dependency trees are never walked.
Only trigger filenames (manifests, compose files, entrypoints) are reported,
and added/changed files are held back until their size and mtime have been
stable for `stability_seconds` to avoid reacting to partial writes.

Threads:
- watchdog's observer thread delivers raw events to the handler
- a stability poller thread promotes settled files to ChangeEvents

`on_event` is invoked from the poller thread (added/changed) or the observer
thread (removed); callers must hand events off to their own loop.
"""

import enum
import fnmatch
import logging
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ws_monitor.app.errors import WatcherError
from ws_monitor.app.workspaces.core import TRIGGER_FILES

logger = logging.getLogger("workspace_monitor.watcher")


class ChangeKind(str, enum.Enum):
    added = "added"
    changed = "changed"
    removed = "removed"


@dataclass(frozen=True)
class ChangeEvent:
    path: Path
    kind: ChangeKind


@dataclass
class _Pending:
    kind: ChangeKind
    signature: Optional[Tuple[int, int]]
    since: float


def _signature(path: Path) -> Optional[Tuple[int, int]]:
    try:
        st = path.stat()
    except OSError:
        return None
    return st.st_size, st.st_mtime_ns


class _Handler(FileSystemEventHandler):
    def __init__(self, watcher: "ChangeWatcher") -> None:
        super().__init__()
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        path = Path(os.fsdecode(event.src_path))
        if event.is_directory:
            self._watcher._directory_created(path)
        else:
            self._watcher._file_touched(path, ChangeKind.added)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher._file_touched(Path(os.fsdecode(event.src_path)), ChangeKind.changed)

    def on_deleted(self, event: FileSystemEvent) -> None:
        path = Path(os.fsdecode(event.src_path))
        if event.is_directory:
            self._watcher._directory_removed(path)
        else:
            self._watcher._file_removed(path)

    def on_moved(self, event: FileSystemEvent) -> None:
        src = Path(os.fsdecode(event.src_path))
        dest = Path(os.fsdecode(event.dest_path))
        if event.is_directory:
            self._watcher._directory_removed(src)
            self._watcher._directory_created(dest)
        else:
            self._watcher._file_removed(src)
            self._watcher._file_touched(dest, ChangeKind.added)


class ChangeWatcher:
    """
    Depth-limited, stability-debounced watcher producing ChangeEvents.
    """

    def __init__(
        self,
        root: Path,
        on_event: Callable[[ChangeEvent], None],
        *,
        ignore: Iterable[str] = (),
        excluded_roots: Iterable[str] = (),
        max_depth: int = 2,
        stability_seconds: float = 2.0,
        poll_interval: float = 0.1,
        trigger_files: FrozenSet[str] = TRIGGER_FILES,
        observer_factory: Callable[[], object] = Observer,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.root = Path(root).resolve()
        self.on_event = on_event
        self.ignore: List[str] = list(ignore)
        self.excluded_roots = frozenset(excluded_roots)
        self.max_depth = max(0, int(max_depth))
        self.stability_seconds = max(0.0, float(stability_seconds))
        self.poll_interval = max(0.01, float(poll_interval))
        self.trigger_files = trigger_files
        self._observer_factory = observer_factory
        self._clock = clock

        self._observer = None
        self._handler = _Handler(self)
        self._watches: Dict[Path, object] = {}
        self._pending: Dict[Path, _Pending] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._poller: Optional[threading.Thread] = None

    # ----------------------------
    # Lifecycle
    # ----------------------------

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        """
        Schedule watches and start the observer and stability poller.

        Raises:
            WatcherError if the OS watch cannot be established.
        """
        if self._observer is not None:
            return
        if not self.root.is_dir():
            raise WatcherError(f"Watch root is not a directory: {self.root}")

        self._stop.clear()
        observer = self._observer_factory()
        self._observer = observer
        try:
            self._watch_tree(self.root)
            observer.start()  # type: ignore[attr-defined]
        except (OSError, RuntimeError) as exc:
            self._observer = None
            self._watches.clear()
            raise WatcherError(f"Failed to watch {self.root}: {exc}") from exc

        self._poller = threading.Thread(target=self._poll_loop, name="ws-monitor-stability", daemon=True)
        self._poller.start()
        logger.info(
            "Watcher started: root=%s depth=%s watches=%s stability=%.1fs",
            self.root,
            self.max_depth,
            len(self._watches),
            self.stability_seconds,
        )

    def stop(self, timeout: float = 5.0) -> None:
        """
        Stop the observer and poller. Safe to call repeatedly or before start().
        """
        self._stop.set()
        observer = self._observer
        self._observer = None
        if observer is not None:
            try:
                observer.stop()  # type: ignore[attr-defined]
                observer.join(timeout)  # type: ignore[attr-defined]
            except RuntimeError as exc:
                logger.warning("Watcher observer shutdown error: %s", exc)
        poller = self._poller
        self._poller = None
        if poller is not None and poller is not threading.current_thread():
            poller.join(timeout)
        with self._lock:
            self._pending.clear()
            self._watches.clear()

    # ----------------------------
    # Filters
    # ----------------------------

    def _relative_parts(self, path: Path) -> Optional[Tuple[str, ...]]:
        try:
            return path.relative_to(self.root).parts
        except ValueError:
            return None

    def is_ignored(self, path: Path) -> bool:
        parts = self._relative_parts(path)
        if parts is None:
            return True
        if not parts:
            return False
        if parts[0] in self.excluded_roots or parts[0].startswith("."):
            return True
        rel = "/".join(parts)
        for pattern in self.ignore:
            if fnmatch.fnmatch(rel, pattern):
                return True
            if any(fnmatch.fnmatch(part, pattern) for part in parts):
                return True
        return False

    def _depth(self, path: Path) -> Optional[int]:
        parts = self._relative_parts(path)
        return None if parts is None else len(parts)

    def is_relevant(self, path: Path) -> bool:
        depth = self._depth(path)
        # Files directly in the root belong to no project
        if depth is None or depth < 2 or depth > self.max_depth + 1:
            return False
        return path.name in self.trigger_files and not self.is_ignored(path)

    # ----------------------------
    # Watch scheduling
    # ----------------------------

    def _schedule(self, directory: Path) -> None:
        with self._lock:
            if directory in self._watches or self._observer is None:
                return
            watch = self._observer.schedule(self._handler, str(directory), recursive=False)  # type: ignore[attr-defined]
            self._watches[directory] = watch

    def _watch_tree(self, start: Path) -> None:
        """
        Breadth-first scheduling of non-recursive watches from `start` down to max_depth.
        Failures below the root are logged and skipped.
        """
        queue: List[Path] = [start]
        while queue:
            directory = queue.pop(0)
            depth = self._depth(directory)
            if depth is None or depth > self.max_depth:
                continue
            if directory != self.root and self.is_ignored(directory):
                continue
            try:
                self._schedule(directory)
            except OSError:
                if directory == self.root:
                    raise
                logger.warning("Cannot watch directory: path=%s", directory, exc_info=True)
                continue
            if depth == self.max_depth:
                continue
            try:
                with os.scandir(directory) as it:
                    children = sorted(Path(e.path) for e in it if e.is_dir(follow_symlinks=False))
            except OSError as exc:
                if directory == self.root:
                    raise
                logger.warning("Cannot list directory: path=%s error=%s", directory, exc)
                continue
            queue.extend(children)

    def _directory_created(self, path: Path) -> None:
        depth = self._depth(path)
        if depth is None or depth > self.max_depth or self.is_ignored(path):
            return
        try:
            self._watch_tree(path)
        except OSError as exc:
            logger.warning("Cannot watch new directory: path=%s error=%s", path, exc)

    def _directory_removed(self, path: Path) -> None:
        with self._lock:
            doomed = [d for d in self._watches if d == path or path in d.parents]
            watches = [self._watches.pop(d) for d in doomed]
        observer = self._observer
        if observer is None:
            return
        for watch in watches:
            try:
                observer.unschedule(watch)  # type: ignore[attr-defined]
            except (KeyError, OSError):
                pass

    # ----------------------------
    # File events
    # ----------------------------

    def _file_touched(self, path: Path, kind: ChangeKind) -> None:
        if not self.is_relevant(path):
            return
        now = self._clock()
        with self._lock:
            pending = self._pending.get(path)
            if pending is None:
                self._pending[path] = _Pending(kind=kind, signature=_signature(path), since=now)
            else:
                pending.signature = _signature(path)
                pending.since = now

    def _file_removed(self, path: Path) -> None:
        if not self.is_relevant(path):
            return
        with self._lock:
            pending = self._pending.pop(path, None)
        if pending is not None and pending.kind is ChangeKind.added:
            return
        self._emit(ChangeEvent(path=path, kind=ChangeKind.removed))

    def _poll_once(self, now: Optional[float] = None) -> List[ChangeEvent]:
        """
        Promote files whose (size, mtime) stayed unchanged for the stability period.
        """
        now = self._clock() if now is None else now
        ready: List[ChangeEvent] = []
        with self._lock:
            for path, pending in list(self._pending.items()):
                current = _signature(path)
                if current is None:
                    del self._pending[path]
                    if pending.kind is ChangeKind.changed:
                        ready.append(ChangeEvent(path=path, kind=ChangeKind.removed))
                    continue
                if current != pending.signature:
                    pending.signature = current
                    pending.since = now
                    continue
                if now - pending.since >= self.stability_seconds:
                    del self._pending[path]
                    ready.append(ChangeEvent(path=path, kind=pending.kind))
        for event in ready:
            self._emit(event)
        return ready

    def _poll_loop(self) -> None:
        while not self._stop.wait(self.poll_interval):
            self._poll_once()

    def _emit(self, event: ChangeEvent) -> None:
        logger.debug("Change detected: kind=%s path=%s", event.kind.value, event.path)
        try:
            self.on_event(event)
        except Exception:
            logger.exception("Change event consumer failed: path=%s", event.path)


__all__ = [
    "ChangeKind",
    "ChangeEvent",
    "ChangeWatcher",
]
