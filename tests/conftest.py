"""
Test session bootstrap for ws_monitor

Ensures the in-repo package is importable without requiring an editable
install, and gates Docker-backed tests on a reachable daemon.

- Adds src/ to sys.path so `import ws_monitor` works.
- Adds tests/ to sys.path so shared fakes in `support` can be imported.
- Tests marked `docker` are skipped when the Docker daemon cannot be pinged.
"""

from __future__ import annotations

import sys
from pathlib import Path

import docker
import pytest
from docker.errors import DockerException


def _add_sys_path(p: Path) -> None:
    """
    Prepend a filesystem path to sys.path if it's not already present.
    """
    rp = str(p.resolve())
    if rp not in sys.path:
        sys.path.insert(0, rp)


_THIS_FILE = Path(__file__).resolve()
_TESTS_DIR = _THIS_FILE.parent
_PROJECT_DIR = _TESTS_DIR.parent

_add_sys_path(_PROJECT_DIR / "src")
_add_sys_path(_TESTS_DIR)


def _docker_available() -> bool:
    try:
        client = docker.from_env(timeout=5)
        client.ping()
        client.close()
    except DockerException:
        return False
    return True


def pytest_collection_modifyitems(config, items) -> None:
    docker_items = [item for item in items if item.get_closest_marker("docker")]
    if not docker_items or _docker_available():
        return
    skip = pytest.mark.skip(reason="Docker daemon is not reachable")
    for item in docker_items:
        item.add_marker(skip)
