from __future__ import annotations

"""
Core helpers for the workspace monitor: the filesystem contract, naming, and time.

This module centralizes small, side-effect-free helpers shared by the detector,
watcher and reconciler. It is import-only and free of external dependencies.

Contents:
- Manifest and container-spec filenames (the filesystem contract)
- Trigger filenames the watcher reports
- Project candidate rules and path -> project mapping
- Time helpers
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import FrozenSet, Optional, Tuple

# --------------------------
# Filesystem contract
# --------------------------

NODE_MANIFESTS: Tuple[str, ...] = ("package.json",)
PYTHON_MANIFESTS: Tuple[str, ...] = ("requirements.txt", "app.py", "setup.py", "pyproject.toml")
PHP_MANIFESTS: Tuple[str, ...] = ("composer.json", "index.php")
GO_MANIFESTS: Tuple[str, ...] = ("go.mod",)
RUBY_MANIFESTS: Tuple[str, ...] = ("Gemfile",)
STATIC_MANIFESTS: Tuple[str, ...] = ("index.html",)

# Project-authored container definitions, in lookup order
COMPOSE_FILENAMES: Tuple[str, ...] = (
    "docker-compose.yml",
    "docker-compose.yaml",
    "compose.yml",
    "compose.yaml",
)
DOCKERFILE = "Dockerfile"
PROJECT_ENV_FILE = ".env"

# A project carrying this marker is never monitored
OPT_OUT_MARKER = ".nomonitor"

# Files whose changes can alter detection or the container
TRIGGER_FILES: FrozenSet[str] = frozenset(
    NODE_MANIFESTS
    + PYTHON_MANIFESTS
    + PHP_MANIFESTS
    + GO_MANIFESTS
    + RUBY_MANIFESTS
    + STATIC_MANIFESTS
    + COMPOSE_FILENAMES
    + (DOCKERFILE, PROJECT_ENV_FILE, OPT_OUT_MARKER, "main.py", "main.go")
)


# --------------------------
# Project candidates
# --------------------------

def is_candidate_name(name: str, monitor_dir_name: Optional[str]) -> bool:
    """
    Top-level directory names that may be projects: anything except dot-directories
    and the monitor's own directory.
    """
    if not name or name.startswith("."):
        return False
    if monitor_dir_name and name == monitor_dir_name:
        return False
    return True


def project_for_path(root: Path, path: Path) -> Optional[Tuple[str, Path]]:
    """
    Map a changed file to the (project name, project dir) it belongs to.

    Only files sitting directly inside a top-level project directory qualify;
    anything deeper, or at the root itself, returns None.
    """
    try:
        rel = path.relative_to(root)
    except ValueError:
        return None
    parts = rel.parts
    if len(parts) != 2:
        return None
    return parts[0], root / parts[0]


# --------------------------
# Time helpers
# --------------------------

def now_utc_iso() -> str:
    """
    Current UTC time in ISO-8601 format with timezone info.
    """
    return datetime.now(timezone.utc).isoformat()


__all__ = [
    "NODE_MANIFESTS",
    "PYTHON_MANIFESTS",
    "PHP_MANIFESTS",
    "GO_MANIFESTS",
    "RUBY_MANIFESTS",
    "STATIC_MANIFESTS",
    "COMPOSE_FILENAMES",
    "DOCKERFILE",
    "PROJECT_ENV_FILE",
    "OPT_OUT_MARKER",
    "TRIGGER_FILES",
    "is_candidate_name",
    "project_for_path",
    "now_utc_iso",
]
