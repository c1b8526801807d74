from __future__ import annotations

"""
Project detection: classify a workspace directory into a typed ProjectRecord.

Rules:
- Returns None only when the path does not exist or is not a directory.
- An unreadable directory raises DetectionError; the caller skips the project for that pass.
- A malformed manifest is logged and the project is classified as generic.
- An unreadable project .env is logged and contributes no overrides.
- Fixed priority order: node > python > php > go > ruby > static > generic.
- Read-only and deterministic: entries are sorted and no file is ever written.
"""

import hashlib
import json
import logging
import os
import shlex
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple, Type, Union

from dotenv import dotenv_values
from pydantic import ValidationError

from ws_monitor.app.errors import DetectionError
from ws_monitor.app.models import (
    GenericRuntime,
    GoRuntime,
    NodeRuntime,
    PhpRuntime,
    ProjectRecord,
    ProjectType,
    PythonRuntime,
    RubyRuntime,
    StaticRuntime,
)
from ws_monitor.app.workspaces.core import (
    COMPOSE_FILENAMES,
    DOCKERFILE,
    GO_MANIFESTS,
    NODE_MANIFESTS,
    PHP_MANIFESTS,
    PROJECT_ENV_FILE,
    PYTHON_MANIFESTS,
    RUBY_MANIFESTS,
    STATIC_MANIFESTS,
    TRIGGER_FILES,
)

logger = logging.getLogger("workspace_monitor.detector")

# (framework, port, command) keyed by the dependency that reveals it, checked in order
_NODE_FRAMEWORKS: Tuple[Tuple[Tuple[str, ...], str, int, str], ...] = (
    (("react", "react-dom"), "react", 3000, "npm start"),
    (("vue",), "vue", 8080, "npm run serve"),
    (("next",), "next", 3000, "npm run dev"),
    (("express",), "express", 3000, "npm start"),
    (("http-server",), "static", 3000, "npm start"),
)

_NODE_SCRIPTS: Tuple[Tuple[str, str], ...] = (
    ("start", "npm start"),
    ("dev", "npm run dev"),
    ("serve", "npm run serve"),
)

_RuntimeKwargs = Dict[str, Any]


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DetectionError(str(path), f"Malformed manifest {path.name}: {exc}")


class ProjectDetector:
    """
    Stateless classifier. Safe to share between threads.
    """

    def __init__(self) -> None:
        self._priority: Tuple[Tuple[ProjectType, Tuple[str, ...], Callable[[Path, FrozenSet[str]], _RuntimeKwargs]], ...] = (
            (ProjectType.node, NODE_MANIFESTS, self._node),
            (ProjectType.python, PYTHON_MANIFESTS, self._python),
            (ProjectType.php, PHP_MANIFESTS, self._php),
            (ProjectType.go, GO_MANIFESTS, self._go),
            (ProjectType.ruby, RUBY_MANIFESTS, self._ruby),
            (ProjectType.static, STATIC_MANIFESTS, self._static),
        )

    def detect(self, path: Union[str, Path]) -> Optional[ProjectRecord]:
        """
        Classify the directory at `path`.

        Returns:
            ProjectRecord, or None when the path is missing or not a directory.

        Raises:
            DetectionError when the directory exists but cannot be listed or its
            container spec cannot be read.
        """
        project_dir = Path(path)
        if not project_dir.is_dir():
            return None

        try:
            entries = sorted(os.listdir(project_dir))
        except OSError as exc:
            raise DetectionError(str(project_dir), f"Unreadable directory: {exc}")
        files = frozenset(e for e in entries if (project_dir / e).is_file())

        project_type, runtime_kwargs = self._classify(project_dir, files)
        runtime_kwargs = self._apply_env_overrides(project_dir, files, runtime_kwargs)
        runtime = self._build_runtime(project_dir, project_type, runtime_kwargs)

        container_spec = next((f for f in COMPOSE_FILENAMES if f in files), None)
        spec_digest: Optional[str] = None
        if container_spec is not None:
            try:
                spec_digest = hashlib.sha256((project_dir / container_spec).read_bytes()).hexdigest()
            except OSError as exc:
                raise DetectionError(str(project_dir), f"Unreadable container spec {container_spec}: {exc}")

        return ProjectRecord(
            name=project_dir.name,
            path=str(project_dir.resolve()),
            runtime=runtime,
            revision=self._revision(project_dir, files),
            container_spec=container_spec,
            container_spec_digest=spec_digest,
            has_dockerfile=DOCKERFILE in files,
        )

    # ----------------------------
    # Classification
    # ----------------------------

    def _classify(self, project_dir: Path, files: FrozenSet[str]) -> Tuple[ProjectType, _RuntimeKwargs]:
        for project_type, manifests, configure in self._priority:
            if not any(m in files for m in manifests):
                continue
            try:
                return project_type, configure(project_dir, files)
            except DetectionError as exc:
                logger.warning(
                    "Manifest parsing failed, treating as generic: project=%s type=%s error=%s",
                    project_dir.name,
                    project_type.value,
                    exc,
                )
                return ProjectType.generic, {"reason": str(exc)}
        return ProjectType.generic, {}

    def _node(self, project_dir: Path, files: FrozenSet[str]) -> _RuntimeKwargs:
        pkg = _read_json(project_dir / "package.json")
        if not isinstance(pkg, dict):
            raise DetectionError(str(project_dir), "package.json must contain a JSON object")

        deps = pkg.get("dependencies")
        deps = deps if isinstance(deps, dict) else {}
        scripts = pkg.get("scripts")
        scripts = scripts if isinstance(scripts, dict) else {}

        kwargs: _RuntimeKwargs = {"port": 3000}
        command: Optional[str] = None
        for markers, framework, port, framework_command in _NODE_FRAMEWORKS:
            if any(m in deps for m in markers):
                kwargs["framework"] = framework
                kwargs["port"] = port
                command = framework_command
                break

        for script, script_command in _NODE_SCRIPTS:
            if script in scripts:
                command = script_command
                break

        main = pkg.get("main")
        kwargs["entrypoint"] = main if isinstance(main, str) and main.strip() else "index.js"
        kwargs["scripts"] = sorted(str(s) for s in scripts)
        if command:
            kwargs["command"] = shlex.split(command)
        return kwargs

    def _python(self, project_dir: Path, files: FrozenSet[str]) -> _RuntimeKwargs:
        entrypoint = "app.py"
        if "app.py" not in files and "main.py" in files:
            entrypoint = "main.py"
        return {
            "entrypoint": entrypoint,
            "command": ["python", entrypoint],
            "has_requirements": "requirements.txt" in files,
        }

    def _php(self, project_dir: Path, files: FrozenSet[str]) -> _RuntimeKwargs:
        if "composer.json" in files:
            _read_json(project_dir / "composer.json")
        return {}

    def _go(self, project_dir: Path, files: FrozenSet[str]) -> _RuntimeKwargs:
        return {"entrypoint": "main.go", "command": ["go", "run", "main.go"]}

    def _ruby(self, project_dir: Path, files: FrozenSet[str]) -> _RuntimeKwargs:
        return {"command": ["bundle", "exec", "rails", "server", "-b", "0.0.0.0"]}

    def _static(self, project_dir: Path, files: FrozenSet[str]) -> _RuntimeKwargs:
        return {"entrypoint": "index.html"}

    # ----------------------------
    # Overrides and fingerprints
    # ----------------------------

    def _apply_env_overrides(self, project_dir: Path, files: FrozenSet[str], kwargs: _RuntimeKwargs) -> _RuntimeKwargs:
        if PROJECT_ENV_FILE not in files:
            return kwargs
        try:
            values = dotenv_values(project_dir / PROJECT_ENV_FILE, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Ignoring unreadable .env: project=%s error=%s", project_dir.name, exc)
            return kwargs
        env = {k: v for k, v in sorted(values.items()) if v is not None}
        if not env:
            return kwargs
        out = dict(kwargs)
        out["environment"] = env
        port_raw = env.get("PORT")
        if port_raw is not None:
            try:
                port = int(port_raw)
            except ValueError:
                port = 0
            if 1 <= port <= 65535:
                out["port"] = port
            else:
                logger.warning("Ignoring invalid PORT override: project=%s value=%r", project_dir.name, port_raw)
        return out

    def _build_runtime(self, project_dir: Path, project_type: ProjectType, kwargs: _RuntimeKwargs):
        runtime_cls: Type = _RUNTIME_CLASSES[project_type]
        try:
            return runtime_cls(**kwargs)
        except ValidationError as exc:
            logger.warning(
                "Invalid runtime configuration, treating as generic: project=%s type=%s error=%s",
                project_dir.name,
                project_type.value,
                exc,
            )
            return GenericRuntime(reason=f"invalid {project_type.value} configuration")

    def _revision(self, project_dir: Path, files: FrozenSet[str]) -> str:
        parts: List[str] = []
        for name in sorted(files & TRIGGER_FILES):
            try:
                st = (project_dir / name).stat()
            except OSError:
                continue
            parts.append(f"{name}:{st.st_size}:{st.st_mtime_ns}")
        return _digest("|".join(parts))


_RUNTIME_CLASSES: Dict[ProjectType, Type] = {
    ProjectType.node: NodeRuntime,
    ProjectType.python: PythonRuntime,
    ProjectType.php: PhpRuntime,
    ProjectType.go: GoRuntime,
    ProjectType.ruby: RubyRuntime,
    ProjectType.static: StaticRuntime,
    ProjectType.generic: GenericRuntime,
}


__all__ = ["ProjectDetector"]
