from __future__ import annotations

"""
Pydantic models for the workspace monitor.

These models define:
- ProjectType: the closed enumeration of runtime types
- Typed runtime configurations (a discriminated union keyed on `type`)
- ProjectRecord: the registry entry for one detected project
- ProjectState / ProjectStatus: reconciliation state and read-only snapshots
- Response models for the status API

Notes:
- Records are frozen; the registry replaces them in place under their name.
- The fingerprint ignores file mtimes, so touching a manifest
  without changing its content never causes a restart.
"""

import enum
import hashlib
import json
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field


# -----------------------
# Enums
# -----------------------

class ProjectType(str, enum.Enum):
    node = "node"
    python = "python"
    static = "static"
    php = "php"
    go = "go"
    ruby = "ruby"
    generic = "generic"


class ProjectState(str, enum.Enum):
    unknown = "unknown"
    detected = "detected"
    container_starting = "container_starting"
    container_running = "container_running"
    container_needs_restart = "container_needs_restart"


# -----------------------
# Runtime configurations
# -----------------------

class _RuntimeBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    entrypoint: Optional[str] = None
    command: Optional[List[str]] = Field(default=None, description="Command override (argv form)")
    port: int = Field(default=3000, ge=1, le=65535)
    environment: Dict[str, str] = Field(default_factory=dict, description="Environment overrides from the project's .env")


class NodeRuntime(_RuntimeBase):
    type: Literal["node"] = "node"
    framework: Optional[str] = None
    scripts: List[str] = Field(default_factory=list, description="Names of scripts declared in package.json")


class PythonRuntime(_RuntimeBase):
    type: Literal["python"] = "python"
    has_requirements: bool = False
    port: int = Field(default=8000, ge=1, le=65535)


class PhpRuntime(_RuntimeBase):
    type: Literal["php"] = "php"
    port: int = Field(default=80, ge=1, le=65535)


class GoRuntime(_RuntimeBase):
    type: Literal["go"] = "go"
    port: int = Field(default=8080, ge=1, le=65535)


class RubyRuntime(_RuntimeBase):
    type: Literal["ruby"] = "ruby"


class StaticRuntime(_RuntimeBase):
    type: Literal["static"] = "static"
    port: int = Field(default=80, ge=1, le=65535)


class GenericRuntime(_RuntimeBase):
    type: Literal["generic"] = "generic"
    reason: Optional[str] = Field(default=None, description="Why no specific type was detected (e.g. malformed manifest)")


RuntimeConfig = Annotated[
    Union[NodeRuntime, PythonRuntime, PhpRuntime, GoRuntime, RubyRuntime, StaticRuntime, GenericRuntime],
    Field(discriminator="type"),
]


# -----------------------
# Registry record
# -----------------------

class ProjectRecord(BaseModel):
    """
    One detected top-level workspace directory.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    path: str
    runtime: RuntimeConfig
    revision: str = Field(..., description="Composite of manifest names, sizes and mtimes")
    container_spec: Optional[str] = Field(default=None, description="Filename of the project's own compose file")
    container_spec_digest: Optional[str] = None
    has_dockerfile: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def type(self) -> ProjectType:
        return ProjectType(self.runtime.type)

    @property
    def container_managed(self) -> bool:
        return self.container_spec is not None

    def fingerprint(self) -> str:
        """
        Digest of everything that affects the running container: type, entrypoint,
        command, port, environment, and the project's own container spec content.
        """
        payload: Dict[str, Any] = {
            "runtime": self.runtime.model_dump(mode="json"),
            "container_spec": self.container_spec,
            "container_spec_digest": self.container_spec_digest,
            "has_dockerfile": self.has_dockerfile,
        }
        raw = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()


# -----------------------
# Snapshots and API responses
# -----------------------

class ProjectStatus(BaseModel):
    name: str
    type: ProjectType
    path: str
    port: int
    url: str
    container: str
    state: ProjectState = ProjectState.unknown
    managed: bool = False
    revision: str
    last_error: Optional[str] = None
    updated_at: Optional[str] = None


class MonitorStatusResponse(BaseModel):
    status: str
    running: bool
    uptime_seconds: float
    project_count: int
    config: Dict[str, Any] = Field(default_factory=dict)


class ProjectListResponse(BaseModel):
    projects: List[ProjectStatus] = Field(default_factory=list)


class LogsResponse(BaseModel):
    project: str
    logs: List[str] = Field(default_factory=list)


class ReconcileResponse(BaseModel):
    project: str
    queued: bool


__all__ = [
    "ProjectType",
    "ProjectState",
    "NodeRuntime",
    "PythonRuntime",
    "PhpRuntime",
    "GoRuntime",
    "RubyRuntime",
    "StaticRuntime",
    "GenericRuntime",
    "RuntimeConfig",
    "ProjectRecord",
    "ProjectStatus",
    "MonitorStatusResponse",
    "ProjectListResponse",
    "LogsResponse",
    "ReconcileResponse",
]
