from __future__ import annotations

"""
Compose service specification builder.

Pure functions that turn a ProjectRecord into the declarative compose document
consumed by the container runtime and the Traefik reverse proxy:
- build_service_spec: (domain, network, project name, record) -> compose dict
- routing_rule: Traefik rule for a project
- render_compose_yaml: YAML rendering with compose `$` escaping
- routing_rule_present: drift check against an existing compose document

Nothing here performs I/O.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import yaml

from ws_monitor.app.models import ProjectRecord, ProjectType


DEFAULT_PORT = 3000
CONTAINER_PREFIX = "workspace-"

_IDENT_RE = re.compile(r"[^a-z0-9-]+")


# --------------------------
# Runtime image table
# --------------------------

@dataclass(frozen=True)
class RuntimeImage:
    image: str
    build_context: Optional[str] = None
    healthcheck: Optional[Dict[str, Any]] = None


_READY_MARKER_HEALTHCHECK: Dict[str, Any] = {
    "test": ["CMD", "test", "-f", "/app/.container-ready"],
    "interval": "30s",
    "timeout": "10s",
    "retries": 3,
    "start_period": "60s",
}


def _ephemeral(kind: str) -> RuntimeImage:
    return RuntimeImage(
        image=f"workspace-{kind}-ephemeral:latest",
        build_context=f"./docker/{kind}-ephemeral",
        healthcheck=_READY_MARKER_HEALTHCHECK,
    )


# Exhaustive: tests assert every ProjectType has an entry
RUNTIME_IMAGES: Dict[ProjectType, RuntimeImage] = {
    ProjectType.node: _ephemeral("node"),
    ProjectType.python: _ephemeral("python"),
    ProjectType.php: _ephemeral("php"),
    ProjectType.go: _ephemeral("go"),
    ProjectType.ruby: _ephemeral("ruby"),
    ProjectType.static: RuntimeImage(
        image="nginx:alpine",
        healthcheck={
            "test": ["CMD", "wget", "-q", "--spider", "http://localhost/"],
            "interval": "30s",
            "timeout": "5s",
            "retries": 3,
        },
    ),
    ProjectType.generic: _ephemeral("generic"),
}


def runtime_image_for(project_type: Any) -> RuntimeImage:
    """
    Resolve the image for a type; anything unrecognized maps to generic.
    """
    try:
        return RUNTIME_IMAGES[ProjectType(project_type)]
    except (ValueError, KeyError):
        return RUNTIME_IMAGES[ProjectType.generic]


# --------------------------
# Naming and quoting
# --------------------------

def router_name(project_name: str, prefix: str = CONTAINER_PREFIX) -> str:
    """
    Traefik identifiers allow a restricted alphabet; collapse everything else to '-'.
    """
    ident = _IDENT_RE.sub("-", project_name.lower()).strip("-") or "project"
    return f"{prefix}{ident}"


def quote_rule_value(value: str) -> str:
    """
    Quote a value for use inside a Traefik rule expression.

    Backticks are raw strings in Traefik rules and cannot be escaped, so values
    containing one fall back to an escaped double-quoted string.
    """
    if "`" not in value:
        return f"`{value}`"
    return json.dumps(value)


def strip_prefix_value(project_name: str) -> str:
    """
    Path prefix for the strip-prefix middleware. Traefik reads that label as a
    comma-separated list, so names containing a comma cannot be routed.
    """
    if "," in project_name:
        raise ValueError(f"Project name {project_name!r} contains a comma and cannot be used as a path prefix")
    return f"/{project_name}"


def routing_rule(domain: str, project_name: str, *, default_project: str = "www") -> str:
    host = f"Host({quote_rule_value(domain)})"
    if project_name == default_project:
        return f"{host} && (Path(`/`) || PathRegexp(`^/[^/]+\\.[^/]+$`))"
    return f"{host} && PathPrefix({quote_rule_value('/' + project_name)})"


# --------------------------
# Service pieces
# --------------------------

def _command_for(record: ProjectRecord) -> Optional[List[str]]:
    runtime = record.runtime
    if runtime.command:
        return list(runtime.command)
    project_type = record.type
    if project_type is ProjectType.node:
        if "start" in getattr(runtime, "scripts", []):
            return ["npm", "start"]
        return ["node", runtime.entrypoint or "index.js"]
    if project_type is ProjectType.python:
        return ["python", runtime.entrypoint or "app.py"]
    if project_type is ProjectType.go:
        return ["go", "run", runtime.entrypoint or "main.go"]
    return None


def _environment_for(project_name: str, record: ProjectRecord) -> Dict[str, str]:
    env: Dict[str, str] = {
        "NODE_ENV": "production",
        "PORT": str(record.runtime.port or DEFAULT_PORT),
        "WORKSPACE_NAME": project_name,
    }
    env.update(record.runtime.environment)
    return env


def build_labels(
    domain: str,
    network: str,
    project_name: str,
    record: ProjectRecord,
    *,
    default_project: str = "www",
    cert_resolver: str = "letsencrypt",
    container_prefix: str = CONTAINER_PREFIX,
) -> List[str]:
    """
    Traefik labels: router rules for HTTP and HTTPS, TLS resolver, strip-prefix
    middleware for non-default projects, and the load balancer port.

    Raises:
        ValueError when a non-default project name cannot be a strip prefix.
    """
    is_default = project_name == default_project
    router = router_name(project_name, prefix=container_prefix)
    rule = routing_rule(domain, project_name, default_project=default_project)
    port = record.runtime.port or DEFAULT_PORT

    labels = [
        "traefik.enable=true",
        f"traefik.docker.network={network}",
        f"traefik.http.routers.{router}.rule={rule}",
        f"traefik.http.routers.{router}.entrypoints=web",
        f"traefik.http.routers.{router}-secure.rule={rule}",
        f"traefik.http.routers.{router}-secure.entrypoints=websecure",
        f"traefik.http.routers.{router}-secure.tls=true",
        f"traefik.http.routers.{router}-secure.tls.certresolver={cert_resolver}",
    ]
    if not is_default:
        labels.append(f"traefik.http.middlewares.{router}-strip.stripprefix.prefixes={strip_prefix_value(project_name)}")
        labels.append(f"traefik.http.routers.{router}.middlewares={router}-strip")
        labels.append(f"traefik.http.routers.{router}-secure.middlewares={router}-strip")
    labels.append(f"traefik.http.services.{router}.loadbalancer.server.port={port}")
    return labels


def build_service_spec(
    domain: str,
    network: str,
    project_name: str,
    record: ProjectRecord,
    *,
    default_project: str = "www",
    cert_resolver: str = "letsencrypt",
    container_prefix: str = CONTAINER_PREFIX,
) -> Dict[str, Any]:
    """
    Build the compose document for one project.

    The project directory is mounted read-only at /workspace; the ephemeral
    runtime images copy it and install dependencies inside the container.
    """
    runtime_image = runtime_image_for(record.type)
    service: Dict[str, Any] = {
        "container_name": f"{container_prefix}{project_name}",
        "networks": [network],
        "restart": "unless-stopped",
        "image": runtime_image.image,
        "environment": _environment_for(project_name, record),
        "volumes": [".:/workspace:ro"],
        "labels": build_labels(
            domain,
            network,
            project_name,
            record,
            default_project=default_project,
            cert_resolver=cert_resolver,
            container_prefix=container_prefix,
        ),
    }

    if record.has_dockerfile:
        service.pop("image")
        service["build"] = "."
    elif runtime_image.build_context:
        service["build"] = {"context": runtime_image.build_context, "dockerfile": "Dockerfile"}

    command = _command_for(record)
    if command:
        service["command"] = command

    if record.type is ProjectType.static:
        service["volumes"].append(".:/usr/share/nginx/html:ro")

    if runtime_image.healthcheck and not record.has_dockerfile:
        service["healthcheck"] = dict(runtime_image.healthcheck)

    return {
        "services": {router_name(project_name, prefix=""): service},
        "networks": {network: {"external": True}},
    }


# --------------------------
# Rendering and drift checks
# --------------------------

def _escape_dollars(value: Any) -> Any:
    if isinstance(value, str):
        return value.replace("$", "$$")
    if isinstance(value, list):
        return [_escape_dollars(v) for v in value]
    if isinstance(value, dict):
        return {k: _escape_dollars(v) for k, v in value.items()}
    return value


def render_compose_yaml(spec: Mapping[str, Any]) -> str:
    """
    Render a compose document. Compose interpolates `$`, so literal dollars in
    labels and commands are doubled.
    """
    return yaml.safe_dump(
        _escape_dollars(dict(spec)),
        default_flow_style=False,
        sort_keys=False,
        width=10_000,
    )


def _label_items(labels: Any) -> List[str]:
    if isinstance(labels, dict):
        return [f"{k}={v}" for k, v in labels.items()]
    if isinstance(labels, list):
        return [str(label) for label in labels]
    return []


def routing_rule_present(compose_doc: Any, expected_rule: str) -> bool:
    """
    True when any service in an existing compose document carries the expected
    routing rule. Compose `$$` escapes are undone before comparing.
    """
    if not isinstance(compose_doc, dict):
        return False
    services = compose_doc.get("services")
    if not isinstance(services, dict):
        return False
    for service in services.values():
        if not isinstance(service, dict):
            continue
        for label in _label_items(service.get("labels")):
            if expected_rule in label.replace("$$", "$"):
                return True
    return False


__all__ = [
    "DEFAULT_PORT",
    "RuntimeImage",
    "RUNTIME_IMAGES",
    "runtime_image_for",
    "router_name",
    "quote_rule_value",
    "strip_prefix_value",
    "routing_rule",
    "build_labels",
    "build_service_spec",
    "render_compose_yaml",
    "routing_rule_present",
]
