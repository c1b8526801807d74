"""Command-line entry points for ws_monitor."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import uvicorn

from ws_monitor.app.config import MonitorConfig
from ws_monitor.app.errors import ConfigurationError, DetectionError
from ws_monitor.app.logging_setup import resolve_level, setup_logging
from ws_monitor.app.main import create_app
from ws_monitor.app.workspaces.compose import build_service_spec, render_compose_yaml
from ws_monitor.app.workspaces.core import is_candidate_name
from ws_monitor.app.workspaces.detector import ProjectDetector

logger = logging.getLogger("workspace_monitor.cli")

EXIT_CONFIG_ERROR = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ws-monitor",
        description="Detect workspace projects and keep their containers running behind Traefik.",
    )
    parser.add_argument("--env-file", default=None, help="Optional .env file loaded before reading settings")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the monitor and its status API (default)")
    serve.add_argument("--host", default=None, help="Bind host (default: WEB_HOST)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: WEB_PORT)")

    sub.add_parser("scan", help="Detect every project once and print the results as JSON")

    compose = sub.add_parser("compose", help="Print the generated compose document for one project")
    compose.add_argument("project_dir", help="Project directory")
    compose.add_argument("--write", action="store_true", help="Write docker-compose.yml into the project (never overwrites)")
    return parser


def _load_settings(env_file: Optional[str], *, require_root: bool = True) -> MonitorConfig:
    settings = MonitorConfig.from_env(dotenv=True, dotenv_path=env_file)
    if require_root:
        settings.validate()
    return settings


def _serve(settings: MonitorConfig, host: Optional[str], port: Optional[int]) -> int:
    log_path = setup_logging(settings)
    logger.info("Workspace monitor logging to file: %s", log_path)
    app = create_app(settings)
    uvicorn.run(
        app,
        host=host or settings.web_host,
        port=port or settings.web_port,
        log_level=logging.getLevelName(resolve_level(settings.log_level)).lower(),
    )
    return 0


def _scan(settings: MonitorConfig) -> int:
    detector = ProjectDetector()
    root = settings.workspace_path.resolve()
    results = []
    for entry in sorted(root.iterdir(), key=lambda p: p.name):
        if not entry.is_dir() or not is_candidate_name(entry.name, settings.monitor_dir_name):
            continue
        try:
            record = detector.detect(entry)
        except DetectionError as e:
            results.append({"name": entry.name, "error": str(e)})
            continue
        if record is not None:
            results.append(record.model_dump(mode="json"))
    print(json.dumps({"workspace_path": str(root), "projects": results}, indent=2))
    return 0


def _compose(settings: MonitorConfig, project_dir: str, write: bool) -> int:
    path = Path(project_dir).expanduser().resolve()
    try:
        record = ProjectDetector().detect(path)
    except DetectionError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    if record is None:
        print(f"error: not a directory: {path}", file=sys.stderr)
        return 1

    try:
        spec = build_service_spec(
            settings.domain,
            settings.network,
            record.name,
            record,
            default_project=settings.default_project,
            cert_resolver=settings.cert_resolver,
            container_prefix=settings.container_name_prefix,
        )
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    text = render_compose_yaml(spec)
    if not write:
        sys.stdout.write(text)
        return 0

    target = path / "docker-compose.yml"
    if record.container_spec is not None or target.exists():
        print(f"error: {path / (record.container_spec or target.name)} already exists; not overwriting", file=sys.stderr)
        return 1
    target.write_text(text, encoding="utf-8")
    print(f"wrote {target}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    command = args.command or "serve"

    try:
        settings = _load_settings(args.env_file, require_root=command != "compose")
    except ConfigurationError as e:
        print(f"configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    if command == "scan":
        return _scan(settings)
    if command == "compose":
        return _compose(settings, args.project_dir, args.write)
    return _serve(settings, getattr(args, "host", None), getattr(args, "port", None))


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":  # pragma: no cover
    run()
