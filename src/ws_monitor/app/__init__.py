"""
WorkspaceMonitor (FastAPI): README-lite

Overview
- Watches a directory of independent "workspace" projects (one per top-level
  directory), detects each project's runtime type, and keeps a container running
  for every project that ships its own compose file, routed through Traefik.
- The registry lives in memory and is rebuilt from a full scan on every start.
- A small REST API exposes the registry, the generated compose documents, and
  container logs.

Key Design Points
- Idempotent: containers are started when missing and restarted only when the
  project's configuration fingerprint changed. Touching a file is not a change.
- Event driven with a safety net: filesystem events (debounced per project) and a
  periodic full scan feed the same reconciliation path.
- Docker is the source of truth for container state; it is re-queried before every action.
- Project files are never rewritten; missing routing rules are reported in the log.

Quickstart (local)
  1) From the repository root:
     $ python -m venv ./venv
     $ source ./venv/bin/activate
     $ pip install -e ".[test]"
  2) Start the monitor:
     $ WORKSPACE_PATH=/srv/workspaces DOMAIN=example.com ws-monitor serve
- Health check (unauthenticated):
  GET http://127.0.0.1:4000/health

Core Endpoints (summary)
  - GET  /api/status
    Response: { status, running, uptime_seconds, project_count, config }
  - GET  /api/projects
    Response: { projects: [ { name, type, path, port, url, container, state, managed, revision, last_error, updated_at } ] }
  - GET  /api/projects/{name}
  - GET  /api/projects/{name}/service
    Response: the compose document generated for the project
  - GET  /api/projects/{name}/logs?tail=100
    Response: { project, logs: [line, ...] }
  - POST /api/projects/{name}/reconcile
    Response: { project, queued }   (requires X-API-Key when MONITOR_API_KEY is set)

One-shot commands
  $ ws-monitor scan                       # detect every project, print JSON
  $ ws-monitor compose ./www [--write]    # print or write a generated docker-compose.yml

Environment Configuration (.env support)
- The monitor loads environment variables from ./.env at startup (does not override existing process env).
- WORKSPACE_PATH                     # Workspace root (default: "/workspaces")
- DOMAIN                             # Routing domain (default: "localhost")
- NETWORK                            # External Traefik network (default: "traefik-network")
- SCAN_INTERVAL                      # Full rescan period in seconds (default: 30; values > 1000 read as ms)
- WORKSPACE_EVENT_DEBOUNCE_SECONDS   # Per-project event debounce (default: 1.0)
- WORKSPACE_WRITE_STABILITY_SECONDS  # Quiet period before a written file counts (default: 2.0)
- WORKSPACE_WATCH_DEPTH              # Watched directory depth below the root (default: 2)
- WORKSPACE_WATCH_IGNORE             # Extra comma-separated ignore globs
- WORKSPACE_MONITOR_DIR              # The monitor's own directory, never scanned (default: "monitor")
- WORKSPACE_DEFAULT_PROJECT          # Project served at the domain root (default: "www")
- WORKSPACE_CONTAINER_PREFIX         # Container name prefix (default: "workspace-")
- WORKSPACE_CERT_RESOLVER            # Traefik certificate resolver (default: "letsencrypt")
- WORKSPACE_EVENT_QUEUE_SIZE         # Bounded event queue size (default: 1024)
- WORKSPACE_COMPOSE_COMMAND          # Compose CLI (default: "docker compose")
- WORKSPACE_COMPOSE_TIMEOUT_SECONDS  # Compose CLI timeout (default: 600)
- DOCKER_CLIENT_TIMEOUT              # Docker client timeout in seconds (default: 60)
- MONITOR_API_KEY                    # API key for mutating routes (unset: auth disabled)
- MONITOR_API_KEY_HEADER             # Header name, default "X-API-Key"
- WEB_HOST / WEB_PORT                # API bind address (default: 0.0.0.0:4000)
- LOG_LEVEL                          # Console and library log level (default: "INFO")
- WORKSPACE_MONITOR_LOG_FILE         # Log file (default: <workspace>/<monitor dir>/logs/ws-monitor.log)

Runtime Notes
- Docker access: the process must be able to talk to the Docker daemon and run `docker compose`.
- A directory containing a `.nomonitor` file is ignored.
- Projects without a compose file are registered but their containers are not managed.

Version
- Matches pyproject: 0.1.0
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
