import yaml
import pytest

from ws_monitor.app.models import (
    GenericRuntime,
    NodeRuntime,
    ProjectRecord,
    ProjectType,
    StaticRuntime,
)
from ws_monitor.app.workspaces.compose import (
    RUNTIME_IMAGES,
    build_labels,
    build_service_spec,
    quote_rule_value,
    render_compose_yaml,
    router_name,
    routing_rule,
    routing_rule_present,
    runtime_image_for,
    strip_prefix_value,
)

WWW_RULE = r"Host(`example.com`) && (Path(`/`) || PathRegexp(`^/[^/]+\.[^/]+$`))"


def _record(name: str, runtime, **kwargs) -> ProjectRecord:
    return ProjectRecord(name=name, path=f"/workspaces/{name}", runtime=runtime, revision="r1", **kwargs)


@pytest.mark.unit
def test_default_project_rule() -> None:
    assert routing_rule("example.com", "www") == WWW_RULE


@pytest.mark.unit
def test_other_project_rule_and_strip_middleware() -> None:
    record = _record("blog", StaticRuntime())

    labels = build_labels("example.com", "traefik-network", "blog", record)

    assert routing_rule("example.com", "blog") == "Host(`example.com`) && PathPrefix(`/blog`)"
    assert "traefik.http.routers.workspace-blog.rule=Host(`example.com`) && PathPrefix(`/blog`)" in labels
    assert "traefik.http.middlewares.workspace-blog-strip.stripprefix.prefixes=/blog" in labels
    assert "traefik.http.routers.workspace-blog.middlewares=workspace-blog-strip" in labels
    assert "traefik.http.routers.workspace-blog-secure.middlewares=workspace-blog-strip" in labels


@pytest.mark.unit
def test_default_project_has_no_strip_middleware() -> None:
    labels = build_labels("example.com", "traefik-network", "www", _record("www", StaticRuntime()))

    assert not [label for label in labels if "middlewares" in label]
    assert f"traefik.http.routers.workspace-www-secure.rule={WWW_RULE}" in labels
    assert "traefik.http.routers.workspace-www-secure.tls.certresolver=letsencrypt" in labels
    assert "traefik.http.services.workspace-www.loadbalancer.server.port=80" in labels


@pytest.mark.unit
def test_rule_values_with_backticks_are_double_quoted() -> None:
    assert quote_rule_value("example.com") == "`example.com`"
    assert quote_rule_value("we`ird") == '"we`ird"'
    assert "PathPrefix(\"/we`ird\")" in routing_rule("example.com", "we`ird")


@pytest.mark.unit
def test_router_names_are_sanitized() -> None:
    assert router_name("My_App.v2") == "workspace-my-app-v2"
    assert router_name("___") == "workspace-project"


@pytest.mark.unit
def test_every_project_type_has_an_image() -> None:
    assert set(RUNTIME_IMAGES) == set(ProjectType)
    assert runtime_image_for("cobol") == RUNTIME_IMAGES[ProjectType.generic]
    assert runtime_image_for(ProjectType.static).image == "nginx:alpine"


@pytest.mark.unit
def test_node_service_with_start_script() -> None:
    record = _record("api", NodeRuntime(entrypoint="index.js", scripts=["start"]))

    spec = build_service_spec("example.com", "traefik-network", "api", record)

    service = spec["services"]["api"]
    assert spec["networks"] == {"traefik-network": {"external": True}}
    assert service["container_name"] == "workspace-api"
    assert service["image"] == "workspace-node-ephemeral:latest"
    assert service["build"] == {"context": "./docker/node-ephemeral", "dockerfile": "Dockerfile"}
    assert service["command"] == ["npm", "start"]
    assert service["restart"] == "unless-stopped"
    assert service["networks"] == ["traefik-network"]
    assert service["environment"] == {"NODE_ENV": "production", "PORT": "3000", "WORKSPACE_NAME": "api"}
    assert service["healthcheck"]["test"] == ["CMD", "test", "-f", "/app/.container-ready"]


@pytest.mark.unit
def test_node_fallback_command_uses_entrypoint() -> None:
    record = _record("api", NodeRuntime(entrypoint="server.js"))

    service = build_service_spec("example.com", "net", "api", record)["services"]["api"]

    assert service["command"] == ["node", "server.js"]


@pytest.mark.unit
def test_dockerfile_replaces_image_with_local_build() -> None:
    record = _record("api", NodeRuntime(scripts=["start"]), has_dockerfile=True)

    service = build_service_spec("example.com", "net", "api", record)["services"]["api"]

    assert "image" not in service
    assert service["build"] == "."
    assert "healthcheck" not in service


@pytest.mark.unit
def test_static_service_mounts_nginx_root() -> None:
    service = build_service_spec("example.com", "net", "www", _record("www", StaticRuntime()))["services"]["www"]

    assert service["image"] == "nginx:alpine"
    assert "build" not in service
    assert ".:/usr/share/nginx/html:ro" in service["volumes"]
    assert "command" not in service


@pytest.mark.unit
def test_environment_overrides_are_merged() -> None:
    record = _record("svc", GenericRuntime(port=9000, environment={"PORT": "9000", "FEATURE": "on"}))

    env = build_service_spec("example.com", "net", "svc", record)["services"]["svc"]["environment"]

    assert env["PORT"] == "9000"
    assert env["FEATURE"] == "on"
    assert env["WORKSPACE_NAME"] == "svc"


@pytest.mark.unit
def test_render_escapes_dollars_and_rule_survives_round_trip() -> None:
    record = _record("www", StaticRuntime(environment={"GREETING": "cost $5"}))
    spec = build_service_spec("example.com", "net", "www", record)

    text = render_compose_yaml(spec)
    doc = yaml.safe_load(text)

    assert doc["services"]["www"]["environment"]["GREETING"] == "cost $$5"
    assert any(label.endswith("$$`))") for label in doc["services"]["www"]["labels"])
    assert routing_rule_present(doc, WWW_RULE)
    assert not routing_rule_present(doc, routing_rule("other.org", "www"))


@pytest.mark.unit
def test_routing_rule_present_accepts_mapping_labels() -> None:
    rule = routing_rule("example.com", "blog")
    doc = {"services": {"blog": {"labels": {"traefik.http.routers.blog.rule": rule}}}}

    assert routing_rule_present(doc, rule)
    assert not routing_rule_present({"services": {"blog": {}}}, rule)
    assert not routing_rule_present("not a mapping", rule)


@pytest.mark.unit
def test_container_prefix_names_every_traefik_identifier() -> None:
    record = _record("blog", StaticRuntime())

    service = build_service_spec("example.com", "net", "blog", record, container_prefix="ws-")["services"]["blog"]

    assert service["container_name"] == "ws-blog"
    labels = service["labels"]
    assert "traefik.http.routers.ws-blog.rule=Host(`example.com`) && PathPrefix(`/blog`)" in labels
    assert "traefik.http.middlewares.ws-blog-strip.stripprefix.prefixes=/blog" in labels
    assert "traefik.http.services.ws-blog.loadbalancer.server.port=80" in labels
    assert not [label for label in labels if "workspace-" in label]


@pytest.mark.unit
def test_comma_in_project_name_is_rejected_as_strip_prefix() -> None:
    record = _record("a,b", StaticRuntime())

    with pytest.raises(ValueError, match="comma"):
        build_labels("example.com", "net", "a,b", record)
    assert strip_prefix_value("blog") == "/blog"


@pytest.mark.unit
def test_comma_is_allowed_for_the_default_project() -> None:
    labels = build_labels("example.com", "net", "a,b", _record("a,b", StaticRuntime()), default_project="a,b")

    assert not [label for label in labels if "stripprefix" in label]
