import json
from pathlib import Path

import pytest
import yaml

from ws_monitor import cli

from support import write_project


@pytest.fixture()
def workspace(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.setenv("WORKSPACE_PATH", str(tmp_path))
    monkeypatch.setenv("DOMAIN", "example.com")
    monkeypatch.setenv("NETWORK", "traefik-network")
    return tmp_path


@pytest.mark.unit
def test_scan_prints_projects(workspace: Path, capsys) -> None:
    write_project(workspace, "www", {"index.html": ""})
    write_project(workspace, "api", {"package.json": {"scripts": {"start": "node ."}}})
    write_project(workspace, "monitor", {"package.json": {}})

    assert cli.main(["scan"]) == 0

    out = json.loads(capsys.readouterr().out)
    assert [(p["name"], p["type"]) for p in out["projects"]] == [("api", "node"), ("www", "static")]


@pytest.mark.unit
def test_scan_survives_undecodable_project_env(workspace: Path, capsys) -> None:
    api = write_project(workspace, "api", {"package.json": {}})
    (api / ".env").write_bytes(b"PORT=\xff\xfe\n")
    write_project(workspace, "www", {"index.html": ""})

    assert cli.main(["scan"]) == 0

    out = json.loads(capsys.readouterr().out)
    assert [(p["name"], p["type"]) for p in out["projects"]] == [("api", "node"), ("www", "static")]
    assert out["projects"][0]["runtime"]["port"] == 3000


@pytest.mark.unit
def test_invalid_configuration_exits_with_status_2(workspace: Path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("WORKSPACE_PATH", str(workspace / "missing"))

    assert cli.main(["scan"]) == cli.EXIT_CONFIG_ERROR
    assert "configuration error" in capsys.readouterr().err


@pytest.mark.unit
def test_compose_prints_generated_document(workspace: Path, capsys) -> None:
    project = write_project(workspace, "blog", {"index.html": ""})

    assert cli.main(["compose", str(project)]) == 0

    doc = yaml.safe_load(capsys.readouterr().out)
    assert doc["services"]["blog"]["image"] == "nginx:alpine"
    assert not (project / "docker-compose.yml").exists()


@pytest.mark.unit
def test_compose_write_never_overwrites(workspace: Path, capsys) -> None:
    project = write_project(workspace, "blog", {"index.html": ""})

    assert cli.main(["compose", str(project), "--write"]) == 0
    written = (project / "docker-compose.yml").read_text()
    assert "PathPrefix(`/blog`)" in written

    assert cli.main(["compose", str(project), "--write"]) == 1
    assert (project / "docker-compose.yml").read_text() == written
    assert "not overwriting" in capsys.readouterr().err


@pytest.mark.unit
def test_compose_rejects_project_name_with_comma(workspace: Path, capsys) -> None:
    project = write_project(workspace, "a,b", {"index.html": ""})

    assert cli.main(["compose", str(project), "--write"]) == 1
    assert "comma" in capsys.readouterr().err
    assert not (project / "docker-compose.yml").exists()
