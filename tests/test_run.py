"""Tests for the run.py entrypoint helpers."""

from __future__ import annotations

from types import SimpleNamespace

from rich.console import Console
from typer.testing import CliRunner

import run
from audioscholar.config import AppConfig
from audioscholar.services.storage import AudioScholarRepository
from audioscholar.ui.overview import OverviewUI


def test_serve_builds_uvicorn_server(monkeypatch, tmp_path):
    captured = {}

    monkeypatch.setattr(run, "initialize_app", lambda: SimpleNamespace(storage_root=tmp_path))
    monkeypatch.setattr(run, "_prepare_logging", lambda storage_root: None)
    monkeypatch.setattr(run, "AudioScholarRepository", lambda config: object())

    dummy_app = SimpleNamespace(state=SimpleNamespace())

    def fake_create_app(repository, config, root_path):
        captured["root_path"] = root_path
        return dummy_app

    monkeypatch.setattr(run, "create_app", fake_create_app)

    class DummyConfig:
        def __init__(self, app, **kwargs):
            captured["app"] = app
            captured["config_kwargs"] = kwargs

    class DummyServer:
        def __init__(self, config):
            captured["server_instance"] = self

        def run(self):
            captured["server_run"] = True

    monkeypatch.setattr(run.uvicorn, "Config", DummyConfig)
    monkeypatch.setattr(run.uvicorn, "Server", DummyServer)

    run.serve(host="0.0.0.0", port=9000, root_path="api/")

    assert captured["root_path"] == "/api"
    assert captured["config_kwargs"]["root_path"] == "/api"
    assert captured["config_kwargs"]["port"] == 9000
    assert captured["server_run"] is True
    assert dummy_app.state.server is captured["server_instance"]


def test_grant_role_adds_role(monkeypatch, temp_config: AppConfig, repository: AudioScholarRepository):
    repository.add_user("u1", "ada@example.com")
    monkeypatch.setattr(run, "initialize_app", lambda: temp_config)
    monkeypatch.setattr(run, "_prepare_logging", lambda storage_root: None)

    runner = CliRunner()
    result = runner.invoke(run.cli, ["grant-role", "ada@example.com"])

    assert result.exit_code == 0, result.output
    assert "Granted ROLE_ADMIN" in result.output
    assert repository.get_user("u1").roles == ["ROLE_USER", "ROLE_ADMIN"]

    again = runner.invoke(run.cli, ["grant-role", "ada@example.com"])
    assert "already has ROLE_ADMIN" in again.output

    missing = runner.invoke(run.cli, ["grant-role", "nobody@example.com"])
    assert missing.exit_code == 1


def test_overview_renders_recordings(monkeypatch, temp_config: AppConfig, repository: AudioScholarRepository):
    repository.add_user("u1", "ada@example.com")
    repository.add_recording(
        "r1", "u1", file_name="a.mp3", audio_path="a.mp3", title="Thermodynamics", status="COMPLETED"
    )
    monkeypatch.setattr(run, "initialize_app", lambda: temp_config)
    monkeypatch.setattr(run, "_prepare_logging", lambda storage_root: None)

    result = CliRunner().invoke(run.cli, ["overview"])
    assert result.exit_code == 0, result.output

    console = Console(record=True, width=200)
    OverviewUI(repository, console=console).run()
    text = console.export_text()
    assert "Thermodynamics" in text
    assert "Completed" in text
    assert "Recordings" in text
