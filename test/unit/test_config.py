"""Unit tests for layered settings loading."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

import pipeline_crm.config as config_module
from pipeline_crm.config import load_settings


@pytest.fixture()
def isolated(tmp_path, monkeypatch):
    """Point user and project config at a temporary directory."""
    user_config = tmp_path / "home" / "config.yml"
    project = tmp_path / "project"
    (project / ".pipeline").mkdir(parents=True)
    user_config.parent.mkdir()
    monkeypatch.setattr(config_module, "_USER_CONFIG_PATHS", [user_config])
    monkeypatch.chdir(project)
    for key in ("PIPELINE_DB", "PIPELINE_MODEL", "PIPELINE_AUTO_APPROVE", "PIPELINE_STAGES"):
        monkeypatch.delenv(key, raising=False)
    return user_config, project / ".pipeline" / "config.yml"


def test_defaults(isolated) -> None:
    settings = load_settings()

    assert settings.pipeline.stages[0] == "lead"
    assert settings.agent.auto_approve is False
    assert settings.scanner.stale_days == 14
    assert settings.email.provider == "none"


def test_project_yaml_overrides_user_yaml(isolated) -> None:
    user_config, project_config = isolated
    user_config.write_text("agent:\n  model: user-model\n  max_turns: 5\n", encoding="utf-8")
    project_config.write_text("agent:\n  model: project-model\n", encoding="utf-8")

    settings = load_settings()

    assert settings.agent.model == "project-model"
    assert settings.agent.max_turns == 5


def test_environment_overrides_yaml(isolated, monkeypatch) -> None:
    _, project_config = isolated
    project_config.write_text("agent:\n  auto_approve: false\n", encoding="utf-8")
    monkeypatch.setenv("PIPELINE_AUTO_APPROVE", "yes")
    monkeypatch.setenv("PIPELINE_DB", "/tmp/crm.db")
    monkeypatch.setenv("PIPELINE_STAGES", '["new", "won"]')

    settings = load_settings()

    assert settings.agent.auto_approve is True
    assert settings.database.path == "/tmp/crm.db"
    assert settings.pipeline.stages == ["new", "won"]


def test_overrides_win(isolated, monkeypatch) -> None:
    monkeypatch.setenv("PIPELINE_DB", "/tmp/env.db")

    settings = load_settings(database={"path": ":memory:"})

    assert settings.database.url == "sqlite://"


def test_invalid_values_are_rejected(isolated) -> None:
    with pytest.raises(ValidationError):
        load_settings(pipeline={"stages": [" "]})
    with pytest.raises(ValidationError):
        load_settings(email={"provider": "carrier-pigeon"})


def test_non_mapping_yaml_raises(isolated) -> None:
    _, project_config = isolated
    project_config.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_settings()
