"""Configuration management for the pipeline CRM automation layer."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PIPELINE_HOME = Path("~/.pipeline").expanduser()
_USER_CONFIG_PATHS = [PIPELINE_HOME / "config.yml"]
_PROJECT_CONFIG_NAME = Path(".pipeline") / "config.yml"


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML mapping from disk, returning an empty mapping if missing."""
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")
    return data


def _deep_merge(target: dict[str, Any], source: dict[str, Any]) -> dict[str, Any]:
    """Merge nested mappings from source into target in place."""
    for key, value in source.items():
        existing = target.get(key)
        if isinstance(value, dict) and isinstance(existing, dict):
            _deep_merge(existing, value)
        else:
            target[key] = value
    return target


def _yaml_settings_source(paths: list[Path]):
    """Create a Pydantic settings source for a list of YAML paths."""

    def source() -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for path in paths:
            _deep_merge(merged, _load_yaml(path))
        return merged

    return source


def _set_nested_value(target: dict[str, Any], path: str, value: Any) -> None:
    """Set a dotted-path value on a nested mapping, creating containers."""
    parts = path.split(".")
    cursor = target
    for key in parts[:-1]:
        node = cursor.get(key)
        if not isinstance(node, dict):
            node = {}
            cursor[key] = node
        cursor = node
    cursor[parts[-1]] = value


def _parse_env_value(raw: str, kind: str) -> Any:
    """Parse an environment value into the requested primitive type."""
    if kind == "int":
        return int(raw)
    if kind == "bool":
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    if kind == "json":
        return json.loads(raw)
    return raw


def _env_settings_source():
    """Create a settings source that maps environment variables to config keys."""
    mapping = {
        "PIPELINE_DB": ("database.path", "str"),
        "ANTHROPIC_API_KEY": ("anthropic_api_key", "str"),
        "PIPELINE_MODEL": ("agent.model", "str"),
        "PIPELINE_AUTO_APPROVE": ("agent.auto_approve", "bool"),
        "PIPELINE_AGENTS_DIR": ("agent.agents_dir", "str"),
        "PIPELINE_LOG_LEVEL": ("log_level", "str"),
        "PIPELINE_MCP_URL": ("integrations.mcp_url", "str"),
        "PIPELINE_MCP_API_KEY": ("integrations.api_key", "str"),
        "PIPELINE_EMAIL_ENDPOINT": ("email.endpoint_url", "str"),
        "PIPELINE_EMAIL_API_KEY": ("email.api_key", "str"),
        "PIPELINE_STAGES": ("pipeline.stages", "json"),
    }

    def source() -> dict[str, Any]:
        data: dict[str, Any] = {}
        for env_key, (path, kind) in mapping.items():
            raw = os.environ.get(env_key)
            if raw is None:
                continue
            _set_nested_value(data, path, _parse_env_value(raw, kind))
        return data

    return source


class DatabaseConfig(BaseModel):
    """SQLite database location."""

    path: str = str(PIPELINE_HOME / "pipeline.db")

    @property
    def url(self) -> str:
        """Return the SQLAlchemy URL for the configured path."""
        if self.path == ":memory:":
            return "sqlite://"
        return f"sqlite:///{Path(self.path).expanduser()}"


class AgentConfig(BaseModel):
    """Language model and agent loop settings."""

    model: str = "anthropic/claude-sonnet-4-6"
    auto_approve: bool = False
    max_tokens: int = 4096
    max_turns: int = 25
    temperature: float = 0.2
    timeout: int = 600
    agents_dir: str = str(PIPELINE_HOME / "agents")

    @field_validator("max_tokens", "max_turns", "timeout")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        """Ensure loop and token limits are positive."""
        if value < 1:
            raise ValueError("agent limits must be >= 1.")
        return value


class PipelineStagesConfig(BaseModel):
    """Deal pipeline stage vocabulary."""

    stages: list[str] = Field(
        default_factory=lambda: [
            "lead",
            "qualified",
            "proposal",
            "negotiation",
            "closed_won",
            "closed_lost",
        ]
    )
    currency: str = "USD"

    @field_validator("stages")
    @classmethod
    def validate_stages(cls, value: list[str]) -> list[str]:
        """Ensure at least one stage is configured."""
        cleaned = [stage.strip() for stage in value if stage.strip()]
        if not cleaned:
            raise ValueError("pipeline.stages must contain at least one stage.")
        return cleaned


class EmailConfig(BaseModel):
    """Outbound email integration settings."""

    provider: str = "none"
    from_address: str = ""
    endpoint_url: str | None = None
    api_key: str | None = None
    timeout: float = 30.0

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, value: str) -> str:
        """Ensure the email provider is supported."""
        normalized = value.strip().lower()
        if normalized not in {"none", "http"}:
            raise ValueError("email.provider must be none or http.")
        return normalized


class IntegrationsConfig(BaseModel):
    """External integration tool server settings."""

    enabled: bool = False
    mcp_url: str | None = None
    api_key: str | None = None
    user_id: str = "pipeline-crm-user"

    @property
    def is_configured(self) -> bool:
        """Return True when an external tool server should be connected."""
        return self.enabled and bool(self.mcp_url)


class ScannerConfig(BaseModel):
    """Time-based event scanner thresholds."""

    stale_days: int = 14

    @field_validator("stale_days")
    @classmethod
    def validate_stale_days(cls, value: int) -> int:
        """Ensure the staleness threshold is positive."""
        if value < 1:
            raise ValueError("scanner.stale_days must be >= 1.")
        return value


class AuditConfig(BaseModel):
    """Audit log retention settings."""

    max_rows: int = 500

    @field_validator("max_rows")
    @classmethod
    def validate_max_rows(cls, value: int) -> int:
        """Ensure the audit cap is positive."""
        if value < 1:
            raise ValueError("audit.max_rows must be >= 1.")
        return value


class Settings(BaseSettings):
    """Application settings loaded from environment variables and YAML files."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Layer settings sources in descending order of precedence."""
        return (
            init_settings,
            _env_settings_source(),
            _yaml_settings_source([Path.cwd() / _PROJECT_CONFIG_NAME]),
            _yaml_settings_source(_USER_CONFIG_PATHS),
        )

    log_level: str = "WARNING"
    anthropic_api_key: str | None = None

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    pipeline: PipelineStagesConfig = Field(default_factory=PipelineStagesConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    integrations: IntegrationsConfig = Field(default_factory=IntegrationsConfig)
    scanner: ScannerConfig = Field(default_factory=ScannerConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)


def load_settings(**overrides: Any) -> Settings:
    """Build a fresh settings object, applying keyword overrides first."""
    return Settings(**overrides)
