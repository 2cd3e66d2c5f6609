"""Application configuration management.

Handles loading and validating configuration from multiple sources:
    - TOML/JSON config files
    - Environment variables (TW_* prefix)
    - Default values

Key components:
    - AppConfig: Main configuration model
    - load_config(): Safe config loading with fallback
    - ConfigLoadResult: Metadata about config source
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from contextlib import nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from unittest.mock import patch

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from taskweave.agents.types import AgentType
from taskweave.core.result import ConfigurationError

CONFIG_ENV_VAR = "TASKWEAVE_CONFIG"


# -----------------------------------------------------------------------------
# Sub-configuration Models
# -----------------------------------------------------------------------------


class ExecutorSettings(BaseModel):
    """Parallel executor defaults."""

    max_parallel: int = Field(default=3, description="Maximum agents running at once.")
    max_turns: int | None = Field(default=None, description="Optional turn cap per agent.")
    timeout: float = Field(
        default=30 * 60.0, description="Per-agent timeout in seconds, enforced by the runtime."
    )
    stop_on_error: bool = Field(
        default=False, description="Stop dispatching new work after the first failed task."
    )
    dangerously_skip_permissions: bool = Field(
        default=False, description="Run agents autonomously without confirmation prompts."
    )
    default_agent_type: AgentType = Field(
        default=AgentType.IMPLEMENTER,
        description="Agent type used when a task does not name one.",
    )

    @field_validator("max_parallel")
    @classmethod
    def clamp_max_parallel(cls, v: int) -> int:
        return max(1, v)


class HealingSettings(BaseModel):
    """Self-healing engine defaults."""

    enabled: bool = Field(default=True, description="Enable automatic failure repair.")
    max_attempts: int = Field(default=3, description="Fix attempts allowed per failure key.")
    analysis_model: str = Field(default="claude", description="Model hint for error analysis.")
    fix_model: str = Field(default="glm", description="Model hint for fix planning and apply.")
    fix_timeout: float = Field(default=180.0, description="Seconds allowed for plan/apply agents.")
    analysis_timeout: float = Field(default=60.0, description="Seconds allowed for analysis.")
    poll_interval: float = Field(default=0.5, description="Seconds between agent status polls.")
    escalate_after_max_attempts: bool = Field(
        default=True, description="Signal escalation to the caller once attempts are exhausted."
    )


class AgentSettings(BaseModel):
    """How the command-line agent runtime launches an agent."""

    command: list[str] = Field(
        default_factory=lambda: ["claude", "-p"],
        description="Agent CLI invocation; the prompt is appended as the last argument.",
    )
    model_flag: str | None = Field(default="--model", description="Flag for model overrides.")
    max_turns_flag: str | None = Field(default="--max-turns", description="Flag for turn caps.")
    skip_permissions_flag: str | None = Field(
        default="--dangerously-skip-permissions",
        description="Flag passed when agents run autonomously.",
    )
    env: dict[str, str] = Field(
        default_factory=dict, description="Extra environment variables for agent processes."
    )


@dataclass
class ConfigLoadResult:
    path: Path
    file_loaded: bool
    env_overrides: set[str]
    error: str | None = None


class AppConfig(BaseSettings):
    """Application-wide configuration with nested sub-configs."""

    model_config = SettingsConfigDict(
        env_prefix="TW_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    executor: ExecutorSettings = Field(default_factory=ExecutorSettings)
    healing: HealingSettings = Field(default_factory=HealingSettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    log_level: str = Field(default="INFO", description="Log level for tw output.")
    log_levels: dict[str, str] = Field(
        default_factory=dict,
        description='Per-logger overrides, e.g. {"taskweave.healing": "DEBUG"}.',
    )
    workspace_root: Path = Field(
        default_factory=Path.cwd, description="Working directory handed to agents."
    )

    @field_validator("workspace_root", mode="after")
    @classmethod
    def expand_workspace_root(cls, v: Path) -> Path:
        return v.expanduser()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
    ]:
        # Ensure environment variables override config file entries.
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)


def _resolve_config_path(config_path: Path | None, env_vars: Mapping[str, str]) -> Path:
    candidate = config_path or env_vars.get(CONFIG_ENV_VAR) or (Path.home() / ".taskweave.toml")
    return Path(candidate).expanduser()


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}

    raw = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    parser = json.loads if suffix == ".json" else tomllib.loads

    try:
        data = parser(raw)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigurationError(f"Syntax error in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config root in {path} must be a mapping.")

    return data


def _detect_env_overrides(env_vars: Mapping[str, str]) -> set[str]:
    """Detect which fields are overridden by environment variables.

    For nested models, detects vars like TW_EXECUTOR__MAX_PARALLEL.
    """
    prefix = AppConfig.model_config.get("env_prefix", "")
    delimiter = AppConfig.model_config.get("env_nested_delimiter", "__")
    overrides: set[str] = set()

    nested_models: dict[str, type[BaseModel]] = {
        "executor": ExecutorSettings,
        "healing": HealingSettings,
        "agent": AgentSettings,
    }

    for group_name, model_cls in nested_models.items():
        for field in model_cls.model_fields:
            env_key = f"{prefix}{group_name}{delimiter}{field}".upper()
            if env_key in env_vars:
                overrides.add(f"{group_name}.{field}")

    for field in ("log_level", "log_levels", "workspace_root"):
        if f"{prefix}{field}".upper() in env_vars:
            overrides.add(field)

    return overrides


def load_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> tuple[AppConfig, ConfigLoadResult]:
    """
    Load configuration with Safe Mode fallback.
    If the file is invalid, returns default config + error message.
    """
    env_vars: Mapping[str, str] = os.environ if env is None else {**os.environ, **env}
    resolved_path = _resolve_config_path(config_path, env_vars)
    env_overrides = _detect_env_overrides(env_vars)

    error: str | None = None
    file_loaded = False
    file_data: dict[str, Any] = {}

    try:
        file_data = _read_config_file(resolved_path)
        file_loaded = resolved_path.exists()
    except ConfigurationError as exc:
        error = str(exc)

    context_manager = (
        patch.dict(os.environ, env_vars, clear=False) if env is not None else nullcontext()
    )

    try:
        with context_manager:
            config = AppConfig(**file_data)
    except ValidationError as exc:
        error = str(exc)
        config = AppConfig()

    load_result = ConfigLoadResult(
        path=resolved_path,
        file_loaded=file_loaded,
        env_overrides=env_overrides,
        error=error,
    )

    return config, load_result


__all__ = [
    "AgentSettings",
    "AppConfig",
    "ConfigLoadResult",
    "ExecutorSettings",
    "HealingSettings",
    "load_config",
]
