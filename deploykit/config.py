"""DeploymentConfig — environment chain and per-environment policies.

Configuration is read from ``deploykit.yaml`` (or ``.yml`` / ``.json``)::

    project: billing-service
    artifact_store: .deploykit/artifacts
    environments:
      - name: dev
        target: {type: local, path: /srv/billing/dev}
      - name: staging
        requires_approval: true
        health_checks:
          - {name: ping, type: http, url: "http://staging.internal/health"}
      - name: production
        requires_approval: true
        required_approvals: 2
        approvers: [alice, bob, carol]
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from deploykit.errors import ConfigError, UnknownEnvironmentError

logger = logging.getLogger(__name__)

# Semantic version, optional pre-release and build metadata
DEFAULT_VERSION_PATTERN = (
    r"^\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?$"
)

DEFAULT_CONFIG_NAMES = ("deploykit.yaml", "deploykit.yml", "deploykit.json")


class HealthCheckSpec(BaseModel):
    """Declarative health check run after a deployment is applied."""

    name: str = ""
    type: str = "http"
    """Check type: 'http' or 'command'."""

    url: str = ""
    expected_status: int = 200
    command: str = ""
    timeout: float = 5.0

    @model_validator(mode="after")
    def _check_fields(self) -> HealthCheckSpec:
        if self.type not in ("http", "command"):
            raise ValueError(f"unsupported health check type: {self.type}")
        if self.type == "http" and not self.url:
            raise ValueError("http health check requires 'url'")
        if self.type == "command" and not self.command:
            raise ValueError("command health check requires 'command'")
        if not self.name:
            self.name = self.url or self.command
        return self


class TargetSpec(BaseModel):
    """Where and how an environment is deployed."""

    type: str = "local"
    """Target type: 'local' or 'command'."""

    path: str = ""
    apply: str = ""
    pre_check: str = ""
    current: str = ""
    env: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_fields(self) -> TargetSpec:
        if self.type not in ("local", "command"):
            raise ValueError(f"unsupported target type: {self.type}")
        if self.type == "local" and not self.path:
            raise ValueError("local target requires 'path'")
        if self.type == "command" and not self.apply:
            raise ValueError("command target requires 'apply'")
        return self


class DeployWindow(BaseModel):
    """Weekly time window (UTC) during which deployments are allowed."""

    days: list[int] = Field(default_factory=lambda: list(range(7)))
    """Weekdays, 0 = Monday .. 6 = Sunday."""

    start: str = "00:00"
    end: str = "23:59"

    @field_validator("days")
    @classmethod
    def _check_days(cls, value: list[int]) -> list[int]:
        if any(d < 0 or d > 6 for d in value):
            raise ValueError("days must be between 0 (Monday) and 6 (Sunday)")
        return value

    @field_validator("start", "end")
    @classmethod
    def _check_time(cls, value: str) -> str:
        try:
            hours, minutes = value.split(":")
            h, m = int(hours), int(minutes)
        except ValueError as exc:
            raise ValueError(f"invalid time '{value}', expected HH:MM") from exc
        if not (0 <= h <= 23 and 0 <= m <= 59):
            raise ValueError(f"invalid time '{value}', expected HH:MM")
        return f"{h:02d}:{m:02d}"


class EnvironmentPolicy(BaseModel):
    """Policy governing deployments into one environment."""

    name: str
    requires_approval: bool = False
    required_approvals: int = Field(default=1, ge=1)
    approvers: list[str] = Field(default_factory=list)
    allow_self_approval: bool = False
    allowed_deployers: list[str] = Field(default_factory=list)
    frozen: bool = False
    version_pattern: str = DEFAULT_VERSION_PATTERN
    deploy_windows: list[DeployWindow] = Field(default_factory=list)
    require_previous_stage: bool = True
    auto_rollback: bool = True
    health_checks: list[HealthCheckSpec] = Field(default_factory=list)
    health_retries: int = Field(default=3, ge=1)
    health_interval: float = Field(default=2.0, ge=0)
    target: Optional[TargetSpec] = None

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("environment name must not be empty")
        return value

    @field_validator("version_pattern")
    @classmethod
    def _check_pattern(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"invalid version_pattern '{value}': {exc}") from exc
        return value


class NotificationSettings(BaseModel):
    slack_webhook: str = ""
    slack_success_channel: str = ""
    slack_failure_channel: str = ""
    teams_webhook: str = ""
    discord_webhook: str = ""


class DeploymentConfig(BaseModel):
    """Top-level deployment configuration.

    The order of ``environments`` is the promotion chain.
    """

    project: str = "app"
    environments: list[EnvironmentPolicy]
    artifact_store: str = ".deploykit/artifacts"
    state_dir: str = ".deploykit"
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    lock_timeout: float = Field(default=1800.0, gt=0)

    @model_validator(mode="after")
    def _check_environments(self) -> DeploymentConfig:
        if not self.environments:
            raise ValueError("at least one environment is required")
        seen: set[str] = set()
        for env in self.environments:
            if env.name in seen:
                raise ValueError(f"duplicate environment: {env.name}")
            seen.add(env.name)
        return self

    # -- Loading --------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeploymentConfig:
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(f"Invalid deployment configuration: {exc}") from exc

    @classmethod
    def load(cls, path: str | Path) -> DeploymentConfig:
        """Load a configuration file (YAML or JSON).

        Raises :class:`ConfigError` if the file is missing or invalid.
        """
        p = Path(path)
        if not p.is_file():
            raise ConfigError(f"Configuration file not found: {p}")

        text = p.read_text(encoding="utf-8")
        try:
            if p.suffix == ".json":
                data = json.loads(text)
            else:
                data = yaml.safe_load(text)
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ConfigError(f"Could not parse {p}: {exc}") from exc

        if not isinstance(data, dict):
            raise ConfigError(f"Configuration root must be a mapping: {p}")

        logger.debug("Loaded deployment configuration from %s", p)
        return cls.from_dict(data)

    @classmethod
    def discover(cls, root: str | Path) -> DeploymentConfig:
        """Load the first of the default config file names found in *root*."""
        base = Path(root)
        for name in DEFAULT_CONFIG_NAMES:
            candidate = base / name
            if candidate.is_file():
                return cls.load(candidate)
        raise ConfigError(f"No deploykit configuration found in {base}")

    # -- Environment chain ----------------------------------------------------

    @property
    def environment_names(self) -> list[str]:
        return [env.name for env in self.environments]

    def environment(self, name: str) -> EnvironmentPolicy:
        for env in self.environments:
            if env.name == name:
                return env
        raise UnknownEnvironmentError(name)

    def has_environment(self, name: str) -> bool:
        return name in self.environment_names

    def index_of(self, name: str) -> int:
        try:
            return self.environment_names.index(name)
        except ValueError:
            raise UnknownEnvironmentError(name) from None

    def previous_environment(self, name: str) -> EnvironmentPolicy | None:
        idx = self.index_of(name)
        return self.environments[idx - 1] if idx > 0 else None

    def next_environment(self, name: str) -> EnvironmentPolicy | None:
        idx = self.index_of(name)
        if idx + 1 < len(self.environments):
            return self.environments[idx + 1]
        return None
