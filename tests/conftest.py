"""Shared fixtures for deploykit tests.

All tests run offline: webhooks and HTTP checks are monkeypatched, and
deployment targets are in-memory fakes unless a test exercises a real one.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from deploykit.config import DeploymentConfig, EnvironmentPolicy
from deploykit.errors import DeploymentError
from deploykit.execution.health import CallableHealthCheck, HealthVerifier
from deploykit.execution.targets.base import DeploymentTarget
from deploykit.manager import DeploymentManager
from deploykit.models import ArtifactRef, DeploymentRequest


class FakeTarget(DeploymentTarget):
    """In-memory target recording every applied version."""

    def __init__(self, fail_versions: tuple[str, ...] = (), problems: list[str] | None = None) -> None:
        self.applied: list[str] = []
        self.fail_versions = set(fail_versions)
        self.problems = list(problems or [])
        self._current: str | None = None

    @property
    def name(self) -> str:
        return "fake"

    def pre_check(self, request: DeploymentRequest) -> list[str]:
        return list(self.problems)

    def apply(self, artifact: ArtifactRef, environment: str) -> None:
        self.applied.append(artifact.version)
        if artifact.version in self.fail_versions:
            raise DeploymentError(f"boom {artifact.version}")
        self._current = artifact.version

    def current_version(self) -> str | None:
        return self._current


def make_config(**overrides: dict) -> DeploymentConfig:
    """Three-stage chain: dev -> staging (1 approval) -> production (2 approvals).

    Keyword arguments named after an environment update that policy.
    """
    policies = {
        "dev": {"name": "dev"},
        "staging": {
            "name": "staging",
            "requires_approval": True,
            "approvers": ["bob", "carol"],
        },
        "production": {
            "name": "production",
            "requires_approval": True,
            "required_approvals": 2,
            "approvers": ["bob", "carol", "dave"],
        },
    }
    for name, values in overrides.items():
        policies[name].update(values)
    for policy in policies.values():
        policy.setdefault("health_retries", 2)
        policy.setdefault("health_interval", 0)
    return DeploymentConfig(
        project="shop",
        environments=[EnvironmentPolicy(**p) for p in policies.values()],
    )


@pytest.fixture
def config_factory():
    return make_config


@pytest.fixture
def config() -> DeploymentConfig:
    return make_config()


@pytest.fixture
def source(tmp_path: Path) -> Path:
    """A small build output directory to publish."""
    build = tmp_path / "build"
    (build / "conf").mkdir(parents=True)
    (build / "app.py").write_text("print('hello')\n")
    (build / "conf" / "settings.ini").write_text("[app]\nport = 8080\n")
    return build


@pytest.fixture
def bad_versions() -> set[str]:
    """Versions the fake health check reports as unhealthy."""
    return set()


@pytest.fixture
def targets() -> dict[str, FakeTarget]:
    return {name: FakeTarget() for name in ("dev", "staging", "production")}


@pytest.fixture
def manager_factory(
    tmp_path: Path,
    targets: dict[str, FakeTarget],
    bad_versions: set[str],
):
    """Build managers over the fake targets; the health check fails for *bad_versions*."""
    created: list[DeploymentManager] = []

    def build(config: DeploymentConfig, **kwargs) -> DeploymentManager:
        checks = {
            name: [
                CallableHealthCheck(
                    lambda t=target: t.current_version() not in bad_versions,
                    name="app",
                )
            ]
            for name, target in targets.items()
        }
        checks.update(kwargs.pop("health_checks", {}))
        kwargs.setdefault("audit_db", ":memory:")
        mgr = DeploymentManager(
            config,
            tmp_path / "project",
            targets=targets,
            health_checks=checks,
            verifier=HealthVerifier(sleep=lambda seconds: None),
            **kwargs,
        )
        created.append(mgr)
        return mgr

    yield build
    for mgr in created:
        mgr.close()


@pytest.fixture
def manager(manager_factory, config: DeploymentConfig) -> DeploymentManager:
    return manager_factory(config)
