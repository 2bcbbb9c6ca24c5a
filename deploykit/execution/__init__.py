"""Deployment execution — phased deployments, health checks, and targets."""

from deploykit.execution.executor import DeploymentExecutor
from deploykit.execution.health import (
    CallableHealthCheck,
    CheckResult,
    CommandHealthCheck,
    HealthCheck,
    HealthReport,
    HealthVerifier,
    HttpHealthCheck,
    build_health_check,
)
from deploykit.execution.targets import (
    CommandTarget,
    DeploymentTarget,
    LocalDirectoryTarget,
    build_target,
)

__all__ = [
    "CallableHealthCheck",
    "CheckResult",
    "CommandHealthCheck",
    "CommandTarget",
    "DeploymentExecutor",
    "DeploymentTarget",
    "HealthCheck",
    "HealthReport",
    "HealthVerifier",
    "HttpHealthCheck",
    "LocalDirectoryTarget",
    "build_health_check",
    "build_target",
]
