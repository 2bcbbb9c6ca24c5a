"""Exception hierarchy for deploykit."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from deploykit.validation.report import ValidationReport


class DeployKitError(Exception):
    """Base class for all deploykit errors."""


class ConfigError(DeployKitError):
    """Raised when a deployment configuration cannot be loaded or is invalid."""


class UnknownEnvironmentError(ConfigError, KeyError):
    """Raised when an environment name is not declared in the configuration."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown environment: {name}")
        self.name = name

    def __str__(self) -> str:
        return self.args[0]


class ArtifactError(DeployKitError):
    """Raised on artifact publishing or lookup failures."""


class RequestValidationError(DeployKitError):
    """Raised when a deployment request violates environment policy."""

    def __init__(self, report: ValidationReport) -> None:
        summary = "; ".join(f"{i.code}: {i.message}" for i in report.issues)
        super().__init__(f"Deployment request rejected: {summary}")
        self.report = report


class PromotionError(DeployKitError):
    """Raised on an illegal promotion state transition."""


class ApprovalError(PromotionError):
    """Raised when an approval or rejection is not permitted."""


class DeploymentError(DeployKitError):
    """Raised when a deployment target fails to apply or pre-check."""


class RollbackError(DeployKitError):
    """Raised when an environment cannot be rolled back."""


class LockError(DeployKitError):
    """Raised when an environment is locked by another deployment."""


class PipelineError(DeployKitError):
    """Raised when a pipeline definition is invalid."""
