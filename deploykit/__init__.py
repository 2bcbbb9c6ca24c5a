"""deploykit — artifact publishing, environment promotion, rollback, and audit for deployments."""

__version__ = "1.0.0"

from deploykit.artifacts.repository import ArtifactRepository
from deploykit.audit.hasher import Hasher
from deploykit.audit.log import AuditEntry, AuditLog
from deploykit.config import (
    DeploymentConfig,
    DeployWindow,
    EnvironmentPolicy,
    HealthCheckSpec,
    NotificationSettings,
    TargetSpec,
)
from deploykit.errors import (
    ApprovalError,
    ArtifactError,
    ConfigError,
    DeployKitError,
    DeploymentError,
    LockError,
    PipelineError,
    PromotionError,
    RequestValidationError,
    RollbackError,
    UnknownEnvironmentError,
)
from deploykit.execution.executor import DeploymentExecutor
from deploykit.execution.health import (
    CallableHealthCheck,
    CommandHealthCheck,
    HealthCheck,
    HealthReport,
    HealthVerifier,
    HttpHealthCheck,
)
from deploykit.execution.targets import CommandTarget, DeploymentTarget, LocalDirectoryTarget
from deploykit.history import DeploymentHistory
from deploykit.locking import EnvironmentLock
from deploykit.manager import DeploymentManager
from deploykit.models import (
    Approval,
    ArtifactRef,
    DeploymentPhase,
    DeploymentRecord,
    DeploymentRequest,
    DeploymentStatus,
    Promotion,
    PromotionStage,
    RollbackRecord,
    StageStatus,
)
from deploykit.notifications.dispatcher import NotificationDispatcher
from deploykit.notifications.providers import (
    ConsoleNotifier,
    DiscordNotifier,
    NotificationProvider,
    SlackNotifier,
    TeamsNotifier,
)
from deploykit.pipeline.definition import PipelineDefinition, load_pipeline
from deploykit.pipeline.runner import PipelineResult, PipelineRunner
from deploykit.promotion.tracker import PromotionTracker
from deploykit.rollback.coordinator import RollbackCoordinator
from deploykit.settings import SettingsManager
from deploykit.validation.report import ValidationIssue, ValidationReport
from deploykit.validation.validator import RequestValidator

__all__ = [
    "__version__",
    "Approval",
    "ApprovalError",
    "ArtifactError",
    "ArtifactRef",
    "ArtifactRepository",
    "AuditEntry",
    "AuditLog",
    "CallableHealthCheck",
    "CommandHealthCheck",
    "CommandTarget",
    "ConfigError",
    "ConsoleNotifier",
    "DeployKitError",
    "DeployWindow",
    "DeploymentConfig",
    "DeploymentError",
    "DeploymentExecutor",
    "DeploymentHistory",
    "DeploymentManager",
    "DeploymentPhase",
    "DeploymentRecord",
    "DeploymentRequest",
    "DeploymentStatus",
    "DeploymentTarget",
    "DiscordNotifier",
    "EnvironmentLock",
    "EnvironmentPolicy",
    "Hasher",
    "HealthCheck",
    "HealthCheckSpec",
    "HealthReport",
    "HealthVerifier",
    "HttpHealthCheck",
    "LocalDirectoryTarget",
    "LockError",
    "NotificationDispatcher",
    "NotificationProvider",
    "NotificationSettings",
    "PipelineDefinition",
    "PipelineError",
    "PipelineResult",
    "PipelineRunner",
    "Promotion",
    "PromotionError",
    "PromotionStage",
    "PromotionTracker",
    "RequestValidationError",
    "RequestValidator",
    "RollbackCoordinator",
    "RollbackError",
    "RollbackRecord",
    "SettingsManager",
    "SlackNotifier",
    "StageStatus",
    "TargetSpec",
    "TeamsNotifier",
    "UnknownEnvironmentError",
    "ValidationIssue",
    "ValidationReport",
    "load_pipeline",
]
