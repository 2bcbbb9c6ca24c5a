"""RequestValidator — checks deployment requests against environment policy."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from deploykit.config import DeploymentConfig, DeployWindow, EnvironmentPolicy
from deploykit.errors import RequestValidationError
from deploykit.models import DeploymentRequest, StageStatus
from deploykit.validation.report import ValidationReport

if TYPE_CHECKING:
    from deploykit.artifacts.repository import ArtifactRepository
    from deploykit.history import DeploymentHistory
    from deploykit.promotion.tracker import PromotionTracker

logger = logging.getLogger(__name__)

_CHECKSUM = re.compile(r"^[0-9a-f]{64}$")

# Stage statuses that satisfy an approval gate (DEPLOYED covers redeploys)
_CLEARED = (StageStatus.APPROVED, StageStatus.DEPLOYING, StageStatus.DEPLOYED)


def _in_window(window: DeployWindow, moment: datetime) -> bool:
    if moment.weekday() not in window.days:
        return False
    now = moment.strftime("%H:%M")
    if window.start <= window.end:
        return window.start <= now <= window.end
    # Overnight window, e.g. 22:00 -> 04:00
    return now >= window.start or now <= window.end


class RequestValidator:
    """Validate deployment requests against configuration-declared policies.

    Parameters
    ----------
    config:
        Deployment configuration holding the environment chain.
    repository:
        Optional artifact repository; when given, artifacts must exist
        and match their checksum.
    history:
        Optional deployment history used for promotion-order checks.
    tracker:
        Optional promotion tracker used for promotion-order and approval checks.
    clock:
        Callable returning the current UTC time (for deploy windows).
    """

    def __init__(
        self,
        config: DeploymentConfig,
        repository: ArtifactRepository | None = None,
        history: DeploymentHistory | None = None,
        tracker: PromotionTracker | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.repository = repository
        self.history = history
        self.tracker = tracker
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def validate(self, request: DeploymentRequest) -> ValidationReport:
        """Return a report listing every policy violation in *request*."""
        report = ValidationReport(environment=request.environment, version=request.version)

        if not self.config.has_environment(request.environment):
            report.add(
                "unknown_environment", "environment",
                f"Environment '{request.environment}' is not configured",
            )
            return report

        policy = self.config.environment(request.environment)

        self._check_version(request, policy, report)
        self._check_artifact(request, report)
        self._check_schedule(policy, report)
        self._check_deployer(request, policy, report)
        self._check_promotion_order(request, policy, report)
        self._check_approval(request, policy, report)

        if report.valid:
            logger.debug("Request %s for %s@%s is valid", request.id, request.version, request.environment)
        else:
            logger.info(
                "Request %s for %s@%s rejected: %s",
                request.id, request.version, request.environment, ", ".join(report.codes),
            )
        return report

    def validate_or_raise(self, request: DeploymentRequest) -> ValidationReport:
        """Validate *request* and raise :class:`RequestValidationError` if invalid."""
        report = self.validate(request)
        if not report.valid:
            raise RequestValidationError(report)
        return report

    # -- Individual checks ----------------------------------------------------

    def _check_version(
        self, request: DeploymentRequest, policy: EnvironmentPolicy, report: ValidationReport,
    ) -> None:
        if not re.match(policy.version_pattern, request.version):
            report.add(
                "invalid_version", "version",
                f"Version '{request.version}' does not match {policy.version_pattern}",
            )

    def _check_artifact(self, request: DeploymentRequest, report: ValidationReport) -> None:
        artifact = request.artifact
        if artifact is None:
            report.add("missing_artifact", "artifact", "No artifact reference given")
            return

        if artifact.version != request.version:
            report.add(
                "version_mismatch", "artifact.version",
                f"Artifact version '{artifact.version}' != requested '{request.version}'",
            )

        if not _CHECKSUM.match(artifact.checksum):
            report.add(
                "invalid_checksum", "artifact.checksum",
                "Artifact checksum must be a lowercase SHA-256 hex digest",
            )
            return

        if self.repository is None:
            return

        if not self.repository.exists(artifact.name, artifact.version) or not Path(artifact.uri).is_file():
            report.add(
                "artifact_not_found", "artifact",
                f"Artifact {artifact.name} {artifact.version} is not published",
            )
        elif not self.repository.verify(artifact):
            report.add(
                "checksum_mismatch", "artifact.checksum",
                f"Artifact {artifact.name} {artifact.version} failed integrity check",
            )

    def _check_schedule(self, policy: EnvironmentPolicy, report: ValidationReport) -> None:
        if policy.frozen:
            report.add(
                "environment_frozen", "environment",
                f"Environment '{policy.name}' is frozen",
            )
        if policy.deploy_windows:
            moment = self._clock()
            if not any(_in_window(w, moment) for w in policy.deploy_windows):
                report.add(
                    "outside_deploy_window", "environment",
                    f"{moment:%a %H:%M} UTC is outside the deploy windows of '{policy.name}'",
                )

    def _check_deployer(
        self, request: DeploymentRequest, policy: EnvironmentPolicy, report: ValidationReport,
    ) -> None:
        if policy.allowed_deployers and request.requested_by not in policy.allowed_deployers:
            report.add(
                "deployer_not_allowed", "requested_by",
                f"'{request.requested_by}' may not deploy to '{policy.name}'",
            )

    def _check_promotion_order(
        self, request: DeploymentRequest, policy: EnvironmentPolicy, report: ValidationReport,
    ) -> None:
        if not policy.require_previous_stage:
            return
        previous = self.config.previous_environment(policy.name)
        if previous is None:
            return

        if self.history is not None and self.history.find_successful(previous.name, request.version):
            return
        if self.tracker is not None and self.tracker.is_tracked(request.version):
            stage = self.tracker.get(request.version).stage(previous.name)
            if stage is not None and stage.status == StageStatus.DEPLOYED:
                return
        if self.history is None and self.tracker is None:
            return

        report.add(
            "promotion_order", "environment",
            f"Version {request.version} has not been deployed to '{previous.name}'",
        )

    def _check_approval(
        self, request: DeploymentRequest, policy: EnvironmentPolicy, report: ValidationReport,
    ) -> None:
        if not policy.requires_approval:
            return
        if self.tracker is not None and self.tracker.is_tracked(request.version):
            stage = self.tracker.get(request.version).stage(policy.name)
            if stage is not None and stage.status in _CLEARED:
                return
        report.add(
            "approval_required", "environment",
            f"Deployment of {request.version} to '{policy.name}' has not been approved",
        )
