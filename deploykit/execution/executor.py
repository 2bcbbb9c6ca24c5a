"""DeploymentExecutor — drives one environment deployment through its phases."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from deploykit.audit.log import AuditLog
from deploykit.config import DeploymentConfig, EnvironmentPolicy
from deploykit.errors import DeploymentError, PromotionError, RollbackError
from deploykit.execution.health import HealthCheck, HealthVerifier
from deploykit.execution.targets.base import DeploymentTarget
from deploykit.history import DeploymentHistory
from deploykit.locking import EnvironmentLock
from deploykit.models import (
    DeploymentPhase,
    DeploymentRecord,
    DeploymentRequest,
    DeploymentStatus,
    PhaseResult,
    StageStatus,
    utc_now,
)
from deploykit.notifications.dispatcher import NotificationDispatcher
from deploykit.validation.validator import RequestValidator

if TYPE_CHECKING:
    from deploykit.promotion.tracker import PromotionTracker
    from deploykit.rollback.coordinator import RollbackCoordinator

logger = logging.getLogger(__name__)


class DeploymentExecutor:
    """Run a deployment request through pre-check, apply, health-verify,
    and finalize, rolling back to the previous version on failure.

    Only one deployment per environment runs at a time; a second request
    for a locked environment raises :class:`~deploykit.errors.LockError`.

    Parameters
    ----------
    config:
        Deployment configuration.
    targets:
        Deployment target per environment name.
    history:
        Deployment history.
    validator:
        Request validator run in the pre-check phase.
    rollback:
        Coordinator used for automatic rollback.
    audit:
        Audit log receiving every phase transition.
    dispatcher:
        Notification dispatcher.
    verifier:
        Health verifier.
    health_checks:
        Health checks per environment name.
    tracker:
        Optional promotion tracker kept in step with deployments.
    lock:
        Optional environment lock.
    """

    def __init__(
        self,
        config: DeploymentConfig,
        targets: dict[str, DeploymentTarget],
        history: DeploymentHistory,
        validator: RequestValidator,
        rollback: RollbackCoordinator,
        audit: AuditLog,
        dispatcher: NotificationDispatcher,
        verifier: HealthVerifier | None = None,
        health_checks: dict[str, list[HealthCheck]] | None = None,
        tracker: PromotionTracker | None = None,
        lock: EnvironmentLock | None = None,
    ) -> None:
        self.config = config
        self.targets = targets
        self.history = history
        self.validator = validator
        self.rollback = rollback
        self.audit = audit
        self.dispatcher = dispatcher
        self.verifier = verifier or HealthVerifier()
        self.health_checks = health_checks if health_checks is not None else {}
        self.tracker = tracker
        self.lock = lock

    def execute(self, request: DeploymentRequest) -> DeploymentRecord:
        """Deploy *request* and return the final record.

        Policy and target failures are reported in the record's status and
        phases rather than raised.
        """
        record = DeploymentRecord(
            id=request.id,
            environment=request.environment,
            version=request.version,
            artifact=request.artifact,
            requested_by=request.requested_by,
            reason=request.reason,
            status=DeploymentStatus.RUNNING,
        )
        owner = f"deploy-{record.id}"

        if self.lock is None:
            return self._run(request, record)
        with self.lock.hold(request.environment, owner):
            return self._run(request, record)

    # -- Phases ---------------------------------------------------------------

    def _run(self, request: DeploymentRequest, record: DeploymentRecord) -> DeploymentRecord:
        env = request.environment
        logger.info("Deploying %s to %s (request %s)", request.version, env, record.id)
        self.history.record(record)
        self.audit.record(
            request.requested_by, "deploy_started", env, request.version,
            {"deployment_id": record.id, "reason": request.reason},
        )
        self.dispatcher.deploy_started(env, request.version, request.requested_by)

        # 1. Pre-check
        problems, tracked = self._pre_check(request, record)
        if problems:
            return self._fail(record, "; ".join(problems))

        try:
            return self._deploy(request, record, tracked)
        except Exception as exc:
            logger.exception("Deployment of %s to %s aborted", request.version, env)
            if tracked and self.tracker.stage(request.version, env).status == StageStatus.DEPLOYING:
                self.tracker.fail(request.version, env)
            return self._fail(record, f"{type(exc).__name__}: {exc}")

    def _deploy(
        self, request: DeploymentRequest, record: DeploymentRecord, tracked: bool,
    ) -> DeploymentRecord:
        env = request.environment
        policy = self.config.environment(env)
        target = self.targets[env]
        record.previous_version = self.history.current(env) or target.current_version()

        # 2. Apply
        phase = self._start(record, DeploymentPhase.APPLY)
        try:
            target.apply(request.artifact, env)
        except Exception as exc:
            logger.exception("Apply failed for %s on %s", request.version, env)
            self._end(record, phase, False, str(exc))
            return self._recover(record, policy, f"apply failed: {exc}", tracked, applied=False)
        self._end(record, phase, True, f"applied via {target.name}")

        # 3. Health verification
        phase = self._start(record, DeploymentPhase.HEALTH_VERIFY)
        report = self.verifier.verify(
            self.health_checks.get(env, []),
            retries=policy.health_retries,
            interval=policy.health_interval,
        )
        details = {"attempts": report.attempts, "checks": [c.model_dump() for c in report.checks]}
        if not report.healthy:
            failed = ", ".join(f"{c.name} ({c.message})" for c in report.failures)
            self._end(record, phase, False, f"unhealthy: {failed}", details)
            return self._recover(record, policy, f"health check failed: {failed}", tracked, applied=True)
        self._end(record, phase, True, "healthy", details)

        # 4. Finalize
        phase = self._start(record, DeploymentPhase.FINALIZE)
        self.history.set_current(env, request.version)
        if tracked:
            self.tracker.complete(request.version, env)
        record.status = DeploymentStatus.SUCCEEDED
        self._end(record, phase, True, f"{request.version} is live")
        self._finish(record)

        self.audit.record(
            request.requested_by, "deploy_succeeded", env, request.version,
            {"deployment_id": record.id, "previous_version": record.previous_version},
        )
        self.dispatcher.deploy_succeeded(env, request.version, request.requested_by)
        logger.info("Deployed %s to %s", request.version, env)
        return record

    def _pre_check(
        self, request: DeploymentRequest, record: DeploymentRecord,
    ) -> tuple[list[str], bool]:
        phase = self._start(record, DeploymentPhase.PRE_CHECK)
        report = self.validator.validate(request)
        problems = [f"{issue.code}: {issue.message}" for issue in report.issues]

        if report.valid:
            target = self.targets.get(request.environment)
            if target is None:
                problems.append(f"No deployment target configured for '{request.environment}'")
            else:
                try:
                    problems.extend(target.pre_check(request))
                except DeploymentError as exc:
                    problems.append(str(exc))
                except Exception as exc:
                    logger.exception("Target pre-check raised for %s", request.environment)
                    problems.append(f"{target.name} pre-check error: {type(exc).__name__}: {exc}")

        tracked = False
        if not problems and self.tracker is not None and self.tracker.is_tracked(request.version):
            stage = self.tracker.stage(request.version, request.environment)
            if stage.status != StageStatus.DEPLOYED:
                try:
                    self.tracker.begin(request.version, request.environment, record.id)
                    tracked = True
                except PromotionError as exc:
                    problems.append(str(exc))

        self._end(
            record, phase, not problems,
            "; ".join(problems) if problems else "passed",
            {"issues": report.codes},
        )
        return problems, tracked

    def _recover(
        self,
        record: DeploymentRecord,
        policy: EnvironmentPolicy,
        error: str,
        tracked: bool,
        applied: bool,
    ) -> DeploymentRecord:
        """Handle a failure after the target was touched."""
        env = record.environment
        record.error = error
        if tracked:
            self.tracker.fail(record.version, env)

        previous = record.previous_version
        restore_from = self.history.find_successful(env, previous) if previous else None

        if policy.auto_rollback and restore_from is not None:
            phase = self._start(record, DeploymentPhase.ROLLBACK)
            try:
                self.rollback.restore(
                    env, restore_from,
                    from_version=record.version,
                    requested_by=record.requested_by,
                    reason=error,
                    automatic=True,
                )
            except RollbackError as exc:
                self._end(record, phase, False, str(exc))
                record.error = f"{error}; rollback failed: {exc}"
                return self._fail(record, record.error)

            self._end(record, phase, True, f"restored {previous}")
            record.status = DeploymentStatus.ROLLED_BACK
            record.rolled_back_to = previous
            self._finish(record)
            self.audit.record(
                record.requested_by, "deploy_rolled_back", env, record.version,
                {"deployment_id": record.id, "restored": previous, "error": error},
            )
            self.dispatcher.deploy_rolled_back(env, record.version, previous, record.requested_by)
            logger.warning("Deployment of %s to %s rolled back to %s: %s", record.version, env, previous, error)
            return record

        if policy.auto_rollback and previous:
            logger.warning("No recorded artifact for %s in %s; cannot roll back", previous, env)
        if applied:
            # The failed release is what the target now runs
            self.history.set_current(env, record.version)
        return self._fail(record, error)

    def _fail(self, record: DeploymentRecord, error: str) -> DeploymentRecord:
        record.status = DeploymentStatus.FAILED
        record.error = error
        self._finish(record)
        self.audit.record(
            record.requested_by, "deploy_failed", record.environment, record.version,
            {"deployment_id": record.id, "error": error},
        )
        self.dispatcher.deploy_failed(record.environment, record.version, record.requested_by, error)
        logger.error("Deployment of %s to %s failed: %s", record.version, record.environment, error)
        return record

    # -- Helpers --------------------------------------------------------------

    def _start(self, record: DeploymentRecord, phase: DeploymentPhase) -> PhaseResult:
        result = PhaseResult(phase=phase)
        record.phases.append(result)
        return result

    def _end(
        self,
        record: DeploymentRecord,
        result: PhaseResult,
        success: bool,
        message: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        result.success = success
        result.message = message
        result.finished_at = utc_now()
        if details:
            result.details = details
        self.history.record(record)
        self.audit.record(
            record.requested_by,
            f"{result.phase.value}_{'passed' if success else 'failed'}",
            record.environment,
            record.version,
            {"deployment_id": record.id, "message": message},
        )

    def _finish(self, record: DeploymentRecord) -> None:
        record.finished_at = utc_now()
        self.history.record(record)
