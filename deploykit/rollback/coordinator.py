"""RollbackCoordinator — restores an environment to a recorded good version."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, NoReturn

from deploykit.audit.log import AuditLog
from deploykit.config import DeploymentConfig
from deploykit.errors import RollbackError
from deploykit.execution.health import HealthCheck, HealthVerifier
from deploykit.execution.targets.base import DeploymentTarget
from deploykit.history import DeploymentHistory
from deploykit.locking import EnvironmentLock
from deploykit.models import DeploymentRecord, RollbackRecord, StageStatus, new_id
from deploykit.notifications.dispatcher import NotificationDispatcher

if TYPE_CHECKING:
    from deploykit.promotion.tracker import PromotionTracker

logger = logging.getLogger(__name__)


class RollbackCoordinator:
    """Revert environments to previously recorded successful versions.

    Used by the executor for automatic rollback after a failed deployment,
    and directly by operators through :meth:`rollback`.

    Parameters
    ----------
    config:
        Deployment configuration.
    targets:
        Deployment target per environment name.
    history:
        Deployment history holding the successful versions.
    audit:
        Audit log receiving rollback events.
    dispatcher:
        Notification dispatcher.
    verifier:
        Health verifier run after re-applying a version.
    health_checks:
        Health checks per environment name.
    lock:
        Environment lock taken for operator rollbacks.
    tracker:
        Optional promotion tracker; the abandoned version's stage is moved
        to ``rolled_back`` on operator rollback.
    """

    def __init__(
        self,
        config: DeploymentConfig,
        targets: dict[str, DeploymentTarget],
        history: DeploymentHistory,
        audit: AuditLog,
        dispatcher: NotificationDispatcher,
        verifier: HealthVerifier | None = None,
        health_checks: dict[str, list[HealthCheck]] | None = None,
        lock: EnvironmentLock | None = None,
        tracker: PromotionTracker | None = None,
    ) -> None:
        self.config = config
        self.targets = targets
        self.history = history
        self.audit = audit
        self.dispatcher = dispatcher
        self.verifier = verifier or HealthVerifier()
        self.health_checks = health_checks if health_checks is not None else {}
        self.lock = lock
        self.tracker = tracker

    def candidate(self, environment: str, to_version: str | None = None) -> DeploymentRecord:
        """Return the deployment record a rollback of *environment* would restore.

        Raises :class:`RollbackError` if there is no suitable version.
        """
        self.config.environment(environment)
        current = self.history.current(environment)

        if to_version is not None:
            if to_version == current:
                raise RollbackError(f"'{environment}' is already running {to_version}")
            record = self.history.find_successful(environment, to_version)
            if record is None:
                raise RollbackError(
                    f"{to_version} was never successfully deployed to '{environment}'"
                )
            return record

        record = self.history.last_successful(environment, exclude=current)
        if record is None:
            raise RollbackError(f"No previous successful version recorded for '{environment}'")
        return record

    def rollback(
        self,
        environment: str,
        to_version: str | None = None,
        requested_by: str = "",
        reason: str = "",
    ) -> RollbackRecord:
        """Operator-requested rollback of *environment*.

        Defaults to the most recent successful version other than the
        current one.
        """
        record = self.candidate(environment, to_version)
        current = self.history.current(environment)
        owner = f"rollback-{new_id()}"

        if self.lock is None:
            result = self.restore(environment, record, current, requested_by, reason)
        else:
            with self.lock.hold(environment, owner):
                result = self.restore(environment, record, current, requested_by, reason)

        if current and self.tracker is not None and self.tracker.is_tracked(current):
            if self.tracker.stage(current, environment).status == StageStatus.DEPLOYED:
                self.tracker.roll_back(current, environment)
        return result

    def restore(
        self,
        environment: str,
        record: DeploymentRecord,
        from_version: str | None,
        requested_by: str = "",
        reason: str = "",
        automatic: bool = False,
    ) -> RollbackRecord:
        """Re-apply the artifact of *record* and verify health.

        Caller holds the environment lock.  Raises :class:`RollbackError`
        after recording the failure.
        """
        policy = self.config.environment(environment)
        rollback = RollbackRecord(
            environment=environment,
            from_version=from_version,
            to_version=record.version,
            requested_by=requested_by,
            reason=reason,
            automatic=automatic,
        )
        logger.info(
            "Rolling back %s from %s to %s%s",
            environment, from_version or "-", record.version, " (automatic)" if automatic else "",
        )

        target = self.targets.get(environment)
        if record.artifact is None:
            self._fail(rollback, f"No artifact recorded for {record.version}")
        if target is None:
            self._fail(rollback, f"No deployment target configured for '{environment}'")

        try:
            target.apply(record.artifact, environment)
        except Exception as exc:
            logger.exception("Rollback apply failed for %s", environment)
            self._fail(rollback, f"apply failed: {exc}")

        report = self.verifier.verify(
            self.health_checks.get(environment, []),
            retries=policy.health_retries,
            interval=policy.health_interval,
        )
        if not report.healthy:
            failed = ", ".join(f"{c.name} ({c.message})" for c in report.failures)
            self._fail(rollback, f"health check failed: {failed}")

        if from_version and from_version != record.version:
            self.history.mark_rolled_back(environment, from_version)
        self.history.set_current(environment, record.version)

        rollback.success = True
        rollback.message = f"restored {record.version}"
        self.history.record_rollback(rollback)
        self.audit.record(
            requested_by, "rollback_succeeded", environment, record.version,
            {"from_version": from_version, "automatic": automatic, "reason": reason},
        )
        self.dispatcher.rollback_succeeded(
            environment, record.version, requested_by,
            details=f"from {from_version or '-'}",
        )
        return rollback

    def list_rollbacks(self, environment: str | None = None) -> list[RollbackRecord]:
        return self.history.rollbacks(environment)

    def _fail(self, rollback: RollbackRecord, message: str) -> NoReturn:
        rollback.success = False
        rollback.message = message
        self.history.record_rollback(rollback)
        self.audit.record(
            rollback.requested_by, "rollback_failed", rollback.environment, rollback.to_version,
            {"from_version": rollback.from_version, "automatic": rollback.automatic, "error": message},
        )
        self.dispatcher.rollback_failed(
            rollback.environment, rollback.to_version, rollback.requested_by, details=message,
        )
        logger.error("Rollback of %s to %s failed: %s", rollback.environment, rollback.to_version, message)
        raise RollbackError(message)
