"""DeploymentManager — the single entry point for deploykit operations.

Usage::

    from deploykit import DeploymentManager

    manager = DeploymentManager.from_project("/srv/billing")
    manager.publish_artifact("build/", version="1.4.0")
    manager.deploy("dev", "1.4.0", requested_by="ci")
    manager.request_promotion("1.4.0", "staging", requested_by="alice")
    manager.approve("1.4.0", "staging", approver="bob")
    manager.promote("1.4.0", "staging", requested_by="alice")
    manager.rollback("staging", requested_by="bob", reason="error rate")
    manager.audit_trail(environment="staging")
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from deploykit.artifacts.repository import ArtifactRepository
from deploykit.audit.log import AuditEntry, AuditLog
from deploykit.config import DeploymentConfig
from deploykit.errors import ArtifactError, PromotionError
from deploykit.execution.executor import DeploymentExecutor
from deploykit.execution.health import (
    HealthCheck,
    HealthReport,
    HealthVerifier,
    build_health_check,
)
from deploykit.execution.targets import DeploymentTarget, build_target
from deploykit.history import DeploymentHistory
from deploykit.locking import EnvironmentLock
from deploykit.models import (
    ArtifactRef,
    DeploymentRecord,
    DeploymentRequest,
    Promotion,
    PromotionStage,
    RollbackRecord,
    StageStatus,
)
from deploykit.notifications.dispatcher import build_dispatcher
from deploykit.notifications.providers import NotificationProvider
from deploykit.pipeline.definition import PipelineDefinition, load_pipeline
from deploykit.pipeline.runner import PipelineResult, PipelineRunner
from deploykit.promotion.tracker import PromotionTracker
from deploykit.rollback.coordinator import RollbackCoordinator
from deploykit.settings import SettingsManager
from deploykit.validation.validator import RequestValidator

logger = logging.getLogger(__name__)


class DeploymentManager:
    """The public interface for deploykit.

    Wires the artifact repository, promotion tracker, validator, executor,
    rollback coordinator, audit log, and notification dispatcher together
    for one project.

    Parameters
    ----------
    config:
        Deployment configuration.
    root:
        Project root; relative paths in *config* resolve against it.
    targets:
        Deployment targets per environment, overriding configured targets.
    notifiers:
        Extra notification providers.
    health_checks:
        Extra health checks per environment, added to configured ones.
    audit_db:
        Audit database path (``':memory:'`` allowed).  Defaults to
        ``<state_dir>/audit.db``.
    verifier:
        Health verifier (inject one with a no-op sleep in tests).
    clock:
        UTC clock used for deploy-window checks.
    state_dir:
        Override for the configured state directory.
    lock_timeout:
        Override for the configured environment lock timeout.
    """

    def __init__(
        self,
        config: DeploymentConfig,
        root: str | Path = ".",
        *,
        targets: dict[str, DeploymentTarget] | None = None,
        notifiers: list[NotificationProvider] | None = None,
        health_checks: dict[str, list[HealthCheck]] | None = None,
        audit_db: str | Path | None = None,
        verifier: HealthVerifier | None = None,
        clock: Callable[[], datetime] | None = None,
        state_dir: str | Path | None = None,
        lock_timeout: float | None = None,
    ) -> None:
        self.config = config
        self.root = Path(root)
        self.state_dir = self._resolve(state_dir or config.state_dir)

        self.repository = ArtifactRepository(self._resolve(config.artifact_store))
        self.history = DeploymentHistory(self.state_dir)
        self.tracker = PromotionTracker(config, self.state_dir)
        self.audit = AuditLog(audit_db if audit_db is not None else self.state_dir / "audit.db")

        self.dispatcher = build_dispatcher(config.notifications, project=config.project)
        for provider in notifiers or []:
            self.dispatcher.add_provider(provider)

        self.targets: dict[str, DeploymentTarget] = {}
        self.health_checks: dict[str, list[HealthCheck]] = {}
        for env in config.environments:
            if env.target is not None:
                self.targets[env.name] = build_target(env.target, self.root)
            self.health_checks[env.name] = [build_health_check(s) for s in env.health_checks]
        self.targets.update(targets or {})
        for name, checks in (health_checks or {}).items():
            config.environment(name)
            self.health_checks.setdefault(name, []).extend(checks)

        self.verifier = verifier or HealthVerifier()
        self.lock = EnvironmentLock(
            self.state_dir / "locks",
            timeout=lock_timeout if lock_timeout is not None else config.lock_timeout,
        )
        self.validator = RequestValidator(
            config, self.repository, self.history, self.tracker, clock=clock,
        )
        self.coordinator = RollbackCoordinator(
            config, self.targets, self.history, self.audit, self.dispatcher,
            verifier=self.verifier,
            health_checks=self.health_checks,
            lock=self.lock,
            tracker=self.tracker,
        )
        self.executor = DeploymentExecutor(
            config, self.targets, self.history, self.validator,
            self.coordinator, self.audit, self.dispatcher,
            verifier=self.verifier,
            health_checks=self.health_checks,
            tracker=self.tracker,
            lock=self.lock,
        )

    @classmethod
    def from_project(cls, root: str | Path = ".", **kwargs: Any) -> DeploymentManager:
        """Build a manager from ``deploykit.yaml`` and layered settings in *root*."""
        base = Path(root)
        settings = SettingsManager().load_settings(base)

        level = settings.get("DEPLOYKIT_LOG_LEVEL", "INFO").upper()
        logging.getLogger("deploykit").setLevel(getattr(logging, level, logging.INFO))

        config_path = settings.get("DEPLOYKIT_CONFIG", "")
        if config_path:
            path = Path(config_path)
            config = DeploymentConfig.load(path if path.is_absolute() else base / path)
        else:
            config = DeploymentConfig.discover(base)

        overrides = {
            "slack_webhook": settings.get("SLACK_WEBHOOK", ""),
            "teams_webhook": settings.get("TEAMS_WEBHOOK", ""),
            "discord_webhook": settings.get("DISCORD_WEBHOOK", ""),
        }
        overrides = {k: v for k, v in overrides.items() if v}
        if overrides:
            config = config.model_copy(
                update={"notifications": config.notifications.model_copy(update=overrides)},
            )

        if settings.get("DEPLOYKIT_STATE_DIR"):
            kwargs.setdefault("state_dir", settings["DEPLOYKIT_STATE_DIR"])
        if settings.get("DEPLOYKIT_LOCK_TIMEOUT"):
            kwargs.setdefault("lock_timeout", float(settings["DEPLOYKIT_LOCK_TIMEOUT"]))

        audit_db = settings.get("DEPLOYKIT_AUDIT_DB") or "audit.db"
        if audit_db != ":memory:" and not Path(audit_db).is_absolute():
            state_dir = Path(kwargs.get("state_dir") or config.state_dir)
            if not state_dir.is_absolute():
                state_dir = base / state_dir
            audit_db = str(state_dir / audit_db)
        kwargs.setdefault("audit_db", audit_db)

        return cls(config, base, **kwargs)

    # -- Artifacts ------------------------------------------------------------

    def publish_artifact(
        self,
        source: str | Path,
        version: str,
        name: str | None = None,
        metadata: dict[str, Any] | None = None,
        published_by: str = "",
    ) -> ArtifactRef:
        """Publish *source* as an immutable artifact and start tracking it."""
        ref = self.repository.publish(source, name or self.config.project, version, metadata)
        self.tracker.track(version, ref)
        self.audit.record(
            published_by, "artifact_published", "", version,
            {"name": ref.name, "checksum": ref.checksum},
        )
        return ref

    def artifact(self, version: str, name: str | None = None) -> ArtifactRef:
        """Look up the published artifact for *version*."""
        ref = self.repository.find(version, name or self.config.project)
        if ref is None:
            ref = self.repository.find(version) if name is None else None
        if ref is None:
            raise ArtifactError(f"No artifact published for version {version}")
        return ref

    # -- Promotion ------------------------------------------------------------

    def track(self, version: str) -> Promotion:
        try:
            artifact: ArtifactRef | None = self.artifact(version)
        except ArtifactError:
            artifact = None
        return self.tracker.track(version, artifact)

    def promotion(self, version: str) -> Promotion:
        return self.tracker.get(version)

    def request_promotion(
        self, version: str, environment: str, requested_by: str = "",
    ) -> PromotionStage:
        """Open the promotion gate of *environment* for *version*."""
        self.track(version)
        stage = self.tracker.request(version, environment, requested_by)
        self.audit.record(
            requested_by, "promotion_requested", environment, version,
            {"status": stage.status.value},
        )
        self.dispatcher.promotion_requested(environment, version, requested_by)
        return stage

    def approve(
        self, version: str, environment: str, approver: str, comment: str = "",
    ) -> PromotionStage:
        stage = self.tracker.approve(version, environment, approver, comment)
        self.audit.record(
            approver, "promotion_approved", environment, version,
            {"approvals": list(stage.approvals), "status": stage.status.value, "comment": comment},
        )
        if stage.status == StageStatus.APPROVED:
            self.dispatcher.promotion_approved(environment, version, approver)
        return stage

    def reject(
        self, version: str, environment: str, approver: str, reason: str = "",
    ) -> PromotionStage:
        stage = self.tracker.reject(version, environment, approver, reason)
        self.audit.record(
            approver, "promotion_rejected", environment, version, {"reason": reason},
        )
        self.dispatcher.promotion_rejected(environment, version, approver, reason)
        return stage

    def promote(
        self,
        version: str,
        environment: str | None = None,
        requested_by: str = "",
    ) -> PromotionStage:
        """Advance *version* into *environment* (default: next in the chain).

        Requests the promotion if needed and deploys as soon as the gate is
        open.  Returns the stage, which stays ``awaiting_approval`` while
        approvals are missing.
        """
        self.track(version)
        if environment is None:
            environment = self.tracker.next_environment(version)
            if environment is None:
                raise PromotionError(f"{version} is already deployed to every environment")

        stage = self.tracker.stage(version, environment)
        if stage.status == StageStatus.DEPLOYED:
            raise PromotionError(f"{version} is already deployed to '{environment}'")
        if stage.status == StageStatus.AWAITING_APPROVAL:
            return stage
        if stage.status != StageStatus.APPROVED:
            stage = self.request_promotion(version, environment, requested_by)
        if stage.status == StageStatus.APPROVED:
            self.deploy(environment, version, requested_by=requested_by, reason="promotion")
        return self.tracker.stage(version, environment)

    # -- Deployment -----------------------------------------------------------

    def deploy(
        self,
        environment: str,
        version: str,
        requested_by: str = "",
        reason: str = "",
        name: str | None = None,
    ) -> DeploymentRecord:
        """Deploy a published *version* into *environment*."""
        try:
            artifact: ArtifactRef | None = self.artifact(version, name)
        except ArtifactError:
            artifact = None
        self.tracker.track(version, artifact)
        request = DeploymentRequest(
            environment=environment,
            version=version,
            artifact=artifact,
            requested_by=requested_by,
            reason=reason,
        )
        return self.executor.execute(request)

    def rollback(
        self,
        environment: str,
        to_version: str | None = None,
        requested_by: str = "",
        reason: str = "",
    ) -> RollbackRecord:
        """Revert *environment* to a previously successful version."""
        return self.coordinator.rollback(environment, to_version, requested_by, reason)

    # -- Queries --------------------------------------------------------------

    def current_version(self, environment: str) -> str | None:
        self.config.environment(environment)
        return self.history.current(environment)

    def deployments(
        self, environment: str | None = None, version: str | None = None,
    ) -> list[DeploymentRecord]:
        return self.history.list(environment, version)

    def rollbacks(self, environment: str | None = None) -> list[RollbackRecord]:
        return self.history.rollbacks(environment)

    def check_health(self, environment: str) -> HealthReport:
        """Run the environment's health checks once."""
        self.config.environment(environment)
        return self.verifier.check_once(self.health_checks.get(environment, []))

    # -- Audit ----------------------------------------------------------------

    def audit_trail(self, **filters: Any) -> list[AuditEntry]:
        return self.audit.entries(**filters)

    def verify_audit_chain(self) -> bool:
        return self.audit.verify_chain()

    # -- Pipelines ------------------------------------------------------------

    def run_pipeline(
        self,
        pipeline: str | Path | PipelineDefinition,
        requested_by: str = "",
    ) -> PipelineResult:
        """Run a pipeline definition (or YAML file) in the project root."""
        definition = (
            pipeline if isinstance(pipeline, PipelineDefinition)
            else load_pipeline(self._resolve(pipeline))
        )
        result = PipelineRunner(self.root, self.dispatcher).run(definition)
        self.audit.record(
            requested_by, "pipeline_succeeded" if result.success else "pipeline_failed",
            details={
                "pipeline": definition.name,
                "run_id": result.run_id,
                "failed_stage": result.failed_stage,
            },
        )
        return result

    # -- Lifecycle ------------------------------------------------------------

    def close(self) -> None:
        self.audit.close()

    def __enter__(self) -> DeploymentManager:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _resolve(self, path: str | Path) -> Path:
        p = Path(path)
        return p if p.is_absolute() else self.root / p
