"""PromotionTracker — state machine for a version moving through the environment chain."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

from deploykit.config import DeploymentConfig
from deploykit.errors import ApprovalError, PromotionError
from deploykit.models import (
    Approval,
    ArtifactRef,
    Promotion,
    PromotionStage,
    StageStatus,
    utc_now,
)
from deploykit.promotion.approvals import ApprovalLedger

logger = logging.getLogger(__name__)

# Legal stage transitions: current status -> allowed next statuses
TRANSITIONS: dict[StageStatus, frozenset[StageStatus]] = {
    StageStatus.PENDING: frozenset({StageStatus.AWAITING_APPROVAL, StageStatus.APPROVED}),
    StageStatus.AWAITING_APPROVAL: frozenset({StageStatus.APPROVED, StageStatus.REJECTED}),
    StageStatus.APPROVED: frozenset({StageStatus.DEPLOYING}),
    StageStatus.DEPLOYING: frozenset({StageStatus.DEPLOYED, StageStatus.FAILED}),
    StageStatus.DEPLOYED: frozenset({StageStatus.ROLLED_BACK}),
    StageStatus.FAILED: frozenset({StageStatus.PENDING}),
    StageStatus.REJECTED: frozenset({StageStatus.PENDING}),
    StageStatus.ROLLED_BACK: frozenset({StageStatus.PENDING}),
}

_RESETTABLE = (StageStatus.FAILED, StageStatus.REJECTED, StageStatus.ROLLED_BACK)


class PromotionTracker:
    """Track each version's progression across the ordered environment chain.

    Every version has one stage per environment.  A stage can only be
    requested once the previous environment's stage is ``deployed`` (unless
    the policy disables ``require_previous_stage``), and environments that
    require approval stay ``awaiting_approval`` until enough distinct
    approvers have signed off.

    State is persisted in ``promotions.json`` under *state_dir*.

    Parameters
    ----------
    config:
        Deployment configuration holding the environment chain and policies.
    state_dir:
        Directory for persisted promotion state.
    """

    def __init__(self, config: DeploymentConfig, state_dir: str | Path) -> None:
        self.config = config
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self._path = self.state_dir / "promotions.json"
        self.approvals = ApprovalLedger(self.state_dir)
        self._lock = threading.RLock()

    # -- Persistence ----------------------------------------------------------

    def _load(self) -> dict[str, Promotion]:
        if not self._path.is_file():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            promotions = [Promotion.model_validate(p) for p in data]
        except (json.JSONDecodeError, OSError):
            logger.debug("Could not read %s", self._path, exc_info=True)
            return {}
        return {p.version: p for p in promotions}

    def _save(self, promotions: dict[str, Promotion]) -> None:
        data = [p.model_dump(mode="json") for p in promotions.values()]
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
        tmp.replace(self._path)

    # -- Queries --------------------------------------------------------------

    def is_tracked(self, version: str) -> bool:
        return version in self._load()

    def get(self, version: str) -> Promotion:
        promotion = self._load().get(version)
        if promotion is None:
            raise PromotionError(f"Version {version} is not tracked")
        return promotion

    def list(self) -> list[Promotion]:
        return sorted(self._load().values(), key=lambda p: p.created_at)

    def stage(self, version: str, environment: str) -> PromotionStage:
        self.config.index_of(environment)
        stage = self.get(version).stage(environment)
        if stage is None:
            raise PromotionError(f"Version {version} has no stage for '{environment}'")
        return stage

    def next_environment(self, version: str) -> str | None:
        """First environment in the chain where *version* is not yet deployed."""
        for stage in self.get(version).stages:
            if stage.status != StageStatus.DEPLOYED:
                return stage.environment
        return None

    # -- Tracking -------------------------------------------------------------

    def track(self, version: str, artifact: ArtifactRef | None = None) -> Promotion:
        """Start tracking *version*.  Idempotent; fills in a missing artifact."""
        with self._lock:
            promotions = self._load()
            promotion = promotions.get(version)
            if promotion is None:
                promotion = Promotion(
                    version=version,
                    artifact=artifact,
                    stages=[PromotionStage(environment=n) for n in self.config.environment_names],
                )
                logger.info("Tracking version %s", version)
            else:
                if artifact is not None and promotion.artifact is None:
                    promotion.artifact = artifact
                # Environments added to the config after tracking started
                known = {s.environment for s in promotion.stages}
                for name in self.config.environment_names:
                    if name not in known:
                        promotion.stages.append(PromotionStage(environment=name))
                order = {n: i for i, n in enumerate(self.config.environment_names)}
                promotion.stages.sort(key=lambda s: order.get(s.environment, len(order)))
            promotions[version] = promotion
            self._save(promotions)
            return promotion

    # -- Transitions ----------------------------------------------------------

    def request(self, version: str, environment: str, requested_by: str = "") -> PromotionStage:
        """Request promotion of *version* into *environment*.

        Failed, rejected, and rolled-back stages are reset first.  The stage
        becomes ``awaiting_approval`` or, when no approval is required,
        ``approved``.
        """
        policy = self.config.environment(environment)
        with self._lock:
            promotions = self._load()
            promotion = self._promotion(promotions, version)
            stage = self._stage(promotion, environment)

            if policy.require_previous_stage:
                previous = self.config.previous_environment(environment)
                if previous is not None:
                    prev_stage = self._stage(promotion, previous.name)
                    if prev_stage.status != StageStatus.DEPLOYED:
                        raise PromotionError(
                            f"Cannot promote {version} to '{environment}': "
                            f"not deployed to '{previous.name}' (status {prev_stage.status.value})"
                        )

            if stage.status in _RESETTABLE:
                self._transition(stage, StageStatus.PENDING, version)
                stage.approvals = []

            target = StageStatus.AWAITING_APPROVAL if policy.requires_approval else StageStatus.APPROVED
            self._transition(stage, target, version)
            stage.requested_by = requested_by
            self._save(promotions)
            return stage

    def approve(
        self,
        version: str,
        environment: str,
        approver: str,
        comment: str = "",
    ) -> PromotionStage:
        """Record an approval; the stage opens once enough approvals exist."""
        policy = self.config.environment(environment)
        with self._lock:
            promotions = self._load()
            promotion = self._promotion(promotions, version)
            stage = self._stage(promotion, environment)

            if stage.status != StageStatus.AWAITING_APPROVAL:
                raise ApprovalError(
                    f"{version} in '{environment}' is not awaiting approval "
                    f"(status {stage.status.value})"
                )
            self._check_approver(policy.approvers, policy.allow_self_approval, stage, approver)
            if approver in stage.approvals:
                raise ApprovalError(f"{approver} already approved {version} for '{environment}'")

            stage.approvals.append(approver)
            stage.updated_at = utc_now()
            if len(stage.approvals) >= policy.required_approvals:
                self._transition(stage, StageStatus.APPROVED, version)
            self._save(promotions)

        self.approvals.add(Approval(
            version=version, environment=environment, approver=approver,
            decision="approved", comment=comment,
        ))
        return stage

    def reject(
        self,
        version: str,
        environment: str,
        approver: str,
        reason: str = "",
    ) -> PromotionStage:
        """Reject a pending promotion."""
        policy = self.config.environment(environment)
        with self._lock:
            promotions = self._load()
            promotion = self._promotion(promotions, version)
            stage = self._stage(promotion, environment)

            if stage.status != StageStatus.AWAITING_APPROVAL:
                raise ApprovalError(
                    f"{version} in '{environment}' is not awaiting approval "
                    f"(status {stage.status.value})"
                )
            self._check_approver(policy.approvers, True, stage, approver)
            self._transition(stage, StageStatus.REJECTED, version)
            self._save(promotions)

        self.approvals.add(Approval(
            version=version, environment=environment, approver=approver,
            decision="rejected", comment=reason,
        ))
        return stage

    def begin(self, version: str, environment: str, deployment_id: str = "") -> PromotionStage:
        """Mark the stage ``deploying``.

        Environments without an approval gate are requested implicitly.
        """
        policy = self.config.environment(environment)
        with self._lock:
            stage = self.stage(version, environment)
            if stage.status != StageStatus.APPROVED and not policy.requires_approval:
                self.request(version, environment, stage.requested_by)
            return self._move(version, environment, StageStatus.DEPLOYING, deployment_id=deployment_id)

    def complete(self, version: str, environment: str) -> PromotionStage:
        return self._move(version, environment, StageStatus.DEPLOYED)

    def fail(self, version: str, environment: str) -> PromotionStage:
        return self._move(version, environment, StageStatus.FAILED)

    def roll_back(self, version: str, environment: str) -> PromotionStage:
        return self._move(version, environment, StageStatus.ROLLED_BACK)

    def reset(self, version: str, environment: str) -> PromotionStage:
        stage = self._move(version, environment, StageStatus.PENDING, clear_approvals=True)
        return stage

    # -- Internals ------------------------------------------------------------

    def _move(
        self,
        version: str,
        environment: str,
        status: StageStatus,
        deployment_id: str | None = None,
        clear_approvals: bool = False,
    ) -> PromotionStage:
        with self._lock:
            promotions = self._load()
            stage = self._stage(self._promotion(promotions, version), environment)
            self._transition(stage, status, version)
            if deployment_id is not None:
                stage.deployment_id = deployment_id
            if clear_approvals:
                stage.approvals = []
            self._save(promotions)
            return stage

    @staticmethod
    def _transition(stage: PromotionStage, status: StageStatus, version: str) -> None:
        if status not in TRANSITIONS[stage.status]:
            raise PromotionError(
                f"Illegal transition for {version} in '{stage.environment}': "
                f"{stage.status.value} -> {status.value}"
            )
        logger.info(
            "Promotion %s@%s: %s -> %s",
            version, stage.environment, stage.status.value, status.value,
        )
        stage.status = status
        stage.updated_at = utc_now()

    @staticmethod
    def _check_approver(
        approvers: list[str],
        allow_self: bool,
        stage: PromotionStage,
        approver: str,
    ) -> None:
        if not approver:
            raise ApprovalError("An approver must be named")
        if approvers and approver not in approvers:
            raise ApprovalError(f"{approver} is not an approver for '{stage.environment}'")
        if not allow_self and stage.requested_by and approver == stage.requested_by:
            raise ApprovalError(f"{approver} cannot approve their own promotion request")

    def _promotion(self, promotions: dict[str, Promotion], version: str) -> Promotion:
        promotion = promotions.get(version)
        if promotion is None:
            raise PromotionError(f"Version {version} is not tracked")
        return promotion

    def _stage(self, promotion: Promotion, environment: str) -> PromotionStage:
        stage = promotion.stage(environment)
        if stage is None:
            self.config.index_of(environment)
            raise PromotionError(
                f"Version {promotion.version} has no stage for '{environment}'"
            )
        return stage
