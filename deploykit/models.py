"""Pydantic models for deployments, promotions, and rollbacks."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex[:12]


class ArtifactRef(BaseModel):
    """Reference to a published, checksummed artifact."""

    name: str
    version: str
    uri: str = ""
    checksum: str = ""
    published_at: datetime = Field(default_factory=utc_now)
    metadata: dict[str, Any] = Field(default_factory=dict)


class DeploymentRequest(BaseModel):
    """A request to deploy *version* into *environment*."""

    id: str = Field(default_factory=new_id)
    environment: str
    version: str
    artifact: Optional[ArtifactRef] = None
    requested_by: str = ""
    reason: str = ""


class DeploymentPhase(str, Enum):
    """Phases a single environment deployment passes through."""

    PRE_CHECK = "pre_check"
    APPLY = "apply"
    HEALTH_VERIFY = "health_verify"
    FINALIZE = "finalize"
    ROLLBACK = "rollback"


class DeploymentStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class PhaseResult(BaseModel):
    """Outcome of one deployment phase."""

    phase: DeploymentPhase
    success: bool = True
    message: str = ""
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    details: dict[str, Any] = Field(default_factory=dict)


class DeploymentRecord(BaseModel):
    """Full record of a deployment attempt."""

    id: str = Field(default_factory=new_id)
    environment: str
    version: str
    artifact: Optional[ArtifactRef] = None
    requested_by: str = ""
    reason: str = ""
    status: DeploymentStatus = DeploymentStatus.PENDING
    phases: list[PhaseResult] = Field(default_factory=list)
    previous_version: Optional[str] = None
    rolled_back_to: Optional[str] = None
    error: str = ""
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None

    def phase(self, phase: DeploymentPhase) -> PhaseResult | None:
        """Return the last result recorded for *phase*, if any."""
        for result in reversed(self.phases):
            if result.phase == phase:
                return result
        return None


class StageStatus(str, Enum):
    """Status of a version within one environment of the promotion chain."""

    PENDING = "pending"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class Approval(BaseModel):
    """A single approval or rejection decision on a promotion stage."""

    id: str = Field(default_factory=new_id)
    version: str
    environment: str
    approver: str
    decision: str = "approved"
    """Decision: 'approved' or 'rejected'."""

    comment: str = ""
    timestamp: datetime = Field(default_factory=utc_now)


class PromotionStage(BaseModel):
    environment: str
    status: StageStatus = StageStatus.PENDING
    requested_by: str = ""
    approvals: list[str] = Field(default_factory=list)
    deployment_id: str = ""
    updated_at: datetime = Field(default_factory=utc_now)


class Promotion(BaseModel):
    """A version's progression across the ordered environment chain."""

    version: str
    artifact: Optional[ArtifactRef] = None
    stages: list[PromotionStage] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)

    def stage(self, environment: str) -> PromotionStage | None:
        for stage in self.stages:
            if stage.environment == environment:
                return stage
        return None

    @property
    def current_environment(self) -> str | None:
        """Furthest environment in the chain where this version is deployed."""
        current = None
        for stage in self.stages:
            if stage.status == StageStatus.DEPLOYED:
                current = stage.environment
        return current


class RollbackRecord(BaseModel):
    """Record of an automatic or operator-requested rollback."""

    id: str = Field(default_factory=new_id)
    environment: str
    from_version: Optional[str] = None
    to_version: str
    requested_by: str = ""
    reason: str = ""
    automatic: bool = False
    success: bool = False
    message: str = ""
    timestamp: datetime = Field(default_factory=utc_now)
