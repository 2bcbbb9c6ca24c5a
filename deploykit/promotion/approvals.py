"""ApprovalLedger — durable record of every promotion approval decision."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from deploykit.models import Approval

logger = logging.getLogger(__name__)


class ApprovalLedger:
    """Store approval and rejection decisions in ``approvals.json``."""

    def __init__(self, state_dir: str | Path) -> None:
        self.state_dir = Path(state_dir)
        self._path = self.state_dir / "approvals.json"
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def _load(self) -> list[Approval]:
        if not self._path.is_file():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return [Approval.model_validate(a) for a in data]
        except (json.JSONDecodeError, OSError):
            logger.debug("Could not read %s", self._path, exc_info=True)
            return []

    def _save(self, approvals: list[Approval]) -> None:
        data = [a.model_dump(mode="json") for a in approvals]
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def add(self, approval: Approval) -> Approval:
        approvals = self._load()
        approvals.append(approval)
        self._save(approvals)
        logger.info(
            "%s %s %s for %s",
            approval.approver, approval.decision, approval.version, approval.environment,
        )
        return approval

    def for_stage(self, version: str, environment: str) -> list[Approval]:
        """All decisions recorded for *version* in *environment*, oldest first."""
        return [
            a for a in self._load()
            if a.version == version and a.environment == environment
        ]

    def history(self, approver: str | None = None) -> list[Approval]:
        approvals = self._load()
        if approver:
            approvals = [a for a in approvals if a.approver == approver]
        return approvals
