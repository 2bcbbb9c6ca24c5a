"""DeploymentHistory — persisted deployment and rollback records per environment."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any

from deploykit.models import DeploymentRecord, DeploymentStatus, RollbackRecord

logger = logging.getLogger(__name__)


class DeploymentHistory:
    """Store deployment records, rollback records, and current versions.

    Files live in *state_dir*: ``deployments.json``, ``rollbacks.json`` and
    ``current.json`` (environment -> version currently running).
    """

    def __init__(self, state_dir: str | Path) -> None:
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self._deployments_path = self.state_dir / "deployments.json"
        self._rollbacks_path = self.state_dir / "rollbacks.json"
        self._current_path = self.state_dir / "current.json"
        self._lock = threading.RLock()

    # -- Persistence ----------------------------------------------------------

    def _read(self, path: Path, default: Any) -> Any:
        if not path.is_file():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.debug("Could not read %s", path, exc_info=True)
            return default

    def _write(self, path: Path, data: Any) -> None:
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
        tmp.replace(path)

    def _load_records(self) -> list[DeploymentRecord]:
        return [DeploymentRecord.model_validate(r) for r in self._read(self._deployments_path, [])]

    def _save_records(self, records: list[DeploymentRecord]) -> None:
        self._write(self._deployments_path, [r.model_dump(mode="json") for r in records])

    # -- Deployments ----------------------------------------------------------

    def record(self, record: DeploymentRecord) -> DeploymentRecord:
        """Insert or replace *record* (matched by id)."""
        with self._lock:
            records = self._load_records()
            for i, existing in enumerate(records):
                if existing.id == record.id:
                    records[i] = record
                    break
            else:
                records.append(record)
            self._save_records(records)
        return record

    def get(self, deployment_id: str) -> DeploymentRecord | None:
        for record in self._load_records():
            if record.id == deployment_id:
                return record
        return None

    def list(
        self,
        environment: str | None = None,
        version: str | None = None,
        status: DeploymentStatus | None = None,
    ) -> list[DeploymentRecord]:
        """Return records oldest first, optionally filtered."""
        result: list[DeploymentRecord] = []
        for record in self._load_records():
            if environment and record.environment != environment:
                continue
            if version and record.version != version:
                continue
            if status and record.status != status:
                continue
            result.append(record)
        return result

    def last_successful(
        self,
        environment: str,
        exclude: str | None = None,
    ) -> DeploymentRecord | None:
        """Most recent succeeded deployment in *environment* not for *exclude*."""
        for record in reversed(self.list(environment, status=DeploymentStatus.SUCCEEDED)):
            if exclude is not None and record.version == exclude:
                continue
            return record
        return None

    def find_successful(self, environment: str, version: str) -> DeploymentRecord | None:
        """Most recent succeeded deployment of *version* in *environment*."""
        records = self.list(environment, version=version, status=DeploymentStatus.SUCCEEDED)
        return records[-1] if records else None

    def mark_rolled_back(self, environment: str, version: str) -> int:
        """Flag succeeded records of *version* as rolled back.

        Returns the number of records changed.
        """
        changed = 0
        with self._lock:
            records = self._load_records()
            for record in records:
                if (
                    record.environment == environment
                    and record.version == version
                    and record.status == DeploymentStatus.SUCCEEDED
                ):
                    record.status = DeploymentStatus.ROLLED_BACK
                    changed += 1
            if changed:
                self._save_records(records)
        return changed

    # -- Current version ------------------------------------------------------

    def current(self, environment: str) -> str | None:
        return self._read(self._current_path, {}).get(environment)

    def set_current(self, environment: str, version: str | None) -> None:
        with self._lock:
            current = self._read(self._current_path, {})
            if version is None:
                current.pop(environment, None)
            else:
                current[environment] = version
            self._write(self._current_path, current)

    def current_versions(self) -> dict[str, str]:
        return dict(self._read(self._current_path, {}))

    # -- Rollbacks ------------------------------------------------------------

    def record_rollback(self, rollback: RollbackRecord) -> RollbackRecord:
        with self._lock:
            data = self._read(self._rollbacks_path, [])
            data.append(rollback.model_dump(mode="json"))
            self._write(self._rollbacks_path, data)
        return rollback

    def rollbacks(self, environment: str | None = None) -> list[RollbackRecord]:
        records = [RollbackRecord.model_validate(r) for r in self._read(self._rollbacks_path, [])]
        if environment:
            records = [r for r in records if r.environment == environment]
        return records
