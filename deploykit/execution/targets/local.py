"""LocalDirectoryTarget — installs release archives into a directory tree."""

from __future__ import annotations

import logging
import shutil
import tarfile
from pathlib import Path

from deploykit.artifacts.repository import MANIFEST_NAME, verify_archive
from deploykit.errors import DeploymentError
from deploykit.execution.targets.base import DeploymentTarget
from deploykit.models import ArtifactRef, DeploymentRequest

logger = logging.getLogger(__name__)

CURRENT_FILE = "CURRENT"


class LocalDirectoryTarget(DeploymentTarget):
    """Install artifacts under ``<root>/releases/<version>/``.

    The running version is recorded in ``<root>/CURRENT``, replaced
    atomically once a release is fully extracted.

    Parameters
    ----------
    root:
        Installation root for the environment.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    @property
    def name(self) -> str:
        return f"local:{self.root}"

    @property
    def releases_dir(self) -> Path:
        return self.root / "releases"

    def release_path(self, version: str) -> Path:
        return self.releases_dir / version

    def pre_check(self, request: DeploymentRequest) -> list[str]:
        problems: list[str] = []
        try:
            self.releases_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            problems.append(f"Cannot create {self.releases_dir}: {exc}")
            return problems

        probe = self.root / ".write-test"
        try:
            probe.write_text("", encoding="utf-8")
            probe.unlink()
        except OSError as exc:
            problems.append(f"{self.root} is not writable: {exc}")

        if request.artifact is not None and not Path(request.artifact.uri).is_file():
            problems.append(f"Artifact archive missing: {request.artifact.uri}")
        return problems

    def apply(self, artifact: ArtifactRef, environment: str) -> None:
        archive = Path(artifact.uri)
        if not verify_archive(archive):
            raise DeploymentError(f"Artifact verification failed: {archive}")

        target = self.release_path(artifact.version)
        staging = self.releases_dir / f".{artifact.version}.partial"
        if staging.exists():
            shutil.rmtree(staging)
        staging.mkdir(parents=True)

        try:
            with tarfile.open(archive, "r:gz") as tar:
                members = []
                for m in tar.getmembers():
                    if m.name.startswith("/") or ".." in Path(m.name).parts:
                        logger.warning("Skipped suspicious path: %s", m.name)
                        continue
                    if m.name == MANIFEST_NAME:
                        continue
                    members.append(m)
                tar.extractall(staging, members=members, filter="data")
        except (tarfile.TarError, OSError) as exc:
            shutil.rmtree(staging, ignore_errors=True)
            raise DeploymentError(f"Extraction failed for {archive}: {exc}") from exc

        if target.exists():
            shutil.rmtree(target)
        staging.replace(target)
        self._write_current(artifact.version)
        logger.info("Installed %s %s into %s", artifact.name, artifact.version, target)

    def current_version(self) -> str | None:
        current = self.root / CURRENT_FILE
        if not current.is_file():
            return None
        version = current.read_text(encoding="utf-8").strip()
        return version or None

    def _write_current(self, version: str) -> None:
        tmp = self.root / f".{CURRENT_FILE}.tmp"
        tmp.write_text(version + "\n", encoding="utf-8")
        tmp.replace(self.root / CURRENT_FILE)
