"""ArtifactRepository — immutable, checksummed storage of release archives."""

from __future__ import annotations

import io
import json
import logging
import re
import tarfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from deploykit.audit.hasher import Hasher
from deploykit.errors import ArtifactError
from deploykit.models import ArtifactRef

logger = logging.getLogger(__name__)

MANIFEST_NAME = "artifact_manifest.json"
METADATA_NAME = "artifact.json"

_EXCLUDE_DIRS = {".git", "__pycache__", ".pytest_cache", "node_modules", ".deploykit"}
_EXCLUDE_EXTENSIONS = {".pyc", ".pyo"}
_SAFE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+-]*$")


def _iter_files(source: Path) -> list[tuple[Path, str]]:
    """Return ``(path, arcname)`` pairs for every packageable file in *source*."""
    if source.is_file():
        return [(source, source.name)]

    files: list[tuple[Path, str]] = []
    for fpath in sorted(source.rglob("*")):
        if not fpath.is_file():
            continue
        rel = fpath.relative_to(source)
        if any(d in _EXCLUDE_DIRS for d in rel.parts):
            continue
        if fpath.suffix in _EXCLUDE_EXTENSIONS:
            continue
        files.append((fpath, rel.as_posix()))
    return files


def read_manifest(archive: str | Path) -> dict[str, Any]:
    """Return the embedded manifest of an artifact archive.

    Raises :class:`ArtifactError` if the archive or manifest is unreadable.
    """
    try:
        with tarfile.open(archive, "r:gz") as tar:
            mf = tar.extractfile(MANIFEST_NAME)
            if mf is None:
                raise ArtifactError(f"Manifest missing from {archive}")
            return json.loads(mf.read())
    except KeyError:
        raise ArtifactError(f"Manifest missing from {archive}") from None
    except (tarfile.TarError, OSError, json.JSONDecodeError) as exc:
        raise ArtifactError(f"Unreadable artifact {archive}: {exc}") from exc


def verify_archive(archive: str | Path) -> bool:
    """Check every file hash in the archive against its embedded manifest."""
    path = Path(archive)
    if not path.is_file():
        return False

    try:
        with tarfile.open(path, "r:gz") as tar:
            try:
                mf = tar.extractfile(MANIFEST_NAME)
                if mf is None:
                    return False
                manifest = json.loads(mf.read())
            except (KeyError, json.JSONDecodeError):
                return False

            files = manifest.get("files", {})
            expected_content = manifest.get("content_hash")
            if expected_content and Hasher.hash_manifest(files) != expected_content:
                logger.warning("Manifest content hash mismatch in %s", path)
                return False

            for fname, expected_hash in files.items():
                try:
                    member = tar.getmember(fname)
                except KeyError:
                    logger.warning("Missing file in archive: %s", fname)
                    return False
                ef = tar.extractfile(member)
                if ef is None:
                    return False
                if Hasher.hash_stream(ef) != expected_hash:
                    logger.warning("Hash mismatch for %s", fname)
                    return False
    except (tarfile.TarError, OSError) as exc:
        logger.error("Failed to verify artifact %s: %s", path, exc)
        return False

    return True


class ArtifactRepository:
    """Publish and look up versioned release artifacts.

    Layout::

        <root>/<name>/<version>/<name>-<version>.tar.gz
        <root>/<name>/<version>/artifact.json

    Versions are immutable: publishing an existing name/version raises
    :class:`ArtifactError`.

    Parameters
    ----------
    root:
        Repository root directory.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def publish(
        self,
        source: str | Path,
        name: str,
        version: str,
        metadata: dict[str, Any] | None = None,
    ) -> ArtifactRef:
        """Package *source* (file or directory) as ``name`` at ``version``.

        Returns the published :class:`ArtifactRef`.
        """
        src = Path(source).resolve()
        if not src.exists():
            raise ArtifactError(f"Artifact source not found: {src}")
        for label, value in (("name", name), ("version", version)):
            if not _SAFE_NAME.match(value):
                raise ArtifactError(f"Invalid artifact {label}: {value!r}")

        version_dir = self.root / name / version
        if (version_dir / METADATA_NAME).is_file():
            raise ArtifactError(f"Artifact {name} {version} is already published")
        version_dir.mkdir(parents=True, exist_ok=True)

        archive = version_dir / f"{name}-{version}.tar.gz"
        manifest: dict[str, Any] = {
            "name": name,
            "version": version,
            "package_timestamp": datetime.now(timezone.utc).isoformat(),
            "files": {},
        }

        files = _iter_files(src)
        if not files:
            raise ArtifactError(f"Artifact source is empty: {src}")

        with tarfile.open(archive, "w:gz") as tar:
            for fpath, arcname in files:
                tar.add(fpath, arcname=arcname)
                manifest["files"][arcname] = Hasher.hash_file(fpath)
            manifest["content_hash"] = Hasher.hash_manifest(manifest["files"])

            manifest_json = json.dumps(manifest, indent=2).encode("utf-8")
            info = tarfile.TarInfo(name=MANIFEST_NAME)
            info.size = len(manifest_json)
            tar.addfile(info, io.BytesIO(manifest_json))

        ref = ArtifactRef(
            name=name,
            version=version,
            uri=str(archive),
            checksum=Hasher.hash_file(archive),
            metadata=dict(metadata or {}),
        )
        (version_dir / METADATA_NAME).write_text(
            ref.model_dump_json(indent=2), encoding="utf-8",
        )

        logger.info("Published artifact %s %s (%d files)", name, version, len(files))
        return ref

    def get(self, name: str, version: str) -> ArtifactRef:
        """Return the artifact reference for ``name`` at ``version``.

        Raises :class:`ArtifactError` if it was never published.
        """
        meta_path = self.root / name / version / METADATA_NAME
        if not meta_path.is_file():
            raise ArtifactError(f"Artifact not found: {name} {version}")
        try:
            return ArtifactRef.model_validate_json(meta_path.read_text(encoding="utf-8"))
        except (ValueError, OSError) as exc:
            raise ArtifactError(f"Corrupt artifact metadata for {name} {version}: {exc}") from exc

    def exists(self, name: str, version: str) -> bool:
        return (self.root / name / version / METADATA_NAME).is_file()

    def find(self, version: str, name: str | None = None) -> ArtifactRef | None:
        """Find *version* under *name*, or under any name when only one matches."""
        if name is not None:
            return self.get(name, version) if self.exists(name, version) else None
        matches = [n for n in self.list_artifacts() if self.exists(n, version)]
        if len(matches) == 1:
            return self.get(matches[0], version)
        return None

    def list_artifacts(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(p.name for p in self.root.iterdir() if p.is_dir())

    def list_versions(self, name: str) -> list[ArtifactRef]:
        """Return every published version of *name*, oldest first."""
        base = self.root / name
        if not base.is_dir():
            return []
        refs: list[ArtifactRef] = []
        for version_dir in base.iterdir():
            if (version_dir / METADATA_NAME).is_file():
                try:
                    refs.append(self.get(name, version_dir.name))
                except ArtifactError:
                    logger.debug("Skipping corrupt artifact %s", version_dir, exc_info=True)
        return sorted(refs, key=lambda r: r.published_at)

    def verify(self, ref: ArtifactRef) -> bool:
        """Return True if the archive matches its checksum and manifest."""
        archive = Path(ref.uri)
        if not archive.is_file():
            return False
        if ref.checksum and Hasher.hash_file(archive) != ref.checksum:
            logger.warning("Checksum mismatch for %s %s", ref.name, ref.version)
            return False
        return verify_archive(archive)
