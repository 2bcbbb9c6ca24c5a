"""Artifact publishing — immutable, checksummed release archives."""

from deploykit.artifacts.repository import ArtifactRepository, read_manifest, verify_archive

__all__ = ["ArtifactRepository", "read_manifest", "verify_archive"]
