"""Abstract DeploymentTarget interface."""

from __future__ import annotations

import abc

from deploykit.models import ArtifactRef, DeploymentRequest


class DeploymentTarget(abc.ABC):
    """Where an environment's releases are installed.

    Targets are thin adapters over external systems; they raise
    :class:`~deploykit.errors.DeploymentError` when an operation fails.
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Target name."""

    def pre_check(self, request: DeploymentRequest) -> list[str]:
        """Return a list of problems preventing *request* from being applied."""
        return []

    @abc.abstractmethod
    def apply(self, artifact: ArtifactRef, environment: str) -> None:
        """Install *artifact* and make it the running version."""

    @abc.abstractmethod
    def current_version(self) -> str | None:
        """Version currently running on the target, if known."""
