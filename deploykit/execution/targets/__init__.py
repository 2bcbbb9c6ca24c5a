"""Deployment targets — adapters that install an artifact into an environment."""

from __future__ import annotations

from pathlib import Path

from deploykit.config import TargetSpec
from deploykit.execution.targets.base import DeploymentTarget
from deploykit.execution.targets.command import CommandTarget
from deploykit.execution.targets.local import LocalDirectoryTarget


def build_target(spec: TargetSpec, base_dir: str | Path = ".") -> DeploymentTarget:
    """Create a target from its configuration; relative paths resolve against *base_dir*."""
    if spec.type == "local":
        path = Path(spec.path)
        if not path.is_absolute():
            path = Path(base_dir) / path
        return LocalDirectoryTarget(path)
    return CommandTarget(
        apply=spec.apply,
        pre_check=spec.pre_check,
        current=spec.current,
        cwd=base_dir,
        env=spec.env,
    )


__all__ = ["CommandTarget", "DeploymentTarget", "LocalDirectoryTarget", "build_target"]
