"""CommandTarget — delegates deployment to shell command templates."""

from __future__ import annotations

import logging
import os
import re
import subprocess
from pathlib import Path

from deploykit.errors import DeploymentError
from deploykit.execution.targets.base import DeploymentTarget
from deploykit.models import ArtifactRef, DeploymentRequest

logger = logging.getLogger(__name__)

# {name} placeholders; shell ${VAR} expansions are left alone
_PLACEHOLDER = re.compile(r"(?<!\$)\{(artifact|name|version|environment)\}")


def _run_shell(
    command: str,
    cwd: str | Path | None = None,
    env: dict[str, str] | None = None,
    timeout: float | None = None,
) -> subprocess.CompletedProcess[str]:
    logger.debug("sh %s (cwd=%s)", command, cwd)
    merged = {**os.environ, **(env or {})}
    try:
        return subprocess.run(
            command,
            shell=True,
            cwd=cwd,
            env=merged,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        raise DeploymentError(f"Command timed out after {timeout}s: {command}") from exc


class CommandTarget(DeploymentTarget):
    """Run shell commands to deploy, e.g. ``docker push`` or ``kubectl apply``.

    Templates substitute ``{artifact}`` (archive path), ``{version}``,
    ``{environment}`` and ``{name}`` (artifact name). Any other text, including
    shell ``${VAR}`` expansions, reaches the shell unchanged.

    Parameters
    ----------
    apply:
        Command that installs the artifact.  Non-zero exit fails the deployment.
    pre_check:
        Optional command run before applying; non-zero exit is a pre-check problem.
    current:
        Optional command printing the running version on stdout.
    cwd:
        Working directory for the commands.
    env:
        Extra environment variables.
    timeout:
        Per-command timeout in seconds.
    """

    def __init__(
        self,
        apply: str,
        pre_check: str = "",
        current: str = "",
        cwd: str | Path | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = 600,
    ) -> None:
        self.apply_template = apply
        self.pre_check_template = pre_check
        self.current_template = current
        self.cwd = cwd
        self.env = dict(env or {})
        self.timeout = timeout

    @property
    def name(self) -> str:
        return f"command:{self.apply_template.split()[0] if self.apply_template else ''}"

    @staticmethod
    def _format(template: str, artifact: ArtifactRef | None, version: str, environment: str) -> str:
        values = {
            "artifact": artifact.uri if artifact else "",
            "name": artifact.name if artifact else "",
            "version": version,
            "environment": environment,
        }
        return _PLACEHOLDER.sub(lambda m: values[m.group(1)], template)

    def pre_check(self, request: DeploymentRequest) -> list[str]:
        if not self.pre_check_template:
            return []
        command = self._format(
            self.pre_check_template, request.artifact, request.version, request.environment,
        )
        result = _run_shell(command, self.cwd, self.env, self.timeout)
        if result.returncode != 0:
            return [f"pre-check failed (rc={result.returncode}): {result.stderr.strip()}"]
        return []

    def apply(self, artifact: ArtifactRef, environment: str) -> None:
        command = self._format(self.apply_template, artifact, artifact.version, environment)
        result = _run_shell(command, self.cwd, self.env, self.timeout)
        if result.returncode != 0:
            raise DeploymentError(
                f"{command} failed (rc={result.returncode}): {result.stderr.strip()}"
            )
        logger.info("Applied %s %s to %s", artifact.name, artifact.version, environment)

    def current_version(self) -> str | None:
        if not self.current_template:
            return None
        result = _run_shell(self.current_template, self.cwd, self.env, self.timeout)
        if result.returncode != 0:
            logger.debug("Current-version command failed: %s", result.stderr.strip())
            return None
        return result.stdout.strip() or None
