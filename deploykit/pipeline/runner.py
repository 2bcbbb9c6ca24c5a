"""PipelineRunner — executes pipeline definitions stage by stage."""

from __future__ import annotations

import logging
import os
import shutil
import string
import subprocess
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from deploykit.models import new_id, utc_now
from deploykit.notifications.dispatcher import NotificationDispatcher
from deploykit.pipeline.definition import (
    PipelineDefinition,
    PostAction,
    PostActions,
    StageDefinition,
    Step,
)

logger = logging.getLogger(__name__)

_OUTPUT_LIMIT = 20_000


class StepResult(BaseModel):
    command: str
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out


class StageResult(BaseModel):
    name: str
    status: str = "skipped"
    """Status: 'succeeded', 'failed', or 'skipped'."""

    steps: list[StepResult] = Field(default_factory=list)
    archived: list[str] = Field(default_factory=list)
    duration: float = 0.0


class PipelineResult(BaseModel):
    """Outcome of one pipeline run."""

    run_id: str = Field(default_factory=new_id)
    name: str = ""
    success: bool = False
    stages: list[StageResult] = Field(default_factory=list)
    archive_dir: str = ""
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None

    def stage(self, name: str) -> StageResult | None:
        for result in self.stages:
            if result.name == name:
                return result
        return None

    @property
    def archived(self) -> list[str]:
        """Every archived path, relative to ``archive_dir``, in stage order."""
        return [path for result in self.stages for path in result.archived]

    @property
    def failed_stage(self) -> str | None:
        for result in self.stages:
            if result.status == "failed":
                return result.name
        return None


class PipelineRunner:
    """Run pipelines in a workspace directory.

    Stages run in order; the first failing step fails its stage and every
    later stage is skipped.  Post actions run after each stage and after
    the pipeline; their failures are logged but never change the outcome.

    Parameters
    ----------
    workspace:
        Working directory for every step.
    dispatcher:
        Notification dispatcher for ``notify`` post actions.
    env:
        Extra environment variables layered over the process environment.
    """

    def __init__(
        self,
        workspace: str | Path,
        dispatcher: NotificationDispatcher | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        self.workspace = Path(workspace)
        self.dispatcher = dispatcher
        self.env = dict(env or {})

    def run(self, definition: PipelineDefinition) -> PipelineResult:
        result = PipelineResult(name=definition.name)
        archive_dir = self.workspace / ".deploykit" / "archive" / result.run_id
        result.archive_dir = str(archive_dir)
        env = self._build_env(definition.environment)

        logger.info("Pipeline %s started (run %s)", definition.name, result.run_id)
        failed = False
        for stage in definition.stages:
            if failed:
                result.stages.append(StageResult(name=stage.name, status="skipped"))
                continue
            stage_result = self._run_stage(stage, env, archive_dir)
            result.stages.append(stage_result)
            failed = stage_result.status == "failed"

        result.success = not failed
        self._run_post(definition.post, result.success, env, label=definition.name)
        result.finished_at = utc_now()

        if self.dispatcher is not None:
            summary = f"failed at {result.failed_stage}" if failed else ""
            self.dispatcher.pipeline_finished(definition.name, result.success, summary)
        logger.info(
            "Pipeline %s %s", definition.name, "succeeded" if result.success else "failed",
        )
        return result

    # -- Stages ---------------------------------------------------------------

    def _run_stage(
        self,
        stage: StageDefinition,
        env: dict[str, str],
        archive_dir: Path,
    ) -> StageResult:
        started = time.monotonic()
        result = StageResult(name=stage.name, status="succeeded")
        logger.info("Stage %s", stage.name)

        for step in stage.steps:
            step_result = self._run_step(step, env)
            result.steps.append(step_result)
            if not step_result.success:
                logger.error(
                    "Stage %s: '%s' failed (rc=%s)", stage.name, step.run, step_result.returncode,
                )
                result.status = "failed"
                break

        if result.status == "succeeded" and stage.archive:
            result.archived = self._archive(stage.archive, archive_dir)

        self._run_post(stage.post, result.status == "succeeded", env, label=stage.name)
        result.duration = time.monotonic() - started
        return result

    def _run_step(self, step: Step, env: dict[str, str]) -> StepResult:
        logger.debug("sh %s", step.run)
        started = time.monotonic()
        try:
            proc = subprocess.run(
                step.run,
                shell=True,
                cwd=self.workspace,
                env=env,
                capture_output=True,
                text=True,
                timeout=step.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            return StepResult(
                command=step.run,
                returncode=-1,
                stdout=_text(exc.stdout),
                stderr=f"timed out after {step.timeout}s",
                duration=time.monotonic() - started,
                timed_out=True,
            )
        return StepResult(
            command=step.run,
            returncode=proc.returncode,
            stdout=proc.stdout[-_OUTPUT_LIMIT:],
            stderr=proc.stderr[-_OUTPUT_LIMIT:],
            duration=time.monotonic() - started,
        )

    def _archive(self, patterns: list[str], archive_dir: Path) -> list[str]:
        archived: list[str] = []
        for pattern in patterns:
            matches = sorted(p for p in self.workspace.glob(pattern) if p.is_file())
            if not matches:
                logger.warning("Archive pattern matched nothing: %s", pattern)
            for path in matches:
                rel = path.relative_to(self.workspace)
                dest = archive_dir / rel
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(path, dest)
                archived.append(rel.as_posix())
        return archived

    # -- Post actions ---------------------------------------------------------

    def _run_post(self, post: PostActions, success: bool, env: dict[str, str], label: str) -> None:
        actions = list(post.success if success else post.failure) + list(post.always)
        for action in actions:
            self._run_action(action, success, env, label)

    def _run_action(self, action: PostAction, success: bool, env: dict[str, str], label: str) -> None:
        if action.notify:
            if self.dispatcher is None:
                logger.info("[%s] %s", label, action.notify)
                return
            self.dispatcher.dispatch(
                "pipeline_notification",
                details=action.notify,
                channel=action.channel,
                severity="success" if success else "failure",
            )
            return

        step_result = self._run_step(Step(run=action.run), env)
        if not step_result.success:
            logger.warning(
                "Post action '%s' for %s failed (rc=%s): %s",
                action.run, label, step_result.returncode, step_result.stderr.strip(),
            )

    def _build_env(self, pipeline_env: dict[str, str]) -> dict[str, str]:
        env = {**os.environ, **self.env}
        for key, value in pipeline_env.items():
            env[key] = string.Template(str(value)).safe_substitute(env)
        return env


def _text(value: bytes | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
