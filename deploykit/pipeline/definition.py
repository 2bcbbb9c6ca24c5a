"""Pipeline definitions — declarative stages of shell steps with post actions.

Example ``pipeline.yaml``::

    name: billing-service
    environment:
      JAVA_HOME: /usr/lib/jvm/openjdk-17
      PATH: "${JAVA_HOME}/bin:${PATH}"
    stages:
      - name: Build
        steps: ["mvn clean package -DskipTests"]
        archive: ["target/*.jar"]
      - name: Test
        steps: ["mvn test"]
      - name: Deploy
        steps:
          - docker build -t billing:latest .
          - {run: docker push registry/billing:latest, timeout: 300}
    post:
      success: [{notify: "Deployment succeeded!", channel: "#deployments"}]
      failure: [{notify: "Pipeline failed!", channel: "#failures"}]
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from deploykit.errors import PipelineError

logger = logging.getLogger(__name__)


class Step(BaseModel):
    """A single shell command."""

    run: str
    timeout: Optional[float] = None


class PostAction(BaseModel):
    """Either a shell command (``run``) or a notification (``notify``)."""

    run: str = ""
    notify: str = ""
    channel: str = ""

    @model_validator(mode="after")
    def _one_action(self) -> PostAction:
        if bool(self.run) == bool(self.notify):
            raise ValueError("post action needs exactly one of 'run' or 'notify'")
        return self


class PostActions(BaseModel):
    success: list[PostAction] = Field(default_factory=list)
    failure: list[PostAction] = Field(default_factory=list)
    always: list[PostAction] = Field(default_factory=list)


class StageDefinition(BaseModel):
    name: str
    steps: list[Step] = Field(default_factory=list)
    archive: list[str] = Field(default_factory=list)
    post: PostActions = Field(default_factory=PostActions)

    @field_validator("steps", mode="before")
    @classmethod
    def _coerce_steps(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [value]
        if isinstance(value, list):
            return [{"run": s} if isinstance(s, str) else s for s in value]
        return value


class PipelineDefinition(BaseModel):
    """A named, linear sequence of stages."""

    name: str = "pipeline"
    environment: dict[str, str] = Field(default_factory=dict)
    stages: list[StageDefinition]
    post: PostActions = Field(default_factory=PostActions)

    @model_validator(mode="after")
    def _check_stages(self) -> PipelineDefinition:
        if not self.stages:
            raise ValueError("a pipeline needs at least one stage")
        names = [s.name for s in self.stages]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"duplicate stage names: {', '.join(sorted(duplicates))}")
        return self


def load_pipeline(path: str | Path) -> PipelineDefinition:
    """Load a pipeline definition from a YAML file.

    Raises :class:`PipelineError` if the file is missing or invalid.
    """
    p = Path(path)
    if not p.is_file():
        raise PipelineError(f"Pipeline file not found: {p}")
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise PipelineError(f"Could not parse {p}: {exc}") from exc
    if not isinstance(data, dict):
        raise PipelineError(f"Pipeline root must be a mapping: {p}")
    try:
        return PipelineDefinition.model_validate(data)
    except ValidationError as exc:
        raise PipelineError(f"Invalid pipeline {p}: {exc}") from exc
