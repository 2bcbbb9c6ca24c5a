"""Pipelines — declarative build/test/deploy stages run as shell steps."""

from deploykit.pipeline.definition import (
    PipelineDefinition,
    PostAction,
    PostActions,
    StageDefinition,
    Step,
    load_pipeline,
)
from deploykit.pipeline.runner import PipelineResult, PipelineRunner, StageResult, StepResult

__all__ = [
    "PipelineDefinition",
    "PipelineResult",
    "PipelineRunner",
    "PostAction",
    "PostActions",
    "StageDefinition",
    "StageResult",
    "Step",
    "StepResult",
    "load_pipeline",
]
