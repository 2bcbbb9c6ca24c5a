"""Validation report models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ValidationIssue(BaseModel):
    """A single policy violation found in a deployment request."""

    code: str
    field: str = ""
    message: str = ""


class ValidationReport(BaseModel):
    """Aggregate result of validating a deployment request."""

    environment: str = ""
    version: str = ""
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.issues

    @property
    def codes(self) -> list[str]:
        return [issue.code for issue in self.issues]

    def add(self, code: str, field: str, message: str) -> None:
        self.issues.append(ValidationIssue(code=code, field=field, message=message))
