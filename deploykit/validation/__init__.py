"""Deployment request validation against environment policies."""

from deploykit.validation.report import ValidationIssue, ValidationReport
from deploykit.validation.validator import RequestValidator

__all__ = ["RequestValidator", "ValidationIssue", "ValidationReport"]
