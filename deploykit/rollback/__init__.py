"""Rollback — revert environments to previously successful versions."""

from deploykit.rollback.coordinator import RollbackCoordinator

__all__ = ["RollbackCoordinator"]
