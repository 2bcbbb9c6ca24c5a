"""Promotion — approval-gated progression of versions across environments."""

from deploykit.promotion.approvals import ApprovalLedger
from deploykit.promotion.tracker import TRANSITIONS, PromotionTracker

__all__ = ["ApprovalLedger", "PromotionTracker", "TRANSITIONS"]
