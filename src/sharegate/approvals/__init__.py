"""Approval workflow: optional per-requester gate on a transfer."""

from .model import (
    ALLOWED_TRANSITIONS,
    ApprovalRepository,
    ApprovalRequest,
    ApprovalStatus,
    InMemoryApprovalRepository,
    apply_decision,
)
from .workflow import ApprovalWorkflow

__all__ = [
    'ALLOWED_TRANSITIONS',
    'ApprovalRepository',
    'ApprovalRequest',
    'ApprovalStatus',
    'ApprovalWorkflow',
    'InMemoryApprovalRepository',
    'apply_decision',
]
