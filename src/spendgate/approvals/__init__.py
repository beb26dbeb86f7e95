"""Approvals module: human-in-the-loop purchase decisions.

The approval service lives in ``spendgate.approvals.service``.
"""

from spendgate.approvals.models import Approval, ApprovalStatus, generate_approval_token

__all__ = ["Approval", "ApprovalStatus", "generate_approval_token"]
