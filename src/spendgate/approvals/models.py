"""Approval models for human-in-the-loop purchase decisions."""

import secrets
import uuid
from datetime import datetime, UTC
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class ApprovalStatus(str, Enum):
    """State machine states for an approval.

    pending -> approved | rejected | expired (terminal, one-way)
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


def generate_approval_token() -> str:
    """Unguessable approval token (32 hex chars)."""
    return secrets.token_hex(16)


class Approval(BaseModel):
    """A purchase waiting for the user's decision."""

    approval_id: str = Field(
        default_factory=lambda: f"apr_{uuid.uuid4().hex[:16]}",
        description="Unique approval identifier",
    )
    user_id: str
    token: str = Field(
        default_factory=generate_approval_token,
        min_length=16,
        description="Secret used to resolve the approval",
    )

    # Purchase snapshot
    item: str
    amount: Decimal = Field(gt=0)
    currency: str = "USD"
    merchant: str
    merchant_url: Optional[str] = None
    category: Optional[str] = None

    risk_flags: List[str] = Field(default_factory=list)
    reason: Optional[str] = None
    status: ApprovalStatus = Field(default=ApprovalStatus.PENDING)
    expires_at: datetime
    resolved_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING

    def is_expired_at(self, now: datetime) -> bool:
        return now > self.expires_at
