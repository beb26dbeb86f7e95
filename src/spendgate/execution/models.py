"""Instrument and funding-session models."""

import uuid
from datetime import datetime, UTC
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from spendgate.cards.models import CardDetails


class SessionStatus(str, Enum):
    """State machine states for a funding session.

    active -> completed (checkout succeeded) | drained (anything else)
    """

    ACTIVE = "active"
    COMPLETED = "completed"
    DRAINED = "drained"


class DrainReason(str, Enum):
    """Why a funding session ended."""

    CHECKOUT_SUCCESS = "checkout_success"
    CHECKOUT_FAILED = "checkout_failed"
    TIMEOUT = "timeout"
    STALE_CLEANUP = "stale_cleanup"
    ROLLBACK = "rollback"  # Funding saga failed part-way


class Instrument(BaseModel):
    """
    The user's persistent virtual card.

    Balance and spending limit are zero whenever no session is active.
    While funded, ``balance`` is the last known card balance; charges land
    on the card and are picked up when card details are read.
    """

    instrument_id: str = Field(
        default_factory=lambda: f"ins_{uuid.uuid4().hex[:16]}",
    )
    user_id: str
    card_id: str = Field(description="Vendor card identifier")
    last4: str
    brand: str = "visa"
    currency: str = "USD"
    spending_limit: Decimal = Field(default=Decimal("0"), ge=0)
    balance: Decimal = Field(default=Decimal("0"), ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_idle(self) -> bool:
        return self.balance == 0 and self.spending_limit == 0


class FundingSession(BaseModel):
    """One funded window on the instrument ("top-up")."""

    session_id: str = Field(
        default_factory=lambda: f"tu_{uuid.uuid4().hex[:16]}",
        description="Top-up id returned to the agent",
    )
    user_id: str
    instrument_id: str
    transaction_id: Optional[str] = None
    amount: Decimal = Field(gt=0)
    status: SessionStatus = Field(default=SessionStatus.ACTIVE)
    drain_reason: Optional[DrainReason] = None
    debit_entry_id: Optional[str] = Field(
        default=None,
        description="Wallet debit backing this session, if recorded",
    )
    drained_amount: Optional[Decimal] = None
    expires_at: datetime
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE


class DrainDeadline(BaseModel):
    """Scheduled auto-drain for one session."""

    user_id: str
    session_id: str
    fire_at: datetime


class TopUpResult(BaseModel):
    """Outcome of funding the instrument."""

    session_id: str
    transaction_id: Optional[str]
    amount: Decimal
    expires_at: datetime
    card: CardDetails


class DrainResult(BaseModel):
    """Outcome of a drain call."""

    status: str = Field(description="drained | already_drained")
    session_id: Optional[str] = None
    drained_amount: Optional[Decimal] = None
    refunded_amount: Optional[Decimal] = None
    reason: Optional[DrainReason] = None

    @property
    def was_drained(self) -> bool:
        return self.status == "drained"


class PurchaseOutcome(BaseModel):
    """What the purchase call returns to the agent."""

    status: str = Field(description="approved | pending_approval | rejected")
    transaction_id: Optional[str] = None
    topup_id: Optional[str] = None
    card: Optional[CardDetails] = None
    approval_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    reason: Optional[str] = None
    risk_flags: List[str] = Field(default_factory=list)
