"""Ledger models: purchase transactions, wallet entries and the audit trail."""

import hashlib
import json
import uuid
from datetime import datetime, UTC
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class TransactionStatus(str, Enum):
    """Purchase attempt outcomes."""

    REJECTED = "rejected"        # Policy or user said no
    AUTHORIZED = "authorized"    # Card funded, checkout in progress
    COMPLETED = "completed"      # Drained after a successful checkout
    CANCELLED = "cancelled"      # Drained after failure, timeout or cleanup


class Transaction(BaseModel):
    """Durable record of a purchase attempt."""

    transaction_id: str = Field(
        default_factory=lambda: f"txn_{uuid.uuid4().hex[:16]}",
        description="Unique transaction identifier",
    )
    user_id: str
    item: str
    amount: Decimal = Field(gt=0)
    currency: str = "USD"
    merchant: str
    merchant_url: Optional[str] = None
    category: Optional[str] = None
    card_id: Optional[str] = Field(default=None, description="Card that was funded")
    status: TransactionStatus
    rejection_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: Optional[datetime] = None


class LedgerEntryType(str, Enum):
    """Balance-affecting wallet events."""

    DEPOSIT = "deposit"
    PURCHASE_DEBIT = "purchase_debit"
    REFUND = "refund"


class LedgerEntry(BaseModel):
    """
    Append-only wallet ledger entry.

    ``amount`` is always positive; the entry type carries the sign.
    """

    entry_id: str = Field(
        default_factory=lambda: f"le_{uuid.uuid4().hex[:16]}",
        description="Unique entry identifier",
    )
    user_id: str
    entry_type: LedgerEntryType
    amount: Decimal = Field(gt=0)
    balance_after: Decimal
    reference_id: Optional[str] = Field(
        default=None,
        description="Transaction id or checkout reference",
    )
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def signed_amount(self) -> Decimal:
        if self.entry_type == LedgerEntryType.PURCHASE_DEBIT:
            return -self.amount
        return self.amount


class EventType(str, Enum):
    """Types of events in the audit ledger."""

    PURCHASE_EVALUATED = "PURCHASE_EVALUATED"    # Policy decision made
    APPROVAL_CREATED = "APPROVAL_CREATED"        # Purchase deferred to the user
    APPROVAL_RESOLVED = "APPROVAL_RESOLVED"      # User approved or rejected
    APPROVAL_EXPIRED = "APPROVAL_EXPIRED"        # Resolution came too late
    TOPUP_FUNDED = "TOPUP_FUNDED"                # Card funded for a purchase
    SESSION_DRAINED = "SESSION_DRAINED"          # Card back at zero
    FUNDING_ROLLED_BACK = "FUNDING_ROLLED_BACK"  # Partial funding undone
    DEPOSIT_RECORDED = "DEPOSIT_RECORDED"        # Wallet credited


class AuditEntry(BaseModel):
    """
    Immutable audit entry with hash-chaining.

    Each entry contains:
    - Unique entry ID
    - Event type and payload
    - Previous entry's hash (for chain integrity)
    - Computed hash of this entry

    Tampering with any entry breaks the chain.
    """

    entry_id: str = Field(
        default_factory=lambda: f"audit_{uuid.uuid4().hex[:12]}",
        description="Unique entry identifier",
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When event occurred",
    )
    event_type: EventType = Field(description="Type of event")

    # Payload - the actual event data
    payload: dict = Field(description="Event-specific data")

    # Chain linking
    previous_hash: str = Field(
        default="genesis",
        description="Hash of previous entry",
    )

    user_id: Optional[str] = Field(default=None)
    session_id: Optional[str] = Field(default=None)
    transaction_id: Optional[str] = Field(default=None)

    # Hash is computed on demand
    _cached_hash: Optional[str] = None

    def compute_hash(self) -> str:
        """
        Compute SHA-256 hash of this entry.

        Hash includes: previous_hash + timestamp + event_type + payload
        """
        hash_input = json.dumps({
            "previous_hash": self.previous_hash,
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "payload": self.payload,
            "entry_id": self.entry_id,
        }, sort_keys=True, default=str)

        return hashlib.sha256(hash_input.encode()).hexdigest()[:32]

    @property
    def hash(self) -> str:
        """Get or compute hash."""
        if self._cached_hash is None:
            self._cached_hash = self.compute_hash()
        return self._cached_hash


class ChainValidationResult(BaseModel):
    """Result of audit chain validation."""

    is_valid: bool = Field(description="Whether chain is valid")
    total_entries: int = Field(description="Total entries checked")
    broken_at: Optional[int] = Field(default=None, description="Index where chain broke")
    error_message: Optional[str] = Field(default=None)
