"""Storage interface for the authorization and funding core.

Every entity is keyed by user id. Status transitions go through
``compare_and_set_*`` so a transition only applies if the record is still in
the expected prior status.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

from spendgate.approvals.models import Approval, ApprovalStatus
from spendgate.execution.models import (
    DrainDeadline,
    FundingSession,
    Instrument,
    SessionStatus,
)
from spendgate.ledger.models import LedgerEntry, Transaction, TransactionStatus
from spendgate.policy.models import PolicyConfig


class Store(ABC):
    """Abstract persistence for policies, instruments, sessions and history."""

    # Policy store

    @abstractmethod
    def get_policy(self, user_id: str) -> Optional[PolicyConfig]:
        ...

    @abstractmethod
    def set_policy(self, user_id: str, policy: PolicyConfig) -> None:
        ...

    # Instruments

    @abstractmethod
    def get_instrument(self, user_id: str) -> Optional[Instrument]:
        ...

    @abstractmethod
    def add_instrument(self, instrument: Instrument) -> Instrument:
        """Insert the user's instrument, or return the existing one."""
        ...

    @abstractmethod
    def update_instrument(self, instrument: Instrument) -> None:
        ...

    # Funding sessions

    @abstractmethod
    def add_session(self, session: FundingSession) -> None:
        """Insert a session; fails if the user already has an active one."""
        ...

    @abstractmethod
    def get_session(self, session_id: str) -> Optional[FundingSession]:
        ...

    @abstractmethod
    def get_active_session(self, user_id: str) -> Optional[FundingSession]:
        ...

    @abstractmethod
    def list_sessions(self, user_id: str) -> List[FundingSession]:
        """Sessions for a user, oldest first."""
        ...

    @abstractmethod
    def compare_and_set_session(
        self,
        session_id: str,
        expected: SessionStatus,
        updated: FundingSession,
    ) -> bool:
        ...

    @abstractmethod
    def update_session(self, session: FundingSession) -> None:
        """Update fields of a session without changing its status."""
        ...

    # Transactions

    @abstractmethod
    def add_transaction(self, transaction: Transaction) -> None:
        ...

    @abstractmethod
    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        ...

    @abstractmethod
    def list_transactions(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        statuses: Optional[Iterable[TransactionStatus]] = None,
    ) -> List[Transaction]:
        """Transactions for a user, oldest first."""
        ...

    @abstractmethod
    def compare_and_set_transaction(
        self,
        transaction_id: str,
        expected: TransactionStatus,
        updated: Transaction,
    ) -> bool:
        ...

    # Wallet ledger

    @abstractmethod
    def add_ledger_entry(self, entry: LedgerEntry) -> None:
        ...

    @abstractmethod
    def list_ledger_entries(self, user_id: str) -> List[LedgerEntry]:
        """Entries in creation order."""
        ...

    # Approvals

    @abstractmethod
    def add_approval(self, approval: Approval) -> None:
        ...

    @abstractmethod
    def get_approval(self, approval_id: str) -> Optional[Approval]:
        ...

    @abstractmethod
    def get_approval_by_token(self, token: str) -> Optional[Approval]:
        ...

    @abstractmethod
    def list_approvals(
        self,
        user_id: str,
        status: Optional[ApprovalStatus] = None,
    ) -> List[Approval]:
        """Approvals for a user, oldest first."""
        ...

    @abstractmethod
    def compare_and_set_approval(
        self,
        approval_id: str,
        expected: ApprovalStatus,
        updated: Approval,
    ) -> bool:
        ...

    # Known merchants

    @abstractmethod
    def add_known_merchant(self, user_id: str, merchant: str) -> None:
        ...

    @abstractmethod
    def is_known_merchant(self, user_id: str, merchant: str) -> bool:
        ...

    # Auto-drain schedule

    @abstractmethod
    def set_drain_deadline(self, deadline: DrainDeadline) -> None:
        ...

    @abstractmethod
    def clear_drain_deadline(self, session_id: str) -> None:
        ...

    @abstractmethod
    def due_drain_deadlines(self, now: datetime) -> List[DrainDeadline]:
        ...

    # API tokens

    @abstractmethod
    def register_api_token(self, token: str, user_id: str) -> None:
        ...

    @abstractmethod
    def get_user_for_token(self, token: str) -> Optional[str]:
        ...

    @abstractmethod
    def add_pairing_code(self, code: str, token: str, expires_at: datetime) -> None:
        ...

    @abstractmethod
    def redeem_pairing_code(self, code: str, now: datetime) -> Optional[str]:
        """Mark a pairing code used and return its api token."""
        ...
