"""In-memory storage.

Dicts keyed by id with per-user indexes. All data lives in memory and is lost
on restart. Every read returns a copy so callers never mutate stored state
outside a compare-and-set.
"""

import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from spendgate.approvals.models import Approval, ApprovalStatus
from spendgate.execution.models import (
    DrainDeadline,
    FundingSession,
    Instrument,
    SessionStatus,
)
from spendgate.ledger.models import LedgerEntry, Transaction, TransactionStatus
from spendgate.policy.models import PolicyConfig
from spendgate.storage.base import Store


def _normalize_merchant(name: str) -> str:
    """Normalize a merchant name to a consistent key (lowercase, stripped)."""
    return name.strip().lower()


class MemoryStore(Store):
    """Thread-safe in-memory store."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._policies: Dict[str, PolicyConfig] = {}
        self._instruments: Dict[str, Instrument] = {}
        self._sessions: Dict[str, FundingSession] = {}
        self._sessions_by_user: Dict[str, List[str]] = {}
        self._transactions: Dict[str, Transaction] = {}
        self._transactions_by_user: Dict[str, List[str]] = {}
        self._ledger: Dict[str, List[LedgerEntry]] = {}
        self._approvals: Dict[str, Approval] = {}
        self._approval_tokens: Dict[str, str] = {}
        self._known_merchants: Set[Tuple[str, str]] = set()
        self._deadlines: Dict[str, DrainDeadline] = {}
        self._api_tokens: Dict[str, str] = {}
        # code -> (api token, expires_at, used)
        self._pairing_codes: Dict[str, Tuple[str, datetime, bool]] = {}

    # Policy store

    def get_policy(self, user_id: str) -> Optional[PolicyConfig]:
        with self._lock:
            policy = self._policies.get(user_id)
            return policy.model_copy(deep=True) if policy else None

    def set_policy(self, user_id: str, policy: PolicyConfig) -> None:
        with self._lock:
            self._policies[user_id] = policy.model_copy(deep=True)

    # Instruments

    def get_instrument(self, user_id: str) -> Optional[Instrument]:
        with self._lock:
            instrument = self._instruments.get(user_id)
            return instrument.model_copy() if instrument else None

    def add_instrument(self, instrument: Instrument) -> Instrument:
        with self._lock:
            existing = self._instruments.get(instrument.user_id)
            if existing is not None:
                return existing.model_copy()
            self._instruments[instrument.user_id] = instrument.model_copy()
            return instrument.model_copy()

    def update_instrument(self, instrument: Instrument) -> None:
        with self._lock:
            if instrument.user_id not in self._instruments:
                raise KeyError(f"No instrument for user {instrument.user_id}")
            self._instruments[instrument.user_id] = instrument.model_copy()

    # Funding sessions

    def add_session(self, session: FundingSession) -> None:
        with self._lock:
            if session.is_active and self._active_session_id(session.user_id):
                raise ValueError(f"User {session.user_id} already has an active session")
            self._sessions[session.session_id] = session.model_copy()
            self._sessions_by_user.setdefault(session.user_id, []).append(session.session_id)

    def get_session(self, session_id: str) -> Optional[FundingSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy() if session else None

    def get_active_session(self, user_id: str) -> Optional[FundingSession]:
        with self._lock:
            session_id = self._active_session_id(user_id)
            return self._sessions[session_id].model_copy() if session_id else None

    def list_sessions(self, user_id: str) -> List[FundingSession]:
        with self._lock:
            return [
                self._sessions[sid].model_copy()
                for sid in self._sessions_by_user.get(user_id, [])
            ]

    def compare_and_set_session(
        self,
        session_id: str,
        expected: SessionStatus,
        updated: FundingSession,
    ) -> bool:
        with self._lock:
            current = self._sessions.get(session_id)
            if current is None or current.status != expected:
                return False
            self._sessions[session_id] = updated.model_copy()
            return True

    def update_session(self, session: FundingSession) -> None:
        with self._lock:
            current = self._sessions.get(session.session_id)
            if current is None:
                raise KeyError(f"Unknown session {session.session_id}")
            if current.status != session.status:
                raise ValueError("update_session cannot change status")
            self._sessions[session.session_id] = session.model_copy()

    def _active_session_id(self, user_id: str) -> Optional[str]:
        for sid in self._sessions_by_user.get(user_id, []):
            if self._sessions[sid].is_active:
                return sid
        return None

    # Transactions

    def add_transaction(self, transaction: Transaction) -> None:
        with self._lock:
            self._transactions[transaction.transaction_id] = transaction.model_copy()
            self._transactions_by_user.setdefault(transaction.user_id, []).append(
                transaction.transaction_id
            )

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        with self._lock:
            txn = self._transactions.get(transaction_id)
            return txn.model_copy() if txn else None

    def list_transactions(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        statuses: Optional[Iterable[TransactionStatus]] = None,
    ) -> List[Transaction]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            results: List[Transaction] = []
            for tid in self._transactions_by_user.get(user_id, []):
                txn = self._transactions[tid]
                if since is not None and txn.created_at < since:
                    continue
                if wanted is not None and txn.status not in wanted:
                    continue
                results.append(txn.model_copy())
            return results

    def compare_and_set_transaction(
        self,
        transaction_id: str,
        expected: TransactionStatus,
        updated: Transaction,
    ) -> bool:
        with self._lock:
            current = self._transactions.get(transaction_id)
            if current is None or current.status != expected:
                return False
            self._transactions[transaction_id] = updated.model_copy()
            return True

    # Wallet ledger

    def add_ledger_entry(self, entry: LedgerEntry) -> None:
        with self._lock:
            self._ledger.setdefault(entry.user_id, []).append(entry.model_copy())

    def list_ledger_entries(self, user_id: str) -> List[LedgerEntry]:
        with self._lock:
            return [entry.model_copy() for entry in self._ledger.get(user_id, [])]

    # Approvals

    def add_approval(self, approval: Approval) -> None:
        with self._lock:
            if approval.token in self._approval_tokens:
                raise ValueError("Duplicate approval token")
            self._approvals[approval.approval_id] = approval.model_copy(deep=True)
            self._approval_tokens[approval.token] = approval.approval_id

    def get_approval(self, approval_id: str) -> Optional[Approval]:
        with self._lock:
            approval = self._approvals.get(approval_id)
            return approval.model_copy(deep=True) if approval else None

    def get_approval_by_token(self, token: str) -> Optional[Approval]:
        with self._lock:
            approval_id = self._approval_tokens.get(token)
            if approval_id is None:
                return None
            return self._approvals[approval_id].model_copy(deep=True)

    def list_approvals(
        self,
        user_id: str,
        status: Optional[ApprovalStatus] = None,
    ) -> List[Approval]:
        with self._lock:
            return [
                a.model_copy(deep=True)
                for a in self._approvals.values()
                if a.user_id == user_id and (status is None or a.status == status)
            ]

    def compare_and_set_approval(
        self,
        approval_id: str,
        expected: ApprovalStatus,
        updated: Approval,
    ) -> bool:
        with self._lock:
            current = self._approvals.get(approval_id)
            if current is None or current.status != expected:
                return False
            self._approvals[approval_id] = updated.model_copy(deep=True)
            return True

    # Known merchants

    def add_known_merchant(self, user_id: str, merchant: str) -> None:
        with self._lock:
            self._known_merchants.add((user_id, _normalize_merchant(merchant)))

    def is_known_merchant(self, user_id: str, merchant: str) -> bool:
        with self._lock:
            return (user_id, _normalize_merchant(merchant)) in self._known_merchants

    # Auto-drain schedule

    def set_drain_deadline(self, deadline: DrainDeadline) -> None:
        with self._lock:
            self._deadlines[deadline.session_id] = deadline.model_copy()

    def clear_drain_deadline(self, session_id: str) -> None:
        with self._lock:
            self._deadlines.pop(session_id, None)

    def due_drain_deadlines(self, now: datetime) -> List[DrainDeadline]:
        with self._lock:
            return [
                d.model_copy()
                for d in sorted(self._deadlines.values(), key=lambda d: d.fire_at)
                if d.fire_at <= now
            ]

    # API tokens

    def register_api_token(self, token: str, user_id: str) -> None:
        with self._lock:
            self._api_tokens[token] = user_id

    def get_user_for_token(self, token: str) -> Optional[str]:
        with self._lock:
            return self._api_tokens.get(token)

    def add_pairing_code(self, code: str, token: str, expires_at: datetime) -> None:
        with self._lock:
            self._pairing_codes[code] = (token, expires_at, False)

    def redeem_pairing_code(self, code: str, now: datetime) -> Optional[str]:
        with self._lock:
            entry = self._pairing_codes.get(code)
            if entry is None:
                return None
            token, expires_at, used = entry
            if used or expires_at < now:
                return None
            self._pairing_codes[code] = (token, expires_at, True)
            return token
