"""
Instrument Session Manager

The only component that changes instrument balance/limit or funding session
status. All mutations for a user run under that user's lock.

Session lifecycle:

    ACTIVE -> COMPLETED   (checkout succeeded)
           -> DRAINED     (checkout failed, timeout, stale cleanup, rollback)
"""

import logging
import threading
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from spendgate.cards.base import CardBackend
from spendgate.cards.models import CardDetails
from spendgate.clock import Clock, utc_now
from spendgate.errors import (
    CardBackendError,
    Forbidden,
    FundingConflict,
    InstrumentNotProvisioned,
    InsufficientFunds,
    PersistenceFailure,
    SessionNotFound,
    SpendGateError,
    ValidationError,
)
from spendgate.execution.models import (
    DrainReason,
    DrainResult,
    FundingSession,
    Instrument,
    SessionStatus,
    TopUpResult,
)
from spendgate.execution.saga import FundingSaga
from spendgate.execution.scheduler import DrainScheduler
from spendgate.ledger.audit import AuditLedger
from spendgate.ledger.models import EventType, LedgerEntry, TransactionStatus
from spendgate.ledger.recorder import TransactionRecorder
from spendgate.schema import PurchaseRequest
from spendgate.storage.base import Store


logger = logging.getLogger(__name__)


class InstrumentSessionManager:
    """
    Provisions the user's card and runs funded windows on it.

    Invariants:
    - At most one ACTIVE session per user
    - With no ACTIVE session, instrument balance and limit are both zero
    - No operation returns an error with the instrument still funded
    """

    def __init__(
        self,
        store: Store,
        cards: CardBackend,
        recorder: TransactionRecorder,
        scheduler: Optional[DrainScheduler] = None,
        audit: Optional[AuditLedger] = None,
        clock: Optional[Clock] = None,
        funding_timeout_seconds: int = 120,
        max_deposit_amount: Decimal = Decimal("10000"),
        currency: str = "USD",
    ):
        self.store = store
        self.cards = cards
        self.recorder = recorder
        self.clock = clock or utc_now
        self.scheduler = scheduler or DrainScheduler(store, clock=self.clock)
        self.audit = audit
        self.funding_timeout_seconds = funding_timeout_seconds
        self.max_deposit_amount = max_deposit_amount
        self.currency = currency

        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

        logger.info(f"Session manager initialized (backend={cards.name})")

    def user_lock(self, user_id: str) -> threading.RLock:
        """Per-user reentrant lock serializing instrument mutations."""
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[user_id] = lock
            return lock

    # Provisioning

    def provision(self, user_id: str) -> Tuple[Instrument, bool]:
        """
        Create the user's card, or return the existing one.

        Returns:
            Tuple of (instrument, created)
        """
        with self.user_lock(user_id):
            existing = self.store.get_instrument(user_id)
            if existing is not None:
                return existing, False

            card = self.cards.provision(user_id, currency=self.currency)
            instrument = Instrument(
                user_id=user_id,
                card_id=card.card_id,
                last4=card.last4,
                brand=card.brand,
                currency=card.currency,
                created_at=self.clock(),
            )
            stored = self.store.add_instrument(instrument)
            logger.info(f"Provisioned card ****{stored.last4} for {user_id}")
            return stored, True

    def get_instrument(self, user_id: str) -> Optional[Instrument]:
        return self.store.get_instrument(user_id)

    def get_active_session(self, user_id: str) -> Optional[FundingSession]:
        return self.store.get_active_session(user_id)

    # Funding

    def top_up(
        self,
        user_id: str,
        purchase: PurchaseRequest,
        timeout_seconds: Optional[int] = None,
    ) -> TopUpResult:
        """
        Fund the card for exactly one purchase.

        Args:
            user_id: Owner of the card
            purchase: The purchase being funded
            timeout_seconds: Funded window; defaults to the configured timeout

        Returns:
            TopUpResult with the session id, expiry and funded card

        Raises:
            InstrumentNotProvisioned: User has no card
            FundingConflict: A session is already active
            InsufficientFunds: Wallet balance is below the amount
            CardBackendError: Vendor failed to fund the card
            PersistenceFailure: A write after funding failed; card drained
        """
        timeout = timeout_seconds or self.funding_timeout_seconds
        amount = purchase.amount

        with self.user_lock(user_id):
            self.stale_cleanup(user_id)

            instrument = self.store.get_instrument(user_id)
            if instrument is None:
                raise InstrumentNotProvisioned("No card provisioned")

            active = self.store.get_active_session(user_id)
            if active is not None:
                raise FundingConflict(
                    "A funded purchase is already in progress",
                    details={"topup_id": active.session_id},
                )

            balance = self.recorder.wallet_balance(user_id)
            if balance < amount:
                raise InsufficientFunds(
                    "Insufficient wallet balance",
                    details={"balance": str(balance), "amount": str(amount)},
                )

            now = self.clock()
            session = FundingSession(
                user_id=user_id,
                instrument_id=instrument.instrument_id,
                amount=amount,
                expires_at=now + timedelta(seconds=timeout),
                created_at=now,
            )

            saga = self._build_funding_saga(instrument, session, purchase)
            try:
                ctx = saga.run()
            except CardBackendError:
                self._log_rollback(user_id, session, saga.completed, "card backend error")
                raise
            except SpendGateError as e:
                self._log_rollback(user_id, session, saga.completed, e.message)
                if isinstance(e, PersistenceFailure):
                    raise
                raise PersistenceFailure(f"Funding failed: {e.message}") from e
            except Exception as e:
                self._log_rollback(user_id, session, saga.completed, str(e))
                raise PersistenceFailure(f"Funding failed: {e}") from e

            card: CardDetails = ctx["fund"]
            txn = ctx["transaction"]

            logger.info(
                f"Funded ****{instrument.last4} with {amount} for {user_id} "
                f"[{session.session_id}], expires {session.expires_at.isoformat()}"
            )
            self._audit(
                EventType.TOPUP_FUNDED,
                user_id,
                {"amount": amount, "expires_at": session.expires_at, "merchant": purchase.merchant},
                session_id=session.session_id,
                transaction_id=txn.transaction_id,
            )

            return TopUpResult(
                session_id=session.session_id,
                transaction_id=txn.transaction_id,
                amount=amount,
                expires_at=session.expires_at,
                card=card,
            )

    def _build_funding_saga(
        self,
        instrument: Instrument,
        session: FundingSession,
        purchase: PurchaseRequest,
    ) -> FundingSaga:
        user_id = instrument.user_id
        amount = purchase.amount
        saga = FundingSaga(name=f"topup:{session.session_id}")

        def fund(ctx):
            card = self.cards.fund(instrument.card_id, amount)
            self.store.update_instrument(
                instrument.model_copy(update={"balance": amount, "spending_limit": amount})
            )
            return card

        def unfund(ctx):
            self._zero_instrument(user_id)

        def record_transaction(ctx):
            return self.recorder.record_authorized(user_id, purchase, instrument.card_id)

        def cancel_transaction(ctx):
            txn = ctx.get("transaction")
            if txn is not None:
                self.recorder.finalize(txn.transaction_id, TransactionStatus.CANCELLED)

        def open_session(ctx):
            session.transaction_id = ctx["transaction"].transaction_id
            self.store.add_session(session)
            return session

        def close_session(ctx):
            if ctx.get("session") is None:
                return
            closed = session.model_copy(update={
                "status": SessionStatus.DRAINED,
                "drain_reason": DrainReason.ROLLBACK,
                "drained_amount": amount,
                "completed_at": self.clock(),
            })
            self.store.compare_and_set_session(session.session_id, SessionStatus.ACTIVE, closed)

        def debit_wallet(ctx):
            return self.recorder.debit(user_id, amount, reference_id=session.session_id)

        def refund_wallet(ctx):
            entry: Optional[LedgerEntry] = ctx.get("debit")
            if entry is not None:
                self.recorder.refund(user_id, entry.amount, reference_id=session.session_id)

        def link_debit(ctx):
            session.debit_entry_id = ctx["debit"].entry_id
            self.store.update_session(session)

        def arm_timer(ctx):
            return self.scheduler.arm(
                user_id,
                session.session_id,
                session.expires_at,
                self._on_timer,
            )

        def disarm_timer(ctx):
            self.scheduler.cancel(user_id, session.session_id)

        saga.add_step("fund", fund, unfund)
        saga.add_step("transaction", record_transaction, cancel_transaction)
        saga.add_step("session", open_session, close_session)
        saga.add_step("debit", debit_wallet, refund_wallet)
        saga.add_step("link_debit", link_debit)
        saga.add_step("timer", arm_timer, disarm_timer)
        return saga

    def _log_rollback(
        self,
        user_id: str,
        session: FundingSession,
        completed: List[str],
        reason: str,
    ) -> None:
        logger.warning(
            f"Funding for {user_id} [{session.session_id}] rolled back after "
            f"{completed or 'no steps'}: {reason}"
        )
        self._audit(
            EventType.FUNDING_ROLLED_BACK,
            user_id,
            {"completed_steps": completed, "reason": reason},
            session_id=session.session_id,
            transaction_id=session.transaction_id,
        )

    # Draining

    def drain(
        self,
        user_id: str,
        reason: DrainReason,
        session_id: Optional[str] = None,
    ) -> DrainResult:
        """
        Zero the card and close the active session. Idempotent.

        Args:
            user_id: Owner of the card
            reason: Why the session ends
            session_id: Only drain if this is the active session

        Returns:
            DrainResult; ``already_drained`` with the prior reason when there
            is nothing to drain
        """
        with self.user_lock(user_id):
            session = self.store.get_active_session(user_id)
            if session is None or (session_id is not None and session.session_id != session_id):
                return self._already_drained(user_id, session_id)
            return self._drain_session(session, reason)

    def _drain_session(self, session: FundingSession, reason: DrainReason) -> DrainResult:
        user_id = session.user_id
        drained = self._zero_instrument(user_id)
        self.scheduler.cancel(user_id, session.session_id)

        success = reason == DrainReason.CHECKOUT_SUCCESS
        updated = session.model_copy(update={
            "status": SessionStatus.COMPLETED if success else SessionStatus.DRAINED,
            "drain_reason": reason,
            "drained_amount": drained,
            "completed_at": self.clock(),
        })
        if not self.store.compare_and_set_session(session.session_id, SessionStatus.ACTIVE, updated):
            return self._already_drained(user_id, session.session_id)

        if session.transaction_id:
            self.recorder.finalize(
                session.transaction_id,
                TransactionStatus.COMPLETED if success else TransactionStatus.CANCELLED,
            )

        # Success returns only the unspent balance; anything else returns it all
        refund = drained if success else session.amount
        if session.debit_entry_id and refund > 0:
            self.recorder.refund(user_id, refund, reference_id=session.session_id)
        else:
            refund = Decimal("0")

        logger.info(
            f"Drained {user_id} [{session.session_id}] reason={reason.value} "
            f"drained={drained} refunded={refund}"
        )
        self._audit(
            EventType.SESSION_DRAINED,
            user_id,
            {"reason": reason.value, "drained_amount": drained, "refunded_amount": refund},
            session_id=session.session_id,
            transaction_id=session.transaction_id,
        )
        return DrainResult(
            status="drained",
            session_id=session.session_id,
            drained_amount=drained,
            refunded_amount=refund,
            reason=reason,
        )

    def _already_drained(self, user_id: str, session_id: Optional[str]) -> DrainResult:
        if session_id is not None:
            prior = self.store.get_session(session_id)
        else:
            sessions = self.store.list_sessions(user_id)
            prior = sessions[-1] if sessions else None

        if prior is None or prior.user_id != user_id:
            return DrainResult(status="already_drained")
        return DrainResult(
            status="already_drained",
            session_id=prior.session_id,
            drained_amount=prior.drained_amount,
            reason=prior.drain_reason,
        )

    def _zero_instrument(self, user_id: str) -> Decimal:
        """Drain the card and mirror zero balance/limit on the instrument."""
        instrument = self.store.get_instrument(user_id)
        if instrument is None:
            return Decimal("0")
        drained = self.cards.drain(instrument.card_id)
        self.store.update_instrument(
            instrument.model_copy(update={"balance": Decimal("0"), "spending_limit": Decimal("0")})
        )
        return drained

    def complete(self, user_id: str, topup_id: str, success: bool) -> DrainResult:
        """
        Finish a funded purchase. Safe to call more than once.

        Raises:
            SessionNotFound: No session with that id belongs to the user
        """
        with self.user_lock(user_id):
            self.stale_cleanup(user_id)

            session = self.store.get_session(topup_id)
            if session is None or session.user_id != user_id:
                raise SessionNotFound("Top-up session not found")

            reason = DrainReason.CHECKOUT_SUCCESS if success else DrainReason.CHECKOUT_FAILED
            return self.drain(user_id, reason, session_id=topup_id)

    def rollback(self, user_id: str, session_id: str) -> DrainResult:
        """Undo a funded session whose caller could not finish recording it."""
        result = self.drain(user_id, DrainReason.ROLLBACK, session_id=session_id)
        if result.was_drained:
            logger.warning(f"Rolled back funded session {session_id} for {user_id}")
            self._audit(
                EventType.FUNDING_ROLLED_BACK,
                user_id,
                {"completed_steps": ["all"], "reason": "caller failed after funding"},
                session_id=session_id,
            )
        return result

    def stale_cleanup(self, user_id: str) -> Optional[DrainResult]:
        """Drain the user's active session if it is past its expiry."""
        with self.user_lock(user_id):
            session = self.store.get_active_session(user_id)
            if session is None or self.clock() <= session.expires_at:
                return None
            logger.warning(f"Stale session {session.session_id} for {user_id}, draining")
            return self._drain_session(session, DrainReason.STALE_CLEANUP)

    def sweep_due_deadlines(self) -> List[DrainResult]:
        """Drain sessions whose stored auto-drain deadline has passed."""
        results = []
        for deadline in self.store.due_drain_deadlines(self.clock()):
            result = self.drain(deadline.user_id, DrainReason.TIMEOUT, session_id=deadline.session_id)
            self.store.clear_drain_deadline(deadline.session_id)
            results.append(result)
        if results:
            logger.info(f"Deadline sweep drained {sum(r.was_drained for r in results)} sessions")
        return results

    def _on_timer(self, user_id: str, session_id: str) -> DrainResult:
        return self.drain(user_id, DrainReason.TIMEOUT, session_id=session_id)

    # Card and wallet

    def get_card_details(self, user_id: str) -> CardDetails:
        """
        Full card details, only while a session is active.

        Raises:
            InstrumentNotProvisioned: User has no card
            Forbidden: The card is not funded
        """
        with self.user_lock(user_id):
            self.stale_cleanup(user_id)

            instrument = self.store.get_instrument(user_id)
            if instrument is None:
                raise InstrumentNotProvisioned("No card provisioned")
            if self.store.get_active_session(user_id) is None:
                raise Forbidden("Card details are only available while a purchase is funded")

            card = self.cards.get_card(instrument.card_id)
            if card is None:
                raise CardBackendError(f"Card not found: {instrument.card_id}")

            # Charges land on the card, not here; keep the stored copy in step
            if card.balance != instrument.balance:
                self.store.update_instrument(instrument.model_copy(update={"balance": card.balance}))
            return card

    def deposit(self, user_id: str, amount: Decimal) -> LedgerEntry:
        """
        Credit the prepaid wallet.

        Raises:
            ValidationError: Amount not in (0, max_deposit_amount]
            InstrumentNotProvisioned: User has no card
        """
        if amount <= 0 or amount > self.max_deposit_amount:
            raise ValidationError(
                f"Deposit must be greater than 0 and at most {self.max_deposit_amount}",
                errors=[{"field": "amount", "type": "value_error", "msg": "out of range"}],
            )

        with self.user_lock(user_id):
            if self.store.get_instrument(user_id) is None:
                raise InstrumentNotProvisioned("No card provisioned")

            reference = f"dep_{uuid.uuid4().hex[:16]}"
            entry = self.recorder.deposit(user_id, amount, reference_id=reference)

        logger.info(f"Deposit of {amount} for {user_id}, balance {entry.balance_after}")
        self._audit(
            EventType.DEPOSIT_RECORDED,
            user_id,
            {"amount": amount, "balance_after": entry.balance_after, "reference_id": reference},
        )
        return entry

    def shutdown(self) -> None:
        self.scheduler.shutdown()

    def _audit(
        self,
        event_type: EventType,
        user_id: str,
        payload: dict,
        session_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> None:
        if self.audit is None:
            return
        self.audit.log_event(
            event_type,
            payload,
            user_id=user_id,
            session_id=session_id,
            transaction_id=transaction_id,
        )
