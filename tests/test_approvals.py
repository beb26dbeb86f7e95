"""Tests for the approval state machine."""

import pytest
from datetime import timedelta
from decimal import Decimal

from spendgate.approvals.models import ApprovalStatus
from spendgate.approvals.notifier import Notifier
from spendgate.approvals.service import ApprovalService
from spendgate.cards.mock import MockCardBackend
from spendgate.context.context_service import ContextService
from spendgate.errors import ApprovalNotFound, Expired, Forbidden, FundingConflict, InsufficientFunds
from spendgate.execution.models import SessionStatus
from spendgate.execution.sessions import InstrumentSessionManager
from spendgate.ledger.audit import AuditLedger
from spendgate.ledger.models import EventType, TransactionStatus
from spendgate.ledger.recorder import TransactionRecorder
from spendgate.policy import Decision, DecisionAction, PolicyConfig
from spendgate.schema import PurchaseRequest
from spendgate.storage.memory import MemoryStore

from helpers import FrozenClock


USER = "user_1"


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []

    def send(self, approval, policy):
        self.sent.append(approval)
        return True


class ExplodingNotifier(Notifier):
    def send(self, approval, policy):
        raise RuntimeError("channel down")


def needs_approval(flags=("always_ask",)) -> Decision:
    return Decision(
        action=DecisionAction.NEEDS_APPROVAL,
        reason="Approval required",
        risk_flags=list(flags),
    )


def purchase(amount: str = "10", merchant: str = "Acme") -> PurchaseRequest:
    return PurchaseRequest(item="Cable", amount=Decimal(amount), merchant=merchant)


class ApprovalTestBase:

    def setup_method(self):
        self.clock = FrozenClock()
        self.store = MemoryStore()
        self.cards = MockCardBackend()
        self.audit = AuditLedger()
        self.recorder = TransactionRecorder(self.store, clock=self.clock)
        self.context = ContextService(self.store, clock=self.clock)
        self.sessions = InstrumentSessionManager(
            self.store, self.cards, self.recorder, audit=self.audit, clock=self.clock
        )
        self.notifier = RecordingNotifier()
        self.service = ApprovalService(
            self.store,
            self.context,
            self.recorder,
            self.sessions,
            notifier=self.notifier,
            audit=self.audit,
            clock=self.clock,
        )
        self.policy = PolicyConfig()

    def teardown_method(self):
        self.sessions.shutdown()
        self.audit.close()

    def fund_wallet(self, amount: str = "100") -> None:
        self.sessions.provision(USER)
        self.sessions.deposit(USER, Decimal(amount))

    def create(self, amount: str = "10", merchant: str = "Acme"):
        return self.service.create(USER, purchase(amount, merchant), needs_approval(), self.policy)


class TestCreate(ApprovalTestBase):
    """Test approval creation."""

    def test_create_pending_with_expiry(self):
        approval = self.create()

        assert approval.status == ApprovalStatus.PENDING
        assert approval.expires_at == self.clock.now + timedelta(seconds=300)
        assert len(approval.token) >= 16
        assert approval.risk_flags == ["always_ask"]
        assert self.store.get_approval(approval.approval_id) is not None

    def test_custom_timeout(self):
        self.policy = PolicyConfig(approval_timeout_seconds=60)

        approval = self.create()

        assert approval.expires_at == self.clock.now + timedelta(seconds=60)

    def test_tokens_are_unique(self):
        first = self.create()
        second = self.create()

        assert first.token != second.token

    def test_notification_sent(self):
        approval = self.create()

        assert [a.approval_id for a in self.notifier.sent] == [approval.approval_id]

    def test_notification_failure_does_not_fail_creation(self):
        self.service.notifier = ExplodingNotifier()

        approval = self.create()

        assert approval.is_pending

    def test_create_audited(self):
        self.create()

        events = [e.event_type for e in self.audit.get_entries_by_user(USER)]
        assert EventType.APPROVAL_CREATED in events


class TestReject(ApprovalTestBase):
    """Test rejecting an approval."""

    def test_reject_records_transaction(self):
        approval = self.create()

        resolution = self.service.resolve(False, token=approval.token, user_id=USER)

        assert resolution.status == "rejected"
        assert self.store.get_approval(approval.approval_id).status == ApprovalStatus.REJECTED

        txn = self.store.get_transaction(resolution.transaction_id)
        assert txn.status == TransactionStatus.REJECTED
        assert txn.rejection_reason == "Rejected by user"
        assert self.store.get_active_session(USER) is None

    def test_reject_after_resolution_not_found(self):
        approval = self.create()
        self.service.resolve(False, token=approval.token, user_id=USER)

        with pytest.raises(ApprovalNotFound):
            self.service.resolve(True, token=approval.token, user_id=USER)


class TestApprove(ApprovalTestBase):
    """Test approving an approval."""

    def test_approve_funds_card(self):
        """$10 at a new merchant, approved: card funded with exactly $10."""
        self.fund_wallet("100")
        approval = self.create("10", "New Shop")

        resolution = self.service.resolve(True, token=approval.token, user_id=USER)

        assert resolution.status == "approved"
        assert resolution.topup.amount == Decimal("10")
        assert resolution.topup.card.spending_limit == Decimal("10")
        assert self.store.get_approval(approval.approval_id).status == ApprovalStatus.APPROVED

        session = self.store.get_active_session(USER)
        assert session.session_id == resolution.topup.session_id
        assert session.amount == Decimal("10")
        assert self.store.is_known_merchant(USER, "new shop")

    def test_double_approve_does_not_double_fund(self):
        self.fund_wallet("100")
        approval = self.create()
        self.service.resolve(True, token=approval.token, user_id=USER)

        with pytest.raises(ApprovalNotFound):
            self.service.resolve(True, token=approval.token, user_id=USER)

        assert len(self.store.list_sessions(USER)) == 1
        assert self.recorder.wallet_balance(USER) == Decimal("90")

    def test_insufficient_funds_leaves_approval_pending(self):
        self.fund_wallet("5")
        approval = self.create("10")

        with pytest.raises(InsufficientFunds):
            self.service.resolve(True, token=approval.token, user_id=USER)

        assert self.store.get_approval(approval.approval_id).is_pending
        assert self.store.get_instrument(USER).is_idle

        self.sessions.deposit(USER, Decimal("20"))
        resolution = self.service.resolve(True, token=approval.token, user_id=USER)
        assert resolution.status == "approved"

    def test_conflicting_session_leaves_approval_pending(self):
        self.fund_wallet("100")
        first = self.create("10")
        second = self.create("20")
        self.service.resolve(True, token=first.token, user_id=USER)

        with pytest.raises(FundingConflict):
            self.service.resolve(True, token=second.token, user_id=USER)

        assert self.store.get_approval(second.approval_id).is_pending
        assert self.store.get_active_session(USER).amount == Decimal("10")

    def test_implicit_latest_pending(self):
        self.fund_wallet("100")
        older = self.create("10")
        self.clock.advance(1)
        newer = self.create("20")

        resolution = self.service.resolve(True, user_id=USER)

        assert resolution.approval.approval_id == newer.approval_id
        assert self.store.get_approval(older.approval_id).is_pending

    def test_implicit_without_pending(self):
        with pytest.raises(ApprovalNotFound):
            self.service.resolve(True, user_id=USER)


class TestExpiry(ApprovalTestBase):
    """Test resolution after the approval timed out."""

    def test_expired_approval_never_funds(self):
        self.fund_wallet("100")
        approval = self.create()
        self.clock.advance(301)

        with pytest.raises(Expired):
            self.service.resolve(True, token=approval.token, user_id=USER)

        assert self.store.get_approval(approval.approval_id).status == ApprovalStatus.EXPIRED
        assert self.store.list_sessions(USER) == []
        assert self.recorder.wallet_balance(USER) == Decimal("100")

    def test_expired_approval_stays_expired(self):
        approval = self.create()
        self.clock.advance(301)
        with pytest.raises(Expired):
            self.service.resolve(False, token=approval.token, user_id=USER)

        with pytest.raises(ApprovalNotFound):
            self.service.resolve(False, token=approval.token, user_id=USER)

    def test_resolution_at_deadline_allowed(self):
        approval = self.create()
        self.clock.advance(300)

        resolution = self.service.resolve(False, token=approval.token, user_id=USER)

        assert resolution.status == "rejected"


class TestAuthorization(ApprovalTestBase):
    """Test ownership and channel checks."""

    def test_unknown_token(self):
        with pytest.raises(ApprovalNotFound):
            self.service.resolve(True, token="0" * 32, user_id=USER)

    def test_other_user_forbidden(self):
        approval = self.create()

        with pytest.raises(Forbidden):
            self.service.resolve(True, token=approval.token, user_id="intruder")

        assert self.store.get_approval(approval.approval_id).is_pending

    def test_telegram_chat_must_match(self):
        self.context.set_policy(USER, PolicyConfig(telegram_chat_id="12345"))
        approval = self.create()

        with pytest.raises(Forbidden):
            self.service.resolve(False, token=approval.token, telegram_chat_id="999")

        resolution = self.service.resolve(False, token=approval.token, telegram_chat_id="12345")
        assert resolution.status == "rejected"

    def test_telegram_chat_without_linked_chat(self):
        approval = self.create()

        with pytest.raises(Forbidden):
            self.service.resolve(True, token=approval.token, telegram_chat_id="12345")

    def test_session_drained_after_approval(self):
        self.fund_wallet("100")
        approval = self.create()
        resolution = self.service.resolve(True, token=approval.token, user_id=USER)

        self.sessions.complete(USER, resolution.topup.session_id, success=False)

        session = self.store.get_session(resolution.topup.session_id)
        assert session.status == SessionStatus.DRAINED
        assert self.recorder.wallet_balance(USER) == Decimal("100")
