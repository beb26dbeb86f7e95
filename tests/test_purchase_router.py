"""Tests for the Purchase Router."""

import threading
import pytest
from decimal import Decimal

from spendgate.approvals.models import ApprovalStatus
from spendgate.approvals.notifier import LogNotifier
from spendgate.approvals.service import ApprovalService
from spendgate.cards.mock import MockCardBackend
from spendgate.context.context_service import ContextService
from spendgate.errors import ValidationError
from spendgate.execution.router import PurchaseRouter
from spendgate.execution.sessions import InstrumentSessionManager
from spendgate.ledger.audit import AuditLedger
from spendgate.ledger.models import EventType, TransactionStatus
from spendgate.ledger.recorder import TransactionRecorder
from spendgate.policy import PolicyConfig, PolicyEngine
from spendgate.schema import PurchaseRequest
from spendgate.storage.memory import MemoryStore

from helpers import FrozenClock


USER = "user_1"

COUNTED = (TransactionStatus.AUTHORIZED, TransactionStatus.COMPLETED)


class GatedEngine(PolicyEngine):
    """Engine that holds one named item inside evaluate until released."""

    def __init__(self, held_item: str):
        super().__init__()
        self.held_item = held_item
        self.started = threading.Event()
        self.release = threading.Event()

    def evaluate(self, request, policy, aggregates, now):
        if request.item == self.held_item:
            self.started.set()
            self.release.wait(timeout=5)
        return super().evaluate(request, policy, aggregates, now)


class RouterTestBase:

    def make_engine(self):
        return None

    def setup_method(self):
        self.clock = FrozenClock()
        self.store = MemoryStore()
        self.audit = AuditLedger()
        self.cards = MockCardBackend()
        self.context = ContextService(self.store, clock=self.clock)
        self.recorder = TransactionRecorder(self.store, clock=self.clock)
        self.sessions = InstrumentSessionManager(
            self.store,
            self.cards,
            self.recorder,
            audit=self.audit,
            clock=self.clock,
        )
        self.approvals = ApprovalService(
            self.store,
            self.context,
            self.recorder,
            self.sessions,
            notifier=LogNotifier(),
            audit=self.audit,
            clock=self.clock,
        )
        self.router = PurchaseRouter(
            self.store,
            self.context,
            self.recorder,
            self.approvals,
            self.sessions,
            engine=self.make_engine(),
            audit=self.audit,
            clock=self.clock,
        )

    def teardown_method(self):
        self.sessions.shutdown()
        self.audit.close()

    def fund_wallet(self, amount: str = "100") -> None:
        self.sessions.provision(USER)
        self.sessions.deposit(USER, Decimal(amount))

    def set_policy(self, **overrides) -> None:
        self.context.set_policy(USER, PolicyConfig(**overrides))

    def counted_spend(self) -> Decimal:
        return sum(
            (t.amount for t in self.store.list_transactions(USER) if t.status in COUNTED),
            Decimal("0"),
        )


class TestRouting(RouterTestBase):
    """Each decision reaches its handler."""

    def test_reject_records_transaction(self):
        outcome = self.router.purchase(USER, {"item": "Desk", "amount": "60", "merchant": "Acme"})

        assert outcome.status == "rejected"
        assert outcome.risk_flags == ["over_limit"]
        txn = self.store.get_transaction(outcome.transaction_id)
        assert txn.status == TransactionStatus.REJECTED

    def test_needs_approval_creates_pending_approval(self):
        outcome = self.router.purchase(USER, {"item": "Cable", "amount": "10", "merchant": "Acme"})

        assert outcome.status == "pending_approval"
        approvals = self.store.list_approvals(USER)
        assert [a.approval_id for a in approvals] == [outcome.approval_id]
        assert approvals[0].status == ApprovalStatus.PENDING

    def test_auto_approve_funds_and_learns_merchant(self):
        self.fund_wallet("100")
        self.set_policy(always_ask=False, block_new_merchants=False)

        outcome = self.router.purchase(
            USER, PurchaseRequest(item="Cable", amount=Decimal("12.50"), merchant="Acme")
        )

        assert outcome.status == "approved"
        assert outcome.card.spending_limit == Decimal("12.50")
        assert self.store.get_active_session(USER).session_id == outcome.topup_id
        assert self.store.is_known_merchant(USER, "Acme")

    def test_auto_approve_without_balance_rejected(self):
        self.fund_wallet("5")
        self.set_policy(always_ask=False, block_new_merchants=False)

        outcome = self.router.purchase(USER, {"item": "Cable", "amount": "10", "merchant": "Acme"})

        assert outcome.status == "rejected"
        assert outcome.risk_flags == ["insufficient_funds"]
        assert self.store.get_active_session(USER) is None

    def test_invalid_request_records_nothing(self):
        with pytest.raises(ValidationError):
            self.router.purchase(USER, {"merchant": "Acme"})

        assert self.store.list_transactions(USER) == []

    def test_evaluation_audited(self):
        self.router.purchase(USER, {"item": "Desk", "amount": "60", "merchant": "Acme"})

        events = [e.event_type for e in self.audit.get_entries_by_user(USER)]
        assert events == [EventType.PURCHASE_EVALUATED]


class TestConcurrentPurchases(RouterTestBase):
    """Two purchases racing against one daily limit."""

    def make_engine(self):
        return GatedEngine(held_item="second")

    def test_second_purchase_sees_first_spend(self):
        self.fund_wallet("200")
        self.set_policy(
            always_ask=False,
            block_new_merchants=False,
            per_purchase_limit=Decimal("100"),
            daily_limit=Decimal("100"),
        )
        engine = self.router.engine
        outcomes = {}
        errors = []

        def buy(item):
            try:
                outcomes[item] = self.router.purchase(
                    USER, {"item": item, "amount": "60", "merchant": "Acme"}
                )
            except Exception as e:
                errors.append(e)

        held = threading.Thread(target=buy, args=("second",))
        held.start()
        assert engine.started.wait(timeout=5)

        racing = threading.Thread(target=buy, args=("first",))
        racing.start()
        racing.join(timeout=0.5)
        if not racing.is_alive() and outcomes.get("first") is not None:
            # Purchase slipped past the held one; finish its checkout
            first = outcomes["first"]
            if first.status == "approved":
                self.sessions.complete(USER, first.topup_id, True)

        engine.release.set()
        held.join(timeout=10)
        racing.join(timeout=10)

        assert errors == []
        statuses = sorted(o.status for o in outcomes.values())
        assert statuses == ["approved", "rejected"]
        assert outcomes["second"].status == "approved"
        assert outcomes["first"].risk_flags == ["daily_limit"]
        assert self.counted_spend() <= Decimal("100")
