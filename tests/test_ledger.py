"""Tests for the transaction recorder, wallet ledger and audit trail."""

import json
import pytest
from decimal import Decimal

from spendgate.errors import InsufficientFunds, LedgerInconsistency
from spendgate.ledger.audit import AuditLedger
from spendgate.ledger.models import (
    EventType,
    LedgerEntry,
    LedgerEntryType,
    TransactionStatus,
)
from spendgate.ledger.recorder import TransactionRecorder
from spendgate.schema import PurchaseRequest
from spendgate.storage.memory import MemoryStore

from helpers import FrozenClock


USER = "user_1"


def purchase(amount: str = "10") -> PurchaseRequest:
    return PurchaseRequest(item="Cable", amount=Decimal(amount), merchant="Acme")


class TestTransactionRecording:
    """Test purchase transaction records."""

    def setup_method(self):
        self.clock = FrozenClock()
        self.store = MemoryStore()
        self.recorder = TransactionRecorder(self.store, clock=self.clock)

    def test_record_rejection(self):
        txn = self.recorder.record_rejection(USER, purchase(), "Too much")

        stored = self.store.get_transaction(txn.transaction_id)
        assert stored.status == TransactionStatus.REJECTED
        assert stored.rejection_reason == "Too much"
        assert stored.created_at == self.clock.now

    def test_finalize_authorized_once(self):
        txn = self.recorder.record_authorized(USER, purchase(), "card_1")

        first = self.recorder.finalize(txn.transaction_id, TransactionStatus.COMPLETED)
        second = self.recorder.finalize(txn.transaction_id, TransactionStatus.CANCELLED)

        assert first.status == TransactionStatus.COMPLETED
        assert second is None
        assert self.store.get_transaction(txn.transaction_id).status == TransactionStatus.COMPLETED

    def test_finalize_rejected_is_noop(self):
        txn = self.recorder.record_rejection(USER, purchase(), "No")

        assert self.recorder.finalize(txn.transaction_id, TransactionStatus.COMPLETED) is None

    def test_finalize_unknown(self):
        assert self.recorder.finalize("txn_missing", TransactionStatus.COMPLETED) is None

    def test_list_newest_first_with_limit(self):
        first = self.recorder.record_rejection(USER, purchase("1"), "a")
        self.clock.advance(1)
        second = self.recorder.record_rejection(USER, purchase("2"), "b")
        self.clock.advance(1)
        third = self.recorder.record_rejection(USER, purchase("3"), "c")

        history = self.recorder.list_transactions(USER)
        assert [t.transaction_id for t in history] == [
            third.transaction_id, second.transaction_id, first.transaction_id,
        ]
        assert len(self.recorder.list_transactions(USER, limit=2)) == 2


class TestWalletLedger:
    """Test balance_after bookkeeping."""

    def setup_method(self):
        self.store = MemoryStore()
        self.recorder = TransactionRecorder(self.store, clock=FrozenClock())

    def test_running_balance(self):
        self.recorder.deposit(USER, Decimal("100"))
        debit = self.recorder.debit(USER, Decimal("30"))
        refund = self.recorder.refund(USER, Decimal("12.50"))

        assert debit.balance_after == Decimal("70")
        assert refund.balance_after == Decimal("82.50")
        assert self.recorder.wallet_balance(USER) == Decimal("82.50")
        assert self.recorder.verify(USER) == Decimal("82.50")

    def test_debit_over_balance(self):
        self.recorder.deposit(USER, Decimal("5"))

        with pytest.raises(InsufficientFunds):
            self.recorder.debit(USER, Decimal("5.01"))

        assert len(self.recorder.list_entries(USER)) == 1

    def test_balances_are_per_user(self):
        self.recorder.deposit(USER, Decimal("10"))
        self.recorder.deposit("user_2", Decimal("4"))

        assert self.recorder.wallet_balance(USER) == Decimal("10")
        assert self.recorder.wallet_balance("user_2") == Decimal("4")

    def test_signed_amount(self):
        entry = LedgerEntry(
            user_id=USER,
            entry_type=LedgerEntryType.PURCHASE_DEBIT,
            amount=Decimal("3"),
            balance_after=Decimal("-3"),
        )

        assert entry.signed_amount == Decimal("-3")

    def test_inconsistent_entry_detected(self):
        self.recorder.deposit(USER, Decimal("10"))
        self.store.add_ledger_entry(LedgerEntry(
            user_id=USER,
            entry_type=LedgerEntryType.DEPOSIT,
            amount=Decimal("5"),
            balance_after=Decimal("99"),
        ))

        with pytest.raises(LedgerInconsistency) as exc_info:
            self.recorder.verify(USER)
        assert exc_info.value.details["index"] == 1

    def test_append_refused_on_inconsistent_ledger(self):
        self.store.add_ledger_entry(LedgerEntry(
            user_id=USER,
            entry_type=LedgerEntryType.DEPOSIT,
            amount=Decimal("5"),
            balance_after=Decimal("6"),
        ))

        with pytest.raises(LedgerInconsistency):
            self.recorder.deposit(USER, Decimal("1"))

        assert len(self.recorder.list_entries(USER)) == 1


class TestAuditLedger:
    """Test the hash-chained audit trail."""

    def setup_method(self):
        self.ledger = AuditLedger()

    def teardown_method(self):
        self.ledger.close()

    def test_first_entry_links_to_genesis(self):
        entry = self.ledger.append(EventType.DEPOSIT_RECORDED, {"amount": "10"}, user_id=USER)

        assert entry.previous_hash == "genesis"
        assert len(entry.hash) == 32

    def test_entries_chain(self):
        first = self.ledger.append(EventType.DEPOSIT_RECORDED, {"amount": "10"})
        second = self.ledger.append(EventType.TOPUP_FUNDED, {"amount": "5"})

        assert second.previous_hash == first.hash
        result = self.ledger.validate_chain()
        assert result.is_valid
        assert result.total_entries == 2

    def test_empty_chain_valid(self):
        result = self.ledger.validate_chain()

        assert result.is_valid
        assert result.total_entries == 0

    def test_payload_normalized(self):
        entry = self.ledger.append(EventType.DEPOSIT_RECORDED, {"amount": Decimal("10.50")})

        stored = self.ledger.get_entry(entry.entry_id)
        assert stored.payload == {"amount": "10.50"}
        assert stored.hash == entry.hash

    def test_tampered_payload_detected(self):
        self.ledger.append(EventType.DEPOSIT_RECORDED, {"amount": "10"})
        self.ledger.append(EventType.TOPUP_FUNDED, {"amount": "5"})

        self.ledger._conn.execute(
            "UPDATE audit SET payload = ? WHERE seq = 1",
            (json.dumps({"amount": "1000"}),),
        )

        result = self.ledger.validate_chain()
        assert not result.is_valid
        assert result.broken_at == 0

    def test_lookup_by_transaction_and_user(self):
        self.ledger.append(EventType.TOPUP_FUNDED, {}, user_id=USER, transaction_id="txn_1")
        self.ledger.append(EventType.SESSION_DRAINED, {}, user_id=USER, transaction_id="txn_1")
        self.ledger.append(EventType.DEPOSIT_RECORDED, {}, user_id="user_2")

        by_txn = self.ledger.get_entries_by_transaction("txn_1")
        assert [e.event_type for e in by_txn] == [EventType.TOPUP_FUNDED, EventType.SESSION_DRAINED]

        by_user = self.ledger.get_entries_by_user(USER)
        assert [e.event_type for e in by_user] == [EventType.SESSION_DRAINED, EventType.TOPUP_FUNDED]
        assert self.ledger.get_entry_count() == 3

    def test_log_event_swallows_storage_errors(self):
        self.ledger.close()
        self.ledger._conn = None
        self.ledger.db_path = "/nonexistent-dir/audit.db"

        assert self.ledger.log_event(EventType.DEPOSIT_RECORDED, {}) is None

    def test_file_backed_chain_survives_reopen(self, tmp_path):
        path = str(tmp_path / "audit.db")
        ledger = AuditLedger(path)
        first = ledger.append(EventType.DEPOSIT_RECORDED, {"amount": "1"})

        reopened = AuditLedger(path)
        second = reopened.append(EventType.DEPOSIT_RECORDED, {"amount": "2"})

        assert second.previous_hash == first.hash
        assert reopened.validate_chain().is_valid
