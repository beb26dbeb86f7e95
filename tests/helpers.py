"""Shared test helpers."""

from datetime import datetime, timedelta, UTC
from decimal import Decimal

from spendgate.cards.mock import MockCardBackend
from spendgate.errors import CardBackendError
from spendgate.storage.memory import MemoryStore


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 3, 10, 15, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FailingSessionStore(MemoryStore):
    """Store whose session insert fails, to exercise funding rollback."""

    def add_session(self, session):
        raise RuntimeError("session insert failed")


class FailingDebitStore(MemoryStore):
    """Store that accepts deposits but fails the purchase debit write."""

    def add_ledger_entry(self, entry):
        if entry.entry_type.value == "purchase_debit":
            raise RuntimeError("ledger write failed")
        super().add_ledger_entry(entry)


class FailingFundBackend(MockCardBackend):
    """Card backend that refuses to fund."""

    def fund(self, card_id: str, amount: Decimal):
        raise CardBackendError("vendor unavailable")
