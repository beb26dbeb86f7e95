"""
Transaction Recorder

Append-only history of purchase attempts and wallet balance changes.
Every balance change writes exactly one LedgerEntry, and its balance_after
is checked against a fresh replay of the user's entries.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from spendgate.clock import Clock, utc_now
from spendgate.errors import InsufficientFunds, LedgerInconsistency
from spendgate.ledger.models import (
    LedgerEntry,
    LedgerEntryType,
    Transaction,
    TransactionStatus,
)
from spendgate.schema import PurchaseRequest
from spendgate.storage.base import Store


logger = logging.getLogger(__name__)


class TransactionRecorder:
    """Records transactions and wallet ledger entries through the store."""

    def __init__(self, store: Store, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or utc_now

    # Transactions

    def record_rejection(
        self,
        user_id: str,
        purchase: PurchaseRequest,
        reason: str,
    ) -> Transaction:
        """Record a purchase that was turned down by policy or by the user."""
        txn = self._new_transaction(user_id, purchase, TransactionStatus.REJECTED)
        txn.rejection_reason = reason
        self.store.add_transaction(txn)
        logger.info(f"Recorded rejected transaction {txn.transaction_id}: {reason}")
        return txn

    def record_authorized(
        self,
        user_id: str,
        purchase: PurchaseRequest,
        card_id: str,
    ) -> Transaction:
        """Record a purchase whose card has just been funded."""
        txn = self._new_transaction(user_id, purchase, TransactionStatus.AUTHORIZED)
        txn.card_id = card_id
        self.store.add_transaction(txn)
        logger.info(f"Recorded authorized transaction {txn.transaction_id}")
        return txn

    def finalize(
        self,
        transaction_id: str,
        status: TransactionStatus,
    ) -> Optional[Transaction]:
        """
        Move an authorized transaction to a terminal status.

        Returns:
            The updated transaction, or None if it was not authorized anymore
        """
        current = self.store.get_transaction(transaction_id)
        if current is None:
            return None

        updated = current.model_copy(update={"status": status, "updated_at": self.clock()})
        if not self.store.compare_and_set_transaction(
            transaction_id, TransactionStatus.AUTHORIZED, updated
        ):
            logger.debug(f"Transaction {transaction_id} already final ({current.status.value})")
            return None
        return updated

    def list_transactions(self, user_id: str, limit: Optional[int] = None) -> List[Transaction]:
        """Transactions for a user, newest first."""
        history = list(reversed(self.store.list_transactions(user_id)))
        if limit is not None:
            history = history[:limit]
        return history

    def _new_transaction(
        self,
        user_id: str,
        purchase: PurchaseRequest,
        status: TransactionStatus,
    ) -> Transaction:
        return Transaction(
            user_id=user_id,
            item=purchase.item,
            amount=purchase.amount,
            currency=purchase.currency,
            merchant=purchase.merchant,
            merchant_url=purchase.merchant_url,
            category=purchase.category,
            status=status,
            created_at=self.clock(),
        )

    # Wallet ledger

    def wallet_balance(self, user_id: str) -> Decimal:
        """Current wallet balance, replayed from the ledger."""
        return sum(
            (entry.signed_amount for entry in self.store.list_ledger_entries(user_id)),
            Decimal("0"),
        )

    def list_entries(self, user_id: str) -> List[LedgerEntry]:
        return self.store.list_ledger_entries(user_id)

    def deposit(
        self,
        user_id: str,
        amount: Decimal,
        reference_id: Optional[str] = None,
    ) -> LedgerEntry:
        return self._append(
            user_id,
            LedgerEntryType.DEPOSIT,
            amount,
            reference_id=reference_id,
            description="Wallet deposit",
        )

    def debit(
        self,
        user_id: str,
        amount: Decimal,
        reference_id: Optional[str] = None,
    ) -> LedgerEntry:
        """
        Debit the wallet for a purchase.

        Raises:
            InsufficientFunds: If the balance is below the amount
        """
        balance = self.wallet_balance(user_id)
        if balance < amount:
            raise InsufficientFunds(
                f"Insufficient wallet balance: {balance} < {amount}",
                details={"balance": str(balance), "amount": str(amount)},
            )
        return self._append(
            user_id,
            LedgerEntryType.PURCHASE_DEBIT,
            amount,
            reference_id=reference_id,
            description="Card top-up",
        )

    def refund(
        self,
        user_id: str,
        amount: Decimal,
        reference_id: Optional[str] = None,
    ) -> LedgerEntry:
        return self._append(
            user_id,
            LedgerEntryType.REFUND,
            amount,
            reference_id=reference_id,
            description="Unused card balance returned",
        )

    def verify(self, user_id: str) -> Decimal:
        """
        Replay the user's entries and check every balance_after.

        Returns:
            The replayed balance

        Raises:
            LedgerInconsistency: On the first entry that disagrees
        """
        running = Decimal("0")
        for index, entry in enumerate(self.store.list_ledger_entries(user_id)):
            running += entry.signed_amount
            if running != entry.balance_after:
                raise LedgerInconsistency(
                    f"Ledger entry {entry.entry_id} records balance {entry.balance_after}, "
                    f"replay gives {running}",
                    details={"user_id": user_id, "index": index},
                )
        return running

    def _append(
        self,
        user_id: str,
        entry_type: LedgerEntryType,
        amount: Decimal,
        reference_id: Optional[str],
        description: str,
        created_at: Optional[datetime] = None,
    ) -> LedgerEntry:
        previous = self.verify(user_id)
        entry = LedgerEntry(
            user_id=user_id,
            entry_type=entry_type,
            amount=amount,
            balance_after=Decimal("0"),
            reference_id=reference_id,
            description=description,
            created_at=created_at or self.clock(),
        )
        entry.balance_after = previous + entry.signed_amount
        self.store.add_ledger_entry(entry)

        after = self.verify(user_id)
        if after != entry.balance_after:
            raise LedgerInconsistency(
                f"Balance after {entry_type.value} is {after}, expected {entry.balance_after}",
                details={"user_id": user_id, "entry_id": entry.entry_id},
            )

        logger.debug(
            f"Ledger {entry_type.value} {amount} for {user_id}, balance {entry.balance_after}"
        )
        return entry
