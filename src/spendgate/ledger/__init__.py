"""Ledger module: purchase transactions, wallet entries and the audit chain.

The transaction recorder lives in ``spendgate.ledger.recorder``.
"""

from spendgate.ledger.audit import AuditLedger
from spendgate.ledger.models import (
    AuditEntry,
    EventType,
    LedgerEntry,
    LedgerEntryType,
    Transaction,
    TransactionStatus,
)

__all__ = [
    "AuditLedger",
    "AuditEntry",
    "EventType",
    "LedgerEntry",
    "LedgerEntryType",
    "Transaction",
    "TransactionStatus",
]
