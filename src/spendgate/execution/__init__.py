"""Execution module: instrument funding sessions and purchase routing.

Services live in ``spendgate.execution.sessions`` and
``spendgate.execution.router``.
"""

from spendgate.execution.models import (
    DrainReason,
    DrainResult,
    FundingSession,
    Instrument,
    PurchaseOutcome,
    SessionStatus,
    TopUpResult,
)

__all__ = [
    "DrainReason",
    "DrainResult",
    "FundingSession",
    "Instrument",
    "PurchaseOutcome",
    "SessionStatus",
    "TopUpResult",
]
