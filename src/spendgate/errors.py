"""Error taxonomy for the authorization and funding lifecycle.

Every error carries the HTTP status the API layer should answer with.
Policy rejections are NOT errors: they are recorded as rejected transactions.
"""

from typing import Any, Dict, Optional


class SpendGateError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(SpendGateError):
    """Malformed or missing purchase fields."""

    status_code = 400

    def __init__(self, message: str, errors: Optional[list[Dict[str, Any]]] = None):
        super().__init__(message, details={"errors": errors or []})
        self.errors = errors or []


class NotFound(SpendGateError):
    status_code = 404


class ApprovalNotFound(NotFound):
    """No pending approval matches the token."""


class SessionNotFound(NotFound):
    """No funding session with that id belongs to the user."""


class InstrumentNotProvisioned(NotFound):
    """The user has no card yet."""


class Forbidden(SpendGateError):
    status_code = 403


class Expired(SpendGateError):
    status_code = 410


class InsufficientFunds(SpendGateError):
    """Wallet balance is below the purchase amount."""

    status_code = 402


class FundingConflict(SpendGateError):
    """A funding session is already active for the user."""

    status_code = 409


class PersistenceFailure(SpendGateError):
    """A write after funding failed; the instrument has been drained."""

    status_code = 500


class LedgerInconsistency(PersistenceFailure):
    """Recomputed running balance disagrees with a ledger entry."""


class CardBackendError(SpendGateError):
    """The card vendor rejected or failed an operation."""

    status_code = 502
