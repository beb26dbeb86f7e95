"""Mock card backend for testing and development."""

import logging
import secrets
import threading
import uuid
from datetime import datetime, UTC
from decimal import Decimal
from typing import Dict, Optional

from spendgate.cards.base import CardBackend
from spendgate.cards.models import CardDetails, ChargeResult
from spendgate.errors import CardBackendError


logger = logging.getLogger(__name__)


def generate_mock_visa_number() -> str:
    """Generate a 16-digit Visa number that passes the Luhn check."""
    digits = "4" + "".join(str(secrets.randbelow(10)) for _ in range(14))
    total = 0
    for i, ch in enumerate(digits):
        d = int(ch)
        # Positions that are doubled once the check digit is appended
        if i % 2 == 0:
            d *= 2
            if d > 9:
                d -= 9
        total += d
    check = (10 - (total % 10)) % 10
    return digits + str(check)


class MockCardBackend(CardBackend):
    """Mock backend that simulates the card network in memory."""

    def __init__(self) -> None:
        self._cards: Dict[str, CardDetails] = {}
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "mock"

    def provision(self, user_id: str, currency: str = "USD") -> CardDetails:
        number = generate_mock_visa_number()
        now = datetime.now(UTC)
        card = CardDetails(
            card_id=f"icd_mock_{uuid.uuid4().hex[:24]}",
            number=number,
            last4=number[-4:],
            exp_month=now.month,
            exp_year=now.year + 3,
            cvc=f"{100 + secrets.randbelow(900)}",
            brand="visa",
            currency=currency,
        )
        with self._lock:
            self._cards[card.card_id] = card
        logger.info(f"Mock card provisioned for {user_id}: ****{card.last4}")
        return card.model_copy()

    def get_card(self, card_id: str) -> Optional[CardDetails]:
        with self._lock:
            card = self._cards.get(card_id)
            return card.model_copy() if card else None

    def fund(self, card_id: str, amount: Decimal) -> CardDetails:
        with self._lock:
            card = self._require(card_id)
            card.balance = amount
            card.spending_limit = amount
            return card.model_copy()

    def drain(self, card_id: str) -> Decimal:
        with self._lock:
            card = self._require(card_id)
            drained = card.balance
            card.balance = Decimal("0")
            card.spending_limit = Decimal("0")
            return drained

    def charge(self, card_id: str, amount: Decimal, currency: str = "USD") -> ChargeResult:
        """
        Simulate a merchant charging the card.

        Fails when the card is unfunded or the amount exceeds its limit.
        """
        charge_id = f"ch_mock_{uuid.uuid4().hex[:24]}"
        with self._lock:
            card = self._cards.get(card_id)
            if card is None or card.balance <= 0 or amount > card.spending_limit or amount > card.balance:
                logger.warning(f"Mock charge declined on {card_id}: {amount} {currency}")
                return ChargeResult(
                    charge_id=charge_id,
                    card_id=card_id,
                    amount=amount,
                    currency=currency,
                    status="failed",
                )
            card.balance -= amount

        return ChargeResult(
            charge_id=charge_id,
            card_id=card_id,
            amount=amount,
            currency=currency,
            status="succeeded",
        )

    def _require(self, card_id: str) -> CardDetails:
        card = self._cards.get(card_id)
        if card is None:
            raise CardBackendError(f"Card not found: {card_id}")
        return card
