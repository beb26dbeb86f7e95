"""Card vendor models."""

import re
from datetime import datetime, UTC
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field


class CardDetails(BaseModel):
    """
    Full card details as reported by the vendor.

    SECURITY: number and cvc only leave the service while the card is funded.
    """

    card_id: str = Field(description="Vendor card identifier")
    number: str = Field(description="Full card number")
    last4: str
    exp_month: int = Field(ge=1, le=12)
    exp_year: int
    cvc: str
    brand: str = "visa"
    spending_limit: Decimal = Field(default=Decimal("0"), ge=0)
    balance: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = "USD"

    def masked(self) -> dict:
        """Card summary that is safe to log or show."""
        return {
            "card_id": self.card_id,
            "last4": self.last4,
            "brand": self.brand,
            "exp_month": f"{self.exp_month:02d}",
            "exp_year": str(self.exp_year),
        }


class ChargeResult(BaseModel):
    """Result of a simulated merchant charge."""

    charge_id: str
    card_id: str
    amount: Decimal
    currency: str
    status: Literal["succeeded", "failed"]
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


def detect_brand(number: str) -> str:
    """Card brand from the number prefix."""
    cleaned = re.sub(r"\s", "", number)
    if re.match(r"^4", cleaned):
        return "visa"
    if re.match(r"^5[1-5]", cleaned):
        return "mastercard"
    if re.match(r"^3[47]", cleaned):
        return "amex"
    if re.match(r"^6(?:011|5)", cleaned):
        return "discover"
    return "unknown"


def luhn_valid(number: str) -> bool:
    """Check a card number against the Luhn checksum."""
    digits = [int(d) for d in re.sub(r"\s", "", number)]
    total = 0
    for i, d in enumerate(reversed(digits)):
        if i % 2 == 1:
            d *= 2
            if d > 9:
                d -= 9
        total += d
    return total % 10 == 0
