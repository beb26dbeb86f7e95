"""Card vendor backends: one interface, selected by configuration."""

from spendgate.cards.base import CardBackend
from spendgate.cards.models import CardDetails, ChargeResult, detect_brand, luhn_valid
from spendgate.cards.mock import MockCardBackend
from spendgate.config import Settings


def build_card_backend(settings: Settings) -> CardBackend:
    """Construct the configured card backend."""
    if settings.card_backend == "stripe":
        from spendgate.cards.stripe_issuing import StripeIssuingBackend

        return StripeIssuingBackend(api_key=settings.stripe_api_key)
    return MockCardBackend()


__all__ = [
    "CardBackend",
    "CardDetails",
    "ChargeResult",
    "MockCardBackend",
    "build_card_backend",
    "detect_brand",
    "luhn_valid",
]
