"""Stripe Issuing card backend."""

import logging
import os
import threading
from datetime import datetime, UTC
from decimal import Decimal
from typing import Dict, Optional, Tuple

from spendgate.cards.base import CardBackend
from spendgate.cards.models import CardDetails
from spendgate.errors import CardBackendError


logger = logging.getLogger(__name__)


class StripeIssuingBackend(CardBackend):
    """
    Stripe Issuing virtual card backend.

    Requires the 'stripe' extra: pip install spendgate[stripe]

    An idle card is ``inactive``. Funding activates it with a single
    per-authorization spending limit equal to the purchase amount. The
    leftover on drain is the funded amount minus the authorizations approved
    since funding.

    Environment variables:
        SPENDGATE_STRIPE_API_KEY: Secret API key (sk_test_... or sk_live_...)
    """

    def __init__(self, api_key: Optional[str] = None) -> None:
        try:
            import stripe
        except ImportError:
            raise ImportError(
                "Stripe SDK not installed. Install with: pip install spendgate[stripe]"
            )

        self._api_key = api_key or os.environ.get("SPENDGATE_STRIPE_API_KEY")
        if not self._api_key:
            raise ValueError(
                "Stripe API key required. Set SPENDGATE_STRIPE_API_KEY or pass api_key."
            )

        self._stripe = stripe
        self._stripe.api_key = self._api_key
        # card_id -> (funded amount, funded at unix ts)
        self._funding: Dict[str, Tuple[Decimal, int]] = {}
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "stripe_issuing"

    def provision(self, user_id: str, currency: str = "USD") -> CardDetails:
        try:
            cardholder = self._stripe.issuing.Cardholder.create(
                name="SpendGate User",
                type="individual",
                metadata={"user_id": user_id},
                billing={
                    "address": {
                        "line1": "123 Test St",
                        "city": "San Francisco",
                        "state": "CA",
                        "postal_code": "94111",
                        "country": "US",
                    }
                },
            )
            card = self._stripe.issuing.Card.create(
                cardholder=cardholder["id"],
                currency=currency.lower(),
                type="virtual",
                status="inactive",
                metadata={"user_id": user_id},
            )
        except self._stripe.StripeError as e:
            logger.error(f"Stripe provisioning failed for {user_id}: {e}")
            raise CardBackendError(f"Card provisioning failed: {e}")

        logger.info(f"Stripe card provisioned for {user_id}: ****{card['last4']}")
        return self._card_to_model(self._retrieve(card["id"]))

    def get_card(self, card_id: str) -> Optional[CardDetails]:
        try:
            return self._card_to_model(self._retrieve(card_id))
        except self._stripe.InvalidRequestError:
            return None

    def fund(self, card_id: str, amount: Decimal) -> CardDetails:
        try:
            self._stripe.issuing.Card.modify(
                card_id,
                status="active",
                spending_controls={
                    "spending_limits": [
                        {"amount": _to_cents(amount), "interval": "per_authorization"},
                    ],
                },
            )
        except self._stripe.StripeError as e:
            raise CardBackendError(f"Card funding failed: {e}")

        with self._lock:
            self._funding[card_id] = (amount, int(datetime.now(UTC).timestamp()))
        return self._card_to_model(self._retrieve(card_id))

    def drain(self, card_id: str) -> Decimal:
        with self._lock:
            funded, funded_at = self._funding.get(card_id, (Decimal("0"), 0))

        try:
            self._stripe.issuing.Card.modify(card_id, status="inactive")
            spent = self._approved_since(card_id, funded_at) if funded > 0 else Decimal("0")
        except self._stripe.StripeError as e:
            raise CardBackendError(f"Card drain failed: {e}")

        # Forget the funding only once the card is confirmed inactive
        with self._lock:
            self._funding.pop(card_id, None)

        return max(Decimal("0"), funded - spent)

    def _retrieve(self, card_id: str):
        return self._stripe.issuing.Card.retrieve(card_id, expand=["number", "cvc"])

    def _approved_since(self, card_id: str, since: int) -> Decimal:
        """Sum of approved authorizations on the card since ``since``."""
        authorizations = self._stripe.issuing.Authorization.list(
            card=card_id,
            created={"gte": since},
            limit=100,
        )
        total_cents = sum(
            auth["amount"]
            for auth in authorizations.auto_paging_iter()
            if auth.get("approved")
        )
        return Decimal(total_cents) / 100

    def _card_to_model(self, stripe_card) -> CardDetails:
        with self._lock:
            funded, _ = self._funding.get(stripe_card["id"], (Decimal("0"), 0))
        active = stripe_card.get("status") == "active"
        return CardDetails(
            card_id=stripe_card["id"],
            number=stripe_card.get("number") or "",
            last4=stripe_card["last4"],
            exp_month=stripe_card["exp_month"],
            exp_year=stripe_card["exp_year"],
            cvc=stripe_card.get("cvc") or "",
            brand=str(stripe_card.get("brand", "visa")).lower(),
            spending_limit=funded if active else Decimal("0"),
            balance=funded if active else Decimal("0"),
            currency=str(stripe_card.get("currency", "usd")).upper(),
        )


def _to_cents(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())
