"""Abstract base class for card vendor backends."""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from spendgate.cards.models import CardDetails


class CardBackend(ABC):
    """
    Capability behind provision / fund / drain of the persistent card.

    Implementations are selected once, by configuration. The session manager
    is the only caller.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name (e.g., 'mock', 'stripe_issuing')."""
        ...

    @abstractmethod
    def provision(self, user_id: str, currency: str = "USD") -> CardDetails:
        """
        Create a new virtual card at zero balance and zero limit.

        Args:
            user_id: Owner of the card
            currency: ISO currency for the card

        Returns:
            The created card
        """
        ...

    @abstractmethod
    def get_card(self, card_id: str) -> Optional[CardDetails]:
        """
        Get full card details.

        Args:
            card_id: The vendor's card ID

        Returns:
            CardDetails if found, None otherwise
        """
        ...

    @abstractmethod
    def fund(self, card_id: str, amount: Decimal) -> CardDetails:
        """
        Set both balance and spending limit to ``amount``.

        Args:
            card_id: The vendor's card ID
            amount: Amount available for the next purchase

        Returns:
            Updated card
        """
        ...

    @abstractmethod
    def drain(self, card_id: str) -> Decimal:
        """
        Set balance and spending limit to zero.

        Args:
            card_id: The vendor's card ID

        Returns:
            The balance the card held before draining
        """
        ...
