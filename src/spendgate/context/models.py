"""
Context Data Models

Ground truth the policy engine evaluates a purchase against.
"""

from decimal import Decimal

from pydantic import BaseModel, Field


class SpendAggregates(BaseModel):
    """
    Spend aggregates for one user at evaluation time.

    Computed by the spend ledger reader from transaction history.
    """

    today_spent: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Amount spent since local midnight",
    )
    month_spent: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Amount spent since the start of the local calendar month",
    )
    purchase_count: int = Field(
        default=0,
        ge=0,
        description="Purchases in the policy's velocity window",
    )
    is_known_merchant: bool = Field(
        default=False,
        description="Whether the user has bought from this merchant before",
    )
