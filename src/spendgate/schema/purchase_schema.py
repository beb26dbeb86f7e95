"""
Purchase Request Schema Definition

This module defines the schema for purchase requests submitted by an agent.
A request is transient: it is always converted into a Transaction or an Approval.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class PurchaseRequest(BaseModel):
    """
    Purchase Request Schema

    Amounts are already-normalized decimals in a single currency.
    """

    item: str = Field(
        min_length=1,
        description="What the agent wants to buy",
    )

    amount: Decimal = Field(
        gt=0,
        description="Purchase amount (must be positive)",
    )

    currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="ISO 4217 currency code",
    )

    merchant: str = Field(
        min_length=1,
        description="Merchant name as the agent sees it",
    )

    merchant_url: Optional[str] = Field(
        default=None,
        description="Checkout page URL",
    )

    category: Optional[str] = Field(
        default=None,
        description="Merchant category (matched against blocked categories)",
    )

    international: bool = Field(
        default=False,
        description="Whether the merchant is international",
    )

    @field_validator("item", "merchant")
    @classmethod
    def strip_required_text(cls, v: str) -> str:
        """Reject whitespace-only names."""
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()

    @field_validator("category")
    @classmethod
    def normalize_category(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        return v or None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "item": "USB-C cable",
                    "amount": "12.99",
                    "currency": "USD",
                    "merchant": "Acme Electronics",
                    "merchant_url": "https://acme.example/checkout",
                    "category": "electronics",
                    "international": False,
                }
            ]
        }
    }
