"""Policy configuration and decision models."""

from decimal import Decimal
from enum import Enum
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator


class DecisionAction(str, Enum):
    """Policy evaluation outcomes."""

    AUTO_APPROVE = "auto_approve"      # Fund the card immediately
    NEEDS_APPROVAL = "needs_approval"  # Defer to the user
    REJECT = "reject"                  # Hard stop, recorded as rejected


class RuleCategory(str, Enum):
    """Categories of policy rules."""

    HARD_REJECT = "HARD_REJECT"        # Must pass or REJECT
    APPROVAL_TRIGGER = "APPROVAL_TRIGGER"  # Fails into NEEDS_APPROVAL


class PolicyConfig(BaseModel):
    """
    Per-user spending policy.

    Owned by the settings service; read-only to the core. A limit of ``None``
    means "no limit". A limit of 0 intentionally blocks all spend.
    """

    always_ask: bool = Field(default=True, description="Every purchase needs approval")
    per_purchase_limit: Optional[Decimal] = Field(default=Decimal("50"), ge=0)
    daily_limit: Optional[Decimal] = Field(default=Decimal("150"), ge=0)
    monthly_limit: Optional[Decimal] = Field(default=Decimal("500"), ge=0)
    weekly_purchase_limit: Optional[int] = Field(
        default=25,
        ge=0,
        description="Max purchases in the velocity window",
    )
    purchase_count_window_days: int = Field(
        default=7,
        gt=0,
        description="Length of the velocity window in days",
    )
    blocked_categories: List[str] = Field(default_factory=list)
    block_new_merchants: bool = Field(default=True)
    block_international: bool = Field(default=False)
    night_pause: bool = Field(default=False, description="Reject 23:00-07:00 local")
    timezone: str = Field(default="UTC", description="IANA zone for the local hour")
    approval_timeout_seconds: int = Field(default=300, gt=0)
    approval_channel: str = Field(default="log")
    telegram_chat_id: Optional[str] = Field(default=None)

    @field_validator("timezone")
    @classmethod
    def known_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError, OSError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @field_validator("blocked_categories")
    @classmethod
    def dedupe_categories(cls, v: List[str]) -> List[str]:
        seen: List[str] = []
        for category in v:
            category = category.strip()
            if category and category not in seen:
                seen.append(category)
        return seen


class RuleViolation(BaseModel):
    """Details of a rule that matched."""

    rule_name: str = Field(description="Name of the matched rule")
    category: RuleCategory = Field(description="Category of the rule")
    risk_flag: str = Field(description="Short tag explaining the decision")
    message: str = Field(description="Human-readable reason")
    details: Optional[dict] = Field(default=None, description="Additional details")


class Decision(BaseModel):
    """Result of evaluating a purchase against policy."""

    action: DecisionAction = Field(description="Final policy decision")
    reason: Optional[str] = Field(default=None, description="Human-readable explanation")
    risk_flags: List[str] = Field(default_factory=list, description="Ordered risk tags")
    rule_name: Optional[str] = Field(default=None, description="Rule that decided")

    @property
    def is_rejected(self) -> bool:
        return self.action == DecisionAction.REJECT

    @property
    def needs_approval(self) -> bool:
        return self.action == DecisionAction.NEEDS_APPROVAL

    @property
    def is_auto_approved(self) -> bool:
        return self.action == DecisionAction.AUTO_APPROVE
