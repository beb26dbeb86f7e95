"""Approval Trigger Rules.

These rules never reject. When one matches, the purchase waits for the user.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from spendgate.schema import PurchaseRequest
from spendgate.context.models import SpendAggregates
from spendgate.policy.models import PolicyConfig, RuleCategory, RuleViolation
from spendgate.policy.rules import Rule


# Fraction of the daily limit above which a purchase needs approval
NEAR_DAILY_LIMIT_RATIO = Decimal("0.8")


class AlwaysAskRule(Rule):
    """Every purchase needs approval when the user asks for it."""

    def __init__(self):
        super().__init__(
            name="always_ask",
            category=RuleCategory.APPROVAL_TRIGGER,
            risk_flag="always_ask",
            description="User approves every purchase",
        )

    def evaluate(
        self,
        request: PurchaseRequest,
        policy: PolicyConfig,
        aggregates: SpendAggregates,
        now: datetime,
    ) -> Tuple[bool, Optional[RuleViolation]]:
        if policy.always_ask:
            return False, self.create_violation("Always ask for approval")
        return True, None


class NewMerchantRule(Rule):
    """First purchase from a merchant needs approval."""

    def __init__(self):
        super().__init__(
            name="new_merchant",
            category=RuleCategory.APPROVAL_TRIGGER,
            risk_flag="new_merchant",
            description="Unknown merchants need approval",
        )

    def evaluate(
        self,
        request: PurchaseRequest,
        policy: PolicyConfig,
        aggregates: SpendAggregates,
        now: datetime,
    ) -> Tuple[bool, Optional[RuleViolation]]:
        if policy.block_new_merchants and not aggregates.is_known_merchant:
            return False, self.create_violation(
                f'First purchase from "{request.merchant}"',
                details={"merchant": request.merchant},
            )
        return True, None


class NearDailyLimitRule(Rule):
    """Purchases that bring today's spend close to the limit need approval."""

    def __init__(self):
        super().__init__(
            name="near_daily_limit",
            category=RuleCategory.APPROVAL_TRIGGER,
            risk_flag="near_daily_limit",
            description="Within 20% of the daily limit",
        )

    def evaluate(
        self,
        request: PurchaseRequest,
        policy: PolicyConfig,
        aggregates: SpendAggregates,
        now: datetime,
    ) -> Tuple[bool, Optional[RuleViolation]]:
        limit = policy.daily_limit
        if limit is None:
            return True, None

        projected = aggregates.today_spent + request.amount
        if projected > limit * NEAR_DAILY_LIMIT_RATIO:
            if limit > 0:
                percent = f"{(projected / limit * 100):.0f}%"
            else:
                percent = "over 100%"
            return False, self.create_violation(
                f"Purchase would put you at {percent} of your daily limit",
                details={"projected_total": str(projected), "limit": str(limit)},
            )
        return True, None


APPROVAL_TRIGGER_RULES = [
    AlwaysAskRule(),
    NewMerchantRule(),
    NearDailyLimitRule(),
]
