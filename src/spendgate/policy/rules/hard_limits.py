"""Hard Reject Rules.

These rules MUST pass or the purchase is REJECTED and recorded.
They are evaluated before any rule that can defer to the user.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from spendgate.schema import PurchaseRequest
from spendgate.context.models import SpendAggregates
from spendgate.policy.models import PolicyConfig, RuleCategory, RuleViolation
from spendgate.policy.rules import Rule


# Night pause covers local hours [23, 7)
NIGHT_PAUSE_START_HOUR = 23
NIGHT_PAUSE_END_HOUR = 7


def format_money(amount: Decimal) -> str:
    """Render an amount as $12.50."""
    return f"${amount.quantize(Decimal('0.01'))}"


class BlockedCategoryRule(Rule):
    """Reject purchases in a blocked category."""

    def __init__(self):
        super().__init__(
            name="blocked_category",
            category=RuleCategory.HARD_REJECT,
            risk_flag="blocked_category",
            description="Category must not be on the blocked list",
        )

    def evaluate(
        self,
        request: PurchaseRequest,
        policy: PolicyConfig,
        aggregates: SpendAggregates,
        now: datetime,
    ) -> Tuple[bool, Optional[RuleViolation]]:
        if request.category and request.category in policy.blocked_categories:
            return False, self.create_violation(
                f'Category "{request.category}" is blocked',
                details={"category": request.category},
            )
        return True, None


class InternationalRule(Rule):
    """Reject international merchants when the user blocks them."""

    def __init__(self):
        super().__init__(
            name="international",
            category=RuleCategory.HARD_REJECT,
            risk_flag="international",
            description="International purchases may be blocked",
        )

    def evaluate(
        self,
        request: PurchaseRequest,
        policy: PolicyConfig,
        aggregates: SpendAggregates,
        now: datetime,
    ) -> Tuple[bool, Optional[RuleViolation]]:
        if request.international and policy.block_international:
            return False, self.create_violation("International purchases are blocked")
        return True, None


class NightPauseRule(Rule):
    """Reject purchases during the user's local night hours."""

    def __init__(self):
        super().__init__(
            name="night_pause",
            category=RuleCategory.HARD_REJECT,
            risk_flag="night_pause",
            description="No purchases between 11 PM and 7 AM local time",
        )

    def evaluate(
        self,
        request: PurchaseRequest,
        policy: PolicyConfig,
        aggregates: SpendAggregates,
        now: datetime,
    ) -> Tuple[bool, Optional[RuleViolation]]:
        if not policy.night_pause:
            return True, None

        hour = now.astimezone(ZoneInfo(policy.timezone)).hour
        if hour >= NIGHT_PAUSE_START_HOUR or hour < NIGHT_PAUSE_END_HOUR:
            return False, self.create_violation(
                "Purchases blocked during night pause (11 PM - 7 AM)",
                details={"local_hour": hour, "timezone": policy.timezone},
            )
        return True, None


class PerPurchaseLimitRule(Rule):
    """Enforce the per-purchase amount limit."""

    def __init__(self):
        super().__init__(
            name="per_purchase_limit",
            category=RuleCategory.HARD_REJECT,
            risk_flag="over_limit",
            description="Amount must not exceed the per-purchase limit",
        )

    def evaluate(
        self,
        request: PurchaseRequest,
        policy: PolicyConfig,
        aggregates: SpendAggregates,
        now: datetime,
    ) -> Tuple[bool, Optional[RuleViolation]]:
        limit = policy.per_purchase_limit
        if limit is not None and request.amount > limit:
            return False, self.create_violation(
                f"Amount {format_money(request.amount)} exceeds per-purchase limit "
                f"of {format_money(limit)}",
                details={"requested_amount": str(request.amount), "limit": str(limit)},
            )
        return True, None


class DailyLimitRule(Rule):
    """Enforce the daily spend limit."""

    def __init__(self):
        super().__init__(
            name="daily_limit",
            category=RuleCategory.HARD_REJECT,
            risk_flag="daily_limit",
            description="Today's spend must not exceed the daily limit",
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
        if projected > limit:
            return False, self.create_violation(
                f"Would exceed daily limit of {format_money(limit)} "
                f"(already spent {format_money(aggregates.today_spent)} today)",
                details={
                    "today_spent": str(aggregates.today_spent),
                    "projected_total": str(projected),
                    "limit": str(limit),
                },
            )
        return True, None


class MonthlyLimitRule(Rule):
    """Enforce the calendar-month spend limit."""

    def __init__(self):
        super().__init__(
            name="monthly_limit",
            category=RuleCategory.HARD_REJECT,
            risk_flag="monthly_limit",
            description="This month's spend must not exceed the monthly limit",
        )

    def evaluate(
        self,
        request: PurchaseRequest,
        policy: PolicyConfig,
        aggregates: SpendAggregates,
        now: datetime,
    ) -> Tuple[bool, Optional[RuleViolation]]:
        limit = policy.monthly_limit
        if limit is None:
            return True, None

        projected = aggregates.month_spent + request.amount
        if projected > limit:
            return False, self.create_violation(
                f"Would exceed monthly limit of {format_money(limit)}",
                details={
                    "month_spent": str(aggregates.month_spent),
                    "projected_total": str(projected),
                    "limit": str(limit),
                },
            )
        return True, None


class PurchaseVelocityRule(Rule):
    """Cap the number of purchases in the velocity window."""

    def __init__(self):
        super().__init__(
            name="purchase_velocity",
            category=RuleCategory.HARD_REJECT,
            risk_flag="velocity_limit",
            description="Purchase count must stay under the window limit",
        )

    def evaluate(
        self,
        request: PurchaseRequest,
        policy: PolicyConfig,
        aggregates: SpendAggregates,
        now: datetime,
    ) -> Tuple[bool, Optional[RuleViolation]]:
        limit = policy.weekly_purchase_limit
        if limit is None:
            return True, None

        # Inclusive: reaching the limit already blocks the next purchase
        if aggregates.purchase_count >= limit:
            return False, self.create_violation(
                f"Exceeded maximum purchases per {policy.purchase_count_window_days} days "
                f"({limit})",
                details={
                    "current_count": aggregates.purchase_count,
                    "limit": limit,
                    "window_days": policy.purchase_count_window_days,
                },
            )
        return True, None


# Evaluation order matters: first match wins
HARD_REJECT_RULES = [
    BlockedCategoryRule(),
    InternationalRule(),
    NightPauseRule(),
    PerPurchaseLimitRule(),
    DailyLimitRule(),
    MonthlyLimitRule(),
    PurchaseVelocityRule(),
]
