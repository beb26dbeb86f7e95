"""
Context Service

Policy Store and Spend Ledger Reader for the policy engine. Aggregates are
always derived from the transaction history in the store; nothing here is
cached between calls.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from spendgate.clock import Clock, utc_now
from spendgate.context.models import SpendAggregates
from spendgate.ledger.models import TransactionStatus
from spendgate.policy.models import PolicyConfig
from spendgate.storage.base import Store


logger = logging.getLogger(__name__)

# Transactions that count toward spend and velocity
COUNTED_STATUSES = (TransactionStatus.AUTHORIZED, TransactionStatus.COMPLETED)


class ContextService:
    """Service to provide context for policy evaluation."""

    def __init__(self, store: Store, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or utc_now

    def get_policy(self, user_id: str) -> PolicyConfig:
        """Get the user's policy, falling back to the defaults."""
        policy = self.store.get_policy(user_id)
        if policy is None:
            return PolicyConfig()
        return policy

    def set_policy(self, user_id: str, policy: PolicyConfig) -> PolicyConfig:
        """Replace the user's policy (settings-service stand-in)."""
        self.store.set_policy(user_id, policy)
        logger.info(f"Policy updated for {user_id}")
        return policy

    def get_aggregates(
        self,
        user_id: str,
        merchant: str,
        policy: PolicyConfig,
        now: Optional[datetime] = None,
    ) -> SpendAggregates:
        """
        Compute spend aggregates for a user.

        Day and month boundaries are taken in the policy's timezone.

        Args:
            user_id: User whose history to read
            merchant: Merchant of the purchase being evaluated
            policy: The user's policy (timezone and velocity window)
            now: Evaluation time; defaults to the clock

        Returns:
            SpendAggregates for the policy engine
        """
        now = now or self.clock()
        local_now = now.astimezone(ZoneInfo(policy.timezone))
        day_start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
        month_start = day_start.replace(day=1)
        window_start = now - timedelta(days=policy.purchase_count_window_days)

        earliest = min(month_start, window_start)
        history = self.store.list_transactions(
            user_id,
            since=earliest,
            statuses=COUNTED_STATUSES,
        )

        today_spent = sum(
            (txn.amount for txn in history if txn.created_at >= day_start),
            Decimal("0"),
        )
        month_spent = sum(
            (txn.amount for txn in history if txn.created_at >= month_start),
            Decimal("0"),
        )
        purchase_count = len([txn for txn in history if txn.created_at >= window_start])

        return SpendAggregates(
            today_spent=today_spent,
            month_spent=month_spent,
            purchase_count=purchase_count,
            is_known_merchant=self.store.is_known_merchant(user_id, merchant),
        )
