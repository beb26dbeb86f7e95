"""Base class for policy rules."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Tuple

from spendgate.schema import PurchaseRequest
from spendgate.context.models import SpendAggregates
from spendgate.policy.models import PolicyConfig, RuleCategory, RuleViolation


class Rule(ABC):
    """Abstract base class for policy rules."""

    def __init__(
        self,
        name: str,
        category: RuleCategory,
        risk_flag: str,
        description: str,
    ):
        """
        Initialize a policy rule.

        Args:
            name: Unique rule identifier
            category: Rule category (determines decision on match)
            risk_flag: Tag reported when the rule matches
            description: Human-readable description
        """
        self.name = name
        self.category = category
        self.risk_flag = risk_flag
        self.description = description

    @abstractmethod
    def evaluate(
        self,
        request: PurchaseRequest,
        policy: PolicyConfig,
        aggregates: SpendAggregates,
        now: datetime,
    ) -> Tuple[bool, Optional[RuleViolation]]:
        """
        Evaluate the rule against a purchase.

        Args:
            request: Validated purchase request
            policy: The user's spending policy
            aggregates: Spend aggregates for the user
            now: Evaluation time (timezone-aware)

        Returns:
            Tuple of (passed: bool, violation: RuleViolation or None)
        """
        pass

    def create_violation(self, message: str, details: Optional[dict] = None) -> RuleViolation:
        """Create a violation for this rule."""
        return RuleViolation(
            rule_name=self.name,
            category=self.category,
            risk_flag=self.risk_flag,
            message=message,
            details=details,
        )
