"""Policy Engine - Core Decision Making Logic.

Evaluates a purchase against the user's layered spending policy.
Evaluation is a pure function of its inputs: no I/O, no clock reads.
"""

import logging
from datetime import datetime
from typing import List, Optional

from spendgate.schema import PurchaseRequest
from spendgate.context.models import SpendAggregates
from spendgate.policy.models import (
    Decision,
    DecisionAction,
    PolicyConfig,
    RuleCategory,
    RuleViolation,
)
from spendgate.policy.rules import Rule
from spendgate.policy.rules.hard_limits import HARD_REJECT_RULES
from spendgate.policy.rules.approval_triggers import APPROVAL_TRIGGER_RULES


logger = logging.getLogger(__name__)


class PolicyEngine:
    """
    Deterministic Policy Engine for purchase decisions.

    Evaluates purchases through 2 layers of rules, first match wins:
    - Layer 1: Hard rejects (REJECT on match)
    - Layer 2: Approval triggers (NEEDS_APPROVAL on match)

    A purchase that matches nothing is auto-approved.
    """

    def __init__(self, rules: Optional[List[Rule]] = None):
        """Initialize the policy engine with all rule layers."""
        if rules is None:
            rules = []
            # Add rules in order (Layer 1 first)
            rules.extend(HARD_REJECT_RULES)
            rules.extend(APPROVAL_TRIGGER_RULES)
        self.rules: List[Rule] = rules

    def evaluate(
        self,
        request: PurchaseRequest,
        policy: PolicyConfig,
        aggregates: SpendAggregates,
        now: datetime,
    ) -> Decision:
        """
        Evaluate a purchase against all policy rules.

        Args:
            request: Validated purchase request
            policy: The user's spending policy
            aggregates: Spend aggregates and merchant familiarity
            now: Evaluation time, used for the night pause

        Returns:
            Decision with action, reason and risk flags
        """
        for rule in self.rules:
            passed, violation = rule.evaluate(request, policy, aggregates, now)
            if not passed:
                return self._decide(violation)

        return Decision(action=DecisionAction.AUTO_APPROVE, risk_flags=[])

    @staticmethod
    def _decide(violation: RuleViolation) -> Decision:
        """Map the first matched rule to a decision."""
        if violation.category == RuleCategory.HARD_REJECT:
            action = DecisionAction.REJECT
        else:
            action = DecisionAction.NEEDS_APPROVAL

        return Decision(
            action=action,
            reason=violation.message,
            risk_flags=[violation.risk_flag],
            rule_name=violation.rule_name,
        )


_default_engine = PolicyEngine()


def evaluate_purchase(
    request: PurchaseRequest,
    policy: PolicyConfig,
    aggregates: SpendAggregates,
    now: datetime,
) -> Decision:
    """Evaluate a purchase with the default rule set."""
    return _default_engine.evaluate(request, policy, aggregates, now)
