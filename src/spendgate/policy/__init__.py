"""Policy Engine module for SpendGate."""

from spendgate.policy.models import (
    Decision,
    DecisionAction,
    PolicyConfig,
    RuleViolation,
)
from spendgate.policy.engine import PolicyEngine, evaluate_purchase

__all__ = [
    "Decision",
    "DecisionAction",
    "PolicyConfig",
    "RuleViolation",
    "PolicyEngine",
    "evaluate_purchase",
]
