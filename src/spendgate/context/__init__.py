"""Context module: spend aggregates and per-user policy lookups.

The service lives in ``spendgate.context.context_service``.
"""

from spendgate.context.models import SpendAggregates

__all__ = ["SpendAggregates"]
