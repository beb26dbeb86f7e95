"""Schema validation module for SpendGate purchase requests."""

from spendgate.schema.purchase_schema import PurchaseRequest
from spendgate.schema.validator import SchemaValidator
from spendgate.errors import ValidationError

__all__ = [
    "PurchaseRequest",
    "SchemaValidator",
    "ValidationError",
]
