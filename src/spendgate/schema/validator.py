"""
Schema Validator

Rejects malformed purchase requests before they reach the policy engine.
"""

import json
import logging
from typing import Any, Dict, Union

from pydantic import ValidationError as PydanticValidationError

from spendgate.errors import ValidationError
from spendgate.schema.purchase_schema import PurchaseRequest


logger = logging.getLogger(__name__)


class SchemaValidator:
    """
    Schema Validator

    Enforces strict typing and prevents:
    - Missing required fields (item, amount, merchant)
    - Non-positive amounts
    - Type mismatches
    """

    def __init__(self):
        self.logger = logger

    def validate(self, data: Union[str, bytes, Dict[str, Any]]) -> PurchaseRequest:
        """
        Validate and parse a purchase request.

        Args:
            data: Raw JSON string or dictionary from the agent

        Returns:
            Validated PurchaseRequest object

        Raises:
            ValidationError: If data fails schema validation
        """
        # Parse JSON if string
        if isinstance(data, (str, bytes)):
            try:
                parsed_data = json.loads(data)
            except json.JSONDecodeError as e:
                self.logger.error(f"JSON parse error: {e}")
                raise ValidationError(
                    message="PARSE_ERROR: Invalid JSON format",
                    errors=[{"type": "json_decode", "msg": str(e)}],
                )
        else:
            parsed_data = data

        if not isinstance(parsed_data, dict):
            raise ValidationError(
                message="VALIDATION_ERROR: Purchase request must be a JSON object",
                errors=[{"type": "type_error", "msg": "expected object"}],
            )

        try:
            request = PurchaseRequest.model_validate(parsed_data)
            self.logger.debug(f"Schema validation passed for item: {request.item}")
            return request

        except PydanticValidationError as e:
            errors = _flatten_errors(e)
            self.logger.warning(f"Schema validation failed: {errors}")
            missing = [err["field"] for err in errors if err["type"] == "missing"]
            if missing:
                message = f"Missing required fields: {', '.join(missing)}"
            else:
                message = "VALIDATION_ERROR: Schema validation failed"
            raise ValidationError(message=message, errors=errors)

    def validate_safe(
        self, data: Union[str, bytes, Dict[str, Any]]
    ) -> tuple[PurchaseRequest | None, ValidationError | None]:
        """
        Safe validation that returns errors instead of raising.

        Returns:
            Tuple of (validated_request, error)
        """
        try:
            return self.validate(data), None
        except ValidationError as e:
            return None, e


def _flatten_errors(exc: PydanticValidationError) -> list[Dict[str, Any]]:
    """Extract field-specific errors from a pydantic error."""
    return [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "type": error["type"],
            "msg": error["msg"],
        }
        for error in exc.errors()
    ]
