"""Approval prompt text and reply parsing."""

import re
from datetime import datetime
from typing import Optional

from spendgate.approvals.models import Approval


APPROVE_WORDS = ("yes", "approve")
REJECT_WORDS = ("no", "reject", "cancel")

_REPLY_PATTERN = re.compile(
    r"^\s*(" + "|".join(APPROVE_WORDS + REJECT_WORDS) + r")\s*[.!]?\s*$",
    re.IGNORECASE,
)


def parse_approval_reply(text: Optional[str]) -> Optional[bool]:
    """
    Interpret a user's reply to an approval prompt.

    The whole message must be one of the reply words.

    Returns:
        True to approve, False to reject, None if the reply is not a decision
    """
    match = _REPLY_PATTERN.match(text or "")
    if not match:
        return None
    return match.group(1).lower() in APPROVE_WORDS


def format_amount(amount) -> str:
    return f"{amount:.2f}"


def format_approval_message(approval: Approval, now: Optional[datetime] = None) -> str:
    """Build the prompt sent to the user for a pending approval."""
    lines = [
        "SpendGate approval request",
        f"Item: {approval.item}",
        f"Amount: {format_amount(approval.amount)} {approval.currency}",
        f"Merchant: {approval.merchant}",
    ]
    if approval.risk_flags:
        lines.append(f"Why: {', '.join(approval.risk_flags)}")
    lines.extend([
        "Reply YES to approve",
        "Reply NO to reject",
        f"Expires: {approval.expires_at.isoformat()}",
    ])
    if now is not None:
        remaining = int((approval.expires_at - now).total_seconds())
        lines.append(f"({max(remaining, 0)}s left)")
    return "\n".join(lines)
