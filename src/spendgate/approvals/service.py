"""
Approval Service

State machine for human-in-the-loop purchases:

    pending -> approved | rejected | expired

Each approval transitions exactly once. Transitions are compare-and-set on
the stored status, and approval funding runs under the user's lock so a
resolution can never double-fund.
"""

import logging
from datetime import timedelta
from typing import Optional

from pydantic import BaseModel, Field

from spendgate.approvals.models import Approval, ApprovalStatus
from spendgate.approvals.notifier import Notifier, LogNotifier
from spendgate.clock import Clock, utc_now
from spendgate.context.context_service import ContextService
from spendgate.errors import ApprovalNotFound, Expired, Forbidden
from spendgate.execution.models import TopUpResult
from spendgate.execution.sessions import InstrumentSessionManager
from spendgate.ledger.audit import AuditLedger
from spendgate.ledger.models import EventType
from spendgate.ledger.recorder import TransactionRecorder
from spendgate.policy.models import Decision, PolicyConfig
from spendgate.schema import PurchaseRequest
from spendgate.storage.base import Store


logger = logging.getLogger(__name__)


class ApprovalResolution(BaseModel):
    """Outcome of resolving an approval."""

    status: str = Field(description="approved | rejected")
    approval: Approval
    transaction_id: Optional[str] = None
    topup: Optional[TopUpResult] = None


class ApprovalService:
    """Creates and resolves approvals."""

    def __init__(
        self,
        store: Store,
        context: ContextService,
        recorder: TransactionRecorder,
        sessions: InstrumentSessionManager,
        notifier: Optional[Notifier] = None,
        audit: Optional[AuditLedger] = None,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.context = context
        self.recorder = recorder
        self.sessions = sessions
        self.notifier = notifier or LogNotifier()
        self.audit = audit
        self.clock = clock or utc_now

    def create(
        self,
        user_id: str,
        purchase: PurchaseRequest,
        decision: Decision,
        policy: PolicyConfig,
    ) -> Approval:
        """
        Persist a pending approval and notify the user.

        Args:
            user_id: Owner of the purchase
            purchase: Validated purchase request (snapshotted)
            decision: The needs_approval decision
            policy: User policy (timeout and channel)

        Returns:
            The pending Approval
        """
        now = self.clock()
        approval = Approval(
            user_id=user_id,
            item=purchase.item,
            amount=purchase.amount,
            currency=purchase.currency,
            merchant=purchase.merchant,
            merchant_url=purchase.merchant_url,
            category=purchase.category,
            risk_flags=list(decision.risk_flags),
            reason=decision.reason,
            expires_at=now + timedelta(seconds=policy.approval_timeout_seconds),
            created_at=now,
        )
        self.store.add_approval(approval)
        logger.info(
            f"Approval {approval.approval_id} created for {user_id}: "
            f"{purchase.amount} at {purchase.merchant} ({', '.join(approval.risk_flags)})"
        )

        try:
            self.notifier.send(approval, policy)
        except Exception as e:
            logger.warning(f"Approval notification failed for {approval.approval_id}: {e}")

        self._audit(
            EventType.APPROVAL_CREATED,
            approval,
            {
                "amount": approval.amount,
                "merchant": approval.merchant,
                "risk_flags": approval.risk_flags,
                "expires_at": approval.expires_at,
            },
        )
        return approval

    def get_pending(self, user_id: str) -> list[Approval]:
        """Pending approvals for a user, oldest first."""
        return self.store.list_approvals(user_id, status=ApprovalStatus.PENDING)

    def resolve(
        self,
        approved: bool,
        token: Optional[str] = None,
        user_id: Optional[str] = None,
        telegram_chat_id: Optional[str] = None,
    ) -> ApprovalResolution:
        """
        Resolve a pending approval.

        Args:
            approved: The user's decision
            token: Approval token; if None, the user's latest pending approval
            user_id: Authenticated caller; must own the approval
            telegram_chat_id: Chat the reply came from, when resolved via Telegram

        Returns:
            ApprovalResolution

        Raises:
            ApprovalNotFound: No pending approval matches
            Forbidden: Approval belongs to someone else or the chat is not linked
            Expired: The approval timed out; it is now marked expired
            InsufficientFunds, FundingConflict, PersistenceFailure: Funding
                failed; the approval stays pending
        """
        approval = self._find_pending(token, user_id)

        if user_id is not None and approval.user_id != user_id:
            logger.warning(f"Approval {approval.approval_id} resolve attempted by {user_id}")
            raise Forbidden("Approval does not belong to this user")

        if telegram_chat_id is not None:
            policy = self.context.get_policy(approval.user_id)
            expected = (policy.telegram_chat_id or "").strip()
            if not expected or expected != str(telegram_chat_id).strip():
                raise Forbidden("Telegram chat is not authorized for this approval")

        with self.sessions.user_lock(approval.user_id):
            # Re-read under the lock; a concurrent resolution may have won
            current = self.store.get_approval(approval.approval_id)
            if current is None or not current.is_pending:
                raise ApprovalNotFound("Approval not found or already resolved")

            now = self.clock()
            if current.is_expired_at(now):
                self._expire(current)
                raise Expired("Approval has expired")

            if not approved:
                return self._reject(current)
            return self._approve(current)

    def _find_pending(self, token: Optional[str], user_id: Optional[str]) -> Approval:
        if token:
            approval = self.store.get_approval_by_token(token)
        elif user_id:
            pending = self.get_pending(user_id)
            approval = pending[-1] if pending else None
        else:
            approval = None

        if approval is None or not approval.is_pending:
            raise ApprovalNotFound("Approval not found or already resolved")
        return approval

    def _expire(self, approval: Approval) -> None:
        updated = approval.model_copy(
            update={"status": ApprovalStatus.EXPIRED, "resolved_at": self.clock()}
        )
        if self.store.compare_and_set_approval(
            approval.approval_id, ApprovalStatus.PENDING, updated
        ):
            logger.warning(f"Approval {approval.approval_id} expired before resolution")
            self._audit(EventType.APPROVAL_EXPIRED, updated, {"expires_at": approval.expires_at})

    def _reject(self, approval: Approval) -> ApprovalResolution:
        updated = approval.model_copy(
            update={"status": ApprovalStatus.REJECTED, "resolved_at": self.clock()}
        )
        if not self.store.compare_and_set_approval(
            approval.approval_id, ApprovalStatus.PENDING, updated
        ):
            raise ApprovalNotFound("Approval not found or already resolved")

        txn = self.recorder.record_rejection(
            approval.user_id, _purchase_from(approval), "Rejected by user"
        )
        logger.info(f"Approval {approval.approval_id} rejected by user")
        self._audit(
            EventType.APPROVAL_RESOLVED,
            updated,
            {"status": updated.status.value},
            transaction_id=txn.transaction_id,
        )
        return ApprovalResolution(
            status="rejected",
            approval=updated,
            transaction_id=txn.transaction_id,
        )

    def _approve(self, approval: Approval) -> ApprovalResolution:
        # Funding first: a failed top-up leaves the approval pending
        topup = self.sessions.top_up(approval.user_id, _purchase_from(approval))

        updated = approval.model_copy(
            update={"status": ApprovalStatus.APPROVED, "resolved_at": self.clock()}
        )
        if not self.store.compare_and_set_approval(
            approval.approval_id, ApprovalStatus.PENDING, updated
        ):
            self.sessions.rollback(approval.user_id, topup.session_id)
            raise ApprovalNotFound("Approval not found or already resolved")

        self.store.add_known_merchant(approval.user_id, approval.merchant)
        logger.info(
            f"Approval {approval.approval_id} approved, funded session {topup.session_id}"
        )
        self._audit(
            EventType.APPROVAL_RESOLVED,
            updated,
            {"status": updated.status.value, "topup_id": topup.session_id},
            transaction_id=topup.transaction_id,
        )
        return ApprovalResolution(
            status="approved",
            approval=updated,
            transaction_id=topup.transaction_id,
            topup=topup,
        )

    def _audit(
        self,
        event_type: EventType,
        approval: Approval,
        payload: dict,
        transaction_id: Optional[str] = None,
    ) -> None:
        if self.audit is None:
            return
        self.audit.log_event(
            event_type,
            {"approval_id": approval.approval_id, **payload},
            user_id=approval.user_id,
            transaction_id=transaction_id,
        )


def _purchase_from(approval: Approval) -> PurchaseRequest:
    return PurchaseRequest(
        item=approval.item,
        amount=approval.amount,
        currency=approval.currency,
        merchant=approval.merchant,
        merchant_url=approval.merchant_url,
        category=approval.category,
    )
