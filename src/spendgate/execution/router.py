"""Purchase Router - Routes policy decisions to the matching handler."""

import logging
from typing import Any, Callable, Dict, Optional, Union

from spendgate.approvals.service import ApprovalService
from spendgate.clock import Clock, utc_now
from spendgate.context.context_service import ContextService
from spendgate.errors import InsufficientFunds
from spendgate.execution.models import PurchaseOutcome
from spendgate.execution.sessions import InstrumentSessionManager
from spendgate.ledger.audit import AuditLedger
from spendgate.ledger.models import EventType
from spendgate.ledger.recorder import TransactionRecorder
from spendgate.policy import Decision, DecisionAction, PolicyConfig, PolicyEngine
from spendgate.schema import PurchaseRequest, SchemaValidator
from spendgate.storage.base import Store


logger = logging.getLogger(__name__)


class PurchaseRouter:
    """
    Runs a purchase through validation, policy and the decided path.

    Flow:

    request -> [Schema] -> [Policy] -> REJECT          -> rejected transaction
                                    -> NEEDS_APPROVAL  -> pending approval
                                    -> AUTO_APPROVE    -> funded card
    """

    def __init__(
        self,
        store: Store,
        context: ContextService,
        recorder: TransactionRecorder,
        approvals: ApprovalService,
        sessions: InstrumentSessionManager,
        engine: Optional[PolicyEngine] = None,
        validator: Optional[SchemaValidator] = None,
        audit: Optional[AuditLedger] = None,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.context = context
        self.recorder = recorder
        self.approvals = approvals
        self.sessions = sessions
        self.engine = engine or PolicyEngine()
        self.validator = validator or SchemaValidator()
        self.audit = audit
        self.clock = clock or utc_now

        self.handlers: Dict[DecisionAction, Callable[..., PurchaseOutcome]] = {
            DecisionAction.REJECT: self._handle_reject,
            DecisionAction.NEEDS_APPROVAL: self._handle_needs_approval,
            DecisionAction.AUTO_APPROVE: self._handle_auto_approve,
        }
        logger.info("Purchase Router initialized")

    def purchase(
        self,
        user_id: str,
        data: Union[PurchaseRequest, str, bytes, Dict[str, Any]],
    ) -> PurchaseOutcome:
        """
        Evaluate a purchase and act on the decision.

        Args:
            user_id: Authenticated user
            data: Purchase request, raw or already validated

        Returns:
            PurchaseOutcome

        Raises:
            ValidationError: Malformed request; nothing is recorded
        """
        if isinstance(data, PurchaseRequest):
            request = data
        else:
            request = self.validator.validate(data)

        # Aggregates, decision and funding must see the same history
        with self.sessions.user_lock(user_id):
            self.sessions.stale_cleanup(user_id)

            policy = self.context.get_policy(user_id)
            now = self.clock()
            aggregates = self.context.get_aggregates(user_id, request.merchant, policy, now)
            decision = self.engine.evaluate(request, policy, aggregates, now)

            if self.audit is not None:
                self.audit.log_event(
                    EventType.PURCHASE_EVALUATED,
                    {
                        "action": decision.action.value,
                        "reason": decision.reason,
                        "risk_flags": decision.risk_flags,
                        "amount": request.amount,
                        "merchant": request.merchant,
                        "today_spent": aggregates.today_spent,
                        "purchase_count": aggregates.purchase_count,
                    },
                    user_id=user_id,
                )

            outcome = self.handlers[decision.action](user_id, request, decision, policy)

        logger.info(
            f"Routed purchase for {user_id}: {decision.action.value} -> {outcome.status}"
        )
        return outcome

    def _handle_reject(
        self,
        user_id: str,
        request: PurchaseRequest,
        decision: Decision,
        policy: PolicyConfig,
    ) -> PurchaseOutcome:
        """Handle REJECT - record and stop."""
        txn = self.recorder.record_rejection(user_id, request, decision.reason)
        logger.warning(f"Purchase rejected for {user_id}: {decision.reason}")
        return PurchaseOutcome(
            status="rejected",
            transaction_id=txn.transaction_id,
            reason=decision.reason,
            risk_flags=decision.risk_flags,
        )

    def _handle_needs_approval(
        self,
        user_id: str,
        request: PurchaseRequest,
        decision: Decision,
        policy: PolicyConfig,
    ) -> PurchaseOutcome:
        """Handle NEEDS_APPROVAL - defer to the user."""
        approval = self.approvals.create(user_id, request, decision, policy)
        return PurchaseOutcome(
            status="pending_approval",
            approval_id=approval.approval_id,
            expires_at=approval.expires_at,
            reason=decision.reason,
            risk_flags=decision.risk_flags,
        )

    def _handle_auto_approve(
        self,
        user_id: str,
        request: PurchaseRequest,
        decision: Decision,
        policy: PolicyConfig,
    ) -> PurchaseOutcome:
        """Handle AUTO_APPROVE - fund the card now."""
        try:
            topup = self.sessions.top_up(user_id, request)
        except InsufficientFunds:
            reason = "Insufficient wallet balance"
            txn = self.recorder.record_rejection(user_id, request, reason)
            logger.warning(f"Purchase rejected for {user_id}: {reason}")
            return PurchaseOutcome(
                status="rejected",
                transaction_id=txn.transaction_id,
                reason=reason,
                risk_flags=["insufficient_funds"],
            )

        self.store.add_known_merchant(user_id, request.merchant)
        return PurchaseOutcome(
            status="approved",
            transaction_id=topup.transaction_id,
            topup_id=topup.session_id,
            card=topup.card,
            expires_at=topup.expires_at,
        )
