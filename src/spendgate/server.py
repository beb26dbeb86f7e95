"""
SpendGate API Server

Exposes purchase authorization, approval and card funding over REST for
agents. Every route except /health and /pair needs a bearer token.
"""

import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import Body, Depends, FastAPI, HTTPException, Query
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

# Load environment variables before settings are read
load_dotenv()

from spendgate.approvals.notifier import Notifier, build_notifier
from spendgate.approvals.replies import parse_approval_reply
from spendgate.approvals.service import ApprovalService
from spendgate.auth import TokenRegistry
from spendgate.cards import CardBackend, CardDetails, build_card_backend
from spendgate.clock import Clock, utc_now
from spendgate.config import Settings, settings as default_settings
from spendgate.context.context_service import ContextService
from spendgate.errors import SpendGateError
from spendgate.execution.models import PurchaseOutcome
from spendgate.execution.router import PurchaseRouter
from spendgate.execution.scheduler import DrainScheduler
from spendgate.execution.sessions import InstrumentSessionManager
from spendgate.ledger import AuditLedger
from spendgate.ledger.recorder import TransactionRecorder
from spendgate.policy import PolicyConfig
from spendgate.storage import MemoryStore, Store


logger = logging.getLogger(__name__)


# Data Models
class ApproveRequest(BaseModel):
    approval_token: Optional[str] = Field(
        default=None,
        description="Token from the approval prompt; omit to resolve the latest pending approval",
    )
    approved: Optional[bool] = None
    reply: Optional[str] = Field(default=None, description="Free-text reply, e.g. 'yes'")
    telegram_chat_id: Optional[str] = Field(default=None, description="Chat the reply came from")


class CompleteRequest(BaseModel):
    topup_id: str
    success: bool


class DepositRequest(BaseModel):
    amount: Decimal


class PairRequest(BaseModel):
    code: str = Field(min_length=1)


# Initialize SpendGate Components (Singletons)
class SpendGateContainer:
    """Wires the core components around one store."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[Store] = None,
        cards: Optional[CardBackend] = None,
        notifier: Optional[Notifier] = None,
        clock: Optional[Clock] = None,
    ):
        self.settings = settings or default_settings
        self.clock = clock or utc_now
        self.store = store or MemoryStore()
        self.audit = AuditLedger(self.settings.audit_db_path)
        self.cards = cards or build_card_backend(self.settings)

        self.context = ContextService(self.store, clock=self.clock)
        self.recorder = TransactionRecorder(self.store, clock=self.clock)
        self.sessions = InstrumentSessionManager(
            self.store,
            self.cards,
            self.recorder,
            scheduler=DrainScheduler(self.store, clock=self.clock),
            audit=self.audit,
            clock=self.clock,
            funding_timeout_seconds=self.settings.funding_timeout_seconds,
            max_deposit_amount=self.settings.max_deposit_amount,
            currency=self.settings.card_currency,
        )
        self.approvals = ApprovalService(
            self.store,
            self.context,
            self.recorder,
            self.sessions,
            notifier=notifier or build_notifier(self.settings),
            audit=self.audit,
            clock=self.clock,
        )
        self.router = PurchaseRouter(
            self.store,
            self.context,
            self.recorder,
            self.approvals,
            self.sessions,
            audit=self.audit,
            clock=self.clock,
        )
        self.tokens = TokenRegistry(self.store, clock=self.clock)

        logger.info(f"SpendGate components initialized (cards={self.cards.name})")

    def shutdown(self) -> None:
        self.sessions.shutdown()
        self.audit.close()


def card_payload(card: CardDetails) -> Dict[str, Any]:
    """Full card details for an agent holding a funded card."""
    return {
        "number": card.number,
        "exp_month": f"{card.exp_month:02d}",
        "exp_year": str(card.exp_year),
        "cvc": card.cvc,
        "last4": card.last4,
        "brand": card.brand,
        "spending_limit": str(card.spending_limit),
        "currency": card.currency,
    }


def outcome_payload(outcome: PurchaseOutcome) -> Dict[str, Any]:
    body: Dict[str, Any] = {"status": outcome.status}
    if outcome.status == "approved":
        body.update({
            "transaction_id": outcome.transaction_id,
            "topup_id": outcome.topup_id,
            "card": card_payload(outcome.card),
            "card_last4": outcome.card.last4,
            "expires_at": outcome.expires_at.isoformat(),
        })
    elif outcome.status == "pending_approval":
        body.update({
            "approval_id": outcome.approval_id,
            "expires_at": outcome.expires_at.isoformat(),
            "risk_flags": outcome.risk_flags,
            "reason": outcome.reason,
        })
    else:
        body.update({
            "reason": outcome.reason,
            "transaction_id": outcome.transaction_id,
            "risk_flags": outcome.risk_flags,
        })
    return body


def create_app(container: Optional[SpendGateContainer] = None) -> FastAPI:
    """Build the FastAPI app around a container."""
    spendgate = container or SpendGateContainer()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Deadlines left behind by a previous process
        spendgate.sessions.sweep_due_deadlines()
        yield
        spendgate.shutdown()

    app = FastAPI(title="SpendGate API", version="0.1.0", lifespan=lifespan)
    app.state.container = spendgate

    bearer = HTTPBearer(auto_error=False)

    def current_user(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    ) -> str:
        user_id = spendgate.tokens.authenticate(credentials.credentials if credentials else None)
        if user_id is None:
            raise HTTPException(status_code=401, detail="Missing or invalid authentication")
        return user_id

    @app.exception_handler(SpendGateError)
    async def handle_spendgate_error(request, exc: SpendGateError):
        content: Dict[str, Any] = {"error": exc.message}
        if exc.details:
            content["details"] = exc.details
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(loc) for loc in error["loc"] if loc != "body"),
                "type": error["type"],
                "msg": error["msg"],
            }
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"error": "VALIDATION_ERROR: Request validation failed", "details": {"errors": errors}},
        )

    # Routes
    @app.get("/health")
    def health():
        return {"status": "healthy"}

    @app.post("/purchase")
    def purchase(
        body: Dict[str, Any] = Body(...),
        user_id: str = Depends(current_user),
    ):
        """Evaluate a purchase; fund the card, ask the user, or reject."""
        logger.info(f"Purchase request from {user_id}: {body.get('item')} @ {body.get('merchant')}")
        outcome = spendgate.router.purchase(user_id, body)
        return outcome_payload(outcome)

    @app.post("/approve")
    def approve(req: ApproveRequest, user_id: str = Depends(current_user)):
        """Resolve a pending approval."""
        approved = req.approved
        if approved is None and req.reply is not None:
            approved = parse_approval_reply(req.reply)
        if approved is None:
            return JSONResponse(
                status_code=400,
                content={"error": "Provide 'approved' or a reply of yes/no"},
            )

        resolution = spendgate.approvals.resolve(
            approved,
            token=req.approval_token,
            user_id=user_id,
            telegram_chat_id=req.telegram_chat_id,
        )
        if resolution.status == "rejected":
            return {"status": "rejected", "approval_id": resolution.approval.approval_id}

        topup = resolution.topup
        return {
            "status": "approved",
            "approval_id": resolution.approval.approval_id,
            "transaction_id": resolution.transaction_id,
            "topup_id": topup.session_id,
            "card": card_payload(topup.card),
            "card_last4": topup.card.last4,
            "expires_at": topup.expires_at.isoformat(),
        }

    @app.post("/complete")
    def complete(req: CompleteRequest, user_id: str = Depends(current_user)):
        """Drain the card after checkout. Safe to repeat."""
        result = spendgate.sessions.complete(user_id, req.topup_id, req.success)
        body: Dict[str, Any] = {"status": result.status, "topup_id": result.session_id}
        if result.drained_amount is not None:
            body["drained_amount"] = str(result.drained_amount)
        if result.refunded_amount is not None:
            body["refunded_amount"] = str(result.refunded_amount)
        if result.reason is not None:
            body["reason"] = result.reason.value
        return body

    @app.post("/provision")
    def provision(user_id: str = Depends(current_user)):
        instrument, created = spendgate.sessions.provision(user_id)
        return {
            "instrument_id": instrument.instrument_id,
            "card_id": instrument.card_id,
            "card_last4": instrument.last4,
            "card_brand": instrument.brand,
            "already_existed": not created,
        }

    @app.post("/deposit")
    def deposit(req: DepositRequest, user_id: str = Depends(current_user)):
        entry = spendgate.sessions.deposit(user_id, req.amount)
        return {
            "status": "deposited",
            "amount": str(entry.amount),
            "balance": str(entry.balance_after),
            "reference_id": entry.reference_id,
        }

    @app.get("/card-details")
    def card_details(user_id: str = Depends(current_user)):
        card = spendgate.sessions.get_card_details(user_id)
        return card_payload(card)

    @app.get("/config")
    def get_config(user_id: str = Depends(current_user)):
        return spendgate.context.get_policy(user_id).model_dump(mode="json")

    @app.put("/config")
    def put_config(policy: PolicyConfig, user_id: str = Depends(current_user)):
        stored = spendgate.context.set_policy(user_id, policy)
        return stored.model_dump(mode="json")

    @app.get("/transactions")
    def transactions(
        limit: Optional[int] = Query(default=None, ge=1),
        user_id: str = Depends(current_user),
    ):
        history = spendgate.recorder.list_transactions(user_id, limit=limit)
        return {"transactions": [txn.model_dump(mode="json") for txn in history]}

    @app.get("/ledger")
    def ledger(user_id: str = Depends(current_user)):
        entries = spendgate.recorder.list_entries(user_id)
        return {
            "balance": str(spendgate.recorder.wallet_balance(user_id)),
            "entries": [entry.model_dump(mode="json") for entry in entries],
        }

    @app.post("/pair")
    def pair(req: PairRequest):
        token, user_id = spendgate.tokens.redeem(req.code)
        return {"api_token": token, "user_id": user_id}

    return app
