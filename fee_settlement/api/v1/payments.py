"""
Payment endpoints.

Initiation, manual deposits, queries and the gateway notification
receivers. Notification receivers always answer in the gateway's own
acknowledgement shape.
"""

from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from fee_settlement.api.deps import get_orchestrator
from fee_settlement.core.logging import get_logger
from fee_settlement.schemas.common.enums import GatewayKind, NotificationChannel
from fee_settlement.schemas.payment import (
    ApplyCreditRequest,
    CreditApplicationResult,
    FeeObligationResponse,
    InitiatePaymentResponse,
    ManualPaymentRequest,
    PaymentInitiateRequest,
    PaymentIntentResponse,
    PaymentStatusResponse,
    StudentPaymentSummary,
    VerifyPaymentRequest,
)
from fee_settlement.services.payment.settlement_orchestrator import SettlementOrchestrator

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/initiate", response_model=InitiatePaymentResponse, status_code=status.HTTP_201_CREATED)
def initiate_payment(
    request: PaymentInitiateRequest,
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
):
    """
    Start a payment on one of the gateway rails.

    Checkout payments return the signed form to post to the hosted page;
    push payments return the message shown while the payer confirms on
    their phone.
    """
    outcome = orchestrator.initiate_payment(request)
    return InitiatePaymentResponse(
        payment=PaymentIntentResponse.model_validate(outcome.intent),
        redirect_url=outcome.redirect_url,
        checkout_payload=outcome.checkout_payload,
        customer_message=outcome.customer_message,
    )


@router.post("/manual", response_model=PaymentIntentResponse, status_code=status.HTTP_201_CREATED)
def record_manual_payment(
    request: ManualPaymentRequest,
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
):
    """Record a bank deposit, cheque or cash payment against a fee."""
    return orchestrator.record_manual_payment(request)


@router.put("/{payment_id}/verify", response_model=PaymentIntentResponse)
def verify_payment(
    payment_id: str,
    request: VerifyPaymentRequest,
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.verify_payment(payment_id, verified_by=request.verified_by, notes=request.notes)


@router.get("/fee/{fee_id}", response_model=List[PaymentIntentResponse])
def list_fee_payments(fee_id: str, orchestrator: SettlementOrchestrator = Depends(get_orchestrator)):
    return orchestrator.list_fee_payments(fee_id)


@router.get("/students/{student_id}/summary", response_model=StudentPaymentSummary)
def student_summary(student_id: str, orchestrator: SettlementOrchestrator = Depends(get_orchestrator)):
    return orchestrator.student_summary(student_id)


@router.get("/students/{student_id}/obligations", response_model=List[FeeObligationResponse])
def list_student_obligations(student_id: str, orchestrator: SettlementOrchestrator = Depends(get_orchestrator)):
    return orchestrator.list_student_obligations(student_id)


@router.post("/fees/{fee_id}/apply-credit", response_model=CreditApplicationResult)
def apply_credit(
    fee_id: str,
    request: ApplyCreditRequest,
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
):
    """Draw the student's available credit into a fee obligation."""
    return orchestrator.apply_credit(fee_id, request.max_amount)


@router.get("/{payment_id}", response_model=PaymentIntentResponse)
def get_payment(payment_id: str, orchestrator: SettlementOrchestrator = Depends(get_orchestrator)):
    return orchestrator.get_payment(payment_id)


@router.get("/{payment_id}/status", response_model=PaymentStatusResponse)
def get_payment_status(payment_id: str, orchestrator: SettlementOrchestrator = Depends(get_orchestrator)):
    """Lightweight status poll used by the frontend while a push payment is open."""
    return orchestrator.get_payment_status(payment_id)


# ==================== Gateway Notifications ====================


async def _read_payload(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        # Unparseable bodies are stored and rejected by the adapter
        body = await request.body()
        return body.decode("utf-8", errors="replace") or None


async def _receive(
    request: Request,
    orchestrator: SettlementOrchestrator,
    gateway_kind: GatewayKind,
    channel: NotificationChannel = NotificationChannel.CALLBACK,
    intent_id: Optional[str] = None,
) -> JSONResponse:
    payload = await _read_payload(request)
    logger.info(
        "Gateway notification received",
        extra={"gateway": gateway_kind.value, "channel": channel.value, "url_hint": intent_id},
    )
    ack = await run_in_threadpool(
        orchestrator.handle_notification, gateway_kind, payload, channel, intent_id
    )
    return JSONResponse(ack.body, status_code=ack.http_status)


@router.post("/mpesa/callback")
@router.post("/mpesa/callback/{intent_id}", include_in_schema=False)
async def mpesa_callback(
    request: Request,
    intent_id: Optional[str] = None,
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
):
    """STK push result callback from Daraja."""
    return await _receive(request, orchestrator, GatewayKind.PUSH_MOBILE_MONEY, intent_id=intent_id)


@router.post("/jenga/callback")
@router.post("/jenga/callback/{intent_id}", include_in_schema=False)
async def jenga_checkout_callback(
    request: Request,
    intent_id: Optional[str] = None,
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
):
    """Hosted checkout callback."""
    return await _receive(request, orchestrator, GatewayKind.BANK_CHECKOUT, intent_id=intent_id)


@router.post("/jenga/ipn")
async def jenga_ipn(
    request: Request,
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
):
    """Instant payment notification for checkout payments."""
    return await _receive(request, orchestrator, GatewayKind.BANK_CHECKOUT, channel=NotificationChannel.IPN)


@router.post("/jenga-push/callback")
@router.post("/jenga-push/callback/{intent_id}", include_in_schema=False)
async def jenga_push_callback(
    request: Request,
    intent_id: Optional[str] = None,
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
):
    """STK/USSD push callback from the bank rail."""
    return await _receive(request, orchestrator, GatewayKind.BANK_PUSH_USSD, intent_id=intent_id)
