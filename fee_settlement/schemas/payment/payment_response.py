"""
Payment response schemas.

Outbound representations of payment intents, summaries and operator alerts.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import Field

from fee_settlement.schemas.common.base import BaseResponseSchema, BaseSchema
from fee_settlement.schemas.common.enums import (
    AlertKind,
    AlertStatus,
    DispatchStatus,
    GatewayKind,
    NotificationChannel,
    ObligationStatus,
    PaymentStatus,
    ReconciliationStatus,
    SettlementOutcome,
    VerificationStatus,
)

__all__ = [
    "PaymentIntentResponse",
    "InitiatePaymentResponse",
    "PaymentStatusResponse",
    "FeeObligationResponse",
    "PaymentNotificationResponse",
    "StudentPaymentSummary",
    "OperatorAlertResponse",
    "SweepResult",
]


class PaymentIntentResponse(BaseResponseSchema):
    """Payment intent as exposed over the API."""

    gateway_kind: GatewayKind
    order_reference: str
    student_id: str
    branch_id: Optional[str] = None
    fee_id: Optional[str] = None
    course_id: Optional[str] = None
    payer_contact: Optional[str] = None
    amount: Decimal
    confirmed_amount: Optional[Decimal] = None
    currency: str
    status: PaymentStatus
    verification_status: VerificationStatus
    reconciliation_status: ReconciliationStatus
    failure_reason: Optional[str] = None
    receipt_number: Optional[str] = None
    gateway_correlation: Dict[str, Any] = Field(default_factory=dict)
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None


class InitiatePaymentResponse(BaseSchema):
    """Result of starting a gateway payment."""

    payment: PaymentIntentResponse
    redirect_url: Optional[str] = None
    checkout_payload: Optional[Dict[str, Any]] = None
    customer_message: Optional[str] = None


class PaymentStatusResponse(BaseSchema):
    """Status lookup used by payers polling for completion."""

    payment_id: str
    status: PaymentStatus
    verification_status: VerificationStatus
    reconciliation_status: ReconciliationStatus
    amount: Decimal
    confirmed_amount: Optional[Decimal] = None
    receipt_number: Optional[str] = None
    failure_reason: Optional[str] = None
    message: str


class FeeObligationResponse(BaseResponseSchema):
    student_id: str
    description: Optional[str] = None
    total_owed: Decimal
    amount_paid: Decimal
    balance: Decimal
    status: ObligationStatus
    due_date: date


class StudentPaymentSummary(BaseSchema):
    """Fee position of one student."""

    student_id: str
    total_owed: Decimal
    total_paid: Decimal
    outstanding: Decimal
    available_credit: Decimal
    obligations: int
    completed_payments: int
    pending_payments: int
    unreconciled_payments: int


class OperatorAlertResponse(BaseResponseSchema):
    kind: AlertKind
    status: AlertStatus
    gateway_kind: Optional[GatewayKind] = None
    payment_intent_id: Optional[str] = None
    notification_id: Optional[str] = None
    message: str
    details: Optional[Dict[str, Any]] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None


class SweepResult(BaseSchema):
    swept: int
    payment_ids: List[str] = Field(default_factory=list)


class PaymentNotificationResponse(BaseSchema):
    """One stored gateway delivery, as kept in the audit trail."""

    id: str
    payment_intent_id: Optional[str] = None
    gateway_kind: GatewayKind
    channel: NotificationChannel
    dispatch_status: DispatchStatus
    outcome: Optional[SettlementOutcome] = None
    correlation_keys: Optional[Dict[str, Any]] = None
    payload: Dict[str, Any]
    note: Optional[str] = None
    received_at: datetime
