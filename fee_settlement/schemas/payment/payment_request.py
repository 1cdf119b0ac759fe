"""
Payment request schemas.

Inbound payloads for initiating, recording and verifying payments.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import Field, field_validator, model_validator

from fee_settlement.schemas.common.base import AmountMixin, BaseSchema
from fee_settlement.schemas.common.enums import GatewayKind

__all__ = [
    "PaymentInitiateRequest",
    "ManualPaymentEvidence",
    "ManualPaymentRequest",
    "VerifyPaymentRequest",
    "ApplyCreditRequest",
    "ResolveAlertRequest",
]

MANUAL_METHODS = ("bank_deposit", "cheque", "cash", "bank_transfer")


class PaymentInitiateRequest(AmountMixin, BaseSchema):
    """Request to start a gateway payment for a student."""

    student_id: str = Field(..., min_length=1, max_length=36)
    student_code: Optional[str] = Field(
        None,
        max_length=30,
        description="Human readable student number embedded in the order reference",
    )
    fee_id: Optional[str] = Field(
        None,
        description="Obligation to pay; omit for a wallet payment against the total balance",
    )
    gateway_kind: GatewayKind
    payer_phone: Optional[str] = Field(None, max_length=20)
    payer_email: Optional[str] = Field(None, max_length=100)
    payer_first_name: Optional[str] = Field(None, max_length=60)
    payer_last_name: Optional[str] = Field(None, max_length=60)
    branch_id: Optional[str] = None
    course_id: Optional[str] = None
    description: Optional[str] = Field(None, max_length=255)

    @model_validator(mode="after")
    def check_rail(self) -> "PaymentInitiateRequest":
        if self.gateway_kind == GatewayKind.MANUAL:
            raise ValueError("manual payments are recorded, not initiated")
        if self.gateway_kind in (GatewayKind.PUSH_MOBILE_MONEY, GatewayKind.BANK_PUSH_USSD) and not self.payer_phone:
            raise ValueError("payer_phone is required for push payments")
        return self


class ManualPaymentEvidence(BaseSchema):
    """Deposit evidence captured by the cashier."""

    payment_method: str = Field("bank_deposit", description="bank_deposit, cheque, cash or bank_transfer")
    reference_number: Optional[str] = Field(None, max_length=100)
    bank_name: Optional[str] = Field(None, max_length=100)
    cheque_number: Optional[str] = Field(None, max_length=50)
    depositor_name: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=500)
    recorded_by: Optional[str] = Field(None, max_length=36)

    @field_validator("payment_method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        method = v.lower()
        if method not in MANUAL_METHODS:
            raise ValueError(f"payment_method must be one of {', '.join(MANUAL_METHODS)}")
        return method

    @model_validator(mode="after")
    def require_cheque_number(self) -> "ManualPaymentEvidence":
        if self.payment_method == "cheque" and not self.cheque_number:
            raise ValueError("cheque_number is required for cheque payments")
        return self


class ManualPaymentRequest(AmountMixin, BaseSchema):
    """Manually recorded deposit against a fee obligation."""

    fee_id: str = Field(..., min_length=1)
    evidence: ManualPaymentEvidence = Field(default_factory=ManualPaymentEvidence)


class VerifyPaymentRequest(BaseSchema):
    verified_by: Optional[str] = Field(None, max_length=36)
    notes: Optional[str] = Field(None, max_length=500)


class ApplyCreditRequest(BaseSchema):
    """Apply available student credit to an obligation."""

    max_amount: Optional[Decimal] = Field(None, gt=0)


class ResolveAlertRequest(BaseSchema):
    resolved_by: Optional[str] = Field(None, max_length=36)
    notes: Optional[str] = Field(None, max_length=500)
