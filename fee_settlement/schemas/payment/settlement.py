"""
Settlement schemas.

Gateway-neutral shapes exchanged between adapters, the notification
dispatcher and the fee reconciliation allocator.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator

from fee_settlement.schemas.common.base import BaseSchema, quantize_amount
from fee_settlement.schemas.common.enums import (
    CorrelationKind,
    GatewayKind,
    SettlementOutcome,
)

__all__ = [
    "SettlementEvent",
    "AllocationLine",
    "ReconciliationResult",
    "CreditApplicationResult",
]


class SettlementEvent(BaseSchema):
    """
    Normalized gateway notification.

    ``correlation_keys`` carries every identifier the adapter could
    extract so the dispatcher can match on any of them.
    """

    gateway_kind: GatewayKind
    outcome: SettlementOutcome
    correlation_keys: Dict[CorrelationKind, str] = Field(default_factory=dict)
    intent_hint: Optional[str] = Field(
        None,
        description="Payment intent id carried by the callback URL or payload",
    )
    confirmed_amount: Optional[Decimal] = Field(None, ge=0)
    external_timestamp: Optional[datetime] = None
    failure_reason: Optional[str] = None
    provider_receipt: Optional[str] = Field(
        None,
        description="Receipt or transaction id issued by the gateway",
    )
    payer_contact: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("confirmed_amount")
    @classmethod
    def round_confirmed(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return quantize_amount(v) if v is not None else None

    @property
    def is_success(self) -> bool:
        return self.outcome == SettlementOutcome.SUCCESS

    @property
    def is_final(self) -> bool:
        """False for in-flight statuses, which are recorded without a transition."""
        return self.outcome != SettlementOutcome.IN_PROGRESS

    def keys_for_log(self) -> Dict[str, str]:
        return {kind.value: value for kind, value in self.correlation_keys.items()}


class AllocationLine(BaseSchema):
    """One allocation produced by a reconciliation run."""

    fee_obligation_id: Optional[str] = None
    credit_balance_id: Optional[str] = None
    amount_allocated: Decimal
    balance_after: Optional[Decimal] = None


class ReconciliationResult(BaseSchema):
    """Outcome of allocating one payment."""

    payment_id: str
    fees_updated: int = 0
    total_allocated: Decimal = Decimal("0.00")
    remaining_amount: Decimal = Decimal("0.00")
    credit_created: Optional[Decimal] = None
    allocations: List[AllocationLine] = Field(default_factory=list)
    already_reconciled: bool = False


class CreditApplicationResult(BaseSchema):
    """Available credit drawn into one obligation."""

    fee_obligation_id: str
    amount_applied: Decimal = Decimal("0.00")
    balance_after: Decimal = Decimal("0.00")
    allocations: List[AllocationLine] = Field(default_factory=list)
