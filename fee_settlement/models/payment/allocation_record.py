"""
Allocation record model.

Immutable proof of how a settled amount was distributed across fee
obligations and credit.
"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fee_settlement.models.base.base_model import BaseModel, enum_column, utcnow
from fee_settlement.schemas.common.enums import AllocationSource

if TYPE_CHECKING:
    from fee_settlement.models.fee.fee_obligation import FeeObligation
    from fee_settlement.models.payment.credit_balance import CreditBalance
    from fee_settlement.models.payment.payment_intent import PaymentIntent


class AllocationRecord(BaseModel):
    """
    One slice of a payment.

    Records sourced from a payment sum to the intent's confirmed amount.
    Records sourced from credit re-apply an earlier overpayment and point
    at the credit they drew from.
    """

    __tablename__ = "allocation_records"

    payment_intent_id: Mapped[str] = mapped_column(
        ForeignKey("payment_intents.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    fee_obligation_id: Mapped[str | None] = mapped_column(
        ForeignKey("fee_obligations.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
        comment="Empty when the amount went to credit",
    )
    credit_balance_id: Mapped[str | None] = mapped_column(
        ForeignKey("credit_balances.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    source: Mapped[AllocationSource] = mapped_column(
        enum_column(AllocationSource, "allocation_source_enum"),
        nullable=False,
        default=AllocationSource.PAYMENT,
    )
    amount_allocated: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    payment_intent: Mapped["PaymentIntent"] = relationship(
        "PaymentIntent",
        back_populates="allocations",
    )
    fee_obligation: Mapped["FeeObligation"] = relationship(
        "FeeObligation",
        back_populates="allocations",
    )
    credit_balance: Mapped["CreditBalance"] = relationship("CreditBalance")

    __table_args__ = (
        CheckConstraint("amount_allocated > 0", name="ck_allocation_amount_positive"),
        Index("idx_allocation_intent_source", "payment_intent_id", "source"),
    )
