"""
Credit balance model.

Unearmarked funds left over after a payment cleared every allocable
obligation, available for future obligations.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from fee_settlement.models.base.base_model import TimestampModel, enum_column
from fee_settlement.schemas.common.enums import CreditSource, CreditStatus


class CreditBalance(TimestampModel):
    """One credit increment for a student."""

    __tablename__ = "credit_balances"

    student_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True,
    )
    branch_id: Mapped[str | None] = mapped_column(
        String(36),
        nullable=True,
    )
    payment_intent_id: Mapped[str] = mapped_column(
        ForeignKey("payment_intents.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        comment="Original credit amount",
    )
    remaining_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        comment="Amount not yet applied to an obligation",
    )
    source: Mapped[CreditSource] = mapped_column(
        enum_column(CreditSource, "credit_source_enum"),
        nullable=False,
        default=CreditSource.OVERPAYMENT,
    )
    status: Mapped[CreditStatus] = mapped_column(
        enum_column(CreditStatus, "credit_status_enum"),
        nullable=False,
        default=CreditStatus.AVAILABLE,
        index=True,
    )
    used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint("remaining_amount >= 0", name="ck_credit_remaining_non_negative"),
        CheckConstraint("remaining_amount <= amount", name="ck_credit_remaining_bounded"),
        Index("idx_credit_student_status", "student_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<CreditBalance(id={self.id}, student_id={self.student_id}, "
            f"remaining={self.remaining_amount}, status={self.status})>"
        )
