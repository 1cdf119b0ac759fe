"""
Fee obligation model.

An amount a student owes. ``amount_paid`` only ever grows, through the
fee reconciliation allocator.
"""

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, List

from sqlalchemy import CheckConstraint, Date, Index, Numeric, String, Text
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fee_settlement.models.base.base_model import TimestampModel
from fee_settlement.schemas.common.enums import ObligationStatus

if TYPE_CHECKING:
    from fee_settlement.models.payment.allocation_record import AllocationRecord


class FeeObligation(TimestampModel):
    """Outstanding or settled fee owed by a student."""

    __tablename__ = "fee_obligations"

    # ==================== Ownership ====================
    student_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True,
        comment="Student owning the obligation",
    )
    branch_id: Mapped[str | None] = mapped_column(
        String(36),
        nullable=True,
        index=True,
    )
    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # ==================== Amounts ====================
    total_owed: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        comment="Total amount charged",
    )
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Amount settled so far (monotonically non-decreasing)",
    )
    due_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        index=True,
    )

    # ==================== Relationships ====================
    allocations: Mapped[List["AllocationRecord"]] = relationship(
        "AllocationRecord",
        back_populates="fee_obligation",
        order_by="AllocationRecord.created_at",
    )

    __table_args__ = (
        CheckConstraint("total_owed >= 0", name="ck_fee_obligation_total_owed"),
        CheckConstraint("amount_paid >= 0", name="ck_fee_obligation_amount_paid"),
        CheckConstraint("amount_paid <= total_owed", name="ck_fee_obligation_not_overpaid"),
        Index("idx_fee_obligation_student_due", "student_id", "due_date", "created_at"),
    )

    @hybrid_property
    def balance(self) -> Decimal:
        return Decimal(self.total_owed) - Decimal(self.amount_paid or 0)

    @balance.expression
    def balance(cls):
        return cls.total_owed - cls.amount_paid

    @property
    def status(self) -> ObligationStatus:
        if self.balance <= 0:
            return ObligationStatus.PAID
        if self.amount_paid and Decimal(self.amount_paid) > 0:
            return ObligationStatus.PARTIALLY_PAID
        return ObligationStatus.UNPAID

    def __repr__(self) -> str:
        return (
            f"<FeeObligation(id={self.id}, student_id={self.student_id}, "
            f"total_owed={self.total_owed}, amount_paid={self.amount_paid})>"
        )
