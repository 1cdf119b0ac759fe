"""
Payment intent model.

The authoritative ledger entry for one attempt to pay: identity, amount,
rail, lifecycle status and every gateway identifier learned so far.
Intents are never deleted.
"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, List

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fee_settlement.models.base.base_model import BaseModel, TimestampModel, enum_column, utcnow
from fee_settlement.schemas.common.enums import (
    CorrelationKind,
    GatewayKind,
    PaymentStatus,
    ReconciliationStatus,
    VerificationStatus,
)

if TYPE_CHECKING:
    from fee_settlement.models.payment.allocation_record import AllocationRecord
    from fee_settlement.models.payment.payment_notification import PaymentNotification


class PaymentIntent(TimestampModel):
    """
    Payment intent created before the payer is redirected or pushed.

    Status moves pending -> processing -> completed|failed; terminal
    statuses never change again.
    """

    __tablename__ = "payment_intents"

    # ==================== Identity ====================
    gateway_kind: Mapped[GatewayKind] = mapped_column(
        enum_column(GatewayKind, "gateway_kind_enum"),
        nullable=False,
        index=True,
    )
    order_reference: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        index=True,
        comment="System generated reference embedding student id and timestamp",
    )

    # ==================== Parties ====================
    student_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True,
    )
    branch_id: Mapped[str | None] = mapped_column(
        String(36),
        nullable=True,
        index=True,
    )
    fee_id: Mapped[str | None] = mapped_column(
        ForeignKey("fee_obligations.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
        comment="Targeted obligation; empty for wallet / credit top-ups",
    )
    course_id: Mapped[str | None] = mapped_column(
        String(36),
        nullable=True,
        comment="Course being purchased, enrollment is created on success",
    )
    payer_contact: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Normalized payer phone number or email",
    )
    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # ==================== Amounts ====================
    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        comment="Requested amount",
    )
    confirmed_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=True,
        comment="Amount the gateway confirmed; authoritative for allocation",
    )
    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="KES",
    )

    # ==================== Lifecycle ====================
    status: Mapped[PaymentStatus] = mapped_column(
        enum_column(PaymentStatus, "payment_status_enum"),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )
    verification_status: Mapped[VerificationStatus] = mapped_column(
        enum_column(VerificationStatus, "verification_status_enum"),
        nullable=False,
        default=VerificationStatus.UNVERIFIED,
    )
    reconciliation_status: Mapped[ReconciliationStatus] = mapped_column(
        enum_column(ReconciliationStatus, "reconciliation_status_enum"),
        nullable=False,
        default=ReconciliationStatus.NOT_REQUIRED,
        index=True,
    )
    failure_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    failed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    reconciled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    receipt_number: Mapped[str | None] = mapped_column(
        String(50),
        unique=True,
        nullable=True,
        comment="Issued only once the intent is completed",
    )

    # ==================== Verification ====================
    verified_by: Mapped[str | None] = mapped_column(
        String(36),
        nullable=True,
    )
    verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    verification_notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # ==================== Gateway Data ====================
    gateway_correlation: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Gateway identifiers (checkout id, transaction reference, bill number...)",
    )
    gateway_response: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
        comment="Initiation response returned by the gateway",
    )
    manual_details: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
        comment="Deposit evidence for manually recorded payments",
    )

    # ==================== Relationships ====================
    notifications: Mapped[List["PaymentNotification"]] = relationship(
        "PaymentNotification",
        back_populates="payment_intent",
        order_by="PaymentNotification.received_at",
    )
    allocations: Mapped[List["AllocationRecord"]] = relationship(
        "AllocationRecord",
        back_populates="payment_intent",
        order_by="AllocationRecord.created_at",
    )
    correlations: Mapped[List["PaymentCorrelation"]] = relationship(
        "PaymentCorrelation",
        back_populates="payment_intent",
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_intent_amount_positive"),
        Index("idx_payment_intent_status_created", "status", "created_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return PaymentStatus(self.status).is_terminal

    @property
    def settled_amount(self) -> Decimal:
        """Amount used for allocation: confirmed when known, otherwise requested"""
        return Decimal(self.confirmed_amount if self.confirmed_amount is not None else self.amount)

    def __repr__(self) -> str:
        return (
            f"<PaymentIntent(id={self.id}, ref={self.order_reference}, "
            f"gateway={self.gateway_kind}, status={self.status})>"
        )


class PaymentCorrelation(BaseModel):
    """
    Index of gateway identifiers.

    The (kind, value) pair is unique so one identifier resolves to at most
    one payment intent.
    """

    __tablename__ = "payment_correlations"

    payment_intent_id: Mapped[str] = mapped_column(
        ForeignKey("payment_intents.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    kind: Mapped[CorrelationKind] = mapped_column(
        enum_column(CorrelationKind, "correlation_kind_enum"),
        nullable=False,
    )
    value: Mapped[str] = mapped_column(
        String(120),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    payment_intent: Mapped["PaymentIntent"] = relationship(
        "PaymentIntent",
        back_populates="correlations",
    )

    __table_args__ = (
        UniqueConstraint("kind", "value", name="uq_payment_correlation_kind_value"),
        Index("idx_payment_correlation_value", "value"),
    )
