"""
Payment notification model.

Append-only audit log of every payload a gateway delivered, including
duplicates and payloads that matched no payment intent.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fee_settlement.models.base.base_model import BaseModel, enum_column, utcnow
from fee_settlement.schemas.common.enums import (
    DispatchStatus,
    GatewayKind,
    NotificationChannel,
    SettlementOutcome,
)

if TYPE_CHECKING:
    from fee_settlement.models.payment.payment_intent import PaymentIntent


class PaymentNotification(BaseModel):
    """Raw gateway notification. Rows are inserted once and never updated."""

    __tablename__ = "payment_notifications"

    payment_intent_id: Mapped[str | None] = mapped_column(
        ForeignKey("payment_intents.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
        comment="Empty when the notification could not be resolved",
    )
    gateway_kind: Mapped[GatewayKind] = mapped_column(
        enum_column(GatewayKind, "gateway_kind_enum"),
        nullable=False,
    )
    channel: Mapped[NotificationChannel] = mapped_column(
        enum_column(NotificationChannel, "notification_channel_enum"),
        nullable=False,
    )
    payload: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
    )
    correlation_keys: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )
    outcome: Mapped[SettlementOutcome | None] = mapped_column(
        enum_column(SettlementOutcome, "settlement_outcome_enum"),
        nullable=True,
    )
    dispatch_status: Mapped[DispatchStatus] = mapped_column(
        enum_column(DispatchStatus, "dispatch_status_enum"),
        nullable=False,
    )
    note: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True,
    )

    payment_intent: Mapped["PaymentIntent"] = relationship(
        "PaymentIntent",
        back_populates="notifications",
    )

    __table_args__ = (
        Index("idx_payment_notification_intent_received", "payment_intent_id", "received_at"),
    )
