"""
Operator alert model.

The manual-reconciliation queue: unresolved notifications, payments that
are paid but unreconciled, amount mismatches and swept stale intents.
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fee_settlement.models.base.base_model import TimestampModel, enum_column
from fee_settlement.schemas.common.enums import AlertKind, AlertStatus, GatewayKind


class OperatorAlert(TimestampModel):
    """An item needing operator attention."""

    __tablename__ = "operator_alerts"

    kind: Mapped[AlertKind] = mapped_column(
        enum_column(AlertKind, "alert_kind_enum"),
        nullable=False,
        index=True,
    )
    status: Mapped[AlertStatus] = mapped_column(
        enum_column(AlertStatus, "alert_status_enum"),
        nullable=False,
        default=AlertStatus.OPEN,
        index=True,
    )
    gateway_kind: Mapped[GatewayKind | None] = mapped_column(
        enum_column(GatewayKind, "gateway_kind_enum"),
        nullable=True,
    )
    payment_intent_id: Mapped[str | None] = mapped_column(
        ForeignKey("payment_intents.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    notification_id: Mapped[str | None] = mapped_column(
        ForeignKey("payment_notifications.id", ondelete="RESTRICT"),
        nullable=True,
    )
    message: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    details: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    resolved_by: Mapped[str | None] = mapped_column(
        String(36),
        nullable=True,
    )
    resolution_notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    __table_args__ = (
        Index("idx_operator_alert_kind_status", "kind", "status"),
    )

    def __repr__(self) -> str:
        return f"<OperatorAlert(id={self.id}, kind={self.kind}, status={self.status})>"
