"""
Payment Notification Repository.

Append-only storage of raw gateway notifications.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from fee_settlement.models.payment.payment_notification import PaymentNotification
from fee_settlement.repositories.base.base_repository import BaseRepository
from fee_settlement.schemas.common.enums import (
    DispatchStatus,
    GatewayKind,
    NotificationChannel,
    SettlementOutcome,
)


class PaymentNotificationRepository(BaseRepository[PaymentNotification]):
    """Repository for raw notification records. There is no update path."""

    def __init__(self, db: Session):
        super().__init__(PaymentNotification, db)

    def append(
        self,
        gateway_kind: GatewayKind,
        channel: NotificationChannel,
        payload: Dict[str, Any],
        dispatch_status: DispatchStatus,
        payment_intent_id: Optional[str] = None,
        outcome: Optional[SettlementOutcome] = None,
        correlation_keys: Optional[Dict[str, str]] = None,
        note: Optional[str] = None,
    ) -> PaymentNotification:
        """
        Stage a notification row in the current transaction.

        The row is written when the caller commits.
        """
        notification = PaymentNotification(
            payment_intent_id=payment_intent_id,
            gateway_kind=gateway_kind,
            channel=channel,
            payload=payload,
            dispatch_status=dispatch_status,
            outcome=outcome,
            correlation_keys=correlation_keys,
            note=note,
        )
        self.db.add(notification)
        self.db.flush()
        return notification

    def list_for_intent(self, payment_intent_id: str) -> List[PaymentNotification]:
        stmt = (
            select(PaymentNotification)
            .where(PaymentNotification.payment_intent_id == payment_intent_id)
            .order_by(PaymentNotification.received_at)
        )
        return list(self.db.execute(stmt).scalars().all())
