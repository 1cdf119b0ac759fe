"""
Operator Alert Repository.

The manual reconciliation queue.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from fee_settlement.models.base.base_model import utcnow
from fee_settlement.models.operations.operator_alert import OperatorAlert
from fee_settlement.repositories.base.base_repository import BaseRepository
from fee_settlement.schemas.common.enums import AlertKind, AlertStatus, GatewayKind


class OperatorAlertRepository(BaseRepository[OperatorAlert]):
    """Repository for operator alerts."""

    def __init__(self, db: Session):
        super().__init__(OperatorAlert, db)

    def open_alert(
        self,
        kind: AlertKind,
        message: str,
        gateway_kind: Optional[GatewayKind] = None,
        payment_intent_id: Optional[str] = None,
        notification_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> OperatorAlert:
        """Stage a new open alert (flushed so its id is available)."""
        alert = OperatorAlert(
            kind=kind,
            status=AlertStatus.OPEN,
            message=message,
            gateway_kind=gateway_kind,
            payment_intent_id=payment_intent_id,
            notification_id=notification_id,
            details=details,
        )
        self.db.add(alert)
        self.db.flush()
        return alert

    def list_alerts(
        self,
        status: Optional[AlertStatus] = AlertStatus.OPEN,
        kind: Optional[AlertKind] = None,
        limit: int = 100,
    ) -> List[OperatorAlert]:
        stmt = select(OperatorAlert)
        if status is not None:
            stmt = stmt.where(OperatorAlert.status == status)
        if kind is not None:
            stmt = stmt.where(OperatorAlert.kind == kind)
        stmt = stmt.order_by(OperatorAlert.created_at.desc()).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def find_open_for_intent(self, payment_intent_id: str, kind: AlertKind) -> List[OperatorAlert]:
        stmt = select(OperatorAlert).where(
            OperatorAlert.payment_intent_id == payment_intent_id,
            OperatorAlert.kind == kind,
            OperatorAlert.status == AlertStatus.OPEN,
        )
        return list(self.db.execute(stmt).scalars().all())

    def resolve(
        self,
        alert: OperatorAlert,
        notes: Optional[str] = None,
        resolved_by: Optional[str] = None,
    ) -> OperatorAlert:
        """Mark an alert resolved (no commit)."""
        alert.status = AlertStatus.RESOLVED
        alert.resolved_at = utcnow()
        alert.resolution_notes = notes
        alert.resolved_by = resolved_by
        return alert
