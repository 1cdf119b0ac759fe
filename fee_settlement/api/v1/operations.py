"""
Operator endpoints for the reconciliation queue.
"""

from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from fee_settlement.api.deps import get_orchestrator
from fee_settlement.schemas.common.enums import AlertKind, AlertStatus
from fee_settlement.schemas.payment import (
    OperatorAlertResponse,
    PaymentIntentResponse,
    PaymentNotificationResponse,
    ReconciliationResult,
    ResolveAlertRequest,
    SweepResult,
)
from fee_settlement.services.payment.settlement_orchestrator import SettlementOrchestrator

router = APIRouter(prefix="/operations", tags=["Operations"])


@router.get("/alerts", response_model=List[OperatorAlertResponse])
def list_alerts(
    alert_status: Optional[AlertStatus] = Query(AlertStatus.OPEN, alias="status"),
    kind: Optional[AlertKind] = None,
    limit: int = Query(100, ge=1, le=500),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.list_alerts(status=alert_status, kind=kind, limit=limit)


@router.post("/alerts/{alert_id}/resolve", response_model=OperatorAlertResponse)
def resolve_alert(
    alert_id: str,
    request: ResolveAlertRequest,
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.resolve_alert(alert_id, notes=request.notes, resolved_by=request.resolved_by)


@router.get("/payments/unreconciled", response_model=List[PaymentIntentResponse])
def list_unreconciled(orchestrator: SettlementOrchestrator = Depends(get_orchestrator)):
    """Payments that are paid but not yet allocated to fees."""
    return orchestrator.list_unreconciled()


@router.get("/payments/{payment_id}/notifications", response_model=List[PaymentNotificationResponse])
def list_notifications(payment_id: str, orchestrator: SettlementOrchestrator = Depends(get_orchestrator)):
    return orchestrator.list_notifications(payment_id)


@router.post("/payments/{payment_id}/retry-reconciliation", response_model=ReconciliationResult)
def retry_reconciliation(payment_id: str, orchestrator: SettlementOrchestrator = Depends(get_orchestrator)):
    """Re-run fee allocation for a paid but unreconciled payment."""
    return orchestrator.retry_reconciliation(payment_id)


@router.post("/sweep-stale", response_model=SweepResult)
def sweep_stale(
    older_than_hours: Optional[float] = Query(None, ge=0),
    limit: int = Query(500, ge=1, le=5000),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
):
    """Fail open payments older than the horizon that the gateway never reported on."""
    older_than = timedelta(hours=older_than_hours) if older_than_hours is not None else None
    return orchestrator.sweep_stale_intents(older_than=older_than, limit=limit)
