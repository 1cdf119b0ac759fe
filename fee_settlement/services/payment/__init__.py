"""
Settlement services: dispatch, allocation, receipts and orchestration.
"""

from fee_settlement.services.payment.fee_reconciliation_service import FeeReconciliationService
from fee_settlement.services.payment.notification_dispatcher import DispatchResult, NotificationDispatcher
from fee_settlement.services.payment.receipt_service import ReceiptService
from fee_settlement.services.payment.settlement_orchestrator import (
    InitiationOutcome,
    NotificationAck,
    SettlementOrchestrator,
)

__all__ = [
    "DispatchResult",
    "FeeReconciliationService",
    "InitiationOutcome",
    "NotificationAck",
    "NotificationDispatcher",
    "ReceiptService",
    "SettlementOrchestrator",
]
