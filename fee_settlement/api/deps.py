"""
FastAPI dependencies.

Plain callables usable as ``Depends(...)`` in route functions; tests
replace them through ``app.dependency_overrides``.
"""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from fee_settlement.db.session import get_db
from fee_settlement.services.gateway.adapter_registry import AdapterRegistry
from fee_settlement.services.integrations.collaborators import (
    EnrollmentGateway,
    LoggingEnrollmentGateway,
    LoggingNotificationService,
    NotificationService,
)
from fee_settlement.services.payment.settlement_orchestrator import SettlementOrchestrator

__all__ = [
    "get_db",
    "get_adapter_registry",
    "get_notification_service",
    "get_enrollment_gateway",
    "get_orchestrator",
]


@lru_cache()
def get_adapter_registry() -> AdapterRegistry:
    """Adapters are built once per process so cached gateway tokens are shared."""
    return AdapterRegistry.build()


def get_notification_service() -> NotificationService:
    return LoggingNotificationService()


def get_enrollment_gateway() -> EnrollmentGateway:
    return LoggingEnrollmentGateway()


def get_orchestrator(
    db: Session = Depends(get_db),
    registry: AdapterRegistry = Depends(get_adapter_registry),
    notifier: NotificationService = Depends(get_notification_service),
    enrollment: EnrollmentGateway = Depends(get_enrollment_gateway),
) -> SettlementOrchestrator:
    return SettlementOrchestrator(db, registry, notifier=notifier, enrollment=enrollment)
