"""
Outbound collaborators of the settlement engine.

Delivery of payer notifications and course enrollment live in other
systems. They are reached through these protocols; the defaults only log.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional, Protocol

from fee_settlement.core.logging import get_logger
from fee_settlement.schemas.common.enums import PaymentStatus

logger = get_logger(__name__)


class NotificationService(Protocol):
    """
    Informs the payer that a payment reached a terminal status.

    Implementations deliver push / in-app / SMS messages. Calls are
    fire-and-forget: failures must not affect settlement.
    """

    def notify_payment_status(
        self,
        user_id: str,
        payment_id: str,
        amount: Decimal,
        status: PaymentStatus,
        description: Optional[str] = None,
        action_url: Optional[str] = None,
    ) -> None:
        ...


class EnrollmentGateway(Protocol):
    """Creates the enrollment paid for by a course-purchase payment."""

    def create_enrollment(self, student_id: str, course_id: str, payment_id: str) -> None:
        ...


class LoggingNotificationService:
    def notify_payment_status(
        self,
        user_id: str,
        payment_id: str,
        amount: Decimal,
        status: PaymentStatus,
        description: Optional[str] = None,
        action_url: Optional[str] = None,
    ) -> None:
        logger.info(
            "Payment status notification",
            extra={
                "user_id": user_id,
                "payment_id": payment_id,
                "amount": str(amount),
                "payment_status": PaymentStatus(status).value,
                "action_url": action_url,
            },
        )


class LoggingEnrollmentGateway:
    def create_enrollment(self, student_id: str, course_id: str, payment_id: str) -> None:
        logger.info(
            "Enrollment requested",
            extra={"student_id": student_id, "course_id": course_id, "payment_id": payment_id},
        )
