"""
Integrations with systems outside the settlement engine.
"""

from fee_settlement.services.integrations.collaborators import (
    EnrollmentGateway,
    LoggingEnrollmentGateway,
    LoggingNotificationService,
    NotificationService,
)

__all__ = [
    "EnrollmentGateway",
    "LoggingEnrollmentGateway",
    "LoggingNotificationService",
    "NotificationService",
]
