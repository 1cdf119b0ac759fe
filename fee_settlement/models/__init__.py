"""ORM models. Importing this package registers every table on ``Base.metadata``."""

from fee_settlement.models.fee import FeeObligation
from fee_settlement.models.operations import OperatorAlert
from fee_settlement.models.payment import (
    AllocationRecord,
    CreditBalance,
    PaymentCorrelation,
    PaymentIntent,
    PaymentNotification,
    ReceiptCounter,
)

__all__ = [
    "AllocationRecord",
    "CreditBalance",
    "FeeObligation",
    "OperatorAlert",
    "PaymentCorrelation",
    "PaymentIntent",
    "PaymentNotification",
    "ReceiptCounter",
]
