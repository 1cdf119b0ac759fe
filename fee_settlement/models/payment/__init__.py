from fee_settlement.models.payment.allocation_record import AllocationRecord
from fee_settlement.models.payment.credit_balance import CreditBalance
from fee_settlement.models.payment.payment_intent import PaymentCorrelation, PaymentIntent
from fee_settlement.models.payment.payment_notification import PaymentNotification
from fee_settlement.models.payment.receipt_counter import ReceiptCounter

__all__ = [
    "AllocationRecord",
    "CreditBalance",
    "PaymentCorrelation",
    "PaymentIntent",
    "PaymentNotification",
    "ReceiptCounter",
]
