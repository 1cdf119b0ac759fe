from fee_settlement.repositories.payment.allocation_repository import AllocationRepository
from fee_settlement.repositories.payment.credit_balance_repository import CreditBalanceRepository
from fee_settlement.repositories.payment.payment_intent_repository import PaymentIntentRepository
from fee_settlement.repositories.payment.payment_notification_repository import PaymentNotificationRepository
from fee_settlement.repositories.payment.receipt_counter_repository import ReceiptCounterRepository

__all__ = [
    "AllocationRepository",
    "CreditBalanceRepository",
    "PaymentIntentRepository",
    "PaymentNotificationRepository",
    "ReceiptCounterRepository",
]
