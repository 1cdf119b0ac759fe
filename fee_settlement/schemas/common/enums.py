"""
All enumeration types used across the fee settlement engine.

These enums represent the core domain concepts (payment rails, intent
lifecycle, verification, allocation and operator alerts).
"""

from enum import Enum

__all__ = [
    "GatewayKind",
    "PaymentStatus",
    "VerificationStatus",
    "ReconciliationStatus",
    "SettlementOutcome",
    "NotificationChannel",
    "CorrelationKind",
    "ObligationStatus",
    "CreditSource",
    "CreditStatus",
    "AlertKind",
    "AlertStatus",
    "DispatchStatus",
    "AllocationSource",
]


class GatewayKind(str, Enum):
    """Payment rail enumeration."""

    PUSH_MOBILE_MONEY = "push_mobile_money"
    BANK_CHECKOUT = "bank_checkout"
    BANK_PUSH_USSD = "bank_push_ussd"
    MANUAL = "manual"


class PaymentStatus(str, Enum):
    """Payment intent lifecycle."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def get_open_statuses(cls) -> list["PaymentStatus"]:
        return [cls.PENDING, cls.PROCESSING]

    @property
    def is_terminal(self) -> bool:
        return self in (PaymentStatus.COMPLETED, PaymentStatus.FAILED)


class VerificationStatus(str, Enum):
    """Human verification axis, independent of the lifecycle."""

    UNVERIFIED = "unverified"
    VERIFIED = "verified"


class ReconciliationStatus(str, Enum):
    """Fee allocation state of a payment intent."""

    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    RECONCILED = "reconciled"
    FAILED = "failed"


class SettlementOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    IN_PROGRESS = "in_progress"


class NotificationChannel(str, Enum):
    """Channel a gateway notification arrived on."""

    CALLBACK = "callback"
    IPN = "ipn"
    SWEEP = "sweep"


class CorrelationKind(str, Enum):
    """Gateway-supplied identifiers usable to match a notification."""

    TRANSACTION_REFERENCE = "transaction_reference"
    CHECKOUT_REQUEST_ID = "checkout_request_id"
    ORDER_REFERENCE = "order_reference"
    BILL_NUMBER = "bill_number"
    MERCHANT_REQUEST_ID = "merchant_request_id"
    RECEIPT_NUMBER = "receipt_number"


class ObligationStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


class CreditSource(str, Enum):
    OVERPAYMENT = "overpayment"
    TOP_UP = "top_up"


class CreditStatus(str, Enum):
    AVAILABLE = "available"
    USED = "used"


class AlertKind(str, Enum):
    """Operator queue entry types."""

    NOTIFICATION_UNRESOLVED = "notification_unresolved"
    NOTIFICATION_ERROR = "notification_error"
    RECONCILIATION_FAILED = "reconciliation_failed"
    AMOUNT_MISMATCH = "amount_mismatch"
    STALE_INTENT_SWEPT = "stale_intent_swept"
    SUCCESS_AFTER_FAILURE = "success_after_failure"


class AlertStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


class DispatchStatus(str, Enum):
    """Result of dispatching one notification."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    UNRESOLVED = "unresolved"
    RECORDED = "recorded"
    ERROR = "error"


class AllocationSource(str, Enum):
    """Where an allocated amount came from."""

    PAYMENT = "payment"
    CREDIT = "credit"
