"""
Receipt issuance for completed payments.
"""

from typing import Optional

from fee_settlement.core.exceptions import InvalidStateTransition
from fee_settlement.core.logging import get_logger
from fee_settlement.models.base.base_model import utcnow
from fee_settlement.repositories.payment.payment_intent_repository import PaymentIntentRepository
from fee_settlement.repositories.payment.receipt_counter_repository import ReceiptCounterRepository
from fee_settlement.schemas.common.enums import GatewayKind, PaymentStatus
from fee_settlement.utils.references import format_receipt_number, receipt_day

logger = get_logger(__name__)


class ReceiptService:
    """Assigns ``RCPT-<RAIL>-YYYYMMDD-NNNN`` numbers from the daily counter."""

    def __init__(self, db):
        self.db = db
        self.intents = PaymentIntentRepository(db)
        self.counters = ReceiptCounterRepository(db)

    def issue(self, intent_id: str) -> Optional[str]:
        """
        Issue the receipt of a completed intent.

        Idempotent: an intent that already has a receipt keeps it.

        Raises:
            InvalidStateTransition: If the intent is not completed
        """
        intent = self.intents.get_or_raise(intent_id)
        if intent.receipt_number:
            return intent.receipt_number
        if PaymentStatus(intent.status) != PaymentStatus.COMPLETED:
            raise InvalidStateTransition(
                "Receipts are only issued for completed payments", current_state=str(intent.status)
            )

        gateway_kind = GatewayKind(intent.gateway_kind)
        day = receipt_day(intent.completed_at or utcnow())
        sequence = self.counters.next_value(day)
        number = format_receipt_number(gateway_kind, day, sequence)

        with self.intents.transaction():
            assigned = self.intents.assign_receipt(intent_id, number)

        if not assigned:
            # A concurrent issuer won; its number stands
            return self.intents.get_or_raise(intent_id).receipt_number

        logger.info("Receipt issued", extra={"payment_id": intent_id, "receipt_number": number})
        return number
