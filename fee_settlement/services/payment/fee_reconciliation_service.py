"""
Fee reconciliation allocator.

Distributes a completed payment across the student's outstanding fee
obligations, oldest first, and turns any remainder into credit. Each
payment is allocated exactly once, in a single transaction.
"""

from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from fee_settlement.core.exceptions import (
    BaseAppException,
    InvalidStateTransition,
    ReconciliationFailure,
)
from fee_settlement.core.logging import get_logger
from fee_settlement.models.payment.payment_intent import PaymentIntent
from fee_settlement.repositories.fee.fee_obligation_repository import FeeObligationRepository
from fee_settlement.repositories.operations.operator_alert_repository import OperatorAlertRepository
from fee_settlement.repositories.payment.allocation_repository import AllocationRepository
from fee_settlement.repositories.payment.credit_balance_repository import CreditBalanceRepository
from fee_settlement.repositories.payment.payment_intent_repository import PaymentIntentRepository
from fee_settlement.schemas.common.enums import (
    AlertKind,
    AllocationSource,
    CreditSource,
    GatewayKind,
    PaymentStatus,
    ReconciliationStatus,
)
from fee_settlement.schemas.payment.settlement import (
    AllocationLine,
    CreditApplicationResult,
    ReconciliationResult,
)

logger = get_logger(__name__)

ZERO = Decimal("0.00")


class FeeReconciliationService:
    """Allocates payments to fee obligations and student credit."""

    def __init__(self, db):
        self.db = db
        self.intents = PaymentIntentRepository(db)
        self.fees = FeeObligationRepository(db)
        self.allocations = AllocationRepository(db)
        self.credits = CreditBalanceRepository(db)
        self.alerts = OperatorAlertRepository(db)

    # ==================== Allocation ====================

    def allocate(self, intent_id: str) -> ReconciliationResult:
        """
        Allocate a completed payment.

        Already reconciled payments return their stored allocation without
        writing anything.

        Raises:
            InvalidStateTransition: If the payment is not completed
            ReconciliationFailure: If the allocation could not be committed
        """
        intent = self.intents.get_or_raise(intent_id)
        if ReconciliationStatus(intent.reconciliation_status) == ReconciliationStatus.RECONCILED:
            return self.stored_result(intent)
        if PaymentStatus(intent.status) != PaymentStatus.COMPLETED:
            raise InvalidStateTransition(
                "Only completed payments can be reconciled", current_state=str(intent.status)
            )

        try:
            if not self.intents.claim_reconciliation(intent_id):
                # Another worker reconciled it first
                self.db.rollback()
                return self.stored_result(self.intents.get_or_raise(intent_id))

            result = self._allocate(intent)
            self.db.commit()
        except (SQLAlchemyError, BaseAppException) as e:
            self.db.rollback()
            reason = getattr(e, "message", str(e))
            logger.error(
                "Fee reconciliation failed",
                extra={"payment_id": intent_id, "error": reason},
                exc_info=True,
            )
            self._mark_failed(intent_id, reason)
            raise ReconciliationFailure(f"Fee reconciliation failed: {reason}", payment_id=intent_id) from e

        logger.info(
            "Payment reconciled",
            extra={
                "payment_id": intent_id,
                "fees_updated": result.fees_updated,
                "total_allocated": str(result.total_allocated),
                "credit_created": str(result.credit_created) if result.credit_created else None,
            },
        )
        return result

    def _allocate(self, intent: PaymentIntent) -> ReconciliationResult:
        amount = intent.settled_amount
        remaining = amount
        lines: List[AllocationLine] = []

        obligations = self.fees.get_allocable_for_student(intent.student_id, priority_id=intent.fee_id)
        for obligation in obligations:
            if remaining <= ZERO:
                break
            balance = obligation.balance
            portion = min(remaining, balance)
            if portion <= ZERO:
                continue
            if not self.fees.apply_payment(obligation.id, portion):
                raise ReconciliationFailure(
                    f"Obligation {obligation.id} balance changed during allocation", payment_id=intent.id
                )
            self.allocations.record(intent.id, portion, fee_obligation_id=obligation.id)
            lines.append(
                AllocationLine(
                    fee_obligation_id=obligation.id,
                    amount_allocated=portion,
                    balance_after=balance - portion,
                )
            )
            remaining -= portion

        fees_updated = len(lines)
        total_allocated = amount - remaining
        credit_created = None
        if remaining > ZERO:
            credit = self.credits.create_credit(
                student_id=intent.student_id,
                payment_intent_id=intent.id,
                amount=remaining,
                branch_id=intent.branch_id,
                source=CreditSource.TOP_UP if intent.fee_id is None and not obligations else CreditSource.OVERPAYMENT,
            )
            self.allocations.record(intent.id, remaining, credit_balance_id=credit.id)
            lines.append(AllocationLine(credit_balance_id=credit.id, amount_allocated=remaining))
            credit_created = remaining

        return ReconciliationResult(
            payment_id=intent.id,
            fees_updated=fees_updated,
            total_allocated=total_allocated,
            remaining_amount=remaining,
            credit_created=credit_created,
            allocations=lines,
        )

    def _mark_failed(self, intent_id: str, reason: str) -> None:
        """Leave the payment paid but unreconciled, with an operator alert."""
        try:
            self.intents.set_reconciliation_status(intent_id, ReconciliationStatus.FAILED)
            if not self.alerts.find_open_for_intent(intent_id, AlertKind.RECONCILIATION_FAILED):
                intent = self.intents.get_by_id(intent_id)
                self.alerts.open_alert(
                    AlertKind.RECONCILIATION_FAILED,
                    "Payment completed but fee allocation failed",
                    gateway_kind=GatewayKind(intent.gateway_kind) if intent else None,
                    payment_intent_id=intent_id,
                    details={"reason": reason},
                )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Could not record reconciliation failure", extra={"payment_id": intent_id})

    def stored_result(self, intent: PaymentIntent) -> ReconciliationResult:
        """Rebuild the allocation result of an already reconciled payment."""
        lines = []
        fees_updated = 0
        total_allocated = ZERO
        credit = ZERO
        for record in self.allocations.list_for_intent(intent.id):
            amount = Decimal(record.amount_allocated)
            lines.append(
                AllocationLine(
                    fee_obligation_id=record.fee_obligation_id,
                    credit_balance_id=record.credit_balance_id,
                    amount_allocated=amount,
                )
            )
            if record.fee_obligation_id:
                fees_updated += 1
                total_allocated += amount
            else:
                credit += amount

        return ReconciliationResult(
            payment_id=intent.id,
            fees_updated=fees_updated,
            total_allocated=total_allocated,
            remaining_amount=credit,
            credit_created=credit if credit > ZERO else None,
            allocations=lines,
            already_reconciled=True,
        )

    # ==================== Credit ====================

    def apply_credit_to_obligation(
        self, obligation_id: str, max_amount: Optional[Decimal] = None
    ) -> CreditApplicationResult:
        """
        Draw the student's available credit into an obligation, oldest credit first.

        Each draw is recorded against the payment the credit came from.
        """
        obligation = self.fees.get_or_raise(obligation_id)
        lines: List[AllocationLine] = []
        applied = ZERO

        with self.fees.transaction():
            needed = obligation.balance
            if max_amount is not None:
                needed = min(needed, Decimal(max_amount))

            for credit in self.credits.list_available(obligation.student_id):
                if needed <= ZERO:
                    break
                take = min(needed, Decimal(credit.remaining_amount))
                if take <= ZERO:
                    continue
                if not self.credits.consume(credit.id, take):
                    raise ReconciliationFailure(
                        f"Credit {credit.id} changed while being applied", payment_id=credit.payment_intent_id
                    )
                if not self.fees.apply_payment(obligation.id, take):
                    raise ReconciliationFailure(
                        f"Obligation {obligation.id} balance changed while applying credit",
                        payment_id=credit.payment_intent_id,
                    )
                self.allocations.record(
                    credit.payment_intent_id,
                    take,
                    fee_obligation_id=obligation.id,
                    credit_balance_id=credit.id,
                    source=AllocationSource.CREDIT,
                )
                lines.append(
                    AllocationLine(fee_obligation_id=obligation.id, credit_balance_id=credit.id, amount_allocated=take)
                )
                applied += take
                needed -= take
            balance_after = obligation.balance - applied

        if applied > ZERO:
            logger.info(
                "Credit applied to obligation",
                extra={"fee_obligation_id": obligation_id, "amount_applied": str(applied)},
            )
        return CreditApplicationResult(
            fee_obligation_id=obligation_id,
            amount_applied=applied,
            balance_after=balance_after,
            allocations=lines,
        )
