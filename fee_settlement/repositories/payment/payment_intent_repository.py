"""
Payment Intent Repository.

Persistence for payment intents: creation, correlation lookup and the
conditional status updates that make settlement exactly-once.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from fee_settlement.core.logging import get_logger
from fee_settlement.models.base.base_model import utcnow
from fee_settlement.models.payment.payment_intent import PaymentCorrelation, PaymentIntent
from fee_settlement.repositories.base.base_repository import BaseRepository
from fee_settlement.schemas.common.enums import (
    CorrelationKind,
    GatewayKind,
    PaymentStatus,
    ReconciliationStatus,
    VerificationStatus,
)

logger = get_logger(__name__)


class PaymentIntentRepository(BaseRepository[PaymentIntent]):
    """Repository for payment intent operations."""

    def __init__(self, db: Session):
        """Initialize payment intent repository."""
        super().__init__(PaymentIntent, db)

    # ==================== Core Intent Operations ====================

    def create_intent(
        self,
        gateway_kind: GatewayKind,
        order_reference: str,
        student_id: str,
        amount: Decimal,
        currency: str,
        fee_id: Optional[str] = None,
        branch_id: Optional[str] = None,
        course_id: Optional[str] = None,
        payer_contact: Optional[str] = None,
        description: Optional[str] = None,
        status: PaymentStatus = PaymentStatus.PENDING,
        verification_status: VerificationStatus = VerificationStatus.UNVERIFIED,
        reconciliation_status: ReconciliationStatus = ReconciliationStatus.NOT_REQUIRED,
        manual_details: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> PaymentIntent:
        """
        Create a new payment intent.

        Args:
            gateway_kind: Payment rail
            order_reference: Unique system reference
            student_id: Paying student
            amount: Requested amount
            currency: Settlement currency
            fee_id: Targeted obligation, if any
            status: Initial lifecycle status

        Returns:
            Created intent
        """
        now = utcnow()
        intent = PaymentIntent(
            gateway_kind=gateway_kind,
            order_reference=order_reference,
            student_id=student_id,
            branch_id=branch_id,
            fee_id=fee_id,
            course_id=course_id,
            payer_contact=payer_contact,
            description=description,
            amount=amount,
            currency=currency,
            status=status,
            verification_status=verification_status,
            reconciliation_status=reconciliation_status,
            manual_details=manual_details,
            gateway_correlation={CorrelationKind.ORDER_REFERENCE.value: order_reference},
            completed_at=now if status == PaymentStatus.COMPLETED else None,
        )
        return self.create(intent, commit=commit)

    def find_by_order_reference(self, order_reference: str) -> Optional[PaymentIntent]:
        """Find intent by its system order reference."""
        stmt = select(PaymentIntent).where(PaymentIntent.order_reference == order_reference)
        return self.db.execute(stmt).scalars().first()

    def find_by_correlation(self, kind: CorrelationKind, value: str) -> Optional[PaymentIntent]:
        """Find intent by a gateway-supplied identifier."""
        if kind == CorrelationKind.ORDER_REFERENCE:
            return self.find_by_order_reference(value)
        stmt = (
            select(PaymentIntent)
            .join(PaymentCorrelation, PaymentCorrelation.payment_intent_id == PaymentIntent.id)
            .where(PaymentCorrelation.kind == kind, PaymentCorrelation.value == value)
        )
        return self.db.execute(stmt).scalars().first()

    def resolve(
        self, keys: Iterable[Tuple[CorrelationKind, str]]
    ) -> Tuple[Optional[PaymentIntent], Optional[Tuple[CorrelationKind, str]]]:
        """
        Resolve the first matching intent for an ordered list of keys.

        Returns:
            The matched intent (or None) and the key that matched
        """
        for kind, value in keys:
            if not value:
                continue
            intent = self.find_by_correlation(kind, str(value))
            if intent is not None:
                return intent, (kind, str(value))
        return None, None

    def add_correlations(self, intent: PaymentIntent, correlation: Dict[CorrelationKind, str]) -> None:
        """
        Record gateway identifiers for an intent (no commit).

        Identifiers already bound to another intent are skipped with a warning.
        """
        merged = dict(intent.gateway_correlation or {})
        for kind, value in correlation.items():
            if not value:
                continue
            value = str(value)
            merged[kind.value] = value
            if kind == CorrelationKind.ORDER_REFERENCE:
                continue

            existing = self.db.execute(
                select(PaymentCorrelation).where(
                    PaymentCorrelation.kind == kind,
                    PaymentCorrelation.value == value,
                )
            ).scalars().first()
            if existing is not None:
                if existing.payment_intent_id != intent.id:
                    logger.warning(
                        "Correlation id already bound to another payment",
                        extra={"payment_id": intent.id, "correlation_kind": kind.value},
                    )
                continue
            self.db.add(PaymentCorrelation(payment_intent_id=intent.id, kind=kind, value=value))

        intent.gateway_correlation = merged

    # ==================== Conditional Transitions ====================

    def transition_status(
        self,
        intent_id: str,
        new_status: PaymentStatus,
        expected: Optional[List[PaymentStatus]] = None,
        values: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Compare-and-swap the lifecycle status (no commit).

        Args:
            intent_id: Intent to update
            new_status: Target status
            expected: Statuses the intent must currently be in
            values: Extra columns to set with the transition

        Returns:
            True when exactly this call moved the intent
        """
        expected = expected or PaymentStatus.get_open_statuses()
        stmt = (
            update(PaymentIntent)
            .where(PaymentIntent.id == intent_id, PaymentIntent.status.in_(expected))
            .values(status=new_status, updated_at=utcnow(), **(values or {}))
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def mark_processing(self, intent_id: str) -> bool:
        """Move a pending intent to processing after a push was accepted."""
        return self.transition_status(
            intent_id, PaymentStatus.PROCESSING, expected=[PaymentStatus.PENDING]
        )

    def mark_failed(self, intent_id: str, reason: str) -> bool:
        """Fail an open intent; no-op when it is already terminal."""
        return self.transition_status(
            intent_id,
            PaymentStatus.FAILED,
            values={"failure_reason": reason, "failed_at": utcnow()},
        )

    def claim_reconciliation(self, intent_id: str) -> bool:
        """
        Claim the right to allocate a completed intent (no commit).

        Only one caller can move reconciliation to ``reconciled``; the claim
        commits or rolls back together with the allocation rows.
        """
        stmt = (
            update(PaymentIntent)
            .where(
                PaymentIntent.id == intent_id,
                PaymentIntent.status == PaymentStatus.COMPLETED,
                PaymentIntent.reconciliation_status.in_(
                    [ReconciliationStatus.PENDING, ReconciliationStatus.FAILED]
                ),
            )
            .values(
                reconciliation_status=ReconciliationStatus.RECONCILED,
                reconciled_at=utcnow(),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def set_reconciliation_status(self, intent_id: str, status: ReconciliationStatus) -> None:
        stmt = (
            update(PaymentIntent)
            .where(PaymentIntent.id == intent_id)
            .values(reconciliation_status=status, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.execute(stmt)

    def assign_receipt(self, intent_id: str, receipt_number: str) -> bool:
        """Attach a receipt number to a completed intent that has none."""
        stmt = (
            update(PaymentIntent)
            .where(
                PaymentIntent.id == intent_id,
                PaymentIntent.status == PaymentStatus.COMPLETED,
                PaymentIntent.receipt_number.is_(None),
            )
            .values(receipt_number=receipt_number, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    # ==================== Queries ====================

    def find_stale(self, cutoff: datetime, limit: int = 500) -> List[PaymentIntent]:
        """Open intents created before ``cutoff``."""
        stmt = (
            select(PaymentIntent)
            .where(
                PaymentIntent.status.in_(PaymentStatus.get_open_statuses()),
                PaymentIntent.created_at < cutoff,
            )
            .order_by(PaymentIntent.created_at)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def find_by_fee(self, fee_id: str) -> List[PaymentIntent]:
        stmt = (
            select(PaymentIntent)
            .where(PaymentIntent.fee_id == fee_id)
            .order_by(PaymentIntent.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def find_by_student(
        self, student_id: str, status: Optional[PaymentStatus] = None
    ) -> List[PaymentIntent]:
        stmt = select(PaymentIntent).where(PaymentIntent.student_id == student_id)
        if status is not None:
            stmt = stmt.where(PaymentIntent.status == status)
        stmt = stmt.order_by(PaymentIntent.created_at.desc())
        return list(self.db.execute(stmt).scalars().all())

    def find_unreconciled(self) -> List[PaymentIntent]:
        """Completed intents whose allocation failed ("paid but unreconciled")."""
        stmt = (
            select(PaymentIntent)
            .where(
                PaymentIntent.status == PaymentStatus.COMPLETED,
                PaymentIntent.reconciliation_status == ReconciliationStatus.FAILED,
            )
            .order_by(PaymentIntent.completed_at)
        )
        return list(self.db.execute(stmt).scalars().all())
