"""
Fee Obligation Repository.

Reads outstanding obligations in allocation order and applies guarded
balance increments.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from fee_settlement.models.base.base_model import utcnow
from fee_settlement.models.fee.fee_obligation import FeeObligation
from fee_settlement.repositories.base.base_repository import BaseRepository

TWO_PLACES = Decimal("0.01")


class FeeObligationRepository(BaseRepository[FeeObligation]):
    """Repository for fee obligations."""

    def __init__(self, db: Session):
        super().__init__(FeeObligation, db)

    def create_obligation(
        self,
        student_id: str,
        total_owed: Decimal,
        due_date,
        description: Optional[str] = None,
        branch_id: Optional[str] = None,
        commit: bool = True,
    ) -> FeeObligation:
        obligation = FeeObligation(
            student_id=student_id,
            branch_id=branch_id,
            description=description,
            total_owed=total_owed,
            amount_paid=Decimal("0.00"),
            due_date=due_date,
        )
        return self.create(obligation, commit=commit)

    def get_allocable_for_student(
        self,
        student_id: str,
        priority_id: Optional[str] = None,
    ) -> List[FeeObligation]:
        """
        Obligations with a positive balance, oldest first.

        Ordered by due date, then creation time. ``priority_id`` moves the
        targeted obligation to the front. Rows are locked for update where
        the database supports it.
        """
        stmt = (
            select(FeeObligation)
            .where(FeeObligation.student_id == student_id, FeeObligation.balance > 0)
            .order_by(FeeObligation.due_date, FeeObligation.created_at, FeeObligation.id)
        )
        obligations = list(self.db.execute(stmt.with_for_update()).scalars().all())

        if priority_id:
            obligations.sort(key=lambda o: 0 if o.id == priority_id else 1)
        return obligations

    def list_for_student(self, student_id: str) -> List[FeeObligation]:
        stmt = (
            select(FeeObligation)
            .where(FeeObligation.student_id == student_id)
            .order_by(FeeObligation.due_date, FeeObligation.created_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def apply_payment(self, obligation_id: str, amount: Decimal) -> bool:
        """
        Increment ``amount_paid`` only if the balance still covers ``amount``.

        Returns:
            False when a concurrent writer already reduced the balance
        """
        stmt = (
            update(FeeObligation)
            .where(
                FeeObligation.id == obligation_id,
                (FeeObligation.total_owed - FeeObligation.amount_paid) >= amount,
            )
            .values(amount_paid=FeeObligation.amount_paid + amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def total_outstanding(self, student_id: str) -> Decimal:
        stmt = select(func.coalesce(func.sum(FeeObligation.balance), 0)).where(
            FeeObligation.student_id == student_id,
            FeeObligation.balance > 0,
        )
        return Decimal(str(self.db.execute(stmt).scalar_one())).quantize(TWO_PLACES)

    def totals_for_student(self, student_id: str) -> Dict[str, Any]:
        """Total owed and total paid across all obligations of a student."""
        stmt = select(
            func.coalesce(func.sum(FeeObligation.total_owed), 0),
            func.coalesce(func.sum(FeeObligation.amount_paid), 0),
            func.count(FeeObligation.id),
        ).where(FeeObligation.student_id == student_id)
        total_owed, total_paid, count = self.db.execute(stmt).one()
        total_owed = Decimal(str(total_owed)).quantize(TWO_PLACES)
        total_paid = Decimal(str(total_paid)).quantize(TWO_PLACES)
        return {
            "total_owed": total_owed,
            "total_paid": total_paid,
            "outstanding": (total_owed - total_paid).quantize(TWO_PLACES),
            "count": int(count),
        }
