"""
Credit Balance Repository.

Student credit increments and their guarded consumption.
"""

from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from fee_settlement.models.base.base_model import utcnow
from fee_settlement.models.payment.credit_balance import CreditBalance
from fee_settlement.repositories.base.base_repository import BaseRepository
from fee_settlement.schemas.common.enums import CreditSource, CreditStatus


class CreditBalanceRepository(BaseRepository[CreditBalance]):
    """Repository for student credit."""

    def __init__(self, db: Session):
        super().__init__(CreditBalance, db)

    def create_credit(
        self,
        student_id: str,
        payment_intent_id: str,
        amount: Decimal,
        branch_id: Optional[str] = None,
        source: CreditSource = CreditSource.OVERPAYMENT,
    ) -> CreditBalance:
        """Stage a new credit increment (flushed so its id is available)."""
        credit = CreditBalance(
            student_id=student_id,
            branch_id=branch_id,
            payment_intent_id=payment_intent_id,
            amount=amount,
            remaining_amount=amount,
            source=source,
            status=CreditStatus.AVAILABLE,
        )
        self.db.add(credit)
        self.db.flush()
        return credit

    def list_available(self, student_id: str, lock: bool = True) -> List[CreditBalance]:
        """Available credit for a student, oldest first."""
        stmt = (
            select(CreditBalance)
            .where(
                CreditBalance.student_id == student_id,
                CreditBalance.status == CreditStatus.AVAILABLE,
                CreditBalance.remaining_amount > 0,
            )
            .order_by(CreditBalance.created_at, CreditBalance.id)
        )
        if lock:
            stmt = stmt.with_for_update()
        return list(self.db.execute(stmt).scalars().all())

    def available_total(self, student_id: str) -> Decimal:
        stmt = select(func.coalesce(func.sum(CreditBalance.remaining_amount), 0)).where(
            CreditBalance.student_id == student_id,
            CreditBalance.status == CreditStatus.AVAILABLE,
        )
        return Decimal(str(self.db.execute(stmt).scalar_one())).quantize(Decimal("0.01"))

    def consume(self, credit_id: str, amount: Decimal) -> bool:
        """
        Draw ``amount`` from a credit row if enough remains (no commit).

        Returns:
            False when the remaining amount was insufficient
        """
        now = utcnow()
        result = self.db.execute(
            update(CreditBalance)
            .where(
                CreditBalance.id == credit_id,
                CreditBalance.status == CreditStatus.AVAILABLE,
                CreditBalance.remaining_amount >= amount,
            )
            .values(remaining_amount=CreditBalance.remaining_amount - amount, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        self.db.execute(
            update(CreditBalance)
            .where(CreditBalance.id == credit_id, CreditBalance.remaining_amount <= 0)
            .values(status=CreditStatus.USED, used_at=now)
            .execution_options(synchronize_session=False)
        )
        return True
