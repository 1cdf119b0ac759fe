"""
Allocation Repository.

Immutable allocation records linking payments to obligations and credit.
"""

from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from fee_settlement.models.payment.allocation_record import AllocationRecord
from fee_settlement.repositories.base.base_repository import BaseRepository
from fee_settlement.schemas.common.enums import AllocationSource


class AllocationRepository(BaseRepository[AllocationRecord]):
    """Repository for allocation records."""

    def __init__(self, db: Session):
        super().__init__(AllocationRecord, db)

    def record(
        self,
        payment_intent_id: str,
        amount: Decimal,
        fee_obligation_id: Optional[str] = None,
        credit_balance_id: Optional[str] = None,
        source: AllocationSource = AllocationSource.PAYMENT,
    ) -> AllocationRecord:
        """Stage an allocation record in the current transaction."""
        record = AllocationRecord(
            payment_intent_id=payment_intent_id,
            fee_obligation_id=fee_obligation_id,
            credit_balance_id=credit_balance_id,
            amount_allocated=amount,
            source=source,
        )
        self.db.add(record)
        return record

    def list_for_intent(
        self, payment_intent_id: str, source: Optional[AllocationSource] = AllocationSource.PAYMENT
    ) -> List[AllocationRecord]:
        stmt = select(AllocationRecord).where(AllocationRecord.payment_intent_id == payment_intent_id)
        if source is not None:
            stmt = stmt.where(AllocationRecord.source == source)
        stmt = stmt.order_by(AllocationRecord.created_at)
        return list(self.db.execute(stmt).scalars().all())
