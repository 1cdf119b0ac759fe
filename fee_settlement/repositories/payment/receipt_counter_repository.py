"""
Receipt Counter Repository.

Atomic per-day sequence backing receipt numbers.
"""

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fee_settlement.core.exceptions import RepositoryError
from fee_settlement.models.payment.receipt_counter import ReceiptCounter
from fee_settlement.repositories.base.base_repository import BaseRepository


class ReceiptCounterRepository(BaseRepository[ReceiptCounter]):
    """Repository for the receipt sequence."""

    def __init__(self, db: Session):
        super().__init__(ReceiptCounter, db)

    def next_value(self, day: str, max_attempts: int = 3) -> int:
        """
        Increment and return the counter for ``day``, committing the increment.

        The increment is a single conditional UPDATE so concurrent callers
        never observe the same value. The first caller of the day inserts the
        row; a caller losing that insert race retries the UPDATE.
        """
        for _ in range(max_attempts):
            result = self.db.execute(
                update(ReceiptCounter)
                .where(ReceiptCounter.day == day)
                .values(last_value=ReceiptCounter.last_value + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                value = self.db.execute(
                    select(ReceiptCounter.last_value).where(ReceiptCounter.day == day)
                ).scalar_one()
                self.commit()
                return int(value)

            try:
                self.db.add(ReceiptCounter(day=day, last_value=1))
                self.db.commit()
                return 1
            except IntegrityError:
                self.db.rollback()

        raise RepositoryError(f"Could not allocate receipt number for {day}", table="receipt_counters")
