"""
Receipt counter model.

One row per calendar day, incremented atomically to number receipts.
"""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from fee_settlement.db.base import Base


class ReceiptCounter(Base):
    """Per-day receipt sequence."""

    __tablename__ = "receipt_counters"

    day: Mapped[str] = mapped_column(
        String(8),
        primary_key=True,
        comment="YYYYMMDD",
    )
    last_value: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    def __repr__(self) -> str:
        return f"<ReceiptCounter(day={self.day}, last_value={self.last_value})>"
