"""
Base schema classes with common fields and configurations.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "BaseSchema",
    "BaseResponseSchema",
    "AmountMixin",
    "quantize_amount",
]


def quantize_amount(value: Decimal) -> Decimal:
    """Round a monetary value to two decimal places."""
    return Decimal(value).quantize(Decimal("0.01"))


class BaseSchema(BaseModel):
    """
    Base schema with common Pydantic configuration.

    All application-facing schemas inherit from this to get consistent
    ORM loading, enum handling and whitespace stripping.
    """

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=False,
        arbitrary_types_allowed=True,
        str_strip_whitespace=True,
        validate_assignment=True,
    )


class BaseResponseSchema(BaseSchema):
    """Response schema carrying the persisted id and timestamps."""

    id: str = Field(..., description="Unique identifier")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")


class AmountMixin(BaseModel):
    """Mixin validating a strictly positive, two-decimal amount."""

    amount: Decimal = Field(..., gt=0, description="Amount in the settlement currency")

    @field_validator("amount")
    @classmethod
    def round_amount(cls, v: Decimal) -> Decimal:
        return quantize_amount(v)
