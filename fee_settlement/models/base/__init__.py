from fee_settlement.models.base.base_model import BaseModel, TimestampModel, enum_column, utcnow

__all__ = ["BaseModel", "TimestampModel", "enum_column", "utcnow"]
