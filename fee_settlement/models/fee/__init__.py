from fee_settlement.models.fee.fee_obligation import FeeObligation

__all__ = ["FeeObligation"]
