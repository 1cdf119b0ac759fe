from fee_settlement.repositories.fee.fee_obligation_repository import FeeObligationRepository

__all__ = ["FeeObligationRepository"]
