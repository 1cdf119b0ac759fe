from fee_settlement.models.operations.operator_alert import OperatorAlert

__all__ = ["OperatorAlert"]
