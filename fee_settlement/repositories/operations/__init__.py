from fee_settlement.repositories.operations.operator_alert_repository import OperatorAlertRepository

__all__ = ["OperatorAlertRepository"]
