"""
Manual rail: deposits, cheques and cash captured by a cashier.
"""

from typing import Any, Dict

from fee_settlement.core.exceptions import InvalidPayloadError, InvalidStateTransition
from fee_settlement.models.payment.payment_intent import PaymentIntent
from fee_settlement.schemas.common.enums import GatewayKind, NotificationChannel
from fee_settlement.schemas.payment.payment_request import PaymentInitiateRequest
from fee_settlement.schemas.payment.settlement import SettlementEvent
from fee_settlement.services.gateway.base_adapter import GatewayAdapter, InitiationResult


class ManualAdapter(GatewayAdapter):
    """No outbound call and no notifications; payments are recorded directly."""

    kind = GatewayKind.MANUAL

    def initiate(self, intent: PaymentIntent, request: PaymentInitiateRequest) -> InitiationResult:
        raise InvalidStateTransition("Manual payments are recorded, not initiated")

    def parse_notification(self, payload: Any, channel: NotificationChannel) -> SettlementEvent:
        raise InvalidPayloadError("The manual rail does not receive notifications", gateway=self.name)

    def acknowledge(self, success: bool, message: str) -> Dict[str, Any]:
        return {"success": success, "message": message}
