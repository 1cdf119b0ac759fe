"""
M-Pesa Express (Daraja STK push) adapter.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from fee_settlement.core.exceptions import GatewayRejected, InvalidPayloadError, ValidationError
from fee_settlement.core.logging import get_logger
from fee_settlement.models.payment.payment_intent import PaymentIntent
from fee_settlement.schemas.common.enums import (
    CorrelationKind,
    GatewayKind,
    NotificationChannel,
    SettlementOutcome,
)
from fee_settlement.schemas.payment.payment_request import PaymentInitiateRequest
from fee_settlement.schemas.payment.settlement import SettlementEvent
from fee_settlement.services.gateway.base_adapter import GatewayAdapter, InitiationResult
from fee_settlement.utils.validators import AmountValidator

logger = get_logger(__name__)

STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"

# Daraja timestamps are East Africa Time
EAT = timezone(timedelta(hours=3))

RESULT_MESSAGES = {
    1032: "Cancelled by user",
    1037: "No response from user",
}


class MpesaExpressAdapter(GatewayAdapter):
    """STK push to the payer's phone, result delivered on the callback URL."""

    kind = GatewayKind.PUSH_MOBILE_MONEY
    moves_to_processing = True

    def validate_amount(self, amount: Decimal) -> None:
        if amount != amount.to_integral_value():
            raise ValidationError(
                "M-Pesa amounts must be whole shillings",
                field_errors={"amount": ["must be a whole number"]},
            )

    def timestamp(self, now: Optional[datetime] = None) -> str:
        return (now or datetime.now(EAT)).astimezone(EAT).strftime("%Y%m%d%H%M%S")

    def build_payload(self, intent: PaymentIntent, request: PaymentInitiateRequest, timestamp: str) -> Dict[str, Any]:
        shortcode = self.config.merchant_code
        account_reference = (request.student_code or intent.order_reference)[:12]
        return {
            "BusinessShortCode": shortcode,
            "Password": self.signer.mpesa_password(shortcode, timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(intent.amount),
            "PartyA": intent.payer_contact,
            "PartyB": shortcode,
            "PhoneNumber": intent.payer_contact,
            "CallBackURL": self.config.callback_for(intent.id),
            "AccountReference": account_reference,
            "TransactionDesc": (intent.description or f"Fee payment {account_reference}")[:100],
        }

    def initiate(self, intent: PaymentIntent, request: PaymentInitiateRequest) -> InitiationResult:
        payload = self.build_payload(intent, request, self.timestamp())
        data = self.call_gateway("POST", f"{self.config.base_url}{STK_PUSH_PATH}", json=payload)

        if str(data.get("ResponseCode", "")) != "0":
            message = self.error_message(data) or "STK push was not accepted"
            raise GatewayRejected(message, gateway_name=self.name, gateway_error_code=str(data.get("ResponseCode")))

        correlation = {
            CorrelationKind.CHECKOUT_REQUEST_ID: data.get("CheckoutRequestID"),
            CorrelationKind.MERCHANT_REQUEST_ID: data.get("MerchantRequestID"),
        }
        logger.info(
            "STK push accepted",
            extra={"payment_id": intent.id, "checkout_request_id": data.get("CheckoutRequestID")},
        )
        return InitiationResult(
            provider_reference=data.get("CheckoutRequestID"),
            correlation={k: v for k, v in correlation.items() if v},
            customer_message=data.get("CustomerMessage")
            or "Payment initiated. Please complete the payment on your phone",
            raw_response=data,
        )

    # ==================== Notifications ====================

    def parse_notification(self, payload: Any, channel: NotificationChannel) -> SettlementEvent:
        body = self.require_mapping(payload).get("Body")
        callback = body.get("stkCallback") if isinstance(body, dict) else None
        if not isinstance(callback, dict):
            raise InvalidPayloadError("Missing Body.stkCallback", gateway=self.name)

        try:
            result_code = int(callback.get("ResultCode"))
        except (TypeError, ValueError):
            raise InvalidPayloadError("Missing or invalid ResultCode", gateway=self.name)

        metadata = self._metadata(callback.get("CallbackMetadata"))
        receipt = metadata.get("MpesaReceiptNumber")
        correlation = {
            CorrelationKind.CHECKOUT_REQUEST_ID: callback.get("CheckoutRequestID"),
            CorrelationKind.MERCHANT_REQUEST_ID: callback.get("MerchantRequestID"),
            CorrelationKind.RECEIPT_NUMBER: receipt,
        }

        success = result_code == 0
        return self.build_event(
            outcome=SettlementOutcome.SUCCESS if success else SettlementOutcome.FAILURE,
            correlation_keys={k: str(v) for k, v in correlation.items() if v},
            confirmed_amount=AmountValidator.parse(metadata.get("Amount")) if success else None,
            external_timestamp=self._parse_timestamp(metadata.get("TransactionDate")),
            failure_reason=None if success else RESULT_MESSAGES.get(result_code, callback.get("ResultDesc")),
            provider_receipt=str(receipt) if receipt else None,
            payer_contact=str(metadata["PhoneNumber"]) if metadata.get("PhoneNumber") else None,
            metadata={"result_code": result_code, "result_desc": callback.get("ResultDesc")},
        )

    def acknowledge(self, success: bool, message: str) -> Dict[str, Any]:
        return {"ResultCode": 0 if success else 1, "ResultDesc": message}

    @staticmethod
    def _metadata(raw: Any) -> Dict[str, Any]:
        items = raw.get("Item", []) if isinstance(raw, dict) else []
        return {
            item["Name"]: item.get("Value")
            for item in items
            if isinstance(item, dict) and "Name" in item
        }

    @staticmethod
    def _parse_timestamp(value: Any) -> Optional[datetime]:
        if not value:
            return None
        try:
            return datetime.strptime(str(value), "%Y%m%d%H%M%S").replace(tzinfo=EAT)
        except ValueError:
            return None
