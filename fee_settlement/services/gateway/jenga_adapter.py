"""
Equity Bank (Jenga) adapters.

Two rails share the Jenga merchant credentials and notification shapes:

- ``JengaCheckoutAdapter``: signed checkout form the payer is redirected to
- ``JengaPushAdapter``: STK/USSD push initiated server side

Notifications arrive either on the per-payment callback URL
(``{reference, transactionRef, status, amount, ...}``) or on the IPN
endpoint (``{transaction: {...}, customer: {...}, bank: {...}}``).
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from fee_settlement.core.exceptions import GatewayRejected, InvalidPayloadError
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
from fee_settlement.services.gateway.signature_engine import format_amount
from fee_settlement.utils.validators import AmountValidator

logger = get_logger(__name__)

PUSH_PATH = "/v3-apis/payment-api/v3.0/stkussdpush/initiate"
SUCCESS_STATUSES = {"SUCCESS", "COMPLETED"}
FAILURE_STATUSES = {"FAILED", "FAILURE", "CANCELLED", "DECLINED", "REJECTED", "EXPIRED"}

# Airtel Kenya ranges; everything else is pushed through Safaricom
AIRTEL_PREFIXES = ("25473", "25475", "25478", "25410")


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class JengaNotificationMixin:
    """Callback / IPN parsing and acknowledgement shared by the Jenga rails."""

    def parse_notification(self, payload: Any, channel: NotificationChannel) -> SettlementEvent:
        data = self.require_mapping(payload)
        if isinstance(data.get("transaction"), dict):
            return self._parse_ipn(data)
        if channel == NotificationChannel.IPN:
            raise InvalidPayloadError("Missing transaction block", gateway=self.name)
        return self._parse_callback(data)

    def acknowledge(self, success: bool, message: str) -> Dict[str, Any]:
        return {"success": success, "message": message}

    def _event(
        self,
        status: Any,
        correlation: Dict[CorrelationKind, Any],
        amount: Any,
        timestamp: Any,
        reason: Any,
        hint: Any = None,
        payer: Any = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SettlementEvent:
        outcome = self.outcome_for(status)
        success = outcome == SettlementOutcome.SUCCESS
        return self.build_event(
            outcome=outcome,
            correlation_keys={k: str(v) for k, v in correlation.items() if v},
            intent_hint=str(hint) if hint else None,
            confirmed_amount=AmountValidator.parse(amount) if success else None,
            external_timestamp=_parse_datetime(timestamp),
            failure_reason=(
                str(reason or f"Payment {str(status).lower()}") if outcome == SettlementOutcome.FAILURE else None
            ),
            provider_receipt=self._receipt(correlation),
            payer_contact=str(payer) if payer else None,
            metadata=metadata or {},
        )

    @staticmethod
    def outcome_for(status: Any) -> SettlementOutcome:
        """Pending or processing statuses are in flight and do not settle the payment."""
        normalized = str(status).upper()
        if normalized in SUCCESS_STATUSES:
            return SettlementOutcome.SUCCESS
        if normalized in FAILURE_STATUSES:
            return SettlementOutcome.FAILURE
        return SettlementOutcome.IN_PROGRESS

    @staticmethod
    def _receipt(correlation: Dict[CorrelationKind, Any]) -> Optional[str]:
        value = correlation.get(CorrelationKind.TRANSACTION_REFERENCE) or correlation.get(CorrelationKind.BILL_NUMBER)
        return str(value) if value else None

    def _parse_callback(self, data: Dict[str, Any]) -> SettlementEvent:
        if data.get("status") in (None, ""):
            raise InvalidPayloadError("Missing status", gateway=self.name)
        if not (data.get("reference") or data.get("transactionRef") or data.get("orderReference")):
            raise InvalidPayloadError("Missing payment reference", gateway=self.name)

        return self._event(
            status=data.get("status"),
            correlation={
                CorrelationKind.TRANSACTION_REFERENCE: data.get("transactionRef"),
                CorrelationKind.ORDER_REFERENCE: data.get("reference") or data.get("orderReference"),
            },
            amount=data.get("amount"),
            timestamp=data.get("transactionDate") or data.get("date"),
            reason=data.get("description") or data.get("message"),
            hint=data.get("extraData"),
            payer=data.get("mobileNumber") or data.get("msisdn"),
            metadata={"status": data.get("status")},
        )

    def _parse_ipn(self, data: Dict[str, Any]) -> SettlementEvent:
        transaction = data["transaction"]
        if transaction.get("status") in (None, "") or not transaction.get("reference"):
            raise InvalidPayloadError("Transaction status and reference are required", gateway=self.name)

        customer = data.get("customer") if isinstance(data.get("customer"), dict) else {}
        return self._event(
            status=transaction.get("status"),
            correlation={
                CorrelationKind.ORDER_REFERENCE: transaction.get("reference"),
                CorrelationKind.BILL_NUMBER: transaction.get("billNumber"),
            },
            amount=transaction.get("amount"),
            timestamp=transaction.get("date"),
            reason=transaction.get("remarks"),
            hint=transaction.get("additionalInfo") if isinstance(transaction.get("additionalInfo"), str) else None,
            payer=customer.get("mobileNumber"),
            metadata={
                "status": transaction.get("status"),
                "payment_mode": transaction.get("paymentMode"),
                "service_charge": transaction.get("serviceCharge"),
            },
        )


class JengaCheckoutAdapter(JengaNotificationMixin, GatewayAdapter):
    """
    Hosted checkout.

    No outbound call besides the token exchange: the signed form is
    returned to the client, which posts it to the checkout URL.
    """

    kind = GatewayKind.BANK_CHECKOUT

    def initiate(self, intent: PaymentIntent, request: PaymentInitiateRequest) -> InitiationResult:
        token = self.credentials.get_token(self.kind) if self.credentials else None
        student_code = request.student_code or intent.student_id
        phone = self.format_msisdn(request.payer_phone) if request.payer_phone else None

        form = {
            "token": token,
            "merchantCode": self.config.merchant_code,
            "currency": intent.currency,
            "orderAmount": format_amount(intent.amount),
            "orderReference": intent.order_reference,
            "productType": "Service",
            "productDescription": intent.description or f"Fee payment for {student_code}",
            "extraData": intent.id,
            "paymentTimeLimit": "15mins",
            "customerFirstName": request.payer_first_name,
            "customerLastName": request.payer_last_name,
            "customerPostalCodeZip": "00100",
            "customerAddress": "Nairobi, Kenya",
            "customerEmail": request.payer_email,
            "customerPhone": phone,
            "callbackUrl": self.config.callback_for(intent.id),
            "countryCode": self.config.country_code,
            "secondaryReference": student_code,
        }
        form["signature"] = self.signer.sign_checkout(form)

        return InitiationResult(
            provider_reference=intent.order_reference,
            correlation={},
            redirect_url=self.config.checkout_url,
            checkout_payload=form,
            customer_message="Equity payment initiated. Redirecting to payment gateway...",
            raw_response={"checkout_url": self.config.checkout_url, "order_reference": intent.order_reference},
        )


class JengaPushAdapter(JengaNotificationMixin, GatewayAdapter):
    """STK/USSD push through Jenga; the payer confirms on the handset."""

    kind = GatewayKind.BANK_PUSH_USSD
    moves_to_processing = True

    @staticmethod
    def telco_for(msisdn: str) -> str:
        return "Airtel" if msisdn.startswith(AIRTEL_PREFIXES) else "Safaricom"

    def build_payload(self, intent: PaymentIntent, today: Optional[date] = None) -> Dict[str, Any]:
        return {
            "merchant": {
                "accountNumber": self.config.account_number,
                "countryCode": self.config.country_code,
                "name": self.config.merchant_name,
            },
            "payment": {
                "ref": intent.order_reference,
                "amount": format_amount(intent.amount),
                "currency": intent.currency,
                "telco": self.telco_for(intent.payer_contact or ""),
                "mobileNumber": intent.payer_contact,
                "date": (today or date.today()).isoformat(),
                "callBackUrl": self.config.callback_for(intent.id),
                "pushType": "USSD",
            },
        }

    def signature_fields(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        payment = payload["payment"]
        return {
            "accountNumber": payload["merchant"]["accountNumber"],
            "ref": payment["ref"],
            "orderReference": payment["ref"],
            "mobileNumber": payment["mobileNumber"],
            "msisdn": payment["mobileNumber"],
            "telco": payment["telco"],
            "amount": payment["amount"],
            "currency": payment["currency"],
        }

    def initiate(self, intent: PaymentIntent, request: PaymentInitiateRequest) -> InitiationResult:
        payload = self.build_payload(intent)
        signature = self.signer.sign(self.kind, self.signature_fields(payload))
        data = self.call_gateway(
            "POST",
            f"{self.config.base_url}{PUSH_PATH}",
            json=payload,
            headers={
                "Merchant-Code": self.config.merchant_code or "",
                "Api-Key": self.config.api_key or "",
                "Signature": signature,
            },
        )

        if data.get("status") is False:
            raise GatewayRejected(
                self.error_message(data) or "Push request was not accepted",
                gateway_name=self.name,
                gateway_error_code=str(data.get("code")) if data.get("code") is not None else None,
            )

        transaction_ref = data.get("transactionRef") or data.get("reference")
        logger.info(
            "Jenga push accepted",
            extra={"payment_id": intent.id, "transaction_ref": transaction_ref},
        )
        return InitiationResult(
            provider_reference=transaction_ref,
            correlation={CorrelationKind.TRANSACTION_REFERENCE: transaction_ref} if transaction_ref else {},
            customer_message=data.get("message") or "Payment initiated. Please complete the payment on your phone",
            raw_response=data,
        )
