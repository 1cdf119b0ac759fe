"""Tests for the per-rail gateway adapters and the adapter registry."""

import base64
import hashlib
from decimal import Decimal

import httpx
import pytest

from fee_settlement.core.exceptions import (
    ConfigurationError,
    GatewayRejected,
    GatewayUnavailable,
    InvalidPayloadError,
    InvalidStateTransition,
    ValidationError,
)
from fee_settlement.models.payment.payment_intent import PaymentIntent
from fee_settlement.schemas.common.enums import (
    CorrelationKind,
    GatewayKind,
    NotificationChannel,
    PaymentStatus,
    SettlementOutcome,
)
from fee_settlement.schemas.payment.payment_request import PaymentInitiateRequest
from fee_settlement.services.gateway.adapter_registry import AdapterRegistry
from fee_settlement.services.gateway.jenga_adapter import PUSH_PATH, JengaPushAdapter
from fee_settlement.services.gateway.mpesa_adapter import STK_PUSH_PATH

from tests.conftest import STUDENT_ID
from tests.payloads import jenga_callback, jenga_ipn, stk_callback

DARAJA_TOKEN_PATH = "/oauth/v1/generate"
JENGA_TOKEN_PATH = "/authentication/api/v3/authenticate/merchant"


def make_intent(gateway_kind, amount="1500.00", order_reference="EQ-ADM2026001-1760873415000-A1B2"):
    return PaymentIntent(
        id="pi-0001",
        gateway_kind=gateway_kind,
        order_reference=order_reference,
        student_id=STUDENT_ID,
        amount=Decimal(amount),
        currency="KES",
        payer_contact="254712345678",
        status=PaymentStatus.PENDING,
    )


def make_request(gateway_kind, amount="1500"):
    return PaymentInitiateRequest(
        student_id=STUDENT_ID,
        student_code="ADM2026001",
        gateway_kind=gateway_kind,
        amount=Decimal(amount),
        payer_phone="0712345678",
        payer_email="jane@example.com",
        payer_first_name="Jane",
        payer_last_name="Wanjiku",
    )


class TestMpesaExpressAdapter:
    @pytest.fixture
    def adapter(self, registry):
        return registry.get(GatewayKind.PUSH_MOBILE_MONEY)

    def test_initiate_sends_signed_stk_push(self, adapter, fake_gateway):
        intent = make_intent(GatewayKind.PUSH_MOBILE_MONEY)

        result = adapter.initiate(intent, make_request(GatewayKind.PUSH_MOBILE_MONEY))

        sent = fake_gateway.json_sent_to(STK_PUSH_PATH)
        assert sent["Amount"] == 1500
        assert sent["PhoneNumber"] == "254712345678"
        assert sent["AccountReference"] == "ADM2026001"
        assert sent["CallBackURL"] == "https://fees.school.test/api/v1/payments/mpesa/callback/pi-0001"
        password = base64.b64decode(sent["Password"]).decode()
        assert password == f"174379daraja-passkey{sent['Timestamp']}"
        assert fake_gateway.requests_to(STK_PUSH_PATH)[0].headers["Authorization"] == "Bearer daraja-token"

        assert result.correlation == {
            CorrelationKind.CHECKOUT_REQUEST_ID: "ws_CO_191020261430151234",
            CorrelationKind.MERCHANT_REQUEST_ID: "29115-34620561-1",
        }
        assert adapter.moves_to_processing

    def test_non_zero_response_code_is_rejected(self, adapter, fake_gateway):
        fake_gateway.add(
            "POST", STK_PUSH_PATH, (200, {"ResponseCode": "1", "ResponseDescription": "Invalid Access Token"})
        )

        with pytest.raises(GatewayRejected) as exc:
            adapter.initiate(make_intent(GatewayKind.PUSH_MOBILE_MONEY), make_request(GatewayKind.PUSH_MOBILE_MONEY))
        assert exc.value.message == "Invalid Access Token"

    def test_unauthorized_call_refreshes_token_once(self, adapter, fake_gateway):
        fake_gateway.add(
            "POST",
            STK_PUSH_PATH,
            (401, {"errorMessage": "Invalid Access Token"}),
            (200, {"ResponseCode": "0", "CheckoutRequestID": "ws_CO_2", "MerchantRequestID": "MR-2"}),
        )

        result = adapter.initiate(make_intent(GatewayKind.PUSH_MOBILE_MONEY), make_request(GatewayKind.PUSH_MOBILE_MONEY))

        assert result.provider_reference == "ws_CO_2"
        assert len(fake_gateway.requests_to(DARAJA_TOKEN_PATH)) == 2

    def test_server_error_is_unavailable(self, adapter, fake_gateway):
        fake_gateway.add("POST", STK_PUSH_PATH, (503, {"message": "Service unavailable"}))

        with pytest.raises(GatewayUnavailable):
            adapter.initiate(make_intent(GatewayKind.PUSH_MOBILE_MONEY), make_request(GatewayKind.PUSH_MOBILE_MONEY))

    def test_timeout_is_unavailable(self, adapter, fake_gateway):
        fake_gateway.add("POST", STK_PUSH_PATH, httpx.ReadTimeout("timed out"))

        with pytest.raises(GatewayUnavailable):
            adapter.initiate(make_intent(GatewayKind.PUSH_MOBILE_MONEY), make_request(GatewayKind.PUSH_MOBILE_MONEY))

    def test_fractional_amounts_are_refused(self, adapter):
        with pytest.raises(ValidationError):
            adapter.validate_amount(Decimal("1500.50"))
        adapter.validate_amount(Decimal("1500.00"))

    def test_parse_successful_callback(self, adapter):
        event = adapter.parse_notification(stk_callback("ws_CO_1", amount=1500), NotificationChannel.CALLBACK)

        assert event.outcome == SettlementOutcome.SUCCESS
        assert event.confirmed_amount == Decimal("1500.00")
        assert event.correlation_keys == {
            CorrelationKind.CHECKOUT_REQUEST_ID: "ws_CO_1",
            CorrelationKind.MERCHANT_REQUEST_ID: "29115-34620561-1",
            CorrelationKind.RECEIPT_NUMBER: "QKX1A2B3C4",
        }
        assert event.provider_receipt == "QKX1A2B3C4"
        assert event.payer_contact == "254712345678"
        assert event.external_timestamp.hour == 14

    def test_parse_cancelled_callback(self, adapter):
        event = adapter.parse_notification(stk_callback("ws_CO_1", result_code=1032), NotificationChannel.CALLBACK)

        assert event.outcome == SettlementOutcome.FAILURE
        assert event.failure_reason == "Cancelled by user"
        assert event.confirmed_amount is None

    def test_negative_amount_is_an_invalid_payload(self, adapter):
        with pytest.raises(InvalidPayloadError):
            adapter.parse_notification(stk_callback("ws_CO_1", amount=-500), NotificationChannel.CALLBACK)

    @pytest.mark.parametrize(
        "payload",
        [
            None,
            "ResultCode=0",
            {},
            {"Body": {}},
            {"Body": {"stkCallback": {"CheckoutRequestID": "ws_CO_1"}}},
            {"Body": {"stkCallback": {"ResultCode": "zero"}}},
        ],
    )
    def test_structurally_invalid_payloads(self, adapter, payload):
        with pytest.raises(InvalidPayloadError):
            adapter.parse_notification(payload, NotificationChannel.CALLBACK)

    def test_acknowledge_shape(self, adapter):
        assert adapter.acknowledge(True, "ok") == {"ResultCode": 0, "ResultDesc": "ok"}
        assert adapter.acknowledge(False, "bad") == {"ResultCode": 1, "ResultDesc": "bad"}


class TestJengaCheckoutAdapter:
    @pytest.fixture
    def adapter(self, registry):
        return registry.get(GatewayKind.BANK_CHECKOUT)

    def test_initiate_returns_signed_form(self, adapter, fake_gateway):
        intent = make_intent(GatewayKind.BANK_CHECKOUT)

        result = adapter.initiate(intent, make_request(GatewayKind.BANK_CHECKOUT))

        form = result.checkout_payload
        assert result.redirect_url == "https://checkout.gateway.test/processPayment"
        assert form["token"] == "jenga-token"
        assert form["orderAmount"] == "1500"
        assert form["extraData"] == "pi-0001"
        assert form["customerPhone"] == "254712345678"
        assert form["callbackUrl"] == "https://fees.school.test/api/v1/payments/jenga/callback/pi-0001"
        expected = hashlib.sha256(
            f"JM-0042{intent.order_reference}KES1500{form['callbackUrl']}".encode()
        ).hexdigest()
        assert form["signature"] == expected
        # No outbound call besides the token exchange
        assert {r.url.path for r in fake_gateway.requests} == {JENGA_TOKEN_PATH}
        assert "token" not in result.raw_response

    def test_parse_callback(self, adapter):
        payload = jenga_callback("EQ-REF-1", transaction_ref="EQ-TX-9", extra_data="pi-0001")

        event = adapter.parse_notification(payload, NotificationChannel.CALLBACK)

        assert event.outcome == SettlementOutcome.SUCCESS
        assert event.intent_hint == "pi-0001"
        assert event.confirmed_amount == Decimal("1500.00")
        assert event.correlation_keys == {
            CorrelationKind.TRANSACTION_REFERENCE: "EQ-TX-9",
            CorrelationKind.ORDER_REFERENCE: "EQ-REF-1",
        }

    def test_parse_failed_callback(self, adapter):
        event = adapter.parse_notification(jenga_callback("EQ-REF-1", status="FAILED"), NotificationChannel.CALLBACK)

        assert event.outcome == SettlementOutcome.FAILURE
        assert event.failure_reason == "Insufficient funds"

    def test_status_is_case_insensitive(self, adapter):
        event = adapter.parse_notification(jenga_callback("EQ-REF-1", status="completed"), NotificationChannel.CALLBACK)
        assert event.is_success

    def test_parse_ipn(self, adapter):
        event = adapter.parse_notification(jenga_ipn("EQ-REF-1", bill_number="BILL-7"), NotificationChannel.IPN)

        assert event.outcome == SettlementOutcome.SUCCESS
        assert event.correlation_keys == {
            CorrelationKind.ORDER_REFERENCE: "EQ-REF-1",
            CorrelationKind.BILL_NUMBER: "BILL-7",
        }
        assert event.metadata["payment_mode"] == "CARD"

    @pytest.mark.parametrize(
        "payload, channel",
        [
            ({"status": "SUCCESS"}, NotificationChannel.CALLBACK),
            ({"reference": "EQ-REF-1"}, NotificationChannel.CALLBACK),
            ({"reference": "EQ-REF-1", "status": "SUCCESS"}, NotificationChannel.IPN),
            ({"transaction": {"status": "SUCCESS"}}, NotificationChannel.IPN),
            (["not", "a", "mapping"], NotificationChannel.CALLBACK),
        ],
    )
    def test_structurally_invalid_payloads(self, adapter, payload, channel):
        with pytest.raises(InvalidPayloadError):
            adapter.parse_notification(payload, channel)

    @pytest.mark.parametrize("status", ["PENDING", "processing", "AWAITING_PAYMENT"])
    def test_in_flight_status_is_not_final(self, adapter, status):
        event = adapter.parse_notification(jenga_ipn("EQ-REF-1", status=status), NotificationChannel.IPN)

        assert event.outcome == SettlementOutcome.IN_PROGRESS
        assert not event.is_final
        assert event.failure_reason is None
        assert event.confirmed_amount is None

    @pytest.mark.parametrize("status", ["FAILED", "Cancelled", "DECLINED"])
    def test_explicit_failure_statuses(self, adapter, status):
        event = adapter.parse_notification(jenga_ipn("EQ-REF-1", status=status), NotificationChannel.IPN)

        assert event.outcome == SettlementOutcome.FAILURE
        assert event.failure_reason == "Card payment"

    def test_negative_amount_is_an_invalid_payload(self, adapter):
        with pytest.raises(InvalidPayloadError) as exc:
            adapter.parse_notification(jenga_callback("EQ-REF-1", amount="-5"), NotificationChannel.CALLBACK)

        assert "confirmed_amount" in exc.value.message

    def test_acknowledge_shape(self, adapter):
        assert adapter.acknowledge(True, "IPN processed successfully") == {
            "success": True,
            "message": "IPN processed successfully",
        }


class TestJengaPushAdapter:
    @pytest.fixture
    def adapter(self, registry):
        return registry.get(GatewayKind.BANK_PUSH_USSD)

    def test_initiate_posts_signed_push(self, adapter, fake_gateway):
        intent = make_intent(GatewayKind.BANK_PUSH_USSD, order_reference="EQP-ADM2026001-1760873415000-A1B2")

        result = adapter.initiate(intent, make_request(GatewayKind.BANK_PUSH_USSD))

        request = fake_gateway.requests_to(PUSH_PATH)[0]
        sent = fake_gateway.json_sent_to(PUSH_PATH)
        assert sent["merchant"]["accountNumber"] == "1100194977404"
        assert sent["payment"]["telco"] == "Safaricom"
        assert sent["payment"]["amount"] == "1500"
        assert sent["payment"]["callBackUrl"].endswith("/jenga-push/callback/pi-0001")
        assert request.headers["Signature"] == adapter.signer.sign(
            GatewayKind.BANK_PUSH_USSD, adapter.signature_fields(sent)
        )
        assert request.headers["Authorization"] == "Bearer jenga-token"
        assert result.correlation == {CorrelationKind.TRANSACTION_REFERENCE: "EQP-TX-0001"}

    def test_status_false_is_rejected(self, adapter, fake_gateway):
        fake_gateway.add("POST", PUSH_PATH, (200, {"status": False, "code": 400, "message": "Invalid msisdn"}))

        with pytest.raises(GatewayRejected) as exc:
            adapter.initiate(make_intent(GatewayKind.BANK_PUSH_USSD), make_request(GatewayKind.BANK_PUSH_USSD))
        assert exc.value.message == "Invalid msisdn"

    def test_client_error_is_rejected(self, adapter, fake_gateway):
        fake_gateway.add("POST", PUSH_PATH, (400, {"message": "Bad signature"}))

        with pytest.raises(GatewayRejected):
            adapter.initiate(make_intent(GatewayKind.BANK_PUSH_USSD), make_request(GatewayKind.BANK_PUSH_USSD))

    @pytest.mark.parametrize(
        "msisdn, telco",
        [("254712345678", "Safaricom"), ("254733123456", "Airtel"), ("254101234567", "Airtel")],
    )
    def test_telco_for(self, msisdn, telco):
        assert JengaPushAdapter.telco_for(msisdn) == telco


class TestManualAdapter:
    def test_manual_rail_is_not_initiated(self, registry):
        adapter = registry.get(GatewayKind.MANUAL)

        with pytest.raises(InvalidStateTransition):
            adapter.initiate(make_intent(GatewayKind.MANUAL), None)
        with pytest.raises(InvalidPayloadError):
            adapter.parse_notification({}, NotificationChannel.CALLBACK)


class TestAdapterRegistry:
    def test_build_registers_every_rail(self, registry):
        assert set(registry.kinds()) == set(GatewayKind)
        assert registry.get(GatewayKind.MANUAL).credentials is None
        assert registry.get(GatewayKind.BANK_CHECKOUT).credentials is not None

    def test_adapters_share_one_signer(self, registry):
        signers = {id(registry.get(kind).signer) for kind in registry.kinds()}
        assert len(signers) == 1

    def test_unknown_kind_raises(self):
        with pytest.raises(ConfigurationError):
            AdapterRegistry().get(GatewayKind.PUSH_MOBILE_MONEY)
        assert GatewayKind.PUSH_MOBILE_MONEY not in AdapterRegistry()
