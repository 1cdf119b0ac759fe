"""End-to-end payment flows through the settlement orchestrator."""

from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select

from fee_settlement.core.exceptions import (
    ConfigurationError,
    EntityAlreadyExistsError,
    GatewayRejected,
    GatewayUnavailable,
    InvalidStateTransition,
    RepositoryError,
    ValidationError,
)
from fee_settlement.models.fee.fee_obligation import FeeObligation
from fee_settlement.models.payment.payment_notification import PaymentNotification
from fee_settlement.schemas.common.enums import (
    AlertKind,
    AlertStatus,
    CorrelationKind,
    DispatchStatus,
    GatewayKind,
    NotificationChannel,
    PaymentStatus,
    ReconciliationStatus,
    VerificationStatus,
)
from fee_settlement.schemas.payment.payment_request import (
    ManualPaymentEvidence,
    ManualPaymentRequest,
    PaymentInitiateRequest,
)
from fee_settlement.services.gateway.adapter_registry import AdapterRegistry
from fee_settlement.services.payment.settlement_orchestrator import SWEEP_REASON, SettlementOrchestrator

from tests.conftest import OTHER_STUDENT_ID, STUDENT_ID
from tests.payloads import jenga_callback, jenga_ipn, stk_callback

STK_PATH = "/mpesa/stkpush/v1/processrequest"
CHECKOUT_REQUEST_ID = "ws_CO_191020261430151234"
MPESA = GatewayKind.PUSH_MOBILE_MONEY
CHECKOUT = GatewayKind.BANK_CHECKOUT


def mpesa_request(amount="500", **overrides):
    data = dict(
        student_id=STUDENT_ID,
        student_code="ADM2026001",
        gateway_kind=MPESA,
        amount=Decimal(amount),
        payer_phone="0712345678",
    )
    data.update(overrides)
    return PaymentInitiateRequest(**data)


def checkout_request(amount="500", **overrides):
    data = dict(
        student_id=STUDENT_ID,
        student_code="ADM2026001",
        gateway_kind=CHECKOUT,
        amount=Decimal(amount),
        payer_email="parent@example.com",
        payer_first_name="Jane",
        payer_last_name="Wanjiku",
    )
    data.update(overrides)
    return PaymentInitiateRequest(**data)


def manual_request(fee_id, amount="200", reference="DEP-2026-0001"):
    return ManualPaymentRequest(
        fee_id=fee_id,
        amount=Decimal(amount),
        evidence=ManualPaymentEvidence(
            payment_method="bank_deposit",
            reference_number=reference,
            bank_name="Equity Bank",
            depositor_name="Jane Wanjiku",
        ),
    )


def refresh(orchestrator, intent_id):
    orchestrator.db.expire_all()
    return orchestrator.get_payment(intent_id)


class TestInitiation:
    def test_mobile_money_push_moves_to_processing(self, orchestrator, obligations, fake_gateway):
        first, _ = obligations

        outcome = orchestrator.initiate_payment(mpesa_request(fee_id=first.id))

        intent = outcome.intent
        assert intent.status == PaymentStatus.PROCESSING
        assert intent.payer_contact == "254712345678"
        assert intent.gateway_correlation[CorrelationKind.CHECKOUT_REQUEST_ID.value] == CHECKOUT_REQUEST_ID
        assert outcome.customer_message == "Success. Request accepted for processing"
        assert outcome.redirect_url is None
        sent = fake_gateway.json_sent_to(STK_PATH)
        assert sent["Amount"] == 500
        assert sent["CallBackURL"].endswith(f"/mpesa/callback/{intent.id}")

    def test_checkout_returns_signed_form_and_stays_pending(self, orchestrator, obligations):
        first, _ = obligations

        outcome = orchestrator.initiate_payment(checkout_request(fee_id=first.id))

        assert outcome.intent.status == PaymentStatus.PENDING
        assert outcome.redirect_url == "https://checkout.gateway.test/processPayment"
        assert outcome.checkout_payload["orderReference"] == outcome.intent.order_reference
        assert outcome.checkout_payload["extraData"] == outcome.intent.id
        assert "signature" in outcome.checkout_payload
        assert "token" not in (outcome.intent.gateway_response or {})

    def test_amount_above_fee_balance_is_refused(self, orchestrator, obligations, fake_gateway):
        first, _ = obligations

        with pytest.raises(ValidationError):
            orchestrator.initiate_payment(mpesa_request(amount="501", fee_id=first.id))

        assert fake_gateway.requests_to(STK_PATH) == []
        assert orchestrator.intents.find_by_student(STUDENT_ID) == []

    def test_wallet_payment_limited_to_total_outstanding(self, orchestrator, obligations):
        with pytest.raises(ValidationError):
            orchestrator.initiate_payment(mpesa_request(amount="801"))

        outcome = orchestrator.initiate_payment(mpesa_request(amount="800"))
        assert outcome.intent.fee_id is None

    def test_fee_of_another_student_is_refused(self, orchestrator, make_obligation):
        foreign = make_obligation(student_id=OTHER_STUDENT_ID)

        with pytest.raises(ValidationError):
            orchestrator.initiate_payment(mpesa_request(fee_id=foreign.id))

    def test_disabled_gateway(self, db, gateway_configs, credentials, http_client, obligations):
        configs = dict(gateway_configs)
        configs[MPESA] = replace(configs[MPESA], enabled=False)
        registry = AdapterRegistry.build(configs, credentials=credentials, http_client=http_client)
        orchestrator = SettlementOrchestrator(db, registry, retry_backoff=0, sleep=lambda s: None)

        with pytest.raises(ConfigurationError):
            orchestrator.initiate_payment(mpesa_request())

    def test_rejection_fails_the_intent(self, orchestrator, obligations, fake_gateway, notifier):
        fake_gateway.add("POST", STK_PATH, (200, {"ResponseCode": "1", "errorMessage": "Invalid PhoneNumber"}))

        with pytest.raises(GatewayRejected):
            orchestrator.initiate_payment(mpesa_request())

        [intent] = orchestrator.intents.find_by_student(STUDENT_ID)
        assert intent.status == PaymentStatus.FAILED
        assert intent.failure_reason == "Invalid PhoneNumber"
        assert notifier.calls[-1]["status"] == PaymentStatus.FAILED
        assert len(fake_gateway.requests_to(STK_PATH)) == 1

    def test_transient_failure_is_retried(self, orchestrator, obligations, fake_gateway):
        accepted = fake_gateway.routes[("POST", STK_PATH)][0]
        fake_gateway.add("POST", STK_PATH, (503, {"message": "busy"}), accepted)

        outcome = orchestrator.initiate_payment(mpesa_request())

        assert outcome.intent.status == PaymentStatus.PROCESSING
        assert len(fake_gateway.requests_to(STK_PATH)) == 2

    def test_exhausted_retries_leave_the_intent_pending(self, orchestrator, obligations, fake_gateway, notifier):
        fake_gateway.add("POST", STK_PATH, httpx.ConnectError("connection refused"))

        with pytest.raises(GatewayUnavailable):
            orchestrator.initiate_payment(mpesa_request())

        assert len(fake_gateway.requests_to(STK_PATH)) == orchestrator.config.GATEWAY_MAX_RETRIES + 1
        [intent] = orchestrator.intents.find_by_student(STUDENT_ID)
        assert intent.status == PaymentStatus.PENDING
        assert notifier.calls == []

        assert orchestrator.sweep_stale_intents(older_than=timedelta(0)).payment_ids == [intent.id]


class TestNotifications:
    def test_callback_settles_payment(self, orchestrator, obligations, notifier):
        first, _ = obligations
        intent_id = orchestrator.initiate_payment(mpesa_request(fee_id=first.id)).intent.id

        ack = orchestrator.handle_notification(MPESA, stk_callback(CHECKOUT_REQUEST_ID, amount=500))

        assert ack.http_status == 200
        assert ack.body == {"ResultCode": 0, "ResultDesc": "Callback processed successfully"}
        assert ack.result.status == DispatchStatus.APPLIED
        intent = refresh(orchestrator, intent_id)
        assert intent.status == PaymentStatus.COMPLETED
        assert intent.verification_status == VerificationStatus.VERIFIED
        assert intent.reconciliation_status == ReconciliationStatus.RECONCILED
        assert intent.receipt_number.startswith("RCPT-MPS-")
        assert orchestrator.db.get(FeeObligation, first.id).balance == Decimal("0.00")
        assert notifier.calls == [
            {"user_id": STUDENT_ID, "payment_id": intent_id, "amount": Decimal("500.00"), "status": PaymentStatus.COMPLETED}
        ]

    def test_cancelled_push_fails_without_receipt(self, orchestrator, obligations, notifier):
        intent_id = orchestrator.initiate_payment(mpesa_request()).intent.id

        ack = orchestrator.handle_notification(MPESA, stk_callback(CHECKOUT_REQUEST_ID, result_code=1032))

        assert ack.http_status == 200
        intent = refresh(orchestrator, intent_id)
        assert intent.status == PaymentStatus.FAILED
        assert intent.failure_reason == "Cancelled by user"
        assert intent.receipt_number is None
        assert notifier.calls[-1]["status"] == PaymentStatus.FAILED

    def test_unmatched_callback_is_still_acknowledged(self, orchestrator):
        ack = orchestrator.handle_notification(MPESA, stk_callback("ws_CO_NOBODY"))

        assert ack.http_status == 200
        assert ack.body["ResultCode"] == 0
        assert ack.result.status == DispatchStatus.UNRESOLVED
        [alert] = orchestrator.list_alerts(kind=AlertKind.NOTIFICATION_UNRESOLVED)
        assert alert.id == ack.result.alert_id

    def test_structurally_invalid_payload(self, orchestrator):
        ack = orchestrator.handle_notification(MPESA, {"Body": {}})

        assert ack.http_status == 400
        assert ack.body == {"ResultCode": 1, "ResultDesc": "Missing Body.stkCallback"}
        [notification] = orchestrator.db.execute(select(PaymentNotification)).scalars().all()
        assert notification.dispatch_status == DispatchStatus.ERROR
        assert notification.payload == {"Body": {}}
        assert orchestrator.list_alerts() == []

    def test_confirmed_amount_is_allocated(self, orchestrator, obligations):
        first, _ = obligations
        intent_id = orchestrator.initiate_payment(mpesa_request(fee_id=first.id)).intent.id

        orchestrator.handle_notification(MPESA, stk_callback(CHECKOUT_REQUEST_ID, amount=450))

        intent = refresh(orchestrator, intent_id)
        assert intent.confirmed_amount == Decimal("450.00")
        assert orchestrator.db.get(FeeObligation, first.id).balance == Decimal("50.00")
        assert len(orchestrator.list_alerts(kind=AlertKind.AMOUNT_MISMATCH)) == 1

    def test_checkout_ipn_then_callback(self, orchestrator, obligations):
        first, _ = obligations
        intent = orchestrator.initiate_payment(checkout_request(fee_id=first.id)).intent
        reference = intent.order_reference

        ipn = orchestrator.handle_notification(
            CHECKOUT, jenga_ipn(reference, amount="500.00"), channel=NotificationChannel.IPN
        )
        callback = orchestrator.handle_notification(
            CHECKOUT, jenga_callback(reference, amount="500.00", extra_data=intent.id), url_hint_id=intent.id
        )

        assert ipn.body == {"success": True, "message": "IPN processed successfully"}
        assert ipn.result.status == DispatchStatus.APPLIED
        assert callback.result.status == DispatchStatus.DUPLICATE
        settled = refresh(orchestrator, intent.id)
        assert settled.receipt_number.startswith("RCPT-EQB-")
        assert orchestrator.db.get(FeeObligation, first.id).amount_paid == Decimal("500.00")

    def test_pending_ipn_does_not_settle_the_payment(self, orchestrator, obligations, notifier):
        first, _ = obligations
        intent = orchestrator.initiate_payment(checkout_request(fee_id=first.id)).intent
        reference = intent.order_reference

        pending = orchestrator.handle_notification(
            CHECKOUT, jenga_ipn(reference, status="PENDING", amount="500.00"), channel=NotificationChannel.IPN
        )

        assert pending.http_status == 200
        assert pending.result.status == DispatchStatus.RECORDED
        assert refresh(orchestrator, intent.id).status == PaymentStatus.PENDING
        assert notifier.calls == []

        success = orchestrator.handle_notification(
            CHECKOUT, jenga_ipn(reference, status="SUCCESS", amount="500.00"), channel=NotificationChannel.IPN
        )

        assert success.result.status == DispatchStatus.APPLIED
        settled = refresh(orchestrator, intent.id)
        assert settled.status == PaymentStatus.COMPLETED
        assert settled.reconciliation_status == ReconciliationStatus.RECONCILED
        assert orchestrator.db.get(FeeObligation, first.id).amount_paid == Decimal("500.00")
        trail = orchestrator.list_notifications(intent.id)
        assert sorted(n.dispatch_status for n in trail) == [DispatchStatus.APPLIED, DispatchStatus.RECORDED]

    def test_negative_amount_is_rejected_and_stored(self, orchestrator, obligations):
        payload = jenga_callback("EQ-X-1", amount="-5")

        ack = orchestrator.handle_notification(CHECKOUT, payload)

        assert ack.http_status == 400
        assert ack.body["success"] is False
        [notification] = orchestrator.db.execute(select(PaymentNotification)).scalars().all()
        assert notification.dispatch_status == DispatchStatus.ERROR
        assert notification.payload == payload

    def test_course_purchase_creates_enrollment(self, orchestrator, enrollment):
        intent_id = orchestrator.initiate_payment(mpesa_request(course_id="course-ml-101")).intent.id

        orchestrator.handle_notification(MPESA, stk_callback(CHECKOUT_REQUEST_ID, amount=500))

        intent = refresh(orchestrator, intent_id)
        assert intent.reconciliation_status == ReconciliationStatus.NOT_REQUIRED
        assert enrollment.calls == [(STUDENT_ID, "course-ml-101", intent_id)]


class TestManualPayments:
    def test_recorded_completed_but_unverified(self, orchestrator, obligations):
        first, _ = obligations

        intent = orchestrator.record_manual_payment(manual_request(first.id))

        assert intent.status == PaymentStatus.COMPLETED
        assert intent.verification_status == VerificationStatus.UNVERIFIED
        assert intent.reconciliation_status == ReconciliationStatus.RECONCILED
        assert intent.receipt_number.startswith("RCPT-MAN-")
        assert intent.manual_details["bank_name"] == "Equity Bank"
        assert orchestrator.db.get(FeeObligation, first.id).balance == Decimal("300.00")

    def test_receipt_failure_does_not_block_allocation(self, orchestrator, obligations, monkeypatch):
        first, _ = obligations

        def broken_counter(intent_id):
            raise RepositoryError("receipt counter unavailable")

        monkeypatch.setattr(orchestrator.receipts, "issue", broken_counter)

        intent = orchestrator.record_manual_payment(manual_request(first.id))

        assert intent.status == PaymentStatus.COMPLETED
        assert intent.receipt_number is None
        assert intent.reconciliation_status == ReconciliationStatus.RECONCILED
        assert orchestrator.db.get(FeeObligation, first.id).balance == Decimal("300.00")

    def test_duplicate_reference_number(self, orchestrator, obligations):
        first, _ = obligations
        orchestrator.record_manual_payment(manual_request(first.id))

        with pytest.raises(EntityAlreadyExistsError):
            orchestrator.record_manual_payment(manual_request(first.id))

    def test_verify(self, orchestrator, obligations):
        first, _ = obligations
        intent = orchestrator.record_manual_payment(manual_request(first.id))

        verified = orchestrator.verify_payment(intent.id, verified_by="bursar-01", notes="Slip checked")

        assert verified.verification_status == VerificationStatus.VERIFIED
        assert verified.verified_by == "bursar-01"
        assert verified.verified_at is not None

    def test_open_payment_cannot_be_verified(self, orchestrator, obligations):
        intent = orchestrator.initiate_payment(checkout_request()).intent

        with pytest.raises(InvalidStateTransition):
            orchestrator.verify_payment(intent.id)


class TestOperations:
    def test_sweep_fails_stale_intents(self, orchestrator, obligations, notifier):
        intent = orchestrator.initiate_payment(checkout_request()).intent

        result = orchestrator.sweep_stale_intents(older_than=timedelta(0))

        assert result.swept == 1
        assert result.payment_ids == [intent.id]
        swept = refresh(orchestrator, intent.id)
        assert swept.status == PaymentStatus.FAILED
        assert swept.failure_reason == SWEEP_REASON
        assert len(orchestrator.list_alerts(kind=AlertKind.STALE_INTENT_SWEPT)) == 1
        assert notifier.calls[-1]["status"] == PaymentStatus.FAILED

        late = orchestrator.handle_notification(CHECKOUT, jenga_callback(intent.order_reference, amount="500.00"))
        assert late.result.status == DispatchStatus.DUPLICATE
        assert refresh(orchestrator, intent.id).status == PaymentStatus.FAILED
        [alert] = orchestrator.list_alerts(kind=AlertKind.SUCCESS_AFTER_FAILURE)
        assert alert.payment_intent_id == intent.id

    def test_sweep_leaves_recent_intents(self, orchestrator, obligations):
        orchestrator.initiate_payment(checkout_request())

        assert orchestrator.sweep_stale_intents().swept == 0

    def test_retry_reconciliation_resolves_alert(self, orchestrator, obligations, monkeypatch):
        first, _ = obligations
        monkeypatch.setattr(orchestrator.allocator.fees, "apply_payment", lambda *args, **kwargs: False)
        intent = orchestrator.record_manual_payment(manual_request(first.id))
        assert intent.status == PaymentStatus.COMPLETED
        assert intent.reconciliation_status == ReconciliationStatus.FAILED
        assert len(orchestrator.list_alerts(kind=AlertKind.RECONCILIATION_FAILED)) == 1
        assert [p.id for p in orchestrator.list_unreconciled()] == [intent.id]
        monkeypatch.undo()

        result = orchestrator.retry_reconciliation(intent.id)

        assert result.fees_updated == 1
        assert refresh(orchestrator, intent.id).reconciliation_status == ReconciliationStatus.RECONCILED
        assert orchestrator.list_alerts(kind=AlertKind.RECONCILIATION_FAILED) == []
        assert orchestrator.list_unreconciled() == []
        resolved = orchestrator.list_alerts(status=AlertStatus.RESOLVED, kind=AlertKind.RECONCILIATION_FAILED)
        assert resolved[0].resolution_notes == "Reconciled on operator retry"

    def test_retry_requires_pending_or_failed_reconciliation(self, orchestrator, obligations):
        first, _ = obligations
        intent = orchestrator.record_manual_payment(manual_request(first.id))

        with pytest.raises(InvalidStateTransition):
            orchestrator.retry_reconciliation(intent.id)

    def test_resolve_alert_once(self, orchestrator):
        orchestrator.handle_notification(MPESA, stk_callback("ws_CO_NOBODY"))
        [alert] = orchestrator.list_alerts()

        resolved = orchestrator.resolve_alert(alert.id, notes="Refunded at the bank", resolved_by="ops-01")

        assert resolved.status == AlertStatus.RESOLVED
        assert resolved.resolved_by == "ops-01"
        with pytest.raises(InvalidStateTransition):
            orchestrator.resolve_alert(alert.id)


class TestQueries:
    def test_student_summary(self, orchestrator, obligations):
        first, _ = obligations
        orchestrator.record_manual_payment(manual_request(first.id, amount="200"))
        orchestrator.initiate_payment(checkout_request(amount="100"))

        summary = orchestrator.student_summary(STUDENT_ID)

        assert summary.total_owed == Decimal("800.00")
        assert summary.total_paid == Decimal("200.00")
        assert summary.outstanding == Decimal("600.00")
        assert summary.available_credit == Decimal("0.00")
        assert summary.obligations == 2
        assert summary.completed_payments == 1
        assert summary.pending_payments == 1
        assert summary.unreconciled_payments == 0

    def test_payment_status_message(self, orchestrator, obligations):
        intent_id = orchestrator.initiate_payment(mpesa_request()).intent.id
        orchestrator.handle_notification(MPESA, stk_callback(CHECKOUT_REQUEST_ID, result_code=1032))

        status = orchestrator.get_payment_status(intent_id)

        assert status.status == PaymentStatus.FAILED
        assert status.message == "Cancelled by user"

    def test_list_fee_payments(self, orchestrator, obligations):
        first, second = obligations
        orchestrator.record_manual_payment(manual_request(first.id, reference="DEP-1"))
        orchestrator.record_manual_payment(manual_request(second.id, reference="DEP-2"))

        payments = orchestrator.list_fee_payments(first.id)

        assert [p.fee_id for p in payments] == [first.id]

    def test_notification_trail(self, orchestrator, obligations):
        first, _ = obligations
        intent_id = orchestrator.initiate_payment(mpesa_request(fee_id=first.id)).intent.id
        payload = stk_callback(CHECKOUT_REQUEST_ID, amount=500)
        orchestrator.handle_notification(MPESA, payload)
        orchestrator.handle_notification(MPESA, payload)

        trail = orchestrator.list_notifications(intent_id)

        assert sorted(n.dispatch_status for n in trail) == [DispatchStatus.APPLIED, DispatchStatus.DUPLICATE]
        assert all(n.payload == payload for n in trail)

    def test_student_obligations_in_due_order(self, orchestrator, obligations):
        first, second = obligations

        listed = orchestrator.list_student_obligations(STUDENT_ID)

        assert [o.id for o in listed] == [first.id, second.id]
