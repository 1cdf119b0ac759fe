"""
Settlement orchestrator.

Entry point for every payment flow: initiating gateway payments,
receiving notifications, recording manual deposits and the operator
actions on the reconciliation queue.
"""

import time
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from fee_settlement.config.settings import Settings, settings as default_settings
from fee_settlement.core.exceptions import (
    AuthenticationError,
    BaseAppException,
    ConfigurationError,
    EntityAlreadyExistsError,
    GatewayUnavailable,
    InvalidPayloadError,
    InvalidStateTransition,
    NotificationUnresolved,
    ValidationError,
)
from fee_settlement.core.logging import get_logger, sanitize
from fee_settlement.models.base.base_model import utcnow
from fee_settlement.models.fee.fee_obligation import FeeObligation
from fee_settlement.models.operations.operator_alert import OperatorAlert
from fee_settlement.models.payment.payment_intent import PaymentIntent
from fee_settlement.models.payment.payment_notification import PaymentNotification
from fee_settlement.repositories.fee.fee_obligation_repository import FeeObligationRepository
from fee_settlement.repositories.operations.operator_alert_repository import OperatorAlertRepository
from fee_settlement.repositories.payment.credit_balance_repository import CreditBalanceRepository
from fee_settlement.repositories.payment.payment_intent_repository import PaymentIntentRepository
from fee_settlement.repositories.payment.payment_notification_repository import PaymentNotificationRepository
from fee_settlement.schemas.common.enums import (
    AlertKind,
    AlertStatus,
    CorrelationKind,
    DispatchStatus,
    GatewayKind,
    NotificationChannel,
    PaymentStatus,
    ReconciliationStatus,
    SettlementOutcome,
    VerificationStatus,
)
from fee_settlement.schemas.payment.payment_request import ManualPaymentRequest, PaymentInitiateRequest
from fee_settlement.schemas.payment.payment_response import (
    PaymentStatusResponse,
    StudentPaymentSummary,
    SweepResult,
)
from fee_settlement.schemas.payment.settlement import CreditApplicationResult, ReconciliationResult
from fee_settlement.services.gateway.adapter_registry import AdapterRegistry
from fee_settlement.services.integrations.collaborators import (
    EnrollmentGateway,
    LoggingEnrollmentGateway,
    LoggingNotificationService,
    NotificationService,
)
from fee_settlement.services.payment.fee_reconciliation_service import FeeReconciliationService
from fee_settlement.services.payment.notification_dispatcher import (
    DispatchResult,
    NotificationDispatcher,
    stored_payload,
)
from fee_settlement.services.payment.receipt_service import ReceiptService
from fee_settlement.utils.references import generate_order_reference

logger = get_logger(__name__)

T = TypeVar("T")

STATUS_MESSAGES = {
    PaymentStatus.PENDING: "Payment is awaiting confirmation",
    PaymentStatus.PROCESSING: "Waiting for the payer to complete the payment on their phone",
    PaymentStatus.COMPLETED: "Payment completed successfully",
    PaymentStatus.FAILED: "Payment failed",
}

SWEEP_REASON = "Payment expired without confirmation from the gateway"


@dataclass
class InitiationOutcome:
    intent: PaymentIntent
    redirect_url: Optional[str] = None
    checkout_payload: Optional[Dict[str, Any]] = None
    customer_message: Optional[str] = None


@dataclass
class NotificationAck:
    """Body and HTTP status returned to the gateway."""

    body: Dict[str, Any]
    http_status: int = 200
    result: Optional[DispatchResult] = None


class SettlementOrchestrator:
    """Coordinates adapters, the dispatcher and the allocator."""

    def __init__(
        self,
        db,
        registry: AdapterRegistry,
        notifier: Optional[NotificationService] = None,
        enrollment: Optional[EnrollmentGateway] = None,
        config: Optional[Settings] = None,
        retry_backoff: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.registry = registry
        self.notifier = notifier or LoggingNotificationService()
        self.enrollment = enrollment or LoggingEnrollmentGateway()
        self.config = config or default_settings
        self.retry_backoff = retry_backoff
        self.sleep = sleep

        self.intents = PaymentIntentRepository(db)
        self.fees = FeeObligationRepository(db)
        self.credits = CreditBalanceRepository(db)
        self.alerts = OperatorAlertRepository(db)
        self.notifications = PaymentNotificationRepository(db)
        self.receipts = ReceiptService(db)
        self.allocator = FeeReconciliationService(db)
        self.dispatcher = NotificationDispatcher(db, allocator=self.allocator, receipts=self.receipts)

    # ==================== Initiation ====================

    def initiate_payment(self, request: PaymentInitiateRequest) -> InitiationOutcome:
        """
        Start a gateway payment.

        The intent is committed before the gateway is called, and no
        transaction is open while the call is in flight. A rejection fails
        the intent; an unreachable gateway leaves it pending. Both re-raise.
        """
        adapter = self.registry.get(request.gateway_kind)
        if not adapter.config.enabled:
            raise ConfigurationError(
                f"Gateway {adapter.name} is not enabled", config_key=request.gateway_kind.value
            )

        amount = request.amount
        adapter.validate_amount(amount)
        self._check_payable(request)
        payer_contact = adapter.prepare_payer_contact(request)
        # End the read transaction before talking to the gateway
        self.db.commit()

        if adapter.credentials is not None:
            self._with_retries(lambda: adapter.credentials.get_token(adapter.kind), adapter.name)

        intent = self.intents.create_intent(
            gateway_kind=request.gateway_kind,
            order_reference=generate_order_reference(request.gateway_kind, request.student_code or request.student_id),
            student_id=request.student_id,
            amount=amount,
            currency=self.config.CURRENCY,
            fee_id=request.fee_id,
            branch_id=request.branch_id,
            course_id=request.course_id,
            payer_contact=payer_contact,
            description=request.description,
        )
        intent_id = intent.id
        self.db.expunge(intent)
        self.db.commit()

        logger.info(
            "Payment intent created",
            extra={"payment_id": intent_id, "gateway": adapter.name, "amount": str(amount)},
        )

        try:
            result = self._with_retries(lambda: adapter.initiate(intent, request), adapter.name)
        except (GatewayUnavailable, AuthenticationError) as e:
            # The request may have reached the gateway; a late notification or the sweep settles it
            logger.warning(
                "Gateway unreachable, payment left pending",
                extra={"payment_id": intent_id, "gateway": adapter.name, "reason": e.message},
            )
            raise
        except BaseAppException as e:
            with self.intents.transaction():
                self.intents.mark_failed(intent_id, e.message)
            logger.warning(
                "Payment initiation failed",
                extra={"payment_id": intent_id, "gateway": adapter.name, "reason": e.message},
            )
            self._after_terminal(intent_id)
            raise

        intent = self.intents.get_or_raise(intent_id)
        with self.intents.transaction():
            self.intents.add_correlations(intent, result.correlation)
            intent.gateway_response = sanitize(dict(result.raw_response or {}))
            if adapter.moves_to_processing:
                self.intents.mark_processing(intent_id)

        return InitiationOutcome(
            intent=self.intents.get_or_raise(intent_id),
            redirect_url=result.redirect_url,
            checkout_payload=result.checkout_payload,
            customer_message=result.customer_message,
        )

    def _check_payable(self, request: PaymentInitiateRequest) -> None:
        """0 < amount <= obligation balance, or <= total outstanding for wallet payments."""
        amount = request.amount
        if request.fee_id:
            obligation = self.fees.get_or_raise(request.fee_id)
            if obligation.student_id != request.student_id:
                raise ValidationError(
                    "Fee does not belong to this student", field_errors={"fee_id": ["student mismatch"]}
                )
            if amount > obligation.balance:
                raise ValidationError(
                    f"Amount exceeds the outstanding balance of {obligation.balance}",
                    field_errors={"amount": ["exceeds fee balance"]},
                )
        elif request.course_id is None:
            outstanding = self.fees.total_outstanding(request.student_id)
            if amount > outstanding:
                raise ValidationError(
                    f"Amount exceeds the total outstanding balance of {outstanding}",
                    field_errors={"amount": ["exceeds outstanding balance"]},
                )

    def _with_retries(self, operation: Callable[[], T], gateway_name: str) -> T:
        attempts = max(1, self.config.GATEWAY_MAX_RETRIES + 1)
        for attempt in range(1, attempts + 1):
            try:
                return operation()
            except (GatewayUnavailable, AuthenticationError) as e:
                if attempt >= attempts:
                    raise
                logger.warning(
                    "Retrying gateway call",
                    extra={"gateway": gateway_name, "attempt": attempt, "reason": e.message},
                )
                self.sleep(self.retry_backoff * attempt)

    # ==================== Notifications ====================

    def handle_notification(
        self,
        gateway_kind: GatewayKind,
        payload: Any,
        channel: NotificationChannel = NotificationChannel.CALLBACK,
        url_hint_id: Optional[str] = None,
    ) -> NotificationAck:
        """
        Parse and dispatch a gateway notification.

        The gateway always receives a success acknowledgement unless the
        payload itself is structurally invalid. Processing problems end up
        in the operator queue instead.
        """
        adapter = self.registry.get(gateway_kind)
        try:
            event = adapter.parse_notification(payload, channel)
        except InvalidPayloadError as e:
            logger.warning(
                "Invalid notification payload",
                extra={"gateway": adapter.name, "channel": channel.value, "reason": e.message},
            )
            self._record_invalid(gateway_kind, payload, channel, e.message)
            return NotificationAck(adapter.acknowledge(False, e.message), http_status=400)

        try:
            result = self.dispatcher.dispatch(gateway_kind, event, payload, channel, url_hint_id)
        except NotificationUnresolved as e:
            result = DispatchResult(
                status=DispatchStatus.UNRESOLVED,
                outcome=event.outcome,
                alert_id=e.details.get("alert_id"),
            )
        except (BaseAppException, SQLAlchemyError) as e:
            logger.error(
                "Notification processing failed",
                extra={"gateway": adapter.name, "error": str(e)},
                exc_info=True,
            )
            result = DispatchResult(status=DispatchStatus.ERROR, outcome=event.outcome)

        if result.applied:
            self._after_terminal(result.payment_id)

        message = "IPN processed successfully" if channel == NotificationChannel.IPN else "Callback processed successfully"
        return NotificationAck(adapter.acknowledge(True, message), result=result)

    def _record_invalid(self, gateway_kind: GatewayKind, payload: Any, channel: NotificationChannel, reason: str):
        try:
            with self.notifications.transaction():
                self.notifications.append(
                    gateway_kind=gateway_kind,
                    channel=channel,
                    payload=stored_payload(payload),
                    dispatch_status=DispatchStatus.ERROR,
                    note=f"invalid payload: {reason}"[:500],
                )
        except BaseAppException:
            logger.exception("Could not store invalid notification", extra={"gateway": gateway_kind.value})

    # ==================== Manual Payments ====================

    def record_manual_payment(self, request: ManualPaymentRequest) -> PaymentIntent:
        """
        Record a deposit, cheque or cash payment.

        The payment is completed immediately but stays unverified until an
        operator confirms the evidence.
        """
        obligation = self.fees.get_or_raise(request.fee_id)
        evidence = request.evidence

        if evidence.reference_number and self.intents.find_by_correlation(
            CorrelationKind.TRANSACTION_REFERENCE, evidence.reference_number
        ):
            raise EntityAlreadyExistsError(
                "A payment with this reference number already exists", table="payment_intents"
            )

        with self.intents.transaction():
            intent = self.intents.create_intent(
                gateway_kind=GatewayKind.MANUAL,
                order_reference=generate_order_reference(GatewayKind.MANUAL, obligation.student_id),
                student_id=obligation.student_id,
                amount=request.amount,
                currency=self.config.CURRENCY,
                fee_id=obligation.id,
                branch_id=obligation.branch_id,
                payer_contact=evidence.depositor_name,
                description=evidence.notes,
                status=PaymentStatus.COMPLETED,
                verification_status=VerificationStatus.UNVERIFIED,
                reconciliation_status=ReconciliationStatus.PENDING,
                manual_details=evidence.model_dump(mode="json"),
                commit=False,
            )
            intent.confirmed_amount = request.amount
            if evidence.reference_number:
                self.intents.add_correlations(
                    intent, {CorrelationKind.TRANSACTION_REFERENCE: evidence.reference_number}
                )
            intent_id = intent.id

        logger.info(
            "Manual payment recorded",
            extra={"payment_id": intent_id, "amount": str(request.amount), "method": evidence.payment_method},
        )

        try:
            self.receipts.issue(intent_id)
        except (SQLAlchemyError, BaseAppException):
            self.db.rollback()
            logger.exception("Receipt issuance failed", extra={"payment_id": intent_id})
        try:
            self.allocator.allocate(intent_id)
        except BaseAppException as e:
            logger.warning("Manual payment left unreconciled", extra={"payment_id": intent_id, "reason": e.message})
        self._after_terminal(intent_id)
        return self.intents.get_or_raise(intent_id)

    def verify_payment(
        self, intent_id: str, verified_by: Optional[str] = None, notes: Optional[str] = None
    ) -> PaymentIntent:
        """Mark a completed payment as checked by a human."""
        intent = self.intents.get_or_raise(intent_id)
        if PaymentStatus(intent.status) != PaymentStatus.COMPLETED:
            raise InvalidStateTransition("Only completed payments can be verified", current_state=str(intent.status))
        if VerificationStatus(intent.verification_status) == VerificationStatus.VERIFIED:
            return intent

        return self.intents.update(
            intent,
            {
                "verification_status": VerificationStatus.VERIFIED,
                "verified_by": verified_by,
                "verified_at": utcnow(),
                "verification_notes": notes,
            },
        )

    # ==================== Queries ====================

    def get_payment(self, intent_id: str) -> PaymentIntent:
        return self.intents.get_or_raise(intent_id)

    def get_payment_status(self, intent_id: str) -> PaymentStatusResponse:
        intent = self.intents.get_or_raise(intent_id)
        status = PaymentStatus(intent.status)
        message = STATUS_MESSAGES[status]
        if status == PaymentStatus.FAILED and intent.failure_reason:
            message = intent.failure_reason
        return PaymentStatusResponse(
            payment_id=intent.id,
            status=status,
            verification_status=intent.verification_status,
            reconciliation_status=intent.reconciliation_status,
            amount=intent.amount,
            confirmed_amount=intent.confirmed_amount,
            receipt_number=intent.receipt_number,
            failure_reason=intent.failure_reason,
            message=message,
        )

    def list_fee_payments(self, fee_id: str) -> List[PaymentIntent]:
        self.fees.get_or_raise(fee_id)
        return self.intents.find_by_fee(fee_id)

    def student_summary(self, student_id: str) -> StudentPaymentSummary:
        totals = self.fees.totals_for_student(student_id)
        payments = self.intents.find_by_student(student_id)
        return StudentPaymentSummary(
            student_id=student_id,
            total_owed=totals["total_owed"],
            total_paid=totals["total_paid"],
            outstanding=totals["outstanding"],
            available_credit=self.credits.available_total(student_id),
            obligations=totals["count"],
            completed_payments=sum(1 for p in payments if p.status == PaymentStatus.COMPLETED),
            pending_payments=sum(1 for p in payments if p.status in PaymentStatus.get_open_statuses()),
            unreconciled_payments=sum(
                1 for p in payments if p.reconciliation_status == ReconciliationStatus.FAILED
            ),
        )

    def list_student_obligations(self, student_id: str) -> List[FeeObligation]:
        return self.fees.list_for_student(student_id)

    def apply_credit(self, fee_id: str, max_amount: Optional[Decimal] = None) -> CreditApplicationResult:
        return self.allocator.apply_credit_to_obligation(fee_id, max_amount)

    # ==================== Operations ====================

    def sweep_stale_intents(self, older_than: Optional[timedelta] = None, limit: int = 500) -> SweepResult:
        """
        Fail open intents the gateway never reported on.

        Uses the same compare-and-swap as notifications, so an intent that
        completes concurrently is left alone.
        """
        horizon = older_than if older_than is not None else timedelta(hours=self.config.PENDING_INTENT_HORIZON_HOURS)
        cutoff = utcnow() - horizon
        candidates = [(i.id, i.gateway_kind) for i in self.intents.find_stale(cutoff, limit=limit)]

        swept: List[str] = []
        for intent_id, gateway_kind in candidates:
            with self.intents.transaction():
                if not self.intents.mark_failed(intent_id, SWEEP_REASON):
                    continue
                notification = self.notifications.append(
                    gateway_kind=gateway_kind,
                    channel=NotificationChannel.SWEEP,
                    payload={"reason": SWEEP_REASON, "cutoff": cutoff.isoformat()},
                    dispatch_status=DispatchStatus.APPLIED,
                    payment_intent_id=intent_id,
                    outcome=SettlementOutcome.FAILURE,
                )
                self.alerts.open_alert(
                    AlertKind.STALE_INTENT_SWEPT,
                    "Pending payment expired and was marked failed",
                    gateway_kind=gateway_kind,
                    payment_intent_id=intent_id,
                    notification_id=notification.id,
                    details={"cutoff": cutoff.isoformat()},
                )
            swept.append(intent_id)
            self._after_terminal(intent_id)

        if swept:
            logger.info("Stale payments swept", extra={"swept": len(swept)})
        return SweepResult(swept=len(swept), payment_ids=swept)

    def retry_reconciliation(self, intent_id: str) -> ReconciliationResult:
        """Operator retry for a paid but unreconciled payment."""
        intent = self.intents.get_or_raise(intent_id)
        if PaymentStatus(intent.status) != PaymentStatus.COMPLETED:
            raise InvalidStateTransition(
                "Only completed payments can be reconciled", current_state=str(intent.status)
            )
        if ReconciliationStatus(intent.reconciliation_status) not in (
            ReconciliationStatus.FAILED,
            ReconciliationStatus.PENDING,
        ):
            raise InvalidStateTransition(
                "Payment is not awaiting reconciliation", current_state=str(intent.reconciliation_status)
            )

        result = self.allocator.allocate(intent_id)
        with self.alerts.transaction():
            for alert in self.alerts.find_open_for_intent(intent_id, AlertKind.RECONCILIATION_FAILED):
                self.alerts.resolve(alert, notes="Reconciled on operator retry")
        return result

    def list_alerts(
        self,
        status: Optional[AlertStatus] = AlertStatus.OPEN,
        kind: Optional[AlertKind] = None,
        limit: int = 100,
    ) -> List[OperatorAlert]:
        return self.alerts.list_alerts(status=status, kind=kind, limit=limit)

    def list_unreconciled(self) -> List[PaymentIntent]:
        """Payments that are paid but whose fee allocation failed."""
        return self.intents.find_unreconciled()

    def list_notifications(self, intent_id: str) -> List[PaymentNotification]:
        """Every delivery stored for a payment, oldest first."""
        self.intents.get_or_raise(intent_id)
        return self.notifications.list_for_intent(intent_id)

    def resolve_alert(
        self, alert_id: str, notes: Optional[str] = None, resolved_by: Optional[str] = None
    ) -> OperatorAlert:
        alert = self.alerts.get_or_raise(alert_id)
        if alert.status == AlertStatus.RESOLVED:
            raise InvalidStateTransition("Alert is already resolved", current_state=AlertStatus.RESOLVED.value)
        with self.alerts.transaction():
            self.alerts.resolve(alert, notes=notes, resolved_by=resolved_by)
        return self.alerts.get_or_raise(alert_id)

    # ==================== Side Effects ====================

    def _after_terminal(self, intent_id: str) -> None:
        """Fire-and-forget payer notification and enrollment."""
        intent = self.intents.get_or_raise(intent_id)
        status = PaymentStatus(intent.status)
        try:
            self.notifier.notify_payment_status(
                user_id=intent.student_id,
                payment_id=intent.id,
                amount=intent.settled_amount,
                status=status,
                description=intent.description or intent.failure_reason,
                action_url=f"{self.config.FRONTEND_PAYMENTS_URL.rstrip('/')}/{intent.id}",
            )
        except Exception:
            logger.exception("Payment status notification failed", extra={"payment_id": intent_id})

        if status == PaymentStatus.COMPLETED and intent.course_id:
            try:
                self.enrollment.create_enrollment(intent.student_id, intent.course_id, intent.id)
            except Exception:
                logger.exception("Enrollment creation failed", extra={"payment_id": intent_id})
