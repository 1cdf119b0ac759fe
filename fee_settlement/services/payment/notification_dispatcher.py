"""
Idempotent notification dispatcher.

Applies a normalized gateway notification to its payment intent exactly
once. Gateways retry, and the callback and IPN channels may both report
the same payment, so every delivery is recorded but only the first one
that moves the intent out of an open status has side effects.

Lifecycle::

    pending -> processing                 (push rails, on initiation)
    pending|processing --success--> completed
    pending|processing --failure--> failed

Terminal statuses never change. A success reported for a failed intent is
recorded and queued for an operator. In-flight gateway statuses are
recorded without a transition.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from fee_settlement.core.exceptions import (
    BaseAppException,
    NotificationUnresolved,
    ReconciliationFailure,
    RepositoryError,
)
from fee_settlement.core.logging import get_logger
from fee_settlement.models.base.base_model import utcnow
from fee_settlement.models.payment.payment_intent import PaymentIntent
from fee_settlement.repositories.operations.operator_alert_repository import OperatorAlertRepository
from fee_settlement.repositories.payment.payment_intent_repository import PaymentIntentRepository
from fee_settlement.repositories.payment.payment_notification_repository import PaymentNotificationRepository
from fee_settlement.schemas.common.enums import (
    AlertKind,
    CorrelationKind,
    DispatchStatus,
    GatewayKind,
    NotificationChannel,
    PaymentStatus,
    ReconciliationStatus,
    SettlementOutcome,
    VerificationStatus,
)
from fee_settlement.schemas.payment.settlement import ReconciliationResult, SettlementEvent
from fee_settlement.services.payment.fee_reconciliation_service import FeeReconciliationService
from fee_settlement.services.payment.receipt_service import ReceiptService

logger = get_logger(__name__)

# Order in which gateway identifiers are tried after the URL hint
RESOLUTION_ORDER = (
    CorrelationKind.TRANSACTION_REFERENCE,
    CorrelationKind.CHECKOUT_REQUEST_ID,
    CorrelationKind.ORDER_REFERENCE,
    CorrelationKind.BILL_NUMBER,
    CorrelationKind.MERCHANT_REQUEST_ID,
    CorrelationKind.RECEIPT_NUMBER,
)


@dataclass
class DispatchResult:
    status: DispatchStatus
    payment_id: Optional[str] = None
    notification_id: Optional[str] = None
    outcome: Optional[SettlementOutcome] = None
    payment_status: Optional[PaymentStatus] = None
    receipt_number: Optional[str] = None
    reconciliation: Optional[ReconciliationResult] = None
    alert_id: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.status == DispatchStatus.APPLIED


def stored_payload(payload: Any) -> Dict[str, Any]:
    return payload if isinstance(payload, dict) else {"raw": payload}


class NotificationDispatcher:
    """Matches notifications to intents and applies them exactly once."""

    def __init__(
        self,
        db,
        allocator: Optional[FeeReconciliationService] = None,
        receipts: Optional[ReceiptService] = None,
    ):
        self.db = db
        self.intents = PaymentIntentRepository(db)
        self.notifications = PaymentNotificationRepository(db)
        self.alerts = OperatorAlertRepository(db)
        self.allocator = allocator or FeeReconciliationService(db)
        self.receipts = receipts or ReceiptService(db)

    # ==================== Resolution ====================

    @staticmethod
    def resolution_keys(event: SettlementEvent) -> List[Tuple[CorrelationKind, str]]:
        return [
            (kind, event.correlation_keys[kind])
            for kind in RESOLUTION_ORDER
            if event.correlation_keys.get(kind)
        ]

    def resolve(
        self, event: SettlementEvent, url_hint_id: Optional[str] = None
    ) -> Tuple[Optional[PaymentIntent], Optional[str]]:
        """
        Find the intent a notification refers to.

        Returns:
            The intent (or None) and a description of the key that matched
        """
        for hint, label in ((url_hint_id, "url_hint"), (event.intent_hint, "payload_hint")):
            if hint:
                intent = self.intents.get_by_id(hint)
                if intent is not None:
                    return intent, label

        intent, matched = self.intents.resolve(self.resolution_keys(event))
        return intent, matched[0].value if matched else None

    # ==================== Dispatch ====================

    def dispatch(
        self,
        gateway_kind: GatewayKind,
        event: SettlementEvent,
        payload: Any,
        channel: NotificationChannel = NotificationChannel.CALLBACK,
        url_hint_id: Optional[str] = None,
    ) -> DispatchResult:
        """
        Record a notification and apply it to its intent.

        Raises:
            NotificationUnresolved: No intent matched; the payload is stored
                and an operator alert opened
            RepositoryError: The notification could not be persisted
        """
        try:
            intent, matched_by = self.resolve(event, url_hint_id)
            if intent is None:
                return self._unresolved(gateway_kind, event, payload, channel)

            intent_id = intent.id
            won = False
            if event.is_final and not intent.is_terminal:
                won = self.intents.transition_status(
                    intent_id, self._target_status(event), values=self._transition_values(intent, event)
                )

            if won:
                self.intents.add_correlations(intent, event.correlation_keys)

            if not event.is_final:
                status = DispatchStatus.RECORDED
            else:
                status = DispatchStatus.APPLIED if won else DispatchStatus.DUPLICATE
            notification = self.notifications.append(
                gateway_kind=gateway_kind,
                channel=channel,
                payload=stored_payload(payload),
                dispatch_status=status,
                payment_intent_id=intent_id,
                outcome=event.outcome,
                correlation_keys=event.keys_for_log(),
                note=f"matched by {matched_by}",
            )

            mismatch = won and event.is_success and self._amount_mismatch(intent, event)
            if mismatch:
                self.alerts.open_alert(
                    AlertKind.AMOUNT_MISMATCH,
                    "Gateway confirmed a different amount than requested",
                    gateway_kind=gateway_kind,
                    payment_intent_id=intent_id,
                    notification_id=notification.id,
                    details={
                        "requested": str(intent.amount),
                        "confirmed": str(event.confirmed_amount),
                    },
                )

            late_alert_id = None
            if not won and event.is_success:
                # Stored status may be stale after a lost compare-and-swap
                self.db.refresh(intent)
                if PaymentStatus(intent.status) == PaymentStatus.FAILED:
                    late_alert_id = self.alerts.open_alert(
                        AlertKind.SUCCESS_AFTER_FAILURE,
                        "Gateway confirmed a payment that is marked failed",
                        gateway_kind=gateway_kind,
                        payment_intent_id=intent_id,
                        notification_id=notification.id,
                        details={
                            "failure_reason": intent.failure_reason,
                            "confirmed": str(event.confirmed_amount) if event.confirmed_amount is not None else None,
                            "provider_receipt": event.provider_receipt,
                        },
                    ).id
            notification_id = notification.id
            self.db.commit()
        except NotificationUnresolved:
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                "Notification dispatch failed",
                extra={"gateway": gateway_kind.value, "error": str(e)},
                exc_info=True,
            )
            self._record_error(gateway_kind, event, payload, channel, str(e))
            raise RepositoryError(f"Notification dispatch failed: {e}") from e

        if mismatch:
            logger.warning(
                "Confirmed amount differs from requested amount",
                extra={
                    "payment_id": intent_id,
                    "requested": str(intent.amount),
                    "confirmed": str(event.confirmed_amount),
                },
            )

        if late_alert_id:
            logger.warning(
                "Success notification for a failed payment queued for operator",
                extra={"payment_id": intent_id, "gateway": gateway_kind.value, "alert_id": late_alert_id},
            )

        if not won:
            logger.info(
                "In-flight notification recorded" if status == DispatchStatus.RECORDED
                else "Duplicate notification recorded",
                extra={"payment_id": intent_id, "gateway": gateway_kind.value, "channel": channel.value},
            )
            return DispatchResult(
                status=status,
                payment_id=intent_id,
                notification_id=notification_id,
                outcome=event.outcome,
                payment_status=PaymentStatus(self.intents.get_or_raise(intent_id).status),
                alert_id=late_alert_id,
            )

        logger.info(
            "Notification applied",
            extra={
                "payment_id": intent_id,
                "gateway": gateway_kind.value,
                "outcome": event.outcome.value,
                "matched_by": matched_by,
            },
        )
        result = DispatchResult(
            status=DispatchStatus.APPLIED,
            payment_id=intent_id,
            notification_id=notification_id,
            outcome=event.outcome,
            payment_status=self._target_status(event),
        )
        if event.is_success:
            self._settle(result)
        return result

    def _settle(self, result: DispatchResult) -> None:
        """Receipt and allocation for a freshly completed intent, each in its own transaction."""
        try:
            result.receipt_number = self.receipts.issue(result.payment_id)
        except (SQLAlchemyError, BaseAppException):
            self.db.rollback()
            logger.exception("Receipt issuance failed", extra={"payment_id": result.payment_id})

        intent = self.intents.get_or_raise(result.payment_id)
        if ReconciliationStatus(intent.reconciliation_status) == ReconciliationStatus.NOT_REQUIRED:
            return
        try:
            result.reconciliation = self.allocator.allocate(result.payment_id)
        except ReconciliationFailure:
            # Payment stays completed; the allocator opened the operator alert
            logger.warning("Payment completed but unreconciled", extra={"payment_id": result.payment_id})

    # ==================== Helpers ====================

    @staticmethod
    def _target_status(event: SettlementEvent) -> PaymentStatus:
        return PaymentStatus.COMPLETED if event.is_success else PaymentStatus.FAILED

    @staticmethod
    def _transition_values(intent: PaymentIntent, event: SettlementEvent) -> Dict[str, Any]:
        now = utcnow()
        if not event.is_success:
            return {"failure_reason": event.failure_reason or "Payment failed", "failed_at": now}

        # Course purchases without a fee are settled by enrollment, not allocation
        needs_allocation = intent.fee_id is not None or intent.course_id is None
        return {
            "confirmed_amount": event.confirmed_amount if event.confirmed_amount is not None else intent.amount,
            "completed_at": now,
            "verification_status": VerificationStatus.VERIFIED,
            "verified_at": now,
            "reconciliation_status": (
                ReconciliationStatus.PENDING if needs_allocation else ReconciliationStatus.NOT_REQUIRED
            ),
        }

    @staticmethod
    def _amount_mismatch(intent: PaymentIntent, event: SettlementEvent) -> bool:
        if event.confirmed_amount is None:
            return False
        return Decimal(event.confirmed_amount) != Decimal(intent.amount)

    def _unresolved(
        self,
        gateway_kind: GatewayKind,
        event: SettlementEvent,
        payload: Any,
        channel: NotificationChannel,
    ) -> DispatchResult:
        keys = event.keys_for_log()
        notification = self.notifications.append(
            gateway_kind=gateway_kind,
            channel=channel,
            payload=stored_payload(payload),
            dispatch_status=DispatchStatus.UNRESOLVED,
            outcome=event.outcome,
            correlation_keys=keys,
        )
        alert = self.alerts.open_alert(
            AlertKind.NOTIFICATION_UNRESOLVED,
            "Notification did not match any payment",
            gateway_kind=gateway_kind,
            notification_id=notification.id,
            details={"correlation_keys": keys, "outcome": event.outcome.value},
        )
        alert_id = alert.id
        self.db.commit()

        logger.warning(
            "Unresolved notification queued for operator",
            extra={"gateway": gateway_kind.value, "correlation_keys": keys, "alert_id": alert_id},
        )
        raise NotificationUnresolved(
            gateway_name=gateway_kind.value,
            correlation_keys=keys,
            alert_id=alert_id,
        )

    def _record_error(
        self,
        gateway_kind: GatewayKind,
        event: Optional[SettlementEvent],
        payload: Any,
        channel: NotificationChannel,
        error: str,
    ) -> None:
        """Keep the payload of a notification whose processing failed."""
        try:
            notification = self.notifications.append(
                gateway_kind=gateway_kind,
                channel=channel,
                payload=stored_payload(payload),
                dispatch_status=DispatchStatus.ERROR,
                outcome=event.outcome if event else None,
                correlation_keys=event.keys_for_log() if event else None,
                note=error[:500],
            )
            self.alerts.open_alert(
                AlertKind.NOTIFICATION_ERROR,
                "Notification could not be processed",
                gateway_kind=gateway_kind,
                notification_id=notification.id,
                details={"error": error[:500]},
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Could not record failed notification", extra={"gateway": gateway_kind.value})
