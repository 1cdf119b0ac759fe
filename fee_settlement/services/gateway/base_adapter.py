"""
Gateway adapter interface.

An adapter owns everything specific to one payment rail: building and
signing the initiation request, parsing inbound notifications into a
``SettlementEvent`` and producing the acknowledgement body the gateway
expects.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from fee_settlement.config.integrations import GatewayConfig
from fee_settlement.core.exceptions import (
    GatewayRejected,
    GatewayUnavailable,
    InvalidPayloadError,
    ValidationError,
)
from fee_settlement.core.logging import get_logger
from fee_settlement.models.payment.payment_intent import PaymentIntent
from fee_settlement.schemas.common.enums import CorrelationKind, GatewayKind, NotificationChannel
from fee_settlement.schemas.payment.payment_request import PaymentInitiateRequest
from fee_settlement.schemas.payment.settlement import SettlementEvent
from fee_settlement.services.gateway.credential_provider import CredentialProvider
from fee_settlement.services.gateway.signature_engine import SignatureEngine
from fee_settlement.utils.validators import PhoneValidator

logger = get_logger(__name__)


@dataclass
class InitiationResult:
    """What the gateway told us when the payment was started."""

    provider_reference: Optional[str] = None
    correlation: Dict[CorrelationKind, str] = field(default_factory=dict)
    redirect_url: Optional[str] = None
    checkout_payload: Optional[Dict[str, Any]] = None
    customer_message: Optional[str] = None
    raw_response: Dict[str, Any] = field(default_factory=dict)


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text}


class GatewayAdapter(ABC):
    """Base class for payment rail adapters."""

    kind: GatewayKind
    # Push rails move the intent to processing once the gateway accepted the request
    moves_to_processing: bool = False

    def __init__(
        self,
        config: GatewayConfig,
        signer: Optional[SignatureEngine] = None,
        credentials: Optional[CredentialProvider] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.config = config
        self.signer = signer
        self.credentials = credentials
        self.http_client = http_client

    @property
    def name(self) -> str:
        return self.config.name

    # ==================== Contract ====================

    @abstractmethod
    def initiate(self, intent: PaymentIntent, request: PaymentInitiateRequest) -> InitiationResult:
        """Start the payment with the gateway."""

    @abstractmethod
    def parse_notification(self, payload: Any, channel: NotificationChannel) -> SettlementEvent:
        """
        Normalize a gateway notification.

        Raises:
            InvalidPayloadError: When the payload is structurally invalid
        """

    @abstractmethod
    def acknowledge(self, success: bool, message: str) -> Dict[str, Any]:
        """Response body the gateway expects for a notification."""

    # ==================== Helpers ====================

    def validate_amount(self, amount: Decimal) -> None:
        """Rail specific amount rules; checked before the intent is created."""

    def format_msisdn(self, phone: Optional[str]) -> str:
        result = PhoneValidator.format_msisdn(phone or "", self.config.country_code)
        if not result:
            raise ValidationError(result.errors[0], field_errors={"payer_phone": result.errors})
        return result.value

    def prepare_payer_contact(self, request: PaymentInitiateRequest) -> Optional[str]:
        """Payer contact stored on the intent; phone numbers are normalized."""
        if request.payer_phone:
            return self.format_msisdn(request.payer_phone)
        return request.payer_email

    def build_event(self, **fields: Any) -> SettlementEvent:
        """
        Build the normalized event for this rail.

        Raises:
            InvalidPayloadError: When a gateway value breaks the event constraints
        """
        try:
            return SettlementEvent(gateway_kind=self.kind, **fields)
        except PydanticValidationError as e:
            first = e.errors()[0]
            field_name = ".".join(str(part) for part in first.get("loc", ()))
            raise InvalidPayloadError(f"Invalid {field_name}: {first.get('msg')}", gateway=self.name) from e

    def require_mapping(self, payload: Any) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            raise InvalidPayloadError("Notification payload must be a JSON object", gateway=self.name)
        return payload

    def call_gateway(
        self,
        method: str,
        url: str,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Perform an authenticated gateway call.

        A 401 invalidates the cached token and the call is retried once.

        Raises:
            GatewayUnavailable: Network failure, timeout, 429 or 5xx
            GatewayRejected: Any other non-success response
        """
        response = None
        for attempt in range(2):
            request_headers = {"Content-Type": "application/json", **(headers or {})}
            if self.credentials is not None:
                token = self.credentials.get_token(self.kind)
                request_headers["Authorization"] = f"Bearer {token}"

            try:
                if self.http_client is not None:
                    response = self.http_client.request(
                        method, url, json=json, headers=request_headers, timeout=self.config.timeout_seconds
                    )
                else:
                    with httpx.Client(timeout=self.config.timeout_seconds) as client:
                        response = client.request(method, url, json=json, headers=request_headers)
            except httpx.HTTPError as e:
                logger.warning(
                    "Gateway call failed",
                    extra={"gateway": self.name, "url": url, "error": str(e)},
                )
                raise GatewayUnavailable(f"{self.name} unreachable: {e}", gateway_name=self.name) from e

            if response.status_code == 401 and attempt == 0 and self.credentials is not None:
                self.credentials.invalidate(self.kind)
                continue
            break

        body = _safe_json(response)
        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(
                "Gateway unavailable",
                extra={"gateway": self.name, "http_status": response.status_code},
            )
            raise GatewayUnavailable(
                f"{self.name} returned {response.status_code}",
                gateway_name=self.name,
                gateway_error_code=str(response.status_code),
            )
        if response.status_code >= 400:
            message = self.error_message(body) or f"{self.name} rejected the request"
            logger.warning(
                "Gateway rejected request",
                extra={"gateway": self.name, "http_status": response.status_code, "reason": message},
            )
            raise GatewayRejected(message, gateway_name=self.name, gateway_error_code=str(response.status_code))
        return body if isinstance(body, dict) else {"raw": body}

    def error_message(self, body: Any) -> Optional[str]:
        if isinstance(body, dict):
            for key in ("errorMessage", "message", "ResponseDescription", "error"):
                if body.get(key):
                    return str(body[key])
        return None
