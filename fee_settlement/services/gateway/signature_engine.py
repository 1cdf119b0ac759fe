"""
Signature engine for outbound gateway requests.

Each rail has exactly one signing contract: the ordered list of fields
concatenated into the canonical string, and the algorithm applied to it.
Signing is pure; secrets come from the injected gateway configuration
and are never logged.
"""

import base64
import hashlib
import hmac
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from fee_settlement.config.integrations import GatewayConfig
from fee_settlement.core.exceptions import SigningError
from fee_settlement.core.logging import get_logger
from fee_settlement.schemas.common.enums import GatewayKind

logger = get_logger(__name__)


class SignatureScheme(str, Enum):
    SHA256_HEX = "sha256_hex"
    HMAC_SHA256_BASE64 = "hmac_sha256_base64"
    RSA_SHA256_BASE64 = "rsa_sha256_base64"
    BASE64_PASSWORD = "base64_password"


@dataclass(frozen=True)
class SignatureContract:
    scheme: SignatureScheme
    fields: Tuple[str, ...]


# Canonical field order per rail
CHECKOUT_CONTRACT = SignatureContract(
    SignatureScheme.SHA256_HEX,
    ("merchantCode", "orderReference", "currency", "orderAmount", "callbackUrl"),
)
PUSH_HMAC_CONTRACT = SignatureContract(
    SignatureScheme.HMAC_SHA256_BASE64,
    ("accountNumber", "ref", "mobileNumber", "telco", "amount", "currency"),
)
PUSH_RSA_CONTRACT = SignatureContract(
    SignatureScheme.RSA_SHA256_BASE64,
    ("orderReference", "currency", "msisdn", "amount"),
)
MPESA_PASSWORD_CONTRACT = SignatureContract(
    SignatureScheme.BASE64_PASSWORD,
    ("BusinessShortCode", "Timestamp"),
)


def format_amount(amount: Any) -> str:
    """
    Render an amount the way it appears in gateway payloads.

    Whole amounts have no decimals (``1500``); others keep their
    significant decimals (``1500.5``).
    """
    value = Decimal(str(amount)).quantize(Decimal("0.01"))
    if value == value.to_integral_value():
        return str(int(value))
    return format(value.normalize(), "f")


class SignatureEngine:
    """Computes request signatures for every configured rail."""

    def __init__(self, configs: Mapping[GatewayKind, GatewayConfig]):
        self._configs = dict(configs)
        self._rsa_key: Optional[rsa.RSAPrivateKey] = None

    # ==================== Contracts ====================

    def contract_for(self, gateway_kind: GatewayKind) -> SignatureContract:
        if gateway_kind == GatewayKind.BANK_CHECKOUT:
            return CHECKOUT_CONTRACT
        if gateway_kind == GatewayKind.BANK_PUSH_USSD:
            config = self._configs.get(gateway_kind)
            if config is not None and config.private_key_pem:
                return PUSH_RSA_CONTRACT
            return PUSH_HMAC_CONTRACT
        if gateway_kind == GatewayKind.PUSH_MOBILE_MONEY:
            return MPESA_PASSWORD_CONTRACT
        raise SigningError(f"No signing contract for {gateway_kind.value}", gateway_name=gateway_kind.value)

    def canonical_string(self, contract: SignatureContract, fields: Mapping[str, Any]) -> str:
        """Concatenate the contract fields in order."""
        missing = [name for name in contract.fields if fields.get(name) in (None, "")]
        if missing:
            raise SigningError(f"Missing fields for signature: {', '.join(missing)}")
        return "".join(str(fields[name]) for name in contract.fields)

    # ==================== Signing ====================

    def sign(
        self,
        gateway_kind: GatewayKind,
        fields: Mapping[str, Any],
        contract: Optional[SignatureContract] = None,
    ) -> str:
        """
        Sign ``fields`` for ``gateway_kind``.

        Raises:
            SigningError: When required fields or key material are missing
        """
        contract = contract or self.contract_for(gateway_kind)
        config = self._configs.get(gateway_kind)
        payload = self.canonical_string(contract, fields)

        if contract.scheme == SignatureScheme.SHA256_HEX:
            return hashlib.sha256(payload.encode("utf-8")).hexdigest()

        if contract.scheme == SignatureScheme.HMAC_SHA256_BASE64:
            secret = config.api_secret if config else None
            if not secret:
                raise SigningError("Consumer secret is not configured", gateway_name=gateway_kind.value)
            digest = hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).digest()
            return base64.b64encode(digest).decode("ascii")

        if contract.scheme == SignatureScheme.RSA_SHA256_BASE64:
            key = self._load_rsa_key(gateway_kind, config)
            signature = key.sign(payload.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
            return base64.b64encode(signature).decode("ascii")

        if contract.scheme == SignatureScheme.BASE64_PASSWORD:
            passkey = config.passkey if config else None
            if not passkey:
                raise SigningError("M-Pesa passkey is not configured", gateway_name=gateway_kind.value)
            raw = f"{fields['BusinessShortCode']}{passkey}{fields['Timestamp']}"
            return base64.b64encode(raw.encode("utf-8")).decode("ascii")

        raise SigningError(f"Unsupported signature scheme {contract.scheme}")

    def sign_checkout(self, fields: Dict[str, Any]) -> str:
        return self.sign(GatewayKind.BANK_CHECKOUT, fields, CHECKOUT_CONTRACT)

    def mpesa_password(self, shortcode: str, timestamp: str) -> str:
        """Daraja STK password: base64(shortcode + passkey + timestamp)."""
        return self.sign(
            GatewayKind.PUSH_MOBILE_MONEY,
            {"BusinessShortCode": shortcode, "Timestamp": timestamp},
            MPESA_PASSWORD_CONTRACT,
        )

    def _load_rsa_key(self, gateway_kind: GatewayKind, config: Optional[GatewayConfig]) -> rsa.RSAPrivateKey:
        if self._rsa_key is not None:
            return self._rsa_key
        pem = config.private_key_pem if config else None
        if not pem:
            raise SigningError("RSA private key is not configured", gateway_name=gateway_kind.value)
        try:
            key = serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            logger.error("Configured private key could not be loaded", extra={"gateway": gateway_kind.value})
            raise SigningError("RSA private key is invalid", gateway_name=gateway_kind.value) from e
        if not isinstance(key, rsa.RSAPrivateKey):
            raise SigningError("Configured private key is not an RSA key", gateway_name=gateway_kind.value)
        self._rsa_key = key
        return key
