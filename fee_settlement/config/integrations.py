"""
Payment gateway configurations for the fee settlement engine.

Environment-driven settings are converted once into immutable
``GatewayConfig`` objects which are injected into each adapter and the
credential provider at construction time.
"""

from typing import Any, Dict, Optional
from dataclasses import dataclass, field
from pathlib import Path
import logging

from fee_settlement.config.settings import Settings, settings as default_settings
from fee_settlement.schemas.common.enums import GatewayKind

logger = logging.getLogger(__name__)

MPESA_BASE_URLS = {
    "sandbox": "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}
JENGA_BASE_URLS = {
    "sandbox": "https://uat.finserve.africa",
    "production": "https://api.finserve.africa",
}
JENGA_CHECKOUT_URLS = {
    "sandbox": "https://v3-uat.jengapgw.io/processPayment",
    "production": "https://v3.jengapgw.io/processPayment",
}


@dataclass(frozen=True)
class GatewayConfig:
    """Configuration for a single payment rail"""
    kind: GatewayKind
    name: str
    enabled: bool
    base_url: Optional[str] = None
    sandbox: bool = True
    timeout_seconds: float = 30.0
    max_retries: int = 2
    callback_url: Optional[str] = None
    currency: str = "KES"
    country_code: str = "KE"
    merchant_code: Optional[str] = None
    merchant_name: Optional[str] = None
    account_number: Optional[str] = None
    checkout_url: Optional[str] = None
    api_key: Optional[str] = field(default=None, repr=False)
    api_secret: Optional[str] = field(default=None, repr=False)
    passkey: Optional[str] = field(default=None, repr=False)
    private_key_pem: Optional[str] = field(default=None, repr=False)
    additional_config: Dict[str, Any] = field(default_factory=dict)

    @property
    def token_less(self) -> bool:
        return self.kind == GatewayKind.MANUAL

    def callback_for(self, intent_id: str) -> str:
        """Callback URL templated with the payment intent id"""
        return f"{(self.callback_url or '').rstrip('/')}/{intent_id}"


def _load_private_key(config: Settings) -> Optional[str]:
    if config.JENGA_PRIVATE_KEY:
        return config.JENGA_PRIVATE_KEY
    if config.JENGA_PRIVATE_KEY_PATH:
        key_path = Path(config.JENGA_PRIVATE_KEY_PATH)
        if key_path.exists():
            return key_path.read_text()
        logger.warning(f"Jenga private key not found at {key_path}")
    return None


def build_gateway_configs(config: Optional[Settings] = None) -> Dict[GatewayKind, GatewayConfig]:
    """Build the per-rail configuration map from application settings"""
    config = config or default_settings
    mode = config.PAYMENT_GATEWAY_MODE
    sandbox = not config.is_gateway_production()
    callback_base = config.CALLBACK_BASE_URL.rstrip("/")

    common = dict(
        sandbox=sandbox,
        timeout_seconds=config.GATEWAY_TIMEOUT_SECONDS,
        max_retries=config.GATEWAY_MAX_RETRIES,
        currency=config.CURRENCY,
        country_code=config.COUNTRY_CODE,
    )

    mpesa = GatewayConfig(
        kind=GatewayKind.PUSH_MOBILE_MONEY,
        name="mpesa_express",
        enabled=bool(config.MPESA_CONSUMER_KEY and config.MPESA_SHORTCODE),
        base_url=config.MPESA_BASE_URL or MPESA_BASE_URLS[mode],
        callback_url=config.MPESA_CALLBACK_URL or f"{callback_base}/mpesa/callback",
        merchant_code=config.MPESA_SHORTCODE,
        api_key=config.MPESA_CONSUMER_KEY,
        api_secret=config.MPESA_CONSUMER_SECRET,
        passkey=config.MPESA_PASSKEY,
        **common,
    )

    jenga_common = dict(
        base_url=config.JENGA_BASE_URL or JENGA_BASE_URLS[mode],
        merchant_code=config.JENGA_MERCHANT_CODE,
        merchant_name=config.JENGA_MERCHANT_NAME,
        account_number=config.JENGA_ACCOUNT_NUMBER,
        api_key=config.JENGA_API_KEY,
        api_secret=config.JENGA_CONSUMER_SECRET,
        **common,
    )
    jenga_enabled = bool(config.JENGA_API_KEY and config.JENGA_MERCHANT_CODE)

    checkout = GatewayConfig(
        kind=GatewayKind.BANK_CHECKOUT,
        name="jenga_checkout",
        enabled=jenga_enabled,
        checkout_url=config.JENGA_CHECKOUT_URL or JENGA_CHECKOUT_URLS[mode],
        callback_url=config.JENGA_CALLBACK_URL or f"{callback_base}/jenga/callback",
        **jenga_common,
    )

    push = GatewayConfig(
        kind=GatewayKind.BANK_PUSH_USSD,
        name="jenga_push",
        enabled=jenga_enabled and bool(config.JENGA_ACCOUNT_NUMBER),
        callback_url=config.JENGA_PUSH_CALLBACK_URL or f"{callback_base}/jenga-push/callback",
        private_key_pem=_load_private_key(config),
        **jenga_common,
    )

    manual = GatewayConfig(
        kind=GatewayKind.MANUAL,
        name="manual",
        enabled=True,
        **common,
    )

    configs = {c.kind: c for c in (mpesa, checkout, push, manual)}
    for gateway in configs.values():
        logger.info(
            f"Gateway {gateway.name} configured ({'sandbox' if gateway.sandbox else 'production'}, "
            f"enabled={gateway.enabled})"
        )
    return configs
