"""
Adapter registry.

Maps each gateway kind to its adapter. A new rail is added by
registering another ``GatewayAdapter`` subclass.
"""

from typing import Dict, Mapping, Optional, Type

import httpx

from fee_settlement.config.integrations import GatewayConfig, build_gateway_configs
from fee_settlement.core.exceptions import ConfigurationError
from fee_settlement.core.logging import get_logger
from fee_settlement.schemas.common.enums import GatewayKind
from fee_settlement.services.gateway.base_adapter import GatewayAdapter
from fee_settlement.services.gateway.credential_provider import CredentialProvider
from fee_settlement.services.gateway.jenga_adapter import JengaCheckoutAdapter, JengaPushAdapter
from fee_settlement.services.gateway.manual_adapter import ManualAdapter
from fee_settlement.services.gateway.mpesa_adapter import MpesaExpressAdapter
from fee_settlement.services.gateway.signature_engine import SignatureEngine

logger = get_logger(__name__)

DEFAULT_ADAPTERS: Dict[GatewayKind, Type[GatewayAdapter]] = {
    GatewayKind.PUSH_MOBILE_MONEY: MpesaExpressAdapter,
    GatewayKind.BANK_CHECKOUT: JengaCheckoutAdapter,
    GatewayKind.BANK_PUSH_USSD: JengaPushAdapter,
    GatewayKind.MANUAL: ManualAdapter,
}


class AdapterRegistry:
    """Holds one adapter instance per gateway kind."""

    def __init__(self):
        self._adapters: Dict[GatewayKind, GatewayAdapter] = {}

    def register(self, adapter: GatewayAdapter) -> None:
        self._adapters[adapter.kind] = adapter
        logger.debug("Registered gateway adapter", extra={"gateway": adapter.name})

    def get(self, gateway_kind: GatewayKind) -> GatewayAdapter:
        adapter = self._adapters.get(gateway_kind)
        if adapter is None:
            raise ConfigurationError(
                f"No adapter registered for {gateway_kind.value}", config_key=gateway_kind.value
            )
        return adapter

    def kinds(self):
        return list(self._adapters)

    @classmethod
    def build(
        cls,
        configs: Optional[Mapping[GatewayKind, GatewayConfig]] = None,
        credentials: Optional[CredentialProvider] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> "AdapterRegistry":
        """Registry with the default adapter for every configured rail."""
        configs = dict(configs or build_gateway_configs())
        signer = SignatureEngine(configs)
        credentials = credentials or CredentialProvider(configs, http_client=http_client)

        registry = cls()
        for kind, config in configs.items():
            adapter_cls = DEFAULT_ADAPTERS.get(kind)
            if adapter_cls is None:
                continue
            registry.register(
                adapter_cls(
                    config,
                    signer=signer,
                    credentials=None if config.token_less else credentials,
                    http_client=http_client,
                )
            )
        return registry
