"""
Gateway integration layer: signing, credentials and per-rail adapters.
"""

from fee_settlement.services.gateway.adapter_registry import AdapterRegistry
from fee_settlement.services.gateway.base_adapter import GatewayAdapter, InitiationResult
from fee_settlement.services.gateway.credential_provider import CredentialProvider
from fee_settlement.services.gateway.signature_engine import SignatureEngine

__all__ = [
    "AdapterRegistry",
    "GatewayAdapter",
    "InitiationResult",
    "CredentialProvider",
    "SignatureEngine",
]
