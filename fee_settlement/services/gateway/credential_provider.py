"""
Gateway credential provider.

Exchanges consumer credentials for short-lived bearer tokens and caches
them per gateway until shortly before they expire.
"""

import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Mapping, Optional

import httpx

from fee_settlement.config.integrations import GatewayConfig
from fee_settlement.config.redis import RedisManager
from fee_settlement.config.settings import settings
from fee_settlement.core.exceptions import AuthenticationError, ConfigurationError
from fee_settlement.core.logging import get_logger
from fee_settlement.schemas.common.enums import GatewayKind

logger = get_logger(__name__)

DARAJA_TOKEN_PATH = "/oauth/v1/generate"
JENGA_TOKEN_PATH = "/authentication/api/v3/authenticate/merchant"
DEFAULT_TOKEN_TTL = 3600


@dataclass
class CachedToken:
    access_token: str
    expires_at: float

    def is_valid(self, now: float, skew: int) -> bool:
        return now < self.expires_at - skew


class InMemoryTokenCache:
    """Process-local token cache"""

    def __init__(self):
        self._tokens: Dict[str, CachedToken] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> Optional[CachedToken]:
        with self._lock:
            return self._tokens.get(name)

    def set(self, name: str, token: CachedToken) -> None:
        with self._lock:
            self._tokens[name] = token

    def delete(self, name: str) -> None:
        with self._lock:
            self._tokens.pop(name, None)


class RedisTokenCache:
    """Token cache shared by every worker through Redis"""

    def __init__(self, manager: Optional[RedisManager] = None):
        self.manager = manager or RedisManager(prefix="fee_settlement:gateway_token")

    def get(self, name: str) -> Optional[CachedToken]:
        data = self.manager.get(name)
        if not isinstance(data, dict) or "access_token" not in data:
            return None
        return CachedToken(access_token=data["access_token"], expires_at=float(data["expires_at"]))

    def set(self, name: str, token: CachedToken) -> None:
        ttl = max(int(token.expires_at - time.time()), 1)
        self.manager.set(
            name,
            {"access_token": token.access_token, "expires_at": token.expires_at},
            ttl=ttl,
        )

    def delete(self, name: str) -> None:
        self.manager.delete(name)


def build_token_cache(backend: Optional[str] = None):
    backend = backend or settings.CACHE_BACKEND
    if backend == "redis":
        return RedisTokenCache()
    return InMemoryTokenCache()


def _parse_expiry(raw, now: float) -> float:
    """
    Expiry as an epoch timestamp.

    Gateways report either seconds (``"3599"``) or an absolute timestamp.
    """
    if raw is None or raw == "":
        return now + DEFAULT_TOKEN_TTL
    try:
        return now + int(float(raw))
    except (TypeError, ValueError):
        pass
    try:
        return datetime.fromisoformat(str(raw).replace("Z", "+00:00")).timestamp()
    except ValueError:
        logger.warning("Unrecognised token expiry, using default lifetime", extra={"raw_expiry": str(raw)})
        return now + DEFAULT_TOKEN_TTL


class CredentialProvider:
    """
    Obtains and caches gateway access tokens.

    One token per gateway name; the checkout and push rails share the
    merchant credentials but keep separate cache entries.
    """

    def __init__(
        self,
        configs: Mapping[GatewayKind, GatewayConfig],
        cache=None,
        http_client: Optional[httpx.Client] = None,
        skew_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.configs = dict(configs)
        self.cache = cache if cache is not None else build_token_cache()
        self.http_client = http_client
        self.skew_seconds = settings.TOKEN_EXPIRY_SKEW_SECONDS if skew_seconds is None else skew_seconds
        self.clock = clock
        self._locks: Dict[GatewayKind, threading.Lock] = {kind: threading.Lock() for kind in self.configs}

    def _config(self, gateway_kind: GatewayKind) -> GatewayConfig:
        config = self.configs.get(gateway_kind)
        if config is None:
            raise ConfigurationError(f"Gateway {gateway_kind.value} is not configured", config_key=gateway_kind.value)
        return config

    def get_token(self, gateway_kind: GatewayKind, force_refresh: bool = False) -> Optional[str]:
        """
        Return a valid bearer token for ``gateway_kind``.

        The manual rail is token-less and returns None.

        Raises:
            AuthenticationError: When the token exchange fails
        """
        config = self._config(gateway_kind)
        if config.token_less:
            return None

        with self._locks[gateway_kind]:
            if not force_refresh:
                cached = self.cache.get(config.name)
                if cached and cached.is_valid(self.clock(), self.skew_seconds):
                    return cached.access_token

            token = self._fetch(config)
            self.cache.set(config.name, token)
            logger.info("Gateway token refreshed", extra={"gateway": config.name})
            return token.access_token

    def invalidate(self, gateway_kind: GatewayKind) -> None:
        """Drop the cached token, typically after the gateway answered 401."""
        config = self._config(gateway_kind)
        self.cache.delete(config.name)
        logger.info("Gateway token invalidated", extra={"gateway": config.name})

    def _fetch(self, config: GatewayConfig) -> CachedToken:
        if not config.api_key or not config.api_secret:
            raise AuthenticationError("Gateway credentials are not configured", gateway_name=config.name)

        if config.kind == GatewayKind.PUSH_MOBILE_MONEY:
            request = dict(
                method="GET",
                url=f"{config.base_url}{DARAJA_TOKEN_PATH}",
                params={"grant_type": "client_credentials"},
                auth=(config.api_key, config.api_secret),
            )
            token_field, expiry_field = "access_token", "expires_in"
        else:
            request = dict(
                method="POST",
                url=f"{config.base_url}{JENGA_TOKEN_PATH}",
                headers={"Api-Key": config.api_key, "Content-Type": "application/json"},
                json={"merchantCode": config.merchant_code, "consumerSecret": config.api_secret},
            )
            token_field, expiry_field = "accessToken", "expiresIn"

        try:
            if self.http_client is not None:
                response = self.http_client.request(timeout=config.timeout_seconds, **request)
            else:
                with httpx.Client(timeout=config.timeout_seconds) as client:
                    response = client.request(**request)
        except httpx.HTTPError as e:
            logger.error("Gateway token request failed", extra={"gateway": config.name, "error": str(e)})
            raise AuthenticationError("Gateway token request failed", gateway_name=config.name) from e

        if response.status_code != 200:
            logger.error(
                "Gateway token request rejected",
                extra={"gateway": config.name, "http_status": response.status_code},
            )
            raise AuthenticationError(
                f"Gateway token request rejected ({response.status_code})", gateway_name=config.name
            )

        try:
            data = response.json()
        except ValueError as e:
            raise AuthenticationError("Gateway token response is not JSON", gateway_name=config.name) from e

        access_token = data.get(token_field) if isinstance(data, dict) else None
        if not access_token:
            raise AuthenticationError("Gateway token response has no access token", gateway_name=config.name)

        now = self.clock()
        return CachedToken(access_token=access_token, expires_at=_parse_expiry(data.get(expiry_field), now))
