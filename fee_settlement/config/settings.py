"""
Environment configuration for the fee settlement engine.
Uses Pydantic's settings management to handle environment variables
with proper type validation and default values.
"""

from typing import List, Optional, Union
from pathlib import Path
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
env_path = Path('.') / '.env'
load_dotenv(dotenv_path=env_path)


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        populate_by_name=True,
    )

    # Application configuration
    APP_NAME: str = Field(default="Fee Settlement Engine", alias="PROJECT_NAME")
    API_VERSION: str = Field(default="v1", alias="PROJECT_VERSION")
    API_V1_STR: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    CORS_ORIGINS: List[str] = Field(default=["*"], alias="BACKEND_CORS_ORIGINS")

    # Database configuration
    DATABASE_URL: str = "sqlite:///./fee_settlement.db"
    DB_POOL_SIZE: int = 20
    DB_POOL_OVERFLOW: int = 10
    DB_ECHO: bool = False

    # Redis / token cache
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_POOL_SIZE: int = 10
    CACHE_BACKEND: str = Field(default="memory", alias="CACHE_BACKEND")

    # Monitoring and logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"
    LOG_SQL_QUERIES: bool = False

    # Settlement behaviour
    CURRENCY: str = Field(default="KES", alias="CURRENCY")
    COUNTRY_CODE: str = "KE"
    PAYMENT_GATEWAY_MODE: str = "sandbox"
    GATEWAY_TIMEOUT_SECONDS: float = 30.0
    GATEWAY_MAX_RETRIES: int = 2
    TOKEN_EXPIRY_SKEW_SECONDS: int = 60
    PENDING_INTENT_HORIZON_HOURS: int = 24
    CALLBACK_BASE_URL: str = "http://localhost:8000/api/v1/payments"
    FRONTEND_PAYMENTS_URL: str = "/payments"

    # M-Pesa Express (Daraja)
    MPESA_CONSUMER_KEY: Optional[str] = None
    MPESA_CONSUMER_SECRET: Optional[str] = None
    MPESA_SHORTCODE: Optional[str] = None
    MPESA_PASSKEY: Optional[str] = None
    MPESA_BASE_URL: Optional[str] = None
    MPESA_CALLBACK_URL: Optional[str] = None

    # Jenga (Equity Bank)
    JENGA_API_KEY: Optional[str] = None
    JENGA_MERCHANT_CODE: Optional[str] = None
    JENGA_CONSUMER_SECRET: Optional[str] = None
    JENGA_ACCOUNT_NUMBER: Optional[str] = None
    JENGA_MERCHANT_NAME: str = "Fee Settlement"
    JENGA_BASE_URL: Optional[str] = None
    JENGA_CHECKOUT_URL: Optional[str] = None
    JENGA_PRIVATE_KEY_PATH: Optional[str] = None
    JENGA_PRIVATE_KEY: Optional[str] = None
    JENGA_CALLBACK_URL: Optional[str] = None
    JENGA_PUSH_CALLBACK_URL: Optional[str] = None

    # Validators
    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse CORS_ORIGINS from string to list"""
        if isinstance(v, str):
            if v.startswith('[') and v.endswith(']'):
                import json
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator('PAYMENT_GATEWAY_MODE')
    @classmethod
    def validate_gateway_mode(cls, v: str) -> str:
        mode = v.lower()
        if mode not in ("sandbox", "production"):
            raise ValueError("PAYMENT_GATEWAY_MODE must be 'sandbox' or 'production'")
        return mode

    def get_database_url(self) -> str:
        """Return the configured database URL"""
        return self.DATABASE_URL

    def get_redis_url(self) -> str:
        """Get Redis URL"""
        return self.REDIS_URL

    def is_production(self) -> bool:
        """Check if running in production environment"""
        return self.ENVIRONMENT == "production"

    def is_gateway_production(self) -> bool:
        """Check whether gateways should be called on their live endpoints"""
        return self.PAYMENT_GATEWAY_MODE == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
