from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Windi Menu Billing"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    BASE_URL: str = "http://localhost:8000"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Admin surface (sale review, payouts, plans)
    ADMIN_API_KEY: str = ""  # Empty disables the admin endpoints

    # Mercado Pago Payment Gateway
    MP_ACCESS_TOKEN: str = ""  # Empty means the gateway is not configured
    MP_API_BASE: str = "https://api.mercadopago.com"
    MP_WEBHOOK_URL: Optional[str] = None  # Defaults to {BASE_URL}/webhooks/mercadopago
    MP_PREFERENCE_TIMEOUT_SECONDS: float = 12.0
    MP_PAYMENT_TIMEOUT_SECONDS: float = 15.0
    CHECKOUT_RETURN_PATH: str = "/onboarding/checkout"

    # Ledger
    DEFAULT_CURRENCY: str = "ARS"
    DEFAULT_COMMISSION_RATE: float = 0.25
    SUBSCRIPTION_PERIOD_DAYS: int = 30

    # Remote mirror (outbox push)
    MIRROR_PUSH_URL: str = ""  # Empty disables the drain job
    MIRROR_PUSH_TOKEN: str = ""
    MIRROR_DRAIN_INTERVAL_SECONDS: int = 30
    MIRROR_DEBOUNCE_SECONDS: int = 5
    MIRROR_BATCH_SIZE: int = 200
    MIRROR_PUSH_TIMEOUT_SECONDS: float = 10.0

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @property
    def webhook_url(self) -> str:
        return self.MP_WEBHOOK_URL or f"{self.BASE_URL.rstrip('/')}/webhooks/mercadopago"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
