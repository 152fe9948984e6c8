from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production"] = "local"
    LOG_LEVEL: str = "INFO"
    ADMIN_EMAIL: str = "admin@example.com"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Payment gateway (Mercado Pago compatible)
    PAYMENT_GATEWAY_BASE_URL: str = "https://api.mercadopago.com"
    PAYMENT_GATEWAY_ACCESS_TOKEN: str = ""
    # Empty secret runs the webhook in degraded (unsigned) mode.
    PAYMENT_WEBHOOK_SECRET: str = ""

    # Applies to every outbound call (gateway and carriers)
    UPSTREAM_TIMEOUT_SECONDS: float = 15.0

    # Carriers
    ENVIOPACK_BASE_URL: str = "https://api.enviopack.com"
    ENVIOPACK_API_KEY: str = ""
    ENVIOPACK_API_SECRET: str = ""
    SHIPPING_MAX_ATTEMPTS: int = 3
    SHIPPING_BACKOFF_SECONDS: float = 1.0
    DEFAULT_ITEM_WEIGHT_KG: float = 0.5

    # Email (SMTP)
    SMTP_HOST: str = "smtp-relay.brevo.com"
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    DEFAULT_FROM_EMAIL: str = "no-reply@example.com"
    DEFAULT_FROM_NAME: str = "Tienda"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
        return v

    @property
    def enviopack_configured(self) -> bool:
        return bool(self.ENVIOPACK_API_KEY and self.ENVIOPACK_API_SECRET)


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
