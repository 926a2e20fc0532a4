"""Application settings loaded once from the environment (and `.env`)."""
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SANDBOX_SHORT_CODE = "174379"

MPESA_BASE_URLS = {
    "sandbox": "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}


class Settings(BaseSettings):
    """Immutable process configuration, injected into adapters and services."""

    # Application
    app_name: str = Field(default="orders-payments", description="Service name")
    app_env: str = Field(default="development", description="development/production")
    log_level: str = Field(default="INFO")

    # Database
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_host: str = "localhost"  # In Docker, this will be 'postgres'
    postgres_port: str = "5433"
    postgres_db: str = "orders"
    database_url_override: Optional[str] = Field(default=None, alias="DATABASE_URL")
    database_echo: bool = False
    database_null_pool: bool = False

    # M-Pesa Daraja
    mpesa_consumer_key: Optional[str] = None
    mpesa_consumer_secret: Optional[str] = None
    mpesa_short_code: Optional[str] = None
    mpesa_pass_key: Optional[str] = None
    mpesa_callback_url: Optional[str] = None
    mpesa_environment: Optional[str] = Field(
        default=None, description="sandbox/production; derived from the short code when unset"
    )
    mpesa_account_reference: str = "Order"
    mpesa_transaction_desc: str = "Order payment"
    gateway_token_timeout: float = 10.0
    gateway_request_timeout: float = 15.0

    # Orders & reconciliation
    country_code: str = "254"
    subscriber_digits: int = 9
    enforce_order_total: bool = True
    callback_lookup_attempts: int = Field(default=3, ge=1)
    callback_lookup_backoff_seconds: float = Field(default=0.5, ge=0)

    # Email API
    email_api_url: Optional[str] = None
    email_api_key: Optional[str] = None
    email_sender: str = "orders@example.com"
    admin_email: Optional[str] = None
    email_timeout: float = 10.0

    # Rate limiting & tracing
    rate_limit_enabled: bool = True
    push_rate_limit: str = "10/minute"
    otlp_endpoint: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("mpesa_environment")
    @classmethod
    def validate_mpesa_environment(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if v.lower() not in MPESA_BASE_URLS:
            raise ValueError(f"MPESA_ENVIRONMENT must be one of: {list(MPESA_BASE_URLS)}")
        return v.lower()

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def gateway_environment(self) -> str:
        if self.mpesa_environment:
            return self.mpesa_environment
        return "sandbox" if self.mpesa_short_code == SANDBOX_SHORT_CODE else "production"

    @property
    def gateway_base_url(self) -> str:
        return MPESA_BASE_URLS[self.gateway_environment]

    @property
    def gateway_configured(self) -> bool:
        return bool(self.mpesa_consumer_key and self.mpesa_consumer_secret)

    @property
    def email_configured(self) -> bool:
        return bool(self.email_api_url)


@lru_cache()
def get_settings() -> Settings:
    """Settings are read once per process."""
    return Settings()
