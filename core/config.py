"""
Configuration management using Pydantic Settings
Handles environment variables and validation
"""
from decimal import Decimal
from functools import lru_cache
from typing import List, Optional

from pydantic import ConfigDict, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Environment
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    testing: bool = Field(default=False)

    # Application
    app_name: str = "Finance Transformers Store"
    app_version: str = "0.1.0"
    store_name: str = Field(default="Finance Transformers")
    base_url: str = Field(default="http://localhost:8000")
    site_url: str = Field(default="http://localhost:3000")
    cors_origins: List[str] = Field(default=["*"])

    # Database
    database_url: str = Field(default="sqlite:///./pdfstore.db")
    database_pool_size: int = Field(default=10)
    database_echo: bool = Field(default=False)

    # Stripe - use SecretStr for sensitive data
    stripe_secret_key: Optional[SecretStr] = Field(default=None)
    stripe_webhook_secret: Optional[SecretStr] = Field(default=None)
    stripe_api_version: Optional[str] = Field(default=None)
    checkout_expires_after_minutes: int = Field(default=30)
    checkout_payment_method_types: List[str] = Field(default=["card", "sepa_debit"])
    statement_descriptor: str = Field(default="FINANCE*REPORT")
    default_currency: str = Field(default="EUR")
    min_price: Decimal = Field(default=Decimal("0.50"))
    max_price: Decimal = Field(default=Decimal("999999.99"))
    webhook_max_event_age_hours: int = Field(default=72)

    # SendGrid
    sendgrid_api_key: Optional[SecretStr] = Field(default=None)
    sendgrid_base_url: str = Field(default="https://api.sendgrid.com")
    sendgrid_sandbox_mode: bool = Field(default=False)
    from_email: str = Field(default="noreply@financetransformers.com")
    from_name: str = Field(default="Finance Transformers")
    request_timeout: int = Field(default=30)

    # Downloads
    download_token_ttl_hours: int = Field(default=48)
    download_max_redemptions: int = Field(default=5)

    # Payment link rate limiting
    payment_link_rate_limit: int = Field(default=10)
    payment_link_rate_window_seconds: int = Field(default=60)

    # Maintenance
    stale_pending_minutes: int = Field(default=120)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")  # json or text

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        allowed = ["development", "test", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v, info):
        if info.data.get("testing") and not v.startswith("sqlite"):
            # Force SQLite for testing
            return "sqlite://"
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        if v not in ("json", "text"):
            raise ValueError("Log format must be 'json' or 'text'")
        return v

    @field_validator("default_currency")
    @classmethod
    def normalize_currency(cls, v):
        return v.upper()

    @model_validator(mode="after")
    def validate_production_settings(self):
        """Validate production-specific settings after all fields are set"""
        if self.environment == "production":
            if not self.stripe_secret_key:
                raise ValueError("Stripe secret key required in production")
            if not self.stripe_webhook_secret:
                raise ValueError("Stripe webhook secret required in production")
            if not self.sendgrid_api_key:
                raise ValueError("SendGrid API key required in production")

        if self.min_price <= 0 or self.min_price > self.max_price:
            raise ValueError("Price bounds must satisfy 0 < min_price <= max_price")

        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    def get_api_key(self, service: str) -> str:
        """Get API key for a service"""
        keys = {
            "stripe": self.stripe_secret_key.get_secret_value() if self.stripe_secret_key else None,
            "stripe_webhook": self.stripe_webhook_secret.get_secret_value() if self.stripe_webhook_secret else None,
            "sendgrid": self.sendgrid_api_key.get_secret_value() if self.sendgrid_api_key else None,
        }

        key = keys.get(service)
        if not key:
            raise ValueError(f"API key not configured for {service}")
        return key

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra environment variables
    )

    def model_dump(self, **kwargs):
        """Override to mask sensitive fields when serializing"""
        data = super().model_dump(**kwargs)

        sensitive_fields = [
            "stripe_secret_key",
            "stripe_webhook_secret",
            "sendgrid_api_key",
        ]

        for field in sensitive_fields:
            if field in data and data[field]:
                # Handle SecretStr values
                if hasattr(data[field], "get_secret_value"):
                    value = data[field].get_secret_value()
                else:
                    value = str(data[field])

                # Keep first 4 chars for identification
                if len(value) > 4:
                    data[field] = value[:4] + "*" * (len(value) - 4)
                else:
                    data[field] = "*" * len(value)

        return data


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
